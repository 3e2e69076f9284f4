"""
Rides router: POST /v1/rides, GET /v1/rides/active, GET /v1/rides/{id},
              POST /v1/rides/{id}/start | complete | cancel
"""
import logging

from fastapi import APIRouter, Depends, Header, HTTPException, status

from app.middleware.auth import get_current_driver, get_current_rider, get_current_user
from app.middleware.idempotency import check_idempotency, store_idempotency_result
from app.schemas.schemas import (
    CancelResponse,
    CompletionResponse,
    RideCreateRequest,
    RideResponse,
)
from app.services.engine import CoordinationEngine, get_engine

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/v1/rides", tags=["Rides"])


@router.post("", status_code=status.HTTP_201_CREATED, response_model=RideResponse)
async def create_ride(
    payload: RideCreateRequest,
    engine: CoordinationEngine = Depends(get_engine),
    rider_id: str = Depends(get_current_rider),
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
):
    """
    Request a private or shared ride. A private ride is matched to the
    nearest eligible driver straight away; a shared one either joins a
    compatible group or opens a new one and waits.
    """
    cached = await check_idempotency("rides", rider_id, idempotency_key)
    if cached:
        return cached

    ride = await engine.rides.request_ride(rider_id, payload)
    response = RideResponse.model_validate(ride)

    await store_idempotency_result(
        "rides", rider_id, idempotency_key, status.HTTP_201_CREATED, response.model_dump(mode="json")
    )
    return response


@router.get("/active", response_model=RideResponse)
async def get_active_ride(
    engine: CoordinationEngine = Depends(get_engine),
    rider_id: str = Depends(get_current_rider),
):
    ride = await engine.rides.active_ride_for(rider_id)
    if ride is None:
        raise HTTPException(status_code=404, detail="No active ride")
    return RideResponse.model_validate(ride)


@router.get("/{ride_id}", response_model=RideResponse)
async def get_ride(
    ride_id: str,
    engine: CoordinationEngine = Depends(get_engine),
    _user: dict = Depends(get_current_user),
):
    ride = await engine.rides.get_ride(ride_id)
    return RideResponse.model_validate(ride)


@router.post("/{ride_id}/start", response_model=RideResponse)
async def start_ride(
    ride_id: str,
    engine: CoordinationEngine = Depends(get_engine),
    driver_id: str = Depends(get_current_driver),
):
    """Places the fare holds and moves the ride to IN_PROGRESS."""
    ride = await engine.rides.start_ride(ride_id, driver_id=driver_id)
    return RideResponse.model_validate(ride)


@router.post("/{ride_id}/complete", response_model=CompletionResponse)
async def complete_ride(
    ride_id: str,
    engine: CoordinationEngine = Depends(get_engine),
    driver_id: str = Depends(get_current_driver),
):
    result = await engine.rides.complete_ride(ride_id, driver_id=driver_id)
    return CompletionResponse(
        ride_id=result.ride.id,
        status=result.ride.status,
        collected=result.collected,
        driver_payout=result.driver_payout,
        commission=result.commission,
    )


@router.post("/{ride_id}/cancel", response_model=CancelResponse)
async def cancel_ride(
    ride_id: str,
    engine: CoordinationEngine = Depends(get_engine),
    rider_id: str = Depends(get_current_rider),
):
    result = await engine.rides.cancel_ride(ride_id, rider_id)
    return CancelResponse(
        ride_id=result.ride.id,
        ride_status=result.ride.status,
        ride_cancelled=result.ride_cancelled,
        penalty_amount=result.penalty_amount,
        refund_amount=result.refund_amount,
    )
