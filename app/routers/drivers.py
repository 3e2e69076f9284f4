"""
Drivers router: POST /v1/drivers (create), PATCH /v1/drivers/{id}/approval,
                PATCH /v1/drivers/{id}/status, POST /v1/drivers/{id}/location,
                GET /v1/drivers/eligible
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.middleware.auth import get_current_driver, require_admin
from app.schemas.schemas import (
    ApprovalUpdateRequest,
    DriverCreateRequest,
    DriverResponse,
    DriverStatusUpdateRequest,
    EligibleDriver,
    LocationUpdateRequest,
)
from app.services.engine import CoordinationEngine, get_engine
from app.services.geo import Point, distance_km, validate_point

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/v1/drivers", tags=["Drivers"])


def _require_self(driver_id: str, token_driver_id: str) -> None:
    if driver_id != token_driver_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Cannot act for another driver")


@router.post("", status_code=status.HTTP_201_CREATED, response_model=DriverResponse)
async def create_driver(
    payload: DriverCreateRequest,
    engine: CoordinationEngine = Depends(get_engine),
):
    """Register a new driver. No auth required for onboarding; starts PENDING approval."""
    driver = await engine.drivers.register_driver(payload.name, payload.phone)
    return DriverResponse.model_validate(driver)


@router.patch("/{driver_id}/approval", response_model=DriverResponse)
async def update_approval(
    driver_id: str,
    payload: ApprovalUpdateRequest,
    engine: CoordinationEngine = Depends(get_engine),
    _admin: str = Depends(require_admin),
):
    driver = await engine.drivers.set_approval(driver_id, payload.approval_status)
    return DriverResponse.model_validate(driver)


@router.patch("/{driver_id}/status", response_model=DriverResponse)
async def update_driver_status(
    driver_id: str,
    payload: DriverStatusUpdateRequest,
    engine: CoordinationEngine = Depends(get_engine),
    token_driver_id: str = Depends(get_current_driver),
):
    """Toggle online/offline and active/suspended. Going online retries waiting rides."""
    _require_self(driver_id, token_driver_id)
    if payload.status is None and payload.is_online is None:
        raise HTTPException(status_code=400, detail="Nothing to update")

    driver = await engine.drivers.get_driver(driver_id)
    if payload.status is not None:
        driver = await engine.drivers.set_status(driver_id, payload.status)
    if payload.is_online is not None:
        driver = await engine.drivers.set_online(driver_id, payload.is_online)
        if payload.is_online:
            assigned = await engine.rides.rematch_waiting()
            logger.info("Driver %s online, %s waiting ride(s) assigned", driver_id, assigned)
            driver = await engine.drivers.get_driver(driver_id)
    return DriverResponse.model_validate(driver)


@router.post("/{driver_id}/location", status_code=status.HTTP_204_NO_CONTENT)
async def update_location(
    driver_id: str,
    payload: LocationUpdateRequest,
    engine: CoordinationEngine = Depends(get_engine),
    token_driver_id: str = Depends(get_current_driver),
):
    _require_self(driver_id, token_driver_id)
    await engine.drivers.update_location(driver_id, payload.lat, payload.lng)


@router.get("/eligible", response_model=list[EligibleDriver])
async def eligible_drivers(
    lat: float = Query(...),
    lng: float = Query(...),
    limit: int | None = Query(default=None, ge=1, le=100),
    engine: CoordinationEngine = Depends(get_engine),
    _admin: str = Depends(require_admin),
):
    """Drivers the matcher would consider for a pickup at (lat, lng), nearest first."""
    near = validate_point(Point(lat, lng))
    drivers = await engine.drivers.list_eligible_drivers(near, limit)
    return [
        EligibleDriver(
            id=d.id,
            name=d.name,
            lat=d.lat,
            lng=d.lng,
            distance_km=round(distance_km(near, Point(d.lat, d.lng)), 3),
        )
        for d in drivers
    ]
