from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field

from app.models.enums import (
    ApprovalStatus,
    DriverStatus,
    ParticipantStatus,
    RideMode,
    RideStatus,
    ShareGroupStatus,
)


# ---------------------------------------------------------------------------
# Ride schemas
# ---------------------------------------------------------------------------

class RideCreateRequest(BaseModel):
    mode: RideMode = RideMode.PRIVATE
    pickup_address: str = Field(..., max_length=500)
    dropoff_address: str = Field(..., max_length=500)
    # Optional at the schema level; the engine rejects missing coordinates with a clearer error
    pickup_lat: Optional[float] = None
    pickup_lng: Optional[float] = None
    dropoff_lat: Optional[float] = None
    dropoff_lng: Optional[float] = None
    # Minor currency units
    fare_estimate: int = Field(..., gt=0)
    booked_for_name: Optional[str] = Field(default=None, max_length=255)
    booked_for_phone: Optional[str] = Field(default=None, max_length=20)


class StatusChange(BaseModel):
    status: RideStatus
    actor: str
    at: datetime


class RideResponse(BaseModel):
    id: str
    rider_id: str
    mode: RideMode
    status: RideStatus
    driver_id: Optional[str] = None
    share_group_id: Optional[str] = None
    booked_for_name: Optional[str] = None
    booked_for_phone: Optional[str] = None
    pickup_address: str
    dropoff_address: str
    pickup_lat: float
    pickup_lng: float
    dropoff_lat: float
    dropoff_lng: float
    fare_estimate: int
    max_passengers: int
    status_history: list[StatusChange] = []
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class CancelResponse(BaseModel):
    ride_id: str
    ride_status: RideStatus
    ride_cancelled: bool
    penalty_amount: int
    refund_amount: int


class CompletionResponse(BaseModel):
    ride_id: str
    status: RideStatus
    collected: int
    driver_payout: int
    commission: int


# ---------------------------------------------------------------------------
# Share schemas
# ---------------------------------------------------------------------------

class ShareParticipantResponse(BaseModel):
    id: str
    rider_id: str
    booked_for_name: Optional[str] = None
    pickup_address: str
    dropoff_address: str
    requested_fare: int
    fare_share_amount: int
    status: ParticipantStatus
    joined_at: datetime

    model_config = {"from_attributes": True}


class ShareGroupResponse(BaseModel):
    id: str
    status: ShareGroupStatus
    capacity: int
    ride_id: Optional[str] = None
    created_at: datetime
    participants: list[ShareParticipantResponse] = []

    model_config = {"from_attributes": True}


# ---------------------------------------------------------------------------
# Driver schemas
# ---------------------------------------------------------------------------

class DriverCreateRequest(BaseModel):
    name: str = Field(..., min_length=2, max_length=255)
    phone: str = Field(..., min_length=10, max_length=20)


class DriverResponse(BaseModel):
    id: str
    name: str
    phone: str
    approval_status: ApprovalStatus
    status: DriverStatus
    is_online: bool
    is_busy: bool
    lat: Optional[float] = None
    lng: Optional[float] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class ApprovalUpdateRequest(BaseModel):
    approval_status: ApprovalStatus


class DriverStatusUpdateRequest(BaseModel):
    status: Optional[DriverStatus] = None
    is_online: Optional[bool] = None


class LocationUpdateRequest(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


class EligibleDriver(BaseModel):
    id: str
    name: str
    lat: float
    lng: float
    distance_km: float


# ---------------------------------------------------------------------------
# Wallet schemas
# ---------------------------------------------------------------------------

class WalletTransactionResponse(BaseModel):
    id: str
    type: str
    amount: int
    reference: str
    ride_id: Optional[str] = None
    description: Optional[str] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class WalletResponse(BaseModel):
    id: str
    owner_id: str
    balance: int
    locked_balance: int
    available_balance: int
    currency: str
    transactions: list[WalletTransactionResponse] = []

    model_config = {"from_attributes": True}


class TopUpRequest(BaseModel):
    amount: int = Field(..., gt=0)
    # Client-supplied reference; replaying the same one credits only once
    reference: str = Field(..., min_length=1, max_length=200)
