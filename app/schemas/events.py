"""
Coordination events handed to the notification emitter.

Each event kind has its own payload model; `RideEvent` is the tagged union
consumers decode with `RideEventAdapter.validate_json(...)`.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter


class EventKind(str, Enum):
    RIDE_REQUESTED = "RIDE_REQUESTED"
    SHARE_SEARCHING = "SHARE_SEARCHING"
    SHARE_MATCHED = "SHARE_MATCHED"
    RIDE_ASSIGNED = "RIDE_ASSIGNED"
    NO_DRIVER_AVAILABLE = "NO_DRIVER_AVAILABLE"
    PAYMENT_HOLD_FAILED = "PAYMENT_HOLD_FAILED"
    RIDE_STARTED = "RIDE_STARTED"
    RIDE_COMPLETED = "RIDE_COMPLETED"
    RIDE_CANCELLED = "RIDE_CANCELLED"
    SHARE_CONVERTED_TO_PRIVATE = "SHARE_CONVERTED_TO_PRIVATE"


def _now() -> datetime:
    return datetime.now(timezone.utc)


class _Event(BaseModel):
    ride_id: str
    occurred_at: datetime = Field(default_factory=_now)


class RideRequested(_Event):
    kind: Literal[EventKind.RIDE_REQUESTED] = EventKind.RIDE_REQUESTED
    rider_id: str
    mode: str
    fare_estimate: int


class ShareSearching(_Event):
    kind: Literal[EventKind.SHARE_SEARCHING] = EventKind.SHARE_SEARCHING
    rider_id: str
    group_id: str


class ShareMatched(_Event):
    kind: Literal[EventKind.SHARE_MATCHED] = EventKind.SHARE_MATCHED
    group_id: str
    rider_ids: list[str]
    fare_shares: dict[str, int]


class RideAssigned(_Event):
    kind: Literal[EventKind.RIDE_ASSIGNED] = EventKind.RIDE_ASSIGNED
    driver_id: str
    rider_ids: list[str]


class NoDriverAvailable(_Event):
    kind: Literal[EventKind.NO_DRIVER_AVAILABLE] = EventKind.NO_DRIVER_AVAILABLE
    rider_ids: list[str]


class PaymentHoldFailed(_Event):
    kind: Literal[EventKind.PAYMENT_HOLD_FAILED] = EventKind.PAYMENT_HOLD_FAILED
    rider_id: str
    amount: int


class RideStarted(_Event):
    kind: Literal[EventKind.RIDE_STARTED] = EventKind.RIDE_STARTED
    driver_id: str
    held: dict[str, int]


class RideCompleted(_Event):
    kind: Literal[EventKind.RIDE_COMPLETED] = EventKind.RIDE_COMPLETED
    driver_id: str
    collected: int
    driver_payout: int
    commission: int


class RideCancelled(_Event):
    kind: Literal[EventKind.RIDE_CANCELLED] = EventKind.RIDE_CANCELLED
    rider_id: str
    ride_cancelled: bool
    penalty_amount: int = 0
    refund_amount: int = 0
    driver_id: Optional[str] = None


class ShareConvertedToPrivate(_Event):
    kind: Literal[EventKind.SHARE_CONVERTED_TO_PRIVATE] = EventKind.SHARE_CONVERTED_TO_PRIVATE
    group_id: str
    rider_id: str
    fare: int
    reason: Literal["timeout", "partner_cancelled"]


RideEvent = Annotated[
    Union[
        RideRequested,
        ShareSearching,
        ShareMatched,
        RideAssigned,
        NoDriverAvailable,
        PaymentHoldFailed,
        RideStarted,
        RideCompleted,
        RideCancelled,
        ShareConvertedToPrivate,
    ],
    Field(discriminator="kind"),
]

RideEventAdapter: TypeAdapter[RideEvent] = TypeAdapter(RideEvent)
