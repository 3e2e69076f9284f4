from enum import Enum


class RideMode(str, Enum):
    PRIVATE = "PRIVATE"
    SHARE = "SHARE"


class RideStatus(str, Enum):
    REQUESTED = "REQUESTED"
    SEARCHING_SHARE = "SEARCHING_SHARE"
    ASSIGNED = "ASSIGNED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class ShareGroupStatus(str, Enum):
    OPEN = "OPEN"
    FULL = "FULL"
    CLOSED = "CLOSED"
    CANCELLED = "CANCELLED"


class ParticipantStatus(str, Enum):
    ACTIVE = "ACTIVE"
    CANCELLED = "CANCELLED"


class ApprovalStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class DriverStatus(str, Enum):
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"


class OwnerType(str, Enum):
    RIDER = "RIDER"
    DRIVER = "DRIVER"
    PLATFORM = "PLATFORM"


class TransactionType(str, Enum):
    HOLD = "HOLD"
    RELEASE = "RELEASE"
    DEBIT = "DEBIT"
    CREDIT = "CREDIT"
    PENALTY = "PENALTY"


class HoldStatus(str, Enum):
    HELD = "HELD"
    RELEASED = "RELEASED"
    DEBITED = "DEBITED"
    SETTLED = "SETTLED"


TERMINAL_RIDE_STATUSES = frozenset({RideStatus.COMPLETED, RideStatus.CANCELLED})
ACTIVE_RIDE_STATUSES = frozenset(set(RideStatus) - TERMINAL_RIDE_STATUSES)
