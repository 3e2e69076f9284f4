"""
Ride status state machine.

    REQUESTED -> SEARCHING_SHARE -> REQUESTED -> ASSIGNED -> IN_PROGRESS -> COMPLETED

CANCELLED is reachable from every non-terminal status. COMPLETED and
CANCELLED are terminal.
"""
from datetime import datetime

from app.models.enums import RideStatus, TERMINAL_RIDE_STATUSES
from app.models.ride import Ride
from app.services.exceptions import InvalidStateError

VALID_TRANSITIONS: dict[RideStatus, frozenset[RideStatus]] = {
    RideStatus.REQUESTED: frozenset(
        {RideStatus.SEARCHING_SHARE, RideStatus.ASSIGNED, RideStatus.CANCELLED}
    ),
    RideStatus.SEARCHING_SHARE: frozenset({RideStatus.REQUESTED, RideStatus.CANCELLED}),
    RideStatus.ASSIGNED: frozenset({RideStatus.IN_PROGRESS, RideStatus.CANCELLED}),
    RideStatus.IN_PROGRESS: frozenset({RideStatus.COMPLETED, RideStatus.CANCELLED}),
    RideStatus.COMPLETED: frozenset(),
    RideStatus.CANCELLED: frozenset(),
}


def is_valid_transition(current: str, next_status: str) -> bool:
    return RideStatus(next_status) in VALID_TRANSITIONS[RideStatus(current)]


def is_terminal(status: str) -> bool:
    return RideStatus(status) in TERMINAL_RIDE_STATUSES


def transition_ride(ride: Ride, next_status: RideStatus, actor: str, at: datetime) -> None:
    """Move `ride` to `next_status` and append the change to its status history."""
    current = RideStatus(ride.status)
    if is_terminal(current):
        raise InvalidStateError(f"Ride {ride.id} is {current.value.lower()} and immutable")
    if next_status not in VALID_TRANSITIONS[current]:
        raise InvalidStateError(
            f"Invalid state transition for ride {ride.id}: {current.value} -> {next_status.value}"
        )
    ride.status = next_status.value
    # Reassign so the JSON column is flagged dirty
    ride.status_history = [
        *(ride.status_history or []),
        {"status": next_status.value, "actor": actor, "at": at.isoformat()},
    ]
