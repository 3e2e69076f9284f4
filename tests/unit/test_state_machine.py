"""
Unit tests for ride status state machine validations.
"""
from datetime import datetime, timezone

import pytest

from app.models.enums import RideStatus
from app.models.ride import Ride
from app.services.exceptions import InvalidStateError
from app.services.state_machine import is_terminal, is_valid_transition, transition_ride

AT = datetime(2024, 1, 15, 9, 0, tzinfo=timezone.utc)


def _ride(status: RideStatus) -> Ride:
    return Ride(id="ride-1", status=status.value, status_history=[])


class TestRideStateMachine:
    def test_requested_to_assigned(self):
        assert is_valid_transition("REQUESTED", "ASSIGNED")

    def test_requested_to_searching_share(self):
        assert is_valid_transition("REQUESTED", "SEARCHING_SHARE")

    def test_searching_share_back_to_requested(self):
        assert is_valid_transition("SEARCHING_SHARE", "REQUESTED")

    def test_assigned_to_in_progress(self):
        assert is_valid_transition("ASSIGNED", "IN_PROGRESS")

    def test_in_progress_to_completed(self):
        assert is_valid_transition("IN_PROGRESS", "COMPLETED")

    def test_every_live_status_can_cancel(self):
        for status in ("REQUESTED", "SEARCHING_SHARE", "ASSIGNED", "IN_PROGRESS"):
            assert is_valid_transition(status, "CANCELLED")

    def test_cannot_skip_assignment(self):
        assert not is_valid_transition("REQUESTED", "IN_PROGRESS")

    def test_searching_share_cannot_be_assigned_directly(self):
        assert not is_valid_transition("SEARCHING_SHARE", "ASSIGNED")

    def test_cannot_complete_before_start(self):
        assert not is_valid_transition("ASSIGNED", "COMPLETED")

    def test_terminal_states_have_no_exits(self):
        for terminal in ("COMPLETED", "CANCELLED"):
            assert is_terminal(terminal)
            for target in RideStatus:
                assert not is_valid_transition(terminal, target.value)


class TestTransitionRide:
    def test_appends_history(self):
        ride = _ride(RideStatus.REQUESTED)
        transition_ride(ride, RideStatus.ASSIGNED, "driver:d1", AT)
        assert ride.status == "ASSIGNED"
        assert ride.status_history == [
            {"status": "ASSIGNED", "actor": "driver:d1", "at": AT.isoformat()}
        ]

    def test_history_is_reassigned_not_mutated(self):
        ride = _ride(RideStatus.REQUESTED)
        before = ride.status_history
        transition_ride(ride, RideStatus.CANCELLED, "rider:r1", AT)
        assert before == []
        assert ride.status_history is not before

    def test_invalid_transition_raises(self):
        ride = _ride(RideStatus.REQUESTED)
        with pytest.raises(InvalidStateError):
            transition_ride(ride, RideStatus.COMPLETED, "driver:d1", AT)
        assert ride.status == "REQUESTED"

    def test_terminal_ride_is_immutable(self):
        ride = _ride(RideStatus.CANCELLED)
        with pytest.raises(InvalidStateError, match="immutable"):
            transition_ride(ride, RideStatus.REQUESTED, "system", AT)
