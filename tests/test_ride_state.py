"""Unit tests for the ride transition table (State Pattern)."""

import pytest

from rideconnect.domain.entities import can_transition, ensure_transition
from rideconnect.domain.enums import TERMINAL_STATUSES, RideStatus
from rideconnect.domain.errors import InvalidTransition

LEGAL = [
    (RideStatus.REQUESTED, RideStatus.ASSIGNED),
    (RideStatus.ASSIGNED, RideStatus.ENROUTE),
    (RideStatus.ENROUTE, RideStatus.STARTED),
    (RideStatus.STARTED, RideStatus.COMPLETED),
    (RideStatus.REQUESTED, RideStatus.CANCELED),
    (RideStatus.ASSIGNED, RideStatus.CANCELED),
    (RideStatus.ENROUTE, RideStatus.CANCELED),
    (RideStatus.STARTED, RideStatus.CANCELED),
]


class TestRideStateMachine:
    # ── Valid transitions ─────────────────────────────────────────

    @pytest.mark.parametrize("current,target", LEGAL)
    def test_legal_transitions(self, current, target):
        ensure_transition(current, target)

    # ── Invalid transitions ───────────────────────────────────────

    @pytest.mark.parametrize(
        "current,target",
        [
            (c, t)
            for c in RideStatus
            for t in RideStatus
            if (c, t) not in LEGAL
        ],
    )
    def test_everything_else_is_rejected(self, current, target):
        assert not can_transition(current, target)
        with pytest.raises(InvalidTransition):
            ensure_transition(current, target)

    @pytest.mark.parametrize("terminal", sorted(TERMINAL_STATUSES))
    def test_no_way_out_of_terminal_states(self, terminal):
        for target in RideStatus:
            assert not can_transition(terminal, target)

    def test_error_reports_both_states(self):
        with pytest.raises(InvalidTransition) as info:
            ensure_transition(RideStatus.REQUESTED, RideStatus.COMPLETED)
        assert info.value.current == RideStatus.REQUESTED
        assert info.value.attempted == RideStatus.COMPLETED
        assert "requested" in str(info.value)
        assert "completed" in str(info.value)
