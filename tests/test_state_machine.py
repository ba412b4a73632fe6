"""Tests for the dispatch lifecycle state machine."""

import pytest

from resq.models.emergency import DispatchEvent, EmergencyStatus, Role
from resq.services.errors import TransitionRejected
from resq.services.state_machine import (
    TRANSITIONS,
    allowed_events,
    is_terminal,
    next_driver_event,
    should_broadcast,
    transition,
    try_transition,
)

S = EmergencyStatus
E = DispatchEvent


VALID = [
    (S.PENDING, E.ASSIGN_HOSPITAL, Role.HOSPITAL, S.HOSPITAL_ASSIGNED),
    (S.PENDING, E.ACCEPT, Role.DRIVER, S.DISPATCHED),
    (S.HOSPITAL_ASSIGNED, E.ACCEPT, Role.DRIVER, S.DISPATCHED),
    (S.DISPATCHED, E.START_NAVIGATION, Role.DRIVER, S.EN_ROUTE),
    (S.EN_ROUTE, E.ARRIVE_PICKUP, Role.DRIVER, S.ARRIVED_PICKUP),
    (S.ARRIVED_PICKUP, E.START_TRANSPORT, Role.DRIVER, S.TRANSPORTING),
    (S.TRANSPORTING, E.REACH_HOSPITAL, Role.DRIVER, S.ARRIVED),
    (S.TRANSPORTING, E.CONFIRM_ARRIVAL, Role.HOSPITAL, S.ARRIVED),
    (S.ARRIVED, E.ADMIT, Role.HOSPITAL, S.ADMITTED),
    (S.ARRIVED, E.REFER, Role.HOSPITAL, S.REFERRED),
    (S.ARRIVED, E.STABILIZE, Role.HOSPITAL, S.STABILIZED),
]


@pytest.mark.parametrize("current,event,role,expected", VALID)
def test_valid_transitions(current, event, role, expected):
    """Every defined (status, event) pair reaches its next status."""
    assert transition(current, event, role) == expected


def test_table_matches_valid_cases():
    """The transition table defines exactly the documented pairs."""
    assert {(c, e) for c, e, _, _ in VALID} == set(TRANSITIONS)


@pytest.mark.parametrize("current", list(S))
@pytest.mark.parametrize("event", list(E))
@pytest.mark.parametrize("role", list(Role))
def test_undefined_pairs_rejected(current, event, role):
    """Anything outside the table is rejected, including the right event by the wrong role."""
    rule = TRANSITIONS.get((current, event))
    if rule is not None and rule[0] == role:
        return
    with pytest.raises(TransitionRejected):
        transition(current, event, role)
    assert try_transition(current, event, role) is None


def test_patient_cannot_fire_any_event():
    """Patients only create records."""
    for status in S:
        assert allowed_events(status, Role.PATIENT) == []


def test_terminal_statuses_have_no_events():
    for status in (S.ADMITTED, S.REFERRED, S.STABILIZED):
        assert is_terminal(status)
        assert allowed_events(status) == []


def test_transition_accepts_strings_and_aliases():
    """Raw strings work, and reached_hospital is the same status as arrived."""
    assert transition("transporting", "reach_hospital", "driver") == S.ARRIVED
    assert transition("reached_hospital", "admit", "hospital") == S.ADMITTED


def test_unknown_event_rejected():
    with pytest.raises(TransitionRejected):
        transition(S.PENDING, "teleport", Role.DRIVER)


def test_unknown_status_rejected():
    """An unrecognised current status is a rejection, not a crash."""
    with pytest.raises(TransitionRejected):
        transition("bogus", E.ACCEPT, Role.DRIVER)
    assert try_transition("bogus", E.ACCEPT, Role.DRIVER) is None


def test_forward_only():
    """No transition leads back to an earlier status."""
    from resq.models.emergency import status_rank

    for (current, _), (_, target) in TRANSITIONS.items():
        assert status_rank(target) > status_rank(current)


class TestDriverSteps:
    def test_next_driver_event_sequence(self):
        assert next_driver_event(S.DISPATCHED) == E.START_NAVIGATION
        assert next_driver_event(S.EN_ROUTE) == E.ARRIVE_PICKUP
        assert next_driver_event(S.ARRIVED_PICKUP) == E.START_TRANSPORT
        assert next_driver_event(S.TRANSPORTING) == E.REACH_HOSPITAL
        assert next_driver_event(S.ARRIVED) is None

    def test_broadcasting_statuses(self):
        assert should_broadcast(S.DISPATCHED)
        assert should_broadcast(S.EN_ROUTE)
        assert should_broadcast(S.TRANSPORTING)
        assert not should_broadcast(S.PENDING)
        assert not should_broadcast(S.ARRIVED)
        assert not should_broadcast(S.ADMITTED)
