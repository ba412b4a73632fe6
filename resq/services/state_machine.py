"""Dispatch lifecycle state machine.

The emergency record moves forward through a fixed sequence of statuses.
Each transition is keyed by (current status, event) and may only be fired
by one role. Hospitals and drivers advance the record; patients only create
it.

    pending -> hospital_assigned -> dispatched -> en_route -> arrived_pickup
            -> transporting -> arrived -> admitted | referred | stabilized

A driver may accept straight from ``pending`` when no hospital has claimed
the emergency yet.
"""

import logging

from resq.models.emergency import (
    TERMINAL_STATUSES,
    DispatchEvent,
    EmergencyStatus,
    Role,
    parse_status,
)
from resq.services.errors import TransitionRejected

logger = logging.getLogger(__name__)

S = EmergencyStatus
E = DispatchEvent

TRANSITIONS: dict[tuple[EmergencyStatus, DispatchEvent], tuple[Role, EmergencyStatus]] = {
    (S.PENDING, E.ASSIGN_HOSPITAL): (Role.HOSPITAL, S.HOSPITAL_ASSIGNED),
    (S.PENDING, E.ACCEPT): (Role.DRIVER, S.DISPATCHED),
    (S.HOSPITAL_ASSIGNED, E.ACCEPT): (Role.DRIVER, S.DISPATCHED),
    (S.DISPATCHED, E.START_NAVIGATION): (Role.DRIVER, S.EN_ROUTE),
    (S.EN_ROUTE, E.ARRIVE_PICKUP): (Role.DRIVER, S.ARRIVED_PICKUP),
    (S.ARRIVED_PICKUP, E.START_TRANSPORT): (Role.DRIVER, S.TRANSPORTING),
    (S.TRANSPORTING, E.REACH_HOSPITAL): (Role.DRIVER, S.ARRIVED),
    (S.TRANSPORTING, E.CONFIRM_ARRIVAL): (Role.HOSPITAL, S.ARRIVED),
    (S.ARRIVED, E.ADMIT): (Role.HOSPITAL, S.ADMITTED),
    (S.ARRIVED, E.REFER): (Role.HOSPITAL, S.REFERRED),
    (S.ARRIVED, E.STABILIZE): (Role.HOSPITAL, S.STABILIZED),
}

# Statuses in which the driver's position is broadcast to the other roles
BROADCASTING_STATUSES = frozenset({
    S.DISPATCHED,
    S.EN_ROUTE,
    S.ARRIVED_PICKUP,
    S.TRANSPORTING,
})

ADMISSION_EVENTS = {
    "admitted": E.ADMIT,
    "referred": E.REFER,
    "stabilized": E.STABILIZE,
}


def transition(current: EmergencyStatus | str, event: DispatchEvent | str, role: Role | str) -> EmergencyStatus:
    """Return the status reached by firing ``event`` as ``role`` from ``current``.

    Raises TransitionRejected when the event is not defined for the current
    status or belongs to another role. Never mutates anything.
    """
    try:
        status = parse_status(current)
        event = DispatchEvent(event)
        role = Role(role)
    except ValueError:
        raise TransitionRejected(str(current), str(event), str(role)) from None

    rule = TRANSITIONS.get((status, event))
    if rule is None or rule[0] != role:
        logger.debug("Rejected %s by %s from %s", event.value, role.value, status.value)
        raise TransitionRejected(status.value, event.value, role.value)
    return rule[1]


def try_transition(current, event, role) -> EmergencyStatus | None:
    try:
        return transition(current, event, role)
    except TransitionRejected:
        return None


def allowed_events(current: EmergencyStatus | str, role: Role | str | None = None) -> list[DispatchEvent]:
    """Events that can be fired from ``current``, optionally limited to one role."""
    status = parse_status(current)
    role = Role(role) if role is not None else None
    return [
        event
        for (from_status, event), (owner, _) in TRANSITIONS.items()
        if from_status == status and (role is None or owner == role)
    ]


def next_driver_event(current: EmergencyStatus | str) -> DispatchEvent | None:
    """The single forward step a driver takes from ``current``, if any."""
    events = allowed_events(current, Role.DRIVER)
    return events[0] if events else None


def is_terminal(status: EmergencyStatus | str) -> bool:
    return parse_status(status) in TERMINAL_STATUSES


def should_broadcast(status: EmergencyStatus | str) -> bool:
    return parse_status(status) in BROADCASTING_STATUSES
