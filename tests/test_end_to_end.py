"""Full dispatch lifecycle across the patient, hospital and driver roles."""

import asyncio

import pytest

from resq.models.emergency import EmergencyCreate, EmergencyStatus, Location
from resq.services.errors import TerminalRecord
from resq.services.geo import PositionFix

S = EmergencyStatus


async def _next(queue: asyncio.Queue, kind: str | None = None) -> dict:
    """Next message from a view, optionally skipping until one of ``kind`` arrives."""
    while True:
        message = await asyncio.wait_for(queue.get(), timeout=1)
        if kind is None or message["type"] == kind:
            return message


async def test_emergency_lifecycle(state):
    coordinator = state.coordinator

    # Hospital and driver dashboards are watching before the patient raises the alarm
    hospital_view = await coordinator.hospital_view("hosp-001")
    incoming_view = await coordinator.incoming_view()
    hospital_q = hospital_view.listen()
    incoming_q = incoming_view.listen()

    created = await coordinator.create_emergency(EmergencyCreate(
        emergency_type="accident",
        patient_name="Ravi",
        patient_phone="+919800000009",
        location=Location(lat=19.076, lng=72.877, accuracy=12),
    ))
    assert created.ok
    record_id = created.record_id

    alert = await _next(incoming_q)
    assert alert["type"] == "new_emergency"
    assert alert["alert"] is True
    assert alert["record"]["id"] == record_id

    patient_view = await coordinator.record_view("patient", record_id)
    patient_q = patient_view.listen()

    # Hospital claims it
    result = await coordinator.assign_hospital("hosp-001", record_id)
    assert result.ok
    assert result.previous_status == S.PENDING
    assert result.status == S.HOSPITAL_ASSIGNED

    claimed = await _next(hospital_q)
    assert claimed["type"] == "new_emergency"
    assert claimed["alert"] is True
    assert (await _next(incoming_q))["type"] == "emergency_removed"
    assert (await _next(patient_q))["record"]["status"] == "hospital_assigned"

    # Driver accepts
    state.drivers.go_online("drv-7")
    result = await coordinator.accept("drv-7", record_id)
    assert result.ok
    assert result.status == S.DISPATCHED
    assert state.drivers.get("drv-7").trip.record_id == record_id

    # Live position is throttled into the record
    assert await coordinator.push_driver_location("drv-7", PositionFix(lat=19.070, lng=72.870))
    assert await coordinator.push_driver_location("drv-7", PositionFix(lat=19.072, lng=72.872))
    assert not await coordinator.push_driver_location("drv-7", PositionFix(lat=0.0, lng=0.0))
    await asyncio.sleep(0.2)
    record = await state.store.get(record_id)
    assert (record.driver_location.lat, record.driver_location.lng) == (19.072, 72.872)
    assert coordinator.broadcasters[("driver", record_id)].writes == 1

    # Driver steps
    result = await coordinator.advance("drv-7", expected_status="dispatched")
    assert result.status == S.EN_ROUTE
    result = await coordinator.advance("drv-7")
    assert result.status == S.ARRIVED_PICKUP
    assert result.record.arrived_pickup_at is not None

    # Destination is fixed by the hospital that claimed the emergency
    candidates = await coordinator.hospital_candidates("drv-7")
    assert candidates[0].id == "hosp-001"
    conflict = await coordinator.select_hospital("drv-7", record_id, "hosp-002")
    assert not conflict.ok
    assert conflict.error == "assignment_conflict"

    result = await coordinator.select_hospital("drv-7", record_id, "hosp-001")
    assert result.ok
    assert result.status == S.TRANSPORTING
    assert result.record.route.source == "straight_line"
    assert result.record.route.distance_meters > 0
    assert result.record.transport_started_at is not None

    result = await coordinator.advance("drv-7")
    assert result.status == S.ARRIVED
    assert state.drivers.get("drv-7").trip is None
    assert ("driver", record_id) not in coordinator.broadcasters

    # Hospital closes it
    result = await coordinator.record_outcome("hosp-001", record_id, "admitted")
    assert result.ok
    assert result.status == S.ADMITTED
    assert result.record.closed_at is not None

    closed = await _next(patient_q, "emergency_closed")
    assert closed["record"]["status"] == "admitted"
    assert (await _next(patient_q))["type"] == "subscription_closed"
    assert state.reflectors.get("patient", record_id) is None

    # Closed records take no further writes
    again = await coordinator.record_outcome("hosp-001", record_id, "referred")
    assert not again.ok
    assert again.error == "rejected"
    with pytest.raises(TerminalRecord):
        await state.store.update(record_id, {"driver_lat": 19.1, "driver_long": 72.9})
    late = await coordinator.push_patient_location(record_id, PositionFix(lat=19.08, lng=72.88))
    assert late.error == "terminal"


async def test_driver_accepts_unclaimed_emergency(state):
    """A driver may pick up a pending emergency; the hospital is chosen at pickup."""
    coordinator = state.coordinator
    created = await coordinator.create_emergency(EmergencyCreate(
        emergency_type="cardiac", location=Location(lat=19.076, lng=72.877)
    ))
    state.drivers.go_online("drv-1")
    assert (await coordinator.accept("drv-1", created.record_id)).status == S.DISPATCHED
    await coordinator.advance("drv-1")
    await coordinator.advance("drv-1")

    blocked = await coordinator.advance("drv-1")
    assert blocked.error == "hospital_required"

    result = await coordinator.select_hospital("drv-1", created.record_id, "hosp-003", origin=(19.076, 72.877))
    assert result.ok
    assert result.record.assigned_hospital_id == "hosp-003"

    listed = await state.store.select({"assigned_hospital_id": "hosp-003"})
    assert [r.id for r in listed] == [created.record_id]


async def test_wrong_driver_cannot_advance_foreign_trip(state):
    coordinator = state.coordinator
    created = await coordinator.create_emergency(EmergencyCreate(location=Location(lat=19.076, lng=72.877)))
    state.drivers.go_online("drv-1")
    await coordinator.accept("drv-1", created.record_id)

    result = await coordinator.apply_event(created.record_id, "start_navigation", "driver", actor_id="drv-2")
    assert not result.ok
    assert result.error == "not_assigned"

    state.drivers.go_online("drv-2")
    busy = await coordinator.accept("drv-2", created.record_id)
    assert not busy.ok


async def test_alert_timeout_rejects_automatically(state):
    coordinator = state.coordinator
    created = await coordinator.create_emergency(EmergencyCreate(location=Location(lat=19.076, lng=72.877)))
    state.drivers.go_online("drv-1")
    expired = []

    async def on_timeout(driver_id, record_id):
        expired.append((driver_id, record_id))

    assert coordinator.offer("drv-1", created.record_id, on_timeout=on_timeout)
    await state.drivers.alerts.gate("drv-1").wait()
    await asyncio.sleep(0.05)
    assert expired == [("drv-1", created.record_id)]
    assert state.drivers.has_rejected("drv-1", created.record_id)
    assert state.drivers.get("drv-1").incoming_record_id is None
    # A rejected emergency is not offered to the same driver again
    assert not coordinator.offer("drv-1", created.record_id)
    assert (await state.store.get(created.record_id)).status == S.PENDING


async def test_hospital_backfill(state):
    """Recent claims show up when a dashboard connects after the fact."""
    coordinator = state.coordinator
    ids = []
    for _ in range(4):
        created = await coordinator.create_emergency(EmergencyCreate(location=Location(lat=19.076, lng=72.877)))
        await coordinator.assign_hospital("hosp-002", created.record_id)
        ids.append(created.record_id)

    view = await coordinator.hospital_view("hosp-002")
    assert len(view.items()) == 3
    assert set(view.tracked) <= set(ids)


async def test_driver_cannot_accept_after_alert_timeout(state):
    coordinator = state.coordinator
    created = await coordinator.create_emergency(EmergencyCreate(location=Location(lat=19.076, lng=72.877)))
    state.drivers.go_online("drv-1")
    assert coordinator.offer("drv-1", created.record_id)
    await state.drivers.alerts.gate("drv-1").wait()
    await asyncio.sleep(0.05)

    late = await coordinator.accept("drv-1", created.record_id)
    assert not late.ok
    assert late.error == "alert_rejected"
    assert (await state.store.get(created.record_id)).status == S.PENDING
    assert state.drivers.get("drv-1").trip is None

    # Another driver can still take it
    state.drivers.go_online("drv-2")
    assert (await coordinator.accept("drv-2", created.record_id)).status == S.DISPATCHED


async def test_driver_cannot_accept_after_reject(state):
    coordinator = state.coordinator
    created = await coordinator.create_emergency(EmergencyCreate(location=Location(lat=19.076, lng=72.877)))
    state.drivers.go_online("drv-1")
    assert coordinator.offer("drv-1", created.record_id)
    coordinator.reject("drv-1", created.record_id)

    result = await coordinator.accept("drv-1", created.record_id)
    assert result.error == "alert_rejected"
    raw = await coordinator.apply_event(created.record_id, "accept", "driver", actor_id="drv-1")
    assert raw.error == "alert_rejected"
    assert (await state.store.get(created.record_id)).assigned_driver_id is None


async def test_accept_without_offer(state):
    """A driver may take a pending emergency straight from the incoming list."""
    coordinator = state.coordinator
    created = await coordinator.create_emergency(EmergencyCreate(location=Location(lat=19.076, lng=72.877)))
    state.drivers.go_online("drv-1")
    assert state.drivers.get("drv-1").incoming_record_id is None
    assert (await coordinator.accept("drv-1", created.record_id)).ok


async def test_assigned_record_requires_actor(state):
    coordinator = state.coordinator
    created = await coordinator.create_emergency(EmergencyCreate(location=Location(lat=19.076, lng=72.877)))
    await coordinator.assign_hospital("hosp-001", created.record_id)
    state.drivers.go_online("drv-1")
    await coordinator.accept("drv-1", created.record_id)

    anonymous = await coordinator.apply_event(created.record_id, "start_navigation", "driver")
    assert not anonymous.ok
    assert anonymous.error == "actor_required"
    assert anonymous.previous_status == S.DISPATCHED

    record = await state.store.get(created.record_id)
    assert record.status == S.DISPATCHED

    result = await coordinator.apply_event(created.record_id, "start_navigation", "driver", actor_id="drv-1")
    assert result.status == S.EN_ROUTE


async def test_confirming_hospital_twice_advances_once(state):
    coordinator = state.coordinator
    created = await coordinator.create_emergency(EmergencyCreate(location=Location(lat=19.076, lng=72.877)))
    record_id = created.record_id
    assert (await coordinator.assign_hospital("hosp-001", record_id)).ok
    again = await coordinator.assign_hospital("hosp-001", record_id)
    assert not again.ok
    assert (await state.store.get(record_id)).status == S.HOSPITAL_ASSIGNED

    state.drivers.go_online("drv-1")
    await coordinator.accept("drv-1", record_id)
    await coordinator.advance("drv-1")
    await coordinator.advance("drv-1")

    first = await coordinator.select_hospital("drv-1", record_id, "hosp-001")
    assert first.ok
    assert first.status == S.TRANSPORTING

    second = await coordinator.select_hospital("drv-1", record_id, "hosp-001")
    assert not second.ok
    assert second.previous_status == S.TRANSPORTING

    record = await state.store.get(record_id)
    assert record.status == S.TRANSPORTING
    assert record.route == first.record.route
    assert record.transport_started_at == first.record.transport_started_at
