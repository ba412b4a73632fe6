"""Dispatch coordinator.

Runs every role's side of the emergency lifecycle against the shared record
store: the patient raising an emergency, the hospital claiming, receiving
and admitting it, the driver accepting, moving through pickup and transport.

Every status change is a compare-and-swap in the store. Nothing here raises
past the coordinator: each operation resolves to a ``TransitionResult`` that
says whether it landed and, if not, why and whether retrying makes sense.
Side effects follow a confirmed write only: hospital notification on
assignment, driver broadcasting while the ambulance is moving, and teardown
of broadcasters and subscriptions once the record is closed.
"""

import asyncio
import logging
import uuid
from datetime import UTC, datetime, timedelta

import aiosqlite

from resq.config import (
    BACKFILL_LIMIT,
    BACKFILL_WINDOW_SECONDS,
    DRIVER_BROADCAST_SECONDS,
    PATIENT_BROADCAST_SECONDS,
    SOS_COUNTDOWN_SECONDS,
)
from resq.models.emergency import (
    DispatchEvent,
    EmergencyCreate,
    EmergencyRecord,
    EmergencyStatus,
    EmergencyType,
    Location,
    PatientSnapshot,
    Role,
    TransitionResult,
    parse_status,
)
from resq.models.hospital import Hospital, HospitalCandidate, HospitalStats
from resq.services.broadcaster import LocationBroadcaster
from resq.services.countdown import CountdownRegistry
from resq.services.driver_session import DriverSessionRegistry
from resq.services.errors import (
    AssignmentConflict,
    DispatchError,
    NotPermitted,
    StaleStatus,
    TransitionRejected,
)
from resq.services.geo import (
    LocationError,
    LocationErrorCode,
    PositionFix,
    acquire_position,
    is_valid_fix,
)
from resq.services.hospital_advisor import HospitalAdvisor
from resq.services.maps import reverse_geocode
from resq.services.medical_profile import find_profile_for_user
from resq.services.notifications import send_sms, sos_message
from resq.services.record_store import RecordStore, utcnow
from resq.services.reflector import RealtimeReflector, ReflectorRegistry
from resq.services.state_machine import (
    ADMISSION_EVENTS,
    is_terminal,
    next_driver_event,
    should_broadcast,
    transition,
)
from resq.services.users import get_user, last_known_location, update_current_location

logger = logging.getLogger(__name__)

S = EmergencyStatus
E = DispatchEvent


def failure(record_id: str, error: DispatchError, previous: EmergencyStatus | None = None) -> TransitionResult:
    status = None
    if isinstance(error, StaleStatus):
        try:
            status = parse_status(error.actual)
        except ValueError:
            status = None
    return TransitionResult(
        ok=False,
        record_id=record_id,
        status=status,
        previous_status=previous,
        error=error.code,
        reason=str(error),
        retryable=error.retryable,
    )


class DispatchCoordinator:
    def __init__(
        self,
        store: RecordStore,
        advisor: HospitalAdvisor,
        drivers: DriverSessionRegistry,
        reflectors: ReflectorRegistry,
        driver_window: float = DRIVER_BROADCAST_SECONDS,
        patient_window: float = PATIENT_BROADCAST_SECONDS,
        sos_seconds: int = SOS_COUNTDOWN_SECONDS,
        countdown_tick: float = 1.0,
    ) -> None:
        self.store = store
        self.advisor = advisor
        self.drivers = drivers
        self.reflectors = reflectors
        self.driver_window = driver_window
        self.patient_window = patient_window
        self.sos = CountdownRegistry(sos_seconds, tick=countdown_tick, name="sos")
        self.sos_results: dict[str, TransitionResult] = {}
        self.broadcasters: dict[tuple[str, str], LocationBroadcaster] = {}
        self._background: set[asyncio.Task] = set()

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    # ------------------------------------------------------------------
    # Patient
    # ------------------------------------------------------------------

    async def _patient_snapshot(self, body: EmergencyCreate) -> tuple[PatientSnapshot, str | None]:
        name, phone, family_phone = body.patient_name, body.patient_phone, None
        profile = None
        if body.user_id:
            try:
                user = await get_user(body.user_id)
                name = name or user.name
                phone = phone or user.phone
                family_phone = user.family_phone
            except ValueError:
                logger.warning("Emergency raised by unknown user %s", body.user_id)
            except aiosqlite.Error as e:
                logger.error("Could not load user %s: %s", body.user_id, e)
            try:
                profile = await find_profile_for_user(body.user_id)
            except aiosqlite.Error as e:
                logger.error("Could not load medical profile for %s: %s", body.user_id, e)

        snapshot = PatientSnapshot(name=name or "Unknown Patient", phone=phone or "", user_id=body.user_id)
        if profile is not None:
            snapshot.medical_profile_id = profile.identifier
            snapshot.age = profile.age
            snapshot.blood_group = profile.blood_group
            snapshot.allergies = profile.allergies
            snapshot.chronic_conditions = profile.chronic_conditions
            snapshot.critical_info = profile.important_info
        return snapshot, family_phone

    async def _resolve_location(self, body: EmergencyCreate) -> Location:
        """Use the reported fix, else the user's last-known position, else the default."""

        async def reported() -> PositionFix:
            if body.location_error:
                try:
                    code = LocationErrorCode(body.location_error)
                except ValueError:
                    code = LocationErrorCode.UNAVAILABLE
                raise LocationError(code)
            if body.location is None:
                raise LocationError(LocationErrorCode.UNAVAILABLE)
            return PositionFix(lat=body.location.lat, lng=body.location.lng, accuracy=body.location.accuracy)

        last_known = None
        if body.user_id:
            try:
                last = await last_known_location(body.user_id)
            except aiosqlite.Error as e:
                logger.error("Could not read last location for %s: %s", body.user_id, e)
                last = None
            if last is not None:
                last_known = PositionFix(lat=last[0], lng=last[1])

        resolved = await acquire_position(reported(), last_known=last_known)
        if resolved.source == "gps":
            return body.location
        logger.info("Emergency location from %s (%s)", resolved.source, resolved.error)
        return Location(lat=resolved.fix.lat, lng=resolved.fix.lng)

    async def create_emergency(self, body: EmergencyCreate) -> TransitionResult:
        """Raise a pending emergency. The family SMS and address lookup run afterwards."""
        record_id = str(uuid.uuid4())
        patient, family_phone = await self._patient_snapshot(body)
        location = await self._resolve_location(body)
        try:
            record = await self.store.insert(
                EmergencyType(body.emergency_type), patient, location, record_id=record_id
            )
        except DispatchError as e:
            logger.error("Emergency could not be raised: %s", e)
            return failure(record_id, e)

        self._spawn(self._after_create(record, family_phone))
        return TransitionResult(ok=True, record_id=record.id, status=record.status, record=record)

    async def _after_create(self, record: EmergencyRecord, family_phone: str | None) -> None:
        try:
            address = record.location.address
            if not address:
                address = await reverse_geocode(record.location.lat, record.location.lng)
                if address:
                    await self.store.update(record.id, {"patient_address": address})
            if record.patient.user_id:
                await update_current_location(
                    record.patient.user_id, record.location.lat, record.location.lng, address
                )
            if family_phone:
                await send_sms(
                    family_phone,
                    sos_message(record.emergency_type.value, record.location.lat, record.location.lng, address),
                )
        except Exception as e:
            logger.error("Post-create steps failed for %s: %s", record.id, e)

    def start_sos(self, key: str, body: EmergencyCreate) -> int:
        """Arm the SOS window; the emergency is raised unless cancelled in time."""
        self.sos_results.pop(key, None)

        async def fire():
            self.sos_results[key] = await self.create_emergency(body)

        self.sos.start(key, fire)
        logger.info("SOS armed for %s (%ds)", key, self.sos.duration)
        return self.sos.duration

    def cancel_sos(self, key: str) -> bool:
        cancelled = self.sos.cancel(key)
        if cancelled:
            logger.info("SOS cancelled for %s", key)
        return cancelled

    async def push_patient_location(self, record_id: str, fix: PositionFix) -> TransitionResult:
        """Feed the patient's live position into the throttled patient broadcaster."""
        try:
            record = await self.store.get(record_id)
        except DispatchError as e:
            return failure(record_id, e)
        if record.is_terminal:
            return TransitionResult(
                ok=False, record_id=record_id, status=record.status, error="terminal",
                reason=f"Emergency {record_id} is closed ({record.status.value})",
            )

        key = ("patient", record_id)
        broadcaster = self.broadcasters.get(key)
        if broadcaster is None or broadcaster.stopped:

            async def write(sample: PositionFix):
                await self.store.update(record_id, {
                    "patient_lat": sample.lat,
                    "patient_long": sample.lng,
                    "patient_accuracy": sample.accuracy,
                    "patient_location_at": utcnow(),
                })

            broadcaster = LocationBroadcaster(write, self.patient_window, name=f"patient:{record_id}")
            self.broadcasters[key] = broadcaster

        accepted = broadcaster.push(fix)
        return TransitionResult(
            ok=accepted, record_id=record_id, status=record.status,
            error=None if accepted else "invalid_fix",
        )

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _check_actor(self, record: EmergencyRecord, role: Role, actor_id: str | None) -> None:
        owner = {Role.HOSPITAL: record.assigned_hospital_id, Role.DRIVER: record.assigned_driver_id}.get(role)
        if not actor_id:
            if owner:
                raise NotPermitted(f"Emergency {record.id} is assigned; a {role.value} id is required", "actor_required")
            return
        if owner and actor_id != owner:
            raise NotPermitted(f"Emergency {record.id} belongs to another {role.value}", "not_assigned")

    def _driver_origin(self, record: EmergencyRecord) -> tuple[float, float]:
        """Ambulance position if known, otherwise the pickup point."""
        if record.assigned_driver_id:
            session = self.drivers.get(record.assigned_driver_id)
            if session.last_location is not None:
                return session.last_location.lat, session.last_location.lng
        if record.driver_location is not None:
            return record.driver_location.lat, record.driver_location.lng
        return record.location.lat, record.location.lng

    async def _transport_fields(
        self,
        record: EmergencyRecord,
        hospital: Hospital,
        origin: tuple[float, float] | None = None,
    ) -> dict:
        route = await self.advisor.route_to(origin or self._driver_origin(record), hospital)
        return {
            "assigned_hospital_id": hospital.id,
            "transport_started_at": utcnow(),
            "route_polyline": route.polyline,
            "route_distance_meters": route.distance_meters,
            "route_duration_seconds": route.duration_seconds,
            "route_source": route.source,
        }

    async def _event_fields(
        self, record: EmergencyRecord, event: DispatchEvent, actor_id: str | None
    ) -> dict:
        now = utcnow()
        if event == E.ASSIGN_HOSPITAL:
            if not actor_id:
                raise NotPermitted("A hospital id is required to claim an emergency", "actor_required")
            if self.advisor.hospitals and self.advisor.get(actor_id) is None:
                raise NotPermitted(f"Unknown hospital {actor_id}", "unknown_hospital")
            return {"assigned_hospital_id": actor_id}
        if event == E.ACCEPT:
            if not actor_id:
                raise NotPermitted("A driver id is required to accept an emergency", "actor_required")
            if self.drivers.has_rejected(actor_id, record.id):
                raise NotPermitted(f"Driver {actor_id} already turned down emergency {record.id}", "alert_rejected")
            return {"assigned_driver_id": actor_id, "accepted_at": now}
        if event == E.ARRIVE_PICKUP:
            return {"arrived_pickup_at": now}
        if event == E.START_TRANSPORT:
            hospital = self.advisor.get(record.assigned_hospital_id) if record.assigned_hospital_id else None
            if hospital is None:
                raise NotPermitted("Select a destination hospital first", "hospital_required")
            return await self._transport_fields(record, hospital)
        if event in (E.REACH_HOSPITAL, E.CONFIRM_ARRIVAL):
            return {"arrived_at": now}
        if event in (E.ADMIT, E.REFER, E.STABILIZE):
            return {"closed_at": now}
        return {}

    async def apply_event(
        self,
        record_id: str,
        event: DispatchEvent | str,
        role: Role | str,
        actor_id: str | None = None,
        expected_status: EmergencyStatus | str | None = None,
    ) -> TransitionResult:
        """Fire one lifecycle event as ``role`` and write the result as a compare-and-swap."""
        record = None
        try:
            try:
                event = DispatchEvent(event)
                role = Role(role)
                expected = parse_status(expected_status) if expected_status is not None else None
            except ValueError:
                raise TransitionRejected(str(expected_status or "?"), str(event), str(role)) from None

            record = await self.store.get(record_id)
            if expected is not None and record.status != expected:
                raise StaleStatus(record_id, expected.value, record.status.value)
            next_status = transition(record.status, event, role)
            self._check_actor(record, role, actor_id)
            fields = await self._event_fields(record, event, actor_id)
            fields["status"] = next_status
            updated = await self.store.update(record_id, fields, expected_status=record.status)
        except DispatchError as e:
            logger.warning("Emergency %s: %s", record_id, e)
            return failure(record_id, e, record.status if record else None)

        logger.info(
            "Emergency %s: %s -> %s (%s by %s)",
            record_id, record.status.value, updated.status.value, event.value, actor_id or role.value,
        )
        await self._after_transition(record, updated)
        return TransitionResult(
            ok=True,
            record_id=record_id,
            status=updated.status,
            previous_status=record.status,
            record=updated,
        )

    async def _after_transition(self, before: EmergencyRecord, record: EmergencyRecord) -> None:
        """Side effects of a confirmed transition; failures here never undo the write."""
        try:
            if record.assigned_hospital_id and record.assigned_hospital_id != before.assigned_hospital_id:
                self._notify_hospital(record)

            driver_id = record.assigned_driver_id
            if driver_id:
                if record.status == S.DISPATCHED and before.status != S.DISPATCHED:
                    self.drivers.start_trip(driver_id, record.id)
                self.drivers.record_phase(driver_id, record.status)

            if should_broadcast(record.status):
                self._start_driver_broadcast(record)
            else:
                await self._stop_broadcast("driver", record.id)

            if record.status == S.ARRIVED and driver_id:
                self.drivers.end_trip(driver_id)
            if is_terminal(record.status):
                await self._close_record(record)
        except Exception as e:
            logger.error("Side effects failed for %s: %s", record.id, e)

    def _notify_hospital(self, record: EmergencyRecord) -> None:
        hospital = self.advisor.get(record.assigned_hospital_id)
        name = hospital.name if hospital else record.assigned_hospital_id
        # The hospital's own view picks the assignment up from the change feed
        logger.info("Hospital %s notified of emergency %s", name, record.id)
        if record.patient.phone:
            self._spawn(send_sms(
                record.patient.phone,
                f"{name} has been notified of your emergency. Help is on the way.",
            ))

    def _start_driver_broadcast(self, record: EmergencyRecord) -> LocationBroadcaster:
        key = ("driver", record.id)
        broadcaster = self.broadcasters.get(key)
        if broadcaster is not None and not broadcaster.stopped:
            return broadcaster

        async def write(sample: PositionFix):
            await self.store.update(record.id, {
                "driver_lat": sample.lat,
                "driver_long": sample.lng,
                "driver_location_at": utcnow(),
            })

        broadcaster = LocationBroadcaster(write, self.driver_window, name=f"driver:{record.assigned_driver_id}")
        self.broadcasters[key] = broadcaster
        logger.info("Broadcasting driver %s location for %s", record.assigned_driver_id, record.id)

        session = self.drivers.get(record.assigned_driver_id)
        if session.last_location is not None:
            broadcaster.push(PositionFix(lat=session.last_location.lat, lng=session.last_location.lng))
        return broadcaster

    async def _stop_broadcast(self, role: str, record_id: str) -> None:
        broadcaster = self.broadcasters.pop((role, record_id), None)
        if broadcaster is not None:
            await broadcaster.stop()

    async def _close_record(self, record: EmergencyRecord) -> None:
        await self._stop_broadcast("driver", record.id)
        await self._stop_broadcast("patient", record.id)
        await self.reflectors.close_record(record.id)
        if record.assigned_driver_id:
            session = self.drivers.get(record.assigned_driver_id)
            if session.trip is not None and session.trip.record_id == record.id:
                self.drivers.end_trip(record.assigned_driver_id)
        logger.info("Emergency %s closed as %s", record.id, record.status.value)

    # ------------------------------------------------------------------
    # Hospital
    # ------------------------------------------------------------------

    async def assign_hospital(self, hospital_id: str, record_id: str) -> TransitionResult:
        return await self.apply_event(record_id, E.ASSIGN_HOSPITAL, Role.HOSPITAL, actor_id=hospital_id)

    async def confirm_arrival(self, hospital_id: str, record_id: str) -> TransitionResult:
        return await self.apply_event(record_id, E.CONFIRM_ARRIVAL, Role.HOSPITAL, actor_id=hospital_id)

    async def record_outcome(self, hospital_id: str, record_id: str, outcome: str) -> TransitionResult:
        event = ADMISSION_EVENTS.get(outcome)
        if event is None:
            return failure(record_id, NotPermitted(f"Unknown outcome {outcome}", "unknown_outcome"))
        return await self.apply_event(record_id, event, Role.HOSPITAL, actor_id=hospital_id)

    async def hospital_stats(self, hospital_id: str) -> HospitalStats | None:
        """Counters for the hospital dashboard; None for an unknown hospital."""
        hospital = self.advisor.get(hospital_id)
        if hospital is None:
            return None
        assigned = await self.store.select({"assigned_hospital_id": hospital_id})
        return HospitalStats(
            hospital_id=hospital_id,
            active_emergencies=sum(1 for r in assigned if not is_terminal(r.status)),
            beds=hospital.beds,
            drivers_online=len(self.drivers.online_drivers()),
        )

    # ------------------------------------------------------------------
    # Driver
    # ------------------------------------------------------------------

    def offer(self, driver_id: str, record_id: str, on_timeout=None) -> bool:
        return self.drivers.offer(driver_id, record_id, on_timeout=on_timeout)

    async def accept(self, driver_id: str, record_id: str) -> TransitionResult:
        session = self.drivers.get(driver_id)
        if not session.online:
            return failure(record_id, NotPermitted("Driver is offline", "driver_offline"))
        if session.trip is not None and session.trip.record_id != record_id:
            return failure(record_id, NotPermitted("Driver already has an active trip", "driver_busy"))

        result = await self.apply_event(record_id, E.ACCEPT, Role.DRIVER, actor_id=driver_id)
        if not result.ok and session.incoming_record_id == record_id:
            self.drivers.clear_offer(driver_id)
        return result

    def reject(self, driver_id: str, record_id: str):
        logger.info("Driver %s rejected emergency %s", driver_id, record_id)
        return self.drivers.reject(driver_id, record_id)

    async def push_driver_location(self, driver_id: str, fix: PositionFix) -> bool:
        """Record the driver's position and feed the trip broadcaster, if one is running."""
        if not is_valid_fix(fix):
            return False
        session = self.drivers.update_location(driver_id, fix.lat, fix.lng)
        if session.trip is None:
            return False
        broadcaster = self.broadcasters.get(("driver", session.trip.record_id))
        if broadcaster is None:
            return False
        return broadcaster.push(fix)

    async def hospital_candidates(
        self, driver_id: str, lat: float | None = None, lng: float | None = None
    ) -> list[HospitalCandidate]:
        origin = None
        if lat is not None and lng is not None and is_valid_fix(PositionFix(lat=lat, lng=lng)):
            origin = (lat, lng)

        session = self.drivers.get(driver_id)
        preferred = None
        if session.trip is not None:
            try:
                record = await self.store.get(session.trip.record_id)
                preferred = record.assigned_hospital_id
                origin = origin or self._driver_origin(record)
            except DispatchError as e:
                logger.warning("Could not read trip %s: %s", session.trip.record_id, e)
        if origin is None and session.last_location is not None:
            origin = (session.last_location.lat, session.last_location.lng)
        if origin is None:
            resolved = await acquire_position(_no_fix())
            origin = (resolved.fix.lat, resolved.fix.lng)
        return await self.advisor.candidates(origin, preferred_id=preferred)

    async def select_hospital(
        self,
        driver_id: str,
        record_id: str,
        hospital_id: str,
        origin: tuple[float, float] | None = None,
    ) -> TransitionResult:
        """Commit the destination: hospital, transporting status and route in one write."""
        record = None
        try:
            record = await self.store.get(record_id)
            if record.assigned_driver_id != driver_id:
                raise NotPermitted(f"Emergency {record_id} is not assigned to driver {driver_id}", "not_assigned")
            next_status = transition(record.status, E.START_TRANSPORT, Role.DRIVER)
            hospital = self.advisor.get(hospital_id)
            if hospital is None:
                raise NotPermitted(f"Unknown hospital {hospital_id}", "unknown_hospital")
            if record.assigned_hospital_id and record.assigned_hospital_id != hospital_id:
                raise AssignmentConflict(record_id, "assigned_hospital_id", record.assigned_hospital_id)

            fields = await self._transport_fields(record, hospital, origin)
            fields["status"] = next_status
            updated = await self.store.update(record_id, fields, expected_status=record.status)
        except DispatchError as e:
            logger.warning("Hospital selection for %s failed: %s", record_id, e)
            return failure(record_id, e, record.status if record else None)

        logger.info(
            "Emergency %s: driver %s heading to %s (%s, %s m)",
            record_id, driver_id, hospital_id, updated.route.source, updated.route.distance_meters,
        )
        await self._after_transition(record, updated)
        return TransitionResult(
            ok=True,
            record_id=record_id,
            status=updated.status,
            previous_status=record.status,
            record=updated,
        )

    async def advance(self, driver_id: str, expected_status: str | None = None) -> TransitionResult:
        """Take the driver's next step on the active trip."""
        session = self.drivers.get(driver_id)
        if session.trip is None:
            return failure("", NotPermitted("Driver has no active trip", "no_trip"))
        record_id = session.trip.record_id
        try:
            record = await self.store.get(record_id)
        except DispatchError as e:
            return failure(record_id, e)

        event = next_driver_event(record.status)
        if event is None:
            return failure(
                record_id,
                TransitionRejected(record.status.value, "advance", Role.DRIVER.value),
                record.status,
            )
        if event == E.START_TRANSPORT:
            if not record.assigned_hospital_id:
                return failure(
                    record_id, NotPermitted("Select a destination hospital first", "hospital_required"), record.status
                )
            if expected_status is not None and parse_status(expected_status) != record.status:
                return failure(record_id, StaleStatus(record_id, expected_status, record.status.value), record.status)
            return await self.select_hospital(driver_id, record_id, record.assigned_hospital_id)
        return await self.apply_event(
            record_id, event, Role.DRIVER, actor_id=driver_id, expected_status=expected_status
        )

    # ------------------------------------------------------------------
    # Realtime views
    # ------------------------------------------------------------------

    async def hospital_view(self, hospital_id: str) -> RealtimeReflector:
        """Emergencies assigned to one hospital, backfilled with its recent claims."""
        reflector = self.reflectors.get("hospital", hospital_id)
        if reflector is not None:
            return reflector
        reflector = self.reflectors.add("hospital", hospital_id, RealtimeReflector(
            self.store.bus,
            "hospital",
            {"assigned_hospital_id": hospital_id},
            admit_on=("INSERT", "UPDATE"),
            actionable=frozenset({S.HOSPITAL_ASSIGNED, S.TRANSPORTING}),
            name=f"hospital:{hospital_id}",
        ))
        since = (datetime.now(UTC) - timedelta(seconds=BACKFILL_WINDOW_SECONDS)).isoformat()
        try:
            rows = await self.store.select_rows(
                {"assigned_hospital_id": hospital_id, "status": S.HOSPITAL_ASSIGNED},
                since=since,
                limit=BACKFILL_LIMIT,
            )
            reflector.seed(rows)
        except DispatchError as e:
            reflector.degraded = True
            logger.error("Backfill for hospital %s failed: %s", hospital_id, e)
        return reflector

    async def incoming_view(self) -> RealtimeReflector:
        """Pending emergencies not yet picked up, shared by hospitals and drivers."""
        reflector = self.reflectors.get("incoming", S.PENDING.value)
        if reflector is not None:
            return reflector
        reflector = self.reflectors.add("incoming", S.PENDING.value, RealtimeReflector(
            self.store.bus,
            "incoming",
            {"status": S.PENDING},
            admit_on=("INSERT",),
            actionable=frozenset({S.PENDING}),
            name="incoming",
        ))
        since = (datetime.now(UTC) - timedelta(seconds=BACKFILL_WINDOW_SECONDS)).isoformat()
        try:
            reflector.seed(await self.store.select_rows({"status": S.PENDING}, since=since))
        except DispatchError as e:
            reflector.degraded = True
            logger.error("Backfill for incoming emergencies failed: %s", e)
        return reflector

    async def record_view(self, role: str, record_id: str) -> RealtimeReflector:
        """One record followed by one role (patient tracking, driver trip)."""
        reflector = self.reflectors.get(role, record_id)
        if reflector is not None:
            return reflector
        rows = await self.store.select_rows({"id": record_id})
        reflector = self.reflectors.add(role, record_id, RealtimeReflector(
            self.store.bus,
            role,
            {"id": record_id},
            admit_on=("INSERT", "UPDATE"),
            actionable=frozenset(),
            name=f"{role}:{record_id}",
        ))
        reflector.seed(rows)
        return reflector

    # ------------------------------------------------------------------

    async def shutdown(self) -> None:
        self.sos.cancel_all()
        self.drivers.shutdown()
        for role, record_id in list(self.broadcasters):
            await self._stop_broadcast(role, record_id)
        await self.reflectors.close_all()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)


async def _no_fix() -> PositionFix:
    raise LocationError(LocationErrorCode.UNAVAILABLE)
