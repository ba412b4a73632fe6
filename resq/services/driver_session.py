"""Ephemeral driver sessions.

Sessions live only as long as the process: online flag, the incoming alert
being offered, the accepted trip and a timestamp for each trip phase. Every
incoming alert runs on the driver's countdown gate; if the driver does not
answer in time the alert is rejected automatically.
"""

import logging
from collections.abc import Callable

from resq.config import ALERT_COUNTDOWN_SECONDS
from resq.models.driver import DriverSession, TripState
from resq.models.emergency import Coordinates, EmergencyStatus
from resq.services.countdown import CountdownRegistry
from resq.services.record_store import utcnow

logger = logging.getLogger(__name__)

PHASE_FIELDS = {
    EmergencyStatus.DISPATCHED: "accepted_at",
    EmergencyStatus.EN_ROUTE: "started_navigation_at",
    EmergencyStatus.ARRIVED_PICKUP: "arrived_pickup_at",
    EmergencyStatus.TRANSPORTING: "transport_started_at",
    EmergencyStatus.ARRIVED: "completed_at",
}


class DriverSessionRegistry:
    def __init__(self, alert_seconds: int = ALERT_COUNTDOWN_SECONDS, tick: float = 1.0) -> None:
        self._sessions: dict[str, DriverSession] = {}
        self._rejected: dict[str, set[str]] = {}
        self.alerts = CountdownRegistry(alert_seconds, tick=tick, name="alert")

    def get(self, driver_id: str) -> DriverSession:
        if driver_id not in self._sessions:
            self._sessions[driver_id] = DriverSession(driver_id=driver_id)
        return self._sessions[driver_id]

    def go_online(self, driver_id: str) -> DriverSession:
        session = self.get(driver_id)
        if not session.online:
            session.online = True
            session.went_online_at = utcnow()
            logger.info("Driver %s online", driver_id)
        return session

    def go_offline(self, driver_id: str) -> DriverSession:
        session = self.get(driver_id)
        self.clear_offer(driver_id)
        session.online = False
        logger.info("Driver %s offline", driver_id)
        return session

    def is_available(self, driver_id: str) -> bool:
        session = self.get(driver_id)
        return session.online and session.trip is None and session.incoming_record_id is None

    def offer(self, driver_id: str, record_id: str, on_timeout: Callable | None = None) -> bool:
        """Show an incoming alert with the accept/reject countdown running."""
        session = self.get(driver_id)
        if not self.is_available(driver_id) or record_id in self._rejected.get(driver_id, set()):
            return False
        session.incoming_record_id = record_id

        async def expire():
            if session.incoming_record_id == record_id:
                logger.info("Driver %s did not answer alert %s in time", driver_id, record_id)
                self.reject(driver_id, record_id)
                if on_timeout is not None:
                    await on_timeout(driver_id, record_id)

        self.alerts.start(driver_id, expire)
        logger.info("Alert %s offered to driver %s", record_id, driver_id)
        return True

    def clear_offer(self, driver_id: str) -> None:
        self.alerts.cancel(driver_id)
        self.get(driver_id).incoming_record_id = None

    def reject(self, driver_id: str, record_id: str) -> DriverSession:
        session = self.get(driver_id)
        if session.incoming_record_id == record_id:
            self.clear_offer(driver_id)
        self._rejected.setdefault(driver_id, set()).add(record_id)
        return session

    def has_rejected(self, driver_id: str, record_id: str) -> bool:
        return record_id in self._rejected.get(driver_id, set())

    def start_trip(self, driver_id: str, record_id: str) -> TripState:
        session = self.get(driver_id)
        self.clear_offer(driver_id)
        session.trip = TripState(
            record_id=record_id,
            status=EmergencyStatus.DISPATCHED,
            accepted_at=utcnow(),
        )
        return session.trip

    def record_phase(self, driver_id: str, status: EmergencyStatus) -> None:
        session = self.get(driver_id)
        if session.trip is None:
            return
        session.trip.status = status
        field = PHASE_FIELDS.get(status)
        if field and getattr(session.trip, field) is None:
            setattr(session.trip, field, utcnow())

    def end_trip(self, driver_id: str) -> TripState | None:
        session = self.get(driver_id)
        trip = session.trip
        session.trip = None
        if trip is not None:
            if trip.completed_at is None:
                trip.completed_at = utcnow()
            logger.info("Driver %s finished trip %s", driver_id, trip.record_id)
        return trip

    def update_location(self, driver_id: str, lat: float, lng: float) -> DriverSession:
        session = self.get(driver_id)
        session.last_location = Coordinates(lat=lat, lng=lng)
        return session

    def online_drivers(self) -> list[DriverSession]:
        return [s for s in self._sessions.values() if s.online]

    def shutdown(self) -> None:
        self.alerts.cancel_all()
