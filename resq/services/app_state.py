"""Application state container.

Everything that is shared across requests lives here and is created once per
application lifespan: the change bus, the record store, the driver sessions,
the reflector registry and the coordinator that ties them together. Routers
receive it through ``get_state`` rather than importing module globals.
"""

import logging
from dataclasses import dataclass

from fastapi import Request

from resq.config import (
    ALERT_COUNTDOWN_SECONDS,
    DRIVER_BROADCAST_SECONDS,
    PATIENT_BROADCAST_SECONDS,
    SOS_COUNTDOWN_SECONDS,
)
from resq.services.dispatch import DispatchCoordinator
from resq.services.driver_session import DriverSessionRegistry
from resq.services.event_bus import ChangeBus
from resq.services.hospital_advisor import HospitalAdvisor
from resq.services.record_store import RecordStore
from resq.services.reflector import ReflectorRegistry

logger = logging.getLogger(__name__)


@dataclass
class AppState:
    bus: ChangeBus
    store: RecordStore
    advisor: HospitalAdvisor
    drivers: DriverSessionRegistry
    reflectors: ReflectorRegistry
    coordinator: DispatchCoordinator

    async def close(self) -> None:
        await self.coordinator.shutdown()


def create_state(
    driver_window: float = DRIVER_BROADCAST_SECONDS,
    patient_window: float = PATIENT_BROADCAST_SECONDS,
    sos_seconds: int = SOS_COUNTDOWN_SECONDS,
    alert_seconds: int = ALERT_COUNTDOWN_SECONDS,
    countdown_tick: float = 1.0,
) -> AppState:
    bus = ChangeBus()
    store = RecordStore(bus)
    advisor = HospitalAdvisor()
    drivers = DriverSessionRegistry(alert_seconds=alert_seconds, tick=countdown_tick)
    reflectors = ReflectorRegistry()
    coordinator = DispatchCoordinator(
        store,
        advisor,
        drivers,
        reflectors,
        driver_window=driver_window,
        patient_window=patient_window,
        sos_seconds=sos_seconds,
        countdown_tick=countdown_tick,
    )
    return AppState(
        bus=bus,
        store=store,
        advisor=advisor,
        drivers=drivers,
        reflectors=reflectors,
        coordinator=coordinator,
    )


async def open_state(**overrides) -> AppState:
    """Build the container and load the hospital catalogue from the database."""
    state = create_state(**overrides)
    await state.advisor.load()
    return state


def get_state(request: Request) -> AppState:
    return request.app.state.resq
