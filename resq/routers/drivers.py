import logging

from fastapi import APIRouter, Depends, Query

from resq.models.driver import DriverAdvance, DriverLocationUpdate, DriverSession
from resq.models.emergency import TransitionResult
from resq.models.hospital import HospitalCandidate, HospitalSelection
from resq.routers.results import raise_for_result
from resq.services.app_state import AppState, get_state
from resq.services.geo import PositionFix

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/drivers", tags=["drivers"])


@router.get("/{driver_id}", response_model=DriverSession)
async def get_session(driver_id: str, state: AppState = Depends(get_state)):
    return state.drivers.get(driver_id)


@router.post("/{driver_id}/online", response_model=DriverSession)
async def go_online(driver_id: str, state: AppState = Depends(get_state)):
    return state.drivers.go_online(driver_id)


@router.post("/{driver_id}/offline", response_model=DriverSession)
async def go_offline(driver_id: str, state: AppState = Depends(get_state)):
    return state.drivers.go_offline(driver_id)


@router.post("/{driver_id}/accept/{record_id}", response_model=TransitionResult)
async def accept(driver_id: str, record_id: str, state: AppState = Depends(get_state)):
    """Accept an incoming emergency. Only one driver can win a given emergency."""
    return raise_for_result(await state.coordinator.accept(driver_id, record_id))


@router.post("/{driver_id}/reject/{record_id}", response_model=DriverSession)
async def reject(driver_id: str, record_id: str, state: AppState = Depends(get_state)):
    return state.coordinator.reject(driver_id, record_id)


@router.post("/{driver_id}/location")
async def update_location(driver_id: str, body: DriverLocationUpdate, state: AppState = Depends(get_state)):
    """Live ambulance position; broadcast to the trip at most once per driver window."""
    fix = PositionFix(lat=body.lat, lng=body.lng, accuracy=body.accuracy)
    broadcasting = await state.coordinator.push_driver_location(driver_id, fix)
    return {"accepted": broadcasting}


@router.get("/{driver_id}/hospitals", response_model=list[HospitalCandidate])
async def hospital_candidates(
    driver_id: str,
    lat: float | None = Query(None, ge=-90.0, le=90.0),
    lng: float | None = Query(None, ge=-180.0, le=180.0),
    state: AppState = Depends(get_state),
):
    """Nearby hospitals ranked by distance and ETA from the ambulance."""
    return await state.coordinator.hospital_candidates(driver_id, lat, lng)


@router.post("/{driver_id}/hospital", response_model=TransitionResult)
async def select_hospital(driver_id: str, body: HospitalSelection, state: AppState = Depends(get_state)):
    """Confirm the destination hospital and start transport."""
    origin = (body.lat, body.lng) if body.lat is not None and body.lng is not None else None
    result = await state.coordinator.select_hospital(driver_id, body.record_id, body.hospital_id, origin)
    return raise_for_result(result)


@router.post("/{driver_id}/advance", response_model=TransitionResult)
async def advance(driver_id: str, body: DriverAdvance, state: AppState = Depends(get_state)):
    """Move the active trip one step forward."""
    return raise_for_result(await state.coordinator.advance(driver_id, body.expected_status))
