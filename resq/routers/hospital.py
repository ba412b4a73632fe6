import logging

from fastapi import APIRouter, Depends, HTTPException

from resq.models.emergency import EmergencyRecord, EmergencyStatus, TransitionResult
from resq.models.hospital import AdmissionRequest, Hospital, HospitalStats
from resq.routers.results import raise_for_result
from resq.services.app_state import AppState, get_state
from resq.services.errors import StoreError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/hospital", tags=["hospital"])


@router.get("/catalogue", response_model=list[Hospital])
async def list_hospitals(state: AppState = Depends(get_state)):
    return sorted(state.advisor.hospitals.values(), key=lambda h: h.name)


@router.get("/{hospital_id}/stats", response_model=HospitalStats)
async def hospital_stats(hospital_id: str, state: AppState = Depends(get_state)):
    try:
        stats = await state.coordinator.hospital_stats(hospital_id)
    except StoreError as e:
        raise HTTPException(status_code=503, detail=str(e)) from None
    if stats is None:
        raise HTTPException(status_code=404, detail="Hospital not found")
    return stats


@router.get("/{hospital_id}/emergencies", response_model=list[EmergencyRecord])
async def list_assigned(hospital_id: str, state: AppState = Depends(get_state)):
    """Emergencies this hospital has claimed or been chosen for, newest first."""
    try:
        return await state.store.select({"assigned_hospital_id": hospital_id})
    except StoreError as e:
        raise HTTPException(status_code=503, detail=str(e)) from None


@router.get("/{hospital_id}/incoming", response_model=list[EmergencyRecord])
async def list_incoming(hospital_id: str, state: AppState = Depends(get_state)):
    """Pending emergencies nobody has claimed yet."""
    try:
        return await state.store.select({"status": EmergencyStatus.PENDING})
    except StoreError as e:
        raise HTTPException(status_code=503, detail=str(e)) from None


@router.post("/{hospital_id}/emergencies/{record_id}/assign", response_model=TransitionResult)
async def assign(hospital_id: str, record_id: str, state: AppState = Depends(get_state)):
    """Claim a pending emergency for this hospital."""
    return raise_for_result(await state.coordinator.assign_hospital(hospital_id, record_id))


@router.post("/{hospital_id}/emergencies/{record_id}/arrival", response_model=TransitionResult)
async def confirm_arrival(hospital_id: str, record_id: str, state: AppState = Depends(get_state)):
    return raise_for_result(await state.coordinator.confirm_arrival(hospital_id, record_id))


@router.post("/{hospital_id}/emergencies/{record_id}/admission", response_model=TransitionResult)
async def record_admission(
    hospital_id: str,
    record_id: str,
    body: AdmissionRequest,
    state: AppState = Depends(get_state),
):
    """Close the emergency as admitted, referred or stabilized."""
    result = await state.coordinator.record_outcome(hospital_id, record_id, body.outcome)
    return raise_for_result(result)
