import logging

from fastapi import APIRouter, Depends, HTTPException

from resq.models.emergency import EmergencyCreate
from resq.models.profile import (
    MedicalProfile,
    MedicalProfileUpsert,
    OtpRequest,
    SavedLocation,
    UserCreate,
    UserProfile,
    VerificationStatus,
)
from resq.services.app_state import AppState, get_state
from resq.services.medical_profile import get_profile, upsert_profile
from resq.services.notifications import send_otp
from resq.services.users import add_saved_location, create_user, get_user, update_verification

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["patients"])


@router.post("/users", response_model=UserProfile)
async def register_user(body: UserCreate):
    return await create_user(body)


@router.get("/users/{user_id}", response_model=UserProfile)
async def read_user(user_id: str):
    try:
        return await get_user(user_id)
    except ValueError:
        raise HTTPException(status_code=404, detail="User not found") from None


@router.post("/users/{user_id}/locations", response_model=UserProfile)
async def save_location(user_id: str, body: SavedLocation):
    """Save a home, work or frequent place for the user."""
    try:
        return await add_saved_location(user_id, body)
    except ValueError:
        raise HTTPException(status_code=404, detail="User not found") from None


@router.put("/users/{user_id}/verification", response_model=UserProfile)
async def set_verification(user_id: str, body: VerificationStatus):
    try:
        return await update_verification(user_id, body)
    except ValueError:
        raise HTTPException(status_code=404, detail="User not found") from None


@router.put("/medical-profiles", response_model=MedicalProfile)
async def save_medical_profile(body: MedicalProfileUpsert):
    return await upsert_profile(body)


@router.get("/medical-profiles/{identifier}", response_model=MedicalProfile)
async def read_medical_profile(identifier: str):
    try:
        return await get_profile(identifier)
    except ValueError:
        raise HTTPException(status_code=404, detail="Medical profile not found") from None


@router.post("/otp/send")
async def request_otp(body: OtpRequest):
    """Send a one-time password by SMS. Failures come back as ``success: false``."""
    return await send_otp(body.phone)


@router.post("/sos/{key}")
async def arm_sos(key: str, body: EmergencyCreate, state: AppState = Depends(get_state)):
    """Arm the SOS countdown; the emergency is raised when it runs out."""
    seconds = state.coordinator.start_sos(key, body)
    return {"armed": True, "countdown": seconds}


@router.post("/sos/{key}/cancel")
async def cancel_sos(key: str, state: AppState = Depends(get_state)):
    return {"cancelled": state.coordinator.cancel_sos(key)}


@router.get("/sos/{key}")
async def sos_status(key: str, state: AppState = Depends(get_state)):
    coordinator = state.coordinator
    result = coordinator.sos_results.get(key)
    return {
        "active": coordinator.sos.gate(key).active,
        "remaining": coordinator.sos.remaining(key),
        "record_id": result.record_id if result and result.ok else None,
        "error": result.error if result and not result.ok else None,
    }
