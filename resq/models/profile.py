from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field, field_validator


class LocationKind(str, Enum):
    HOME = "home"
    WORK = "work"
    FREQUENT = "frequent"


class SavedLocation(BaseModel):
    id: str | None = None
    type: LocationKind
    label: str = ""
    address: str = ""
    lat: float = Field(..., ge=-90.0, le=90.0)
    lng: float = Field(..., ge=-180.0, le=180.0)
    accuracy: float | None = None


class VerificationStatus(BaseModel):
    abha: Literal["pending", "verified", "skipped", "failed"] = "pending"
    gps: Literal["enabled", "disabled", "error"] = "disabled"
    device_trusted: bool = False


class IdentityMethod(BaseModel):
    """One identity document per profile, chosen before its number is entered."""

    method: Literal["abha", "aadhaar"]
    value: str

    @field_validator("value")
    @classmethod
    def _check_shape(cls, value: str, info) -> str:
        value = value.replace(" ", "").replace("-", "")
        method = info.data.get("method")
        if method == "aadhaar" and (len(value) != 12 or not value.isdigit()):
            raise ValueError("aadhaar number must be 12 digits")
        if method == "abha" and len(value) < 14:
            raise ValueError("ABHA number must have at least 14 characters")
        return value


class UserCreate(BaseModel):
    name: str
    phone: str
    family_phone: str | None = None
    identity: IdentityMethod | None = None


class UserProfile(BaseModel):
    id: str
    name: str
    phone: str
    family_phone: str | None = None
    identity: IdentityMethod | None = None
    saved_locations: list[SavedLocation] = []
    verification: VerificationStatus = VerificationStatus()
    profile_complete: bool = False
    created_at: str


class MedicalProfile(BaseModel):
    identifier: str
    user_id: str | None = None
    age: int | None = None
    blood_group: str | None = None
    height: str | None = None
    weight: str | None = None
    allergies: list[str] = []
    past_operations: str | None = None
    chronic_conditions: str | None = None
    important_info: str | None = None


class MedicalProfileUpsert(BaseModel):
    identifier: str
    user_id: str | None = None
    age: int | None = None
    blood_group: str | None = None
    height: str | None = None
    weight: str | None = None
    allergies: str | list[str] | None = None
    past_operations: str | None = None
    chronic_conditions: str | None = None
    important_info: str | None = None


class OtpRequest(BaseModel):
    phone: str
