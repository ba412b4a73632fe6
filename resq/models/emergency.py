from enum import Enum

from pydantic import BaseModel, Field, field_validator


class EmergencyType(str, Enum):
    ACCIDENT = "accident"
    CARDIAC = "cardiac"
    MATERNAL = "maternal"
    RESPIRATORY = "respiratory"
    OTHER = "other"


# Labels the patient and hospital apps send for the same emergency types
EMERGENCY_TYPE_ALIASES = {
    "heart_emergency": EmergencyType.CARDIAC,
    "heart_attack": EmergencyType.CARDIAC,
    "maternity": EmergencyType.MATERNAL,
}


def normalize_emergency_type(value: str | None) -> EmergencyType:
    """Map any client label onto the canonical emergency type, defaulting to other."""
    if not value:
        return EmergencyType.OTHER
    key = value.strip().lower()
    if key in EMERGENCY_TYPE_ALIASES:
        return EMERGENCY_TYPE_ALIASES[key]
    try:
        return EmergencyType(key)
    except ValueError:
        return EmergencyType.OTHER


class EmergencyStatus(str, Enum):
    PENDING = "pending"
    HOSPITAL_ASSIGNED = "hospital_assigned"
    DISPATCHED = "dispatched"
    EN_ROUTE = "en_route"
    ARRIVED_PICKUP = "arrived_pickup"
    TRANSPORTING = "transporting"
    ARRIVED = "arrived"
    ADMITTED = "admitted"
    REFERRED = "referred"
    STABILIZED = "stabilized"


STATUS_ALIASES = {
    "reached_hospital": EmergencyStatus.ARRIVED,
    "on_the_way": EmergencyStatus.EN_ROUTE,
    "accepted": EmergencyStatus.DISPATCHED,
}

TERMINAL_STATUSES = frozenset({
    EmergencyStatus.ADMITTED,
    EmergencyStatus.REFERRED,
    EmergencyStatus.STABILIZED,
})

# Linear progression used for ordering and progress display
STATUS_ORDER = [
    EmergencyStatus.PENDING,
    EmergencyStatus.HOSPITAL_ASSIGNED,
    EmergencyStatus.DISPATCHED,
    EmergencyStatus.EN_ROUTE,
    EmergencyStatus.ARRIVED_PICKUP,
    EmergencyStatus.TRANSPORTING,
    EmergencyStatus.ARRIVED,
    EmergencyStatus.ADMITTED,
]

STATUS_LABELS = {
    EmergencyStatus.PENDING: "Dispatching...",
    EmergencyStatus.HOSPITAL_ASSIGNED: "Hospital Notified",
    EmergencyStatus.DISPATCHED: "Driver Dispatched",
    EmergencyStatus.EN_ROUTE: "Driver En Route",
    EmergencyStatus.ARRIVED_PICKUP: "Driver Arrived",
    EmergencyStatus.TRANSPORTING: "On Way to Hospital",
    EmergencyStatus.ARRIVED: "Arrived at Hospital",
    EmergencyStatus.ADMITTED: "Admitted",
    EmergencyStatus.REFERRED: "Referred",
    EmergencyStatus.STABILIZED: "Stabilized",
}


def parse_status(value: str | EmergencyStatus) -> EmergencyStatus:
    if isinstance(value, EmergencyStatus):
        return value
    key = value.strip().lower()
    if key in STATUS_ALIASES:
        return STATUS_ALIASES[key]
    return EmergencyStatus(key)


def status_rank(status: EmergencyStatus) -> int:
    """Position in the lifecycle; all terminal outcomes share the last rank."""
    if status in TERMINAL_STATUSES:
        return len(STATUS_ORDER) - 1
    return STATUS_ORDER.index(status)


class Role(str, Enum):
    PATIENT = "patient"
    HOSPITAL = "hospital"
    DRIVER = "driver"


class DispatchEvent(str, Enum):
    ASSIGN_HOSPITAL = "assign_hospital"
    ACCEPT = "accept"
    START_NAVIGATION = "start_navigation"
    ARRIVE_PICKUP = "arrive_pickup"
    START_TRANSPORT = "start_transport"
    REACH_HOSPITAL = "reach_hospital"
    CONFIRM_ARRIVAL = "confirm_arrival"
    ADMIT = "admit"
    REFER = "refer"
    STABILIZE = "stabilize"


class Coordinates(BaseModel):
    lat: float = Field(..., ge=-90.0, le=90.0)
    lng: float = Field(..., ge=-180.0, le=180.0)


class Location(Coordinates):
    address: str | None = None
    accuracy: float | None = Field(None, ge=0.0)


class PatientSnapshot(BaseModel):
    name: str = "Unknown Patient"
    phone: str = ""
    user_id: str | None = None
    medical_profile_id: str | None = None
    age: int | None = None
    blood_group: str | None = None
    allergies: list[str] = []
    chronic_conditions: str | None = None
    critical_info: str | None = None


class RouteSummary(BaseModel):
    polyline: str | None = None
    distance_meters: int | None = None
    duration_seconds: int | None = None
    source: str | None = None


class EmergencyRecord(BaseModel):
    id: str
    emergency_type: EmergencyType
    status: EmergencyStatus
    patient: PatientSnapshot
    location: Location
    assigned_hospital_id: str | None = None
    assigned_driver_id: str | None = None
    driver_location: Coordinates | None = None
    driver_location_at: str | None = None
    patient_location_at: str | None = None
    route: RouteSummary | None = None
    created_at: str
    updated_at: str | None = None
    accepted_at: str | None = None
    arrived_pickup_at: str | None = None
    transport_started_at: str | None = None
    arrived_at: str | None = None
    closed_at: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class EmergencyCreate(BaseModel):
    emergency_type: str = "other"
    patient_name: str | None = None
    patient_phone: str | None = None
    user_id: str | None = None
    location: Location | None = None
    # Device geolocation failure reported instead of a fix
    location_error: str | None = None

    @field_validator("emergency_type")
    @classmethod
    def _normalize_type(cls, value: str) -> str:
        return normalize_emergency_type(value).value


class EventRequest(BaseModel):
    event: DispatchEvent
    role: Role
    actor_id: str | None = None
    expected_status: str | None = None


class LocationUpdate(Coordinates):
    accuracy: float | None = Field(None, ge=0.0)


class TransitionResult(BaseModel):
    """Explicit outcome of a dispatch operation; failures never raise past the coordinator."""

    ok: bool
    record_id: str
    status: EmergencyStatus | None = None
    previous_status: EmergencyStatus | None = None
    error: str | None = None
    reason: str | None = None
    retryable: bool = False
    record: EmergencyRecord | None = None


class EmergencyListItem(BaseModel):
    id: str
    emergency_type: EmergencyType
    status: EmergencyStatus
    status_label: str
    patient_name: str
    created_at: str
    assigned_hospital_id: str | None = None
    assigned_driver_id: str | None = None
