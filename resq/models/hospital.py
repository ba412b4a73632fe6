from pydantic import BaseModel, Field

from resq.models.emergency import Coordinates


class BedAvailability(BaseModel):
    trauma: int = Field(0, ge=0)
    cardiac: int = Field(0, ge=0)
    maternity: int = Field(0, ge=0)
    general: int = Field(0, ge=0)


class Hospital(BaseModel):
    id: str
    name: str
    address: str = ""
    specialty: str = ""
    lat: float
    lng: float
    beds: BedAvailability = BedAvailability()


class HospitalStats(BaseModel):
    hospital_id: str
    active_emergencies: int
    beds: BedAvailability
    drivers_online: int


class RouteInfo(BaseModel):
    """Route from the ambulance to a destination.

    ``source`` is ``"routing"`` when the directions backend answered and
    ``"straight_line"`` when the distance and ETA are haversine estimates.
    """

    polyline: str | None = None
    path: list[tuple[float, float]] = []
    distance_meters: int
    duration_seconds: int
    source: str = "routing"

    @property
    def distance_label(self) -> str:
        return f"{self.distance_meters / 1000:.1f} km"

    @property
    def eta_label(self) -> str:
        return f"{max(1, -(-self.duration_seconds // 60))} min"


class HospitalCandidate(BaseModel):
    id: str
    name: str
    address: str
    specialty: str = ""
    coordinates: Coordinates
    distance_meters: int
    eta_seconds: int
    distance_label: str
    eta_label: str
    source: str = "straight_line"


class HospitalSelection(BaseModel):
    record_id: str
    hospital_id: str
    lat: float | None = None
    lng: float | None = None


class AdmissionRequest(BaseModel):
    outcome: str = "admitted"
