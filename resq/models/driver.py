from pydantic import BaseModel

from resq.models.emergency import Coordinates, EmergencyStatus


class TripState(BaseModel):
    record_id: str
    status: EmergencyStatus
    accepted_at: str | None = None
    started_navigation_at: str | None = None
    arrived_pickup_at: str | None = None
    transport_started_at: str | None = None
    completed_at: str | None = None


class DriverSession(BaseModel):
    driver_id: str
    online: bool = False
    incoming_record_id: str | None = None
    trip: TripState | None = None
    last_location: Coordinates | None = None
    went_online_at: str | None = None


class DriverLocationUpdate(Coordinates):
    accuracy: float | None = None


class DriverAdvance(BaseModel):
    expected_status: str | None = None
