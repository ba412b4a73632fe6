import logging

from fastapi import APIRouter, Depends, HTTPException, Query

from resq.models.emergency import (
    STATUS_LABELS,
    EmergencyCreate,
    EmergencyListItem,
    EmergencyRecord,
    EventRequest,
    LocationUpdate,
    TransitionResult,
    parse_status,
)
from resq.models.hospital import RouteInfo
from resq.routers.results import raise_for_result
from resq.services import polyline
from resq.services.app_state import AppState, get_state
from resq.services.errors import RecordNotFound, StoreError
from resq.services.geo import PositionFix

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/emergencies", tags=["emergencies"])


@router.post("", response_model=EmergencyRecord)
async def create_emergency(body: EmergencyCreate, state: AppState = Depends(get_state)):
    """Raise a new emergency from the patient app. It starts out pending."""
    result = raise_for_result(await state.coordinator.create_emergency(body))
    return result.record


@router.get("", response_model=list[EmergencyListItem])
async def list_emergencies(
    status: str | None = None,
    hospital_id: str | None = None,
    limit: int = Query(50, ge=1, le=500),
    state: AppState = Depends(get_state),
):
    filter = {}
    if status:
        try:
            filter["status"] = parse_status(status)
        except ValueError:
            raise HTTPException(status_code=422, detail=f"Unknown status {status}") from None
    if hospital_id:
        filter["assigned_hospital_id"] = hospital_id

    try:
        records = await state.store.select(filter, limit=limit)
    except StoreError as e:
        raise HTTPException(status_code=503, detail=str(e)) from None

    return [
        EmergencyListItem(
            id=r.id,
            emergency_type=r.emergency_type,
            status=r.status,
            status_label=STATUS_LABELS[r.status],
            patient_name=r.patient.name,
            created_at=r.created_at,
            assigned_hospital_id=r.assigned_hospital_id,
            assigned_driver_id=r.assigned_driver_id,
        )
        for r in records
    ]


@router.get("/{record_id}", response_model=EmergencyRecord)
async def get_emergency(record_id: str, state: AppState = Depends(get_state)):
    try:
        return await state.store.get(record_id)
    except RecordNotFound:
        raise HTTPException(status_code=404, detail="Emergency not found") from None
    except StoreError as e:
        raise HTTPException(status_code=503, detail=str(e)) from None


@router.post("/{record_id}/events", response_model=TransitionResult)
async def fire_event(record_id: str, body: EventRequest, state: AppState = Depends(get_state)):
    """Fire a lifecycle event as a role.

    Pass ``expected_status`` to make the write conditional on the status the
    client last saw; a mismatch returns 409 with the current status.
    """
    result = await state.coordinator.apply_event(
        record_id,
        body.event,
        body.role,
        actor_id=body.actor_id,
        expected_status=body.expected_status,
    )
    return raise_for_result(result)


@router.put("/{record_id}/location", response_model=TransitionResult)
async def update_patient_location(record_id: str, body: LocationUpdate, state: AppState = Depends(get_state)):
    """Live patient position; written to the record at most once per patient window."""
    fix = PositionFix(lat=body.lat, lng=body.lng, accuracy=body.accuracy)
    result = await state.coordinator.push_patient_location(record_id, fix)
    return raise_for_result(result)


@router.get("/{record_id}/route", response_model=RouteInfo)
async def get_route(record_id: str, state: AppState = Depends(get_state)):
    """Route to the chosen hospital, decoded for drawing on a map."""
    try:
        record = await state.store.get(record_id)
    except RecordNotFound:
        raise HTTPException(status_code=404, detail="Emergency not found") from None
    except StoreError as e:
        raise HTTPException(status_code=503, detail=str(e)) from None

    if record.route is None:
        raise HTTPException(status_code=404, detail="No route selected yet")
    return RouteInfo(
        polyline=record.route.polyline,
        path=polyline.decode(record.route.polyline) if record.route.polyline else [],
        distance_meters=record.route.distance_meters or 0,
        duration_seconds=record.route.duration_seconds or 0,
        source=record.route.source or "routing",
    )
