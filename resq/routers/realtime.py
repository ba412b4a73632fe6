"""Live views for each role over WebSocket.

Each connection registers a listener queue on the reflectors for its view
and forwards whatever they fold in. A ping goes out after ten quiet seconds
so dead connections are noticed.
"""

import asyncio
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from resq.services.app_state import AppState
from resq.services.errors import DispatchError, RecordNotFound

logger = logging.getLogger(__name__)
router = APIRouter()

PING_SECONDS = 10.0


def _state(websocket: WebSocket) -> AppState:
    return websocket.app.state.resq


async def _next_event(queue: asyncio.Queue) -> dict:
    try:
        return await asyncio.wait_for(queue.get(), timeout=PING_SECONDS)
    except asyncio.TimeoutError:
        return {"type": "ping"}


@router.websocket("/ws/hospital/{hospital_id}")
async def hospital_ws(websocket: WebSocket, hospital_id: str):
    """Hospital dashboard: assigned emergencies plus the pending queue."""
    await websocket.accept()
    state = _state(websocket)
    coordinator = state.coordinator

    assigned = await coordinator.hospital_view(hospital_id)
    incoming = await coordinator.incoming_view()
    queue = assigned.listen()
    incoming.listen(queue)
    logger.info("Hospital %s dashboard connected", hospital_id)

    try:
        await websocket.send_json({
            "type": "snapshot",
            "assigned": assigned.items(),
            "incoming": incoming.items(),
        })
        while True:
            event = await _next_event(queue)
            if event["type"] == "subscription_closed":
                continue
            try:
                await websocket.send_json(event)
            except Exception:
                logger.debug("Failed to send event to hospital %s", hospital_id)
                break
    except WebSocketDisconnect:
        logger.info("Hospital %s dashboard disconnected", hospital_id)
    except asyncio.CancelledError:
        pass
    finally:
        await state.reflectors.release("hospital", hospital_id, queue)
        await state.reflectors.release("incoming", "pending", queue)


@router.websocket("/ws/driver/{driver_id}")
async def driver_ws(websocket: WebSocket, driver_id: str):
    """Driver app: incoming alerts with the accept window, then the active trip."""
    await websocket.accept()
    state = _state(websocket)
    coordinator = state.coordinator

    incoming = await coordinator.incoming_view()
    queue = incoming.listen()
    trip_id: str | None = None
    logger.info("Driver %s connected", driver_id)

    async def expired(driver: str, record_id: str):
        queue.put_nowait({"type": "alert_expired", "record_id": record_id})

    async def follow_trip():
        nonlocal trip_id
        session = state.drivers.get(driver_id)
        current = session.trip.record_id if session.trip else None
        if current == trip_id:
            return
        if trip_id is not None:
            await state.reflectors.release("driver", trip_id, queue)
        trip_id = current
        if trip_id is not None:
            trip = await coordinator.record_view("driver", trip_id)
            trip.listen(queue)
            await websocket.send_json({"type": "trip", "record": trip.items()[0] if trip.items() else None})

    try:
        await websocket.send_json({
            "type": "snapshot",
            "session": state.drivers.get(driver_id).model_dump(mode="json"),
            "incoming": incoming.items(),
        })
        await follow_trip()
        while True:
            event = await _next_event(queue)
            if event["type"] == "subscription_closed":
                continue
            if event["type"] == "new_emergency" and event.get("alert"):
                record_id = event["record"]["id"]
                if not coordinator.offer(driver_id, record_id, on_timeout=expired):
                    continue
                event = {
                    "type": "incoming_alert",
                    "record": event["record"],
                    "countdown": state.drivers.alerts.duration,
                }
            try:
                await websocket.send_json(event)
            except Exception:
                logger.debug("Failed to send event to driver %s", driver_id)
                break
            await follow_trip()
    except WebSocketDisconnect:
        logger.info("Driver %s disconnected", driver_id)
    except DispatchError as e:
        logger.error("Driver %s realtime view degraded: %s", driver_id, e)
    except asyncio.CancelledError:
        pass
    finally:
        state.drivers.clear_offer(driver_id)
        await state.reflectors.release("incoming", "pending", queue)
        if trip_id is not None:
            await state.reflectors.release("driver", trip_id, queue)


@router.websocket("/ws/patient/{record_id}")
async def patient_ws(websocket: WebSocket, record_id: str):
    """Patient tracking: status, ambulance position and route for one emergency."""
    await websocket.accept()
    state = _state(websocket)

    try:
        record = await state.store.get(record_id)
    except RecordNotFound:
        await websocket.send_json({"type": "error", "message": f"Emergency {record_id} not found"})
        await websocket.close()
        return
    except DispatchError as e:
        await websocket.send_json({"type": "error", "message": str(e)})
        await websocket.close()
        return

    await websocket.send_json({"type": "snapshot", "record": record.model_dump(mode="json")})
    if record.is_terminal:
        await websocket.close()
        return

    view = await state.coordinator.record_view("patient", record_id)
    queue = view.listen()
    try:
        while True:
            event = await _next_event(queue)
            if event["type"] == "subscription_closed":
                break
            try:
                await websocket.send_json(event)
            except Exception:
                logger.debug("Failed to send event to patient view %s", record_id)
                return
            if event["type"] == "emergency_closed":
                break
        await websocket.close()
    except WebSocketDisconnect:
        logger.info("Patient view %s disconnected", record_id)
    except asyncio.CancelledError:
        pass
    finally:
        await state.reflectors.release("patient", record_id, queue)
