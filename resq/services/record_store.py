"""Emergency record store.

Single source of truth for the dispatch lifecycle. Rows live in the
``emergency_requests`` table; every committed write is published on the
change bus so that role reflectors can fold it into their local view.

Status is only ever written as a compare-and-swap against the status the
caller last saw. Location and other independent fields are last-writer-wins.
"""

import asyncio
import json
import logging
import uuid
from datetime import UTC, datetime

import aiosqlite

from resq.database import DatabaseAdapter, get_db
from resq.models.emergency import (
    TERMINAL_STATUSES,
    Coordinates,
    EmergencyRecord,
    EmergencyStatus,
    EmergencyType,
    Location,
    PatientSnapshot,
    RouteSummary,
    parse_status,
)
from resq.services.errors import (
    AssignmentConflict,
    RecordNotFound,
    StaleStatus,
    StoreError,
    TerminalRecord,
)
from resq.services.event_bus import ChangeBus

logger = logging.getLogger(__name__)

TABLE = "emergency_requests"

WRITABLE_COLUMNS = frozenset({
    "status",
    "patient_name",
    "patient_phone",
    "medical_profile_id",
    "patient_age",
    "blood_group",
    "allergies",
    "chronic_conditions",
    "critical_info",
    "patient_lat",
    "patient_long",
    "patient_address",
    "patient_accuracy",
    "patient_location_at",
    "assigned_hospital_id",
    "assigned_driver_id",
    "driver_lat",
    "driver_long",
    "driver_location_at",
    "route_polyline",
    "route_distance_meters",
    "route_duration_seconds",
    "route_source",
    "accepted_at",
    "arrived_pickup_at",
    "transport_started_at",
    "arrived_at",
    "closed_at",
})

# Assigned once during the lifecycle; there is no reassignment path
SET_ONCE_COLUMNS = ("assigned_hospital_id", "assigned_driver_id")


def utcnow() -> str:
    return datetime.now(UTC).isoformat()


def row_to_dict(row) -> dict:
    return {key: row[key] for key in row.keys()}


def row_to_record(row) -> EmergencyRecord:
    data = row_to_dict(row) if not isinstance(row, dict) else row
    try:
        allergies = json.loads(data.get("allergies") or "[]")
    except json.JSONDecodeError:
        allergies = []

    driver_location = None
    if data.get("driver_lat") is not None and data.get("driver_long") is not None:
        driver_location = Coordinates(lat=data["driver_lat"], lng=data["driver_long"])

    route = None
    if data.get("route_distance_meters") is not None:
        route = RouteSummary(
            polyline=data.get("route_polyline"),
            distance_meters=data.get("route_distance_meters"),
            duration_seconds=data.get("route_duration_seconds"),
            source=data.get("route_source"),
        )

    return EmergencyRecord(
        id=data["id"],
        emergency_type=EmergencyType(data["emergency_type"]),
        status=parse_status(data["status"]),
        patient=PatientSnapshot(
            name=data.get("patient_name") or "Unknown Patient",
            phone=data.get("patient_phone") or "",
            user_id=data.get("user_id"),
            medical_profile_id=data.get("medical_profile_id"),
            age=data.get("patient_age"),
            blood_group=data.get("blood_group"),
            allergies=allergies,
            chronic_conditions=data.get("chronic_conditions"),
            critical_info=data.get("critical_info"),
        ),
        location=Location(
            lat=data["patient_lat"],
            lng=data["patient_long"],
            address=data.get("patient_address"),
            accuracy=data.get("patient_accuracy"),
        ),
        assigned_hospital_id=data.get("assigned_hospital_id"),
        assigned_driver_id=data.get("assigned_driver_id"),
        driver_location=driver_location,
        driver_location_at=data.get("driver_location_at"),
        patient_location_at=data.get("patient_location_at"),
        route=route,
        created_at=data["created_at"],
        updated_at=data.get("updated_at"),
        accepted_at=data.get("accepted_at"),
        arrived_pickup_at=data.get("arrived_pickup_at"),
        transport_started_at=data.get("transport_started_at"),
        arrived_at=data.get("arrived_at"),
        closed_at=data.get("closed_at"),
    )


class RecordStore:
    def __init__(self, bus: ChangeBus, db: DatabaseAdapter | None = None) -> None:
        self.bus = bus
        self._db = db
        self._lock = asyncio.Lock()

    async def _conn(self) -> DatabaseAdapter:
        if self._db is None:
            return await get_db()
        return self._db

    async def _fetch_row(self, db: DatabaseAdapter, record_id: str) -> dict | None:
        row = await db.fetch_one(f"SELECT * FROM {TABLE} WHERE id = ?", (record_id,))
        return row_to_dict(row) if row else None

    async def insert(
        self,
        emergency_type: EmergencyType,
        patient: PatientSnapshot,
        location: Location,
        record_id: str | None = None,
        created_at: str | None = None,
    ) -> EmergencyRecord:
        """Create a pending emergency and announce it on the change feed."""
        record_id = record_id or str(uuid.uuid4())
        now = utcnow()
        created_at = created_at or now
        db = await self._conn()
        try:
            async with self._lock:
                await db.execute(
                    f"""INSERT INTO {TABLE} (
                        id, created_at, updated_at, emergency_type, status, user_id,
                        patient_name, patient_phone, medical_profile_id, patient_age,
                        blood_group, allergies, chronic_conditions, critical_info,
                        patient_lat, patient_long, patient_address, patient_accuracy,
                        patient_location_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                    (
                        record_id,
                        created_at,
                        now,
                        emergency_type.value,
                        EmergencyStatus.PENDING.value,
                        patient.user_id,
                        patient.name,
                        patient.phone,
                        patient.medical_profile_id,
                        patient.age,
                        patient.blood_group,
                        json.dumps(patient.allergies),
                        patient.chronic_conditions,
                        patient.critical_info,
                        location.lat,
                        location.lng,
                        location.address,
                        location.accuracy,
                        now,
                    ),
                )
                await db.commit()
                row = await self._fetch_row(db, record_id)
        except aiosqlite.Error as e:
            logger.error("Failed to insert emergency %s: %s", record_id, e)
            raise StoreError(f"Could not create emergency: {e}") from e

        logger.info("Emergency %s created (%s)", record_id, emergency_type.value)
        await self.bus.publish({
            "type": "INSERT",
            "table": TABLE,
            "record_id": record_id,
            "new": row,
            "old": None,
            "changes": row,
        })
        return row_to_record(row)

    async def get(self, record_id: str) -> EmergencyRecord:
        db = await self._conn()
        try:
            row = await self._fetch_row(db, record_id)
        except aiosqlite.Error as e:
            raise StoreError(f"Could not read emergency {record_id}: {e}") from e
        if row is None:
            raise RecordNotFound(record_id)
        return row_to_record(row)

    async def select(
        self,
        filter: dict | None = None,
        since: str | None = None,
        limit: int | None = None,
    ) -> list[EmergencyRecord]:
        """Records matching a column-equality filter, newest first."""
        rows = await self.select_rows(filter, since, limit)
        return [row_to_record(row) for row in rows]

    async def select_rows(
        self,
        filter: dict | None = None,
        since: str | None = None,
        limit: int | None = None,
    ) -> list[dict]:
        clauses = []
        params: list = []
        for column, value in (filter or {}).items():
            if column not in WRITABLE_COLUMNS and column not in ("id", "user_id", "emergency_type"):
                raise ValueError(f"Cannot filter on column {column}")
            clauses.append(f"{column} = ?")
            params.append(value.value if hasattr(value, "value") else value)
        if since:
            clauses.append("created_at > ?")
            params.append(since)

        query = f"SELECT * FROM {TABLE}"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY created_at DESC"
        if limit:
            query += f" LIMIT {int(limit)}"

        db = await self._conn()
        try:
            rows = await db.fetch_all(query, params)
        except aiosqlite.Error as e:
            raise StoreError(f"Could not list emergencies: {e}") from e
        return [row_to_dict(row) for row in rows]

    async def update(
        self,
        record_id: str,
        fields: dict,
        expected_status: EmergencyStatus | str | None = None,
    ) -> EmergencyRecord:
        """Apply a partial update in one statement.

        A write that changes ``status`` must name the status it expects the
        record to be in; if another writer got there first StaleStatus is
        raised and nothing is written. Terminal records reject every write.
        """
        unknown = set(fields) - WRITABLE_COLUMNS
        if unknown:
            raise ValueError(f"Unknown columns: {', '.join(sorted(unknown))}")
        if "status" in fields and expected_status is None:
            raise ValueError("Status writes must be compare-and-swap (expected_status required)")

        values = {
            column: (value.value if hasattr(value, "value") else value)
            for column, value in fields.items()
        }
        if "allergies" in values and not isinstance(values["allergies"], str):
            values["allergies"] = json.dumps(values["allergies"])
        expected = parse_status(expected_status).value if expected_status is not None else None

        db = await self._conn()
        try:
            async with self._lock:
                current = await self._fetch_row(db, record_id)
                if current is None:
                    raise RecordNotFound(record_id)
                if parse_status(current["status"]) in TERMINAL_STATUSES:
                    raise TerminalRecord(record_id, current["status"])
                if expected is not None and current["status"] != expected:
                    raise StaleStatus(record_id, expected, current["status"])
                for column in SET_ONCE_COLUMNS:
                    if column in values and current[column] and current[column] != values[column]:
                        raise AssignmentConflict(record_id, column, current[column])

                values["updated_at"] = utcnow()
                assignments = ", ".join(f"{column} = ?" for column in values)
                params = list(values.values()) + [record_id]
                query = f"UPDATE {TABLE} SET {assignments} WHERE id = ?"
                if expected is not None:
                    query += " AND status = ?"
                    params.append(expected)

                changed = await db.execute(query, params)
                if changed == 0:
                    latest = await self._fetch_row(db, record_id)
                    raise StaleStatus(record_id, expected or "", latest["status"] if latest else "missing")
                await db.commit()
                row = await self._fetch_row(db, record_id)
        except aiosqlite.Error as e:
            logger.error("Failed to update emergency %s: %s", record_id, e)
            raise StoreError(f"Could not update emergency {record_id}: {e}") from e

        await self.bus.publish({
            "type": "UPDATE",
            "table": TABLE,
            "record_id": record_id,
            "new": row,
            "old": current,
            "changes": {column: row[column] for column in values},
        })
        return row_to_record(row)

    async def delete(self, record_id: str) -> None:
        """Remove a record. Not part of the dispatch lifecycle."""
        db = await self._conn()
        try:
            async with self._lock:
                current = await self._fetch_row(db, record_id)
                if current is None:
                    raise RecordNotFound(record_id)
                await db.execute(f"DELETE FROM {TABLE} WHERE id = ?", (record_id,))
                await db.commit()
        except aiosqlite.Error as e:
            logger.error("Failed to delete emergency %s: %s", record_id, e)
            raise StoreError(f"Could not delete emergency {record_id}: {e}") from e

        await self.bus.publish({
            "type": "DELETE",
            "table": TABLE,
            "record_id": record_id,
            "new": None,
            "old": current,
            "changes": {},
        })

