from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Sequence

import aiosqlite

from resq.config import DATABASE_PATH, HOSPITALS_FILE, SEED_HOSPITALS

logger = logging.getLogger(__name__)


class DatabaseAdapter:
    engine: str

    async def execute(self, query: str, params: Sequence | None = None) -> int:  # pragma: no cover - interface
        raise NotImplementedError

    async def executemany(self, query: str, seq_params: Iterable[Sequence]) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    async def fetch_one(self, query: str, params: Sequence | None = None):  # pragma: no cover - interface
        raise NotImplementedError

    async def fetch_all(self, query: str, params: Sequence | None = None):  # pragma: no cover - interface
        raise NotImplementedError

    async def commit(self) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    async def close(self) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    async def executescript(self, script: str) -> None:  # pragma: no cover - interface
        raise NotImplementedError


@dataclass
class SQLiteAdapter(DatabaseAdapter):
    conn: aiosqlite.Connection
    engine: str = "sqlite"

    async def execute(self, query: str, params: Sequence | None = None) -> int:
        """Run a statement and return the number of rows it changed."""
        cursor = await self.conn.execute(query, params or ())
        return cursor.rowcount

    async def executemany(self, query: str, seq_params: Iterable[Sequence]) -> None:
        await self.conn.executemany(query, seq_params)

    async def fetch_one(self, query: str, params: Sequence | None = None):
        cursor = await self.conn.execute(query, params or ())
        return await cursor.fetchone()

    async def fetch_all(self, query: str, params: Sequence | None = None):
        cursor = await self.conn.execute(query, params or ())
        return await cursor.fetchall()

    async def commit(self) -> None:
        await self.conn.commit()

    async def close(self) -> None:
        await self.conn.close()

    async def executescript(self, script: str) -> None:
        await self.conn.executescript(script)


_db: DatabaseAdapter | None = None


async def get_db() -> DatabaseAdapter:
    global _db
    if _db is None:
        conn = await aiosqlite.connect(DATABASE_PATH)
        conn.row_factory = aiosqlite.Row
        _db = SQLiteAdapter(conn)
        logger.info("Connected to SQLite database at %s", DATABASE_PATH)
    return _db


SQLITE_SCHEMA = """
    CREATE TABLE IF NOT EXISTS emergency_requests (
        id TEXT PRIMARY KEY,
        created_at TEXT NOT NULL,
        updated_at TEXT,
        emergency_type TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'pending',
        user_id TEXT,
        patient_name TEXT,
        patient_phone TEXT,
        medical_profile_id TEXT,
        patient_age INTEGER,
        blood_group TEXT,
        allergies TEXT DEFAULT '[]',
        chronic_conditions TEXT,
        critical_info TEXT,
        patient_lat REAL NOT NULL,
        patient_long REAL NOT NULL,
        patient_address TEXT,
        patient_accuracy REAL,
        patient_location_at TEXT,
        assigned_hospital_id TEXT,
        assigned_driver_id TEXT,
        driver_lat REAL,
        driver_long REAL,
        driver_location_at TEXT,
        route_polyline TEXT,
        route_distance_meters INTEGER,
        route_duration_seconds INTEGER,
        route_source TEXT,
        accepted_at TEXT,
        arrived_pickup_at TEXT,
        transport_started_at TEXT,
        arrived_at TEXT,
        closed_at TEXT
    );

    CREATE INDEX IF NOT EXISTS idx_emergency_hospital
        ON emergency_requests (assigned_hospital_id, status);

    CREATE TABLE IF NOT EXISTS users (
        id TEXT PRIMARY KEY,
        created_at TEXT NOT NULL,
        name TEXT NOT NULL,
        phone TEXT NOT NULL,
        family_phone TEXT,
        identity_method TEXT,
        identity_value TEXT,
        abha_status TEXT NOT NULL DEFAULT 'pending',
        gps_status TEXT NOT NULL DEFAULT 'disabled',
        device_trusted INTEGER NOT NULL DEFAULT 0,
        profile_complete INTEGER NOT NULL DEFAULT 0,
        current_latitude REAL,
        current_longitude REAL,
        current_address TEXT,
        last_location_update TEXT
    );

    CREATE TABLE IF NOT EXISTS saved_locations (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        type TEXT NOT NULL,
        label TEXT NOT NULL DEFAULT '',
        address TEXT NOT NULL DEFAULT '',
        lat REAL NOT NULL,
        lng REAL NOT NULL,
        accuracy REAL,
        FOREIGN KEY (user_id) REFERENCES users(id)
    );

    CREATE TABLE IF NOT EXISTS medical_profiles (
        identifier TEXT PRIMARY KEY,
        user_id TEXT,
        age INTEGER,
        blood_group TEXT,
        height TEXT,
        weight TEXT,
        allergies TEXT,
        past_operations TEXT,
        medical_conditions TEXT,
        important_medical_info TEXT,
        updated_at TEXT
    );

    CREATE TABLE IF NOT EXISTS hospitals (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        address TEXT NOT NULL DEFAULT '',
        specialty TEXT NOT NULL DEFAULT '',
        lat REAL NOT NULL,
        lng REAL NOT NULL,
        trauma_beds INTEGER NOT NULL DEFAULT 0,
        cardiac_beds INTEGER NOT NULL DEFAULT 0,
        maternity_beds INTEGER NOT NULL DEFAULT 0,
        general_beds INTEGER NOT NULL DEFAULT 0
    );
"""


async def init_db() -> None:
    db = await get_db()
    await db.executescript(SQLITE_SCHEMA)
    await db.commit()

    if SEED_HOSPITALS:
        await _seed_hospitals(db)


async def close_db() -> None:
    global _db
    if _db is not None:
        await _db.close()
        _db = None


def load_hospital_catalogue(path: str = HOSPITALS_FILE) -> list[dict]:
    """Read the curated hospital list shipped with the service."""
    try:
        return json.loads(Path(path).read_text(encoding="utf-8"))
    except FileNotFoundError:
        logger.warning("Hospital catalogue %s not found", path)
    except json.JSONDecodeError as e:
        logger.error("Hospital catalogue %s is not valid JSON: %s", path, e)
    return []


async def _seed_hospitals(db: DatabaseAdapter) -> None:
    """Insert the curated hospitals that are not in the table yet."""
    hospitals = load_hospital_catalogue()
    if not hospitals:
        return

    existing_rows = await db.fetch_all("SELECT id FROM hospitals")
    existing = {row["id"] for row in existing_rows}
    rows = []
    for h in hospitals:
        if h["id"] in existing:
            continue
        beds = h.get("beds", {})
        rows.append((
            h["id"], h["name"], h.get("address", ""), h.get("specialty", ""), h["lat"], h["lng"],
            beds.get("trauma", 0), beds.get("cardiac", 0), beds.get("maternity", 0), beds.get("general", 0),
        ))
    if not rows:
        return

    await db.executemany(
        "INSERT INTO hospitals (id, name, address, specialty, lat, lng, trauma_beds, cardiac_beds, maternity_beds, general_beds) "
        "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
        rows,
    )
    await db.commit()
    logger.info("Seeded %d hospitals", len(rows))
