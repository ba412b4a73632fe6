import logging
import uuid

from resq.database import get_db
from resq.models.profile import (
    IdentityMethod,
    SavedLocation,
    UserCreate,
    UserProfile,
    VerificationStatus,
)
from resq.services.maps import reverse_geocode
from resq.services.record_store import utcnow

logger = logging.getLogger(__name__)


async def _saved_locations(user_id: str) -> list[SavedLocation]:
    db = await get_db()
    rows = await db.fetch_all(
        "SELECT * FROM saved_locations WHERE user_id = ? ORDER BY type, label", (user_id,)
    )
    return [
        SavedLocation(
            id=row["id"],
            type=row["type"],
            label=row["label"],
            address=row["address"],
            lat=row["lat"],
            lng=row["lng"],
            accuracy=row["accuracy"],
        )
        for row in rows
    ]


async def get_user(user_id: str) -> UserProfile:
    db = await get_db()
    row = await db.fetch_one("SELECT * FROM users WHERE id = ?", (user_id,))
    if not row:
        raise ValueError(f"User {user_id} not found")

    identity = None
    if row["identity_method"] and row["identity_value"]:
        identity = IdentityMethod(method=row["identity_method"], value=row["identity_value"])

    return UserProfile(
        id=row["id"],
        name=row["name"],
        phone=row["phone"],
        family_phone=row["family_phone"],
        identity=identity,
        saved_locations=await _saved_locations(user_id),
        verification=VerificationStatus(
            abha=row["abha_status"],
            gps=row["gps_status"],
            device_trusted=bool(row["device_trusted"]),
        ),
        profile_complete=bool(row["profile_complete"]),
        created_at=row["created_at"],
    )


async def create_user(body: UserCreate) -> UserProfile:
    db = await get_db()
    user_id = str(uuid.uuid4())
    identity = body.identity
    await db.execute(
        """INSERT INTO users (
            id, created_at, name, phone, family_phone, identity_method, identity_value,
            abha_status, profile_complete
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
        (
            user_id,
            utcnow(),
            body.name,
            body.phone,
            body.family_phone,
            identity.method if identity else None,
            identity.value if identity else None,
            "pending" if identity else "skipped",
            1 if identity else 0,
        ),
    )
    await db.commit()
    logger.info("Created user %s", user_id)
    return await get_user(user_id)


async def add_saved_location(user_id: str, location: SavedLocation) -> UserProfile:
    """Save a named place; the address is looked up when the client did not send one."""
    await get_user(user_id)
    address = location.address or await reverse_geocode(location.lat, location.lng) or ""

    db = await get_db()
    await db.execute(
        """INSERT INTO saved_locations (id, user_id, type, label, address, lat, lng, accuracy)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
        (
            location.id or str(uuid.uuid4()),
            user_id,
            location.type.value,
            location.label or location.type.value.title(),
            address,
            location.lat,
            location.lng,
            location.accuracy,
        ),
    )
    await db.commit()
    return await get_user(user_id)


async def update_verification(user_id: str, verification: VerificationStatus) -> UserProfile:
    await get_user(user_id)
    db = await get_db()
    await db.execute(
        "UPDATE users SET abha_status = ?, gps_status = ?, device_trusted = ? WHERE id = ?",
        (verification.abha, verification.gps, 1 if verification.device_trusted else 0, user_id),
    )
    await db.commit()
    return await get_user(user_id)


async def update_current_location(user_id: str, lat: float, lng: float, address: str | None = None) -> None:
    """Remember the user's last position; used as the last-known fix for the next SOS."""
    db = await get_db()
    await db.execute(
        """UPDATE users SET current_latitude = ?, current_longitude = ?,
            current_address = COALESCE(?, current_address), last_location_update = ?
        WHERE id = ?""",
        (lat, lng, address, utcnow(), user_id),
    )
    await db.commit()


async def last_known_location(user_id: str) -> tuple[float, float] | None:
    db = await get_db()
    row = await db.fetch_one(
        "SELECT current_latitude, current_longitude FROM users WHERE id = ?", (user_id,)
    )
    if not row or row["current_latitude"] is None or row["current_longitude"] is None:
        return None
    return row["current_latitude"], row["current_longitude"]
