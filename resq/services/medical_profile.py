import logging
import re

from resq.database import get_db
from resq.models.profile import MedicalProfile, MedicalProfileUpsert
from resq.services.record_store import utcnow

logger = logging.getLogger(__name__)

AGE_MARKER = re.compile(r"\[Age:\s*(\d+)\]\s*")


def parse_allergies(value: str | list[str] | None) -> list[str]:
    """Split the comma-joined allergy text into a clean list."""
    if not value:
        return []
    if isinstance(value, list):
        items = value
    else:
        items = value.split(",")
    return [item.strip() for item in items if item and item.strip()]


def extract_age(age: int | None, important_info: str | None) -> int | None:
    """Prefer the age column; fall back to an ``[Age: NN]`` marker in the notes."""
    if age:
        return age
    if not important_info:
        return None
    match = AGE_MARKER.search(important_info)
    return int(match.group(1)) if match else None


def clean_important_info(important_info: str | None) -> str | None:
    if not important_info:
        return None
    cleaned = AGE_MARKER.sub("", important_info).strip()
    return cleaned or None


def profile_from_row(row) -> MedicalProfile:
    return MedicalProfile(
        identifier=row["identifier"],
        user_id=row["user_id"],
        age=extract_age(row["age"], row["important_medical_info"]),
        blood_group=row["blood_group"],
        height=row["height"],
        weight=row["weight"],
        allergies=parse_allergies(row["allergies"]),
        past_operations=row["past_operations"],
        chronic_conditions=row["medical_conditions"],
        important_info=clean_important_info(row["important_medical_info"]),
    )


async def upsert_profile(body: MedicalProfileUpsert) -> MedicalProfile:
    db = await get_db()
    allergies = ", ".join(parse_allergies(body.allergies))
    await db.execute(
        """INSERT INTO medical_profiles (
            identifier, user_id, age, blood_group, height, weight, allergies,
            past_operations, medical_conditions, important_medical_info, updated_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(identifier) DO UPDATE SET
            user_id = excluded.user_id,
            age = excluded.age,
            blood_group = excluded.blood_group,
            height = excluded.height,
            weight = excluded.weight,
            allergies = excluded.allergies,
            past_operations = excluded.past_operations,
            medical_conditions = excluded.medical_conditions,
            important_medical_info = excluded.important_medical_info,
            updated_at = excluded.updated_at""",
        (
            body.identifier,
            body.user_id,
            body.age,
            body.blood_group,
            body.height,
            body.weight,
            allergies,
            body.past_operations,
            body.chronic_conditions,
            body.important_info,
            utcnow(),
        ),
    )
    await db.commit()
    return await get_profile(body.identifier)


async def get_profile(identifier: str) -> MedicalProfile:
    db = await get_db()
    row = await db.fetch_one("SELECT * FROM medical_profiles WHERE identifier = ?", (identifier,))
    if not row:
        raise ValueError(f"Medical profile {identifier} not found")
    return profile_from_row(row)


async def find_profile_for_user(user_id: str | None) -> MedicalProfile | None:
    """The medical profile linked to a patient account, if one exists."""
    if not user_id:
        return None
    db = await get_db()
    row = await db.fetch_one(
        "SELECT * FROM medical_profiles WHERE user_id = ? ORDER BY updated_at DESC LIMIT 1",
        (user_id,),
    )
    return profile_from_row(row) if row else None
