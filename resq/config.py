import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes", "on")


DATABASE_PATH = os.getenv("DATABASE_PATH", "resq.db")
SEED_HOSPITALS = _flag("SEED_HOSPITALS", "true")
HOSPITALS_FILE = os.getenv(
    "HOSPITALS_FILE",
    str(Path(__file__).resolve().parent / "data" / "hospitals.json"),
)

# OLA Maps (forward geocoding + directions)
OLA_MAPS_API_KEY = os.getenv("OLA_MAPS_API_KEY", "")
OLA_MAPS_BASE_URL = os.getenv("OLA_MAPS_BASE_URL", "https://api.olamaps.io")

# OpenStreetMap Nominatim (reverse geocoding)
NOMINATIM_BASE_URL = os.getenv("NOMINATIM_BASE_URL", "https://nominatim.openstreetmap.org")
NOMINATIM_USER_AGENT = os.getenv("NOMINATIM_USER_AGENT", "RoadResQ Emergency App")
GEOCODING_ENABLED = _flag("GEOCODING_ENABLED", "true")

# Serverless functions (send-sms / send-otp)
FUNCTIONS_BASE_URL = os.getenv("FUNCTIONS_BASE_URL", "")
FUNCTIONS_API_KEY = os.getenv("FUNCTIONS_API_KEY", "")
FUNCTIONS_TIMEOUT_SECONDS = float(os.getenv("FUNCTIONS_TIMEOUT_SECONDS", "10"))

# Location broadcasting throttle windows
DRIVER_BROADCAST_SECONDS = float(os.getenv("DRIVER_BROADCAST_SECONDS", "5"))
PATIENT_BROADCAST_SECONDS = float(os.getenv("PATIENT_BROADCAST_SECONDS", "30"))

# Countdown gates
SOS_COUNTDOWN_SECONDS = int(os.getenv("SOS_COUNTDOWN_SECONDS", "10"))
ALERT_COUNTDOWN_SECONDS = int(os.getenv("ALERT_COUNTDOWN_SECONDS", "30"))

# Realtime reflection
ALERT_RECENCY_SECONDS = int(os.getenv("ALERT_RECENCY_SECONDS", "300"))
BACKFILL_WINDOW_SECONDS = int(os.getenv("BACKFILL_WINDOW_SECONDS", "3600"))
BACKFILL_LIMIT = int(os.getenv("BACKFILL_LIMIT", "3"))

# Timeouts and fallbacks
GEOLOCATION_TIMEOUT_SECONDS = float(os.getenv("GEOLOCATION_TIMEOUT_SECONDS", "10"))
ROUTING_TIMEOUT_SECONDS = float(os.getenv("ROUTING_TIMEOUT_SECONDS", "5"))
AVERAGE_SPEED_KMH = float(os.getenv("AVERAGE_SPEED_KMH", "40"))
ROUTED_CANDIDATES = int(os.getenv("ROUTED_CANDIDATES", "3"))

# Plausible fix region (defaults cover India) and accuracy threshold
REGION_MIN_LAT = float(os.getenv("REGION_MIN_LAT", "6.0"))
REGION_MAX_LAT = float(os.getenv("REGION_MAX_LAT", "37.5"))
REGION_MIN_LNG = float(os.getenv("REGION_MIN_LNG", "68.0"))
REGION_MAX_LNG = float(os.getenv("REGION_MAX_LNG", "97.5"))
MAX_ACCURACY_METERS = float(os.getenv("MAX_ACCURACY_METERS", "500"))

# Fallback position when no fix and no last-known location exist (Mumbai)
DEFAULT_LAT = float(os.getenv("DEFAULT_LAT", "19.076"))
DEFAULT_LNG = float(os.getenv("DEFAULT_LNG", "72.877"))
