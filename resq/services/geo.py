"""
Distance, ETA and position-fix helpers.

Haversine great-circle distance is the straight-line fallback whenever the
routing backend cannot answer. Fix validation replaces the old "assume bad
data, use the venue" hack: a fix outside the plausible region or with poor
accuracy is treated as no fix at all.
"""

import asyncio
import logging
import math
from collections.abc import Awaitable
from dataclasses import dataclass
from enum import Enum

from resq.config import (
    AVERAGE_SPEED_KMH,
    DEFAULT_LAT,
    DEFAULT_LNG,
    GEOLOCATION_TIMEOUT_SECONDS,
    MAX_ACCURACY_METERS,
    REGION_MAX_LAT,
    REGION_MAX_LNG,
    REGION_MIN_LAT,
    REGION_MIN_LNG,
)

logger = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6371.0


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance between two points in kilometers."""
    lat1_r = math.radians(lat1)
    lat2_r = math.radians(lat2)
    dlat = math.radians(lat2 - lat1)
    dlng = math.radians(lng2 - lng1)

    a = (math.sin(dlat / 2) ** 2 +
         math.cos(lat1_r) * math.cos(lat2_r) * math.sin(dlng / 2) ** 2)
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_KM * c


def straight_line_estimate(
    lat1: float,
    lng1: float,
    lat2: float,
    lng2: float,
    speed_kmh: float = AVERAGE_SPEED_KMH,
) -> tuple[int, int]:
    """Return (distance_meters, duration_seconds) assuming a constant average speed."""
    km = haversine_km(lat1, lng1, lat2, lng2)
    seconds = (km / speed_kmh) * 3600 if speed_kmh > 0 else 0
    return round(km * 1000), round(seconds)


@dataclass(frozen=True)
class Region:
    min_lat: float
    max_lat: float
    min_lng: float
    max_lng: float

    def contains(self, lat: float, lng: float) -> bool:
        return self.min_lat <= lat <= self.max_lat and self.min_lng <= lng <= self.max_lng


DEFAULT_REGION = Region(REGION_MIN_LAT, REGION_MAX_LAT, REGION_MIN_LNG, REGION_MAX_LNG)


@dataclass(frozen=True)
class PositionFix:
    lat: float
    lng: float
    accuracy: float | None = None
    timestamp: float | None = None


def is_valid_fix(
    fix: PositionFix | None,
    region: Region = DEFAULT_REGION,
    max_accuracy: float = MAX_ACCURACY_METERS,
) -> bool:
    """A fix is usable when it lies inside the region and is accurate enough."""
    if fix is None:
        return False
    if math.isnan(fix.lat) or math.isnan(fix.lng):
        return False
    if fix.lat == 0 and fix.lng == 0:
        return False
    if not region.contains(fix.lat, fix.lng):
        return False
    if fix.accuracy is not None and fix.accuracy > max_accuracy:
        return False
    return True


class LocationErrorCode(str, Enum):
    PERMISSION_DENIED = "permission_denied"
    UNAVAILABLE = "unavailable"
    TIMEOUT = "timeout"


class LocationError(Exception):
    def __init__(self, code: LocationErrorCode, message: str = ""):
        super().__init__(message or code.value)
        self.code = code


@dataclass(frozen=True)
class ResolvedPosition:
    fix: PositionFix
    source: str  # "gps" | "last_known" | "default"
    error: LocationErrorCode | None = None


async def acquire_position(
    request: Awaitable[PositionFix],
    last_known: PositionFix | None = None,
    timeout: float = GEOLOCATION_TIMEOUT_SECONDS,
    region: Region = DEFAULT_REGION,
) -> ResolvedPosition:
    """Wait for a device fix, falling back to last-known then default coordinates.

    Location errors are never fatal: permission, availability and timeout
    failures all resolve to a fallback position tagged with the error code.
    """
    error: LocationErrorCode | None = None
    try:
        fix = await asyncio.wait_for(request, timeout=timeout)
        if is_valid_fix(fix, region):
            return ResolvedPosition(fix=fix, source="gps")
        logger.warning("Discarding implausible fix %s,%s", fix.lat, fix.lng)
        error = LocationErrorCode.UNAVAILABLE
    except TimeoutError:
        logger.warning("Geolocation timed out after %.0fs", timeout)
        error = LocationErrorCode.TIMEOUT
    except LocationError as e:
        logger.warning("Geolocation failed: %s", e.code.value)
        error = e.code

    if last_known is not None and is_valid_fix(last_known, region):
        return ResolvedPosition(fix=last_known, source="last_known", error=error)
    return ResolvedPosition(
        fix=PositionFix(lat=DEFAULT_LAT, lng=DEFAULT_LNG),
        source="default",
        error=error,
    )
