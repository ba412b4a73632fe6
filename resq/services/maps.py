"""Mapping services: geocoding and driving routes.

Reverse geocoding: OpenStreetMap Nominatim (no key required)
Forward geocoding: OLA Maps Places API
Routing:           OLA Maps Directions API

Every call is a soft failure: errors and timeouts are logged and the caller
gets None, so dispatch transitions never wait on a third-party outage.
"""

import logging

import httpx

from resq.config import (
    GEOCODING_ENABLED,
    NOMINATIM_BASE_URL,
    NOMINATIM_USER_AGENT,
    OLA_MAPS_API_KEY,
    OLA_MAPS_BASE_URL,
    ROUTING_TIMEOUT_SECONDS,
)
from resq.models.hospital import RouteInfo
from resq.services import polyline

logger = logging.getLogger(__name__)

GEOCODE_TIMEOUT = 10.0


async def reverse_geocode(lat: float, lng: float) -> str | None:
    """Human-readable address for a coordinate, or None."""
    if not GEOCODING_ENABLED:
        return None

    try:
        async with httpx.AsyncClient(timeout=GEOCODE_TIMEOUT) as client:
            resp = await client.get(
                f"{NOMINATIM_BASE_URL}/reverse",
                params={
                    "format": "json",
                    "lat": lat,
                    "lon": lng,
                    "zoom": 18,
                    "addressdetails": 1,
                },
                headers={"User-Agent": NOMINATIM_USER_AGENT},
            )
            resp.raise_for_status()
        return resp.json().get("display_name")
    except httpx.TimeoutException:
        logger.warning("Reverse geocoding timed out for %s,%s", lat, lng)
    except httpx.HTTPStatusError as e:
        logger.error("Reverse geocoding error %s: %s", e.response.status_code, e)
    except Exception as e:
        logger.error("Reverse geocoding failed: %s", e)
    return None


async def forward_geocode(address: str) -> tuple[float, float] | None:
    """Coordinates (lat, lng) for a free-text address, or None."""
    if not address or not address.strip():
        return None
    if not OLA_MAPS_API_KEY:
        logger.warning("OLA_MAPS_API_KEY not set, cannot geocode address")
        return None

    try:
        async with httpx.AsyncClient(timeout=GEOCODE_TIMEOUT) as client:
            resp = await client.get(
                f"{OLA_MAPS_BASE_URL}/places/v1/geocode",
                params={"address": address, "api_key": OLA_MAPS_API_KEY},
            )
            resp.raise_for_status()
        results = resp.json().get("geocodingResults") or []
        if not results:
            logger.info("No geocoding match for %r", address)
            return None
        location = results[0].get("geometry", {}).get("location", {})
        if "lat" not in location or "lng" not in location:
            return None
        return float(location["lat"]), float(location["lng"])
    except httpx.TimeoutException:
        logger.warning("Forward geocoding timed out for %r", address)
    except httpx.HTTPStatusError as e:
        logger.error("Forward geocoding error %s: %s", e.response.status_code, e)
    except Exception as e:
        logger.error("Forward geocoding failed: %s", e)
    return None


def parse_directions(data: dict) -> RouteInfo | None:
    """Turn a directions response into a RouteInfo.

    Uses the overview polyline when present, otherwise stitches the per-step
    polylines of the first leg together.
    """
    routes = data.get("routes") or []
    if not routes:
        return None
    route = routes[0]
    legs = route.get("legs") or []
    leg = legs[0] if legs else {}

    encoded = route.get("overview_polyline")
    if isinstance(encoded, dict):
        encoded = encoded.get("points")

    path: list[tuple[float, float]] = []
    if encoded:
        path = polyline.decode(encoded)
    else:
        for step in leg.get("steps", []):
            step_line = step.get("polyline")
            if isinstance(step_line, dict):
                step_line = step_line.get("points")
            if step_line:
                path.extend(polyline.decode(step_line))
        if path:
            encoded = polyline.encode(path)

    distance = leg.get("distance")
    duration = leg.get("duration")
    # Google nests {"value": n}; OLA Maps returns plain numbers
    if isinstance(distance, dict):
        distance = distance.get("value")
    if isinstance(duration, dict):
        duration = duration.get("value")
    if distance is None or duration is None:
        return None

    return RouteInfo(
        polyline=encoded or None,
        path=path,
        distance_meters=int(distance),
        duration_seconds=int(duration),
        source="routing",
    )


async def fetch_route(
    origin: tuple[float, float],
    destination: tuple[float, float],
    timeout: float = ROUTING_TIMEOUT_SECONDS,
) -> RouteInfo | None:
    """Driving route from origin to destination, or None when routing is unavailable."""
    if not OLA_MAPS_API_KEY:
        logger.debug("No OLA Maps key, skipping route fetch")
        return None

    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            resp = await client.post(
                f"{OLA_MAPS_BASE_URL}/routing/v1/directions",
                params={
                    "origin": f"{origin[0]},{origin[1]}",
                    "destination": f"{destination[0]},{destination[1]}",
                    "api_key": OLA_MAPS_API_KEY,
                },
            )
            resp.raise_for_status()
        route = parse_directions(resp.json())
        if route is None:
            logger.warning("Directions API returned no usable route")
        return route
    except httpx.TimeoutException:
        logger.warning("Directions API timed out")
    except httpx.HTTPStatusError as e:
        logger.error("Directions API error %s: %s", e.response.status_code, e)
    except Exception as e:
        logger.error("Directions API error: %s", e)
    return None
