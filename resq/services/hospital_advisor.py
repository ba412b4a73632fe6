"""Hospital selection and routing advice for drivers.

Candidates come from the curated hospital catalogue. They are ranked by
straight-line distance, then the closest few are enriched with driving
distance and ETA from the routing backend. Routing is bounded by a timeout;
a candidate whose route cannot be fetched keeps its straight-line estimate.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable

from resq.config import AVERAGE_SPEED_KMH, ROUTED_CANDIDATES, ROUTING_TIMEOUT_SECONDS
from resq.database import DatabaseAdapter, get_db
from resq.models.emergency import Coordinates
from resq.models.hospital import BedAvailability, Hospital, HospitalCandidate, RouteInfo
from resq.services import polyline
from resq.services.geo import straight_line_estimate
from resq.services.maps import fetch_route

logger = logging.getLogger(__name__)

RouteFetcher = Callable[[tuple[float, float], tuple[float, float]], Awaitable[RouteInfo | None]]


def straight_line_route(
    origin: tuple[float, float],
    destination: tuple[float, float],
    speed_kmh: float = AVERAGE_SPEED_KMH,
) -> RouteInfo:
    meters, seconds = straight_line_estimate(*origin, *destination, speed_kmh=speed_kmh)
    path = [origin, destination]
    return RouteInfo(
        polyline=polyline.encode(path),
        path=path,
        distance_meters=meters,
        duration_seconds=seconds,
        source="straight_line",
    )


def row_to_hospital(row: dict) -> Hospital:
    beds = BedAvailability(
        trauma=row.pop("trauma_beds", 0),
        cardiac=row.pop("cardiac_beds", 0),
        maternity=row.pop("maternity_beds", 0),
        general=row.pop("general_beds", 0),
    )
    return Hospital(**row, beds=beds)


def to_candidate(hospital: Hospital, route: RouteInfo) -> HospitalCandidate:
    return HospitalCandidate(
        id=hospital.id,
        name=hospital.name,
        address=hospital.address,
        specialty=hospital.specialty,
        coordinates=Coordinates(lat=hospital.lat, lng=hospital.lng),
        distance_meters=route.distance_meters,
        eta_seconds=route.duration_seconds,
        distance_label=route.distance_label,
        eta_label=route.eta_label,
        source=route.source,
    )


class HospitalAdvisor:
    def __init__(
        self,
        hospitals: list[Hospital] | None = None,
        route_fetcher: RouteFetcher | None = None,
        routed_candidates: int = ROUTED_CANDIDATES,
        timeout: float = ROUTING_TIMEOUT_SECONDS,
        speed_kmh: float = AVERAGE_SPEED_KMH,
    ) -> None:
        self.hospitals: dict[str, Hospital] = {h.id: h for h in hospitals or []}
        self.route_fetcher = route_fetcher or fetch_route
        self.routed_candidates = routed_candidates
        self.timeout = timeout
        self.speed_kmh = speed_kmh

    async def load(self, db: DatabaseAdapter | None = None) -> int:
        """Replace the in-memory catalogue with the ``hospitals`` table."""
        db = db or await get_db()
        rows = await db.fetch_all("SELECT * FROM hospitals")
        self.hospitals = {row["id"]: row_to_hospital(dict(row)) for row in rows}
        logger.info("Loaded %d hospitals", len(self.hospitals))
        return len(self.hospitals)

    def get(self, hospital_id: str) -> Hospital | None:
        return self.hospitals.get(hospital_id)

    def rank(self, origin: tuple[float, float]) -> list[HospitalCandidate]:
        """All hospitals ordered by straight-line distance from ``origin``."""
        candidates = [
            to_candidate(h, straight_line_route(origin, (h.lat, h.lng), self.speed_kmh))
            for h in self.hospitals.values()
        ]
        candidates.sort(key=lambda c: c.distance_meters)
        return candidates

    async def route_to(self, origin: tuple[float, float], hospital: Hospital) -> RouteInfo:
        """Driving route to ``hospital``; never fails, falls back to a straight line."""
        destination = (hospital.lat, hospital.lng)
        try:
            route = await asyncio.wait_for(self.route_fetcher(origin, destination), timeout=self.timeout)
        except TimeoutError:
            logger.warning("Routing to %s timed out after %.0fs", hospital.id, self.timeout)
            route = None
        except Exception as e:
            logger.error("Routing to %s failed: %s", hospital.id, e)
            route = None
        return route or straight_line_route(origin, destination, self.speed_kmh)

    async def candidates(
        self,
        origin: tuple[float, float],
        preferred_id: str | None = None,
    ) -> list[HospitalCandidate]:
        """Ranked candidates with distance and ETA.

        The nearest ``routed_candidates`` are re-ranked by routed ETA. A
        hospital that already claimed the emergency is listed first.
        """
        ranked = self.rank(origin)
        head = ranked[: self.routed_candidates]
        tail = ranked[self.routed_candidates :]

        routes = await asyncio.gather(*(self.route_to(origin, self.hospitals[c.id]) for c in head))
        head = [to_candidate(self.hospitals[c.id], route) for c, route in zip(head, routes)]
        head.sort(key=lambda c: c.eta_seconds)

        result = head + tail
        if preferred_id:
            preferred = [c for c in result if c.id == preferred_id]
            if preferred:
                result = preferred + [c for c in result if c.id != preferred_id]
            elif preferred_id in self.hospitals:
                hospital = self.hospitals[preferred_id]
                result = [to_candidate(hospital, await self.route_to(origin, hospital))] + result
        return result
