"""Road routing for ride setup.

:class:`OSRMRouteProvider` queries an OSRM-compatible ``route/v1/driving``
endpoint for the fastest route plus alternatives. When OSRM offers fewer
alternatives than requested, extra candidates are requested through a
via-point offset from the trip midpoint, alternating sides.

Transport errors are retried with exponential backoff.  If the primary
request still fails, :class:`RoutingError` is raised and the caller falls
back to :func:`straight_line_route`.  Failed via-point requests are simply
skipped.
"""

from __future__ import annotations

from typing import Any, Callable, Protocol, runtime_checkable

import httpx
import structlog
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from src.models.enums import LocationSource
from src.models.ride import Location, RouteCandidate
from src.services.clock import now_ms as _system_now_ms
from src.services.safety.geometry import distance

logger = structlog.get_logger(__name__)

# Straight-line fallback speed: 500 m per minute (~30 km/h).
FALLBACK_METERS_PER_MINUTE = 500.0

# Degrees added per extra alternative when offsetting the via-point.
VIA_POINT_OFFSET_DEGREES = 0.01


class RoutingError(RuntimeError):
    """The routing provider could not produce any route."""


@runtime_checkable
class RouteProvider(Protocol):
    async def get_routes(self, source: Location, destination: Location, count: int) -> list[RouteCandidate]: ...


def straight_line_route(source: Location, destination: Location) -> RouteCandidate:
    """Two-waypoint route used whenever road routing is unavailable."""
    meters = distance(source, destination)
    return RouteCandidate(
        waypoints=(source, destination),
        distance_meters=meters,
        duration_minutes=meters / FALLBACK_METERS_PER_MINUTE,
    )


def via_point(source: Location, destination: Location, index: int, found: int) -> Location:
    """Midpoint shifted diagonally for the *index*-th requested alternative."""
    offset = (index - found + 1) * VIA_POINT_OFFSET_DEGREES
    sign = 1 if index % 2 == 0 else -1
    return Location(
        lat=(source.lat + destination.lat) / 2 + offset * sign,
        lng=(source.lng + destination.lng) / 2 - offset * sign,
        source=LocationSource.NETWORK,
    )


class OSRMRouteProvider:
    """Route provider backed by the OSRM HTTP API.

    Parameters
    ----------
    base_url:
        OSRM server root, e.g. ``https://router.project-osrm.org``.
    timeout_seconds:
        Per-request timeout.
    client:
        Optional pre-built :class:`httpx.AsyncClient` (tests inject one
        with a mock transport).  When omitted the provider owns its client.
    """

    __slots__ = ("_base_url", "_client", "_clock", "_owns_client")

    def __init__(
        self,
        base_url: str = "https://router.project-osrm.org",
        *,
        timeout_seconds: float = 10.0,
        client: httpx.AsyncClient | None = None,
        clock: Callable[[], int] = _system_now_ms,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=timeout_seconds,
            headers={"Accept": "application/json"},
        )
        self._clock = clock

    async def get_routes(self, source: Location, destination: Location, count: int = 3) -> list[RouteCandidate]:
        """Return up to *count* road routes, fastest first.

        Raises
        ------
        RoutingError
            If the direct request fails or returns no route.
        """
        try:
            routes = await self._route([source, destination], alternatives=True)
        except Exception as exc:
            logger.warning("routing.provider_failed", error=str(exc) or type(exc).__name__)
            raise RoutingError(str(exc) or "routing provider failed") from exc

        found = len(routes)
        for index in range(found, count):
            via = via_point(source, destination, index, found)
            try:
                extra = await self._route([source, via, destination], alternatives=False)
            except Exception as exc:
                logger.info("routing.via_route_skipped", index=index, error=str(exc))
                continue
            routes.extend(extra[:1])

        logger.info("routing.routes_found", requested=count, direct=found, total=min(len(routes), count))
        return routes[:count]

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # ------------------------------------------------------------------
    # OSRM calls
    # ------------------------------------------------------------------

    async def _route(self, points: list[Location], *, alternatives: bool) -> list[RouteCandidate]:
        data = await self._fetch(points, alternatives)
        if data.get("code") != "Ok" or not data.get("routes"):
            raise RoutingError(f"No routes found (code={data.get('code')!r})")
        return [self._to_candidate(route) for route in data["routes"]]

    @retry(
        retry=retry_if_exception_type(httpx.TransportError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        reraise=True,
    )
    async def _fetch(self, points: list[Location], alternatives: bool) -> dict[str, Any]:
        coords = ";".join(f"{p.lng},{p.lat}" for p in points)
        response = await self._client.get(
            f"{self._base_url}/route/v1/driving/{coords}",
            params={
                "overview": "full",
                "geometries": "geojson",
                "alternatives": "true" if alternatives else "false",
            },
        )
        response.raise_for_status()
        return response.json()

    def _to_candidate(self, route: dict[str, Any]) -> RouteCandidate:
        # GeoJSON coordinates are [lng, lat].
        coordinates = route["geometry"]["coordinates"]
        duration_ms = float(route["duration"]) * 1000
        start = self._clock()
        step = duration_ms / len(coordinates) if coordinates else 0.0
        waypoints = tuple(
            Location(
                lat=lat,
                lng=lng,
                timestamp=start + int(index * step),
                source=LocationSource.NETWORK,
            )
            for index, (lng, lat) in enumerate(coordinates)
        )
        return RouteCandidate(
            waypoints=waypoints,
            distance_meters=float(route["distance"]),
            duration_minutes=float(route["duration"]) / 60,
        )
