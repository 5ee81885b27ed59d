"""
OSRM routing client
===================

Driving route and duration between two points from an OSRM server
(``route/v1/driving``). OSRM takes and returns coordinates as
``lng,lat``; everything leaving this module is ``(lat, lng)``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

from servicetrack.core.config import settings
from servicetrack.integrations.httpRetry import IntegrationError, get_json_with_retry

logger = logging.getLogger(__name__)


class RoutingError(IntegrationError):
    """Raised when the routing service fails or returns no route."""


@dataclass(frozen=True)
class RouteResult:
    """A driving route: polyline as (lat, lng) pairs, duration in seconds."""

    polyline: list[tuple[float, float]]
    duration_seconds: float
    distance_meters: float


def _route_url(
    base_url: str, origin: tuple[float, float], destination: tuple[float, float]
) -> str:
    coords = f"{origin[1]},{origin[0]};{destination[1]},{destination[0]}"
    return f"{base_url.rstrip('/')}/route/v1/driving/{coords}"


class OsrmRouter:
    """Callable router used by the route estimator."""

    def __init__(
        self,
        base_url: str | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url or settings.routing_base_url
        self._client = client

    async def __call__(
        self, origin: tuple[float, float], destination: tuple[float, float]
    ) -> RouteResult:
        return await self.get_route(origin, destination)

    async def get_route(
        self, origin: tuple[float, float], destination: tuple[float, float]
    ) -> RouteResult:
        """Fetch the fastest driving route from ``origin`` to ``destination``.

        Raises:
            RoutingError: On transport failure or when OSRM finds no route.
        """
        url = _route_url(self._base_url, origin, destination)
        params = {"overview": "full", "geometries": "geojson"}

        if self._client is not None:
            data = await get_json_with_retry(
                self._client, url, params=params, service="OSRM", error_cls=RoutingError
            )
        else:
            async with httpx.AsyncClient() as client:
                data = await get_json_with_retry(
                    client, url, params=params, service="OSRM", error_cls=RoutingError
                )

        return parse_route(data)

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()


def parse_route(data: object) -> RouteResult:
    if not isinstance(data, dict):
        raise RoutingError("Unexpected response format from OSRM", raw=data)

    code = data.get("code")
    routes = data.get("routes") or []
    if code not in (None, "Ok") or not routes:
        raise RoutingError(f"OSRM returned no route (code={code})", status=code, raw=data)

    route = routes[0]
    coordinates = (route.get("geometry") or {}).get("coordinates") or []
    try:
        polyline = [(float(lat), float(lng)) for lng, lat, *_ in coordinates]
        return RouteResult(
            polyline=polyline,
            duration_seconds=float(route["duration"]),
            distance_meters=float(route.get("distance", 0.0)),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise RoutingError("Malformed OSRM route", raw=route) from exc
