"""
Wrocław public transport vehicle feed
=====================================

Reads the latest vehicle positions from the city's open-data datastore
(CKAN ``datastore_search``). Records use Polish field names; a few older
resources publish ``latitude``/``longitude`` or ``lat``/``lng`` instead,
so all three spellings are accepted. Positions outside the Wrocław area
are discarded.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Final

import httpx

from servicetrack.core.config import settings
from servicetrack.core.regions import Bounds
from servicetrack.integrations.httpRetry import IntegrationError, get_json_with_retry

logger = logging.getLogger(__name__)

WROCLAW_AREA: Final[Bounds] = Bounds(south=50.9, west=16.8, north=51.3, east=17.3)


class VehicleFeedError(IntegrationError):
    """Raised when the vehicle feed is unreachable or malformed."""


@dataclass(frozen=True)
class Vehicle:
    id: str
    lat: float
    lng: float
    line: str | None
    timestamp: str


def _first_number(record: dict[str, Any], *names: str) -> float | None:
    for name in names:
        value = record.get(name)
        if value in (None, "", 0):
            continue
        try:
            return float(value)
        except (TypeError, ValueError):
            continue
    return None


def parse_vehicle(record: dict[str, Any]) -> Vehicle | None:
    lat = _first_number(record, "Ostatnia_Pozycja_Szerokosc", "latitude", "lat")
    lng = _first_number(record, "Ostatnia_Pozycja_Dlugosc", "longitude", "lng")
    if lat is None or lng is None:
        return None
    if not WROCLAW_AREA.contains(lat, lng):
        return None

    vehicle_id = record.get("_id") or record.get("Nr_Tab")
    if vehicle_id in (None, ""):
        return None
    line = record.get("Linia")
    return Vehicle(
        id=str(vehicle_id),
        lat=lat,
        lng=lng,
        line=str(line) if line not in (None, "") else None,
        timestamp=record.get("Data_Aktualizacji") or datetime.now(timezone.utc).isoformat(),
    )


def parse_feed(data: Any) -> list[Vehicle]:
    if not isinstance(data, dict) or not data.get("success"):
        raise VehicleFeedError("Invalid vehicle feed response", raw=data)
    records = (data.get("result") or {}).get("records")
    if not isinstance(records, list):
        raise VehicleFeedError("Vehicle feed response has no records", raw=data)

    vehicles = [v for v in (parse_vehicle(r) for r in records if isinstance(r, dict)) if v]
    logger.debug("Parsed %d of %d vehicle records", len(vehicles), len(records))
    return vehicles


async def fetch_vehicles(client: httpx.AsyncClient | None = None) -> list[Vehicle]:
    """Fetch and parse the current vehicle positions.

    Raises:
        VehicleFeedError: On transport failure or an unexpected payload.
    """
    params = {
        "resource_id": settings.vehicle_feed_resource_id,
        "limit": settings.vehicle_feed_limit,
    }
    if client is not None:
        data = await get_json_with_retry(
            client, settings.vehicle_feed_url, params=params,
            service="Vehicle feed", error_cls=VehicleFeedError,
        )
    else:
        async with httpx.AsyncClient() as own_client:
            data = await get_json_with_retry(
                own_client, settings.vehicle_feed_url, params=params,
                service="Vehicle feed", error_cls=VehicleFeedError,
            )
    return parse_feed(data)
