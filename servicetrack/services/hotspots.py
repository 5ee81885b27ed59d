"""
Vehicle Hotspots
================

Grid-based density clustering of public transport vehicles, used on the
work map to highlight busy parts of the city.

Points are bucketed into square cells of ``grid_size`` degrees (about
500 m). The densest ``top`` cells become hotspots, each levelled 1-5
against the busiest cell.

``HotspotService`` keeps the last successful feed snapshot in an injected
``TTLCache``. Callers inside the TTL get the cached hotspots; when the
feed fails they get the last good snapshot, and only see the error when
there has never been one.
"""

from __future__ import annotations

import enum
import logging
import math
from dataclasses import dataclass
from typing import Awaitable, Callable, Final, Sequence

from servicetrack.core.cache import TTLCache
from servicetrack.integrations.mpk import Vehicle, VehicleFeedError

logger = logging.getLogger(__name__)

GRID_SIZE: Final[float] = 0.005
TOP_CELLS: Final[int] = 10

_SNAPSHOT_KEY: Final[str] = "vehicles"


class ActivityLevel(str, enum.Enum):
    VERY_HIGH = "very_high"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


@dataclass(frozen=True)
class Hotspot:
    id: str
    lat: float
    lng: float
    count: int
    level: int
    activity: ActivityLevel


def activity_for(percentile: float) -> ActivityLevel:
    if percentile > 0.8:
        return ActivityLevel.VERY_HIGH
    if percentile > 0.5:
        return ActivityLevel.HIGH
    if percentile > 0.3:
        return ActivityLevel.MEDIUM
    return ActivityLevel.LOW


def compute_hotspots(
    vehicles: Sequence[Vehicle],
    *,
    grid_size: float = GRID_SIZE,
    top: int = TOP_CELLS,
) -> list[Hotspot]:
    if not vehicles:
        return []

    grid: dict[tuple[int, int], int] = {}
    for vehicle in vehicles:
        cell = (math.floor(vehicle.lng / grid_size), math.floor(vehicle.lat / grid_size))
        grid[cell] = grid.get(cell, 0) + 1

    # Stable sort keeps first-seen order among equal counts
    cells = sorted(grid.items(), key=lambda item: item[1], reverse=True)
    max_count = cells[0][1]

    hotspots: list[Hotspot] = []
    for index, ((grid_x, grid_y), count) in enumerate(cells[:top]):
        percentile = count / max_count
        hotspots.append(
            Hotspot(
                id=f"hotspot-{index}",
                lat=(grid_y + 0.5) * grid_size,
                lng=(grid_x + 0.5) * grid_size,
                count=count,
                level=min(5, max(1, math.ceil(percentile * 5))),
                activity=activity_for(percentile),
            )
        )
    return hotspots


class HotspotService:
    def __init__(
        self,
        fetch: Callable[[], Awaitable[list[Vehicle]]],
        cache: TTLCache[str, list[Vehicle]],
    ) -> None:
        self._fetch = fetch
        self._cache = cache
        self._last_good: list[Vehicle] | None = None

    async def vehicles(self) -> list[Vehicle]:
        cached = self._cache.get(_SNAPSHOT_KEY)
        if cached is not None:
            return cached
        try:
            vehicles = await self._fetch()
        except VehicleFeedError:
            if self._last_good is None:
                raise
            logger.warning("Vehicle feed failed; serving last snapshot", exc_info=True)
            return self._last_good
        self._cache.put(_SNAPSHOT_KEY, vehicles)
        self._last_good = vehicles
        return vehicles

    async def hotspots(self) -> list[Hotspot]:
        return compute_hotspots(await self.vehicles())
