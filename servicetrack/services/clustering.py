"""
Spatial Clustering Engine
=========================

Groups map markers into one map marker per city, or per district of the
district-capable city once the zoom reaches the split threshold. Keys
ignore case and diacritics, so "Wroclaw" and "Wrocław" share a cluster.

``cluster_markers`` is a pure function of its inputs. Any change to the
marker list or the zoom level rebuilds every cluster from scratch, and
each centroid is the arithmetic mean of all its members. The result is a
list of tagged map markers: ``SingleMarker`` for a cluster of one,
``ClusterMarker`` otherwise, in order of first appearance.

Any marker type with ``city``, ``district``, ``lat``, ``lng`` and
``has_precise_location`` can be clustered: job listings on the job map,
available providers on the provider map. The provider map also passes
``precise_zoom``: from that zoom on, markers with a precise location are
taken out of their clusters and returned first as individual pins.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Final, Generic, Literal, Protocol, Sequence, TypeVar, Union

from servicetrack.core.config import settings
from servicetrack.core.regions import normalize_name

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

UNKNOWN_CITY: Final[str] = "unknown"

_BUBBLE_BASE_PX: Final[int] = 40
_BUBBLE_STEP_PX: Final[int] = 2
_BUBBLE_MAX_PX: Final[int] = 56

URGENT_COLOR: Final[str] = "red"
CLUSTER_COLOR: Final[str] = "purple"
PIN_COLOR: Final[str] = "primary"


# ---------------------------------------------------------------------------
# Types
# ---------------------------------------------------------------------------

class Placeable(Protocol):
    @property
    def city(self) -> str | None: ...
    @property
    def district(self) -> str | None: ...
    @property
    def lat(self) -> float: ...
    @property
    def lng(self) -> float: ...
    @property
    def has_precise_location(self) -> bool: ...


M = TypeVar("M", bound=Placeable)


@dataclass(frozen=True)
class JobMarker:
    id: str
    title: str
    city: str | None
    lat: float
    lng: float
    has_precise_location: bool
    district: str | None = None
    category: str | None = None
    parent_category: str | None = None
    budget: Decimal | None = None
    urgent: bool = False


@dataclass(frozen=True)
class MarkerCluster(Generic[M]):
    key: str
    city: str
    district: str | None
    lat: float
    lng: float
    members: tuple[M, ...]
    has_urgent: bool

    @property
    def count(self) -> int:
        return len(self.members)


JobCluster = MarkerCluster[JobMarker]


@dataclass(frozen=True)
class SingleMarker(Generic[M]):
    marker: M
    kind: Literal["single"] = "single"

    @property
    def color(self) -> str:
        return URGENT_COLOR if _is_urgent(self.marker) else PIN_COLOR


@dataclass(frozen=True)
class ClusterMarker(Generic[M]):
    cluster: MarkerCluster[M]
    kind: Literal["cluster"] = "cluster"

    @property
    def size(self) -> int:
        return bubble_size(self.cluster.count)

    @property
    def color(self) -> str:
        return URGENT_COLOR if self.cluster.has_urgent else CLUSTER_COLOR


MapMarker = Union[SingleMarker, ClusterMarker]


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def bubble_size(count: int) -> int:
    """Cluster bubble diameter in pixels: grows with count, capped."""
    return min(_BUBBLE_MAX_PX, _BUBBLE_BASE_PX + count * _BUBBLE_STEP_PX)


def cluster_key(
    marker: Placeable,
    zoom: float,
    *,
    district_city: str | None = None,
    threshold: float | None = None,
) -> str:
    district_city = settings.district_city if district_city is None else district_city
    threshold = settings.district_zoom_threshold if threshold is None else threshold

    city = normalize_name(marker.city) if marker.city else UNKNOWN_CITY
    if zoom >= threshold and marker.city and city == normalize_name(district_city):
        district = normalize_name(marker.district or "")
        return f"{city}::{district}"
    return city


def cluster_markers(
    markers: Sequence[M],
    zoom: float,
    *,
    district_city: str | None = None,
    threshold: float | None = None,
    precise_zoom: float | None = None,
) -> list[MapMarker]:
    """Group ``markers`` at ``zoom`` and tag each group for rendering."""
    pins: list[MapMarker] = []
    grouped: Sequence[M] = markers
    if precise_zoom is not None and zoom >= precise_zoom:
        pins = [SingleMarker(m) for m in markers if m.has_precise_location]
        grouped = [m for m in markers if not m.has_precise_location]

    clusters = build_clusters(
        grouped, zoom, district_city=district_city, threshold=threshold
    )
    return pins + [
        SingleMarker(cluster.members[0]) if cluster.count == 1 else ClusterMarker(cluster)
        for cluster in clusters
    ]


def build_clusters(
    markers: Sequence[M],
    zoom: float,
    *,
    district_city: str | None = None,
    threshold: float | None = None,
) -> list[MarkerCluster[M]]:
    """Every group as a ``MarkerCluster``, singletons included."""
    groups: dict[str, list[M]] = {}
    for marker in markers:
        key = cluster_key(marker, zoom, district_city=district_city, threshold=threshold)
        groups.setdefault(key, []).append(marker)
    return [_build_cluster(key, members) for key, members in groups.items()]


def _is_urgent(marker: Placeable) -> bool:
    return bool(getattr(marker, "urgent", False))


def _build_cluster(key: str, members: list[M]) -> MarkerCluster[M]:
    first = members[0]
    count = len(members)
    return MarkerCluster(
        key=key,
        city=first.city or UNKNOWN_CITY,
        district=first.district if "::" in key else None,
        lat=sum(m.lat for m in members) / count,
        lng=sum(m.lng for m in members) / count,
        members=tuple(members),
        has_urgent=any(_is_urgent(m) for m in members),
    )
