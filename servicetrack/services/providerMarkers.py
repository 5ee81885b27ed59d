"""
Provider profile -> map marker resolution for the provider map.

The provider map is where a client picks someone to order. Available
providers are placed the same way job listings are, with one difference:
stored coordinates always count as precise, since a provider's position
is only stored after their street address was geocoded.

Grouping differs from the job map too. Wrocław providers are always
grouped per district, and providers with a precise location leave their
cluster as individual pins once the map is zoomed in to street level
(``settings.provider_precise_zoom``).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Final, Iterable

from servicetrack.core.config import settings
from servicetrack.models.profile import Profile
from servicetrack.services.clustering import MapMarker, cluster_markers
from servicetrack.services.jobMarkers import approximate_position

logger = logging.getLogger(__name__)

# Wrocław is split into districts at every zoom level
ALWAYS_SPLIT: Final[float] = 0


@dataclass(frozen=True)
class ProviderMarker:
    id: str
    name: str
    city: str | None
    lat: float
    lng: float
    has_precise_location: bool
    district: str | None = None
    avatar_url: str | None = None
    hourly_rate: Decimal | None = None
    rating_avg: float = 0.0


def to_provider_marker(profile: Profile) -> ProviderMarker | None:
    if profile.lat is not None and profile.lng is not None:
        lat, lng, precise = float(profile.lat), float(profile.lng), True
    else:
        approx = approximate_position(profile.city, profile.district)
        if approx is None:
            logger.debug("Provider %s has no resolvable location", profile.id)
            return None
        (lat, lng), precise = approx, False
    return ProviderMarker(
        id=str(profile.id),
        name=profile.name,
        city=profile.city,
        district=profile.district,
        lat=lat,
        lng=lng,
        has_precise_location=precise,
        avatar_url=profile.avatar_url,
        hourly_rate=profile.hourly_rate,
        rating_avg=profile.rating_avg or 0.0,
    )


def build_provider_markers(profiles: Iterable[Profile]) -> list[ProviderMarker]:
    markers = []
    for profile in profiles:
        marker = to_provider_marker(profile)
        if marker is not None:
            markers.append(marker)
    return markers


def cluster_providers(
    markers: list[ProviderMarker],
    zoom: float,
    *,
    precise_zoom: float | None = None,
) -> list[MapMarker]:
    precise_zoom = settings.provider_precise_zoom if precise_zoom is None else precise_zoom
    return cluster_markers(
        markers, zoom, threshold=ALWAYS_SPLIT, precise_zoom=precise_zoom
    )


def precise_hidden(markers: list[ProviderMarker], zoom: float, *, precise_zoom: float | None = None) -> bool:
    """True when zooming in would reveal precise provider pins."""
    precise_zoom = settings.provider_precise_zoom if precise_zoom is None else precise_zoom
    return zoom < precise_zoom and any(m.has_precise_location for m in markers)
