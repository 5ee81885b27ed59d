"""
Job listing -> map marker resolution.

Coordinates are taken from the first source that has them:

  1. the listing's stored coordinates (precise only when they were
     geocoded from a street address),
  2. the centroid of its Wrocław district,
  3. the Wrocław city centre (Wrocław listings without a known district),
  4. the centroid of a regional city (case and diacritics ignored).

Listings none of these can place are dropped. Markers are then filtered
by ``is_plottable``: precise markers always plot. An approximate marker
sitting exactly on a placeholder centroid of a city outside the region
is dropped. Any other approximate marker must fall inside the region
bounds.
"""

from __future__ import annotations

import logging
from typing import Iterable, Mapping
from uuid import UUID

from servicetrack.core import regions
from servicetrack.models.listing import JobListing
from servicetrack.services.clustering import JobMarker

logger = logging.getLogger(__name__)


def approximate_position(city: str | None, district: str | None) -> tuple[float, float] | None:
    """District centroid, district-city centre or regional city centroid."""
    if regions.is_district_city(city):
        centroid = regions.district_centroid(district) or regions.DISTRICT_CITY_CENTER
        return centroid.lat, centroid.lng
    centroid = regions.city_centroid(city)
    if centroid is not None:
        return centroid.lat, centroid.lng
    return None


def resolve_coordinates(listing: JobListing) -> tuple[float, float, bool] | None:
    """Return ``(lat, lng, has_precise_location)`` or None."""
    if listing.lat is not None and listing.lng is not None:
        # Stored coordinates without a street were saved from a centroid.
        return float(listing.lat), float(listing.lng), bool(listing.street)

    approx = approximate_position(listing.city, listing.district)
    if approx is None:
        return None
    return approx[0], approx[1], False


def is_plottable(marker: JobMarker) -> bool:
    if marker.has_precise_location:
        return True
    if regions.is_out_of_region_centroid(marker.lat, marker.lng):
        return False
    return regions.REGION_BOUNDS.contains(marker.lat, marker.lng)


def to_marker(
    listing: JobListing,
    categories: Mapping[UUID, tuple[str | None, str | None]] | None = None,
) -> JobMarker | None:
    coords = resolve_coordinates(listing)
    if coords is None:
        logger.debug("Listing %s has no resolvable location", listing.id)
        return None
    lat, lng, precise = coords
    category, parent = (None, None)
    if categories and listing.category_id is not None:
        category, parent = categories.get(listing.category_id, (None, None))
    return JobMarker(
        id=str(listing.id),
        title=listing.title,
        city=listing.city,
        district=listing.district,
        lat=lat,
        lng=lng,
        has_precise_location=precise,
        category=category,
        parent_category=parent,
        budget=listing.budget,
        urgent=bool(listing.urgent),
    )


def build_markers(
    listings: Iterable[JobListing],
    categories: Mapping[UUID, tuple[str | None, str | None]] | None = None,
) -> list[JobMarker]:
    """Plottable markers for ``listings``, in input order."""
    markers: list[JobMarker] = []
    for listing in listings:
        marker = to_marker(listing, categories)
        if marker is not None and is_plottable(marker):
            markers.append(marker)
    return markers
