"""
Unit tests for listing -> marker resolution and the plottable filter.
"""

import uuid
from decimal import Decimal

import pytest

from servicetrack.core import regions
from servicetrack.models.listing import JobListing
from servicetrack.services.clustering import JobMarker
from servicetrack.services.jobMarkers import (
    build_markers,
    is_plottable,
    resolve_coordinates,
    to_marker,
)


def _listing(**kwargs) -> JobListing:
    kwargs.setdefault("id", uuid.uuid4())
    kwargs.setdefault("title", "Fix a tap")
    return JobListing(**kwargs)


def _marker(lat: float, lng: float, precise: bool) -> JobMarker:
    return JobMarker(
        id="m", title="t", city=None, lat=lat, lng=lng, has_precise_location=precise
    )


class TestResolveCoordinates:

    def test_stored_coordinates_with_street_are_precise(self):
        listing = _listing(city="Wrocław", street="Legnicka 1", lat=51.12, lng=17.0)
        assert resolve_coordinates(listing) == (51.12, 17.0, True)

    def test_stored_coordinates_without_street_are_approximate(self):
        listing = _listing(city="Wrocław", lat=51.12, lng=17.0)
        assert resolve_coordinates(listing) == (51.12, 17.0, False)

    def test_district_centroid(self):
        listing = _listing(city="Wrocław", district="Krzyki")
        assert resolve_coordinates(listing) == (51.0750, 17.0160, False)

    def test_district_city_without_known_district_uses_city_center(self):
        center = regions.DISTRICT_CITY_CENTER
        listing = _listing(city="wroclaw", district="Nowhere")
        assert resolve_coordinates(listing) == (center.lat, center.lng, False)

    def test_regional_city_ignores_case_and_diacritics(self):
        listing = _listing(city="walbrzych")
        lat, lng, precise = resolve_coordinates(listing)
        assert (lat, lng) == (50.7714, 16.2843)
        assert precise is False

    def test_unknown_city(self):
        assert resolve_coordinates(_listing(city="Atlantis")) is None
        assert resolve_coordinates(_listing(city=None)) is None


class TestIsPlottable:

    def test_precise_marker_always_plots(self):
        assert is_plottable(_marker(52.2297, 21.0122, True))

    def test_out_of_region_centroid_is_dropped(self):
        warsaw = regions.OUT_OF_REGION_CITIES["Warszawa"]
        assert not is_plottable(_marker(warsaw.lat, warsaw.lng, False))

    def test_regional_centroid_plots(self):
        legnica = regions.DOLNOSLASKIE_CITIES["Legnica"]
        assert is_plottable(_marker(legnica.lat, legnica.lng, False))

    @pytest.mark.parametrize(
        "lat, lng, expected",
        [
            (50.15, 14.80, True),
            (51.80, 17.85, True),
            (50.14, 16.0, False),
            (51.0, 17.86, False),
        ],
    )
    def test_approximate_marker_must_be_in_bounds(self, lat, lng, expected):
        assert is_plottable(_marker(lat, lng, False)) is expected


class TestToMarker:

    def test_category_names_are_attached(self):
        cat_id = uuid.uuid4()
        listing = _listing(
            city="Legnica",
            category_id=cat_id,
            budget=Decimal("150.00"),
            urgent=True,
        )
        marker = to_marker(listing, {cat_id: ("Plumbing", "Home")})
        assert marker.category == "Plumbing"
        assert marker.parent_category == "Home"
        assert marker.budget == Decimal("150.00")
        assert marker.urgent is True
        assert marker.id == str(listing.id)

    def test_unresolvable_listing(self):
        assert to_marker(_listing(city="Atlantis")) is None

    def test_build_markers_filters_and_keeps_order(self):
        listings = [
            _listing(title="a", city="Legnica"),
            _listing(title="b", city="Atlantis"),
            _listing(title="c", city="Warszawa", lat=52.2297, lng=21.0122),
            _listing(title="d", city="Warszawa", street="Marszałkowska 1", lat=52.2297, lng=21.0122),
            _listing(title="e", city="Wrocław", district="Krzyki"),
        ]
        assert [m.title for m in build_markers(listings)] == ["a", "d", "e"]
