"""
E2E: the job map, the provider map and the work map.
"""

from __future__ import annotations

from decimal import Decimal

import pytest

from servicetrack.integrations.mpk import VehicleFeedError

from tests.e2e.conftest import API

pytestmark = pytest.mark.asyncio


def _by_kind(markers: list[dict]) -> tuple[list[dict], list[dict]]:
    singles = [m for m in markers if m["kind"] == "single"]
    clusters = [m for m in markers if m["kind"] == "cluster"]
    return singles, clusters


class TestJobMap:

    async def test_city_level_clusters(self, client, listings):
        resp = await client.get(f"{API}/jobs/map", params={"zoom": 10})
        assert resp.status_code == 200
        data = resp.json()
        # Inactive and out-of-region placeholder listings are not plotted
        assert data["total_jobs"] == 4

        singles, clusters = _by_kind(data["markers"])
        [wroclaw] = clusters
        assert wroclaw["key"] == "wroclaw"
        assert wroclaw["count"] == 3
        assert wroclaw["size"] == 46
        assert wroclaw["color"] == "red"
        assert wroclaw["district"] is None

        [legnica] = singles
        assert legnica["job"]["title"] == "Mow the lawn"
        assert legnica["job"]["has_precise_location"] is False
        assert legnica["color"] == "primary"

    async def test_district_split_at_zoom_12(self, client, listings):
        data = (await client.get(f"{API}/jobs/map", params={"zoom": 12})).json()
        singles, clusters = _by_kind(data["markers"])
        [krzyki] = clusters
        assert krzyki["key"] == "wroclaw::krzyki"
        assert krzyki["district"] == "Krzyki"
        assert krzyki["lat"] == pytest.approx(51.0750)
        assert {s["job"]["title"] for s in singles} == {"Assemble wardrobe", "Mow the lawn"}

    async def test_category_names(self, client, listings):
        data = (await client.get(f"{API}/jobs/map", params={"zoom": 12})).json()
        _, [krzyki] = _by_kind(data["markers"])
        tap = next(j for j in krzyki["jobs"] if j["title"] == "Leaking tap")
        assert tap["category"] == "Plumbing"
        assert tap["parent_category"] == "Home"
        assert tap["urgent"] is True

    async def test_city_filter(self, client, listings):
        data = (await client.get(f"{API}/jobs/map", params={"zoom": 10, "city": "legnica"})).json()
        assert data["total_jobs"] == 1

    async def test_zoom_is_validated(self, client):
        resp = await client.get(f"{API}/jobs/map", params={"zoom": 30})
        assert resp.status_code == 422

    async def test_empty_map(self, client):
        data = (await client.get(f"{API}/jobs/map")).json()
        assert data == {"zoom": 10.0, "total_jobs": 0, "markers": []}


class TestProviderMap:

    async def test_providers_grouped_by_district(self, client, providers):
        resp = await client.get(f"{API}/providers/map", params={"zoom": 10})
        assert resp.status_code == 200
        data = resp.json()
        # Clients, unavailable providers and providers without a city are left out
        assert data["total_providers"] == 4
        assert data["precise_hidden"] is True

        singles, clusters = _by_kind(data["markers"])
        [krzyki] = clusters
        assert krzyki["key"] == "wroclaw::krzyki"
        assert krzyki["count"] == 2
        assert krzyki["size"] == 44
        assert krzyki["lat"] == pytest.approx(51.0825)
        assert krzyki["lng"] == pytest.approx(17.018)
        assert [p["name"] for p in krzyki["providers"]] == ["Marta Z.", "Tomasz B."]
        assert {s["provider"]["name"] for s in singles} == {"Ola P.", "Piotr N."}

    async def test_wroclaw_without_district_keeps_its_own_group(self, client, providers):
        data = (await client.get(f"{API}/providers/map", params={"zoom": 10})).json()
        singles, _ = _by_kind(data["markers"])
        piotr = next(s["provider"] for s in singles if s["provider"]["name"] == "Piotr N.")
        assert piotr["lat"] == pytest.approx(51.1079)
        assert piotr["has_precise_location"] is False

    async def test_precise_pins_at_street_zoom(self, client, providers):
        data = (await client.get(f"{API}/providers/map", params={"zoom": 15})).json()
        assert data["precise_hidden"] is False

        first, *rest = data["markers"]
        assert first["kind"] == "single"
        marta = first["provider"]
        assert marta["name"] == "Marta Z."
        assert marta["has_precise_location"] is True
        assert (marta["lat"], marta["lng"]) == (51.09, 17.02)
        assert Decimal(marta["hourly_rate"]) == Decimal("90")

        assert all(m["kind"] == "single" for m in rest)
        assert {m["provider"]["name"] for m in rest} == {"Tomasz B.", "Ola P.", "Piotr N."}

    async def test_city_filter(self, client, providers):
        data = (await client.get(f"{API}/providers/map", params={"city": "legnica"})).json()
        assert data["total_providers"] == 1
        [ola] = data["markers"]
        assert ola["provider"]["name"] == "Ola P."

    async def test_base_profiles_only(self, client):
        data = (await client.get(f"{API}/providers/map")).json()
        # Only the two base providers: Piotr N. is placed, Jan W. is not
        assert data["total_providers"] == 1
        assert data["precise_hidden"] is False


class TestWorkMap:

    async def test_hotspots(self, client, vehicle_feed):
        resp = await client.get(f"{API}/workmap/hotspots")
        assert resp.status_code == 200
        data = resp.json()
        assert data["vehicle_count"] == 4
        busiest = data["hotspots"][0]
        assert busiest["count"] == 3
        assert busiest["level"] == 5
        assert busiest["activity"] == "very_high"

        await client.get(f"{API}/workmap/hotspots")
        assert vehicle_feed.await_count == 1

    async def test_feed_down_without_snapshot_is_503(self, client, vehicle_feed):
        vehicle_feed.side_effect = VehicleFeedError("down")
        resp = await client.get(f"{API}/workmap/hotspots")
        assert resp.status_code == 503
