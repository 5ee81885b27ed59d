"""
E2E test fixtures for the servicetrack API.

Provides:
- An in-process FastAPI test app with every REST router registered and
  the long-lived services wired by ``init_services``
- httpx AsyncClient wired via ASGI transport (no network needed)
- Bearer tokens for the seeded client and provider profiles
- Seeded job listings and categories for the job map

External services (OSRM, IP geolocation, the vehicle feed) are replaced
by ``AsyncMock`` callables passed to ``init_services``, so the full
route -> service -> store flow is exercised.
"""

from __future__ import annotations

import uuid
from decimal import Decimal
from typing import Any, AsyncGenerator
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from servicetrack.api.deps import create_access_token, get_db
from servicetrack.integrations.mpk import Vehicle
from servicetrack.models import Category, JobListing, Profile, ProfileRole
from servicetrack.realtime.changeFeed import InMemoryChangeFeed

from tests.conftest import CLIENT_ID, OTHER_CLIENT_ID, OTHER_PROVIDER_ID, PROVIDER_ID

API = "/api/v1"

PLUMBING_ID = uuid.UUID("33333333-3333-3333-3333-333333333333")
HOME_ID = uuid.UUID("44444444-4444-4444-4444-444444444444")


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------

def auth_headers(profile_id: uuid.UUID, role: ProfileRole) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(profile_id, role.value)}"}


CLIENT_HEADERS = auth_headers(CLIENT_ID, ProfileRole.CLIENT)
PROVIDER_HEADERS = auth_headers(PROVIDER_ID, ProfileRole.PROVIDER)
OTHER_CLIENT_HEADERS = auth_headers(OTHER_CLIENT_ID, ProfileRole.CLIENT)
OTHER_PROVIDER_HEADERS = auth_headers(OTHER_PROVIDER_ID, ProfileRole.PROVIDER)


# ---------------------------------------------------------------------------
# FastAPI test application
# ---------------------------------------------------------------------------

def _create_test_app(session_factory: async_sessionmaker[AsyncSession]) -> FastAPI:
    """Build a FastAPI app with all routers registered and the DB
    dependency pointed at the test database."""
    from servicetrack.api.routes import jobsMap, location, orders, providersMap, workmap

    app = FastAPI(title="servicetrack test")

    async def _override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _override_get_db

    app.include_router(orders.router, prefix=API)
    app.include_router(location.router, prefix=API)
    app.include_router(jobsMap.router, prefix=API)
    app.include_router(workmap.router, prefix=API)
    app.include_router(providersMap.router, prefix=API)
    return app


@pytest.fixture
def vehicle_feed() -> AsyncMock:
    """Vehicle feed with three trams at one stop and a bus elsewhere."""
    vehicles = [
        Vehicle(id=str(i), lat=51.1001 + i * 0.0001, lng=17.0001, line="33", timestamp="2024-05-01T10:00:00")
        for i in range(3)
    ]
    vehicles.append(Vehicle(id="b", lat=51.1401, lng=17.0501, line="145", timestamp="2024-05-01T10:00:00"))
    return AsyncMock(return_value=vehicles)


@pytest_asyncio.fixture
async def app(session_factory, profiles, fake_router, locate, vehicle_feed) -> AsyncGenerator[FastAPI, None]:
    from servicetrack.main import init_services, shutdown_services

    app = _create_test_app(session_factory)
    await init_services(
        app,
        session_factory,
        InMemoryChangeFeed(),
        router=fake_router,
        locate=locate,
        vehicles=vehicle_feed,
        resume=False,
    )
    yield app
    await shutdown_services(app)


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """httpx AsyncClient connected to the test app via ASGI transport."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


# ---------------------------------------------------------------------------
# Seed data: job listings
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def listings(session_factory) -> list[JobListing]:
    home = Category(id=HOME_ID, name="Home")
    plumbing = Category(id=PLUMBING_ID, name="Plumbing", parent_id=HOME_ID)
    rows = [
        JobListing(title="Leaking tap", city="Wrocław", district="Krzyki", category_id=PLUMBING_ID,
                   budget=Decimal("120.00"), urgent=True),
        JobListing(title="Paint a fence", city="Wrocław", district="Krzyki"),
        JobListing(title="Assemble wardrobe", city="Wrocław", district="Stare Miasto",
                   street="Rynek 1", lat=51.1101, lng=17.0321),
        JobListing(title="Mow the lawn", city="Legnica"),
        JobListing(title="Move a piano", city="Warszawa", lat=52.2297, lng=21.0122),
        JobListing(title="Old listing", city="Legnica", is_active=False),
    ]
    async with session_factory() as session:
        session.add_all([home, plumbing])
        await session.flush()
        session.add_all(rows)
        await session.commit()
    return rows


# ---------------------------------------------------------------------------
# Seed data: available providers
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def providers(session_factory, profiles) -> list[Profile]:
    """Providers on top of the base profiles (Piotr N. in Wrocław without
    a district, Jan W. without a city)."""
    rows = [
        Profile(role=ProfileRole.PROVIDER, name="Marta Z.", city="Wrocław", district="Krzyki",
                street="Powstańców Śląskich 95", lat=51.09, lng=17.02, rating_avg=4.9,
                hourly_rate=Decimal("90.00")),
        Profile(role=ProfileRole.PROVIDER, name="Tomasz B.", city="Wrocław", district="Krzyki",
                rating_avg=4.5),
        Profile(role=ProfileRole.PROVIDER, name="Ola P.", city="Legnica", rating_avg=4.0),
        Profile(role=ProfileRole.PROVIDER, name="On holiday", city="Legnica", is_available=False),
    ]
    async with session_factory() as session:
        session.add_all(rows)
        await session.commit()
    return rows


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

async def create_order_via_api(
    client: AsyncClient,
    *,
    lat: float | None = 52.0,
    lng: float | None = 21.0,
    headers: dict[str, str] = CLIENT_HEADERS,
) -> dict[str, Any]:
    body: dict[str, Any] = {"provider_id": str(PROVIDER_ID)}
    if lat is not None and lng is not None:
        body.update(client_lat=lat, client_lng=lng)
    resp = await client.post(f"{API}/orders", json=body, headers=headers)
    assert resp.status_code == 201, resp.text
    return resp.json()


async def transition(
    client: AsyncClient,
    order_id: str,
    action: str,
    headers: dict[str, str] = PROVIDER_HEADERS,
) -> dict[str, Any]:
    resp = await client.post(f"{API}/orders/{order_id}/{action}", headers=headers)
    assert resp.status_code == 200, resp.text
    return resp.json()
