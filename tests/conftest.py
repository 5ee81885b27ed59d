"""
Shared pytest fixtures for servicetrack tests.

Provides an in-memory SQLite store (the real ``OrderStore`` over
aiosqlite), seeded client/provider profiles, and small fakes for clocks
and routers so timing-dependent code can be tested deterministically.
"""

import uuid
from typing import Any, AsyncGenerator
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from servicetrack.integrations.routing import RouteResult
from servicetrack.models import Base, Order, OrderStatus, Profile, ProfileRole
from servicetrack.realtime.changeFeed import InMemoryChangeFeed
from servicetrack.realtime.locationTracker import PositionOptions, TrackingRegistry
from servicetrack.services.bestEffortWriter import BestEffortWriter
from servicetrack.services.orderService import OrderService
from servicetrack.services.orderStore import OrderStore
from servicetrack.services.routeEstimator import EstimatorPool

# ---------------------------------------------------------------------------
# Stable IDs
# ---------------------------------------------------------------------------

CLIENT_ID = uuid.UUID("aaaaaaaa-aaaa-aaaa-aaaa-aaaaaaaaaaaa")
PROVIDER_ID = uuid.UUID("bbbbbbbb-bbbb-bbbb-bbbb-bbbbbbbbbbbb")
OTHER_CLIENT_ID = uuid.UUID("cccccccc-cccc-cccc-cccc-cccccccccccc")
OTHER_PROVIDER_ID = uuid.UUID("dddddddd-dddd-dddd-dddd-dddddddddddd")

TEST_DB_URL = "sqlite+aiosqlite:///:memory:"


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

class FakeClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_route(duration: float = 600.0, distance: float = 5000.0) -> RouteResult:
    return RouteResult(
        polyline=[(52.0, 21.0), (52.005, 21.005), (52.01, 21.01)],
        duration_seconds=duration,
        distance_meters=distance,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_router() -> AsyncMock:
    """Async router returning a 10-minute route."""
    return AsyncMock(return_value=make_route())


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def engine():
    """Fresh in-memory database per test; StaticPool keeps one connection
    so every session sees the same database."""
    engine = create_async_engine(
        TEST_DB_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    # SQLite does not enforce foreign keys by default
    @event.listens_for(engine.sync_engine, "connect")
    def _enable_fk(dbapi_conn, _):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def feed() -> InMemoryChangeFeed:
    return InMemoryChangeFeed()


@pytest_asyncio.fixture
async def store(session_factory, feed) -> OrderStore:
    return OrderStore(session_factory, feed)


async def _seed_profiles(session_factory: async_sessionmaker[AsyncSession]) -> dict[str, Profile]:
    profiles = {
        "client": Profile(id=CLIENT_ID, role=ProfileRole.CLIENT, name="Anna K.", city="Wrocław"),
        "provider": Profile(id=PROVIDER_ID, role=ProfileRole.PROVIDER, name="Piotr N.", city="Wrocław"),
        "other_client": Profile(id=OTHER_CLIENT_ID, role=ProfileRole.CLIENT, name="Ewa M."),
        "other_provider": Profile(id=OTHER_PROVIDER_ID, role=ProfileRole.PROVIDER, name="Jan W."),
    }
    async with session_factory() as session:
        session.add_all(profiles.values())
        await session.commit()
    return profiles


@pytest_asyncio.fixture
async def profiles(session_factory) -> dict[str, Profile]:
    return await _seed_profiles(session_factory)


@pytest.fixture
def client_profile(profiles) -> Profile:
    return profiles["client"]


@pytest.fixture
def provider_profile(profiles) -> Profile:
    return profiles["provider"]


@pytest_asyncio.fixture
async def writer() -> AsyncGenerator[BestEffortWriter, None]:
    writer = BestEffortWriter(max_retries=0, backoff_seconds=0.01, max_pending=64)
    yield writer
    await writer.close()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

async def create_order(
    store: OrderStore,
    *,
    status: OrderStatus = OrderStatus.REQUESTED,
    client_id: uuid.UUID = CLIENT_ID,
    provider_id: uuid.UUID = PROVIDER_ID,
    lat: float = 52.0,
    lng: float = 21.0,
) -> Order:
    return await store.insert_order(
        client_id=client_id,
        provider_id=provider_id,
        client_lat=lat,
        client_lng=lng,
        status=status,
    )


@pytest.fixture
def make_order(store, profiles):
    """``await make_order(status=...)`` inserts an order between the seeded
    client and provider."""

    async def _make(**kwargs: Any) -> Order:
        return await create_order(store, **kwargs)

    return _make


@pytest.fixture
def route_result() -> RouteResult:
    return make_route()


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------

@pytest.fixture
def tracking(store, writer) -> TrackingRegistry:
    """Registry without a no-fix timeout so tests control every fix."""
    return TrackingRegistry(store, writer, options=PositionOptions(timeout_ms=0))


@pytest.fixture
def locate() -> AsyncMock:
    """IP locator resolving every address to central Wrocław."""
    return AsyncMock(return_value=(51.1, 17.03))


@pytest.fixture
def order_service(store, tracking, locate) -> OrderService:
    return OrderService(store, tracking, locate=locate)


@pytest_asyncio.fixture
async def estimators(fake_router) -> AsyncGenerator[EstimatorPool, None]:
    pool = EstimatorPool(fake_router, throttle_seconds=15, refresh_seconds=3600)
    yield pool
    await pool.close()
