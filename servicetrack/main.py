"""servicetrack API -- Main Application Entry Point

Creates the FastAPI application, wires the long-lived services onto
``app.state`` in the lifespan, registers the REST routers under the
/api/v1 prefix, and mounts the Socket.IO ASGI application.

Run with::

    uvicorn servicetrack.main:app --host 0.0.0.0 --port 8000 --reload
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, Awaitable, Callable

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from servicetrack.api.deps import DBSession, async_session_factory
from servicetrack.core.cache import TTLCache
from servicetrack.core.config import settings
from servicetrack.integrations.ipgeo import locate_ip
from servicetrack.integrations.mpk import Vehicle, fetch_vehicles
from servicetrack.integrations.routing import OsrmRouter
from servicetrack.models.order import Order
from servicetrack.realtime.changeFeed import InMemoryChangeFeed, create_change_feed
from servicetrack.realtime.locationTracker import TrackingRegistry
from servicetrack.realtime.socketServer import RealtimeServices, bind_services, provider_notifier
from servicetrack.services.bestEffortWriter import BestEffortWriter
from servicetrack.services.categoryService import CategoryDirectory
from servicetrack.services.hotspots import HotspotService
from servicetrack.services.orderService import Locator, OrderService
from servicetrack.services.orderStore import OrderStore
from servicetrack.services.routeEstimator import EstimatorPool, Router

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Service wiring
# ---------------------------------------------------------------------------

async def init_services(
    app: FastAPI,
    session_factory: async_sessionmaker[AsyncSession],
    feed: InMemoryChangeFeed,
    *,
    router: Router | None = None,
    locate: Locator = locate_ip,
    vehicles: Callable[[], Awaitable[list[Vehicle]]] = fetch_vehicles,
    resume: bool = True,
) -> None:
    """Build every long-lived service and place it on ``app.state``."""
    await feed.start()
    store = OrderStore(session_factory, feed)
    writer = BestEffortWriter(
        max_retries=settings.write_max_retries,
        backoff_seconds=settings.write_backoff_seconds,
        max_pending=settings.write_queue_size,
    )
    tracking = TrackingRegistry(store, writer, notify=provider_notifier)
    order_service = OrderService(store, tracking, locate=locate)

    osrm: OsrmRouter | None = None
    if router is None:
        osrm = OsrmRouter()
        router = osrm
    estimators = EstimatorPool(router)

    async def drop_estimator(order: Order) -> None:
        await estimators.discard(order.id)

    order_service.on_complete(drop_estimator)

    app.state.feed = feed
    app.state.order_store = store
    app.state.tracking = tracking
    app.state.order_service = order_service
    app.state.estimators = estimators
    app.state.osrm = osrm
    app.state.categories = CategoryDirectory(
        store,
        TTLCache(
            max_size=settings.category_cache_size,
            ttl_seconds=settings.category_cache_ttl_seconds,
        ),
    )
    app.state.hotspots = HotspotService(
        vehicles, TTLCache(max_size=1, ttl_seconds=settings.vehicle_cache_ttl_seconds)
    )
    bind_services(RealtimeServices(orders=order_service, estimators=estimators))

    if resume:
        await tracking.resume()


async def shutdown_services(app: FastAPI) -> None:
    """Stop background work. Live location rows are left in place so a
    restarted process can resume tracking."""
    bind_services(None)
    estimators: EstimatorPool | None = getattr(app.state, "estimators", None)
    if estimators is not None:
        await estimators.close()
    tracking: TrackingRegistry | None = getattr(app.state, "tracking", None)
    if tracking is not None:
        await tracking.close()
    osrm: OsrmRouter | None = getattr(app.state, "osrm", None)
    if osrm is not None:
        await osrm.aclose()
    feed: InMemoryChangeFeed | None = getattr(app.state, "feed", None)
    if feed is not None:
        await feed.close()


# ---------------------------------------------------------------------------
# Lifespan: startup / shutdown hooks
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup wires services and registers Socket.IO handlers; shutdown
    releases them."""
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    # Importing handlers is sufficient to register all Socket.IO events
    from servicetrack.realtime import handlers  # noqa: F401

    feed = create_change_feed(
        settings.change_feed_backend,
        settings.redis_url,
        settings.change_feed_channel_prefix,
    )
    await init_services(app, async_session_factory, feed)
    logger.info("%s %s started", settings.app_name, settings.app_version)

    yield

    await shutdown_services(app)


# ---------------------------------------------------------------------------
# Application instance
# ---------------------------------------------------------------------------

app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Health check
# ---------------------------------------------------------------------------

@app.get("/health", tags=["Health"])
async def health(db: DBSession) -> dict[str, Any]:
    """Readiness probe: the API is up and the database answers."""
    await db.execute(text("SELECT 1"))
    return {"status": "ok", "version": settings.app_version}


# ---------------------------------------------------------------------------
# Register API route modules
# ---------------------------------------------------------------------------

from servicetrack.api.routes import jobsMap, location, orders, providersMap, workmap  # noqa: E402

_prefix = settings.api_v1_prefix

app.include_router(orders.router, prefix=_prefix)
app.include_router(location.router, prefix=_prefix)
app.include_router(jobsMap.router, prefix=_prefix)
app.include_router(workmap.router, prefix=_prefix)
app.include_router(providersMap.router, prefix=_prefix)


# ---------------------------------------------------------------------------
# Mount Socket.IO ASGI application
# ---------------------------------------------------------------------------

from servicetrack.realtime.socketServer import socket_app  # noqa: E402

app.mount("/ws", socket_app)
