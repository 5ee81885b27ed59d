"""
Shared FastAPI dependencies for the servicetrack backend.

Provides the async database session, the long-lived services the
application lifespan places on ``app.state``, and authentication of the
current profile from a JWT Bearer token.
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator
from typing import Annotated, Any, Optional

import jwt
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from servicetrack.core.config import settings
from servicetrack.models.profile import Profile
from servicetrack.realtime.locationTracker import TrackingRegistry
from servicetrack.services.categoryService import CategoryDirectory
from servicetrack.services.hotspots import HotspotService
from servicetrack.services.orderService import OrderService
from servicetrack.services.orderStore import OrderStore, StoreError
from servicetrack.services.routeEstimator import EstimatorPool

# ---------------------------------------------------------------------------
# Async engine & session factory
# ---------------------------------------------------------------------------
# Created once at import time. The lifespan hands the factory to the
# ``OrderStore``; ``get_db`` scopes a session to a single request.
# ---------------------------------------------------------------------------

engine = create_async_engine(
    settings.database_url,
    echo=settings.sql_echo,
    pool_size=settings.db_pool_size,
    max_overflow=settings.db_max_overflow,
    pool_pre_ping=True,
)

async_session_factory = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield a session that is committed on success and rolled back on error."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


DBSession = Annotated[AsyncSession, Depends(get_db)]


# ---------------------------------------------------------------------------
# Application services (set on app.state by the lifespan)
# ---------------------------------------------------------------------------

def _state(request: Request, name: str) -> Any:
    service = getattr(request.app.state, name, None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Service '{name}' is not available",
        )
    return service


def get_order_store(request: Request) -> OrderStore:
    return _state(request, "order_store")


def get_order_service(request: Request) -> OrderService:
    return _state(request, "order_service")


def get_tracking_registry(request: Request) -> TrackingRegistry:
    return _state(request, "tracking")


def get_estimator_pool(request: Request) -> EstimatorPool:
    return _state(request, "estimators")


def get_category_directory(request: Request) -> CategoryDirectory:
    return _state(request, "categories")


def get_hotspot_service(request: Request) -> HotspotService:
    return _state(request, "hotspots")


Store = Annotated[OrderStore, Depends(get_order_store)]
Orders = Annotated[OrderService, Depends(get_order_service)]
Tracking = Annotated[TrackingRegistry, Depends(get_tracking_registry)]
Estimators = Annotated[EstimatorPool, Depends(get_estimator_pool)]
Categories = Annotated[CategoryDirectory, Depends(get_category_directory)]
Hotspots = Annotated[HotspotService, Depends(get_hotspot_service)]


# ---------------------------------------------------------------------------
# Request metadata dependencies
# ---------------------------------------------------------------------------

def get_client_ip(request: Request) -> str | None:
    """Client IP, preferring the first ``X-Forwarded-For`` hop."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


ClientIP = Annotated[Optional[str], Depends(get_client_ip)]


# ---------------------------------------------------------------------------
# Authentication dependencies
# ---------------------------------------------------------------------------

_bearer_scheme = HTTPBearer(auto_error=True)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def create_access_token(profile_id: uuid.UUID, role: str) -> str:
    """Sign a token for ``profile_id``; used by the simulator and tests."""
    return jwt.encode(
        {"sub": str(profile_id), "role": role},
        settings.jwt_secret,
        algorithm=settings.jwt_algorithm,
    )


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(_bearer_scheme)],
    store: Store,
) -> Profile:
    """Resolve the Bearer token to a ``Profile``; 401 when that fails."""
    try:
        payload = jwt.decode(
            credentials.credentials,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
        )
        profile_id = uuid.UUID(str(payload["sub"]))
    except jwt.ExpiredSignatureError:
        raise _unauthorized("Token expired")
    except (jwt.InvalidTokenError, KeyError, ValueError):
        raise _unauthorized("Invalid token")

    try:
        profile = await store.get_profile(profile_id)
    except StoreError as exc:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=str(exc),
        )
    if profile is None:
        raise _unauthorized("Unknown profile")
    return profile


CurrentUser = Annotated[Profile, Depends(get_current_user)]
