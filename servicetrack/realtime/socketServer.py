"""
WebSocket Server
================

Socket.IO server through which tracking views receive live order and
location changes.

Namespaces:
  - ``/orders``   -- a client or provider watches their active orders;
                     the server pushes ``orders:snapshot`` after every
                     relevant change.
  - ``/location`` -- the provider's device streams position fixes and
                     positioning errors while an order is en route.

Architecture:
  - python-socketio AsyncServer mounted as an ASGI app under ``/ws``
  - Redis client manager when the change feed runs on Redis, so emits
    reach sockets held by other workers
  - JWT authentication on connect (``sub`` + ``role`` claims)
  - Personal rooms ``<role>_<user_id>`` for user-directed events

Connection lifecycle:
  1. Client connects with ``auth: { token: "<jwt>" }``
  2. Server validates the JWT and joins the personal room
  3. Handlers in ``realtime.handlers`` take it from there
  4. On disconnect the registry entry and any watch session are dropped
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import Any

import jwt
import socketio

from servicetrack.core.config import settings
from servicetrack.services.orderService import OrderService
from servicetrack.services.routeEstimator import EstimatorPool

logger = logging.getLogger(__name__)

NAMESPACES: list[str] = ["/orders", "/location"]
NOTIFY_EVENT: str = "notify"


# ---------------------------------------------------------------------------
# Socket.IO server instance
# ---------------------------------------------------------------------------

def _client_manager() -> socketio.AsyncManager | None:
    if settings.change_feed_backend == "redis":
        return socketio.AsyncRedisManager(settings.redis_url, write_only=False)
    return None


sio = socketio.AsyncServer(
    async_mode="asgi",
    cors_allowed_origins=settings.ws_cors_allowed_origins,
    client_manager=_client_manager(),
    logger=False,
    engineio_logger=False,
    ping_timeout=settings.ws_ping_timeout,
    ping_interval=settings.ws_ping_interval,
    max_http_buffer_size=1_000_000,
    namespaces=NAMESPACES,
)


# ---------------------------------------------------------------------------
# Services used by the handlers, bound by the application lifespan
# ---------------------------------------------------------------------------

@dataclass
class RealtimeServices:
    orders: OrderService
    estimators: EstimatorPool


_services: RealtimeServices | None = None


def bind_services(services: RealtimeServices | None) -> None:
    global _services
    _services = services


def get_services() -> RealtimeServices:
    if _services is None:
        raise RuntimeError("Realtime services are not bound; is the app running?")
    return _services


# ---------------------------------------------------------------------------
# Connection registry: (namespace, user_id) -> sids, sid -> metadata
# ---------------------------------------------------------------------------

_user_sids: dict[tuple[str, str], set[str]] = {}
_sid_meta: dict[str, dict[str, Any]] = {}


def get_user_sids(user_id: str, namespace: str = "/orders") -> set[str]:
    """Sessions ``user_id`` holds on ``namespace``."""
    return _user_sids.get((namespace, user_id), set())


def get_sid_meta(sid: str) -> dict[str, Any] | None:
    return _sid_meta.get(sid)


def _register_connection(sid: str, user_id: str, meta: dict[str, Any]) -> None:
    namespace: str = meta["namespace"]
    _user_sids.setdefault((namespace, user_id), set()).add(sid)
    _sid_meta[sid] = {**meta, "user_id": user_id}


def _unregister_connection(sid: str) -> str | None:
    """Remove a connection from the registry. Returns the user_id or None."""
    meta = _sid_meta.pop(sid, None)
    if meta is None:
        return None
    user_id: str = meta["user_id"]
    key = (meta["namespace"], user_id)
    user_set = _user_sids.get(key)
    if user_set:
        user_set.discard(sid)
        if not user_set:
            del _user_sids[key]
    return user_id


# ---------------------------------------------------------------------------
# JWT authentication
# ---------------------------------------------------------------------------

def authenticate_token(token: str | None) -> dict[str, Any] | None:
    """Validate a JWT and return its payload, or None on failure.

    Expected claims: ``sub`` (profile UUID) and ``role`` (client | provider).
    """
    if not token:
        return None
    try:
        payload: dict[str, Any] = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
        )
    except jwt.ExpiredSignatureError:
        logger.warning("JWT token expired")
        return None
    except jwt.InvalidTokenError as exc:
        logger.warning("Invalid JWT token: %s", exc)
        return None
    if "sub" not in payload or "role" not in payload:
        logger.warning("JWT missing required claims (sub, role)")
        return None
    return payload


def personal_room(role: str, user_id: str) -> str:
    return f"{role}_{user_id}"


async def _connect(sid: str, auth: dict[str, Any] | None, namespace: str) -> bool:
    payload = authenticate_token((auth or {}).get("token"))
    if payload is None:
        logger.info("Rejected %s connect for sid=%s", namespace, sid)
        return False
    user_id: str = payload["sub"]
    role: str = payload["role"]
    _register_connection(sid, user_id, {"role": role, "namespace": namespace})
    await sio.enter_room(sid, personal_room(role, user_id), namespace=namespace)
    logger.info("Connected %s: sid=%s user_id=%s role=%s", namespace, sid, user_id, role)
    return True


# ---------------------------------------------------------------------------
# Namespace connect / disconnect
# ---------------------------------------------------------------------------

@sio.on("connect", namespace="/orders")
async def connect_orders(sid: str, environ: dict[str, Any], auth: dict[str, Any] | None = None) -> bool:
    return await _connect(sid, auth, "/orders")


@sio.on("connect", namespace="/location")
async def connect_location(sid: str, environ: dict[str, Any], auth: dict[str, Any] | None = None) -> bool:
    return await _connect(sid, auth, "/location")


@sio.on("disconnect", namespace="/location")
async def disconnect_location(sid: str) -> None:
    user_id = _unregister_connection(sid)
    logger.info("Disconnected /location: sid=%s user_id=%s", sid, user_id)


def unregister(sid: str) -> str | None:
    """Drop ``sid`` from the registry (used by namespace disconnect handlers)."""
    return _unregister_connection(sid)


# ---------------------------------------------------------------------------
# Emit helpers
# ---------------------------------------------------------------------------

async def send_to_user(
    user_id: str,
    event: str,
    data: dict[str, Any],
    *,
    namespace: str = "/orders",
    role: str | None = None,
) -> None:
    """Send an event to every session of a user.

    Uses the personal room when the role is known, otherwise each sid in
    the registry.
    """
    if role:
        room = personal_room(role, user_id)
        await sio.emit(event, data, room=room, namespace=namespace)
        logger.debug("Sent %s to room=%s ns=%s", event, room, namespace)
        return
    sids = get_user_sids(user_id, namespace)
    for sid in sids:
        await sio.emit(event, data, to=sid, namespace=namespace)
    if sids:
        logger.debug("Sent %s to user=%s via %d sids ns=%s", event, user_id, len(sids), namespace)


_pending_emits: set[asyncio.Task[None]] = set()


def _schedule(coro: Any) -> None:
    task = asyncio.get_running_loop().create_task(coro)
    _pending_emits.add(task)
    task.add_done_callback(_pending_emits.discard)


def notify_user(user_id: str, level: str, message: str, *, namespace: str = "/orders") -> None:
    """Fire-and-forget toast for every session of ``user_id``."""
    _schedule(
        send_to_user(user_id, NOTIFY_EVENT, {"level": level, "message": message}, namespace=namespace)
    )


def provider_notifier(provider_id: uuid.UUID, message: str) -> None:
    """Positioning error notifier handed to the tracking registry."""
    notify_user(str(provider_id), "error", message, namespace="/location")


# ---------------------------------------------------------------------------
# ASGI app for mounting onto FastAPI
# ---------------------------------------------------------------------------

socket_app = socketio.ASGIApp(
    socketio_server=sio,
    socketio_path="/ws/socket.io",
)
