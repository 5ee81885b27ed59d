"""
Order Watch Handler
===================

Socket.IO handler for the ``/orders`` namespace. Each socket can hold one
tracking session: a ``ProviderTrackingSession`` for providers, a
``ClientTrackingSession`` for clients. The session re-fetches on every
matching change and pushes the result to that socket as
``orders:snapshot``.

Events (client -> server):
  - ``orders:watch``    -- mount the session, ack with the first snapshot
  - ``orders:unwatch``  -- unmount it
  - ``orders:action``   -- ``{order_id, action}``; providers may send any
                           provider action, clients only ``cancel``

Events (server -> client):
  - ``orders:snapshot`` -- full view of the user's active orders
  - ``notify``          -- ``{level, message}`` toast
"""

from __future__ import annotations

import logging
import uuid
from typing import Any

from servicetrack.models.profile import Profile, ProfileRole
from servicetrack.services.clientTracking import ClientTrackingSession
from servicetrack.services.orderStateMachine import OrderAction
from servicetrack.services.providerTracking import ProviderTrackingSession

from ..socketServer import _schedule, get_services, get_sid_meta, sio, unregister

logger = logging.getLogger(__name__)

NAMESPACE = "/orders"
SNAPSHOT_EVENT = "orders:snapshot"

Session = ProviderTrackingSession | ClientTrackingSession

_sessions: dict[str, Session] = {}


def get_session(sid: str) -> Session | None:
    return _sessions.get(sid)


async def _load_profile(sid: str) -> Profile | None:
    meta = get_sid_meta(sid)
    if meta is None:
        return None
    try:
        profile_id = uuid.UUID(meta["user_id"])
    except ValueError:
        return None
    return await get_services().orders.store.get_profile(profile_id)


def _build_session(sid: str, profile: Profile) -> Session:
    services = get_services()

    async def on_change(snapshot: dict[str, Any]) -> None:
        await sio.emit(SNAPSHOT_EVENT, snapshot, to=sid, namespace=NAMESPACE)

    def notify(level: str, message: str) -> None:
        _schedule(
            sio.emit("notify", {"level": level, "message": message}, to=sid, namespace=NAMESPACE)
        )

    if profile.role == ProfileRole.PROVIDER:
        return ProviderTrackingSession(
            services.orders, profile, notify=notify, on_change=on_change
        )
    return ClientTrackingSession(
        services.orders, profile, services.estimators, notify=notify, on_change=on_change
    )


async def _drop_session(sid: str) -> bool:
    session = _sessions.pop(sid, None)
    if session is None:
        return False
    await session.unmount()
    return True


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------

@sio.on("orders:watch", namespace=NAMESPACE)
async def handle_watch(sid: str, data: dict[str, Any] | None = None) -> dict[str, Any]:
    profile = await _load_profile(sid)
    if profile is None:
        return {"ok": False, "error": "Unknown user"}

    await _drop_session(sid)
    session = _build_session(sid, profile)
    _sessions[sid] = session
    await session.mount()
    logger.info("sid=%s watching orders as %s %s", sid, profile.role.value, profile.id)
    return {"ok": True, "snapshot": session.snapshot()}


@sio.on("orders:unwatch", namespace=NAMESPACE)
async def handle_unwatch(sid: str, data: dict[str, Any] | None = None) -> dict[str, Any]:
    dropped = await _drop_session(sid)
    return {"ok": True, "was_watching": dropped}


@sio.on("orders:action", namespace=NAMESPACE)
async def handle_action(sid: str, data: dict[str, Any]) -> dict[str, Any]:
    session = _sessions.get(sid)
    if session is None:
        return {"ok": False, "error": "Not watching orders"}
    try:
        order_id = uuid.UUID(str(data.get("order_id")))
        action = OrderAction(data.get("action"))
    except ValueError:
        return {"ok": False, "error": "order_id and a valid action are required"}

    if isinstance(session, ProviderTrackingSession):
        ok = await session.update_status(order_id, action)
    elif action == OrderAction.CANCEL:
        ok = await session.cancel(order_id)
    else:
        return {"ok": False, "error": "Clients can only cancel orders"}
    return {"ok": ok}


@sio.on("disconnect", namespace=NAMESPACE)
async def disconnect_orders(sid: str) -> None:
    await _drop_session(sid)
    user_id = unregister(sid)
    logger.info("Disconnected /orders: sid=%s user_id=%s", sid, user_id)
