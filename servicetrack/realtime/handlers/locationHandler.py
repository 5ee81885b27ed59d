"""
Location Handler
================

Socket.IO handler for device positioning on the ``/location`` namespace.
The provider's device streams fixes while one of their orders is en
route; each fix is handed to the provider's ``DevicePositionSource`` in
the tracking registry, which forwards it to the active watcher.

Events (client -> server):
  - ``location:update`` -- ``{lat, lng, accuracy?, timestamp?}``
  - ``location:error``  -- ``{code, message?}`` where ``code`` is one of
    ``permission_denied``, ``position_unavailable``, ``timeout``

Both are acknowledged with ``{ok, tracking}``; ``tracking`` is False when
no watcher is running for the provider and the fix was ignored.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any

from servicetrack.realtime.locationTracker import (
    Position,
    PositionErrorCode,
    PositionUnavailableError,
)

from ..socketServer import get_services, get_sid_meta, sio

logger = logging.getLogger(__name__)

NAMESPACE = "/location"


def _provider_id(sid: str) -> uuid.UUID | None:
    meta = get_sid_meta(sid)
    if meta is None or meta.get("role") != "provider":
        return None
    try:
        return uuid.UUID(meta["user_id"])
    except ValueError:
        return None


def parse_position(data: dict[str, Any]) -> Position:
    """Build a ``Position`` from a device payload; raises ValueError."""
    lat = float(data["lat"])
    lng = float(data["lng"])
    if not (-90 <= lat <= 90 and -180 <= lng <= 180):
        raise ValueError("Coordinates out of range")
    accuracy = data.get("accuracy")
    raw_ts = data.get("timestamp")
    if raw_ts is None:
        timestamp = datetime.now(timezone.utc)
    elif isinstance(raw_ts, (int, float)):
        # Browser timestamps are epoch milliseconds
        timestamp = datetime.fromtimestamp(raw_ts / 1000, tz=timezone.utc)
    else:
        timestamp = datetime.fromisoformat(str(raw_ts))
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)
    return Position(
        lat=lat,
        lng=lng,
        accuracy=float(accuracy) if accuracy is not None else None,
        timestamp=timestamp,
    )


@sio.on("location:update", namespace=NAMESPACE)
async def handle_location_update(sid: str, data: dict[str, Any]) -> dict[str, Any]:
    provider_id = _provider_id(sid)
    if provider_id is None:
        return {"ok": False, "error": "Only providers can send locations"}
    try:
        position = parse_position(data)
    except (KeyError, TypeError, ValueError) as exc:
        return {"ok": False, "error": f"Invalid position: {exc}"}

    tracking = get_services().orders.tracking.push(provider_id, position)
    if not tracking:
        logger.debug("Ignoring fix from untracked provider %s", provider_id)
    return {"ok": True, "tracking": tracking}


@sio.on("location:error", namespace=NAMESPACE)
async def handle_location_error(sid: str, data: dict[str, Any]) -> dict[str, Any]:
    provider_id = _provider_id(sid)
    if provider_id is None:
        return {"ok": False, "error": "Only providers can report positioning errors"}
    try:
        code = PositionErrorCode(data.get("code"))
    except ValueError:
        return {"ok": False, "error": "Unknown positioning error code"}

    error = PositionUnavailableError(code, str(data.get("message") or ""))
    registry = get_services().orders.tracking
    await registry.fail(provider_id, error)
    return {"ok": True, "tracking": registry.is_tracking(provider_id)}
