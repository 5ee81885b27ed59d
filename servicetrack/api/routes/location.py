"""
Provider Location Routes
========================

REST fallback for devices that cannot hold a Socket.IO connection. Fixes
feed the same ``DevicePositionSource`` as ``location:update`` events.

Routes:
  PUT    /api/v1/location        -- Push a position fix
  POST   /api/v1/location/error  -- Report a positioning error
  GET    /api/v1/location        -- Is the current provider being tracked?
  DELETE /api/v1/location        -- Stop tracking and drop the live location
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, HTTPException, status

from servicetrack.api.deps import CurrentUser, Tracking
from servicetrack.api.schemas.location import LocationAck, LocationErrorRequest, LocationUpdateRequest
from servicetrack.models.profile import Profile, ProfileRole
from servicetrack.realtime.locationTracker import Position, PositionUnavailableError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/location", tags=["Location"])


def _require_provider(user: Profile) -> None:
    if user.role != ProfileRole.PROVIDER:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only providers report locations",
        )


def _ack(tracking: Tracking, user: Profile) -> LocationAck:
    order_id = tracking.tracked_order(user.id)
    return LocationAck(
        tracking=order_id is not None,
        order_id=str(order_id) if order_id is not None else None,
    )


@router.put("", response_model=LocationAck, summary="Push a device position fix")
async def push_location(
    body: LocationUpdateRequest,
    user: CurrentUser,
    tracking: Tracking,
) -> LocationAck:
    _require_provider(user)
    if not tracking.is_tracking(user.id):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="No order is en route for this provider",
        )
    timestamp = body.timestamp or datetime.now(timezone.utc)
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    accepted = tracking.push(
        user.id,
        Position(lat=body.lat, lng=body.lng, accuracy=body.accuracy, timestamp=timestamp),
    )
    if not accepted:
        logger.debug("Fix from provider %s was not accepted (stale)", user.id)
    return _ack(tracking, user)


@router.post("/error", response_model=LocationAck, summary="Report a positioning error")
async def report_error(
    body: LocationErrorRequest,
    user: CurrentUser,
    tracking: Tracking,
) -> LocationAck:
    _require_provider(user)
    await tracking.fail(user.id, PositionUnavailableError(body.code, body.message))
    return _ack(tracking, user)


@router.get("", response_model=LocationAck, summary="Tracking state of the current provider")
async def tracking_state(user: CurrentUser, tracking: Tracking) -> LocationAck:
    _require_provider(user)
    return _ack(tracking, user)


@router.delete("", response_model=LocationAck, summary="Stop tracking the current provider")
async def stop_tracking(user: CurrentUser, tracking: Tracking) -> LocationAck:
    """Explicit stop: clears the watch and removes the live location row."""
    _require_provider(user)
    stopped = await tracking.stop(user.id)
    if stopped:
        logger.info("Provider %s stopped tracking explicitly", user.id)
    return _ack(tracking, user)
