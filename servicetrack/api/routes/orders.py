"""
Order API Routes
================

REST endpoints for the order lifecycle and the tracking view.

Routes:
  POST   /api/v1/orders                      -- Client orders a provider
  GET    /api/v1/orders/active               -- Active orders of the current user
  GET    /api/v1/orders/{order_id}           -- Order detail (participants only)
  POST   /api/v1/orders/{order_id}/{action}  -- accept | depart | arrive | complete | cancel
  GET    /api/v1/orders/{order_id}/tracking  -- Provider position, route and ETA

Error mapping:
  invalid_transition -> 409, forbidden -> 403, not_found -> 404,
  location_unavailable -> 422, store failures -> 502
"""

from __future__ import annotations

import logging
import uuid

from fastapi import APIRouter, HTTPException, status

from servicetrack.api.deps import ClientIP, CurrentUser, Estimators, Orders
from servicetrack.api.schemas.order import (
    OrderCreateRequest,
    OrderOut,
    OrdersSummaryOut,
    OrderWithActionsOut,
    TrackingOut,
)
from servicetrack.models.order import Order, OrderStatus
from servicetrack.models.profile import Profile
from servicetrack.services import orderService
from servicetrack.services.clientTracking import build_tracking_view, provider_position, refresh_route
from servicetrack.services.orderService import OrderActionError
from servicetrack.services.orderStateMachine import ActorType, OrderAction, available_actions
from servicetrack.services.orderStore import StoreError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/orders", tags=["Orders"])

_ERROR_STATUS: dict[str, int] = {
    orderService.INVALID_TRANSITION: status.HTTP_409_CONFLICT,
    orderService.FORBIDDEN: status.HTTP_403_FORBIDDEN,
    orderService.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    orderService.LOCATION_UNAVAILABLE: status.HTTP_422_UNPROCESSABLE_ENTITY,
}


def _http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, OrderActionError):
        return HTTPException(
            status_code=_ERROR_STATUS.get(exc.code, status.HTTP_400_BAD_REQUEST),
            detail={"code": exc.code, "message": str(exc)},
        )
    logger.error("Store failure: %s", exc)
    return HTTPException(
        status_code=status.HTTP_502_BAD_GATEWAY,
        detail={"code": "store_error", "message": str(exc)},
    )


def _with_actions(order: Order, user: Profile) -> OrderWithActionsOut:
    actor = ActorType.CLIENT if user.id == order.client_id else ActorType.PROVIDER
    out = OrderWithActionsOut.model_validate(order)
    out.actions = [a.value for a in available_actions(order.status, actor)]
    return out


# ---------------------------------------------------------------------------
# POST /api/v1/orders
# ---------------------------------------------------------------------------

@router.post(
    "",
    response_model=OrderOut,
    status_code=status.HTTP_201_CREATED,
    summary="Order a provider",
)
async def create_order(
    body: OrderCreateRequest,
    user: CurrentUser,
    service: Orders,
    client_ip: ClientIP,
) -> OrderOut:
    try:
        order = await service.create_order(
            user,
            body.provider_id,
            client_lat=body.client_lat,
            client_lng=body.client_lng,
            client_ip=client_ip,
        )
    except (OrderActionError, StoreError) as exc:
        raise _http_error(exc)
    return OrderOut.model_validate(order)


# ---------------------------------------------------------------------------
# GET /api/v1/orders/active
# ---------------------------------------------------------------------------

@router.get(
    "/active",
    response_model=OrdersSummaryOut,
    summary="Active orders of the current user",
)
async def active_orders(user: CurrentUser, service: Orders) -> OrdersSummaryOut:
    try:
        summary = await service.summarize(user)
    except StoreError as exc:
        raise _http_error(exc)
    active = summary.active_provider_order
    return OrdersSummaryOut(
        client_orders=[_with_actions(o, user) for o in summary.client_orders],
        provider_orders=[_with_actions(o, user) for o in summary.provider_orders],
        has_active_client_order=summary.has_active_client_order,
        has_active_provider_order=summary.has_active_provider_order,
        pending_provider_order_ids=[o.id for o in summary.pending_provider_orders],
        active_provider_order_id=active.id if active is not None else None,
    )


# ---------------------------------------------------------------------------
# GET /api/v1/orders/{order_id}
# ---------------------------------------------------------------------------

@router.get(
    "/{order_id}",
    response_model=OrderWithActionsOut,
    summary="Order detail",
)
async def get_order(order_id: uuid.UUID, user: CurrentUser, service: Orders) -> OrderWithActionsOut:
    try:
        order = await service.get_order_for(user, order_id)
    except (OrderActionError, StoreError) as exc:
        raise _http_error(exc)
    return _with_actions(order, user)


# ---------------------------------------------------------------------------
# POST /api/v1/orders/{order_id}/{action}
# ---------------------------------------------------------------------------

@router.post(
    "/{order_id}/{action}",
    response_model=OrderWithActionsOut,
    summary="Perform an order action",
    description=(
        "Runs one of accept, depart, arrive, complete (provider) or cancel "
        "(client). 'depart' starts the provider's position watcher and "
        "'complete' stops it and removes the live location."
    ),
)
async def perform_action(
    order_id: uuid.UUID,
    action: OrderAction,
    user: CurrentUser,
    service: Orders,
) -> OrderWithActionsOut:
    try:
        order = await service.perform_action(user, order_id, action)
    except (OrderActionError, StoreError) as exc:
        raise _http_error(exc)
    return _with_actions(order, user)


# ---------------------------------------------------------------------------
# GET /api/v1/orders/{order_id}/tracking
# ---------------------------------------------------------------------------

@router.get(
    "/{order_id}/tracking",
    response_model=TrackingOut,
    summary="Tracking view of an order",
    description=(
        "Provider position (live when tracked, otherwise last known), "
        "straight-line distance, and while en route the driving route and "
        "ETA. The server ETA wins over the local route estimate."
    ),
)
async def order_tracking(
    order_id: uuid.UUID,
    user: CurrentUser,
    service: Orders,
    estimators: Estimators,
) -> TrackingOut:
    try:
        order = await service.get_order_for(user, order_id)
        live = (await service.store.get_live_locations([order.provider_id])).get(order.provider_id)
    except (OrderActionError, StoreError) as exc:
        raise _http_error(exc)

    estimator = None
    if order.status == OrderStatus.EN_ROUTE:
        estimator = estimators.get(order.id)
        await refresh_route(estimator, order, provider_position(order, live))
    elif not estimators.references(order.id):
        await estimators.discard(order.id)

    view = build_tracking_view(order, live, estimator)
    position = view.position
    return TrackingOut(
        order=OrderOut.model_validate(order),
        provider_position=(
            {"lat": position.lat, "lng": position.lng, "live": position.live}
            if position is not None
            else None
        ),
        distance_km=view.distance_km,
        eta_seconds=view.eta_seconds,
        eta_text=view.eta_text,
        route=view.route,
        tracking=service.tracking.is_tracking(order.provider_id),
    )
