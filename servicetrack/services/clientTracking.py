"""
Client tracking session
=======================

Server-side counterpart of the client's order tracking view.

Subscriptions:
  - orders filtered by ``client_id``: any change re-fetches the client's
    active orders;
  - live locations filtered by ``provider_id IN (providers of those
    orders)``: rebound whenever the provider set changes, and any change
    re-fetches the live positions.

The provider position shown for an order is the live location when the
provider is being tracked, otherwise the last position stored on the
order ("last known"). While an order is ``en_route`` a route estimator
from the shared pool keeps route and ETA current.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from servicetrack.models.location import LiveLocation
from servicetrack.models.order import Order, OrderStatus
from servicetrack.models.profile import Profile
from servicetrack.realtime.changeFeed import ChangeFilter
from servicetrack.realtime.subscriptionBridge import RefetchBridge
from servicetrack.services.geoService import haversine_distance
from servicetrack.services.orderService import OrderActionError, OrderService
from servicetrack.services.orderStateMachine import ACTIVE_STATUSES, OrderAction
from servicetrack.services.orderStore import LIVE_LOCATIONS_TABLE, ORDERS_TABLE, StoreError, row_to_dict
from servicetrack.services.routeEstimator import EstimatorPool, RouteEstimator, format_eta

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Tracking view
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ProviderPosition:
    lat: float
    lng: float
    live: bool


@dataclass(frozen=True)
class TrackingView:
    order: Order
    position: ProviderPosition | None
    distance_km: float | None
    eta_seconds: float | None
    eta_text: str | None
    route: list[tuple[float, float]] | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "order": row_to_dict(self.order),
            "provider_position": (
                {"lat": self.position.lat, "lng": self.position.lng, "live": self.position.live}
                if self.position is not None
                else None
            ),
            "distance_km": self.distance_km,
            "eta_seconds": self.eta_seconds,
            "eta_text": self.eta_text,
            "route": [list(p) for p in self.route] if self.route else None,
        }


def provider_position(order: Order, live: LiveLocation | None) -> ProviderPosition | None:
    """Live location first, then the order's last stored position."""
    if live is not None:
        return ProviderPosition(lat=live.lat, lng=live.lng, live=True)
    if order.provider_lat is not None and order.provider_lng is not None:
        return ProviderPosition(lat=order.provider_lat, lng=order.provider_lng, live=False)
    return None


def build_tracking_view(
    order: Order,
    live: LiveLocation | None,
    estimator: RouteEstimator | None,
) -> TrackingView:
    position = provider_position(order, live)
    distance = (
        haversine_distance(position.lat, position.lng, order.client_lat, order.client_lng)
        if position is not None
        else None
    )
    eta: float | None = None
    if estimator is not None:
        eta = estimator.display_eta(order.eta_seconds, order.status)
    elif order.status == OrderStatus.EN_ROUTE and order.eta_seconds is not None:
        eta = float(order.eta_seconds)
    route = estimator.route.polyline if estimator is not None and estimator.route else None
    return TrackingView(
        order=order,
        position=position,
        distance_km=distance,
        eta_seconds=eta,
        eta_text=format_eta(eta) if eta is not None else None,
        route=route,
    )


async def refresh_route(
    estimator: RouteEstimator, order: Order, position: ProviderPosition | None
) -> None:
    """Feed the estimator with the latest position (throttled)."""
    if position is None or order.status != OrderStatus.EN_ROUTE:
        return
    await estimator.on_position(
        (position.lat, position.lng), (order.client_lat, order.client_lng)
    )


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------

Notify = Callable[[str, str], None]
OnChange = Callable[[dict[str, Any]], Awaitable[None]]


class ClientTrackingSession:
    def __init__(
        self,
        service: OrderService,
        client: Profile,
        estimators: EstimatorPool,
        *,
        notify: Notify | None = None,
        on_change: OnChange | None = None,
    ) -> None:
        self._service = service
        self._client = client
        self._estimators = estimators
        self._notify = notify
        self._on_change = on_change
        feed = service.store.feed
        self._order_bridge = RefetchBridge(
            feed, ORDERS_TABLE, self.refetch, name=f"client-orders-{client.id}"
        )
        self._location_bridge = RefetchBridge(
            feed, LIVE_LOCATIONS_TABLE, self.refetch_locations, name=f"client-live-{client.id}"
        )
        self._tracked: set[uuid.UUID] = set()
        self.orders: list[Order] = []
        self.live: dict[uuid.UUID, LiveLocation] = {}
        self.mounted = False

    @property
    def order_bridge(self) -> RefetchBridge:
        return self._order_bridge

    @property
    def location_bridge(self) -> RefetchBridge:
        return self._location_bridge

    async def mount(self) -> None:
        await self.refetch()
        self._order_bridge.bind(ChangeFilter.eq("client_id", self._client.id))
        self.mounted = True

    async def refetch(self) -> None:
        self.orders = await self._service.store.list_orders(
            client_id=self._client.id, statuses=ACTIVE_STATUSES
        )
        provider_ids = {o.provider_id for o in self.orders}
        self._location_bridge.bind(
            ChangeFilter.in_("provider_id", provider_ids) if provider_ids else None
        )
        await self._sync_estimators()
        await self.refetch_locations()

    async def refetch_locations(self) -> None:
        provider_ids = list({o.provider_id for o in self.orders})
        self.live = await self._service.store.get_live_locations(provider_ids)
        for order in self.orders:
            estimator = self._estimators.peek(order.id)
            if estimator is not None:
                await refresh_route(estimator, order, provider_position(order, self.live.get(order.provider_id)))
        await self._emit()

    async def _sync_estimators(self) -> None:
        # One pool reference per en-route order this session shows
        en_route = {o.id for o in self.orders if o.status == OrderStatus.EN_ROUTE}
        for order_id in en_route - self._tracked:
            self._estimators.acquire(order_id)
        for order_id in self._tracked - en_route:
            await self._estimators.release(order_id)
        self._tracked = en_route

    async def cancel(self, order_id: uuid.UUID) -> bool:
        try:
            await self._service.perform_action(self._client, order_id, OrderAction.CANCEL)
        except (OrderActionError, StoreError) as exc:
            logger.info("Client %s could not cancel order %s: %s", self._client.id, order_id, exc)
            self._send("error", "Could not cancel the order")
            return False
        self._send("info", "Order cancelled")
        await self.refetch()
        return True

    async def unmount(self) -> None:
        await self._order_bridge.close()
        await self._location_bridge.close()
        for order_id in self._tracked:
            await self._estimators.release(order_id)
        self._tracked = set()
        self.mounted = False

    def views(self) -> list[TrackingView]:
        return [
            build_tracking_view(
                order, self.live.get(order.provider_id), self._estimators.peek(order.id)
            )
            for order in self.orders
        ]

    def snapshot(self) -> dict[str, Any]:
        return {
            "role": "client",
            "orders": [view.to_dict() for view in self.views()],
            "has_active_order": bool(self.orders),
        }

    def _send(self, level: str, message: str) -> None:
        if self._notify is not None:
            self._notify(level, message)

    async def _emit(self) -> None:
        if self._on_change is not None:
            await self._on_change(self.snapshot())
