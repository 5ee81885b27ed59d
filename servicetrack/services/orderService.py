"""
Order Service
=============

User-initiated order operations: creation, the five status actions, and
the active-orders summary shown on dashboards.

Every action is validated by the state machine, persisted through the
store's conditional update, and then applies its side effects:

  - ``depart`` starts the provider's geolocation watcher,
  - ``complete`` stops it (deleting the live location) and runs the
    registered completion hooks.

Failures a user can act on raise ``OrderActionError`` and leave the order
untouched so the action can be retried.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Final

from servicetrack.integrations.ipgeo import IpLocationError, locate_ip
from servicetrack.models.order import Order, OrderStatus
from servicetrack.models.profile import Profile, ProfileRole
from servicetrack.realtime.locationTracker import TrackingRegistry
from servicetrack.services.orderStateMachine import (
    ACTIVE_STATUSES,
    PROVIDER_ENGAGED_STATUSES,
    STARTS_TRACKING,
    STOPS_TRACKING,
    TERMINAL_STATUSES,
    ActorType,
    OrderAction,
    validate_action,
)
from servicetrack.services.orderStore import OrderStore

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

INVALID_TRANSITION: Final[str] = "invalid_transition"
FORBIDDEN: Final[str] = "forbidden"
NOT_FOUND: Final[str] = "not_found"
LOCATION_UNAVAILABLE: Final[str] = "location_unavailable"


class OrderActionError(Exception):
    """A user-initiated order operation was rejected."""

    def __init__(self, message: str, code: str) -> None:
        super().__init__(message)
        self.code = code


# ---------------------------------------------------------------------------
# Summary DTO
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class OrdersSummary:
    client_orders: list[Order] = field(default_factory=list)
    provider_orders: list[Order] = field(default_factory=list)

    @property
    def has_active_client_order(self) -> bool:
        return any(o.status not in TERMINAL_STATUSES for o in self.client_orders)

    @property
    def has_active_provider_order(self) -> bool:
        return any(
            o.status not in TERMINAL_STATUSES and o.status != OrderStatus.REQUESTED
            for o in self.provider_orders
        )

    @property
    def pending_provider_orders(self) -> list[Order]:
        return [o for o in self.provider_orders if o.status == OrderStatus.REQUESTED]

    @property
    def active_provider_order(self) -> Order | None:
        return next(
            (o for o in self.provider_orders if o.status in PROVIDER_ENGAGED_STATUSES),
            None,
        )


CompletionHook = Callable[[Order], Awaitable[None]]
Locator = Callable[[str | None], Awaitable[tuple[float, float]]]


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------

class OrderService:
    def __init__(
        self,
        store: OrderStore,
        tracking: TrackingRegistry,
        *,
        locate: Locator = locate_ip,
    ) -> None:
        self._store = store
        self._tracking = tracking
        self._locate = locate
        self._completion_hooks: list[CompletionHook] = []

    @property
    def store(self) -> OrderStore:
        return self._store

    @property
    def tracking(self) -> TrackingRegistry:
        return self._tracking

    def on_complete(self, hook: CompletionHook) -> None:
        self._completion_hooks.append(hook)

    async def create_order(
        self,
        client: Profile,
        provider_id: uuid.UUID,
        *,
        client_lat: float | None = None,
        client_lng: float | None = None,
        client_ip: str | None = None,
    ) -> Order:
        """Create a ``requested`` order from ``client`` to ``provider_id``.

        When the client sends no coordinates, the destination is resolved
        from their IP address.
        """
        if client.role != ProfileRole.CLIENT:
            raise OrderActionError("Only clients can request a provider.", FORBIDDEN)
        if provider_id == client.id:
            raise OrderActionError("You cannot order from yourself.", FORBIDDEN)

        provider = await self._store.get_profile(provider_id)
        if provider is None or provider.role != ProfileRole.PROVIDER:
            raise OrderActionError(f"Provider {provider_id} not found.", NOT_FOUND)

        if client_lat is None or client_lng is None:
            try:
                client_lat, client_lng = await self._locate(client_ip)
            except IpLocationError as exc:
                logger.warning("Could not locate client %s by IP: %s", client.id, exc)
                raise OrderActionError(
                    "Could not determine your location.", LOCATION_UNAVAILABLE
                ) from exc

        return await self._store.insert_order(
            client_id=client.id,
            provider_id=provider_id,
            client_lat=client_lat,
            client_lng=client_lng,
        )

    async def get_order_for(self, user: Profile, order_id: uuid.UUID) -> Order:
        """Load an order the user participates in."""
        order = await self._store.get_order(order_id)
        if order is None:
            raise OrderActionError(f"Order {order_id} not found.", NOT_FOUND)
        if user.id not in (order.client_id, order.provider_id):
            raise OrderActionError("You are not a participant of this order.", FORBIDDEN)
        return order

    async def perform_action(
        self,
        user: Profile,
        order_id: uuid.UUID,
        action: OrderAction,
    ) -> Order:
        order = await self.get_order_for(user, order_id)
        actor = ActorType.CLIENT if user.id == order.client_id else ActorType.PROVIDER

        result = validate_action(order.status, action, actor)
        if not result.allowed or result.target is None:
            raise OrderActionError(result.reason or "Action not allowed.", INVALID_TRANSITION)

        updated = await self._store.transition_status(order.id, order.status, result.target)
        if updated is None:
            raise OrderActionError(
                "The order changed in the meantime; refresh and try again.",
                INVALID_TRANSITION,
            )

        if action in STARTS_TRACKING:
            await self._tracking.start(updated)
        if action in STOPS_TRACKING:
            await self._tracking.stop(updated.provider_id)
            await self._run_completion_hooks(updated)
        return updated

    async def _run_completion_hooks(self, order: Order) -> None:
        for hook in self._completion_hooks:
            try:
                await hook(order)
            except Exception:
                logger.warning("Completion hook failed for order %s", order.id, exc_info=True)

    async def summarize(self, user: Profile) -> OrdersSummary:
        """Active orders of ``user`` as client and as provider."""
        client_orders = await self._store.list_orders(
            client_id=user.id, statuses=ACTIVE_STATUSES
        )
        provider_orders = await self._store.list_orders(
            provider_id=user.id, statuses=ACTIVE_STATUSES
        )
        return OrdersSummary(client_orders=client_orders, provider_orders=provider_orders)
