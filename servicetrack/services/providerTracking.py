"""
Provider tracking session
=========================

Server-side counterpart of the provider's "active order" panel. One
session per connected provider view:

  - ``mount`` loads the provider's active orders, subscribes to order
    changes filtered by ``provider_id``, and re-attaches the geolocation
    watcher when the active order is already ``en_route``.
  - ``update_status`` performs an action through the order service and
    shows the result immediately as a pending status; the next re-fetch
    is merged against it instead of overwriting it.
  - ``unmount`` drops the subscription and stops tracking.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Awaitable, Callable

from servicetrack.models.order import Order, OrderStatus
from servicetrack.models.profile import Profile
from servicetrack.realtime.changeFeed import ChangeFilter, ChangeType
from servicetrack.realtime.subscriptionBridge import RefetchBridge
from servicetrack.services.orderService import OrderActionError, OrderService, OrdersSummary
from servicetrack.services.orderStateMachine import ActorType, OrderAction, available_actions
from servicetrack.services.orderStore import ORDERS_TABLE, StoreError, row_to_dict
from servicetrack.services.reconcile import PendingValue, merge

logger = logging.getLogger(__name__)

_PROGRESSION: dict[OrderStatus, int] = {
    OrderStatus.REQUESTED: 0,
    OrderStatus.ACCEPTED: 1,
    OrderStatus.EN_ROUTE: 2,
    OrderStatus.ARRIVED: 3,
    OrderStatus.DONE: 4,
}


def status_reached(current: OrderStatus, target: OrderStatus) -> bool:
    """True when ``current`` is at or past ``target`` on the happy path."""
    if current not in _PROGRESSION or target not in _PROGRESSION:
        return current == target
    return _PROGRESSION[current] >= _PROGRESSION[target]


Notify = Callable[[str, str], None]
OnChange = Callable[[dict[str, Any]], Awaitable[None]]


class ProviderTrackingSession:
    def __init__(
        self,
        service: OrderService,
        provider: Profile,
        *,
        notify: Notify | None = None,
        on_change: OnChange | None = None,
        on_complete: Callable[[Order], Awaitable[None]] | None = None,
    ) -> None:
        self._service = service
        self._provider = provider
        self._notify = notify
        self._on_change = on_change
        self._on_complete = on_complete
        self._bridge = RefetchBridge(
            service.store.feed,
            ORDERS_TABLE,
            self.refetch,
            event_types=(ChangeType.INSERT, ChangeType.UPDATE),
            name=f"provider-orders-{provider.id}",
        )
        self._statuses: dict[uuid.UUID, PendingValue[OrderStatus]] = {}
        self.summary = OrdersSummary()
        self.mounted = False

    @property
    def bridge(self) -> RefetchBridge:
        return self._bridge

    def status_of(self, order_id: uuid.UUID) -> OrderStatus | None:
        state = self._statuses.get(order_id)
        return state.current if state is not None else None

    async def mount(self) -> None:
        await self.refetch()
        self._bridge.bind(ChangeFilter.eq("provider_id", self._provider.id))
        self.mounted = True

        active = self.summary.active_provider_order
        tracking = self._service.tracking
        if (
            active is not None
            and active.status == OrderStatus.EN_ROUTE
            and not tracking.is_tracking(self._provider.id)
        ):
            await tracking.start(active)

    async def refetch(self) -> None:
        summary = await self._service.summarize(self._provider)
        seen: set[uuid.UUID] = set()
        for order in summary.provider_orders:
            seen.add(order.id)
            state = self._statuses.get(order.id)
            self._statuses[order.id] = (
                PendingValue(confirmed=order.status)
                if state is None
                else merge(state, order.status, status_reached)
            )
        for order_id in list(self._statuses):
            if order_id not in seen:
                del self._statuses[order_id]
        self.summary = summary
        await self._emit()

    async def update_status(self, order_id: uuid.UUID, action: OrderAction) -> bool:
        previous = self._statuses.get(order_id)
        try:
            updated = await self._service.perform_action(self._provider, order_id, action)
        except (OrderActionError, StoreError) as exc:
            logger.info("Provider %s could not %s order %s: %s", self._provider.id, action.value, order_id, exc)
            self._send("error", f"Could not update the order: {exc}")
            return False

        base = previous or PendingValue(confirmed=updated.status)
        self._statuses[order_id] = base.propose(updated.status)
        if updated.status == OrderStatus.DONE and self._on_complete is not None:
            await self._on_complete(updated)
        await self.refetch()
        return True

    async def unmount(self) -> None:
        await self._bridge.close()
        self.mounted = False
        await self._service.tracking.stop(self._provider.id)

    def _send(self, level: str, message: str) -> None:
        if self._notify is not None:
            self._notify(level, message)

    async def _emit(self) -> None:
        if self._on_change is not None:
            await self._on_change(self.snapshot())

    def snapshot(self) -> dict[str, Any]:
        orders = []
        for order in self.summary.provider_orders:
            row = row_to_dict(order)
            status = self.status_of(order.id) or order.status
            row["status"] = status.value
            row["actions"] = [a.value for a in available_actions(status, ActorType.PROVIDER)]
            orders.append(row)
        active = self.summary.active_provider_order
        return {
            "role": "provider",
            "orders": orders,
            "pending_order_ids": [str(o.id) for o in self.summary.pending_provider_orders],
            "active_order_id": str(active.id) if active is not None else None,
            "tracking": self._service.tracking.is_tracking(self._provider.id),
        }
