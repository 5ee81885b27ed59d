"""
Unit tests for the provider and client tracking sessions.

Sessions are driven through the real store and change feed: writes made
by one side reach the other side's session only through the feed and a
re-fetch, the way they do for connected sockets.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from servicetrack.models.order import OrderStatus
from servicetrack.realtime.locationTracker import Position
from servicetrack.services.clientTracking import (
    ClientTrackingSession,
    ProviderPosition,
    build_tracking_view,
    provider_position,
)
from servicetrack.services.orderService import OrdersSummary
from servicetrack.services.orderStateMachine import OrderAction
from servicetrack.services.providerTracking import ProviderTrackingSession, status_reached

from tests.conftest import PROVIDER_ID

pytestmark = pytest.mark.asyncio


async def _settle(*bridges) -> None:
    # A re-fetch on one bridge can trigger work on the other
    for _ in range(2):
        for bridge in bridges:
            await bridge.wait_idle()


@pytest.fixture
def notify() -> MagicMock:
    return MagicMock()


@pytest.fixture
def on_change() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def provider_session(order_service, provider_profile, notify, on_change) -> ProviderTrackingSession:
    return ProviderTrackingSession(
        order_service, provider_profile, notify=notify, on_change=on_change
    )


@pytest.fixture
def client_session(order_service, client_profile, estimators, notify, on_change) -> ClientTrackingSession:
    return ClientTrackingSession(
        order_service, client_profile, estimators, notify=notify, on_change=on_change
    )


# ---------------------------------------------------------------------------
# Provider session
# ---------------------------------------------------------------------------


class TestProviderSession:

    async def test_mount_loads_orders_and_subscribes(self, provider_session, make_order, on_change):
        order = await make_order()
        await provider_session.mount()
        assert provider_session.bridge.bound
        snapshot = on_change.await_args.args[0]
        assert snapshot["role"] == "provider"
        assert snapshot["pending_order_ids"] == [str(order.id)]
        assert snapshot["orders"][0]["actions"] == ["accept"]
        await provider_session.unmount()

    async def test_mount_reattaches_tracking_for_en_route_order(self, provider_session, tracking, make_order):
        order = await make_order(status=OrderStatus.EN_ROUTE)
        await provider_session.mount()
        assert tracking.tracked_order(PROVIDER_ID) == order.id
        await provider_session.unmount()
        assert not tracking.is_tracking(PROVIDER_ID)
        assert not provider_session.bridge.bound

    async def test_update_status_shows_result(self, provider_session, make_order):
        order = await make_order()
        await provider_session.mount()
        assert await provider_session.update_status(order.id, OrderAction.ACCEPT) is True
        assert provider_session.status_of(order.id) == OrderStatus.ACCEPTED
        await _settle(provider_session.bridge)
        await provider_session.unmount()

    async def test_stale_refetch_does_not_roll_back(self, provider_session, order_service, make_order):
        order = await make_order()
        await provider_session.mount()
        # Reads keep returning the order as it was before the write
        order_service.summarize = AsyncMock(return_value=OrdersSummary(provider_orders=[order]))
        await provider_session.update_status(order.id, OrderAction.ACCEPT)
        await _settle(provider_session.bridge)
        assert provider_session.status_of(order.id) == OrderStatus.ACCEPTED
        await provider_session.unmount()

    async def test_rejected_action_notifies(self, provider_session, make_order, notify):
        order = await make_order()
        await provider_session.mount()
        assert await provider_session.update_status(order.id, OrderAction.ARRIVE) is False
        level, message = notify.call_args.args
        assert level == "error"
        assert message.startswith("Could not update the order")
        assert provider_session.status_of(order.id) == OrderStatus.REQUESTED
        await provider_session.unmount()

    async def test_client_cancellation_reaches_provider(
        self, provider_session, order_service, make_order, client_profile
    ):
        order = await make_order()
        await provider_session.mount()
        await order_service.perform_action(client_profile, order.id, OrderAction.CANCEL)
        await _settle(provider_session.bridge)
        assert provider_session.status_of(order.id) is None
        assert provider_session.summary.provider_orders == []
        await provider_session.unmount()

    async def test_status_progression(self):
        assert status_reached(OrderStatus.ARRIVED, OrderStatus.EN_ROUTE)
        assert not status_reached(OrderStatus.ACCEPTED, OrderStatus.EN_ROUTE)
        assert not status_reached(OrderStatus.CANCELLED, OrderStatus.ACCEPTED)


# ---------------------------------------------------------------------------
# Client session
# ---------------------------------------------------------------------------


class TestClientSession:

    async def test_follows_provider_until_completion(
        self,
        client_session,
        order_service,
        tracking,
        estimators,
        fake_router,
        make_order,
        provider_profile,
        feed,
    ):
        order = await make_order(status=OrderStatus.ACCEPTED)
        await client_session.mount()
        bridges = (client_session.order_bridge, client_session.location_bridge)
        assert client_session.location_bridge.bound
        assert estimators.peek(order.id) is None

        await order_service.perform_action(provider_profile, order.id, OrderAction.DEPART)
        await _settle(*bridges)
        assert estimators.peek(order.id) is not None

        tracking.push(PROVIDER_ID, Position(52.01, 21.01))
        await tracking.flush()
        await _settle(*bridges)

        [view] = client_session.views()
        assert view.position == ProviderPosition(lat=52.01, lng=21.01, live=True)
        assert 0 < view.distance_km < 2
        assert view.eta_seconds == 600.0
        assert view.eta_text == "10 min"
        assert view.route is not None
        fake_router.assert_awaited_with((52.01, 21.01), (52.0, 21.0))

        await order_service.perform_action(provider_profile, order.id, OrderAction.ARRIVE)
        await order_service.perform_action(provider_profile, order.id, OrderAction.COMPLETE)
        await _settle(*bridges)
        assert client_session.orders == []
        assert client_session.live == {}
        assert estimators.peek(order.id) is None
        assert client_session.snapshot()["has_active_order"] is False

        await client_session.unmount()
        assert feed.subscription_count == 0

    async def test_second_viewer_keeps_route_after_first_leaves(
        self, client_session, order_service, client_profile, tracking, estimators, make_order
    ):
        order = await make_order(status=OrderStatus.EN_ROUTE)
        await tracking.start(order)
        other = ClientTrackingSession(order_service, client_profile, estimators)
        await client_session.mount()
        await other.mount()
        assert estimators.references(order.id) == 2

        await client_session.unmount()
        assert estimators.peek(order.id) is not None

        tracking.push(PROVIDER_ID, Position(52.01, 21.01))
        await tracking.flush()
        await _settle(other.order_bridge, other.location_bridge)

        [view] = other.views()
        assert view.route is not None
        assert view.eta_seconds == 600.0

        await other.unmount()
        assert estimators.peek(order.id) is None

    async def test_cancel(self, client_session, make_order, notify):
        order = await make_order()
        await client_session.mount()
        assert await client_session.cancel(order.id) is True
        notify.assert_called_with("info", "Order cancelled")
        assert client_session.orders == []
        await client_session.unmount()

    async def test_cancel_after_accept_fails(self, client_session, make_order, notify):
        order = await make_order(status=OrderStatus.ACCEPTED)
        await client_session.mount()
        assert await client_session.cancel(order.id) is False
        notify.assert_called_with("error", "Could not cancel the order")
        await client_session.unmount()

    async def test_no_orders_means_no_location_subscription(self, client_session, profiles):
        await client_session.mount()
        assert client_session.order_bridge.bound
        assert not client_session.location_bridge.bound
        await client_session.unmount()


class TestTrackingView:

    async def test_last_known_position_when_not_live(self, make_order, store):
        order = await make_order(status=OrderStatus.ARRIVED)
        await store.update_provider_position(order.id, 52.0, 21.0)
        stored = await store.get_order(order.id)
        assert provider_position(stored, None) == ProviderPosition(52.0, 21.0, live=False)
        view = build_tracking_view(stored, None, None)
        assert view.distance_km == 0
        assert view.eta_seconds is None
        assert view.to_dict()["provider_position"]["live"] is False

    async def test_no_position_at_all(self, make_order):
        order = await make_order()
        view = build_tracking_view(order, None, None)
        assert view.position is None
        assert view.distance_km is None
