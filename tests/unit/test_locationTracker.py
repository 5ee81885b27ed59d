"""
Unit tests for the provider geolocation watcher and tracking registry.

These run against the real ``OrderStore`` on in-memory SQLite so the
LiveLocation row lifecycle is observed the way subscribers see it: the
row exists while a provider is tracked and is gone once tracking stops.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from servicetrack.models.order import OrderStatus
from servicetrack.realtime.locationTracker import (
    POSITION_ERROR_MESSAGE,
    DevicePositionSource,
    Position,
    PositionErrorCode,
    PositionOptions,
    PositionUnavailableError,
    TrackingRegistry,
)

from tests.conftest import OTHER_CLIENT_ID, OTHER_PROVIDER_ID, PROVIDER_ID

pytestmark = pytest.mark.asyncio

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def notifier() -> MagicMock:
    return MagicMock()


@pytest.fixture
def registry(store, writer, notifier) -> TrackingRegistry:
    return TrackingRegistry(
        store,
        writer,
        options=PositionOptions(timeout_ms=0, max_age_ms=5_000),
        notify=notifier,
    )


async def _live_row(store, provider_id=PROVIDER_ID):
    return (await store.get_live_locations([provider_id])).get(provider_id)


# ---------------------------------------------------------------------------
# Position source
# ---------------------------------------------------------------------------


class TestDevicePositionSource:

    async def test_push_reaches_open_watches(self):
        source = DevicePositionSource(clock=lambda: NOW)
        received = []
        watch_id = source.watch_position(received.append, MagicMock(), PositionOptions(timeout_ms=0))
        assert source.push(Position(51.1, 17.0, timestamp=NOW)) == 1
        source.clear_watch(watch_id)
        assert source.push(Position(51.2, 17.0, timestamp=NOW)) == 0
        assert [p.lat for p in received] == [51.1]
        assert not source.watching

    async def test_stale_fix_is_dropped(self):
        source = DevicePositionSource(clock=lambda: NOW)
        received = []
        source.watch_position(received.append, MagicMock(), PositionOptions(timeout_ms=0, max_age_ms=5_000))
        assert source.push(Position(51.1, 17.0, timestamp=NOW - timedelta(seconds=6))) == 0
        assert source.push(Position(51.1, 17.0, timestamp=NOW - timedelta(seconds=4))) == 1
        assert len(received) == 1

    async def test_timeout_reported_once_without_fix(self):
        source = DevicePositionSource()
        on_error = MagicMock()
        source.watch_position(MagicMock(), on_error, PositionOptions(timeout_ms=10))
        await asyncio.sleep(0.05)
        on_error.assert_called_once()
        assert on_error.call_args.args[0].code == PositionErrorCode.TIMEOUT

    async def test_fix_cancels_timeout(self):
        source = DevicePositionSource()
        on_error = MagicMock()
        source.watch_position(MagicMock(), on_error, PositionOptions(timeout_ms=20))
        source.push(Position(51.1, 17.0))
        await asyncio.sleep(0.05)
        on_error.assert_not_called()


# ---------------------------------------------------------------------------
# LiveLocation lifecycle
# ---------------------------------------------------------------------------


class TestLiveLocationLifecycle:

    async def test_row_exists_only_while_tracking(self, registry, store, make_order):
        order = await make_order(status=OrderStatus.EN_ROUTE)
        assert await _live_row(store) is None

        await registry.start(order)
        assert registry.is_tracking(PROVIDER_ID)
        assert registry.tracked_order(PROVIDER_ID) == order.id
        assert registry.push(PROVIDER_ID, Position(52.01, 21.01)) is True
        await registry.flush()

        row = await _live_row(store)
        assert (row.lat, row.lng) == (52.01, 21.01)
        stored = await store.get_order(order.id)
        assert (stored.provider_lat, stored.provider_lng) == (52.01, 21.01)

        assert await registry.stop(PROVIDER_ID) is True
        assert await _live_row(store) is None
        assert not registry.is_tracking(PROVIDER_ID)

    async def test_stop_drains_pending_writes_before_delete(self, registry, store, make_order):
        order = await make_order(status=OrderStatus.EN_ROUTE)
        await registry.start(order)
        for step in range(5):
            registry.push(PROVIDER_ID, Position(52.0 + step / 1000, 21.0))
        await registry.stop(PROVIDER_ID)
        assert await _live_row(store) is None

    async def test_fix_is_refused_when_not_tracking(self, registry, store, profiles):
        assert registry.push(PROVIDER_ID, Position(52.0, 21.0)) is False
        await registry.flush()
        assert await _live_row(store) is None
        assert await registry.stop(PROVIDER_ID) is False

    async def test_starting_another_order_replaces_watcher(self, registry, store, make_order):
        first = await make_order(status=OrderStatus.EN_ROUTE)
        second = await make_order(status=OrderStatus.EN_ROUTE)
        await registry.start(first)
        registry.push(PROVIDER_ID, Position(52.0, 21.0))
        await registry.flush()
        await registry.start(second)
        assert registry.tracked_order(PROVIDER_ID) == second.id
        assert await _live_row(store) is None

    async def test_restart_same_order_keeps_watcher(self, registry, make_order):
        order = await make_order(status=OrderStatus.EN_ROUTE)
        watcher = await registry.start(order)
        assert await registry.start(order) is watcher

    async def test_close_keeps_rows(self, registry, store, make_order):
        order = await make_order(status=OrderStatus.EN_ROUTE)
        await registry.start(order)
        registry.push(PROVIDER_ID, Position(52.0, 21.0))
        await registry.flush()
        await registry.close()
        assert await _live_row(store) is not None
        assert not registry.is_tracking(PROVIDER_ID)


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class TestPositioningErrors:

    async def test_permission_denied_ends_watch(self, registry, notifier, make_order):
        order = await make_order(status=OrderStatus.EN_ROUTE)
        watcher = await registry.start(order)
        error = PositionUnavailableError(PositionErrorCode.PERMISSION_DENIED)
        assert await registry.fail(PROVIDER_ID, error) is True
        notifier.assert_called_once_with(PROVIDER_ID, POSITION_ERROR_MESSAGE)
        assert not registry.is_tracking(PROVIDER_ID)
        assert registry.watcher_for(PROVIDER_ID) is None
        assert watcher.last_error is error

    async def test_permission_denied_deletes_live_location(self, registry, store, make_order):
        order = await make_order(status=OrderStatus.EN_ROUTE)
        await registry.start(order)
        registry.push(PROVIDER_ID, Position(52.01, 21.01))
        await registry.flush()
        assert await _live_row(store) is not None

        # A fix still queued when the denial arrives must not recreate the row
        registry.push(PROVIDER_ID, Position(52.02, 21.02))
        await registry.fail(PROVIDER_ID, PositionUnavailableError(PositionErrorCode.PERMISSION_DENIED))
        await registry.flush()
        assert await store.get_live_locations([PROVIDER_ID]) == {}
        stored = await store.get_order(order.id)
        assert (stored.provider_lat, stored.provider_lng) == (52.02, 21.02)

    async def test_unavailable_keeps_watch(self, registry, notifier, make_order):
        order = await make_order(status=OrderStatus.EN_ROUTE)
        await registry.start(order)
        await registry.fail(PROVIDER_ID, PositionUnavailableError(PositionErrorCode.POSITION_UNAVAILABLE))
        notifier.assert_called_once()
        assert registry.is_tracking(PROVIDER_ID)

    async def test_watch_timeout_notifies_provider(self, store, writer, notifier, make_order):
        registry = TrackingRegistry(
            store, writer, options=PositionOptions(timeout_ms=10), notify=notifier
        )
        order = await make_order(status=OrderStatus.EN_ROUTE)
        await registry.start(order)
        await asyncio.sleep(0.05)
        notifier.assert_called_once_with(PROVIDER_ID, POSITION_ERROR_MESSAGE)
        assert registry.is_tracking(PROVIDER_ID)
        await registry.stop(PROVIDER_ID)

    async def test_fail_when_not_tracking(self, registry, notifier):
        error = PositionUnavailableError(PositionErrorCode.TIMEOUT)
        assert await registry.fail(PROVIDER_ID, error) is False
        notifier.assert_not_called()


# ---------------------------------------------------------------------------
# Resume
# ---------------------------------------------------------------------------


class TestResume:

    async def test_resume_attaches_en_route_orders(self, registry, make_order):
        await make_order(status=OrderStatus.EN_ROUTE)
        await make_order(
            status=OrderStatus.EN_ROUTE, client_id=OTHER_CLIENT_ID, provider_id=OTHER_PROVIDER_ID
        )
        await make_order(status=OrderStatus.ACCEPTED)
        assert await registry.resume() == 2
        assert registry.is_tracking(PROVIDER_ID)
        assert registry.is_tracking(OTHER_PROVIDER_ID)
        assert await registry.resume() == 0
