"""
Unit tests for optimistic-value reconciliation.
"""

from servicetrack.models.order import OrderStatus
from servicetrack.services.reconcile import PendingValue, merge

_ORDER = [OrderStatus.REQUESTED, OrderStatus.ACCEPTED, OrderStatus.EN_ROUTE, OrderStatus.ARRIVED]


def _reached(a: OrderStatus, b: OrderStatus) -> bool:
    return a in _ORDER and b in _ORDER and _ORDER.index(a) >= _ORDER.index(b)


class TestPendingValue:

    def test_current_prefers_pending(self):
        state = PendingValue(confirmed=OrderStatus.ACCEPTED).propose(OrderStatus.EN_ROUTE)
        assert state.current == OrderStatus.EN_ROUTE
        assert state.is_pending

    def test_discard_restores_confirmed(self):
        state = PendingValue(confirmed=OrderStatus.ACCEPTED).propose(OrderStatus.EN_ROUTE)
        assert state.discard().current == OrderStatus.ACCEPTED


class TestMerge:

    def test_without_pending_confirms_server_value(self):
        state = merge(PendingValue(confirmed=OrderStatus.ACCEPTED), OrderStatus.EN_ROUTE)
        assert state == PendingValue(confirmed=OrderStatus.EN_ROUTE)

    def test_echo_of_our_write_confirms_it(self):
        state = PendingValue(confirmed=OrderStatus.ACCEPTED).propose(OrderStatus.EN_ROUTE)
        assert merge(state, OrderStatus.EN_ROUTE) == PendingValue(confirmed=OrderStatus.EN_ROUTE)

    def test_stale_refetch_keeps_pending_visible(self):
        state = PendingValue(confirmed=OrderStatus.ACCEPTED).propose(OrderStatus.EN_ROUTE)
        merged = merge(state, OrderStatus.ACCEPTED)
        assert merged.current == OrderStatus.EN_ROUTE
        assert merged.is_pending

    def test_server_moved_past_pending(self):
        state = PendingValue(confirmed=OrderStatus.ACCEPTED).propose(OrderStatus.EN_ROUTE)
        merged = merge(state, OrderStatus.ARRIVED, _reached)
        assert merged == PendingValue(confirmed=OrderStatus.ARRIVED)

    def test_concurrent_change_server_wins(self):
        state = PendingValue(confirmed=OrderStatus.REQUESTED).propose(OrderStatus.ACCEPTED)
        merged = merge(state, OrderStatus.CANCELLED, _reached)
        assert merged.current == OrderStatus.CANCELLED
        assert not merged.is_pending
