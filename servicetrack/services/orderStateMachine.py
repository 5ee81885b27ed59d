"""
Order State Machine
===================

Finite state machine governing order status changes. Every action MUST go
through ``validate_action`` before being persisted, and the store repeats
the check as a conditional update so a stale or forged status can never
be written.

State machine overview::

    requested --accept--> accepted --depart--> en_route
        --arrive--> arrived --complete--> done

    requested --cancel--> cancelled

``done`` and ``cancelled`` are terminal. Only the client can cancel; every
other action belongs to the provider.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Final

from servicetrack.models.order import OrderStatus


# ---------------------------------------------------------------------------
# Actions and actors
# ---------------------------------------------------------------------------

class ActorType(str, enum.Enum):
    CLIENT = "client"
    PROVIDER = "provider"


class OrderAction(str, enum.Enum):
    CANCEL = "cancel"
    ACCEPT = "accept"
    DEPART = "depart"
    ARRIVE = "arrive"
    COMPLETE = "complete"


# ---------------------------------------------------------------------------
# Transition result
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TransitionResult:
    """Result of a transition validation attempt."""
    allowed: bool
    target: OrderStatus | None = None
    reason: str | None = None


# ---------------------------------------------------------------------------
# Transition definitions
# ---------------------------------------------------------------------------

INITIAL_STATUS: Final[OrderStatus] = OrderStatus.REQUESTED

# (actor, action, current status) -> resulting status. Anything missing
# from this table is rejected.
TRANSITIONS: Final[dict[tuple[ActorType, OrderAction, OrderStatus], OrderStatus]] = {
    (ActorType.CLIENT, OrderAction.CANCEL, OrderStatus.REQUESTED): OrderStatus.CANCELLED,
    (ActorType.PROVIDER, OrderAction.ACCEPT, OrderStatus.REQUESTED): OrderStatus.ACCEPTED,
    (ActorType.PROVIDER, OrderAction.DEPART, OrderStatus.ACCEPTED): OrderStatus.EN_ROUTE,
    (ActorType.PROVIDER, OrderAction.ARRIVE, OrderStatus.EN_ROUTE): OrderStatus.ARRIVED,
    (ActorType.PROVIDER, OrderAction.COMPLETE, OrderStatus.ARRIVED): OrderStatus.DONE,
}

TERMINAL_STATUSES: Final[frozenset[OrderStatus]] = frozenset({
    OrderStatus.DONE,
    OrderStatus.CANCELLED,
})

# Statuses shown in "active orders" lists.
ACTIVE_STATUSES: Final[frozenset[OrderStatus]] = frozenset({
    OrderStatus.REQUESTED,
    OrderStatus.ACCEPTED,
    OrderStatus.EN_ROUTE,
    OrderStatus.ARRIVED,
})

# Statuses in which the provider is committed to the order.
PROVIDER_ENGAGED_STATUSES: Final[frozenset[OrderStatus]] = frozenset({
    OrderStatus.ACCEPTED,
    OrderStatus.EN_ROUTE,
    OrderStatus.ARRIVED,
})

# Actions with side effects on the provider's position watcher.
STARTS_TRACKING: Final[frozenset[OrderAction]] = frozenset({OrderAction.DEPART})
STOPS_TRACKING: Final[frozenset[OrderAction]] = frozenset({OrderAction.COMPLETE})


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def validate_action(
    current: OrderStatus,
    action: OrderAction,
    actor: ActorType,
) -> TransitionResult:
    """Check whether ``actor`` may perform ``action`` on an order in
    ``current`` status.

    Returns a ``TransitionResult`` carrying the resulting status when the
    triple is in the transition table, or ``allowed=False`` with a
    human-readable ``reason`` otherwise.
    """
    target = TRANSITIONS.get((actor, action, current))
    if target is not None:
        return TransitionResult(allowed=True, target=target)

    if current in TERMINAL_STATUSES:
        reason = f"Order is already '{current.value}'; no further actions are possible."
    elif not any(a == actor and act == action for a, act, _ in TRANSITIONS):
        reason = f"A {actor.value} cannot {action.value} an order."
    else:
        expected = [s.value for (a, act, s) in TRANSITIONS if a == actor and act == action]
        reason = (
            f"Cannot {action.value} an order in '{current.value}' status. "
            f"Allowed only from: {', '.join(expected)}."
        )
    return TransitionResult(allowed=False, reason=reason)


def apply_action(
    current: OrderStatus,
    action: OrderAction,
    actor: ActorType,
) -> OrderStatus:
    """Return the status after ``action``; invalid actions are no-ops."""
    return TRANSITIONS.get((actor, action, current), current)


def available_actions(current: OrderStatus, actor: ActorType) -> list[OrderAction]:
    """Actions the actor can take from ``current``, for UI hints."""
    return sorted(
        (act for (a, act, s) in TRANSITIONS if a == actor and s == current),
        key=lambda act: act.value,
    )


def is_terminal(status: OrderStatus) -> bool:
    return status in TERMINAL_STATUSES
