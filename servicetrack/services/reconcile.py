"""
Optimistic values reconciled against authoritative re-fetches.

A session applies the result of its own write immediately (``propose``)
and keeps the last authoritative value beside it. When a re-fetch
arrives, ``merge`` decides which one to show instead of blindly
overwriting: a re-fetch that has not yet caught up with the pending
value does not roll the view back.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Callable, Generic, Optional, TypeVar

T = TypeVar("T")

# Returns True when ``a`` is at or beyond ``b`` in the value's progression.
Progress = Callable[[T, T], bool]


@dataclass(frozen=True)
class PendingValue(Generic[T]):
    confirmed: T
    pending: Optional[T] = None

    @property
    def current(self) -> T:
        return self.pending if self.pending is not None else self.confirmed

    @property
    def is_pending(self) -> bool:
        return self.pending is not None

    def propose(self, value: T) -> "PendingValue[T]":
        return replace(self, pending=value)

    def discard(self) -> "PendingValue[T]":
        return replace(self, pending=None)


def merge(
    state: PendingValue[T],
    authoritative: T,
    reached: Progress[T] | None = None,
) -> PendingValue[T]:
    """Fold an authoritative value into ``state``.

    - No pending value: the authoritative value is simply confirmed.
    - The authoritative value equals the pending one, or (with
      ``reached``) has moved past it: the write is confirmed.
    - The authoritative value still equals the old confirmed value: the
      re-fetch predates our write, so the pending value stays visible.
    - Anything else means someone else changed the value; the server wins.
    """
    if state.pending is None:
        return PendingValue(confirmed=authoritative)
    if authoritative == state.pending:
        return PendingValue(confirmed=authoritative)
    if reached is not None and reached(authoritative, state.pending):
        return PendingValue(confirmed=authoritative)
    if authoritative == state.confirmed:
        return state
    return PendingValue(confirmed=authoritative)
