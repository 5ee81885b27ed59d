"""
Realtime Subscription Bridge
============================

Turns change-feed events into full re-fetches of an aggregate.

A ``RefetchBridge`` holds at most one subscription. Binding a new filter
(for example after the tracked order id changes) releases the previous
subscription first, so channels never leak across navigations.

Re-fetches are coalesced: while one is in flight, further events only mark
the bridge dirty, and exactly one more re-fetch runs once the current one
finishes. A GPS burst therefore costs at most two reads, and the last read
always observes the latest committed state.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Iterable

from .changeFeed import ChangeEvent, ChangeFilter, ChangeType, InMemoryChangeFeed, Subscription

logger = logging.getLogger(__name__)


class RefetchBridge:
    def __init__(
        self,
        feed: InMemoryChangeFeed,
        table: str,
        refetch: Callable[[], Awaitable[None]],
        *,
        event_types: Iterable[ChangeType] | None = None,
        name: str | None = None,
    ) -> None:
        self._feed = feed
        self._table = table
        self._refetch = refetch
        self._event_types = frozenset(event_types) if event_types else None
        self._name = name or table
        self._subscription: Subscription | None = None
        self._filter: ChangeFilter | None = None
        self._task: asyncio.Task[None] | None = None
        self._dirty = False
        self.refetch_count = 0

    @property
    def bound(self) -> bool:
        return self._subscription is not None

    @property
    def filter(self) -> ChangeFilter | None:
        return self._filter

    def bind(self, filter: ChangeFilter | None) -> None:
        """(Re)subscribe with ``filter``. Rebinding to an equal filter is
        a no-op; ``None`` unbinds."""
        if self._subscription is not None and filter == self._filter:
            return
        self.unbind()
        if filter is None:
            return
        self._filter = filter
        self._subscription = self._feed.subscribe(
            self._table,
            self._on_event,
            filter=filter,
            event_types=self._event_types,
        )
        logger.debug("Bridge %s bound to %s", self._name, filter)

    def unbind(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
            logger.debug("Bridge %s unbound", self._name)
        self._filter = None

    async def _on_event(self, event: ChangeEvent) -> None:
        if self._task is not None and not self._task.done():
            self._dirty = True
            return
        self._task = asyncio.create_task(self._run(), name=f"refetch-{self._name}")

    async def _run(self) -> None:
        while True:
            self._dirty = False
            self.refetch_count += 1
            try:
                await self._refetch()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.warning("Re-fetch for %s failed", self._name, exc_info=True)
            if not self._dirty or self._subscription is None:
                break

    async def wait_idle(self) -> None:
        """Wait for any in-flight re-fetch (and its coalesced follow-up)."""
        if self._task is not None:
            await asyncio.gather(self._task, return_exceptions=True)

    async def close(self) -> None:
        self.unbind()
        if self._task is asyncio.current_task():
            return
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
