"""
Realtime Change Feed
====================

Push notifications for committed row changes. The order store publishes
one ``ChangeEvent`` per committed write; subscribers register a table, an
optional column filter (``eq`` or ``in``) and the event types they care
about.

Two backends:
  - ``InMemoryChangeFeed``: fan-out inside one process (tests, single
    worker deployments).
  - ``RedisChangeFeed``: events are published to a Redis channel per
    table (``<prefix>:<table>``) and every worker dispatches what it
    receives to its local subscribers, so a write on one worker reaches
    sockets held by another.

Subscribers only learn that *something changed*; consumers re-fetch the
aggregate instead of merging the payload.
"""

from __future__ import annotations

import asyncio
import enum
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable

import redis.asyncio as aioredis

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Events and filters
# ---------------------------------------------------------------------------

class ChangeType(str, enum.Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


ALL_CHANGE_TYPES: frozenset[ChangeType] = frozenset(ChangeType)


@dataclass(frozen=True)
class ChangeEvent:
    table: str
    type: ChangeType
    row: dict[str, Any]
    old: dict[str, Any] | None = None

    def to_json(self) -> str:
        return json.dumps(
            {"table": self.table, "type": self.type.value, "row": self.row, "old": self.old}
        )

    @classmethod
    def from_json(cls, raw: str | bytes) -> "ChangeEvent":
        data = json.loads(raw)
        return cls(
            table=data["table"],
            type=ChangeType(data["type"]),
            row=data.get("row") or {},
            old=data.get("old"),
        )


@dataclass(frozen=True)
class ChangeFilter:
    """Column predicate: ``column = value`` or ``column IN values``.

    Values are compared as strings, since rows travel as JSON.
    """

    column: str
    values: frozenset[str]

    @classmethod
    def eq(cls, column: str, value: Any) -> "ChangeFilter":
        return cls(column=column, values=frozenset({str(value)}))

    @classmethod
    def in_(cls, column: str, values: Iterable[Any]) -> "ChangeFilter":
        return cls(column=column, values=frozenset(str(v) for v in values))

    def matches(self, event: ChangeEvent) -> bool:
        # DELETE events may carry only the old row
        for row in (event.row, event.old or {}):
            if self.column in row and str(row[self.column]) in self.values:
                return True
        return False


ChangeCallback = Callable[[ChangeEvent], Awaitable[None]]


# ---------------------------------------------------------------------------
# Subscriptions
# ---------------------------------------------------------------------------

@dataclass(eq=False)
class Subscription:
    table: str
    callback: ChangeCallback
    filter: ChangeFilter | None = None
    event_types: frozenset[ChangeType] = ALL_CHANGE_TYPES
    _feed: "InMemoryChangeFeed | None" = field(default=None, repr=False)

    @property
    def active(self) -> bool:
        return self._feed is not None

    def accepts(self, event: ChangeEvent) -> bool:
        if event.table != self.table or event.type not in self.event_types:
            return False
        return self.filter is None or self.filter.matches(event)

    def unsubscribe(self) -> None:
        """Stop receiving events. Safe to call more than once."""
        if self._feed is not None:
            self._feed._remove(self)
            self._feed = None


# ---------------------------------------------------------------------------
# In-process backend
# ---------------------------------------------------------------------------

class InMemoryChangeFeed:
    """Dispatches published events to matching local subscribers."""

    def __init__(self) -> None:
        self._subscriptions: list[Subscription] = []

    def subscribe(
        self,
        table: str,
        callback: ChangeCallback,
        *,
        filter: ChangeFilter | None = None,
        event_types: Iterable[ChangeType] | None = None,
    ) -> Subscription:
        sub = Subscription(
            table=table,
            callback=callback,
            filter=filter,
            event_types=frozenset(event_types) if event_types else ALL_CHANGE_TYPES,
            _feed=self,
        )
        self._subscriptions.append(sub)
        logger.debug("Subscribed to %s filter=%s", table, filter)
        return sub

    def _remove(self, sub: Subscription) -> None:
        try:
            self._subscriptions.remove(sub)
        except ValueError:
            pass

    @property
    def subscription_count(self) -> int:
        return len(self._subscriptions)

    async def publish(self, event: ChangeEvent) -> None:
        await self._dispatch(event)

    async def _dispatch(self, event: ChangeEvent) -> None:
        for sub in list(self._subscriptions):
            if not sub.active or not sub.accepts(event):
                continue
            try:
                await sub.callback(event)
            except Exception:
                logger.warning(
                    "Change subscriber for %s failed on %s",
                    event.table,
                    event.type.value,
                    exc_info=True,
                )

    async def start(self) -> None:
        return None

    async def close(self) -> None:
        for sub in list(self._subscriptions):
            sub.unsubscribe()


# ---------------------------------------------------------------------------
# Redis pub/sub backend
# ---------------------------------------------------------------------------

class RedisChangeFeed(InMemoryChangeFeed):
    """Change feed shared between processes through Redis pub/sub."""

    def __init__(self, redis_url: str, channel_prefix: str) -> None:
        super().__init__()
        self._redis_url = redis_url
        self._prefix = channel_prefix
        self._redis: aioredis.Redis | None = None
        self._listener: asyncio.Task[None] | None = None

    def _channel(self, table: str) -> str:
        return f"{self._prefix}:{table}"

    async def _get_redis(self) -> aioredis.Redis:
        if self._redis is None:
            self._redis = aioredis.from_url(self._redis_url, decode_responses=True)
        return self._redis

    async def start(self) -> None:
        if self._listener is None:
            self._listener = asyncio.create_task(
                self._listen(), name="change-feed-listener"
            )

    async def publish(self, event: ChangeEvent) -> None:
        redis = await self._get_redis()
        await redis.publish(self._channel(event.table), event.to_json())

    async def _listen(self) -> None:
        redis = await self._get_redis()
        pubsub = redis.pubsub()
        await pubsub.psubscribe(f"{self._prefix}:*")
        logger.info("Change feed listening on %s:*", self._prefix)
        try:
            async for message in pubsub.listen():
                if message.get("type") != "pmessage":
                    continue
                try:
                    event = ChangeEvent.from_json(message["data"])
                except (ValueError, KeyError) as exc:
                    logger.warning("Dropping malformed change event: %s", exc)
                    continue
                await self._dispatch(event)
        except asyncio.CancelledError:
            pass
        finally:
            await pubsub.close()

    async def close(self) -> None:
        await super().close()
        if self._listener is not None and not self._listener.done():
            self._listener.cancel()
            try:
                await self._listener
            except asyncio.CancelledError:
                pass
        self._listener = None
        if self._redis is not None:
            await self._redis.close()
            self._redis = None
            logger.info("Change feed Redis connection closed")


ChangeFeed = InMemoryChangeFeed


def create_change_feed(backend: str, redis_url: str, channel_prefix: str) -> InMemoryChangeFeed:
    if backend == "redis":
        return RedisChangeFeed(redis_url, channel_prefix)
    if backend != "memory":
        raise ValueError(f"Unknown change feed backend: {backend!r}")
    return InMemoryChangeFeed()
