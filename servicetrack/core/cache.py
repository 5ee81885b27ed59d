"""
Bounded LRU cache with time-based expiry.

Instances are created by the application factory and passed to the
services that need them, so each cache has one owner and a defined
invalidation path (TTL or explicit ``invalidate``).
"""

from __future__ import annotations

import time
from collections import OrderedDict
from typing import Callable, Generic, Hashable, TypeVar

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class TTLCache(Generic[K, V]):
    """LRU cache backed by an ``OrderedDict`` whose entries expire after
    ``ttl_seconds``.

    Designed for single-threaded asyncio usage; all operations run on the
    event loop thread, so no lock is needed.
    """

    def __init__(
        self,
        max_size: int = 50,
        ttl_seconds: float | None = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_size <= 0:
            raise ValueError("max_size must be positive")
        self._max_size = max_size
        self._ttl = ttl_seconds
        self._clock = clock
        self._store: OrderedDict[K, tuple[float, V]] = OrderedDict()

    def get(self, key: K) -> V | None:
        entry = self._store.get(key)
        if entry is None:
            return None
        stored_at, value = entry
        if self._ttl is not None and self._clock() - stored_at >= self._ttl:
            del self._store[key]
            return None
        self._store.move_to_end(key)
        return value

    def put(self, key: K, value: V) -> None:
        if key in self._store:
            self._store.move_to_end(key)
        elif len(self._store) >= self._max_size:
            self._store.popitem(last=False)  # evict oldest
        self._store[key] = (self._clock(), value)

    def invalidate(self, key: K | None = None) -> None:
        """Drop one key, or everything when ``key`` is None."""
        if key is None:
            self._store.clear()
        else:
            self._store.pop(key, None)

    def __contains__(self, key: object) -> bool:
        return self.get(key) is not None  # type: ignore[arg-type]

    @property
    def size(self) -> int:
        return len(self._store)
