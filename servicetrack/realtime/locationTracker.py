"""
Provider Geolocation Watcher
============================

Continuously reports a provider's device position while one of their
orders is ``en_route``.

Architecture:
  - **PositionSource**: the device capability, modelled on the browser's
    ``watchPosition(onSuccess, onError, options)`` / ``clearWatch(id)``
    pair. ``DevicePositionSource`` is fed by the provider's device over
    Socket.IO (``location:update``) or REST (``PUT /location``) and
    enforces the watch options: stale fixes are dropped, and a watch that
    receives no fix within ``timeout_ms`` reports a timeout once.
  - **GeolocationWatcher**: one per provider and order. Every fix
    enqueues two best-effort writes: an upsert of the provider's
    ``live_locations`` row, and an update of the order's
    ``provider_lat``/``provider_lng``. Stopping clears the watch, drains
    the pending writes and deletes the live row, so a missing row always
    means "not tracked".
  - **TrackingRegistry**: process-wide owner of watchers, at most one per
    provider. The order service starts a watcher on ``depart`` and stops
    it on ``complete``; ``resume`` re-attaches watchers to orders that are
    already ``en_route`` when the process starts.

Positioning errors are surfaced to the provider through the notifier and
are never retried by the watcher. A permission denial stops tracking
exactly like ``stop`` (the live row is deleted); timeouts and transient
unavailability leave the watch open for the device to recover on its own.
"""

from __future__ import annotations

import asyncio
import enum
import itertools
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Final, Protocol

from servicetrack.core.config import settings
from servicetrack.models.order import Order, OrderStatus
from servicetrack.services.bestEffortWriter import BestEffortWriter

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

POSITION_ERROR_MESSAGE: Final[str] = "Could not acquire location"


# ---------------------------------------------------------------------------
# Device positioning contract
# ---------------------------------------------------------------------------


class PositionErrorCode(str, enum.Enum):
    PERMISSION_DENIED = "permission_denied"
    POSITION_UNAVAILABLE = "position_unavailable"
    TIMEOUT = "timeout"


class PositionUnavailableError(Exception):
    """The device denied or could not provide a position fix."""

    def __init__(self, code: PositionErrorCode, message: str = "") -> None:
        super().__init__(message or code.value)
        self.code = code


@dataclass(frozen=True)
class PositionOptions:
    high_accuracy: bool = True
    timeout_ms: int = 10_000
    max_age_ms: int = 5_000

    @classmethod
    def from_settings(cls) -> "PositionOptions":
        return cls(
            high_accuracy=settings.geolocation_high_accuracy,
            timeout_ms=settings.geolocation_timeout_ms,
            max_age_ms=settings.geolocation_max_age_ms,
        )


@dataclass(frozen=True)
class Position:
    lat: float
    lng: float
    accuracy: float | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


SuccessCallback = Callable[[Position], None]
ErrorCallback = Callable[[PositionUnavailableError], None]
Notifier = Callable[[uuid.UUID, str], None]


class PositionSource(Protocol):
    def watch_position(
        self,
        on_success: SuccessCallback,
        on_error: ErrorCallback,
        options: PositionOptions,
    ) -> int: ...

    def clear_watch(self, watch_id: int) -> None: ...


# ---------------------------------------------------------------------------
# Device-fed position source
# ---------------------------------------------------------------------------


@dataclass
class _Watch:
    on_success: SuccessCallback
    on_error: ErrorCallback
    options: PositionOptions
    got_fix: bool = False
    timer: asyncio.TimerHandle | None = None


class DevicePositionSource:
    """Position source fed by fixes the provider's device pushes to us."""

    _ids = itertools.count(1)

    def __init__(self, clock: Callable[[], datetime] | None = None) -> None:
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._watches: dict[int, _Watch] = {}

    @property
    def watching(self) -> bool:
        return bool(self._watches)

    def watch_position(
        self,
        on_success: SuccessCallback,
        on_error: ErrorCallback,
        options: PositionOptions,
    ) -> int:
        watch_id = next(self._ids)
        watch = _Watch(on_success=on_success, on_error=on_error, options=options)
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None
        if loop is not None and options.timeout_ms > 0:
            watch.timer = loop.call_later(
                options.timeout_ms / 1000, self._on_timeout, watch_id
            )
        self._watches[watch_id] = watch
        return watch_id

    def clear_watch(self, watch_id: int) -> None:
        watch = self._watches.pop(watch_id, None)
        if watch is not None and watch.timer is not None:
            watch.timer.cancel()

    def _on_timeout(self, watch_id: int) -> None:
        watch = self._watches.get(watch_id)
        if watch is None or watch.got_fix:
            return
        watch.on_error(
            PositionUnavailableError(PositionErrorCode.TIMEOUT, "No position fix within timeout")
        )

    def push(self, position: Position) -> int:
        """Deliver a fix to every open watch. Returns how many accepted it."""
        delivered = 0
        age = self._clock() - position.timestamp
        for watch in list(self._watches.values()):
            if age > timedelta(milliseconds=watch.options.max_age_ms):
                logger.debug("Dropping stale fix (age %.1fs)", age.total_seconds())
                continue
            watch.got_fix = True
            if watch.timer is not None:
                watch.timer.cancel()
                watch.timer = None
            watch.on_success(position)
            delivered += 1
        return delivered

    def fail(self, error: PositionUnavailableError) -> None:
        for watch in list(self._watches.values()):
            watch.on_error(error)


# ---------------------------------------------------------------------------
# Watcher
# ---------------------------------------------------------------------------


class GeolocationWatcher:
    def __init__(
        self,
        *,
        provider_id: uuid.UUID,
        order_id: uuid.UUID,
        source: PositionSource,
        store,
        writer: BestEffortWriter,
        options: PositionOptions | None = None,
        notify: Notifier | None = None,
    ) -> None:
        self.provider_id = provider_id
        self.order_id = order_id
        self._source = source
        self._store = store
        self._writer = writer
        self._options = options or PositionOptions.from_settings()
        self._notify = notify
        self._watch_id: int | None = None
        self.last_position: Position | None = None
        self.last_error: PositionUnavailableError | None = None

    @property
    def active(self) -> bool:
        return self._watch_id is not None

    def start(self) -> None:
        if self._watch_id is not None:
            return
        self.last_error = None
        self._watch_id = self._source.watch_position(
            self._on_position, self._on_error, self._options
        )
        logger.info(
            "Tracking started: provider=%s order=%s watch=%d",
            self.provider_id,
            self.order_id,
            self._watch_id,
        )

    def _on_position(self, position: Position) -> None:
        self.last_position = position
        provider_id, order_id = self.provider_id, self.order_id
        self._writer.submit(
            f"live_location:{provider_id}",
            lambda: self._store.upsert_live_location(provider_id, position.lat, position.lng),
        )
        self._writer.submit(
            f"order_position:{order_id}",
            lambda: self._store.update_provider_position(order_id, position.lat, position.lng),
        )

    def _on_error(self, error: PositionUnavailableError) -> None:
        self.last_error = error
        logger.warning(
            "Positioning error for provider %s: %s (%s)",
            self.provider_id,
            error,
            error.code.value,
        )
        if self._notify is not None:
            self._notify(self.provider_id, POSITION_ERROR_MESSAGE)
        if error.code == PositionErrorCode.PERMISSION_DENIED:
            self._clear()

    def _clear(self) -> None:
        if self._watch_id is not None:
            self._source.clear_watch(self._watch_id)
            self._watch_id = None

    async def stop(self) -> None:
        """Clear the watch and delete the provider's live location row."""
        self._clear()
        # Pending upserts must land before the delete, or they would
        # recreate the row.
        await self._writer.flush()
        await self._store.delete_live_location(self.provider_id)
        logger.info("Tracking stopped: provider=%s order=%s", self.provider_id, self.order_id)


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class TrackingRegistry:
    """Owns the position sources and watchers of all providers."""

    def __init__(
        self,
        store,
        writer: BestEffortWriter,
        *,
        options: PositionOptions | None = None,
        notify: Notifier | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._writer = writer
        self._options = options or PositionOptions.from_settings()
        self._notify = notify
        self._clock = clock
        self._sources: dict[uuid.UUID, DevicePositionSource] = {}
        self._watchers: dict[uuid.UUID, GeolocationWatcher] = {}

    @property
    def writer(self) -> BestEffortWriter:
        return self._writer

    def set_notifier(self, notify: Notifier | None) -> None:
        self._notify = notify
        for watcher in self._watchers.values():
            watcher._notify = notify

    def source_for(self, provider_id: uuid.UUID) -> DevicePositionSource:
        source = self._sources.get(provider_id)
        if source is None:
            source = DevicePositionSource(clock=self._clock)
            self._sources[provider_id] = source
        return source

    def watcher_for(self, provider_id: uuid.UUID) -> GeolocationWatcher | None:
        return self._watchers.get(provider_id)

    def is_tracking(self, provider_id: uuid.UUID) -> bool:
        watcher = self._watchers.get(provider_id)
        return watcher is not None and watcher.active

    def tracked_order(self, provider_id: uuid.UUID) -> uuid.UUID | None:
        watcher = self._watchers.get(provider_id)
        return watcher.order_id if watcher is not None and watcher.active else None

    async def start(self, order: Order) -> GeolocationWatcher:
        """Start (or keep) the watcher for ``order``'s provider."""
        current = self._watchers.get(order.provider_id)
        if current is not None and current.order_id == order.id:
            current.start()
            return current
        if current is not None:
            await self.stop(order.provider_id)

        watcher = GeolocationWatcher(
            provider_id=order.provider_id,
            order_id=order.id,
            source=self.source_for(order.provider_id),
            store=self._store,
            writer=self._writer,
            options=self._options,
            notify=self._notify,
        )
        self._watchers[order.provider_id] = watcher
        watcher.start()
        return watcher

    async def stop(self, provider_id: uuid.UUID) -> bool:
        """Stop the provider's watcher. Returns False when none was running."""
        watcher = self._watchers.pop(provider_id, None)
        if watcher is None:
            return False
        await watcher.stop()
        return True

    def push(self, provider_id: uuid.UUID, position: Position) -> bool:
        """Feed a device fix; False when the provider is not being tracked."""
        if not self.is_tracking(provider_id):
            return False
        return self.source_for(provider_id).push(position) > 0

    async def fail(self, provider_id: uuid.UUID, error: PositionUnavailableError) -> bool:
        """Report a device positioning error. A permission denial stops
        tracking the same way ``stop`` does, live location included."""
        if not self.is_tracking(provider_id):
            return False
        self.source_for(provider_id).fail(error)
        if error.code == PositionErrorCode.PERMISSION_DENIED:
            await self.stop(provider_id)
        return True

    async def resume(self) -> int:
        """Attach watchers to every order that is already en route."""
        orders = await self._store.list_orders(statuses=[OrderStatus.EN_ROUTE])
        started = 0
        for order in orders:
            if order.provider_id in self._watchers:
                continue
            await self.start(order)
            started += 1
        if started:
            logger.info("Resumed tracking for %d en-route order(s)", started)
        return started

    async def flush(self) -> None:
        await self._writer.flush()

    async def close(self) -> None:
        """Release watches without touching stored rows."""
        for watcher in self._watchers.values():
            watcher._clear()
        self._watchers.clear()
        await self._writer.close()
