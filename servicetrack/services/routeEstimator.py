"""
Route / ETA Estimator
=====================

Keeps a driving route and duration between a provider and an order's
destination for one tracking session.

Throttling:
  - ``on_position`` issues at most one routing call per
    ``throttle_seconds`` window, measured from the last *attempted* call.
    Updates arriving inside the window are dropped, not queued.
  - A periodic refresh task re-issues the call every ``refresh_seconds``
    with the latest coordinates, so the route stays fresh even when
    position updates are suppressed. Refreshes stamp the same
    last-attempt timestamp.

A failed routing call is logged and swallowed; the previous route stays
in place until the next successful call. An in-flight call is not
cancelled by ``stop``; its result is discarded.

The server-authoritative ``eta_seconds`` on the order always wins over
the local estimate (``display_eta``).
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from typing import Any, Awaitable, Callable, Final

from servicetrack.core.config import settings
from servicetrack.integrations.routing import RouteResult
from servicetrack.models.order import OrderStatus

logger = logging.getLogger(__name__)

LatLngPair = tuple[float, float]
Router = Callable[[LatLngPair, LatLngPair], Awaitable[RouteResult]]

LESS_THAN_A_MINUTE: Final[str] = "less than a minute"


class RouteEstimator:
    def __init__(
        self,
        router: Router,
        *,
        clock: Callable[[], float] = time.monotonic,
        throttle_seconds: float | None = None,
        refresh_seconds: float | None = None,
    ) -> None:
        self._router = router
        self._clock = clock
        self._throttle = (
            settings.route_throttle_seconds if throttle_seconds is None else throttle_seconds
        )
        self._refresh = (
            settings.route_refresh_seconds if refresh_seconds is None else refresh_seconds
        )
        self._last_attempt: float | None = None
        self._origin: LatLngPair | None = None
        self._destination: LatLngPair | None = None
        self._task: asyncio.Task[None] | None = None
        self._stopped = False
        self.route: RouteResult | None = None
        self.calls = 0

    @property
    def local_eta_seconds(self) -> float | None:
        return self.route.duration_seconds if self.route is not None else None

    def _window_open(self) -> bool:
        if self._last_attempt is None:
            return True
        return self._clock() - self._last_attempt >= self._throttle

    async def on_position(self, origin: LatLngPair, destination: LatLngPair) -> bool:
        """Record the latest coordinates; call the router if the throttle
        window has elapsed. Returns True when a call was issued."""
        self._origin, self._destination = origin, destination
        if not self._window_open():
            return False
        await self._fetch()
        return True

    async def refresh(self) -> bool:
        """Unthrottled re-issue with the latest known coordinates."""
        if self._origin is None or self._destination is None:
            return False
        await self._fetch()
        return True

    async def _fetch(self) -> None:
        origin, destination = self._origin, self._destination
        if origin is None or destination is None:
            return
        self._last_attempt = self._clock()
        self.calls += 1
        try:
            route = await self._router(origin, destination)
        except Exception:
            logger.warning(
                "Route lookup %s -> %s failed; keeping previous route",
                origin,
                destination,
                exc_info=True,
            )
            return
        if not self._stopped:
            self.route = route

    def start(self) -> None:
        """Start the periodic refresh loop (idempotent)."""
        self._stopped = False
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._refresh_loop(), name="route-refresh")

    async def _refresh_loop(self) -> None:
        try:
            while True:
                await asyncio.sleep(self._refresh)
                await self.refresh()
        except asyncio.CancelledError:
            pass

    async def stop(self) -> None:
        self._stopped = True
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None

    def display_eta(
        self, server_eta: int | None, status: OrderStatus
    ) -> float | None:
        """ETA to show: only while en route, server value first."""
        if status != OrderStatus.EN_ROUTE:
            return None
        if server_eta is not None:
            return float(server_eta)
        return self.local_eta_seconds


def format_eta(seconds: float) -> str:
    """Human readable ETA: "less than a minute", "12 min" or "1h 5min"."""
    if seconds < 60:
        return LESS_THAN_A_MINUTE
    minutes = math.floor(seconds / 60 + 0.5)
    if minutes < 60:
        return f"{minutes} min"
    hours, remaining = divmod(minutes, 60)
    return f"{hours}h {remaining}min"


class EstimatorPool:
    """One estimator per tracked order, shared by every viewer of it.

    Sessions hold a reference with ``acquire``/``release``; the estimator
    and its refresh loop live until the last reference is released, or
    until the order leaves ``en_route`` and it is discarded outright.
    ``get`` returns the shared estimator without taking a reference
    (one-off REST reads).
    """

    def __init__(self, router: Router, **options: Any) -> None:
        self._router = router
        self._options = options
        self._estimators: dict[object, RouteEstimator] = {}
        self._refs: dict[object, int] = {}

    def get(self, key: object) -> RouteEstimator:
        estimator = self._estimators.get(key)
        if estimator is None:
            estimator = RouteEstimator(self._router, **self._options)
            self._estimators[key] = estimator
        return estimator

    def peek(self, key: object) -> RouteEstimator | None:
        return self._estimators.get(key)

    def references(self, key: object) -> int:
        return self._refs.get(key, 0)

    def acquire(self, key: object) -> RouteEstimator:
        estimator = self.get(key)
        self._refs[key] = self._refs.get(key, 0) + 1
        estimator.start()
        return estimator

    async def release(self, key: object) -> None:
        count = self._refs.get(key, 0) - 1
        if count > 0:
            self._refs[key] = count
            return
        await self.discard(key)

    async def discard(self, key: object) -> None:
        """Stop and drop the estimator, whoever still holds it."""
        self._refs.pop(key, None)
        estimator = self._estimators.pop(key, None)
        if estimator is not None:
            await estimator.stop()

    async def close(self) -> None:
        for key in list(self._estimators):
            await self.discard(key)
