"""
Best-effort background writes.

Position samples are written at most once from a bounded queue drained by
a single worker task. With ``max_retries=0`` (the default) a failed write
is logged and dropped; a positive value retries with exponential backoff
before giving up. When the queue is full the oldest pending write is
discarded, since only the latest position matters.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)

WriteJob = Callable[[], Awaitable[object]]


class BestEffortWriter:
    def __init__(
        self,
        *,
        max_retries: int = 0,
        backoff_seconds: float = 0.5,
        max_pending: int = 256,
    ) -> None:
        self._max_retries = max(0, max_retries)
        self._backoff = backoff_seconds
        self._queue: asyncio.Queue[tuple[str, WriteJob]] = asyncio.Queue(maxsize=max_pending)
        self._worker: asyncio.Task[None] | None = None
        self.failed = 0
        self.dropped = 0

    def submit(self, label: str, job: WriteJob) -> None:
        """Queue ``job`` without waiting for it."""
        if self._queue.full():
            self._queue.get_nowait()
            self._queue.task_done()
            self.dropped += 1
            logger.warning("Write queue full; dropped oldest pending write")
        self._queue.put_nowait((label, job))
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._drain(), name="best-effort-writer")

    async def _drain(self) -> None:
        while True:
            label, job = await self._queue.get()
            try:
                await self._attempt(label, job)
            finally:
                self._queue.task_done()

    async def _attempt(self, label: str, job: WriteJob) -> None:
        backoff = self._backoff
        for attempt in range(1, self._max_retries + 2):
            try:
                await job()
                return
            except asyncio.CancelledError:
                raise
            except Exception:
                if attempt > self._max_retries:
                    self.failed += 1
                    logger.warning(
                        "Write %s failed after %d attempt(s); giving up",
                        label,
                        attempt,
                        exc_info=True,
                    )
                    return
                logger.info("Write %s failed on attempt %d; retrying in %.1fs", label, attempt, backoff)
                await asyncio.sleep(backoff)
                backoff *= 2

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    async def flush(self) -> None:
        """Wait until every queued write has been attempted."""
        await self._queue.join()

    async def close(self) -> None:
        if self._worker is not None and not self._worker.done():
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
        self._worker = None
