"""
Shared HTTP GET helper for the external integrations.

All calls use httpx with retry logic (3 attempts, exponential backoff).
Transient failures (5xx, timeouts, connection errors) are retried; 4xx
responses fail immediately.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

logger = logging.getLogger(__name__)

MAX_RETRIES = 3
INITIAL_BACKOFF_SECONDS = 0.5  # doubles each retry: 0.5, 1.0, 2.0
REQUEST_TIMEOUT_SECONDS = 10.0


class IntegrationError(Exception):
    """Raised when an external API request fails after all retries or
    returns a non-retryable error status."""

    def __init__(
        self, message: str, status: str | None = None, raw: Any = None
    ) -> None:
        super().__init__(message)
        self.status = status
        self.raw = raw


async def get_json_with_retry(
    client: httpx.AsyncClient,
    url: str,
    *,
    params: dict[str, Any] | None = None,
    service: str = "External API",
    error_cls: type[IntegrationError] = IntegrationError,
) -> Any:
    """GET ``url`` and return the parsed JSON body.

    Raises:
        error_cls: After all retries are exhausted, on a 4xx response, or
            when the body is not valid JSON.
    """
    last_exception: Exception | None = None
    backoff = INITIAL_BACKOFF_SECONDS

    for attempt in range(1, MAX_RETRIES + 1):
        try:
            response = await client.get(url, params=params, timeout=REQUEST_TIMEOUT_SECONDS)

            if 400 <= response.status_code < 500:
                raise error_cls(
                    f"{service} client error: HTTP {response.status_code}",
                    status=str(response.status_code),
                    raw=response.text,
                )

            if response.status_code >= 500:
                last_exception = error_cls(
                    f"{service} server error: HTTP {response.status_code}",
                    status=str(response.status_code),
                    raw=response.text,
                )
                logger.warning(
                    "%s server error on attempt %d/%d: HTTP %d",
                    service,
                    attempt,
                    MAX_RETRIES,
                    response.status_code,
                )
                if attempt < MAX_RETRIES:
                    await asyncio.sleep(backoff)
                    backoff *= 2
                continue

            try:
                return response.json()
            except ValueError as exc:
                raise error_cls(
                    f"{service} returned invalid JSON", raw=response.text
                ) from exc

        except (httpx.TimeoutException, httpx.ConnectError) as exc:
            last_exception = exc
            logger.warning(
                "%s transport error on attempt %d/%d: %s",
                service,
                attempt,
                MAX_RETRIES,
                exc,
            )
            if attempt < MAX_RETRIES:
                await asyncio.sleep(backoff)
                backoff *= 2

    raise error_cls(
        f"{service} request failed after {MAX_RETRIES} attempts",
        raw=str(last_exception),
    )
