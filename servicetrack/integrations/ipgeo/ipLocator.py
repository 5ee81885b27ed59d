"""
IP geolocation lookup (ipapi.co).

Used when a client creates an order without sending device coordinates:
the request IP is resolved to an approximate position that becomes the
order's destination.
"""

from __future__ import annotations

import ipaddress
import logging

import httpx

from servicetrack.core.config import settings
from servicetrack.integrations.httpRetry import IntegrationError, get_json_with_retry

logger = logging.getLogger(__name__)


class IpLocationError(IntegrationError):
    """Raised when an IP address cannot be resolved to coordinates."""


def _lookup_url(ip: str | None) -> str:
    base = settings.ip_geolocation_url.rstrip("/")
    if ip:
        try:
            addr = ipaddress.ip_address(ip)
        except ValueError:
            addr = None
        if addr is not None and addr.is_global:
            return f"{base}/{ip}/json/"
    return f"{base}/json/"


async def locate_ip(
    ip: str | None, client: httpx.AsyncClient | None = None
) -> tuple[float, float]:
    """Return ``(lat, lng)`` for ``ip``.

    Raises:
        IpLocationError: On transport failure or when the service has no
            coordinates for the address.
    """
    url = _lookup_url(ip)
    if client is not None:
        data = await get_json_with_retry(
            client, url, service="IP geolocation", error_cls=IpLocationError
        )
    else:
        async with httpx.AsyncClient() as own_client:
            data = await get_json_with_retry(
                own_client, url, service="IP geolocation", error_cls=IpLocationError
            )

    if not isinstance(data, dict) or data.get("error"):
        raise IpLocationError("IP geolocation returned an error", raw=data)
    try:
        lat = float(data["latitude"])
        lng = float(data["longitude"])
    except (KeyError, TypeError, ValueError) as exc:
        raise IpLocationError("IP geolocation response has no coordinates", raw=data) from exc

    logger.debug("Resolved IP %s to (%.4f, %.4f)", ip, lat, lng)
    return lat, lng
