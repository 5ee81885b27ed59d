"""
Routing integration package
===========================

Typical usage::

    from servicetrack.integrations.routing import OsrmRouter, RouteResult, RoutingError
"""

from servicetrack.integrations.routing.osrmService import (
    OsrmRouter,
    RouteResult,
    RoutingError,
    parse_route,
)

__all__ = [
    "OsrmRouter",
    "RouteResult",
    "RoutingError",
    "parse_route",
]
