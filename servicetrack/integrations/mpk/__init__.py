"""
Public transport feed integration package.

Typical usage::

    from servicetrack.integrations.mpk import fetch_vehicles, Vehicle
"""

from servicetrack.integrations.mpk.vehicleFeed import (
    Vehicle,
    VehicleFeedError,
    fetch_vehicles,
    parse_feed,
    parse_vehicle,
)

__all__ = [
    "Vehicle",
    "VehicleFeedError",
    "fetch_vehicles",
    "parse_feed",
    "parse_vehicle",
]
