"""
Geo Service
===========

Great-circle distance for the tracking view: the straight-line distance
between the provider and the destination.

Uses the haversine formula (error < 0.5% for distances under 100 km).
"""

from __future__ import annotations

import math

# Earth's mean radius in kilometres
EARTH_RADIUS_KM: float = 6371.0


def haversine_distance(
    lat1: float,
    lon1: float,
    lat2: float,
    lon2: float,
) -> float:
    """Distance in kilometres between two points given in decimal degrees."""
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    delta_lat = math.radians(lat2 - lat1)
    delta_lon = math.radians(lon2 - lon1)

    a = (
        math.sin(delta_lat / 2) ** 2
        + math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(delta_lon / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_KM * c
