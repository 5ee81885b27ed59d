"""
IP geolocation integration package.

Typical usage::

    from servicetrack.integrations.ipgeo import locate_ip, IpLocationError
"""

from servicetrack.integrations.ipgeo.ipLocator import IpLocationError, locate_ip

__all__ = [
    "IpLocationError",
    "locate_ip",
]
