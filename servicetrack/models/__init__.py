"""
servicetrack SQLAlchemy Models
==============================

Central import point for all ORM models. Import ``Base`` from here for
the ``create_all`` convenience in tests.

Usage::

    from servicetrack.models import Base, Order, LiveLocation
"""

# -- Base & Mixins --
from .base import Base, TimestampMixin, UUIDPrimaryKeyMixin

# -- Profiles --
from .profile import Profile, ProfileRole

# -- Orders & tracking --
from .order import Order, OrderStatus
from .location import LiveLocation

# -- Job map --
from .taxonomy import Category
from .listing import JobListing

__all__ = [
    "Base",
    "TimestampMixin",
    "UUIDPrimaryKeyMixin",
    "Profile",
    "ProfileRole",
    "Order",
    "OrderStatus",
    "LiveLocation",
    "Category",
    "JobListing",
]
