"""
SQLAlchemy model for user profiles.

Account management lives with the auth provider; this table only holds
what the tracking core and the provider map need: identity, role, a
display name and, for providers, where they work.

``lat``/``lng`` are set when the provider's street address was geocoded;
the provider map treats them as a precise location.
"""

import enum
from decimal import Decimal
from typing import Optional

from sqlalchemy import Boolean, Enum, Float, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class ProfileRole(str, enum.Enum):
    CLIENT = "client"
    PROVIDER = "provider"


class Profile(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "profiles"

    role: Mapped[ProfileRole] = mapped_column(
        Enum(ProfileRole, name="profile_role", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    avatar_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    city: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    district: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    street: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    lat: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    lng: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    # -- Provider listing --
    is_available: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    hourly_rate: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    rating_avg: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
