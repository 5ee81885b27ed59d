"""
SQLAlchemy model for job listings shown on the map.

``lat``/``lng`` are only present when the street address was geocoded;
otherwise the map falls back to district or city centroids.
"""

import uuid
from decimal import Decimal
from typing import Optional

from sqlalchemy import Boolean, Float, ForeignKey, Numeric, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class JobListing(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "job_listings"

    title: Mapped[str] = mapped_column(String(200), nullable=False)
    city: Mapped[Optional[str]] = mapped_column(String(120), nullable=True, index=True)
    district: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    street: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    lat: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    lng: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    category_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("categories.id", ondelete="SET NULL"), nullable=True
    )
    budget: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    urgent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
