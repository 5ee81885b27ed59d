"""
SQLAlchemy model for the live provider position.

One row per tracked provider, overwritten on every fix and deleted when
tracking stops. A missing row means the provider is not being tracked.
"""

import uuid
from datetime import datetime

from sqlalchemy import DateTime, Float, ForeignKey, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, utcnow


class LiveLocation(Base):
    __tablename__ = "live_locations"

    provider_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("profiles.id", ondelete="CASCADE"), primary_key=True
    )
    lat: Mapped[float] = mapped_column(Float, nullable=False)
    lng: Mapped[float] = mapped_column(Float, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    def __repr__(self) -> str:
        return f"<LiveLocation(provider={self.provider_id}, lat={self.lat}, lng={self.lng})>"
