"""
SQLAlchemy model for tracked orders.

An order links one client with one provider and carries the fixed
destination (the client's position at creation time) plus the last
known provider position, overwritten by the provider's watcher.
"""

import enum
import uuid
from typing import Optional

from sqlalchemy import Enum, Float, ForeignKey, Integer, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class OrderStatus(str, enum.Enum):
    REQUESTED = "requested"
    ACCEPTED = "accepted"
    EN_ROUTE = "en_route"
    ARRIVED = "arrived"
    DONE = "done"
    CANCELLED = "cancelled"


class Order(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "orders"

    client_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True
    )
    provider_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True
    )
    status: Mapped[OrderStatus] = mapped_column(
        Enum(OrderStatus, name="order_status", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=OrderStatus.REQUESTED,
        index=True,
    )

    # Destination, fixed at creation
    client_lat: Mapped[float] = mapped_column(Float, nullable=False)
    client_lng: Mapped[float] = mapped_column(Float, nullable=False)

    # Last reported provider position
    provider_lat: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    provider_lng: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    # Server-authoritative ETA; clients fall back to their own estimate
    eta_seconds: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    def __repr__(self) -> str:
        return f"<Order(id={self.id}, status={self.status.value})>"
