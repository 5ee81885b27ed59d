"""
Pydantic v2 schemas for the Orders API
======================================

Request bodies for order creation and the response shapes for orders,
the active-orders summary and the tracking view.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from servicetrack.models.order import OrderStatus


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------

class OrderCreateRequest(BaseModel):
    """Order a provider to the client's position.

    Omit the coordinates to have them resolved from the request IP.
    """

    provider_id: uuid.UUID = Field(description="Profile UUID of the provider")
    client_lat: Optional[float] = Field(default=None, ge=-90, le=90)
    client_lng: Optional[float] = Field(default=None, ge=-180, le=180)


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------

class OrderOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    client_id: uuid.UUID
    provider_id: uuid.UUID
    status: OrderStatus
    client_lat: float
    client_lng: float
    provider_lat: Optional[float] = None
    provider_lng: Optional[float] = None
    eta_seconds: Optional[int] = None
    created_at: datetime
    updated_at: datetime


class OrderWithActionsOut(OrderOut):
    """Order plus the actions the requesting user may take on it."""

    actions: list[str] = Field(default_factory=list)


class OrdersSummaryOut(BaseModel):
    client_orders: list[OrderWithActionsOut]
    provider_orders: list[OrderWithActionsOut]
    has_active_client_order: bool
    has_active_provider_order: bool
    pending_provider_order_ids: list[uuid.UUID]
    active_provider_order_id: Optional[uuid.UUID] = None


class ProviderPositionOut(BaseModel):
    lat: float
    lng: float
    live: bool = Field(description="False when this is the last stored position")


class TrackingOut(BaseModel):
    order: OrderOut
    provider_position: Optional[ProviderPositionOut] = None
    distance_km: Optional[float] = None
    eta_seconds: Optional[float] = None
    eta_text: Optional[str] = None
    route: Optional[list[tuple[float, float]]] = None
    tracking: bool = Field(default=False, description="A watcher is running for the provider")
