"""
Pydantic v2 schemas for device positioning over REST.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from servicetrack.realtime.locationTracker import PositionErrorCode


class LocationUpdateRequest(BaseModel):
    lat: float = Field(ge=-90, le=90, description="Latitude")
    lng: float = Field(ge=-180, le=180, description="Longitude")
    accuracy: Optional[float] = Field(default=None, ge=0, description="Accuracy in metres")
    timestamp: Optional[datetime] = Field(
        default=None, description="When the fix was taken; defaults to now"
    )


class LocationErrorRequest(BaseModel):
    code: PositionErrorCode
    message: str = Field(default="", max_length=500)


class LocationAck(BaseModel):
    tracking: bool
    order_id: Optional[str] = None
