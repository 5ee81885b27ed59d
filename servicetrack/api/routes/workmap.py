"""
Work Map Routes
===============

Routes:
  GET /api/v1/workmap/hotspots  -- Public transport activity hotspots

Backed by the city's open vehicle-position feed. A failing feed serves the
last good snapshot; only a feed that never answered returns 503.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, status

from servicetrack.api.deps import Hotspots
from servicetrack.api.schemas.jobMap import HotspotOut, WorkMapOut
from servicetrack.integrations.mpk import VehicleFeedError
from servicetrack.services.hotspots import compute_hotspots

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/workmap", tags=["Work map"])


@router.get("/hotspots", response_model=WorkMapOut, summary="Vehicle activity hotspots")
async def hotspots(service: Hotspots) -> WorkMapOut:
    try:
        vehicles = await service.vehicles()
    except VehicleFeedError as exc:
        logger.error("Vehicle feed unavailable: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Vehicle data is unavailable",
        )
    return WorkMapOut(
        vehicle_count=len(vehicles),
        hotspots=[
            HotspotOut(
                id=h.id, lat=h.lat, lng=h.lng, count=h.count, level=h.level, activity=h.activity
            )
            for h in compute_hotspots(vehicles)
        ],
    )
