"""
Job Map Routes
==============

Routes:
  GET /api/v1/jobs/map?zoom=&city=  -- Clustered job markers for the map

Listings are placed (stored coordinates, district or city centroid),
filtered to what the map can plot, and grouped per city, or per district
of the district-capable city from the split zoom level on.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, status

from servicetrack.api.deps import Categories, Store
from servicetrack.api.schemas.jobMap import JobMapOut, marker_out
from servicetrack.services.clustering import cluster_markers
from servicetrack.services.jobMarkers import build_markers
from servicetrack.services.orderStore import StoreError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/jobs", tags=["Job map"])


@router.get("/map", response_model=JobMapOut, summary="Clustered job markers")
async def jobs_map(
    store: Store,
    categories: Categories,
    zoom: float = Query(default=10, ge=0, le=22, description="Current map zoom level"),
    city: Optional[str] = Query(default=None, max_length=120),
) -> JobMapOut:
    try:
        listings = await store.list_job_listings(city=city)
        names = await categories.resolve(listing.category_id for listing in listings)
    except StoreError as exc:
        logger.error("Job map query failed: %s", exc)
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc))

    markers = build_markers(listings, names)
    logger.debug("Job map: %d listings, %d plottable at zoom %s", len(listings), len(markers), zoom)
    return JobMapOut(
        zoom=zoom,
        total_jobs=len(markers),
        markers=[marker_out(m) for m in cluster_markers(markers, zoom)],
    )
