"""
Provider Map Routes
===================

Routes:
  GET /api/v1/providers/map?zoom=&city=  -- Available providers for the map

The entry point to ordering: clients browse available providers here and
pick one to order. Providers are grouped per city (per district in
Wrocław); from street-level zoom on, providers with a geocoded address
are shown as individual pins.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, status

from servicetrack.api.deps import Store
from servicetrack.api.schemas.providerMap import ProviderMapOut, provider_marker_out
from servicetrack.services.orderStore import StoreError
from servicetrack.services.providerMarkers import (
    build_provider_markers,
    cluster_providers,
    precise_hidden,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/providers", tags=["Provider map"])


@router.get("/map", response_model=ProviderMapOut, summary="Clustered provider markers")
async def providers_map(
    store: Store,
    zoom: float = Query(default=9, ge=0, le=22, description="Current map zoom level"),
    city: Optional[str] = Query(default=None, max_length=120),
) -> ProviderMapOut:
    try:
        profiles = await store.list_available_providers(city=city)
    except StoreError as exc:
        logger.error("Provider map query failed: %s", exc)
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc))

    markers = build_provider_markers(profiles)
    return ProviderMapOut(
        zoom=zoom,
        total_providers=len(markers),
        precise_hidden=precise_hidden(markers, zoom),
        markers=[provider_marker_out(m) for m in cluster_providers(markers, zoom)],
    )
