"""
Pydantic v2 schemas for the provider map.

Same tagged union as the job map: ``single`` wraps one provider,
``cluster`` carries the group centroid, its bubble size and the members.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Literal, Optional, Union

from pydantic import BaseModel, Field

from servicetrack.services.clustering import MapMarker, SingleMarker
from servicetrack.services.providerMarkers import ProviderMarker


class ProviderMarkerOut(BaseModel):
    id: str
    name: str
    city: Optional[str] = None
    district: Optional[str] = None
    lat: float
    lng: float
    has_precise_location: bool
    avatar_url: Optional[str] = None
    hourly_rate: Optional[Decimal] = None
    rating_avg: float = 0.0

    @classmethod
    def from_marker(cls, marker: ProviderMarker) -> "ProviderMarkerOut":
        return cls(
            id=marker.id,
            name=marker.name,
            city=marker.city,
            district=marker.district,
            lat=marker.lat,
            lng=marker.lng,
            has_precise_location=marker.has_precise_location,
            avatar_url=marker.avatar_url,
            hourly_rate=marker.hourly_rate,
            rating_avg=marker.rating_avg,
        )


class ProviderPinOut(BaseModel):
    kind: Literal["single"] = "single"
    provider: ProviderMarkerOut


class ProviderClusterOut(BaseModel):
    kind: Literal["cluster"] = "cluster"
    key: str
    city: str
    district: Optional[str] = None
    lat: float
    lng: float
    count: int
    size: int = Field(description="Bubble diameter in pixels")
    providers: list[ProviderMarkerOut]


ProviderMapMarkerOut = Union[ProviderPinOut, ProviderClusterOut]


def provider_marker_out(marker: MapMarker) -> ProviderMapMarkerOut:
    if isinstance(marker, SingleMarker):
        return ProviderPinOut(provider=ProviderMarkerOut.from_marker(marker.marker))
    cluster = marker.cluster
    return ProviderClusterOut(
        key=cluster.key,
        city=cluster.city,
        district=cluster.district,
        lat=cluster.lat,
        lng=cluster.lng,
        count=cluster.count,
        size=marker.size,
        providers=[ProviderMarkerOut.from_marker(m) for m in cluster.members],
    )


class ProviderMapOut(BaseModel):
    zoom: float
    total_providers: int
    precise_hidden: bool = Field(
        description="Some providers have an exact location that shows when zoomed in"
    )
    markers: list[ProviderMapMarkerOut]
