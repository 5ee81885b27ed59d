"""
Pydantic v2 schemas for the job map and the work map
====================================================

Map markers are a tagged union on ``kind``: ``single`` wraps one job,
``cluster`` carries the group centroid, its size in pixels and the
member jobs.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Literal, Optional, Union

from pydantic import BaseModel, Field

from servicetrack.services.clustering import JobMarker, MapMarker, SingleMarker
from servicetrack.services.hotspots import ActivityLevel


class JobMarkerOut(BaseModel):
    id: str
    title: str
    city: Optional[str] = None
    district: Optional[str] = None
    lat: float
    lng: float
    has_precise_location: bool
    category: Optional[str] = None
    parent_category: Optional[str] = None
    budget: Optional[Decimal] = None
    urgent: bool = False

    @classmethod
    def from_marker(cls, marker: JobMarker) -> "JobMarkerOut":
        return cls(
            id=marker.id,
            title=marker.title,
            city=marker.city,
            district=marker.district,
            lat=marker.lat,
            lng=marker.lng,
            has_precise_location=marker.has_precise_location,
            category=marker.category,
            parent_category=marker.parent_category,
            budget=marker.budget,
            urgent=marker.urgent,
        )


class SingleMarkerOut(BaseModel):
    kind: Literal["single"] = "single"
    color: str
    job: JobMarkerOut


class ClusterMarkerOut(BaseModel):
    kind: Literal["cluster"] = "cluster"
    key: str
    city: str
    district: Optional[str] = None
    lat: float
    lng: float
    count: int
    size: int = Field(description="Bubble diameter in pixels")
    color: str
    has_urgent: bool
    jobs: list[JobMarkerOut]


MapMarkerOut = Union[SingleMarkerOut, ClusterMarkerOut]


def marker_out(marker: MapMarker) -> MapMarkerOut:
    if isinstance(marker, SingleMarker):
        return SingleMarkerOut(color=marker.color, job=JobMarkerOut.from_marker(marker.marker))
    cluster = marker.cluster
    return ClusterMarkerOut(
        key=cluster.key,
        city=cluster.city,
        district=cluster.district,
        lat=cluster.lat,
        lng=cluster.lng,
        count=cluster.count,
        size=marker.size,
        color=marker.color,
        has_urgent=cluster.has_urgent,
        jobs=[JobMarkerOut.from_marker(m) for m in cluster.members],
    )


class JobMapOut(BaseModel):
    zoom: float
    total_jobs: int
    markers: list[MapMarkerOut]


class HotspotOut(BaseModel):
    id: str
    lat: float
    lng: float
    count: int
    level: int = Field(ge=1, le=5)
    activity: ActivityLevel


class WorkMapOut(BaseModel):
    vehicle_count: int
    hotspots: list[HotspotOut]
