from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import Field

from phonica.schemas.base import CamelModel
from phonica.schemas.material import EquipmentSummary, MaterialDetail, TagSummary


class NamedCount(CamelModel):
    name: str
    count: int


class DashboardStats(CamelModel):
    total_materials: int
    total_duration_seconds: float
    average_rating: float
    materials_with_location: int
    tags: list[NamedCount]
    equipment: list[NamedCount]


# ---------------------------------------------------------------------------
# Map widget
# ---------------------------------------------------------------------------


class LocatedMaterial(CamelModel):
    id: str
    slug: str
    title: str
    latitude: float
    longitude: float
    recorded_at: datetime
    location_name: str | None = None


class MapBounds(CamelModel):
    north: float
    south: float
    east: float
    west: float


class MapCenter(CamelModel):
    lat: float
    lng: float


class MaterialsWithLocation(CamelModel):
    materials: list[LocatedMaterial]
    total_count: int
    bounds: MapBounds | None = None
    center: MapCenter | None = None


# ---------------------------------------------------------------------------
# Random pick
# ---------------------------------------------------------------------------


class RandomMaterial(MaterialDetail):
    audio_url: str


class RandomMaterialResponse(CamelModel):
    material: RandomMaterial | None = None


# ---------------------------------------------------------------------------
# Recording activity
# ---------------------------------------------------------------------------


class DailyCount(CamelModel):
    """Recordings on one UTC day; ``date`` is ``YYYY-MM-DD``."""

    date: str
    count: int


class RecordingActivity(CamelModel):
    activities: list[DailyCount]
    total_days: int
    start_date: str
    end_date: str
    total_recordings: int
    peak_day: DailyCount | None = None


# ---------------------------------------------------------------------------
# Unorganized materials
# ---------------------------------------------------------------------------

MaterialIssue = Literal["no_tags", "no_memo", "no_location", "no_rating", "no_equipment"]


class UnorganizedMaterial(CamelModel):
    id: str
    slug: str
    title: str
    recorded_at: datetime
    issues: list[MaterialIssue] = Field(default_factory=list)
    memo: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    location_name: str | None = None
    rating: int | None = None
    tags: list[TagSummary] = Field(default_factory=list)
    equipments: list[EquipmentSummary] = Field(default_factory=list)


class UnorganizedMaterials(CamelModel):
    materials: list[UnorganizedMaterial]
    total_count: int
    limit: int
