"""Collection statistics and widgets for the dashboard."""

from __future__ import annotations

import logging
import math
import random
from datetime import UTC, date, datetime, time, timedelta

from fastapi import APIRouter, Depends, Query
from sqlalchemy import and_, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from phonica.db.session import get_db
from phonica.materials.pipeline import MATERIAL_LOAD_OPTIONS
from phonica.models.equipment import Equipment
from phonica.models.material import Material, material_equipments, material_tags
from phonica.models.tag import Tag
from phonica.schemas.dashboard import (
    DailyCount,
    DashboardStats,
    LocatedMaterial,
    MapBounds,
    MapCenter,
    MaterialIssue,
    MaterialsWithLocation,
    NamedCount,
    RandomMaterial,
    RandomMaterialResponse,
    RecordingActivity,
    UnorganizedMaterial,
    UnorganizedMaterials,
)
from phonica.schemas.material import MaterialDetail

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/dashboard", tags=["dashboard"])

TOP_N = 10
MAP_LIMIT = 100
UNORGANIZED_LIMIT = 100
MAX_ACTIVITY_DAYS = 3660


@router.get("/stats", response_model=DashboardStats)
async def dashboard_stats(
    db: AsyncSession = Depends(get_db),  # noqa: B008
) -> DashboardStats:
    """Totals plus the ten most used tags and equipment."""
    total_materials, total_duration, average_rating = (
        await db.execute(
            select(
                func.count(Material.id),
                func.coalesce(func.sum(Material.duration_seconds), 0.0),
                func.avg(Material.rating),
            )
        )
    ).one()

    with_location = await db.scalar(
        select(func.count(Material.id)).where(
            Material.latitude.is_not(None), Material.longitude.is_not(None)
        )
    )

    tag_count = func.count(material_tags.c.material_id)
    tag_rows = (
        await db.execute(
            select(Tag.name, tag_count)
            .outerjoin(material_tags, material_tags.c.tag_id == Tag.id)
            .group_by(Tag.id, Tag.name)
            .order_by(tag_count.desc(), Tag.name)
            .limit(TOP_N)
        )
    ).all()

    equipment_count = func.count(material_equipments.c.material_id)
    equipment_rows = (
        await db.execute(
            select(Equipment.name, equipment_count)
            .outerjoin(material_equipments, material_equipments.c.equipment_id == Equipment.id)
            .group_by(Equipment.id, Equipment.name)
            .order_by(equipment_count.desc(), Equipment.name)
            .limit(TOP_N)
        )
    ).all()

    return DashboardStats(
        total_materials=total_materials,
        total_duration_seconds=float(total_duration or 0),
        average_rating=round(float(average_rating), 1) if average_rating is not None else 0.0,
        materials_with_location=with_location or 0,
        tags=[NamedCount(name=name, count=count) for name, count in tag_rows],
        equipment=[NamedCount(name=name, count=count) for name, count in equipment_rows],
    )


# ---------------------------------------------------------------------------
# Map
# ---------------------------------------------------------------------------


def parse_bounds(raw: str | None) -> MapBounds | None:
    """Parse ``north,south,east,west``; anything malformed is ignored."""
    if not raw:
        return None
    try:
        north, south, east, west = (float(part) for part in raw.split(","))
    except ValueError:
        logger.warning("Ignoring invalid bounds parameter: %r", raw)
        return None
    if not all(math.isfinite(value) for value in (north, south, east, west)):
        logger.warning("Ignoring invalid bounds parameter: %r", raw)
        return None
    return MapBounds(north=north, south=south, east=east, west=west)


@router.get("/materials-with-location", response_model=MaterialsWithLocation)
async def materials_with_location(
    limit: int = Query(default=MAP_LIMIT),
    bounds: str | None = Query(default=None),
    db: AsyncSession = Depends(get_db),  # noqa: B008
) -> MaterialsWithLocation:
    """Latest located materials, optionally inside a ``north,south,east,west`` box.

    ``bounds`` and ``center`` in the response span the returned materials.
    """
    limit = max(1, min(limit, MAP_LIMIT))
    conditions = [Material.latitude.is_not(None), Material.longitude.is_not(None)]
    box = parse_bounds(bounds)
    if box is not None:
        conditions += [
            Material.latitude.between(box.south, box.north),
            Material.longitude.between(box.west, box.east),
        ]

    total_count = await db.scalar(select(func.count(Material.id)).where(*conditions))
    materials = (
        await db.execute(
            select(Material)
            .where(*conditions)
            .order_by(Material.recorded_at.desc(), Material.id)
            .limit(limit)
        )
    ).scalars().all()

    span = center = None
    if materials:
        latitudes = [m.latitude for m in materials]
        longitudes = [m.longitude for m in materials]
        span = MapBounds(
            north=max(latitudes), south=min(latitudes), east=max(longitudes), west=min(longitudes)
        )
        center = MapCenter(lat=(span.north + span.south) / 2, lng=(span.east + span.west) / 2)

    return MaterialsWithLocation(
        materials=[LocatedMaterial.model_validate(m) for m in materials],
        total_count=total_count or 0,
        bounds=span,
        center=center,
    )


# ---------------------------------------------------------------------------
# Random pick
# ---------------------------------------------------------------------------


@router.get("/random-material", response_model=RandomMaterialResponse)
async def random_material(
    db: AsyncSession = Depends(get_db),  # noqa: B008
) -> RandomMaterialResponse:
    """One material chosen uniformly at random, or ``null`` when there are none."""
    total = await db.scalar(select(func.count(Material.id)))
    if not total:
        return RandomMaterialResponse(material=None)

    material = (
        await db.execute(
            select(Material)
            .options(*MATERIAL_LOAD_OPTIONS)
            .order_by(Material.id)
            .offset(random.randrange(total))
            .limit(1)
        )
    ).scalar_one_or_none()
    if material is None:
        return RandomMaterialResponse(material=None)

    detail = MaterialDetail.model_validate(material)
    return RandomMaterialResponse(
        material=RandomMaterial(
            **detail.model_dump(),
            audio_url=f"/api/v1/materials/{material.slug}/download?play=true",
        )
    )


# ---------------------------------------------------------------------------
# Recording activity
# ---------------------------------------------------------------------------


def _utc_day(value: datetime) -> date:
    # SQLite hands back naive values that were stored as UTC
    if value.tzinfo is None:
        return value.date()
    return value.astimezone(UTC).date()


@router.get("/recording-activity", response_model=RecordingActivity)
async def recording_activity(
    days: int = Query(default=365, ge=1, le=MAX_ACTIVITY_DAYS),
    endDate: date | None = Query(default=None),  # noqa: N803
    db: AsyncSession = Depends(get_db),  # noqa: B008
) -> RecordingActivity:
    """Recordings per UTC day over the ``days`` days ending at ``endDate`` (today)."""
    end = endDate or datetime.now(UTC).date()
    start = end - timedelta(days=days - 1)
    window_start = datetime.combine(start, time.min, tzinfo=UTC)
    window_end = datetime.combine(end + timedelta(days=1), time.min, tzinfo=UTC)

    recorded = (
        await db.execute(
            select(Material.recorded_at).where(
                Material.recorded_at >= window_start, Material.recorded_at < window_end
            )
        )
    ).scalars().all()

    counts = {(start + timedelta(days=offset)).isoformat(): 0 for offset in range(days)}
    for value in recorded:
        key = _utc_day(value).isoformat()
        if key in counts:
            counts[key] += 1

    activities = [DailyCount(date=day, count=count) for day, count in counts.items()]
    peak = max(activities, key=lambda activity: activity.count)
    return RecordingActivity(
        activities=activities,
        total_days=days,
        start_date=start.isoformat(),
        end_date=end.isoformat(),
        total_recordings=sum(counts.values()),
        peak_day=peak if peak.count > 0 else None,
    )


# ---------------------------------------------------------------------------
# Unorganized materials
# ---------------------------------------------------------------------------


def _unorganized_clause():
    return or_(
        ~Material.tags.any(),
        Material.memo.is_(None),
        func.trim(Material.memo) == "",
        and_(
            Material.latitude.is_(None),
            Material.longitude.is_(None),
            Material.location_name.is_(None),
        ),
        Material.rating.is_(None),
        ~Material.equipments.any(),
    )


def material_issues(material: Material) -> list[MaterialIssue]:
    issues: list[MaterialIssue] = []
    if not material.tags:
        issues.append("no_tags")
    if not (material.memo or "").strip():
        issues.append("no_memo")
    if material.latitude is None and material.longitude is None and material.location_name is None:
        issues.append("no_location")
    if material.rating is None:
        issues.append("no_rating")
    if not material.equipments:
        issues.append("no_equipment")
    return issues


@router.get("/unorganized", response_model=UnorganizedMaterials)
async def unorganized_materials(
    limit: int = Query(default=10),
    db: AsyncSession = Depends(get_db),  # noqa: B008
) -> UnorganizedMaterials:
    """Newest materials missing tags, memo, location, rating or equipment."""
    limit = max(1, min(limit, UNORGANIZED_LIMIT))
    unorganized = _unorganized_clause()

    total_count = await db.scalar(select(func.count(Material.id)).where(unorganized))
    materials = (
        await db.execute(
            select(Material)
            .where(unorganized)
            .options(selectinload(Material.tags), selectinload(Material.equipments))
            .order_by(Material.created_at.desc(), Material.id)
            .limit(limit)
        )
    ).scalars().all()

    return UnorganizedMaterials(
        materials=[
            UnorganizedMaterial.model_validate(m).model_copy(update={"issues": material_issues(m)})
            for m in materials
        ],
        total_count=total_count or 0,
        limit=limit,
    )
