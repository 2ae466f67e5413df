"""Tag master data. Tags are also created implicitly by material ingestion."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy import Select, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from phonica.db.session import get_db
from phonica.errors import ConflictError, InternalError, NotFoundError, conflict_field
from phonica.models.material import material_tags
from phonica.models.tag import Tag
from phonica.schemas.errors import ErrorResponse
from phonica.schemas.material import MessageResponse
from phonica.schemas.pagination import (
    PaginatedResponse,
    PaginationMeta,
    SortOrder,
    clamp_page,
    escape_like,
)
from phonica.schemas.tag import TagCreate, TagResponse, TagSortField, TagUpdate
from phonica.slugs import generate_unique_slug

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/master/tags", tags=["tags"])

TAG_NAME_EXISTS = "A tag with this name already exists."

SORT_COLUMNS = {
    "name": Tag.name,
    "createdAt": Tag.created_at,
    "updatedAt": Tag.updated_at,
}

_materials_count = func.count(material_tags.c.material_id).label("materials_count")


def _with_counts(query: Select) -> Select:
    return query.add_columns(_materials_count).outerjoin(
        material_tags, material_tags.c.tag_id == Tag.id
    ).group_by(Tag.id)


def _to_response(tag: Tag, materials_count: int) -> TagResponse:
    return TagResponse(
        id=tag.id,
        name=tag.name,
        slug=tag.slug,
        materials_count=materials_count,
        created_at=tag.created_at,
        updated_at=tag.updated_at,
    )


async def _get_tag_with_count(db: AsyncSession, tag_id: str) -> tuple[Tag, int]:
    row = (await db.execute(_with_counts(select(Tag).where(Tag.id == tag_id)))).first()
    if row is None:
        raise NotFoundError(f"Tag with id {tag_id} not found")
    return row[0], row[1]


async def _ensure_name_free(db: AsyncSession, name: str, exclude_id: str | None = None) -> None:
    """Tag names are unique regardless of case."""
    query = select(Tag.id).where(func.lower(Tag.name) == name.lower())
    if exclude_id is not None:
        query = query.where(Tag.id != exclude_id)
    if (await db.execute(query.limit(1))).scalar_one_or_none() is not None:
        raise ConflictError(TAG_NAME_EXISTS, code="DUPLICATE_NAME", field="name")


def _translate(exc: IntegrityError, action: str) -> Exception:
    field = conflict_field(exc, ("name", "slug"))
    if field == "name":
        return ConflictError(TAG_NAME_EXISTS, code="DUPLICATE_NAME", field="name")
    if field == "slug":
        return ConflictError(
            "Slug generation failed. Please try again.", code="SLUG_CONFLICT", field="slug"
        )
    logger.error("Unexpected integrity error on tag %s: %s", action, exc.orig)
    return InternalError(f"Failed to {action} tag")


@router.get("", response_model=PaginatedResponse[TagResponse])
async def list_tags(
    page: int = Query(default=1),
    limit: int = Query(default=20),
    sortBy: TagSortField = Query(default="name"),  # noqa: N803
    sortOrder: SortOrder = Query(default="asc"),  # noqa: N803
    name: str | None = Query(default=None),
    db: AsyncSession = Depends(get_db),  # noqa: B008
) -> PaginatedResponse[TagResponse]:
    """Return a page of tags, each with the number of materials using it."""
    page, limit = clamp_page(page, limit)

    base_query = select(Tag)
    if name:
        base_query = base_query.where(Tag.name.ilike(f"%{escape_like(name)}%", escape="\\"))

    total_items: int = (
        await db.execute(select(func.count()).select_from(base_query.subquery()))
    ).scalar_one()

    column = SORT_COLUMNS[sortBy]
    order = column.asc() if sortOrder == "asc" else column.desc()
    rows = (
        await db.execute(
            _with_counts(base_query).order_by(order, Tag.id).offset((page - 1) * limit).limit(limit)
        )
    ).all()

    return PaginatedResponse[TagResponse](
        data=[_to_response(tag, count) for tag, count in rows],
        pagination=PaginationMeta.build(page, limit, total_items),
    )


@router.post(
    "",
    response_model=TagResponse,
    status_code=201,
    responses={409: {"description": "Name already exists", "model": ErrorResponse}},
)
async def create_tag(
    body: TagCreate,
    db: AsyncSession = Depends(get_db),  # noqa: B008
) -> TagResponse:
    await _ensure_name_free(db, body.name)
    tag = Tag(name=body.name, slug=await generate_unique_slug(db, body.name, "tag"))
    db.add(tag)
    try:
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise _translate(exc, "create") from exc

    logger.info("Created tag %r (slug=%s)", tag.name, tag.slug)
    return _to_response(tag, 0)


@router.get(
    "/{tag_id}",
    response_model=TagResponse,
    responses={404: {"description": "Tag not found", "model": ErrorResponse}},
)
async def get_tag(
    tag_id: str,
    db: AsyncSession = Depends(get_db),  # noqa: B008
) -> TagResponse:
    tag, count = await _get_tag_with_count(db, tag_id)
    return _to_response(tag, count)


@router.put(
    "/{tag_id}",
    response_model=TagResponse,
    responses={
        404: {"description": "Tag not found", "model": ErrorResponse},
        409: {"description": "Name already exists", "model": ErrorResponse},
    },
)
async def update_tag(
    tag_id: str,
    body: TagUpdate,
    db: AsyncSession = Depends(get_db),  # noqa: B008
) -> TagResponse:
    """Rename a tag. The slug follows the new name."""
    tag, count = await _get_tag_with_count(db, tag_id)
    await _ensure_name_free(db, body.name, exclude_id=tag.id)

    if body.name != tag.name:
        tag.slug = await generate_unique_slug(db, body.name, "tag", exclude_id=tag.id)
        tag.name = body.name
    try:
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise _translate(exc, "update") from exc

    await db.refresh(tag)
    return _to_response(tag, count)


@router.delete(
    "/{tag_id}",
    response_model=MessageResponse,
    responses={
        404: {"description": "Tag not found", "model": ErrorResponse},
        409: {"description": "Tag is still used by materials", "model": ErrorResponse},
    },
)
async def delete_tag(
    tag_id: str,
    db: AsyncSession = Depends(get_db),  # noqa: B008
) -> MessageResponse:
    tag, count = await _get_tag_with_count(db, tag_id)
    if count > 0:
        raise ConflictError(
            f"Cannot delete tag: {count} material(s) are still using this tag",
            code="TAG_IN_USE",
            material_count=count,
        )

    await db.delete(tag)
    await db.commit()
    logger.info("Deleted tag %r", tag.name)
    return MessageResponse(message="Tag deleted successfully")
