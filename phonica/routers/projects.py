"""Projects group materials. Attaching or detaching never touches the material itself."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy import Select, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from phonica.db.session import get_db
from phonica.errors import (
    ConflictError,
    InternalError,
    NotFoundError,
    PhonicaError,
    ValidationError,
    conflict_field,
)
from phonica.materials.bulk import batch_update_project_materials
from phonica.materials.pipeline import MATERIAL_LOAD_OPTIONS
from phonica.models.material import Material, project_materials
from phonica.models.project import Project
from phonica.schemas.errors import ErrorResponse
from phonica.schemas.material import (
    MaterialDetail,
    MaterialSummary,
    MessageResponse,
    ProjectSummary,
)
from phonica.schemas.pagination import (
    PaginatedResponse,
    PaginationMeta,
    SortOrder,
    clamp_page,
    escape_like,
)
from phonica.schemas.project import (
    BatchOperations,
    ProjectBatchUpdateResponse,
    ProjectCreate,
    ProjectDetail,
    ProjectMaterialAttach,
    ProjectMaterialsBatchUpdate,
    ProjectResponse,
    ProjectSortField,
    ProjectUpdate,
)
from phonica.slugs import generate_unique_slug

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/projects", tags=["projects"])

PROJECT_NAME_EXISTS = "A project with this name already exists."

SORT_COLUMNS = {
    "name": Project.name,
    "createdAt": Project.created_at,
    "updatedAt": Project.updated_at,
}

_materials_count = func.count(project_materials.c.material_id).label("materials_count")

NOT_FOUND = {404: {"description": "Project not found", "model": ErrorResponse}}


def _with_counts(query: Select) -> Select:
    return query.add_columns(_materials_count).outerjoin(
        project_materials, project_materials.c.project_id == Project.id
    ).group_by(Project.id)


def _to_response(project: Project, materials_count: int) -> ProjectResponse:
    return ProjectResponse(
        id=project.id,
        slug=project.slug,
        name=project.name,
        description=project.description,
        materials_count=materials_count,
        created_at=project.created_at,
        updated_at=project.updated_at,
    )


def _to_detail(project: Project) -> ProjectDetail:
    materials = sorted(project.materials, key=lambda m: m.recorded_at, reverse=True)
    return ProjectDetail(
        **_to_response(project, len(materials)).model_dump(),
        materials=[MaterialSummary.model_validate(m) for m in materials],
    )


async def _get_project(db: AsyncSession, slug: str, *, with_materials: bool = False) -> Project:
    query = select(Project).where(Project.slug == slug)
    if with_materials:
        query = query.options(selectinload(Project.materials))
    project = (await db.execute(query)).scalar_one_or_none()
    if project is None:
        raise NotFoundError("Project not found")
    return project


def _translate(exc: IntegrityError, action: str) -> PhonicaError:
    field = conflict_field(exc, ("name", "slug"))
    if field == "name":
        return ConflictError(PROJECT_NAME_EXISTS, code="DUPLICATE_NAME", field="name")
    if field == "slug":
        return ConflictError(
            "Slug generation failed. Please try again.", code="SLUG_CONFLICT", field="slug"
        )
    logger.error("Unexpected integrity error on project %s: %s", action, exc.orig)
    return InternalError(f"Failed to {action} project")


# ---------------------------------------------------------------------------
# Projects
# ---------------------------------------------------------------------------


@router.get("", response_model=PaginatedResponse[ProjectResponse])
async def list_projects(
    page: int = Query(default=1),
    limit: int = Query(default=10),
    sortBy: ProjectSortField = Query(default="createdAt"),  # noqa: N803
    sortOrder: SortOrder = Query(default="desc"),  # noqa: N803
    name: str | None = Query(default=None),
    db: AsyncSession = Depends(get_db),  # noqa: B008
) -> PaginatedResponse[ProjectResponse]:
    page, limit = clamp_page(page, limit)

    base_query = select(Project)
    if name:
        base_query = base_query.where(Project.name.ilike(f"%{escape_like(name)}%", escape="\\"))

    total_items: int = (
        await db.execute(select(func.count()).select_from(base_query.subquery()))
    ).scalar_one()

    column = SORT_COLUMNS[sortBy]
    order = column.asc() if sortOrder == "asc" else column.desc()
    rows = (
        await db.execute(
            _with_counts(base_query)
            .order_by(order, Project.id)
            .offset((page - 1) * limit)
            .limit(limit)
        )
    ).all()

    return PaginatedResponse[ProjectResponse](
        data=[_to_response(project, count) for project, count in rows],
        pagination=PaginationMeta.build(page, limit, total_items),
    )


@router.post(
    "",
    response_model=ProjectResponse,
    status_code=201,
    responses={409: {"description": "Name already exists", "model": ErrorResponse}},
)
async def create_project(
    body: ProjectCreate,
    db: AsyncSession = Depends(get_db),  # noqa: B008
) -> ProjectResponse:
    project = Project(
        name=body.name,
        slug=await generate_unique_slug(db, body.name, "project"),
        description=body.description,
    )
    db.add(project)
    try:
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise _translate(exc, "create") from exc

    logger.info("Created project %r (slug=%s)", project.name, project.slug)
    return _to_response(project, 0)


@router.get("/{slug}", response_model=ProjectDetail, responses=NOT_FOUND)
async def get_project(
    slug: str,
    db: AsyncSession = Depends(get_db),  # noqa: B008
) -> ProjectDetail:
    return _to_detail(await _get_project(db, slug, with_materials=True))


@router.put(
    "/{slug}",
    response_model=ProjectDetail,
    responses={**NOT_FOUND, 409: {"description": "Name already exists", "model": ErrorResponse}},
)
async def update_project(
    slug: str,
    body: ProjectUpdate,
    db: AsyncSession = Depends(get_db),  # noqa: B008
) -> ProjectDetail:
    """Update name and/or description; a new name gets a new slug."""
    project = await _get_project(db, slug, with_materials=True)

    if body.name is not None and body.name != project.name:
        project.slug = await generate_unique_slug(db, body.name, "project", exclude_id=project.id)
        project.name = body.name
    if "description" in body.model_fields_set:
        project.description = body.description
    try:
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise _translate(exc, "update") from exc

    await db.refresh(project, attribute_names=["updated_at"])
    return _to_detail(project)


@router.delete(
    "/{slug}",
    response_model=MessageResponse,
    responses={
        **NOT_FOUND,
        409: {"description": "Project still has materials", "model": ErrorResponse},
    },
)
async def delete_project(
    slug: str,
    db: AsyncSession = Depends(get_db),  # noqa: B008
) -> MessageResponse:
    project = await _get_project(db, slug, with_materials=True)
    count = len(project.materials)
    if count > 0:
        raise ConflictError(
            f"Cannot delete project: {count} material(s) are still in this project",
            code="PROJECT_IN_USE",
            material_count=count,
        )

    await db.delete(project)
    await db.commit()
    logger.info("Deleted project %s", slug)
    return MessageResponse(message="Project deleted successfully")


# ---------------------------------------------------------------------------
# Project materials
# ---------------------------------------------------------------------------


@router.get(
    "/{slug}/materials",
    response_model=PaginatedResponse[MaterialDetail],
    responses=NOT_FOUND,
)
async def list_project_materials(
    slug: str,
    page: int = Query(default=1),
    limit: int = Query(default=10),
    db: AsyncSession = Depends(get_db),  # noqa: B008
) -> PaginatedResponse[MaterialDetail]:
    page, limit = clamp_page(page, limit)
    project = await _get_project(db, slug)

    base_query = select(Material).where(Material.projects.any(Project.id == project.id))
    total_items: int = (
        await db.execute(select(func.count()).select_from(base_query.subquery()))
    ).scalar_one()
    materials = (
        await db.execute(
            base_query.options(*MATERIAL_LOAD_OPTIONS)
            .order_by(Material.recorded_at.desc(), Material.id)
            .offset((page - 1) * limit)
            .limit(limit)
        )
    ).scalars().all()

    return PaginatedResponse[MaterialDetail](
        data=[MaterialDetail.model_validate(m) for m in materials],
        pagination=PaginationMeta.build(page, limit, total_items),
    )


@router.post(
    "/{slug}/materials",
    response_model=ProjectDetail,
    status_code=201,
    responses={
        404: {"description": "Project or material not found", "model": ErrorResponse},
        409: {"description": "Material already in project", "model": ErrorResponse},
    },
)
async def attach_material(
    slug: str,
    body: ProjectMaterialAttach,
    db: AsyncSession = Depends(get_db),  # noqa: B008
) -> ProjectDetail:
    project = await _get_project(db, slug, with_materials=True)
    material = await db.get(Material, body.material_id)
    if material is None:
        raise NotFoundError("Material not found")
    if any(m.id == material.id for m in project.materials):
        raise ConflictError(
            "Material is already associated with this project", code="ALREADY_ATTACHED"
        )

    project.materials.append(material)
    await db.commit()
    logger.info("Attached material %s to project %s", material.slug, slug)
    return _to_detail(project)


@router.delete(
    "/{slug}/materials/{material_id}",
    response_model=ProjectDetail,
    responses={404: {"description": "Project, material or link not found", "model": ErrorResponse}},
)
async def detach_material(
    slug: str,
    material_id: str,
    db: AsyncSession = Depends(get_db),  # noqa: B008
) -> ProjectDetail:
    project = await _get_project(db, slug, with_materials=True)
    material = next((m for m in project.materials if m.id == material_id), None)
    if material is None:
        if await db.get(Material, material_id) is None:
            raise NotFoundError("Material not found")
        raise NotFoundError(
            "Material is not associated with this project", code="NOT_ATTACHED"
        )

    project.materials.remove(material)
    await db.commit()
    logger.info("Detached material %s from project %s", material.slug, slug)
    return _to_detail(project)


@router.post(
    "/{slug}/materials/batch-update",
    response_model=ProjectBatchUpdateResponse,
    responses={
        400: {"description": "Nothing to do, or material not in project", "model": ErrorResponse},
        404: {"description": "Project or material not found", "model": ErrorResponse},
    },
)
async def batch_update_materials(
    slug: str,
    body: ProjectMaterialsBatchUpdate,
    db: AsyncSession = Depends(get_db),  # noqa: B008
) -> ProjectBatchUpdateResponse:
    """Add and remove several materials at once; removals apply after additions."""
    if not body.add and not body.remove:
        raise ValidationError("No operations to perform")

    project = await _get_project(db, slug, with_materials=True)
    added, removed = await batch_update_project_materials(db, project, body.add, body.remove)

    return ProjectBatchUpdateResponse(
        project=ProjectSummary(id=project.id, name=project.name, slug=project.slug),
        operations=BatchOperations(added=added, removed=removed),
        total_materials=len(project.materials),
    )
