"""Equipment master data.

Materials reference equipment by id. Deleting equipment detaches it from
every material that used it; the materials themselves are kept.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from phonica.db.session import get_db
from phonica.errors import (
    ConflictError,
    InternalError,
    NotFoundError,
    PhonicaError,
    constraint_target_includes,
)
from phonica.models.equipment import Equipment
from phonica.schemas.equipment import EquipmentResponse, EquipmentSortField, EquipmentWrite
from phonica.schemas.errors import ErrorResponse
from phonica.schemas.material import MessageResponse
from phonica.schemas.pagination import (
    PaginatedResponse,
    PaginationMeta,
    SortOrder,
    clamp_page,
    escape_like,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/master/equipment", tags=["equipment"])

SORT_COLUMNS = {
    "name": Equipment.name,
    "type": Equipment.type,
    "manufacturer": Equipment.manufacturer,
    "createdAt": Equipment.created_at,
    "updatedAt": Equipment.updated_at,
}


async def _get_equipment(db: AsyncSession, equipment_id: str) -> Equipment:
    equipment = await db.get(Equipment, equipment_id)
    if equipment is None:
        raise NotFoundError(f"Equipment with id {equipment_id} not found")
    return equipment


def _translate(exc: IntegrityError, action: str) -> PhonicaError:
    if constraint_target_includes(exc, "name"):
        return ConflictError("Name already exists", code="DUPLICATE_NAME", field="name")
    logger.error("Unexpected integrity error on equipment %s: %s", action, exc.orig)
    return InternalError(f"Failed to {action} equipment")


@router.get("", response_model=PaginatedResponse[EquipmentResponse])
async def list_equipment(
    page: int = Query(default=1),
    limit: int = Query(default=20),
    sortBy: EquipmentSortField = Query(default="name"),  # noqa: N803
    sortOrder: SortOrder = Query(default="asc"),  # noqa: N803
    name: str | None = Query(default=None),
    db: AsyncSession = Depends(get_db),  # noqa: B008
) -> PaginatedResponse[EquipmentResponse]:
    page, limit = clamp_page(page, limit)

    base_query = select(Equipment)
    if name:
        base_query = base_query.where(
            Equipment.name.ilike(f"%{escape_like(name)}%", escape="\\")
        )

    total_items: int = (
        await db.execute(select(func.count()).select_from(base_query.subquery()))
    ).scalar_one()

    column = SORT_COLUMNS[sortBy]
    order = column.asc() if sortOrder == "asc" else column.desc()
    items = (
        await db.execute(
            base_query.order_by(order, Equipment.id).offset((page - 1) * limit).limit(limit)
        )
    ).scalars().all()

    return PaginatedResponse[EquipmentResponse](
        data=[EquipmentResponse.model_validate(e) for e in items],
        pagination=PaginationMeta.build(page, limit, total_items),
    )


@router.post(
    "",
    response_model=EquipmentResponse,
    status_code=201,
    responses={409: {"description": "Name already exists", "model": ErrorResponse}},
)
async def create_equipment(
    body: EquipmentWrite,
    db: AsyncSession = Depends(get_db),  # noqa: B008
) -> EquipmentResponse:
    equipment = Equipment(**body.model_dump())
    db.add(equipment)
    try:
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise _translate(exc, "create") from exc

    logger.info("Created equipment %r (%s)", equipment.name, equipment.id)
    return EquipmentResponse.model_validate(equipment)


@router.get(
    "/{equipment_id}",
    response_model=EquipmentResponse,
    responses={404: {"description": "Equipment not found", "model": ErrorResponse}},
)
async def get_equipment(
    equipment_id: str,
    db: AsyncSession = Depends(get_db),  # noqa: B008
) -> EquipmentResponse:
    return EquipmentResponse.model_validate(await _get_equipment(db, equipment_id))


@router.put(
    "/{equipment_id}",
    response_model=EquipmentResponse,
    responses={
        404: {"description": "Equipment not found", "model": ErrorResponse},
        409: {"description": "Name already exists", "model": ErrorResponse},
    },
)
async def update_equipment(
    equipment_id: str,
    body: EquipmentWrite,
    db: AsyncSession = Depends(get_db),  # noqa: B008
) -> EquipmentResponse:
    equipment = await _get_equipment(db, equipment_id)
    for key, value in body.model_dump().items():
        setattr(equipment, key, value)
    try:
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise _translate(exc, "update") from exc

    await db.refresh(equipment)
    return EquipmentResponse.model_validate(equipment)


@router.delete(
    "/{equipment_id}",
    response_model=MessageResponse,
    responses={404: {"description": "Equipment not found", "model": ErrorResponse}},
)
async def delete_equipment(
    equipment_id: str,
    db: AsyncSession = Depends(get_db),  # noqa: B008
) -> MessageResponse:
    equipment = await _get_equipment(db, equipment_id)
    await db.delete(equipment)
    await db.commit()
    logger.info("Deleted equipment %r", equipment.name)
    return MessageResponse(message="Equipment deleted successfully")
