"""Resolve tag names and equipment ids to rows before a material is written.

Tags are connect-or-create: unknown names become new Tag rows. Equipment
is connect-only: a single unknown id rejects the whole request.
"""

from __future__ import annotations

import logging

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from phonica.errors import ValidationError
from phonica.models.equipment import Equipment
from phonica.models.tag import Tag
from phonica.slugs import generate_unique_slug

logger = logging.getLogger(__name__)


async def resolve_equipment(session: AsyncSession, equipment_ids: list[str]) -> list[Equipment]:
    """Load every requested Equipment row, in request order.

    Raises:
        ValidationError: Listing exactly the ids with no matching row.
    """
    if not equipment_ids:
        return []

    result = await session.execute(select(Equipment).where(Equipment.id.in_(equipment_ids)))
    found = {equipment.id: equipment for equipment in result.scalars().all()}

    invalid = [equipment_id for equipment_id in equipment_ids if equipment_id not in found]
    if invalid:
        logger.warning("Rejected unknown equipment ids: %s", invalid)
        raise ValidationError(
            f"Invalid equipment IDs: {', '.join(invalid)}",
            code="INVALID_EQUIPMENT",
            details={"invalidIds": invalid},
        )

    return [found[equipment_id] for equipment_id in equipment_ids]


async def resolve_tags(session: AsyncSession, names: list[str]) -> list[Tag]:
    """Return Tag rows for *names*, creating the ones that do not exist yet.

    New tags are added to the session and flushed so that their slugs count
    for later collision checks; they commit (or roll back) together with
    the material that references them.
    """
    cleaned: dict[str, str] = {}
    for name in names:
        name = name.strip()
        if name:
            cleaned.setdefault(name.lower(), name)
    if not cleaned:
        return []

    # Names are unique regardless of case; the first spelling wins for new tags
    result = await session.execute(select(Tag).where(func.lower(Tag.name).in_(list(cleaned))))
    existing = {tag.name.lower(): tag for tag in result.scalars().all()}

    tags: list[Tag] = []
    for key, name in cleaned.items():
        tag = existing.get(key)
        if tag is None:
            tag = Tag(name=name, slug=await generate_unique_slug(session, name, "tag"))
            session.add(tag)
            await session.flush()
            logger.info("Created tag %r (slug=%s)", name, tag.slug)
        tags.append(tag)
    return tags
