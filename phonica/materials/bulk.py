"""Bulk operations over a set of material ids.

Tag assignment, deletion, project membership and zip download all check
every referenced id first and reject the whole request when any is
unknown, so a partial batch is never applied.
"""

from __future__ import annotations

import asyncio
import io
import logging
import zipfile
from dataclasses import dataclass
from pathlib import Path

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from phonica.audio.storage import AudioMetadataService
from phonica.errors import NotFoundError, ValidationError
from phonica.models.material import Material, material_tags
from phonica.models.project import Project
from phonica.models.tag import Tag
from phonica.schemas.material import (
    BulkDeleteResponse,
    BulkProjectsResponse,
    BulkTagsResponse,
    ProjectSummary,
    TagCount,
)

logger = logging.getLogger(__name__)


def _missing(requested: list[str], found: set[str]) -> list[str]:
    return [item for item in dict.fromkeys(requested) if item not in found]


async def _load_materials(
    session: AsyncSession, material_ids: list[str], *, with_tags: bool = False
) -> list[Material]:
    query = select(Material).where(Material.id.in_(material_ids))
    if with_tags:
        query = query.options(selectinload(Material.tags))
    result = await session.execute(query)
    materials = list(result.scalars().all())

    missing = _missing(material_ids, {material.id for material in materials})
    if missing:
        raise NotFoundError(
            f"Materials not found: {', '.join(missing)}",
            details={"missingIds": missing},
        )
    return materials


async def bulk_assign_tags(
    session: AsyncSession,
    material_ids: list[str],
    tag_ids: list[str],
    mode: str = "add",
) -> BulkTagsResponse:
    """Add tags to, or replace the tags of, every listed material.

    Raises:
        NotFoundError: If any material or tag id is unknown.
    """
    materials = await _load_materials(session, material_ids, with_tags=True)

    result = await session.execute(select(Tag).where(Tag.id.in_(tag_ids)))
    tags_by_id = {tag.id: tag for tag in result.scalars().all()}
    missing = _missing(tag_ids, set(tags_by_id))
    if missing:
        raise NotFoundError(
            f"Tags not found: {', '.join(missing)}",
            details={"missingIds": missing},
        )
    tags = [tags_by_id[tag_id] for tag_id in dict.fromkeys(tag_ids)]

    for material in materials:
        if mode == "replace":
            material.tags = list(tags)
        else:
            current = {tag.id for tag in material.tags}
            material.tags.extend(tag for tag in tags if tag.id not in current)
    await session.commit()

    counts: list[TagCount] = []
    for tag in tags:
        count = await session.scalar(
            select(func.count()).select_from(material_tags).where(material_tags.c.tag_id == tag.id)
        )
        counts.append(TagCount(tag_id=tag.id, tag_name=tag.name, count=count or 0))

    logger.info("Bulk %s of %d tag(s) on %d material(s)", mode, len(tags), len(materials))
    return BulkTagsResponse(affected_materials=len(materials), mode=mode, tags=counts)


async def bulk_delete_materials(
    session: AsyncSession,
    audio: AudioMetadataService,
    material_ids: list[str],
) -> BulkDeleteResponse:
    """Delete every listed material, then remove their audio files.

    Files are removed only after the rows are committed; a file that is
    already gone is counted in ``missing_files`` rather than failing.

    Raises:
        NotFoundError: If any material id is unknown.
    """
    materials = await _load_materials(session, material_ids)
    file_paths = [material.file_path for material in materials]

    for material in materials:
        await session.delete(material)
    await session.commit()

    missing_files = 0
    for file_path in file_paths:
        try:
            if not await audio.delete_asset(file_path):
                missing_files += 1
        except OSError as exc:
            missing_files += 1
            logger.error("Failed to delete asset %s: %s", file_path, exc)

    logger.info("Bulk deleted %d material(s)", len(materials))
    return BulkDeleteResponse(deleted_count=len(materials), missing_files=missing_files)


async def bulk_add_to_project(
    session: AsyncSession,
    material_ids: list[str],
    project_id: str,
) -> BulkProjectsResponse:
    """Link every listed material to one project, skipping existing links.

    Raises:
        NotFoundError: If any material id or the project is unknown.
    """
    materials = await _load_materials(session, material_ids)

    result = await session.execute(
        select(Project).where(Project.id == project_id).options(selectinload(Project.materials))
    )
    project = result.scalar_one_or_none()
    if project is None:
        raise NotFoundError("Project not found")

    current = {material.id for material in project.materials}
    new_materials = [material for material in materials if material.id not in current]
    already = len(materials) - len(new_materials)

    project.materials.extend(new_materials)
    await session.commit()

    logger.info(
        "Added %d material(s) to project %s (%d already linked)",
        len(new_materials),
        project.slug,
        already,
    )
    return BulkProjectsResponse(
        project=ProjectSummary(id=project.id, name=project.name, slug=project.slug),
        added_count=len(new_materials),
        already_in_project=already,
        total_materials=len(project.materials),
        message=None if new_materials else "All selected materials are already in this project",
    )


async def batch_update_project_materials(
    session: AsyncSession,
    project: Project,
    add_ids: list[str],
    remove_ids: list[str],
) -> tuple[int, int]:
    """Link and unlink materials of a project in one commit.

    ``project.materials`` must be loaded. Ids to remove are checked against
    the current membership before anything is added. Returns the number of
    links created and removed.

    Raises:
        NotFoundError: If a material to add is unknown.
        ValidationError: If a material to remove is not in the project.
    """
    to_add = await _load_materials(session, add_ids) if add_ids else []

    current = {material.id: material for material in project.materials}
    not_linked = _missing(remove_ids, set(current))
    if not_linked:
        raise ValidationError(
            f"Materials not in project: {', '.join(not_linked)}",
            code="NOT_ATTACHED",
            details={"missingIds": not_linked},
        )

    added = [material for material in to_add if material.id not in current]
    project.materials.extend(added)
    removed = list(dict.fromkeys(remove_ids))
    for material_id in removed:
        material = next(m for m in project.materials if m.id == material_id)
        project.materials.remove(material)
    await session.commit()

    logger.info("Batch update of project %s: +%d -%d", project.slug, len(added), len(removed))
    return len(added), len(removed)


@dataclass
class MaterialArchive:
    """A zip of material audio files plus the materials whose file was gone."""

    content: bytes
    file_count: int
    missing: list[str]


def _write_zip(entries: list[tuple[Path, str]]) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        for path, arcname in entries:
            archive.write(path, arcname)
    return buffer.getvalue()


async def build_materials_archive(
    session: AsyncSession,
    audio: AudioMetadataService,
    material_ids: list[str],
) -> MaterialArchive:
    """Zip the audio files of the listed materials, named ``<slug><ext>``.

    Materials whose file is missing on disk are skipped and reported.

    Raises:
        NotFoundError: If any material id is unknown, or no file exists at all.
    """
    loaded = await _load_materials(session, material_ids)
    materials = {material.id: material for material in loaded}

    entries: list[tuple[Path, str]] = []
    missing: list[str] = []
    for material_id in dict.fromkeys(material_ids):
        material = materials[material_id]
        path = audio.resolve_public_path(material.file_path)
        if path is None or not path.is_file():
            logger.warning(
                "Skipping %s in archive: file missing (%s)", material.slug, material.file_path
            )
            missing.append(material.slug)
            continue
        entries.append((path, f"{material.slug}{Path(material.file_path).suffix.lower()}"))

    if not entries:
        raise NotFoundError("No audio files available for download", code="FILE_NOT_FOUND")

    content = await asyncio.to_thread(_write_zip, entries)
    logger.info("Built archive of %d file(s), %d missing", len(entries), len(missing))
    return MaterialArchive(content=content, file_count=len(entries), missing=missing)
