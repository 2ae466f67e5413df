"""Material ingestion and update pipelines.

Create:
1. Check required fields (title, recordedAt, audio source). No I/O.
2. Store audio: direct uploads are written to the permanent store and
   analyzed; temp uploads are verified, analyzed unless the caller sent
   metadata, and moved into the permanent store.
3. Generate a unique slug from the title.
4. Resolve equipment ids (all-or-nothing) and tag names (connect-or-create).
5. Insert the material with its relations and reload it for the response.
6. Translate unique-constraint violations into conflicts.

Update runs the same steps against an existing material. Tag and equipment
sets are replaced, never merged. Audio is replaced only when a new file or
temp id is supplied.

Failures are returned in a :class:`MaterialResult` rather than raised so the
routers map them to responses in one place. If anything fails after a new
audio file was persisted, that file is removed again.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from phonica.audio.metadata import UNKNOWN_FORMAT, AudioMetadata
from phonica.audio.storage import AudioMetadataService
from phonica.errors import (
    AnalysisError,
    ConflictError,
    InternalError,
    NotFoundError,
    PhonicaError,
    ValidationError,
    conflict_field,
)
from phonica.materials.relations import resolve_equipment, resolve_tags
from phonica.models.material import Material
from phonica.schemas.material import MaterialInput
from phonica.slugs import generate_unique_slug

logger = logging.getLogger(__name__)

MATERIAL_TITLE_EXISTS = "A material with this title already exists."
SLUG_RETRY = "Slug generation failed. Please try again."

MATERIAL_LOAD_OPTIONS = (
    selectinload(Material.tags),
    selectinload(Material.equipments),
    selectinload(Material.projects),
)


@dataclass
class StoredAudio:
    """Audio persisted for a material during this request."""

    file_path: str
    metadata: AudioMetadata | None


@dataclass
class MaterialResult:
    """Outcome of a create, update or delete call."""

    status: str = "pending"  # "success", "error"
    material: Material | None = None
    error: PhonicaError | None = None

    @property
    def ok(self) -> bool:
        return self.status == "success"

    @classmethod
    def success(cls, material: Material | None) -> MaterialResult:
        return cls(status="success", material=material)

    @classmethod
    def failure(cls, error: PhonicaError) -> MaterialResult:
        return cls(status="error", error=error)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def get_material(session: AsyncSession, slug: str) -> Material | None:
    """Load a material by slug with tags, equipments and projects."""
    result = await session.execute(
        select(Material).where(Material.slug == slug).options(*MATERIAL_LOAD_OPTIONS)
    )
    return result.scalar_one_or_none()


async def _reload(session: AsyncSession, material_id: str) -> Material:
    result = await session.execute(
        select(Material)
        .where(Material.id == material_id)
        .options(*MATERIAL_LOAD_OPTIONS)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one()


def _missing_fields_error(missing: list[str]) -> ValidationError:
    return ValidationError(
        f"Missing required fields: {', '.join(missing)}",
        code="MISSING_FIELDS",
        details={"missingFields": missing},
    )


def _supplied_metadata(data: MaterialInput) -> AudioMetadata:
    return AudioMetadata(
        file_format=data.file_format,
        sample_rate=data.sample_rate,
        bit_depth=data.bit_depth,
        duration_seconds=data.duration_seconds,
        channels=data.channels,
    )


def _fill_gaps(analyzed: AudioMetadata, supplied: AudioMetadata) -> AudioMetadata:
    """Use caller values only where the analysis found nothing."""
    return AudioMetadata(
        file_format=(
            supplied.file_format
            if analyzed.file_format == UNKNOWN_FORMAT
            else analyzed.file_format
        ),
        sample_rate=analyzed.sample_rate or supplied.sample_rate,
        bit_depth=analyzed.bit_depth or supplied.bit_depth,
        duration_seconds=(
            analyzed.duration_seconds
            if analyzed.duration_seconds is not None
            else supplied.duration_seconds
        ),
        channels=analyzed.channels or supplied.channels,
    )


async def store_audio(audio: AudioMetadataService, data: MaterialInput) -> StoredAudio:
    """Persist the audio source carried by *data*.

    Raises:
        NotFoundError: The temp file no longer exists.
        AnalysisError: The file is not readable audio.
        PersistenceError: Writing or moving the file failed.
    """
    if data.file is not None:
        file_path = await audio.save_upload(data.file.file_name, data.file.content)
        stored_path = audio.resolve_public_path(file_path)
        try:
            if stored_path is None:
                raise AnalysisError("Failed to extract metadata: file not stored")
            metadata = await audio.analyze_file(stored_path)
        except AnalysisError:
            await _discard(audio, file_path)
            raise
        if data.has_supplied_metadata:
            metadata = _fill_gaps(metadata, _supplied_metadata(data))
        return StoredAudio(file_path=file_path, metadata=metadata)

    temp_file_id = data.temp_file_id or ""
    if not await audio.verify_temp_file(temp_file_id):
        logger.warning("Temp file %s not found", temp_file_id)
        raise NotFoundError("Temporary file not found", code="TEMP_FILE_NOT_FOUND")

    if data.has_supplied_metadata:
        metadata = _supplied_metadata(data)
    else:
        metadata = await audio.analyze_audio(temp_file_id)

    final_name = audio.build_permanent_name(data.file_name)
    file_path = await audio.persist_temp_file(temp_file_id, final_name)
    return StoredAudio(file_path=file_path, metadata=metadata)


async def _discard(audio: AudioMetadataService, file_path: str) -> None:
    """Remove a file persisted during a request that then failed."""
    try:
        await audio.delete_asset(file_path)
    except OSError as exc:
        logger.error("Failed to remove orphaned asset %s: %s", file_path, exc)


def _apply_fields(material: Material, data: MaterialInput) -> None:
    material.title = data.title or material.title
    material.recorded_at = data.recorded_at or material.recorded_at
    material.memo = data.memo
    material.latitude = data.latitude
    material.longitude = data.longitude
    material.location_name = data.location_name
    material.rating = data.rating


def _apply_audio(material: Material, stored: StoredAudio) -> None:
    meta = stored.metadata
    material.file_path = stored.file_path
    known_format = meta is not None and meta.file_format != UNKNOWN_FORMAT
    material.file_format = meta.file_format if known_format else None
    material.sample_rate = meta.sample_rate if meta else None
    material.bit_depth = meta.bit_depth if meta else None
    material.duration_seconds = meta.duration_seconds if meta else None
    material.channels = meta.channels if meta else None


def _translate_integrity_error(exc: IntegrityError, action: str) -> PhonicaError:
    field = conflict_field(exc, ("title", "slug"))
    if field == "title":
        return ConflictError(MATERIAL_TITLE_EXISTS, code="DUPLICATE_TITLE", field="title")
    if field == "slug":
        return ConflictError(SLUG_RETRY, code="SLUG_CONFLICT", field="slug")
    return InternalError(f"Failed to {action} material")


# ---------------------------------------------------------------------------
# Pipelines
# ---------------------------------------------------------------------------


async def create_material(
    session: AsyncSession,
    audio: AudioMetadataService,
    data: MaterialInput,
) -> MaterialResult:
    """Create a material from a direct upload or a persisted temp upload."""
    missing = data.missing_required_fields(require_audio=True)
    if missing:
        return MaterialResult.failure(_missing_fields_error(missing))

    try:
        stored = await store_audio(audio, data)
    except PhonicaError as exc:
        return MaterialResult.failure(exc)

    try:
        slug = await generate_unique_slug(session, data.title or "", "material")
        equipments = await resolve_equipment(session, data.equipment_ids)
        tags = await resolve_tags(session, data.tags)

        material = Material(slug=slug, tags=tags, equipments=equipments)
        _apply_fields(material, data)
        _apply_audio(material, stored)
        session.add(material)
        await session.commit()
        material = await _reload(session, material.id)
    except PhonicaError as exc:
        await session.rollback()
        await _discard(audio, stored.file_path)
        return MaterialResult.failure(exc)
    except IntegrityError as exc:
        await session.rollback()
        await _discard(audio, stored.file_path)
        logger.warning("Integrity error creating material %r: %s", data.title, exc.orig)
        return MaterialResult.failure(_translate_integrity_error(exc, "create"))
    except SQLAlchemyError:
        await session.rollback()
        await _discard(audio, stored.file_path)
        logger.exception("Database error creating material %r", data.title)
        return MaterialResult.failure(InternalError("Failed to create material"))

    logger.info(
        "Created material %s (tags=%d, equipments=%d, file=%s)",
        material.slug,
        len(material.tags),
        len(material.equipments),
        material.file_path,
    )
    return MaterialResult.success(material)


async def update_material(
    session: AsyncSession,
    audio: AudioMetadataService,
    slug: str,
    data: MaterialInput,
) -> MaterialResult:
    """Update the material identified by *slug*.

    Tags and equipment are replaced by exactly the supplied sets; omitting
    them clears the relation.
    """
    missing = data.missing_required_fields(require_audio=False)
    if missing:
        return MaterialResult.failure(_missing_fields_error(missing))

    material = await get_material(session, slug)
    if material is None:
        return MaterialResult.failure(NotFoundError("Material not found"))

    stored: StoredAudio | None = None
    if data.has_audio_source:
        try:
            stored = await store_audio(audio, data)
        except PhonicaError as exc:
            return MaterialResult.failure(exc)

    previous_path = material.file_path
    try:
        equipments = await resolve_equipment(session, data.equipment_ids)
        tags = await resolve_tags(session, data.tags)

        _apply_fields(material, data)
        if stored is not None:
            _apply_audio(material, stored)
        material.tags = tags
        material.equipments = equipments
        await session.commit()
        material = await _reload(session, material.id)
    except PhonicaError as exc:
        await session.rollback()
        if stored is not None:
            await _discard(audio, stored.file_path)
        return MaterialResult.failure(exc)
    except IntegrityError as exc:
        await session.rollback()
        if stored is not None:
            await _discard(audio, stored.file_path)
        logger.warning("Integrity error updating material %s: %s", slug, exc.orig)
        return MaterialResult.failure(_translate_integrity_error(exc, "update"))
    except SQLAlchemyError:
        await session.rollback()
        if stored is not None:
            await _discard(audio, stored.file_path)
        logger.exception("Database error updating material %s", slug)
        return MaterialResult.failure(InternalError("Failed to update material"))

    if stored is not None:
        # The old asset stays on disk; removal is left to an offline sweep.
        logger.info("Material %s audio replaced, previous asset %s retained", slug, previous_path)
    logger.info("Updated material %s", slug)
    return MaterialResult.success(material)


async def delete_material(
    session: AsyncSession,
    audio: AudioMetadataService,
    slug: str,
) -> MaterialResult:
    """Delete a material, its relation rows and its audio file."""
    material = await get_material(session, slug)
    if material is None:
        return MaterialResult.failure(NotFoundError("Material not found"))

    file_path = material.file_path
    try:
        await session.delete(material)
        await session.commit()
    except SQLAlchemyError:
        await session.rollback()
        logger.exception("Database error deleting material %s", slug)
        return MaterialResult.failure(InternalError("Failed to delete material"))

    await _discard(audio, file_path)
    logger.info("Deleted material %s", slug)
    return MaterialResult.success(None)
