"""Material endpoints: listing, create/update from form or JSON, download, bulk."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

import pydantic
from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import FileResponse, Response
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.datastructures import UploadFile

from phonica.audio.storage import AudioMetadataService, get_audio_service
from phonica.db.session import get_db
from phonica.errors import NotFoundError, ValidationError, format_validation_errors
from phonica.materials.bulk import (
    bulk_add_to_project,
    bulk_assign_tags,
    bulk_delete_materials,
    build_materials_archive,
)
from phonica.materials.pipeline import (
    MATERIAL_LOAD_OPTIONS,
    MaterialResult,
    create_material,
    delete_material,
    get_material,
    update_material,
)
from phonica.models.material import Material
from phonica.models.tag import Tag
from phonica.schemas.errors import ErrorResponse
from phonica.schemas.material import (
    BulkDeleteRequest,
    BulkDeleteResponse,
    BulkDownloadRequest,
    BulkProjectsRequest,
    BulkProjectsResponse,
    BulkTagsRequest,
    BulkTagsResponse,
    MaterialDetail,
    MaterialInput,
    MaterialSortField,
    MessageResponse,
    RawAudio,
)
from phonica.schemas.pagination import (
    PaginatedResponse,
    PaginationMeta,
    SortOrder,
    clamp_page,
    escape_like,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["materials"])

SORT_COLUMNS = {
    "title": Material.title,
    "recordedAt": Material.recorded_at,
    "createdAt": Material.created_at,
    "updatedAt": Material.updated_at,
    "rating": Material.rating,
}

AUDIO_MIME_TYPES: dict[str, str] = {
    "wav": "audio/wav",
    "mp3": "audio/mpeg",
    "aac": "audio/aac",
    "ogg": "audio/ogg",
    "opus": "audio/ogg",
    "flac": "audio/flac",
    "m4a": "audio/mp4",
    "webm": "audio/webm",
    "aiff": "audio/aiff",
    "aif": "audio/aiff",
}

ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    400: {"description": "Missing fields or invalid equipment", "model": ErrorResponse},
    404: {"description": "Material or temp file not found", "model": ErrorResponse},
    409: {"description": "Duplicate title or slug", "model": ErrorResponse},
    422: {"description": "Audio analysis failed", "model": ErrorResponse},
    500: {"description": "Persistence failure", "model": ErrorResponse},
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def _form_payload(request: Request) -> dict[str, Any]:
    form = await request.form()
    payload: dict[str, Any] = {}
    for key in form.keys():
        values = form.getlist(key)
        if key == "file":
            upload = values[0]
            if isinstance(upload, UploadFile) and upload.filename:
                payload["file"] = RawAudio(file_name=upload.filename, content=await upload.read())
            continue
        if key == "metadata" and isinstance(values[0], str):
            try:
                payload["metadata"] = json.loads(values[0])
            except json.JSONDecodeError as exc:
                raise ValidationError("metadata must be a JSON object") from exc
            continue
        text_values = [value for value in values if isinstance(value, str)]
        if not text_values:
            continue
        payload[key] = ",".join(text_values) if len(text_values) > 1 else text_values[0]
    return payload


async def read_material_input(request: Request) -> MaterialInput:
    """Parse a multipart/urlencoded form or a JSON body into MaterialInput.

    Raises:
        ValidationError: If the body cannot be parsed or fails the schema.
    """
    content_type = request.headers.get("content-type", "")
    if content_type.startswith(("multipart/form-data", "application/x-www-form-urlencoded")):
        payload: Any = await _form_payload(request)
    else:
        try:
            payload = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise ValidationError("Request body must be JSON or form data") from exc
        if not isinstance(payload, dict):
            raise ValidationError("Request body must be a JSON object")

    try:
        return MaterialInput.model_validate(payload)
    except pydantic.ValidationError as exc:
        raise ValidationError(
            "Invalid request",
            details=format_validation_errors(exc.errors()),
        ) from exc


def unwrap_result(result: MaterialResult) -> Material | None:
    """Raise the carried error so the app-level handler renders it."""
    if result.error is not None:
        raise result.error
    return result.material


# ---------------------------------------------------------------------------
# Collection
# ---------------------------------------------------------------------------


@router.get("/materials", response_model=PaginatedResponse[MaterialDetail])
async def list_materials(
    page: int = Query(default=1),
    limit: int = Query(default=10),
    sortBy: MaterialSortField = Query(default="createdAt"),  # noqa: N803
    sortOrder: SortOrder = Query(default="desc"),  # noqa: N803
    title: str | None = Query(default=None),
    tag: str | None = Query(default=None),
    db: AsyncSession = Depends(get_db),  # noqa: B008
) -> PaginatedResponse[MaterialDetail]:
    """Return a page of materials filtered by title substring and tag name."""
    page, limit = clamp_page(page, limit)

    base_query = select(Material)
    if title:
        base_query = base_query.where(Material.title.ilike(f"%{escape_like(title)}%", escape="\\"))
    if tag:
        base_query = base_query.where(Material.tags.any(Tag.name == tag))

    total_items: int = (
        await db.execute(select(func.count()).select_from(base_query.subquery()))
    ).scalar_one()

    column = SORT_COLUMNS[sortBy]
    order = column.asc() if sortOrder == "asc" else column.desc()
    data_query = (
        base_query.options(*MATERIAL_LOAD_OPTIONS)
        .order_by(order, Material.id)
        .offset((page - 1) * limit)
        .limit(limit)
    )
    materials = (await db.execute(data_query)).scalars().all()

    return PaginatedResponse[MaterialDetail](
        data=[MaterialDetail.model_validate(m) for m in materials],
        pagination=PaginationMeta.build(page, limit, total_items),
    )


@router.post(
    "/materials",
    response_model=MaterialDetail,
    status_code=201,
    responses=ERROR_RESPONSES,
)
async def create_material_endpoint(
    request: Request,
    db: AsyncSession = Depends(get_db),  # noqa: B008
    audio: AudioMetadataService = Depends(get_audio_service),  # noqa: B008
) -> MaterialDetail:
    """Create a material from a direct upload (``file``) or a ``tempFileId``."""
    data = await read_material_input(request)
    material = unwrap_result(await create_material(db, audio, data))
    return MaterialDetail.model_validate(material)


# ---------------------------------------------------------------------------
# Bulk
# ---------------------------------------------------------------------------


@router.post("/materials/bulk/tags", response_model=BulkTagsResponse)
async def bulk_tags(
    body: BulkTagsRequest,
    db: AsyncSession = Depends(get_db),  # noqa: B008
) -> BulkTagsResponse:
    return await bulk_assign_tags(db, body.material_ids, body.tag_ids, body.mode)


@router.post("/materials/bulk/delete", response_model=BulkDeleteResponse)
async def bulk_delete(
    body: BulkDeleteRequest,
    db: AsyncSession = Depends(get_db),  # noqa: B008
    audio: AudioMetadataService = Depends(get_audio_service),  # noqa: B008
) -> BulkDeleteResponse:
    return await bulk_delete_materials(db, audio, body.material_ids)


@router.post(
    "/materials/bulk/projects",
    response_model=BulkProjectsResponse,
    responses={404: {"description": "Material or project not found", "model": ErrorResponse}},
)
async def bulk_projects(
    body: BulkProjectsRequest,
    db: AsyncSession = Depends(get_db),  # noqa: B008
) -> BulkProjectsResponse:
    return await bulk_add_to_project(db, body.material_ids, body.project_id)


@router.post(
    "/materials/bulk/download",
    response_model=None,
    responses={
        200: {"content": {"application/zip": {}}, "description": "Zip of audio files"},
        404: {"description": "Material or files not found", "model": ErrorResponse},
    },
)
async def bulk_download(
    body: BulkDownloadRequest,
    db: AsyncSession = Depends(get_db),  # noqa: B008
    audio: AudioMetadataService = Depends(get_audio_service),  # noqa: B008
) -> Response:
    """Zip the selected materials' audio files.

    Materials whose file is gone are left out and named in ``X-Missing-Files``.
    """
    archive = await build_materials_archive(db, audio, body.material_ids)
    headers = {
        "Content-Disposition": 'attachment; filename="materials.zip"',
        "X-File-Count": str(archive.file_count),
    }
    if archive.missing:
        headers["X-Missing-Files"] = ",".join(archive.missing)
    return Response(content=archive.content, media_type="application/zip", headers=headers)


# ---------------------------------------------------------------------------
# Single material
# ---------------------------------------------------------------------------


@router.get(
    "/materials/{slug}",
    response_model=MaterialDetail,
    responses={404: {"description": "Material not found", "model": ErrorResponse}},
)
async def get_material_endpoint(
    slug: str,
    db: AsyncSession = Depends(get_db),  # noqa: B008
) -> MaterialDetail:
    material = await get_material(db, slug)
    if material is None:
        raise NotFoundError("Material not found")
    return MaterialDetail.model_validate(material)


@router.put("/materials/{slug}", response_model=MaterialDetail, responses=ERROR_RESPONSES)
async def update_material_endpoint(
    slug: str,
    request: Request,
    db: AsyncSession = Depends(get_db),  # noqa: B008
    audio: AudioMetadataService = Depends(get_audio_service),  # noqa: B008
) -> MaterialDetail:
    """Update a material. Tags and equipment are replaced by the sent sets."""
    data = await read_material_input(request)
    material = unwrap_result(await update_material(db, audio, slug, data))
    return MaterialDetail.model_validate(material)


@router.delete(
    "/materials/{slug}",
    response_model=MessageResponse,
    responses={404: {"description": "Material not found", "model": ErrorResponse}},
)
async def delete_material_endpoint(
    slug: str,
    db: AsyncSession = Depends(get_db),  # noqa: B008
    audio: AudioMetadataService = Depends(get_audio_service),  # noqa: B008
) -> MessageResponse:
    unwrap_result(await delete_material(db, audio, slug))
    return MessageResponse(message="Material deleted successfully")


@router.get(
    "/materials/{slug}/download",
    response_model=None,
    responses={
        200: {"content": {"audio/wav": {}}, "description": "Audio file"},
        404: {"description": "Material or file not found", "model": ErrorResponse},
    },
)
async def download_material(
    slug: str,
    play: bool = Query(default=False),
    db: AsyncSession = Depends(get_db),  # noqa: B008
    audio: AudioMetadataService = Depends(get_audio_service),  # noqa: B008
) -> Response:
    """Send the material's audio file, inline when ``play=true``.

    Starlette's FileResponse handles Range requests for seeking.
    """
    material = await get_material(db, slug)
    if material is None:
        raise NotFoundError("Material not found")

    path = audio.resolve_public_path(material.file_path)
    if path is None or not path.is_file():
        logger.warning("Audio file missing for material %s: %s", slug, material.file_path)
        raise NotFoundError("File not found on server", code="FILE_NOT_FOUND")

    fmt = (material.file_format or Path(material.file_path).suffix.lstrip(".")).lower()
    return FileResponse(
        path=path,
        media_type=AUDIO_MIME_TYPES.get(fmt, "application/octet-stream"),
        filename=path.name,
        content_disposition_type="inline" if play else "attachment",
    )
