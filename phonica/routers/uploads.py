"""Two-phase upload endpoints: store a temp file, then analyze it.

The temp id returned by ``upload-temp`` is later sent to ``POST /materials``
together with the metadata from ``analyze-audio``.
"""

from __future__ import annotations

import logging

import magic
from fastapi import APIRouter, Depends, File, UploadFile

from phonica.audio.storage import AudioMetadataService, get_audio_service
from phonica.errors import ValidationError
from phonica.schemas.errors import ErrorResponse
from phonica.schemas.upload import AnalyzeAudioRequest, AudioMetadataResponse, TempUploadResponse
from phonica.settings import settings

logger = logging.getLogger(__name__)

router = APIRouter(tags=["uploads"])

ALLOWED_MIME_TYPES: set[str] = {
    "audio/wav",
    "audio/wave",
    "audio/x-wav",
    "audio/vnd.wave",
    "audio/mpeg",
    "audio/mp3",
    "audio/mp4",
    "audio/m4a",
    "audio/x-m4a",
    "audio/aac",
    "audio/flac",
    "audio/x-flac",
    "audio/ogg",
    "application/ogg",
    "audio/webm",
    "audio/aiff",
    "audio/x-aiff",
}


@router.post(
    "/materials/upload-temp",
    response_model=TempUploadResponse,
    responses={
        400: {"description": "No file, empty, too large or not audio", "model": ErrorResponse},
        500: {"description": "Temp store not writable", "model": ErrorResponse},
    },
)
async def upload_temp(
    file: UploadFile | None = File(default=None),  # noqa: B008
    audio: AudioMetadataService = Depends(get_audio_service),  # noqa: B008
) -> TempUploadResponse:
    """Store an upload in the temp area and return its single-use id."""
    if file is None or not file.filename:
        raise ValidationError("No file provided", code="NO_FILE")

    content = await file.read()
    if len(content) == 0:
        raise ValidationError("Empty file uploaded.", code="EMPTY_FILE")
    if len(content) > settings.max_upload_bytes:
        raise ValidationError(
            f"File too large. Maximum upload size is {settings.max_upload_bytes // (1024 * 1024)} MB.",
            code="FILE_TOO_LARGE",
        )

    # Trust the bytes, not the client's Content-Type
    try:
        detected_type = magic.from_buffer(content, mime=True)
    except magic.MagicException as exc:
        logger.warning("Failed to detect MIME type for %s: %s", file.filename, exc)
        raise ValidationError("Unable to detect file format.", code="INVALID_FILE_TYPE") from exc

    if detected_type not in ALLOWED_MIME_TYPES:
        logger.info("Rejected upload %s with type %s", file.filename, detected_type)
        raise ValidationError(
            "Invalid file type. Please upload an audio file.",
            code="INVALID_FILE_TYPE",
            details={"detectedType": detected_type},
        )

    temp_file_id = await audio.save_temp_file(file.filename, content)
    return TempUploadResponse(
        temp_file_id=temp_file_id,
        file_name=file.filename,
        file_size=len(content),
    )


@router.post(
    "/materials/analyze-audio",
    response_model=AudioMetadataResponse,
    responses={
        404: {"description": "Temp file not found", "model": ErrorResponse},
        422: {"description": "Not a supported audio file", "model": ErrorResponse},
    },
)
async def analyze_audio(
    body: AnalyzeAudioRequest,
    audio: AudioMetadataService = Depends(get_audio_service),  # noqa: B008
) -> AudioMetadataResponse:
    metadata = await audio.analyze_audio(body.temp_file_id)
    return AudioMetadataResponse(**metadata.as_dict())
