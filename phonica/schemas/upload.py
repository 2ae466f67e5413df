from __future__ import annotations

from pydantic import Field

from phonica.schemas.base import CamelModel


class TempUploadResponse(CamelModel):
    temp_file_id: str
    file_name: str
    file_size: int = Field(ge=0)


class AnalyzeAudioRequest(CamelModel):
    temp_file_id: str = Field(min_length=1)


class AudioMetadataResponse(CamelModel):
    file_format: str
    sample_rate: int | None = None
    bit_depth: int | None = None
    duration_seconds: float | None = None
    channels: int | None = None
