"""Material request and response schemas.

``MaterialInput`` is the typed boundary between HTTP (multipart form or
JSON) and the ingestion/update pipelines. Loosely typed form values are
normalized here so the pipelines never see raw strings:

* optional numbers that are absent, empty or non-numeric become ``None``
* strings equal to ``""`` or ``"null"`` become ``None``
* ``tags`` / ``equipmentIds`` accept a list or a comma-separated string
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Annotated, Any, Literal

from pydantic import (
    AfterValidator,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    StringConstraints,
    model_validator,
)

from phonica.schemas.base import CamelModel, to_camel

MaterialSortField = Literal["title", "recordedAt", "createdAt", "updatedAt", "rating"]

TAG_NAME_MAX_LENGTH = 50


def blank_to_none(value: Any) -> Any:
    if isinstance(value, str):
        stripped = value.strip()
        if stripped == "" or stripped == "null":
            return None
    return value


def _lenient_int(value: Any) -> int | None:
    value = blank_to_none(value)
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    try:
        return int(str(value).strip())
    except ValueError:
        # "48000.0" style values still carry an integer
        try:
            return int(float(str(value).strip()))
        except ValueError:
            return None


def _lenient_float(value: Any) -> float | None:
    value = blank_to_none(value)
    if value is None or isinstance(value, bool):
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    if result != result:  # NaN
        return None
    return result


def _ensure_aware(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def _in_range(low: float, high: float):
    def check(value: float | None) -> float | None:
        if value is not None and not low <= value <= high:
            raise ValueError(f"must be between {low:g} and {high:g}")
        return value

    return AfterValidator(check)


def _max_length(limit: int):
    def check(value: str | None) -> str | None:
        if value is not None and len(value) > limit:
            raise ValueError(f"must be at most {limit} characters")
        return value

    return AfterValidator(check)


def _names_max_length(limit: int):
    def check(values: list[str]) -> list[str]:
        too_long = [value for value in values if len(value) > limit]
        if too_long:
            raise ValueError(f"each name must be at most {limit} characters")
        return values

    return AfterValidator(check)


def _split_list(value: Any) -> list[str]:
    value = blank_to_none(value)
    if value is None:
        return []
    items = value.split(",") if isinstance(value, str) else list(value)
    cleaned: list[str] = []
    for item in items:
        text = str(item).strip()
        if text and text not in cleaned:
            cleaned.append(text)
    return cleaned


NullableStr = Annotated[str | None, BeforeValidator(blank_to_none)]
LenientInt = Annotated[int | None, BeforeValidator(_lenient_int)]
LenientFloat = Annotated[float | None, BeforeValidator(_lenient_float)]
NameList = Annotated[list[str], BeforeValidator(_split_list)]
TagNameList = Annotated[NameList, _names_max_length(TAG_NAME_MAX_LENGTH)]


class RawAudio(BaseModel):
    """An audio file uploaded directly with the material form."""

    file_name: str
    content: bytes


class MaterialInput(CamelModel):
    """Fields accepted by material create and update.

    Required-field checks (title, recordedAt, audio source) are done by the
    pipelines so they can report every missing field at once.
    """

    model_config = ConfigDict(
        populate_by_name=True,
        alias_generator=to_camel,
        extra="ignore",
    )

    title: Annotated[NullableStr, _max_length(500)] = None
    recorded_at: Annotated[
        datetime | None, BeforeValidator(blank_to_none), AfterValidator(_ensure_aware)
    ] = None
    memo: NullableStr = None
    tags: TagNameList = Field(default_factory=list)
    equipment_ids: NameList = Field(default_factory=list)

    latitude: Annotated[LenientFloat, _in_range(-90, 90)] = None
    longitude: Annotated[LenientFloat, _in_range(-180, 180)] = None
    location_name: Annotated[NullableStr, _max_length(255)] = None
    rating: Annotated[LenientInt, _in_range(0, 5)] = None

    # Two-phase upload: upload-temp -> analyze-audio -> create
    temp_file_id: NullableStr = None
    file_name: NullableStr = None

    # Metadata computed by analyze-audio, or typed in by the caller
    file_format: Annotated[NullableStr, _max_length(20)] = None
    sample_rate: LenientInt = None
    bit_depth: LenientInt = None
    duration_seconds: LenientFloat = None
    channels: LenientInt = None

    # Direct upload
    file: RawAudio | None = None

    @model_validator(mode="before")
    @classmethod
    def _flatten_metadata(cls, data: Any) -> Any:
        """Accept ``{"metadata": {...}}`` as sent by the two-phase form."""
        if isinstance(data, dict) and isinstance(data.get("metadata"), dict):
            data = dict(data)
            for key, value in data.pop("metadata").items():
                data.setdefault(key, value)
        return data

    @property
    def has_audio_source(self) -> bool:
        return self.file is not None or self.temp_file_id is not None

    @property
    def has_supplied_metadata(self) -> bool:
        return any(
            value is not None
            for value in (
                self.file_format,
                self.sample_rate,
                self.bit_depth,
                self.duration_seconds,
                self.channels,
            )
        )

    def missing_required_fields(self, require_audio: bool) -> list[str]:
        missing: list[str] = []
        if not self.title:
            missing.append("title")
        if self.recorded_at is None:
            missing.append("recordedAt")
        if require_audio and not self.has_audio_source:
            missing.append("file")
        return missing


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


class TagSummary(CamelModel):
    id: str
    name: str
    slug: str


class EquipmentSummary(CamelModel):
    id: str
    name: str
    type: str
    manufacturer: str | None = None


class ProjectSummary(CamelModel):
    id: str
    name: str
    slug: str


class MaterialSummary(CamelModel):
    """Material fields without relations, embedded in project responses."""

    id: str
    slug: str
    title: str
    file_path: str
    file_format: str | None = None
    recorded_at: datetime
    location_name: str | None = None
    rating: int | None = None
    memo: str | None = None
    created_at: datetime
    updated_at: datetime


class MaterialDetail(MaterialSummary):
    sample_rate: int | None = None
    bit_depth: int | None = None
    duration_seconds: float | None = None
    channels: int | None = None
    latitude: float | None = None
    longitude: float | None = None
    tags: list[TagSummary] = Field(default_factory=list)
    equipments: list[EquipmentSummary] = Field(default_factory=list)
    projects: list[ProjectSummary] = Field(default_factory=list)


class BulkTagsRequest(CamelModel):
    material_ids: list[str] = Field(min_length=1)
    tag_ids: list[str] = Field(min_length=1)
    mode: Literal["add", "replace"] = "add"


class TagCount(CamelModel):
    tag_id: str
    tag_name: str
    count: int


class BulkTagsResponse(CamelModel):
    success: bool = True
    affected_materials: int
    mode: str
    tags: list[TagCount]


class BulkDeleteRequest(CamelModel):
    material_ids: list[str] = Field(min_length=1)


class BulkDeleteResponse(CamelModel):
    success: bool = True
    deleted_count: int
    missing_files: int = 0


class BulkProjectsRequest(CamelModel):
    material_ids: list[str] = Field(min_length=1)
    project_id: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]


class BulkProjectsResponse(CamelModel):
    success: bool = True
    project: ProjectSummary
    added_count: int
    already_in_project: int
    total_materials: int
    message: str | None = None


class BulkDownloadRequest(CamelModel):
    material_ids: list[str] = Field(min_length=1)


class MessageResponse(BaseModel):
    message: str
