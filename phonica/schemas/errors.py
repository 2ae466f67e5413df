from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ErrorResponse(BaseModel):
    """JSON body returned for every non-2xx response."""

    model_config = ConfigDict(populate_by_name=True)

    error: str
    code: str
    details: Any = None
    field: str | None = None
    material_count: int | None = Field(default=None, alias="materialCount")
