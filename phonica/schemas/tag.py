from __future__ import annotations

from datetime import datetime
from typing import Annotated, Literal

from pydantic import Field, StringConstraints

from phonica.schemas.base import CamelModel
from phonica.schemas.material import TAG_NAME_MAX_LENGTH

TagSortField = Literal["name", "createdAt", "updatedAt"]

TagName = Annotated[
    str, StringConstraints(strip_whitespace=True, min_length=1, max_length=TAG_NAME_MAX_LENGTH)
]


class TagCreate(CamelModel):
    name: TagName


class TagUpdate(CamelModel):
    name: TagName


class TagResponse(CamelModel):
    id: str
    name: str
    slug: str
    materials_count: int = Field(default=0, ge=0)
    created_at: datetime
    updated_at: datetime
