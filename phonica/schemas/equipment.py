from __future__ import annotations

from datetime import datetime
from typing import Annotated, Literal

from pydantic import BeforeValidator, StringConstraints

from phonica.schemas.base import CamelModel
from phonica.schemas.material import blank_to_none

EquipmentSortField = Literal["name", "type", "manufacturer", "createdAt", "updatedAt"]

RequiredText = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=255)]
OptionalText = Annotated[str | None, BeforeValidator(blank_to_none)]


class EquipmentWrite(CamelModel):
    """Body for both create and update; the whole record is replaced on update."""

    name: RequiredText
    type: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=100)]
    manufacturer: OptionalText = None
    memo: OptionalText = None


class EquipmentResponse(CamelModel):
    id: str
    name: str
    type: str
    manufacturer: str | None = None
    memo: str | None = None
    created_at: datetime
    updated_at: datetime
