from __future__ import annotations

import math
from typing import Generic, Literal, TypeVar

from pydantic import BaseModel, Field

from phonica.schemas.base import CamelModel

T = TypeVar("T")

SortOrder = Literal["asc", "desc"]


class PaginationMeta(CamelModel):
    page: int = Field(ge=1)
    limit: int = Field(ge=1, le=100)
    total_items: int = Field(ge=0)
    total_pages: int = Field(ge=0)

    @classmethod
    def build(cls, page: int, limit: int, total_items: int) -> PaginationMeta:
        total_pages = math.ceil(total_items / limit) if total_items > 0 else 0
        return cls(page=page, limit=limit, total_items=total_items, total_pages=total_pages)


class PaginatedResponse(BaseModel, Generic[T]):
    data: list[T]
    pagination: PaginationMeta


def escape_like(term: str) -> str:
    """Escape LIKE wildcards so user input matches literally."""
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def clamp_page(page: int, limit: int, max_limit: int = 100) -> tuple[int, int]:
    """Clamp out-of-range page/limit query values instead of rejecting them."""
    return max(1, page), max(1, min(max_limit, limit))
