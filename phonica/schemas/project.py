from __future__ import annotations

from datetime import datetime
from typing import Annotated, Literal

from pydantic import BeforeValidator, Field, StringConstraints

from phonica.schemas.base import CamelModel
from phonica.schemas.material import MaterialSummary, ProjectSummary, blank_to_none

ProjectSortField = Literal["name", "createdAt", "updatedAt"]

ProjectName = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=255)]


class ProjectCreate(CamelModel):
    name: ProjectName
    description: Annotated[str | None, BeforeValidator(blank_to_none)] = None


class ProjectUpdate(CamelModel):
    """Partial update: omitted fields are left unchanged."""

    name: ProjectName | None = None
    description: Annotated[str | None, BeforeValidator(blank_to_none)] = None


class ProjectResponse(CamelModel):
    id: str
    slug: str
    name: str
    description: str | None = None
    materials_count: int = Field(default=0, ge=0)
    created_at: datetime
    updated_at: datetime


class ProjectDetail(ProjectResponse):
    materials: list[MaterialSummary] = Field(default_factory=list)


class ProjectMaterialAttach(CamelModel):
    material_id: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]


class ProjectMaterialsBatchUpdate(CamelModel):
    add: list[str] = Field(default_factory=list)
    remove: list[str] = Field(default_factory=list)


class BatchOperations(CamelModel):
    added: int
    removed: int


class ProjectBatchUpdateResponse(CamelModel):
    project: ProjectSummary
    operations: BatchOperations
    total_materials: int
