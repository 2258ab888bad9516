"""Department Pydantic v2 schemas — request and response models."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from backend.common.constants import DEPARTMENT_NAME_MAX_LENGTH


# ═════════════════════════════════════════════════════════════════════
# Read schemas
# ═════════════════════════════════════════════════════════════════════


class DepartmentResponse(BaseModel):
    """A single department node."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    parent_id: Optional[int] = None


class DepartmentPathResponse(BaseModel):
    """Breadcrumb for one department, ordered root first."""

    department_id: int
    path: list[str]


class VisibleDepartmentsResponse(BaseModel):
    """Department ids the requesting user may see data for."""

    department_id: Optional[int] = None
    role: str
    visible_department_ids: list[int] = Field(default_factory=list)


# ═════════════════════════════════════════════════════════════════════
# Write schemas
# ═════════════════════════════════════════════════════════════════════


class DepartmentCreate(BaseModel):
    """Payload for creating a department under an existing parent."""

    name: str = Field(..., min_length=1, max_length=DEPARTMENT_NAME_MAX_LENGTH)
    parent_id: int = Field(..., description="Existing parent department id")


class DepartmentUpdate(BaseModel):
    """Payload for renaming a department."""

    name: str = Field(..., min_length=1, max_length=DEPARTMENT_NAME_MAX_LENGTH)


class DepartmentMove(BaseModel):
    """Payload for re-parenting a department."""

    new_parent_id: int
