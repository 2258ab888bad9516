"""Department router — hierarchy queries and HR-only admin endpoints.

Routes:
    /departments                     — Create (HR)
    /departments/roots               — Root departments
    /departments/visible             — Visibility set of the caller
    /departments/{id}                — Detail, rename (HR), delete (HR)
    /departments/{id}/parent         — Parent (null for roots)
    /departments/{id}/children       — Direct sub-departments
    /departments/{id}/ancestors      — Parent chain up to the root
    /departments/{id}/descendants    — Full subtree, breadth first
    /departments/{id}/path           — Breadcrumb names, root first
    /departments/{id}/move           — Re-parent (HR)
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from backend.auth.dependencies import get_current_user, require_role
from backend.common.constants import DEPARTMENT_ADMIN_ROLES
from backend.core.models import User
from backend.database import get_db
from backend.departments.schemas import (
    DepartmentCreate,
    DepartmentMove,
    DepartmentPathResponse,
    DepartmentResponse,
    DepartmentUpdate,
    VisibleDepartmentsResponse,
)
from backend.departments.service import (
    DepartmentAdminService,
    DepartmentQueryService,
    load_tree,
)
from backend.departments.visibility import visible_departments_for_user

router = APIRouter()

_require_admin = require_role(*sorted(DEPARTMENT_ADMIN_ROLES, key=lambda r: r.value))


def _dump(nodes) -> list[dict]:
    return [DepartmentResponse.model_validate(n).model_dump() for n in nodes]


# ═════════════════════════════════════════════════════════════════════
# Query endpoints
# ═════════════════════════════════════════════════════════════════════


# ── GET /departments/roots ──────────────────────────────────────────

@router.get("/roots")
async def list_root_departments(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """All departments without a parent."""
    roots = await DepartmentQueryService.get_roots(db)
    return {
        "data": _dump(roots),
        "message": f"Found {len(roots)} root department(s).",
    }


# ── GET /departments/visible ────────────────────────────────────────

@router.get("/visible", response_model=VisibleDepartmentsResponse)
async def list_visible_departments(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Department ids the caller may see data for, per their role."""
    tree = await load_tree(db)
    visible = visible_departments_for_user(tree, current_user)
    return VisibleDepartmentsResponse(
        department_id=current_user.department_id,
        role=current_user.role.value,
        visible_department_ids=sorted(visible),
    )


# ── GET /departments/{id} ───────────────────────────────────────────

@router.get("/{department_id}")
async def get_department(
    department_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Retrieve a single department."""
    dept = await DepartmentQueryService.get_department(db, department_id)
    return {
        "data": DepartmentResponse.model_validate(dept).model_dump(),
        "message": "Department retrieved successfully.",
    }


# ── GET /departments/{id}/parent ────────────────────────────────────

@router.get("/{department_id}/parent")
async def get_parent_department(
    department_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Parent department; ``data`` is null for roots and unknown ids."""
    parent = await DepartmentQueryService.get_parent(db, department_id)
    return {
        "data": DepartmentResponse.model_validate(parent).model_dump() if parent else None,
        "message": "Parent retrieved successfully." if parent else "Department has no parent.",
    }


# ── GET /departments/{id}/children ──────────────────────────────────

@router.get("/{department_id}/children")
async def list_sub_departments(
    department_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Direct sub-departments, ordered by id."""
    children = await DepartmentQueryService.get_children(db, department_id)
    return {
        "data": _dump(children),
        "message": f"Found {len(children)} sub-department(s).",
    }


# ── GET /departments/{id}/ancestors ─────────────────────────────────

@router.get("/{department_id}/ancestors")
async def list_ancestors(
    department_id: int,
    include_self: bool = Query(False, description="Include the department itself"),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Parent chain, nearest first, ending at the root."""
    ancestors = await DepartmentQueryService.get_ancestors(
        db, department_id, include_self=include_self,
    )
    return {
        "data": _dump(ancestors),
        "message": f"Found {len(ancestors)} department(s).",
    }


# ── GET /departments/{id}/descendants ───────────────────────────────

@router.get("/{department_id}/descendants")
async def list_descendants(
    department_id: int,
    include_self: bool = Query(False, description="Include the department itself"),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Whole subtree in breadth-first order."""
    descendants = await DepartmentQueryService.get_descendants(
        db, department_id, include_self=include_self,
    )
    return {
        "data": _dump(descendants),
        "message": f"Found {len(descendants)} department(s).",
    }


# ── GET /departments/{id}/path ──────────────────────────────────────

@router.get("/{department_id}/path", response_model=DepartmentPathResponse)
async def get_department_path(
    department_id: int,
    include_self: bool = Query(True, description="End the path at the department itself"),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Breadcrumb names from the root down."""
    names = await DepartmentQueryService.get_path_names(
        db, department_id, include_self=include_self,
    )
    return DepartmentPathResponse(department_id=department_id, path=names)


# ═════════════════════════════════════════════════════════════════════
# Admin endpoints (HR only)
# ═════════════════════════════════════════════════════════════════════


# ── POST /departments ───────────────────────────────────────────────

@router.post("", status_code=201)
async def create_department(
    body: DepartmentCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(_require_admin),
):
    """Create a department under an existing parent."""
    dept = await DepartmentAdminService.create_department(
        db, body.name, body.parent_id, actor=current_user,
    )
    return {
        "data": DepartmentResponse.model_validate(dept).model_dump(),
        "message": "Department created successfully.",
    }


# ── PUT /departments/{id} ───────────────────────────────────────────

@router.put("/{department_id}")
async def rename_department(
    department_id: int,
    body: DepartmentUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(_require_admin),
):
    """Rename a department."""
    dept = await DepartmentAdminService.update_department(
        db, department_id, body.name, actor=current_user,
    )
    return {
        "data": DepartmentResponse.model_validate(dept).model_dump(),
        "message": "Department updated successfully.",
    }


# ── PUT /departments/{id}/move ──────────────────────────────────────

@router.put("/{department_id}/move")
async def move_department(
    department_id: int,
    body: DepartmentMove,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(_require_admin),
):
    """Move a department under a new parent."""
    dept = await DepartmentAdminService.move_department(
        db, department_id, body.new_parent_id, actor=current_user,
    )
    return {
        "data": DepartmentResponse.model_validate(dept).model_dump(),
        "message": "Department moved successfully.",
    }


# ── DELETE /departments/{id} ────────────────────────────────────────

@router.delete("/{department_id}")
async def delete_department(
    department_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(_require_admin),
):
    """Delete a department that has no sub-departments."""
    await DepartmentAdminService.delete_department(db, department_id, actor=current_user)
    return {"data": None, "message": "Department deleted successfully."}
