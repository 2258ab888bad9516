"""Dashboard router — department dashboard for managers, directors and HR.

Role gating happens in the service so the check runs before any query,
whichever caller invokes it.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from backend.auth.dependencies import get_current_user
from backend.core.models import User
from backend.dashboard.schemas import DepartmentDashboardResponse
from backend.dashboard.service import DashboardService
from backend.database import get_db

router = APIRouter()


# ── GET /department ─────────────────────────────────────────────────

@router.get("/department", response_model=DepartmentDashboardResponse)
async def department_dashboard(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Metrics, project health, upcoming work, priority queue and team
    load for the caller's department and its sub-departments."""
    return await DashboardService.get_department_dashboard(db, user)
