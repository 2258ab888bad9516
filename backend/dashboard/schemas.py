"""Dashboard Pydantic v2 schemas — response models for the department dashboard."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


# ═════════════════════════════════════════════════════════════════════
# Building blocks
# ═════════════════════════════════════════════════════════════════════


class DashboardMetrics(BaseModel):
    """Headline counters for the department's tasks."""

    active_projects: int = 0
    total_tasks: int = 0
    completed_tasks: int = 0
    blocked_tasks: int = 0
    high_priority_tasks: int = 0
    completion_rate: float = Field(0.0, description="Completed / total as a percentage")


class ProjectHealthCard(BaseModel):
    """Per-project rollup of the department's tasks."""

    project_id: int
    project_name: str
    status: str = Field(..., description="Active, At Risk or Completed")
    completion_percentage: int = 0
    total_tasks: int = 0
    completed_tasks: int = 0
    blocked_tasks: int = 0


class TaskDashboardItem(BaseModel):
    """A task as shown in the upcoming and priority lists."""

    id: int
    title: str
    status: str
    task_type: Optional[str] = None
    priority: Optional[int] = None
    owner_id: int
    owner_name: str
    owner_department: Optional[str] = None
    project_id: Optional[int] = None
    project_name: Optional[str] = None
    due_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    assignee_ids: list[int] = Field(default_factory=list)


class TeamLoadEntry(BaseModel):
    """Workload of one department member."""

    user_id: int
    full_name: str
    department: Optional[str] = None
    task_count: int = 0
    blocked_task_count: int = 0


# ═════════════════════════════════════════════════════════════════════
# GET /department
# ═════════════════════════════════════════════════════════════════════


class DepartmentDashboardResponse(BaseModel):
    """Dashboard for the requesting user's department and its sub-departments."""

    department: str
    included_departments: list[str] = Field(default_factory=list)
    metrics: DashboardMetrics = Field(default_factory=DashboardMetrics)
    projects: list[ProjectHealthCard] = Field(default_factory=list)
    upcoming_commitments: list[TaskDashboardItem] = Field(default_factory=list)
    priority_queue: list[TaskDashboardItem] = Field(default_factory=list)
    team_load: list[TeamLoadEntry] = Field(default_factory=list)
