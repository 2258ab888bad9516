"""Dashboard service — department-scoped task/project/team aggregation.

The requesting user's department and every sub-department form the scope.
Data is read in a handful of queries (members, tasks, assignees,
owners, projects) and folded in memory by the pure helpers below.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.common.constants import DASHBOARD_ROLES, ProjectHealth, TaskStatus
from backend.common.exceptions import (
    DataFetchException,
    ForbiddenException,
    NotFoundException,
)
from backend.config import settings
from backend.core.models import Project, Task, TaskAssignee, User
from backend.dashboard.schemas import (
    DashboardMetrics,
    DepartmentDashboardResponse,
    ProjectHealthCard,
    TaskDashboardItem,
    TeamLoadEntry,
)
from backend.departments.service import load_tree

logger = logging.getLogger(__name__)


def _now() -> datetime:
    """Current instant in UTC."""
    return datetime.now(timezone.utc)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _is_completed(item: TaskDashboardItem) -> bool:
    return item.status == TaskStatus.completed.value


def _is_blocked(item: TaskDashboardItem) -> bool:
    return item.status == TaskStatus.blocked.value


# ═════════════════════════════════════════════════════════════════════
# Folds
# ═════════════════════════════════════════════════════════════════════


def completion_rate(total: int, completed: int) -> float:
    """Completed share as a percentage, one decimal place; 0 for no tasks."""
    if total <= 0:
        return 0.0
    return round(completed * 100.0 / total, 1)


def build_task_item(
    task: Task,
    assignee_ids: list[int],
    users: dict[int, User],
    projects: dict[int, Project],
) -> TaskDashboardItem:
    owner = users.get(task.owner_id)
    project = projects.get(task.project_id) if task.project_id is not None else None
    return TaskDashboardItem(
        id=task.id,
        title=task.title,
        status=task.status.value,
        task_type=task.task_type.value if task.task_type else None,
        priority=task.priority,
        owner_id=task.owner_id,
        owner_name=owner.username if owner else f"User {task.owner_id}",
        owner_department=owner.department if owner else None,
        project_id=task.project_id,
        project_name=project.name if project else None,
        due_at=_as_utc(task.due_at),
        created_at=_as_utc(task.created_at),
        updated_at=_as_utc(task.updated_at),
        assignee_ids=sorted(assignee_ids),
    )


def build_project_cards(items: Iterable[TaskDashboardItem]) -> list[ProjectHealthCard]:
    """One card per referenced project, sorted by project name.

    Completed when every task is done, At Risk when any task is blocked,
    Active otherwise.
    """
    grouped: dict[int, list[TaskDashboardItem]] = defaultdict(list)
    names: dict[int, str] = {}
    for item in items:
        if item.project_id is None:
            continue
        grouped[item.project_id].append(item)
        if item.project_name:
            names[item.project_id] = item.project_name

    cards: list[ProjectHealthCard] = []
    for project_id, project_items in grouped.items():
        total = len(project_items)
        completed = sum(1 for i in project_items if _is_completed(i))
        blocked = sum(1 for i in project_items if _is_blocked(i))

        if completed == total:
            status = ProjectHealth.completed
        elif blocked > 0:
            status = ProjectHealth.at_risk
        else:
            status = ProjectHealth.active

        cards.append(
            ProjectHealthCard(
                project_id=project_id,
                project_name=names.get(project_id, f"Project {project_id}"),
                status=status.value,
                completion_percentage=round(completed * 100 / total),
                total_tasks=total,
                completed_tasks=completed,
                blocked_tasks=blocked,
            )
        )

    cards.sort(key=lambda c: (c.project_name.lower(), c.project_id))
    return cards


def select_upcoming_commitments(
    items: Iterable[TaskDashboardItem],
    now: datetime,
    window_days: int,
) -> list[TaskDashboardItem]:
    """Open tasks due between now and the end of the look-ahead window."""
    horizon = now + timedelta(days=window_days)
    upcoming = [
        i for i in items
        if not _is_completed(i) and i.due_at is not None and now <= i.due_at <= horizon
    ]
    upcoming.sort(key=lambda i: (i.due_at, i.id))
    return upcoming


def _priority_sort_key(item: TaskDashboardItem) -> tuple:
    due = item.due_at.timestamp() if item.due_at else float("inf")
    updated = item.updated_at.timestamp() if item.updated_at else float("-inf")
    return (-(item.priority or 0), due, -updated, item.id)


def select_priority_queue(
    items: Iterable[TaskDashboardItem],
    threshold: int,
) -> list[TaskDashboardItem]:
    """Open tasks at or above ``threshold``.

    Ordered by priority descending, then due date (undated last), then
    most recently updated.
    """
    queue = [
        i for i in items
        if not _is_completed(i) and i.priority is not None and i.priority >= threshold
    ]
    queue.sort(key=_priority_sort_key)
    return queue


def build_metrics(
    items: list[TaskDashboardItem],
    cards: list[ProjectHealthCard],
    priority_queue: list[TaskDashboardItem],
) -> DashboardMetrics:
    total = len(items)
    completed = sum(1 for i in items if _is_completed(i))
    return DashboardMetrics(
        active_projects=sum(1 for c in cards if c.status != ProjectHealth.completed.value),
        total_tasks=total,
        completed_tasks=completed,
        blocked_tasks=sum(1 for i in items if _is_blocked(i)),
        high_priority_tasks=len(priority_queue),
        completion_rate=completion_rate(total, completed),
    )


def build_team_load(
    members: Iterable[User],
    items: list[TaskDashboardItem],
) -> list[TeamLoadEntry]:
    """One entry per member, zero-task members included.

    A task counts once per member whether they own it, are assigned to it,
    or both.
    """
    task_ids: dict[int, set[int]] = defaultdict(set)
    blocked_ids: dict[int, set[int]] = defaultdict(set)
    for item in items:
        for user_id in {item.owner_id, *item.assignee_ids}:
            task_ids[user_id].add(item.id)
            if _is_blocked(item):
                blocked_ids[user_id].add(item.id)

    entries = [
        TeamLoadEntry(
            user_id=member.id,
            full_name=member.username,
            department=member.department,
            task_count=len(task_ids.get(member.id, ())),
            blocked_task_count=len(blocked_ids.get(member.id, ())),
        )
        for member in members
    ]
    entries.sort(key=lambda e: (-e.task_count, e.full_name.lower(), e.user_id))
    return entries


# ═════════════════════════════════════════════════════════════════════
# DashboardService
# ═════════════════════════════════════════════════════════════════════


class DashboardService:
    """Async dashboard aggregation queries."""

    @staticmethod
    async def get_department_dashboard(
        db: AsyncSession,
        user: User,
    ) -> DepartmentDashboardResponse:
        """Dashboard for ``user``'s department and all of its sub-departments.

        Raises ForbiddenException for roles without dashboard access (before
        any query runs), NotFoundException when the user's department name
        does not match a department, and DataFetchException when the
        database fails mid-read.
        """
        if user.role not in DASHBOARD_ROLES:
            logger.warning(
                "Dashboard denied for user %s with role %s", user.id, user.role.value,
            )
            raise ForbiddenException(
                detail="Department dashboard is available to managers, directors and HR only.",
            )

        department_name = (user.department or "").strip()
        if not department_name:
            raise NotFoundException("Department", user.department or "")

        try:
            return await DashboardService._aggregate(db, department_name)
        except SQLAlchemyError as exc:
            logger.exception("Dashboard data fetch failed for user %s", user.id)
            raise DataFetchException("Failed to load department dashboard data.") from exc

    @staticmethod
    async def _aggregate(
        db: AsyncSession,
        department_name: str,
    ) -> DepartmentDashboardResponse:
        tree = await load_tree(db)
        department = tree.find_by_name(department_name)
        if department is None:
            raise NotFoundException("Department", department_name)

        included = tree.get_descendants(department.id, include_self=True)
        included_names = [node.name for node in included]
        logger.info(
            "Resolving dashboard for %r across %d department(s)",
            department.name, len(included_names),
        )

        # ── Members ────────────────────────────────────────────────
        lowered = [name.strip().lower() for name in included_names]
        members_result = await db.execute(
            select(User)
            .where(
                User.is_active.is_(True),
                func.lower(func.trim(User.department)).in_(lowered),
            )
            .order_by(User.id)
        )
        members = list(members_result.scalars().all())

        response = DepartmentDashboardResponse(
            department=department.name,
            included_departments=included_names,
        )
        if not members:
            return response

        member_ids = [m.id for m in members]

        # ── Tasks owned by or assigned to a member ─────────────────
        assigned_q = select(TaskAssignee.task_id).where(TaskAssignee.user_id.in_(member_ids))
        tasks_result = await db.execute(
            select(Task)
            .where(
                Task.is_deleted.is_(False),
                or_(Task.owner_id.in_(member_ids), Task.id.in_(assigned_q)),
            )
            .order_by(Task.id)
        )
        tasks = list(tasks_result.scalars().all())

        assignees: dict[int, list[int]] = defaultdict(list)
        if tasks:
            assignee_result = await db.execute(
                select(TaskAssignee.task_id, TaskAssignee.user_id).where(
                    TaskAssignee.task_id.in_([t.id for t in tasks])
                )
            )
            for task_id, user_id in assignee_result.all():
                assignees[task_id].append(user_id)

        # ── Owners outside the roster, and projects ───────────────
        users: dict[int, User] = {m.id: m for m in members}
        missing_owner_ids = {t.owner_id for t in tasks} - users.keys()
        if missing_owner_ids:
            owners_result = await db.execute(
                select(User).where(User.id.in_(missing_owner_ids))
            )
            users.update({u.id: u for u in owners_result.scalars().all()})

        project_ids = {t.project_id for t in tasks if t.project_id is not None}
        projects: dict[int, Project] = {}
        if project_ids:
            projects_result = await db.execute(
                select(Project).where(
                    Project.id.in_(project_ids),
                    Project.is_deleted.is_(False),
                )
            )
            projects = {p.id: p for p in projects_result.scalars().all()}

        # ── Fold ───────────────────────────────────────────────────
        items = [build_task_item(t, assignees[t.id], users, projects) for t in tasks]
        cards = build_project_cards(items)
        queue = select_priority_queue(items, settings.HIGH_PRIORITY_THRESHOLD)

        response.metrics = build_metrics(items, cards, queue)
        response.projects = cards
        response.upcoming_commitments = select_upcoming_commitments(
            items, _now(), settings.UPCOMING_WINDOW_DAYS,
        )
        response.priority_queue = queue
        response.team_load = build_team_load(members, items)
        return response
