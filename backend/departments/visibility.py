"""Role-scoped department visibility.

Each role maps to exactly one policy function; callers never branch on
roles themselves.

    director / hr  → every department in the forest
    manager        → own department plus all descendants
    staff          → own department only
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.common.constants import UserRole
from backend.common.exceptions import NotFoundException
from backend.core.models import Task, TaskAssignee, User
from backend.departments.tree import DepartmentTree

logger = logging.getLogger(__name__)

VisibilityPolicy = Callable[[DepartmentTree, Optional[int]], set[int]]


def visible_departments_for_assigned_dept(
    tree: DepartmentTree,
    department_id: int,
) -> set[int]:
    """Department closure: the department itself plus every descendant."""
    visible = tree.descendant_ids(department_id, include_self=True)
    logger.info(
        "Department %s can see %d department(s)", department_id, len(visible),
    )
    return visible


# ── Policies ────────────────────────────────────────────────────────

def _all_departments(tree: DepartmentTree, department_id: Optional[int]) -> set[int]:
    visible: set[int] = set()
    for root in tree.get_roots():
        visible |= tree.descendant_ids(root.id, include_self=True)
    return visible


def _own_subtree(tree: DepartmentTree, department_id: Optional[int]) -> set[int]:
    if department_id is None or not tree.exists(department_id):
        return set()
    return visible_departments_for_assigned_dept(tree, department_id)


def _own_department(tree: DepartmentTree, department_id: Optional[int]) -> set[int]:
    if department_id is None or not tree.exists(department_id):
        return set()
    return {department_id}


VISIBILITY_POLICIES: dict[UserRole, VisibilityPolicy] = {
    UserRole.director: _all_departments,
    UserRole.hr: _all_departments,
    UserRole.manager: _own_subtree,
    UserRole.staff: _own_department,
}


def visible_departments_for(
    tree: DepartmentTree,
    role: UserRole,
    department_id: Optional[int],
) -> set[int]:
    """Resolve the visibility set for a role assigned to ``department_id``."""
    return VISIBILITY_POLICIES[role](tree, department_id)


def visible_departments_for_user(tree: DepartmentTree, user: User) -> set[int]:
    return visible_departments_for(tree, user.role, user.department_id)


# ── Membership checks ───────────────────────────────────────────────

def can_see_department(
    visible_department_ids: set[int],
    department_id: Optional[int],
) -> bool:
    """Membership test against an already-resolved visibility set."""
    if department_id is None:
        return False
    return department_id in visible_department_ids


def can_user_see_task(tree: DepartmentTree, user: User) -> bool:
    """Whether the user's own department falls inside their visibility set."""
    if user.department_id is None:
        return False
    return can_see_department(
        visible_departments_for_user(tree, user), user.department_id,
    )


async def can_view_task(
    db: AsyncSession,
    tree: DepartmentTree,
    viewer: User,
    task_id: int,
) -> bool:
    """Whether ``viewer`` may see a task owned by or assigned to someone in
    one of the viewer's visible departments."""
    result = await db.execute(
        select(Task.owner_id).where(Task.id == task_id, Task.is_deleted.is_(False)),
    )
    owner_id = result.scalar_one_or_none()
    if owner_id is None:
        raise NotFoundException("Task", task_id)

    assignee_result = await db.execute(
        select(TaskAssignee.user_id).where(TaskAssignee.task_id == task_id),
    )
    user_ids = {owner_id} | set(assignee_result.scalars().all())
    dept_result = await db.execute(
        select(User.department_id).where(User.id.in_(user_ids)),
    )
    department_ids = {row[0] for row in dept_result.all()}

    visible = visible_departments_for_user(tree, viewer)
    return any(can_see_department(visible, dept_id) for dept_id in department_ids)
