"""Enums and constants for SyncUp — matching PostgreSQL ENUM types."""

from __future__ import annotations

import enum


# ── Auth / Roles ────────────────────────────────────────────────────

class UserRole(str, enum.Enum):
    director = "director"
    manager = "manager"
    hr = "hr"
    staff = "staff"


# Roles allowed to open the department dashboard
DASHBOARD_ROLES: frozenset[UserRole] = frozenset(
    {UserRole.director, UserRole.manager, UserRole.hr}
)

# Roles allowed to create / rename / move / delete departments
DEPARTMENT_ADMIN_ROLES: frozenset[UserRole] = frozenset({UserRole.hr})


# ── Tasks ───────────────────────────────────────────────────────────

class TaskStatus(str, enum.Enum):
    todo = "todo"
    in_progress = "in_progress"
    completed = "completed"
    blocked = "blocked"


class TaskType(str, enum.Enum):
    feature = "feature"
    bug = "bug"
    chore = "chore"


# ── Projects ────────────────────────────────────────────────────────

class ProjectHealth(str, enum.Enum):
    active = "Active"
    at_risk = "At Risk"
    completed = "Completed"


# ── Misc constants ──────────────────────────────────────────────────

DEPARTMENT_NAME_MAX_LENGTH = 150
