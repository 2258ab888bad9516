"""Core ORM models: User, Project, Task, TaskAssignee.

These tables are owned by the user / project / task modules; the
department and dashboard code only reads them.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.common.constants import TaskStatus, TaskType, UserRole
from backend.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ═════════════════════════════════════════════════════════════════════
# User
# ═════════════════════════════════════════════════════════════════════


class User(Base):
    """Platform user. ``department`` holds the department *name*."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(sa.String(100), nullable=False)
    email: Mapped[str] = mapped_column(sa.String(255), unique=True, nullable=False)
    role: Mapped[UserRole] = mapped_column(
        sa.Enum(UserRole, name="user_role"),
        nullable=False,
        default=UserRole.staff,
    )
    department: Mapped[Optional[str]] = mapped_column(sa.String(150))
    department_id: Mapped[Optional[int]] = mapped_column(
        sa.Integer, sa.ForeignKey("departments.id", ondelete="SET NULL"),
    )
    is_active: Mapped[bool] = mapped_column(
        sa.Boolean, nullable=False, default=True, server_default=sa.true(),
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(), default=_utcnow,
    )

    def __repr__(self) -> str:
        return f"<User {self.id} {self.username!r} ({self.role.value})>"


# ═════════════════════════════════════════════════════════════════════
# Project
# ═════════════════════════════════════════════════════════════════════


class Project(Base):
    """A project groups tasks; membership is derived from ``Task.project_id``."""

    __tablename__ = "projects"

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(sa.String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(sa.Text)
    owner_id: Mapped[int] = mapped_column(
        sa.Integer, sa.ForeignKey("users.id"), nullable=False,
    )
    is_deleted: Mapped[bool] = mapped_column(
        sa.Boolean, nullable=False, default=False, server_default=sa.false(),
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(), default=_utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        server_default=sa.func.now(),
        default=_utcnow,
        onupdate=_utcnow,
    )

    def __repr__(self) -> str:
        return f"<Project {self.id} {self.name!r}>"


# ═════════════════════════════════════════════════════════════════════
# Task
# ═════════════════════════════════════════════════════════════════════


class Task(Base):
    """Unit of work. Higher ``priority`` means more urgent."""

    __tablename__ = "tasks"
    __table_args__ = (
        sa.Index("ix_tasks_owner_id", "owner_id"),
        sa.Index("ix_tasks_project_id", "project_id"),
    )

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(sa.String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(sa.Text)
    owner_id: Mapped[int] = mapped_column(
        sa.Integer, sa.ForeignKey("users.id"), nullable=False,
    )
    project_id: Mapped[Optional[int]] = mapped_column(
        sa.Integer, sa.ForeignKey("projects.id"),
    )
    status: Mapped[TaskStatus] = mapped_column(
        sa.Enum(TaskStatus, name="task_status"),
        nullable=False,
        default=TaskStatus.todo,
    )
    task_type: Mapped[Optional[TaskType]] = mapped_column(
        sa.Enum(TaskType, name="task_type"),
    )
    priority: Mapped[Optional[int]] = mapped_column(sa.Integer)
    due_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    is_deleted: Mapped[bool] = mapped_column(
        sa.Boolean, nullable=False, default=False, server_default=sa.false(),
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(), default=_utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        server_default=sa.func.now(),
        default=_utcnow,
        onupdate=_utcnow,
    )

    # ── Relationships ───────────────────────────────────────────────
    assignees: Mapped[list[TaskAssignee]] = relationship(
        back_populates="task", cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<Task {self.id} {self.title!r} [{self.status.value}]>"


class TaskAssignee(Base):
    """Join row: a user assigned to a task (besides its owner)."""

    __tablename__ = "task_assignees"

    task_id: Mapped[int] = mapped_column(
        sa.Integer, sa.ForeignKey("tasks.id", ondelete="CASCADE"), primary_key=True,
    )
    user_id: Mapped[int] = mapped_column(
        sa.Integer, sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True,
    )
    assigned_by: Mapped[Optional[int]] = mapped_column(
        sa.Integer, sa.ForeignKey("users.id"),
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(), default=_utcnow,
    )

    task: Mapped[Task] = relationship(back_populates="assignees")
