"""Department ORM model — the persisted side of the department forest.

Only the adjacency (``parent_id``) is stored; closures are computed in
memory by :class:`backend.departments.tree.DepartmentTree`.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from backend.common.constants import DEPARTMENT_NAME_MAX_LENGTH
from backend.database import Base


class Department(Base):
    """Organisational department (hierarchy via parent_id; NULL ⇒ root)."""

    __tablename__ = "departments"
    __table_args__ = (
        sa.Index("ix_departments_parent_id", "parent_id"),
    )

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(
        sa.String(DEPARTMENT_NAME_MAX_LENGTH), nullable=False,
    )
    parent_id: Mapped[Optional[int]] = mapped_column(
        sa.Integer, sa.ForeignKey("departments.id"),
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        server_default=sa.func.now(),
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        server_default=sa.func.now(),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def __repr__(self) -> str:
        return f"<Department {self.id} {self.name!r} parent={self.parent_id}>"
