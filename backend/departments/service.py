"""Department service layer — hierarchy queries and admin mutations.

Uses:
  - ``DepartmentTree`` from backend.departments.tree for every closure
  - ``create_audit_entry`` from backend.common.audit
  - ``NotFoundException / InvalidOperationException`` from backend.common.exceptions
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.common.audit import create_audit_entry
from backend.common.constants import DEPARTMENT_NAME_MAX_LENGTH
from backend.common.exceptions import (
    DataFetchException,
    InvalidOperationException,
    NotFoundException,
)
from backend.core.models import User
from backend.departments.models import Department
from backend.departments.tree import DepartmentNode, DepartmentTree

logger = logging.getLogger(__name__)

# Serialises check-then-mutate sequences within one worker process
_hierarchy_lock = asyncio.Lock()

# pg_advisory_xact_lock key shared by every worker for hierarchy mutations
_HIERARCHY_LOCK_KEY = 7_301_001


async def load_tree(db: AsyncSession) -> DepartmentTree:
    """Load every department row and build the in-memory forest."""
    try:
        result = await db.execute(
            select(Department.id, Department.name, Department.parent_id),
        )
        rows = result.all()
    except SQLAlchemyError as exc:
        logger.exception("Failed to load departments")
        raise DataFetchException("Failed to load departments.") from exc
    return DepartmentTree.from_rows(rows)


def _clean_name(name: Optional[str]) -> str:
    cleaned = (name or "").strip()
    if not cleaned:
        raise InvalidOperationException("Department name must not be blank.")
    if len(cleaned) > DEPARTMENT_NAME_MAX_LENGTH:
        raise InvalidOperationException(
            f"Department name must be at most {DEPARTMENT_NAME_MAX_LENGTH} characters.",
        )
    return cleaned


async def _get_row(db: AsyncSession, department_id: int) -> Department:
    department = await db.get(Department, department_id)
    if department is None:
        raise NotFoundException("Department", department_id)
    return department


# ═════════════════════════════════════════════════════════════════════
# DepartmentQueryService
# ═════════════════════════════════════════════════════════════════════


class DepartmentQueryService:
    """Async read operations over the department hierarchy."""

    @staticmethod
    async def exists(db: AsyncSession, department_id: int) -> bool:
        tree = await load_tree(db)
        return tree.exists(department_id)

    @staticmethod
    async def get_department(db: AsyncSession, department_id: int) -> DepartmentNode:
        tree = await load_tree(db)
        return tree.get_by_id(department_id)

    @staticmethod
    async def get_parent(db: AsyncSession, department_id: int) -> Optional[DepartmentNode]:
        """Parent department, or ``None`` for a root or an unknown id."""
        tree = await load_tree(db)
        return tree.get_parent(department_id)

    @staticmethod
    async def get_children(db: AsyncSession, department_id: int) -> list[DepartmentNode]:
        tree = await load_tree(db)
        return tree.get_children(department_id)

    @staticmethod
    async def get_roots(db: AsyncSession) -> list[DepartmentNode]:
        tree = await load_tree(db)
        return tree.get_roots()

    @staticmethod
    async def get_ancestors(
        db: AsyncSession,
        department_id: int,
        include_self: bool = False,
    ) -> list[DepartmentNode]:
        tree = await load_tree(db)
        return tree.get_ancestors(department_id, include_self=include_self)

    @staticmethod
    async def get_descendants(
        db: AsyncSession,
        department_id: int,
        include_self: bool = False,
    ) -> list[DepartmentNode]:
        tree = await load_tree(db)
        return tree.get_descendants(department_id, include_self=include_self)

    @staticmethod
    async def get_path_names(
        db: AsyncSession,
        department_id: int,
        include_self: bool = True,
    ) -> list[str]:
        tree = await load_tree(db)
        return tree.get_path_names(department_id, include_self=include_self)


# ═════════════════════════════════════════════════════════════════════
# DepartmentAdminService
# ═════════════════════════════════════════════════════════════════════


@asynccontextmanager
async def _hierarchy_guard(db: AsyncSession) -> AsyncIterator[None]:
    """Run one check-then-mutate sequence and commit it before releasing.

    Concurrent requests in this worker queue on ``_hierarchy_lock``; on
    PostgreSQL a transaction-scoped advisory lock serialises other workers
    too. The commit happens inside both locks, so the next caller always
    checks against the committed tree.
    """
    async with _hierarchy_lock:
        if db.get_bind().dialect.name == "postgresql":
            await db.execute(select(func.pg_advisory_xact_lock(_HIERARCHY_LOCK_KEY)))
        yield
        await db.commit()


class DepartmentAdminService:
    """Create / rename / move / delete, keeping the forest acyclic.

    Each mutation writes one audit-trail row and is committed before the
    hierarchy locks are released.
    """

    @staticmethod
    async def create_department(
        db: AsyncSession,
        name: str,
        parent_id: int,
        actor: Optional[User] = None,
    ) -> Department:
        """Create a department under an existing parent (no new roots)."""
        cleaned = _clean_name(name)
        async with _hierarchy_guard(db):
            await _get_row(db, parent_id)

            department = Department(name=cleaned, parent_id=parent_id)
            db.add(department)
            await db.flush()

            await create_audit_entry(
                db,
                action="create",
                entity_type="department",
                entity_id=department.id,
                actor_id=actor.id if actor else None,
                new_values={"name": cleaned, "parent_id": parent_id},
            )

        logger.info(
            "Created department %s %r under parent %s", department.id, cleaned, parent_id,
        )
        return department

    @staticmethod
    async def update_department(
        db: AsyncSession,
        department_id: int,
        new_name: str,
        actor: Optional[User] = None,
    ) -> Department:
        """Rename a department and the department name stored on its members."""
        cleaned = _clean_name(new_name)
        async with _hierarchy_guard(db):
            department = await _get_row(db, department_id)
            old_name = department.name

            # Members are matched by id, or by name when the old name
            # resolves to this department.
            members = User.department_id == department_id
            tree = await load_tree(db)
            named = tree.find_by_name(old_name)
            if named is not None and named.id == department_id:
                members = or_(
                    members,
                    func.lower(func.trim(User.department)) == old_name.strip().lower(),
                )

            department.name = cleaned
            result = await db.execute(
                update(User)
                .where(members)
                .values(department=cleaned)
                .execution_options(synchronize_session="fetch")
            )
            await db.flush()

            await create_audit_entry(
                db,
                action="update",
                entity_type="department",
                entity_id=department.id,
                actor_id=actor.id if actor else None,
                old_values={"name": old_name},
                new_values={"name": cleaned},
            )

        logger.info(
            "Renamed department %s %r -> %r (%d member record(s) updated)",
            department_id, old_name, cleaned, result.rowcount,
        )
        return department

    @staticmethod
    async def move_department(
        db: AsyncSession,
        department_id: int,
        new_parent_id: int,
        actor: Optional[User] = None,
    ) -> Department:
        """Re-parent a department, rejecting moves that would form a cycle."""
        async with _hierarchy_guard(db):
            tree = await load_tree(db)
            tree.get_by_id(department_id)
            if not tree.exists(new_parent_id):
                raise NotFoundException("Department", new_parent_id)

            if tree.would_create_cycle(department_id, new_parent_id):
                logger.warning(
                    "Rejected move of department %s under %s: cycle",
                    department_id, new_parent_id,
                )
                raise InvalidOperationException(
                    f"Cannot move department {department_id} under "
                    f"department {new_parent_id}: it is the department itself "
                    f"or one of its descendants.",
                )

            department = await _get_row(db, department_id)
            old_parent_id = department.parent_id
            department.parent_id = new_parent_id
            await db.flush()

            await create_audit_entry(
                db,
                action="move",
                entity_type="department",
                entity_id=department.id,
                actor_id=actor.id if actor else None,
                old_values={"parent_id": old_parent_id},
                new_values={"parent_id": new_parent_id},
            )

        logger.info(
            "Moved department %s from parent %s to %s",
            department_id, old_parent_id, new_parent_id,
        )
        return department

    @staticmethod
    async def delete_department(
        db: AsyncSession,
        department_id: int,
        actor: Optional[User] = None,
    ) -> None:
        """Delete a leaf department. Departments with children are rejected."""
        async with _hierarchy_guard(db):
            tree = await load_tree(db)
            children = tree.get_children(department_id)
            if children:
                raise InvalidOperationException(
                    f"Cannot delete department {department_id}: it still has "
                    f"{len(children)} sub-department(s). Move or delete them first.",
                )

            department = await _get_row(db, department_id)
            snapshot = {"name": department.name, "parent_id": department.parent_id}
            await db.delete(department)
            await db.flush()

            await create_audit_entry(
                db,
                action="delete",
                entity_type="department",
                entity_id=department_id,
                actor_id=actor.id if actor else None,
                old_values=snapshot,
            )

        logger.info("Deleted department %s %r", department_id, snapshot["name"])
