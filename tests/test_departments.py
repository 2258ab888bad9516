"""Department module test suite — hierarchy queries, admin mutations
(create / rename / move / delete), audit rows, and the HTTP API with
HR-only write access.

Uses the shared conftest.py pattern with in-memory SQLite.
"""

from __future__ import annotations

import asyncio

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.common.audit import AuditTrail
from backend.common.constants import UserRole
from backend.common.exceptions import InvalidOperationException, NotFoundException
from backend.core.models import User
from backend.departments.models import Department
from backend.departments.service import (
    DepartmentAdminService,
    DepartmentQueryService,
    load_tree,
)
from tests.conftest import (
    _make_department,
    _make_user,
    auth_headers_for,
    create_access_token,
)


# ── Helpers ─────────────────────────────────────────────────────────


async def _seed_hierarchy(db: AsyncSession) -> None:
    """Company(1) → Engineering(2) → Backend(4); Company(1) → Marketing(3)."""
    for data in [
        _make_department(id=1, name="Company"),
        _make_department(id=2, name="Engineering", parent_id=1),
        _make_department(id=3, name="Marketing", parent_id=1),
        _make_department(id=4, name="Backend", parent_id=2),
    ]:
        db.add(Department(**data))
    await db.flush()


async def _seed_user(db: AsyncSession, **kwargs) -> User:
    user = User(**_make_user(**kwargs))
    db.add(user)
    await db.flush()
    return user


async def _audit_rows(db: AsyncSession) -> list[AuditTrail]:
    result = await db.execute(select(AuditTrail).order_by(AuditTrail.id))
    return list(result.scalars().all())


# ═════════════════════════════════════════════════════════════════════
# 1. QUERY SERVICE
# ═════════════════════════════════════════════════════════════════════


class TestDepartmentQueries:

    async def test_exists(self, db: AsyncSession):
        await _seed_hierarchy(db)
        assert await DepartmentQueryService.exists(db, 4)
        assert not await DepartmentQueryService.exists(db, 99)

    async def test_descendants_and_ancestors(self, db: AsyncSession):
        await _seed_hierarchy(db)
        descendants = await DepartmentQueryService.get_descendants(db, 1)
        assert [d.id for d in descendants] == [2, 3, 4]

        ancestors = await DepartmentQueryService.get_ancestors(db, 4, include_self=True)
        assert [a.name for a in ancestors] == ["Backend", "Engineering", "Company"]

    async def test_path_names(self, db: AsyncSession):
        await _seed_hierarchy(db)
        assert await DepartmentQueryService.get_path_names(db, 4) == [
            "Company", "Engineering", "Backend",
        ]

    async def test_unknown_department_raises(self, db: AsyncSession):
        await _seed_hierarchy(db)
        with pytest.raises(NotFoundException):
            await DepartmentQueryService.get_department(db, 99)

    async def test_empty_store(self, db: AsyncSession):
        tree = await load_tree(db)
        assert len(tree) == 0
        assert await DepartmentQueryService.get_roots(db) == []


# ═════════════════════════════════════════════════════════════════════
# 2. ADMIN SERVICE
# ═════════════════════════════════════════════════════════════════════


class TestDepartmentAdmin:

    async def test_create_under_parent(self, db: AsyncSession):
        await _seed_hierarchy(db)
        actor = await _seed_user(db, id=1, username="hr.admin", role=UserRole.hr)

        dept = await DepartmentAdminService.create_department(
            db, "  Payments ", 4, actor=actor,
        )

        assert dept.id is not None
        assert dept.name == "Payments"
        assert dept.parent_id == 4
        children = await DepartmentQueryService.get_children(db, 4)
        assert [c.name for c in children] == ["Payments"]

        rows = await _audit_rows(db)
        assert len(rows) == 1
        assert rows[0].action == "create"
        assert rows[0].actor_id == actor.id
        assert rows[0].new_values == {"name": "Payments", "parent_id": 4}

    async def test_create_under_missing_parent(self, db: AsyncSession):
        await _seed_hierarchy(db)
        with pytest.raises(NotFoundException):
            await DepartmentAdminService.create_department(db, "Orphan", 99)

    async def test_create_blank_name_rejected(self, db: AsyncSession):
        await _seed_hierarchy(db)
        with pytest.raises(InvalidOperationException):
            await DepartmentAdminService.create_department(db, "   ", 1)

    async def test_create_overlong_name_rejected(self, db: AsyncSession):
        await _seed_hierarchy(db)
        with pytest.raises(InvalidOperationException):
            await DepartmentAdminService.create_department(db, "x" * 151, 1)

    async def test_rename(self, db: AsyncSession):
        await _seed_hierarchy(db)
        dept = await DepartmentAdminService.update_department(db, 3, "Growth")
        assert dept.name == "Growth"

        rows = await _audit_rows(db)
        assert rows[-1].action == "update"
        assert rows[-1].old_values == {"name": "Marketing"}
        assert rows[-1].new_values == {"name": "Growth"}

    async def test_rename_unknown(self, db: AsyncSession):
        with pytest.raises(NotFoundException):
            await DepartmentAdminService.update_department(db, 99, "Nope")

    async def test_move(self, db: AsyncSession):
        await _seed_hierarchy(db)
        await DepartmentAdminService.move_department(db, 4, 3)

        ancestors = await DepartmentQueryService.get_ancestors(db, 4)
        assert [a.id for a in ancestors] == [3, 1]
        assert await DepartmentQueryService.get_children(db, 2) == []

        rows = await _audit_rows(db)
        assert rows[-1].action == "move"
        assert rows[-1].old_values == {"parent_id": 2}
        assert rows[-1].new_values == {"parent_id": 3}

    async def test_move_under_own_descendant_rejected(self, db: AsyncSession):
        await _seed_hierarchy(db)
        with pytest.raises(InvalidOperationException):
            await DepartmentAdminService.move_department(db, 2, 4)

        # Tree unchanged, no audit entry
        parent = await DepartmentQueryService.get_parent(db, 2)
        assert parent.id == 1
        assert await _audit_rows(db) == []

    async def test_move_under_self_rejected(self, db: AsyncSession):
        await _seed_hierarchy(db)
        with pytest.raises(InvalidOperationException):
            await DepartmentAdminService.move_department(db, 2, 2)

    async def test_move_to_missing_parent(self, db: AsyncSession):
        await _seed_hierarchy(db)
        with pytest.raises(NotFoundException):
            await DepartmentAdminService.move_department(db, 4, 99)

    async def test_delete_leaf(self, db: AsyncSession):
        await _seed_hierarchy(db)
        await DepartmentAdminService.delete_department(db, 4)

        assert not await DepartmentQueryService.exists(db, 4)
        rows = await _audit_rows(db)
        assert rows[-1].action == "delete"
        assert rows[-1].old_values == {"name": "Backend", "parent_id": 2}

    async def test_delete_with_children_rejected(self, db: AsyncSession):
        await _seed_hierarchy(db)
        with pytest.raises(InvalidOperationException):
            await DepartmentAdminService.delete_department(db, 2)
        assert await DepartmentQueryService.exists(db, 2)

    async def test_delete_unknown(self, db: AsyncSession):
        with pytest.raises(NotFoundException):
            await DepartmentAdminService.delete_department(db, 99)


# ═════════════════════════════════════════════════════════════════════
# 3. HTTP API
# ═════════════════════════════════════════════════════════════════════


class TestDepartmentAPI:

    async def _seed(self, db: AsyncSession) -> None:
        await _seed_hierarchy(db)
        await _seed_user(db, id=10, username="hr.admin", role=UserRole.hr,
                         department="Company", department_id=1)
        await _seed_user(db, id=11, username="eng.manager", role=UserRole.manager,
                         department="Engineering", department_id=2)
        await _seed_user(db, id=12, username="staff.one", role=UserRole.staff,
                         department="Backend", department_id=4)
        await db.commit()

    async def test_requires_auth(self, client):
        resp = await client.get("/api/v1/departments/roots")
        assert resp.status_code == 401

    async def test_expired_token_rejected(self, client, db):
        await self._seed(db)
        token = create_access_token(12, expired=True)
        resp = await client.get(
            "/api/v1/departments/roots",
            headers={"Authorization": f"Bearer {token}"},
        )
        assert resp.status_code == 401

    async def test_roots(self, client, db):
        await self._seed(db)
        resp = await client.get("/api/v1/departments/roots", headers=auth_headers_for(12))
        assert resp.status_code == 200
        assert [d["id"] for d in resp.json()["data"]] == [1]

    async def test_descendants_include_self(self, client, db):
        await self._seed(db)
        resp = await client.get(
            "/api/v1/departments/2/descendants",
            params={"include_self": "true"},
            headers=auth_headers_for(12),
        )
        assert resp.status_code == 200
        assert [d["name"] for d in resp.json()["data"]] == ["Engineering", "Backend"]

    async def test_path(self, client, db):
        await self._seed(db)
        resp = await client.get("/api/v1/departments/4/path", headers=auth_headers_for(12))
        assert resp.status_code == 200
        assert resp.json()["path"] == ["Company", "Engineering", "Backend"]

    async def test_parent_of_root_is_null(self, client, db):
        await self._seed(db)
        resp = await client.get("/api/v1/departments/1/parent", headers=auth_headers_for(12))
        assert resp.status_code == 200
        assert resp.json()["data"] is None

    async def test_unknown_department_is_problem_detail(self, client, db):
        await self._seed(db)
        resp = await client.get("/api/v1/departments/99", headers=auth_headers_for(12))
        assert resp.status_code == 404
        assert resp.headers["content-type"].startswith("application/problem+json")
        assert resp.json()["type"].endswith("/not-found")

    async def test_visible_for_manager(self, client, db):
        await self._seed(db)
        resp = await client.get(
            "/api/v1/departments/visible",
            headers=auth_headers_for(11, UserRole.manager),
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["role"] == "manager"
        assert body["visible_department_ids"] == [2, 4]

    async def test_create_requires_hr(self, client, db):
        await self._seed(db)
        resp = await client.post(
            "/api/v1/departments",
            json={"name": "Payments", "parent_id": 4},
            headers=auth_headers_for(11, UserRole.manager),
        )
        assert resp.status_code == 403

    async def test_role_comes_from_user_record(self, client, db):
        """A token claiming hr does not grant hr to a staff account."""
        await self._seed(db)
        resp = await client.post(
            "/api/v1/departments",
            json={"name": "Payments", "parent_id": 4},
            headers=auth_headers_for(12, UserRole.hr),
        )
        assert resp.status_code == 403

    async def test_create_as_hr(self, client, db):
        await self._seed(db)
        resp = await client.post(
            "/api/v1/departments",
            json={"name": "Payments", "parent_id": 4},
            headers=auth_headers_for(10, UserRole.hr),
        )
        assert resp.status_code == 201
        assert resp.json()["data"]["parent_id"] == 4

    async def test_create_validation_error(self, client, db):
        await self._seed(db)
        resp = await client.post(
            "/api/v1/departments",
            json={"name": "", "parent_id": 4},
            headers=auth_headers_for(10, UserRole.hr),
        )
        assert resp.status_code == 422

    async def test_move_cycle_is_400(self, client, db):
        await self._seed(db)
        resp = await client.put(
            "/api/v1/departments/2/move",
            json={"new_parent_id": 4},
            headers=auth_headers_for(10, UserRole.hr),
        )
        assert resp.status_code == 400
        assert resp.json()["type"].endswith("/invalid-operation")

        check = await client.get("/api/v1/departments/2/parent", headers=auth_headers_for(12))
        assert check.json()["data"]["id"] == 1

    async def test_rename_and_delete(self, client, db):
        await self._seed(db)
        headers = auth_headers_for(10, UserRole.hr)

        resp = await client.put("/api/v1/departments/3", json={"name": "Growth"}, headers=headers)
        assert resp.status_code == 200
        assert resp.json()["data"]["name"] == "Growth"

        resp = await client.delete("/api/v1/departments/3", headers=headers)
        assert resp.status_code == 200

        resp = await client.get("/api/v1/departments/3", headers=headers)
        assert resp.status_code == 404

    async def test_delete_with_children_is_400(self, client, db):
        await self._seed(db)
        resp = await client.delete(
            "/api/v1/departments/2", headers=auth_headers_for(10, UserRole.hr),
        )
        assert resp.status_code == 400


# ═════════════════════════════════════════════════════════════════════
# 4. CONCURRENT ADMIN SESSIONS
# ═════════════════════════════════════════════════════════════════════


class TestConcurrentAdmin:
    """Each mutation is committed before the next caller checks the tree."""

    async def test_move_is_committed_before_returning(self, db, session_factory):
        await _seed_hierarchy(db)
        await db.commit()

        async with session_factory() as first:
            await DepartmentAdminService.move_department(first, 2, 3)
            # Nothing left for the caller's transaction to undo
            await first.rollback()

        async with session_factory() as second:
            with pytest.raises(InvalidOperationException):
                await DepartmentAdminService.move_department(second, 3, 2)

        async with session_factory() as check:
            tree = await load_tree(check)
            assert tree.get_parent(2).id == 3
            assert tree.get_parent(3).id == 1
            assert [a.id for a in tree.get_ancestors(2)] == [3, 1]

    async def test_overlapping_moves_cannot_form_a_cycle(self, db, session_factory):
        await _seed_hierarchy(db)
        await db.commit()

        async def _move(department_id: int, new_parent_id: int) -> str:
            async with session_factory() as session:
                try:
                    await DepartmentAdminService.move_department(
                        session, department_id, new_parent_id,
                    )
                except InvalidOperationException:
                    return "rejected"
                return "moved"

        outcomes = await asyncio.gather(_move(2, 3), _move(3, 2))
        assert sorted(outcomes) == ["moved", "rejected"]

        async with session_factory() as check:
            tree = await load_tree(check)
            for dept_id in tree.all_ids():
                tree.get_ancestors(dept_id)

    async def test_create_is_committed_before_returning(self, db, session_factory):
        await _seed_hierarchy(db)
        await db.commit()

        async with session_factory() as first:
            dept = await DepartmentAdminService.create_department(first, "Payments", 4)
            await first.rollback()

        async with session_factory() as check:
            assert await DepartmentQueryService.exists(check, dept.id)


# ═════════════════════════════════════════════════════════════════════
# 5. RENAME AND MEMBER RECORDS
# ═════════════════════════════════════════════════════════════════════


class TestRenameMembers:

    async def test_rename_updates_member_department_names(self, db: AsyncSession):
        await _seed_hierarchy(db)
        linked = await _seed_user(db, id=20, username="linked", department="Marketing",
                                  department_id=3)
        by_name = await _seed_user(db, id=21, username="by.name", department=" marketing ")
        other = await _seed_user(db, id=22, username="other", department="Engineering",
                                 department_id=2)

        await DepartmentAdminService.update_department(db, 3, "Growth")

        for user_id, expected in [(20, "Growth"), (21, "Growth"), (22, "Engineering")]:
            result = await db.execute(select(User.department).where(User.id == user_id))
            assert result.scalar_one() == expected
        assert linked.department == "Growth"
        assert by_name.department == "Growth"
        assert other.department == "Engineering"

    async def test_rename_leaves_same_named_department_members_alone(self, db: AsyncSession):
        await _seed_hierarchy(db)
        db.add(Department(**_make_department(id=5, name="Marketing", parent_id=2)))
        await db.flush()
        await _seed_user(db, id=20, username="first.marketing", department="Marketing",
                         department_id=3)
        await _seed_user(db, id=21, username="second.marketing", department="Marketing",
                         department_id=5)

        await DepartmentAdminService.update_department(db, 5, "Dev Marketing")

        result = await db.execute(select(User.id, User.department).order_by(User.id))
        assert [tuple(row) for row in result.all()] == [(20, "Marketing"), (21, "Dev Marketing")]
