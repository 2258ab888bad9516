"""Shared test fixtures — async DB, client, auth helpers, factories.

Reusable across all test modules (departments, visibility, dashboard).
Uses SQLite + aiosqlite for fast isolated tests without PostgreSQL.
"""

from __future__ import annotations

import os

# Set test JWT_SECRET before any other import touches pydantic-settings
os.environ.setdefault("JWT_SECRET", "test-secret-for-ci-do-not-use-in-production")

from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator, Optional

import pytest
from httpx import ASGITransport, AsyncClient
from jose import jwt
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from backend.common.constants import TaskStatus, TaskType, UserRole
from backend.config import settings
from backend.database import Base, get_db
from backend.main import create_app

# Import ALL model modules so every table is registered on Base.metadata
import backend.common.audit  # noqa: F401
import backend.core.models  # noqa: F401
import backend.departments.models  # noqa: F401

# ── Test database (SQLite in-memory) ────────────────────────────────

TEST_DATABASE_URL = "sqlite+aiosqlite://"


@pytest.fixture
async def engine():
    """A fresh in-memory database per test, bound to the test's event loop."""
    test_engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture(autouse=True)
def _reset_rate_limiter():
    """Reset rate limiter storage between tests to prevent cross-test interference."""
    from backend.common.rate_limit import limiter

    limiter.reset()
    yield


# ── FastAPI test client ─────────────────────────────────────────────

@pytest.fixture
async def app(session_factory):
    """Create a fresh app instance with DB dependency overridden."""

    async def _override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    application = create_app()
    application.dependency_overrides[get_db] = _override_get_db
    yield application
    application.dependency_overrides.clear()


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client wired to the test app."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


# ── Database session (for direct DB operations in tests) ────────────

@pytest.fixture
async def db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session
        await session.commit()


# ── Model factories ─────────────────────────────────────────────────

def _make_department(
    *,
    id: int,
    name: str = "Engineering",
    parent_id: Optional[int] = None,
) -> dict:
    return dict(id=id, name=name, parent_id=parent_id)


def _make_user(
    *,
    id: int,
    username: str = "test.user",
    role: UserRole = UserRole.staff,
    department: Optional[str] = "Engineering",
    department_id: Optional[int] = None,
    is_active: bool = True,
) -> dict:
    return dict(
        id=id,
        username=username,
        email=f"{username}@syncup.test",
        role=role,
        department=department,
        department_id=department_id,
        is_active=is_active,
        created_at=datetime.now(timezone.utc),
    )


def _make_project(
    *,
    id: int,
    name: str = "Q4 Campaign",
    owner_id: int,
    is_deleted: bool = False,
) -> dict:
    now = datetime.now(timezone.utc)
    return dict(
        id=id,
        name=name,
        owner_id=owner_id,
        is_deleted=is_deleted,
        created_at=now,
        updated_at=now,
    )


def _make_task(
    *,
    id: int,
    owner_id: int,
    title: str = "Task",
    status: TaskStatus = TaskStatus.todo,
    task_type: Optional[TaskType] = TaskType.feature,
    priority: Optional[int] = None,
    project_id: Optional[int] = None,
    due_at: Optional[datetime] = None,
    updated_at: Optional[datetime] = None,
    is_deleted: bool = False,
) -> dict:
    now = datetime.now(timezone.utc)
    return dict(
        id=id,
        title=title,
        owner_id=owner_id,
        status=status,
        task_type=task_type,
        priority=priority,
        project_id=project_id,
        due_at=due_at,
        is_deleted=is_deleted,
        created_at=now,
        updated_at=updated_at or now,
    )


# ── Auth helpers ────────────────────────────────────────────────────

TOKEN_LIFETIME = timedelta(hours=24)


def create_access_token(
    user_id: int,
    role: UserRole = UserRole.staff,
    expired: bool = False,
    token_type: str = "access",
) -> str:
    """Generate a JWT access token for testing."""
    if expired:
        exp = datetime.now(timezone.utc) - timedelta(hours=1)
    else:
        exp = datetime.now(timezone.utc) + TOKEN_LIFETIME
    payload = {
        "sub": str(user_id),
        "role": role.value,
        "type": token_type,
        "exp": exp,
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def auth_headers_for(user_id: int, role: UserRole = UserRole.staff) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user_id, role=role)}"}
