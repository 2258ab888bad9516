"""Auth dependencies — bearer JWT validation and role enforcement.

Tokens are issued by the identity provider; this service only verifies
them and loads the matching active user. The resolved ``User`` is handed
to routes (and from there to services) as an explicit argument.
"""

from __future__ import annotations

import logging
from typing import Callable

from fastapi import Depends, Request
from fastapi.exceptions import HTTPException
from jose import ExpiredSignatureError, JWTError, jwt
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.common.constants import UserRole
from backend.common.exceptions import ForbiddenException
from backend.config import settings
from backend.core.models import User
from backend.database import get_db

logger = logging.getLogger(__name__)


def _extract_bearer(request: Request) -> str:
    """Extract Bearer token from Authorization header."""
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing or invalid Authorization header.")
    return auth_header[7:]


# ── Core dependency ─────────────────────────────────────────────────

async def get_current_user(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> User:
    """Validate the JWT and return the authenticated, active User."""
    token = _extract_bearer(request)

    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
        )
    except ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token has expired.")
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid token.")

    if payload.get("type") != "access":
        raise HTTPException(status_code=401, detail="Invalid token type.")

    try:
        user_id = int(payload["sub"])
    except (KeyError, TypeError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid token subject.")

    result = await db.execute(
        select(User).where(User.id == user_id, User.is_active.is_(True)),
    )
    user = result.scalars().first()
    if user is None:
        raise HTTPException(status_code=401, detail="User account is inactive or not found.")

    return user


# ── Role-based dependency ───────────────────────────────────────────

def require_role(*allowed_roles: UserRole) -> Callable:
    """Return a FastAPI dependency that enforces role membership.

    The role comes from the stored user record, not from the token.
    """

    async def _check(user: User = Depends(get_current_user)) -> User:
        if user.role not in allowed_roles:
            logger.warning(
                "User %s with role %s denied; required %s",
                user.id, user.role.value, [r.value for r in allowed_roles],
            )
            raise ForbiddenException(
                detail=f"Role '{user.role.value}' is not permitted. Required: {[r.value for r in allowed_roles]}.",
            )
        return user

    return _check
