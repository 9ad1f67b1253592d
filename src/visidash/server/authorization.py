"""Central authorization module.

The acting user's id arrives in the request; the users table decides whether
that user may perform admin operations.
"""

from typing import Optional
from uuid import UUID

from fastapi import HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from visidash.server.models import User

ADMIN_REQUIRED = "Unauthorized: Admin access required"


async def get_user(user_id: UUID, db: AsyncSession) -> Optional[User]:
    """Look up a user by id. Returns None if there is no such user."""
    result = await db.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def require_admin(
    user_id: UUID, db: AsyncSession, detail: str = ADMIN_REQUIRED
) -> User:
    """Return the user if they are an admin.

    Raises 403 both for unknown users and for non-admins, so the caller
    cannot tell which ids exist.
    """
    user = await get_user(user_id, db)
    if user is None or not user.is_admin:
        raise HTTPException(status_code=403, detail=detail)
    return user


async def require_user(user_id: UUID, db: AsyncSession) -> User:
    """Return the user or raise 404."""
    user = await get_user(user_id, db)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    return user
