# src/visidash/server/routes/auth.py
"""Registration, login and onboarding routes."""

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from visidash.server.auth_utils import hash_password_async, verify_password_async
from visidash.server.authorization import require_user
from visidash.server.database import get_session
from visidash.server.models import AppSetting, InvitationCode, User, utcnow
from visidash.server.schemas import (
    AuthResponse,
    LoginRequest,
    RefreshRequest,
    RefreshResponse,
    RegisterRequest,
    UserCountResponse,
    UserOut,
)

logger = logging.getLogger(__name__)

router = APIRouter()

INVALID_CREDENTIALS = "Invalid email or password"


async def _needs_setup(db: AsyncSession) -> bool:
    """True when no settings row has a webhook or AI provider URL."""
    try:
        result = await db.execute(
            select(func.count())
            .select_from(AppSetting)
            .where(or_(AppSetting.webhook_url != "", AppSetting.ai_provider_url != ""))
        )
        return result.scalar_one() == 0
    except SQLAlchemyError as e:
        logger.warning(f"Settings lookup failed during login, assuming setup needed: {e}")
        return True


# -----------------------------------------------------------------------------
# Routes
# -----------------------------------------------------------------------------


@router.get("/check-users", response_model=UserCountResponse)
async def check_users(db: AsyncSession = Depends(get_session)):
    """Count registered users. The signup page hides the code field at zero."""
    try:
        result = await db.execute(select(func.count()).select_from(User))
        return UserCountResponse(user_count=result.scalar_one())
    except SQLAlchemyError as e:
        # Report zero so the first user can still register
        logger.error(f"Failed to check user count: {e}")
        return UserCountResponse(user_count=0)


@router.post("/register", response_model=AuthResponse)
async def register(payload: RegisterRequest, db: AsyncSession = Depends(get_session)):
    """Create an account. The first account is an admin and needs no code."""
    existing = await db.execute(select(User).where(User.email == payload.email))
    if existing.scalar_one_or_none():
        raise HTTPException(status_code=409, detail="User with this email already exists")

    count = await db.execute(select(func.count()).select_from(User))
    is_admin = count.scalar_one() == 0

    if not is_admin:
        if not payload.invitation_code:
            raise HTTPException(status_code=400, detail="Invitation code is required")

        invitation = await db.get(InvitationCode, payload.invitation_code)
        if invitation is None:
            raise HTTPException(status_code=400, detail="Invalid invitation code")
        if not invitation.is_redeemable():
            raise HTTPException(
                status_code=400, detail="Invitation code is expired or already used"
            )

        invitation.used_by = payload.email
        invitation.used_at = utcnow()

    user = User(
        email=payload.email,
        name=payload.name,
        password_hash=await hash_password_async(payload.password),
        is_admin=is_admin,
    )
    db.add(user)
    await db.commit()

    logger.info(f"Registered user {user.email} (admin={is_admin})")
    return AuthResponse(
        user=UserOut.model_validate(user),
        message=(
            "Welcome! You are the first user and have been granted admin privileges."
            if is_admin
            else "Account created successfully"
        ),
        requires_setup=is_admin,
    )


@router.post("/login", response_model=AuthResponse)
async def login(payload: LoginRequest, db: AsyncSession = Depends(get_session)):
    """Check email and password and return the user's profile."""
    result = await db.execute(select(User).where(User.email == payload.email))
    user = result.scalar_one_or_none()

    if not user or not await verify_password_async(payload.password, user.password_hash):
        raise HTTPException(status_code=401, detail=INVALID_CREDENTIALS)

    requires_setup = await _needs_setup(db) if user.is_admin else False

    return AuthResponse(
        user=UserOut.model_validate(user),
        message="Login successful",
        requires_setup=requires_setup,
    )


@router.post("/refresh", response_model=RefreshResponse)
async def refresh(payload: RefreshRequest, db: AsyncSession = Depends(get_session)):
    """Reload the stored profile of a signed-in user."""
    user = await require_user(payload.user_id, db)
    return RefreshResponse(user=UserOut.model_validate(user))
