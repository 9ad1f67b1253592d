# src/visidash/server/routes/admin.py
"""Admin routes: user management, invitation codes and provider checks."""

import logging
from datetime import timedelta
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from visidash.ai_client import TransportError, invoke_ai_provider
from visidash.server.app_settings import get_or_create_settings, provider_api_key, provider_url
from visidash.server.auth_utils import hash_password_async
from visidash.server.authorization import require_admin, require_user
from visidash.server.database import get_session
from visidash.server.models import (
    InvitationCode,
    User,
    generate_invitation_code,
    utcnow,
)
from visidash.server.schemas import (
    CreateInvitationRequest,
    InvitationCodeOut,
    MakeAdminRequest,
    MakeAdminResponse,
    PromotedUser,
    ProviderTestRequest,
    ProviderTestResponse,
    ResetPasswordRequest,
    ResetPasswordResponse,
    RevokedInvitation,
    SavedQueryOut,
    UserQueries,
    UserStats,
    UserSummary,
)

logger = logging.getLogger(__name__)

router = APIRouter()

MAX_CODE_ATTEMPTS = 20
PROVIDER_TEST_TIMEOUT_MS = 5000


# -----------------------------------------------------------------------------
# Users
# -----------------------------------------------------------------------------


@router.get("/users", response_model=list[UserStats])
async def list_users(db: AsyncSession = Depends(get_session)):
    """All users, newest first, in the dashboard's UserStats shape."""
    result = await db.execute(select(User).order_by(User.created_at.desc()))
    return [
        UserStats(
            id=user.id,
            email=user.email,
            name=user.name,
            query_count=user.query_count,
            created_at=user.created_at,
            last_active=user.updated_at,
            is_admin=user.is_admin,
        )
        for user in result.scalars().all()
    ]


@router.post("/make-admin", response_model=MakeAdminResponse)
async def make_admin(payload: MakeAdminRequest, db: AsyncSession = Depends(get_session)):
    """Promote another user to admin."""
    await require_admin(payload.user_id, db)
    target = await require_user(payload.target_user_id, db)

    target.is_admin = True
    await db.commit()

    logger.info(f"User {target.email} promoted to admin by {payload.user_id}")
    return MakeAdminResponse(
        message=f"User {target.email} is now an admin",
        user=PromotedUser.model_validate(target),
    )


@router.post("/users/{user_id}/reset-password", response_model=ResetPasswordResponse)
async def reset_password(
    user_id: UUID,
    payload: ResetPasswordRequest,
    db: AsyncSession = Depends(get_session),
):
    """Admin sets a new password for a user."""
    await require_admin(payload.admin_user_id, db)
    target = await require_user(user_id, db)

    target.password_hash = await hash_password_async(payload.new_password)
    await db.commit()

    return ResetPasswordResponse(
        message=f"Password reset successfully for {target.email}",
        user=UserSummary.model_validate(target),
    )


@router.get("/queries", response_model=list[UserQueries])
async def all_queries(db: AsyncSession = Depends(get_session)):
    """Every user's saved queries, including deleted ones, newest first."""
    result = await db.execute(
        select(User).options(selectinload(User.saved_queries)).order_by(User.created_at)
    )
    return [
        UserQueries(
            user=UserSummary.model_validate(user),
            queries=[
                SavedQueryOut.model_validate(q)
                for q in sorted(user.saved_queries, key=lambda q: q.updated_at, reverse=True)
            ],
        )
        for user in result.scalars().all()
    ]


# -----------------------------------------------------------------------------
# Invitation codes
# -----------------------------------------------------------------------------


@router.get("/invitation-codes", response_model=list[InvitationCodeOut])
async def list_invitation_codes(db: AsyncSession = Depends(get_session)):
    """All invitation codes, newest first."""
    result = await db.execute(
        select(InvitationCode).order_by(InvitationCode.created_at.desc())
    )
    return result.scalars().all()


@router.post("/invitation-codes", response_model=InvitationCodeOut)
async def create_invitation_code(
    payload: CreateInvitationRequest,
    db: AsyncSession = Depends(get_session),
):
    """Issue a new unique invitation code."""
    for _ in range(MAX_CODE_ATTEMPTS):
        code = generate_invitation_code()
        if await db.get(InvitationCode, code) is None:
            break
    else:
        logger.error(f"No free invitation code after {MAX_CODE_ATTEMPTS} attempts")
        raise HTTPException(
            status_code=500, detail="Failed to generate unique invitation code"
        )

    now = utcnow()
    invitation = InvitationCode(
        code=code,
        created_at=now,
        expires_at=now + timedelta(days=payload.expires_in_days),
    )
    db.add(invitation)
    await db.commit()

    logger.info(f"Created invitation code {code} (expires in {payload.expires_in_days} days)")
    return invitation


@router.patch("/invitation-codes/{code}", response_model=RevokedInvitation)
async def revoke_invitation_code(code: str, db: AsyncSession = Depends(get_session)):
    """Revoke an invitation code so it can no longer be redeemed."""
    invitation = await db.get(InvitationCode, code)
    if invitation is None:
        raise HTTPException(status_code=404, detail="Invitation code not found")

    invitation.revoked = True
    await db.commit()
    return invitation


# -----------------------------------------------------------------------------
# AI provider
# -----------------------------------------------------------------------------


@router.post("/ai-provider/test", response_model=ProviderTestResponse)
async def test_ai_provider(
    payload: ProviderTestRequest,
    db: AsyncSession = Depends(get_session),
):
    """Send a minimal prompt to the configured provider and report what came back."""
    await require_admin(payload.user_id, db, detail="Unauthorized")

    setting = await get_or_create_settings(db)
    url = provider_url(setting)
    if not url:
        raise HTTPException(status_code=400, detail="No AI provider configured")

    try:
        result = await invoke_ai_provider(
            url,
            provider_api_key(setting),
            {"prompt": "Hello"},
            timeout_ms=PROVIDER_TEST_TIMEOUT_MS,
        )
    except TransportError as e:
        logger.error(f"AI provider test failed: {e}")
        raise HTTPException(status_code=502, detail="Failed to contact AI provider")

    return ProviderTestResponse(ok=result.ok, status=result.status, body=result.body)
