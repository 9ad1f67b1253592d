# src/visidash/server/routes/settings.py
"""Application settings routes."""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from visidash.ai_client import is_absolute_url
from visidash.server.app_settings import (
    LEGACY_FIELDS,
    get_or_create_settings,
    normalized_changes,
    save_settings,
)
from visidash.server.authorization import require_admin
from visidash.server.database import get_session
from visidash.server.schemas import SettingsOut, SettingsUpdate

router = APIRouter()


async def _validated_update(
    payload: SettingsUpdate, db: AsyncSession, allowed=None
) -> SettingsOut:
    if payload.webhook_url and payload.webhook_url.strip():
        if not is_absolute_url(payload.webhook_url.strip()):
            raise HTTPException(
                status_code=400, detail="Invalid webhookUrl format. Must be a valid URL."
            )

    await require_admin(payload.user_id, db)

    setting = await save_settings(db, normalized_changes(payload, allowed))
    return SettingsOut.model_validate(setting)


@router.get("", response_model=SettingsOut)
async def read_settings(db: AsyncSession = Depends(get_session)):
    """Current settings, or environment-derived ones if the database is down."""
    setting = await get_or_create_settings(db)
    return SettingsOut.model_validate(setting)


@router.put("", response_model=SettingsOut)
async def update_settings(payload: SettingsUpdate, db: AsyncSession = Depends(get_session)):
    """Update any subset of the settings, AI parameters included. Admin only."""
    return await _validated_update(payload, db)


@router.post("", response_model=SettingsOut)
async def save_connection_settings(
    payload: SettingsUpdate, db: AsyncSession = Depends(get_session)
):
    """Update webhook, prompt-helper and timeout settings only. Admin only."""
    return await _validated_update(payload, db, LEGACY_FIELDS)
