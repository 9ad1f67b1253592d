"""Loading and updating the persisted application settings."""

import logging
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from visidash.server.config import get_settings
from visidash.server.models import AppSetting
from visidash.server.schemas import SettingsUpdate

logger = logging.getLogger(__name__)

# Free-text fields: trimmed, and stored as "" when blank
_TRIMMED_TEXT_FIELDS = (
    "webhook_url",
    "prompt_helper_webhook_url",
    "ai_provider_url",
    "ai_json_structuring_prompt",
    "ai_system_prompt",
    "ai_helper_system_prompt",
)

# Credentials: trimmed, and stored as NULL when blank
_TRIMMED_SECRET_FIELDS = (
    "webhook_username",
    "webhook_password",
    "prompt_helper_username",
    "prompt_helper_password",
    "ai_provider_api_key",
)

# Fields accepted by the legacy POST /api/settings
LEGACY_FIELDS = frozenset({
    "webhook_url",
    "webhook_username",
    "webhook_password",
    "webhook_headers",
    "timeout_seconds",
    "timeout_enabled",
    "auto_save_queries",
    "prompt_helper_webhook_url",
    "prompt_helper_username",
    "prompt_helper_password",
    "prompt_helper_headers",
})


def fallback_settings() -> AppSetting:
    """Build an unsaved AppSetting from environment variables.

    Used when the database cannot be reached so the API keeps answering.
    """
    env = get_settings()
    return AppSetting(
        id=None,
        webhook_url=env.webhook_url,
        webhook_username=env.webhook_username or None,
        webhook_password=env.webhook_password or None,
        webhook_headers=None,
        timeout_seconds=env.webhook_timeout_seconds,
        timeout_enabled=False,
        auto_save_queries=True,
        prompt_helper_webhook_url="",
        prompt_helper_username=None,
        prompt_helper_password=None,
        prompt_helper_headers=None,
        ai_provider_url=env.ai_provider_url or None,
        ai_provider_api_key=env.ai_provider_api_key or None,
    )


async def get_or_create_settings(db: AsyncSession) -> AppSetting:
    """Return the settings row, creating it on first use.

    Falls back to environment-derived settings if the database fails.
    """
    try:
        result = await db.execute(
            select(AppSetting).order_by(AppSetting.created_at).limit(1)
        )
        existing = result.scalar_one_or_none()
        if existing:
            return existing

        setting = AppSetting()
        db.add(setting)
        await db.flush()
        return setting
    except SQLAlchemyError as e:
        logger.error(f"Failed to access settings table, using environment fallback: {e}")
        await db.rollback()
        return fallback_settings()


def provider_url(setting: AppSetting) -> Optional[str]:
    """The AI provider URL from settings, else from the environment."""
    return setting.ai_provider_url or get_settings().ai_provider_url or None


def provider_api_key(setting: AppSetting) -> Optional[str]:
    """The AI provider credential from settings, else from the environment."""
    return setting.ai_provider_api_key or get_settings().ai_provider_api_key or None


def _normalize(field: str, value: Any) -> Any:
    if field in _TRIMMED_TEXT_FIELDS:
        return (value or "").strip()
    if field in _TRIMMED_SECRET_FIELDS:
        return (value or "").strip() or None
    return value


def normalized_changes(
    update: SettingsUpdate, allowed: Optional[frozenset[str]] = None
) -> dict[str, Any]:
    """Column values for the fields the caller actually sent.

    Args:
        update: Validated request body.
        allowed: Restrict to these fields (None allows all).

    Returns:
        Mapping of AppSetting attribute name to normalized value.
    """
    data = update.model_dump(exclude_unset=True, exclude={"user_id"})
    changes = {}
    for field, value in data.items():
        if allowed is not None and field not in allowed:
            continue
        changes[field] = _normalize(field, value)
    return changes


async def save_settings(db: AsyncSession, changes: dict[str, Any]) -> AppSetting:
    """Apply changes to the settings row (creating it if needed) and commit."""
    setting = await get_or_create_settings(db)
    if setting.id is None:
        # Fallback object; try to persist it as a new row
        setting = AppSetting()
        db.add(setting)
    for field, value in changes.items():
        setattr(setting, field, value)
    await db.commit()
    logger.info(f"Settings updated: {sorted(changes)}")
    return setting
