# src/visidash/server/routes/proxy.py
"""Routes that forward dashboard requests to the configured webhook or AI provider."""

import base64
import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse, Response
from sqlalchemy.ext.asyncio import AsyncSession

from visidash.ai_client import (
    InvocationResult,
    TransportError,
    TransportTimeout,
    invoke_ai_provider,
    is_absolute_url,
)
from visidash.server.app_settings import (
    get_or_create_settings,
    provider_api_key,
    provider_url,
)
from visidash.server.database import get_session
from visidash.server.models import AppSetting

logger = logging.getLogger(__name__)

router = APIRouter()

MIN_TIMEOUT_SECONDS = 5
MAX_TIMEOUT_SECONDS = 600

# Used when the matching setting is unset
AI_PARAMETER_DEFAULTS = {
    "temperature": 0.7,
    "top_p": 1.0,
    "max_tokens": 4096,
    "stream": False,
    "k": 5,
    "retrieval_method": "none",
    "frequency_penalty": 0.0,
    "presence_penalty": 0.0,
}


def basic_auth_header(username: Optional[str], password: Optional[str]) -> Optional[str]:
    """Authorization value for HTTP basic auth, or None unless both parts are set."""
    if not username or not password:
        return None
    credentials = base64.b64encode(f"{username}:{password}".encode("utf-8")).decode("ascii")
    return f"Basic {credentials}"


def ai_parameters(setting: AppSetting) -> dict[str, Any]:
    """Generation parameters merged into payloads sent to the AI provider."""
    params = {
        "temperature": setting.ai_temperature,
        "top_p": setting.ai_top_p,
        "max_tokens": setting.ai_max_tokens,
        "stream": setting.ai_stream,
        "k": setting.ai_k,
        "retrieval_method": setting.ai_retrieval_method,
        "frequency_penalty": setting.ai_frequency_penalty,
        "presence_penalty": setting.ai_presence_penalty,
    }
    merged = {
        key: AI_PARAMETER_DEFAULTS[key] if value is None else value
        for key, value in params.items()
    }

    if setting.ai_system_prompt:
        merged["system"] = setting.ai_system_prompt
    if setting.ai_disable_token_count:
        merged["stream_options"] = {"include_usage": False}
    elif setting.ai_stream_options is not None:
        merged["stream_options"] = setting.ai_stream_options
    if setting.ai_stop is not None:
        merged["stop"] = setting.ai_stop
    return merged


def query_timeout_ms(setting: AppSetting) -> Optional[int]:
    """Deadline for the query proxy, or None when timeouts are disabled."""
    if not setting.timeout_enabled:
        return None
    seconds = min(MAX_TIMEOUT_SECONDS, max(MIN_TIMEOUT_SECONDS, setting.timeout_seconds))
    return seconds * 1000


def relay(result: InvocationResult):
    """Turn an upstream result into a response with the same status.

    Text bodies keep the upstream Content-Type.
    """
    if result.body_is_json:
        return JSONResponse(content=result.body, status_code=result.status)
    return Response(
        content=result.body,
        status_code=result.status,
        media_type=result.content_type or "text/plain; charset=utf-8",
    )


async def _read_json(request: Request) -> Any:
    try:
        return await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON payload")


@router.post("/query")
async def proxy_query(request: Request, db: AsyncSession = Depends(get_session)):
    """Forward a dashboard question to the webhook, or to the AI provider if no webhook is set."""
    payload = await _read_json(request)

    setting = await get_or_create_settings(db)
    ai_url = (provider_url(setting) or "").strip()
    target = (setting.webhook_url or "").strip() or ai_url
    if not target:
        raise HTTPException(
            status_code=400, detail="No webhook or AI provider URL has been configured yet."
        )

    headers = {}
    basic = basic_auth_header(setting.webhook_username, setting.webhook_password)
    if basic:
        headers["Authorization"] = basic

    # The provider key only goes to the provider, and replaces basic auth there
    api_key = None
    key = provider_api_key(setting)
    if key and target == ai_url:
        api_key = key
        if isinstance(payload, dict):
            payload = {**payload, **ai_parameters(setting)}

    try:
        result = await invoke_ai_provider(
            target,
            api_key,
            payload,
            headers=headers,
            timeout_ms=query_timeout_ms(setting),
        )
    except TransportTimeout:
        raise HTTPException(status_code=504, detail="Webhook request timed out")
    except TransportError as e:
        logger.error(f"Failed to reach webhook: {e}")
        raise HTTPException(status_code=502, detail="Failed to reach webhook")

    return relay(result)


@router.post("/prompt-helper")
async def proxy_prompt_helper(request: Request, db: AsyncSession = Depends(get_session)):
    """Forward a prompt-helper request to the AI provider or the prompt-helper webhook."""
    setting = await get_or_create_settings(db)
    target = (provider_url(setting) or setting.prompt_helper_webhook_url or "").strip()
    if not target:
        raise HTTPException(
            status_code=400, detail="Prompt helper webhook URL or AI provider not configured"
        )
    if not is_absolute_url(target):
        raise HTTPException(
            status_code=400, detail="Invalid webhook / AI provider URL configured"
        )

    payload = await _read_json(request)

    headers = dict(setting.prompt_helper_headers or {})
    basic = basic_auth_header(setting.prompt_helper_username, setting.prompt_helper_password)
    if basic:
        headers["Authorization"] = basic

    try:
        result = await invoke_ai_provider(
            target, provider_api_key(setting), payload, headers=headers
        )
    except TransportError as e:
        logger.error(f"Prompt helper proxy error: {e}")
        raise HTTPException(
            status_code=500, detail="Failed to proxy request to prompt helper webhook"
        )

    if not result.ok:
        raise HTTPException(
            status_code=result.status,
            detail=f"Webhook responded with {result.status}: {result.status_text or ''}",
        )
    return relay(result)
