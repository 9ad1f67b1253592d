"""Client for the external AI provider.

One call to ``invoke_ai_provider`` performs exactly one outbound HTTP request
with a bounded time budget. Whatever the provider answers, 4xx and 5xx
included, comes back as an ``InvocationResult``. Only a failure to complete
the exchange (connection refused, DNS, malformed URL, deadline) raises.

Usage:
    from visidash.ai_client import invoke_ai_provider

    result = await invoke_ai_provider(url, api_key, {"prompt": "Hello"})
    if result.ok:
        print(result.body)
"""

import asyncio
import json
import logging
import re
from collections.abc import Mapping
from typing import Any, Optional

import httpx
from pydantic import BaseModel, Field

from visidash.server.config import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MS = 45000

_BEARER_PREFIX = re.compile(r"^bearer\s+", re.IGNORECASE)


class TransportError(Exception):
    """Raised when the request to the provider could not be completed."""

    pass


class TransportTimeout(TransportError):
    """Raised when the provider did not answer within the time budget."""

    pass


class InvocationResult(BaseModel):
    """Normalized outcome of a provider call that produced a response."""

    ok: bool = Field(..., description="True for 2xx/3xx responses")
    status: int = Field(..., description="HTTP status code")
    status_text: Optional[str] = Field(default=None, description="Reason phrase")
    body: Any = Field(..., description="Parsed JSON, or the raw text if not JSON")
    body_is_json: bool = Field(default=False, description="Whether body was parsed")
    content_type: Optional[str] = Field(default=None, description="Upstream Content-Type")


def normalize_bearer_token(credential: str) -> str:
    """Build an Authorization value from a raw or already-prefixed token.

    "abc123", "Bearer abc123" and " bearer   abc123 " all give
    "Bearer abc123".
    """
    cleaned = _BEARER_PREFIX.sub("", credential.strip(), count=1).strip()
    return f"Bearer {cleaned}"


def build_headers(
    api_key: Optional[str] = None,
    extra_headers: Optional[Mapping[str, str]] = None,
) -> httpx.Headers:
    """Build the outbound header set.

    Args:
        api_key: Optional provider credential, with or without a Bearer prefix.
        extra_headers: Caller headers, layered over the JSON content type.

    Returns:
        Case-insensitive headers ready for the request.
    """
    headers = httpx.Headers({"Content-Type": "application/json"})
    if extra_headers:
        headers.update(extra_headers)
    if api_key:
        headers["Authorization"] = normalize_bearer_token(api_key)
    return headers


def _reject_constant(name: str) -> Any:
    raise ValueError(f"{name} is not valid JSON")


def decode_body(text: str) -> tuple[Any, bool]:
    """Parse a response body as strict JSON, falling back to the raw text.

    NaN and Infinity literals are rejected, and so is nesting too deep to
    parse; both come back as text.

    Returns:
        (value, is_json) where value is the parsed structure when is_json is
        True and the untouched text otherwise.
    """
    try:
        return json.loads(text, parse_constant=_reject_constant), True
    except (ValueError, RecursionError):
        return text, False


def is_absolute_url(value: str) -> bool:
    """True for URLs with both a scheme and a host."""
    try:
        url = httpx.URL(value)
    except httpx.InvalidURL:
        return False
    return bool(url.scheme and url.host)


def is_success_status(status: int) -> bool:
    """2xx and 3xx count as success; no finer split is made here."""
    return 200 <= status < 400


async def _send(
    client: Optional[httpx.AsyncClient],
    method: str,
    url: str,
    headers: httpx.Headers,
    content: str,
) -> tuple[httpx.Response, str]:
    if client is None:
        # The deadline is enforced by the caller, so httpx's own timeouts are off.
        async with httpx.AsyncClient(timeout=None, follow_redirects=True) as owned:
            return await _send(owned, method, url, headers, content)

    response = await client.request(method, url, headers=headers, content=content)
    return response, response.text


async def invoke_ai_provider(
    provider_url: Optional[str],
    api_key: Optional[str],
    payload: Any,
    headers: Optional[Mapping[str, str]] = None,
    method: str = "POST",
    timeout_ms: Optional[int] = DEFAULT_TIMEOUT_MS,
    client: Optional[httpx.AsyncClient] = None,
) -> InvocationResult:
    """Call the AI provider once and normalize whatever it answers.

    Args:
        provider_url: Target endpoint. Must be non-empty.
        api_key: Optional credential, sent as "Authorization: Bearer <key>".
        payload: Any JSON-serializable value, sent as the body for every method.
        headers: Extra request headers; a caller Content-Type wins.
        method: HTTP method.
        timeout_ms: Time budget for the whole exchange. None disables it.
        client: Optional shared client. A short-lived one is used otherwise.

    Returns:
        InvocationResult for any HTTP response, success or not.

    Raises:
        ConfigurationError: If provider_url is empty. No I/O happens.
        TransportTimeout: If no response arrived within timeout_ms.
        TransportError: If the request could not be sent or read.
    """
    if not provider_url:
        raise ConfigurationError("AI provider URL is not configured")

    request_headers = build_headers(api_key, headers)
    content = json.dumps(payload)
    deadline = timeout_ms / 1000 if timeout_ms is not None else None

    logger.debug(f"Invoking AI provider: {method} {provider_url} (timeout={timeout_ms} ms)")

    try:
        response, text = await asyncio.wait_for(
            _send(client, method, provider_url, request_headers, content),
            timeout=deadline,
        )
    except (asyncio.TimeoutError, httpx.TimeoutException) as e:
        logger.warning(f"AI provider {provider_url} did not respond within {timeout_ms} ms")
        raise TransportTimeout(
            f"AI provider did not respond within {timeout_ms} ms"
        ) from e
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        logger.warning(f"AI provider request to {provider_url} failed: {e}")
        raise TransportError(f"AI provider request failed: {e}") from e

    body, body_is_json = decode_body(text)
    return InvocationResult(
        ok=is_success_status(response.status_code),
        status=response.status_code,
        status_text=response.reason_phrase or None,
        body=body,
        body_is_json=body_is_json,
        content_type=response.headers.get("content-type"),
    )
