"""Scoring helpers for AI lab experiments.

Providers answer in many shapes. These helpers pull token usage, the model
name and the answer text out of whatever came back, and turn one response
into comparable metrics (latency, accuracy, speed, cost).
"""

import asyncio
import json
import math
import re
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, NamedTuple, Optional, TypeVar

from visidash.ai_client import DEFAULT_TIMEOUT_MS, InvocationResult

T = TypeVar("T")
R = TypeVar("R")

MASK = "••••"
SENSITIVE_HEADER_KEYWORDS = ("authorization", "api", "token", "secret", "password", "key")

_USAGE_KEYS = ("usage", "tokenUsage", "tokens")
_PROMPT_TOKEN_KEYS = ("promptTokens", "prompt_tokens", "inputTokens", "input_tokens")
_COMPLETION_TOKEN_KEYS = (
    "completionTokens",
    "completion_tokens",
    "outputTokens",
    "output_tokens",
)
_TOTAL_TOKEN_KEYS = ("totalTokens", "total_tokens", "overallTokens", "overall_tokens")
_MODEL_KEYS = ("model", "modelName", "usedModel")
_ANSWER_KEYS = ("answer", "response", "content", "text", "result", "message", "output")
_CHOICE_KEYS = ("text", "message", "content")

_NON_WORD = re.compile(r"[^a-z0-9\s]")


class TokenCounts(NamedTuple):
    prompt: Optional[float]
    completion: Optional[float]
    total: Optional[float]


@dataclass
class RunMetrics:
    """Everything measured about one target's response."""

    ok: bool
    latency_ms: int
    model_name: str
    answer: str
    tokens: TokenCounts
    accuracy_score: Optional[float]
    speed_score: float
    cost_estimate: Optional[float]
    response_payload: Any
    error_message: Optional[str] = None


def mask_sensitive_headers(headers: Optional[Mapping[str, str]]) -> Optional[dict[str, str]]:
    """Copy of headers with credential-looking values replaced by a mask."""
    if headers is None:
        return None
    return {
        name: MASK if any(word in name.lower() for word in SENSITIVE_HEADER_KEYWORDS) else value
        for name, value in headers.items()
    }


async def run_with_concurrency(
    limit: int,
    items: Sequence[T],
    runner: Callable[[T, int], Awaitable[R]],
) -> list[R]:
    """Run runner(item, index) for every item, at most limit at a time.

    Results come back in input order.
    """
    semaphore = asyncio.Semaphore(max(1, limit))

    async def run(item: T, index: int) -> R:
        async with semaphore:
            return await runner(item, index)

    return list(await asyncio.gather(*(run(item, i) for i, item in enumerate(items))))


def normalize_text(text: str) -> list[str]:
    """Lowercase words with punctuation dropped."""
    return _NON_WORD.sub("", text.lower()).split()


def calculate_accuracy(expected: Optional[str], actual: Optional[str]) -> Optional[float]:
    """Share of distinct expected words that appear in the answer, to 2 places.

    None when either side has no words to compare.
    """
    if not expected or not actual:
        return None
    expected_words = set(normalize_text(expected))
    actual_words = set(normalize_text(actual))
    if not expected_words or not actual_words:
        return None
    return round(len(expected_words & actual_words) / len(expected_words), 2)


def coerce_number(value: Any) -> Optional[float]:
    """A finite number from an int, float or numeric string, else None."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            return None
    if not isinstance(value, (int, float)) or not math.isfinite(value):
        return None
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def _first_present(mapping: Mapping[str, Any], keys: Sequence[str]) -> Any:
    for key in keys:
        if mapping.get(key) is not None:
            return mapping[key]
    return None


def extract_token_counts(payload: Any) -> TokenCounts:
    """Token usage from a response, under any of the common key spellings.

    The total falls back to prompt + completion when it is not reported.
    """
    if not isinstance(payload, dict):
        return TokenCounts(None, None, None)
    usage = _first_present(payload, _USAGE_KEYS)
    if not isinstance(usage, dict):
        return TokenCounts(None, None, None)

    prompt = coerce_number(_first_present(usage, _PROMPT_TOKEN_KEYS))
    completion = coerce_number(_first_present(usage, _COMPLETION_TOKEN_KEYS))
    total = coerce_number(_first_present(usage, _TOTAL_TOKEN_KEYS))
    if total is None and prompt is not None and completion is not None:
        total = prompt + completion
    return TokenCounts(prompt, completion, total)


def extract_model(payload: Any, fallback: str) -> str:
    if isinstance(payload, dict):
        candidate = _first_present(payload, _MODEL_KEYS)
        if isinstance(candidate, str) and candidate.strip():
            return candidate
    return fallback


def extract_answer(payload: Any, raw_text: str) -> str:
    """The answer text from a response, else the raw body.

    Looks at the usual top-level keys first, then at the first entry of an
    OpenAI-style ``choices`` list.
    """
    if isinstance(payload, str):
        return payload or raw_text
    if not isinstance(payload, dict):
        return raw_text

    for key in _ANSWER_KEYS:
        candidate = payload.get(key)
        if isinstance(candidate, str) and candidate:
            return candidate

    choices = payload.get("choices")
    if isinstance(choices, list) and choices and isinstance(choices[0], dict):
        for key in _CHOICE_KEYS:
            candidate = choices[0].get(key)
            if isinstance(candidate, dict):
                candidate = candidate.get("content")
            if isinstance(candidate, str) and candidate:
                return candidate
    return raw_text


def speed_score(latency_ms: float, timeout_ms: float) -> float:
    """1.0 for an instant answer, falling to 0 at the timeout."""
    return round(max(0.0, 1 - latency_ms / timeout_ms), 2)


def estimate_cost(
    tokens: TokenCounts,
    input_per_million: Optional[float],
    output_per_million: Optional[float],
) -> Optional[float]:
    """Dollar cost from per-million token prices, or None if nothing is billable."""
    input_cost = 0.0
    output_cost = 0.0
    if tokens.prompt is not None and input_per_million is not None:
        input_cost = tokens.prompt * input_per_million / 1_000_000
    if tokens.completion is not None and output_per_million is not None:
        output_cost = tokens.completion * output_per_million / 1_000_000
    total = input_cost + output_cost
    return round(total, 4) if total > 0 else None


def body_text(result: InvocationResult) -> str:
    """The response body as text, re-serializing parsed JSON."""
    if result.body_is_json:
        return json.dumps(result.body)
    return result.body


def http_error_message(result: InvocationResult) -> str:
    if result.status_text:
        return f"HTTP {result.status}: {result.status_text}"
    return f"HTTP {result.status}"


def score_response(
    result: InvocationResult,
    latency_ms: int,
    model_name: str,
    timeout_ms: Optional[int] = None,
    expected_answer: Optional[str] = None,
    input_per_million: Optional[float] = None,
    output_per_million: Optional[float] = None,
) -> RunMetrics:
    """Measure one provider response.

    Text answers are stored as {"raw": text}.
    """
    text = body_text(result)
    payload = result.body if result.body_is_json else text
    tokens = extract_token_counts(payload)
    answer = extract_answer(payload, text)

    return RunMetrics(
        ok=result.ok,
        latency_ms=latency_ms,
        model_name=extract_model(payload, model_name),
        answer=answer,
        tokens=tokens,
        accuracy_score=calculate_accuracy(expected_answer, answer),
        speed_score=speed_score(latency_ms, timeout_ms or DEFAULT_TIMEOUT_MS),
        cost_estimate=estimate_cost(tokens, input_per_million, output_per_million),
        response_payload={"raw": payload} if isinstance(payload, str) else payload,
        error_message=None if result.ok else http_error_message(result),
    )
