# src/visidash/server/routes/ai_lab.py
"""AI lab routes: run one prompt against several model targets and compare.

Targets run concurrently. Runners never touch the database session; each
returns a ``TargetOutcome`` that is written to its result row once every
target has finished.
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from visidash.ai_client import DEFAULT_TIMEOUT_MS, TransportError, invoke_ai_provider
from visidash.ai_lab import (
    RunMetrics,
    mask_sensitive_headers,
    run_with_concurrency,
    score_response,
)
from visidash.server.app_settings import get_or_create_settings, provider_api_key, provider_url
from visidash.server.authorization import require_admin
from visidash.server.database import get_session
from visidash.server.models import (
    AiExperiment,
    AiExperimentResult,
    ExperimentStatus,
    RunStatus,
    utcnow,
)
from visidash.server.schemas import (
    CreateExperimentRequest,
    ExperimentOut,
    ExperimentResultOut,
    FeedbackRequest,
    LabTarget,
    QuickRunData,
    QuickRunOutcome,
    QuickRunRequest,
    QuickRunResponse,
    QuickRunTarget,
    SuccessResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()

UNAUTHORIZED = "Unauthorized"
NO_TARGET_URL = "No target webhook URL or AI provider configured"
MAX_CONCURRENCY = 6


@dataclass
class TargetOutcome:
    status: RunStatus
    started_at: datetime
    completed_at: datetime
    metrics: Optional[RunMetrics] = None
    error_message: Optional[str] = None


def _elapsed_ms(since: float) -> int:
    return round((time.perf_counter() - since) * 1000)


def request_payload(
    target: LabTarget,
    prompt: str,
    experiment_id: str,
    chat_id: str,
    session_id: str,
    expected_answer: Optional[str] = None,
) -> dict[str, Any]:
    """The target's payload template with the run fields laid over it."""
    payload = dict(target.payload_template or {})
    payload.update(
        prompt=prompt,
        chatInput=prompt,
        experimentId=experiment_id,
        slotLabel=target.label,
        model=target.model_name,
    )
    if expected_answer is not None:
        payload["expectedAnswer"] = expected_answer
    payload.update(chatId=chat_id, sessionId=session_id, issuedAt=utcnow().isoformat())
    return payload


def stored_target_config(target: LabTarget) -> dict[str, Any]:
    config = target.model_dump(by_alias=True, exclude_none=True)
    if target.headers is not None:
        config["headers"] = mask_sensitive_headers(target.headers)
    return config


async def execute_target(
    target: LabTarget,
    payload: dict[str, Any],
    ai_url: Optional[str],
    api_key: Optional[str],
    expected_answer: Optional[str] = None,
) -> TargetOutcome:
    """Send one target its request and score the answer.

    The AI provider, when configured, takes precedence over the target's own
    webhook, and the provider key is only ever sent to the provider.
    """
    started_at = utcnow()
    url = ai_url or target.webhook_url
    if not url:
        return TargetOutcome(RunStatus.failed, started_at, utcnow(), error_message=NO_TARGET_URL)

    timeout_ms = target.timeout_ms or DEFAULT_TIMEOUT_MS
    clock = time.perf_counter()
    try:
        result = await invoke_ai_provider(
            url,
            api_key if url == ai_url else None,
            payload,
            headers=target.headers,
            method=target.method,
            timeout_ms=timeout_ms,
        )
    except TransportError as e:
        logger.warning(f"AI lab target {target.label!r} failed: {e}")
        return TargetOutcome(RunStatus.failed, started_at, utcnow(), error_message=str(e))

    metrics = score_response(
        result,
        _elapsed_ms(clock),
        target.model_name,
        timeout_ms=timeout_ms,
        expected_answer=expected_answer,
        input_per_million=target.input_tokens_per_million,
        output_per_million=target.output_tokens_per_million,
    )
    return TargetOutcome(
        RunStatus.completed if result.ok else RunStatus.failed,
        started_at,
        utcnow(),
        metrics=metrics,
        error_message=metrics.error_message,
    )


def apply_outcome(row: AiExperimentResult, outcome: TargetOutcome) -> None:
    row.status = outcome.status
    row.started_at = outcome.started_at
    row.completed_at = outcome.completed_at
    row.error_message = outcome.error_message

    metrics = outcome.metrics
    if metrics is None:
        return
    row.latency_ms = metrics.latency_ms
    row.prompt_tokens = metrics.tokens.prompt
    row.completion_tokens = metrics.tokens.completion
    row.total_tokens = metrics.tokens.total
    row.accuracy_score = metrics.accuracy_score
    row.speed_score = metrics.speed_score
    row.cost_estimate = metrics.cost_estimate
    row.response_payload = metrics.response_payload
    row.model_name = metrics.model_name


async def _load_experiment(db: AsyncSession, experiment_id: UUID) -> Optional[AiExperiment]:
    result = await db.execute(
        select(AiExperiment)
        .options(selectinload(AiExperiment.results))
        .where(AiExperiment.id == experiment_id)
    )
    return result.scalar_one_or_none()


# =============================================================================
# Experiments
# =============================================================================


@router.get("")
async def list_experiments(
    user_id: UUID = Query(alias="userId"),
    limit: int = Query(default=5, ge=1, le=25),
    experiment_id: Optional[UUID] = Query(default=None, alias="experimentId"),
    db: AsyncSession = Depends(get_session),
):
    """The admin's recent experiments, newest first, or one experiment by id."""
    await require_admin(user_id, db, detail=UNAUTHORIZED)

    if experiment_id is not None:
        experiment = await _load_experiment(db, experiment_id)
        if experiment is None:
            raise HTTPException(status_code=404, detail="Not found")
        return ExperimentOut.model_validate(experiment)

    result = await db.execute(
        select(AiExperiment)
        .options(selectinload(AiExperiment.results))
        .where(AiExperiment.user_id == user_id)
        .order_by(AiExperiment.created_at.desc())
        .limit(limit)
    )
    return [ExperimentOut.model_validate(e) for e in result.scalars().all()]


@router.post("", response_model=ExperimentOut, status_code=201)
async def create_experiment(
    payload: CreateExperimentRequest, db: AsyncSession = Depends(get_session)
):
    """Run the prompt against every target and record the results.

    The experiment is COMPLETED only if every target completed.
    """
    await require_admin(payload.user_id, db, detail=UNAUTHORIZED)
    clock = time.perf_counter()

    setting = await get_or_create_settings(db)
    ai_url = provider_url(setting)
    api_key = provider_api_key(setting)

    experiment = AiExperiment(
        user_id=payload.user_id,
        label=payload.label,
        prompt=payload.prompt,
        expected_answer=payload.expected_answer,
        notes=payload.notes,
        total_targets=len(payload.targets),
        status=ExperimentStatus.running,
        target_configs=[stored_target_config(t) for t in payload.targets],
        started_at=utcnow(),
    )
    experiment.results = [
        AiExperimentResult(
            slot_index=index,
            label=target.label,
            color=target.color,
            webhook_url=target.webhook_url or ai_url,
            model_name=target.model_name,
            method=target.method,
        )
        for index, target in enumerate(payload.targets)
    ]
    db.add(experiment)
    await db.commit()

    experiment_id = str(experiment.id)

    async def run(target: LabTarget, index: int) -> TargetOutcome:
        body = request_payload(
            target,
            payload.prompt,
            experiment_id,
            chat_id=experiment_id,
            session_id=f"session-{experiment_id}-{target.label}",
            expected_answer=payload.expected_answer,
        )
        return await execute_target(target, body, ai_url, api_key, payload.expected_answer)

    outcomes = await run_with_concurrency(
        payload.max_concurrency or MAX_CONCURRENCY, payload.targets, run
    )

    for row, outcome in zip(experiment.results, outcomes):
        apply_outcome(row, outcome)
    completed = sum(1 for o in outcomes if o.status == RunStatus.completed)
    experiment.total_completed = completed
    experiment.status = (
        ExperimentStatus.completed if completed == len(outcomes) else ExperimentStatus.failed
    )
    experiment.duration_ms = _elapsed_ms(clock)
    experiment.completed_at = utcnow()
    await db.commit()

    logger.info(
        f"AI lab experiment {experiment.id}: {completed}/{len(outcomes)} targets completed "
        f"in {experiment.duration_ms} ms"
    )
    return experiment


@router.patch("", response_model=ExperimentResultOut)
async def record_feedback(payload: FeedbackRequest, db: AsyncSession = Depends(get_session)):
    """Score a result or leave notes on it. Only the experiment's owner may."""
    await require_admin(payload.user_id, db, detail=UNAUTHORIZED)

    result = await db.execute(
        select(AiExperimentResult)
        .options(selectinload(AiExperimentResult.experiment))
        .where(AiExperimentResult.id == payload.result_id)
    )
    row = result.scalar_one_or_none()
    if row is None:
        raise HTTPException(status_code=404, detail="Result not found")
    if row.experiment.user_id != payload.user_id:
        raise HTTPException(status_code=403, detail=UNAUTHORIZED)

    if "review_score" in payload.model_fields_set:
        row.review_score = payload.review_score
    if "feedback_notes" in payload.model_fields_set:
        row.feedback_notes = (payload.feedback_notes or "").strip() or None
    await db.commit()
    return row


@router.delete("", response_model=SuccessResponse)
async def delete_experiment(
    experiment_id: Optional[UUID] = Query(default=None, alias="experimentId"),
    user_id: Optional[UUID] = Query(default=None, alias="userId"),
    db: AsyncSession = Depends(get_session),
):
    """Delete one of the admin's experiments along with its results."""
    if experiment_id is None or user_id is None:
        raise HTTPException(status_code=400, detail="Missing experimentId or userId")
    await require_admin(user_id, db, detail=UNAUTHORIZED)

    experiment = await _load_experiment(db, experiment_id)
    if experiment is None:
        raise HTTPException(status_code=404, detail="Experiment not found")
    if experiment.user_id != user_id:
        raise HTTPException(status_code=403, detail=UNAUTHORIZED)

    await db.delete(experiment)
    await db.commit()
    logger.info(f"Deleted AI lab experiment {experiment_id}")
    return SuccessResponse()


# =============================================================================
# Quick run
# =============================================================================


async def execute_quick_target(
    target: QuickRunTarget, prompt: str, index: int
) -> QuickRunOutcome:
    """Call a target's webhook directly. Nothing is stored."""
    stamp = int(time.time() * 1000)
    body = request_payload(
        target,
        prompt,
        f"quick-run-{stamp}-{index}",
        chat_id=f"quick-run-{stamp}",
        session_id=f"quick-run-session-{stamp}-{index}",
    )
    timeout_ms = target.timeout_ms or DEFAULT_TIMEOUT_MS
    clock = time.perf_counter()
    try:
        result = await invoke_ai_provider(
            target.webhook_url,
            None,
            body,
            headers=target.headers,
            method=target.method,
            timeout_ms=timeout_ms,
        )
    except TransportError as e:
        logger.warning(f"Quick run target {target.label!r} failed: {e}")
        return QuickRunOutcome(target=target.label, success=False, error=str(e))

    metrics = score_response(
        result,
        _elapsed_ms(clock),
        target.model_name,
        timeout_ms=timeout_ms,
        input_per_million=target.input_tokens_per_million,
        output_per_million=target.output_tokens_per_million,
    )
    return QuickRunOutcome(
        target=target.label,
        success=result.ok,
        data=QuickRunData(
            label=target.label,
            model_name=metrics.model_name,
            latency_ms=metrics.latency_ms,
            prompt_tokens=metrics.tokens.prompt,
            completion_tokens=metrics.tokens.completion,
            total_tokens=metrics.tokens.total,
            cost_estimate=metrics.cost_estimate,
            answer=metrics.answer,
            response_payload=metrics.response_payload,
        ),
    )


@router.post("/quick-run", response_model=QuickRunResponse)
async def quick_run(payload: QuickRunRequest, db: AsyncSession = Depends(get_session)):
    """Try a prompt against each target's webhook without saving an experiment."""
    await require_admin(payload.user_id, db, detail=UNAUTHORIZED)
    clock = time.perf_counter()

    outcomes = await run_with_concurrency(
        MAX_CONCURRENCY,
        payload.targets,
        lambda target, index: execute_quick_target(target, payload.prompt, index),
    )

    successful = sum(1 for o in outcomes if o.success)
    return QuickRunResponse(
        duration_ms=_elapsed_ms(clock),
        total_targets=len(outcomes),
        successful=successful,
        failed=len(outcomes) - successful,
        results=outcomes,
    )
