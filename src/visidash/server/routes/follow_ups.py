# src/visidash/server/routes/follow_ups.py
"""Follow-up question routes.

A follow-up belongs to a saved query, and optionally to an earlier follow-up
of the same query. Ownership is checked through the parent query's user.
"""

import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from visidash.server.database import get_session
from visidash.server.models import FollowUp, SavedQuery
from visidash.server.routes.queries import user_id_param
from visidash.server.schemas import (
    CreateFollowUpRequest,
    FollowUpOut,
    SuccessResponse,
    UpdateFollowUpRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter()

FOLLOW_UP_NOT_FOUND = "Follow-up not found or access denied"


async def _get_owned_follow_up(
    db: AsyncSession, follow_up_id: UUID, user_id: UUID
) -> FollowUp:
    result = await db.execute(
        select(FollowUp)
        .join(SavedQuery, FollowUp.parent_query_id == SavedQuery.id)
        .where(FollowUp.id == follow_up_id, SavedQuery.user_id == user_id)
    )
    follow_up = result.scalar_one_or_none()
    if follow_up is None:
        raise HTTPException(status_code=404, detail=FOLLOW_UP_NOT_FOUND)
    return follow_up


@router.get("", response_model=list[FollowUpOut])
async def list_follow_ups(
    user_id: UUID = Depends(user_id_param),
    parent_query_id: Optional[UUID] = Query(default=None, alias="parentQueryId"),
    db: AsyncSession = Depends(get_session),
):
    """Follow-ups of one of the user's queries, oldest first."""
    if parent_query_id is None:
        raise HTTPException(status_code=400, detail="parentQueryId required")

    result = await db.execute(
        select(FollowUp)
        .join(SavedQuery, FollowUp.parent_query_id == SavedQuery.id)
        .where(FollowUp.parent_query_id == parent_query_id, SavedQuery.user_id == user_id)
        .order_by(FollowUp.created_at)
    )
    return result.scalars().all()


@router.post("", response_model=FollowUpOut, status_code=201)
async def create_follow_up(
    payload: CreateFollowUpRequest, db: AsyncSession = Depends(get_session)
):
    """Record a follow-up under a query the user owns."""
    parent = await db.execute(
        select(SavedQuery).where(
            SavedQuery.id == payload.parent_query_id,
            SavedQuery.user_id == payload.user_id,
        )
    )
    if parent.scalar_one_or_none() is None:
        raise HTTPException(status_code=404, detail="Parent query not found or access denied")

    if payload.parent_follow_up_id:
        previous = await db.execute(
            select(FollowUp).where(
                FollowUp.id == payload.parent_follow_up_id,
                FollowUp.parent_query_id == payload.parent_query_id,
            )
        )
        if previous.scalar_one_or_none() is None:
            raise HTTPException(status_code=404, detail="Parent follow-up not found")

    follow_up = FollowUp(
        parent_query_id=payload.parent_query_id,
        parent_follow_up_id=payload.parent_follow_up_id,
        question=payload.question,
        result=payload.result,
        name=payload.name,
        chart_type=payload.chart_type,
    )
    db.add(follow_up)
    await db.commit()

    logger.info(f"Created follow-up {follow_up.id} on query {payload.parent_query_id}")
    return follow_up


@router.put("/{follow_up_id}", response_model=FollowUpOut)
async def update_follow_up(
    follow_up_id: UUID,
    payload: UpdateFollowUpRequest,
    user_id: UUID = Depends(user_id_param),
    db: AsyncSession = Depends(get_session),
):
    follow_up = await _get_owned_follow_up(db, follow_up_id, user_id)

    for field, value in payload.model_dump(exclude_unset=True).items():
        setattr(follow_up, field, value)
    await db.commit()
    return follow_up


@router.delete("/{follow_up_id}", response_model=SuccessResponse)
async def delete_follow_up(
    follow_up_id: UUID,
    user_id: UUID = Depends(user_id_param),
    db: AsyncSession = Depends(get_session),
):
    follow_up = await _get_owned_follow_up(db, follow_up_id, user_id)
    await db.delete(follow_up)
    await db.commit()
    return SuccessResponse()
