# src/visidash/server/routes/queries.py
"""Saved query routes. Every call is scoped to the userId query parameter."""

import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from visidash.server.authorization import require_user
from visidash.server.database import get_session
from visidash.server.models import SavedQuery, User
from visidash.server.schemas import (
    CreateQueryRequest,
    SavedQueryOut,
    SuccessResponse,
    UpdateQueryRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter()

QUERY_NOT_FOUND = "Query not found"


def user_id_param(user_id: Optional[UUID] = Query(default=None, alias="userId")) -> UUID:
    """The acting user's id from the query string. Required."""
    if user_id is None:
        raise HTTPException(status_code=400, detail="userId required")
    return user_id


async def _adjust_query_count(db: AsyncSession, user_id: UUID, delta: int) -> None:
    await db.execute(
        update(User)
        .where(User.id == user_id)
        .values(query_count=User.query_count + delta)
    )


async def _get_owned_query(
    db: AsyncSession, query_id: UUID, user_id: UUID, deleted: Optional[bool] = None
) -> Optional[SavedQuery]:
    stmt = select(SavedQuery).where(SavedQuery.id == query_id, SavedQuery.user_id == user_id)
    if deleted is not None:
        stmt = stmt.where(SavedQuery.deleted == deleted)
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


@router.get("", response_model=list[SavedQueryOut])
async def list_queries(
    user_id: UUID = Depends(user_id_param),
    db: AsyncSession = Depends(get_session),
):
    """The user's saved queries, soft-deleted ones included, newest first."""
    result = await db.execute(
        select(SavedQuery)
        .where(SavedQuery.user_id == user_id)
        .order_by(SavedQuery.updated_at.desc())
    )
    return result.scalars().all()


@router.post("", response_model=SavedQueryOut, status_code=201)
async def create_query(payload: CreateQueryRequest, db: AsyncSession = Depends(get_session)):
    """Save a question and its result for the user."""
    await require_user(payload.user_id, db)

    query = SavedQuery(
        user_id=payload.user_id,
        question=payload.question,
        result=payload.result,
        visualization_name=payload.visualization_name,
    )
    db.add(query)
    await db.flush()
    await _adjust_query_count(db, payload.user_id, 1)
    await db.commit()

    logger.info(f"Saved query {query.id} for user {payload.user_id}")
    return query


@router.get("/{query_id}", response_model=SavedQueryOut)
async def get_query(
    query_id: UUID,
    user_id: UUID = Depends(user_id_param),
    db: AsyncSession = Depends(get_session),
):
    query = await _get_owned_query(db, query_id, user_id)
    if query is None:
        raise HTTPException(status_code=404, detail=QUERY_NOT_FOUND)
    return query


@router.put("/{query_id}", response_model=SuccessResponse)
async def update_query(
    query_id: UUID,
    payload: UpdateQueryRequest,
    user_id: UUID = Depends(user_id_param),
    db: AsyncSession = Depends(get_session),
):
    """Rename a query or toggle its favorite flag."""
    query = await _get_owned_query(db, query_id, user_id)
    if query is None:
        raise HTTPException(status_code=404, detail=QUERY_NOT_FOUND)

    for field, value in payload.model_dump(exclude_unset=True).items():
        setattr(query, field, value)
    await db.commit()
    return SuccessResponse()


@router.delete("/{query_id}", response_model=SuccessResponse)
async def delete_query(
    query_id: UUID,
    user_id: UUID = Depends(user_id_param),
    db: AsyncSession = Depends(get_session),
):
    """Soft-delete a query and decrement the user's query count."""
    query = await _get_owned_query(db, query_id, user_id, deleted=False)
    if query is None:
        raise HTTPException(status_code=404, detail=QUERY_NOT_FOUND)

    query.deleted = True
    await db.flush()
    await _adjust_query_count(db, user_id, -1)
    await db.commit()
    return SuccessResponse()


@router.patch("/{query_id}", response_model=SuccessResponse)
async def patch_query(
    query_id: UUID,
    action: Optional[str] = None,
    user_id: UUID = Depends(user_id_param),
    db: AsyncSession = Depends(get_session),
):
    """Apply an action to a query. Only ``restore`` is supported."""
    if action != "restore":
        raise HTTPException(status_code=400, detail="Invalid action")

    query = await _get_owned_query(db, query_id, user_id, deleted=True)
    if query is None:
        raise HTTPException(status_code=404, detail="Query not found or not deleted")

    query.deleted = False
    await db.flush()
    await _adjust_query_count(db, user_id, 1)
    await db.commit()
    return SuccessResponse()
