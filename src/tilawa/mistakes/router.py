"""Mistake log endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from tilawa.auth.dependencies import get_current_user
from tilawa.database import get_session
from tilawa.db.models import User
from tilawa.mistakes.schemas import (
    MistakeCreate,
    MistakeListResponse,
    MistakeResolution,
    MistakeResponse,
    MistakeStats,
    PracticeAttempt,
    ResolveMistakeRequest,
)
from tilawa.mistakes.service import (
    delete_mistake,
    get_mistake,
    get_mistake_stats,
    list_mistakes,
    log_mistake,
    resolve_mistake,
    submit_practice_attempt,
)

router = APIRouter(prefix="/api/v1/mistakes", tags=["Mistakes"])


@router.post("", response_model=MistakeResponse, status_code=201)
async def create_mistake(
    body: MistakeCreate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    return await log_mistake(db, user.id, body)


@router.get("", response_model=MistakeListResponse)
async def get_mistakes(
    module: str | None = Query(None),
    mistake_type: str | None = Query(None),
    is_resolved: bool | None = Query(None),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    rows = await list_mistakes(db, user.id, module=module, mistake_type=mistake_type, is_resolved=is_resolved)
    return MistakeListResponse(
        mistakes=[MistakeResponse.model_validate(m) for m in rows],
        count=len(rows),
    )


@router.get("/stats", response_model=MistakeStats)
async def stats(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """Mistake totals with resolved counts by type and module."""
    return await get_mistake_stats(db, user.id)


@router.get("/{mistake_id}", response_model=MistakeResponse)
async def get_one(
    mistake_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    return await get_mistake(db, user.id, mistake_id)


@router.delete("/{mistake_id}", status_code=204)
async def delete_one(
    mistake_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    await delete_mistake(db, user.id, mistake_id)


@router.put("/{mistake_id}/resolve", response_model=MistakeResolution)
async def resolve(
    mistake_id: int,
    body: ResolveMistakeRequest | None = None,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """Mark a mistake resolved and earn the resolution reward."""
    note = body.correction_note if body else None
    return await resolve_mistake(db, user.id, mistake_id, correction_note=note)


@router.post("/{mistake_id}/practice", response_model=MistakeResolution)
async def practice(
    mistake_id: int,
    body: PracticeAttempt,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """Submit a practice attempt. A correct attempt resolves the mistake."""
    return await submit_practice_attempt(
        db, user.id, mistake_id, is_correct=body.is_correct, attempt_number=body.attempt_number
    )
