"""Lesson progress endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from tilawa.auth.dependencies import get_current_user
from tilawa.database import get_session
from tilawa.db.models import User
from tilawa.progress.schemas import (
    LessonCompletionResult,
    LessonProgressUpdate,
    ProgressListResponse,
    ProgressResponse,
    ProgressSummary,
)
from tilawa.progress.service import (
    get_lesson_progress,
    get_progress_summary,
    list_progress,
    reset_lesson_progress,
    update_lesson_progress,
)

router = APIRouter(prefix="/api/v1/progress", tags=["Progress"])


@router.get("", response_model=ProgressListResponse)
async def get_progress(
    module: str | None = Query(None),
    level_id: str | None = Query(None),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """Progress rows, optionally filtered by module and level."""
    rows = await list_progress(db, user.id, module=module, level_id=level_id)
    return ProgressListResponse(
        progress=[ProgressResponse.model_validate(r) for r in rows],
        count=len(rows),
    )


@router.get("/summary", response_model=ProgressSummary)
async def get_summary(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """Aggregated statistics across all lessons."""
    return await get_progress_summary(db, user.id)


@router.post("/lesson", response_model=LessonCompletionResult)
async def post_lesson_progress(
    body: LessonProgressUpdate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """Update lesson progress. Completing a lesson pays coins and may unlock badges."""
    return await update_lesson_progress(db, user.id, body)


@router.get("/lesson/{module}/{level_id}/{lesson_id}", response_model=ProgressResponse)
async def get_lesson(
    module: str,
    level_id: str,
    lesson_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    return await get_lesson_progress(db, user.id, module, level_id, lesson_id)


@router.delete("/lesson/{progress_id}", response_model=ProgressResponse)
async def reset_lesson(
    progress_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """Reset a lesson to not_started. Earned coins and badges are kept."""
    return await reset_lesson_progress(db, user.id, progress_id)
