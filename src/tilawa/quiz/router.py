"""Quiz endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from tilawa.auth.dependencies import get_current_user
from tilawa.database import get_session
from tilawa.db.models import User
from tilawa.quiz.schemas import (
    QuizResultResponse,
    QuizResultsResponse,
    QuizStats,
    QuizSubmission,
    QuizSubmissionResult,
)
from tilawa.quiz.service import get_best_result, get_quiz_stats, list_quiz_results, record_quiz_result

router = APIRouter(prefix="/api/v1/quiz", tags=["Quiz"])


@router.post("/submit", response_model=QuizSubmissionResult, status_code=201)
async def submit_quiz(
    body: QuizSubmission,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """Submit a quiz attempt. Passing at 60% or more."""
    return await record_quiz_result(
        db,
        user.id,
        quiz_id=body.quiz_id,
        module=body.module,
        level_id=body.level_id,
        score=body.score,
        total_questions=body.total_questions,
        time_spent=body.time_spent,
    )


@router.get("/results", response_model=QuizResultsResponse)
async def quiz_results(
    quiz_id: str | None = Query(None),
    module: str | None = Query(None),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    rows = await list_quiz_results(db, user.id, quiz_id=quiz_id, module=module)
    return QuizResultsResponse(
        results=[QuizResultResponse.model_validate(r) for r in rows],
        count=len(rows),
    )


@router.get("/best/{quiz_id}", response_model=QuizResultResponse)
async def best_score(
    quiz_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    return await get_best_result(db, user.id, quiz_id)


@router.get("/stats", response_model=QuizStats)
async def quiz_stats(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    return await get_quiz_stats(db, user.id)
