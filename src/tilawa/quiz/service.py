"""Quiz submissions: scoring, coins, weighted accuracy and quiz badges."""

from __future__ import annotations

import logging

import structlog
from sqlalchemy import case, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from tilawa.db.models import QuizResult, User
from tilawa.errors import ConcurrencyConflict, NotFound, ValidationError
from tilawa.progress.aggregator import MODULES
from tilawa.quiz.schemas import QuizResultResponse, QuizStats, QuizSubmissionResult
from tilawa.rewards.achievements import check_achievements, check_reward_achievements
from tilawa.rewards.ledger import add_coins
from tilawa.rewards.reward_table import (
    QUIZ_PASS_PERCENTAGE,
    calculate_quiz_coins,
    quiz_percentage,
    quiz_transaction_type,
)
from tilawa.rewards.schemas import AchievementContext, AwardedAchievement
from tilawa.rewards.transactions import commit_with_retry
from tilawa.timeutil import round_half_up, utcnow

logger = logging.getLogger(__name__)
audit_log = structlog.get_logger()


def weighted_accuracy(old_accuracy: int, quizzes_completed: int, percentage: int) -> int:
    """Fold one passed quiz into the running accuracy.

    ``quizzes_completed`` already includes this quiz.
    """
    n = quizzes_completed
    return round_half_up((old_accuracy * (n - 1) + percentage) / n)


async def record_quiz_result(
    db: AsyncSession,
    user_id: int,
    quiz_id: str,
    module: str,
    level_id: str,
    score: int,
    total_questions: int,
    time_spent: int = 0,
) -> QuizSubmissionResult:
    """Store a quiz attempt and pay for it.

    The result row and, for a pass, the user's quiz counter and accuracy
    are committed first. Coins and badges follow; a failure there is
    logged and reported as ``rewards_pending``.
    """
    if total_questions <= 0:
        raise ValidationError("total_questions must be positive")
    if not 0 <= score <= total_questions:
        raise ValidationError("score must be between 0 and total_questions")
    if module not in MODULES:
        raise ValidationError(f"Unknown module: {module}")
    if not quiz_id or not level_id:
        raise ValidationError("quiz_id and level_id are required")
    if time_spent < 0:
        raise ValidationError("time_spent must be >= 0")

    result = await db.execute(
        select(User)
        .where(User.id == user_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    user = result.scalar_one_or_none()
    if user is None:
        raise NotFound(f"User {user_id} not found")

    percentage = quiz_percentage(score, total_questions)
    passed = percentage >= QUIZ_PASS_PERCENTAGE
    previous_attempts = await db.scalar(
        select(func.count())
        .select_from(QuizResult)
        .where(QuizResult.user_id == user_id, QuizResult.quiz_id == quiz_id)
    ) or 0
    attempts = previous_attempts + 1
    coins = calculate_quiz_coins(percentage, attempts)

    quiz_result = QuizResult(
        user_id=user_id,
        quiz_id=quiz_id,
        module=module,
        level_id=level_id,
        score=score,
        total_questions=total_questions,
        percentage=percentage,
        passed=passed,
        time_spent=time_spent,
        attempts=attempts,
        coins_earned=coins,
        completed_at=utcnow(),
    )
    db.add(quiz_result)

    if passed:
        user.total_quizzes_completed += 1
        user.accuracy = weighted_accuracy(user.accuracy, user.total_quizzes_completed, percentage)

    await db.commit()
    result_id = quiz_result.id
    snapshot = QuizResultResponse.model_validate(quiz_result)
    logger.info("User %d scored %d%% on quiz %s (attempt %d)", user_id, percentage, quiz_id, attempts)

    coins_earned = 0
    achievements: list[AwardedAchievement] = []
    rewards_pending = False

    async def credit() -> None:
        await add_coins(
            db,
            user_id,
            quiz_transaction_type(percentage),
            coins,
            f"Quiz {quiz_id}: {percentage}%",
            reference=("quiz_result", result_id),
        )

    try:
        await commit_with_retry(db, credit)
        coins_earned = coins
        if passed:
            achievements = await check_achievements(
                db,
                user_id,
                AchievementContext(
                    type="quiz_complete",
                    data={"quiz_id": quiz_id, "percentage": percentage, "score": score, "attempts": attempts},
                ),
            )
        achievements += await check_reward_achievements(db, user_id)
    except (ConcurrencyConflict, SQLAlchemyError):
        await db.rollback()
        rewards_pending = True
        audit_log.error(
            "reward_credit_failed",
            user_id=user_id,
            source="quiz_complete",
            quiz_result_id=result_id,
            coins=coins,
            credited=coins_earned,
            exc_info=True,
        )

    return QuizSubmissionResult(
        quiz_result=snapshot,
        passed=passed,
        percentage=percentage,
        coins_earned=coins_earned,
        achievements=achievements,
        rewards_pending=rewards_pending,
    )


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


async def list_quiz_results(
    db: AsyncSession,
    user_id: int,
    quiz_id: str | None = None,
    module: str | None = None,
) -> list[QuizResult]:
    """Quiz attempts, newest first."""
    stmt = select(QuizResult).where(QuizResult.user_id == user_id)
    if quiz_id is not None:
        stmt = stmt.where(QuizResult.quiz_id == quiz_id)
    if module is not None:
        stmt = stmt.where(QuizResult.module == module)
    result = await db.execute(stmt.order_by(QuizResult.completed_at.desc(), QuizResult.id.desc()))
    return list(result.scalars())


async def get_best_result(db: AsyncSession, user_id: int, quiz_id: str) -> QuizResult:
    """Highest percentage for a quiz; the earliest attempt wins ties."""
    result = await db.execute(
        select(QuizResult)
        .where(QuizResult.user_id == user_id, QuizResult.quiz_id == quiz_id)
        .order_by(QuizResult.percentage.desc(), QuizResult.completed_at.asc(), QuizResult.id.asc())
        .limit(1)
    )
    best = result.scalar_one_or_none()
    if best is None:
        raise NotFound("No quiz results found")
    return best


async def get_quiz_stats(db: AsyncSession, user_id: int) -> QuizStats:
    row = (
        await db.execute(
            select(
                func.count(QuizResult.id),
                func.coalesce(func.sum(case((QuizResult.passed.is_(True), 1), else_=0)), 0),
                func.avg(QuizResult.percentage),
                func.coalesce(func.sum(QuizResult.coins_earned), 0),
                func.coalesce(func.sum(case((QuizResult.percentage == 100, 1), else_=0)), 0),
            ).where(QuizResult.user_id == user_id)
        )
    ).one()
    return QuizStats(
        total_quizzes=row[0],
        passed_quizzes=int(row[1]),
        average_score=round(float(row[2]), 2) if row[2] is not None else 0.0,
        total_coins_earned=int(row[3]),
        perfect_scores=int(row[4]),
    )
