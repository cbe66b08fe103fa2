"""Lesson progress: upserts, the one-time completion reward and resets."""

from __future__ import annotations

import logging
from datetime import datetime

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from tilawa.db.models import Progress, User
from tilawa.errors import ConcurrencyConflict, NotFound, ValidationError
from tilawa.progress.aggregator import MODULES, get_user_progress
from tilawa.progress.schemas import (
    LessonCompletionResult,
    LessonProgressUpdate,
    ProgressResponse,
    ProgressSummary,
)
from tilawa.rewards.achievements import check_achievements, check_reward_achievements
from tilawa.rewards.ledger import add_coins
from tilawa.rewards.reward_table import calculate_lesson_coins
from tilawa.rewards.schemas import AchievementContext, AwardedAchievement
from tilawa.rewards.transactions import commit_with_retry
from tilawa.timeutil import utcnow

logger = logging.getLogger(__name__)
audit_log = structlog.get_logger()


def _validate_lesson(module: str, level_id: str, lesson_id: str) -> None:
    if module not in MODULES:
        raise ValidationError(f"Unknown module: {module}")
    if not level_id or not lesson_id:
        raise ValidationError("level_id and lesson_id are required")


async def _get_or_create_progress(
    db: AsyncSession,
    user_id: int,
    module: str,
    level_id: str,
    lesson_id: str,
    now: datetime,
) -> tuple[Progress, bool]:
    """Fetch the progress row for a lesson, creating it on first interaction."""
    stmt = select(Progress).where(
        Progress.user_id == user_id,
        Progress.module == module,
        Progress.level_id == level_id,
        Progress.lesson_id == lesson_id,
    )
    progress = (await db.execute(stmt)).scalar_one_or_none()
    if progress is not None:
        return progress, False

    progress = Progress(
        user_id=user_id,
        module=module,
        level_id=level_id,
        lesson_id=lesson_id,
        status="in_progress",
        started_at=now,
        last_accessed_at=now,
    )
    db.add(progress)
    try:
        await db.flush()
    except IntegrityError:
        # Lost a creation race with another request for the same lesson
        await db.rollback()
        progress = (await db.execute(stmt)).scalar_one_or_none()
        if progress is None:
            raise NotFound(f"User {user_id} not found") from None
        return progress, False
    return progress, True


async def _reload_progress(db: AsyncSession, progress_id: int) -> Progress:
    result = await db.execute(
        select(Progress).where(Progress.id == progress_id).execution_options(populate_existing=True)
    )
    return result.scalar_one()


async def record_lesson_completion(
    db: AsyncSession,
    user_id: int,
    module: str,
    level_id: str,
    lesson_id: str,
    accuracy: float,
    time_spent: int,
    level_completed: bool = False,
    module_completed: bool = False,
) -> LessonCompletionResult:
    """Mark a lesson completed and pay its rewards exactly once.

    1. Upsert the progress row and flip ``completed_at`` with a conditional
       UPDATE; only the request that flips it continues to the reward path.
    2. On the lesson's first completion ever, stamp ``first_completed_at``
       and increment the user's lesson counter; commit (primary record).
    3. If the lesson is unpaid, credit its coins and stamp
       ``progress.coins_earned`` together.
    4. Run lesson, level, module and coin achievement triggers.

    A failure in steps 3-4 is logged for reconciliation and reported as
    ``rewards_pending``; the completion from step 2 stays committed.
    """
    _validate_lesson(module, level_id, lesson_id)
    if not 0 <= accuracy <= 100:
        raise ValidationError("accuracy must be between 0 and 100")
    if time_spent < 0:
        raise ValidationError("time_spent must be >= 0")

    now = utcnow()
    progress, _ = await _get_or_create_progress(db, user_id, module, level_id, lesson_id, now)
    progress.time_spent += time_spent
    progress.attempts += 1
    progress.last_accessed_at = now
    progress_id = progress.id

    flipped = await db.execute(
        update(Progress)
        .where(Progress.id == progress_id, Progress.completed_at.is_(None))
        .values(
            completed_at=now,
            status="completed",
            completion_percentage=100,
            accuracy=accuracy,
        )
        .returning(Progress.coins_earned)
    )
    previous_coins = flipped.scalar_one_or_none()

    if previous_coins is None:
        await db.commit()
        progress = await _reload_progress(db, progress_id)
        return LessonCompletionResult(
            progress=ProgressResponse.model_validate(progress),
            already_completed=True,
        )

    # The lesson counts toward milestones once, however many resets follow.
    counted = await db.execute(
        update(Progress)
        .where(Progress.id == progress_id, Progress.first_completed_at.is_(None))
        .values(first_completed_at=now)
        .returning(Progress.id)
    )
    lesson_count: int | None = None
    if counted.scalar_one_or_none() is not None:
        incremented = await db.execute(
            update(User)
            .where(User.id == user_id)
            .values(total_lessons_completed=User.total_lessons_completed + 1)
            .returning(User.total_lessons_completed)
        )
        lesson_count = incremented.scalar_one()
    await db.commit()
    logger.info("User %d completed %s/%s/%s", user_id, module, level_id, lesson_id)

    coins_earned = 0
    achievements: list[AwardedAchievement] = []
    rewards_pending = False

    # Paid on the first completion; an earlier failed credit is retried here.
    if previous_coins == 0:
        coins = calculate_lesson_coins(accuracy)

        async def credit() -> None:
            await add_coins(
                db,
                user_id,
                "lesson_complete",
                coins,
                f"Completed {module} lesson: {lesson_id}",
                reference=("progress", progress_id),
            )
            await db.execute(
                update(Progress).where(Progress.id == progress_id).values(coins_earned=coins)
            )

        try:
            await commit_with_retry(db, credit)
            coins_earned = coins
        except (ConcurrencyConflict, SQLAlchemyError):
            await db.rollback()
            rewards_pending = True
            audit_log.error(
                "reward_credit_failed",
                user_id=user_id,
                source="lesson_complete",
                progress_id=progress_id,
                coins=coins,
                exc_info=True,
            )

        if not rewards_pending:
            try:
                achievements = await _lesson_achievements(
                    db, user_id, module, level_id, lesson_count, level_completed, module_completed
                )
            except (ConcurrencyConflict, SQLAlchemyError):
                await db.rollback()
                rewards_pending = True
                audit_log.error(
                    "achievement_check_failed",
                    user_id=user_id,
                    source="lesson_complete",
                    progress_id=progress_id,
                    exc_info=True,
                )

    progress = await _reload_progress(db, progress_id)
    return LessonCompletionResult(
        progress=ProgressResponse.model_validate(progress),
        coins_earned=coins_earned,
        achievements=achievements,
        rewards_pending=rewards_pending,
    )


async def _lesson_achievements(
    db: AsyncSession,
    user_id: int,
    module: str,
    level_id: str,
    lesson_count: int | None,
    level_completed: bool,
    module_completed: bool,
) -> list[AwardedAchievement]:
    achievements: list[AwardedAchievement] = []
    # None when this completion only retried an earlier unpaid credit
    if lesson_count is not None:
        achievements += await check_achievements(
            db,
            user_id,
            AchievementContext(
                type="lesson_complete",
                data={"module": module, "level_id": level_id, "total_lessons": lesson_count},
            ),
        )
    if level_completed:
        achievements += await check_achievements(
            db, user_id, AchievementContext(type="level_complete", data={"level_id": level_id})
        )
    if module_completed:
        achievements += await check_achievements(
            db, user_id, AchievementContext(type="module_complete", data={"module": module})
        )
    achievements += await check_reward_achievements(db, user_id)
    return achievements


async def update_lesson_progress(
    db: AsyncSession,
    user_id: int,
    update_in: LessonProgressUpdate,
) -> LessonCompletionResult:
    """Record lesson activity. A ``completed`` status goes through the completion path."""
    if update_in.status == "completed":
        return await record_lesson_completion(
            db,
            user_id,
            update_in.module,
            update_in.level_id,
            update_in.lesson_id,
            accuracy=update_in.accuracy or 0,
            time_spent=update_in.time_spent,
            level_completed=update_in.level_completed,
            module_completed=update_in.module_completed,
        )

    _validate_lesson(update_in.module, update_in.level_id, update_in.lesson_id)
    now = utcnow()
    progress, created = await _get_or_create_progress(
        db, user_id, update_in.module, update_in.level_id, update_in.lesson_id, now
    )

    # Completed lessons stay completed until an explicit reset.
    if progress.status != "completed":
        progress.status = update_in.status
        if progress.status == "in_progress" and progress.started_at is None:
            progress.started_at = now
    if update_in.completion_percentage is not None and progress.completed_at is None:
        progress.completion_percentage = update_in.completion_percentage
    if update_in.accuracy is not None:
        progress.accuracy = update_in.accuracy
    progress.time_spent += update_in.time_spent
    if not created:
        progress.attempts += 1
    progress.last_accessed_at = now

    await db.commit()
    await db.refresh(progress)
    return LessonCompletionResult(progress=ProgressResponse.model_validate(progress))


async def reset_lesson_progress(db: AsyncSession, user_id: int, progress_id: int) -> Progress:
    """Reset a lesson to not_started. Coins and badges already granted are kept."""
    result = await db.execute(
        select(Progress).where(Progress.id == progress_id, Progress.user_id == user_id)
    )
    progress = result.scalar_one_or_none()
    if progress is None:
        raise NotFound("Progress not found")

    progress.status = "not_started"
    progress.completion_percentage = 0
    progress.accuracy = 0
    progress.attempts = 0
    progress.completed_at = None
    progress.last_accessed_at = utcnow()
    await db.commit()
    await db.refresh(progress)
    logger.info("User %d reset progress %d", user_id, progress_id)
    return progress


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


async def list_progress(
    db: AsyncSession,
    user_id: int,
    module: str | None = None,
    level_id: str | None = None,
) -> list[Progress]:
    """Progress rows for a user, most recently accessed first."""
    stmt = select(Progress).where(Progress.user_id == user_id)
    if module is not None:
        stmt = stmt.where(Progress.module == module)
    if level_id is not None:
        stmt = stmt.where(Progress.level_id == level_id)
    result = await db.execute(stmt.order_by(Progress.last_accessed_at.desc(), Progress.id.desc()))
    return list(result.scalars())


async def get_lesson_progress(
    db: AsyncSession,
    user_id: int,
    module: str,
    level_id: str,
    lesson_id: str,
) -> Progress:
    result = await db.execute(
        select(Progress).where(
            Progress.user_id == user_id,
            Progress.module == module,
            Progress.level_id == level_id,
            Progress.lesson_id == lesson_id,
        )
    )
    progress = result.scalar_one_or_none()
    if progress is None:
        raise NotFound("Progress not found")
    return progress


async def get_progress_summary(db: AsyncSession, user_id: int) -> ProgressSummary:
    return await get_user_progress(db, user_id)
