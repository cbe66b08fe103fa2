"""Achievement engine: evaluates learning events against the badge triggers.

Awards are guarded by UNIQUE(user_id, badge_type) rather than a prior
existence check, so two concurrent events can never both award a badge.
Each award is committed on its own together with its coin credit.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from tilawa.db.models import Achievement, Mistake, User
from tilawa.errors import DuplicateAchievement, NotFound, ValidationError
from tilawa.rewards.badges import (
    BADGE_DEFINITIONS,
    BadgeDetails,
    CoinDetails,
    LessonMilestoneDetails,
    LevelDetails,
    MistakeDetails,
    ModuleDetails,
    QuizDetails,
    StreakDetails,
    get_badge_definition,
)
from tilawa.rewards.ledger import add_coins
from tilawa.rewards.schemas import AchievementContext, AwardedAchievement
from tilawa.rewards.transactions import commit_with_retry
from tilawa.timeutil import utcnow

logger = logging.getLogger(__name__)

Candidate = tuple[str, BadgeDetails]


async def _insert_achievement(
    db: AsyncSession,
    user_id: int,
    badge_type: str,
    definition: dict,
    details: BadgeDetails | None,
) -> Achievement:
    achievement = Achievement(
        user_id=user_id,
        badge_type=badge_type,
        title=definition["title"],
        description=definition["description"],
        coins_rewarded=definition["coins"],
        details=details.model_dump() if details is not None else {},
        earned_at=utcnow(),
    )
    db.add(achievement)
    try:
        await db.flush()
    except IntegrityError as exc:
        raise DuplicateAchievement(f"User {user_id} already has {badge_type}") from exc
    return achievement


async def award_badge(
    db: AsyncSession,
    user_id: int,
    badge_type: str,
    details: BadgeDetails | None = None,
) -> AwardedAchievement | None:
    """Award a badge and credit its coins. Returns None if already earned.

    Commits on success and rolls back on a duplicate, so the caller must
    have committed its own work first. ORM objects loaded before the call
    may be expired afterwards.
    """
    definition = get_badge_definition(badge_type)

    async def unit() -> AwardedAchievement:
        achievement = await _insert_achievement(db, user_id, badge_type, definition, details)
        if definition["coins"] > 0:
            await add_coins(
                db,
                user_id,
                "achievement",
                definition["coins"],
                f'Earned "{definition["title"]}" badge',
                reference=("achievement", achievement.id),
            )
        return AwardedAchievement.model_validate(achievement)

    try:
        awarded = await commit_with_retry(db, unit)
    except DuplicateAchievement:
        await db.rollback()
        logger.debug("Badge %s already earned by user %d", badge_type, user_id)
        return None

    logger.info("Awarded badge %s to user %d (+%d coins)", badge_type, user_id, definition["coins"])
    return awarded


class AchievementEngine:
    """Fixed trigger table, one evaluator per event type."""

    LESSON_MILESTONES: list[tuple[str, int]] = [
        ("first_lesson", 1),
        ("100_lessons", 100),
        ("500_lessons", 500),
    ]
    STREAK_MILESTONES: list[tuple[str, int]] = [
        ("week_streak", 7),
        ("month_streak", 30),
    ]
    LEVEL_BADGES: dict[str, str] = {
        "qaida_2": "level_2_badge",
        "quran_2": "level_2_badge",
        "qaida_5": "level_5_badge",
        "quran_5": "level_5_badge",
    }
    MODULE_BADGES: dict[str, str] = {
        "Qaida": "qaida_complete",
        "Quran": "quran_complete",
    }
    COIN_COLLECTOR_THRESHOLD = 1000
    MISTAKE_WARRIOR_THRESHOLD = 50

    def __init__(self, db: AsyncSession) -> None:
        self.db = db
        self._evaluators: dict[str, Callable[[User, dict[str, Any]], Awaitable[list[Candidate]]]] = {
            "lesson_complete": self._lesson_complete,
            "quiz_complete": self._quiz_complete,
            "level_complete": self._level_complete,
            "module_complete": self._module_complete,
            "streak": self._streak,
            "coins": self._coins,
            "mistake_resolved": self._mistake_resolved,
        }

    async def check(self, user_id: int, context: AchievementContext) -> list[AwardedAchievement]:
        """Evaluate one event and award every badge it unlocks."""
        evaluator = self._evaluators.get(context.type)
        if evaluator is None:
            raise ValidationError(f"Unknown achievement event: {context.type}")

        result = await self.db.execute(
            select(User).where(User.id == user_id).execution_options(populate_existing=True)
        )
        user = result.scalar_one_or_none()
        if user is None:
            raise NotFound(f"User {user_id} not found")

        candidates = await evaluator(user, context.data)

        awarded: list[AwardedAchievement] = []
        for badge_type, details in candidates:
            achievement = await award_badge(self.db, user_id, badge_type, details)
            if achievement is not None:
                awarded.append(achievement)
        return awarded

    # --- Evaluators ---

    async def _lesson_complete(self, user: User, data: dict[str, Any]) -> list[Candidate]:
        # The count returned by the increment, so concurrent completions each see their own value
        total = data.get("total_lessons", user.total_lessons_completed)
        return [
            (slug, LessonMilestoneDetails(total_lessons=total))
            for slug, threshold in self.LESSON_MILESTONES
            if total == threshold
        ]

    async def _quiz_complete(self, user: User, data: dict[str, Any]) -> list[Candidate]:
        percentage = _require(data, "percentage")
        if percentage != 100:
            return []
        details = QuizDetails(
            quiz_id=str(_require(data, "quiz_id")),
            score=_require(data, "score"),
            percentage=percentage,
        )
        return [("perfect_score", details)]

    async def _level_complete(self, user: User, data: dict[str, Any]) -> list[Candidate]:
        level_id = _require(data, "level_id")
        slug = self.LEVEL_BADGES.get(level_id)
        return [(slug, LevelDetails(level_id=level_id))] if slug else []

    async def _module_complete(self, user: User, data: dict[str, Any]) -> list[Candidate]:
        module = _require(data, "module")
        slug = self.MODULE_BADGES.get(module)
        return [(slug, ModuleDetails(module=module))] if slug else []

    async def _streak(self, user: User, data: dict[str, Any]) -> list[Candidate]:
        streak_days = data.get("streak_days", user.streak_days)
        return [
            (slug, StreakDetails(streak_days=streak_days))
            for slug, threshold in self.STREAK_MILESTONES
            if streak_days == threshold
        ]

    async def _coins(self, user: User, data: dict[str, Any]) -> list[Candidate]:
        if user.coins < self.COIN_COLLECTOR_THRESHOLD:
            return []
        return [("coin_collector", CoinDetails(total_coins=user.coins))]

    async def _mistake_resolved(self, user: User, data: dict[str, Any]) -> list[Candidate]:
        resolved = await self.db.scalar(
            select(func.count())
            .select_from(Mistake)
            .where(Mistake.user_id == user.id, Mistake.is_resolved.is_(True))
        ) or 0
        # Concurrent resolutions can skip past the exact threshold; the unique constraint keeps one award
        if resolved < self.MISTAKE_WARRIOR_THRESHOLD:
            return []
        return [("mistake_warrior", MistakeDetails(resolved_count=resolved))]


def _require(data: dict[str, Any], key: str) -> Any:
    if key not in data:
        raise ValidationError(f"Achievement event is missing '{key}'")
    return data[key]


async def check_achievements(
    db: AsyncSession,
    user_id: int,
    context: AchievementContext,
) -> list[AwardedAchievement]:
    """Evaluate an event for user_id and return the newly earned badges."""
    return await AchievementEngine(db).check(user_id, context)


async def check_reward_achievements(db: AsyncSession, user_id: int) -> list[AwardedAchievement]:
    """Run the balance trigger after coins were credited."""
    return await check_achievements(db, user_id, AchievementContext(type="coins"))


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


async def list_achievements(
    db: AsyncSession,
    user_id: int,
    badge_type: str | None = None,
) -> list[Achievement]:
    """Earned badges for a user, most recent first."""
    stmt = select(Achievement).where(Achievement.user_id == user_id)
    if badge_type is not None:
        if badge_type not in BADGE_DEFINITIONS:
            raise ValidationError(f"Unknown badge type: {badge_type}")
        stmt = stmt.where(Achievement.badge_type == badge_type)
    result = await db.execute(stmt.order_by(Achievement.earned_at.desc(), Achievement.id.desc()))
    return list(result.scalars())


async def get_achievement(db: AsyncSession, user_id: int, achievement_id: int) -> Achievement:
    result = await db.execute(
        select(Achievement).where(Achievement.id == achievement_id, Achievement.user_id == user_id)
    )
    achievement = result.scalar_one_or_none()
    if achievement is None:
        raise NotFound("Achievement not found")
    return achievement


def badge_catalog() -> list[dict]:
    """Every badge that can be earned, in catalog order."""
    return [
        {"badge_type": slug, **definition}
        for slug, definition in BADGE_DEFINITIONS.items()
    ]
