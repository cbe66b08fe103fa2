"""Daily login streak tracking."""

from __future__ import annotations

import logging
from datetime import datetime, tzinfo

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tilawa.db.models import User
from tilawa.errors import NotFound
from tilawa.rewards.achievements import check_achievements, check_reward_achievements
from tilawa.rewards.schemas import AchievementContext, LoginResult, StreakState
from tilawa.timeutil import as_utc, calendar_days_between, local_tz, utcnow

logger = logging.getLogger(__name__)


def advance_streak(
    last_active: datetime | None,
    streak_days: int,
    now: datetime,
    tz: tzinfo | None = None,
) -> StreakState:
    """Apply one login to a streak.

    Same local day keeps the count, the next day extends it, and any
    longer gap restarts at 1. The stored timestamp is the exact login time.
    """
    if last_active is None:
        days = 1
    else:
        diff = calendar_days_between(last_active, now, tz or local_tz())
        if diff <= 0:
            # Same day, or a clock that moved backwards. A stored 0 beside a login
            # timestamp only comes from a manual fix-up, so floor it at 1.
            days = max(streak_days, 1)
        elif diff == 1:
            days = streak_days + 1
        else:
            days = 1
    return StreakState(streak_days=days, last_active_date=as_utc(now))


async def record_login(db: AsyncSession, user_id: int, now: datetime | None = None) -> LoginResult:
    """Advance the user's streak for a login at now and evaluate streak badges."""
    if now is None:
        now = utcnow()

    result = await db.execute(
        select(User)
        .where(User.id == user_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    user = result.scalar_one_or_none()
    if user is None:
        raise NotFound(f"User {user_id} not found")

    previous = user.streak_days
    state = advance_streak(user.last_active_date, user.streak_days, now)
    user.streak_days = state.streak_days
    user.last_active_date = state.last_active_date
    await db.commit()

    if state.streak_days != previous:
        logger.info("User %d streak %d -> %d", user_id, previous, state.streak_days)

    achievements = await check_achievements(
        db, user_id, AchievementContext(type="streak", data={"streak_days": state.streak_days})
    )
    if achievements:
        achievements += await check_reward_achievements(db, user_id)

    return LoginResult(
        streak_days=state.streak_days,
        last_active_date=state.last_active_date,
        achievements=achievements,
    )


async def get_streak(db: AsyncSession, user_id: int) -> User:
    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if user is None:
        raise NotFound(f"User {user_id} not found")
    return user
