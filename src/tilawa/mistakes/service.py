"""Mistake log, resolution and practice attempts."""

from __future__ import annotations

import logging

import structlog
from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from tilawa.db.models import Mistake
from tilawa.errors import ConcurrencyConflict, NotFound
from tilawa.mistakes.schemas import MistakeBucket, MistakeCreate, MistakeResolution, MistakeResponse, MistakeStats
from tilawa.rewards.achievements import check_achievements, check_reward_achievements
from tilawa.rewards.ledger import add_coins
from tilawa.rewards.reward_table import COIN_REWARDS
from tilawa.rewards.schemas import AchievementContext, AwardedAchievement
from tilawa.rewards.transactions import commit_with_retry
from tilawa.timeutil import utcnow

logger = logging.getLogger(__name__)
audit_log = structlog.get_logger()


async def log_mistake(db: AsyncSession, user_id: int, mistake_in: MistakeCreate) -> Mistake:
    mistake = Mistake(
        user_id=user_id,
        **mistake_in.model_dump(),
        created_at=utcnow(),
    )
    db.add(mistake)
    await db.commit()
    return mistake


async def list_mistakes(
    db: AsyncSession,
    user_id: int,
    module: str | None = None,
    mistake_type: str | None = None,
    is_resolved: bool | None = None,
) -> list[Mistake]:
    """Logged mistakes, newest first."""
    stmt = select(Mistake).where(Mistake.user_id == user_id)
    if module is not None:
        stmt = stmt.where(Mistake.module == module)
    if mistake_type is not None:
        stmt = stmt.where(Mistake.mistake_type == mistake_type)
    if is_resolved is not None:
        stmt = stmt.where(Mistake.is_resolved.is_(is_resolved))
    result = await db.execute(stmt.order_by(Mistake.created_at.desc(), Mistake.id.desc()))
    return list(result.scalars())


async def get_mistake(db: AsyncSession, user_id: int, mistake_id: int) -> Mistake:
    result = await db.execute(
        select(Mistake)
        .where(Mistake.id == mistake_id, Mistake.user_id == user_id)
        .execution_options(populate_existing=True)
    )
    mistake = result.scalar_one_or_none()
    if mistake is None:
        raise NotFound("Mistake not found")
    return mistake


async def delete_mistake(db: AsyncSession, user_id: int, mistake_id: int) -> None:
    """Remove a logged mistake. Coins already paid for resolving it stay in the ledger."""
    result = await db.execute(
        delete(Mistake).where(Mistake.id == mistake_id, Mistake.user_id == user_id).returning(Mistake.id)
    )
    if result.scalar_one_or_none() is None:
        await db.rollback()
        raise NotFound("Mistake not found")
    await db.commit()
    logger.info("User %d deleted mistake %d", user_id, mistake_id)


async def get_mistake_stats(db: AsyncSession, user_id: int) -> MistakeStats:
    """Totals and resolved counts, overall and broken down by type and module."""
    result = await db.execute(
        select(Mistake.mistake_type, Mistake.module, Mistake.is_resolved, func.count())
        .where(Mistake.user_id == user_id)
        .group_by(Mistake.mistake_type, Mistake.module, Mistake.is_resolved)
    )
    total = resolved = 0
    by_type: dict[str, MistakeBucket] = {}
    by_module: dict[str, MistakeBucket] = {}
    for mistake_type, module, is_resolved, n in result:
        total += n
        for bucket in (by_type.setdefault(mistake_type, MistakeBucket()), by_module.setdefault(module, MistakeBucket())):
            bucket.total += n
            if is_resolved:
                bucket.resolved += n
        if is_resolved:
            resolved += n
    return MistakeStats(
        total=total,
        resolved=resolved,
        unresolved=total - resolved,
        by_type=by_type,
        by_module=by_module,
    )


async def _resolve(
    db: AsyncSession,
    user_id: int,
    mistake_id: int,
    correction_note: str | None,
    description: str,
) -> MistakeResolution:
    """Flip is_resolved once, then credit the resolution reward."""
    mistake = await get_mistake(db, user_id, mistake_id)
    values: dict = {"is_resolved": True, "resolved_at": utcnow()}
    if correction_note:
        values["correction_note"] = correction_note

    flipped = await db.execute(
        update(Mistake)
        .where(Mistake.id == mistake_id, Mistake.is_resolved.is_(False))
        .values(**values)
        .returning(Mistake.id)
    )
    if flipped.scalar_one_or_none() is None:
        await db.rollback()
        mistake = await get_mistake(db, user_id, mistake_id)
        return MistakeResolution(mistake=MistakeResponse.model_validate(mistake), already_resolved=True)

    await db.commit()
    title = mistake.title
    coins = COIN_REWARDS["MISTAKE_RESOLVED"]
    coins_earned = 0
    achievements: list[AwardedAchievement] = []
    rewards_pending = False

    async def credit() -> None:
        await add_coins(
            db,
            user_id,
            "mistake_resolved",
            coins,
            f"{description}: {title}",
            reference=("mistake", mistake_id),
        )

    try:
        await commit_with_retry(db, credit)
        coins_earned = coins
        achievements = await check_achievements(db, user_id, AchievementContext(type="mistake_resolved"))
        achievements += await check_reward_achievements(db, user_id)
    except (ConcurrencyConflict, SQLAlchemyError):
        await db.rollback()
        rewards_pending = True
        audit_log.error(
            "reward_credit_failed",
            user_id=user_id,
            source="mistake_resolved",
            mistake_id=mistake_id,
            coins=coins,
            credited=coins_earned,
            exc_info=True,
        )

    logger.info("User %d resolved mistake %d", user_id, mistake_id)
    mistake = await get_mistake(db, user_id, mistake_id)
    return MistakeResolution(
        mistake=MistakeResponse.model_validate(mistake),
        coins_earned=coins_earned,
        achievements=achievements,
        rewards_pending=rewards_pending,
    )


async def resolve_mistake(
    db: AsyncSession,
    user_id: int,
    mistake_id: int,
    correction_note: str | None = None,
) -> MistakeResolution:
    """Mark a mistake resolved. Pays once; resolving again is a no-op."""
    return await _resolve(db, user_id, mistake_id, correction_note, "Resolved mistake")


async def submit_practice_attempt(
    db: AsyncSession,
    user_id: int,
    mistake_id: int,
    is_correct: bool,
    attempt_number: int = 1,
) -> MistakeResolution:
    """Record a practice attempt. A correct attempt resolves the mistake."""
    mistake = await get_mistake(db, user_id, mistake_id)
    if mistake.is_resolved:
        return MistakeResolution(mistake=MistakeResponse.model_validate(mistake), already_resolved=True)
    if not is_correct:
        return MistakeResolution(mistake=MistakeResponse.model_validate(mistake))

    resolution = await _resolve(
        db,
        user_id,
        mistake_id,
        f"Self-assessed as correct after {attempt_number} practice attempt(s)",
        "Resolved mistake through practice",
    )
    if not resolution.already_resolved:
        resolution.auto_resolved = True
    return resolution
