"""Achievement, coin and streak endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from tilawa.auth.dependencies import get_current_user
from tilawa.database import get_session
from tilawa.db.models import User
from tilawa.rewards.achievements import (
    badge_catalog,
    get_achievement,
    list_achievements,
)
from tilawa.rewards.ledger import get_coin_stats, get_history, spend_coins
from tilawa.rewards.schemas import (
    AchievementListResponse,
    AwardedAchievement,
    BadgeCatalogEntry,
    BadgeCatalogResponse,
    CoinHistory,
    CoinStats,
    CoinTransactionResponse,
    LoginResult,
    SpendCoinsRequest,
    SpendCoinsResponse,
    StreakResponse,
)
from tilawa.rewards.streak import get_streak, record_login

router = APIRouter(prefix="/api/v1", tags=["Rewards"])


# ── Public endpoints ──


@router.get("/achievements/catalog", response_model=BadgeCatalogResponse)
async def get_catalog():
    """All badges that can be earned."""
    return BadgeCatalogResponse(badges=[BadgeCatalogEntry(**b) for b in badge_catalog()])


# ── Coins ──


@router.get("/achievements/coins/history", response_model=CoinHistory)
async def coin_history(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """Paginated coin transactions, newest first."""
    return await get_history(db, user.id, page=page, limit=limit)


@router.get("/achievements/coins/stats", response_model=CoinStats)
async def coin_stats(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    return await get_coin_stats(db, user.id)


@router.post("/achievements/coins/spend", response_model=SpendCoinsResponse)
async def spend(
    body: SpendCoinsRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """Redeem coins. 409 when the balance is too low."""
    entry = await spend_coins(db, user.id, body.amount, body.description)
    return SpendCoinsResponse(
        transaction=CoinTransactionResponse.model_validate(entry.transaction),
        balance=entry.new_balance,
    )


# ── Achievements ──


@router.get("/achievements", response_model=AchievementListResponse)
async def my_achievements(
    badge_type: str | None = Query(None),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """Badges earned by the current user."""
    rows = await list_achievements(db, user.id, badge_type=badge_type)
    items = [AwardedAchievement.model_validate(a) for a in rows]
    return AchievementListResponse(
        achievements=items,
        count=len(items),
        total_coins_rewarded=sum(a.coins_rewarded for a in items),
    )


@router.get("/achievements/{achievement_id}", response_model=AwardedAchievement)
async def achievement_detail(
    achievement_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    return await get_achievement(db, user.id, achievement_id)


# ── Streak ──


@router.post("/streak/login", response_model=LoginResult)
async def login_streak(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """Record a login for today and return the updated streak."""
    return await record_login(db, user.id)


@router.get("/streak", response_model=StreakResponse)
async def current_streak(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    row = await get_streak(db, user.id)
    return StreakResponse(streak_days=row.streak_days, last_active_date=row.last_active_date)
