"""Pydantic models for coins, achievements and streaks."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


# --- Coins ---


class CoinTransactionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    type: str
    amount: int
    balance: int
    description: str
    reference_model: str | None = None
    reference_id: int | None = None
    created_at: datetime


class Pagination(BaseModel):
    total: int
    page: int
    pages: int
    limit: int


class CoinHistory(BaseModel):
    transactions: list[CoinTransactionResponse]
    pagination: Pagination


class CoinTypeStats(BaseModel):
    count: int
    amount: int


class CoinStats(BaseModel):
    current_balance: int
    total_earned: int
    total_spent: int
    transaction_count: int
    by_type: dict[str, CoinTypeStats] = {}


class LedgerAudit(BaseModel):
    balance: int
    ledger_sum: int
    consistent: bool
    first_broken_transaction_id: int | None = None


class SpendCoinsRequest(BaseModel):
    amount: int = Field(gt=0)
    description: str = Field(min_length=1, max_length=256)


class SpendCoinsResponse(BaseModel):
    transaction: CoinTransactionResponse
    balance: int


# --- Achievements ---


class AchievementContext(BaseModel):
    """An event handed to the achievement engine."""

    type: str
    data: dict[str, Any] = {}


class AwardedAchievement(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    badge_type: str
    title: str
    description: str
    coins_rewarded: int
    details: dict[str, Any] = {}
    earned_at: datetime


class AchievementListResponse(BaseModel):
    achievements: list[AwardedAchievement]
    count: int
    total_coins_rewarded: int


class BadgeCatalogEntry(BaseModel):
    badge_type: str
    title: str
    description: str
    coins: int


class BadgeCatalogResponse(BaseModel):
    badges: list[BadgeCatalogEntry]


# --- Streak ---


class StreakState(BaseModel):
    streak_days: int
    last_active_date: datetime


class LoginResult(BaseModel):
    streak_days: int
    last_active_date: datetime
    achievements: list[AwardedAchievement] = []


class StreakResponse(BaseModel):
    streak_days: int
    last_active_date: datetime | None = None
