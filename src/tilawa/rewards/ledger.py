"""Coin ledger: the only code path that changes a user's balance.

Every balance change is one atomic ``UPDATE users SET coins = coins + :n
... RETURNING coins`` followed by appending a ``coin_transactions`` row
stamped with the returned balance, both in the caller's transaction.
Functions here flush but never commit.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass

from sqlalchemy import case, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tilawa.config import get_settings
from tilawa.db.models import CoinTransaction, User
from tilawa.errors import InsufficientFunds, NotFound, ValidationError
from tilawa.rewards.schemas import (
    CoinHistory,
    CoinStats,
    CoinTransactionResponse,
    CoinTypeStats,
    LedgerAudit,
    Pagination,
)
from tilawa.rewards.transactions import commit_with_retry
from tilawa.timeutil import utcnow

logger = logging.getLogger(__name__)

TRANSACTION_TYPES = frozenset({
    "lesson_complete",
    "quiz_pass",
    "quiz_perfect",
    "quiz_attempt",
    "achievement",
    "daily_bonus",
    "streak_bonus",
    "mistake_resolved",
    "referral",
    "admin_grant",
    "purchase",
    "reward_redemption",
})

REFERENCE_MODELS = frozenset({"progress", "quiz_result", "achievement", "mistake"})

# (reference_model, reference_id)
Reference = tuple[str, int]


@dataclass
class LedgerEntry:
    transaction: CoinTransaction
    new_balance: int


def _validate(type_: str, amount: int, reference: Reference | None) -> None:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise ValidationError(f"Coin amount must be a positive integer, got {amount!r}")
    if type_ not in TRANSACTION_TYPES:
        raise ValidationError(f"Unknown transaction type: {type_}")
    if reference is not None and reference[0] not in REFERENCE_MODELS:
        raise ValidationError(f"Unknown reference model: {reference[0]}")


async def _append(
    db: AsyncSession,
    user_id: int,
    type_: str,
    amount: int,
    balance: int,
    description: str,
    reference: Reference | None,
) -> CoinTransaction:
    tx = CoinTransaction(
        user_id=user_id,
        type=type_,
        amount=amount,
        balance=balance,
        description=description,
        reference_model=reference[0] if reference else None,
        reference_id=reference[1] if reference else None,
        created_at=utcnow(),
    )
    db.add(tx)
    await db.flush()
    return tx


async def add_coins(
    db: AsyncSession,
    user_id: int,
    type_: str,
    amount: int,
    description: str,
    reference: Reference | None = None,
) -> LedgerEntry:
    """Credit amount coins and append the matching transaction.

    Raises ValidationError for a non-positive amount or unknown type, and
    NotFound when the user does not exist. Nothing is written in either case.
    """
    _validate(type_, amount, reference)

    result = await db.execute(
        update(User)
        .where(User.id == user_id)
        .values(coins=User.coins + amount)
        .returning(User.coins)
    )
    new_balance = result.scalar_one_or_none()
    if new_balance is None:
        raise NotFound(f"User {user_id} not found")

    tx = await _append(db, user_id, type_, amount, new_balance, description, reference)
    logger.info("Credited %d coins to user %d (%s), balance %d", amount, user_id, type_, new_balance)
    return LedgerEntry(transaction=tx, new_balance=new_balance)


async def deduct_coins(
    db: AsyncSession,
    user_id: int,
    type_: str,
    amount: int,
    description: str,
    reference: Reference | None = None,
) -> LedgerEntry:
    """Debit amount coins, only if the balance covers it.

    The stored transaction amount is negative. Raises InsufficientFunds
    without writing anything when the balance is too low.
    """
    _validate(type_, amount, reference)

    result = await db.execute(
        update(User)
        .where(User.id == user_id, User.coins >= amount)
        .values(coins=User.coins - amount)
        .returning(User.coins)
    )
    new_balance = result.scalar_one_or_none()
    if new_balance is None:
        balance = await db.scalar(select(User.coins).where(User.id == user_id))
        if balance is None:
            raise NotFound(f"User {user_id} not found")
        raise InsufficientFunds(balance=balance, requested=amount)

    tx = await _append(db, user_id, type_, -amount, new_balance, description, reference)
    logger.info("Debited %d coins from user %d (%s), balance %d", amount, user_id, type_, new_balance)
    return LedgerEntry(transaction=tx, new_balance=new_balance)


async def spend_coins(db: AsyncSession, user_id: int, amount: int, description: str) -> LedgerEntry:
    """Redeem coins for a reward and commit."""

    async def unit() -> LedgerEntry:
        return await deduct_coins(db, user_id, "reward_redemption", amount, description)

    return await commit_with_retry(db, unit)


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


async def get_history(db: AsyncSession, user_id: int, page: int = 1, limit: int = 20) -> CoinHistory:
    """Transactions for a user, newest first."""
    max_limit = get_settings().coin_history_max_limit
    if page < 1:
        raise ValidationError("page must be >= 1")
    if limit < 1 or limit > max_limit:
        raise ValidationError(f"limit must be between 1 and {max_limit}")

    total = await db.scalar(
        select(func.count()).select_from(CoinTransaction).where(CoinTransaction.user_id == user_id)
    ) or 0

    result = await db.execute(
        select(CoinTransaction)
        .where(CoinTransaction.user_id == user_id)
        .order_by(CoinTransaction.created_at.desc(), CoinTransaction.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    transactions = [CoinTransactionResponse.model_validate(tx) for tx in result.scalars()]

    return CoinHistory(
        transactions=transactions,
        pagination=Pagination(total=total, page=page, pages=math.ceil(total / limit), limit=limit),
    )


async def get_coin_stats(db: AsyncSession, user_id: int) -> CoinStats:
    """Balance plus earned/spent totals and a per-type breakdown."""
    balance = await db.scalar(select(User.coins).where(User.id == user_id))
    if balance is None:
        raise NotFound(f"User {user_id} not found")

    totals = (
        await db.execute(
            select(
                func.coalesce(func.sum(case((CoinTransaction.amount > 0, CoinTransaction.amount), else_=0)), 0),
                func.coalesce(func.sum(case((CoinTransaction.amount < 0, -CoinTransaction.amount), else_=0)), 0),
                func.count(CoinTransaction.id),
            ).where(CoinTransaction.user_id == user_id)
        )
    ).one()

    by_type_rows = await db.execute(
        select(CoinTransaction.type, func.count(CoinTransaction.id), func.sum(CoinTransaction.amount))
        .where(CoinTransaction.user_id == user_id)
        .group_by(CoinTransaction.type)
    )
    by_type = {
        row[0]: CoinTypeStats(count=row[1], amount=row[2] or 0)
        for row in by_type_rows
    }

    return CoinStats(
        current_balance=balance,
        total_earned=int(totals[0]),
        total_spent=int(totals[1]),
        transaction_count=int(totals[2]),
        by_type=by_type,
    )


async def audit_ledger(db: AsyncSession, user_id: int) -> LedgerAudit:
    """Recompute running balances from the transaction log.

    Reports the first transaction whose stored balance disagrees with the
    prefix sum, and whether the cached balance equals the ledger sum.
    """
    balance = await db.scalar(select(User.coins).where(User.id == user_id))
    if balance is None:
        raise NotFound(f"User {user_id} not found")

    result = await db.execute(
        select(CoinTransaction.id, CoinTransaction.amount, CoinTransaction.balance)
        .where(CoinTransaction.user_id == user_id)
        .order_by(CoinTransaction.created_at.asc(), CoinTransaction.id.asc())
    )

    running = 0
    first_broken: int | None = None
    for tx_id, amount, stored_balance in result:
        running += amount
        if first_broken is None and stored_balance != running:
            first_broken = tx_id

    consistent = first_broken is None and running == balance
    if not consistent:
        logger.warning(
            "Ledger mismatch for user %d: balance=%d ledger_sum=%d first_broken=%s",
            user_id, balance, running, first_broken,
        )
    return LedgerAudit(
        balance=balance,
        ledger_sum=running,
        consistent=consistent,
        first_broken_transaction_id=first_broken,
    )
