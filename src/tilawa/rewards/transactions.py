"""Bounded-retry commit for reward units."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from tilawa.config import get_settings
from tilawa.errors import ConcurrencyConflict

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def commit_with_retry(
    db: AsyncSession,
    unit: Callable[[], Awaitable[T]],
    attempts: int | None = None,
) -> T:
    """Run unit() and commit, retrying on lock contention.

    The unit must be safe to re-run from scratch: every attempt starts from
    the last committed state because the session is rolled back in between.
    """
    if attempts is None:
        attempts = get_settings().ledger_max_retries

    for attempt in range(1, attempts + 1):
        try:
            result = await unit()
            await db.commit()
            return result
        except OperationalError:
            await db.rollback()
            logger.warning("Ledger contention (attempt %d/%d)", attempt, attempts, exc_info=True)

    raise ConcurrencyConflict(f"Could not commit after {attempts} attempts")
