"""Progress summary built from one snapshot of a user's progress rows."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date, datetime, timedelta, tzinfo

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tilawa.db.models import Progress, User
from tilawa.errors import NotFound
from tilawa.progress.schemas import (
    DayActivity,
    LessonCount,
    ModuleSummary,
    ProgressSummary,
)
from tilawa.timeutil import as_utc, day_bounds, local_date, local_tz, round_half_up, utcnow

MODULES = ("Quran", "Dua", "Qaida")


def _mean_accuracy(rows: Sequence[Progress]) -> int:
    """Rounded mean over rows with a recorded (non-zero) accuracy.

    Used for the overall figure only; per-module averages count every row.
    """
    values = [r.accuracy for r in rows if r.accuracy]
    if not values:
        return 0
    return round_half_up(sum(values) / len(values))


def summarize_progress(
    rows: Sequence[Progress],
    current_level: str,
    today: date,
    tz: tzinfo | None = None,
) -> ProgressSummary:
    """Compute every summary figure from the same list of rows.

    ``today`` is the local calendar date; the weekly window is
    ``today - 6 .. today`` with local midnight boundaries.
    """
    tz = tz or local_tz()
    total = len(rows)
    completed = [r for r in rows if r.status == "completed"]

    by_module: list[ModuleSummary] = []
    lessons_by_type = {m: LessonCount() for m in MODULES}
    for module in sorted({r.module for r in rows}):
        module_rows = [r for r in rows if r.module == module]
        module_completed = sum(1 for r in module_rows if r.status == "completed")
        by_module.append(ModuleSummary(
            module=module,
            total_lessons=len(module_rows),
            completed_lessons=module_completed,
            total_time_spent=sum(r.time_spent or 0 for r in module_rows),
            average_accuracy=round_half_up(sum(r.accuracy or 0 for r in module_rows) / len(module_rows)),
            total_coins=sum(r.coins_earned or 0 for r in module_rows),
        ))
        lessons_by_type[module] = LessonCount(completed=module_completed, total=len(module_rows))

    completion_times = [(as_utc(r.completed_at), r) for r in rows if r.completed_at is not None]

    weekly: list[DayActivity] = []
    for offset in range(6, -1, -1):
        day = today - timedelta(days=offset)
        start, end = day_bounds(day, tz)
        day_rows = [r for ts, r in completion_times if start <= ts < end]
        day_accuracy = (
            round_half_up(sum(r.accuracy or 0 for r in day_rows) / len(day_rows)) if day_rows else 0
        )
        weekly.append(DayActivity(date=day, lessons_completed=len(day_rows), accuracy=day_accuracy))

    last_activity = max((ts for ts, _ in completion_times), default=None)

    return ProgressSummary(
        total_lessons=total,
        completed_lessons=len(completed),
        completed_percentage=round(len(completed) / total * 100, 2) if total else 0.0,  # shown as-is, e.g. 66.67
        total_time_spent=sum(r.time_spent or 0 for r in rows),
        accuracy=_mean_accuracy(rows),
        total_coins=sum(r.coins_earned or 0 for r in rows),
        current_level=current_level,
        by_module=by_module,
        weekly_progress=weekly,
        lessons_by_type=lessons_by_type,
        last_activity=last_activity,
    )


async def get_user_progress(
    db: AsyncSession,
    user_id: int,
    now: datetime | None = None,
) -> ProgressSummary:
    """Read-only progress summary for a user."""
    current_level = await db.scalar(select(User.current_level).where(User.id == user_id))
    if current_level is None:
        raise NotFound(f"User {user_id} not found")

    result = await db.execute(select(Progress).where(Progress.user_id == user_id))
    rows = list(result.scalars())

    tz = local_tz()
    today = local_date(now or utcnow(), tz)
    return summarize_progress(rows, current_level, today, tz)
