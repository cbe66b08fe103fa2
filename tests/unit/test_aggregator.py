"""Progress aggregator tests: summary maths from one snapshot of rows."""

from __future__ import annotations

from datetime import date, datetime, timezone
from types import SimpleNamespace
from zoneinfo import ZoneInfo

import pytest

from tilawa.db.models import Progress
from tilawa.errors import NotFound
from tilawa.progress.aggregator import get_user_progress, summarize_progress

UTC = timezone.utc
TODAY = date(2026, 3, 10)


def _row(module="Qaida", status="completed", accuracy=0.0, time_spent=60, coins=20, completed_at=None):
    return SimpleNamespace(
        module=module,
        status=status,
        accuracy=accuracy,
        time_spent=time_spent,
        coins_earned=coins,
        completed_at=completed_at,
    )


class TestSummarizeProgress:
    def test_empty(self):
        summary = summarize_progress([], "qaida_1", TODAY, UTC)
        assert summary.total_lessons == 0
        assert summary.completed_percentage == 0
        assert summary.accuracy == 0
        assert summary.last_activity is None
        assert len(summary.weekly_progress) == 7
        assert summary.lessons_by_type["Dua"].total == 0

    def test_ten_completed_five_in_progress(self):
        """Accuracy averages only rows with a recorded accuracy."""
        rows = [_row(accuracy=a) for a in (80, 90, 100)]
        rows += [_row() for _ in range(7)]
        rows += [_row(status="in_progress", coins=0) for _ in range(5)]

        summary = summarize_progress(rows, "qaida_2", TODAY, UTC)

        assert summary.total_lessons == 15
        assert summary.completed_lessons == 10
        assert summary.completed_percentage == pytest.approx(66.67)
        assert summary.accuracy == 90
        assert summary.total_time_spent == 15 * 60
        assert summary.total_coins == 200
        assert summary.current_level == "qaida_2"

    def test_by_module_and_lessons_by_type(self):
        rows = [
            _row(module="Quran", accuracy=70),
            _row(module="Quran", status="in_progress", accuracy=0),
            _row(module="Dua", accuracy=95),
        ]
        summary = summarize_progress(rows, "qaida_1", TODAY, UTC)

        modules = {m.module: m for m in summary.by_module}
        assert set(modules) == {"Quran", "Dua"}
        assert modules["Quran"].total_lessons == 2
        assert modules["Quran"].completed_lessons == 1
        assert modules["Quran"].average_accuracy == 35
        assert summary.lessons_by_type["Quran"].completed == 1
        assert summary.lessons_by_type["Quran"].total == 2
        assert summary.lessons_by_type["Qaida"].total == 0

    def test_module_average_counts_zero_accuracy(self):
        """Per-module accuracy is a plain mean; only the overall figure skips zeros."""
        rows = [_row(module="Qaida", accuracy=80), _row(module="Qaida", status="in_progress", accuracy=0)]
        summary = summarize_progress(rows, "qaida_1", TODAY, UTC)

        assert summary.by_module[0].average_accuracy == 40
        assert summary.accuracy == 80

    def test_weekly_window(self):
        rows = [
            _row(accuracy=80, completed_at=datetime(2026, 3, 10, 8, tzinfo=UTC)),
            _row(accuracy=91, completed_at=datetime(2026, 3, 10, 23, 59, tzinfo=UTC)),
            _row(accuracy=60, completed_at=datetime(2026, 3, 4, 0, 0, tzinfo=UTC)),
            _row(accuracy=50, completed_at=datetime(2026, 3, 3, 23, 59, tzinfo=UTC)),  # outside
        ]
        summary = summarize_progress(rows, "qaida_1", TODAY, UTC)
        weekly = summary.weekly_progress

        assert [d.date for d in weekly] == [date(2026, 3, d) for d in range(4, 11)]
        assert weekly[0].lessons_completed == 1
        assert weekly[0].accuracy == 60
        assert weekly[-1].lessons_completed == 2
        assert weekly[-1].accuracy == 86  # 85.5 rounds up
        assert sum(d.lessons_completed for d in weekly) == 3
        assert summary.last_activity == datetime(2026, 3, 10, 23, 59, tzinfo=UTC)

    def test_weekly_uses_local_midnight(self):
        karachi = ZoneInfo("Asia/Karachi")  # UTC+5
        # 20:00 UTC on the 9th is 01:00 local on the 10th
        rows = [_row(completed_at=datetime(2026, 3, 9, 20, 0, tzinfo=UTC))]
        summary = summarize_progress(rows, "qaida_1", TODAY, karachi)
        assert summary.weekly_progress[-1].lessons_completed == 1
        assert summary.weekly_progress[-2].lessons_completed == 0

    def test_naive_timestamps_treated_as_utc(self):
        rows = [_row(completed_at=datetime(2026, 3, 10, 8))]
        summary = summarize_progress(rows, "qaida_1", TODAY, UTC)
        assert summary.weekly_progress[-1].lessons_completed == 1


class TestGetUserProgress:
    @pytest.mark.asyncio
    async def test_reads_rows_and_level(self, db_session, make_user):
        user = await make_user(current_level="quran_3")
        now = datetime(2026, 3, 10, 12, tzinfo=UTC)
        db_session.add_all([
            Progress(
                user_id=user.id, module="Quran", level_id="quran_3", lesson_id=f"l{i}",
                status="completed", accuracy=90, time_spent=30, coins_earned=25,
                completed_at=now, last_accessed_at=now,
            )
            for i in range(2)
        ])
        await db_session.commit()

        summary = await get_user_progress(db_session, user.id, now=now)

        assert summary.current_level == "quran_3"
        assert summary.completed_lessons == 2
        assert summary.total_coins == 50
        assert summary.weekly_progress[-1].lessons_completed == 2

    @pytest.mark.asyncio
    async def test_unknown_user(self, db_session):
        with pytest.raises(NotFound):
            await get_user_progress(db_session, 404)
