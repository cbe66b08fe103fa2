"""Lesson completion tests: once-only rewards, failure handling, resets."""

from __future__ import annotations

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from tilawa.db.models import Achievement, CoinTransaction, Progress, User
from tilawa.errors import NotFound, ValidationError
from tilawa.progress import service as progress_service
from tilawa.progress.schemas import LessonProgressUpdate
from tilawa.progress.service import (
    get_lesson_progress,
    list_progress,
    record_lesson_completion,
    reset_lesson_progress,
    update_lesson_progress,
)


async def _user(db, user_id) -> User:
    result = await db.execute(select(User).where(User.id == user_id).execution_options(populate_existing=True))
    return result.scalar_one()


async def _count(db, model, user_id):
    return await db.scalar(select(func.count()).select_from(model).where(model.user_id == user_id))


class TestRecordLessonCompletion:
    @pytest.mark.asyncio
    async def test_first_lesson(self, db_session, user):
        """First completion pays lesson coins and exactly one first_lesson badge."""
        uid = user.id
        result = await record_lesson_completion(db_session, uid, "Qaida", "qaida_1", "alif", 90, 120)

        assert result.coins_earned == 25
        assert [a.badge_type for a in result.achievements] == ["first_lesson"]
        assert result.rewards_pending is False
        assert result.progress.status == "completed"
        assert result.progress.coins_earned == 25
        assert result.progress.completed_at is not None
        assert result.progress.attempts == 1

        row = await _user(db_session, uid)
        assert row.total_lessons_completed == 1
        assert row.coins == 75
        assert await _count(db_session, Achievement, uid) == 1

    @pytest.mark.asyncio
    async def test_repeat_completion_pays_nothing(self, db_session, user):
        uid = user.id
        await record_lesson_completion(db_session, uid, "Qaida", "qaida_1", "alif", 90, 120)
        again = await record_lesson_completion(db_session, uid, "Qaida", "qaida_1", "alif", 100, 30)

        assert again.already_completed is True
        assert again.coins_earned == 0
        assert again.achievements == []
        assert again.progress.time_spent == 150
        assert again.progress.attempts == 2

        row = await _user(db_session, uid)
        assert row.total_lessons_completed == 1
        assert row.coins == 75
        assert await _count(db_session, CoinTransaction, uid) == 2

    @pytest.mark.asyncio
    async def test_second_lesson_no_first_lesson_badge(self, db_session, user):
        uid = user.id
        await record_lesson_completion(db_session, uid, "Qaida", "qaida_1", "alif", 90, 60)
        second = await record_lesson_completion(db_session, uid, "Qaida", "qaida_1", "ba", 96, 60)

        assert second.coins_earned == 30
        assert second.achievements == []
        assert (await _user(db_session, uid)).total_lessons_completed == 2

    @pytest.mark.asyncio
    async def test_level_and_module_flags(self, db_session, user):
        uid = user.id
        result = await record_lesson_completion(
            db_session, uid, "Qaida", "qaida_2", "last", 80, 60,
            level_completed=True, module_completed=True,
        )
        assert [a.badge_type for a in result.achievements] == ["first_lesson", "level_2_badge", "qaida_complete"]
        # 20 lesson + 50 + 100 + 500
        assert (await _user(db_session, uid)).coins == 670

    @pytest.mark.asyncio
    async def test_validation(self, db_session, user):
        uid = user.id
        with pytest.raises(ValidationError):
            await record_lesson_completion(db_session, uid, "Tafsir", "t1", "l1", 90, 10)
        with pytest.raises(ValidationError):
            await record_lesson_completion(db_session, uid, "Qaida", "qaida_1", "l1", 101, 10)
        with pytest.raises(ValidationError):
            await record_lesson_completion(db_session, uid, "Qaida", "qaida_1", "l1", 90, -1)
        assert await _count(db_session, Progress, uid) == 0

    @pytest.mark.asyncio
    async def test_unknown_user(self, db_session):
        with pytest.raises(NotFound):
            await record_lesson_completion(db_session, 4040, "Qaida", "qaida_1", "alif", 90, 10)

    @pytest.mark.asyncio
    async def test_credit_failure_keeps_completion(self, db_session, user, monkeypatch):
        """A failed credit leaves the completion committed and flags pending rewards."""
        uid = user.id

        async def locked(*args, **kwargs):
            raise OperationalError("UPDATE users", {}, Exception("database is locked"))

        monkeypatch.setattr(progress_service, "add_coins", locked)

        result = await record_lesson_completion(db_session, uid, "Dua", "dua_1", "morning", 90, 60)

        assert result.rewards_pending is True
        assert result.coins_earned == 0
        assert result.achievements == []
        assert result.progress.status == "completed"
        assert result.progress.coins_earned == 0

        row = await _user(db_session, uid)
        assert row.total_lessons_completed == 1
        assert row.coins == 0
        assert await _count(db_session, CoinTransaction, uid) == 0

    @pytest.mark.asyncio
    async def test_unpaid_lesson_counted_once_after_reset(self, db_session, user, monkeypatch):
        """Re-completing an unpaid lesson pays its coins without counting the lesson again."""
        uid = user.id

        async def locked(*args, **kwargs):
            raise OperationalError("UPDATE users", {}, Exception("database is locked"))

        monkeypatch.setattr(progress_service, "add_coins", locked)
        first = await record_lesson_completion(db_session, uid, "Dua", "dua_1", "morning", 90, 60)
        assert first.rewards_pending is True
        assert first.progress.first_completed_at is not None
        monkeypatch.undo()

        await reset_lesson_progress(db_session, uid, first.progress.id)
        again = await record_lesson_completion(db_session, uid, "Dua", "dua_1", "morning", 90, 30)

        assert again.rewards_pending is False
        assert again.coins_earned == 25
        assert again.progress.coins_earned == 25
        assert again.achievements == []

        row = await _user(db_session, uid)
        assert row.total_lessons_completed == 1
        assert row.coins == 25

        await reset_lesson_progress(db_session, uid, first.progress.id)
        third = await record_lesson_completion(db_session, uid, "Dua", "dua_1", "morning", 100, 30)
        assert third.coins_earned == 0
        assert (await _user(db_session, uid)).total_lessons_completed == 1


class TestResetLessonProgress:
    @pytest.mark.asyncio
    async def test_reset_keeps_coins_and_badges(self, db_session, user):
        uid = user.id
        done = await record_lesson_completion(db_session, uid, "Quran", "quran_1", "fatiha", 95, 300)

        reset = await reset_lesson_progress(db_session, uid, done.progress.id)

        assert reset.status == "not_started"
        assert reset.accuracy == 0
        assert reset.attempts == 0
        assert reset.completion_percentage == 0
        assert reset.completed_at is None
        assert reset.coins_earned == 30

        row = await _user(db_session, uid)
        assert row.coins == 80
        assert await _count(db_session, Achievement, uid) == 1

    @pytest.mark.asyncio
    async def test_recompletion_after_reset_is_not_repaid(self, db_session, user):
        uid = user.id
        done = await record_lesson_completion(db_session, uid, "Quran", "quran_1", "fatiha", 95, 300)
        await reset_lesson_progress(db_session, uid, done.progress.id)

        again = await record_lesson_completion(db_session, uid, "Quran", "quran_1", "fatiha", 70, 100)

        assert again.already_completed is False
        assert again.coins_earned == 0
        assert again.progress.status == "completed"
        row = await _user(db_session, uid)
        assert row.coins == 80
        assert row.total_lessons_completed == 1

    @pytest.mark.asyncio
    async def test_reset_other_users_progress(self, db_session, make_user):
        owner = await make_user()
        other = await make_user()
        owner_id, other_id = owner.id, other.id
        done = await record_lesson_completion(db_session, owner_id, "Quran", "quran_1", "fatiha", 95, 300)

        with pytest.raises(NotFound):
            await reset_lesson_progress(db_session, other_id, done.progress.id)


class TestUpdateLessonProgress:
    @pytest.mark.asyncio
    async def test_in_progress_upsert(self, db_session, user):
        uid = user.id
        first = await update_lesson_progress(
            db_session, uid,
            LessonProgressUpdate(module="Dua", level_id="dua_1", lesson_id="sleep", completion_percentage=40, time_spent=30),
        )
        second = await update_lesson_progress(
            db_session, uid,
            LessonProgressUpdate(module="Dua", level_id="dua_1", lesson_id="sleep", completion_percentage=70, time_spent=15),
        )

        assert first.progress.id == second.progress.id
        assert second.progress.status == "in_progress"
        assert second.progress.completion_percentage == 70
        assert second.progress.time_spent == 45
        assert second.progress.attempts == 1
        assert second.coins_earned == 0

    @pytest.mark.asyncio
    async def test_completed_status_uses_completion_path(self, db_session, user):
        uid = user.id
        result = await update_lesson_progress(
            db_session, uid,
            LessonProgressUpdate(module="Dua", level_id="dua_1", lesson_id="sleep", status="completed", accuracy=86),
        )
        assert result.coins_earned == 25
        assert [a.badge_type for a in result.achievements] == ["first_lesson"]

    @pytest.mark.asyncio
    async def test_completed_lesson_not_downgraded(self, db_session, user):
        uid = user.id
        await record_lesson_completion(db_session, uid, "Dua", "dua_1", "sleep", 90, 10)
        result = await update_lesson_progress(
            db_session, uid,
            LessonProgressUpdate(module="Dua", level_id="dua_1", lesson_id="sleep", status="in_progress", time_spent=5),
        )
        assert result.progress.status == "completed"
        assert result.progress.completion_percentage == 100


class TestReads:
    @pytest.mark.asyncio
    async def test_list_and_get(self, db_session, user):
        uid = user.id
        await record_lesson_completion(db_session, uid, "Qaida", "qaida_1", "alif", 90, 10)
        await record_lesson_completion(db_session, uid, "Quran", "quran_1", "fatiha", 90, 10)

        assert len(await list_progress(db_session, uid)) == 2
        assert len(await list_progress(db_session, uid, module="Quran")) == 1

        row = await get_lesson_progress(db_session, uid, "Qaida", "qaida_1", "alif")
        assert row.lesson_id == "alif"
        with pytest.raises(NotFound):
            await get_lesson_progress(db_session, uid, "Qaida", "qaida_1", "missing")
