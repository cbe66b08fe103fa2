"""Achievement engine tests: at-most-once awards, triggers, coin credits."""

from __future__ import annotations

import pytest
from sqlalchemy import func, select

from tilawa.db.models import Achievement, CoinTransaction, Mistake, User
from tilawa.errors import InvalidBadgeType, NotFound, ValidationError
from tilawa.rewards.achievements import (
    award_badge,
    badge_catalog,
    check_achievements,
    get_achievement,
    list_achievements,
)
from tilawa.rewards.badges import QuizDetails, StreakDetails, parse_details
from tilawa.rewards.ledger import add_coins
from tilawa.rewards.schemas import AchievementContext
from tilawa.timeutil import utcnow


async def _count(db, model, user_id):
    return await db.scalar(select(func.count()).select_from(model).where(model.user_id == user_id))


async def _coins(db, user_id):
    return await db.scalar(select(User.coins).where(User.id == user_id))


class TestAwardBadge:
    @pytest.mark.asyncio
    async def test_award_credits_coins(self, db_session, user):
        uid = user.id
        awarded = await award_badge(db_session, uid, "perfect_score")

        assert awarded is not None
        assert awarded.title == "Perfection"
        assert awarded.coins_rewarded == 150
        assert await _coins(db_session, uid) == 150

        tx = (await db_session.execute(select(CoinTransaction).where(CoinTransaction.user_id == uid))).scalar_one()
        assert tx.type == "achievement"
        assert tx.reference_model == "achievement"
        assert tx.reference_id == awarded.id
        assert tx.description == 'Earned "Perfection" badge'

    @pytest.mark.asyncio
    async def test_second_award_is_noop(self, db_session, user):
        """Awarding twice yields one row and one credit."""
        uid = user.id
        first = await award_badge(db_session, uid, "first_lesson")
        second = await award_badge(db_session, uid, "first_lesson")

        assert first is not None
        assert second is None
        assert await _count(db_session, Achievement, uid) == 1
        assert await _count(db_session, CoinTransaction, uid) == 1
        assert await _coins(db_session, uid) == 50

    @pytest.mark.asyncio
    async def test_duplicate_keeps_earlier_commits(self, db_session, user):
        uid = user.id
        await award_badge(db_session, uid, "first_lesson")
        await add_coins(db_session, uid, "admin_grant", 5, "grant")
        await db_session.commit()

        assert await award_badge(db_session, uid, "first_lesson") is None
        assert await _coins(db_session, uid) == 55

    @pytest.mark.asyncio
    async def test_metadata_round_trips_as_tagged_union(self, db_session, user):
        uid = user.id
        details = QuizDetails(quiz_id="q-1", score=3, percentage=100)
        awarded = await award_badge(db_session, uid, "perfect_score", details)

        row = await get_achievement(db_session, uid, awarded.id)
        assert row.details["kind"] == "quiz"
        assert parse_details(row.details) == details

    @pytest.mark.asyncio
    async def test_invalid_badge_type(self, db_session, user):
        with pytest.raises(InvalidBadgeType):
            await award_badge(db_session, user.id, "golden_ticket")


class TestTriggers:
    @pytest.mark.asyncio
    async def test_first_lesson_only_at_one(self, db_session, make_user):
        one = await make_user(total_lessons_completed=1)
        two = await make_user(total_lessons_completed=2)
        one_id, two_id = one.id, two.id

        ctx = AchievementContext(type="lesson_complete", data={})
        assert [a.badge_type for a in await check_achievements(db_session, one_id, ctx)] == ["first_lesson"]
        assert await check_achievements(db_session, two_id, ctx) == []

    @pytest.mark.asyncio
    async def test_lesson_milestones_are_exact(self, db_session, make_user):
        at_100 = await make_user(total_lessons_completed=100)
        at_101 = await make_user(total_lessons_completed=101)
        ids = at_100.id, at_101.id

        ctx = AchievementContext(type="lesson_complete")
        assert [a.badge_type for a in await check_achievements(db_session, ids[0], ctx)] == ["100_lessons"]
        assert await check_achievements(db_session, ids[1], ctx) == []

    @pytest.mark.asyncio
    async def test_lesson_milestone_uses_count_from_event(self, db_session, make_user):
        """A concurrent completion already moved the counter to 2; this event incremented it to 1."""
        learner = await make_user(total_lessons_completed=2)
        uid = learner.id

        ctx = AchievementContext(type="lesson_complete", data={"total_lessons": 1})
        awarded = await check_achievements(db_session, uid, ctx)

        assert [a.badge_type for a in awarded] == ["first_lesson"]
        assert awarded[0].details["total_lessons"] == 1

    @pytest.mark.asyncio
    async def test_perfect_quiz(self, db_session, user):
        uid = user.id
        perfect = AchievementContext(type="quiz_complete", data={"quiz_id": "q1", "percentage": 100, "score": 5})
        good = AchievementContext(type="quiz_complete", data={"quiz_id": "q2", "percentage": 90, "score": 9})

        assert await check_achievements(db_session, uid, good) == []
        awarded = await check_achievements(db_session, uid, perfect)
        assert [a.badge_type for a in awarded] == ["perfect_score"]
        assert awarded[0].details == {"kind": "quiz", "quiz_id": "q1", "score": 5, "percentage": 100}

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("level_id", "expected"),
        [("qaida_2", ["level_2_badge"]), ("quran_5", ["level_5_badge"]), ("qaida_3", [])],
    )
    async def test_level_badges(self, db_session, user, level_id, expected):
        ctx = AchievementContext(type="level_complete", data={"level_id": level_id})
        assert [a.badge_type for a in await check_achievements(db_session, user.id, ctx)] == expected

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("module", "expected"),
        [("Qaida", ["qaida_complete"]), ("Quran", ["quran_complete"]), ("Dua", [])],
    )
    async def test_module_badges(self, db_session, user, module, expected):
        ctx = AchievementContext(type="module_complete", data={"module": module})
        assert [a.badge_type for a in await check_achievements(db_session, user.id, ctx)] == expected

    @pytest.mark.asyncio
    async def test_streak_badges_exact(self, db_session, user):
        uid = user.id
        week = await check_achievements(db_session, uid, AchievementContext(type="streak", data={"streak_days": 7}))
        none = await check_achievements(db_session, uid, AchievementContext(type="streak", data={"streak_days": 8}))

        assert [a.badge_type for a in week] == ["week_streak"]
        assert parse_details(week[0].details) == StreakDetails(streak_days=7)
        assert none == []

    @pytest.mark.asyncio
    async def test_coin_collector(self, db_session, make_user):
        rich = await make_user()
        uid = rich.id
        await add_coins(db_session, uid, "admin_grant", 1000, "grant")
        await db_session.commit()

        awarded = await check_achievements(db_session, uid, AchievementContext(type="coins"))
        assert [a.badge_type for a in awarded] == ["coin_collector"]
        assert await _coins(db_session, uid) == 1200

    @pytest.mark.asyncio
    async def test_coin_collector_below_threshold(self, db_session, user):
        uid = user.id
        await add_coins(db_session, uid, "admin_grant", 999, "grant")
        await db_session.commit()
        assert await check_achievements(db_session, uid, AchievementContext(type="coins")) == []

    @pytest.mark.asyncio
    async def test_mistake_warrior_at_fifty_resolved(self, db_session, user):
        uid = user.id
        now = utcnow()
        db_session.add_all([
            Mistake(
                user_id=uid, module="Quran", level_id="quran_1", lesson_id="l1",
                mistake_type="tajweed", title=f"Mistake {i}", description="Madd too short",
                is_resolved=True, resolved_at=now, created_at=now,
            )
            for i in range(50)
        ])
        await db_session.commit()

        awarded = await check_achievements(db_session, uid, AchievementContext(type="mistake_resolved"))
        assert [a.badge_type for a in awarded] == ["mistake_warrior"]

    @pytest.mark.asyncio
    async def test_mistake_warrior_past_threshold_awarded_once(self, db_session, user):
        """Two resolutions racing from 49 can both observe 51."""
        uid = user.id
        now = utcnow()
        db_session.add_all([
            Mistake(
                user_id=uid, module="Dua", level_id="dua_1", lesson_id="l1",
                mistake_type="memorization", title=f"Mistake {i}", description="Skipped a word",
                is_resolved=True, resolved_at=now, created_at=now,
            )
            for i in range(51)
        ])
        await db_session.commit()

        ctx = AchievementContext(type="mistake_resolved")
        awarded = await check_achievements(db_session, uid, ctx)
        assert [a.badge_type for a in awarded] == ["mistake_warrior"]
        assert awarded[0].details["resolved_count"] == 51
        assert await check_achievements(db_session, uid, ctx) == []

    @pytest.mark.asyncio
    async def test_unknown_event_type(self, db_session, user):
        with pytest.raises(ValidationError):
            await check_achievements(db_session, user.id, AchievementContext(type="birthday"))

    @pytest.mark.asyncio
    async def test_missing_event_data(self, db_session, user):
        with pytest.raises(ValidationError):
            await check_achievements(db_session, user.id, AchievementContext(type="level_complete"))

    @pytest.mark.asyncio
    async def test_unknown_user(self, db_session):
        with pytest.raises(NotFound):
            await check_achievements(db_session, 777, AchievementContext(type="coins"))


class TestReads:
    @pytest.mark.asyncio
    async def test_list_and_filter(self, db_session, user):
        uid = user.id
        await award_badge(db_session, uid, "first_lesson")
        await award_badge(db_session, uid, "perfect_score")

        assert len(await list_achievements(db_session, uid)) == 2
        only = await list_achievements(db_session, uid, badge_type="perfect_score")
        assert [a.badge_type for a in only] == ["perfect_score"]
        with pytest.raises(ValidationError):
            await list_achievements(db_session, uid, badge_type="nope")

    @pytest.mark.asyncio
    async def test_get_other_users_achievement(self, db_session, make_user):
        owner = await make_user()
        other = await make_user()
        owner_id, other_id = owner.id, other.id
        awarded = await award_badge(db_session, owner_id, "first_lesson")

        with pytest.raises(NotFound):
            await get_achievement(db_session, other_id, awarded.id)

    def test_catalog_has_every_badge(self):
        catalog = badge_catalog()
        assert len(catalog) == 15
        first = next(b for b in catalog if b["badge_type"] == "first_lesson")
        assert first == {
            "badge_type": "first_lesson",
            "title": "First Steps",
            "description": "Completed your first lesson!",
            "coins": 50,
        }
