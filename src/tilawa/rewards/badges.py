"""Badge catalog and typed badge metadata."""

from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field, TypeAdapter

from tilawa.errors import InvalidBadgeType

BADGE_DEFINITIONS: dict[str, dict] = {
    "first_lesson": {"title": "First Steps", "description": "Completed your first lesson!", "coins": 50},
    "qaida_complete": {"title": "Qaida Master", "description": "Completed all Qaida levels!", "coins": 500},
    "quran_complete": {"title": "Quran Champion", "description": "Completed all Quran levels!", "coins": 1000},
    "level_2_badge": {"title": "Rising Star", "description": "Completed Level 2!", "coins": 100},
    "level_5_badge": {"title": "Knowledge Seeker", "description": "Completed Level 5!", "coins": 200},
    "quiz_master": {"title": "Quiz Master", "description": "Passed 10 quizzes in a row!", "coins": 300},
    "perfect_score": {"title": "Perfection", "description": "Scored 100% on a quiz!", "coins": 150},
    "week_streak": {"title": "Week Warrior", "description": "7-day learning streak!", "coins": 100},
    "month_streak": {"title": "Dedicated Learner", "description": "30-day learning streak!", "coins": 500},
    "early_bird": {"title": "Early Bird", "description": "Completed lessons before 9 AM!", "coins": 50},
    "night_owl": {"title": "Night Owl", "description": "Completed lessons after 10 PM!", "coins": 50},
    "100_lessons": {"title": "Century", "description": "Completed 100 lessons!", "coins": 300},
    "500_lessons": {"title": "Unstoppable", "description": "Completed 500 lessons!", "coins": 1000},
    "coin_collector": {"title": "Coin Collector", "description": "Earned 1000 coins!", "coins": 200},
    "mistake_warrior": {"title": "Mistake Warrior", "description": "Resolved 50 mistakes!", "coins": 150},
}


def get_badge_definition(badge_type: str) -> dict:
    """Look up a badge in the catalog. Unknown types are a programming error."""
    definition = BADGE_DEFINITIONS.get(badge_type)
    if definition is None:
        raise InvalidBadgeType(f"Invalid badge type: {badge_type}")
    return definition


# --- Metadata ---


class LessonMilestoneDetails(BaseModel):
    kind: Literal["lesson_milestone"] = "lesson_milestone"
    total_lessons: int


class QuizDetails(BaseModel):
    kind: Literal["quiz"] = "quiz"
    quiz_id: str
    score: int
    percentage: int


class LevelDetails(BaseModel):
    kind: Literal["level"] = "level"
    level_id: str


class ModuleDetails(BaseModel):
    kind: Literal["module"] = "module"
    module: str


class StreakDetails(BaseModel):
    kind: Literal["streak"] = "streak"
    streak_days: int


class CoinDetails(BaseModel):
    kind: Literal["coins"] = "coins"
    total_coins: int


class MistakeDetails(BaseModel):
    kind: Literal["mistake"] = "mistake"
    resolved_count: int


BadgeDetails = Annotated[
    LessonMilestoneDetails
    | QuizDetails
    | LevelDetails
    | ModuleDetails
    | StreakDetails
    | CoinDetails
    | MistakeDetails,
    Field(discriminator="kind"),
]

_details_adapter: TypeAdapter[BadgeDetails] = TypeAdapter(BadgeDetails)


def parse_details(raw: dict[str, Any] | None) -> BadgeDetails | None:
    """Validate stored JSON metadata back into its typed form."""
    if not raw:
        return None
    return _details_adapter.validate_python(raw)
