"""Pydantic models for lesson progress and the progress summary."""

from __future__ import annotations

from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from tilawa.rewards.schemas import AwardedAchievement

Module = Literal["Quran", "Dua", "Qaida"]
ProgressStatus = Literal["not_started", "in_progress", "completed"]


class ProgressResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    module: str
    level_id: str
    lesson_id: str
    status: str
    completion_percentage: float
    time_spent: int
    attempts: int
    accuracy: float
    coins_earned: int
    started_at: datetime | None = None
    completed_at: datetime | None = None
    first_completed_at: datetime | None = None
    last_accessed_at: datetime


class ProgressListResponse(BaseModel):
    progress: list[ProgressResponse]
    count: int


class LessonProgressUpdate(BaseModel):
    module: Module
    level_id: str = Field(min_length=1, max_length=32)
    lesson_id: str = Field(min_length=1, max_length=64)
    status: ProgressStatus = "in_progress"
    completion_percentage: float | None = Field(None, ge=0, le=100)
    time_spent: int = Field(0, ge=0)
    accuracy: float | None = Field(None, ge=0, le=100)
    level_completed: bool = False
    module_completed: bool = False


class LessonCompletionResult(BaseModel):
    progress: ProgressResponse
    coins_earned: int = 0
    achievements: list[AwardedAchievement] = []
    already_completed: bool = False
    rewards_pending: bool = False


# --- Summary ---


class ModuleSummary(BaseModel):
    module: str
    total_lessons: int
    completed_lessons: int
    total_time_spent: int
    average_accuracy: int
    total_coins: int


class DayActivity(BaseModel):
    date: date
    lessons_completed: int
    accuracy: int


class LessonCount(BaseModel):
    completed: int = 0
    total: int = 0


class ProgressSummary(BaseModel):
    total_lessons: int
    completed_lessons: int
    completed_percentage: float
    total_time_spent: int
    accuracy: int
    total_coins: int
    current_level: str
    by_module: list[ModuleSummary]
    weekly_progress: list[DayActivity]
    lessons_by_type: dict[str, LessonCount]
    last_activity: datetime | None = None
