"""Pydantic models for logged mistakes and their resolution."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from tilawa.progress.schemas import Module
from tilawa.rewards.schemas import AwardedAchievement

MistakeType = Literal["pronunciation", "recitation", "tajweed", "memorization", "comprehension", "other"]
Severity = Literal["minor", "moderate", "major"]


class MistakeCreate(BaseModel):
    module: Module
    level_id: str = Field(min_length=1, max_length=32)
    lesson_id: str = Field(min_length=1, max_length=64)
    mistake_type: MistakeType
    title: str = Field(min_length=1, max_length=128)
    description: str = Field(min_length=1)
    severity: Severity = "moderate"


class MistakeResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    module: str
    level_id: str
    lesson_id: str
    mistake_type: str
    title: str
    description: str
    severity: str
    correction_note: str | None = None
    is_resolved: bool
    resolved_at: datetime | None = None
    created_at: datetime


class MistakeListResponse(BaseModel):
    mistakes: list[MistakeResponse]
    count: int


class ResolveMistakeRequest(BaseModel):
    correction_note: str | None = None


class PracticeAttempt(BaseModel):
    is_correct: bool
    attempt_number: int = Field(1, ge=1)


class MistakeResolution(BaseModel):
    mistake: MistakeResponse
    coins_earned: int = 0
    achievements: list[AwardedAchievement] = []
    already_resolved: bool = False
    auto_resolved: bool = False
    rewards_pending: bool = False


class MistakeBucket(BaseModel):
    total: int = 0
    resolved: int = 0


class MistakeStats(BaseModel):
    total: int
    resolved: int
    unresolved: int
    by_type: dict[str, MistakeBucket]
    by_module: dict[str, MistakeBucket]
