"""Pydantic models for quiz submissions and results."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, model_validator

from tilawa.progress.schemas import Module
from tilawa.rewards.schemas import AwardedAchievement


class QuizSubmission(BaseModel):
    quiz_id: str = Field(min_length=1, max_length=64)
    module: Module
    level_id: str = Field(min_length=1, max_length=32)
    score: int = Field(ge=0)
    total_questions: int = Field(gt=0)
    time_spent: int = Field(0, ge=0)

    @model_validator(mode="after")
    def _score_within_total(self) -> QuizSubmission:
        if self.score > self.total_questions:
            raise ValueError("score cannot exceed total_questions")
        return self


class QuizResultResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    quiz_id: str
    module: str
    level_id: str
    score: int
    total_questions: int
    percentage: int
    passed: bool
    time_spent: int
    attempts: int
    coins_earned: int
    completed_at: datetime


class QuizSubmissionResult(BaseModel):
    quiz_result: QuizResultResponse
    passed: bool
    percentage: int
    coins_earned: int
    achievements: list[AwardedAchievement] = []
    rewards_pending: bool = False


class QuizResultsResponse(BaseModel):
    results: list[QuizResultResponse]
    count: int


class QuizStats(BaseModel):
    total_quizzes: int = 0
    passed_quizzes: int = 0
    average_score: float = 0.0
    total_coins_earned: int = 0
    perfect_scores: int = 0
