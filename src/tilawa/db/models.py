"""ORM models for users, the coin ledger, achievements, progress, quizzes and mistakes."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    false,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from tilawa.db.base import Base, BigIntPK, JSONType

# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class User(Base):
    """Learner account. Owned by the auth service; this service mutates only
    the coin, streak and learning-counter columns."""

    __tablename__ = "users"
    __table_args__ = (CheckConstraint("coins >= 0", name="users_coins_non_negative"),)

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    email: Mapped[str | None] = mapped_column(String(320), unique=True, nullable=True)
    display_name: Mapped[str | None] = mapped_column(String(64), nullable=True)
    role: Mapped[str] = mapped_column(String(16), nullable=False, default="child", server_default="child")
    coins: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    current_level: Mapped[str] = mapped_column(
        String(32), nullable=False, default="qaida_1", server_default="qaida_1"
    )
    proficiency_level: Mapped[str] = mapped_column(
        String(32), nullable=False, default="Absolute Beginner", server_default="Absolute Beginner"
    )
    total_lessons_completed: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    total_quizzes_completed: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    accuracy: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    streak_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    last_active_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


# ---------------------------------------------------------------------------
# Coin ledger
# ---------------------------------------------------------------------------


class CoinTransaction(Base):
    """Append-only coin ledger. ``balance`` is the user's balance after this row."""

    __tablename__ = "coin_transactions"
    __table_args__ = (
        Index("idx_coin_tx_user_created", "user_id", "created_at"),
        Index("idx_coin_tx_user_type", "user_id", "type"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    balance: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[str] = mapped_column(String(256), nullable=False)
    reference_model: Mapped[str | None] = mapped_column(String(32), nullable=True)
    reference_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


# ---------------------------------------------------------------------------
# Achievements
# ---------------------------------------------------------------------------


class Achievement(Base):
    """Earned badges. UNIQUE(user_id, badge_type) makes awards at-most-once."""

    __tablename__ = "achievements"
    __table_args__ = (
        UniqueConstraint("user_id", "badge_type", name="achievements_user_id_badge_type_key"),
        Index("idx_achievements_user_earned", "user_id", "earned_at"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    badge_type: Mapped[str] = mapped_column(String(32), nullable=False)
    title: Mapped[str] = mapped_column(String(64), nullable=False)
    description: Mapped[str] = mapped_column(String(256), nullable=False)
    coins_rewarded: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    details: Mapped[dict[str, Any]] = mapped_column("metadata", JSONType, nullable=False, default=dict)
    earned_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


# ---------------------------------------------------------------------------
# Learning records
# ---------------------------------------------------------------------------


class Progress(Base):
    """Per-lesson progress. Completion rewards run once, guarded by completed_at."""

    __tablename__ = "progress"
    __table_args__ = (
        UniqueConstraint(
            "user_id", "module", "level_id", "lesson_id",
            name="progress_user_id_module_level_id_lesson_id_key",
        ),
        Index("idx_progress_user_status", "user_id", "status"),
        Index("idx_progress_user_completed", "user_id", "completed_at"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    module: Mapped[str] = mapped_column(String(16), nullable=False)
    level_id: Mapped[str] = mapped_column(String(32), nullable=False)
    lesson_id: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="not_started", server_default="not_started")
    completion_percentage: Mapped[float] = mapped_column(Float, nullable=False, default=0, server_default="0")
    time_spent: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    accuracy: Mapped[float] = mapped_column(Float, nullable=False, default=0, server_default="0")
    coins_earned: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    # Set once, in the commit that counts the lesson; survives resets
    first_completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_accessed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class QuizResult(Base):
    """One row per quiz submission. Never updated after insert."""

    __tablename__ = "quiz_results"
    __table_args__ = (
        Index("idx_quiz_results_user_quiz", "user_id", "quiz_id", "completed_at"),
        Index("idx_quiz_results_user_passed", "user_id", "passed"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    quiz_id: Mapped[str] = mapped_column(String(64), nullable=False)
    module: Mapped[str] = mapped_column(String(16), nullable=False)
    level_id: Mapped[str] = mapped_column(String(32), nullable=False)
    score: Mapped[int] = mapped_column(Integer, nullable=False)
    total_questions: Mapped[int] = mapped_column(Integer, nullable=False)
    percentage: Mapped[int] = mapped_column(Integer, nullable=False)
    passed: Mapped[bool] = mapped_column(Boolean, nullable=False)
    time_spent: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")
    coins_earned: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    completed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class Mistake(Base):
    """A recitation/pronunciation mistake logged during a lesson."""

    __tablename__ = "mistakes"
    __table_args__ = (
        Index("idx_mistakes_user_created", "user_id", "created_at"),
        Index("idx_mistakes_user_resolved", "user_id", "is_resolved"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    module: Mapped[str] = mapped_column(String(16), nullable=False)
    level_id: Mapped[str] = mapped_column(String(32), nullable=False)
    lesson_id: Mapped[str] = mapped_column(String(64), nullable=False)
    mistake_type: Mapped[str] = mapped_column(String(32), nullable=False)
    title: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    severity: Mapped[str] = mapped_column(String(16), nullable=False, default="moderate", server_default="moderate")
    correction_note: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_resolved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=false())
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
