"""Learning rewards tables.

Creates users, coin_transactions, achievements, progress, quiz_results and
mistakes. The unique indexes on achievements(user_id, badge_type) and
progress(user_id, module, level_id, lesson_id) guard one-time rewards.

Revision ID: 001_learning_rewards
Revises:
Create Date: 2026-10-19
"""

from collections.abc import Sequence

from alembic import op

revision: str = "001_learning_rewards"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- Users (owned by the auth service; created here if absent) ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS users (
            id BIGSERIAL PRIMARY KEY,
            email VARCHAR(320) UNIQUE,
            display_name VARCHAR(64),
            role VARCHAR(16) NOT NULL DEFAULT 'child',
            coins INTEGER NOT NULL DEFAULT 0,
            current_level VARCHAR(32) NOT NULL DEFAULT 'qaida_1',
            proficiency_level VARCHAR(32) NOT NULL DEFAULT 'Absolute Beginner',
            total_lessons_completed INTEGER NOT NULL DEFAULT 0,
            total_quizzes_completed INTEGER NOT NULL DEFAULT 0,
            accuracy INTEGER NOT NULL DEFAULT 0,
            streak_days INTEGER NOT NULL DEFAULT 0,
            last_active_date TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT users_coins_non_negative CHECK (coins >= 0)
        )
    """)

    # --- Coin ledger ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS coin_transactions (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            type VARCHAR(32) NOT NULL,
            amount INTEGER NOT NULL,
            balance INTEGER NOT NULL,
            description VARCHAR(256) NOT NULL,
            reference_model VARCHAR(32),
            reference_id BIGINT,
            created_at TIMESTAMPTZ NOT NULL
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_coin_tx_user_created
        ON coin_transactions(user_id, created_at)
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_coin_tx_user_type
        ON coin_transactions(user_id, type)
    """)

    # --- Achievements ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS achievements (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            badge_type VARCHAR(32) NOT NULL,
            title VARCHAR(64) NOT NULL,
            description VARCHAR(256) NOT NULL,
            coins_rewarded INTEGER NOT NULL DEFAULT 0,
            metadata JSONB NOT NULL DEFAULT '{}',
            earned_at TIMESTAMPTZ NOT NULL,
            CONSTRAINT achievements_user_id_badge_type_key UNIQUE (user_id, badge_type)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_achievements_user_earned
        ON achievements(user_id, earned_at)
    """)

    # --- Progress ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS progress (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            module VARCHAR(16) NOT NULL,
            level_id VARCHAR(32) NOT NULL,
            lesson_id VARCHAR(64) NOT NULL,
            status VARCHAR(16) NOT NULL DEFAULT 'not_started',
            completion_percentage DOUBLE PRECISION NOT NULL DEFAULT 0,
            time_spent INTEGER NOT NULL DEFAULT 0,
            attempts INTEGER NOT NULL DEFAULT 0,
            accuracy DOUBLE PRECISION NOT NULL DEFAULT 0,
            coins_earned INTEGER NOT NULL DEFAULT 0,
            started_at TIMESTAMPTZ,
            completed_at TIMESTAMPTZ,
            last_accessed_at TIMESTAMPTZ NOT NULL,
            CONSTRAINT progress_user_id_module_level_id_lesson_id_key
                UNIQUE (user_id, module, level_id, lesson_id)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_progress_user_status
        ON progress(user_id, status)
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_progress_user_completed
        ON progress(user_id, completed_at)
    """)

    # --- Quiz results ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS quiz_results (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            quiz_id VARCHAR(64) NOT NULL,
            module VARCHAR(16) NOT NULL,
            level_id VARCHAR(32) NOT NULL,
            score INTEGER NOT NULL,
            total_questions INTEGER NOT NULL,
            percentage INTEGER NOT NULL,
            passed BOOLEAN NOT NULL,
            time_spent INTEGER NOT NULL DEFAULT 0,
            attempts INTEGER NOT NULL DEFAULT 1,
            coins_earned INTEGER NOT NULL DEFAULT 0,
            completed_at TIMESTAMPTZ NOT NULL
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_quiz_results_user_quiz
        ON quiz_results(user_id, quiz_id, completed_at)
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_quiz_results_user_passed
        ON quiz_results(user_id, passed)
    """)

    # --- Mistakes ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS mistakes (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            module VARCHAR(16) NOT NULL,
            level_id VARCHAR(32) NOT NULL,
            lesson_id VARCHAR(64) NOT NULL,
            mistake_type VARCHAR(32) NOT NULL,
            title VARCHAR(128) NOT NULL,
            description TEXT NOT NULL,
            severity VARCHAR(16) NOT NULL DEFAULT 'moderate',
            correction_note TEXT,
            is_resolved BOOLEAN NOT NULL DEFAULT false,
            resolved_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_mistakes_user_created
        ON mistakes(user_id, created_at)
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_mistakes_user_resolved
        ON mistakes(user_id, is_resolved)
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS mistakes CASCADE")
    op.execute("DROP TABLE IF EXISTS quiz_results CASCADE")
    op.execute("DROP TABLE IF EXISTS progress CASCADE")
    op.execute("DROP TABLE IF EXISTS achievements CASCADE")
    op.execute("DROP TABLE IF EXISTS coin_transactions CASCADE")
    # users belongs to the auth service and is left in place
