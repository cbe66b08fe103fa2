"""Progress first-completion marker.

Adds progress.first_completed_at, set in the same commit that increments
users.total_lessons_completed. A lesson is counted once even when its coin
credit failed and it is reset and completed again.

Revision ID: 002_progress_first_completed
Revises: 001_learning_rewards
Create Date: 2026-10-20
"""

from collections.abc import Sequence

from alembic import op

revision: str = "002_progress_first_completed"
down_revision: str | None = "001_learning_rewards"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.execute("""
        ALTER TABLE progress
        ADD COLUMN IF NOT EXISTS first_completed_at TIMESTAMPTZ
    """)

    # Completed or paid rows were already counted
    op.execute("""
        UPDATE progress
        SET first_completed_at = COALESCE(completed_at, last_accessed_at)
        WHERE first_completed_at IS NULL
          AND (completed_at IS NOT NULL OR coins_earned > 0)
    """)


def downgrade() -> None:
    op.execute("ALTER TABLE progress DROP COLUMN IF EXISTS first_completed_at")
