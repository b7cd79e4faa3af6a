"""Track fan-out completion on activities so missed stream events are recovered.

Revision ID: 002_fanout_outbox
Revises: 001_social_core
Create Date: 2026-10-17
"""

from collections.abc import Sequence

from alembic import op

revision: str = "002_fanout_outbox"
down_revision: str | None = "001_social_core"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.execute("ALTER TABLE activities ADD COLUMN IF NOT EXISTS fanned_out_at TIMESTAMPTZ")
    # Rows written before this revision were already handled by the stream consumer
    op.execute("UPDATE activities SET fanned_out_at = created_at WHERE fanned_out_at IS NULL")
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_activities_unfanned
        ON activities(created_at)
        WHERE fanned_out_at IS NULL
    """)


def downgrade() -> None:
    op.execute("DROP INDEX IF EXISTS idx_activities_unfanned")
    op.execute("ALTER TABLE activities DROP COLUMN IF EXISTS fanned_out_at")
