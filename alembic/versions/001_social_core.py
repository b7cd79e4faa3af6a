"""Social core: profiles, websites projection, activities, follow graph, notifications.

Revision ID: 001_social_core
Revises:
Create Date: 2026-10-17
"""

from collections.abc import Sequence

from alembic import op

revision: str = "001_social_core"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- User profile cache ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS user_profiles (
            id VARCHAR(128) PRIMARY KEY,
            display_name VARCHAR(128),
            photo_url TEXT,
            email VARCHAR(320),
            role VARCHAR(16) NOT NULL DEFAULT 'user',
            is_active BOOLEAN NOT NULL DEFAULT true,
            created_at TIMESTAMPTZ,
            last_seen TIMESTAMPTZ
        )
    """)

    # --- Websites (owned by the website CRUD service; read here) ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS websites (
            id VARCHAR(128) PRIMARY KEY,
            owner_id VARCHAR(128) NOT NULL,
            title VARCHAR(256) NOT NULL,
            image_url TEXT,
            created_at TIMESTAMPTZ
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS ix_websites_owner_id ON websites(owner_id)")

    # --- Activities ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS activities (
            id BIGSERIAL PRIMARY KEY,
            type VARCHAR(32) NOT NULL,
            actor_id VARCHAR(128) NOT NULL,
            actor_display_name VARCHAR(128) NOT NULL,
            actor_photo_url TEXT,
            is_public BOOLEAN NOT NULL DEFAULT true,
            payload JSONB NOT NULL DEFAULT '{}',
            metadata JSONB NOT NULL DEFAULT '{}',
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_activities_actor_created
        ON activities(actor_id, created_at, id)
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_activities_public_created
        ON activities(is_public, created_at, id)
    """)

    # --- Follow graph ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS follow_edges (
            follower_id VARCHAR(128) NOT NULL,
            following_id VARCHAR(128) NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            PRIMARY KEY (follower_id, following_id),
            CONSTRAINT ck_follow_edges_not_self CHECK (follower_id <> following_id)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_follow_edges_following
        ON follow_edges(following_id)
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS follow_stats (
            user_id VARCHAR(128) PRIMARY KEY,
            followers_count INTEGER NOT NULL DEFAULT 0,
            following_count INTEGER NOT NULL DEFAULT 0,
            updated_at TIMESTAMPTZ
        )
    """)

    # --- Notifications ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS notifications (
            id BIGSERIAL PRIMARY KEY,
            recipient_id VARCHAR(128) NOT NULL,
            source_activity_id BIGINT,
            type VARCHAR(16) NOT NULL,
            title VARCHAR(256) NOT NULL,
            message TEXT NOT NULL,
            action_url VARCHAR(512),
            is_read BOOLEAN NOT NULL DEFAULT false,
            push_status VARCHAR(16) NOT NULL DEFAULT 'pending',
            metadata JSONB NOT NULL DEFAULT '{}',
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ,
            CONSTRAINT uq_notifications_fanout UNIQUE (recipient_id, source_activity_id, type)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_notifications_recipient_created
        ON notifications(recipient_id, created_at, id)
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_notifications_recipient_unread
        ON notifications(recipient_id, is_read)
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_notifications_source_activity_id
        ON notifications(source_activity_id)
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS notification_preferences (
            user_id VARCHAR(128) PRIMARY KEY,
            categories JSONB NOT NULL DEFAULT '{}',
            updated_at TIMESTAMPTZ
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS push_tokens (
            id BIGSERIAL PRIMARY KEY,
            user_id VARCHAR(128) NOT NULL,
            token VARCHAR(512) NOT NULL UNIQUE,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS ix_push_tokens_user_id ON push_tokens(user_id)")


def downgrade() -> None:
    for table in (
        "push_tokens",
        "notification_preferences",
        "notifications",
        "follow_stats",
        "follow_edges",
        "activities",
        "websites",
        "user_profiles",
    ):
        op.execute(f"DROP TABLE IF EXISTS {table} CASCADE")
