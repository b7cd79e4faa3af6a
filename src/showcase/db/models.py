"""ORM models for the social core.

User ids are the identity provider's opaque uids (strings). Website rows are
owned by the website CRUD collaborator; this service only reads them to
resolve notification recipients.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from showcase.db.base import Base, BigIntPK, JSONType, UTCDateTime


# ---------------------------------------------------------------------------
# Users (profile cache of the identity provider)
# ---------------------------------------------------------------------------


class UserProfile(Base):
    """Display data for a signed-in user, refreshed from identity claims."""

    __tablename__ = "user_profiles"

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    display_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    photo_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    role: Mapped[str] = mapped_column(String(16), nullable=False, default="user", server_default="user")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="1")
    created_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    last_seen: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)


class Website(Base):
    """Read-only projection of a submitted website."""

    __tablename__ = "websites"

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    owner_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(256), nullable=False)
    image_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)


# ---------------------------------------------------------------------------
# Activity store
# ---------------------------------------------------------------------------


class Activity(Base):
    """Immutable record of one user action."""

    __tablename__ = "activities"
    __table_args__ = (
        Index("idx_activities_actor_created", "actor_id", "created_at", "id"),
        Index("idx_activities_public_created", "is_public", "created_at", "id"),
        Index(
            "idx_activities_unfanned",
            "created_at",
            postgresql_where=text("fanned_out_at IS NULL"),
            sqlite_where=text("fanned_out_at IS NULL"),
        ),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    actor_id: Mapped[str] = mapped_column(String(128), nullable=False)
    actor_display_name: Mapped[str] = mapped_column(String(128), nullable=False)
    actor_photo_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_public: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    payload: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    activity_metadata: Mapped[dict[str, Any]] = mapped_column("metadata", JSONType, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    # Set by the fan-out worker once notifications and live deltas went out
    fanned_out_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)


# ---------------------------------------------------------------------------
# Follow graph
# ---------------------------------------------------------------------------


class FollowEdge(Base):
    """Directed follower -> followee relationship."""

    __tablename__ = "follow_edges"
    __table_args__ = (
        CheckConstraint("follower_id <> following_id", name="ck_follow_edges_not_self"),
        Index("idx_follow_edges_following", "following_id"),
    )

    follower_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    following_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)


class FollowStats(Base):
    """Denormalized follower/following counters, one row per user."""

    __tablename__ = "follow_stats"

    user_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    followers_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    following_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    updated_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------


class Notification(Base):
    """Per-recipient notification derived from an activity."""

    __tablename__ = "notifications"
    __table_args__ = (
        UniqueConstraint("recipient_id", "source_activity_id", "type", name="uq_notifications_fanout"),
        Index("idx_notifications_recipient_created", "recipient_id", "created_at", "id"),
        Index("idx_notifications_recipient_unread", "recipient_id", "is_read"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    recipient_id: Mapped[str] = mapped_column(String(128), nullable=False)
    # Lookup-only reference; deleting the activity never cascades here.
    source_activity_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True, index=True)
    type: Mapped[str] = mapped_column(String(16), nullable=False)
    title: Mapped[str] = mapped_column(String(256), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    action_url: Mapped[str | None] = mapped_column(String(512), nullable=True)
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="0")
    push_status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending", server_default="pending")
    notification_metadata: Mapped[dict[str, Any]] = mapped_column("metadata", JSONType, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    updated_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)


class NotificationPreferences(Base):
    """Per-user notification category flags stored as JSON."""

    __tablename__ = "notification_preferences"

    user_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    categories: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    updated_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)


class PushToken(Base):
    """Push gateway registration token for one device of a user."""

    __tablename__ = "push_tokens"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    token: Mapped[str] = mapped_column(String(512), nullable=False, unique=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    updated_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
