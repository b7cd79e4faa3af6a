"""Notification fan-out, reads and mutations.

Notifications are:
1. Derived from activities by ``on_activity`` (one row per recipient)
2. Filtered by the recipient's notification preferences
3. Pushed to the recipient after commit by ``notification_push``

Types: follow, like, comment, rating, website, system
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from showcase.db.models import (
    Activity,
    FollowEdge,
    Notification,
    NotificationPreferences,
    PushToken,
    UserProfile,
    Website,
)
from showcase.db.upsert import insert_for
from showcase.errors import NotFoundError, ValidationError
from showcase.social.activity_types import ActivityType, AnnouncementPayload
from showcase.social.cursors import after, before, decode_cursor, encode_cursor
from showcase.social.week_utils import get_week_start, start_of_day

logger = logging.getLogger(__name__)

VALID_TYPES = {"follow", "like", "comment", "rating", "website", "system"}

# Default notification preferences (absent record means everything is on)
DEFAULT_PREFERENCES = {
    "newWebsites": True,
    "comments": True,
    "ratings": True,
    "follows": True,
    "announcements": True,
    "likes": True,
    "push": True,
}

# Notification type -> preference key
PREFERENCE_MAP = {
    "website": "newWebsites",
    "comment": "comments",
    "rating": "ratings",
    "follow": "follows",
    "system": "announcements",
    "like": "likes",
}

# Activity type -> notification type
ACTIVITY_NOTIFICATION_TYPES = {
    ActivityType.WEBSITE_LIKE.value: "like",
    ActivityType.WEBSITE_COMMENT.value: "comment",
    ActivityType.WEBSITE_RATING.value: "rating",
    ActivityType.USER_FOLLOW.value: "follow",
    ActivityType.WEBSITE_SUBMIT.value: "website",
    ActivityType.ANNOUNCEMENT.value: "system",
}

_BATCH_SIZE = 500


@dataclass(frozen=True)
class NotificationContent:
    title: str
    message: str
    action_url: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class NotificationStats:
    total: int
    unread: int
    today: int
    this_week: int
    by_type: dict[str, int]


def _chunks(items: Sequence[str], size: int = _BATCH_SIZE) -> Iterator[Sequence[str]]:
    for i in range(0, len(items), size):
        yield items[i:i + size]


# ---------------------------------------------------------------------------
# Preferences
# ---------------------------------------------------------------------------


def should_deliver(preferences: dict, type_: str) -> bool:
    """Check if an in-app notification of ``type_`` is enabled."""
    pref_key = PREFERENCE_MAP.get(type_)
    if pref_key is None:
        return True
    return bool(preferences.get(pref_key, DEFAULT_PREFERENCES.get(pref_key, True)))


def _merge(stored: dict | None) -> dict:
    merged = dict(DEFAULT_PREFERENCES)
    if stored:
        merged.update({k: v for k, v in stored.items() if k in DEFAULT_PREFERENCES})
    return merged


async def get_preferences(db: AsyncSession, user_id: str) -> dict:
    """Get a user's notification preferences, falling back to defaults."""
    result = await db.execute(
        select(NotificationPreferences.categories).where(NotificationPreferences.user_id == user_id)
    )
    return _merge(result.scalar_one_or_none())


async def get_preferences_bulk(db: AsyncSession, user_ids: Sequence[str]) -> dict[str, dict]:
    """Preferences for many users in one query."""
    result = await db.execute(
        select(NotificationPreferences.user_id, NotificationPreferences.categories).where(
            NotificationPreferences.user_id.in_(list(user_ids))
        )
    )
    stored = dict(result.all())
    return {uid: _merge(stored.get(uid)) for uid in user_ids}


async def update_preferences(db: AsyncSession, user_id: str, changes: dict[str, Any]) -> dict:
    """Merge ``changes`` into the stored preferences.

    Raises:
        ValidationError: Unknown category or non-boolean flag.
    """
    unknown = sorted(set(changes) - set(DEFAULT_PREFERENCES))
    if unknown:
        msg = f"Unknown notification preferences: {', '.join(unknown)}"
        raise ValidationError(msg)
    bad = sorted(k for k, v in changes.items() if not isinstance(v, bool))
    if bad:
        msg = f"Preference flags must be booleans: {', '.join(bad)}"
        raise ValidationError(msg)

    merged = await get_preferences(db, user_id)
    merged.update(changes)
    now = datetime.now(timezone.utc)
    table = NotificationPreferences.__table__
    stmt = insert_for(db, table).values(user_id=user_id, categories=merged, updated_at=now)
    stmt = stmt.on_conflict_do_update(
        index_elements=[table.c.user_id],
        set_={"categories": merged, "updated_at": now},
    )
    await db.execute(stmt)
    await db.flush()
    return merged


# ---------------------------------------------------------------------------
# Fan-out
# ---------------------------------------------------------------------------


def build_content(activity: Activity) -> NotificationContent:
    """Title, message and link for the notification derived from ``activity``."""
    payload = activity.payload or {}
    actor = activity.actor_display_name
    website_title = payload.get("website_title") or "your website"
    website_url = f"/website/{payload['website_id']}" if payload.get("website_id") else None
    meta = {"actor_id": activity.actor_id, "activity_type": activity.type}
    if payload.get("website_id"):
        meta["website_id"] = payload["website_id"]

    if activity.type == ActivityType.WEBSITE_LIKE.value:
        return NotificationContent("New like", f"{actor} liked {website_title}", website_url, meta)
    if activity.type == ActivityType.WEBSITE_COMMENT.value:
        return NotificationContent(
            "New comment",
            f"{actor} commented on {website_title}: {payload.get('comment_text', '')}",
            website_url,
            meta,
        )
    if activity.type == ActivityType.WEBSITE_RATING.value:
        meta["rating"] = payload.get("rating")
        return NotificationContent(
            "New rating",
            f"{actor} rated {website_title} {payload.get('rating')}/5",
            website_url,
            meta,
        )
    if activity.type == ActivityType.USER_FOLLOW.value:
        return NotificationContent(
            "New follower", f"{actor} started following you", f"/profile/{activity.actor_id}", meta,
        )
    if activity.type == ActivityType.WEBSITE_SUBMIT.value:
        return NotificationContent(
            "New website", f"{actor} submitted a new website: {website_title}", website_url, meta,
        )
    if activity.type == ActivityType.ANNOUNCEMENT.value:
        return NotificationContent(
            payload.get("title", "Announcement"),
            payload.get("message", ""),
            payload.get("action_url"),
            meta,
        )
    msg = f"Activity type {activity.type} does not produce notifications"
    raise ValueError(msg)


async def resolve_recipients(db: AsyncSession, activity: Activity) -> list[str]:
    """Users who should be notified about ``activity``. Never includes the actor."""
    payload = activity.payload or {}

    if activity.type in (
        ActivityType.WEBSITE_LIKE.value,
        ActivityType.WEBSITE_COMMENT.value,
        ActivityType.WEBSITE_RATING.value,
    ):
        website_id = payload.get("website_id")
        owner_id = (
            await db.execute(select(Website.owner_id).where(Website.id == website_id))
        ).scalar_one_or_none()
        if owner_id is None:
            logger.warning("Website %s not found; activity %s has no recipients", website_id, activity.id)
            return []
        if owner_id == activity.actor_id:
            return []
        return [owner_id]

    if activity.type == ActivityType.USER_FOLLOW.value:
        target = payload.get("target_user_id")
        if not target or target == activity.actor_id:
            return []
        return [target]

    if activity.type == ActivityType.WEBSITE_SUBMIT.value:
        result = await db.execute(
            select(FollowEdge.follower_id)
            .where(FollowEdge.following_id == activity.actor_id)
            .order_by(FollowEdge.follower_id)
        )
        return [uid for uid in result.scalars().all() if uid != activity.actor_id]

    if activity.type == ActivityType.ANNOUNCEMENT.value:
        result = await db.execute(
            select(UserProfile.id)
            .where(UserProfile.is_active.is_(True), UserProfile.id != activity.actor_id)
            .order_by(UserProfile.id)
        )
        return list(result.scalars().all())

    return []


async def on_activity(db: AsyncSession, activity: Activity) -> list[int]:
    """Fan ``activity`` out to its recipients.

    Safe to call more than once for the same activity: the
    (recipient, source activity, type) key suppresses duplicates.

    Returns:
        Ids of the notifications created by this call.
    """
    type_ = ACTIVITY_NOTIFICATION_TYPES.get(activity.type)
    if type_ is None:
        return []

    recipients = await resolve_recipients(db, activity)
    if not recipients:
        return []

    content = build_content(activity)
    now = datetime.now(timezone.utc)
    table = Notification.__table__
    created: list[str] = []

    for batch in _chunks(recipients):
        preferences = await get_preferences_bulk(db, batch)
        for recipient_id in batch:
            if not should_deliver(preferences[recipient_id], type_):
                logger.debug("Skipping %s notification for %s: disabled by preferences", type_, recipient_id)
                continue
            stmt = (
                insert_for(db, table)
                .values(
                    recipient_id=recipient_id,
                    source_activity_id=activity.id,
                    type=type_,
                    title=content.title,
                    message=content.message,
                    action_url=content.action_url,
                    is_read=False,
                    push_status="pending",
                    metadata=content.metadata,
                    created_at=now,
                    updated_at=now,
                )
                .on_conflict_do_nothing(
                    index_elements=[table.c.recipient_id, table.c.source_activity_id, table.c.type]
                )
            )
            result = await db.execute(stmt)
            if result.rowcount == 1:
                created.append(recipient_id)
            else:
                logger.debug("Duplicate %s notification for %s from activity %s", type_, recipient_id, activity.id)

    ids: list[int] = []
    for batch in _chunks(created):
        result = await db.execute(
            select(Notification.id)
            .where(
                Notification.source_activity_id == activity.id,
                Notification.type == type_,
                Notification.recipient_id.in_(list(batch)),
            )
            .order_by(Notification.id)
        )
        ids.extend(result.scalars().all())

    await db.flush()
    if ids:
        logger.info("Activity %s fanned out to %d recipients", activity.id, len(ids))
    return ids


async def announce(
    db: AsyncSession,
    sender_id: str,
    title: str,
    message: str,
    action_url: str | None = None,
) -> Activity:
    """Record an announcement activity; the fan-out path delivers it to every active user."""
    from showcase.social.activity_service import record_activity

    payload = AnnouncementPayload(title=title, message=message, action_url=action_url)
    return await record_activity(db, sender_id, payload, is_public=False)


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


async def get_notifications(
    db: AsyncSession,
    user_id: str,
    limit: int = 20,
    cursor: str | None = None,
    unread_only: bool = False,
    type_: str | None = None,
) -> tuple[list[Notification], str | None]:
    """A page of the user's notifications, most recent first."""
    if type_ is not None and type_ not in VALID_TYPES:
        msg = f"Invalid notification type: {type_}"
        raise ValidationError(msg)

    query = select(Notification).where(Notification.recipient_id == user_id)
    if unread_only:
        query = query.where(Notification.is_read.is_(False))
    if type_ is not None:
        query = query.where(Notification.type == type_)
    if cursor:
        query = query.where(before(Notification.created_at, Notification.id, decode_cursor(cursor)))
    query = query.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit + 1)

    result = await db.execute(query)
    rows = list(result.scalars().all())
    items = rows[:limit]
    next_cursor = None
    if len(rows) > limit and items:
        next_cursor = encode_cursor(items[-1].created_at, items[-1].id)
    return items, next_cursor


async def notifications_since(
    db: AsyncSession,
    user_id: str,
    cursor: str,
    limit: int = 100,
) -> tuple[list[Notification], str]:
    """Notifications newer than ``cursor``, oldest first, for reconnecting clients."""
    position = decode_cursor(cursor)
    result = await db.execute(
        select(Notification)
        .where(
            Notification.recipient_id == user_id,
            after(Notification.created_at, Notification.id, position),
        )
        .order_by(Notification.created_at.asc(), Notification.id.asc())
        .limit(limit)
    )
    items = list(result.scalars().all())
    next_cursor = encode_cursor(items[-1].created_at, items[-1].id) if items else cursor
    return items, next_cursor


async def get_counts(db: AsyncSession, user_id: str) -> tuple[int, int]:
    """(total, unread) for the user."""
    total = (
        await db.execute(
            select(func.count()).select_from(Notification).where(Notification.recipient_id == user_id)
        )
    ).scalar_one()
    unread = await get_unread_count(db, user_id)
    return total, unread


async def get_unread_count(db: AsyncSession, user_id: str) -> int:
    result = await db.execute(
        select(func.count())
        .select_from(Notification)
        .where(Notification.recipient_id == user_id, Notification.is_read.is_(False))
    )
    return result.scalar_one()


async def get_notification_stats(
    db: AsyncSession,
    user_id: str,
    now: datetime | None = None,
) -> NotificationStats:
    """Totals by type plus today's and this week's notification counts."""
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    total, unread = await get_counts(db, user_id)

    by_type_rows = await db.execute(
        select(Notification.type, func.count())
        .where(Notification.recipient_id == user_id)
        .group_by(Notification.type)
    )
    by_type = {t: 0 for t in sorted(VALID_TYPES)}
    by_type.update(dict(by_type_rows.all()))

    async def _count_since(since: datetime) -> int:
        result = await db.execute(
            select(func.count())
            .select_from(Notification)
            .where(Notification.recipient_id == user_id, Notification.created_at >= since)
        )
        return result.scalar_one()

    return NotificationStats(
        total=total,
        unread=unread,
        today=await _count_since(start_of_day(now)),
        this_week=await _count_since(get_week_start(now)),
        by_type=by_type,
    )


async def get_push_tokens(db: AsyncSession, user_ids: Sequence[str]) -> dict[str, list[str]]:
    """Registered push tokens grouped by user."""
    result = await db.execute(
        select(PushToken.user_id, PushToken.token)
        .where(PushToken.user_id.in_(list(user_ids)))
        .order_by(PushToken.id)
    )
    tokens: dict[str, list[str]] = {}
    for uid, token in result.all():
        tokens.setdefault(uid, []).append(token)
    return tokens


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------


async def mark_as_read(db: AsyncSession, user_id: str, notification_id: int) -> None:
    """Mark a single notification as read.

    Raises:
        NotFoundError: Unknown id, or the notification belongs to someone else.
    """
    result = await db.execute(
        update(Notification)
        .where(Notification.id == notification_id, Notification.recipient_id == user_id)
        .values(is_read=True, updated_at=datetime.now(timezone.utc))
    )
    if result.rowcount == 0:
        raise NotFoundError("Notification not found")
    await db.flush()


async def mark_all_as_read(db: AsyncSession, user_id: str) -> int:
    """Mark every unread notification of the user as read. Returns the count."""
    result = await db.execute(
        update(Notification)
        .where(Notification.recipient_id == user_id, Notification.is_read.is_(False))
        .values(is_read=True, updated_at=datetime.now(timezone.utc))
    )
    await db.flush()
    return result.rowcount


async def delete_notification(db: AsyncSession, user_id: str, notification_id: int) -> None:
    """Delete one of the user's notifications.

    Raises:
        NotFoundError: Unknown id, or the notification belongs to someone else.
    """
    result = await db.execute(
        delete(Notification).where(Notification.id == notification_id, Notification.recipient_id == user_id)
    )
    if result.rowcount == 0:
        raise NotFoundError("Notification not found")
    await db.flush()


async def clear_all(db: AsyncSession, user_id: str) -> int:
    """Delete all of the user's notifications. Returns the count."""
    result = await db.execute(delete(Notification).where(Notification.recipient_id == user_id))
    await db.flush()
    return result.rowcount


async def retract_for_activity(db: AsyncSession, activity_id: int) -> int:
    """Delete notifications derived from a removed activity."""
    result = await db.execute(delete(Notification).where(Notification.source_activity_id == activity_id))
    await db.flush()
    return result.rowcount


async def cleanup_old_notifications(db: AsyncSession, older_than_days: int = 30) -> int:
    """Delete notifications older than the retention window."""
    cutoff = datetime.now(timezone.utc) - timedelta(days=older_than_days)
    result = await db.execute(delete(Notification).where(Notification.created_at < cutoff))
    await db.flush()
    if result.rowcount:
        logger.info("Removed %d notifications older than %d days", result.rowcount, older_than_days)
    return result.rowcount


async def register_push_token(db: AsyncSession, user_id: str, token: str) -> None:
    """Attach a device token to the user, moving it from any previous owner."""
    if not token or not token.strip():
        raise ValidationError("Push token must not be empty")
    now = datetime.now(timezone.utc)
    table = PushToken.__table__
    stmt = insert_for(db, table).values(user_id=user_id, token=token, created_at=now, updated_at=now)
    stmt = stmt.on_conflict_do_update(
        index_elements=[table.c.token],
        set_={"user_id": user_id, "updated_at": now},
    )
    await db.execute(stmt)
    await db.flush()


async def remove_push_token(db: AsyncSession, user_id: str, token: str) -> bool:
    """Detach a device token. Returns False when the user did not own it."""
    result = await db.execute(delete(PushToken).where(PushToken.user_id == user_id, PushToken.token == token))
    await db.flush()
    return result.rowcount > 0


def notification_to_dict(notification: Notification) -> dict[str, Any]:
    """Serialize a notification for API responses and realtime pushes."""
    return {
        "id": str(notification.id),
        "type": notification.type,
        "title": notification.title,
        "message": notification.message,
        "action_url": notification.action_url,
        "is_read": notification.is_read,
        "push_status": notification.push_status,
        "source_activity_id": (
            str(notification.source_activity_id) if notification.source_activity_id is not None else None
        ),
        "metadata": dict(notification.notification_metadata or {}),
        "created_at": notification.created_at.isoformat() if notification.created_at else None,
    }


async def pending_delivery_ids(db: AsyncSession, activity_id: int) -> list[int]:
    """Notifications of an activity that have not been through delivery yet."""
    result = await db.execute(
        select(Notification.id)
        .where(Notification.source_activity_id == activity_id, Notification.push_status == "pending")
        .order_by(Notification.id)
    )
    return list(result.scalars().all())


def notification_cursor(notification: Notification) -> str:
    return encode_cursor(notification.created_at, notification.id)
