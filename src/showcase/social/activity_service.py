"""Activity store: append-only log of user actions."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from showcase.db.models import Activity, UserProfile
from showcase.errors import NotFoundError, PermissionDeniedError, SelfFollowError
from showcase.social.activity_types import ActivityType, parse_payload

logger = logging.getLogger(__name__)


async def _latest_created_at(db: AsyncSession, actor_id: str) -> datetime | None:
    result = await db.execute(
        select(func.max(Activity.created_at)).where(Activity.actor_id == actor_id)
    )
    return result.scalar_one_or_none()


async def record_activity(
    db: AsyncSession,
    actor_id: str,
    payload: BaseModel | dict[str, Any],
    *,
    actor_display_name: str | None = None,
    actor_photo_url: str | None = None,
    is_public: bool = True,
    metadata: dict[str, Any] | None = None,
    now: datetime | None = None,
) -> Activity:
    """Append an activity for ``actor_id``.

    The payload is validated against its type's variant before anything is
    written. Actor display data is denormalized from the profile cache when
    not supplied. ``created_at`` never goes backwards within one actor's
    stream; equal timestamps are ordered by the id sequence.

    Raises:
        ValidationError: Malformed payload.
        SelfFollowError: A user_follow activity targeting the actor.
        NotFoundError: Unknown actor when no display name was given.
    """
    typed = parse_payload(payload if isinstance(payload, dict) else payload.model_dump())

    if typed.type == ActivityType.USER_FOLLOW.value and typed.target_user_id == actor_id:
        raise SelfFollowError("Cannot follow yourself")

    if actor_display_name is None:
        profile = await db.get(UserProfile, actor_id)
        if profile is None:
            raise NotFoundError("User not found")
        actor_display_name = profile.display_name or "Unknown User"
        actor_photo_url = actor_photo_url or profile.photo_url

    created_at = now or datetime.now(timezone.utc)
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    latest = await _latest_created_at(db, actor_id)
    if latest is not None and latest > created_at:
        created_at = latest

    if typed.type == ActivityType.ANNOUNCEMENT.value:
        is_public = False

    activity = Activity(
        type=typed.type,
        actor_id=actor_id,
        actor_display_name=actor_display_name,
        actor_photo_url=actor_photo_url,
        is_public=is_public,
        payload=typed.model_dump(mode="json", exclude_none=True),
        activity_metadata=metadata or {},
        created_at=created_at,
    )
    db.add(activity)
    await db.flush()
    logger.debug("Recorded activity %s type=%s actor=%s", activity.id, activity.type, actor_id)
    return activity


async def get_activity(db: AsyncSession, activity_id: int) -> Activity:
    """Get a single activity.

    Raises:
        NotFoundError: If the activity does not exist.
    """
    activity = await db.get(Activity, activity_id)
    if activity is None:
        raise NotFoundError("Activity not found")
    return activity


async def query_by_actor(
    db: AsyncSession,
    actor_id: str,
    since: datetime | None = None,
    limit: int = 20,
    public_only: bool = False,
) -> list[Activity]:
    """Activities of one actor, newest first."""
    query = select(Activity).where(Activity.actor_id == actor_id)
    if public_only:
        query = query.where(Activity.is_public.is_(True))
    if since is not None:
        query = query.where(Activity.created_at >= since)
    query = query.order_by(Activity.created_at.desc(), Activity.id.desc()).limit(limit)
    result = await db.execute(query)
    return list(result.scalars().all())


async def query_public_since(
    db: AsyncSession,
    since: datetime,
    limit: int = 20,
) -> list[Activity]:
    """Public activities created at or after ``since``, newest first."""
    result = await db.execute(
        select(Activity)
        .where(Activity.is_public.is_(True), Activity.created_at >= since)
        .order_by(Activity.created_at.desc(), Activity.id.desc())
        .limit(limit)
    )
    return list(result.scalars().all())


async def query_unfanned(
    db: AsyncSession,
    older_than: datetime,
    limit: int = 200,
) -> list[Activity]:
    """Committed activities the fan-out worker has not finished, oldest first."""
    result = await db.execute(
        select(Activity)
        .where(Activity.fanned_out_at.is_(None), Activity.created_at < older_than)
        .order_by(Activity.created_at, Activity.id)
        .limit(limit)
    )
    return list(result.scalars().all())


async def delete_activity(
    db: AsyncSession,
    activity_id: int,
    *,
    requested_by: str,
    is_admin: bool = False,
    retract_notifications: bool = True,
) -> int:
    """Remove an activity for moderation or GDPR purposes.

    Notifications referencing the activity are not cascaded by the database;
    they are retracted here through an explicit reconciliation step.

    Returns:
        Number of notifications retracted.

    Raises:
        NotFoundError: Unknown activity.
        PermissionDeniedError: Requester is neither the actor nor an admin.
    """
    from showcase.social.notification_service import retract_for_activity

    activity = await get_activity(db, activity_id)
    if activity.actor_id != requested_by and not is_admin:
        raise PermissionDeniedError("Not authorized to delete this activity")

    await db.execute(delete(Activity).where(Activity.id == activity_id))
    retracted = 0
    if retract_notifications:
        retracted = await retract_for_activity(db, activity_id)
    await db.flush()
    logger.info("Deleted activity %s (retracted %d notifications)", activity_id, retracted)
    return retracted


def activity_to_dict(activity: Activity) -> dict[str, Any]:
    """Serialize an activity for events, realtime deltas and API responses."""
    return {
        "id": str(activity.id),
        "type": activity.type,
        "actor_id": activity.actor_id,
        "actor_display_name": activity.actor_display_name,
        "actor_photo_url": activity.actor_photo_url,
        "created_at": activity.created_at.isoformat() if activity.created_at else None,
        "is_public": activity.is_public,
        "payload": dict(activity.payload or {}),
        "metadata": dict(activity.activity_metadata or {}),
    }
