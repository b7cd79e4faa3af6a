"""Notification API endpoints, plus admin announcements."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from showcase.auth.dependencies import CurrentUser, get_current_user, require_admin
from showcase.database import get_session
from showcase.db.models import Notification
from showcase.errors import NotFoundError
from showcase.redis_client import get_optional_redis
from showcase.social import notification_service
from showcase.social.events import publish_activity_event
from showcase.social.realtime import (
    NOTIFICATION_DELETED,
    NOTIFICATION_READ,
    NOTIFICATIONS_CLEARED,
    NOTIFICATIONS_READ_ALL,
    publish_notification_event,
)
from showcase.social.schemas import (
    AnnouncementRequest,
    AnnouncementResponse,
    NotificationChangesResponse,
    NotificationListResponse,
    NotificationPreferencesResponse,
    NotificationResponse,
    NotificationStatsResponse,
    PushTokenRequest,
    UnreadCountResponse,
    UpdatePreferencesRequest,
)

router = APIRouter(prefix="/api/v1", tags=["Notifications"])


def _notification_response(n: Notification) -> NotificationResponse:
    return NotificationResponse.model_validate(notification_service.notification_to_dict(n))


@router.get("/notifications", response_model=NotificationListResponse)
async def list_notifications(
    limit: int = Query(20, ge=1, le=100),
    cursor: str | None = Query(None),
    unread_only: bool = Query(False),
    type: str | None = Query(None),  # noqa: A002
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """List the user's notifications, most recent first."""
    notifications, next_cursor = await notification_service.get_notifications(
        db, user.uid, limit=limit, cursor=cursor, unread_only=unread_only, type_=type,
    )
    total, unread = await notification_service.get_counts(db, user.uid)
    return NotificationListResponse(
        notifications=[_notification_response(n) for n in notifications],
        next_cursor=next_cursor,
        total_count=total,
        unread_count=unread,
    )


@router.get("/notifications/changes", response_model=NotificationChangesResponse)
async def notification_changes(
    cursor: str = Query(...),
    limit: int = Query(100, ge=1, le=100),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """Notifications created after ``cursor``, for reconnecting clients."""
    notifications, next_cursor = await notification_service.notifications_since(db, user.uid, cursor, limit=limit)
    unread = await notification_service.get_unread_count(db, user.uid)
    return NotificationChangesResponse(
        notifications=[_notification_response(n) for n in notifications],
        next_cursor=next_cursor,
        unread_count=unread,
    )


@router.get("/notifications/unread-count", response_model=UnreadCountResponse)
async def get_unread_notification_count(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """Get unread notification count."""
    count = await notification_service.get_unread_count(db, user.uid)
    return UnreadCountResponse(unread_count=count)


@router.get("/notifications/stats", response_model=NotificationStatsResponse)
async def get_notification_stats(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    stats = await notification_service.get_notification_stats(db, user.uid)
    return NotificationStatsResponse(
        total=stats.total,
        unread=stats.unread,
        today=stats.today,
        this_week=stats.this_week,
        by_type=stats.by_type,
    )


@router.post("/notifications/read-all", status_code=200)
async def mark_all_read(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    redis: Any = Depends(get_optional_redis),  # noqa: ANN401
):
    """Mark all notifications as read."""
    count = await notification_service.mark_all_as_read(db, user.uid)
    await db.commit()
    await publish_notification_event(redis, user.uid, NOTIFICATIONS_READ_ALL, {"count": count})
    return {"detail": f"Marked {count} notifications as read", "count": count}


@router.post("/notifications/{notification_id}/read", status_code=200)
async def mark_notification_read(
    notification_id: int,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    redis: Any = Depends(get_optional_redis),  # noqa: ANN401
):
    """Mark a notification as read."""
    await notification_service.mark_as_read(db, user.uid, notification_id)
    await db.commit()
    await publish_notification_event(redis, user.uid, NOTIFICATION_READ, {"id": str(notification_id)})
    return {"detail": "Notification marked as read"}


@router.delete("/notifications", status_code=200)
async def clear_notifications(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    redis: Any = Depends(get_optional_redis),  # noqa: ANN401
):
    """Delete all of the user's notifications."""
    count = await notification_service.clear_all(db, user.uid)
    await db.commit()
    await publish_notification_event(redis, user.uid, NOTIFICATIONS_CLEARED, {"count": count})
    return {"detail": f"Deleted {count} notifications", "count": count}


# ── Preferences / push tokens ──


@router.get("/notifications/preferences", response_model=NotificationPreferencesResponse)
async def get_preferences(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    preferences = await notification_service.get_preferences(db, user.uid)
    return NotificationPreferencesResponse(preferences=preferences)


@router.put("/notifications/preferences", response_model=NotificationPreferencesResponse)
async def update_preferences(
    body: UpdatePreferencesRequest,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """Merge category flags into the stored preferences."""
    preferences = await notification_service.update_preferences(db, user.uid, body.preferences)
    await db.commit()
    return NotificationPreferencesResponse(preferences=preferences)


@router.post("/notifications/push-tokens", status_code=201)
async def register_push_token(
    body: PushTokenRequest,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    await notification_service.register_push_token(db, user.uid, body.token)
    await db.commit()
    return {"detail": "Push token registered"}


@router.delete("/notifications/push-tokens", status_code=200)
async def remove_push_token(
    body: PushTokenRequest,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    removed = await notification_service.remove_push_token(db, user.uid, body.token)
    if not removed:
        raise NotFoundError("Push token not found")
    await db.commit()
    return {"detail": "Push token removed"}


@router.delete("/notifications/{notification_id}", status_code=200)
async def delete_notification(
    notification_id: int,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    redis: Any = Depends(get_optional_redis),  # noqa: ANN401
):
    await notification_service.delete_notification(db, user.uid, notification_id)
    await db.commit()
    await publish_notification_event(redis, user.uid, NOTIFICATION_DELETED, {"id": str(notification_id)})
    return {"detail": "Notification deleted"}


# ── Announcements ──


@router.post("/announcements", response_model=AnnouncementResponse, status_code=201)
async def create_announcement(
    body: AnnouncementRequest,
    admin: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
    redis: Any = Depends(get_optional_redis),  # noqa: ANN401
):
    """Broadcast a system notification to every active user (admin only)."""
    activity = await notification_service.announce(
        db, admin.uid, body.title, body.message, action_url=body.action_url,
    )
    await db.commit()
    await publish_activity_event(redis, activity)
    return AnnouncementResponse(activity_id=str(activity.id), created_at=activity.created_at)
