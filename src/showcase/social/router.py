"""Social API endpoints: activities, feed, follow graph and stats."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from showcase.auth.dependencies import CurrentUser, get_current_user
from showcase.database import get_session
from showcase.db.models import Activity, UserProfile
from showcase.errors import PermissionDeniedError, ValidationError
from showcase.redis_client import get_optional_redis
from showcase.social import activity_service, feed_service, follow_service, stats_service
from showcase.social.activity_types import ActivityType, UserFollowPayload
from showcase.social.events import publish_activity_event
from showcase.social.schemas import (
    ActivityResponse,
    ActivityStatsResponse,
    CreateActivityRequest,
    DeleteActivityResponse,
    FeedResponse,
    FollowResponse,
    FollowStatsResponse,
    FollowStatusResponse,
    UserActivitiesResponse,
    UserIdListResponse,
)

router = APIRouter(prefix="/api/v1", tags=["Social"])


def _activity_response(activity: Activity) -> ActivityResponse:
    return ActivityResponse.model_validate(activity_service.activity_to_dict(activity))


def _split_types(types: str | None) -> list[str] | None:
    if not types:
        return None
    return [t.strip() for t in types.split(",") if t.strip()]


# ── Activities ──


@router.post("/activities", response_model=ActivityResponse, status_code=201)
async def create_activity(
    body: CreateActivityRequest,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    redis: Any = Depends(get_optional_redis),  # noqa: ANN401
):
    """Record an activity performed by the signed-in user."""
    activity_type = body.payload.get("type")
    if activity_type == ActivityType.USER_FOLLOW.value:
        raise ValidationError("Follow activities are recorded by the follow endpoint")
    if activity_type == ActivityType.ANNOUNCEMENT.value:
        raise PermissionDeniedError("Announcements are created by admins via /api/v1/announcements")

    activity = await activity_service.record_activity(
        db,
        user.uid,
        body.payload,
        actor_display_name=user.display_name,
        actor_photo_url=user.photo_url,
        is_public=body.is_public,
        metadata=body.metadata,
    )
    await db.commit()
    await publish_activity_event(redis, activity)
    return _activity_response(activity)


@router.delete("/activities/{activity_id}", response_model=DeleteActivityResponse)
async def delete_activity(
    activity_id: int,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """Delete an activity (its actor or an admin) and retract derived notifications."""
    retracted = await activity_service.delete_activity(
        db, activity_id, requested_by=user.uid, is_admin=user.is_admin,
    )
    await db.commit()
    return DeleteActivityResponse(retracted_notifications=retracted)


@router.get("/users/{user_id}/activities", response_model=UserActivitiesResponse)
async def list_user_activities(
    user_id: str,
    since: datetime | None = Query(None),
    limit: int = Query(20, ge=1, le=100),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """A user's own activity stream; other viewers only see public items."""
    activities = await activity_service.query_by_actor(
        db, user_id, since=since, limit=limit, public_only=user.uid != user_id,
    )
    return UserActivitiesResponse(activities=[_activity_response(a) for a in activities])


# ── Feed ──


@router.get("/feed", response_model=FeedResponse)
async def get_feed(
    following_only: bool = Query(True),
    types: str | None = Query(None, description="Comma-separated activity types"),
    limit: int | None = Query(None),
    cursor: str | None = Query(None),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """One page of the signed-in user's feed, newest first."""
    page = await feed_service.compose_feed(
        db,
        user.uid,
        feed_service.FeedOptions(
            following_only=following_only,
            activity_types=_split_types(types),
            limit=limit,
            cursor=cursor,
        ),
    )
    return FeedResponse(
        activities=[_activity_response(a) for a in page.activities],
        has_more=page.has_more,
        next_cursor=page.next_cursor,
        head_cursor=feed_service.feed_head_cursor(page) if cursor is None else None,
    )


@router.get("/feed/changes", response_model=FeedResponse)
async def get_feed_changes(
    cursor: str = Query(...),
    following_only: bool = Query(True),
    limit: int | None = Query(None),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """Feed activities newer than ``cursor``, oldest first."""
    page = await feed_service.changes_since(db, user.uid, cursor, following_only=following_only, limit=limit)
    return FeedResponse(
        activities=[_activity_response(a) for a in page.activities],
        has_more=page.has_more,
        next_cursor=page.next_cursor,
    )


# ── Follow graph ──


@router.post("/users/{user_id}/follow", response_model=FollowResponse)
async def follow_user(
    user_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    redis: Any = Depends(get_optional_redis),  # noqa: ANN401
):
    """Follow a user. Following twice is a no-op."""
    result = await follow_service.follow(db, user.uid, user_id)
    activity = None
    if result.changed:
        target = await db.get(UserProfile, user_id)
        activity = await activity_service.record_activity(
            db,
            user.uid,
            UserFollowPayload(
                target_user_id=user_id,
                target_user_display_name=target.display_name,
                target_user_photo_url=target.photo_url,
            ),
            actor_display_name=user.display_name,
            actor_photo_url=user.photo_url,
        )
    await db.commit()
    if activity is not None:
        await publish_activity_event(redis, activity)
    return FollowResponse(is_following=result.is_following, changed=result.changed)


@router.delete("/users/{user_id}/follow", response_model=FollowResponse)
async def unfollow_user(
    user_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """Unfollow a user. Unfollowing someone not followed is a no-op."""
    result = await follow_service.unfollow(db, user.uid, user_id)
    await db.commit()
    return FollowResponse(is_following=result.is_following, changed=result.changed)


@router.get("/users/{user_id}/follow-stats", response_model=FollowStatsResponse)
async def get_follow_stats(
    user_id: str,
    db: AsyncSession = Depends(get_session),
):
    """Follower and following counts (public)."""
    stats = await follow_service.get_stats(db, user_id)
    return FollowStatsResponse(
        user_id=stats.user_id,
        followers_count=stats.followers_count,
        following_count=stats.following_count,
    )


@router.get("/users/{user_id}/following", response_model=UserIdListResponse)
async def get_following(
    user_id: str,
    db: AsyncSession = Depends(get_session),
):
    ids = sorted(await follow_service.list_following(db, user_id))
    return UserIdListResponse(user_ids=ids, total=len(ids))


@router.get("/users/{user_id}/followers", response_model=UserIdListResponse)
async def get_followers(
    user_id: str,
    db: AsyncSession = Depends(get_session),
):
    ids = sorted(await follow_service.list_followers(db, user_id))
    return UserIdListResponse(user_ids=ids, total=len(ids))


@router.get("/users/{user_id}/follow-status", response_model=FollowStatusResponse)
async def get_follow_status(
    user_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """Relationship between the signed-in user and ``user_id``."""
    status = await follow_service.get_follow_status(db, user.uid, user_id)
    return FollowStatusResponse(
        is_following=status.is_following,
        is_followed_by=status.is_followed_by,
        mutual=status.mutual,
    )


# ── Stats ──


@router.get("/users/{user_id}/stats", response_model=ActivityStatsResponse)
async def get_user_stats(
    user_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """Activity counts for today and this week plus the following count."""
    snapshot = await stats_service.get_activity_stats(db, user_id)
    return ActivityStatsResponse(
        user_id=user_id,
        today=snapshot.today,
        this_week=snapshot.this_week,
        following=snapshot.following,
    )
