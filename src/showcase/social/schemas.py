"""Pydantic schemas for social endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


# --- Activities / feed ---


class CreateActivityRequest(BaseModel):
    payload: dict[str, Any] = Field(..., description="Typed payload; 'type' selects the variant")
    is_public: bool = True
    metadata: dict[str, Any] = {}


class ActivityResponse(BaseModel):
    id: str
    type: str
    actor_id: str
    actor_display_name: str
    actor_photo_url: str | None = None
    created_at: datetime
    is_public: bool
    payload: dict[str, Any] = {}
    metadata: dict[str, Any] = {}


class FeedResponse(BaseModel):
    activities: list[ActivityResponse]
    has_more: bool
    next_cursor: str | None = None
    head_cursor: str | None = None


class UserActivitiesResponse(BaseModel):
    activities: list[ActivityResponse]


class DeleteActivityResponse(BaseModel):
    retracted_notifications: int


# --- Follow graph ---


class FollowResponse(BaseModel):
    is_following: bool
    changed: bool


class FollowStatsResponse(BaseModel):
    user_id: str
    followers_count: int
    following_count: int


class FollowStatusResponse(BaseModel):
    is_following: bool
    is_followed_by: bool
    mutual: bool


class UserIdListResponse(BaseModel):
    user_ids: list[str]
    total: int


# --- Stats ---


class ActivityStatsResponse(BaseModel):
    user_id: str
    today: int
    this_week: int
    following: int


# --- Notifications ---


class NotificationResponse(BaseModel):
    id: str
    type: str
    title: str
    message: str
    action_url: str | None = None
    is_read: bool
    push_status: str
    source_activity_id: str | None = None
    metadata: dict[str, Any] = {}
    created_at: datetime


class NotificationListResponse(BaseModel):
    notifications: list[NotificationResponse]
    next_cursor: str | None = None
    total_count: int
    unread_count: int


class NotificationChangesResponse(BaseModel):
    notifications: list[NotificationResponse]
    next_cursor: str
    unread_count: int


class UnreadCountResponse(BaseModel):
    unread_count: int


class NotificationStatsResponse(BaseModel):
    total: int
    unread: int
    today: int
    this_week: int
    by_type: dict[str, int]


class NotificationPreferencesResponse(BaseModel):
    preferences: dict[str, bool]


class UpdatePreferencesRequest(BaseModel):
    preferences: dict[str, Any]


class PushTokenRequest(BaseModel):
    token: str = Field(..., min_length=1, max_length=512)


class AnnouncementRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=256)
    message: str = Field(..., min_length=1, max_length=2000)
    action_url: str | None = Field(None, max_length=512)


class AnnouncementResponse(BaseModel):
    activity_id: str
    created_at: datetime
