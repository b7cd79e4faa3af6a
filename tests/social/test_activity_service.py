"""Tests for the activity store."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select

from conftest import create_user, create_website
from showcase.db.models import Activity, Notification
from showcase.errors import NotFoundError, PermissionDeniedError, SelfFollowError, ValidationError
from showcase.social import activity_service, notification_service
from showcase.social.activity_types import WebsiteRatingPayload

T0 = datetime(2024, 1, 17, 12, 0, tzinfo=timezone.utc)


class TestRecordActivity:
    """Recording validates payloads and orders timestamps."""

    async def test_records_typed_payload_with_actor_snapshot(self, db_session):
        await create_user(db_session, "alice", "Alice")
        activity = await activity_service.record_activity(
            db_session, "alice", {"type": "website_submit", "website_id": "w1", "website_title": "Portfolio"},
            now=T0,
        )
        await db_session.commit()

        assert activity.id is not None
        assert activity.type == "website_submit"
        assert activity.actor_display_name == "Alice"
        assert activity.is_public is True
        assert activity.payload == {"type": "website_submit", "website_id": "w1", "website_title": "Portfolio"}
        assert activity.created_at == T0

    async def test_accepts_payload_model(self, db_session):
        activity = await activity_service.record_activity(
            db_session, "bob", WebsiteRatingPayload(website_id="w1", rating=4),
            actor_display_name="Bob", now=T0,
        )
        assert activity.payload["rating"] == 4

    async def test_rating_out_of_range_rejected_before_write(self, db_session):
        with pytest.raises(ValidationError):
            await activity_service.record_activity(
                db_session, "bob", {"type": "website_rating", "website_id": "w1", "rating": 6},
                actor_display_name="Bob",
            )
        count = (await db_session.execute(select(func.count()).select_from(Activity))).scalar_one()
        assert count == 0

    async def test_missing_required_field_rejected(self, db_session):
        with pytest.raises(ValidationError, match="website_title"):
            await activity_service.record_activity(
                db_session, "bob", {"type": "website_submit", "website_id": "w1"}, actor_display_name="Bob",
            )

    async def test_unknown_type_rejected(self, db_session):
        with pytest.raises(ValidationError):
            await activity_service.record_activity(
                db_session, "bob", {"type": "website_teleport"}, actor_display_name="Bob",
            )

    async def test_self_follow_activity_rejected(self, db_session):
        with pytest.raises(SelfFollowError):
            await activity_service.record_activity(
                db_session, "bob", {"type": "user_follow", "target_user_id": "bob"}, actor_display_name="Bob",
            )

    async def test_unknown_actor_without_display_name(self, db_session):
        with pytest.raises(NotFoundError):
            await activity_service.record_activity(db_session, "ghost", {"type": "user_register"})

    async def test_created_at_never_goes_backwards_per_actor(self, db_session):
        first = await activity_service.record_activity(
            db_session, "bob", {"type": "user_register"}, actor_display_name="Bob", now=T0,
        )
        second = await activity_service.record_activity(
            db_session, "bob", {"type": "profile_update", "fields": ["bio"]},
            actor_display_name="Bob", now=T0 - timedelta(minutes=5),
        )
        assert second.created_at == first.created_at
        assert second.id > first.id

    async def test_announcement_is_never_public(self, db_session):
        activity = await activity_service.record_activity(
            db_session, "admin", {"type": "announcement", "title": "Hi", "message": "Welcome"},
            actor_display_name="Admin", is_public=True,
        )
        assert activity.is_public is False


class TestQueries:
    """Per-actor and public reads."""

    async def test_query_by_actor_newest_first(self, db_session):
        for i in range(3):
            await activity_service.record_activity(
                db_session, "bob", {"type": "website_like", "website_id": f"w{i}"},
                actor_display_name="Bob", now=T0 + timedelta(minutes=i),
            )
        await activity_service.record_activity(
            db_session, "carol", {"type": "user_register"}, actor_display_name="Carol", now=T0,
        )
        rows = await activity_service.query_by_actor(db_session, "bob")
        assert [r.payload["website_id"] for r in rows] == ["w2", "w1", "w0"]

        recent = await activity_service.query_by_actor(db_session, "bob", since=T0 + timedelta(minutes=1))
        assert len(recent) == 2

    async def test_query_public_since_skips_private(self, db_session):
        await activity_service.record_activity(
            db_session, "bob", {"type": "user_register"}, actor_display_name="Bob", now=T0,
        )
        await activity_service.record_activity(
            db_session, "bob", {"type": "bookmark_create", "website_id": "w1", "bookmark_collection_name": "Faves"},
            actor_display_name="Bob", is_public=False, now=T0 + timedelta(seconds=1),
        )
        rows = await activity_service.query_public_since(db_session, T0 - timedelta(days=1))
        assert [r.type for r in rows] == ["user_register"]

    async def test_get_activity_not_found(self, db_session):
        with pytest.raises(NotFoundError):
            await activity_service.get_activity(db_session, 12345)


class TestDeleteActivity:
    """Moderation deletes and notification retraction."""

    async def test_owner_delete_retracts_notifications(self, db_session):
        await create_website(db_session, "w1", owner_id="bob")
        like = await activity_service.record_activity(
            db_session, "carol", {"type": "website_like", "website_id": "w1"}, actor_display_name="Carol",
        )
        ids = await notification_service.on_activity(db_session, like)
        await db_session.commit()
        assert len(ids) == 1

        retracted = await activity_service.delete_activity(db_session, like.id, requested_by="carol")
        await db_session.commit()

        assert retracted == 1
        remaining = (await db_session.execute(select(func.count()).select_from(Notification))).scalar_one()
        assert remaining == 0

    async def test_other_user_cannot_delete(self, db_session):
        activity = await activity_service.record_activity(
            db_session, "carol", {"type": "user_register"}, actor_display_name="Carol",
        )
        with pytest.raises(PermissionDeniedError):
            await activity_service.delete_activity(db_session, activity.id, requested_by="mallory")

    async def test_admin_can_delete(self, db_session):
        activity = await activity_service.record_activity(
            db_session, "carol", {"type": "user_register"}, actor_display_name="Carol",
        )
        await activity_service.delete_activity(db_session, activity.id, requested_by="root", is_admin=True)
        with pytest.raises(NotFoundError):
            await activity_service.get_activity(db_session, activity.id)


def test_activity_to_dict_serializes_id_as_string():
    activity = Activity(
        id=7, type="user_register", actor_id="bob", actor_display_name="Bob", is_public=True,
        payload={"type": "user_register"}, activity_metadata={}, created_at=T0,
    )
    data = activity_service.activity_to_dict(activity)
    assert data["id"] == "7"
    assert data["created_at"] == T0.isoformat()
