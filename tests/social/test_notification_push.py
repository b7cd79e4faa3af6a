"""Tests for post-commit notification delivery and realtime publishing."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock

from conftest import RecordingGateway, create_website
from showcase.db.models import Activity, Notification
from showcase.social import activity_service, notification_service
from showcase.social.notification_push import deliver_notifications
from showcase.social.realtime import (
    FEED_ACTIVITY,
    PUBLIC_ACTIVITY_CHANNEL,
    publish_feed_activity,
    publish_to_user,
)


async def _like_notification(db) -> list[int]:
    await create_website(db, "w1", owner_id="bob")
    like = await activity_service.record_activity(
        db, "carol", {"type": "website_like", "website_id": "w1"}, actor_display_name="Carol",
    )
    ids = await notification_service.on_activity(db, like)
    await db.commit()
    return ids


class TestDeliverNotifications:
    """Realtime publish plus device push with stored outcome."""

    async def test_push_sent_to_registered_devices(self, db_session, gateway):
        await notification_service.register_push_token(db_session, "bob", "bob-phone")
        ids = await _like_notification(db_session)
        redis = AsyncMock()

        outcome = await deliver_notifications(db_session, ids, redis=redis, gateway=gateway)
        await db_session.commit()

        assert outcome == {ids[0]: "sent"}
        [(token, title, _body, data)] = gateway.sent
        assert token == "bob-phone"
        assert title == "New like"
        assert data["notification_id"] == ids[0]

        channel, message = redis.publish.await_args.args
        assert channel == "ws:user:bob"
        assert json.loads(message)["event"] == "notification"
        assert json.loads(message)["data"]["id"] == str(ids[0])

        stored = await db_session.get(Notification, ids[0])
        assert stored.push_status == "sent"

    async def test_skipped_without_tokens(self, db_session, gateway):
        ids = await _like_notification(db_session)
        outcome = await deliver_notifications(db_session, ids, redis=None, gateway=gateway)
        assert outcome == {ids[0]: "skipped"}
        assert gateway.sent == []

    async def test_skipped_when_push_disabled(self, db_session, gateway):
        await notification_service.register_push_token(db_session, "bob", "bob-phone")
        await notification_service.update_preferences(db_session, "bob", {"push": False})
        ids = await _like_notification(db_session)

        outcome = await deliver_notifications(db_session, ids, redis=None, gateway=gateway)
        assert outcome == {ids[0]: "skipped"}
        assert gateway.sent == []

    async def test_failed_when_gateway_fails(self, db_session):
        await notification_service.register_push_token(db_session, "bob", "bob-phone")
        ids = await _like_notification(db_session)

        outcome = await deliver_notifications(
            db_session, ids, redis=None, gateway=RecordingGateway(status="failed"),
        )
        assert outcome == {ids[0]: "failed"}

    async def test_nothing_to_deliver(self, db_session, gateway):
        assert await deliver_notifications(db_session, [], redis=None, gateway=gateway) == {}


class TestRealtimePublishing:
    """Best-effort pub/sub publishing."""

    async def test_publish_failure_returns_false(self):
        redis = AsyncMock()
        redis.publish.side_effect = ConnectionError("down")
        assert await publish_to_user(redis, "bob", "notification", {}) is False

    async def test_no_redis(self):
        assert await publish_to_user(None, "bob", "notification", {}) is False

    async def test_public_activity_goes_to_followers_and_public_channel(self):
        redis = AsyncMock()
        activity = Activity(
            id=5, type="website_submit", actor_id="bob", actor_display_name="Bob", is_public=True,
            payload={"type": "website_submit", "website_id": "w1", "website_title": "Blog"}, activity_metadata={},
        )
        sent = await publish_feed_activity(redis, activity, ["alice", "carol"])

        assert sent == 2
        channels = [call.args[0] for call in redis.publish.await_args_list]
        assert channels == ["ws:user:alice", "ws:user:carol", PUBLIC_ACTIVITY_CHANNEL]
        assert json.loads(redis.publish.await_args_list[0].args[1])["event"] == FEED_ACTIVITY

    async def test_private_activity_is_not_published(self):
        redis = AsyncMock()
        activity = Activity(
            id=6, type="bookmark_create", actor_id="bob", actor_display_name="Bob", is_public=False,
            payload={}, activity_metadata={},
        )
        assert await publish_feed_activity(redis, activity, ["alice"]) == 0
        redis.publish.assert_not_called()
