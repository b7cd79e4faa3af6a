"""Tests for backlog replay on (re)subscription and SSE framing."""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

import pytest

from conftest import create_user, create_website
from showcase.social import activity_service, feed_service, follow_service, notification_service
from showcase.social.cursors import encode_cursor
from showcase.ws.manager import RESYNC, SubscriptionRegistry
from showcase.ws.router import format_sse, replay_since

T0 = datetime(2024, 1, 17, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def subs() -> SubscriptionRegistry:
    return SubscriptionRegistry(queue_size=10)


class TestReplaySince:
    """Catch-up events sent right after subscribing."""

    async def test_feed_backlog_after_cursor(self, db_session, subs):
        await create_user(db_session, "bob")
        await follow_service.follow(db_session, "alice", "bob")
        seen = await activity_service.record_activity(
            db_session, "bob", {"type": "user_register"}, actor_display_name="Bob", now=T0,
        )
        missed = await activity_service.record_activity(
            db_session, "bob", {"type": "website_like", "website_id": "w1"}, actor_display_name="Bob",
            now=T0 + timedelta(minutes=1),
        )
        await db_session.commit()

        sub = subs.register("alice", "feed")
        events, cursor = await replay_since(db_session, sub, encode_cursor(seen.created_at, seen.id))

        assert [e["payload"]["id"] for e in events] == [str(missed.id)]
        assert events[0]["type"] == "feed_activity"
        assert cursor == encode_cursor(missed.created_at, missed.id)

    async def test_truncated_backlog_ends_with_resync(self, db_session, subs, monkeypatch):
        monkeypatch.setenv("SHOWCASE_FEED_MAX_LIMIT", "2")
        from showcase.config import get_settings

        get_settings.cache_clear()
        await create_user(db_session, "bob")
        await follow_service.follow(db_session, "alice", "bob")
        for i in range(4):
            await activity_service.record_activity(
                db_session, "bob", {"type": "user_register"}, actor_display_name="Bob",
                now=T0 + timedelta(minutes=i),
            )
        await db_session.commit()

        sub = subs.register("alice", "feed")
        start = encode_cursor(T0 - timedelta(days=1), 0)
        events, _ = await replay_since(db_session, sub, start)

        assert [e["type"] for e in events] == ["feed_activity", "feed_activity", RESYNC]
        assert events[-1]["payload"]["reason"] == "backlog_truncated"

    async def test_notification_backlog(self, db_session, subs):
        await create_website(db_session, "w1", owner_id="bob")
        like = await activity_service.record_activity(
            db_session, "carol", {"type": "website_like", "website_id": "w1"}, actor_display_name="Carol",
        )
        [notification_id] = await notification_service.on_activity(db_session, like)
        await db_session.commit()

        sub = subs.register("bob", "notifications")
        events, _ = await replay_since(db_session, sub, encode_cursor(T0 - timedelta(days=3650), 0))

        assert [e["payload"]["id"] for e in events] == [str(notification_id)]
        assert events[0]["type"] == "notification"

    async def test_empty_backlog_keeps_cursor(self, db_session, subs):
        await create_user(db_session, "bob")
        await follow_service.follow(db_session, "alice", "bob")
        await db_session.commit()
        sub = subs.register("alice", "feed")
        start = encode_cursor(T0, 1)
        events, cursor = await replay_since(db_session, sub, start)
        assert events == []
        assert cursor == start


def test_format_sse():
    frame = format_sse(data={"id": "1", "type": "feed_activity"}, event="feed_activity", event_id="1")
    lines = frame.split("\n")
    assert lines[0] == "id: 1"
    assert lines[1] == "event: feed_activity"
    assert json.loads(lines[2][len("data: "):]) == {"id": "1", "type": "feed_activity"}
    assert frame.endswith("\n\n")


def test_feed_head_cursor_empty_page():
    assert feed_service.feed_head_cursor(feed_service.FeedPage()) is None
