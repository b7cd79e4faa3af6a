"""Tests for routing Redis pub/sub messages into subscriptions."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from showcase.social.realtime import PUBLIC_ACTIVITY_CHANNEL
from showcase.ws.bridge import PubSubBridge, kind_for_event
from showcase.ws.manager import SubscriptionRegistry


@pytest.fixture
def subs() -> SubscriptionRegistry:
    return SubscriptionRegistry(queue_size=10)


class TestRoute:

    def test_kind_for_event(self):
        assert kind_for_event("feed_activity") == "feed"
        assert kind_for_event("notification") == "notifications"
        assert kind_for_event("notifications_read_all") == "notifications"
        assert kind_for_event("something") is None

    def test_user_channel_reaches_user(self, subs):
        notes = subs.register("bob", "notifications")
        subs.register("carol", "notifications")
        bridge = PubSubBridge(AsyncMock(), subs)

        sent = bridge.route("pmessage", "ws:user:bob", {"event": "notification", "data": {"id": "1"}})

        assert sent == 1
        assert notes.queue.get_nowait()["payload"] == {"id": "1"}

    def test_unknown_event_is_not_routed(self, subs):
        subs.register("bob", "notifications")
        bridge = PubSubBridge(AsyncMock(), subs)
        assert bridge.route("pmessage", "ws:user:bob", {"event": "mystery", "data": {}}) == 0

    def test_public_channel_reaches_global_feeds(self, subs):
        everyone = subs.register("alice", "feed", following_only=False)
        subs.register("alice", "feed", following_only=True)
        bridge = PubSubBridge(AsyncMock(), subs)

        sent = bridge.route("message", PUBLIC_ACTIVITY_CHANNEL, {"event": "feed_activity", "data": {"id": "7"}})

        assert sent == 1
        assert everyone.queue.get_nowait()["type"] == "feed_activity"
