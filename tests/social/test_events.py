"""Tests for activity stream publishing."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock

from showcase.db.models import Activity
from showcase.social.events import ACTIVITY_RECORDED, publish_activity_event


def _activity() -> Activity:
    return Activity(id=11, type="website_like", actor_id="carol", actor_display_name="Carol", is_public=True)


class TestPublishActivityEvent:

    async def test_xadd_to_activity_stream(self):
        redis = AsyncMock()
        redis.xadd.return_value = "1700000000000-0"

        entry_id = await publish_activity_event(redis, _activity())

        assert entry_id == "1700000000000-0"
        stream, fields = redis.xadd.await_args.args
        assert stream == "activity:events"
        assert fields["event"] == ACTIVITY_RECORDED
        assert json.loads(fields["data"]) == {"activity_id": 11, "type": "website_like", "actor_id": "carol"}
        assert redis.xadd.await_args.kwargs["approximate"] is True

    async def test_broker_failure_is_swallowed(self):
        redis = AsyncMock()
        redis.xadd.side_effect = ConnectionError("redis down")
        assert await publish_activity_event(redis, _activity()) is None

    async def test_without_redis(self):
        assert await publish_activity_event(None, _activity()) is None
