"""Realtime event publishing over Redis pub/sub.

Per-user events go to ``ws:user:{user_id}``; the bridge pattern-subscribes
to ``ws:user:*`` and routes each message to the user's live subscriptions.
Public activities are also published on ``pubsub:public_activity`` for
global-feed subscribers. Publishing is best effort: clients that miss an
event catch up through the changes endpoints.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from showcase.db.models import Activity

logger = logging.getLogger(__name__)

USER_CHANNEL_PREFIX = "ws:user:"
PUBLIC_ACTIVITY_CHANNEL = "pubsub:public_activity"

FEED_ACTIVITY = "feed_activity"
NOTIFICATION = "notification"
NOTIFICATION_READ = "notification_read"
NOTIFICATIONS_READ_ALL = "notifications_read_all"
NOTIFICATION_DELETED = "notification_deleted"
NOTIFICATIONS_CLEARED = "notifications_cleared"


def user_channel(user_id: str) -> str:
    return f"{USER_CHANNEL_PREFIX}{user_id}"


async def publish_to_user(redis: Any | None, user_id: str, event: str, data: dict[str, Any]) -> bool:
    """Publish ``{"event", "data"}`` to the user's channel. Returns False on failure."""
    if redis is None:
        return False
    try:
        await redis.publish(user_channel(user_id), json.dumps({"event": event, "data": data}))
    except Exception:
        logger.warning("Failed to publish %s via %s", event, user_channel(user_id), exc_info=True)
        return False
    return True


async def publish_feed_activity(
    redis: Any | None,
    activity: "Activity",
    follower_ids: Iterable[str],
) -> int:
    """Push a new activity to the feeds of the actor's followers.

    Returns the number of user channels published to.
    """
    from showcase.social.activity_service import activity_to_dict

    if redis is None or not activity.is_public:
        return 0

    data = activity_to_dict(activity)
    sent = 0
    for uid in follower_ids:
        if await publish_to_user(redis, uid, FEED_ACTIVITY, data):
            sent += 1
    try:
        await redis.publish(PUBLIC_ACTIVITY_CHANNEL, json.dumps({"event": FEED_ACTIVITY, "data": data}))
    except Exception:
        logger.warning("Failed to publish activity %s to %s", activity.id, PUBLIC_ACTIVITY_CHANNEL, exc_info=True)
    return sent


async def publish_notification_event(
    redis: Any | None,
    user_id: str,
    event: str,
    data: dict[str, Any] | None = None,
) -> bool:
    """Publish a notification state change (read, deleted, cleared) to the recipient."""
    return await publish_to_user(redis, user_id, event, data or {})
