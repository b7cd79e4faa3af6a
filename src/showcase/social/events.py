"""Activity event publishing to the Redis Stream read by the fan-out worker.

Recording an activity must never fail because the broker or a downstream
consumer is unavailable, so publish errors are logged and swallowed.
"""

from __future__ import annotations

import json
import logging
import time
from typing import TYPE_CHECKING, Any

from showcase.config import get_settings

if TYPE_CHECKING:
    from showcase.db.models import Activity

logger = logging.getLogger(__name__)

ACTIVITY_RECORDED = "activity_recorded"


async def publish_activity_event(redis: Any | None, activity: "Activity") -> str | None:
    """XADD an ``activity_recorded`` event. Returns the stream entry id or None."""
    if redis is None:
        logger.warning("No Redis client; activity %s will not be fanned out", activity.id)
        return None

    settings = get_settings()
    fields = {
        "event": ACTIVITY_RECORDED,
        "ts": str(time.time()),
        "source": "api",
        "data": json.dumps({
            "activity_id": activity.id,
            "type": activity.type,
            "actor_id": activity.actor_id,
        }),
    }
    try:
        return await redis.xadd(
            settings.activity_stream_name,
            fields,
            maxlen=settings.activity_stream_maxlen,
            approximate=True,
        )
    except Exception:
        logger.warning("Failed to publish activity %s to stream", activity.id, exc_info=True)
        return None
