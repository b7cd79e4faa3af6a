"""Bridges Redis pub/sub to realtime subscriptions.

Per-user events are published by the fan-out worker and the notification
routes on ``ws:user:{user_id}``; public activities on
``pubsub:public_activity``. Each API process runs one bridge that routes
them into its local subscription registry.
"""

import asyncio
import json

import redis.asyncio as aioredis
import structlog

from showcase.social.realtime import FEED_ACTIVITY, PUBLIC_ACTIVITY_CHANNEL, USER_CHANNEL_PREFIX
from showcase.ws.manager import SubscriptionRegistry, registry

logger = structlog.get_logger()


def kind_for_event(event_type: str) -> str | None:
    """Subscription kind that receives ``event_type``."""
    if event_type == FEED_ACTIVITY:
        return "feed"
    if event_type.startswith("notification"):
        return "notifications"
    return None


class PubSubBridge:
    """Subscribes to Redis pub/sub and routes messages to subscriptions."""

    def __init__(self, redis_client: aioredis.Redis, subscriptions: SubscriptionRegistry | None = None) -> None:
        self.redis = redis_client
        self.subscriptions = subscriptions or registry
        self._running = False

    def route(self, msg_type: str, redis_channel: str, payload: dict) -> int:
        """Deliver one decoded pub/sub message. Returns the number of subscriptions reached."""
        event_type = payload.get("event", "")
        event_data = payload.get("data", {})

        if msg_type == "pmessage" and redis_channel.startswith(USER_CHANNEL_PREFIX):
            user_id = redis_channel[len(USER_CHANNEL_PREFIX):]
            kind = kind_for_event(event_type)
            if not user_id or kind is None:
                logger.debug("pubsub_unrouted", channel=redis_channel, event=event_type)
                return 0
            return self.subscriptions.deliver_to_user(user_id, kind, event_type, event_data)

        if redis_channel == PUBLIC_ACTIVITY_CHANNEL:
            return self.subscriptions.broadcast_public(event_type or FEED_ACTIVITY, event_data)
        return 0

    async def start(self) -> None:
        """Start listening to Redis pub/sub channels."""
        self._running = True
        pubsub = self.redis.pubsub()
        await pubsub.subscribe(PUBLIC_ACTIVITY_CHANNEL)
        await pubsub.psubscribe(f"{USER_CHANNEL_PREFIX}*")

        logger.info(
            "pubsub_bridge_started",
            channels=[PUBLIC_ACTIVITY_CHANNEL],
            patterns=[f"{USER_CHANNEL_PREFIX}*"],
        )

        try:
            while self._running:
                message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
                if message is None:
                    continue

                redis_channel = message.get("channel", "")
                if isinstance(redis_channel, bytes):
                    redis_channel = redis_channel.decode()
                try:
                    data = message.get("data", b"")
                    if isinstance(data, bytes):
                        data = data.decode()
                    payload = json.loads(data)
                except (json.JSONDecodeError, UnicodeDecodeError):
                    logger.warning("pubsub_invalid_message", channel=redis_channel)
                    continue
                if not isinstance(payload, dict):
                    continue

                sent = self.route(message.get("type", ""), redis_channel, payload)
                if sent > 0:
                    logger.debug("pubsub_routed", channel=redis_channel, recipients=sent)

        except asyncio.CancelledError:
            pass
        finally:
            await pubsub.unsubscribe()
            await pubsub.punsubscribe()
            await pubsub.aclose()
            logger.info("pubsub_bridge_stopped")

    async def stop(self) -> None:
        """Signal the bridge to stop."""
        self._running = False
