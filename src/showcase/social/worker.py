"""Redis Stream consumer that fans recorded activities out.

Reads ``activity_recorded`` events from the activity stream using
XREADGROUP with consumer group 'fanout-consumers'. For each event the
notifications are created and committed first, then delivered (realtime
plus push) and the activity is pushed to followers' live feeds. A message
is acknowledged only after all of that succeeded; anything that fails
stays in the pending list and is re-read on the next start. Re-processing
is safe because fan-out is idempotent.

Finished activities are stamped with ``fanned_out_at``. Activities whose
event never reached the stream stay unstamped and are picked up by the
``recover_unfanned_activities`` cron job.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

import redis.asyncio as aioredis
from sqlalchemy.ext.asyncio import AsyncSession

from showcase.config import get_settings
from showcase.db.models import Activity
from showcase.social import follow_service, notification_service
from showcase.social.events import ACTIVITY_RECORDED
from showcase.social.notification_push import deliver_notifications
from showcase.social.push_gateway import BasePushGateway
from showcase.social.realtime import publish_feed_activity

logger = logging.getLogger(__name__)

CONSUMER_GROUP = "fanout-consumers"


class ActivityEventConsumer:
    """Processes activity events from the Redis Stream."""

    def __init__(
        self,
        redis_client: aioredis.Redis,
        session_factory: Callable[[], AsyncSession],
        gateway: BasePushGateway,
        consumer_name: str = "fanout-worker-1",
        stream: str | None = None,
    ) -> None:
        self.redis = redis_client
        self.session_factory = session_factory
        self.gateway = gateway
        self.consumer_name = consumer_name
        self.stream = stream or get_settings().activity_stream_name
        self._running = False
        self._processed = 0
        self._errors = 0

    async def setup_group(self) -> None:
        """Create the consumer group (idempotent)."""
        try:
            await self.redis.xgroup_create(self.stream, CONSUMER_GROUP, id="0", mkstream=True)
            logger.info("Created consumer group for %s", self.stream)
        except aioredis.ResponseError as e:
            if "BUSYGROUP" not in str(e):
                raise

    async def consume(self, count: int = 50, block_ms: int = 5000, pending: bool = False) -> int:
        """Read and process a batch of events.

        With ``pending=True`` re-reads this consumer's unacknowledged
        messages instead of new ones.

        Returns:
            Number of events processed.
        """
        try:
            events = await self.redis.xreadgroup(
                groupname=CONSUMER_GROUP,
                consumername=self.consumer_name,
                streams={self.stream: "0" if pending else ">"},
                count=count,
                block=None if pending else block_ms,
            )
        except aioredis.ResponseError as e:
            logger.error("XREADGROUP error: %s", e)
            return 0

        if not events:
            return 0

        processed = 0
        for _stream_name, messages in events:
            for msg_id, data in messages:
                try:
                    await self.handle(data)
                    await self.redis.xack(self.stream, CONSUMER_GROUP, msg_id)
                    processed += 1
                    self._processed += 1
                except Exception:
                    self._errors += 1
                    logger.exception("Error handling activity event %s; left pending", msg_id)
        return processed

    async def drain_pending(self) -> int:
        """Retry messages left unacknowledged by a previous run."""
        total = 0
        while True:
            processed = await self.consume(pending=True)
            if processed == 0:
                return total
            total += processed

    async def run(self) -> None:
        """Main consumer loop; runs until ``stop`` is called."""
        await self.setup_group()
        self._running = True
        logger.info("Activity fan-out consumer started (consumer=%s)", self.consumer_name)

        recovered = await self.drain_pending()
        if recovered:
            logger.info("Recovered %d pending activity events", recovered)

        while self._running:
            try:
                await self.consume()
            except Exception:
                logger.exception("Consumer loop error")
                await asyncio.sleep(1)

    def stop(self) -> None:
        """Signal the consumer to stop."""
        self._running = False

    @staticmethod
    def _parse_data(data: dict[str, Any]) -> dict[str, Any]:
        raw = data.get("data")
        if raw is None:
            return dict(data)
        if isinstance(raw, str):
            try:
                return json.loads(raw)
            except json.JSONDecodeError:
                return {}
        return dict(raw)

    async def handle(self, data: dict[str, Any]) -> list[int]:
        """Fan one event out. Returns the ids of notifications delivered."""
        event = data.get("event", ACTIVITY_RECORDED)
        if event != ACTIVITY_RECORDED:
            logger.debug("Ignoring %s event", event)
            return []

        payload = self._parse_data(data)
        try:
            activity_id = int(payload["activity_id"])
        except (KeyError, TypeError, ValueError):
            logger.warning("Malformed activity event dropped: %s", data)
            return []

        return await self.fan_out(activity_id)

    async def fan_out(self, activity_id: int) -> list[int]:
        """Create, deliver and publish everything derived from one activity."""
        async with self.session_factory() as db:
            activity = await db.get(Activity, activity_id)
            if activity is None:
                logger.info("Activity %s no longer exists; skipping fan-out", activity_id)
                return []

            await notification_service.on_activity(db, activity)
            await db.commit()

            # Includes rows created by an earlier attempt that failed before delivery.
            pending = await notification_service.pending_delivery_ids(db, activity_id)
            await deliver_notifications(db, pending, redis=self.redis, gateway=self.gateway)
            await db.commit()

            if activity.is_public:
                followers = await follow_service.list_followers(db, activity.actor_id)
                await publish_feed_activity(self.redis, activity, sorted(followers))

            activity.fanned_out_at = datetime.now(timezone.utc)
            await db.commit()

        return pending
