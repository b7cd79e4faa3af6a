"""arq worker for activity fan-out and periodic maintenance.

Import path for arq CLI: arq showcase.workers.settings.WorkerSettings
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone

import redis.asyncio as aioredis
from arq import cron
from arq.connections import RedisSettings

from showcase.config import get_settings
from showcase.database import close_db, get_session_factory, init_db
from showcase.middleware.logging import setup_logging
from showcase.social import activity_service, follow_service, notification_service
from showcase.social.push_gateway import create_push_gateway
from showcase.social.worker import ActivityEventConsumer

logger = logging.getLogger(__name__)


async def startup(ctx: dict) -> None:  # type: ignore[type-arg]
    """Initialize DB, Redis and the stream consumer on worker startup."""
    settings = get_settings()
    setup_logging(settings)
    await init_db(settings.database_url)

    redis_client = aioredis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=20,
    )
    gateway = create_push_gateway()
    consumer = ActivityEventConsumer(
        redis_client=redis_client,
        session_factory=get_session_factory(),
        gateway=gateway,
        consumer_name=settings.consumer_name,
    )

    ctx["redis"] = redis_client
    ctx["gateway"] = gateway
    ctx["consumer"] = consumer
    ctx["consumer_task"] = asyncio.create_task(consumer.run())
    logger.info("Fan-out worker started (consumer=%s)", settings.consumer_name)


async def shutdown(ctx: dict) -> None:  # type: ignore[type-arg]
    """Clean up on worker shutdown."""
    consumer: ActivityEventConsumer | None = ctx.get("consumer")
    if consumer:
        consumer.stop()
    task: asyncio.Task[None] | None = ctx.get("consumer_task")
    if task:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    gateway = ctx.get("gateway")
    if gateway:
        await gateway.aclose()
    redis_client: aioredis.Redis | None = ctx.get("redis")
    if redis_client:
        await redis_client.aclose()
    await close_db()
    logger.info("Fan-out worker shut down")


async def cleanup_notifications(ctx: dict) -> int:  # type: ignore[type-arg]
    """Daily task: delete notifications past the retention window."""
    settings = get_settings()
    async with get_session_factory()() as db:
        try:
            deleted = await notification_service.cleanup_old_notifications(
                db, older_than_days=settings.notification_retention_days,
            )
            await db.commit()
        except Exception:
            await db.rollback()
            logger.exception("Notification cleanup failed")
            raise
    return deleted


async def reconcile_follow_counts(ctx: dict) -> int:  # type: ignore[type-arg]
    """Hourly task: repair follower/following counters from the edge table."""
    async with get_session_factory()() as db:
        try:
            drifts = await follow_service.reconcile_follow_stats(db)
            await db.commit()
        except Exception:
            await db.rollback()
            logger.exception("Follow stats reconciliation failed")
            raise
    if drifts:
        logger.warning("Repaired %d drifted follow stats rows", len(drifts))
    return len(drifts)


async def recover_unfanned_activities(ctx: dict) -> int:  # type: ignore[type-arg]
    """Every minute: fan out activities whose stream event was lost.

    Covers commits made while Redis was unreachable. Only activities older
    than the grace period are touched so the stream consumer gets the first try.
    """
    settings = get_settings()
    consumer: ActivityEventConsumer = ctx["consumer"]
    cutoff = datetime.now(timezone.utc) - timedelta(seconds=settings.fanout_recovery_grace_seconds)
    async with get_session_factory()() as db:
        activities = await activity_service.query_unfanned(
            db, older_than=cutoff, limit=settings.fanout_recovery_batch_size,
        )

    recovered = 0
    for activity in activities:
        try:
            await consumer.fan_out(activity.id)
            recovered += 1
        except Exception:
            logger.exception("Recovery fan-out failed for activity %s", activity.id)
    if recovered:
        logger.warning("Recovered fan-out for %d activities", recovered)
    return recovered


class WorkerSettings:
    """arq worker settings for the fan-out worker."""

    functions = [cleanup_notifications, reconcile_follow_counts, recover_unfanned_activities]
    cron_jobs = [
        cron(recover_unfanned_activities, second=0),
        cron(cleanup_notifications, hour=3, minute=30),
        cron(reconcile_follow_counts, minute=15),
    ]
    on_startup = startup
    on_shutdown = shutdown
    redis_settings = RedisSettings.from_dsn(get_settings().arq_redis_url)
    max_jobs = 4
    job_timeout = 600
    allow_abort_jobs = True
