"""Standalone runner for the activity fan-out consumer.

Usage: python -m showcase.workers.fanout_runner
"""

from __future__ import annotations

import asyncio
import logging
import signal

import redis.asyncio as aioredis

from showcase.config import get_settings
from showcase.database import close_db, get_session_factory, init_db
from showcase.middleware.logging import setup_logging
from showcase.social.push_gateway import create_push_gateway
from showcase.social.worker import ActivityEventConsumer

logger = logging.getLogger(__name__)


async def main() -> None:
    """Run the consumer until SIGINT/SIGTERM."""
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

    # Handle graceful shutdown
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, consumer.stop)

    logger.info("Starting activity fan-out consumer (consumer=%s)", settings.consumer_name)
    try:
        await consumer.run()
    finally:
        await gateway.aclose()
        await redis_client.aclose()
        await close_db()
        logger.info("Activity fan-out consumer stopped")


if __name__ == "__main__":
    asyncio.run(main())
