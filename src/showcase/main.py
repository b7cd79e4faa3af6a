"""FastAPI application factory."""

import asyncio
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from showcase.config import get_settings
from showcase.database import close_db, init_db
from showcase.health.router import router as health_router
from showcase.middleware import setup_middleware
from showcase.redis_client import close_redis, get_redis, init_redis
from showcase.social.notification_router import router as notification_router
from showcase.social.router import router as social_router
from showcase.ws.bridge import PubSubBridge
from showcase.ws.router import router as ws_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    await init_db(settings.database_url)
    await init_redis(settings.redis_url)

    # Start the Redis pub/sub -> realtime subscriptions bridge
    bridge = PubSubBridge(get_redis())
    bridge_task = asyncio.create_task(bridge.start())
    logger.info("Showcase social API started (environment=%s)", settings.environment)

    yield

    await bridge.stop()
    bridge_task.cancel()
    try:
        await bridge_task
    except asyncio.CancelledError:
        pass

    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Website Showcase Social API",
        description="Activity feed, follow graph, stats, notifications and realtime sync",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(social_router)
    app.include_router(notification_router)
    app.include_router(ws_router)

    return app


app = create_app()
