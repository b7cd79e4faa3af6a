"""Middleware registration."""

from fastapi import FastAPI

from showcase.config import Settings
from showcase.middleware.cors import setup_cors
from showcase.middleware.error_handler import setup_error_handlers
from showcase.middleware.logging import AccessLogMiddleware, setup_logging
from showcase.middleware.rate_limit import RateLimitMiddleware
from showcase.middleware.request_id import RequestIdMiddleware


def setup_middleware(app: FastAPI, settings: Settings) -> None:
    """Register all middleware.

    Starlette runs middleware in reverse-add order (last added = outermost).
    CORS is added last so 429 responses still carry CORS headers.
    """
    setup_logging(settings)
    setup_error_handlers(app)
    app.add_middleware(
        RateLimitMiddleware,
        requests_per_window=settings.rate_limit_requests,
        window_seconds=settings.rate_limit_window_seconds,
    )
    app.add_middleware(AccessLogMiddleware)
    app.add_middleware(RequestIdMiddleware)
    setup_cors(app, settings)
