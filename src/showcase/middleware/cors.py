"""CORS for the showcase frontend and its preview deployments."""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from showcase.config import Settings
from showcase.middleware.rate_limit import RATE_LIMIT_HEADERS
from showcase.middleware.request_id import REQUEST_ID_HEADER


def setup_cors(app: FastAPI, settings: Settings) -> None:
    """Allow the configured origins to call the API with bearer tokens.

    Clients back off on 429 using the rate-limit headers, so those are exposed
    alongside the request id.
    """
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_origin_regex=settings.cors_origin_regex,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", REQUEST_ID_HEADER],
        expose_headers=[REQUEST_ID_HEADER, *RATE_LIMIT_HEADERS],
        max_age=settings.cors_max_age_seconds,
    )
