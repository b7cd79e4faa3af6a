"""Global error handlers: every error is ``{"detail", "code", "retryable"}`` JSON."""

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from showcase.errors import SocialError

logger = structlog.get_logger()

_HTTP_CODES = {
    400: "bad_request",
    401: "unauthenticated",
    403: "forbidden",
    404: "not_found",
    405: "method_not_allowed",
    429: "rate_limited",
}


def error_body(detail: object, code: str, retryable: bool = False, **extra: object) -> dict[str, object]:
    return {"detail": detail, "code": code, "retryable": retryable, **extra}


def setup_error_handlers(app: FastAPI) -> None:
    """Register global exception handlers."""

    @app.exception_handler(SocialError)
    async def social_error_handler(request: Request, exc: SocialError) -> JSONResponse:
        """Render domain errors with their status and code."""
        if exc.retryable:
            logger.warning("service_unavailable", path=request.url.path, code=exc.code, detail=exc.detail)
        headers = {"Retry-After": "1"} if exc.retryable else None
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(exc.detail, exc.code, exc.retryable),
            headers=headers,
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(exc.detail, _HTTP_CODES.get(exc.status_code, "http_error")),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=422,
            content=error_body("Validation error", "validation_error", errors=jsonable_errors(exc)),
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Catch-all for unhandled exceptions; always JSON."""
        logger.error(
            "unhandled_exception",
            path=request.url.path,
            method=request.method,
            error=str(exc),
            exc_info=exc,
        )
        return JSONResponse(status_code=500, content=error_body("Internal server error", "internal_error"))


def jsonable_errors(exc: RequestValidationError) -> list[dict[str, object]]:
    """Pydantic error dicts without the non-serializable ``ctx``/``input`` values."""
    return [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg", ""), "type": err.get("type", "")}
        for err in exc.errors()
    ]
