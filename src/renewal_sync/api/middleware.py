"""API error handling: consistent error responses.

Registers FastAPI exception handlers that convert domain exceptions into
``{"error": {"code": "...", "message": "..."}}`` JSON responses.

Status code mapping:
- ``FeedNotFoundError`` → 404 Not Found
- ``ValueError`` → 400 Bad Request
- ``ConfigError`` → 500 Internal Server Error
- Any other ``Exception`` → 500 Internal Server Error
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from renewal_sync.api.models import ErrorDetail, ErrorResponse
from renewal_sync.config import ConfigError
from renewal_sync.records import FeedNotFoundError

logger = logging.getLogger(__name__)


async def _handle_feed_not_found(
    request: Request,
    exc: FeedNotFoundError,
) -> JSONResponse:
    """Return 404 when the renewal feed file does not exist."""
    logger.info("Feed not found: %s", exc.path)
    body = ErrorResponse(
        error=ErrorDetail(
            code="FEED_NOT_FOUND",
            message=str(exc),
            details={"path": str(exc.path)},
        )
    )
    return JSONResponse(status_code=404, content=body.model_dump())


async def _handle_value_error(
    request: Request,
    exc: ValueError,
) -> JSONResponse:
    """Return 400 for validation / value errors."""
    logger.info("Validation error: %s", exc)
    body = ErrorResponse(
        error=ErrorDetail(
            code="VALIDATION_ERROR",
            message=str(exc),
        )
    )
    return JSONResponse(status_code=400, content=body.model_dump())


async def _handle_config_error(
    request: Request,
    exc: ConfigError,
) -> JSONResponse:
    logger.error("Configuration error: %s", exc)
    body = ErrorResponse(
        error=ErrorDetail(
            code="CONFIG_ERROR",
            message=str(exc),
        )
    )
    return JSONResponse(status_code=500, content=body.model_dump())


class CatchAllErrorMiddleware(BaseHTTPMiddleware):
    """Catch any unhandled exception and return the standard 500 envelope."""

    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except Exception:
            logger.error(
                "Unhandled exception on %s %s",
                request.method,
                request.url.path,
                exc_info=True,
            )
            body = ErrorResponse(
                error=ErrorDetail(
                    code="INTERNAL_ERROR",
                    message="Internal server error",
                )
            )
            return JSONResponse(status_code=500, content=body.model_dump())


def register_error_handlers(app: FastAPI) -> None:
    """Attach all exception handlers to the FastAPI application."""
    app.add_exception_handler(FeedNotFoundError, _handle_feed_not_found)  # type: ignore[arg-type]
    app.add_exception_handler(ValueError, _handle_value_error)  # type: ignore[arg-type]
    app.add_exception_handler(ConfigError, _handle_config_error)  # type: ignore[arg-type]
    app.add_middleware(CatchAllErrorMiddleware)
