"""API error handling middleware: consistent error responses.

Registers FastAPI exception handlers that convert domain exceptions into
``{"error": "...", "code": "..."}`` JSON responses.

Status code mapping:
- ``LocalHubError`` subclasses → their own ``status_code``
- ``RequestValidationError`` (bad query parameter or body) → 400
- Any other ``Exception`` → 500 Internal Server Error
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from localhub.api.models import ErrorResponse
from localhub.errors import LocalHubError

logger = logging.getLogger(__name__)


def _error_response(status_code: int, message: str, code: str | None) -> JSONResponse:
    body = ErrorResponse(error=message, code=code)
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True))


async def _handle_localhub_error(
    request: Request,
    exc: LocalHubError,
) -> JSONResponse:
    """Return the error's own status code and machine-readable code."""
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", exc.code, request.method, request.url.path, exc.message)
    else:
        logger.info("%s on %s %s: %s", exc.code, request.method, request.url.path, exc.message)
    return _error_response(exc.status_code, exc.message, exc.code)


async def _handle_validation_error(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    """Return 400 for unparsable query parameters and bodies."""
    logger.info("Validation error on %s %s: %s", request.method, request.url.path, exc.errors())
    return _error_response(400, "Invalid request", "invalid_request")


class CatchAllErrorMiddleware(BaseHTTPMiddleware):
    """ASGI middleware that catches any unhandled exception and returns a 500.

    This sits above the Starlette exception handler layer, ensuring that
    even exceptions not caught by ``add_exception_handler`` are converted
    to the standard error envelope rather than bubbling up as raw 500s.
    """

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
            return _error_response(500, "Internal server error", "internal_error")


def register_error_handlers(app: FastAPI) -> None:
    """Attach all exception handlers to the FastAPI application.

    Call this from ``create_app()`` after constructing the ``FastAPI`` instance.
    """
    app.add_exception_handler(LocalHubError, _handle_localhub_error)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _handle_validation_error)  # type: ignore[arg-type]
    app.add_middleware(CatchAllErrorMiddleware)
