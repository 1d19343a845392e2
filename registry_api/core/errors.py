"""Error taxonomy and the JSON error envelope.

Every non-2xx response has the same shape::

    {"error": ..., "message": ..., "requestId": ..., "timestamp": ..., "details"?: ...}

Route code raises an ``ApiError`` subclass; the handlers registered by
``install_error_handlers`` turn it into the envelope.  Anything that is
not an ``ApiError`` is an unexpected failure: it is logged with the
request id and rendered as a 500, with the stack only outside prod.
"""

from __future__ import annotations

import logging
import traceback
from datetime import UTC, datetime
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from registry_api.middleware.request_context import request_id_var

logger = logging.getLogger(__name__)

AVAILABLE_ENDPOINTS = (
    "GET /health",
    "GET /wallet",
    "POST /wallet",
    "DELETE /wallet",
    "POST /mint",
)


class ApiError(Exception):
    """Base class for errors that map to a client-visible response.

    ``extra`` holds additional top-level envelope keys (``retryAfter``,
    ``processing_time``); ``details`` is the optional ``details`` key.
    """

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    error: str = "Internal server error"

    def __init__(
        self,
        message: str,
        *,
        error: str | None = None,
        details: Any = None,
        headers: dict[str, str] | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if error is not None:
            self.error = error
        self.details = details
        self.headers = headers or {}
        self.extra = dict(extra or {})


class Unauthorized(ApiError):
    status_code = status.HTTP_401_UNAUTHORIZED
    error = "Authentication required"


class TokenExpired(ApiError):
    status_code = status.HTTP_401_UNAUTHORIZED
    error = "Token expired"


class Forbidden(ApiError):
    status_code = status.HTTP_403_FORBIDDEN
    error = "Forbidden"


class ValidationFailed(ApiError):
    status_code = status.HTTP_400_BAD_REQUEST
    error = "Validation failed"

    def __init__(self, field_errors: dict[str, list[str]]) -> None:
        super().__init__("The request contains invalid data", details=field_errors)
        self.field_errors = field_errors


class RateLimited(ApiError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    error = "Too many requests"

    def __init__(self, message: str, *, retry_after: int, limit: int) -> None:
        super().__init__(
            message,
            headers={
                "Retry-After": str(retry_after),
                "X-RateLimit-Limit": str(limit),
                "X-RateLimit-Remaining": "0",
            },
            extra={"retryAfter": retry_after},
        )
        self.retry_after = retry_after


class NotFound(ApiError):
    status_code = status.HTTP_404_NOT_FOUND
    error = "Not found"


class InvalidState(ApiError):
    status_code = status.HTTP_400_BAD_REQUEST
    error = "Invalid state"


class Conflict(ApiError):
    status_code = status.HTTP_409_CONFLICT
    error = "Conflict"


class InsufficientFunds(ApiError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    error = "Insufficient funds"


class MintFailed(ApiError):
    """A ledger or store collaborator raised inside the mint pipeline."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    error = "Mint operation failed"


class InternalError(ApiError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    error = "Internal server error"


def _envelope(error: str, message: str, details: Any = None) -> dict[str, Any]:
    body: dict[str, Any] = {
        "error": error,
        "message": message,
        "requestId": request_id_var.get(),
        "timestamp": datetime.now(UTC).isoformat(),
    }
    if details is not None:
        body["details"] = details
    return body


def _debug_details(exc: BaseException) -> dict[str, Any]:
    return {
        "name": type(exc).__name__,
        "code": getattr(exc, "code", None),
        "stack": traceback.format_exception(exc)[-10:],
    }


def install_error_handlers(app: FastAPI, *, expose_internals: bool) -> None:
    """Register envelope-producing exception handlers on ``app``.

    ``expose_internals`` adds name/code/stack details to 500 responses;
    it is off in production.
    """

    async def handle_api_error(request: Request, exc: ApiError) -> JSONResponse:
        details = exc.details
        if (
            details is None
            and expose_internals
            and exc.status_code >= 500
            and exc.__cause__ is not None
        ):
            details = _debug_details(exc.__cause__)
        body = _envelope(exc.error, exc.message, details)
        body.update(exc.extra)
        return JSONResponse(body, status_code=exc.status_code, headers=exc.headers)

    async def handle_http_exception(
        request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        if exc.status_code == status.HTTP_404_NOT_FOUND:
            logger.warning(
                "Route not found %s %s",
                request.method,
                request.url.path,
                extra={"event": "route.not_found"},
            )
            body = _envelope(
                "Not found", f"Route {request.method} {request.url.path} not found"
            )
            body["availableEndpoints"] = list(AVAILABLE_ENDPOINTS)
        else:
            body = _envelope(str(exc.detail), str(exc.detail))
        return JSONResponse(
            body, status_code=exc.status_code, headers=getattr(exc, "headers", None)
        )

    async def handle_request_validation(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        field_errors: dict[str, list[str]] = {}
        for err in exc.errors():
            loc = [str(part) for part in err["loc"] if part != "body"]
            field_errors.setdefault(".".join(loc) or "body", []).append(err["msg"])
        return await handle_api_error(request, ValidationFailed(field_errors))

    async def handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
        logger.error(
            "Unhandled error on %s %s",
            request.method,
            request.url.path,
            exc_info=exc,
            extra={"event": "request.unhandled_error"},
        )
        message = str(exc) if expose_internals else "Something went wrong"
        details = _debug_details(exc) if expose_internals else None
        return JSONResponse(
            _envelope("Internal server error", message, details),
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    app.add_exception_handler(ApiError, handle_api_error)  # type: ignore[arg-type]
    app.add_exception_handler(StarletteHTTPException, handle_http_exception)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, handle_request_validation)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, handle_unexpected)
