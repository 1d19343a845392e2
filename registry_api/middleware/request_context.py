"""Request context middleware: a correlation id for every request.

Concurrent requests interleave their log lines on the same event loop.
Every line emitted while handling a request carries that request's id
(and, once the identity verifier has run, the caller's user id), so one
request's story can be pulled out of the stream.

The values live in ``ContextVar``s rather than thread-locals: asyncio
runs many requests on one thread, and each task gets its own copy of
the context.
"""

from __future__ import annotations

import logging
import time
import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)

request_id_var: ContextVar[str] = ContextVar("request_id", default="-")
user_id_var: ContextVar[str] = ContextVar("user_id", default="-")


class _RequestContextFilter(logging.Filter):
    """Copies the context variables onto every LogRecord.

    A filter (not a formatter) because formatters can only read fields
    that already exist on the record.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "request_id"):
            record.request_id = request_id_var.get("-")  # type: ignore[attr-defined]
        if not hasattr(record, "user_id"):
            record.user_id = user_id_var.get("-")  # type: ignore[attr-defined]
        return True


# Filters on the root logger do not run for records propagated from child
# loggers, so the filter goes on each root handler as well.
_context_filter = _RequestContextFilter()


def install_log_context() -> None:
    """Attach the context filter to the root logger and its handlers.

    Call after ``setup_logging`` so the freshly created handler is
    covered.  Safe to call more than once.
    """
    root_logger = logging.getLogger()
    targets: list[logging.Filterer] = [root_logger, *root_logger.handlers]
    for target in targets:
        if not any(isinstance(f, _RequestContextFilter) for f in target.filters):
            target.addFilter(_context_filter)


def client_ip(request: Request) -> str:
    """The connection peer address.

    X-Forwarded-For is never read here: the caller controls it.  Behind a
    proxy, uvicorn rewrites the peer from that header only for addresses
    listed in FORWARDED_ALLOW_IPS.
    """
    return request.client.host if request.client else "unknown"


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Assigns a request id, times the request, and logs one summary line.

    1. Reads X-Request-ID (if the client sent one) or generates a UUID
    2. Stores it in ``request_id_var``
    3. Times the request
    4. Logs method, path, status and duration on completion
    5. Echoes X-Request-ID on the response
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        req_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        request_id_var.set(req_id)
        user_id_var.set("-")
        request.state.start_time = time.monotonic()

        start = time.monotonic()
        response = await call_next(request)
        duration_ms = round((time.monotonic() - start) * 1000, 1)

        identity = getattr(request.state, "identity", None)
        logger.info(
            "%s %s → %d (%.1fms)",
            request.method,
            request.url.path,
            response.status_code,
            duration_ms,
            extra={
                "request_id": req_id,
                "user_id": identity.id if identity is not None else None,
                "method": request.method,
                "path": request.url.path,
                "client_ip": client_ip(request),
                "status_code": response.status_code,
                "duration_ms": duration_ms,
            },
        )

        response.headers["X-Request-ID"] = req_id
        return response
