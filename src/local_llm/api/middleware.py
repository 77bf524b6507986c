"""FastAPI middleware: request ids, timing and access logging."""

import time
import uuid
from typing import Callable

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

logger = structlog.get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"
RESPONSE_TIME_HEADER = "X-Response-Time-Ms"

# Polled endpoints, logged at debug level
QUIET_PATHS = frozenset({"/health", "/metrics", "/status", "/notifications"})


class RequestTracingMiddleware(BaseHTTPMiddleware):
    """Bind a request id to the structlog context of every HTTP request.

    The caller's X-Request-ID is reused when present. The id and the
    handling time are echoed as response headers. WebSocket traffic does
    not pass through here.
    """

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Response]
    ) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        path = request.url.path
        log = logger.debug if path in QUIET_PATHS else logger.info

        structlog.contextvars.bind_contextvars(request_id=request_id, method=request.method, path=path)
        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception as exc:
            logger.error("Request failed", exc_info=exc, duration_ms=_elapsed_ms(started))
            raise
        else:
            duration_ms = _elapsed_ms(started)
            log("Request handled", status_code=response.status_code, duration_ms=duration_ms)
            response.headers[REQUEST_ID_HEADER] = request_id
            response.headers[RESPONSE_TIME_HEADER] = str(duration_ms)
            return response
        finally:
            structlog.contextvars.clear_contextvars()


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 2)
