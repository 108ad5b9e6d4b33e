"""Per-request structured logging."""

import time
from typing import Callable

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = structlog.get_logger()

QUIET_PATHS = frozenset(["/health"])


class LoggingMiddleware(BaseHTTPMiddleware):
    """Bind request context for every log line and record the outcome."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        started = time.perf_counter()

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=getattr(request.state, "request_id", "unknown"),
            method=request.method,
            path=request.url.path,
        )
        quiet = request.url.path in QUIET_PATHS
        if not quiet:
            logger.info("request_started")

        try:
            response = await call_next(request)
        except Exception as exc:
            logger.exception(
                "request_failed",
                error=str(exc),
                duration_ms=_elapsed_ms(started),
            )
            raise

        duration_ms = _elapsed_ms(started)
        if response.status_code >= 500:
            logger.error("request_completed", status_code=response.status_code, duration_ms=duration_ms)
        elif not quiet:
            logger.info("request_completed", status_code=response.status_code, duration_ms=duration_ms)

        response.headers["X-Process-Time"] = str(duration_ms)
        return response


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 2)
