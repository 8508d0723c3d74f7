"""
Request logging middleware with correlation ID support.

Each request gets a fresh correlation ID bound into the structlog context,
so every event logged while serving it (service, audit, notification)
carries the same ID. The ID is echoed back as ``X-Correlation-ID``.

Request logs never include client IPs, headers, query strings or raw
invite tokens; the token segment of public invite paths is replaced
with ``{token}``.
"""

import re
import secrets
import time

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

CORRELATION_HEADER = "X-Correlation-ID"

_INVITE_TOKEN_PATH = re.compile(r"^(/api/v1/invites/public/)[^/]+")


def generate_correlation_id() -> str:
    """Generate an 8-character correlation ID."""
    return secrets.token_hex(4)


def redact_path(path: str) -> str:
    """Replace the invite token segment of a public invite path with ``{token}``."""
    return _INVITE_TOKEN_PATH.sub(r"\1{token}", path)


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 2)


class LoggingMiddleware(BaseHTTPMiddleware):
    """Bind a correlation ID per request and log its start, outcome and duration."""

    async def dispatch(self, request: Request, call_next) -> Response:
        correlation_id = generate_correlation_id()
        started = time.perf_counter()

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            correlation_id=correlation_id,
            method=request.method,
            path=redact_path(request.url.path),
        )
        logger = structlog.get_logger()
        logger.info("request_started")

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                "request_failed",
                error=str(e),
                duration_ms=_elapsed_ms(started),
                exc_info=True,
            )
            raise

        log = logger.warning if response.status_code >= 500 else logger.info
        log(
            "request_completed",
            status_code=response.status_code,
            duration_ms=_elapsed_ms(started),
        )
        response.headers[CORRELATION_HEADER] = correlation_id
        return response
