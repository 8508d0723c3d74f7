"""
Structured logging configuration using structlog.

JSON lines in production, coloured console output in development. Every
event passes through ``redact_secrets`` so raw invite tokens and API keys
never reach the log stream, whichever module emitted them.
"""

import logging
import sys

import structlog

from cdn_console.config import settings

REDACTED = "[redacted]"

SENSITIVE_KEYS = frozenset(
    {
        "token",
        "invite_token",
        "raw_token",
        "api_key",
        "authorization",
        "secret_key",
        "password",
    }
)


def redact_secrets(_logger, _method_name: str, event_dict: dict) -> dict:
    """structlog processor masking values bound under a sensitive key."""
    for key in event_dict.keys() & SENSITIVE_KEYS:
        if event_dict[key] is not None:
            event_dict[key] = REDACTED
    return event_dict


def _build_processors(renderer) -> list:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        redact_secrets,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        renderer,
    ]


def setup_logging() -> None:
    """Configure structlog and route stdlib loggers to stdout. Call once at startup."""
    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    if settings.log_format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())

    structlog.configure(
        processors=_build_processors(renderer),
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)

    # Quiet chatty third-party loggers; request logging already covers access
    for noisy, noisy_level in (
        ("uvicorn.access", logging.WARNING),
        ("botocore", logging.WARNING),
        ("aiobotocore", logging.WARNING),
        ("httpx", logging.WARNING),
        ("apscheduler", logging.INFO),
    ):
        logging.getLogger(noisy).setLevel(noisy_level)


def get_logger(name: str | None = None):
    """Return a structlog logger, bound to ``logger_name`` when a name is given."""
    logger = structlog.get_logger()
    return logger.bind(logger_name=name) if name else logger
