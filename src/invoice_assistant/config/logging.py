"""Structured logging configuration for the invoice assistant."""

import logging
import sys
from collections.abc import MutableMapping
from typing import Any, Literal

import structlog

from invoice_assistant.config.settings import get_settings

REDACTED = "[redacted]"

SENSITIVE_KEYS = frozenset({
    "access_token",
    "refresh_token",
    "authorization",
    "api_key",
    "tokens",
})

# Request-level chatter from these libraries duplicates our own events
NOISY_LOGGERS = ("httpx", "httpcore", "anthropic", "openai", "google_genai")


def redact_secrets(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """Replace token-bearing values before they reach a renderer."""
    for key in list(event_dict):
        if key.lower() in SENSITIVE_KEYS and event_dict[key] is not None:
            event_dict[key] = REDACTED
    return event_dict


def configure_logging(
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] | None = None,
    format: Literal["json", "console"] | None = None,
) -> None:
    """Configure structlog on top of stdlib logging.

    Args:
        level: Log level. Defaults to LOG_LEVEL.
        format: ``json`` or ``console``. Defaults to LOG_FORMAT, except that
            production always logs JSON.
    """
    settings = get_settings()
    log_level = level or settings.log_level
    log_format = format or ("json" if settings.is_production() else settings.log_format)

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level),
    )
    if log_level != "DEBUG":
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    if log_format == "json":
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(
            colors=sys.stdout.isatty(),
            exception_formatter=structlog.dev.plain_traceback,
        )

    # turn_id is bound per chat turn and merged in from contextvars
    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        redact_secrets,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        renderer,
    ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
