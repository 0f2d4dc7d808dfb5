"""Structured logging configuration using structlog.

Every module logs through structlog with snake_case event names and its
context passed as keyword arguments. Output goes through the stdlib root
logger so third-party libraries share the same handler:

- production: one JSON object per line
- development: colored console output

API keys travel in query strings (AllDebrid GET endpoints, Newznab), so
the censoring processor also scrubs them out of URLs that end up in events.
"""

import logging
import re
import sys
from typing import Any

import structlog
from structlog.types import EventDict, Processor

from src.config import settings

# Keys whose values are never logged
SENSITIVE_KEYS = frozenset(
    {
        "apikey",
        "api_key",
        "password",
        "secret",
        "token",
        "authorization",
        "credentials",
    }
)

QUERY_SECRET_PATTERN = re.compile(r"(?i)\b(apikey|api_key|password|token)=[^&\s\"']+")

# Chatty libraries kept at WARNING; httpx logs full request URLs at INFO
QUIET_LOGGERS = ("httpx", "httpcore", "apscheduler", "aiosqlite")


def add_log_level(_logger: logging.Logger, method_name: str, event_dict: EventDict) -> EventDict:
    """Store the level under "level", normalizing structlog's "warn"."""
    event_dict["level"] = "warning" if method_name == "warn" else method_name
    return event_dict


def _censor(key: str, value: Any) -> Any:
    if any(sensitive in key.lower() for sensitive in SENSITIVE_KEYS):
        return "***"
    if isinstance(value, str):
        return QUERY_SECRET_PATTERN.sub(r"\1=***", value)
    if isinstance(value, dict):
        return {k: _censor(str(k), v) for k, v in value.items()}
    if isinstance(value, list | tuple):
        return type(value)(_censor(key, item) for item in value)
    return value


def censor_sensitive_data(
    _logger: logging.Logger, _method_name: str, event_dict: EventDict
) -> EventDict:
    """Mask secrets by key name and scrub them from URL query strings."""
    return {key: _censor(key, value) for key, value in event_dict.items()}


def _renderer(json_output: bool) -> Processor:
    if json_output:
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(
        colors=sys.stdout.isatty(),
        exception_formatter=structlog.dev.plain_traceback,
    )


def configure_logging(level: str | None = None, json_output: bool | None = None) -> None:
    """Configure structlog and the stdlib root logger.

    Args:
        level: Log level name; defaults to settings.log_level.
        json_output: Render JSON lines; defaults to True in production.
    """
    if level is None:
        level = settings.log_level
    if json_output is None:
        json_output = settings.is_production

    pre_chain: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        censor_sensitive_data,
    ]

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=pre_chain,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                _renderer(json_output),
            ],
        )
    )

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level.upper())

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a logger, usually with `get_logger(__name__)`.

    Example:
        >>> logger = get_logger(__name__)
        >>> logger.info("item_acquired", item_id=123, source="apibay")
    """
    return structlog.get_logger(name)


configure_logging()
