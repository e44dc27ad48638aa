"""
Structured logging configuration using structlog.

The API layer logs through structlog with key/value fields; the alert
core logs through ``logging.getLogger(__name__)``. Both end up in the same
root handler, rendered as JSON in production and as colored console lines
elsewhere, with bound context (e.g. ``request_id``) merged in.
"""

import logging
import sys

import structlog
from structlog.types import Processor

from smartagri.config.settings import get_settings

# Libraries whose INFO output drowns alert logs
_QUIET_LOGGERS = ("httpx", "httpcore", "asyncio", "asyncpg", "uvicorn.access")

# Calling setup_logging() again replaces the handler instead of stacking one
_HANDLER_NAME = "smartagri"


def _shared_processors() -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.ExtraAdder(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]


def setup_logging(log_level: str | None = None, json_logs: bool | None = None) -> None:
    """
    Route structlog and stdlib logging through one structlog renderer.

    Args:
        log_level: Overrides ``Settings.log_level`` (e.g. "DEBUG")
        json_logs: Overrides the production-means-JSON default

    Usage:
        setup_logging()
        logger = get_logger(__name__)
        logger.info("Alert created", alert_id=42, severity="HIGH")
    """
    settings = get_settings()
    level = (log_level or settings.log_level).upper()
    if json_logs is None:
        json_logs = settings.is_production

    renderer: Processor
    if json_logs:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())

    shared = _shared_processors()

    structlog.configure(
        processors=shared + [
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.format_exc_info if json_logs else _passthrough,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    handler.set_name(_HANDLER_NAME)

    root = logging.getLogger()
    for existing in list(root.handlers):
        if existing.get_name() == _HANDLER_NAME:
            root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def _passthrough(logger, method_name, event_dict):
    # ConsoleRenderer formats exc_info itself
    return event_dict


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger.

    Args:
        name: Logger name (defaults to the caller's module)

    Returns:
        Bound logger instance
    """
    return structlog.get_logger(name)


def bind_context(**kwargs) -> None:
    """Bind key/value pairs to every later log line in this context."""
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    """Drop everything bound with ``bind_context``."""
    structlog.contextvars.clear_contextvars()
