"""
Logging configuration using structlog.

Every module logs through ``structlog.get_logger(__name__)`` with snake_case
event names and key/value context. Per-pass context (``pass_id``) is bound
with ``structlog.contextvars`` and merged into every event of that pass.
"""

import logging
from typing import Any

import structlog

LOG_FORMATS = ("json", "console")


def configure_logging(log_level: str = "INFO", log_format: str = "json") -> None:
    """Configure structured logging.

    Args:
        log_level: Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: ``json`` for one JSON object per line, ``console`` for
            human-readable colored output
    """
    if log_format not in LOG_FORMATS:
        raise ValueError(f"Unknown log format: {log_format}")

    renderer: Any = (
        structlog.dev.ConsoleRenderer() if log_format == "console" else structlog.processors.JSONRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(logging.getLevelName(log_level.upper())),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> Any:
    """Get a logger instance.

    Example:
        >>> log = get_logger(__name__)
        >>> log.info("sync_pass_started", pass_id="3f2a9c1e")
    """
    return structlog.get_logger(name)
