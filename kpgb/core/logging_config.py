"""
Structured logging configuration using structlog.

JSON lines when LOG_JSON is set (for log aggregation), colored
human-readable output otherwise.

Usage:
    import structlog

    logger = structlog.get_logger(__name__)
    logger.info("post created", storage_id="Qm...", slug="hello-world")

Output in development:
    2024-01-01T12:00:00Z [info     ] post created    storage_id=Qm... slug=hello-world
"""

import logging
import sys
from typing import Any

import structlog

from kpgb.core.config import settings

IS_TEST = "pytest" in sys.modules


def configure_logging(level: str = "INFO", json_output: bool = False) -> None:
    """Configure structlog and the stdlib root logger."""
    log_level = logging.getLevelName(level.upper())
    if not isinstance(log_level, int):
        log_level = logging.INFO

    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if json_output:
        processors = shared_processors + [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = shared_processors + [
            structlog.dev.ConsoleRenderer(colors=not IS_TEST),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=not IS_TEST,
    )

    # Third-party libraries log through the stdlib
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=log_level,
    )

    # Reduce noise from chatty libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)


# Configure on import
configure_logging(settings.LOG_LEVEL, settings.LOG_JSON)
