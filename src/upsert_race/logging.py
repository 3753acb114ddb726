"""Structured logging for upsert-race.

This module provides structured logging using structlog, enabling:
- JSON-formatted logs (machine-readable)
- Pretty console logs for development (human-readable)
- Automatic context binding (event_id, version)
- Integration with standard library logging

Usage:
    from upsert_race.logging import configure_logging, get_logger

    configure_logging(json_format=True)

    logger = get_logger("my.module")
    logger.info("race_started", event_id="...", writers=100)

Context binding:
    logger = writer_logger(event_id, version=7)
    logger.warning("upsert_failed", error="...")  # event_id and version included
"""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog
from structlog.types import Processor

_configured = False


def configure_logging(
    json_format: bool = False,
    level: int = logging.INFO,
    logger_factory: Any = None,
) -> None:
    """Configure structured logging.

    Call this once at application startup before any logging occurs.

    Args:
        json_format: If True, output JSON logs.
                    If False, output pretty console logs (for development).
        level: Minimum log level (default: INFO)
        logger_factory: Custom logger factory (for testing)
    """
    global _configured

    # structlog renders, stdlib logging writes (to stderr, keeping stdout for
    # command output)
    logging.basicConfig(
        level=level,
        format="%(message)s",
        stream=sys.stderr,
    )
    # basicConfig is a no-op once the root logger has handlers
    logging.getLogger().setLevel(level)

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if json_format:
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(
            structlog.dev.ConsoleRenderer(
                colors=False,
                exception_formatter=structlog.dev.plain_traceback,
            )
        )

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=logger_factory or structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )

    _configured = True


def get_logger(name: str) -> Any:
    """Get a structured logger for the given name.

    Args:
        name: Logger name (typically __name__ or module path)

    Returns:
        A bound logger that supports structured logging.
    """
    if not _configured:
        # Auto-configure with defaults if not explicitly configured
        configure_logging()

    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    """Bind context variables that will be included in all subsequent logs.

    Example:
        bind_context(event_id="...", isolation="SERIALIZABLE")
        logger.info("race_started")  # Includes event_id and isolation
    """
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    """Clear all bound context variables."""
    structlog.contextvars.clear_contextvars()


def writer_logger(event_id: Any, version: int) -> Any:
    """Get a logger pre-bound with a single writer's context.

    Args:
        event_id: The key the writer targets
        version: The version the writer submits

    Returns:
        Logger with event_id and version bound
    """
    return get_logger("upsert_race.writer").bind(event_id=str(event_id), version=version)
