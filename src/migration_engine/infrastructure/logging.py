"""Structured logging for the migration engine.

Events are named in snake_case (``step_applied``, ``write_lock_busy``) and
carry their context as key/value pairs: ``step_id``, ``kind``, ``table``,
``source_version`` and ``target_version`` wherever they apply.
"""

from __future__ import annotations

import logging
import sys
from enum import Enum
from pathlib import Path
from typing import Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger


def _plain_values(_: WrappedLogger, __: str, event_dict: EventDict) -> EventDict:
    """Render enums by value and paths as strings, so JSON output stays flat."""
    for key, value in event_dict.items():
        if isinstance(value, Enum):
            event_dict[key] = value.value
        elif isinstance(value, Path):
            event_dict[key] = str(value)
    return event_dict


def setup_logging(
    level: str = "INFO",
    log_format: str = "json",
    service_name: str = "migration_engine",
) -> None:
    """
    Configure structlog for the process.

    Args:
        level: Minimum level emitted (DEBUG logs every busy retry and
            skipped step)
        log_format: 'json' for machine-readable lines, 'console' for humans
        service_name: Bound to every event under ``service``
    """
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        raise ValueError(f"Unknown log level {level!r}")

    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=numeric_level)

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _plain_values,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )
    structlog.contextvars.bind_contextvars(service=service_name)


def get_logger(name: str | None = None, **initial_context: Any) -> structlog.BoundLogger:
    """Return a logger bound to ``initial_context``."""
    logger = structlog.get_logger(name)
    if initial_context:
        logger = logger.bind(**initial_context)
    return logger
