"""Structured logging configuration using structlog."""

import logging
import sys
from pathlib import Path
from typing import Any

import structlog
from structlog.types import FilteringBoundLogger


def configure_logging(log_file: str | None = None, verbose: bool = False) -> None:
    """Configure structlog for the application.

    Args:
        log_file: Optional path to log file. If None, logs to stderr only.
        verbose: If True, enable debug level logging.
    """
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]

    if log_file:
        # JSON lines for file logging, one event per completed step
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer())
        output = open(log_file, "a", encoding="utf-8")
    else:
        processors.append(structlog.dev.ConsoleRenderer())
        output = sys.stderr

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.DEBUG if verbose else logging.INFO
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=output),
        cache_logger_on_first_use=False,
    )


def bind_run_context(**fields: Any) -> None:
    """Bind run-wide fields (account, run timestamp) to every later log line."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(**fields)


def get_logger(name: str) -> FilteringBoundLogger:
    """Get a logger instance.

    Args:
        name: Logger name, typically __name__ of the calling module.

    Returns:
        Configured structlog logger.
    """
    return structlog.get_logger(name)
