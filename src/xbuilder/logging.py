"""Structured logging for xbuilder.

This module provides structured logging using structlog, enabling:
- JSON-formatted logs for CI systems (machine-readable)
- Pretty console logs for interactive runs (human-readable)
- Automatic context binding (run_id, task_id)

Usage:
    from xbuilder.logging import configure_logging, get_logger

    configure_logging(json_format=True)

    logger = get_logger("xbuilder.pipeline")
    logger.info("task_started", run_id="01J...", task_id="task-0-1")

Context binding:
    logger = run_logger(run_id)
    logger.info("stage_started", stage="build")  # run_id automatically included
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
    """Configure structured logging for xbuilder.

    Call this once at startup before any logging occurs. Log records go to
    stderr so that task output on stdout stays clean.

    Args:
        json_format: If True, output JSON logs.
                    If False, output pretty console logs.
        level: Minimum log level (default: INFO)
        logger_factory: Custom logger factory (for testing)
    """
    global _configured

    logging.basicConfig(
        level=level,
        format="%(message)s",
        stream=sys.stderr,
    )

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if json_format:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(
            structlog.dev.ConsoleRenderer(
                colors=sys.stderr.isatty(),
                exception_formatter=structlog.dev.plain_traceback,
            )
        )

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=logger_factory or structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )

    _configured = True


def get_logger(name: str) -> Any:
    """Get a structured logger for the given name.

    Auto-configures with defaults on first use.
    """
    if not _configured:
        configure_logging()
    return structlog.get_logger(name)


def run_logger(run_id: str) -> Any:
    """Get a logger pre-bound with run context."""
    return get_logger("xbuilder.pipeline").bind(run_id=run_id)


def task_logger(run_id: str, task_id: str, task_name: str) -> Any:
    """Get a logger pre-bound with task context.

    Args:
        run_id: The pipeline run ID
        task_id: The runtime task ID (task-<stage>-<task>)
        task_name: Name of the task as declared in the pipeline

    Returns:
        Logger with full task context bound
    """
    return get_logger("xbuilder.task").bind(
        run_id=run_id,
        task_id=task_id,
        task_name=task_name,
    )
