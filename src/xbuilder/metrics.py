"""
Metrics collection for xbuilder.

Provides a small provider interface so an embedding application can route
engine metrics to its own backend.

Metrics tracked:
- pipeline_duration_seconds (histogram): Whole-run execution time
- stage_duration_seconds (histogram): Stage execution time
- task_duration_seconds (histogram): Task execution time
- tasks_failed (counter): Tasks that ended FAILED or CANCELLED
"""

from __future__ import annotations

import logging
import os
from abc import ABC, abstractmethod
from typing import Any

logger = logging.getLogger(__name__)


class MetricsProvider(ABC):
    """Abstract base class for metrics providers."""

    @abstractmethod
    def increment(self, name: str, value: float = 1.0, tags: dict[str, str] | None = None) -> None:
        """Increment a counter."""
        pass

    @abstractmethod
    def histogram(self, name: str, value: float, tags: dict[str, str] | None = None) -> None:
        """Record a value in a histogram."""
        pass


class LogMetricsProvider(MetricsProvider):
    """Provider that logs metrics at debug level."""

    def increment(self, name: str, value: float = 1.0, tags: dict[str, str] | None = None) -> None:
        logger.debug("METRIC INC %s: %s tags=%s", name, value, tags)

    def histogram(self, name: str, value: float, tags: dict[str, str] | None = None) -> None:
        logger.debug("METRIC HIST %s: %s tags=%s", name, value, tags)


class NoOpMetricsProvider(MetricsProvider):
    """Provider that does nothing."""

    def increment(self, name: str, value: float = 1.0, tags: dict[str, str] | None = None) -> None:
        pass

    def histogram(self, name: str, value: float, tags: dict[str, str] | None = None) -> None:
        pass


_provider: MetricsProvider = NoOpMetricsProvider()


def get_metrics() -> MetricsProvider:
    """Get the current metrics provider."""
    return _provider


def set_metrics_provider(provider: MetricsProvider) -> None:
    global _provider
    _provider = provider


def configure_metrics() -> None:
    """Pick a provider from the environment.

    XBUILDER_LOG_METRICS selects the LogMetricsProvider; otherwise metrics
    are discarded.
    """
    if os.environ.get("XBUILDER_LOG_METRICS"):
        set_metrics_provider(LogMetricsProvider())
        logger.info("Using LogMetricsProvider")
    else:
        set_metrics_provider(NoOpMetricsProvider())


def increment(name: str, value: float = 1.0, **tags: Any) -> None:
    """Increment metric with tags as kwargs."""
    _provider.increment(name, value, {k: str(v) for k, v in tags.items()})


def histogram(name: str, value: float, **tags: Any) -> None:
    """Record histogram with tags as kwargs."""
    _provider.histogram(name, value, {k: str(v) for k, v in tags.items()})
