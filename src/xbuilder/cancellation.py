"""Cooperative cancellation for a pipeline run.

One CancellationToken is shared by the orchestrator, every executor, and
every process runner of a run. Cancelling it is idempotent and safe from any
thread, including signal handlers.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable

from xbuilder.errors import ProcessCancelledError

logger = logging.getLogger(__name__)


class CancellationToken:
    """A one-shot cancellation flag with optional callbacks."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: list[Callable[[], None]] = []
        self._reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str = "cancelled") -> None:
        """Cancel the run. Only the first call has any effect."""
        with self._lock:
            if self._event.is_set():
                return
            self._reason = reason
            self._event.set()
            callbacks = list(self._callbacks)
            self._callbacks.clear()

        logger.info("Run cancelled: %s", reason)
        for callback in callbacks:
            try:
                callback()
            except Exception as e:
                logger.warning("Error in cancellation callback: %s", e)

    def on_cancel(self, callback: Callable[[], None]) -> None:
        """Register a callback; runs immediately if already cancelled."""
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)
                return
        callback()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until cancelled or timeout. Returns True if cancelled."""
        return self._event.wait(timeout=timeout)

    def raise_if_cancelled(self, task_name: str | None = None) -> None:
        if self._event.is_set():
            raise ProcessCancelledError(f"Cancelled: {self._reason}", task_name=task_name)
