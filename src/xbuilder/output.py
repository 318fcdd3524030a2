"""
Output batching.

Sits between an executor's line callback and the event bus for tasks that
produce output faster than a display can redraw. Lines go into a bounded
queue; a drain thread coalesces them into batches flushed when a batch is
full or when the flush interval has elapsed since its first line.

Usage:
    batcher = OutputBatcher(publish_batch, publish_line)
    batcher.start()
    try:
        executor.execute(cancel, batcher.handle)
    finally:
        batcher.stop()  # drains and flushes everything still queued
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from collections.abc import Callable
from typing import NamedTuple

logger = logging.getLogger(__name__)


class OutputLine(NamedTuple):
    """One line of task output and the stream it came from."""

    text: str
    is_error: bool


BatchHandler = Callable[[list[OutputLine]], None]
LineHandler = Callable[[str, bool], None]

_STOP = object()


class OutputBatcher:
    """
    Bounded, time- and size-limited line batcher.

    ``handle`` blocks when the queue is full, which slows the reader thread
    and, through the pipe, the producing process. After ``stop`` every new
    line is forwarded straight to ``on_line``.
    """

    def __init__(
        self,
        on_batch: BatchHandler,
        on_line: LineHandler,
        *,
        max_batch: int = 200,
        flush_interval: float = 0.12,
        queue_size: int = 2048,
        name: str = "output-batcher",
    ) -> None:
        self.on_batch = on_batch
        self.on_line = on_line
        self.max_batch = max_batch
        self.flush_interval = flush_interval
        self.name = name

        self._queue: queue.Queue[object] = queue.Queue(maxsize=queue_size)
        self._lock = threading.Lock()
        self._closed = False
        self._thread: threading.Thread | None = None

    def start(self) -> OutputBatcher:
        self._thread = threading.Thread(target=self._drain_loop, name=self.name, daemon=True)
        self._thread.start()
        return self

    def handle(self, text: str, is_error: bool) -> None:
        """Output callback for executors."""
        with self._lock:
            if not self._closed:
                self._queue.put(OutputLine(text, is_error))
                return
        self.on_line(text, is_error)

    def stop(self) -> None:
        """Flush all queued lines and stop the drain thread. Idempotent."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            if self._thread is None:
                return
            self._queue.put(_STOP)
            # Joined under the lock so late lines cannot overtake queued ones
            self._thread.join()

    def _drain_loop(self) -> None:
        batch: list[OutputLine] = []
        deadline = 0.0

        while True:
            timeout = None if not batch else max(0.0, deadline - time.monotonic())
            try:
                item = self._queue.get(timeout=timeout)
            except queue.Empty:
                batch = self._flush(batch)
                continue

            if item is _STOP:
                self._flush(batch)
                return

            if not batch:
                deadline = time.monotonic() + self.flush_interval
            batch.append(item)  # type: ignore[arg-type]
            if len(batch) >= self.max_batch:
                batch = self._flush(batch)

    def _flush(self, batch: list[OutputLine]) -> list[OutputLine]:
        if batch:
            try:
                self.on_batch(batch)
            except Exception as e:
                logger.warning("Output batch handler failed (%d lines): %s", len(batch), e)
        return []
