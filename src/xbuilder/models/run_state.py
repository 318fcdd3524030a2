"""
RunState: images built and pushed during one pipeline run.

Build tasks in a parallel stage write concurrently; push tasks in later
stages read. Executors never see this object: the orchestrator records
build results into it and hands snapshots to push executors.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager


class ReadWriteLock:
    """Writer-exclusive, reader-concurrent lock.

    Waiting writers block new readers so a steady stream of reads cannot
    starve a build result from being recorded.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            self._writers_waiting += 1
            while self._writer or self._readers:
                self._cond.wait()
            self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class RunState:
    """Built/pushed image tracking for a single run."""

    def __init__(self) -> None:
        self._lock = ReadWriteLock()
        self._built: list[str] = []
        self._pushed: set[str] = set()

    def record_build(self, image_ref: str, pushed: tuple[str, ...] = ()) -> None:
        """Record a successful image build.

        The reference is appended once; a repeated record of the same
        reference is ignored. Any references the build pushed itself are
        added to the pushed set in the same critical section.
        """
        with self._lock.write():
            if image_ref not in self._built:
                self._built.append(image_ref)
            self._pushed.update(pushed)

    def built_images(self) -> list[str]:
        """Snapshot of built references in build-completion order."""
        with self._lock.read():
            return list(self._built)

    def pushed_images(self) -> frozenset[str]:
        with self._lock.read():
            return frozenset(self._pushed)

    def pending_push(self) -> list[str]:
        """Built references not already pushed, in build order."""
        with self._lock.read():
            return [ref for ref in self._built if ref not in self._pushed]
