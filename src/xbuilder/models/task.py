"""
RuntimeTask model.

The orchestrator-owned lifecycle wrapper around a TaskSpec. One RuntimeTask
exists per task in the plan; it is mutated only by the orchestrator's task
runner and retained after the run for reporting.
"""

from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

from xbuilder.models.pipeline import TaskKind, TaskSpec
from xbuilder.models.status import TaskStatus


def task_id_for(stage_index: int, task_index: int) -> str:
    """Stable task ID derived from stage and task index."""
    return f"task-{stage_index}-{task_index}"


@dataclass
class RuntimeTask:
    """
    Runtime state of a single task.

    Attributes:
        id: task-<stage>-<task>, stable for the run
        spec: The immutable task specification
        stage_index: Index of the owning stage
        task_index: Index of the task within its stage
        status: Current status
        start_time: When the task started running
        end_time: When the task reached a terminal status
        last_error: The error that failed or cancelled the task
    """

    id: str
    spec: TaskSpec
    stage_index: int
    task_index: int
    status: TaskStatus = TaskStatus.PENDING
    start_time: datetime | None = None
    end_time: datetime | None = None
    last_error: BaseException | None = None
    tail_size: int = 20

    _tail: deque[str] = field(init=False, repr=False)
    _tail_lock: threading.Lock = field(init=False, repr=False, default_factory=threading.Lock)

    def __post_init__(self) -> None:
        self._tail = deque(maxlen=self.tail_size)

    @classmethod
    def create(cls, spec: TaskSpec, stage_index: int, task_index: int, tail_size: int = 20) -> RuntimeTask:
        return cls(
            id=task_id_for(stage_index, task_index),
            spec=spec,
            stage_index=stage_index,
            task_index=task_index,
            tail_size=tail_size,
        )

    @property
    def name(self) -> str:
        return self.spec.name

    @property
    def kind(self) -> TaskKind:
        return self.spec.kind

    @property
    def duration(self) -> timedelta | None:
        if self.start_time is None or self.end_time is None:
            return None
        return self.end_time - self.start_time

    def mark_running(self) -> None:
        self.status = TaskStatus.RUNNING
        self.start_time = datetime.now(UTC)

    def mark_finished(self, status: TaskStatus, error: BaseException | None = None) -> None:
        self.status = status
        self.last_error = error
        self.end_time = datetime.now(UTC)

    def record_output(self, text: str) -> None:
        """Keep the line in the bounded diagnostic tail."""
        with self._tail_lock:
            self._tail.append(text)

    def output_tail(self) -> list[str]:
        with self._tail_lock:
            return list(self._tail)
