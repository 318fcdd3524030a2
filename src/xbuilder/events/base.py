"""
Pipeline event types.

Events are the only channel from the engine to the display layer. They are
immutable records; subscribers can read them but have no way to reach back
into orchestrator state.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from ulid import ULID


def _generate_event_id() -> str:
    """Generate a unique event ID using ULID."""
    return str(ULID())


def _utc_now() -> datetime:
    return datetime.now(UTC)


class EventType(Enum):
    """
    All event types emitted by a pipeline run, in the order a display
    typically sees them.
    """

    PIPELINE_STARTED = "pipeline.started"
    STAGE_STARTED = "stage.started"
    TASK_STATUS_CHANGED = "task.status_changed"
    OUTPUT_LINE = "output.line"
    OUTPUT_BATCH = "output.batch"
    STAGE_COMPLETED = "stage.completed"
    PIPELINE_COMPLETED = "pipeline.completed"


@dataclass(frozen=True)
class Event:
    """
    Immutable event record.

    Attributes:
        event_type: Type of event from EventType enum.
        run_id: ID of the pipeline run that emitted the event.
        entity_id: Pipeline name, stage id, or task id the event is about.
        data: Event-specific payload.
        event_id: Unique identifier (ULID for time-ordering).
        timestamp: When the event occurred (UTC).
    """

    event_type: EventType
    run_id: str
    entity_id: str
    data: dict[str, Any] = field(default_factory=dict)
    event_id: str = field(default_factory=_generate_event_id)
    timestamp: datetime = field(default_factory=_utc_now)

    def to_dict(self) -> dict[str, Any]:
        """Convert event to a JSON-friendly dictionary."""
        return {
            "event_id": self.event_id,
            "event_type": self.event_type.value,
            "timestamp": self.timestamp.isoformat(),
            "run_id": self.run_id,
            "entity_id": self.entity_id,
            "data": self.data,
        }

    def __repr__(self) -> str:
        return f"Event({self.event_type.value}, entity={self.entity_id}, id={self.event_id[:8]}...)"


# Factory functions, one per event type


def pipeline_started(run_id: str, pipeline_name: str, *, stage_count: int, task_count: int) -> Event:
    return Event(
        event_type=EventType.PIPELINE_STARTED,
        run_id=run_id,
        entity_id=pipeline_name,
        data={"name": pipeline_name, "stage_count": stage_count, "task_count": task_count},
    )


def stage_started(run_id: str, stage_id: str, *, index: int, name: str, parallel: bool) -> Event:
    return Event(
        event_type=EventType.STAGE_STARTED,
        run_id=run_id,
        entity_id=stage_id,
        data={"index": index, "name": name, "parallel": parallel},
    )


def stage_completed(
    run_id: str,
    stage_id: str,
    *,
    index: int,
    name: str,
    success: bool,
    duration: float,
) -> Event:
    """Stage resolved; ``duration`` is in seconds."""
    return Event(
        event_type=EventType.STAGE_COMPLETED,
        run_id=run_id,
        entity_id=stage_id,
        data={"index": index, "name": name, "success": success, "duration": duration},
    )


def task_status_changed(
    run_id: str,
    task_id: str,
    *,
    name: str,
    status: str,
    error: str | None = None,
) -> Event:
    data: dict[str, Any] = {"task_id": task_id, "name": name, "status": status}
    if error is not None:
        data["error"] = error
    return Event(event_type=EventType.TASK_STATUS_CHANGED, run_id=run_id, entity_id=task_id, data=data)


def output_line(run_id: str, task_id: str, *, text: str, is_error: bool) -> Event:
    return Event(
        event_type=EventType.OUTPUT_LINE,
        run_id=run_id,
        entity_id=task_id,
        data={"task_id": task_id, "text": text, "is_error": is_error},
    )


def output_batch(run_id: str, task_id: str, *, lines: list[tuple[str, bool]]) -> Event:
    """A batch of (text, is_error) lines in production order."""
    return Event(
        event_type=EventType.OUTPUT_BATCH,
        run_id=run_id,
        entity_id=task_id,
        data={"task_id": task_id, "lines": lines},
    )


def pipeline_completed(
    run_id: str,
    pipeline_name: str,
    *,
    success: bool,
    duration: float,
    error: str | None = None,
    failed_task_id: str | None = None,
    failed_task_name: str | None = None,
    output_tail: list[str] | None = None,
    task_errors: dict[str, str] | None = None,
) -> Event:
    """Run finished.

    On failure the payload identifies the failing task, carries its last
    captured output lines, and maps every failed task id of the failing
    stage to its error message.
    """
    data: dict[str, Any] = {"success": success, "duration": duration}
    if not success:
        data.update(
            {
                "error": error,
                "failed_task_id": failed_task_id,
                "failed_task_name": failed_task_name,
                "output_tail": output_tail or [],
                "task_errors": task_errors or {},
            }
        )
    return Event(event_type=EventType.PIPELINE_COMPLETED, run_id=run_id, entity_id=pipeline_name, data=data)
