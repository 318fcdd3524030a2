"""Tests for events and the event bus."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from xbuilder.events import (
    Event,
    EventBus,
    EventType,
    output_batch,
    pipeline_completed,
    pipeline_started,
    task_status_changed,
)


class TestEvents:
    def test_ids_are_unique(self) -> None:
        a = pipeline_started("run-1", "demo", stage_count=2, task_count=3)
        b = pipeline_started("run-1", "demo", stage_count=2, task_count=3)

        assert a.event_id != b.event_id

    def test_to_dict(self) -> None:
        event = task_status_changed("run-1", "task-0-0", name="a", status="RUNNING")
        data = event.to_dict()

        assert data["event_type"] == "task.status_changed"
        assert data["run_id"] == "run-1"
        assert data["entity_id"] == "task-0-0"
        assert data["data"] == {"task_id": "task-0-0", "name": "a", "status": "RUNNING"}

    def test_error_only_when_present(self) -> None:
        event = task_status_changed("run-1", "task-0-0", name="a", status="FAILED", error="boom")

        assert event.data["error"] == "boom"

    def test_completed_success_has_no_failure_keys(self) -> None:
        event = pipeline_completed("run-1", "demo", success=True, duration=1.5)

        assert event.data == {"success": True, "duration": 1.5}

    def test_completed_failure(self) -> None:
        event = pipeline_completed(
            "run-1",
            "demo",
            success=False,
            duration=2.0,
            error="Stage 'build' failed",
            failed_task_id="task-0-1",
            failed_task_name="api",
        )

        assert event.data["failed_task_id"] == "task-0-1"
        assert event.data["output_tail"] == []
        assert event.data["task_errors"] == {}

    def test_output_batch(self) -> None:
        event = output_batch("run-1", "task-0-0", lines=[("a", False), ("b", True)])

        assert event.event_type == EventType.OUTPUT_BATCH
        assert event.data["lines"] == [("a", False), ("b", True)]

    def test_frozen(self) -> None:
        event = pipeline_started("run-1", "demo", stage_count=1, task_count=1)

        with pytest.raises(AttributeError):
            event.run_id = "other"  # type: ignore[misc]


class TestEventBus:
    @pytest.fixture
    def sample_event(self) -> Event:
        return pipeline_started("run-1", "demo", stage_count=1, task_count=1)

    def test_subscribe_and_publish(self, bus: EventBus, sample_event: Event) -> None:
        received: list[Event] = []

        bus.subscribe("test", received.append)
        bus.publish(sample_event)

        assert received == [sample_event]

    def test_filter_by_event_type(self, bus: EventBus) -> None:
        received: list[Event] = []
        bus.subscribe("test", received.append, event_types={EventType.PIPELINE_COMPLETED})

        bus.publish(pipeline_started("run-1", "demo", stage_count=1, task_count=1))
        bus.publish(pipeline_completed("run-1", "demo", success=True, duration=0.1))

        assert [e.event_type for e in received] == [EventType.PIPELINE_COMPLETED]

    def test_filter_by_run(self, bus: EventBus) -> None:
        received: list[Event] = []
        bus.subscribe("test", received.append, run_filter="run-2")

        bus.publish(pipeline_started("run-1", "demo", stage_count=1, task_count=1))
        bus.publish(pipeline_started("run-2", "demo", stage_count=1, task_count=1))

        assert [e.run_id for e in received] == ["run-2"]

    def test_unsubscribe(self, bus: EventBus, sample_event: Event) -> None:
        received: list[Event] = []
        bus.subscribe("test", received.append)

        assert bus.unsubscribe("test")
        assert not bus.unsubscribe("test")
        bus.publish(sample_event)

        assert received == []

    def test_handler_error_isolated(self, sample_event: Event) -> None:
        error_handler = MagicMock()
        bus = EventBus(error_handler=error_handler)
        received: list[Event] = []

        def broken(event: Event) -> None:
            raise RuntimeError("boom")

        bus.subscribe("broken", broken)
        bus.subscribe("ok", received.append)
        bus.publish(sample_event)

        assert received == [sample_event]
        assert bus.stats.errors == 1
        assert bus.stats.events_delivered == 1
        error_handler.assert_called_once()
        assert error_handler.call_args.args[0] == "broken"

    def test_stats(self, bus: EventBus, sample_event: Event) -> None:
        bus.subscribe("a", lambda e: None)
        bus.subscribe("b", lambda e: None)
        bus.publish(sample_event)

        stats = bus.stats
        assert stats.events_published == 1
        assert stats.events_delivered == 2
        assert stats.subscriptions_active == 2
