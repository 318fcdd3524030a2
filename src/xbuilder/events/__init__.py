"""
Run events for the display layer.

Usage:
    from xbuilder.events import EventBus, EventType

    bus = EventBus()
    bus.subscribe("display", render, event_types={EventType.OUTPUT_LINE, EventType.OUTPUT_BATCH})
"""

from xbuilder.events.base import (
    Event,
    EventType,
    output_batch,
    output_line,
    pipeline_completed,
    pipeline_started,
    stage_completed,
    stage_started,
    task_status_changed,
)
from xbuilder.events.bus import EventBus, EventBusStats, Subscription

__all__ = [
    "Event",
    "EventBus",
    "EventBusStats",
    "EventType",
    "Subscription",
    "output_batch",
    "output_line",
    "pipeline_completed",
    "pipeline_started",
    "stage_completed",
    "stage_started",
    "task_status_changed",
]
