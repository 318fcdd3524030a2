"""Shared pytest fixtures and fake executors."""

from __future__ import annotations

import threading
from collections.abc import Callable, Generator

import pytest

from xbuilder.cancellation import CancellationToken
from xbuilder.config import EngineConfig, reset_engine_config
from xbuilder.errors import XBuilderError
from xbuilder.events import Event, EventBus, EventType
from xbuilder.executors.interface import ExecutionResult, Executor, OutputHandler
from xbuilder.models.pipeline import ShellConfig, TaskSpec
from xbuilder.models.run_state import RunState


@pytest.fixture(autouse=True)
def reset_config() -> Generator[None, None, None]:
    """Reset the engine config singleton between tests."""
    yield
    reset_engine_config()


@pytest.fixture
def engine() -> EngineConfig:
    """Engine config with short grace periods for fast tests."""
    return EngineConfig(kill_grace_seconds=1.0, poll_interval_ms=20)


@pytest.fixture
def cancel() -> CancellationToken:
    return CancellationToken()


class OutputCollector:
    """Thread-safe output handler that records (text, is_error) pairs."""

    def __init__(self) -> None:
        self.lines: list[tuple[str, bool]] = []
        self._lock = threading.Lock()

    def __call__(self, text: str, is_error: bool) -> None:
        with self._lock:
            self.lines.append((text, is_error))

    @property
    def stdout(self) -> list[str]:
        return [text for text, is_error in self.lines if not is_error]

    @property
    def stderr(self) -> list[str]:
        return [text for text, is_error in self.lines if is_error]


@pytest.fixture
def output() -> OutputCollector:
    return OutputCollector()


class EventRecorder:
    """Event bus subscriber that keeps every event."""

    def __init__(self, bus: EventBus) -> None:
        self.events: list[Event] = []
        self._lock = threading.Lock()
        bus.subscribe("recorder", self._record)

    def _record(self, event: Event) -> None:
        with self._lock:
            self.events.append(event)

    def of_type(self, event_type: EventType) -> list[Event]:
        with self._lock:
            return [e for e in self.events if e.event_type == event_type]

    def statuses(self, task_id: str) -> list[str]:
        return [e.data["status"] for e in self.of_type(EventType.TASK_STATUS_CHANGED) if e.entity_id == task_id]


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def recorder(bus: EventBus) -> EventRecorder:
    return EventRecorder(bus)


# =============================================================================
# Fake executors
# =============================================================================

Behavior = Callable[[CancellationToken, OutputHandler], ExecutionResult]


class FakeExecutor(Executor):
    """Executor whose behavior is a plain function."""

    def __init__(self, task_name: str, behavior: Behavior) -> None:
        super().__init__(task_name)
        self.behavior = behavior

    def execute(self, cancel: CancellationToken, on_output: OutputHandler) -> ExecutionResult:
        return self.behavior(cancel, on_output)


class FakeExecutorFactory:
    """Maps task names to behaviors; unknown names succeed immediately."""

    def __init__(self, behaviors: dict[str, Behavior | XBuilderError] | None = None) -> None:
        self.behaviors = behaviors or {}
        self.created: list[str] = []
        self.pending_at_create: dict[str, list[str]] = {}
        self._lock = threading.Lock()

    def create(self, spec: TaskSpec, run_state: RunState) -> Executor:
        with self._lock:
            self.created.append(spec.name)
            self.pending_at_create[spec.name] = run_state.pending_push()
        behavior = self.behaviors.get(spec.name, succeed)
        if isinstance(behavior, XBuilderError):
            raise behavior
        return FakeExecutor(spec.name, behavior)


def succeed(cancel: CancellationToken, on_output: OutputHandler) -> ExecutionResult:
    return ExecutionResult()


def fail_with(error: XBuilderError, delay: float = 0.0) -> Behavior:
    def behavior(cancel: CancellationToken, on_output: OutputHandler) -> ExecutionResult:
        if delay:
            cancel.wait(delay)
        on_output(f"failing: {error.message}", True)
        raise error

    return behavior


def emit_lines(lines: list[str]) -> Behavior:
    def behavior(cancel: CancellationToken, on_output: OutputHandler) -> ExecutionResult:
        for line in lines:
            on_output(line, False)
        return ExecutionResult()

    return behavior


def shell_spec(name: str, command: str = "true") -> TaskSpec:
    return TaskSpec(name=name, config=ShellConfig(command=command))
