"""
Pipeline orchestrator.

Runs the stages of a PipelineDefinition in order. Tasks of a sequential
stage run one after another and the stage stops at the first failure; tasks
of a parallel stage run on one thread each and the stage waits for all of
them. A failed stage ends the run, and later stages never start.

Every step is published on the event bus for the display layer:

    pipeline.started
      stage.started
        task.status_changed (RUNNING)
        output.line | output.batch ...
        task.status_changed (SUCCESS | FAILED | CANCELLED)
      stage.completed
    pipeline.completed

Usage:
    bus = EventBus()
    bus.subscribe("display", display.handle)
    pipeline = Pipeline(definition, servers, registries, event_bus=bus)
    with cancel_on_signals(cancel):
        result = pipeline.run(cancel)
"""

from __future__ import annotations

import time
from collections.abc import Callable, Mapping
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import timedelta

from ulid import ULID

from xbuilder import metrics
from xbuilder.cancellation import CancellationToken
from xbuilder.config import EngineConfig, get_engine_config
from xbuilder.errors import ProcessCancelledError, StageError, XBuilderError, truncate_error
from xbuilder.events import (
    EventBus,
    output_batch,
    output_line,
    pipeline_completed,
    pipeline_started,
    stage_completed,
    stage_started,
    task_status_changed,
)
from xbuilder.executors.factory import ExecutorFactory
from xbuilder.executors.interface import ExecutionResult, OutputHandler
from xbuilder.logging import run_logger, task_logger
from xbuilder.models.descriptors import RegistryDescriptor, ServerDescriptor
from xbuilder.models.pipeline import PipelineDefinition, StageSpec
from xbuilder.models.run_state import RunState
from xbuilder.models.status import TaskStatus
from xbuilder.models.task import RuntimeTask
from xbuilder.output import OutputBatcher, OutputLine
from xbuilder.tracing import set_attribute, trace_pipeline, trace_stage, trace_task


@dataclass
class PipelineResult:
    """
    Outcome of a run.

    Attributes:
        success: True if every stage succeeded
        duration: Wall-clock duration of the run
        error: StageError for a failed stage (its cause is the first failing
            task's error), or ProcessCancelledError when cancelled between stages
        failed_task: The task whose error is reported, if any
        task_errors: Every task error of the failed stage, by task id
        tasks: All runtime tasks, in plan order
    """

    success: bool
    duration: timedelta
    error: XBuilderError | None = None
    failed_task: RuntimeTask | None = None
    task_errors: dict[str, XBuilderError] = field(default_factory=dict)
    tasks: list[RuntimeTask] = field(default_factory=list)


@dataclass
class _StageFailure:
    error: XBuilderError
    failed_task: RuntimeTask | None = None
    task_errors: dict[str, XBuilderError] = field(default_factory=dict)


class Pipeline:
    """
    Executes one pipeline run.

    A Pipeline instance owns its plan of RuntimeTasks and the RunState, and
    is meant to be run once.
    """

    def __init__(
        self,
        definition: PipelineDefinition,
        servers: Mapping[str, ServerDescriptor] | None = None,
        registries: Mapping[str, RegistryDescriptor] | None = None,
        *,
        event_bus: EventBus | None = None,
        config: EngineConfig | None = None,
        executor_factory: ExecutorFactory | None = None,
        run_id: str | None = None,
    ) -> None:
        self.definition = definition
        self.config = config or get_engine_config()
        self.event_bus = event_bus or EventBus()
        self.factory = executor_factory or ExecutorFactory(servers or {}, registries or {}, self.config)
        self.run_id = run_id or str(ULID())
        self.run_state = RunState()

        self.plan: list[list[RuntimeTask]] = [
            [
                RuntimeTask.create(spec, stage_index, task_index, tail_size=self.config.output_tail_lines)
                for task_index, spec in enumerate(stage.tasks)
            ]
            for stage_index, stage in enumerate(definition.stages)
        ]
        self._log = run_logger(self.run_id)

    @property
    def tasks(self) -> list[RuntimeTask]:
        return [task for stage in self.plan for task in stage]

    def run(self, cancel: CancellationToken | None = None) -> PipelineResult:
        """
        Run all stages. Never raises; failures are reported in the result and
        in the pipeline.completed event.
        """
        cancel = cancel or CancellationToken()
        started = time.monotonic()
        name = self.definition.name

        self._log.info("pipeline_started", pipeline=name, stages=len(self.plan), tasks=len(self.tasks))
        self.event_bus.publish(
            pipeline_started(self.run_id, name, stage_count=len(self.plan), task_count=len(self.tasks))
        )

        failure: _StageFailure | None = None
        try:
            with trace_pipeline(self.run_id, name):
                for index, stage in enumerate(self.definition.stages):
                    if cancel.cancelled:
                        failure = _StageFailure(error=ProcessCancelledError(f"Cancelled: {cancel.reason}"))
                        break
                    failure = self._run_stage(index, stage, cancel)
                    if failure is not None:
                        break
        except Exception as e:
            self._log.exception("pipeline_crashed", pipeline=name)
            failure = _StageFailure(error=XBuilderError(f"Unexpected error in pipeline {name!r}", cause=e))

        if failure is not None:
            self._skip_pending()

        duration = timedelta(seconds=time.monotonic() - started)
        success = failure is None
        metrics.histogram("pipeline_duration_seconds", duration.total_seconds(), success=success)

        if failure is None:
            self._log.info("pipeline_completed", pipeline=name, duration=duration.total_seconds())
            self.event_bus.publish(
                pipeline_completed(self.run_id, name, success=True, duration=duration.total_seconds())
            )
            return PipelineResult(success=True, duration=duration, tasks=self.tasks)

        failed = failure.failed_task
        self._log.error(
            "pipeline_failed",
            pipeline=name,
            duration=duration.total_seconds(),
            error=str(failure.error),
            failed_task=failed.name if failed else None,
        )
        self.event_bus.publish(
            pipeline_completed(
                self.run_id,
                name,
                success=False,
                duration=duration.total_seconds(),
                error=truncate_error(str(failure.error)),
                failed_task_id=failed.id if failed else None,
                failed_task_name=failed.name if failed else None,
                output_tail=failed.output_tail() if failed else [],
                task_errors={task_id: truncate_error(str(err)) for task_id, err in failure.task_errors.items()},
            )
        )
        return PipelineResult(
            success=False,
            duration=duration,
            error=failure.error,
            failed_task=failed,
            task_errors=failure.task_errors,
            tasks=self.tasks,
        )

    def _run_stage(self, index: int, stage: StageSpec, cancel: CancellationToken) -> _StageFailure | None:
        tasks = self.plan[index]
        started = time.monotonic()

        self._log.info("stage_started", stage=stage.name, index=index, parallel=stage.parallel)
        self.event_bus.publish(
            stage_started(self.run_id, stage.id, index=index, name=stage.name, parallel=stage.parallel)
        )

        with trace_stage(self.run_id, index, stage.name):
            if stage.parallel:
                errors = self._run_parallel(tasks, cancel)
            else:
                errors = self._run_sequential(tasks, cancel)

        duration = time.monotonic() - started
        success = not errors
        metrics.histogram("stage_duration_seconds", duration, stage=stage.name, success=success)
        self._log.info("stage_completed", stage=stage.name, index=index, success=success, duration=duration)
        self.event_bus.publish(
            stage_completed(self.run_id, stage.id, index=index, name=stage.name, success=success, duration=duration)
        )

        if success:
            return None

        # First wins: the lowest task index is reported
        first_index = min(errors)
        failed_task = tasks[first_index]
        cause = errors[first_index]
        error = StageError(
            f"Stage {stage.name!r} failed at task {failed_task.name!r}",
            stage_index=index,
            stage_name=stage.name,
            cause=cause,
            task_name=failed_task.name,
        )
        if len(errors) > 1:
            self._log.warning("stage_multiple_failures", stage=stage.name, failed=len(errors))
        return _StageFailure(
            error=error,
            failed_task=failed_task,
            task_errors={tasks[i].id: err for i, err in sorted(errors.items())},
        )

    def _run_sequential(self, tasks: list[RuntimeTask], cancel: CancellationToken) -> dict[int, XBuilderError]:
        for task in tasks:
            if cancel.cancelled:
                error = ProcessCancelledError(f"Cancelled: {cancel.reason}", task_name=task.name)
                self._finish(task, TaskStatus.CANCELLED, error)
                return {task.task_index: error}
            error = self._run_task(task, cancel)
            if error is not None:
                return {task.task_index: error}
        return {}

    def _run_parallel(self, tasks: list[RuntimeTask], cancel: CancellationToken) -> dict[int, XBuilderError]:
        with ThreadPoolExecutor(max_workers=max(1, len(tasks)), thread_name_prefix=f"{self.run_id[-6:]}-task") as pool:
            futures = [pool.submit(self._run_task, task, cancel) for task in tasks]
            results = [future.result() for future in futures]
        return {task.task_index: err for task, err in zip(tasks, results, strict=True) if err is not None}

    def _run_task(self, task: RuntimeTask, cancel: CancellationToken) -> XBuilderError | None:
        """Run one task to a terminal status. Returns its error, if any."""
        log = task_logger(self.run_id, task.id, task.name)
        started = time.monotonic()

        task.mark_running()
        self._publish_status(task)
        log.info("task_started", kind=str(task.kind))

        on_output, finish_output = self._output_handler(task)
        result: ExecutionResult | None = None
        error: XBuilderError | None = None
        try:
            with trace_task(self.run_id, task.id, task.name, str(task.kind)):
                executor = self.factory.create(task.spec, self.run_state)
                result = executor.execute(cancel, on_output)
                set_attribute("task.built_image", result.built_image)
        except XBuilderError as e:
            error = e
        except Exception as e:
            log.exception("task_crashed")
            error = XBuilderError(f"Unexpected error in task {task.name!r}", cause=e, task_name=task.name)
        finally:
            finish_output()

        duration = time.monotonic() - started
        metrics.histogram("task_duration_seconds", duration, kind=str(task.kind), success=error is None)

        if error is None:
            if result is not None and result.built_image:
                # Recorded before SUCCESS is published
                self.run_state.record_build(result.built_image, result.pushed_images)
            self._finish(task, TaskStatus.SUCCESS)
            log.info("task_succeeded", duration=duration)
            return None

        if error.task_name is None:
            error.task_name = task.name
        status = TaskStatus.CANCELLED if isinstance(error, ProcessCancelledError) else TaskStatus.FAILED
        self._finish(task, status, error)
        metrics.increment("tasks_failed", kind=str(task.kind), status=str(status))
        log.warning("task_failed", status=str(status), error=str(error), duration=duration)
        return error

    def _finish(self, task: RuntimeTask, status: TaskStatus, error: XBuilderError | None = None) -> None:
        task.mark_finished(status, error)
        self._publish_status(task)

    def _publish_status(self, task: RuntimeTask) -> None:
        self.event_bus.publish(
            task_status_changed(
                self.run_id,
                task.id,
                name=task.name,
                status=str(task.status),
                error=truncate_error(str(task.last_error)) if task.last_error is not None else None,
            )
        )

    def _skip_pending(self) -> None:
        for task in self.tasks:
            if task.status == TaskStatus.PENDING:
                self._finish(task, TaskStatus.SKIPPED)

    def _output_handler(self, task: RuntimeTask) -> tuple[OutputHandler, Callable[[], None]]:
        """Per-task output callback and the function that finishes it."""

        def publish_line(text: str, is_error: bool) -> None:
            task.record_output(text)
            self.event_bus.publish(output_line(self.run_id, task.id, text=text, is_error=is_error))

        if not task.spec.batch_output:
            return publish_line, lambda: None

        def publish_batch(lines: list[OutputLine]) -> None:
            for line in lines:
                task.record_output(line.text)
            self.event_bus.publish(output_batch(self.run_id, task.id, lines=[tuple(line) for line in lines]))

        batcher = OutputBatcher(
            publish_batch,
            publish_line,
            max_batch=self.config.batch_max_lines,
            flush_interval=self.config.batch_flush_interval_ms / 1000,
            queue_size=self.config.batch_queue_size,
            name=f"batcher-{task.id}",
        ).start()
        return batcher.handle, batcher.stop
