"""OpenTelemetry tracing for xbuilder.

Spans are created around pipeline, stage, and task execution. Exporters are
configured by the embedding application on the global TracerProvider.

Usage:
    from xbuilder.tracing import configure_tracing, trace_operation

    configure_tracing(service_name="xbuilder")

    with trace_operation("task.execute", task_id="task-0-0") as span:
        result = executor.execute(cancel, on_output)
        span.set_attribute("task.built_image", result.built_image)
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.trace import Status, StatusCode, Tracer

_tracer: Tracer | None = None


def configure_tracing(
    service_name: str = "xbuilder",
    service_version: str | None = None,
    environment: str | None = None,
) -> None:
    """Install a TracerProvider for xbuilder.

    Args:
        service_name: Name of the service (appears in traces)
        service_version: Optional version string
        environment: Optional environment (dev, ci, prod)
    """
    global _tracer

    resource_attrs = {"service.name": service_name}
    if service_version:
        resource_attrs["service.version"] = service_version
    if environment:
        resource_attrs["deployment.environment"] = environment

    provider = TracerProvider(resource=Resource.create(resource_attrs))
    trace.set_tracer_provider(provider)

    _tracer = trace.get_tracer(
        instrumenting_module_name="xbuilder",
        instrumenting_library_version=service_version,
    )


def get_tracer() -> Tracer:
    """Get the xbuilder tracer from the global provider."""
    global _tracer
    if _tracer is None:
        _tracer = trace.get_tracer("xbuilder")
    return _tracer


@contextmanager
def trace_operation(
    name: str,
    **attributes: Any,
) -> Iterator[Any]:
    """Context manager for tracing an operation.

    Creates a span, sets the non-None attributes as strings, and records any
    exception raised inside the block with an error status before re-raising.

    Args:
        name: Name of the operation (e.g., "task.execute", "stage.execute")
        **attributes: Attributes to set on the span

    Yields:
        The span
    """
    with get_tracer().start_as_current_span(name) as span:
        for key, value in attributes.items():
            if value is not None:
                span.set_attribute(key, str(value))

        try:
            yield span
        except Exception as e:
            span.record_exception(e)
            span.set_status(Status(StatusCode.ERROR, str(e)))
            raise


@contextmanager
def trace_pipeline(run_id: str, pipeline_name: str) -> Iterator[Any]:
    with trace_operation("pipeline.execute", run_id=run_id, pipeline_name=pipeline_name) as span:
        yield span


@contextmanager
def trace_stage(run_id: str, stage_index: int, stage_name: str) -> Iterator[Any]:
    with trace_operation(
        "stage.execute",
        run_id=run_id,
        stage_index=stage_index,
        stage_name=stage_name,
    ) as span:
        yield span


@contextmanager
def trace_task(run_id: str, task_id: str, task_name: str, task_kind: str) -> Iterator[Any]:
    """Trace a task execution.

    Args:
        run_id: Pipeline run ID
        task_id: Runtime task ID
        task_name: Name of the task
        task_kind: Kind of task (build, image-build, ...)
    """
    with trace_operation(
        "task.execute",
        run_id=run_id,
        task_id=task_id,
        task_name=task_name,
        task_kind=task_kind,
    ) as span:
        yield span


def set_attribute(key: str, value: Any) -> None:
    """Set an attribute on the current span."""
    span = trace.get_current_span()
    if value is not None:
        span.set_attribute(key, str(value))
