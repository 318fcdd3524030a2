"""
xbuilder - local build and deploy pipeline runner.

Runs a pipeline of stages on the local machine: Maven and Go builds,
container image builds and pushes, remote deployments over SSH and plain
shell commands. Progress and task output are published as events for a
display layer to render.

Example:
    from xbuilder import CancellationToken, EventBus, Pipeline, PipelineDefinition, cancel_on_signals

    definition = PipelineDefinition.from_yaml(open("pipeline.yaml").read())
    bus = EventBus()
    bus.subscribe("console", print)

    cancel = CancellationToken()
    with cancel_on_signals(cancel):
        result = Pipeline(definition, servers, registries, event_bus=bus).run(cancel)
"""

from xbuilder.cancellation import CancellationToken
from xbuilder.config import EngineConfig, get_engine_config, reset_engine_config
from xbuilder.errors import XBuilderError
from xbuilder.events import Event, EventBus, EventType
from xbuilder.lifecycle import cancel_on_signals
from xbuilder.models import (
    PipelineDefinition,
    RegistryDescriptor,
    RunState,
    RuntimeTask,
    ServerDescriptor,
    StageSpec,
    TaskKind,
    TaskSpec,
    TaskStatus,
    registries_from_dict,
    servers_from_dict,
)
from xbuilder.output import OutputBatcher, OutputLine
from xbuilder.pipeline import Pipeline, PipelineResult

__version__ = "0.1.0"

__all__ = [
    "CancellationToken",
    "EngineConfig",
    "Event",
    "EventBus",
    "EventType",
    "OutputBatcher",
    "OutputLine",
    "Pipeline",
    "PipelineDefinition",
    "PipelineResult",
    "RegistryDescriptor",
    "RunState",
    "RuntimeTask",
    "ServerDescriptor",
    "StageSpec",
    "TaskKind",
    "TaskSpec",
    "TaskStatus",
    "XBuilderError",
    "cancel_on_signals",
    "get_engine_config",
    "registries_from_dict",
    "reset_engine_config",
    "servers_from_dict",
]
