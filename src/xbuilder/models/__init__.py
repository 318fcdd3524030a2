"""Data models for pipelines, tasks, and run state."""

from xbuilder.models.descriptors import (
    AuthType,
    RegistryDescriptor,
    ServerAuth,
    ServerDescriptor,
    registries_from_dict,
    servers_from_dict,
)
from xbuilder.models.pipeline import (
    AutoScanConfig,
    BuildConfig,
    BuildTool,
    ImageBuildConfig,
    ImagePushConfig,
    KindConfig,
    PipelineDefinition,
    RemoteDeployConfig,
    ShellConfig,
    StageSpec,
    TaskKind,
    TaskSpec,
)
from xbuilder.models.run_state import ReadWriteLock, RunState
from xbuilder.models.status import TaskStatus
from xbuilder.models.task import RuntimeTask, task_id_for

__all__ = [
    "AuthType",
    "AutoScanConfig",
    "BuildConfig",
    "BuildTool",
    "ImageBuildConfig",
    "ImagePushConfig",
    "KindConfig",
    "PipelineDefinition",
    "ReadWriteLock",
    "RegistryDescriptor",
    "RemoteDeployConfig",
    "RunState",
    "RuntimeTask",
    "ServerAuth",
    "ServerDescriptor",
    "ShellConfig",
    "StageSpec",
    "TaskKind",
    "TaskSpec",
    "TaskStatus",
    "registries_from_dict",
    "servers_from_dict",
    "task_id_for",
]
