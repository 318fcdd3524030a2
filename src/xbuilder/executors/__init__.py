"""
Task-kind executors.

Each kind of task has one Executor implementation:
- build: BuildToolExecutor (Maven, Go)
- image-build: ImageBuildExecutor
- image-push: ImagePushExecutor
- remote-deploy: RemoteDeployExecutor
- shell: ShellExecutor

ExecutorFactory maps a TaskSpec to the right one. ProcessRunner is the
shared local process primitive underneath all of them.
"""

from xbuilder.executors.build import BuildToolExecutor, go_argv, go_env
from xbuilder.executors.docker import (
    DockerfileScanner,
    ImageBuildExecutor,
    ImagePushExecutor,
    latest_variant,
)
from xbuilder.executors.factory import ExecutorFactory
from xbuilder.executors.interface import ExecutionResult, Executor, OutputHandler
from xbuilder.executors.runner import ProcessRunner
from xbuilder.executors.shell import ShellExecutor
from xbuilder.executors.ssh import RemoteDeployExecutor, SSHSession, join_commands, wrap_remote_command

__all__ = [
    "BuildToolExecutor",
    "DockerfileScanner",
    "ExecutionResult",
    "Executor",
    "ExecutorFactory",
    "ImageBuildExecutor",
    "ImagePushExecutor",
    "OutputHandler",
    "ProcessRunner",
    "RemoteDeployExecutor",
    "SSHSession",
    "ShellExecutor",
    "go_argv",
    "go_env",
    "join_commands",
    "latest_variant",
    "wrap_remote_command",
]
