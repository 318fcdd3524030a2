"""
Generic shell executor.

Runs either a local script (with bash) or a shell command string. The
script takes precedence when both are configured.
"""

from __future__ import annotations

import os
from datetime import timedelta

from xbuilder.cancellation import CancellationToken
from xbuilder.config import EngineConfig
from xbuilder.errors import ConfigurationError
from xbuilder.executors.interface import ExecutionResult, Executor, OutputHandler
from xbuilder.executors.runner import ProcessRunner
from xbuilder.models.pipeline import ShellConfig


class ShellExecutor(Executor):
    """
    Execute a shell command or local script.

    Example:
        ShellConfig(command="npm ci && npm run build", working_dir="web")
        ShellConfig(script="scripts/release.sh", env={"CHANNEL": "beta"})
    """

    def __init__(self, task_name: str, config: ShellConfig, *, timeout: timedelta, engine: EngineConfig) -> None:
        if not config.command and not config.script:
            raise ConfigurationError("Shell task requires 'command' or 'script'", task_name=task_name)
        super().__init__(task_name)
        self.config = config
        self.timeout = timeout
        self.engine = engine

    def execute(self, cancel: CancellationToken, on_output: OutputHandler) -> ExecutionResult:
        if self.config.script:
            runner = ProcessRunner.for_script(
                self.config.script,
                name=self.task_name,
                timeout=self.timeout,
                working_dir=self.config.working_dir,
                env=self.config.env,
                kill_grace=self.engine.kill_grace,
                poll_interval=self.engine.poll_interval,
            )
            on_output(f"Running script: {self.config.script}", False)
        else:
            runner = ProcessRunner(
                self.config.command or "",
                name=self.task_name,
                timeout=self.timeout,
                working_dir=self.config.working_dir,
                env=self.config.env,
                shell=self.engine.shell,
                kill_grace=self.engine.kill_grace,
                poll_interval=self.engine.poll_interval,
            )
            on_output(f"Running shell command: {self.config.command}", False)

        on_output(f"Working directory: {self.config.working_dir or os.getcwd()}", False)
        on_output("", False)

        runner.run(cancel, on_output)
        return ExecutionResult()
