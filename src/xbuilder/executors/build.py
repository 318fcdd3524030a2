"""
Build-tool executor for Maven and Go projects.

Resolution order: ``script`` (run with bash), then ``command`` (shell
string), then the tool's default invocation.
"""

from __future__ import annotations

import logging
import os
from datetime import timedelta

from xbuilder.cancellation import CancellationToken
from xbuilder.config import EngineConfig
from xbuilder.executors.interface import ExecutionResult, Executor, OutputHandler
from xbuilder.executors.runner import ProcessRunner
from xbuilder.models.pipeline import BuildConfig, BuildTool

logger = logging.getLogger(__name__)

DEFAULT_MAVEN_COMMAND = "mvn clean package -DskipTests"


def go_argv(config: BuildConfig) -> list[str]:
    """Default ``go build|test|generate`` argv for a Go build config."""
    go_command = config.go_command or "build"
    argv = ["go", go_command]

    if config.verbose:
        argv.append("-v")

    match go_command:
        case "test":
            if config.race:
                argv.append("-race")
            if config.mod:
                argv.append(f"-mod={config.mod}")
        case "generate":
            pass
        case _:
            if config.output:
                argv.extend(["-o", config.output])
            if config.ldflags:
                argv.extend(["-ldflags", config.ldflags])
            if config.tags:
                argv.extend(["-tags", config.tags])
            if config.race:
                argv.append("-race")
            if config.trimpath:
                argv.append("-trimpath")
            if config.mod:
                argv.append(f"-mod={config.mod}")

    argv.extend((config.packages or ".").split())
    return argv


def go_env(config: BuildConfig) -> dict[str, str]:
    """Go toolchain environment from the config (GOOS, GOARCH, CGO_ENABLED, ...)."""
    env = {}
    if config.goos:
        env["GOOS"] = config.goos
    if config.goarch:
        env["GOARCH"] = config.goarch
    if config.cgo_enabled is not None:
        env["CGO_ENABLED"] = "1" if config.cgo_enabled else "0"
    if config.goprivate:
        env["GOPRIVATE"] = config.goprivate
    if config.goproxy:
        env["GOPROXY"] = config.goproxy
    return env


class BuildToolExecutor(Executor):
    """
    Compile a Maven or Go project locally.

    Config:
        tool: maven (default) or go
        command: Shell command replacing the default invocation
        script: Local script path, relative to working_dir
        working_dir: Directory to run in (default: current directory)
        env: Extra environment variables
        go options: go_command, goos, goarch, output, ldflags, tags,
            cgo_enabled, goprivate, goproxy, race, trimpath, mod, packages,
            verbose (Go only)

    Example:
        BuildConfig(tool=BuildTool.GO, goos="linux", goarch="arm64", output="bin/api", trimpath=True)
        -> GOOS=linux GOARCH=arm64 go build -o bin/api -trimpath .
    """

    def __init__(self, task_name: str, config: BuildConfig, *, timeout: timedelta, engine: EngineConfig) -> None:
        super().__init__(task_name)
        self.config = config
        self.timeout = timeout
        self.engine = engine

    @property
    def env(self) -> dict[str, str]:
        env = dict(self.config.env)
        if self.config.tool == BuildTool.GO:
            env.update(go_env(self.config))
        return env

    def create_runner(self) -> ProcessRunner:
        """Pick script, command, or the tool default."""
        if self.config.script:
            return ProcessRunner.for_script(
                self.config.script,
                name=self.task_name,
                timeout=self.timeout,
                working_dir=self.config.working_dir,
                env=self.env,
                kill_grace=self.engine.kill_grace,
                poll_interval=self.engine.poll_interval,
            )

        command: str | list[str]
        if self.config.command:
            command = self.config.command
        elif self.config.tool == BuildTool.GO:
            command = go_argv(self.config)
        else:
            command = DEFAULT_MAVEN_COMMAND
        return ProcessRunner(
            command,
            name=self.task_name,
            timeout=self.timeout,
            working_dir=self.config.working_dir,
            env=self.env,
            shell=self.engine.shell,
            kill_grace=self.engine.kill_grace,
            poll_interval=self.engine.poll_interval,
        )

    def execute(self, cancel: CancellationToken, on_output: OutputHandler) -> ExecutionResult:
        runner = self.create_runner()

        label = f"script {self.config.script}" if self.config.script else runner.display_command
        on_output(f"Running {self.config.tool.value} build: {label}", False)
        on_output(f"Working directory: {self.config.working_dir or os.getcwd()}", False)
        if self.config.tool == BuildTool.GO:
            self._describe_go_env(on_output)
        on_output("", False)

        logger.debug("Build task %s: %s", self.task_name, label)
        runner.run(cancel, on_output)
        return ExecutionResult()

    def _describe_go_env(self, on_output: OutputHandler) -> None:
        if self.config.goos or self.config.goarch:
            on_output(f"Target platform: {self.config.goos or 'native'}/{self.config.goarch or 'native'}", False)
        if self.config.cgo_enabled is not None:
            on_output(f"CGO: {'enabled' if self.config.cgo_enabled else 'disabled'}", False)
