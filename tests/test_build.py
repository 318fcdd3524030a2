"""Tests for the build-tool and shell executors."""

from __future__ import annotations

from datetime import timedelta
from pathlib import Path

import pytest

from xbuilder.cancellation import CancellationToken
from xbuilder.config import EngineConfig
from xbuilder.errors import ConfigurationError, ProcessExecutionError, ScriptNotFoundError
from xbuilder.executors.build import DEFAULT_MAVEN_COMMAND, BuildToolExecutor, go_argv, go_env
from xbuilder.executors.shell import ShellExecutor
from xbuilder.models.pipeline import BuildConfig, BuildTool, ShellConfig

from tests.conftest import OutputCollector


def build_executor(config: BuildConfig) -> BuildToolExecutor:
    return BuildToolExecutor("build", config, timeout=timedelta(seconds=30), engine=EngineConfig())


def shell_executor(config: ShellConfig) -> ShellExecutor:
    return ShellExecutor("shell", config, timeout=timedelta(seconds=30), engine=EngineConfig())


class TestGoArgv:
    def test_defaults(self) -> None:
        assert go_argv(BuildConfig(tool=BuildTool.GO)) == ["go", "build", "."]

    def test_build_flags(self) -> None:
        config = BuildConfig(
            tool=BuildTool.GO,
            output="bin/api",
            ldflags="-s -w",
            tags="netgo",
            race=True,
            trimpath=True,
            mod="vendor",
            verbose=True,
            packages="./cmd/api ./cmd/worker",
        )

        assert go_argv(config) == [
            "go",
            "build",
            "-v",
            "-o",
            "bin/api",
            "-ldflags",
            "-s -w",
            "-tags",
            "netgo",
            "-race",
            "-trimpath",
            "-mod=vendor",
            "./cmd/api",
            "./cmd/worker",
        ]

    def test_test_ignores_build_only_flags(self) -> None:
        config = BuildConfig(tool=BuildTool.GO, go_command="test", output="bin/x", race=True, packages="./...")

        assert go_argv(config) == ["go", "test", "-race", "./..."]

    def test_generate(self) -> None:
        config = BuildConfig(tool=BuildTool.GO, go_command="generate", race=True, verbose=True)

        assert go_argv(config) == ["go", "generate", "-v", "."]

    def test_env(self) -> None:
        config = BuildConfig(tool=BuildTool.GO, goos="linux", goarch="arm64", cgo_enabled=False, goproxy="direct")

        assert go_env(config) == {"GOOS": "linux", "GOARCH": "arm64", "CGO_ENABLED": "0", "GOPROXY": "direct"}


class TestBuildToolExecutor:
    def test_maven_default(self) -> None:
        runner = build_executor(BuildConfig()).create_runner()

        assert runner.command == DEFAULT_MAVEN_COMMAND

    def test_command_overrides_default(self) -> None:
        runner = build_executor(BuildConfig(tool=BuildTool.GO, command="make build")).create_runner()

        assert runner.command == "make build"

    def test_go_env_merged(self) -> None:
        executor = build_executor(BuildConfig(tool=BuildTool.GO, env={"FOO": "1"}, goos="darwin"))

        assert executor.env == {"FOO": "1", "GOOS": "darwin"}

    def test_maven_ignores_go_env(self) -> None:
        executor = build_executor(BuildConfig(goos="darwin"))

        assert executor.env == {}

    def test_script_wins(self, tmp_path: Path) -> None:
        (tmp_path / "build.sh").write_text("echo built\n")
        runner = build_executor(
            BuildConfig(script="build.sh", command="ignored", working_dir=str(tmp_path))
        ).create_runner()

        assert runner.command == ["bash", str(tmp_path / "build.sh")]

    def test_missing_script(self, tmp_path: Path) -> None:
        with pytest.raises(ScriptNotFoundError):
            build_executor(BuildConfig(script="nope.sh", working_dir=str(tmp_path))).create_runner()

    def test_execute_command(self, cancel: CancellationToken, output: OutputCollector, tmp_path: Path) -> None:
        config = BuildConfig(command="echo compiled $MODE", env={"MODE": "release"}, working_dir=str(tmp_path))

        build_executor(config).execute(cancel, output)

        assert output.stdout[0] == "Running maven build: echo compiled $MODE"
        assert output.stdout[-1] == "compiled release"

    def test_execute_failure(self, cancel: CancellationToken, output: OutputCollector) -> None:
        with pytest.raises(ProcessExecutionError):
            build_executor(BuildConfig(command="exit 1")).execute(cancel, output)


class TestShellExecutor:
    def test_requires_command_or_script(self) -> None:
        with pytest.raises(ConfigurationError):
            shell_executor(ShellConfig())

    def test_command(self, cancel: CancellationToken, output: OutputCollector) -> None:
        shell_executor(ShellConfig(command="echo one && echo two >&2")).execute(cancel, output)

        assert output.stdout[-1] == "one"
        assert output.stderr == ["two"]

    def test_script_precedence(self, cancel: CancellationToken, output: OutputCollector, tmp_path: Path) -> None:
        (tmp_path / "run.sh").write_text("echo from-script $CHANNEL\n")
        config = ShellConfig(command="echo from-command", script="run.sh", working_dir=str(tmp_path), env={"CHANNEL": "beta"})

        shell_executor(config).execute(cancel, output)

        assert "from-script beta" in output.stdout
        assert "from-command" not in output.stdout
