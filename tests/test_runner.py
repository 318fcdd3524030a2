"""Tests for the local process runner.

These run real processes through /bin/sh.
"""

from __future__ import annotations

import os
import tempfile
import threading
import time
from datetime import timedelta

import pytest

from xbuilder.cancellation import CancellationToken
from xbuilder.errors import (
    ProcessCancelledError,
    ProcessExecutionError,
    ProcessTimeoutError,
    ScriptNotFoundError,
)
from xbuilder.executors.runner import ProcessRunner

from tests.conftest import OutputCollector


def runner(command: str | list[str], timeout: float = 10.0, **kwargs) -> ProcessRunner:  # type: ignore[no-untyped-def]
    return ProcessRunner(
        command,
        name="test",
        timeout=timedelta(seconds=timeout),
        kill_grace=timedelta(seconds=1),
        poll_interval=timedelta(milliseconds=20),
        **kwargs,
    )


class TestProcessRunnerBasic:
    """Basic command execution."""

    def test_echo(self, cancel: CancellationToken, output: OutputCollector) -> None:
        runner("echo hello").run(cancel, output)

        assert output.lines == [("hello", False)]

    def test_stderr_is_tagged(self, cancel: CancellationToken, output: OutputCollector) -> None:
        runner("echo out; echo err >&2").run(cancel, output)

        assert output.stdout == ["out"]
        assert output.stderr == ["err"]

    def test_line_order_within_stream(self, cancel: CancellationToken, output: OutputCollector) -> None:
        runner("for i in 1 2 3 4 5; do echo $i; done").run(cancel, output)

        assert output.stdout == ["1", "2", "3", "4", "5"]

    def test_crlf_is_stripped(self, cancel: CancellationToken, output: OutputCollector) -> None:
        runner("printf 'a\\r\\nb\\n'").run(cancel, output)

        assert output.stdout == ["a", "b"]

    def test_env_overlay(self, cancel: CancellationToken, output: OutputCollector) -> None:
        runner("echo $XB_TEST_VALUE", env={"XB_TEST_VALUE": "from-env"}).run(cancel, output)

        assert output.stdout == ["from-env"]

    def test_inherits_environment(self, cancel: CancellationToken, output: OutputCollector) -> None:
        runner("echo $PATH").run(cancel, output)

        assert output.stdout == [os.environ["PATH"]]

    def test_working_dir(self, cancel: CancellationToken, output: OutputCollector) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            runner("pwd", working_dir=tmpdir).run(cancel, output)

            assert os.path.realpath(output.stdout[0]) == os.path.realpath(tmpdir)

    def test_missing_working_dir(self, cancel: CancellationToken, output: OutputCollector) -> None:
        with pytest.raises(ProcessExecutionError, match="Working directory does not exist"):
            runner("true", working_dir="/nonexistent/xbuilder").run(cancel, output)

    def test_argv_mode_does_not_interpret(self, cancel: CancellationToken, output: OutputCollector) -> None:
        runner(["echo", "$HOME", "a;b"]).run(cancel, output)

        assert output.stdout == ["$HOME a;b"]

    def test_stdin_data(self, cancel: CancellationToken, output: OutputCollector) -> None:
        runner("cat", stdin_data="line one\nline two\n").run(cancel, output)

        assert output.stdout == ["line one", "line two"]

    def test_display_command(self) -> None:
        assert runner("echo hi").display_command == "echo hi"
        assert runner(["docker", "build", "-t", "a b"]).display_command == "docker build -t 'a b'"

    def test_shell_argv(self) -> None:
        assert runner("echo hi").argv() == ["/bin/sh", "-c", "echo hi"]
        assert runner(["ls", "-l"]).argv() == ["ls", "-l"]


class TestProcessRunnerFailures:
    """Nonzero exits and spawn failures."""

    def test_nonzero_exit(self, cancel: CancellationToken, output: OutputCollector) -> None:
        with pytest.raises(ProcessExecutionError) as exc_info:
            runner("echo before; exit 3").run(cancel, output)

        assert exc_info.value.returncode == 3
        assert "exit code 3" in str(exc_info.value)
        assert output.stdout == ["before"]

    def test_command_not_found(self, cancel: CancellationToken, output: OutputCollector) -> None:
        with pytest.raises(ProcessExecutionError) as exc_info:
            runner(["xbuilder-definitely-missing-binary"]).run(cancel, output)

        assert exc_info.value.returncode is None
        assert isinstance(exc_info.value.cause, FileNotFoundError)

    def test_handler_error_does_not_break_run(self, cancel: CancellationToken) -> None:
        def broken(text: str, is_error: bool) -> None:
            raise RuntimeError("display failed")

        runner("echo a; echo b").run(cancel, broken)


class TestProcessRunnerTimeout:
    """Hard timeouts."""

    def test_timeout_kills_process(self, cancel: CancellationToken, output: OutputCollector) -> None:
        start = time.monotonic()
        with pytest.raises(ProcessTimeoutError) as exc_info:
            runner("sleep 5", timeout=1.0).run(cancel, output)
        elapsed = time.monotonic() - start

        assert elapsed < 4.0
        assert exc_info.value.timeout == timedelta(seconds=1)
        assert "sleep 5" in str(exc_info.value)

    def test_timeout_kills_whole_group(self, cancel: CancellationToken, output: OutputCollector) -> None:
        start = time.monotonic()
        with pytest.raises(ProcessTimeoutError):
            runner("sleep 5 & sleep 5; wait", timeout=0.5).run(cancel, output)

        assert time.monotonic() - start < 4.0

    def test_sigterm_ignored_gets_sigkill(self, cancel: CancellationToken, output: OutputCollector) -> None:
        start = time.monotonic()
        with pytest.raises(ProcessTimeoutError):
            runner("trap '' TERM; sleep 5", timeout=0.5).run(cancel, output)

        # timeout + kill grace, well short of the sleep
        assert time.monotonic() - start < 4.0


class TestProcessRunnerCancellation:
    """Cancellation through the shared token."""

    def test_cancel_running_process(self, output: OutputCollector) -> None:
        cancel = CancellationToken()
        threading.Timer(0.2, cancel.cancel).start()

        start = time.monotonic()
        with pytest.raises(ProcessCancelledError):
            runner("sleep 5").run(cancel, output)

        assert time.monotonic() - start < 4.0

    def test_already_cancelled_never_starts(self, output: OutputCollector, tmp_path) -> None:  # type: ignore[no-untyped-def]
        cancel = CancellationToken()
        cancel.cancel("stop")
        marker = tmp_path / "ran"

        with pytest.raises(ProcessCancelledError, match="stop"):
            runner(f"touch {marker}").run(cancel, output)

        assert not marker.exists()


class TestForScript:
    """Local script resolution."""

    def test_runs_script_relative_to_working_dir(self, cancel: CancellationToken, output: OutputCollector) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            with open(os.path.join(tmpdir, "build.sh"), "w") as f:
                f.write("echo from script\npwd\n")

            ProcessRunner.for_script("build.sh", timeout=timedelta(seconds=10), working_dir=tmpdir).run(
                cancel, output
            )

            assert output.stdout[0] == "from script"
            assert os.path.realpath(output.stdout[1]) == os.path.realpath(tmpdir)

    def test_missing_script(self) -> None:
        with pytest.raises(ScriptNotFoundError) as exc_info:
            ProcessRunner.for_script("missing.sh", timeout=timedelta(seconds=1), working_dir="/tmp")

        assert exc_info.value.path == "/tmp/missing.sh"
        assert not exc_info.value.remote
