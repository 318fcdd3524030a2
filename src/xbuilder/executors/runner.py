"""
Local process runner.

Spawns one child process, streams stdout and stderr line by line to an
output handler, and enforces a hard timeout and run-wide cancellation.

The child runs in its own session so that timeout and cancellation can kill
the whole process group (the shell and everything it started): SIGTERM
first, SIGKILL after a grace period.

Usage:
    runner = ProcessRunner(
        "mvn clean package",
        name="build-api",
        timeout=timedelta(minutes=30),
        working_dir="services/api",
        env={"MAVEN_OPTS": "-Xmx1g"},
    )
    runner.run(cancel, on_output)
"""

from __future__ import annotations

import logging
import os
import shlex
import signal
import subprocess
import threading
import time
from collections.abc import Mapping, Sequence
from datetime import timedelta
from typing import IO

from xbuilder.cancellation import CancellationToken
from xbuilder.errors import (
    ProcessCancelledError,
    ProcessExecutionError,
    ProcessTimeoutError,
    ScriptNotFoundError,
)
from xbuilder.executors.interface import OutputHandler

logger = logging.getLogger(__name__)


class ProcessRunner:
    """
    Runs a single command to completion.

    ``command`` is either a shell string, run as ``<shell> -c <command>``, or
    an argv sequence run without shell interpretation. ``env`` is overlaid
    on the inherited environment.
    """

    def __init__(
        self,
        command: str | Sequence[str],
        *,
        timeout: timedelta,
        name: str | None = None,
        working_dir: str | None = None,
        env: Mapping[str, str] | None = None,
        shell: str = "/bin/sh",
        stdin_data: str | bytes | None = None,
        kill_grace: timedelta = timedelta(seconds=5),
        poll_interval: timedelta = timedelta(milliseconds=50),
    ) -> None:
        self.command = command
        self.timeout = timeout
        self.name = name
        self.working_dir = working_dir or None
        self.env = dict(env or {})
        self.shell = shell
        self.stdin_data = stdin_data.encode() if isinstance(stdin_data, str) else stdin_data
        self.kill_grace = kill_grace
        self.poll_interval = poll_interval

    @classmethod
    def for_script(
        cls,
        script_path: str,
        *,
        timeout: timedelta,
        name: str | None = None,
        working_dir: str | None = None,
        env: Mapping[str, str] | None = None,
        kill_grace: timedelta = timedelta(seconds=5),
        poll_interval: timedelta = timedelta(milliseconds=50),
    ) -> ProcessRunner:
        """Runner for a local bash script.

        A relative path is resolved against ``working_dir``.

        Raises:
            ScriptNotFoundError: If the script file does not exist
        """
        path = script_path
        if working_dir and not os.path.isabs(path):
            path = os.path.join(working_dir, path)
        if not os.path.isfile(path):
            raise ScriptNotFoundError(path, task_name=name)
        return cls(
            ["bash", os.path.abspath(path)],
            timeout=timeout,
            name=name,
            working_dir=working_dir,
            env=env,
            kill_grace=kill_grace,
            poll_interval=poll_interval,
        )

    @property
    def is_shell(self) -> bool:
        return isinstance(self.command, str)

    @property
    def display_command(self) -> str:
        """The command as a human-readable string."""
        if isinstance(self.command, str):
            return self.command
        return shlex.join(self.command)

    def argv(self) -> list[str]:
        if isinstance(self.command, str):
            return [self.shell, "-c", self.command]
        return list(self.command)

    def run(self, cancel: CancellationToken, on_output: OutputHandler) -> None:
        """
        Run the command, streaming output until it exits.

        Raises:
            ProcessCancelledError: If ``cancel`` was triggered
            ProcessTimeoutError: If the timeout elapsed first
            ProcessExecutionError: If the process could not start or exited nonzero
        """
        cancel.raise_if_cancelled(self.name)

        if self.working_dir and not os.path.isdir(self.working_dir):
            raise ProcessExecutionError(
                f"Working directory does not exist: {self.working_dir}",
                task_name=self.name,
            )

        env = os.environ.copy()
        env.update(self.env)

        logger.debug("Starting process: %s (cwd=%s)", self.display_command, self.working_dir)
        try:
            proc = subprocess.Popen(
                self.argv(),
                cwd=self.working_dir,
                env=env,
                stdin=subprocess.PIPE if self.stdin_data is not None else subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                start_new_session=True,
            )
        except OSError as e:
            raise ProcessExecutionError(
                f"Failed to start command: {self.display_command}",
                cause=e,
                task_name=self.name,
            ) from e

        readers = [
            _start_reader(proc.stdout, on_output, is_error=False, name=f"{self.name}-stdout"),
            _start_reader(proc.stderr, on_output, is_error=True, name=f"{self.name}-stderr"),
        ]
        if self.stdin_data is not None:
            _start_writer(proc.stdin, self.stdin_data, name=f"{self.name}-stdin")

        returncode = self._wait(proc, readers, cancel)

        if returncode != 0:
            raise ProcessExecutionError.from_returncode(self.display_command, returncode, task_name=self.name)
        logger.debug("Process finished: %s", self.display_command)

    def _wait(
        self,
        proc: subprocess.Popen[bytes],
        readers: list[threading.Thread],
        cancel: CancellationToken,
    ) -> int:
        """Wait for exit and both readers, watching the deadline and token."""
        poll = self.poll_interval.total_seconds()
        deadline = time.monotonic() + self.timeout.total_seconds()
        returncode: int | None = None

        while True:
            if returncode is None:
                try:
                    returncode = proc.wait(timeout=poll)
                except subprocess.TimeoutExpired:
                    pass
            else:
                # Exited; a grandchild may still hold the pipes open
                for reader in readers:
                    reader.join(timeout=poll)
                if not any(reader.is_alive() for reader in readers):
                    return returncode

            if cancel.cancelled:
                logger.info("Cancelling process: %s", self.display_command)
                self._kill_group(proc, readers)
                raise ProcessCancelledError(task_name=self.name)

            if time.monotonic() >= deadline:
                logger.warning("Process timed out after %s: %s", self.timeout, self.display_command)
                self._kill_group(proc, readers)
                raise ProcessTimeoutError(self.display_command, self.timeout, task_name=self.name)

    def _kill_group(self, proc: subprocess.Popen[bytes], readers: list[threading.Thread]) -> None:
        _signal_group(proc.pid, signal.SIGTERM)
        try:
            proc.wait(timeout=self.kill_grace.total_seconds())
        except subprocess.TimeoutExpired:
            logger.warning("Process group %d ignored SIGTERM, sending SIGKILL", proc.pid)
        _signal_group(proc.pid, signal.SIGKILL)
        proc.wait()
        for reader in readers:
            reader.join(timeout=self.kill_grace.total_seconds())


def _signal_group(pgid: int, sig: signal.Signals) -> None:
    try:
        os.killpg(pgid, sig)
    except ProcessLookupError:
        # Group already gone
        pass
    except PermissionError as e:
        logger.warning("Cannot signal process group %d: %s", pgid, e)


def _start_reader(
    stream: IO[bytes] | None,
    on_output: OutputHandler,
    *,
    is_error: bool,
    name: str,
) -> threading.Thread:
    def _read() -> None:
        assert stream is not None
        with stream:
            for raw in iter(stream.readline, b""):
                text = raw.decode("utf-8", errors="replace").rstrip("\r\n")
                try:
                    on_output(text, is_error)
                except Exception as e:
                    logger.warning("Output handler failed: %s", e)

    thread = threading.Thread(target=_read, name=name, daemon=True)
    thread.start()
    return thread


def _start_writer(stream: IO[bytes] | None, data: bytes, *, name: str) -> threading.Thread:
    def _write() -> None:
        assert stream is not None
        try:
            with stream:
                stream.write(data)
        except BrokenPipeError:
            logger.debug("Process closed stdin before all input was written")

    thread = threading.Thread(target=_write, name=name, daemon=True)
    thread.start()
    return thread
