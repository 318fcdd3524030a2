"""
Remote deployment over SSH.

Uses the OpenSSH client via subprocess. One task opens one authenticated
control-master connection, runs its commands (or script) as multiplexed
sessions over it, and closes it again:

    Connect -> (LocalScriptUpload | RemoteScript | CommandList) -> Disconnect

Host key checking is disabled (StrictHostKeyChecking=no with an empty
known-hosts file). Password authentication goes through ``sshpass -e`` so
the password is only ever passed in the environment.

Every remote command first prints the PID of its remote shell on a marker
line. On cancellation or timeout the local ssh client is killed and a
separate session sends SIGTERM to that remote process group.
"""

from __future__ import annotations

import logging
import os
import shlex
import shutil
import subprocess
import tempfile
import time
from datetime import timedelta

from ulid import ULID

from xbuilder.cancellation import CancellationToken
from xbuilder.config import EngineConfig
from xbuilder.errors import (
    ConfigurationError,
    ProcessCancelledError,
    ProcessExecutionError,
    ProcessTimeoutError,
    RemoteCommandError,
    RemoteConnectionError,
    ScriptNotFoundError,
    XBuilderError,
)
from xbuilder.executors.interface import ExecutionResult, Executor, OutputHandler
from xbuilder.executors.runner import ProcessRunner
from xbuilder.models.descriptors import AuthType, ServerDescriptor
from xbuilder.models.pipeline import RemoteDeployConfig

logger = logging.getLogger(__name__)

PID_MARKER = "__XBUILDER_PID__"

# ssh exits 255 when the connection itself failed
SSH_CONNECTION_FAILURE = 255


def join_commands(commands: list[str] | tuple[str, ...]) -> str:
    """Join commands so each one only runs if the previous succeeded."""
    return " && ".join(commands)


def script_path(script: str) -> str:
    """The script file of a remote script invocation such as ``/opt/deploy.sh prod``."""
    try:
        parts = shlex.split(script)
    except ValueError as e:
        raise ConfigurationError(f"Invalid remote script: {script}", cause=e) from e
    if not parts:
        raise ConfigurationError("Remote script is empty")
    return parts[0]


def wrap_remote_command(command: str) -> str:
    """Report the remote shell's PID, then replace it with the command."""
    return f"echo {PID_MARKER}$$; exec /bin/sh -c {shlex.quote(command)}"


class SSHSession:
    """
    A control-master SSH connection to one server.

    Usage:
        session = SSHSession(server, connect_timeout=timedelta(seconds=30))
        session.connect(cancel)
        try:
            session.run("uptime", cancel, on_output, timeout=timedelta(minutes=1))
        finally:
            session.close()
    """

    def __init__(
        self,
        server: ServerDescriptor,
        *,
        connect_timeout: timedelta,
        task_name: str | None = None,
        kill_grace: timedelta = timedelta(seconds=5),
        poll_interval: timedelta = timedelta(milliseconds=50),
    ) -> None:
        self.server = server
        self.connect_timeout = connect_timeout
        self.task_name = task_name
        self.kill_grace = kill_grace
        self.poll_interval = poll_interval

        self._control_dir: str | None = None
        self._master: subprocess.Popen[bytes] | None = None

    @property
    def target(self) -> str:
        return f"{self.server.username}@{self.server.host}"

    @property
    def control_path(self) -> str:
        if self._control_dir is None:
            raise RemoteConnectionError("SSH session is not connected", host=self.server.host)
        return os.path.join(self._control_dir, "ctl")

    @property
    def connected(self) -> bool:
        return self._master is not None and self._master.poll() is None

    def connection_options(self) -> list[str]:
        """Options shared by the master connection."""
        opts = [
            "-p",
            str(self.server.port),
            "-o",
            "StrictHostKeyChecking=no",
            "-o",
            "UserKnownHostsFile=/dev/null",
            "-o",
            "LogLevel=ERROR",
            "-o",
            f"ConnectTimeout={max(1, int(self.connect_timeout.total_seconds()))}",
            "-o",
            "ServerAliveInterval=15",
        ]

        auth = self.server.auth
        if auth.type == AuthType.KEY:
            opts.extend(["-i", os.path.expanduser(auth.key_path or ""), "-o", "IdentitiesOnly=yes"])
            opts.extend(["-o", "BatchMode=yes"])
        else:
            opts.extend(["-o", "PreferredAuthentications=password,keyboard-interactive"])
            opts.extend(["-o", "PubkeyAuthentication=no"])
        return opts

    def master_argv(self) -> list[str]:
        argv = ["ssh", "-M", "-S", self.control_path, "-N", *self.connection_options(), self.target]
        if self.server.auth.type == AuthType.PASSWORD:
            argv = ["sshpass", "-e", *argv]
        return argv

    def session_argv(self, remote_command: str) -> list[str]:
        """Argv for one multiplexed session running ``remote_command``."""
        return [
            "ssh",
            "-S",
            self.control_path,
            "-o",
            "ControlMaster=no",
            "-o",
            "BatchMode=yes",
            "-T",
            "-p",
            str(self.server.port),
            self.target,
            remote_command,
        ]

    def connect(self, cancel: CancellationToken) -> None:
        """
        Open the master connection and wait until it accepts sessions.

        Raises:
            RemoteConnectionError: If the connection fails or times out
            ProcessCancelledError: If cancelled while connecting
        """
        auth = self.server.auth
        if auth.type == AuthType.KEY and not os.path.isfile(os.path.expanduser(auth.key_path or "")):
            raise RemoteConnectionError(
                f"SSH key file not found: {auth.key_path}",
                host=self.server.host,
                task_name=self.task_name,
            )

        self._control_dir = tempfile.mkdtemp(prefix="xbuilder-ssh-")
        env = os.environ.copy()
        if auth.type == AuthType.PASSWORD:
            env["SSHPASS"] = auth.password or ""

        argv = self.master_argv()
        logger.debug("Opening SSH master connection to %s:%d", self.server.host, self.server.port)
        try:
            self._master = subprocess.Popen(
                argv,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                env=env,
                start_new_session=True,
            )
        except FileNotFoundError as e:
            self.close()
            raise RemoteConnectionError(
                f"{argv[0]} not available. Ensure it is installed.",
                host=self.server.host,
                cause=e,
                task_name=self.task_name,
            ) from e

        deadline = time.monotonic() + self.connect_timeout.total_seconds()
        while not self._check_master():
            if self._master.poll() is not None:
                detail = self._master_stderr() or f"exit code {self._master.returncode}"
                self.close()
                raise RemoteConnectionError(
                    f"SSH connection to {self.server.host}:{self.server.port} failed: {detail}",
                    host=self.server.host,
                    task_name=self.task_name,
                )
            if cancel.cancelled:
                self.close()
                raise ProcessCancelledError(task_name=self.task_name)
            if time.monotonic() >= deadline:
                self.close()
                raise RemoteConnectionError(
                    f"SSH connection to {self.server.host}:{self.server.port} timed out",
                    host=self.server.host,
                    task_name=self.task_name,
                )
            cancel.wait(0.1)

        logger.info("SSH connected to %s", self.server.address)

    def _check_master(self) -> bool:
        try:
            result = subprocess.run(
                ["ssh", "-S", self.control_path, "-O", "check", self.target],
                capture_output=True,
                timeout=5,
            )
        except subprocess.TimeoutExpired:
            return False
        return result.returncode == 0

    def _master_stderr(self) -> str:
        if self._master is None or self._master.stderr is None:
            return ""
        return self._master.stderr.read().decode("utf-8", errors="replace").strip()

    def run(
        self,
        command: str,
        cancel: CancellationToken,
        on_output: OutputHandler,
        *,
        timeout: timedelta,
        stdin_data: bytes | None = None,
    ) -> None:
        """
        Run one remote command, streaming its output.

        Raises:
            RemoteConnectionError: If ssh exits 255 before the remote shell
                reported its PID, or the exit status is unknown
            RemoteCommandError: If the command exits nonzero, including 255
                once the remote shell has started
            ProcessCancelledError: If cancelled (remote process is signalled)
            ProcessTimeoutError: If the timeout elapsed (remote process is signalled)
        """
        remote_pid: list[str] = []

        def handle(text: str, is_error: bool) -> None:
            if not is_error and not remote_pid and text.startswith(PID_MARKER):
                remote_pid.append(text[len(PID_MARKER) :].strip())
                return
            on_output(text, is_error)

        runner = ProcessRunner(
            self.session_argv(wrap_remote_command(command)),
            name=self.task_name,
            timeout=timeout,
            stdin_data=stdin_data,
            kill_grace=self.kill_grace,
            poll_interval=self.poll_interval,
        )
        logger.debug("Running on %s: %s", self.server.host, command)
        try:
            runner.run(cancel, handle)
        except ProcessCancelledError:
            self._signal_remote(remote_pid)
            raise
        except ProcessTimeoutError as e:
            self._signal_remote(remote_pid)
            raise ProcessTimeoutError(command, timeout, task_name=self.task_name) from e
        except ProcessExecutionError as e:
            # 255 from ssh itself only when the remote shell never started
            if e.returncode is None or (e.returncode == SSH_CONNECTION_FAILURE and not remote_pid):
                raise RemoteConnectionError(
                    f"SSH connection to {self.server.host} failed while running: {command}",
                    host=self.server.host,
                    cause=e,
                    task_name=self.task_name,
                ) from e
            raise RemoteCommandError(
                f"Remote command failed with exit code {e.returncode}: {command}",
                exit_code=e.returncode,
                host=self.server.host,
                task_name=self.task_name,
            ) from e

    def _signal_remote(self, remote_pid: list[str]) -> None:
        """Best-effort SIGTERM to the remote process group."""
        if not remote_pid or not remote_pid[0].isdigit() or not self.connected:
            return
        pid = remote_pid[0]
        kill = f"kill -TERM -- -{pid} 2>/dev/null || kill -TERM {pid}"
        runner = ProcessRunner(
            self.session_argv(kill),
            name=self.task_name,
            timeout=self.kill_grace,
            poll_interval=self.poll_interval,
        )
        try:
            runner.run(CancellationToken(), lambda text, is_error: None)
            logger.info("Sent SIGTERM to remote process %s on %s", pid, self.server.host)
        except XBuilderError as e:
            logger.warning("Failed to signal remote process %s on %s: %s", pid, self.server.host, e)

    def close(self) -> None:
        """Close the master connection and remove the control socket directory."""
        if self._master is not None:
            if self._master.poll() is None:
                try:
                    subprocess.run(
                        ["ssh", "-S", self.control_path, "-O", "exit", self.target],
                        capture_output=True,
                        timeout=5,
                    )
                except subprocess.TimeoutExpired:
                    logger.debug("SSH control exit timed out for %s", self.server.host)
                if self._master.poll() is None:
                    self._master.terminate()
                try:
                    self._master.wait(timeout=self.kill_grace.total_seconds())
                except subprocess.TimeoutExpired:
                    self._master.kill()
                    self._master.wait()
            if self._master.stderr is not None:
                self._master.stderr.close()
            self._master = None
            logger.debug("SSH disconnected from %s", self.server.host)

        if self._control_dir is not None:
            shutil.rmtree(self._control_dir, ignore_errors=True)
            self._control_dir = None


class RemoteDeployExecutor(Executor):
    """
    Run configured commands or a script on a remote server.

    Mode selection: ``local_script`` (upload then run), else ``script`` (a
    path on the remote host), else ``commands`` (one invocation joined with
    ``&&``). The task timeout covers the whole task, connection included.
    """

    def __init__(
        self,
        task_name: str,
        config: RemoteDeployConfig,
        server: ServerDescriptor,
        *,
        timeout: timedelta,
        engine: EngineConfig,
    ) -> None:
        super().__init__(task_name)
        self.config = config
        self.server = server
        self.timeout = timeout
        self.engine = engine
        self._deadline = 0.0

    def create_session(self) -> SSHSession:
        return SSHSession(
            self.server,
            connect_timeout=timedelta(seconds=self.engine.ssh_connect_timeout_seconds),
            task_name=self.task_name,
            kill_grace=self.engine.kill_grace,
            poll_interval=self.engine.poll_interval,
        )

    def execute(self, cancel: CancellationToken, on_output: OutputHandler) -> ExecutionResult:
        self._deadline = time.monotonic() + self.timeout.total_seconds()

        script_content: bytes | None = None
        if self.config.local_script:
            script_content = self._read_local_script(self.config.local_script)

        on_output(f"Connecting to {self.server.address}", False)
        session = self.create_session()
        session.connect(cancel)
        try:
            on_output("Connected", False)
            on_output("", False)

            if script_content is not None:
                self._run_local_script(session, script_content, cancel, on_output)
            elif self.config.script:
                self._run_remote_script(session, self.config.script, cancel, on_output)
            else:
                self._run_commands(session, cancel, on_output)
        finally:
            session.close()

        return ExecutionResult()

    def _remaining(self, command: str) -> timedelta:
        remaining = self._deadline - time.monotonic()
        if remaining <= 0:
            raise ProcessTimeoutError(command, self.timeout, task_name=self.task_name)
        return timedelta(seconds=remaining)

    def _run_commands(self, session: SSHSession, cancel: CancellationToken, on_output: OutputHandler) -> None:
        commands = self.config.commands
        if not commands:
            on_output("No commands configured", False)
            return

        for i, command in enumerate(commands, start=1):
            on_output(f"[{i}/{len(commands)}] {command}", False)
        on_output("", False)

        combined = join_commands(commands)
        session.run(combined, cancel, on_output, timeout=self._remaining(combined))

    def _run_remote_script(
        self,
        session: SSHSession,
        script: str,
        cancel: CancellationToken,
        on_output: OutputHandler,
    ) -> None:
        # Arguments after the path are passed through unchanged
        path = script_path(script)
        check = f"test -f {shlex.quote(path)}"
        try:
            session.run(check, cancel, on_output, timeout=self._remaining(check))
        except RemoteCommandError as e:
            raise ScriptNotFoundError(path, remote=True, task_name=self.task_name) from e

        on_output(f"Running remote script: {script}", False)
        session.run(script, cancel, on_output, timeout=self._remaining(script))

    def _read_local_script(self, path: str) -> bytes:
        try:
            with open(path, "rb") as f:
                return f.read()
        except FileNotFoundError as e:
            raise ScriptNotFoundError(path, task_name=self.task_name) from e

    def _run_local_script(
        self,
        session: SSHSession,
        content: bytes,
        cancel: CancellationToken,
        on_output: OutputHandler,
    ) -> None:
        remote_path = f"{self.engine.remote_tmp_dir.rstrip('/')}/xbuilder_script_{ULID()}.sh"
        quoted = shlex.quote(remote_path)

        on_output(f"Uploading {self.config.local_script} to {remote_path}", False)
        upload = f"cat > {quoted} && chmod +x {quoted}"
        try:
            session.run(upload, cancel, on_output, timeout=self._remaining(upload), stdin_data=content)
            on_output("Upload complete, running script", False)
            on_output("", False)
            session.run(quoted, cancel, on_output, timeout=self._remaining(remote_path))
        finally:
            self._remove_remote(session, quoted)

    def _remove_remote(self, session: SSHSession, quoted_path: str) -> None:
        if not session.connected:
            return
        try:
            session.run(
                f"rm -f {quoted_path}",
                CancellationToken(),
                lambda text, is_error: None,
                timeout=self.engine.kill_grace,
            )
        except XBuilderError as e:
            logger.warning("Failed to remove remote script %s: %s", quoted_path, e)
