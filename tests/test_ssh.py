"""Tests for SSH sessions and the remote deploy executor.

No SSH server is needed: the local ssh invocations are replaced with mocks.
"""

from __future__ import annotations

import shlex
from datetime import timedelta
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from xbuilder.cancellation import CancellationToken
from xbuilder.config import EngineConfig
from xbuilder.errors import (
    ConfigurationError,
    ProcessCancelledError,
    ProcessExecutionError,
    RemoteCommandError,
    RemoteConnectionError,
    ScriptNotFoundError,
)
from xbuilder.executors.ssh import (
    PID_MARKER,
    RemoteDeployExecutor,
    SSHSession,
    join_commands,
    script_path,
    wrap_remote_command,
)
from xbuilder.models.descriptors import AuthType, ServerAuth, ServerDescriptor
from xbuilder.models.pipeline import RemoteDeployConfig

from tests.conftest import OutputCollector

KEY_SERVER = ServerDescriptor(
    name="prod-1",
    host="10.0.0.5",
    username="deploy",
    auth=ServerAuth(type=AuthType.KEY, key_path="~/.ssh/id_ed25519"),
    port=2222,
)
PASSWORD_SERVER = ServerDescriptor(
    name="prod-2",
    host="10.0.0.6",
    username="root",
    auth=ServerAuth(type=AuthType.PASSWORD, password="hunter2"),
)


class TestCommandHelpers:
    def test_join_commands(self) -> None:
        assert join_commands(["cd /a", "ls"]) == "cd /a && ls"

    def test_join_single(self) -> None:
        assert join_commands(["uptime"]) == "uptime"

    def test_script_path(self) -> None:
        assert script_path("/opt/deploy.sh") == "/opt/deploy.sh"
        assert script_path("/opt/deploy.sh prod") == "/opt/deploy.sh"
        assert script_path("'/opt/my scripts/deploy.sh' prod") == "/opt/my scripts/deploy.sh"

    def test_script_path_invalid(self) -> None:
        with pytest.raises(ConfigurationError):
            script_path("/opt/deploy.sh 'prod")

    def test_wrap_reports_pid_then_execs(self) -> None:
        wrapped = wrap_remote_command("cd /a && ls")

        assert wrapped == f"echo {PID_MARKER}$$; exec /bin/sh -c {shlex.quote('cd /a && ls')}"


class TestSSHSessionArgv:
    """Connection options per auth type."""

    def test_key_auth_options(self) -> None:
        session = SSHSession(KEY_SERVER, connect_timeout=timedelta(seconds=30))
        opts = session.connection_options()

        assert opts[:2] == ["-p", "2222"]
        assert "StrictHostKeyChecking=no" in opts
        assert "ConnectTimeout=30" in opts
        assert "BatchMode=yes" in opts
        key = opts[opts.index("-i") + 1]
        assert not key.startswith("~")
        assert key.endswith(".ssh/id_ed25519")

    def test_password_auth_uses_sshpass(self) -> None:
        session = SSHSession(PASSWORD_SERVER, connect_timeout=timedelta(seconds=30))
        session._control_dir = "/tmp/xbuilder-test"

        argv = session.master_argv()

        assert argv[:3] == ["sshpass", "-e", "ssh"]
        assert "PubkeyAuthentication=no" in argv
        assert "hunter2" not in argv
        assert argv[-1] == "root@10.0.0.6"

    def test_session_argv_uses_control_socket(self) -> None:
        session = SSHSession(KEY_SERVER, connect_timeout=timedelta(seconds=30))
        session._control_dir = "/tmp/xbuilder-test"

        argv = session.session_argv("uptime")

        assert argv[argv.index("-S") + 1] == "/tmp/xbuilder-test/ctl"
        assert argv[-2:] == ["deploy@10.0.0.5", "uptime"]

    def test_control_path_requires_connection(self) -> None:
        session = SSHSession(KEY_SERVER, connect_timeout=timedelta(seconds=30))

        with pytest.raises(RemoteConnectionError):
            _ = session.control_path

    def test_missing_key_file(self, cancel: CancellationToken, tmp_path: Path) -> None:
        server = ServerDescriptor(
            name="x",
            host="h",
            username="u",
            auth=ServerAuth(type=AuthType.KEY, key_path=str(tmp_path / "missing")),
        )

        with pytest.raises(RemoteConnectionError, match="key file not found"):
            SSHSession(server, connect_timeout=timedelta(seconds=1)).connect(cancel)


class TestSSHSessionRun:
    """Remote command execution through a patched ProcessRunner."""

    @pytest.fixture
    def session(self) -> SSHSession:
        session = SSHSession(KEY_SERVER, connect_timeout=timedelta(seconds=30), task_name="deploy")
        session._control_dir = "/tmp/xbuilder-test"
        return session

    def _patch_runner(self, lines: list[tuple[str, bool]] = (), error: Exception | None = None):  # type: ignore[no-untyped-def,assignment]
        created: list[MagicMock] = []

        def make(argv, **kwargs):  # type: ignore[no-untyped-def]
            runner = MagicMock()
            runner.argv = argv

            def run(cancel, on_output):  # type: ignore[no-untyped-def]
                for text, is_error in lines:
                    on_output(text, is_error)
                if error is not None:
                    raise error

            runner.run.side_effect = run
            created.append(runner)
            return runner

        return patch("xbuilder.executors.ssh.ProcessRunner", side_effect=make), created

    def test_pid_line_is_hidden(self, session: SSHSession, cancel: CancellationToken, output: OutputCollector) -> None:
        patcher, created = self._patch_runner([(f"{PID_MARKER}4242", False), ("file-a", False), ("warn", True)])
        with patcher:
            session.run("cd /a && ls", cancel, output, timeout=timedelta(seconds=10))

        assert output.lines == [("file-a", False), ("warn", True)]
        assert created[0].argv[-1] == wrap_remote_command("cd /a && ls")

    def test_nonzero_exit(self, session: SSHSession, cancel: CancellationToken, output: OutputCollector) -> None:
        patcher, _ = self._patch_runner(error=ProcessExecutionError("failed", returncode=2))
        with patcher:
            with pytest.raises(RemoteCommandError) as exc_info:
                session.run("false", cancel, output, timeout=timedelta(seconds=10))

        assert exc_info.value.exit_code == 2
        assert exc_info.value.host == "10.0.0.5"

    def test_connection_failure(self, session: SSHSession, cancel: CancellationToken, output: OutputCollector) -> None:
        patcher, _ = self._patch_runner(error=ProcessExecutionError("failed", returncode=255))
        with patcher:
            with pytest.raises(RemoteConnectionError):
                session.run("ls", cancel, output, timeout=timedelta(seconds=10))

    def test_remote_exit_255_is_command_error(
        self, session: SSHSession, cancel: CancellationToken, output: OutputCollector
    ) -> None:
        patcher, _ = self._patch_runner(
            [(f"{PID_MARKER}4242", False)], error=ProcessExecutionError("failed", returncode=255)
        )
        with patcher:
            with pytest.raises(RemoteCommandError) as exc_info:
                session.run("exit 255", cancel, output, timeout=timedelta(seconds=10))

        assert exc_info.value.exit_code == 255

    def test_cancel_signals_remote_process(self, session: SSHSession, cancel: CancellationToken) -> None:
        patcher, created = self._patch_runner([(f"{PID_MARKER}4242", False)], error=ProcessCancelledError())
        with patcher, patch.object(SSHSession, "connected", new=True):
            with pytest.raises(ProcessCancelledError):
                session.run("sleep 100", cancel, lambda text, is_error: None, timeout=timedelta(seconds=10))

        assert len(created) == 2
        assert created[1].argv[-1] == "kill -TERM -- -4242 2>/dev/null || kill -TERM 4242"


class TestRemoteDeployExecutor:
    """Mode selection with a mocked session."""

    def _executor(self, config: RemoteDeployConfig, session: MagicMock) -> RemoteDeployExecutor:
        executor = RemoteDeployExecutor(
            "deploy",
            config,
            KEY_SERVER,
            timeout=timedelta(minutes=5),
            engine=EngineConfig(),
        )
        executor.create_session = MagicMock(return_value=session)  # type: ignore[method-assign]
        return executor

    def test_commands_joined(self, cancel: CancellationToken, output: OutputCollector) -> None:
        session = MagicMock()
        executor = self._executor(RemoteDeployConfig(server="prod-1", commands=("cd /a", "ls")), session)

        executor.execute(cancel, output)

        session.connect.assert_called_once_with(cancel)
        assert session.run.call_count == 1
        assert session.run.call_args.args[0] == "cd /a && ls"
        session.close.assert_called_once()
        assert "[1/2] cd /a" in output.stdout

    def test_remote_script(self, cancel: CancellationToken, output: OutputCollector) -> None:
        session = MagicMock()
        executor = self._executor(RemoteDeployConfig(server="prod-1", script="/opt/deploy.sh"), session)

        executor.execute(cancel, output)

        commands = [call.args[0] for call in session.run.call_args_list]
        assert commands == ["test -f /opt/deploy.sh", "/opt/deploy.sh"]

    def test_remote_script_with_arguments(self, cancel: CancellationToken, output: OutputCollector) -> None:
        session = MagicMock()
        executor = self._executor(RemoteDeployConfig(server="prod-1", script="/opt/deploy.sh prod --force"), session)

        executor.execute(cancel, output)

        commands = [call.args[0] for call in session.run.call_args_list]
        assert commands == ["test -f /opt/deploy.sh", "/opt/deploy.sh prod --force"]

    def test_remote_script_missing(self, cancel: CancellationToken, output: OutputCollector) -> None:
        session = MagicMock()
        session.run.side_effect = RemoteCommandError("failed", exit_code=1)
        executor = self._executor(RemoteDeployConfig(server="prod-1", script="/opt/missing.sh"), session)

        with pytest.raises(ScriptNotFoundError) as exc_info:
            executor.execute(cancel, output)

        assert exc_info.value.remote
        session.close.assert_called_once()

    def test_local_script_upload(self, cancel: CancellationToken, output: OutputCollector, tmp_path: Path) -> None:
        script = tmp_path / "deploy.sh"
        script.write_text("echo deploying\n")
        session = MagicMock()
        session.connected = True
        executor = self._executor(
            RemoteDeployConfig(server="prod-1", local_script=str(script), commands=("ignored",)),
            session,
        )

        executor.execute(cancel, output)

        calls = session.run.call_args_list
        assert len(calls) == 3
        upload, run, cleanup = (call.args[0] for call in calls)
        assert upload.startswith("cat > /tmp/xbuilder_script_") and "chmod +x" in upload
        assert calls[0].kwargs["stdin_data"] == b"echo deploying\n"
        assert run.startswith("/tmp/xbuilder_script_") and run.endswith(".sh")
        assert cleanup == f"rm -f {run}"

    def test_local_script_missing(self, cancel: CancellationToken, output: OutputCollector) -> None:
        session = MagicMock()
        executor = self._executor(RemoteDeployConfig(server="prod-1", local_script="/nonexistent/deploy.sh"), session)

        with pytest.raises(ScriptNotFoundError):
            executor.execute(cancel, output)

        session.connect.assert_not_called()

    def test_session_closed_on_failure(self, cancel: CancellationToken, output: OutputCollector) -> None:
        session = MagicMock()
        session.run.side_effect = RemoteCommandError("failed", exit_code=3)
        executor = self._executor(RemoteDeployConfig(server="prod-1", commands=("false",)), session)

        with pytest.raises(RemoteCommandError):
            executor.execute(cancel, output)

        session.close.assert_called_once()
