"""
Engine configuration for xbuilder.

Provides runtime settings for the execution engine (default timeouts,
output batching, remote sessions), with support for loading from
environment variables.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import timedelta

from xbuilder.models.pipeline import TaskKind


@dataclass
class EngineConfig:
    """Execution engine settings.

    All values have defaults; a task's own ``timeout`` always wins over the
    per-kind default.

    Environment Variables:
        XBUILDER_BUILD_TIMEOUT_S: Build-tool default timeout (default: 1800)
        XBUILDER_IMAGE_BUILD_TIMEOUT_S: Image build default timeout (default: 1800)
        XBUILDER_IMAGE_PUSH_TIMEOUT_S: Image push default timeout (default: 1200)
        XBUILDER_REMOTE_DEPLOY_TIMEOUT_S: Remote deploy default timeout (default: 600)
        XBUILDER_SHELL_TIMEOUT_S: Generic shell default timeout (default: 600)

        XBUILDER_LOGIN_TIMEOUT_S: Registry login timeout (default: 30)
        XBUILDER_TAG_TIMEOUT_S: Local re-tag timeout (default: 30)
        XBUILDER_SSH_CONNECT_TIMEOUT_S: Remote connection timeout (default: 30)
        XBUILDER_REMOTE_TMP_DIR: Directory for uploaded scripts (default: /tmp)

        XBUILDER_SHELL: Shell used for shell-string commands (default: /bin/sh)
        XBUILDER_KILL_GRACE_S: Seconds between SIGTERM and SIGKILL (default: 5)
        XBUILDER_POLL_INTERVAL_MS: Process wait poll interval (default: 50)

        XBUILDER_BATCH_MAX_LINES: Max lines per output batch (default: 200)
        XBUILDER_BATCH_FLUSH_MS: Output batch flush interval (default: 120)
        XBUILDER_BATCH_QUEUE_SIZE: Bounded output queue capacity (default: 2048)
        XBUILDER_OUTPUT_TAIL_LINES: Lines kept per task for diagnostics (default: 20)
    """

    build_timeout_seconds: float = 1800.0
    image_build_timeout_seconds: float = 1800.0
    image_push_timeout_seconds: float = 1200.0
    remote_deploy_timeout_seconds: float = 600.0
    shell_timeout_seconds: float = 600.0

    login_timeout_seconds: float = 30.0
    tag_timeout_seconds: float = 30.0
    ssh_connect_timeout_seconds: float = 30.0
    remote_tmp_dir: str = "/tmp"

    shell: str = "/bin/sh"
    kill_grace_seconds: float = 5.0
    poll_interval_ms: int = 50

    batch_max_lines: int = 200
    batch_flush_interval_ms: int = 120
    batch_queue_size: int = 2048
    output_tail_lines: int = 20

    @classmethod
    def from_env(cls) -> EngineConfig:
        """Load configuration from environment variables with defaults.

        Returns:
            EngineConfig with values loaded from environment or defaults
        """
        return cls(
            build_timeout_seconds=float(os.getenv("XBUILDER_BUILD_TIMEOUT_S", "1800")),
            image_build_timeout_seconds=float(os.getenv("XBUILDER_IMAGE_BUILD_TIMEOUT_S", "1800")),
            image_push_timeout_seconds=float(os.getenv("XBUILDER_IMAGE_PUSH_TIMEOUT_S", "1200")),
            remote_deploy_timeout_seconds=float(os.getenv("XBUILDER_REMOTE_DEPLOY_TIMEOUT_S", "600")),
            shell_timeout_seconds=float(os.getenv("XBUILDER_SHELL_TIMEOUT_S", "600")),
            login_timeout_seconds=float(os.getenv("XBUILDER_LOGIN_TIMEOUT_S", "30")),
            tag_timeout_seconds=float(os.getenv("XBUILDER_TAG_TIMEOUT_S", "30")),
            ssh_connect_timeout_seconds=float(os.getenv("XBUILDER_SSH_CONNECT_TIMEOUT_S", "30")),
            remote_tmp_dir=os.getenv("XBUILDER_REMOTE_TMP_DIR", "/tmp"),
            shell=os.getenv("XBUILDER_SHELL", "/bin/sh"),
            kill_grace_seconds=float(os.getenv("XBUILDER_KILL_GRACE_S", "5")),
            poll_interval_ms=int(os.getenv("XBUILDER_POLL_INTERVAL_MS", "50")),
            batch_max_lines=int(os.getenv("XBUILDER_BATCH_MAX_LINES", "200")),
            batch_flush_interval_ms=int(os.getenv("XBUILDER_BATCH_FLUSH_MS", "120")),
            batch_queue_size=int(os.getenv("XBUILDER_BATCH_QUEUE_SIZE", "2048")),
            output_tail_lines=int(os.getenv("XBUILDER_OUTPUT_TAIL_LINES", "20")),
        )

    def default_timeout(self, kind: TaskKind) -> timedelta:
        """Get the default timeout for a task kind."""
        seconds = {
            TaskKind.BUILD: self.build_timeout_seconds,
            TaskKind.IMAGE_BUILD: self.image_build_timeout_seconds,
            TaskKind.IMAGE_PUSH: self.image_push_timeout_seconds,
            TaskKind.REMOTE_DEPLOY: self.remote_deploy_timeout_seconds,
            TaskKind.SHELL: self.shell_timeout_seconds,
        }[kind]
        return timedelta(seconds=seconds)

    def resolve_timeout(self, kind: TaskKind, configured_seconds: float | None) -> timedelta:
        """Get the effective timeout: the task's own value, else the kind default."""
        if configured_seconds is not None and configured_seconds > 0:
            return timedelta(seconds=configured_seconds)
        return self.default_timeout(kind)

    @property
    def kill_grace(self) -> timedelta:
        return timedelta(seconds=self.kill_grace_seconds)

    @property
    def poll_interval(self) -> timedelta:
        return timedelta(milliseconds=self.poll_interval_ms)


# Singleton for default engine config (loaded lazily)
_default_engine_config: EngineConfig | None = None


def get_engine_config() -> EngineConfig:
    """Get the default EngineConfig, loading from environment on first call."""
    global _default_engine_config
    if _default_engine_config is None:
        _default_engine_config = EngineConfig.from_env()
    return _default_engine_config


def reset_engine_config() -> None:
    """Reset the engine config singleton. Useful for testing."""
    global _default_engine_config
    _default_engine_config = None
