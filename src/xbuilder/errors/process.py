"""Local process errors."""

from __future__ import annotations

import signal
from datetime import timedelta

from xbuilder.errors.base import XBuilderError


class ProcessError(XBuilderError):
    """Base class for failures of a spawned process."""

    code: int = 300


class ProcessTimeoutError(ProcessError):
    """The process exceeded its configured timeout and was killed."""

    code: int = 301

    def __init__(self, command: str, timeout: timedelta, *, task_name: str | None = None) -> None:
        super().__init__(
            f"Command timed out after {format_duration(timeout)}: {command}",
            task_name=task_name,
        )
        self.command = command
        self.timeout = timeout


class ProcessCancelledError(ProcessError):
    """The run was cancelled while the process was running."""

    code: int = 302

    def __init__(self, message: str = "Command was cancelled", *, task_name: str | None = None) -> None:
        super().__init__(message, task_name=task_name)


class ProcessExecutionError(ProcessError):
    """The process could not be started or exited with a nonzero status.

    Attributes:
        returncode: Exit status; negative values mean the process was killed
            by that signal number. None when the process never started.
    """

    code: int = 303

    def __init__(
        self,
        message: str,
        *,
        returncode: int | None = None,
        cause: BaseException | None = None,
        task_name: str | None = None,
    ) -> None:
        super().__init__(message, cause=cause, task_name=task_name)
        self.returncode = returncode

    @classmethod
    def from_returncode(cls, command: str, returncode: int, *, task_name: str | None = None) -> ProcessExecutionError:
        """Build an error describing how the process ended."""
        return cls(
            f"Command failed ({describe_returncode(returncode)}): {command}",
            returncode=returncode,
            task_name=task_name,
        )


class ScriptNotFoundError(XBuilderError):
    """A local or remote script path does not exist."""

    code: int = 304

    def __init__(self, path: str, *, remote: bool = False, task_name: str | None = None) -> None:
        where = "Remote" if remote else "Local"
        super().__init__(f"{where} script not found: {path}", task_name=task_name)
        self.path = path
        self.remote = remote


def describe_returncode(returncode: int) -> str:
    """Render an exit status, naming the signal for negative values."""
    if returncode < 0:
        try:
            name = signal.Signals(-returncode).name
        except ValueError:
            name = f"signal {-returncode}"
        return f"killed by {name}"
    return f"exit code {returncode}"


def format_duration(duration: timedelta) -> str:
    """Format a duration as 850ms, 12.5s, or 3m20s."""
    seconds = duration.total_seconds()
    if seconds < 1:
        return f"{int(seconds * 1000)}ms"
    if seconds < 60:
        return f"{seconds:.1f}s"
    minutes = int(seconds // 60)
    return f"{minutes}m{int(seconds) % 60}s"
