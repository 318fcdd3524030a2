"""Remote-shell errors."""

from __future__ import annotations

from xbuilder.errors.base import XBuilderError


class RemoteError(XBuilderError):
    """Base class for remote session failures.

    Contains the target host for troubleshooting.
    """

    code: int = 400

    def __init__(
        self,
        message: str,
        *,
        host: str | None = None,
        cause: BaseException | None = None,
        task_name: str | None = None,
    ) -> None:
        super().__init__(message, cause=cause, task_name=task_name)
        self.host = host


class RemoteConnectionError(RemoteError):
    """The remote-shell connection could not be established or was lost."""

    code: int = 401


class RemoteCommandError(RemoteError):
    """A remote command exited with a nonzero status."""

    code: int = 402

    def __init__(
        self,
        message: str,
        *,
        exit_code: int | None = None,
        host: str | None = None,
        cause: BaseException | None = None,
        task_name: str | None = None,
    ) -> None:
        super().__init__(message, host=host, cause=cause, task_name=task_name)
        self.exit_code = exit_code
