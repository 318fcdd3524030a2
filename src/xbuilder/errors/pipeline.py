"""Stage-level errors."""

from __future__ import annotations

from xbuilder.errors.base import XBuilderError


class StageError(XBuilderError):
    """A stage failed because one of its tasks failed.

    The cause is the first (lowest task index) task error of the stage.
    """

    code: int = 600

    def __init__(
        self,
        message: str,
        *,
        stage_index: int,
        stage_name: str,
        cause: BaseException | None = None,
        task_name: str | None = None,
    ) -> None:
        super().__init__(message, cause=cause, task_name=task_name)
        self.stage_index = stage_index
        self.stage_name = stage_name
