"""
Executor interface.

An Executor is the runtime behavior bound to a task's kind. Executors are
built per task by the factory, stream output through ``on_output`` while
running, and either return an ExecutionResult or raise an XBuilderError.

Example:
    class EchoExecutor(Executor):
        def execute(self, cancel, on_output):
            ProcessRunner("echo hello", name=self.task_name, timeout=timedelta(seconds=5)).run(cancel, on_output)
            return ExecutionResult()
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from xbuilder.cancellation import CancellationToken

# (text, is_error) -> None. Called from reader threads; must be thread-safe.
OutputHandler = Callable[[str, bool], None]


@dataclass(frozen=True)
class ExecutionResult:
    """
    What an executor hands back to the orchestrator.

    Attributes:
        built_image: Fully-qualified reference produced by an image build
        pushed_images: References the executor pushed itself
    """

    built_image: str | None = None
    pushed_images: tuple[str, ...] = ()


class Executor(ABC):
    """
    Base interface for all task-kind executors.

    ``execute`` blocks until the work finishes, its timeout elapses, or
    ``cancel`` is triggered, whichever comes first.
    """

    def __init__(self, task_name: str) -> None:
        self.task_name = task_name

    @abstractmethod
    def execute(self, cancel: CancellationToken, on_output: OutputHandler) -> ExecutionResult:
        """
        Run the task.

        Args:
            cancel: Run-wide cancellation token
            on_output: Receives every output line with its stream origin

        Returns:
            ExecutionResult describing images built or pushed

        Raises:
            XBuilderError: Any failure, already classified
        """
        pass

    def __repr__(self) -> str:
        return f"{type(self).__name__}(task_name={self.task_name!r})"
