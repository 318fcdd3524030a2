"""
TaskStatus enum.

Each status has two boolean properties:
- complete: Whether the task has reached a terminal state
- failure: Whether the terminal state fails the run
"""

from enum import Enum


class TaskStatus(Enum):
    """
    Runtime task status.

    Each value is a tuple of (name, complete, failure).
    """

    # The task has yet to start
    PENDING = ("PENDING", False, False)

    # The task's executor is running
    RUNNING = ("RUNNING", False, False)

    # The executor returned without error
    SUCCESS = ("SUCCESS", True, False)

    # The executor (or its construction) failed
    FAILED = ("FAILED", True, True)

    # The task never started because the run had already failed
    SKIPPED = ("SKIPPED", True, False)

    # The run was cancelled while the task was running
    CANCELLED = ("CANCELLED", True, True)

    def __init__(self, name: str, complete: bool, failure: bool) -> None:
        self._name = name
        self._complete = complete
        self._failure = failure

    @property
    def is_complete(self) -> bool:
        """
        Indicates that the task has finished.

        Returns True for: SUCCESS, FAILED, SKIPPED, CANCELLED
        """
        return self._complete

    @property
    def is_failure(self) -> bool:
        """Returns True for: FAILED, CANCELLED"""
        return self._failure

    def __str__(self) -> str:
        return self._name

    def __repr__(self) -> str:
        return f"TaskStatus.{self.name}"
