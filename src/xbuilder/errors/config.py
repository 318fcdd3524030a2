"""Configuration and reference errors.

These fail a task before any process is started.
"""

from __future__ import annotations

from xbuilder.errors.base import XBuilderError


class ConfigurationError(XBuilderError):
    """Invalid task or engine configuration.

    Raised when a task's kind configuration cannot be turned into an
    executor, e.g. a shell task with neither command nor script.
    """

    code: int = 200


class ConfigReferenceError(ConfigurationError):
    """A referenced registry, server, or task kind does not exist."""

    code: int = 201

    def __init__(
        self,
        message: str,
        *,
        reference: str | None = None,
        task_name: str | None = None,
    ) -> None:
        super().__init__(message, task_name=task_name)
        self.reference = reference


class SelectionError(ConfigurationError):
    """A task selection filter produced an invalid or empty pipeline."""

    code: int = 202
