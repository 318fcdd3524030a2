"""Base exception hierarchy for xbuilder.

Every failure surfaced by the engine derives from XBuilderError so the
orchestrator can attach it to the failing task and report it in the
pipeline-completed event.
"""

from __future__ import annotations

from typing import Any


class XBuilderError(Exception):
    """Base class for all xbuilder errors.

    Attributes:
        code: Numeric error code for programmatic handling
        cause: Optional original exception that caused this error
        task_name: Name of the task the error belongs to, if known
        details: Free-form diagnostic details
    """

    code: int = 100

    def __init__(
        self,
        message: str,
        *,
        code: int | None = None,
        cause: BaseException | None = None,
        task_name: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.cause = cause
        self.task_name = task_name
        self.details = details or {}

    def __str__(self) -> str:
        parts = [self.message]
        if self.cause is not None:
            parts.append(f"caused by: {self.cause}")
        return " ".join(parts)


def truncate_error(message: str, max_bytes: int = 16_384) -> str:
    """Truncate an error message to max_bytes, appending a '[TRUNCATED]' marker.

    Args:
        message: The error message to truncate
        max_bytes: Maximum size in bytes

    Returns:
        Original message if within limit, otherwise truncated with marker.
    """
    if not message:
        return message

    encoded = message.encode("utf-8", errors="replace")
    if len(encoded) <= max_bytes:
        return message

    marker = " [TRUNCATED]"
    target_bytes = max_bytes - len(marker.encode("utf-8"))
    if target_bytes <= 0:
        return marker.strip()

    return encoded[:target_bytes].decode("utf-8", errors="ignore") + marker
