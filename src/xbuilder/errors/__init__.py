"""xbuilder error hierarchy.

All error classes are re-exported here. Import from ``xbuilder.errors``.
"""

from xbuilder.errors.base import XBuilderError, truncate_error
from xbuilder.errors.config import ConfigReferenceError, ConfigurationError, SelectionError
from xbuilder.errors.pipeline import StageError
from xbuilder.errors.process import (
    ProcessCancelledError,
    ProcessError,
    ProcessExecutionError,
    ProcessTimeoutError,
    ScriptNotFoundError,
)
from xbuilder.errors.registry import ImagePushError, RegistryError, RegistryLoginError
from xbuilder.errors.remote import RemoteCommandError, RemoteConnectionError, RemoteError

__all__ = [
    "ConfigReferenceError",
    "ConfigurationError",
    "ImagePushError",
    "ProcessCancelledError",
    "ProcessError",
    "ProcessExecutionError",
    "ProcessTimeoutError",
    "RegistryError",
    "RegistryLoginError",
    "RemoteCommandError",
    "RemoteConnectionError",
    "RemoteError",
    "ScriptNotFoundError",
    "SelectionError",
    "StageError",
    "XBuilderError",
    "truncate_error",
]
