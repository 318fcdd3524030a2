"""Image registry errors."""

from __future__ import annotations

from xbuilder.errors.base import XBuilderError


class RegistryError(XBuilderError):
    """Base class for image registry failures."""

    code: int = 500


class RegistryLoginError(RegistryError):
    """Logging in to the image registry failed."""

    code: int = 501

    def __init__(self, registry_url: str, *, cause: BaseException | None = None, task_name: str | None = None) -> None:
        super().__init__(f"Registry login failed: {registry_url}", cause=cause, task_name=task_name)
        self.registry_url = registry_url


class ImagePushError(RegistryError):
    """Pushing or re-tagging an image failed."""

    code: int = 502

    def __init__(
        self,
        message: str,
        *,
        image: str,
        cause: BaseException | None = None,
        task_name: str | None = None,
    ) -> None:
        super().__init__(message, cause=cause, task_name=task_name)
        self.image = image
