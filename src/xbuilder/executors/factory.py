"""
Executor factory.

Turns a TaskSpec into the Executor for its kind. Construction failures (an
unknown server or registry, an incomplete shell task) surface as errors here
and fail the task before any process is started.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping

from xbuilder.config import EngineConfig
from xbuilder.errors import ConfigReferenceError
from xbuilder.executors.build import BuildToolExecutor
from xbuilder.executors.docker import ImageBuildExecutor, ImagePushExecutor
from xbuilder.executors.interface import Executor
from xbuilder.executors.shell import ShellExecutor
from xbuilder.executors.ssh import RemoteDeployExecutor
from xbuilder.models.descriptors import RegistryDescriptor, ServerDescriptor
from xbuilder.models.pipeline import (
    BuildConfig,
    ImageBuildConfig,
    ImagePushConfig,
    RemoteDeployConfig,
    ShellConfig,
    TaskSpec,
)
from xbuilder.models.run_state import RunState

logger = logging.getLogger(__name__)


class ExecutorFactory:
    """
    Builds executors for one run.

    Holds the server and registry descriptors and the engine settings. The
    run state is only read, to hand an auto push its snapshot of images.
    """

    def __init__(
        self,
        servers: Mapping[str, ServerDescriptor],
        registries: Mapping[str, RegistryDescriptor],
        engine: EngineConfig,
    ) -> None:
        self.servers = servers
        self.registries = registries
        self.engine = engine

    def create(self, spec: TaskSpec, run_state: RunState) -> Executor:
        """
        Create the executor for ``spec``.

        Raises:
            ConfigReferenceError: If a referenced server or registry is unknown
            ConfigurationError: If the task configuration is incomplete
        """
        timeout = self.engine.resolve_timeout(spec.kind, spec.timeout)

        match spec.config:
            case BuildConfig() as cfg:
                return BuildToolExecutor(spec.name, cfg, timeout=timeout, engine=self.engine)

            case ImageBuildConfig() as cfg:
                return ImageBuildExecutor(spec.name, cfg, timeout=timeout, engine=self.engine)

            case ImagePushConfig() as cfg:
                registry = self._registry(spec.name, cfg.registry)
                images = run_state.pending_push() if cfg.auto else list(cfg.images)
                if cfg.auto:
                    logger.debug("Auto push for %s: %d image(s) pending", spec.name, len(images))
                return ImagePushExecutor(
                    spec.name,
                    cfg,
                    registry,
                    images=images,
                    timeout=timeout,
                    engine=self.engine,
                )

            case RemoteDeployConfig() as cfg:
                server = self.servers.get(cfg.server)
                if server is None:
                    raise ConfigReferenceError(
                        f"Server not found: {cfg.server!r}",
                        reference=cfg.server,
                        task_name=spec.name,
                    )
                return RemoteDeployExecutor(spec.name, cfg, server, timeout=timeout, engine=self.engine)

            case ShellConfig() as cfg:
                return ShellExecutor(spec.name, cfg, timeout=timeout, engine=self.engine)

            case _:
                raise ConfigReferenceError(
                    f"Unsupported task kind: {type(spec.config).__name__}",
                    reference=type(spec.config).__name__,
                    task_name=spec.name,
                )

    def _registry(self, task_name: str, name: str | None) -> RegistryDescriptor | None:
        if not name:
            return None
        registry = self.registries.get(name)
        if registry is None:
            raise ConfigReferenceError(f"Registry not found: {name!r}", reference=name, task_name=task_name)
        return registry
