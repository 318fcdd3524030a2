"""
Container image executors.

This module provides:
- ImageBuildExecutor: ``docker build``, or ``docker buildx build`` for
  multi-platform images (which pushes as part of the build)
- ImagePushExecutor: registry login, ``docker push``, optional ``:latest``
  re-tag and push
- DockerfileScanner: discovers Dockerfiles under a directory and turns each
  into an image-build task

All docker invocations run in argv mode; registry passwords are passed on
stdin and never appear in a process argument list.
"""

from __future__ import annotations

import fnmatch
import logging
import os
import time
from collections.abc import Sequence
from dataclasses import replace
from datetime import timedelta

from xbuilder.cancellation import CancellationToken
from xbuilder.config import EngineConfig
from xbuilder.errors import ImagePushError, ProcessExecutionError, ProcessTimeoutError, RegistryLoginError
from xbuilder.executors.interface import ExecutionResult, Executor, OutputHandler
from xbuilder.executors.runner import ProcessRunner
from xbuilder.models.descriptors import RegistryDescriptor
from xbuilder.models.pipeline import AutoScanConfig, ImageBuildConfig, ImagePushConfig, TaskSpec

logger = logging.getLogger(__name__)


def latest_variant(image: str) -> str | None:
    """
    The ``:latest`` reference for an image, or None if no extra push is needed.

    Returns None when the tag already is ``latest`` or when the reference has
    no explicit tag (an untagged reference already means latest). A colon
    before the last slash belongs to a registry port, not a tag.

    Example:
        latest_variant("registry:5000/team/api:1.4") -> "registry:5000/team/api:latest"
        latest_variant("registry:5000/team/api") -> None
    """
    last_colon = image.rfind(":")
    last_slash = image.rfind("/")
    if last_colon == -1 or last_colon < last_slash:
        return None
    base, tag = image[:last_colon], image[last_colon + 1 :]
    if tag == "latest":
        return None
    return f"{base}:latest"


class ImageBuildExecutor(Executor):
    """
    Build a container image.

    Single-platform builds produce a local image that a later image-push task
    can push. With ``platforms`` set the build runs through buildx and always
    pushes directly (plus ``:latest`` when ``push_latest_on_build`` is set);
    no local image is left behind, so the pushed references are reported and
    an auto push skips them.
    """

    def __init__(self, task_name: str, config: ImageBuildConfig, *, timeout: timedelta, engine: EngineConfig) -> None:
        super().__init__(task_name)
        self.config = config
        self.timeout = timeout
        self.engine = engine

    @property
    def image_ref(self) -> str:
        return self.config.image_ref

    @property
    def multi_platform(self) -> bool:
        return bool(self.config.platforms)

    def pushed_refs(self) -> tuple[str, ...]:
        """References the build itself pushes."""
        if not self.multi_platform:
            return ()
        refs = [self.image_ref]
        latest = latest_variant(self.image_ref)
        if self.config.push_latest_on_build and latest:
            refs.append(latest)
        return tuple(refs)

    def build_argv(self) -> list[str]:
        cfg = self.config
        if self.multi_platform:
            argv = ["docker", "buildx", "build", "--platform", ",".join(cfg.platforms), "--push"]
            for ref in self.pushed_refs():
                argv.extend(["-t", ref])
        else:
            argv = ["docker", "build", "-t", self.image_ref]

        if cfg.dockerfile:
            argv.extend(["-f", cfg.dockerfile])
        for key in sorted(cfg.build_args):
            argv.extend(["--build-arg", f"{key}={cfg.build_args[key]}"])
        argv.append(cfg.context or ".")
        return argv

    def execute(self, cancel: CancellationToken, on_output: OutputHandler) -> ExecutionResult:
        argv = self.build_argv()

        on_output(f"Building image: {self.image_ref}", False)
        on_output(f"Dockerfile: {self.config.dockerfile}", False)
        on_output(f"Context: {self.config.context}", False)
        if self.multi_platform:
            on_output(f"Platforms: {', '.join(self.config.platforms)}", False)
            on_output("Multi-platform build pushes directly to the registry", False)
        on_output("", False)

        ProcessRunner(
            argv,
            name=self.task_name,
            timeout=self.timeout,
            working_dir=self.config.working_dir,
            kill_grace=self.engine.kill_grace,
            poll_interval=self.engine.poll_interval,
        ).run(cancel, on_output)

        logger.info("Built image %s", self.image_ref)
        return ExecutionResult(built_image=self.image_ref, pushed_images=self.pushed_refs())


class ImagePushExecutor(Executor):
    """
    Push images to a registry.

    ``images`` is the list to push, resolved by the caller: the configured
    references, or for an auto push the images built earlier in the run minus
    the ones their builds already pushed.
    """

    def __init__(
        self,
        task_name: str,
        config: ImagePushConfig,
        registry: RegistryDescriptor | None,
        *,
        images: Sequence[str],
        timeout: timedelta,
        engine: EngineConfig,
    ) -> None:
        super().__init__(task_name)
        self.config = config
        self.registry = registry
        self.images = list(images)
        self.timeout = timeout
        self.engine = engine
        self._deadline = 0.0

    def execute(self, cancel: CancellationToken, on_output: OutputHandler) -> ExecutionResult:
        self._deadline = time.monotonic() + self.timeout.total_seconds()

        if not self.images:
            on_output("No images to push", False)
            return ExecutionResult()

        if self.registry is not None and self.registry.has_credentials:
            self.login(cancel, on_output)

        pushed: list[str] = []
        for image in self.images:
            if image in pushed:
                continue
            self.push(image, cancel, on_output)
            pushed.append(image)

            if self.config.push_latest:
                latest = latest_variant(image)
                if latest is None or latest in pushed:
                    continue
                on_output(f"Tagging {image} as {latest}", False)
                self.tag(image, latest, cancel, on_output)
                self.push(latest, cancel, on_output)
                pushed.append(latest)

        on_output(f"Pushed {len(pushed)} image(s)", False)
        return ExecutionResult(pushed_images=tuple(pushed))

    def _remaining(self, command: str) -> timedelta:
        remaining = self._deadline - time.monotonic()
        if remaining <= 0:
            raise ProcessTimeoutError(command, self.timeout, task_name=self.task_name)
        return timedelta(seconds=remaining)

    def _runner(self, argv: list[str], timeout: timedelta, stdin_data: str | None = None) -> ProcessRunner:
        return ProcessRunner(
            argv,
            name=self.task_name,
            timeout=timeout,
            stdin_data=stdin_data,
            kill_grace=self.engine.kill_grace,
            poll_interval=self.engine.poll_interval,
        )

    def login(self, cancel: CancellationToken, on_output: OutputHandler) -> None:
        """
        Log in with the password on stdin.

        Raises:
            RegistryLoginError: If docker login fails or times out
        """
        assert self.registry is not None
        url = self.registry.url
        on_output(f"Logging in to registry: {url}", False)

        argv = ["docker", "login", url, "-u", self.registry.username or "", "--password-stdin"]
        timeout = min(self._remaining("docker login"), timedelta(seconds=self.engine.login_timeout_seconds))
        try:
            self._runner(argv, timeout, stdin_data=self.registry.password).run(cancel, on_output)
        except (ProcessExecutionError, ProcessTimeoutError) as e:
            raise RegistryLoginError(url, cause=e, task_name=self.task_name) from e

    def push(self, image: str, cancel: CancellationToken, on_output: OutputHandler) -> None:
        on_output(f"Pushing image: {image}", False)
        argv = ["docker", "push", image]
        try:
            self._runner(argv, self._remaining(f"docker push {image}")).run(cancel, on_output)
        except ProcessExecutionError as e:
            raise ImagePushError(f"Failed to push image: {image}", image=image, cause=e, task_name=self.task_name) from e

    def tag(self, source: str, target: str, cancel: CancellationToken, on_output: OutputHandler) -> None:
        argv = ["docker", "tag", source, target]
        timeout = min(self._remaining("docker tag"), timedelta(seconds=self.engine.tag_timeout_seconds))
        try:
            self._runner(argv, timeout).run(cancel, on_output)
        except ProcessExecutionError as e:
            raise ImagePushError(
                f"Failed to tag {source} as {target}",
                image=source,
                cause=e,
                task_name=self.task_name,
            ) from e


class DockerfileScanner:
    """
    Find Dockerfiles under a root directory.

    The default pattern matches ``Dockerfile`` and ``Dockerfile.*``. A custom
    pattern is matched against file names using its last path component, so
    ``**/Dockerfile.prod`` and ``Dockerfile.prod`` are equivalent. Exclude
    globs are matched against both the path relative to the root and the
    bare directory name; excluded directories are never descended into.
    """

    def __init__(
        self,
        root: str,
        *,
        pattern: str | None = None,
        exclude: Sequence[str] = (),
        image_prefix: str | None = None,
        tag: str | None = None,
        platforms: Sequence[str] = (),
    ) -> None:
        self.root = root
        self.pattern = pattern.replace("\\", "/").rsplit("/", 1)[-1] if pattern else None
        self.exclude = tuple(exclude)
        self.image_prefix = image_prefix or ""
        self.tag = tag or "latest"
        self.platforms = tuple(platforms)

    @classmethod
    def from_config(cls, root: str, config: AutoScanConfig) -> DockerfileScanner:
        scan_root = root
        if config.root:
            scan_root = config.root if os.path.isabs(config.root) else os.path.join(root, config.root)
        return cls(
            scan_root,
            pattern=config.pattern,
            exclude=config.exclude,
            image_prefix=config.image_prefix,
            tag=config.tag,
            platforms=config.platforms,
        )

    def matches(self, filename: str) -> bool:
        if self.pattern is None:
            return filename == "Dockerfile" or filename.startswith("Dockerfile.")
        return fnmatch.fnmatch(filename, self.pattern)

    def is_excluded(self, rel_path: str) -> bool:
        name = rel_path.rsplit("/", 1)[-1]
        return any(fnmatch.fnmatch(rel_path, glob) or fnmatch.fnmatch(name, glob) for glob in self.exclude)

    def scan(self) -> list[str]:
        """Paths of matching Dockerfiles, in sorted walk order."""
        found = []
        for dirpath, dirnames, filenames in os.walk(self.root):
            rel_dir = os.path.relpath(dirpath, self.root)
            rel_dir = "" if rel_dir == "." else rel_dir.replace(os.sep, "/")

            # Prune in place so os.walk never descends into excluded directories
            dirnames[:] = sorted(d for d in dirnames if not self.is_excluded(f"{rel_dir}/{d}".lstrip("/")))

            for filename in sorted(filenames):
                rel_file = f"{rel_dir}/{filename}".lstrip("/")
                if self.matches(filename) and not self.is_excluded(rel_file):
                    found.append(os.path.join(dirpath, filename))
        logger.debug("Scanned %s: %d Dockerfile(s)", self.root, len(found))
        return found

    def image_name_for(self, dir_name: str) -> str:
        if not self.image_prefix:
            return dir_name
        prefix = self.image_prefix if self.image_prefix.endswith("/") else f"{self.image_prefix}/"
        return f"{prefix}{dir_name}"

    def tasks(self, template: ImageBuildConfig | None = None) -> list[TaskSpec]:
        """
        One image-build task per Dockerfile.

        Each task is named ``build-<dir>`` after the directory holding the
        Dockerfile, which is also its build context. Build arguments, push
        flags, batching and timeout are inherited from ``template``.
        """
        base = template or ImageBuildConfig()
        specs = []
        for path in self.scan():
            context = os.path.dirname(path)
            dir_name = os.path.basename(os.path.abspath(context))
            config = replace(
                base,
                dockerfile=path,
                context=context,
                image_name=self.image_name_for(dir_name),
                tag=self.tag,
                platforms=self.platforms,
                auto_scan=None,
                working_dir=None,
            )
            specs.append(TaskSpec(name=f"build-{dir_name}", config=config))
        return specs
