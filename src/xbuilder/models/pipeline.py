"""
Pipeline definition model.

A PipelineDefinition is an ordered sequence of stages; each stage holds named
tasks. A task carries exactly one kind configuration object, and the task's
kind is derived from the type of that object, so kind and configuration can
never disagree.

Definitions are immutable and arrive fully resolved (variables expanded,
references validated). ``PipelineDefinition.from_dict`` only maps an
already-resolved document onto these types.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar

import yaml

from xbuilder.errors import ConfigReferenceError, ConfigurationError


class TaskKind(Enum):
    """The closed set of task kinds."""

    BUILD = "build"
    IMAGE_BUILD = "image-build"
    IMAGE_PUSH = "image-push"
    REMOTE_DEPLOY = "remote-deploy"
    SHELL = "shell"

    def __str__(self) -> str:
        return self.value


class BuildTool(Enum):
    MAVEN = "maven"
    GO = "go"


@dataclass(frozen=True)
class BuildConfig:
    """Compiled-language build (Maven or Go).

    Without ``command`` or ``script`` the tool's default invocation is used.
    The ``go_*`` style options only apply to the Go tool.
    """

    kind: ClassVar[TaskKind] = TaskKind.BUILD

    tool: BuildTool = BuildTool.MAVEN
    command: str | None = None
    script: str | None = None
    working_dir: str | None = None
    timeout: float | None = None
    env: Mapping[str, str] = field(default_factory=dict)

    go_command: str = "build"
    goos: str | None = None
    goarch: str | None = None
    output: str | None = None
    ldflags: str | None = None
    tags: str | None = None
    cgo_enabled: bool | None = None
    goprivate: str | None = None
    goproxy: str | None = None
    race: bool = False
    trimpath: bool = False
    mod: str | None = None
    packages: str | None = None
    verbose: bool = False


@dataclass(frozen=True)
class AutoScanConfig:
    """Dockerfile discovery settings for an image-build task."""

    enabled: bool = False
    root: str | None = None
    pattern: str | None = None
    exclude: tuple[str, ...] = ()
    image_prefix: str | None = None
    tag: str | None = None
    platforms: tuple[str, ...] = ()


@dataclass(frozen=True)
class ImageBuildConfig:
    kind: ClassVar[TaskKind] = TaskKind.IMAGE_BUILD

    dockerfile: str = "Dockerfile"
    context: str = "."
    image_name: str = ""
    tag: str = "latest"
    build_args: Mapping[str, str] = field(default_factory=dict)
    platforms: tuple[str, ...] = ()
    push_latest_on_build: bool = False
    auto_scan: AutoScanConfig | None = None
    batch_output: bool = False
    working_dir: str | None = None
    timeout: float | None = None

    @property
    def image_ref(self) -> str:
        """Fully-qualified reference name:tag."""
        return f"{self.image_name}:{self.tag or 'latest'}"


@dataclass(frozen=True)
class ImagePushConfig:
    """Push images to a registry.

    With ``auto`` set, ``images`` is ignored and every image built earlier in
    the run (and not already pushed by its build) is pushed.
    """

    kind: ClassVar[TaskKind] = TaskKind.IMAGE_PUSH

    registry: str | None = None
    images: tuple[str, ...] = ()
    auto: bool = False
    push_latest: bool = False
    timeout: float | None = None


@dataclass(frozen=True)
class RemoteDeployConfig:
    """Run commands or a script on a named server.

    Exactly one of ``commands``, ``script`` (a path on the remote host) or
    ``local_script`` (uploaded before execution) is used, checked in the
    order local_script, script, commands.
    """

    kind: ClassVar[TaskKind] = TaskKind.REMOTE_DEPLOY

    server: str = ""
    commands: tuple[str, ...] = ()
    script: str | None = None
    local_script: str | None = None
    batch_output: bool = False
    timeout: float | None = None


@dataclass(frozen=True)
class ShellConfig:
    kind: ClassVar[TaskKind] = TaskKind.SHELL

    command: str | None = None
    script: str | None = None
    working_dir: str | None = None
    env: Mapping[str, str] = field(default_factory=dict)
    timeout: float | None = None


KindConfig = BuildConfig | ImageBuildConfig | ImagePushConfig | RemoteDeployConfig | ShellConfig


@dataclass(frozen=True)
class TaskSpec:
    """A named task with exactly one kind configuration."""

    name: str
    config: KindConfig

    @property
    def kind(self) -> TaskKind:
        return self.config.kind

    @property
    def timeout(self) -> float | None:
        return self.config.timeout

    @property
    def batch_output(self) -> bool:
        """Whether the task's output is published in batches."""
        match self.config:
            case ImageBuildConfig(batch_output=batch) | RemoteDeployConfig(batch_output=batch):
                return batch
            case BuildConfig() | ImagePushConfig() | ShellConfig():
                return False
            case _:
                raise ConfigurationError(f"Unsupported task configuration: {type(self.config).__name__}")


@dataclass(frozen=True)
class StageSpec:
    """An ordered (or parallel) group of tasks; the unit of fail-fast."""

    id: str
    name: str
    tasks: tuple[TaskSpec, ...] = ()
    parallel: bool = False


@dataclass(frozen=True)
class PipelineDefinition:
    name: str
    stages: tuple[StageSpec, ...] = ()

    @property
    def task_count(self) -> int:
        return sum(len(stage.tasks) for stage in self.stages)

    @classmethod
    def from_dict(cls, document: Mapping[str, Any]) -> PipelineDefinition:
        """Build a definition from a resolved pipeline document.

        The document uses the pipeline file layout::

            project: {name: ...}
            pipeline:
              - stage: build
                name: Build
                parallel: true
                tasks:
                  - name: api
                    type: image-build
                    config: {...}

        Raises:
            ConfigReferenceError: If a task names an unknown type
            ConfigurationError: If the document shape is wrong
        """
        project = document.get("project") or {}
        name = project.get("name") or document.get("name") or ""
        raw_stages = document.get("pipeline", document.get("stages")) or []
        if not isinstance(raw_stages, Sequence) or isinstance(raw_stages, str):
            raise ConfigurationError("'pipeline' must be a list of stages")

        stages = []
        for index, raw in enumerate(raw_stages):
            stage_id = str(raw.get("stage") or raw.get("id") or f"stage-{index}")
            tasks = tuple(_task_from_dict(t) for t in raw.get("tasks") or [])
            stages.append(
                StageSpec(
                    id=stage_id,
                    name=str(raw.get("name") or stage_id),
                    tasks=tasks,
                    parallel=bool(raw.get("parallel", False)),
                )
            )
        return cls(name=name, stages=tuple(stages))

    @classmethod
    def from_yaml(cls, text: str) -> PipelineDefinition:
        """Parse a resolved YAML pipeline document."""
        document = yaml.safe_load(text) or {}
        if not isinstance(document, Mapping):
            raise ConfigurationError("Pipeline document must be a mapping")
        return cls.from_dict(document)


# Document type name -> (kind, build tool override)
_TYPE_ALIASES: dict[str, tuple[TaskKind, BuildTool | None]] = {
    "build": (TaskKind.BUILD, None),
    "maven": (TaskKind.BUILD, BuildTool.MAVEN),
    "go-build": (TaskKind.BUILD, BuildTool.GO),
    "image-build": (TaskKind.IMAGE_BUILD, None),
    "docker-build": (TaskKind.IMAGE_BUILD, None),
    "image-push": (TaskKind.IMAGE_PUSH, None),
    "docker-push": (TaskKind.IMAGE_PUSH, None),
    "remote-deploy": (TaskKind.REMOTE_DEPLOY, None),
    "ssh": (TaskKind.REMOTE_DEPLOY, None),
    "shell": (TaskKind.SHELL, None),
    "command": (TaskKind.SHELL, None),
}


def _task_from_dict(raw: Mapping[str, Any]) -> TaskSpec:
    name = str(raw.get("name") or "")
    type_name = str(raw.get("type") or raw.get("kind") or "")
    if type_name not in _TYPE_ALIASES:
        raise ConfigReferenceError(f"Unknown task type: {type_name!r}", reference=type_name, task_name=name)

    kind, tool = _TYPE_ALIASES[type_name]
    cfg = raw.get("config") or {}

    match kind:
        case TaskKind.BUILD:
            config: KindConfig = _build_config(cfg, tool)
        case TaskKind.IMAGE_BUILD:
            config = ImageBuildConfig(
                dockerfile=cfg.get("dockerfile") or "Dockerfile",
                context=cfg.get("context") or ".",
                image_name=cfg.get("image_name") or "",
                tag=str(cfg.get("tag") or "latest"),
                build_args=_str_map(cfg.get("build_args")),
                platforms=tuple(cfg.get("platforms") or ()),
                push_latest_on_build=bool(cfg.get("push_latest_on_build", False)),
                auto_scan=_auto_scan_config(cfg.get("auto_scan")),
                batch_output=bool(cfg.get("batch_output", False)),
                working_dir=cfg.get("working_dir"),
                timeout=_timeout(cfg),
            )
        case TaskKind.IMAGE_PUSH:
            config = ImagePushConfig(
                registry=cfg.get("registry"),
                images=tuple(cfg.get("images") or ()),
                auto=bool(cfg.get("auto", False)),
                push_latest=bool(cfg.get("push_latest", False)),
                timeout=_timeout(cfg),
            )
        case TaskKind.REMOTE_DEPLOY:
            commands = cfg.get("commands") or ()
            if not commands and cfg.get("command"):
                commands = (cfg["command"],)
            config = RemoteDeployConfig(
                server=cfg.get("server") or "",
                commands=tuple(commands),
                script=cfg.get("script"),
                local_script=cfg.get("local_script"),
                batch_output=bool(cfg.get("batch_output", False)),
                timeout=_timeout(cfg),
            )
        case TaskKind.SHELL:
            config = ShellConfig(
                command=cfg.get("command"),
                script=cfg.get("script"),
                working_dir=cfg.get("working_dir"),
                env=_str_map(cfg.get("env")),
                timeout=_timeout(cfg),
            )

    return TaskSpec(name=name, config=config)


def _build_config(cfg: Mapping[str, Any], tool: BuildTool | None) -> BuildConfig:
    if tool is None:
        try:
            tool = BuildTool(cfg.get("tool") or "maven")
        except ValueError as e:
            raise ConfigReferenceError(
                f"Unknown build tool: {cfg.get('tool')!r}", reference=str(cfg.get("tool"))
            ) from e

    cgo = cfg.get("cgo_enabled")
    return BuildConfig(
        tool=tool,
        command=cfg.get("command"),
        script=cfg.get("script"),
        working_dir=cfg.get("working_dir"),
        timeout=_timeout(cfg),
        env=_str_map(cfg.get("env")),
        go_command=cfg.get("go_command") or "build",
        goos=cfg.get("goos"),
        goarch=cfg.get("goarch"),
        output=cfg.get("output"),
        ldflags=cfg.get("ldflags"),
        tags=cfg.get("tags"),
        cgo_enabled=None if cgo is None else bool(cgo),
        goprivate=cfg.get("goprivate"),
        goproxy=cfg.get("goproxy"),
        race=bool(cfg.get("race", False)),
        trimpath=bool(cfg.get("trimpath", False)),
        mod=cfg.get("mod"),
        packages=cfg.get("packages"),
        verbose=bool(cfg.get("go_verbose", cfg.get("verbose", False))),
    )


def _auto_scan_config(raw: Mapping[str, Any] | None) -> AutoScanConfig | None:
    if not raw:
        return None
    return AutoScanConfig(
        enabled=bool(raw.get("enabled", False)),
        root=raw.get("root"),
        pattern=raw.get("pattern") or None,
        exclude=tuple(raw.get("exclude") or ()),
        image_prefix=raw.get("image_prefix"),
        tag=raw.get("tag"),
        platforms=tuple(raw.get("platforms") or ()),
    )


def _timeout(cfg: Mapping[str, Any]) -> float | None:
    value = cfg.get("timeout")
    if value is None or value == "":
        return None
    return float(value)


def _str_map(raw: Mapping[str, Any] | None) -> dict[str, str]:
    return {str(k): str(v) for k, v in (raw or {}).items()}
