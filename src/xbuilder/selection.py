"""
Pipeline pre-processing.

Transforms applied once before a run starts. Each takes a
PipelineDefinition and returns a new one; stages left without tasks are
dropped. A selection that leaves nothing to run raises SelectionError.

Example:
    definition = expand_auto_scan(definition, root=".")
    definition = select_stage_range(definition, *parse_stage_range("2-"))
    definition = select_server(definition, "prod-1", servers)
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Collection, Mapping
from dataclasses import replace

from xbuilder.errors import SelectionError
from xbuilder.executors.docker import DockerfileScanner
from xbuilder.models.descriptors import ServerDescriptor
from xbuilder.models.pipeline import ImageBuildConfig, PipelineDefinition, RemoteDeployConfig, StageSpec, TaskSpec

logger = logging.getLogger(__name__)


def parse_stage_range(text: str) -> tuple[int, int | None]:
    """
    Parse a 1-based stage range into 0-based (start, end) bounds.

    Accepted forms: ``3`` (only stage 3), ``2-4``, ``2-`` (2 to last),
    ``-3`` (first to 3). An open end is returned as None.

    Raises:
        SelectionError: If the text is not a valid range
    """
    text = text.strip()
    if not text:
        raise SelectionError("Empty stage range")

    if "-" not in text:
        n = _stage_number(text)
        return n - 1, n - 1

    start_text, end_text = text.split("-", 1)
    start = _stage_number(start_text) if start_text else 1
    end = _stage_number(end_text) if end_text else None
    if end is not None and start > end:
        raise SelectionError(f"Start stage ({start}) is after end stage ({end})")
    return start - 1, None if end is None else end - 1


def _stage_number(text: str) -> int:
    try:
        n = int(text)
    except ValueError:
        raise SelectionError(f"Invalid stage number: {text!r}") from None
    if n < 1:
        raise SelectionError(f"Invalid stage number: {text!r}")
    return n


def select_stage_range(definition: PipelineDefinition, start: int, end: int | None = None) -> PipelineDefinition:
    """
    Keep stages ``start..end`` (0-based, inclusive).

    An ``end`` of None or past the last stage means "to the last stage".
    """
    total = len(definition.stages)
    start = max(start, 0)
    if start >= total:
        raise SelectionError(f"Start stage {start + 1} is out of range ({total} stages)")
    if end is None or end < 0 or end >= total:
        end = total - 1
    if start > end:
        raise SelectionError(f"Start stage ({start + 1}) is after end stage ({end + 1})")

    logger.debug("Selecting stages %d-%d of %d", start + 1, end + 1, total)
    return replace(definition, stages=definition.stages[start : end + 1])


def select_tasks(definition: PipelineDefinition, names: Collection[str]) -> PipelineDefinition:
    """Keep only the tasks whose names are in ``names``."""
    wanted = set(names)
    selected = _filter_tasks(definition, lambda task: task.name in wanted)
    if selected.task_count == 0:
        raise SelectionError(f"No tasks match: {', '.join(sorted(wanted))}")
    return selected


def select_server(
    definition: PipelineDefinition,
    server: str,
    servers: Mapping[str, ServerDescriptor] | None = None,
) -> PipelineDefinition:
    """
    Restrict remote-deploy tasks to one target server.

    Tasks of every other kind are kept unchanged.
    """
    if servers is not None and server not in servers:
        raise SelectionError(f"Server not found: {server!r}")

    def keep(task: TaskSpec) -> bool:
        if isinstance(task.config, RemoteDeployConfig):
            return task.config.server == server
        return True

    selected = _filter_tasks(definition, keep)
    if selected.task_count == 0:
        raise SelectionError(f"No tasks match server: {server!r}")
    return selected


def expand_auto_scan(definition: PipelineDefinition, root: str) -> PipelineDefinition:
    """
    Replace each image-build task with enabled auto-scan by the build tasks
    for the Dockerfiles found under ``root`` (or the scan's own root,
    relative to ``root``).

    Raises:
        SelectionError: If a scan finds no Dockerfiles
    """
    stages = []
    for stage in definition.stages:
        tasks: list[TaskSpec] = []
        for task in stage.tasks:
            cfg = task.config
            if not (isinstance(cfg, ImageBuildConfig) and cfg.auto_scan and cfg.auto_scan.enabled):
                tasks.append(task)
                continue

            scanner = DockerfileScanner.from_config(root, cfg.auto_scan)
            scanned = scanner.tasks(template=cfg)
            if not scanned:
                raise SelectionError(f"Auto-scan for task {task.name!r} found no Dockerfiles under {scanner.root}")
            logger.info("Auto-scan for %s found %d Dockerfile(s)", task.name, len(scanned))
            tasks.extend(scanned)
        stages.append(replace(stage, tasks=tuple(tasks)))
    return replace(definition, stages=tuple(stages))


def _filter_tasks(definition: PipelineDefinition, keep: Callable[[TaskSpec], bool]) -> PipelineDefinition:
    stages: list[StageSpec] = []
    for stage in definition.stages:
        tasks = tuple(task for task in stage.tasks if keep(task))
        if tasks:
            stages.append(replace(stage, tasks=tasks))
    return replace(definition, stages=tuple(stages))
