from __future__ import annotations

import fnmatch
import logging
import os
from collections.abc import Collection, Iterable, Mapping
from dataclasses import replace
from pathlib import Path

from devpipe.executor.types import TaskDefinition

from .types import ConfigError, ProjectConfig, TaskConfig

logger = logging.getLogger(__name__)

DEFAULT_ESTIMATE_SECONDS = 10


def resolve_tasks(
    project: ProjectConfig,
    project_root: str | Path,
    *,
    history: Mapping[str, int] | None = None,
    fix_type_override: str | None = None,
    only: Collection[str] | None = None,
    skip: Collection[str] = (),
    changed_files: Iterable[str] | None = None,
    repo_root: str | Path | None = None,
    ignore_watch_paths: bool = False,
) -> list[TaskDefinition]:
    """Turn the loaded config into the ordered task list for one run.

    ``changed_files`` is None outside a git repository, in which case watch
    paths are not applied. Changed paths are relative to ``repo_root``.
    """
    history = history or {}
    root = Path(project_root).resolve()

    if only:
        unknown = [tid for tid in only if not project.has_task(tid)]
        if unknown:
            raise ConfigError(f"--only: unknown task id(s): {', '.join(unknown)}")

    for tid in skip:
        if not project.has_task(tid):
            logger.warning("--skip: unknown task id %s", tid)

    disabled = {
        t.id
        for t in project
        if not (t.enabled if t.enabled is not None else project.task_defaults.enabled)
    }
    tasks = [_definition(project, t, root, history, fix_type_override) for t in project]
    tasks = _keep(tasks, lambda t: t.id not in disabled, "disabled in config")

    if only:
        tasks = _keep(tasks, lambda t: t.id in only, "not selected by --only")
    if skip:
        tasks = _keep(tasks, lambda t: t.id not in skip, "skipped by --skip")

    if changed_files is not None and not ignore_watch_paths:
        base = Path(repo_root).resolve() if repo_root is not None else root
        files = [str(base / f) if not os.path.isabs(f) else f for f in changed_files]
        tasks = _keep(tasks, lambda t: watches_changes(t, files), "no matching changes for watch_paths")

    return tasks


def watches_changes(task: TaskDefinition, changed_files: list[str]) -> bool:
    if not task.watch_paths:
        return True

    for pattern in task.watch_paths:
        abs_pattern = pattern if os.path.isabs(pattern) else os.path.join(task.workdir, pattern)
        abs_pattern = os.path.normpath(abs_pattern)
        if any(fnmatch.fnmatchcase(f, abs_pattern) for f in changed_files):
            return True
    return False


def _definition(
    project: ProjectConfig,
    task: TaskConfig,
    root: Path,
    history: Mapping[str, int],
    fix_type_override: str | None,
) -> TaskDefinition:
    working_dir = task.working_dir or project.task_defaults.working_dir
    workdir = Path(working_dir)
    if not workdir.is_absolute():
        workdir = root / workdir

    if task.id in history:
        estimate, guess = max(1, int(history[task.id])), False
    else:
        estimate, guess = DEFAULT_ESTIMATE_SECONDS, True

    metrics_format = metrics_path = ""
    if task.output_type and task.output_path:
        metrics_format, metrics_path = task.output_type, task.output_path

    return TaskDefinition(
        id=task.id,
        command=task.command,
        workdir=os.path.normpath(str(workdir)),
        name=task.name or "",
        desc=task.desc or "",
        phase=project.phase_name(task.id) or "",
        type=task.type or "",
        env=dict(task.env),
        estimated_seconds=estimate,
        is_estimate_guess=guess,
        wait=task.wait,
        metrics_format=metrics_format,
        metrics_path=metrics_path,
        fix_type=fix_type_override or task.fix_type or project.task_defaults.fix_type or "",
        fix_command=task.fix_command or "",
        watch_paths=tuple(task.watch_paths),
        timeout=task.timeout,
    )


def _keep(tasks: list[TaskDefinition], predicate, reason: str) -> list[TaskDefinition]:
    out: list[TaskDefinition] = []
    for task in tasks:
        if predicate(task):
            out.append(task)
            continue
        logger.info("%s %s", task.id, reason)
        # A dropped task still closes its phase.
        if task.wait and out and not out[-1].wait:
            out[-1] = replace(out[-1], wait=True)
    return out
