import json
import logging
import tomllib
from pathlib import Path
from typing import Any, Mapping

import yaml

from .types import (
    FIX_TYPES,
    GIT_MODES,
    GROUP_BY,
    OUTPUT_TYPES,
    UI_MODES,
    ConfigError,
    DefaultsConfig,
    GitConfig,
    PhaseInfo,
    ProjectConfig,
    TaskConfig,
    TaskDefaultsConfig,
    UnsupportedConfigFormatError,
)

logger = logging.getLogger(__name__)

TASK_KEYS = {
    "command",
    "name",
    "desc",
    "type",
    "working_dir",
    "env",
    "enabled",
    "output_type",
    "output_path",
    "fix_type",
    "fix_command",
    "watch_paths",
    "timeout",
}
PHASE_KEYS = {"name", "desc"}
DEFAULTS_KEYS = {
    "project_root",
    "output_root",
    "fast_threshold",
    "ui_mode",
    "animation_refresh_ms",
    "animated_group_by",
    "git",
}
TASK_DEFAULTS_KEYS = {"enabled", "working_dir", "fix_type"}


def load_project(path: str | Path) -> ProjectConfig:
    pure_path = Path(path).expanduser().resolve()

    if not pure_path.exists():
        raise ConfigError(f"Config file not found: {pure_path}")

    if not pure_path.is_file():
        raise ConfigError(f"Config path is not a file: {pure_path}")

    fmt = _detect_format(pure_path)
    raw_file = _parse_file(pure_path, fmt)
    project = _build_project_config(raw_file)
    project.path = str(pure_path)

    for warning in project.warnings:
        logger.warning("%s: %s", pure_path, warning)

    return project


def is_phase_header(task_id: str) -> bool:
    return task_id.startswith("phase-")


def is_wait_marker(task_id: str) -> bool:
    return task_id == "wait" or task_id.startswith("wait-")


def _detect_format(path: Path) -> str:
    fmt = path.suffix
    match fmt:
        case ".yaml" | ".yml":
            return "yaml"
        case ".toml":
            return "toml"
        case ".json":
            return "json"
        case _:
            raise UnsupportedConfigFormatError(
                f"Non supported file extension: {fmt}\n Expected format: .yml/.yaml, .toml, .json"
            )


def _parse_file(path: Path, fmt: str) -> Mapping[str, Any]:
    match fmt:
        case "yaml":
            return _parse_yaml(path)
        case "toml":
            return _parse_toml(path)
        case "json":
            return _parse_json(path)
        case _:
            raise AssertionError("Unreachable")


def _parse_yaml(path: Path) -> Mapping[str, Any]:
    try:
        raw_file = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ConfigError(f"{path}: invalid YAML") from exc

    if not isinstance(raw_file, Mapping):
        raise ConfigError(
            f"{path}: YAML parsed successfully but top-level value is not an object: {type(raw_file)}"
        )

    return raw_file


def _parse_toml(path: Path) -> Mapping[str, Any]:
    try:
        raw_file = tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"{path}: invalid TOML") from exc

    if not isinstance(raw_file, Mapping):
        raise ConfigError(
            f"{path}: TOML parsed successfully but top-level value is not an object: {type(raw_file)}"
        )

    return raw_file


def _parse_json(path: Path) -> Mapping[str, Any]:
    try:
        raw_file = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ConfigError(f"{path}: invalid JSON") from exc

    if not isinstance(raw_file, Mapping):
        raise ConfigError(
            f"{path}: JSON parsed successfully but top-level value is not an object: {type(raw_file)}"
        )

    return raw_file


def _build_project_config(raw: Mapping[str, Any]) -> ProjectConfig:
    tasks: dict[str, TaskConfig] = {}
    phases: dict[int, PhaseInfo] = {}
    task_phase: dict[str, int] = {}
    warnings: list[str] = []

    for key in raw.keys():
        if key not in {"defaults", "task_defaults", "tasks"}:
            raise ConfigError(f"Unknown top-level field: {key}")

    defaults = _build_defaults(raw.get("defaults", {}), warnings)
    task_defaults = _build_task_defaults(raw.get("task_defaults", {}))

    if not "tasks" in raw:
        raise ConfigError("Missing 'tasks' field")

    if not isinstance(raw["tasks"], Mapping):
        raise ConfigError(f"'tasks' must be a mapping, got {type(raw['tasks'])}")

    phase_number = 1
    in_named_phase = False
    tasks_in_phase = 0
    last_task: TaskConfig | None = None

    for task_id, fields in raw["tasks"].items():
        if not isinstance(task_id, str):
            raise ConfigError(f"Task id must be a string, got {type(task_id)}")

        if not isinstance(fields, Mapping):
            raise ConfigError(f"{task_id} must be a mapping")

        task_id_norm = task_id.strip()

        if len(task_id_norm) < 1:
            raise ConfigError("A task id can't be empty")

        if is_phase_header(task_id_norm) or is_wait_marker(task_id_norm):
            # Both close the running phase, but only if it holds a task.
            if tasks_in_phase > 0 and last_task is not None:
                last_task.wait = True
                phase_number += 1
                tasks_in_phase = 0
            in_named_phase = False

            if is_phase_header(task_id_norm):
                phases[phase_number] = _build_phase_info(task_id_norm, fields, warnings)
                in_named_phase = True
            elif len(fields) > 0:
                raise ConfigError(f"{task_id_norm}: wait markers take no fields")
            continue

        if task_id_norm in tasks:
            raise ConfigError(f"Duplicate task id after normalization: {task_id_norm}")

        task_config = _build_task_config(task_id_norm, fields, warnings)
        tasks[task_id_norm] = task_config
        if in_named_phase:
            task_phase[task_id_norm] = phase_number
        tasks_in_phase += 1
        last_task = task_config

    if len(tasks) < 1:
        raise ConfigError("There must be at least one task in the config file")

    return ProjectConfig(
        tasks=tasks,
        defaults=defaults,
        task_defaults=task_defaults,
        phases=phases,
        task_phase=task_phase,
        warnings=warnings,
    )


def _build_defaults(fields: Any, warnings: list[str]) -> DefaultsConfig:
    if not isinstance(fields, Mapping):
        raise ConfigError("'defaults' must be a mapping")

    for field in fields.keys():
        if field not in DEFAULTS_KEYS:
            raise ConfigError(f"defaults: Can't process: {field}")

    defaults = DefaultsConfig()

    if "project_root" in fields:
        defaults.project_root = _non_empty_str("defaults", "project_root", fields["project_root"])

    if "output_root" in fields:
        defaults.output_root = _non_empty_str("defaults", "output_root", fields["output_root"])

    if "fast_threshold" in fields:
        value = fields["fast_threshold"]
        if not isinstance(value, int) or isinstance(value, bool) or value < 0:
            raise ConfigError("defaults: fast_threshold must be a non-negative integer")
        defaults.fast_threshold = value

    if "ui_mode" in fields:
        defaults.ui_mode = _choice("defaults", "ui_mode", fields["ui_mode"], UI_MODES)

    if "animation_refresh_ms" in fields:
        value = fields["animation_refresh_ms"]
        if not isinstance(value, int) or isinstance(value, bool) or value < 0:
            raise ConfigError("defaults: animation_refresh_ms must be a non-negative integer")
        defaults.animation_refresh_ms = value

    if "animated_group_by" in fields:
        defaults.animated_group_by = _choice(
            "defaults", "animated_group_by", fields["animated_group_by"], GROUP_BY
        )

    if "git" in fields:
        git = fields["git"]
        if not isinstance(git, Mapping):
            raise ConfigError("defaults: git should be a mapping")
        for field in git.keys():
            if field not in {"mode", "ref"}:
                raise ConfigError(f"defaults.git: Can't process: {field}")
        defaults.git = GitConfig()
        if "mode" in git:
            defaults.git.mode = _choice("defaults.git", "mode", git["mode"], GIT_MODES)
        if "ref" in git:
            defaults.git.ref = _non_empty_str("defaults.git", "ref", git["ref"])
        elif defaults.git.mode == "ref":
            warnings.append("defaults.git: mode is 'ref' but no ref is specified, using HEAD")

    return defaults


def _build_task_defaults(fields: Any) -> TaskDefaultsConfig:
    if not isinstance(fields, Mapping):
        raise ConfigError("'task_defaults' must be a mapping")

    for field in fields.keys():
        if field not in TASK_DEFAULTS_KEYS:
            raise ConfigError(f"task_defaults: Can't process: {field}")

    task_defaults = TaskDefaultsConfig()

    if "enabled" in fields:
        if not isinstance(fields["enabled"], bool):
            raise ConfigError("task_defaults: enabled should be a boolean")
        task_defaults.enabled = fields["enabled"]

    if "working_dir" in fields:
        task_defaults.working_dir = _non_empty_str(
            "task_defaults", "working_dir", fields["working_dir"]
        )

    if "fix_type" in fields:
        task_defaults.fix_type = _choice("task_defaults", "fix_type", fields["fix_type"], FIX_TYPES)

    return task_defaults


def _build_phase_info(phase_id: str, fields: Mapping[str, Any], warnings: list[str]) -> PhaseInfo:
    for field in fields.keys():
        if field == "command":
            warnings.append(f"{phase_id}: phase headers should not have a command, ignoring it")
            continue
        if field not in PHASE_KEYS:
            raise ConfigError(f"{phase_id}: Can't process: {field}")

    name = phase_id
    if "name" in fields:
        name = _non_empty_str(phase_id, "name", fields["name"])
    else:
        warnings.append(f"{phase_id}: phase header should have a name")

    desc = None
    if "desc" in fields:
        desc = _str(phase_id, "desc", fields["desc"])

    return PhaseInfo(phase_id, name, desc)


def _build_task_config(task_id: str, fields: Mapping[str, Any], warnings: list[str]) -> TaskConfig:
    env = {}
    watch_paths = []

    for field in fields.keys():
        if field not in TASK_KEYS:
            raise ConfigError(f"{task_id}: Can't process: {field}")

    if not "command" in fields:
        raise ConfigError(f"{task_id}: missing 'command'")

    if not isinstance(fields["command"], str):
        raise ConfigError(f"{task_id}: The command should be a string")

    if len(fields["command"].strip()) < 1:
        raise ConfigError(f"{task_id}: Command missing")

    task = TaskConfig(task_id, fields["command"].strip())

    for key in ("name", "desc", "type"):
        if key in fields:
            setattr(task, key, _str(task_id, key, fields[key]))

    if "env" in fields:
        if not isinstance(fields["env"], Mapping):
            raise ConfigError(f"{task_id}: Env should be a mapping")

        for key, item in fields["env"].items():
            if not isinstance(key, str):
                raise ConfigError(f"{task_id}: {key} should be a string")

            if len(key.strip()) < 1:
                raise ConfigError(f"{task_id}: A key can't be empty")

            if not isinstance(item, str):
                raise ConfigError(f"{task_id}: {item} should be a string")

            env[key.strip()] = item
    task.env = env

    if "working_dir" in fields:
        task.working_dir = _non_empty_str(task_id, "working_dir", fields["working_dir"])

    if "enabled" in fields:
        if not isinstance(fields["enabled"], bool):
            raise ConfigError(f"{task_id}: enabled should be a boolean")
        task.enabled = fields["enabled"]

    if "output_type" in fields:
        task.output_type = _choice(task_id, "output_type", fields["output_type"], OUTPUT_TYPES)

    if "output_path" in fields:
        task.output_path = _non_empty_str(task_id, "output_path", fields["output_path"])

    if task.output_type and not task.output_path:
        raise ConfigError(f"{task_id}: output_type is set but output_path is not specified")

    if task.output_path and not task.output_type:
        warnings.append(f"{task_id}: output_path is set but output_type is not, it is ignored")

    if "fix_type" in fields:
        task.fix_type = _choice(task_id, "fix_type", fields["fix_type"], FIX_TYPES)

    if "fix_command" in fields:
        task.fix_command = _non_empty_str(task_id, "fix_command", fields["fix_command"])

    if task.fix_type in ("auto", "helper") and not task.fix_command:
        raise ConfigError(f"{task_id}: fix_type is set but fix_command is not specified")

    if "watch_paths" in fields:
        if not isinstance(fields["watch_paths"], list):
            raise ConfigError(f"{task_id}: watch_paths should be in a list.")

        for item in fields["watch_paths"]:
            if not isinstance(item, str) or len(item.strip()) < 1:
                raise ConfigError(f"{task_id}: {item!r} should be a non-empty string in watch_paths")
            watch_paths.append(item.strip())
    task.watch_paths = watch_paths

    if "timeout" in fields:
        value = fields["timeout"]
        if not isinstance(value, (int, float)) or isinstance(value, bool) or value <= 0:
            raise ConfigError(f"{task_id}: timeout should be a positive number of seconds")
        task.timeout = float(value)

    return task


def _str(owner: str, key: str, value: Any) -> str:
    if not isinstance(value, str):
        raise ConfigError(f"{owner}: The {key} should be a string")
    return value.strip()


def _non_empty_str(owner: str, key: str, value: Any) -> str:
    value = _str(owner, key, value)
    if len(value) < 1:
        raise ConfigError(f"{owner}: Please provide a {key} or remove this field")
    return value


def _choice(owner: str, key: str, value: Any, allowed: tuple[str, ...]) -> str:
    value = _str(owner, key, value)
    if value not in allowed:
        raise ConfigError(
            f"{owner}: Invalid {key} '{value}'. Valid options: {', '.join(allowed)}"
        )
    return value
