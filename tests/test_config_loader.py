# tests/test_config_loader.py
from __future__ import annotations

import json
from pathlib import Path

import pytest

from devpipe.config.loader import load_project
from devpipe.config.types import ConfigError, UnsupportedConfigFormatError


# -------------------------
# Helpers
# -------------------------


def write_text(path: Path, text: str) -> Path:
    path.write_text(text, encoding="utf-8")
    return path


def write_json(path: Path, obj: object) -> Path:
    path.write_text(json.dumps(obj), encoding="utf-8")
    return path


# -------------------------
# Basic file/path errors
# -------------------------


def test_missing_file_raises_config_error(tmp_path: Path) -> None:
    with pytest.raises(ConfigError):
        load_project(tmp_path / "missing.yaml")


def test_path_is_dir_raises_config_error(tmp_path: Path) -> None:
    d = tmp_path / "dir"
    d.mkdir()
    with pytest.raises(ConfigError):
        load_project(d)


def test_unsupported_extension_raises_unsupported_format(tmp_path: Path) -> None:
    p = write_text(tmp_path / "config.txt", "tasks: {}")
    with pytest.raises(UnsupportedConfigFormatError):
        load_project(p)


# -------------------------
# Parse errors are wrapped
# -------------------------


def test_invalid_yaml_is_wrapped_as_config_error(tmp_path: Path) -> None:
    p = write_text(tmp_path / "config.yaml", "tasks: [\n")  # invalid
    with pytest.raises(ConfigError):
        load_project(p)


def test_invalid_toml_is_wrapped_as_config_error(tmp_path: Path) -> None:
    p = write_text(tmp_path / "config.toml", "tasks = {")  # invalid
    with pytest.raises(ConfigError):
        load_project(p)


def test_invalid_json_is_wrapped_as_config_error(tmp_path: Path) -> None:
    p = write_text(tmp_path / "config.json", '{"tasks": ')  # invalid
    with pytest.raises(ConfigError):
        load_project(p)


# -------------------------
# Top-level shape validation
# -------------------------


@pytest.mark.parametrize(
    "ext, content",
    [
        (".yaml", "[]\n"),
        (".yaml", "null\n"),
        (
            ".toml",
            'tasks = "nope"\n',
        ),  # valid TOML but wrong type; your code checks Mapping
        (".json", "[]"),
        (".json", "null"),
    ],
)
def test_top_level_not_mapping_raises(tmp_path: Path, ext: str, content: str) -> None:
    p = write_text(tmp_path / f"config{ext}", content)
    with pytest.raises(ConfigError):
        load_project(p)


def test_missing_tasks_key_raises(tmp_path: Path) -> None:
    p = write_text(tmp_path / "config.yaml", "not_tasks: {}\n")
    with pytest.raises(ConfigError):
        load_project(p)


@pytest.mark.parametrize(
    "ext, content",
    [
        (".yaml", "tasks: []\n"),
        (".yaml", "tasks: null\n"),
        (".json", '{"tasks": []}'),
        (".json", '{"tasks": null}'),
        (".toml", 'tasks = "nope"\n'),
        (".toml", "tasks = 123\n"),
    ],
)
def test_tasks_not_mapping_raises(tmp_path: Path, ext: str, content: str) -> None:
    p = write_text(tmp_path / f"config{ext}", content)
    with pytest.raises(ConfigError):
        load_project(p)


@pytest.mark.parametrize(
    "ext, content",
    [
        (".yaml", "tasks: {}\n"),
        (".json", '{"tasks": {}}'),
        (".toml", "[tasks]\n"),  # empty table => mapping with 0 keys
    ],
)
def test_tasks_empty_raises(tmp_path: Path, ext: str, content: str) -> None:
    p = write_text(tmp_path / f"config{ext}", content)
    with pytest.raises(ConfigError):
        load_project(p)


# -------------------------
# Task id validation
# -------------------------


def test_task_id_not_string_yaml_raises(tmp_path: Path) -> None:
    # YAML numeric key => int task_id at runtime
    p = write_text(
        tmp_path / "config.yaml",
        "tasks:\n  1:\n    command: echo hi\n",
    )
    with pytest.raises(ConfigError):
        load_project(p)


def test_task_id_empty_after_strip_raises(tmp_path: Path) -> None:
    p = write_text(
        tmp_path / "config.yaml",
        'tasks:\n  "   ":\n    command: echo hi\n',
    )
    with pytest.raises(ConfigError):
        load_project(p)


def test_duplicate_task_id_after_normalization_raises(tmp_path: Path) -> None:
    p = write_text(
        tmp_path / "config.yaml",
        "tasks:\n"
        "  build:\n"
        "    command: echo 1\n"
        '  " build ":\n'
        "    command: echo 2\n",
    )
    with pytest.raises(ConfigError):
        load_project(p)


# -------------------------
# Task fields shape validation
# -------------------------


def test_task_fields_not_mapping_raises(tmp_path: Path) -> None:
    p = write_text(tmp_path / "config.yaml", "tasks:\n  build: []\n")
    with pytest.raises(ConfigError):
        load_project(p)


def test_unknown_task_field_raises(tmp_path: Path) -> None:
    p = write_text(
        tmp_path / "config.yaml",
        "tasks:\n  build:\n    command: echo hi\n    nope: 1\n",
    )
    with pytest.raises(ConfigError):
        load_project(p)


# -------------------------
# command validation
# -------------------------


def test_missing_command_raises(tmp_path: Path) -> None:
    p = write_text(tmp_path / "config.yaml", "tasks:\n  build:\n    name: Build\n")
    with pytest.raises(ConfigError):
        load_project(p)


def test_command_not_string_raises(tmp_path: Path) -> None:
    p = write_text(tmp_path / "config.yaml", "tasks:\n  build:\n    command: 123\n")
    with pytest.raises(ConfigError):
        load_project(p)


def test_command_empty_after_strip_raises(tmp_path: Path) -> None:
    p = write_text(tmp_path / "config.yaml", 'tasks:\n  build:\n    command: "   "\n')
    with pytest.raises(ConfigError):
        load_project(p)


# -------------------------
# env validation
# -------------------------


def test_env_not_mapping_raises(tmp_path: Path) -> None:
    p = write_text(
        tmp_path / "config.yaml",
        "tasks:\n  a:\n    command: echo a\n    env: []\n",
    )
    with pytest.raises(ConfigError):
        load_project(p)


def test_env_key_not_string_yaml_raises(tmp_path: Path) -> None:
    # YAML allows non-string keys in mappings
    p = write_text(
        tmp_path / "config.yaml",
        "tasks:\n  a:\n    command: echo a\n    env:\n      1: x\n",
    )
    with pytest.raises(ConfigError):
        load_project(p)


def test_env_key_empty_after_strip_raises(tmp_path: Path) -> None:
    p = write_text(
        tmp_path / "config.yaml",
        'tasks:\n  a:\n    command: echo a\n    env:\n      "   ": x\n',
    )
    with pytest.raises(ConfigError):
        load_project(p)


def test_env_value_not_string_raises(tmp_path: Path) -> None:
    p = write_text(
        tmp_path / "config.yaml",
        "tasks:\n  a:\n    command: echo a\n    env:\n      KEY: 1\n",
    )
    with pytest.raises(ConfigError):
        load_project(p)


def test_env_key_is_stripped_value_preserved(tmp_path: Path) -> None:
    p = write_text(
        tmp_path / "config.yaml",
        'tasks:\n  a:\n    command: echo a\n    env:\n      " KEY ": "  v  "\n',
    )
    proj = load_project(p)
    assert proj.tasks["a"].env == {"KEY": "  v  "}


# -------------------------
# working_dir validation
# -------------------------


def test_working_dir_not_string_raises(tmp_path: Path) -> None:
    p = write_text(
        tmp_path / "config.yaml",
        "tasks:\n  a:\n    command: echo a\n    working_dir: 1\n",
    )
    with pytest.raises(ConfigError):
        load_project(p)


def test_working_dir_empty_string_raises(tmp_path: Path) -> None:
    p = write_text(
        tmp_path / "config.yaml",
        'tasks:\n  a:\n    command: echo a\n    working_dir: "   "\n',
    )
    with pytest.raises(ConfigError):
        load_project(p)


# -------------------------
# Phases and wait markers
# -------------------------


def test_phase_headers_split_tasks_and_name_phases(tmp_path: Path) -> None:
    p = write_text(
        tmp_path / "config.yaml",
        "tasks:\n"
        "  phase-checks:\n"
        "    name: Checks\n"
        "  lint:\n"
        "    command: echo lint\n"
        "  fmt:\n"
        "    command: echo fmt\n"
        "  phase-build:\n"
        "    name: Build\n"
        "    desc: compile things\n"
        "  build:\n"
        "    command: echo build\n",
    )
    proj = load_project(p)

    assert proj.tasks_ids() == ["lint", "fmt", "build"]
    assert [t.wait for t in proj] == [False, True, False]
    assert proj.phase_name("lint") == "Checks"
    assert proj.phase_name("build") == "Build"
    assert proj.phases[2].desc == "compile things"


def test_wait_marker_closes_phase_without_name(tmp_path: Path) -> None:
    p = write_json(
        tmp_path / "config.json",
        {
            "tasks": {
                "a": {"command": "echo a"},
                "wait": {},
                "b": {"command": "echo b"},
                "wait-2": {},
                "c": {"command": "echo c"},
            }
        },
    )
    proj = load_project(p)

    assert [t.wait for t in proj] == [True, True, False]
    assert proj.phase_name("a") is None


def test_leading_and_repeated_markers_do_not_create_empty_phases(tmp_path: Path) -> None:
    p = write_json(
        tmp_path / "config.json",
        {
            "tasks": {
                "wait": {},
                "phase-one": {"name": "One"},
                "a": {"command": "echo a"},
                "wait-1": {},
                "wait-2": {},
                "b": {"command": "echo b"},
            }
        },
    )
    proj = load_project(p)

    assert [t.wait for t in proj] == [True, False]
    assert proj.task_phase == {"a": 1}


def test_wait_marker_with_fields_raises(tmp_path: Path) -> None:
    p = write_text(
        tmp_path / "config.yaml",
        "tasks:\n  a:\n    command: echo a\n  wait:\n    command: echo nope\n",
    )
    with pytest.raises(ConfigError):
        load_project(p)


def test_phase_header_command_is_a_warning(tmp_path: Path) -> None:
    p = write_text(
        tmp_path / "config.yaml",
        "tasks:\n  phase-x:\n    name: X\n    command: echo x\n  a:\n    command: echo a\n",
    )
    proj = load_project(p)
    assert any("phase-x" in w for w in proj.warnings)


# -------------------------
# Outputs, fixes, watch paths, timeout
# -------------------------


def test_output_type_without_path_raises(tmp_path: Path) -> None:
    p = write_text(
        tmp_path / "config.yaml",
        "tasks:\n  a:\n    command: echo a\n    output_type: junit\n",
    )
    with pytest.raises(ConfigError):
        load_project(p)


def test_unknown_output_type_raises(tmp_path: Path) -> None:
    p = write_text(
        tmp_path / "config.yaml",
        "tasks:\n  a:\n    command: echo a\n    output_type: eslint\n    output_path: x\n",
    )
    with pytest.raises(ConfigError):
        load_project(p)


def test_output_path_without_type_is_a_warning(tmp_path: Path) -> None:
    p = write_text(
        tmp_path / "config.yaml",
        "tasks:\n  a:\n    command: echo a\n    output_path: report.xml\n",
    )
    proj = load_project(p)
    assert proj.warnings


def test_auto_fix_without_command_raises(tmp_path: Path) -> None:
    p = write_text(
        tmp_path / "config.yaml",
        "tasks:\n  a:\n    command: echo a\n    fix_type: auto\n",
    )
    with pytest.raises(ConfigError):
        load_project(p)


@pytest.mark.parametrize("watch", ["src/*.py", "[1]", '["  "]'])
def test_bad_watch_paths_raise(tmp_path: Path, watch: str) -> None:
    p = write_text(
        tmp_path / "config.yaml",
        f"tasks:\n  a:\n    command: echo a\n    watch_paths: {watch}\n",
    )
    with pytest.raises(ConfigError):
        load_project(p)


@pytest.mark.parametrize("timeout", ["0", "-1", "true", "soon"])
def test_bad_timeout_raises(tmp_path: Path, timeout: str) -> None:
    p = write_text(
        tmp_path / "config.yaml",
        f"tasks:\n  a:\n    command: echo a\n    timeout: {timeout}\n",
    )
    with pytest.raises(ConfigError):
        load_project(p)


# -------------------------
# defaults / task_defaults
# -------------------------


def test_unknown_top_level_field_raises(tmp_path: Path) -> None:
    p = write_json(tmp_path / "config.json", {"tasks": {"a": {"command": "x"}}, "extra": 1})
    with pytest.raises(ConfigError):
        load_project(p)


def test_unknown_defaults_field_raises(tmp_path: Path) -> None:
    p = write_json(
        tmp_path / "config.json",
        {"defaults": {"colour": True}, "tasks": {"a": {"command": "x"}}},
    )
    with pytest.raises(ConfigError):
        load_project(p)


@pytest.mark.parametrize(
    "defaults",
    [
        {"ui_mode": "fancy"},
        {"animated_group_by": "owner"},
        {"git": {"mode": "everything"}},
        {"fast_threshold": -5},
    ],
)
def test_invalid_defaults_raise(tmp_path: Path, defaults: dict) -> None:
    p = write_json(tmp_path / "config.json", {"defaults": defaults, "tasks": {"a": {"command": "x"}}})
    with pytest.raises(ConfigError):
        load_project(p)


def test_defaults_have_documented_values(tmp_path: Path) -> None:
    p = write_json(tmp_path / "config.json", {"tasks": {"a": {"command": "x"}}})
    proj = load_project(p)

    assert proj.defaults.output_root == ".devpipe"
    assert proj.defaults.fast_threshold == 300
    assert proj.defaults.ui_mode == "basic"
    assert proj.defaults.animation_refresh_ms == 500
    assert proj.defaults.animated_group_by == "phase"
    assert proj.defaults.git.mode == "staged_unstaged"
    assert proj.defaults.git.ref == "HEAD"
    assert proj.task_defaults.enabled is True
    assert proj.task_defaults.working_dir == "."


# -------------------------
# Happy paths (all formats)
# -------------------------


def test_valid_yaml_loads(tmp_path: Path) -> None:
    p = write_text(
        tmp_path / "config.yaml",
        "defaults:\n"
        "  fast_threshold: 60\n"
        "  git:\n"
        "    mode: ref\n"
        "    ref: main\n"
        "tasks:\n"
        "  test:\n"
        "    command: pytest\n"
        "    type: check\n"
        "    output_type: junit\n"
        "    output_path: report.xml\n"
        "    watch_paths: ['src/**/*.py']\n"
        "    timeout: 30\n"
        "    env:\n"
        "      KEY: value\n"
        "  lint:\n"
        "    command: ruff check .\n"
        "    fix_type: auto\n"
        "    fix_command: ruff check --fix .\n",
    )
    proj = load_project(p)

    assert proj.tasks_ids() == ["test", "lint"]
    assert proj.defaults.fast_threshold == 60
    assert proj.defaults.git.ref == "main"
    test = proj.get_task("test")
    assert test.output_type == "junit"
    assert test.output_path == "report.xml"
    assert test.watch_paths == ["src/**/*.py"]
    assert test.timeout == 30.0
    assert test.env == {"KEY": "value"}
    assert proj.get_task("lint").fix_command == "ruff check --fix ."
    assert proj.path == str(p.resolve())


def test_valid_json_loads(tmp_path: Path) -> None:
    obj = {
        "task_defaults": {"working_dir": "app", "fix_type": "helper"},
        "tasks": {
            "a": {"command": "echo a", "enabled": False},
            "b": {"command": "echo b"},
        },
    }
    p = write_json(tmp_path / "config.json", obj)
    proj = load_project(p)

    assert proj.tasks_ids() == ["a", "b"]
    assert proj.tasks["a"].enabled is False
    assert proj.task_defaults.working_dir == "app"
    assert proj.task_defaults.fix_type == "helper"


def test_valid_toml_loads(tmp_path: Path) -> None:
    # TOML tables: [tasks.<id>]; table order is declaration order
    p = write_text(
        tmp_path / "config.toml",
        "[defaults]\n"
        'ui_mode = "full"\n'
        "\n"
        "[tasks.phase-one]\n"
        'name = "One"\n'
        "\n"
        "[tasks.a]\n"
        'command = "echo a"\n'
        "\n"
        "[tasks.wait]\n"
        "\n"
        "[tasks.b]\n"
        'command = "echo b"\n',
    )
    proj = load_project(p)

    assert proj.tasks_ids() == ["a", "b"]
    assert proj.defaults.ui_mode == "full"
    assert proj.tasks["a"].wait is True
    assert proj.phase_name("a") == "One"
    assert proj.phase_name("b") is None
