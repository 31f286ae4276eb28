from __future__ import annotations

import argparse

from devpipe.config.types import FIX_TYPES, UI_MODES


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="devpipe")

    parser.add_argument(
        "--config",
        default="config.toml",
        help="Path to config file",
    )

    subparsers = parser.add_subparsers(
        dest="command",
        required=True,
    )

    # run
    run = subparsers.add_parser("run", help="Run the pipeline")
    run.add_argument("--since", default="", help="Git ref to compare against (overrides config)")
    run.add_argument("--only", default="", help="Comma-separated task ids to run")
    run.add_argument(
        "--skip",
        action="append",
        default=[],
        help="Task id to skip (repeatable)",
    )
    run.add_argument("--ui", choices=UI_MODES, default=None, help="UI mode (overrides config)")
    run.add_argument(
        "--fix-type",
        choices=FIX_TYPES,
        default=None,
        help="Fix type for every task (overrides config)",
    )
    run.add_argument("--dashboard", action="store_true", help="Show live progress")
    run.add_argument("--no-color", action="store_true", help="Disable colored output")
    run.add_argument("--fail-fast", action="store_true", help="Stop after the first failing phase")
    run.add_argument("--dry-run", action="store_true", help="Do not execute commands")
    run.add_argument("--verbose", action="store_true", help="Show verbose output")
    run.add_argument(
        "--fast",
        action="store_true",
        help="Skip long running tasks (estimate at or above fast_threshold)",
    )
    run.add_argument(
        "--ignore-watch-paths",
        action="store_true",
        help="Ignore watch_paths and run all tasks",
    )

    # list
    subparsers.add_parser("list", help="List tasks")

    # validate
    validate = subparsers.add_parser("validate", help="Validate config files")
    validate.add_argument("files", nargs="*", help="Config files (default: --config)")

    # version
    subparsers.add_parser("version", help="Show version")

    return parser
