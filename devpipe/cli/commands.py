from __future__ import annotations

import argparse
import sys
from datetime import datetime, timezone
from pathlib import Path

from devpipe import __version__
from devpipe.config import ConfigError, ProjectConfig, load_project, resolve_tasks
from devpipe.executor import Executor, Phase, RunResult, TaskRunner, group_into_phases
from devpipe.git import GitInfo, detect_changed_files, detect_project_root, is_safe_directory
from devpipe.record import RunRecorder, build_run_record, load_historical_averages, make_run_id
from devpipe.ui import ProgressEntry, ProgressTracker, Renderer, make_console

from .args import build_parser


def run_cli(argv: list[str] | None = None) -> int:
    parser = build_parser()
    try:
        args = parser.parse_args(argv)

        match args.command:
            case "run":
                return cmd_run(args)
            case "list":
                return cmd_list(args)
            case "validate":
                return cmd_validate(args)
            case "version":
                return cmd_version(args)
            case _:
                return 2

    except ConfigError as exc:
        print(str(exc), file=sys.stderr)
        return 2

    except KeyboardInterrupt:
        return 130


def cmd_run(args: argparse.Namespace) -> int:
    project = load_project(args.config)
    config_dir = Path(project.path or args.config).parent
    defaults = project.defaults

    project_root = _project_root(project, config_dir)
    git_mode, git_ref = defaults.git.mode, defaults.git.ref
    if args.since:
        git_mode, git_ref = "ref", args.since
    repo_root, in_repo = detect_project_root(project_root)
    git_info = detect_changed_files(repo_root, in_repo, git_mode, git_ref)

    output_root = Path(defaults.output_root)
    if not output_root.is_absolute():
        output_root = Path(project_root) / output_root
    if not is_safe_directory(output_root):
        raise ConfigError(f"Refusing to write output to system directory: {output_root}")

    only = _only(args)
    tasks = resolve_tasks(
        project,
        project_root,
        history=load_historical_averages(output_root),
        fix_type_override=args.fix_type,
        only=only or None,
        skip=args.skip,
        changed_files=git_info.changed_files if git_info.in_git_repo else None,
        repo_root=git_info.repo_root,
        ignore_watch_paths=args.ignore_watch_paths,
    )
    phases = group_into_phases(tasks)

    run_id = make_run_id()
    timestamp = datetime.now(timezone.utc).isoformat()
    recorder = RunRecorder(output_root)
    try:
        run_dir = recorder.create_run_dir(run_id)
    except OSError as exc:
        print(f"cannot create run directory: {exc}", file=sys.stderr)
        return 1

    renderer = Renderer(
        make_console(no_color=args.no_color),
        mode=args.ui or defaults.ui_mode,
        animated=args.dashboard,
        verbose=args.verbose,
    )
    renderer.attach_pipeline_log(run_dir / "pipeline.log")
    try:
        renderer.verbose(f"devpipe version: {__version__}")
        renderer.verbose(f"Config: {project.path}")
        renderer.verbose(f"Project root: {project_root}")
        renderer.verbose(f"Git root: {git_info.repo_root} (in repo: {git_info.in_git_repo})")
        renderer.verbose(f"Output directory: {output_root}")

        header_lines = renderer.header(
            run_id,
            str(project_root),
            git_info.mode if git_info.in_git_repo else "",
            len(git_info.changed_files),
        )
        if not tasks:
            renderer.warning("No tasks to run")

        rr = _execute(args, renderer, phases, run_dir, git_info, header_lines, project)
        renderer.summary(rr.results, bool(rr.failed), rr.duration_ms)

        record = build_run_record(
            run_id=run_id,
            timestamp=timestamp,
            repo_root=str(project_root),
            output_root=str(output_root),
            config_path=str(project.path),
            command=" ".join(["devpipe", *sys.argv[1:]]),
            flags=_flags(args),
            git=git_info.to_dict(),
            results=rr.results,
            duration_ms=rr.duration_ms,
            exit_code=rr.exit_code,
        )
        try:
            recorder.write_run(record)
            recorder.update_summary()
        except OSError as exc:
            renderer.warning(f"failed to write run record: {exc}")

        return rr.exit_code
    finally:
        renderer.detach_pipeline_log()


def _execute(
    args: argparse.Namespace,
    renderer: Renderer,
    phases: list[Phase],
    run_dir: Path,
    git_info: GitInfo,
    header_lines: int,
    project: ProjectConfig,
) -> RunResult:
    defaults = project.defaults
    tracker = ProgressTracker(_progress_entries(phases))
    renderer.start_animation(
        tracker,
        group_by=defaults.animated_group_by,
        refresh_ms=defaults.animation_refresh_ms,
        header_lines=header_lines,
    )

    runner = TaskRunner(
        run_dir,
        dry_run=args.dry_run,
        env=git_info.environment(),
        tracker=tracker,
    )
    executor = Executor(
        renderer,
        runner,
        fail_fast=args.fail_fast,
        fast=args.fast,
        fast_threshold=defaults.fast_threshold,
        only=bool(_only(args)),
    )
    try:
        return executor.run(phases)
    finally:
        renderer.stop_animation()


def _only(args: argparse.Namespace) -> list[str]:
    return [tid.strip() for tid in args.only.split(",") if tid.strip()]


def _project_root(project: ProjectConfig, config_dir: Path) -> str:
    if project.defaults.project_root:
        root = Path(project.defaults.project_root).expanduser()
        if not root.is_absolute():
            root = config_dir / root
        return str(root.resolve())
    root, _ = detect_project_root(config_dir)
    return root


def _progress_entries(phases: list[Phase]) -> list[ProgressEntry]:
    return [
        ProgressEntry(
            id=task.id,
            name=task.display_name,
            type=task.type,
            phase=number,
            phase_name=phase.name,
            estimated_seconds=task.estimated_seconds,
            is_estimate_guess=task.is_estimate_guess,
        )
        for number, phase in enumerate(phases, start=1)
        for task in phase.tasks
    ]


def _flags(args: argparse.Namespace) -> dict[str, object]:
    return {
        "since": args.since,
        "only": args.only,
        "skip": list(args.skip),
        "ui": args.ui or "",
        "fixType": args.fix_type or "",
        "dashboard": args.dashboard,
        "failFast": args.fail_fast,
        "dryRun": args.dry_run,
        "verbose": args.verbose,
        "fast": args.fast,
        "ignoreWatchPaths": args.ignore_watch_paths,
    }


def cmd_list(args: argparse.Namespace) -> int:
    project = load_project(args.config)
    for tid in project.tasks_ids():
        print(tid)
    return 0


def cmd_validate(args: argparse.Namespace) -> int:
    files = args.files or [args.config]
    invalid = 0

    for path in files:
        try:
            project = load_project(path)
        except ConfigError as exc:
            invalid += 1
            print(f"✗ {path}: {exc}", file=sys.stderr)
            continue

        print(f"✓ {path} ({len(project)} tasks)")
        for warning in project.warnings:
            print(f"  warning: {warning}")

    return 1 if invalid else 0


def cmd_version(args: argparse.Namespace) -> int:
    print(f"devpipe {__version__}")
    return 0
