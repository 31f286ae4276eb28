from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Mapping

from devpipe.executor.types import TaskResult, TaskStatus

logger = logging.getLogger(__name__)

RUN_FILE = "run.json"
SUMMARY_FILE = "summary.json"
HISTORY_WINDOW = 25


def make_run_id(now: datetime | None = None, pid: int | None = None) -> str:
    now = now or datetime.now(timezone.utc)
    pid = os.getpid() if pid is None else pid
    return f"{now.strftime('%Y-%m-%dT%H-%M-%SZ')}_{pid % 1_000_000:06d}"


def build_run_record(
    *,
    run_id: str,
    timestamp: str,
    repo_root: str,
    output_root: str,
    config_path: str,
    command: str,
    flags: Mapping[str, Any],
    git: Mapping[str, Any],
    results: Iterable[TaskResult],
    duration_ms: int,
    exit_code: int,
) -> dict[str, Any]:
    return {
        "runId": run_id,
        "timestamp": timestamp,
        "repoRoot": repo_root,
        "outputRoot": output_root,
        "configPath": config_path,
        "command": command,
        "flags": dict(flags),
        "git": dict(git),
        "tasks": [r.to_dict() for r in results],
        "durationMs": duration_ms,
        "exitCode": exit_code,
    }


class RunRecorder:
    def __init__(self, output_root: str | Path) -> None:
        self.output_root = Path(output_root)
        self.runs_dir = self.output_root / "runs"

    def create_run_dir(self, run_id: str) -> Path:
        run_dir = self.runs_dir / run_id
        (run_dir / "logs").mkdir(parents=True, exist_ok=True)
        return run_dir

    def write_run(self, record: Mapping[str, Any]) -> Path:
        path = self.runs_dir / record["runId"] / RUN_FILE
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(record, indent=2), encoding="utf-8")
        logger.info("Wrote %s", path)
        return path

    def load_runs(self) -> list[dict[str, Any]]:
        runs = []
        if not self.runs_dir.is_dir():
            return runs

        for path in sorted(self.runs_dir.glob(f"*/{RUN_FILE}")):
            try:
                record = json.loads(path.read_text(encoding="utf-8"))
            except (OSError, json.JSONDecodeError) as exc:
                logger.warning("Skipping unreadable run record %s: %s", path, exc)
                continue
            if isinstance(record, dict):
                runs.append(record)

        runs.sort(key=lambda r: str(r.get("runId", "")))
        return runs

    def update_summary(self) -> dict[str, Any]:
        runs = self.load_runs()
        recent = runs[-HISTORY_WINDOW:]

        summary = {
            "totalRuns": len(runs),
            "recentRuns": [_run_overview(r) for r in reversed(recent)],
            "taskStats": _task_stats(recent),
        }
        path = self.output_root / SUMMARY_FILE
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(summary, indent=2), encoding="utf-8")
        logger.info("Wrote %s", path)
        return summary


def _run_overview(record: Mapping[str, Any]) -> dict[str, Any]:
    tasks = record.get("tasks") or []
    statuses = [t.get("status") for t in tasks if isinstance(t, Mapping)]
    return {
        "runId": record.get("runId", ""),
        "timestamp": record.get("timestamp", ""),
        "status": "FAIL" if TaskStatus.FAIL.value in statuses else "PASS",
        "durationMs": record.get("durationMs", 0),
        "passed": statuses.count(TaskStatus.PASS.value),
        "failed": statuses.count(TaskStatus.FAIL.value),
        "skipped": statuses.count(TaskStatus.SKIPPED.value),
    }


def _task_stats(runs: list[dict[str, Any]]) -> dict[str, dict[str, Any]]:
    durations: dict[str, list[int]] = {}
    stats: dict[str, dict[str, Any]] = {}

    for record in runs:
        for task in record.get("tasks") or []:
            if not isinstance(task, Mapping) or "id" not in task:
                continue
            entry = stats.setdefault(
                task["id"],
                {"runs": 0, "passed": 0, "failed": 0, "skipped": 0, "avgDuration": 0.0},
            )
            entry["runs"] += 1
            match task.get("status"):
                case "PASS":
                    entry["passed"] += 1
                case "FAIL":
                    entry["failed"] += 1
                case "SKIPPED":
                    entry["skipped"] += 1
            # Skipped tasks never ran, so they say nothing about duration.
            if task.get("status") != "SKIPPED":
                durations.setdefault(task["id"], []).append(int(task.get("durationMs", 0)))

    for task_id, values in durations.items():
        stats[task_id]["avgDuration"] = sum(values) / len(values)
    return stats


def load_historical_averages(output_root: str | Path) -> dict[str, int]:
    """Average task durations from summary.json, in whole seconds (at least 1)."""
    path = Path(output_root) / SUMMARY_FILE
    try:
        summary = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return {}
    except (OSError, json.JSONDecodeError) as exc:
        logger.warning("Ignoring unreadable %s: %s", path, exc)
        return {}

    averages = {}
    task_stats = summary.get("taskStats") if isinstance(summary, dict) else None
    for task_id, stats in (task_stats or {}).items():
        avg = stats.get("avgDuration", 0) if isinstance(stats, dict) else 0
        if isinstance(avg, (int, float)) and avg > 0:
            averages[task_id] = max(1, int(avg / 1000))
    return averages
