from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from devpipe.metrics.types import TaskMetrics


class TaskStatus(str, Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    PASS = "PASS"
    FAIL = "FAIL"
    SKIPPED = "SKIPPED"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.PASS, TaskStatus.FAIL, TaskStatus.SKIPPED)


_TRANSITIONS = {
    TaskStatus.PENDING: {TaskStatus.RUNNING, TaskStatus.SKIPPED},
    TaskStatus.RUNNING: {TaskStatus.PASS, TaskStatus.FAIL},
}


class InvalidTransitionError(Exception):
    def __init__(self, task_id: str, current: TaskStatus, new: TaskStatus) -> None:
        super().__init__(f"{task_id}: cannot move from {current.value} to {new.value}")
        self.task_id = task_id
        self.current = current
        self.new = new


@dataclass(frozen=True)
class TaskDefinition:
    id: str
    command: str
    workdir: str
    name: str = ""
    desc: str = ""
    phase: str = ""
    type: str = ""
    env: dict[str, str] = field(default_factory=dict)
    estimated_seconds: int = 10
    is_estimate_guess: bool = True
    wait: bool = False
    metrics_format: str = ""
    metrics_path: str = ""
    fix_type: str = ""
    fix_command: str = ""
    watch_paths: tuple[str, ...] = ()
    timeout: float | None = None

    @property
    def display_name(self) -> str:
        return self.name or self.id


@dataclass(frozen=True)
class Phase:
    name: str
    tasks: tuple[TaskDefinition, ...]

    def __len__(self) -> int:
        return len(self.tasks)


@dataclass
class TaskResult:
    id: str
    command: str
    workdir: str
    name: str = ""
    desc: str = ""
    phase: str = ""
    type: str = ""
    status: TaskStatus = TaskStatus.PENDING
    exit_code: int | None = None
    skip_reason: str = ""
    log_path: str = ""
    start_time: str = ""
    end_time: str = ""
    duration_ms: int = 0
    estimated_seconds: int = 0
    timed_out: bool = False
    auto_fixed: bool = False
    fix_command: str = ""
    initial_exit_code: int | None = None
    fix_duration_ms: int = 0
    recheck_duration_ms: int = 0
    metrics: TaskMetrics | None = None

    @classmethod
    def for_task(cls, task: TaskDefinition) -> TaskResult:
        return cls(
            id=task.id,
            command=task.command,
            workdir=task.workdir,
            name=task.name,
            desc=task.desc,
            phase=task.phase,
            type=task.type,
            estimated_seconds=task.estimated_seconds,
        )

    @property
    def skipped(self) -> bool:
        return self.status == TaskStatus.SKIPPED

    def move_to(self, status: TaskStatus) -> None:
        if status not in _TRANSITIONS.get(self.status, set()):
            raise InvalidTransitionError(self.id, self.status, status)
        self.status = status

    def skip(self, reason: str) -> None:
        self.move_to(TaskStatus.SKIPPED)
        self.skip_reason = reason

    def mark_fixed(
        self, *, fix_command: str, fix_duration_ms: int, recheck_duration_ms: int
    ) -> None:
        if self.status != TaskStatus.FAIL:
            raise InvalidTransitionError(self.id, self.status, TaskStatus.PASS)
        self.record_fix_attempt(
            fix_command=fix_command,
            fix_duration_ms=fix_duration_ms,
            recheck_duration_ms=recheck_duration_ms,
        )
        self.status = TaskStatus.PASS
        self.exit_code = 0
        self.auto_fixed = True

    def record_fix_attempt(
        self, *, fix_command: str, fix_duration_ms: int, recheck_duration_ms: int
    ) -> None:
        # Only the first failing exit code is kept.
        if self.initial_exit_code is None:
            self.initial_exit_code = self.exit_code
        self.duration_ms += fix_duration_ms + recheck_duration_ms
        self.fix_command = fix_command
        self.fix_duration_ms = fix_duration_ms
        self.recheck_duration_ms = recheck_duration_ms

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "status": self.status.value,
            "skipped": self.skipped,
            "command": self.command,
            "workdir": self.workdir,
            "logPath": self.log_path,
            "durationMs": self.duration_ms,
            "estimatedSeconds": self.estimated_seconds,
        }
        optional = {
            "desc": self.desc,
            "phase": self.phase,
            "exitCode": self.exit_code,
            "skipReason": self.skip_reason,
            "startTime": self.start_time,
            "endTime": self.end_time,
            "timedOut": self.timed_out,
            "autoFixed": self.auto_fixed,
            "fixCommand": self.fix_command,
            "initialExitCode": self.initial_exit_code,
            "fixDurationMs": self.fix_duration_ms,
            "recheckDurationMs": self.recheck_duration_ms,
            "metrics": self.metrics.to_dict() if self.metrics else None,
        }
        for key, value in optional.items():
            if value is not None and (key == "exitCode" or value not in ("", False, 0)):
                out[key] = value
        return out


@dataclass(frozen=True)
class RunResult:
    results: list[TaskResult]
    failed: list[str]
    skipped: list[str]
    stopped_early: bool = False
    duration_ms: int = 0

    @property
    def exit_code(self) -> int:
        return 1 if self.failed else 0

    def get(self, task_id: str) -> TaskResult:
        for result in self.results:
            if result.id == task_id:
                return result
        raise KeyError(task_id)
