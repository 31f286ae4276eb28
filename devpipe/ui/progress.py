from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass, replace
from enum import Enum
from typing import Iterable

VERBOSE_TAG = "verbose"

TERMINAL_STATES = frozenset({"PASS", "FAIL", "SKIPPED", "FIX FAILED", "STILL FAILING"})


@dataclass(frozen=True)
class ProgressEntry:
    id: str
    name: str = ""
    type: str = ""
    phase: int = 1
    phase_name: str = ""
    status: str = "PENDING"
    elapsed_seconds: float = 0.0
    estimated_seconds: int = 0
    is_estimate_guess: bool = False

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATES

    def group(self, group_by: str) -> str:
        if group_by == "phase":
            return self.phase_name or f"Phase {self.phase}"
        return self.type or "other"


@dataclass(frozen=True)
class ProgressSnapshot:
    entries: tuple[ProgressEntry, ...]
    log_lines: tuple[str, ...]


def _status_value(status: str | Enum) -> str:
    return status.value if isinstance(status, Enum) else str(status)


def task_fraction(elapsed: float, estimated: float) -> float:
    if estimated <= 0:
        return 0.0
    return min(max(elapsed / estimated, 0.0), 1.0)


def entry_fraction(entry: ProgressEntry) -> float:
    if entry.status == "PENDING":
        return 0.0
    if entry.status == "RUNNING":
        return task_fraction(entry.elapsed_seconds, entry.estimated_seconds)
    return 1.0


def overall_fraction(entries: Iterable[ProgressEntry]) -> float:
    entries = list(entries)
    if not entries:
        return 0.0
    return sum(entry_fraction(e) for e in entries) / len(entries)


def format_duration(ms: int | float) -> str:
    seconds = int(ms) // 1000
    if seconds < 60:
        return f"{seconds}s"

    minutes, seconds = divmod(seconds, 60)
    if minutes < 60:
        return f"{minutes}m" if seconds == 0 else f"{minutes}m {seconds}s"

    hours, minutes = divmod(minutes, 60)
    return f"{hours}h" if minutes == 0 else f"{hours}h {minutes}m"


class ProgressTracker:
    """Live, lock-guarded view of every task in the run.

    Entries are immutable and replaced as a whole, so a reader holding a
    snapshot never observes a half-applied update.
    """

    def __init__(self, entries: Iterable[ProgressEntry], max_log_lines: int = 3) -> None:
        self._lock = threading.Lock()
        self._entries = list(entries)
        self._index = {e.id: i for i, e in enumerate(self._entries)}
        self._log_lines: deque[str] = deque(maxlen=max(1, max_log_lines))

    @property
    def max_log_lines(self) -> int:
        return self._log_lines.maxlen or 0

    def set_max_log_lines(self, n: int) -> None:
        with self._lock:
            self._log_lines = deque(self._log_lines, maxlen=max(1, n))

    def update(self, task_id: str, status: str | Enum, elapsed: float | None = None) -> None:
        with self._lock:
            i = self._index.get(task_id)
            if i is None:
                return
            entry = self._entries[i]
            changes: dict[str, object] = {"status": _status_value(status)}
            if elapsed is not None:
                changes["elapsed_seconds"] = elapsed
            self._entries[i] = replace(entry, **changes)

    def tick(self, task_id: str, elapsed: float) -> None:
        with self._lock:
            i = self._index.get(task_id)
            if i is None or self._entries[i].status != "RUNNING":
                return
            self._entries[i] = replace(self._entries[i], elapsed_seconds=elapsed)

    def add_log_line(self, line: str) -> None:
        with self._lock:
            self._log_lines.append(line)

    def add_verbose_line(self, message: str) -> None:
        self.add_log_line(f"[{VERBOSE_TAG:<15}] {message}")

    def get(self, task_id: str) -> ProgressEntry:
        with self._lock:
            return self._entries[self._index[task_id]]

    def snapshot(self) -> ProgressSnapshot:
        with self._lock:
            return ProgressSnapshot(tuple(self._entries), tuple(self._log_lines))
