from __future__ import annotations

import logging
import threading

from rich.console import Console
from rich.control import Control
from rich.segment import ControlType
from rich.text import Text

from .progress import (
    ProgressEntry,
    ProgressSnapshot,
    ProgressTracker,
    format_duration,
    overall_fraction,
    task_fraction,
)
from .styles import progress_bar, status_style, status_symbol, status_text

logger = logging.getLogger(__name__)

DEFAULT_REFRESH_MS = 500
MIN_REFRESH_MS = 20
MAX_REFRESH_MS = 2000
SECOND_RENDER_DELAY = 0.1
MIN_LOG_LINES = 3
# Rows kept free below the animation for the final summary.
SUMMARY_RESERVE = 6
OUTPUT_HEADER = "─── Output ───"


def normalize_refresh_ms(refresh_ms: int) -> int:
    if MIN_REFRESH_MS <= refresh_ms <= MAX_REFRESH_MS:
        return refresh_ms
    return DEFAULT_REFRESH_MS


def animation_lines(mode: str, group_sizes: list[int], n_tasks: int) -> int:
    if mode == "full":
        # bar + blank, then header + rows + footer + blank per group
        return 2 + sum(3 + size for size in group_sizes)
    return 2 + n_tasks + 1


def log_window_size(height: int, header_lines: int, anim_lines: int) -> int:
    return max(MIN_LOG_LINES, height - header_lines - anim_lines - 1 - SUMMARY_RESERVE)


class AnimationError(Exception):
    pass


class AnimatedRenderer:
    """Redraws a fixed block of terminal rows from a ProgressTracker.

    The number of rows is decided once, at construction, from the task set
    and the terminal height. Every frame after the first moves the cursor
    back up over exactly that many rows, so the region never drifts.
    """

    def __init__(
        self,
        console: Console,
        tracker: ProgressTracker,
        *,
        mode: str = "basic",
        group_by: str = "phase",
        refresh_ms: int = DEFAULT_REFRESH_MS,
        header_lines: int = 0,
    ) -> None:
        self.console = console
        self.tracker = tracker
        self.mode = "full" if mode == "full" else "basic"
        self.group_by = group_by if group_by in ("type", "phase") else "type"
        self.refresh_ms = normalize_refresh_ms(refresh_ms)

        entries = tracker.snapshot().entries
        self._groups: list[tuple[str, list[str]]] = []
        for entry in entries:
            name = entry.group(self.group_by)
            for group_name, ids in self._groups:
                if group_name == name:
                    ids.append(entry.id)
                    break
            else:
                self._groups.append((name, [entry.id]))

        self.anim_lines = animation_lines(
            self.mode, [len(ids) for _, ids in self._groups], len(entries)
        )
        self.max_log_lines = log_window_size(
            console.size.height, header_lines, self.anim_lines
        )
        self.line_budget = self.anim_lines + 1 + self.max_log_lines
        tracker.set_max_log_lines(self.max_log_lines)

        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._render_lock = threading.Lock()
        self._painted = False

    def start(self) -> None:
        try:
            self.render()
        except (OSError, ValueError) as exc:
            self._show_cursor()
            raise AnimationError(f"animation not supported: {exc}") from exc

        self._thread = threading.Thread(target=self._loop, name="devpipe-animation", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        try:
            self._stop.set()
            if self._thread is not None:
                self._thread.join()
                self._thread = None
            if self._painted:
                self.render()
                self.console.line()
        finally:
            self._show_cursor()

    def _loop(self) -> None:
        if self._stop.wait(SECOND_RENDER_DELAY):
            return
        self.render()
        while not self._stop.wait(self.refresh_ms / 1000):
            self.render()

    def _show_cursor(self) -> None:
        try:
            self.console.control(Control.show_cursor(True))
        except (OSError, ValueError) as exc:
            logger.warning("Could not restore cursor: %s", exc)

    def _rewind(self) -> Control:
        moves = ((ControlType.CURSOR_UP, 1), (ControlType.ERASE_IN_LINE, 2)) * self.line_budget
        return Control(ControlType.CARRIAGE_RETURN, *moves)

    def render(self) -> None:
        rows = self.build_rows(self.tracker.snapshot())
        with self._render_lock, self.console:
            if self._painted:
                self.console.control(self._rewind())
            else:
                self.console.control(Control.show_cursor(False))
                self._painted = True
            for row in rows:
                self.console.print(row, crop=True, overflow="crop", no_wrap=True)

    def build_rows(self, snapshot: ProgressSnapshot) -> list[Text]:
        if self.mode == "full":
            rows = self._full_rows(snapshot)
        else:
            rows = self._basic_rows(snapshot)

        rows.append(Text(OUTPUT_HEADER, style="bold"))
        window = list(snapshot.log_lines)[-self.max_log_lines :]
        rows.extend(_log_row(line) for line in window)
        rows.extend(Text() for _ in range(self.max_log_lines - len(window)))
        return rows

    def _bar_width(self) -> int:
        return 60 if self.console.width > 80 else 40

    def _basic_rows(self, snapshot: ProgressSnapshot) -> list[Text]:
        entries = snapshot.entries
        done = sum(1 for e in entries if e.is_terminal)

        bar = progress_bar(overall_fraction(entries), self._bar_width())
        bar.append(f" ({done}/{len(entries)} tasks)")
        rows = [bar, Text()]

        for entry in entries:
            row = status_symbol(entry.status)
            row.append(f" {entry.id:<15} ")
            if entry.status == "RUNNING":
                pct = task_fraction(entry.elapsed_seconds, entry.estimated_seconds) * 100
                row.append("running...", style=status_style("RUNNING"))
                row.append(f" {pct:.0f}%", style="bright_black")
            elif entry.status == "PENDING":
                row.append("pending", style=status_style("PENDING"))
            else:
                row.append_text(status_text(entry.status))
            rows.append(row)

        rows.append(Text())
        return rows

    def _full_rows(self, snapshot: ProgressSnapshot) -> list[Text]:
        by_id = {e.id: e for e in snapshot.entries}
        width = self.console.width

        bar = Text("Overall: ")
        bar.append_text(progress_bar(overall_fraction(snapshot.entries), self._bar_width()))
        rows = [bar, Text()]

        for name, ids in self._groups:
            head = f"─ {name.title()} "
            rows.append(Text("┌" + head + "─" * max(0, width - len(head) - 2) + "┐"))
            rows.extend(self._full_task_row(by_id[tid]) for tid in ids)
            rows.append(Text("└" + "─" * max(0, width - 2) + "┘"))
            rows.append(Text())
        return rows

    def _full_task_row(self, entry: ProgressEntry) -> Text:
        row = Text("│ ")
        row.append_text(status_symbol(entry.status))
        row.append(f" {entry.id:<12} ")

        elapsed = format_duration(entry.elapsed_seconds * 1000)
        match entry.status:
            case "PASS" | "FAIL":
                row.append(elapsed, style=status_style(entry.status))
            case "SKIPPED":
                row.append("skipped", style=status_style("SKIPPED"))
            case "PENDING":
                row.append("pending", style=status_style("PENDING"))
            case "RUNNING":
                estimate = format_duration(entry.estimated_seconds * 1000)
                if entry.is_estimate_guess:
                    estimate = "~" + estimate
                row.append(f"{elapsed} / {estimate}   ")
                fraction = task_fraction(entry.elapsed_seconds, entry.estimated_seconds)
                row.append_text(progress_bar(fraction, 12))
            case _:
                row.append(entry.status.lower(), style=status_style(entry.status))
        return row


def _log_row(line: str) -> Text:
    text = Text.from_ansi(line.replace("\r", ""))
    text.no_wrap = True
    text.overflow = "crop"
    return text
