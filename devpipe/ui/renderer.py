from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import IO, Iterable

from rich.console import Console
from rich.text import Text

from devpipe.executor.types import TaskDefinition, TaskResult

from .animated import AnimatedRenderer, AnimationError
from .progress import ProgressTracker
from .styles import status_symbol, status_text

logger = logging.getLogger(__name__)

PACKAGE_LOGGER = "devpipe"
PIPELINE_LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


def make_console(*, no_color: bool = False, file: IO[str] | None = None) -> Console:
    return Console(file=file, no_color=no_color, highlight=False, soft_wrap=True)


def _tag(task_id: str) -> str:
    if len(task_id) > 15:
        task_id = task_id[:12] + "..."
    return f"[{task_id:<15}]"


class Renderer:
    """Everything devpipe shows on the terminal during a run.

    In animated mode, per-task lines are suppressed and state changes go to
    the ProgressTracker instead; the AnimatedRenderer owns the screen.
    """

    def __init__(
        self,
        console: Console,
        *,
        mode: str = "basic",
        animated: bool = False,
        verbose: bool = False,
    ) -> None:
        self.console = console
        self.mode = mode if console.is_terminal else "basic"
        self.animated = animated and console.is_terminal
        self.show_verbose = verbose
        self.tracker: ProgressTracker | None = None
        self._animation: AnimatedRenderer | None = None
        self._lock = threading.RLock()
        self._log_handler: logging.FileHandler | None = None
        self._saved_level: int | None = None

    def _print(self, *renderables: Text | str) -> None:
        with self._lock:
            self.console.print(*renderables)

    # pipeline log

    def attach_pipeline_log(self, path: str | Path) -> None:
        try:
            handler = logging.FileHandler(path, encoding="utf-8")
        except OSError as exc:
            logger.warning("Cannot open pipeline log %s: %s", path, exc)
            return
        handler.setFormatter(logging.Formatter(PIPELINE_LOG_FORMAT))
        handler.setLevel(logging.DEBUG)

        package_logger = logging.getLogger(PACKAGE_LOGGER)
        self._saved_level = package_logger.level
        package_logger.setLevel(logging.DEBUG)
        package_logger.addHandler(handler)
        self._log_handler = handler

    def detach_pipeline_log(self) -> None:
        if self._log_handler is None:
            return
        package_logger = logging.getLogger(PACKAGE_LOGGER)
        package_logger.removeHandler(self._log_handler)
        if self._saved_level is not None:
            package_logger.setLevel(self._saved_level)
        self._log_handler.close()
        self._log_handler = None

    def verbose(self, message: str) -> None:
        logger.info("[verbose] %s", message)
        if not self.show_verbose:
            return
        if self.tracker is not None and self._animation is not None:
            self.tracker.add_verbose_line(message)
        else:
            line = Text("[")
            line.append(f"{'verbose':<15}", style="bright_black")
            line.append(f"] {message}")
            self._print(line)

    def warning(self, message: str) -> None:
        logger.warning("%s", message)
        if self.tracker is not None and self._animation is not None:
            self.tracker.add_log_line(f"WARNING: {message}")
        else:
            self._print(Text(f"WARNING: {message}", style="yellow"))

    # animation

    def start_animation(
        self,
        tracker: ProgressTracker,
        *,
        group_by: str,
        refresh_ms: int,
        header_lines: int,
    ) -> bool:
        self.tracker = tracker
        if not self.animated:
            return False

        animation = AnimatedRenderer(
            self.console,
            tracker,
            mode=self.mode,
            group_by=group_by,
            refresh_ms=refresh_ms,
            header_lines=header_lines,
        )
        try:
            animation.start()
        except AnimationError as exc:
            self.animated = False
            self.warning(f"{exc}; falling back to plain output")
            return False

        self._animation = animation
        return True

    def stop_animation(self) -> None:
        if self._animation is None:
            return
        try:
            self._animation.stop()
        finally:
            self._animation = None
            self.animated = False

    # header / phases

    def header(self, run_id: str, repo_root: str, git_mode: str = "", changed_files: int = 0) -> int:
        """Print the run header and return how many rows it used."""
        if self.mode == "full":
            width = max(self.console.width, 20)
            rule = "═" * (width - 2)
            lines = [f"╔{rule}╗", f"║ devpipe run {run_id}", f"║ Repo: {repo_root}"]
            if git_mode:
                lines.append(f"║ Git: {git_mode} | Files: {changed_files}")
            lines.append(f"╚{rule}╝")
            with self._lock:
                for line in lines:
                    self.console.print(Text(line, style="bold" if "devpipe run" in line else ""),
                                       crop=True, no_wrap=True, overflow="crop")
                self.console.line()
            return len(lines) + 1

        lines = [Text(f"devpipe run {run_id}", style="bold"), Text(f"Repo root: {repo_root}")]
        if git_mode:
            lines.append(Text(f"Git mode: {git_mode}"))
            lines.append(Text(f"Changed files: {changed_files}"))
        with self._lock:
            for line in lines:
                self.console.print(line)
            self.console.line()
        return len(lines) + 1

    def phase_start(self, name: str, n_tasks: int) -> None:
        if self.animated:
            return
        self._print(Text(f"\n▶ Starting {name} ({n_tasks} tasks)", style="bold"))

    def phase_end(self, name: str, failed: bool) -> None:
        if self.animated:
            return
        status = Text("✗ Failed", style="red") if failed else Text("✓ Complete", style="green")
        self._print(Text(f"◀ {name} ").append_text(status))

    def fail_fast_stop(self) -> None:
        self.verbose("Stopping execution due to phase failure (fail-fast enabled)")
        if not self.animated:
            self._print(Text("\n⚠ Stopping execution due to phase failure (fail-fast enabled)", style="yellow"))

    # tasks

    def task_block(self, task: TaskDefinition, lines: Iterable[str], result: TaskResult) -> None:
        """Print one task's RUN line, buffered output and completion line together."""
        with self._lock:
            self.task_start(task)
            for line in lines:
                self.console.print(Text.from_ansi(line), soft_wrap=True)
            self.task_complete(result)

    def task_start(self, task: TaskDefinition) -> None:
        if self.animated:
            return
        line = Text(f"{_tag(task.id)} ")
        line.append("RUN", style="bright_blue")
        if self.show_verbose:
            line.append(f"    {task.command}")
        self._print(line)

    def task_complete(self, result: TaskResult) -> None:
        if self.animated:
            return
        status = result.status.value
        line = Text(f"{_tag(result.id)} ")
        line.append_text(status_symbol(status))
        line.append(" ")
        line.append_text(status_text(status))
        if self.show_verbose and result.exit_code not in (None, 0):
            line.append(f" (exit {result.exit_code}, {result.duration_ms}ms)")
        else:
            line.append(f" ({result.duration_ms}ms)")
        if result.timed_out:
            line.append(" timed out", style="red")
        with self._lock:
            self.console.print(line)
            self.console.line()

    def task_skipped(self, task_id: str, reason: str) -> None:
        if self.animated:
            return
        line = Text(f"{_tag(task_id)} ")
        line.append_text(status_symbol("SKIPPED"))
        line.append(" ")
        line.append_text(status_text("SKIPPED"))
        if self.show_verbose and reason:
            line.append(f" ({reason})")
        with self._lock:
            self.console.print(line)
            self.console.line()

    # auto-fix

    def fix_progress(self, task_id: str, state: str, message: Text | None = None) -> None:
        if self.tracker is not None and self._animation is not None:
            self.tracker.update(task_id, state)
            return
        if message is not None:
            self._print(Text(f"{_tag(task_id)} ").append_text(message))

    def fix_started(self, task_id: str, fix_command: str) -> None:
        self.verbose(f"{task_id} Auto-fixing: {fix_command}")
        self.fix_progress(task_id, "FIXING", Text(f"🔧 Auto-fixing: {fix_command}", style="bright_blue"))

    def fix_failed(self, task_id: str, fix_duration_ms: int) -> None:
        self.verbose(f"{task_id} fix command failed after {fix_duration_ms}ms")
        self.fix_progress(task_id, "FIX FAILED", Text("❌ Failed to fix", style="red"))

    def fix_rechecking(self, task_id: str, fix_duration_ms: int) -> None:
        self.fix_progress(
            task_id,
            "RE-CHECKING",
            Text(f"✅ Fix succeeded ({fix_duration_ms}ms), re-checking...", style="green"),
        )

    def fix_result(self, task_id: str, passed: bool, recheck_duration_ms: int) -> None:
        if passed:
            self.fix_progress(task_id, "PASS", Text(f"✅ PASS ({recheck_duration_ms}ms)", style="green"))
        else:
            self.fix_progress(task_id, "STILL FAILING", Text("❌ Still failing after fix", style="red"))

    def helper_hint(self, task_id: str, fix_command: str) -> None:
        hint = f"To fix run: {fix_command}"
        logger.info("%s %s", task_id, hint)
        if self.tracker is not None and self._animation is not None:
            self.tracker.add_log_line(f"{_tag(task_id)} 💡 {hint}")
        else:
            self._print(Text(f"{_tag(task_id)} 💡 ").append_text(Text(hint, style="yellow")))

    # summary

    def summary(self, results: Iterable[TaskResult], any_failed: bool, total_ms: int) -> None:
        results = list(results)
        id_width = max([12, *(min(len(r.id), 45) for r in results)])

        with self._lock:
            self.console.line()
            self.console.print(Text("Summary:", style="bold"))
            for result in results:
                status = result.status.value
                task_id = result.id if len(result.id) <= 45 else result.id[:42] + "..."
                line = Text("  ")
                line.append_text(status_symbol(status))
                line.append(f" {task_id:<{id_width}} ")
                line.append_text(status_text(status, f"{status:<10}"))
                line.append(f" {result.duration_ms / 1000:.2f}s ({result.duration_ms}ms)")
                if result.auto_fixed:
                    line.append(" [auto-fixed]", style="bright_black")
                self.console.print(line)

            self.console.line()
            self.console.print(f"Total: {total_ms / 1000:.2f}s ({total_ms}ms)")
            self.console.line()
            if any_failed:
                self.console.print(Text("devpipe: one or more tasks failed", style="red"))
            else:
                self.console.print(Text("devpipe: all tasks passed or were skipped", style="green"))
