from __future__ import annotations

import logging
import os
import shutil
import signal
import subprocess
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import IO, TYPE_CHECKING, Callable, Mapping

from devpipe import metrics
from devpipe.metrics.types import MetricsError, TaskMetrics

from .types import TaskDefinition, TaskResult, TaskStatus

if TYPE_CHECKING:
    from devpipe.ui.progress import ProgressTracker

logger = logging.getLogger(__name__)

LineSink = Callable[[str], None]
MetricsParser = Callable[[str, Path], TaskMetrics]

TICK_INTERVAL = 0.1
TIMEOUT_EXIT_CODE = 124
SPAWN_ERROR_EXIT_CODE = 1


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def prefix_line(task_id: str, line: str) -> str:
    return f"[{task_id:<15}] {line}"


@dataclass(frozen=True)
class CommandOutcome:
    exit_code: int
    duration_ms: int
    timed_out: bool = False


def _terminate_process(process: subprocess.Popen[bytes]) -> None:
    try:
        if os.name == "posix":
            # The shell runs in its own session; signal the whole group.
            os.killpg(process.pid, signal.SIGTERM)
        else:
            process.terminate()
    except OSError:
        return
    try:
        process.wait(timeout=2)
    except subprocess.TimeoutExpired:
        try:
            if os.name == "posix":
                os.killpg(process.pid, signal.SIGKILL)
            else:
                process.kill()
        except OSError:
            return
        process.wait(timeout=2)


class TaskRunner:
    """Runs one task's shell command and turns the outcome into a TaskResult.

    Output is written raw to ``<run>/logs/<task-id>.log`` and forwarded line
    by line, prefixed with the task id, to the sink passed to :meth:`run`.
    """

    def __init__(
        self,
        run_dir: str | Path,
        *,
        dry_run: bool = False,
        env: Mapping[str, str] | None = None,
        tracker: ProgressTracker | None = None,
        metrics_parser: MetricsParser = metrics.parse,
    ) -> None:
        self.run_dir = Path(run_dir)
        self.logs_dir = self.run_dir / "logs"
        self.artifacts_dir = self.run_dir / "artifacts"
        self.dry_run = dry_run
        self.env = dict(env or {})
        self.tracker = tracker
        self.metrics_parser = metrics_parser

    def log_path(self, task_id: str) -> Path:
        return self.logs_dir / f"{task_id}.log"

    def run(self, task: TaskDefinition, sink: LineSink | None = None) -> TaskResult:
        result = TaskResult.for_task(task)
        result.log_path = str(self.log_path(task.id))

        if self.dry_run:
            result.skip("dry-run")
            self._track(task.id, TaskStatus.SKIPPED)
            return result

        result.move_to(TaskStatus.RUNNING)
        self._track(task.id, TaskStatus.RUNNING, 0.0)
        logger.info("%s starting: %s (in %s)", task.id, task.command, task.workdir)

        result.start_time = now_iso()
        outcome = self.execute(task, task.command, sink, tick=True)
        result.end_time = now_iso()
        result.duration_ms = outcome.duration_ms
        result.exit_code = outcome.exit_code
        result.timed_out = outcome.timed_out

        status, result.metrics = self.evaluate(task, outcome, sink)
        result.move_to(status)
        self._track(task.id, status, outcome.duration_ms / 1000)
        logger.info(
            "%s finished: %s (exit %s, %dms)",
            task.id,
            status.value,
            outcome.exit_code,
            outcome.duration_ms,
        )
        return result

    def run_fix(self, task: TaskDefinition, sink: LineSink | None = None) -> CommandOutcome:
        self._append_log(task.id, f"\n--- Auto-fix: {task.fix_command} ---\n")
        outcome = self.execute(task, task.fix_command, sink, append=True)
        logger.info("%s fix exited %s after %dms", task.id, outcome.exit_code, outcome.duration_ms)
        return outcome

    def recheck(
        self, task: TaskDefinition, sink: LineSink | None = None
    ) -> tuple[CommandOutcome, TaskStatus, TaskMetrics | None]:
        self._append_log(task.id, f"\n--- Re-check: {task.command} ---\n")
        outcome = self.execute(task, task.command, sink, append=True)
        status, task_metrics = self.evaluate(task, outcome, sink)
        logger.info("%s re-check: %s (exit %s)", task.id, status.value, outcome.exit_code)
        return outcome, status, task_metrics

    def evaluate(
        self, task: TaskDefinition, outcome: CommandOutcome, sink: LineSink | None
    ) -> tuple[TaskStatus, TaskMetrics | None]:
        if outcome.exit_code != 0:
            # Best effort so reports can show what failed.
            return TaskStatus.FAIL, self._best_effort_metrics(task)

        if not (task.metrics_format and task.metrics_path):
            return TaskStatus.PASS, None

        path = self.metrics_file(task)
        try:
            size = path.stat().st_size
        except OSError:
            self._emit(sink, task.id, f"ERROR: Metrics file not found: {task.metrics_path}")
            logger.warning("%s metrics file not found: %s", task.id, path)
            return TaskStatus.FAIL, None

        if size == 0:
            self._emit(sink, task.id, f"ERROR: Metrics file is empty: {task.metrics_path}")
            logger.warning("%s metrics file is empty: %s", task.id, path)
            return TaskStatus.FAIL, None

        try:
            task_metrics = self.metrics_parser(task.metrics_format, path)
        except MetricsError as exc:
            self._emit(sink, task.id, f"ERROR: {exc}")
            logger.warning("%s metrics validation failed: %s", task.id, exc)
            return TaskStatus.FAIL, None

        task_metrics.data["path"] = str(path)
        task_metrics.data["size"] = size
        logger.info("%s artifact validation passed: %s (%d bytes)", task.id, path, size)
        self._copy_artifact(task, path)
        return TaskStatus.PASS, task_metrics

    def metrics_file(self, task: TaskDefinition) -> Path:
        path = Path(task.metrics_path)
        return path if path.is_absolute() else Path(task.workdir) / path

    def environment(self, task: TaskDefinition) -> dict[str, str]:
        return {**os.environ, **self.env, **task.env, "FORCE_COLOR": "1"}

    def execute(
        self,
        task: TaskDefinition,
        command: str,
        sink: LineSink | None,
        *,
        append: bool = False,
        tick: bool = False,
    ) -> CommandOutcome:
        log = self._open_log(task.id, append=append)
        started = time.monotonic()

        try:
            process = subprocess.Popen(
                command,
                shell=True,
                cwd=task.workdir,
                env=self.environment(task),
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                start_new_session=os.name == "posix",
            )
        except OSError as exc:
            message = f"failed to start: {exc}"
            logger.warning("%s %s", task.id, message)
            log = self._write_log(log, task.id, (message + "\n").encode())
            self._emit(sink, task.id, message)
            if log is not None:
                log.close()
            return CommandOutcome(SPAWN_ERROR_EXIT_CODE, _elapsed_ms(started))

        stop = threading.Event()
        expired = threading.Event()
        ticker = None
        if tick and self.tracker is not None:
            ticker = threading.Thread(
                target=self._tick,
                args=(task.id, started, stop),
                name=f"devpipe-tick-{task.id}",
                daemon=True,
            )
            ticker.start()

        timer = None
        if task.timeout:
            timer = threading.Timer(task.timeout, self._expire, args=(task.id, process, expired))
            timer.daemon = True
            timer.start()

        try:
            assert process.stdout is not None
            for raw in process.stdout:
                log = self._write_log(log, task.id, raw)
                line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
                self._emit(sink, task.id, line)
            exit_code = process.wait()
        finally:
            stop.set()
            if timer is not None:
                timer.cancel()
            if ticker is not None:
                ticker.join()
            if log is not None:
                log.close()

        if expired.is_set():
            self._emit(sink, task.id, f"timed out after {task.timeout}s")
            return CommandOutcome(TIMEOUT_EXIT_CODE, _elapsed_ms(started), timed_out=True)
        return CommandOutcome(exit_code, _elapsed_ms(started))

    def _expire(self, task_id: str, process: subprocess.Popen[bytes], expired: threading.Event) -> None:
        if process.poll() is not None:
            return
        logger.warning("%s exceeded its timeout, terminating", task_id)
        expired.set()
        _terminate_process(process)

    def _tick(self, task_id: str, started: float, stop: threading.Event) -> None:
        assert self.tracker is not None
        while not stop.wait(TICK_INTERVAL):
            self.tracker.tick(task_id, time.monotonic() - started)

    def _track(self, task_id: str, status: TaskStatus, elapsed: float | None = None) -> None:
        if self.tracker is not None:
            self.tracker.update(task_id, status, elapsed)

    @staticmethod
    def _emit(sink: LineSink | None, task_id: str, line: str) -> None:
        if sink is not None:
            sink(prefix_line(task_id, line))

    def _open_log(self, task_id: str, *, append: bool) -> IO[bytes] | None:
        path = self.log_path(task_id)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            return path.open("ab" if append else "wb")
        except OSError as exc:
            logger.warning("%s cannot create log file %s: %s", task_id, path, exc)
            return None

    def _write_log(self, log: IO[bytes] | None, task_id: str, data: bytes) -> IO[bytes] | None:
        if log is None:
            return None
        try:
            log.write(data)
            return log
        except OSError as exc:
            logger.warning("%s cannot write log file: %s", task_id, exc)
            log.close()
            return None

    def _append_log(self, task_id: str, text: str) -> None:
        log = self._open_log(task_id, append=True)
        if log is None:
            return
        log = self._write_log(log, task_id, text.encode())
        if log is not None:
            log.close()

    def _best_effort_metrics(self, task: TaskDefinition) -> TaskMetrics | None:
        if not (task.metrics_format and task.metrics_path):
            return None
        path = self.metrics_file(task)
        if not path.is_file() or path.stat().st_size == 0:
            return None
        try:
            return self.metrics_parser(task.metrics_format, path)
        except MetricsError as exc:
            logger.info("%s could not parse metrics of failed task: %s", task.id, exc)
            return None

    def _copy_artifact(self, task: TaskDefinition, source: Path) -> None:
        declared = Path(os.path.normpath(task.metrics_path))
        if declared.is_absolute():
            dest = self.artifacts_dir / task.id / declared.relative_to(declared.anchor)
        elif declared.parts and declared.parts[0] == os.pardir:
            # Paths leaving the working directory must not leave the archive.
            dest = self.artifacts_dir / task.id / declared.name
        else:
            dest = self.artifacts_dir / declared

        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(source, dest)
        except OSError as exc:
            logger.warning("%s failed to copy artifact %s: %s", task.id, source, exc)
            return
        logger.info("%s artifact copied to %s", task.id, dest)


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)
