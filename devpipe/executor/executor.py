from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from typing import TYPE_CHECKING, Sequence

from .task import LineSink, TaskRunner, now_iso
from .types import Phase, RunResult, TaskDefinition, TaskResult, TaskStatus

if TYPE_CHECKING:
    from devpipe.ui.renderer import Renderer

logger = logging.getLogger(__name__)

MAX_CONCURRENCY = 10
FAST_SKIP_REASON = "skipped by --fast"


class Executor:
    """Runs phases one after another, and the tasks of a phase concurrently."""

    def __init__(
        self,
        renderer: Renderer,
        runner: TaskRunner,
        *,
        fail_fast: bool = False,
        fast: bool = False,
        fast_threshold: int = 300,
        only: bool = False,
    ) -> None:
        self.renderer = renderer
        self.runner = runner
        self.fail_fast = fail_fast
        self.fast = fast
        self.fast_threshold = fast_threshold
        self.only = only

    def run(self, phases: Sequence[Phase]) -> RunResult:
        started = time.monotonic()
        results: list[TaskResult] = []
        stopped_early = False

        if len(phases) > 1:
            self.renderer.verbose(f"Executing {len(phases)} phases with parallel tasks")

        with ThreadPoolExecutor(MAX_CONCURRENCY, thread_name_prefix="devpipe-task") as pool:
            for index, phase in enumerate(phases, start=1):
                if len(phases) > 1:
                    self.renderer.phase_start(phase.name, len(phase))
                    self.renderer.verbose(f"Phase {index}/{len(phases)} ({len(phase)} tasks)")

                phase_results, cut_short = self._run_phase(pool, phase)
                results.extend(phase_results)
                failed = any(r.status == TaskStatus.FAIL for r in phase_results)

                if len(phases) > 1:
                    self.renderer.phase_end(phase.name, failed)

                if failed and self.fail_fast:
                    stopped_early = index < len(phases) or cut_short
                    if stopped_early:
                        self.renderer.fail_fast_stop()
                    break

        return RunResult(
            results=results,
            failed=[r.id for r in results if r.status == TaskStatus.FAIL],
            skipped=[r.id for r in results if r.status == TaskStatus.SKIPPED],
            stopped_early=stopped_early,
            duration_ms=int((time.monotonic() - started) * 1000),
        )

    def _fast_skipped(self, task: TaskDefinition) -> bool:
        return self.fast and not self.only and task.estimated_seconds >= self.fast_threshold

    def _run_phase(self, pool: ThreadPoolExecutor, phase: Phase) -> tuple[list[TaskResult], bool]:
        """Run one phase; the flag says whether some tasks were never started."""
        slots: list[TaskResult | None] = [None] * len(phase)
        remaining = list(range(len(phase)))

        while remaining:
            batch, remaining = self._run_batch(pool, phase, remaining, slots)
            if not self.runner.dry_run:
                self._auto_fix(pool, phase, batch)
            if not remaining:
                break
            if any(r is not None and r.status == TaskStatus.FAIL for r in slots):
                logger.info("Fail-fast: %d tasks of %s not started", len(remaining), phase.name)
                self._mark_not_started([phase.tasks[i] for i in remaining])
                break
            # Auto-fix cleared every failure, so the held back tasks still run.
            self.renderer.verbose(f"Failures fixed, resuming {len(remaining)} tasks")

        results = [r for r in slots if r is not None]
        self._helper_hints(phase, results)
        return results, bool(remaining)

    def _run_batch(
        self,
        pool: ThreadPoolExecutor,
        phase: Phase,
        indices: list[int],
        slots: list[TaskResult | None],
    ) -> tuple[list[TaskResult], list[int]]:
        futures: list[tuple[int, Future[TaskResult]]] = []
        stop = threading.Event()
        slots_free = threading.BoundedSemaphore(MAX_CONCURRENCY)
        previous_done: threading.Event | None = None
        held_back: list[int] = []

        for n, i in enumerate(indices):
            task = phase.tasks[i]
            if self._fast_skipped(task):
                slots[i] = self._skip(task, FAST_SKIP_REASON)
                continue

            slots_free.acquire()
            if stop.is_set():
                slots_free.release()
                held_back = indices[n:]
                break

            done = threading.Event()
            futures.append(
                (i, pool.submit(self._run_task, task, previous_done, done, slots_free, stop))
            )
            previous_done = done

        batch = []
        for i, future in futures:
            result = future.result()
            slots[i] = result
            batch.append(result)
        return batch, held_back

    def _skip(self, task: TaskDefinition, reason: str) -> TaskResult:
        result = TaskResult.for_task(task)
        result.skip(reason)
        if self.renderer.tracker is not None:
            self.renderer.tracker.update(task.id, TaskStatus.SKIPPED, 0.0)
        self.renderer.task_skipped(task.id, f"{reason} (est {task.estimated_seconds}s)")
        return result

    def _mark_not_started(self, tasks: Sequence[TaskDefinition]) -> None:
        if self.renderer.tracker is None:
            return
        for task in tasks:
            self.renderer.tracker.update(task.id, TaskStatus.SKIPPED)

    def _sink(self) -> tuple[LineSink, list[str]]:
        buffer: list[str] = []
        if self.renderer.animated and self.renderer.tracker is not None:
            return self.renderer.tracker.add_log_line, buffer
        return buffer.append, buffer

    def _run_task(
        self,
        task: TaskDefinition,
        previous_done: threading.Event | None,
        done: threading.Event,
        slots_free: threading.BoundedSemaphore,
        stop: threading.Event,
    ) -> TaskResult:
        try:
            sink, buffer = self._sink()
            started = now_iso()
            try:
                result = self.runner.run(task, sink)
            except Exception:
                logger.exception("%s crashed while running", task.id)
                result = TaskResult.for_task(task)
                result.move_to(TaskStatus.RUNNING)
                result.move_to(TaskStatus.FAIL)
                result.exit_code = 1
                result.start_time = started
                result.end_time = now_iso()
                if self.renderer.tracker is not None:
                    self.renderer.tracker.update(task.id, TaskStatus.FAIL)

            if result.status == TaskStatus.FAIL and self.fail_fast:
                stop.set()

            # Output is shown in declaration order, whatever the finish order.
            if previous_done is not None:
                previous_done.wait()
            if result.skipped:
                self.renderer.task_skipped(task.id, result.skip_reason)
            else:
                self.renderer.task_block(task, buffer, result)
            return result
        finally:
            done.set()
            slots_free.release()

    def _auto_fix(self, pool: ThreadPoolExecutor, phase: Phase, results: list[TaskResult]) -> None:
        tasks = {t.id: t for t in phase.tasks}
        pending = [
            pool.submit(self._fix_one, tasks[r.id], r)
            for r in results
            if r.status == TaskStatus.FAIL
            and tasks[r.id].fix_type == "auto"
            and tasks[r.id].fix_command
        ]
        for future in pending:
            future.result()

    def _fix_one(self, task: TaskDefinition, result: TaskResult) -> None:
        try:
            self._fix(task, result)
        except Exception:
            logger.exception("%s crashed during auto-fix", task.id)
            if result.status != TaskStatus.FAIL:
                return
            if not result.fix_command:
                result.record_fix_attempt(
                    fix_command=task.fix_command, fix_duration_ms=0, recheck_duration_ms=0
                )
            result.end_time = now_iso()
            self.renderer.fix_result(task.id, False, 0)

    def _fix(self, task: TaskDefinition, result: TaskResult) -> None:
        sink = None
        if self.renderer.animated and self.renderer.tracker is not None:
            sink = self.renderer.tracker.add_log_line

        self.renderer.fix_started(task.id, task.fix_command)
        fix = self.runner.run_fix(task, sink)
        if fix.exit_code != 0:
            result.record_fix_attempt(
                fix_command=task.fix_command,
                fix_duration_ms=fix.duration_ms,
                recheck_duration_ms=0,
            )
            result.end_time = now_iso()
            self.renderer.fix_failed(task.id, fix.duration_ms)
            return

        self.renderer.fix_rechecking(task.id, fix.duration_ms)
        outcome, status, task_metrics = self.runner.recheck(task, sink)
        if status == TaskStatus.PASS:
            result.mark_fixed(
                fix_command=task.fix_command,
                fix_duration_ms=fix.duration_ms,
                recheck_duration_ms=outcome.duration_ms,
            )
            result.timed_out = False
            if task_metrics is not None:
                result.metrics = task_metrics
        else:
            result.record_fix_attempt(
                fix_command=task.fix_command,
                fix_duration_ms=fix.duration_ms,
                recheck_duration_ms=outcome.duration_ms,
            )
        result.end_time = now_iso()
        self.renderer.fix_result(task.id, status == TaskStatus.PASS, outcome.duration_ms)

    def _helper_hints(self, phase: Phase, results: list[TaskResult]) -> None:
        tasks = {t.id: t for t in phase.tasks}
        for result in results:
            task = tasks[result.id]
            if result.status == TaskStatus.FAIL and task.fix_type == "helper" and task.fix_command:
                self.renderer.helper_hint(task.id, task.fix_command)
