from __future__ import annotations

from collections.abc import Iterable

from .types import Phase, TaskDefinition


def group_into_phases(tasks: Iterable[TaskDefinition]) -> list[Phase]:
    """Split an ordered task list into phases at end-of-phase markers.

    A phase is named after the phase header its tasks were declared under,
    falling back to "Phase N" (1-based) when none was declared.
    """
    phases: list[Phase] = []
    current: list[TaskDefinition] = []

    def close() -> None:
        number = len(phases) + 1
        name = next((t.phase for t in current if t.phase), "") or f"Phase {number}"
        phases.append(Phase(name, tuple(current)))
        current.clear()

    for task in tasks:
        current.append(task)
        if task.wait:
            close()

    if current:
        close()

    return phases
