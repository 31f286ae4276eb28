from .types import (
    InvalidTransitionError,
    Phase,
    RunResult,
    TaskDefinition,
    TaskResult,
    TaskStatus,
)
from .phases import group_into_phases
from .task import CommandOutcome, TaskRunner
from .executor import MAX_CONCURRENCY, Executor

__all__ = [
    "CommandOutcome",
    "Executor",
    "InvalidTransitionError",
    "MAX_CONCURRENCY",
    "Phase",
    "RunResult",
    "TaskDefinition",
    "TaskResult",
    "TaskRunner",
    "TaskStatus",
    "group_into_phases",
]
