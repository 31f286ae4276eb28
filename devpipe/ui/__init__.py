from .animated import AnimatedRenderer, AnimationError
from .progress import (
    ProgressEntry,
    ProgressSnapshot,
    ProgressTracker,
    format_duration,
    overall_fraction,
    task_fraction,
)
from .renderer import Renderer, make_console

__all__ = [
    "AnimatedRenderer",
    "AnimationError",
    "ProgressEntry",
    "ProgressSnapshot",
    "ProgressTracker",
    "Renderer",
    "format_duration",
    "make_console",
    "overall_fraction",
    "task_fraction",
]
