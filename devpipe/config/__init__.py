from .loader import is_phase_header, is_wait_marker, load_project
from .resolver import resolve_tasks
from .types import ConfigError, ProjectConfig, TaskConfig, UnsupportedConfigFormatError

__all__ = [
    "load_project",
    "resolve_tasks",
    "is_phase_header",
    "is_wait_marker",
    "ProjectConfig",
    "TaskConfig",
    "ConfigError",
    "UnsupportedConfigFormatError",
]
