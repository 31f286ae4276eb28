from dataclasses import dataclass, field

UI_MODES = ("basic", "full")
GROUP_BY = ("phase", "type")
GIT_MODES = ("staged", "staged_unstaged", "ref")
FIX_TYPES = ("auto", "helper", "none")
OUTPUT_TYPES = ("junit", "sarif", "artifact")


@dataclass
class GitConfig:
    mode: str = "staged_unstaged"
    ref: str = "HEAD"


@dataclass
class DefaultsConfig:
    project_root: str | None = None
    output_root: str = ".devpipe"
    fast_threshold: int = 300
    ui_mode: str = "basic"
    animation_refresh_ms: int = 500
    animated_group_by: str = "phase"
    git: GitConfig = field(default_factory=GitConfig)


@dataclass
class TaskDefaultsConfig:
    enabled: bool = True
    working_dir: str = "."
    fix_type: str | None = None


@dataclass
class TaskConfig:
    id: str
    command: str
    name: str | None = None
    desc: str | None = None
    type: str | None = None
    working_dir: str | None = None
    env: dict[str, str] = field(default_factory=dict)
    enabled: bool | None = None
    output_type: str | None = None
    output_path: str | None = None
    fix_type: str | None = None
    fix_command: str | None = None
    watch_paths: list[str] = field(default_factory=list)
    timeout: float | None = None
    wait: bool = False


@dataclass
class PhaseInfo:
    id: str
    name: str
    desc: str | None = None


@dataclass
class ProjectConfig:
    tasks: dict[str, TaskConfig]
    defaults: DefaultsConfig = field(default_factory=DefaultsConfig)
    task_defaults: TaskDefaultsConfig = field(default_factory=TaskDefaultsConfig)
    # phase number (1-based) -> header info
    phases: dict[int, PhaseInfo] = field(default_factory=dict)
    # task id -> phase number, only for tasks under a phase header
    task_phase: dict[str, int] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)
    path: str | None = None

    def __iter__(self):
        yield from self.tasks.values()

    def __len__(self):
        return len(self.tasks)

    def has_task(self, id: str) -> bool:
        return True if id in self.tasks else False

    def get_task(self, id: str) -> TaskConfig:
        if not self.has_task(id):
            raise KeyError(id)

        return self.tasks[id]

    def tasks_ids(self) -> list[str]:
        return list(self.tasks.keys())

    def phase_name(self, task_id: str) -> str | None:
        number = self.task_phase.get(task_id)
        if number is None or number not in self.phases:
            return None
        return self.phases[number].name


class ConfigError(Exception):
    def __init__(self, *args: object) -> None:
        super().__init__(*args)


class UnsupportedConfigFormatError(ConfigError):
    def __init__(self, *args: object) -> None:
        super().__init__(*args)
