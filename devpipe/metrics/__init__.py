from __future__ import annotations

from pathlib import Path

from .junit import parse_junit
from .sarif import parse_sarif
from .types import MetricsError, TaskMetrics, UnknownMetricsFormatError

FORMATS = ("junit", "sarif", "artifact")


def parse(fmt: str, path: str | Path) -> TaskMetrics:
    match fmt:
        case "junit":
            return parse_junit(path)
        case "sarif":
            return parse_sarif(path)
        case "artifact":
            return parse_artifact(path)
        case _:
            raise UnknownMetricsFormatError(fmt)


def parse_artifact(path: str | Path) -> TaskMetrics:
    artifact = Path(path)
    if not artifact.is_file():
        raise MetricsError(f"{artifact}: artifact not found")
    return TaskMetrics(
        kind="artifact",
        summary_format="artifact",
        data={"path": str(artifact), "size": artifact.stat().st_size},
    )


__all__ = [
    "FORMATS",
    "MetricsError",
    "TaskMetrics",
    "UnknownMetricsFormatError",
    "parse",
    "parse_artifact",
    "parse_junit",
    "parse_sarif",
]
