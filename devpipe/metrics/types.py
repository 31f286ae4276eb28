from dataclasses import dataclass, field
from typing import Any


@dataclass
class TaskMetrics:
    kind: str
    summary_format: str
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "summaryFormat": self.summary_format, "data": self.data}


class MetricsError(Exception):
    def __init__(self, *args: object) -> None:
        super().__init__(*args)


class UnknownMetricsFormatError(MetricsError):
    def __init__(self, fmt: str) -> None:
        super().__init__(
            f"Unknown metrics format: {fmt}. Supported formats: junit, sarif, artifact"
        )
        self.format = fmt
