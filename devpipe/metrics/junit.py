from __future__ import annotations

from pathlib import Path
from xml.etree.ElementTree import Element

from defusedxml import ElementTree
from defusedxml.common import DefusedXmlException

from .types import MetricsError, TaskMetrics

COUNTERS = ("tests", "failures", "errors", "skipped")


def parse_junit(path: str | Path) -> TaskMetrics:
    try:
        root = ElementTree.parse(str(path)).getroot()
    except (ElementTree.ParseError, DefusedXmlException) as exc:
        raise MetricsError(f"{path}: invalid JUnit XML: {exc}") from exc
    except OSError as exc:
        raise MetricsError(f"{path}: cannot read JUnit XML: {exc}") from exc

    if root.tag == "testsuite":
        suites = [root]
    elif root.tag == "testsuites":
        suites = list(root.iter("testsuite"))
    else:
        raise MetricsError(f"{path}: expected <testsuite> or <testsuites>, got <{root.tag}>")

    data: dict[str, int | float] = {key: 0 for key in COUNTERS}
    data["time"] = 0.0
    for suite in suites:
        for key in COUNTERS:
            data[key] += _int_attr(suite, key, path)
        data["time"] += _float_attr(suite, "time", path)

    # A <testsuites> root may carry its own totals; trust them over the sum.
    if root.tag == "testsuites" and root.get("tests") is not None:
        for key in COUNTERS:
            if root.get(key) is not None:
                data[key] = _int_attr(root, key, path)
        if root.get("time") is not None:
            data["time"] = _float_attr(root, "time", path)

    return TaskMetrics(kind="test", summary_format="junit", data=data)


def _int_attr(node: Element, key: str, path: str | Path) -> int:
    raw = node.get(key)
    if raw is None or raw == "":
        return 0
    try:
        return int(raw)
    except ValueError as exc:
        raise MetricsError(f"{path}: attribute {key}={raw!r} is not an integer") from exc


def _float_attr(node: Element, key: str, path: str | Path) -> float:
    raw = node.get(key)
    if raw is None or raw == "":
        return 0.0
    try:
        return float(raw.replace(",", ""))
    except ValueError as exc:
        raise MetricsError(f"{path}: attribute {key}={raw!r} is not a number") from exc
