from __future__ import annotations

import json
from collections import Counter
from pathlib import Path
from typing import Any, Mapping

from .types import MetricsError, TaskMetrics

LEVELS = ("error", "warning", "note")


def parse_sarif(path: str | Path) -> TaskMetrics:
    try:
        doc = json.loads(Path(path).read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise MetricsError(f"{path}: invalid SARIF JSON: {exc}") from exc
    except (OSError, UnicodeDecodeError) as exc:
        raise MetricsError(f"{path}: cannot read SARIF: {exc}") from exc

    if not isinstance(doc, Mapping) or not isinstance(doc.get("runs"), list):
        raise MetricsError(f"{path}: SARIF document has no 'runs' list")

    try:
        findings = sorted(_findings(doc["runs"], path), key=lambda f: (f["file"], f["line"]))
    except (AttributeError, TypeError) as exc:
        raise MetricsError(f"{path}: malformed SARIF document: {exc}") from exc

    levels = Counter(f["level"] for f in findings)
    rule_count = Counter(f["ruleId"] for f in findings)
    rule_severity: dict[str, str] = {}
    for finding in findings:
        rule_severity.setdefault(finding["ruleId"], finding.get("severity", ""))

    rules = []
    for rule_id, count in rule_count.items():
        rule: dict[str, Any] = {"id": rule_id, "count": count}
        if rule_severity.get(rule_id):
            rule["severity"] = rule_severity[rule_id]
        rules.append(rule)

    return TaskMetrics(
        kind="security",
        summary_format="sarif",
        data={
            "total": len(findings),
            "errors": levels["error"],
            # Unknown levels count as warnings.
            "warnings": len(findings) - levels["error"] - levels["note"],
            "notes": levels["note"],
            "findings": findings,
            "rules": rules,
        },
    )


def _findings(runs: list[Any], path: str | Path) -> list[dict[str, Any]]:
    out = []
    for run in runs:
        if not isinstance(run, Mapping):
            raise MetricsError(f"{path}: SARIF run must be an object")

        driver = run.get("tool", {}).get("driver", {})
        rules = {r.get("id"): r for r in driver.get("rules", []) if isinstance(r, Mapping)}

        for result in run.get("results", []) or []:
            locations = result.get("locations") or []
            if not locations:
                continue

            physical = locations[0].get("physicalLocation", {})
            region = physical.get("region", {})
            rule_id = result.get("ruleId", "")
            rule = rules.get(rule_id) or {}
            properties = rule.get("properties") or {}

            finding: dict[str, Any] = {
                "ruleId": rule_id,
                "ruleName": rule.get("name") or rule_id,
                "file": physical.get("artifactLocation", {}).get("uri", ""),
                "line": region.get("startLine", 0),
                "column": region.get("startColumn", 0),
                "message": result.get("message", {}).get("text", ""),
                "level": result.get("level") or "warning",
            }
            short_desc = rule.get("shortDescription", {}).get("text")
            if short_desc:
                finding["shortDesc"] = short_desc
            if properties.get("security-severity"):
                finding["severity"] = properties["security-severity"]
            if properties.get("tags"):
                finding["tags"] = list(properties["tags"])
            if properties.get("precision"):
                finding["precision"] = properties["precision"]
            out.append(finding)
    return out
