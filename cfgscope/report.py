"""
cfgscope — control-flow, dead code and clone analysis for Python
source trees.

Copyright (c) 2026 Den Rozhnovskiy
Licensed under the MIT License.
"""

from __future__ import annotations

import json
from collections import Counter
from collections.abc import Mapping
from typing import Any

from .contracts import REPORT_SCHEMA_VERSION
from .findings import Finding, FindingKind
from .pipeline import STRUCTURE, RunResult

_SECTION_TITLES: tuple[tuple[str, str], ...] = (
    ("complexity", "COMPLEXITY"),
    ("dead_code", "DEAD CODE"),
    ("clones", "CLONES"),
    (STRUCTURE, "STRUCTURAL ERRORS"),
)


def summarize(result: RunResult) -> dict[str, Any]:
    findings = result.findings
    by_kind = Counter(f.kind.value for f in findings)
    by_severity = Counter(f.severity.value for f in findings)
    return {
        "files_analyzed": result.files_analyzed,
        "files_skipped": result.files_skipped,
        "cache_hits": result.cache_hits,
        "functions": len(result.functions),
        "findings": len(findings),
        "by_kind": {k: by_kind[k] for k in sorted(by_kind)},
        "by_severity": {k: by_severity[k] for k in sorted(by_severity)},
        "clone_classes": len(result.clone_classes),
        "pairs_compared": result.pairs_compared,
        "pairs_pruned": result.pairs_pruned,
    }


def _collect_files(result: RunResult) -> list[str]:
    files = {r.filepath for r in result.functions}
    files.update(f.filepath for f in result.findings)
    return sorted(files)


def to_json_report(result: RunResult, meta: Mapping[str, object] | None = None) -> str:
    """Serialize the run as a schema-versioned JSON document."""
    meta_payload = dict(meta or {})
    meta_payload["report_schema_version"] = REPORT_SCHEMA_VERSION

    payload: dict[str, object] = {
        "meta": meta_payload,
        "summary": summarize(result),
        "files": _collect_files(result),
        "functions": [r.to_dict() for r in result.functions],
        "findings": {
            detector: [f.to_dict() for f in group]
            for detector, group in sorted(result.findings_by_detector.items())
        },
        "failures": sorted(result.failures),
    }
    return json.dumps(payload, ensure_ascii=False, indent=2)


def _format_meta_text_value(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "(none)"
    if isinstance(value, (list, tuple)):
        return ", ".join(str(v) for v in value) or "(none)"
    text = str(value).strip()
    return text if text else "(none)"


def _location(finding: Finding) -> str:
    if finding.span is None:
        return finding.filepath
    return f"{finding.filepath}:{finding.span.start_line}:{finding.span.start_col}"


def _finding_lines(finding: Finding) -> list[str]:
    lines = [
        f"- [{finding.severity.value}] {finding.qualname} "
        f"{_location(finding)} {finding.message}"
    ]
    if finding.kind is FindingKind.CLONE_CLASS:
        for member in finding.payload.get("members", []):
            start_line, _, end_line, _ = member["span"]
            lines.append(
                f"    * {member['qualname']} "
                f"{member['filepath']}:{start_line}-{end_line} "
                f"nodes={member['nodes']}"
            )
    return lines


def to_text_report(result: RunResult, meta: Mapping[str, object]) -> str:
    """Serialize a deterministic plain-text report."""
    lines = [
        "REPORT METADATA",
        "Report schema version: "
        f"{_format_meta_text_value(meta.get('report_schema_version'))}",
        f"cfgscope version: {_format_meta_text_value(meta.get('cfgscope_version'))}",
        f"Python version: {_format_meta_text_value(meta.get('python_version'))}",
        f"Python tag: {_format_meta_text_value(meta.get('python_tag'))}",
        f"Root: {_format_meta_text_value(meta.get('root'))}",
        f"Detectors: {_format_meta_text_value(meta.get('detectors'))}",
        f"Clone threshold: {_format_meta_text_value(meta.get('clone_threshold'))}",
        f"Cache path: {_format_meta_text_value(meta.get('cache_path'))}",
        f"Cache status: {_format_meta_text_value(meta.get('cache_status'))}",
        f"Cache used: {_format_meta_text_value(meta.get('cache_used'))}",
        "",
        "SUMMARY",
    ]
    for key, value in summarize(result).items():
        if isinstance(value, dict):
            value = ", ".join(f"{k}={v}" for k, v in value.items()) or "(none)"
        lines.append(f"{key.replace('_', ' ').capitalize()}: {value}")

    for detector, title in _SECTION_TITLES:
        group = result.findings_by_detector.get(detector)
        if group is None:
            continue
        lines.append("")
        lines.append(f"{title} (findings={len(group)})")
        if not group:
            lines.append("(none)")
            continue
        for finding in group:
            lines.extend(_finding_lines(finding))

    if result.failures:
        lines.append("")
        lines.append(f"SKIPPED FILES (count={len(result.failures)})")
        lines.extend(f"- {failure}" for failure in sorted(result.failures))

    return "\n".join(lines).rstrip() + "\n"
