"""
cfgscope — control-flow, dead code and clone analysis for Python
source trees.

Copyright (c) 2026 Den Rozhnovskiy
Licensed under the MIT License.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .ast_model import Span
from .clones import CloneClass
from .complexity import (
    ComplexityBucket,
    ComplexityMetrics,
    ComplexityThresholds,
    classify,
)
from .deadcode import DeadCodeResult, DeadKind
from .errors import StructuralError
from .fragments import SkippedFragment


class FindingKind(str, Enum):
    DEAD_CODE = "dead_code"
    UNREACHABLE_BRANCH = "unreachable_branch"
    COMPLEXITY = "complexity"
    CLONE_CLASS = "clone_class"
    STRUCTURAL_ERROR = "structural_error"
    FRAGMENT_SKIPPED = "fragment_skipped"


class Severity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {Severity.INFO: 0, Severity.WARNING: 1, Severity.ERROR: 2}


@dataclass(frozen=True, slots=True)
class Finding:
    kind: FindingKind
    severity: Severity
    filepath: str
    qualname: str
    span: Span | None
    message: str
    payload: dict[str, Any] = field(default_factory=dict)

    def sort_key(self) -> tuple[str, int, int, str, str, str]:
        line, col = (0, 0) if self.span is None else (
            self.span.start_line,
            self.span.start_col,
        )
        return (self.filepath, line, col, self.kind.value, self.qualname, self.message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "severity": self.severity.value,
            "filepath": self.filepath,
            "qualname": self.qualname,
            "span": None if self.span is None else list(self.span.as_tuple()),
            "message": self.message,
            "payload": self.payload,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Finding:
        """Inverse of :meth:`to_dict`; raises ``ValueError`` on bad shapes."""
        raw_span = data.get("span")
        span: Span | None = None
        if raw_span is not None:
            if not isinstance(raw_span, list) or len(raw_span) != 4:
                raise ValueError("span must be a list of four integers")
            if not all(isinstance(v, int) for v in raw_span):
                raise ValueError("span must be a list of four integers")
            span = Span(*raw_span)
        payload = data.get("payload", {})
        if not isinstance(payload, dict):
            raise ValueError("payload must be an object")
        for key in ("filepath", "qualname", "message"):
            if not isinstance(data.get(key), str):
                raise ValueError(f"{key} must be a string")
        return cls(
            kind=FindingKind(data["kind"]),
            severity=Severity(data["severity"]),
            filepath=data["filepath"],
            qualname=data["qualname"],
            span=span,
            message=data["message"],
            payload=payload,
        )


def sort_findings(findings: list[Finding]) -> list[Finding]:
    return sorted(findings, key=Finding.sort_key)


def dead_code_findings(result: DeadCodeResult, filepath: str) -> list[Finding]:
    findings: list[Finding] = []
    for dead in result.dead_blocks:
        if dead.kind is DeadKind.UNREACHABLE_BRANCH:
            findings.append(
                Finding(
                    kind=FindingKind.UNREACHABLE_BRANCH,
                    severity=Severity.WARNING,
                    filepath=filepath,
                    qualname=result.qualname,
                    span=dead.span,
                    message="Branch can never run: its condition is constant",
                    payload={
                        "block_id": dead.block_id,
                        "statements": len(dead.statements),
                    },
                )
            )
            continue
        findings.append(
            Finding(
                kind=FindingKind.DEAD_CODE,
                severity=Severity.WARNING,
                filepath=filepath,
                qualname=result.qualname,
                span=dead.span,
                message="Unreachable code",
                payload={
                    "dead_kind": dead.kind.value,
                    "block_id": dead.block_id,
                    "statements": len(dead.statements),
                },
            )
        )

    for stmt in result.dead_statements:
        findings.append(
            Finding(
                kind=FindingKind.DEAD_CODE,
                severity=Severity.WARNING,
                filepath=filepath,
                qualname=result.qualname,
                span=stmt.span,
                message="Statement after a jump is never executed",
                payload={
                    "dead_kind": DeadKind.AFTER_JUMP.value,
                    "block_id": stmt.block_id,
                    "index": stmt.index,
                },
            )
        )
    return findings


def complexity_finding(
    metrics: ComplexityMetrics,
    *,
    qualname: str,
    filepath: str,
    span: Span | None,
    thresholds: ComplexityThresholds,
) -> Finding | None:
    bucket = classify(metrics.cyclomatic, thresholds)
    if bucket is ComplexityBucket.LOW:
        return None
    severity = Severity.ERROR if bucket is ComplexityBucket.HIGH else Severity.WARNING
    return Finding(
        kind=FindingKind.COMPLEXITY,
        severity=severity,
        filepath=filepath,
        qualname=qualname,
        span=span,
        message=f"Cyclomatic complexity {metrics.cyclomatic} ({bucket.value})",
        payload={
            "cyclomatic": metrics.cyclomatic,
            "bucket": bucket.value,
            "nesting_depth": metrics.nesting_depth,
        },
    )


def clone_findings(classes: list[CloneClass]) -> list[Finding]:
    findings: list[Finding] = []
    for number, clone_class in enumerate(classes, start=1):
        first = clone_class.members[0]
        findings.append(
            Finding(
                kind=FindingKind.CLONE_CLASS,
                severity=Severity.WARNING,
                filepath=first.filepath,
                qualname=first.qualname,
                span=first.span,
                message=f"Clone class of {len(clone_class.members)} fragments "
                f"(similarity {clone_class.min_similarity:.2f}"
                f"-{clone_class.max_similarity:.2f})",
                payload={
                    "class_id": number,
                    "members": [
                        {
                            "filepath": m.filepath,
                            "qualname": m.qualname,
                            "span": list(m.span.as_tuple()),
                            "nodes": m.size,
                            "granularity": m.granularity,
                        }
                        for m in clone_class.members
                    ],
                    "pairs": [
                        {"a": a, "b": b, "similarity": round(s, 4)}
                        for a, b, s in clone_class.pairs
                    ],
                },
            )
        )
    return findings


def structural_finding(
    error: StructuralError, *, filepath: str, qualname: str
) -> Finding:
    return Finding(
        kind=FindingKind.STRUCTURAL_ERROR,
        severity=Severity.ERROR,
        filepath=filepath,
        qualname=error.qualname or qualname,
        span=error.span,
        message=str(error),
        payload={"error": type(error).__name__},
    )


def skipped_fragment_finding(skipped: SkippedFragment) -> Finding:
    return Finding(
        kind=FindingKind.FRAGMENT_SKIPPED,
        severity=Severity.WARNING,
        filepath=skipped.filepath,
        qualname=skipped.qualname,
        span=skipped.span,
        message=f"Fragment not compared for clones: {skipped.reason}",
    )
