import json
from collections.abc import Callable

from cfgscope.ast_model import Span
from cfgscope.clones import CloneClass
from cfgscope.complexity import ComplexityBucket, ComplexityMetrics
from cfgscope.contracts import REPORT_SCHEMA_VERSION
from cfgscope.findings import Finding, FindingKind, Severity, clone_findings
from cfgscope.fragments import Fragment
from cfgscope.pipeline import FunctionReport, RunResult, RunStatus
from cfgscope.report import summarize, to_json_report, to_text_report
from cfgscope.tree_distance import FlatTree


def _function(filepath: str, qualname: str, cyclomatic: int) -> FunctionReport:
    return FunctionReport(
        filepath=filepath,
        qualname=qualname,
        span=Span(1, 0, 5, 0),
        metrics=ComplexityMetrics(
            cyclomatic=cyclomatic,
            block_count=2,
            edge_count=2,
            branch_count=0,
            nesting_depth=0,
        ),
        bucket=ComplexityBucket.LOW,
    )


def _dead(filepath: str, line: int) -> Finding:
    return Finding(
        kind=FindingKind.DEAD_CODE,
        severity=Severity.WARNING,
        filepath=filepath,
        qualname="m:f",
        span=Span(line, 4, line, 12),
        message="Statement after a jump is never executed",
        payload={"dead_kind": "after_jump", "block_id": 0, "index": 1},
    )


def _result() -> RunResult:
    tree = FlatTree(("function", "block", "pass"), (1, 1, 0))
    clone_class = CloneClass(
        members=(
            Fragment("a.py", "a:f", Span(1, 0, 6, 0), tree),
            Fragment("b.py", "b:g", Span(10, 0, 15, 0), tree),
        ),
        pairs=((0, 1, 1.0),),
    )
    return RunResult(
        status=RunStatus.COMPLETED,
        findings_by_detector={
            "complexity": [],
            "dead_code": [_dead("b.py", 9), _dead("a.py", 3)],
            "clones": clone_findings([clone_class]),
            "structure": [],
        },
        functions=[_function("a.py", "a:f", 1), _function("b.py", "b:g", 2)],
        clone_classes=[clone_class],
        files_analyzed=2,
        cache_hits=1,
        pairs_compared=1,
        failures=["c.py: Encoding error"],
    )


def test_summarize_counts() -> None:
    summary = summarize(_result())
    assert summary["files_analyzed"] == 2
    assert summary["cache_hits"] == 1
    assert summary["functions"] == 2
    assert summary["findings"] == 3
    assert summary["by_kind"] == {"clone_class": 1, "dead_code": 2}
    assert summary["by_severity"] == {"warning": 3}
    assert summary["clone_classes"] == 1


def test_json_report_shape(report_meta_factory: Callable[..., dict[str, object]]) -> None:
    payload = json.loads(to_json_report(_result(), report_meta_factory()))

    assert payload["meta"]["report_schema_version"] == REPORT_SCHEMA_VERSION
    assert payload["meta"]["cfgscope_version"] == "0.1.0"
    assert set(payload) == {
        "meta",
        "summary",
        "files",
        "functions",
        "findings",
        "failures",
    }
    assert payload["files"] == ["a.py", "b.py"]
    assert [f["qualname"] for f in payload["functions"]] == ["a:f", "b:g"]
    assert list(payload["findings"]) == ["clones", "complexity", "dead_code", "structure"]
    dead = payload["findings"]["dead_code"]
    assert [d["span"] for d in dead] == [[9, 4, 9, 12], [3, 4, 3, 12]]
    clone = payload["findings"]["clones"][0]
    assert [m["qualname"] for m in clone["payload"]["members"]] == ["a:f", "b:g"]
    assert payload["failures"] == ["c.py: Encoding error"]


def test_json_report_without_meta_still_has_schema_version() -> None:
    payload = json.loads(to_json_report(_result()))
    assert payload["meta"] == {"report_schema_version": REPORT_SCHEMA_VERSION}


def test_json_report_is_deterministic(
    report_meta_factory: Callable[..., dict[str, object]],
) -> None:
    meta = report_meta_factory()
    assert to_json_report(_result(), meta) == to_json_report(_result(), meta)


def test_text_report_sections(report_meta_factory: Callable[..., dict[str, object]]) -> None:
    text = to_text_report(_result(), report_meta_factory())

    assert text.startswith("REPORT METADATA\n")
    assert "cfgscope version: 0.1.0" in text
    assert "Detectors: complexity, dead_code, clones" in text
    assert "Cache used: true" in text
    assert "Findings: 3" in text
    assert "By kind: clone_class=1, dead_code=2" in text
    assert "COMPLEXITY (findings=0)\n(none)" in text
    assert "DEAD CODE (findings=2)" in text
    assert "- [warning] m:f b.py:9:4 Statement after a jump is never executed" in text
    assert "CLONES (findings=1)" in text
    assert "    * a:f a.py:1-6 nodes=3" in text
    assert "    * b:g b.py:10-15 nodes=3" in text
    assert "STRUCTURAL ERRORS (findings=0)" in text
    assert "SKIPPED FILES (count=1)\n- c.py: Encoding error" in text
    assert text.endswith("\n")


def test_text_report_handles_missing_meta_fields() -> None:
    text = to_text_report(RunResult(status=RunStatus.COMPLETED), {})
    assert "Report schema version: (none)" in text
    assert "cfgscope version: (none)" in text
    assert "Cache path: (none)" in text
    assert "By kind: (none)" in text
    assert "DEAD CODE" not in text
    assert "SKIPPED FILES" not in text


def test_text_report_skips_disabled_detectors(
    report_meta_factory: Callable[..., dict[str, object]],
) -> None:
    result = RunResult(
        status=RunStatus.COMPLETED,
        findings_by_detector={"complexity": [], "structure": []},
    )
    text = to_text_report(result, report_meta_factory(detectors=["complexity"]))
    assert "COMPLEXITY (findings=0)" in text
    assert "CLONES" not in text
    assert "DEAD CODE" not in text
