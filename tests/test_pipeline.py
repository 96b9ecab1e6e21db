from __future__ import annotations

from pathlib import Path
from textwrap import dedent

import pytest

import cfgscope.pipeline as pipeline
from cfgscope.cache import Cache
from cfgscope.cancellation import CancellationToken
from cfgscope.config import AnalysisConfig
from cfgscope.errors import ParseError
from cfgscope.findings import FindingKind, Severity
from cfgscope.pipeline import (
    RunStatus,
    analyze_source,
    process_source,
    run_analysis,
)

TWIN = """
def {name}(items):
    total = 0
    for item in items:
        if item > 0:
            total += item
        else:
            total -= 1
    return total
"""

SMALL_CLONES = AnalysisConfig(clone_min_nodes=5, clone_min_lines=2)


def _write(root: Path, name: str, source: str) -> str:
    path = root / name
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(dedent(source), "utf-8")
    return str(path.resolve())


def test_analyze_source_reports_functions_and_findings() -> None:
    analysis = analyze_source(
        dedent(
            """
            def f(x):
                return x
                print(x)

            class Box:
                def size(self):
                    return 1
            """
        ),
        "m.py",
        "pkg.m",
        AnalysisConfig(),
    )
    assert [r.qualname for r in analysis.functions] == ["pkg.m:f", "pkg.m:Box.size"]
    assert all(r.metrics.cyclomatic == 1 for r in analysis.functions)
    dead = [f for f in analysis.findings if f.kind is FindingKind.DEAD_CODE]
    assert len(dead) == 1
    assert dead[0].qualname == "pkg.m:f"
    assert len(analysis.fragments) == 2


def test_structural_error_is_confined_to_its_function() -> None:
    analysis = analyze_source(
        dedent(
            """
            def broken():
                break

            def fine():
                return 1
            """
        ),
        "m.py",
        "m",
        AnalysisConfig(),
    )
    assert [r.qualname for r in analysis.functions] == ["m:fine"]
    errors = [f for f in analysis.findings if f.kind is FindingKind.STRUCTURAL_ERROR]
    assert len(errors) == 1
    assert errors[0].qualname == "m:broken"
    assert errors[0].severity is Severity.ERROR


def test_disabled_detectors_produce_nothing() -> None:
    analysis = analyze_source(
        "def f():\n    return 1\n    x = 2\n",
        "m.py",
        "m",
        AnalysisConfig(detectors=("complexity",)),
    )
    assert analysis.findings == []
    assert analysis.fragments == []
    assert len(analysis.functions) == 1


def test_complexity_finding_above_low_boundary() -> None:
    analysis = analyze_source(
        "def f(a, b):\n    if a:\n        return 1\n    if b:\n        return 2\n    return 3\n",
        "m.py",
        "m",
        AnalysisConfig(complexity_low=1, complexity_medium=2),
    )
    (finding,) = [f for f in analysis.findings if f.kind is FindingKind.COMPLEXITY]
    assert finding.payload["cyclomatic"] == 3
    assert finding.severity is Severity.ERROR


def test_parse_errors_raise_and_become_failed_results() -> None:
    with pytest.raises(ParseError):
        analyze_source("def f(:\n", "bad.py", "bad", AnalysisConfig())
    processed = process_source("bad.py", "def f(:\n", "d", "bad", AnalysisConfig())
    assert not processed.success
    assert processed.error_kind == "parse_error"


def test_run_analysis_finds_cross_file_clones(tmp_path: Path) -> None:
    files = [
        _write(tmp_path, "a.py", TWIN.format(name="alpha")),
        _write(tmp_path, "b.py", TWIN.format(name="beta")),
    ]
    result = run_analysis(files, tmp_path, SMALL_CLONES)

    assert result.status is RunStatus.COMPLETED
    assert result.completed
    assert result.files_analyzed == 2
    assert result.files_skipped == 0
    assert len(result.clone_classes) == 1
    assert [m.qualname for m in result.clone_classes[0].members] == [
        "a:alpha",
        "b:beta",
    ]
    assert set(result.findings_by_detector) == {
        "complexity",
        "dead_code",
        "clones",
        "structure",
    }
    assert len(result.findings_by_detector["clones"]) == 1


def test_run_analysis_skips_unparsable_files(tmp_path: Path) -> None:
    good = _write(tmp_path, "good.py", "def f():\n    return 1\n")
    bad = _write(tmp_path, "bad.py", "def f(:\n")
    result = run_analysis([good, bad], tmp_path, AnalysisConfig())
    assert result.files_analyzed == 1
    assert result.files_skipped == 1
    assert result.failures[0].startswith(bad)
    assert result.source_read_failures == []


def test_run_analysis_reports_undecodable_files(tmp_path: Path) -> None:
    path = tmp_path / "latin.py"
    path.write_bytes(b"x = '\xff'\n")
    result = run_analysis([str(path)], tmp_path, AnalysisConfig())
    assert result.files_skipped == 1
    assert len(result.source_read_failures) == 1


def test_run_analysis_is_deterministic(tmp_path: Path) -> None:
    files = [
        _write(tmp_path, "a.py", TWIN.format(name="alpha")),
        _write(tmp_path, "b.py", TWIN.format(name="beta")),
        _write(tmp_path, "c.py", "def g():\n    return 1\n    dead()\n"),
    ]
    first = run_analysis(files, tmp_path, SMALL_CLONES)
    second = run_analysis(list(reversed(files)), tmp_path, SMALL_CLONES)
    assert first.findings == second.findings
    assert first.functions == second.functions


def test_cache_hits_skip_analysis(tmp_path: Path) -> None:
    src = tmp_path / "src"
    files = [_write(src, "a.py", TWIN.format(name="alpha"))]
    cache_path = tmp_path / "cache.json"

    cache = Cache(cache_path, root=src, config=SMALL_CLONES)
    first = run_analysis(files, src, SMALL_CLONES, cache=cache)
    cache.save()
    assert first.files_analyzed == 1

    warm = Cache(cache_path, root=src, config=SMALL_CLONES)
    warm.load()
    second = run_analysis(files, src, SMALL_CLONES, cache=warm)
    assert second.cache_hits == 1
    assert second.files_analyzed == 0
    assert second.functions == first.functions
    assert second.findings == first.findings


def test_cancelled_run_is_aborted(tmp_path: Path) -> None:
    files = [_write(tmp_path, "a.py", "def f():\n    return 1\n")]
    token = CancellationToken()
    token.cancel()
    result = run_analysis(files, tmp_path, AnalysisConfig(), cancel=token)
    assert result.status is RunStatus.ABORTED
    assert result.findings == []
    assert result.functions == []


def test_cancel_during_processing(tmp_path: Path) -> None:
    files = [
        _write(tmp_path, f"m{i}.py", "def f():\n    return 1\n") for i in range(3)
    ]
    token = CancellationToken()
    seen: list[str] = []

    def _progress(filepath: str) -> None:
        seen.append(filepath)
        token.cancel()

    result = run_analysis(
        files, tmp_path, AnalysisConfig(), cancel=token, on_progress=_progress
    )
    assert result.status is RunStatus.ABORTED
    assert len(seen) == 1


def test_parallel_failure_falls_back_to_sequential(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    class _FailingExecutor:
        def __init__(self, *args: object, **kwargs: object) -> None:
            raise PermissionError("no processes")

    monkeypatch.setattr(pipeline, "ProcessPoolExecutor", _FailingExecutor)
    files = [
        _write(tmp_path, "a.py", "def f():\n    return 1\n"),
        _write(tmp_path, "b.py", "def g():\n    return 2\n"),
    ]
    reasons: list[BaseException] = []
    result = run_analysis(
        files,
        tmp_path,
        AnalysisConfig(detectors=("complexity",)),
        processes=4,
        on_parallel_fallback=reasons.append,
    )
    assert result.files_analyzed == 2
    assert len(reasons) == 1
    assert isinstance(reasons[0], PermissionError)
