"""
cfgscope — control-flow, dead code and clone analysis for Python
source trees.

Copyright (c) 2026 Den Rozhnovskiy
Licensed under the MIT License.
"""

from __future__ import annotations

import hashlib
import os
from collections.abc import Callable, Iterable, Sequence
from concurrent.futures import FIRST_COMPLETED, Future, ProcessPoolExecutor, wait
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any

from .ast_model import Span
from .cancellation import CancellationToken, check
from .cfg import build_cfg
from .clones import CloneClass, CloneDetector
from .complexity import ComplexityBucket, ComplexityMetrics, classify, compute_complexity
from .config import AnalysisConfig
from .deadcode import detect_dead_code
from .errors import AnalysisCancelled, ParseError, StructuralError
from .findings import (
    Finding,
    FindingKind,
    clone_findings,
    complexity_finding,
    dead_code_findings,
    skipped_fragment_finding,
    sort_findings,
    structural_finding,
)
from .fragments import Fragment, extract_fragments
from .frontend import FunctionNode, collect_functions, lower_function, parse_module
from .scanner import module_name_from_path

if TYPE_CHECKING:
    from .cache import Cache

MAX_FILE_SIZE = 10 * 1024 * 1024  # 10MB
BATCH_SIZE = 100

STRUCTURE = "structure"

_DETECTOR_OF_KIND = {
    FindingKind.DEAD_CODE: "dead_code",
    FindingKind.UNREACHABLE_BRANCH: "dead_code",
    FindingKind.COMPLEXITY: "complexity",
    FindingKind.CLONE_CLASS: "clones",
    FindingKind.FRAGMENT_SKIPPED: "clones",
    FindingKind.STRUCTURAL_ERROR: STRUCTURE,
}


@dataclass(frozen=True, slots=True)
class FunctionReport:
    filepath: str
    qualname: str
    span: Span | None
    metrics: ComplexityMetrics
    bucket: ComplexityBucket

    def to_dict(self) -> dict[str, Any]:
        return {
            "filepath": self.filepath,
            "qualname": self.qualname,
            "span": None if self.span is None else list(self.span.as_tuple()),
            "cyclomatic": self.metrics.cyclomatic,
            "bucket": self.bucket.value,
            "blocks": self.metrics.block_count,
            "edges": self.metrics.edge_count,
            "branches": self.metrics.branch_count,
            "nesting_depth": self.metrics.nesting_depth,
        }


@dataclass(slots=True)
class FileAnalysis:
    filepath: str
    functions: list[FunctionReport] = field(default_factory=list)
    findings: list[Finding] = field(default_factory=list)
    fragments: list[Fragment] = field(default_factory=list)


@dataclass(slots=True)
class ProcessingResult:
    """Result of processing a single file."""

    filepath: str
    success: bool
    error: str | None = None
    analysis: FileAnalysis | None = None
    digest: str | None = None
    error_kind: str | None = None


class RunStatus(str, Enum):
    COMPLETED = "completed"
    ABORTED = "aborted"


@dataclass(slots=True)
class RunResult:
    status: RunStatus
    findings_by_detector: dict[str, list[Finding]] = field(default_factory=dict)
    functions: list[FunctionReport] = field(default_factory=list)
    clone_classes: list[CloneClass] = field(default_factory=list)
    files_analyzed: int = 0
    files_skipped: int = 0
    cache_hits: int = 0
    pairs_compared: int = 0
    pairs_pruned: int = 0
    failures: list[str] = field(default_factory=list)
    source_read_failures: list[str] = field(default_factory=list)

    @property
    def findings(self) -> list[Finding]:
        return sort_findings(
            [f for group in self.findings_by_detector.values() for f in group]
        )

    @property
    def completed(self) -> bool:
        return self.status is RunStatus.COMPLETED


# =========================
# Per-file analysis
# =========================


def analyze_function(
    node: FunctionNode,
    *,
    qualname: str,
    filepath: str,
    config: AnalysisConfig,
) -> tuple[FunctionReport | None, list[Finding], list[Fragment]]:
    """
    Run every enabled detector over one function.

    Structural problems are confined to the function: they become a single
    ``STRUCTURAL_ERROR`` finding and the rest of the file is unaffected.
    """
    try:
        lowered = lower_function(node, qualname)
        graph = build_cfg(qualname, lowered)
    except StructuralError as e:
        return None, [structural_finding(e, filepath=filepath, qualname=qualname)], []

    findings: list[Finding] = []
    metrics = compute_complexity(graph)
    report = FunctionReport(
        filepath=filepath,
        qualname=qualname,
        span=lowered.span,
        metrics=metrics,
        bucket=classify(metrics.cyclomatic, config.thresholds),
    )

    if config.enabled("complexity"):
        finding = complexity_finding(
            metrics,
            qualname=qualname,
            filepath=filepath,
            span=lowered.span,
            thresholds=config.thresholds,
        )
        if finding is not None:
            findings.append(finding)

    if config.enabled("dead_code"):
        findings.extend(dead_code_findings(detect_dead_code(graph), filepath))

    fragments: list[Fragment] = []
    if config.enabled("clones"):
        fragments, skipped = extract_fragments(
            lowered,
            qualname=qualname,
            filepath=filepath,
            cfg=config.normalization,
            granularity="window" if config.clone_granularity == "window" else "function",
            window_size=config.window_size,
        )
        findings.extend(skipped_fragment_finding(s) for s in skipped)

    return report, findings, fragments


def analyze_source(
    source: str,
    filepath: str,
    module_name: str,
    config: AnalysisConfig,
) -> FileAnalysis:
    """Analyse one module's source. Raises :class:`ParseError`."""
    tree = parse_module(source, filepath)
    analysis = FileAnalysis(filepath=filepath)
    for local_name, node in collect_functions(tree):
        qualname = f"{module_name}:{local_name}" if module_name else local_name
        report, findings, fragments = analyze_function(
            node, qualname=qualname, filepath=filepath, config=config
        )
        if report is not None:
            analysis.functions.append(report)
        analysis.findings.extend(findings)
        analysis.fragments.extend(fragments)
    return analysis


def source_digest(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def process_source(
    filepath: str,
    source: str,
    digest: str,
    module_name: str,
    config: AnalysisConfig,
) -> ProcessingResult:
    """Worker entry point; never raises."""
    try:
        analysis = analyze_source(source, filepath, module_name, config)
    except ParseError as e:
        return ProcessingResult(
            filepath=filepath,
            success=False,
            error=str(e),
            error_kind="parse_error",
        )
    except Exception as e:
        return ProcessingResult(
            filepath=filepath,
            success=False,
            error=f"Unexpected error: {type(e).__name__}: {e}",
            error_kind="unexpected_error",
        )
    return ProcessingResult(
        filepath=filepath, success=True, analysis=analysis, digest=digest
    )


@dataclass(frozen=True, slots=True)
class _SourceJob:
    filepath: str
    source: str
    digest: str
    module_name: str


def _read_source(filepath: str) -> tuple[str, str] | ProcessingResult:
    try:
        st_size = os.path.getsize(filepath)
    except OSError as e:
        return ProcessingResult(
            filepath=filepath,
            success=False,
            error=f"Cannot stat file: {e}",
            error_kind="stat_error",
        )
    if st_size > MAX_FILE_SIZE:
        return ProcessingResult(
            filepath=filepath,
            success=False,
            error=f"File too large: {st_size} bytes (max {MAX_FILE_SIZE})",
            error_kind="file_too_large",
        )
    try:
        data = Path(filepath).read_bytes()
        return data.decode("utf-8"), source_digest(data)
    except UnicodeDecodeError as e:
        return ProcessingResult(
            filepath=filepath,
            success=False,
            error=f"Encoding error: {e}",
            error_kind="source_read_error",
        )
    except OSError as e:
        return ProcessingResult(
            filepath=filepath,
            success=False,
            error=f"Cannot read file: {e}",
            error_kind="source_read_error",
        )


# =========================
# Run
# =========================

ProgressCallback = Callable[[str], None]


class _Collector:
    __slots__ = ("analyses", "cache", "result", "seen")

    def __init__(self, result: RunResult, cache: Cache | None) -> None:
        self.result = result
        self.cache = cache
        self.analyses: dict[str, FileAnalysis] = {}
        self.seen: set[str] = set()

    def add(self, processed: ProcessingResult) -> None:
        self.seen.add(processed.filepath)
        if processed.success and processed.analysis is not None:
            self.analyses[processed.filepath] = processed.analysis
            self.result.files_analyzed += 1
            if self.cache is not None and processed.digest is not None:
                self.cache.put(processed.analysis, processed.digest)
            return
        self.fail(processed)

    def fail(self, processed: ProcessingResult) -> None:
        self.seen.add(processed.filepath)
        self.result.files_skipped += 1
        failure = f"{processed.filepath}: {processed.error}"
        self.result.failures.append(failure)
        if processed.error_kind == "source_read_error":
            self.result.source_read_failures.append(failure)


def _run_sequential(
    jobs: Sequence[_SourceJob],
    config: AnalysisConfig,
    collector: _Collector,
    cancel: CancellationToken | None,
    on_progress: ProgressCallback | None,
) -> None:
    for job in jobs:
        check(cancel)
        collector.add(
            process_source(
                job.filepath, job.source, job.digest, job.module_name, config
            )
        )
        if on_progress is not None:
            on_progress(job.filepath)


def _run_parallel(
    jobs: Sequence[_SourceJob],
    config: AnalysisConfig,
    collector: _Collector,
    cancel: CancellationToken | None,
    on_progress: ProgressCallback | None,
    processes: int,
) -> list[_SourceJob]:
    """Process jobs in a pool; returns the jobs that never completed."""
    with ProcessPoolExecutor(max_workers=processes) as executor:
        # Batches keep pending source text bounded.
        for i in range(0, len(jobs), BATCH_SIZE):
            batch = jobs[i : i + BATCH_SIZE]
            pending: dict[Future[ProcessingResult], _SourceJob] = {
                executor.submit(
                    process_source,
                    job.filepath,
                    job.source,
                    job.digest,
                    job.module_name,
                    config,
                ): job
                for job in batch
            }
            try:
                while pending:
                    done, _ = wait(pending, return_when=FIRST_COMPLETED)
                    for future in done:
                        job = pending.pop(future)
                        try:
                            processed = future.result()
                        except Exception as e:
                            processed = ProcessingResult(
                                filepath=job.filepath,
                                success=False,
                                error=f"Worker failed: {type(e).__name__}: {e}",
                                error_kind="worker_error",
                            )
                        collector.add(processed)
                        if on_progress is not None:
                            on_progress(job.filepath)
                    check(cancel)
            except AnalysisCancelled:
                for future in pending:
                    future.cancel()
                raise
    return [job for job in jobs if job.filepath not in collector.seen]


def run_analysis(
    files: Iterable[str],
    root: str | Path,
    config: AnalysisConfig,
    *,
    processes: int | None = None,
    cancel: CancellationToken | None = None,
    cache: Cache | None = None,
    on_progress: ProgressCallback | None = None,
    on_parallel_fallback: Callable[[BaseException], None] | None = None,
) -> RunResult:
    """
    Analyse ``files`` and detect clones across all of them.

    Files are independent and run in worker processes when ``processes`` is
    above one; clone detection starts only after every file is collected.
    Cancellation discards partial results and returns an ``ABORTED`` run.
    """
    config.validate()
    result = RunResult(status=RunStatus.COMPLETED)
    collector = _Collector(result, cache)
    root_str = str(root)

    try:
        jobs: list[_SourceJob] = []
        for filepath in sorted(files):
            check(cancel)
            read = _read_source(filepath)
            if isinstance(read, ProcessingResult):
                collector.fail(read)
                if on_progress is not None:
                    on_progress(filepath)
                continue
            source, digest = read
            cached = cache.get(filepath, digest) if cache is not None else None
            if cached is not None:
                collector.analyses[filepath] = cached
                result.cache_hits += 1
                if on_progress is not None:
                    on_progress(filepath)
                continue
            jobs.append(
                _SourceJob(
                    filepath=filepath,
                    source=source,
                    digest=digest,
                    module_name=module_name_from_path(root_str, filepath),
                )
            )

        if processes is not None and processes > 1 and len(jobs) > 1:
            try:
                leftover = _run_parallel(
                    jobs, config, collector, cancel, on_progress, processes
                )
            except (OSError, RuntimeError, PermissionError) as e:
                if on_parallel_fallback is not None:
                    on_parallel_fallback(e)
                leftover = [j for j in jobs if j.filepath not in collector.seen]
            _run_sequential(leftover, config, collector, cancel, on_progress)
        else:
            _run_sequential(jobs, config, collector, cancel, on_progress)

        _assemble(result, collector.analyses, config, cancel, processes)
    except AnalysisCancelled:
        return RunResult(status=RunStatus.ABORTED)

    return result


def _assemble(
    result: RunResult,
    analyses: dict[str, FileAnalysis],
    config: AnalysisConfig,
    cancel: CancellationToken | None,
    processes: int | None,
) -> None:
    findings: list[Finding] = []
    fragments: list[Fragment] = []
    for filepath in sorted(analyses):
        analysis = analyses[filepath]
        result.functions.extend(analysis.functions)
        findings.extend(analysis.findings)
        fragments.extend(analysis.fragments)

    if config.enabled("clones"):
        detector = CloneDetector(config.clone_config)
        clones = detector.detect(fragments, cancel=cancel, workers=processes or 1)
        result.clone_classes = clones.classes
        result.pairs_compared = clones.pairs_compared
        result.pairs_pruned = clones.pairs_pruned
        findings.extend(clone_findings(clones.classes))

    result.functions.sort(
        key=lambda r: (r.filepath, r.span.start_line if r.span else 0, r.qualname)
    )
    grouped: dict[str, list[Finding]] = {
        name: [] for name in (*config.detectors, STRUCTURE)
    }
    for finding in findings:
        grouped.setdefault(_DETECTOR_OF_KIND[finding.kind], []).append(finding)
    result.findings_by_detector = {
        name: sort_findings(group) for name, group in grouped.items()
    }
