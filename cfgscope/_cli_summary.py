"""
cfgscope — control-flow, dead code and clone analysis for Python
source trees.

Copyright (c) 2026 Den Rozhnovskiy
Licensed under the MIT License.
"""

from __future__ import annotations

from rich.console import Console
from rich.table import Table
from rich.text import Text

from . import ui_messages as ui
from .pipeline import STRUCTURE, RunResult

_FINDING_LABELS = frozenset(
    {
        ui.SUMMARY_LABEL_COMPLEXITY,
        ui.SUMMARY_LABEL_DEAD_CODE,
        ui.SUMMARY_LABEL_CLONES,
    }
)


def _summary_value_style(*, label: str, value: int) -> str:
    if value == 0:
        return "dim"
    if label == ui.SUMMARY_LABEL_STRUCTURAL:
        return "bold red"
    if label == ui.SUMMARY_LABEL_FILES_SKIPPED:
        return "yellow"
    if label in _FINDING_LABELS:
        return "bold yellow"
    return "bold"


def _detector_count(result: RunResult, detector: str) -> int:
    return len(result.findings_by_detector.get(detector, ()))


def _build_summary_rows(
    *, files_found: int, result: RunResult
) -> list[tuple[str, int]]:
    return [
        (ui.SUMMARY_LABEL_FILES_FOUND, files_found),
        (ui.SUMMARY_LABEL_FILES_ANALYZED, result.files_analyzed),
        (ui.SUMMARY_LABEL_CACHE_HITS, result.cache_hits),
        (ui.SUMMARY_LABEL_FILES_SKIPPED, result.files_skipped),
        (ui.SUMMARY_LABEL_FUNCTIONS, len(result.functions)),
        (ui.SUMMARY_LABEL_COMPLEXITY, _detector_count(result, "complexity")),
        (ui.SUMMARY_LABEL_DEAD_CODE, _detector_count(result, "dead_code")),
        (ui.SUMMARY_LABEL_CLONES, len(result.clone_classes)),
        (ui.SUMMARY_LABEL_STRUCTURAL, _detector_count(result, STRUCTURE)),
    ]


def _build_summary_table(rows: list[tuple[str, int]]) -> Table:
    summary_table = Table(
        title=ui.SUMMARY_TITLE,
        show_header=True,
        width=ui.CLI_LAYOUT_WIDTH,
    )
    summary_table.add_column("Metric")
    summary_table.add_column("Value", justify="right")
    for label, value in rows:
        summary_table.add_row(
            label,
            Text(str(value), style=_summary_value_style(label=label, value=value)),
        )
    return summary_table


def _print_summary(
    *,
    console: Console,
    quiet: bool,
    files_found: int,
    result: RunResult,
) -> None:
    invariant_ok = files_found == (
        result.files_analyzed + result.cache_hits + result.files_skipped
    )

    if quiet:
        console.print(ui.SUMMARY_TITLE)
        console.print(
            ui.fmt_summary_compact_input(
                found=files_found,
                analyzed=result.files_analyzed,
                cache_hits=result.cache_hits,
                skipped=result.files_skipped,
            )
        )
        console.print(
            ui.fmt_summary_compact_findings(
                complexity=_detector_count(result, "complexity"),
                dead_code=_detector_count(result, "dead_code"),
                clones=len(result.clone_classes),
                structural=_detector_count(result, STRUCTURE),
            )
        )
    else:
        rows = _build_summary_rows(files_found=files_found, result=result)
        console.print(_build_summary_table(rows))

    if not invariant_ok:
        console.print(f"[warning]{ui.WARN_SUMMARY_ACCOUNTING_MISMATCH}[/warning]")
