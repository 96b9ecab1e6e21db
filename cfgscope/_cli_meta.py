"""
cfgscope — control-flow, dead code and clone analysis for Python
source trees.

Copyright (c) 2026 Den Rozhnovskiy
Licensed under the MIT License.
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import TypedDict

from .cache import current_python_tag
from .contracts import REPORT_SCHEMA_VERSION


def _current_python_version() -> str:
    return f"{sys.version_info.major}.{sys.version_info.minor}"


class ReportMeta(TypedDict):
    """
    Report metadata shared by the JSON and TXT reports.

    Key semantics:
    - python_version: runtime major.minor string for human readability (e.g. "3.13")
    - python_tag: runtime compatibility tag used by the cache contract
      (e.g. "cp313")
    - cache_*: cache status/provenance for run transparency
    """

    report_schema_version: str
    cfgscope_version: str
    python_version: str
    python_tag: str
    root: str
    detectors: list[str]
    clone_threshold: float
    clone_granularity: str
    complexity_low: int
    complexity_medium: int
    cache_path: str | None
    cache_used: bool
    cache_status: str
    cache_schema_version: str | None
    files_skipped_source_io: int


def _build_report_meta(
    *,
    cfgscope_version: str,
    root: Path,
    detectors: tuple[str, ...],
    clone_threshold: float,
    clone_granularity: str,
    complexity_low: int,
    complexity_medium: int,
    cache_path: Path | None,
    cache_used: bool,
    cache_status: str,
    cache_schema_version: str | None,
    files_skipped_source_io: int,
) -> ReportMeta:
    return {
        "report_schema_version": REPORT_SCHEMA_VERSION,
        "cfgscope_version": cfgscope_version,
        "python_version": _current_python_version(),
        "python_tag": current_python_tag(),
        "root": str(root),
        "detectors": list(detectors),
        "clone_threshold": clone_threshold,
        "clone_granularity": clone_granularity,
        "complexity_low": complexity_low,
        "complexity_medium": complexity_medium,
        "cache_path": None if cache_path is None else str(cache_path),
        "cache_used": cache_used,
        "cache_status": cache_status,
        "cache_schema_version": cache_schema_version,
        "files_skipped_source_io": files_skipped_source_io,
    }
