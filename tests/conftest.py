from __future__ import annotations

from collections.abc import Callable

import pytest

from cfgscope.contracts import REPORT_SCHEMA_VERSION

ReportMetaFactory = Callable[..., dict[str, object]]


@pytest.fixture
def report_meta_factory() -> ReportMetaFactory:
    def _make(**overrides: object) -> dict[str, object]:
        meta: dict[str, object] = {
            "report_schema_version": REPORT_SCHEMA_VERSION,
            "cfgscope_version": "0.1.0",
            "python_version": "3.13",
            "python_tag": "cp313",
            "root": "/repo",
            "detectors": ["complexity", "dead_code", "clones"],
            "clone_threshold": 0.8,
            "clone_granularity": "function",
            "complexity_low": 10,
            "complexity_medium": 20,
            "cache_path": "/repo/.cache/cfgscope/cache.json",
            "cache_used": True,
            "cache_status": "ok",
            "cache_schema_version": "1.0",
            "files_skipped_source_io": 0,
        }
        meta.update(overrides)
        return meta

    return _make
