"""
cfgscope — control-flow, dead code and clone analysis for Python
source trees.

Copyright (c) 2026 Den Rozhnovskiy
Licensed under the MIT License.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import os
import sys
from collections.abc import Mapping
from enum import Enum
from pathlib import Path

from .ast_model import Span
from .complexity import ComplexityBucket, ComplexityMetrics
from .config import AnalysisConfig
from .contracts import CACHE_VERSION
from .errors import CacheError
from .findings import Finding
from .fragments import Fragment
from .pipeline import FileAnalysis, FunctionReport
from .tree_distance import FlatTree

MAX_CACHE_SIZE_BYTES = 50 * 1024 * 1024
DEFAULT_CACHE_DIRNAME = ".cache/cfgscope"
DEFAULT_CACHE_FILENAME = "cache.json"


class CacheStatus(str, Enum):
    OK = "ok"
    MISSING = "missing"
    TOO_LARGE = "too_large"
    UNREADABLE = "unreadable"
    INVALID_JSON = "invalid_json"
    INVALID_TYPE = "invalid_type"
    VERSION_MISMATCH = "version_mismatch"
    PYTHON_TAG_MISMATCH = "python_tag_mismatch"
    CONFIG_MISMATCH = "config_mismatch"
    INTEGRITY_FAILED = "integrity_failed"


def current_python_tag() -> str:
    impl = sys.implementation.name
    major, minor = sys.version_info[:2]
    prefix = "cp" if impl == "cpython" else impl[:2]
    return f"{prefix}{major}{minor}"


def config_digest(config: AnalysisConfig) -> str:
    return hashlib.sha256(_canonical_json(config.cache_signature()).encode()).hexdigest()


class Cache:
    """
    Read-through cache of per-file analysis results.

    Entries are keyed by the file path relative to ``root`` and the SHA-256
    of the file content, so an edit always invalidates its entry regardless
    of timestamps. The document is canonical JSON with a SHA-256 signature
    over its payload; any mismatch discards the whole cache and records the
    reason in :attr:`load_status`.
    """

    __slots__ = (
        "cache_schema_version",
        "config_digest",
        "entries",
        "load_status",
        "load_warning",
        "max_size_bytes",
        "path",
        "root",
    )

    _CACHE_VERSION = CACHE_VERSION

    def __init__(
        self,
        path: str | Path,
        *,
        root: str | Path | None = None,
        config: AnalysisConfig | None = None,
        max_size_bytes: int | None = None,
    ):
        self.path = Path(path)
        self.root = _resolve_root(root)
        self.config_digest = config_digest(config or AnalysisConfig())
        self.entries: dict[str, tuple[str, FileAnalysis]] = {}
        self.cache_schema_version: str | None = None
        self.load_status = CacheStatus.MISSING
        self.load_warning: str | None = None
        self.max_size_bytes = (
            MAX_CACHE_SIZE_BYTES if max_size_bytes is None else max_size_bytes
        )

    def _ignore_cache(
        self,
        message: str,
        *,
        status: CacheStatus,
        schema_version: str | None = None,
    ) -> None:
        self.load_warning = message
        self.load_status = status
        self.cache_schema_version = schema_version
        self.entries = {}

    def _sign_data(self, data: Mapping[str, object]) -> str:
        """Create deterministic SHA-256 signature for canonical payload data."""
        canonical = _canonical_json(data)
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()

    def load(self) -> None:
        try:
            exists = self.path.exists()
        except OSError as e:
            self._ignore_cache(
                f"Cache unreadable; ignoring cache: {e}",
                status=CacheStatus.UNREADABLE,
            )
            return

        if not exists:
            self.load_warning = None
            self.load_status = CacheStatus.MISSING
            self.cache_schema_version = None
            return

        try:
            size = self.path.stat().st_size
            if size > self.max_size_bytes:
                self._ignore_cache(
                    "Cache file too large "
                    f"({size} bytes, max {self.max_size_bytes}); ignoring cache.",
                    status=CacheStatus.TOO_LARGE,
                )
                return

            raw_obj: object = json.loads(self.path.read_text("utf-8"))
            parsed = self._parse_cache_document(raw_obj)
            if parsed is None:
                return
            self.entries = parsed
            self.load_status = CacheStatus.OK
            self.load_warning = None

        except OSError as e:
            self._ignore_cache(
                f"Cache unreadable; ignoring cache: {e}",
                status=CacheStatus.UNREADABLE,
            )
        except (json.JSONDecodeError, UnicodeDecodeError):
            self._ignore_cache(
                "Cache corrupted; ignoring cache.",
                status=CacheStatus.INVALID_JSON,
            )

    def _invalid(self, version: str | None = None) -> None:
        self._ignore_cache(
            "Cache format invalid; ignoring cache.",
            status=CacheStatus.INVALID_TYPE,
            schema_version=version,
        )

    def _parse_cache_document(
        self, raw_obj: object
    ) -> dict[str, tuple[str, FileAnalysis]] | None:
        raw = _as_str_dict(raw_obj)
        if raw is None:
            self._invalid()
            return None

        version = _as_str(raw.get("v"))
        if version is None:
            self._invalid()
            return None

        if version != self._CACHE_VERSION:
            self._ignore_cache(
                f"Cache version mismatch (found {version}); ignoring cache.",
                status=CacheStatus.VERSION_MISMATCH,
                schema_version=version,
            )
            return None

        sig = _as_str(raw.get("sig"))
        payload = _as_str_dict(raw.get("payload"))
        if sig is None or payload is None:
            self._invalid(version)
            return None

        expected_sig = self._sign_data(payload)
        if not hmac.compare_digest(sig, expected_sig):
            self._ignore_cache(
                "Cache signature mismatch; ignoring cache.",
                status=CacheStatus.INTEGRITY_FAILED,
                schema_version=version,
            )
            return None

        runtime_tag = current_python_tag()
        py_tag = _as_str(payload.get("py"))
        if py_tag is None:
            self._invalid(version)
            return None

        if py_tag != runtime_tag:
            self._ignore_cache(
                "Cache python tag mismatch "
                f"(found {py_tag}, expected {runtime_tag}); ignoring cache.",
                status=CacheStatus.PYTHON_TAG_MISMATCH,
                schema_version=version,
            )
            return None

        cfg_digest = _as_str(payload.get("cfg"))
        if cfg_digest is None:
            self._invalid(version)
            return None

        if cfg_digest != self.config_digest:
            self._ignore_cache(
                "Cache was built with different analysis settings; ignoring cache.",
                status=CacheStatus.CONFIG_MISMATCH,
                schema_version=version,
            )
            return None

        files_dict = _as_str_dict(payload.get("files"))
        if files_dict is None:
            self._invalid(version)
            return None

        parsed: dict[str, tuple[str, FileAnalysis]] = {}
        for wire_path, entry_obj in files_dict.items():
            runtime_path = self._runtime_filepath_from_wire(wire_path)
            entry = _decode_wire_file_entry(entry_obj, runtime_path)
            if entry is None:
                self._invalid(version)
                return None
            parsed[runtime_path] = entry

        self.cache_schema_version = version
        return parsed

    def save(self) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            wire_files: dict[str, object] = {}
            for runtime_path in sorted(
                self.entries, key=self._wire_filepath_from_runtime
            ):
                digest, analysis = self.entries[runtime_path]
                wire_path = self._wire_filepath_from_runtime(runtime_path)
                wire_files[wire_path] = _encode_wire_file_entry(digest, analysis)

            payload: dict[str, object] = {
                "py": current_python_tag(),
                "cfg": self.config_digest,
                "files": wire_files,
            }
            signed_doc = {
                "v": self._CACHE_VERSION,
                "payload": payload,
                "sig": self._sign_data(payload),
            }

            tmp_path = self.path.with_name(f"{self.path.name}.tmp")
            tmp_path.write_text(_canonical_json(signed_doc), "utf-8")
            os.replace(tmp_path, self.path)

        except OSError as e:
            raise CacheError(f"Failed to save cache: {e}") from e

    def _wire_filepath_from_runtime(self, runtime_filepath: str) -> str:
        runtime_path = Path(runtime_filepath)
        if self.root is None:
            return runtime_path.as_posix()

        try:
            return runtime_path.relative_to(self.root).as_posix()
        except ValueError:
            pass

        try:
            return runtime_path.resolve().relative_to(self.root.resolve()).as_posix()
        except (OSError, ValueError):
            return runtime_path.as_posix()

    def _runtime_filepath_from_wire(self, wire_filepath: str) -> str:
        wire_path = Path(wire_filepath)
        if self.root is None or wire_path.is_absolute():
            return str(wire_path)

        combined = self.root / wire_path
        try:
            return str(combined.resolve(strict=False))
        except OSError:
            return str(combined)

    def _runtime_key(self, filepath: str) -> str:
        return self._runtime_filepath_from_wire(
            self._wire_filepath_from_runtime(filepath)
        )

    def get(self, filepath: str, digest: str) -> FileAnalysis | None:
        """Return the cached analysis when the content digest still matches."""
        entry = self.entries.get(filepath) or self.entries.get(
            self._runtime_key(filepath)
        )
        if entry is None or not hmac.compare_digest(entry[0], digest):
            return None
        return entry[1]

    def put(self, analysis: FileAnalysis, digest: str) -> None:
        self.entries[self._runtime_key(analysis.filepath)] = (digest, analysis)

    def prune(self, keep: set[str]) -> None:
        """Drop entries for files that are no longer part of the scan."""
        wanted = {self._runtime_key(p) for p in keep}
        self.entries = {k: v for k, v in self.entries.items() if k in wanted}


def _resolve_root(root: str | Path | None) -> Path | None:
    if root is None:
        return None
    try:
        return Path(root).resolve(strict=False)
    except OSError:
        return None


def _canonical_json(data: object) -> str:
    return json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _as_str(value: object) -> str | None:
    return value if isinstance(value, str) else None


def _as_int(value: object) -> int | None:
    if isinstance(value, bool):
        return None
    return value if isinstance(value, int) else None


def _as_list(value: object) -> list[object] | None:
    return value if isinstance(value, list) else None


def _as_str_dict(value: object) -> dict[str, object] | None:
    if not isinstance(value, dict):
        return None
    for key in value:
        if not isinstance(key, str):
            return None
    return value


def _as_span(value: object) -> Span | None:
    row = _as_list(value)
    if row is None or len(row) != 4:
        return None
    ints = [_as_int(v) for v in row]
    if any(v is None for v in ints):
        return None
    start_line, start_col, end_line, end_col = (v for v in ints if v is not None)
    return Span(start_line, start_col, end_line, end_col)


# =========================
# Wire format
# =========================


def _encode_wire_file_entry(digest: str, analysis: FileAnalysis) -> dict[str, object]:
    wire: dict[str, object] = {"h": digest}

    if analysis.functions:
        wire["fn"] = [
            [
                report.qualname,
                None if report.span is None else list(report.span.as_tuple()),
                report.metrics.cyclomatic,
                report.metrics.block_count,
                report.metrics.edge_count,
                report.metrics.branch_count,
                report.metrics.nesting_depth,
                report.bucket.value,
            ]
            for report in analysis.functions
        ]

    if analysis.findings:
        rows = []
        for finding in analysis.findings:
            row = finding.to_dict()
            del row["filepath"]
            rows.append(row)
        wire["fd"] = rows

    if analysis.fragments:
        wire["fr"] = [
            [
                fragment.qualname,
                list(fragment.span.as_tuple()),
                fragment.granularity,
                list(fragment.tree.labels),
                list(fragment.tree.arity),
            ]
            for fragment in analysis.fragments
        ]

    return wire


def _rows(obj: Mapping[str, object], key: str) -> list[object] | None:
    value = obj.get(key)
    if value is None:
        return []
    return _as_list(value)


def _decode_wire_file_entry(
    value: object, filepath: str
) -> tuple[str, FileAnalysis] | None:
    obj = _as_str_dict(value)
    if obj is None:
        return None

    digest = _as_str(obj.get("h"))
    if digest is None:
        return None

    functions = _rows(obj, "fn")
    findings = _rows(obj, "fd")
    fragments = _rows(obj, "fr")
    if functions is None or findings is None or fragments is None:
        return None

    analysis = FileAnalysis(filepath=filepath)

    for row_obj in functions:
        report = _decode_wire_function(row_obj, filepath)
        if report is None:
            return None
        analysis.functions.append(report)

    for row_obj in findings:
        row = _as_str_dict(row_obj)
        if row is None:
            return None
        try:
            analysis.findings.append(Finding.from_dict({**row, "filepath": filepath}))
        except (KeyError, ValueError):
            return None

    for row_obj in fragments:
        fragment = _decode_wire_fragment(row_obj, filepath)
        if fragment is None:
            return None
        analysis.fragments.append(fragment)

    return digest, analysis


def _decode_wire_function(value: object, filepath: str) -> FunctionReport | None:
    row = _as_list(value)
    if row is None or len(row) != 8:
        return None

    qualname = _as_str(row[0])
    span = None if row[1] is None else _as_span(row[1])
    numbers = [_as_int(v) for v in row[2:7]]
    bucket = _as_str(row[7])
    if qualname is None or (row[1] is not None and span is None) or bucket is None:
        return None
    if any(n is None for n in numbers):
        return None
    cyclomatic, blocks, edges, branches, nesting = (n for n in numbers if n is not None)
    try:
        bucket_value = ComplexityBucket(bucket)
    except ValueError:
        return None

    return FunctionReport(
        filepath=filepath,
        qualname=qualname,
        span=span,
        metrics=ComplexityMetrics(
            cyclomatic=cyclomatic,
            block_count=blocks,
            edge_count=edges,
            branch_count=branches,
            nesting_depth=nesting,
        ),
        bucket=bucket_value,
    )


def _decode_wire_fragment(value: object, filepath: str) -> Fragment | None:
    row = _as_list(value)
    if row is None or len(row) != 5:
        return None

    qualname = _as_str(row[0])
    span = _as_span(row[1])
    granularity = _as_str(row[2])
    labels = _as_list(row[3])
    arity = _as_list(row[4])
    if (
        qualname is None
        or span is None
        or granularity not in ("function", "window")
        or labels is None
        or arity is None
        or len(labels) != len(arity)
    ):
        return None
    if not all(isinstance(v, str) for v in labels):
        return None
    arity_ints = [_as_int(v) for v in arity]
    if any(v is None for v in arity_ints):
        return None

    return Fragment(
        filepath=filepath,
        qualname=qualname,
        span=span,
        tree=FlatTree(
            tuple(str(v) for v in labels),
            tuple(v for v in arity_ints if v is not None),
        ),
        granularity="window" if granularity == "window" else "function",
    )
