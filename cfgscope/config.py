"""
cfgscope — control-flow, dead code and clone analysis for Python
source trees.

Copyright (c) 2026 Den Rozhnovskiy
Licensed under the MIT License.
"""

from __future__ import annotations

import tomllib
from collections.abc import Mapping
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any

from .clones import CloneConfig
from .complexity import ComplexityThresholds
from .errors import ConfigError
from .normalize import NormalizationConfig

PYPROJECT_NAME = "pyproject.toml"
TOOL_SECTION = "cfgscope"

DETECTORS = ("complexity", "dead_code", "clones")
GRANULARITIES = ("function", "window")


@dataclass(frozen=True, slots=True)
class AnalysisConfig:
    complexity_low: int = 10
    complexity_medium: int = 20
    clone_threshold: float = 0.8
    clone_min_nodes: int = 20
    clone_min_lines: int = 5
    clone_granularity: str = "function"
    window_size: int = 6
    exact_node_limit: int = 200
    detectors: tuple[str, ...] = DETECTORS
    ignore_docstrings: bool = True
    normalize_attributes: bool = True
    normalize_constants: bool = True
    normalize_names: bool = True

    def validate(self) -> AnalysisConfig:
        if not 0.0 <= self.clone_threshold <= 1.0:
            raise ConfigError(
                f"clone_threshold must be within [0, 1], got {self.clone_threshold}"
            )
        if self.clone_min_nodes < 0 or self.clone_min_lines < 0:
            raise ConfigError("Minimum fragment sizes must not be negative")
        if self.complexity_low < 1:
            raise ConfigError("complexity_low must be >= 1")
        if self.complexity_low > self.complexity_medium:
            raise ConfigError(
                "complexity_low must not exceed complexity_medium "
                f"({self.complexity_low} > {self.complexity_medium})"
            )
        unknown = sorted(set(self.detectors) - set(DETECTORS))
        if unknown:
            raise ConfigError(
                f"Unknown detector(s): {', '.join(unknown)}; "
                f"expected any of {', '.join(DETECTORS)}"
            )
        if self.clone_granularity not in GRANULARITIES:
            raise ConfigError(
                f"Unknown clone granularity {self.clone_granularity!r}; "
                f"expected one of {', '.join(GRANULARITIES)}"
            )
        if self.window_size < 1:
            raise ConfigError("window_size must be >= 1")
        if self.exact_node_limit < 0:
            raise ConfigError("exact_node_limit must not be negative")
        return self

    def enabled(self, detector: str) -> bool:
        return detector in self.detectors

    @property
    def normalization(self) -> NormalizationConfig:
        return NormalizationConfig(
            ignore_docstrings=self.ignore_docstrings,
            normalize_attributes=self.normalize_attributes,
            normalize_constants=self.normalize_constants,
            normalize_names=self.normalize_names,
        )

    @property
    def thresholds(self) -> ComplexityThresholds:
        return ComplexityThresholds(low=self.complexity_low, medium=self.complexity_medium)

    @property
    def clone_config(self) -> CloneConfig:
        return CloneConfig(
            threshold=self.clone_threshold,
            # Zero means "no minimum"; the index needs at least one node.
            min_nodes=max(1, self.clone_min_nodes),
            min_lines=max(1, self.clone_min_lines),
            exact_node_limit=self.exact_node_limit,
        )

    def with_overrides(self, **overrides: Any) -> AnalysisConfig:
        """Apply non-``None`` overrides (CLI options win over file values)."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **_coerce(changes))

    def cache_signature(self) -> dict[str, Any]:
        """Settings that change per-file results; part of the cache key."""
        return {
            "complexity_low": self.complexity_low,
            "complexity_medium": self.complexity_medium,
            "detectors": sorted(self.detectors),
            "clone_granularity": self.clone_granularity,
            "window_size": self.window_size,
            "ignore_docstrings": self.ignore_docstrings,
            "normalize_attributes": self.normalize_attributes,
            "normalize_constants": self.normalize_constants,
            "normalize_names": self.normalize_names,
        }


_FIELD_TYPES: dict[str, type] = {
    "complexity_low": int,
    "complexity_medium": int,
    "clone_threshold": float,
    "clone_min_nodes": int,
    "clone_min_lines": int,
    "clone_granularity": str,
    "window_size": int,
    "exact_node_limit": int,
    "detectors": tuple,
    "ignore_docstrings": bool,
    "normalize_attributes": bool,
    "normalize_constants": bool,
    "normalize_names": bool,
}


def _coerce(table: Mapping[str, Any]) -> dict[str, Any]:
    known = {f.name for f in fields(AnalysisConfig)}
    out: dict[str, Any] = {}
    for raw_key, value in table.items():
        key = raw_key.replace("-", "_")
        if key not in known:
            raise ConfigError(f"Unknown configuration key: {raw_key}")
        expected = _FIELD_TYPES[key]
        if expected is tuple:
            if isinstance(value, str):
                value = tuple(v.strip() for v in value.split(",") if v.strip())
            elif isinstance(value, (list, tuple)) and all(
                isinstance(v, str) for v in value
            ):
                value = tuple(value)
            else:
                raise ConfigError(f"{raw_key} must be a list of strings")
        elif expected is float:
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ConfigError(f"{raw_key} must be a number")
            value = float(value)
        elif expected is int:
            if isinstance(value, bool) or not isinstance(value, int):
                raise ConfigError(f"{raw_key} must be an integer")
        elif not isinstance(value, expected):
            raise ConfigError(f"{raw_key} must be of type {expected.__name__}")
        out[key] = value
    return out


def config_from_mapping(table: Mapping[str, Any]) -> AnalysisConfig:
    return AnalysisConfig(**_coerce(table))


def _load_toml(path: Path) -> dict[str, Any]:
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return {}
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e
    try:
        return tomllib.loads(raw)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid TOML in {path}: {e}") from e


def load_config(root: Path | None = None, config_path: Path | None = None) -> AnalysisConfig:
    """
    Read ``[tool.cfgscope]`` from ``pyproject.toml`` under ``root``.

    A missing file or section yields the defaults. Malformed files and
    unknown or mistyped keys raise :class:`ConfigError`.
    """
    if config_path is None:
        base = root if root is not None else Path.cwd()
        config_path = base / PYPROJECT_NAME
    data = _load_toml(config_path)
    tool = data.get("tool", {})
    section = tool.get(TOOL_SECTION, {}) if isinstance(tool, dict) else {}
    if not isinstance(section, dict):
        raise ConfigError(f"[tool.{TOOL_SECTION}] must be a table")
    return config_from_mapping(section)
