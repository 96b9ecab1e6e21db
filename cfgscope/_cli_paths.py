"""
cfgscope — control-flow, dead code and clone analysis for Python
source trees.

Copyright (c) 2026 Den Rozhnovskiy
Licensed under the MIT License.
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Final

from rich.console import Console

from . import ui_messages as ui
from .cache import DEFAULT_CACHE_DIRNAME, DEFAULT_CACHE_FILENAME
from .contracts import ExitCode

REPORT_SUFFIXES: Final = {"JSON": ".json", "text": ".txt"}


def _contract_error(console: Console, message: str) -> None:
    console.print(ui.fmt_contract_error(message))
    sys.exit(ExitCode.CONTRACT_ERROR)


def _resolve_cache_path(
    root: Path, *, cache_path: str | None, no_cache: bool
) -> Path | None:
    if no_cache:
        return None
    if cache_path:
        return Path(cache_path).expanduser()
    return root / DEFAULT_CACHE_DIRNAME / DEFAULT_CACHE_FILENAME


def _validate_output_path(path: str, *, label: str, console: Console) -> Path:
    """Resolve a report path, exiting with a contract error when unusable."""
    expected_suffix = REPORT_SUFFIXES[label]
    out = Path(path).expanduser()
    if out.suffix.lower() != expected_suffix:
        _contract_error(
            console,
            ui.fmt_invalid_output_extension(
                label=label, path=out, expected_suffix=expected_suffix
            ),
        )
    if out.is_dir():
        _contract_error(console, ui.fmt_output_is_directory(label=label, path=out))
    return out.resolve()


def _resolve_report_paths(
    *,
    json_out: str | None,
    text_out: str | None,
    cache_path: Path | None,
    console: Console,
) -> tuple[Path | None, Path | None]:
    """Validated JSON and text report paths; neither may replace the cache."""
    json_path = (
        _validate_output_path(json_out, label="JSON", console=console)
        if json_out
        else None
    )
    text_path = (
        _validate_output_path(text_out, label="text", console=console)
        if text_out
        else None
    )
    if cache_path is not None:
        cache_resolved = cache_path.resolve()
        for label, out in (("JSON", json_path), ("text", text_path)):
            if out == cache_resolved:
                _contract_error(
                    console, ui.fmt_output_overwrites_cache(label=label, path=out)
                )
    return json_path, text_path
