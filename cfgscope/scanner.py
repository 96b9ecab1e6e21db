"""
cfgscope — control-flow, dead code and clone analysis for Python
source trees.

Copyright (c) 2026 Den Rozhnovskiy
Licensed under the MIT License.
"""

from __future__ import annotations

import tempfile
from collections.abc import Iterable
from pathlib import Path

from .errors import ValidationError

DEFAULT_EXCLUDES = (
    ".git",
    ".venv",
    "venv",
    "__pycache__",
    "site-packages",
    "node_modules",
    "dist",
    "build",
    ".tox",
    ".mypy_cache",
    ".pytest_cache",
)

SENSITIVE_DIRS = {
    "/etc",
    "/sys",
    "/proc",
    "/dev",
    "/root",
    "/boot",
    "/var",
    "/private/var",
    "/usr/bin",
    "/usr/sbin",
    "/private/etc",
}


def _get_tempdir() -> Path:
    return Path(tempfile.gettempdir()).resolve()


def _is_under(path: Path, parent: Path) -> bool:
    try:
        path.relative_to(parent)
    except ValueError:
        return False
    return True


def _check_root(rootp: Path, root: str) -> None:
    if _is_under(rootp, _get_tempdir()):
        return
    root_str = str(rootp)
    if root_str in SENSITIVE_DIRS:
        raise ValidationError(f"Cannot scan sensitive directory: {root}")
    for sensitive in SENSITIVE_DIRS:
        if root_str.startswith(sensitive + "/"):
            raise ValidationError(f"Cannot scan under sensitive directory: {root}")


def iter_py_files(
    root: str,
    excludes: tuple[str, ...] = DEFAULT_EXCLUDES,
    *,
    max_files: int = 100_000,
) -> Iterable[str]:
    """Yield ``*.py`` files under ``root`` in sorted order."""
    try:
        rootp = Path(root).resolve(strict=True)
    except (OSError, RuntimeError) as e:
        raise ValidationError(f"Invalid root path '{root}': {e}") from e

    if not rootp.is_dir():
        raise ValidationError(f"Root must be a directory: {root}")

    _check_root(rootp, root)

    file_count = 0
    for p in sorted(rootp.rglob("*.py")):
        # Symlinks must not lead outside the root.
        if not _is_under(p.resolve(), rootp):
            continue

        parts = set(p.relative_to(rootp).parts)
        if any(ex in parts for ex in excludes):
            continue

        file_count += 1
        if file_count > max_files:
            raise ValidationError(
                f"File count exceeds limit of {max_files}. "
                "Use more specific root or increase limit."
            )
        yield str(p)


def module_name_from_path(root: str, filepath: str) -> str:
    rootp = Path(root).resolve()
    fp = Path(filepath).resolve()
    stem = fp.relative_to(rootp).with_suffix("")
    if stem.name == "__init__":
        stem = stem.parent
    return ".".join(stem.parts)
