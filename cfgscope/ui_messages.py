from __future__ import annotations

import platform
import shlex
import sys
import traceback
from pathlib import Path

from . import __version__

BANNER_SUBTITLE = "[italic]Control flow, dead code and clone analysis[/italic]"

MARKER_CONTRACT_ERROR = "[error]CONTRACT ERROR:[/error]"
MARKER_GATING_FAILURE = "[error]GATING FAILURE:[/error]"
MARKER_INTERNAL_ERROR = "[error]INTERNAL ERROR:[/error]"
MARKER_ABORTED = "[warning]ABORTED:[/warning]"

HELP_VERSION = "Print the cfgscope version and exit."
HELP_ROOT = "Project root directory to scan."
HELP_CONFIG = "Path to a pyproject.toml with a [tool.cfgscope] table."
HELP_DETECTORS = "Comma-separated detectors to run (complexity, dead_code, clones)."
HELP_COMPLEXITY_LOW = "Highest cyclomatic complexity still rated low."
HELP_COMPLEXITY_MEDIUM = "Highest cyclomatic complexity still rated medium."
HELP_CLONE_THRESHOLD = "Minimum similarity in [0, 1] for two fragments to be clones."
HELP_CLONE_MIN_NODES = "Minimum normalised tree size of a clone fragment."
HELP_CLONE_MIN_LINES = "Minimum source lines of a clone fragment."
HELP_GRANULARITY = "Compare whole functions or sliding statement windows."
HELP_WINDOW_SIZE = "Statements per window when --granularity=window."
HELP_PROCESSES = "Number of parallel worker processes."
HELP_CACHE_PATH = "Path to the cache file. Default: <root>/.cache/cfgscope/cache.json."
HELP_NO_CACHE = "Do not read or write the cache."
HELP_MAX_CACHE_SIZE_MB = "Maximum cache file size in MB."
HELP_FAIL_ON_FINDINGS = "Exit with error if any warning or error finding is reported."
HELP_FAIL_THRESHOLD = "Exit with error if the number of findings exceeds this number."
HELP_CI = "CI preset: --fail-on-findings --no-color --quiet."
HELP_JSON = "Generate a JSON report to FILE."
HELP_TEXT = "Generate a text report to FILE."
HELP_NO_PROGRESS = "Disable the progress bar (recommended for CI logs)."
HELP_NO_COLOR = "Disable ANSI colors in output."
HELP_QUIET = "Minimize output (still shows warnings and errors)."
HELP_DEBUG = "Print debug details (traceback and environment) on internal errors."

SUMMARY_TITLE = "Analysis Summary"
CLI_LAYOUT_WIDTH = 40
SUMMARY_LABEL_FILES_FOUND = "Files found"
SUMMARY_LABEL_FILES_ANALYZED = "Files analyzed"
SUMMARY_LABEL_CACHE_HITS = "Cache hits"
SUMMARY_LABEL_FILES_SKIPPED = "Files skipped"
SUMMARY_LABEL_FUNCTIONS = "Functions"
SUMMARY_LABEL_COMPLEXITY = "Complex functions"
SUMMARY_LABEL_DEAD_CODE = "Dead code findings"
SUMMARY_LABEL_CLONES = "Clone classes"
SUMMARY_LABEL_STRUCTURAL = "Structural errors"
SUMMARY_COMPACT_INPUT = (
    "Input: found={found} analyzed={analyzed} cache_hits={cache_hits} skipped={skipped}"
)
SUMMARY_COMPACT_FINDINGS = (
    "Findings: complexity={complexity} dead_code={dead_code} "
    "clones={clones} structural={structural}"
)
WARN_SUMMARY_ACCOUNTING_MISMATCH = (
    "Summary accounting mismatch: "
    "files_found != files_analyzed + cache_hits + files_skipped"
)

STATUS_DISCOVERING = "[bold green]Discovering Python files..."

INFO_SCANNING_ROOT = "[info]Scanning root:[/info] {root}"
INFO_PROCESSING_FILES = "[info]Processing {count} files...[/info]"
INFO_JSON_REPORT_SAVED = "[info]JSON report saved:[/info] {path}"
INFO_TEXT_REPORT_SAVED = "[info]Text report saved:[/info] {path}"

WARN_PARALLEL_FALLBACK = (
    "[warning]Parallel processing unavailable, "
    "falling back to sequential: {error}[/warning]"
)
WARN_FAILED_FILES_HEADER = "\n[warning]{count} files failed to process:[/warning]"
WARN_CACHE_SAVE_FAILED = "[warning]Failed to save cache: {error}[/warning]"
WARN_CACHE_IGNORED = "[warning]{message}[/warning]"

ERR_INVALID_OUTPUT_EXT = (
    "[error]Invalid {label} output extension: {path} "
    "(expected {expected_suffix}).[/error]"
)
ERR_OUTPUT_IS_DIRECTORY = "[error]{label} report path is a directory: {path}[/error]"
ERR_OUTPUT_OVERWRITES_CACHE = (
    "[error]{label} report path is the cache file: {path}[/error]"
)
ERR_ROOT_NOT_FOUND = "[error]Root path does not exist: {path}[/error]"
ERR_INVALID_ROOT_PATH = "[error]Invalid root path: {error}[/error]"
ERR_SCAN_FAILED = "[error]Scan failed: {error}[/error]"
ERR_INVALID_CONFIG = "[error]Invalid configuration: {error}[/error]"
ERR_REPORT_WRITE_FAILED = (
    "[error]Failed to write {label} report: {path} ({error}).[/error]"
)
ERR_UNREADABLE_SOURCE_IN_GATING = (
    "One or more source files could not be read in CI/gating mode.\n"
    "Unreadable source files: {count}."
)
ERR_ABORTED = "Analysis cancelled; no report was written."

FAIL_FINDINGS_TITLE = "[error]FAILED: Findings reported.[/error]"
FAIL_FINDINGS_LINE = "- {kind}: {count}"
ERR_FAIL_THRESHOLD = "Total findings ({total}) exceed threshold ({threshold})."


def version_output(version: str) -> str:
    return f"cfgscope {version}"


def banner_title(version: str) -> str:
    return f"[bold white]cfgscope[/bold white] [dim]v{version}[/dim]\n{BANNER_SUBTITLE}"


def fmt_invalid_output_extension(
    *, label: str, path: Path, expected_suffix: str
) -> str:
    return ERR_INVALID_OUTPUT_EXT.format(
        label=label, path=path, expected_suffix=expected_suffix
    )


def fmt_output_is_directory(*, label: str, path: Path) -> str:
    return ERR_OUTPUT_IS_DIRECTORY.format(label=label, path=path)


def fmt_output_overwrites_cache(*, label: str, path: Path) -> str:
    return ERR_OUTPUT_OVERWRITES_CACHE.format(label=label, path=path)


def fmt_report_write_failed(*, label: str, path: Path, error: object) -> str:
    return ERR_REPORT_WRITE_FAILED.format(label=label, path=path, error=error)


def fmt_unreadable_source_in_gating(*, count: int) -> str:
    return ERR_UNREADABLE_SOURCE_IN_GATING.format(count=count)


def fmt_invalid_config(error: object) -> str:
    return ERR_INVALID_CONFIG.format(error=error)


def fmt_scanning_root(root: Path) -> str:
    return INFO_SCANNING_ROOT.format(root=root)


def fmt_processing_files(count: int) -> str:
    return INFO_PROCESSING_FILES.format(count=count)


def fmt_parallel_fallback(error: object) -> str:
    return WARN_PARALLEL_FALLBACK.format(error=error)


def fmt_failed_files_header(count: int) -> str:
    return WARN_FAILED_FILES_HEADER.format(count=count)


def fmt_cache_save_failed(error: object) -> str:
    return WARN_CACHE_SAVE_FAILED.format(error=error)


def fmt_cache_ignored(message: str) -> str:
    return WARN_CACHE_IGNORED.format(message=message)


def fmt_path(template: str, path: Path) -> str:
    return template.format(path=path)


def fmt_summary_compact_input(
    *, found: int, analyzed: int, cache_hits: int, skipped: int
) -> str:
    return SUMMARY_COMPACT_INPUT.format(
        found=found, analyzed=analyzed, cache_hits=cache_hits, skipped=skipped
    )


def fmt_summary_compact_findings(
    *, complexity: int, dead_code: int, clones: int, structural: int
) -> str:
    return SUMMARY_COMPACT_FINDINGS.format(
        complexity=complexity,
        dead_code=dead_code,
        clones=clones,
        structural=structural,
    )


def fmt_fail_threshold(*, total: int, threshold: int) -> str:
    return ERR_FAIL_THRESHOLD.format(total=total, threshold=threshold)


def fmt_fail_findings_line(*, kind: str, count: int) -> str:
    return FAIL_FINDINGS_LINE.format(kind=kind, count=count)


def fmt_contract_error(message: str) -> str:
    return f"{MARKER_CONTRACT_ERROR}\n{message}"


def fmt_gating_failure(message: str) -> str:
    return f"{MARKER_GATING_FAILURE}\n{message}"


def fmt_aborted() -> str:
    return f"{MARKER_ABORTED} {ERR_ABORTED}"


def fmt_internal_error(error: BaseException, *, debug: bool = False) -> str:
    error_name = type(error).__name__
    error_text = str(error).strip() or "<no message>"
    lines = [
        MARKER_INTERNAL_ERROR,
        "Unexpected exception.",
        f"Reason: {error_name}: {error_text}",
        "",
        "Next steps:",
        "- Re-run with --debug to include a traceback.",
        (
            "- If this is reproducible, report it with the command line, "
            "cfgscope version and Python version."
        ),
    ]
    if not debug:
        return "\n".join(lines)

    traceback_lines = traceback.format_exception(
        type(error), error, error.__traceback__
    )
    command_line = shlex.join(sys.argv)
    lines.extend(
        [
            "",
            "DEBUG DETAILS",
            f"Platform: {platform.platform()}",
            f"Python: {sys.version.split()[0]}",
            f"cfgscope: {__version__}",
            f"Command: {command_line}",
            f"CWD: {Path.cwd()}",
            "Traceback:",
            "".join(traceback_lines).rstrip(),
        ]
    )
    return "\n".join(lines)
