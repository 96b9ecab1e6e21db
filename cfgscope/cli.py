"""
cfgscope — control-flow, dead code and clone analysis for Python
source trees.

Copyright (c) 2026 Den Rozhnovskiy
Licensed under the MIT License.
"""

from __future__ import annotations

import argparse
import os
import signal
import sys
import time
from collections import Counter
from collections.abc import Callable, Iterator, Mapping, Sequence
from contextlib import contextmanager
from pathlib import Path
from types import FrameType

from rich.console import Console
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.rule import Rule
from rich.theme import Theme

from . import __version__
from . import ui_messages as ui
from ._cli_args import build_parser
from ._cli_meta import _build_report_meta
from ._cli_paths import _resolve_cache_path, _resolve_report_paths
from ._cli_summary import _print_summary
from .cache import Cache, CacheStatus
from .cancellation import CancellationToken
from .config import AnalysisConfig, load_config
from .contracts import ExitCode
from .errors import CacheError, ConfigError, ValidationError
from .findings import Severity
from .pipeline import RunResult, run_analysis
from .report import to_json_report, to_text_report
from .scanner import iter_py_files

# Custom theme for Rich
custom_theme = Theme(
    {
        "info": "cyan",
        "warning": "yellow",
        "error": "bold red",
        "success": "bold green",
        "dim": "dim",
    }
)


def _make_console(*, no_color: bool) -> Console:
    return Console(theme=custom_theme, width=100, no_color=no_color)


console = _make_console(no_color=False)


def print_banner() -> None:
    console.print(
        Panel(
            ui.banner_title(__version__),
            border_style="blue",
            padding=(0, 2),
            width=ui.CLI_LAYOUT_WIDTH,
            expand=False,
        )
    )


def _is_debug_enabled(
    *,
    argv: Sequence[str] | None = None,
    environ: Mapping[str, str] | None = None,
) -> bool:
    args = list(sys.argv[1:] if argv is None else argv)
    debug_from_flag = any(arg == "--debug" for arg in args)
    env = os.environ if environ is None else environ
    debug_from_env = env.get("CFGSCOPE_DEBUG") == "1"
    return debug_from_flag or debug_from_env


@contextmanager
def _cancel_on_interrupt(token: CancellationToken) -> Iterator[None]:
    """Route Ctrl-C to ``token`` so the run stops at its next checkpoint."""

    def _handler(signum: int, frame: FrameType | None) -> None:
        token.cancel()

    try:
        previous = signal.signal(signal.SIGINT, _handler)
    except ValueError:
        # Not the main thread; Ctrl-C keeps its default behaviour.
        yield
        return
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, previous)


def _resolve_config(args: argparse.Namespace, root_path: Path) -> AnalysisConfig:
    config_path = args.config_path
    config = load_config(
        root_path,
        None if config_path is None else Path(config_path).expanduser(),
    )
    return config.with_overrides(
        detectors=args.detectors,
        complexity_low=args.complexity_low,
        complexity_medium=args.complexity_medium,
        clone_threshold=args.clone_threshold,
        clone_min_nodes=args.clone_min_nodes,
        clone_min_lines=args.clone_min_lines,
        clone_granularity=args.clone_granularity,
        window_size=args.window_size,
    ).validate()


def _gating_findings(result: RunResult) -> Counter[str]:
    return Counter(
        f.kind.value
        for f in result.findings
        if f.severity.rank >= Severity.WARNING.rank
    )


def _main_impl() -> None:
    ap = build_parser(__version__)
    args = ap.parse_args()

    if args.ci:
        args.fail_on_findings = True
        args.no_color = True
        args.quiet = True

    if args.quiet:
        args.no_progress = True

    global console
    console = _make_console(no_color=args.no_color)

    if args.max_cache_size_mb < 0:
        console.print(
            ui.fmt_contract_error("Size limits must be non-negative integers (MB).")
        )
        sys.exit(ExitCode.CONTRACT_ERROR)
    if args.processes < 1:
        console.print(ui.fmt_contract_error("--processes must be at least 1."))
        sys.exit(ExitCode.CONTRACT_ERROR)

    t0 = time.monotonic()

    if not args.quiet:
        print_banner()

    try:
        root_path = Path(args.root).resolve()
        if not root_path.exists():
            console.print(
                ui.fmt_contract_error(ui.ERR_ROOT_NOT_FOUND.format(path=root_path))
            )
            sys.exit(ExitCode.CONTRACT_ERROR)
    except OSError as e:
        console.print(ui.fmt_contract_error(ui.ERR_INVALID_ROOT_PATH.format(error=e)))
        sys.exit(ExitCode.CONTRACT_ERROR)

    if not args.quiet:
        console.print(ui.fmt_scanning_root(root_path))

    cache_path = _resolve_cache_path(
        root_path, cache_path=args.cache_path, no_cache=args.no_cache
    )
    json_out_path, text_out_path = _resolve_report_paths(
        json_out=args.json_out,
        text_out=args.text_out,
        cache_path=cache_path,
        console=console,
    )

    try:
        config = _resolve_config(args, root_path)
    except ConfigError as e:
        console.print(ui.fmt_contract_error(ui.fmt_invalid_config(e)))
        sys.exit(ExitCode.CONTRACT_ERROR)

    # Initialize Cache
    cache: Cache | None = None
    if cache_path is not None:
        cache = Cache(
            cache_path,
            root=root_path,
            config=config,
            max_size_bytes=args.max_cache_size_mb * 1024 * 1024,
        )
        cache.load()
        if cache.load_warning:
            console.print(ui.fmt_cache_ignored(cache.load_warning))

    # Discovery phase
    try:
        if args.quiet:
            files = list(iter_py_files(str(root_path)))
        else:
            with console.status(ui.STATUS_DISCOVERING, spinner="dots"):
                files = list(iter_py_files(str(root_path)))
    except ValidationError as e:
        console.print(ui.fmt_contract_error(ui.ERR_SCAN_FAILED.format(error=e)))
        sys.exit(ExitCode.CONTRACT_ERROR)

    if not args.quiet and files:
        console.print(ui.fmt_processing_files(len(files)))

    def _on_parallel_fallback(error: BaseException) -> None:
        console.print(ui.fmt_parallel_fallback(error))

    token = CancellationToken()

    def _run(on_progress: Callable[[str], None] | None) -> RunResult:
        with _cancel_on_interrupt(token):
            return run_analysis(
                files,
                root_path,
                config,
                processes=args.processes,
                cancel=token,
                cache=cache,
                on_progress=on_progress,
                on_parallel_fallback=_on_parallel_fallback,
            )

    if args.no_progress or not files:
        result = _run(None)
    else:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
            TimeElapsedColumn(),
            console=console,
        ) as progress:
            task = progress.add_task(
                f"Analyzing {len(files)} files...", total=len(files)
            )
            result = _run(lambda _fp: progress.advance(task))

    if not result.completed:
        console.print(ui.fmt_aborted())
        sys.exit(ExitCode.ABORTED)

    if result.failures:
        console.print(ui.fmt_failed_files_header(len(result.failures)))
        for failure in result.failures[:10]:
            console.print(f"  • {failure}")
        if len(result.failures) > 10:
            console.print(f"  ... and {len(result.failures) - 10} more")

    if cache is not None:
        cache.prune(set(files))
        try:
            cache.save()
        except CacheError as e:
            console.print(ui.fmt_cache_save_failed(e))

    report_cache_path: Path | None = None
    if cache_path is not None:
        try:
            report_cache_path = cache_path.resolve()
        except OSError:
            report_cache_path = cache_path

    cache_status = CacheStatus.MISSING if cache is None else cache.load_status
    report_meta = _build_report_meta(
        cfgscope_version=__version__,
        root=root_path,
        detectors=config.detectors,
        clone_threshold=config.clone_threshold,
        clone_granularity=config.clone_granularity,
        complexity_low=config.complexity_low,
        complexity_medium=config.complexity_medium,
        cache_path=report_cache_path,
        cache_used=cache_status == CacheStatus.OK,
        cache_status=cache_status.value,
        cache_schema_version=None if cache is None else cache.cache_schema_version,
        files_skipped_source_io=len(result.source_read_failures),
    )

    if not args.quiet:
        console.print(Rule(style="dim"))

    _print_summary(
        console=console,
        quiet=args.quiet,
        files_found=len(files),
        result=result,
    )

    # Outputs
    output_notice_printed = False

    def _print_output_notice(message: str) -> None:
        nonlocal output_notice_printed
        if args.quiet:
            return
        if not output_notice_printed:
            console.print("")
            output_notice_printed = True
        console.print(message)

    def _write_report_output(*, out: Path, content: str, label: str) -> None:
        try:
            out.parent.mkdir(parents=True, exist_ok=True)
            out.write_text(content, "utf-8")
        except OSError as e:
            console.print(
                ui.fmt_contract_error(
                    ui.fmt_report_write_failed(label=label, path=out, error=e)
                )
            )
            sys.exit(ExitCode.CONTRACT_ERROR)

    if json_out_path:
        _write_report_output(
            out=json_out_path,
            content=to_json_report(result, report_meta),
            label="JSON",
        )
        _print_output_notice(ui.fmt_path(ui.INFO_JSON_REPORT_SAVED, json_out_path))

    if text_out_path:
        _write_report_output(
            out=text_out_path,
            content=to_text_report(result, report_meta),
            label="text",
        )
        _print_output_notice(ui.fmt_path(ui.INFO_TEXT_REPORT_SAVED, text_out_path))

    gating = args.fail_on_findings or args.fail_threshold >= 0
    if gating and result.source_read_failures:
        console.print(
            ui.fmt_contract_error(
                ui.fmt_unreadable_source_in_gating(
                    count=len(result.source_read_failures)
                )
            )
        )
        for failure in result.source_read_failures[:10]:
            console.print(f"  • {failure}")
        if len(result.source_read_failures) > 10:
            console.print(f"  ... and {len(result.source_read_failures) - 10} more")
        sys.exit(ExitCode.CONTRACT_ERROR)

    # Exit Codes
    if args.fail_on_findings:
        counts = _gating_findings(result)
        if counts:
            console.print(ui.fmt_gating_failure("Findings reported."))
            console.print(f"\n{ui.FAIL_FINDINGS_TITLE}")
            for kind in sorted(counts):
                console.print(ui.fmt_fail_findings_line(kind=kind, count=counts[kind]))
            sys.exit(ExitCode.GATING_FAILURE)

    total = len(result.findings)
    if 0 <= args.fail_threshold < total:
        console.print(
            ui.fmt_gating_failure(
                ui.fmt_fail_threshold(total=total, threshold=args.fail_threshold)
            )
        )
        sys.exit(ExitCode.GATING_FAILURE)

    if not args.quiet:
        elapsed = time.monotonic() - t0
        console.print(f"\n[dim]Done in {elapsed:.1f}s[/dim]")


def main() -> None:
    try:
        _main_impl()
    except SystemExit:
        raise
    except Exception as e:
        console.print(ui.fmt_internal_error(e, debug=_is_debug_enabled()))
        sys.exit(ExitCode.INTERNAL_ERROR)


if __name__ == "__main__":
    main()
