"""
cfgscope — control-flow, dead code and clone analysis for Python
source trees.

Copyright (c) 2026 Den Rozhnovskiy
Licensed under the MIT License.
"""

from __future__ import annotations

import argparse
from typing import cast

from . import ui_messages as ui
from .config import GRANULARITIES
from .contracts import cli_help_epilog


class _HelpFormatter(
    argparse.RawDescriptionHelpFormatter, argparse.ArgumentDefaultsHelpFormatter
):
    def _get_help_string(self, action: argparse.Action) -> str:
        # Options left unset fall back to [tool.cfgscope]; "None" would mislead.
        if action.default is None:
            return action.help or ""
        return cast(str, super()._get_help_string(action))


def _threshold(value: str) -> float:
    try:
        parsed = float(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"not a number: {value!r}") from e
    if not 0.0 <= parsed <= 1.0:
        raise argparse.ArgumentTypeError(f"must be within [0, 1], got {parsed}")
    return parsed


def build_parser(version: str) -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="cfgscope",
        description="Control-flow, dead code and clone analysis for Python.",
        formatter_class=_HelpFormatter,
        epilog=cli_help_epilog(),
    )
    ap.add_argument(
        "--version",
        action="version",
        version=ui.version_output(version),
        help=ui.HELP_VERSION,
    )

    core_group = ap.add_argument_group("Target")
    core_group.add_argument(
        "root",
        nargs="?",
        default=".",
        help=ui.HELP_ROOT,
    )
    core_group.add_argument(
        "--config",
        dest="config_path",
        metavar="FILE",
        default=None,
        help=ui.HELP_CONFIG,
    )

    tune_group = ap.add_argument_group("Analysis Tuning")
    tune_group.add_argument(
        "--detectors",
        default=None,
        metavar="LIST",
        help=ui.HELP_DETECTORS,
    )
    tune_group.add_argument(
        "--complexity-low",
        type=int,
        default=None,
        metavar="N",
        help=ui.HELP_COMPLEXITY_LOW,
    )
    tune_group.add_argument(
        "--complexity-medium",
        type=int,
        default=None,
        metavar="N",
        help=ui.HELP_COMPLEXITY_MEDIUM,
    )
    tune_group.add_argument(
        "--clone-threshold",
        type=_threshold,
        default=None,
        metavar="SIMILARITY",
        help=ui.HELP_CLONE_THRESHOLD,
    )
    tune_group.add_argument(
        "--clone-min-nodes",
        type=int,
        default=None,
        metavar="N",
        help=ui.HELP_CLONE_MIN_NODES,
    )
    tune_group.add_argument(
        "--clone-min-lines",
        type=int,
        default=None,
        metavar="N",
        help=ui.HELP_CLONE_MIN_LINES,
    )
    tune_group.add_argument(
        "--granularity",
        dest="clone_granularity",
        choices=GRANULARITIES,
        default=None,
        help=ui.HELP_GRANULARITY,
    )
    tune_group.add_argument(
        "--window-size",
        type=int,
        default=None,
        metavar="N",
        help=ui.HELP_WINDOW_SIZE,
    )
    tune_group.add_argument(
        "--processes",
        type=int,
        default=4,
        help=ui.HELP_PROCESSES,
    )
    tune_group.add_argument(
        "--cache-path",
        dest="cache_path",
        metavar="FILE",
        default=None,
        help=ui.HELP_CACHE_PATH,
    )
    tune_group.add_argument(
        "--no-cache",
        action="store_true",
        help=ui.HELP_NO_CACHE,
    )
    tune_group.add_argument(
        "--max-cache-size-mb",
        type=int,
        default=50,
        metavar="MB",
        help=ui.HELP_MAX_CACHE_SIZE_MB,
    )

    ci_group = ap.add_argument_group("CI/CD")
    ci_group.add_argument(
        "--fail-on-findings",
        action="store_true",
        help=ui.HELP_FAIL_ON_FINDINGS,
    )
    ci_group.add_argument(
        "--fail-threshold",
        type=int,
        default=-1,
        metavar="MAX_FINDINGS",
        help=ui.HELP_FAIL_THRESHOLD,
    )
    ci_group.add_argument(
        "--ci",
        action="store_true",
        help=ui.HELP_CI,
    )

    out_group = ap.add_argument_group("Reporting")
    out_group.add_argument(
        "--json",
        dest="json_out",
        metavar="FILE",
        help=ui.HELP_JSON,
    )
    out_group.add_argument(
        "--text",
        dest="text_out",
        metavar="FILE",
        help=ui.HELP_TEXT,
    )
    out_group.add_argument(
        "--no-progress",
        action="store_true",
        help=ui.HELP_NO_PROGRESS,
    )
    out_group.add_argument(
        "--no-color",
        action="store_true",
        help=ui.HELP_NO_COLOR,
    )
    out_group.add_argument(
        "--quiet",
        action="store_true",
        help=ui.HELP_QUIET,
    )
    out_group.add_argument(
        "--debug",
        action="store_true",
        help=ui.HELP_DEBUG,
    )
    return ap
