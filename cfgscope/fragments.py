"""
cfgscope — control-flow, dead code and clone analysis for Python
source trees.

Copyright (c) 2026 Den Rozhnovskiy
Licensed under the MIT License.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Literal

from .ast_model import Node, NodeKind, Span, has_complete_spans
from .normalize import NormalizationConfig, is_docstring, node_label
from .tree_distance import FlatTree, PreparedTree, prepare

Granularity = Literal["function", "window"]

DEFAULT_WINDOW_SIZE = 6
MAX_WINDOWS_PER_FUNCTION = 60


@dataclass(frozen=True, slots=True)
class Fragment:
    filepath: str
    qualname: str
    span: Span
    tree: FlatTree
    granularity: Granularity = "function"

    @property
    def size(self) -> int:
        return self.tree.size

    @property
    def lines(self) -> int:
        return self.span.lines

    def sort_key(self) -> tuple[str, int, int, str, int, int]:
        return (
            self.filepath,
            self.span.start_line,
            self.span.start_col,
            self.qualname,
            self.span.end_line,
            self.span.end_col,
        )


@dataclass(frozen=True, slots=True)
class SkippedFragment:
    filepath: str
    qualname: str
    span: Span | None
    reason: str


def flatten(root: Node, cfg: NormalizationConfig) -> FlatTree:
    """Preorder ``(label, arity)`` encoding of ``root`` under ``cfg``."""
    labels: list[str] = []
    arity: list[int] = []
    stack: list[tuple[Node, bool]] = [(root, False)]
    while stack:
        node, call_target = stack.pop()
        labels.append(node_label(node, cfg, call_target=call_target))
        arity.append(len(node.children))
        for child in reversed(node.children):
            stack.append((child, _is_call_target(node, child, call_target)))
    return FlatTree(tuple(labels), tuple(arity))


def _is_call_target(parent: Node, child: Node, parent_is_target: bool) -> bool:
    if child.kind not in (NodeKind.NAME, NodeKind.ATTRIBUTE):
        return False
    if parent.kind is NodeKind.CALL:
        return child.role == "func"
    # ``obj.method`` in ``obj.method()`` keeps ``obj`` as part of the target.
    return parent_is_target and parent.kind is NodeKind.ATTRIBUTE


def _strip_docstring(function_node: Node) -> Node:
    body = function_node.child("body")
    if body is None or not body.children or not is_docstring(body.children[0]):
        return function_node
    new_body = replace(body, children=body.children[1:])
    children = tuple(new_body if c is body else c for c in function_node.children)
    return replace(function_node, children=children)


def _window_span(stmts: tuple[Node, ...]) -> Span | None:
    span: Span | None = None
    for stmt in stmts:
        if stmt.span is None:
            return None
        span = stmt.span if span is None else span.merge(stmt.span)
    return span


def extract_fragments(
    function_node: Node,
    *,
    qualname: str,
    filepath: str,
    cfg: NormalizationConfig,
    granularity: Granularity = "function",
    window_size: int = DEFAULT_WINDOW_SIZE,
    max_windows: int = MAX_WINDOWS_PER_FUNCTION,
) -> tuple[list[Fragment], list[SkippedFragment]]:
    """
    Build comparable fragments for one lowered function.

    Fragments whose nodes lack source spans are not silently dropped: they
    come back as :class:`SkippedFragment` records so callers can report
    them.
    """
    if function_node.kind is not NodeKind.FUNCTION:
        raise ValueError(f"Expected a function node, got {function_node.kind.value}")

    root = _strip_docstring(function_node) if cfg.ignore_docstrings else function_node
    skipped: list[SkippedFragment] = []

    if granularity == "function":
        if root.span is None or not has_complete_spans(root):
            skipped.append(
                SkippedFragment(
                    filepath, qualname, root.span, "missing source span information"
                )
            )
            return [], skipped
        fragment = Fragment(filepath, qualname, root.span, flatten(root, cfg))
        return [fragment], skipped

    stmts = tuple(root.statements("body"))
    if window_size <= 0 or len(stmts) < window_size:
        return [], skipped

    fragments: list[Fragment] = []
    incomplete = False
    for i in range(len(stmts) - window_size + 1):
        window = stmts[i : i + window_size]
        span = _window_span(window)
        block = Node(NodeKind.BLOCK, window, span, None, "body")
        if span is None or not has_complete_spans(block):
            incomplete = True
            continue
        fragments.append(
            Fragment(
                filepath,
                f"{qualname}:{span.start_line}-{span.end_line}",
                span,
                flatten(block, cfg),
                "window",
            )
        )
        if len(fragments) >= max_windows:
            break

    if incomplete:
        skipped.append(
            SkippedFragment(
                filepath,
                qualname,
                root.span,
                "statement window missing source span information",
            )
        )
    return fragments, skipped


# =========================
# Index
# =========================


@dataclass(frozen=True, slots=True)
class FragmentIndex:
    """
    Fragments in canonical order with their prepared distance arrays.

    Positions in ``fragments`` are stable identifiers for a run: the order
    depends only on file path, position and qualified name, never on
    discovery order or worker scheduling.
    """

    fragments: tuple[Fragment, ...]
    prepared: tuple[PreparedTree, ...]

    def __len__(self) -> int:
        return len(self.fragments)

    @classmethod
    def build(
        cls,
        fragments: list[Fragment] | tuple[Fragment, ...],
        *,
        min_nodes: int = 1,
        min_lines: int = 1,
    ) -> FragmentIndex:
        kept = sorted(
            (f for f in fragments if f.size >= min_nodes and f.lines >= min_lines),
            key=Fragment.sort_key,
        )
        unique: list[Fragment] = []
        for fragment in kept:
            if unique and unique[-1].sort_key() == fragment.sort_key():
                continue
            unique.append(fragment)

        intern: dict[str, int] = {}
        prepared = tuple(prepare(f.tree, intern) for f in unique)
        return cls(fragments=tuple(unique), prepared=prepared)

    def overlapping(self, i: int, j: int) -> bool:
        """True when both fragments share a source line of the same file."""
        a, b = self.fragments[i], self.fragments[j]
        if a.filepath != b.filepath:
            return False
        return a.span.shares_lines(b.span)
