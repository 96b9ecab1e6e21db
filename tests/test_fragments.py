from __future__ import annotations

import pytest

from cfgscope.ast_model import Node, NodeKind, Span
from cfgscope.fragments import (
    Fragment,
    FragmentIndex,
    extract_fragments,
    flatten,
)
from cfgscope.normalize import NormalizationConfig
from cfgscope.tree_distance import FlatTree
from tests._cfg_helpers import lower_source

CFG = NormalizationConfig()


def _fragment(
    filepath: str, span: Span, labels: tuple[str, ...] = ("a",), qualname: str = "m:f"
) -> Fragment:
    return Fragment(filepath, qualname, span, FlatTree(labels, (0,) * len(labels)))


def test_renamed_functions_flatten_identically() -> None:
    first = lower_source(
        """
        def alpha(items):
            total = 0
            for item in items:
                total += item
            return total
        """
    )
    second = lower_source(
        """
        def beta(values):
            acc = 100
            for v in values:
                acc += v
            return acc
        """
    )
    assert flatten(first, CFG) == flatten(second, CFG)


def test_call_targets_keep_their_symbols() -> None:
    save = lower_source("def f(obj):\n    obj.save()\n")
    load = lower_source("def f(obj):\n    obj.load()\n")
    labels = flatten(save, CFG).labels
    assert "attribute:save" in labels
    assert "name:obj" in labels
    assert flatten(save, CFG) != flatten(load, CFG)


def test_normalization_can_be_disabled() -> None:
    node = lower_source("def f(x):\n    return x + 1\n")
    raw = flatten(node, NormalizationConfig(normalize_names=False, normalize_constants=False))
    assert "name:x" in raw.labels
    assert "constant:1" in raw.labels
    assert "bin_op:Add" in flatten(node, CFG).labels


def test_flatten_preorder_arity() -> None:
    node = lower_source("def f():\n    pass\n")
    tree = flatten(node, CFG)
    assert tree.labels == ("function", "block", "pass")
    assert tree.arity == (1, 1, 0)


def test_function_fragment() -> None:
    node = lower_source(
        """
        def f(x):
            y = x
            return y
        """
    )
    fragments, skipped = extract_fragments(node, qualname="m:f", filepath="m.py", cfg=CFG)
    assert skipped == []
    assert len(fragments) == 1
    fragment = fragments[0]
    assert fragment.qualname == "m:f"
    assert fragment.granularity == "function"
    assert fragment.span.start_line == 2
    assert fragment.lines == 3
    assert fragment.size == fragment.tree.size


def test_docstring_is_ignored_by_default() -> None:
    documented = lower_source('def f(x):\n    """Doc."""\n    return x\n')
    plain = lower_source("def f(x):\n    return x\n")
    (a,), _ = extract_fragments(documented, qualname="a", filepath="a.py", cfg=CFG)
    (b,), _ = extract_fragments(plain, qualname="b", filepath="b.py", cfg=CFG)
    assert a.tree == b.tree

    keep = NormalizationConfig(ignore_docstrings=False)
    (c,), _ = extract_fragments(documented, qualname="c", filepath="c.py", cfg=keep)
    assert c.size > a.size


def test_window_fragments() -> None:
    node = lower_source(
        """
        def f():
            a = 1
            b = 2
            c = 3
        """
    )
    fragments, skipped = extract_fragments(
        node,
        qualname="m:f",
        filepath="m.py",
        cfg=CFG,
        granularity="window",
        window_size=2,
    )
    assert skipped == []
    assert [f.qualname for f in fragments] == ["m:f:3-4", "m:f:4-5"]
    assert all(f.granularity == "window" for f in fragments)
    assert fragments[0].tree.labels[0] == "block"


def test_window_larger_than_body_yields_nothing() -> None:
    node = lower_source("def f():\n    return 1\n")
    fragments, skipped = extract_fragments(
        node, qualname="m:f", filepath="m.py", cfg=CFG, granularity="window"
    )
    assert fragments == [] and skipped == []


def test_windows_are_capped() -> None:
    body = "".join(f"    v{i} = {i}\n" for i in range(20))
    node = lower_source("def f():\n" + body)
    fragments, _ = extract_fragments(
        node,
        qualname="m:f",
        filepath="m.py",
        cfg=CFG,
        granularity="window",
        window_size=2,
        max_windows=5,
    )
    assert len(fragments) == 5


def test_missing_spans_are_reported_not_dropped() -> None:
    body = Node(NodeKind.BLOCK, (Node(NodeKind.PASS),), None, None, "body")
    node = Node(NodeKind.FUNCTION, (body,), Span(1, 0, 2, 8), "f")
    fragments, skipped = extract_fragments(node, qualname="m:f", filepath="m.py", cfg=CFG)
    assert fragments == []
    assert len(skipped) == 1
    assert skipped[0].qualname == "m:f"
    assert "span" in skipped[0].reason


def test_extract_requires_function_node() -> None:
    with pytest.raises(ValueError):
        extract_fragments(Node(NodeKind.PASS), qualname="x", filepath="x.py", cfg=CFG)


def test_index_filters_sorts_and_dedupes() -> None:
    late = _fragment("b.py", Span(1, 0, 9, 0), ("a", "b", "c"))
    early = _fragment("a.py", Span(5, 0, 9, 0), ("a", "b", "c"))
    tiny = _fragment("a.py", Span(1, 0, 1, 5), ("a",))
    index = FragmentIndex.build([late, early, tiny, early], min_nodes=2, min_lines=2)
    assert [f.filepath for f in index.fragments] == ["a.py", "b.py"]
    assert len(index) == 2
    assert len(index.prepared) == 2
    assert index.prepared[0].size == 3


def test_index_order_is_independent_of_input_order() -> None:
    fragments = [
        _fragment("b.py", Span(1, 0, 3, 0)),
        _fragment("a.py", Span(7, 0, 9, 0)),
        _fragment("a.py", Span(1, 0, 3, 0)),
    ]
    forward = FragmentIndex.build(fragments)
    backward = FragmentIndex.build(list(reversed(fragments)))
    assert forward.fragments == backward.fragments


def test_index_overlap_detection() -> None:
    outer = _fragment("a.py", Span(1, 0, 20, 0), qualname="m:outer")
    inner = _fragment("a.py", Span(3, 4, 6, 0), qualname="m:inner")
    other = _fragment("b.py", Span(3, 4, 6, 0), qualname="n:inner")
    index = FragmentIndex.build([outer, inner, other])
    positions = {f.qualname: i for i, f in enumerate(index.fragments)}
    assert index.overlapping(positions["m:outer"], positions["m:inner"])
    assert not index.overlapping(positions["m:inner"], positions["n:inner"])


def test_index_partially_shared_lines_overlap() -> None:
    first = _fragment("a.py", Span(3, 4, 8, 0), qualname="m:f:3-8")
    second = _fragment("a.py", Span(4, 4, 9, 0), qualname="m:f:4-9")
    later = _fragment("a.py", Span(9, 4, 12, 0), qualname="m:f:9-12")
    apart = _fragment("a.py", Span(10, 4, 12, 0), qualname="m:f:10-12")
    index = FragmentIndex.build([first, second, later, apart])
    positions = {f.qualname: i for i, f in enumerate(index.fragments)}
    assert index.overlapping(positions["m:f:3-8"], positions["m:f:4-9"])
    assert index.overlapping(positions["m:f:4-9"], positions["m:f:9-12"])
    assert not index.overlapping(positions["m:f:3-8"], positions["m:f:10-12"])
