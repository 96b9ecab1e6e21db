from __future__ import annotations

import pytest

from cfgscope.ast_model import Node, NodeKind
from cfgscope.normalize import NormalizationConfig, is_docstring, node_label

DEFAULT = NormalizationConfig()
RAW = NormalizationConfig(
    normalize_attributes=False, normalize_constants=False, normalize_names=False
)


@pytest.mark.parametrize(
    ("node", "expected"),
    [
        (Node(NodeKind.NAME, value="total"), "name:_VAR_"),
        (Node(NodeKind.PARAM, value="items"), "param:_VAR_"),
        (Node(NodeKind.ATTRIBUTE, value="count"), "attribute:_ATTR_"),
        (Node(NodeKind.CONSTANT, value="42"), "constant:_CONST_"),
        (Node(NodeKind.BIN_OP, value="Add"), "bin_op:Add"),
        (Node(NodeKind.FUNCTION, value="f"), "function"),
        (Node(NodeKind.HANDLER, value="exc"), "handler"),
        (Node(NodeKind.PASS), "pass"),
    ],
    ids=["name", "param", "attribute", "constant", "operator", "function", "handler", "plain"],
)
def test_default_labels(node: Node, expected: str) -> None:
    assert node_label(node, DEFAULT) == expected


@pytest.mark.parametrize(
    ("node", "expected"),
    [
        (Node(NodeKind.NAME, value="total"), "name:total"),
        (Node(NodeKind.ATTRIBUTE, value="count"), "attribute:count"),
        (Node(NodeKind.CONSTANT, value="42"), "constant:42"),
    ],
    ids=["name", "attribute", "constant"],
)
def test_labels_without_normalization(node: Node, expected: str) -> None:
    assert node_label(node, RAW) == expected


def test_call_targets_keep_symbols() -> None:
    assert node_label(Node(NodeKind.NAME, value="print"), DEFAULT, call_target=True) == (
        "name:print"
    )
    assert node_label(
        Node(NodeKind.ATTRIBUTE, value="save"), DEFAULT, call_target=True
    ) == ("attribute:save")
    # Constants are never call targets in practice, but stay normalised.
    assert node_label(
        Node(NodeKind.CONSTANT, value="1"), DEFAULT, call_target=True
    ) == ("constant:_CONST_")


@pytest.mark.parametrize(
    ("stmt", "expected"),
    [
        (
            Node(NodeKind.EXPR_STMT, (Node(NodeKind.CONSTANT, value="'doc'"),)),
            True,
        ),
        (
            Node(NodeKind.EXPR_STMT, (Node(NodeKind.CONSTANT, value='"""doc"""'),)),
            True,
        ),
        (Node(NodeKind.EXPR_STMT, (Node(NodeKind.CONSTANT, value="42"),)), False),
        (Node(NodeKind.EXPR_STMT, (Node(NodeKind.CALL),)), False),
        (Node(NodeKind.PASS), False),
    ],
    ids=["single-quotes", "triple-quotes", "number", "call", "pass"],
)
def test_is_docstring(stmt: Node, expected: bool) -> None:
    assert is_docstring(stmt) is expected
