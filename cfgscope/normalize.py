"""
cfgscope — control-flow, dead code and clone analysis for Python
source trees.

Copyright (c) 2026 Den Rozhnovskiy
Licensed under the MIT License.
"""

from __future__ import annotations

from dataclasses import dataclass

from .ast_model import Node, NodeKind


@dataclass(frozen=True, slots=True)
class NormalizationConfig:
    ignore_docstrings: bool = True
    normalize_attributes: bool = True
    normalize_constants: bool = True
    normalize_names: bool = True


def node_label(node: Node, cfg: NormalizationConfig, *, call_target: bool = False) -> str:
    """
    Label used when comparing trees.

    Identifiers, attribute names and constants collapse to placeholders so
    that renamed variables compare equal. Call targets keep their symbol to
    avoid conflating different APIs; operators are always kept.
    """
    kind = node.kind
    match kind:
        case NodeKind.FUNCTION | NodeKind.BLOCK:
            return kind.value
        case NodeKind.NAME | NodeKind.PARAM:
            if cfg.normalize_names and not call_target:
                return f"{kind.value}:_VAR_"
        case NodeKind.ATTRIBUTE:
            if cfg.normalize_attributes and not call_target:
                return f"{kind.value}:_ATTR_"
        case NodeKind.CONSTANT:
            if cfg.normalize_constants:
                return f"{kind.value}:_CONST_"
        case NodeKind.HANDLER:
            # The bound exception name is a variable.
            return kind.value
        case _:
            pass
    if node.value is None:
        return kind.value
    return f"{kind.value}:{node.value}"


def is_docstring(stmt: Node) -> bool:
    if stmt.kind is not NodeKind.EXPR_STMT or len(stmt.children) != 1:
        return False
    value = stmt.children[0]
    return (
        value.kind is NodeKind.CONSTANT
        and value.value is not None
        and value.value[:1] in {"'", '"'}
    )
