"""
cfgscope — control-flow, dead code and clone analysis for Python
source trees.

Copyright (c) 2026 Den Rozhnovskiy
Licensed under the MIT License.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass
from enum import Enum


class NodeKind(str, Enum):
    # Statements
    FUNCTION = "function"
    BLOCK = "block"
    IF = "if"
    WHILE = "while"
    FOR = "for"
    TRY = "try"
    HANDLER = "handler"
    WITH = "with"
    MATCH = "match"
    CASE = "case"
    RETURN = "return"
    RAISE = "raise"
    BREAK = "break"
    CONTINUE = "continue"
    ASSIGN = "assign"
    EXPR_STMT = "expr_stmt"
    PASS = "pass"
    DELETE = "delete"
    ASSERT = "assert"
    IMPORT = "import"
    GLOBAL = "global"
    DEF = "def"
    # Expressions
    NAME = "name"
    ATTRIBUTE = "attribute"
    CONSTANT = "constant"
    CALL = "call"
    BIN_OP = "bin_op"
    BOOL_OP = "bool_op"
    UNARY_OP = "unary_op"
    COMPARE = "compare"
    SUBSCRIPT = "subscript"
    COLLECTION = "collection"
    COMPREHENSION = "comprehension"
    LAMBDA = "lambda"
    AWAIT = "await"
    YIELD = "yield"
    KEYWORD = "keyword"
    PARAM = "param"
    PATTERN = "pattern"
    OTHER_EXPR = "other_expr"


@dataclass(frozen=True, slots=True)
class Span:
    start_line: int
    start_col: int
    end_line: int
    end_col: int

    @property
    def lines(self) -> int:
        return self.end_line - self.start_line + 1

    def shares_lines(self, other: Span) -> bool:
        return (
            self.start_line <= other.end_line and other.start_line <= self.end_line
        )

    def merge(self, other: Span) -> Span:
        start = min(
            (self.start_line, self.start_col), (other.start_line, other.start_col)
        )
        end = max((self.end_line, self.end_col), (other.end_line, other.end_col))
        return Span(start[0], start[1], end[0], end[1])

    def as_tuple(self) -> tuple[int, int, int, int]:
        return (self.start_line, self.start_col, self.end_line, self.end_col)


@dataclass(frozen=True, slots=True, eq=False)
class Node:
    """
    One node of the language-agnostic tree.

    ``value`` carries the kind-specific payload (identifier, operator symbol,
    constant repr, loop label). ``role`` names the slot the node occupies in
    its parent, so structural children are found by role rather than by
    per-kind attributes.
    """

    kind: NodeKind
    children: tuple[Node, ...] = ()
    span: Span | None = None
    value: str | None = None
    role: str | None = None

    def child(self, role: str) -> Node | None:
        for c in self.children:
            if c.role == role:
                return c
        return None

    def children_with(self, role: str) -> list[Node]:
        return [c for c in self.children if c.role == role]

    def statements(self, role: str) -> list[Node]:
        """Statements of the BLOCK child in ``role`` (empty when absent)."""
        block = self.child(role)
        if block is None:
            return []
        return list(block.children)


_STATEMENT_KINDS = frozenset(
    {
        NodeKind.FUNCTION,
        NodeKind.BLOCK,
        NodeKind.IF,
        NodeKind.WHILE,
        NodeKind.FOR,
        NodeKind.TRY,
        NodeKind.HANDLER,
        NodeKind.WITH,
        NodeKind.MATCH,
        NodeKind.CASE,
        NodeKind.RETURN,
        NodeKind.RAISE,
        NodeKind.BREAK,
        NodeKind.CONTINUE,
        NodeKind.ASSIGN,
        NodeKind.EXPR_STMT,
        NodeKind.PASS,
        NodeKind.DELETE,
        NodeKind.ASSERT,
        NodeKind.IMPORT,
        NodeKind.GLOBAL,
        NodeKind.DEF,
    }
)


def is_statement(kind: NodeKind) -> bool:
    return kind in _STATEMENT_KINDS


def is_jump(kind: NodeKind) -> bool:
    match kind:
        case NodeKind.RETURN | NodeKind.RAISE | NodeKind.BREAK | NodeKind.CONTINUE:
            return True
        case _:
            return False


def is_control(kind: NodeKind) -> bool:
    """Kinds that open a nesting level for loop/conditional depth."""
    match kind:
        case NodeKind.IF | NodeKind.WHILE | NodeKind.FOR | NodeKind.MATCH:
            return True
        case _:
            return False


def iter_preorder(root: Node) -> Iterator[Node]:
    stack = [root]
    while stack:
        node = stack.pop()
        yield node
        stack.extend(reversed(node.children))


def has_complete_spans(root: Node) -> bool:
    return all(n.span is not None for n in iter_preorder(root))
