"""
cfgscope — control-flow, dead code and clone analysis for Python
source trees.

Copyright (c) 2026 Den Rozhnovskiy
Licensed under the MIT License.
"""

from __future__ import annotations

import ast
import os
import signal
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass

from .ast_model import Node, NodeKind, Span
from .errors import MalformedAST, ParseError

PARSE_TIMEOUT_SECONDS = 5
MAX_NESTING_DEPTH = 100

TryStar = getattr(ast, "TryStar", None)
TypeAlias = getattr(ast, "TypeAlias", None)

FunctionNode = ast.FunctionDef | ast.AsyncFunctionDef


# =========================
# Parsing
# =========================


class _ParseTimeoutError(Exception):
    pass


@contextmanager
def _parse_limits(timeout_s: int) -> Iterator[None]:
    # SIGALRM is only delivered to the main thread of a POSIX process.
    if (
        os.name != "posix"
        or timeout_s <= 0
        or threading.current_thread() is not threading.main_thread()
    ):
        yield
        return

    old_handler = signal.getsignal(signal.SIGALRM)

    def _timeout_handler(_signum: int, _frame: object) -> None:
        raise _ParseTimeoutError("AST parsing timeout")

    try:
        signal.signal(signal.SIGALRM, _timeout_handler)
        signal.setitimer(signal.ITIMER_REAL, timeout_s)
        yield
    finally:
        signal.setitimer(signal.ITIMER_REAL, 0)
        signal.signal(signal.SIGALRM, old_handler)


def parse_module(
    source: str, filepath: str, *, timeout_s: int = PARSE_TIMEOUT_SECONDS
) -> ast.Module:
    try:
        with _parse_limits(timeout_s):
            return ast.parse(source, filename=filepath)
    except _ParseTimeoutError as e:
        raise ParseError(f"Failed to parse {filepath}: {e}") from e
    except (SyntaxError, ValueError, RecursionError) as e:
        raise ParseError(f"Failed to parse {filepath}: {e}") from e


class _QualnameBuilder(ast.NodeVisitor):
    __slots__ = ("stack", "units")

    def __init__(self) -> None:
        self.stack: list[str] = []
        self.units: list[tuple[str, FunctionNode]] = []

    def visit_ClassDef(self, node: ast.ClassDef) -> None:
        self.stack.append(node.name)
        self.generic_visit(node)
        self.stack.pop()

    def visit_FunctionDef(self, node: ast.FunctionDef) -> None:
        self._visit_func(node)

    def visit_AsyncFunctionDef(self, node: ast.AsyncFunctionDef) -> None:
        self._visit_func(node)

    def _visit_func(self, node: FunctionNode) -> None:
        name = ".".join([*self.stack, node.name]) if self.stack else node.name
        self.units.append((name, node))
        self.stack.extend([node.name, "<locals>"])
        self.generic_visit(node)
        del self.stack[-2:]


def collect_functions(tree: ast.AST) -> list[tuple[str, FunctionNode]]:
    qb = _QualnameBuilder()
    qb.visit(tree)
    return qb.units


# =========================
# Lowering
# =========================


def _span_of(node: ast.AST, fallback: Span | None) -> Span | None:
    start = getattr(node, "lineno", None)
    end = getattr(node, "end_lineno", None)
    if start is None or end is None:
        return fallback
    return Span(
        start,
        getattr(node, "col_offset", 0) or 0,
        end,
        getattr(node, "end_col_offset", 0) or 0,
    )


def _block(stmts: list[Node], role: str) -> Node:
    span: Span | None = None
    for s in stmts:
        if s.span is None:
            continue
        span = s.span if span is None else span.merge(s.span)
    return Node(NodeKind.BLOCK, tuple(stmts), span, None, role)


@dataclass(frozen=True, slots=True)
class _Shape:
    kind: NodeKind
    value: str | None
    children: tuple[tuple[ast.AST, str | None], ...]


def _op_name(op: ast.AST) -> str:
    return type(op).__name__


def _expr_children(node: ast.AST) -> tuple[tuple[ast.AST, str | None], ...]:
    out: list[tuple[ast.AST, str | None]] = []
    for child in ast.iter_child_nodes(node):
        if isinstance(child, (ast.expr_context, ast.operator, ast.boolop)):
            continue
        if isinstance(child, (ast.unaryop, ast.cmpop)):
            continue
        out.append((child, None))
    return tuple(out)


def _expr_shape(node: ast.AST) -> _Shape:
    match node:
        case ast.Name(id=name):
            return _Shape(NodeKind.NAME, name, ())
        case ast.Attribute(value=value, attr=attr):
            return _Shape(NodeKind.ATTRIBUTE, attr, ((value, "value"),))
        case ast.Constant(value=value):
            return _Shape(NodeKind.CONSTANT, repr(value), ())
        case ast.Call(func=func, args=args, keywords=keywords):
            children: list[tuple[ast.AST, str | None]] = [(func, "func")]
            children.extend((a, "arg") for a in args)
            children.extend((k, "keyword") for k in keywords)
            return _Shape(NodeKind.CALL, None, tuple(children))
        case ast.keyword(arg=arg, value=value):
            return _Shape(NodeKind.KEYWORD, arg, ((value, "value"),))
        case ast.BinOp(left=left, op=op, right=right):
            return _Shape(
                NodeKind.BIN_OP, _op_name(op), ((left, "left"), (right, "right"))
            )
        case ast.BoolOp(op=op, values=values):
            value = "and" if isinstance(op, ast.And) else "or"
            return _Shape(
                NodeKind.BOOL_OP, value, tuple((v, "operand") for v in values)
            )
        case ast.UnaryOp(op=op, operand=operand):
            return _Shape(NodeKind.UNARY_OP, _op_name(op), ((operand, "operand"),))
        case ast.Compare(left=left, ops=ops, comparators=comparators):
            return _Shape(
                NodeKind.COMPARE,
                ",".join(_op_name(o) for o in ops),
                ((left, "left"), *((c, "comparator") for c in comparators)),
            )
        case ast.Subscript() | ast.Slice():
            return _Shape(NodeKind.SUBSCRIPT, type(node).__name__, _expr_children(node))
        case ast.List() | ast.Tuple() | ast.Set() | ast.Dict():
            return _Shape(
                NodeKind.COLLECTION, type(node).__name__, _expr_children(node)
            )
        case ast.ListComp() | ast.SetComp() | ast.DictComp() | ast.GeneratorExp():
            return _Shape(
                NodeKind.COMPREHENSION, type(node).__name__, _expr_children(node)
            )
        case ast.Lambda(body=body):
            return _Shape(NodeKind.LAMBDA, None, ((body, "body"),))
        case ast.Await(value=value):
            return _Shape(NodeKind.AWAIT, None, ((value, "value"),))
        case ast.Yield() | ast.YieldFrom():
            return _Shape(NodeKind.YIELD, type(node).__name__, _expr_children(node))
        case ast.arg(arg=arg):
            return _Shape(NodeKind.PARAM, arg, ())
        case _:
            return _Shape(NodeKind.OTHER_EXPR, type(node).__name__, _expr_children(node))


def lower_expr(
    root: ast.AST, role: str | None = None, *, fallback: Span | None = None
) -> Node:
    """Lower an expression tree without recursion."""
    out: list[Node] = []
    stack: list[tuple[ast.AST, str | None, Span | None, _Shape | None]] = [
        (root, role, fallback, None)
    ]
    while stack:
        node, node_role, parent_span, shape = stack.pop()
        span = _span_of(node, parent_span)
        if shape is None:
            shape = _expr_shape(node)
            stack.append((node, node_role, parent_span, shape))
            for child, child_role in reversed(shape.children):
                stack.append((child, child_role, span, None))
            continue
        count = len(shape.children)
        children: tuple[Node, ...] = ()
        if count:
            children = tuple(out[-count:])
            del out[-count:]
        out.append(Node(shape.kind, children, span, shape.value, node_role))
    return out[0]


class _Lowerer:
    __slots__ = ("qualname",)

    def __init__(self, qualname: str) -> None:
        self.qualname = qualname

    def function(self, node: FunctionNode) -> Node:
        span = _span_of(node, None)
        args = node.args
        params = [
            *getattr(args, "posonlyargs", []),
            *args.args,
            *([args.vararg] if args.vararg else []),
            *args.kwonlyargs,
            *([args.kwarg] if args.kwarg else []),
        ]
        children = [lower_expr(a, "param", fallback=span) for a in params]
        children.append(_block(self.stmts(node.body, 1), "body"))
        return Node(NodeKind.FUNCTION, tuple(children), span, node.name, None)

    def stmts(self, stmts: list[ast.stmt], depth: int) -> list[Node]:
        if depth > MAX_NESTING_DEPTH:
            raise MalformedAST(
                f"Nesting deeper than {MAX_NESTING_DEPTH} levels",
                qualname=self.qualname,
                span=_span_of(stmts[0], None) if stmts else None,
            )
        return [self.stmt(s, depth) for s in stmts]

    def _expr(self, node: ast.AST | None, role: str, span: Span | None) -> list[Node]:
        if node is None:
            return []
        return [lower_expr(node, role, fallback=span)]

    def stmt(self, node: ast.stmt, depth: int) -> Node:
        span = _span_of(node, None)
        inner = depth + 1

        def body(stmts: list[ast.stmt], role: str) -> list[Node]:
            if not stmts:
                return []
            return [_block(self.stmts(stmts, inner), role)]

        match node:
            case ast.If(test=test, body=then, orelse=orelse):
                children = [
                    *self._expr(test, "test", span),
                    *body(then, "body"),
                    *body(orelse, "orelse"),
                ]
                return Node(NodeKind.IF, tuple(children), span, None)

            case ast.While(test=test, body=loop_body, orelse=orelse):
                children = [
                    *self._expr(test, "test", span),
                    *body(loop_body, "body"),
                    *body(orelse, "orelse"),
                ]
                return Node(NodeKind.WHILE, tuple(children), span, None)

            case ast.For() | ast.AsyncFor():
                children = [
                    *self._expr(node.target, "target", span),
                    *self._expr(node.iter, "iter", span),
                    *body(node.body, "body"),
                    *body(node.orelse, "orelse"),
                ]
                return Node(NodeKind.FOR, tuple(children), span)

            case ast.Try():
                return self._try(node, span, inner, None)
            case _ if TryStar is not None and isinstance(node, TryStar):
                return self._try(node, span, inner, "star")

            case ast.With() | ast.AsyncWith():
                children = []
                for item in node.items:
                    children.extend(self._expr(item.context_expr, "item", span))
                    children.extend(self._expr(item.optional_vars, "target", span))
                children.extend(body(node.body, "body"))
                value = "async" if isinstance(node, ast.AsyncWith) else None
                return Node(NodeKind.WITH, tuple(children), span, value)

            case ast.Match(subject=subject, cases=cases):
                children = self._expr(subject, "subject", span)
                for case_ in cases:
                    children.append(self._case(case_, span, inner))
                return Node(NodeKind.MATCH, tuple(children), span, None)

            case ast.Return(value=value):
                return Node(
                    NodeKind.RETURN, tuple(self._expr(value, "value", span)), span
                )

            case ast.Raise(exc=exc, cause=cause):
                children = [
                    *self._expr(exc, "exc", span),
                    *self._expr(cause, "cause", span),
                ]
                return Node(NodeKind.RAISE, tuple(children), span, None)

            case ast.Break():
                return Node(NodeKind.BREAK, (), span, None)

            case ast.Continue():
                return Node(NodeKind.CONTINUE, (), span, None)

            case ast.Assign(targets=targets, value=value):
                children = [lower_expr(t, "target", fallback=span) for t in targets]
                children.extend(self._expr(value, "value", span))
                return Node(NodeKind.ASSIGN, tuple(children), span, None)

            case ast.AugAssign(target=target, op=op, value=value):
                children = [
                    *self._expr(target, "target", span),
                    *self._expr(value, "value", span),
                ]
                return Node(NodeKind.ASSIGN, tuple(children), span, _op_name(op))

            case ast.AnnAssign(target=target, value=value):
                # Annotations are not part of the structure.
                children = [
                    *self._expr(target, "target", span),
                    *self._expr(value, "value", span),
                ]
                return Node(NodeKind.ASSIGN, tuple(children), span, None)

            case _ if TypeAlias is not None and isinstance(node, TypeAlias):
                children = [
                    *self._expr(node.name, "target", span),
                    *self._expr(node.value, "value", span),
                ]
                return Node(NodeKind.ASSIGN, tuple(children), span, "type")

            case ast.Expr(value=value):
                return Node(
                    NodeKind.EXPR_STMT, tuple(self._expr(value, "value", span)), span
                )

            case ast.Pass():
                return Node(NodeKind.PASS, (), span, None)

            case ast.Delete(targets=targets):
                children = [lower_expr(t, "target", fallback=span) for t in targets]
                return Node(NodeKind.DELETE, tuple(children), span, None)

            case ast.Assert(test=test, msg=msg):
                children = [
                    *self._expr(test, "test", span),
                    *self._expr(msg, "msg", span),
                ]
                return Node(NodeKind.ASSERT, tuple(children), span, None)

            case ast.Import(names=names):
                return Node(
                    NodeKind.IMPORT, (), span, ",".join(a.name for a in names)
                )

            case ast.ImportFrom(module=module, names=names):
                value = f"{module or ''}:" + ",".join(a.name for a in names)
                return Node(NodeKind.IMPORT, (), span, value)

            case ast.Global(names=names) | ast.Nonlocal(names=names):
                return Node(NodeKind.GLOBAL, (), span, ",".join(names))

            case ast.FunctionDef() | ast.AsyncFunctionDef() | ast.ClassDef():
                return Node(NodeKind.DEF, (), span, node.name)

            case _:
                raise MalformedAST(
                    f"Unsupported statement {type(node).__name__}",
                    qualname=self.qualname,
                    span=span,
                )

    def _try(
        self, node: ast.stmt, span: Span | None, depth: int, value: str | None
    ) -> Node:
        children: list[Node] = []
        body_stmts: list[ast.stmt] = getattr(node, "body", [])
        children.append(_block(self.stmts(body_stmts, depth), "body"))
        for handler in getattr(node, "handlers", []):
            h_span = _span_of(handler, span)
            h_children = self._expr(handler.type, "type", h_span)
            h_children.append(_block(self.stmts(handler.body, depth), "body"))
            children.append(
                Node(NodeKind.HANDLER, tuple(h_children), h_span, handler.name, "handler")
            )
        orelse: list[ast.stmt] = getattr(node, "orelse", [])
        if orelse:
            children.append(_block(self.stmts(orelse, depth), "orelse"))
        finalbody: list[ast.stmt] = getattr(node, "finalbody", [])
        if finalbody:
            children.append(_block(self.stmts(finalbody, depth), "finalbody"))
        return Node(NodeKind.TRY, tuple(children), span, value)

    def _case(self, case_: ast.match_case, span: Span | None, depth: int) -> Node:
        pattern_span = _span_of(case_.pattern, span)
        pattern = Node(
            NodeKind.PATTERN,
            (),
            pattern_span,
            ast.dump(case_.pattern, annotate_fields=False),
            "pattern",
        )
        children = [pattern, *self._expr(case_.guard, "guard", pattern_span)]
        children.append(_block(self.stmts(case_.body, depth), "body"))
        irrefutable = (
            case_.guard is None
            and isinstance(case_.pattern, ast.MatchAs)
            and case_.pattern.pattern is None
        )
        case_span = pattern_span
        if children[-1].span is not None and case_span is not None:
            case_span = case_span.merge(children[-1].span)
        return Node(
            NodeKind.CASE,
            tuple(children),
            case_span,
            "default" if irrefutable else None,
            "case",
        )


def lower_function(node: FunctionNode, qualname: str | None = None) -> Node:
    """Lower a Python function definition into the analysis tree."""
    return _Lowerer(qualname or node.name).function(node)
