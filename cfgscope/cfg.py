"""
cfgscope — control-flow, dead code and clone analysis for Python
source trees.

Copyright (c) 2026 Den Rozhnovskiy
Licensed under the MIT License.
"""

from __future__ import annotations

import ast
from collections.abc import Iterable
from dataclasses import dataclass, field

from .ast_model import Node, NodeKind, is_control, is_jump, is_statement
from .cfg_model import CFG, Block, EdgeKind
from .errors import MalformedAST, UnresolvedJumpTarget

__all__ = ["CFG", "CFGBuilder", "build_cfg"]


@dataclass(slots=True)
class _LoopFrame:
    header: Block
    exit: Block
    label: str | None


@dataclass(slots=True)
class _FinallyFrame:
    entry: Block
    # (target block, edge kind, frame boundary) to resume after the finally body
    pending: list[tuple[Block, EdgeKind, int]] = field(default_factory=list)

    def add_pending(self, target: Block, kind: EdgeKind, boundary: int) -> None:
        item = (target, kind, boundary)
        if item not in self.pending:
            self.pending.append(item)


_Frame = _LoopFrame | _FinallyFrame


# =========================
# CFG Builder
# =========================


class CFGBuilder:
    __slots__ = ("cfg", "current", "frames", "qualname")

    def __init__(self) -> None:
        self.cfg: CFG
        self.current: Block
        self.frames: list[_Frame] = []
        self.qualname = ""

    def build(self, qualname: str, node: Node) -> CFG:
        if node.kind is not NodeKind.FUNCTION:
            raise MalformedAST(
                f"Expected a function node, got {node.kind.value}",
                qualname=qualname,
                span=node.span,
            )
        body = node.child("body")
        if body is None:
            raise self._malformed(node, "function without body")

        self.qualname = qualname
        self.frames = []
        self.cfg = CFG(qualname, node.span)
        self.current = self.cfg.entry

        self._visit_statements(body.children)

        if not self.current.is_terminated:
            self.cfg.add_edge(self.current, self.cfg.exit, EdgeKind.RETURN_EXIT)

        self._prune()
        return self.cfg

    # ---------- Internals ----------

    def _malformed(self, node: Node, message: str) -> MalformedAST:
        return MalformedAST(
            f"{self.qualname}: {message}", qualname=self.qualname, span=node.span
        )

    def _new_block(self, depth: int) -> Block:
        return self.cfg.create_block(depth)

    def _visit_statements(self, stmts: Iterable[Node]) -> None:
        for stmt in stmts:
            if self.current.is_terminated:
                # Kept unexpanded so the dead code detector can report them.
                self.current.statements.append(stmt)
                continue
            self._visit(stmt)

    def _body_depth(self, stmt: Node) -> int:
        depth = self.current.depth
        return depth + 1 if is_control(stmt.kind) else depth

    def _visit(self, stmt: Node) -> None:
        kind = stmt.kind
        if not is_statement(kind):
            raise self._malformed(stmt, f"expression {kind.value} used as statement")
        if is_jump(kind):
            self._visit_jump(stmt)
            return

        match kind:
            case NodeKind.IF:
                self._visit_if(stmt)

            case NodeKind.WHILE:
                self._visit_while(stmt)

            case NodeKind.FOR:
                self._visit_for(stmt)

            case NodeKind.TRY:
                self._visit_try(stmt)

            case NodeKind.WITH:
                self._visit_with(stmt)

            case NodeKind.MATCH:
                self._visit_match(stmt)

            case NodeKind.BLOCK:
                self._visit_statements(stmt.children)

            case (
                NodeKind.ASSIGN
                | NodeKind.EXPR_STMT
                | NodeKind.PASS
                | NodeKind.DELETE
                | NodeKind.ASSERT
                | NodeKind.IMPORT
                | NodeKind.GLOBAL
                | NodeKind.DEF
            ):
                self.current.statements.append(stmt)

            case NodeKind.FUNCTION | NodeKind.HANDLER | NodeKind.CASE:
                raise self._malformed(stmt, f"{kind.value} outside its construct")

            case _:
                raise self._malformed(stmt, f"unsupported statement {kind.value}")

    # ---------- Jumps ----------

    def _visit_jump(self, stmt: Node) -> None:
        kind = stmt.kind
        match kind:
            case NodeKind.RETURN:
                self._jump(stmt, self.cfg.exit, EdgeKind.RETURN_EXIT, boundary=0)
            case NodeKind.RAISE:
                self._jump(stmt, self.cfg.exit, EdgeKind.RAISE_EXIT, boundary=0)
            case NodeKind.BREAK:
                index, frame = self._resolve_loop(stmt)
                self._jump(stmt, frame.exit, EdgeKind.BREAK, boundary=index + 1)
            case NodeKind.CONTINUE:
                index, frame = self._resolve_loop(stmt)
                self._jump(stmt, frame.header, EdgeKind.CONTINUE, boundary=index + 1)
            case _:
                raise self._malformed(stmt, f"{kind.value} is not a jump")

    def _resolve_loop(self, stmt: Node) -> tuple[int, _LoopFrame]:
        label = stmt.value
        for index in range(len(self.frames) - 1, -1, -1):
            frame = self.frames[index]
            if not isinstance(frame, _LoopFrame):
                continue
            if label is None or frame.label == label:
                return index, frame
        target = f" '{label}'" if label else ""
        raise UnresolvedJumpTarget(
            f"{self.qualname}: {stmt.kind.value}{target} has no enclosing loop",
            qualname=self.qualname,
            span=stmt.span,
        )

    def _jump(self, stmt: Node, target: Block, kind: EdgeKind, *, boundary: int) -> None:
        block = self.current
        block.statements.append(stmt)
        block.jump_index = len(block.statements) - 1
        self._route(block, target, kind, boundary=boundary)

    def _route(
        self, source: Block, target: Block, kind: EdgeKind, *, boundary: int
    ) -> None:
        # A finally body between the jump and its target runs first.
        for index in range(len(self.frames) - 1, boundary - 1, -1):
            frame = self.frames[index]
            if isinstance(frame, _FinallyFrame):
                self.cfg.add_edge(source, frame.entry, kind)
                frame.add_pending(target, kind, boundary)
                return
        self.cfg.add_edge(source, target, kind)

    # ---------- Control Flow ----------

    def _visit_if(self, stmt: Node) -> None:
        test = stmt.child("test")
        body = stmt.child("body")
        if test is None or body is None:
            raise self._malformed(stmt, "conditional without test or body")
        orelse = stmt.child("orelse")

        depth = self.current.depth
        then_block = self._new_block(self._body_depth(stmt))
        else_block: Block | None = None
        if orelse is not None:
            # `elif` chains stay at the same nesting level.
            is_elif = len(orelse.children) == 1 and orelse.children[0].kind is NodeKind.IF
            else_block = self._new_block(depth if is_elif else depth + 1)
        after_block = self._new_block(depth)

        self._emit_condition(test, then_block, else_block or after_block)

        self.current = then_block
        self._visit_statements(body.children)
        if not self.current.is_terminated:
            self.cfg.add_edge(self.current, after_block, EdgeKind.UNCONDITIONAL)

        if else_block is not None and orelse is not None:
            self.current = else_block
            self._visit_statements(orelse.children)
            if not self.current.is_terminated:
                self.cfg.add_edge(self.current, after_block, EdgeKind.UNCONDITIONAL)

        self.current = after_block

    def _visit_while(self, stmt: Node) -> None:
        test = stmt.child("test")
        body = stmt.child("body")
        if test is None or body is None:
            raise self._malformed(stmt, "loop without test or body")
        self._visit_loop(stmt, body, stmt.child("orelse"), header_expr=test)

    def _visit_for(self, stmt: Node) -> None:
        iter_ = stmt.child("iter")
        body = stmt.child("body")
        if iter_ is None or body is None:
            raise self._malformed(stmt, "loop without iterable or body")
        self._visit_loop(stmt, body, stmt.child("orelse"), header_expr=iter_)

    def _visit_loop(
        self, stmt: Node, body: Node, orelse: Node | None, *, header_expr: Node
    ) -> None:
        depth = self.current.depth
        cond_block = self._new_block(depth)
        body_block = self._new_block(self._body_depth(stmt))
        else_block = self._new_block(depth) if orelse is not None else None
        after_block = self._new_block(depth)

        self.cfg.add_edge(self.current, cond_block, EdgeKind.UNCONDITIONAL)

        self.current = cond_block
        if stmt.kind is NodeKind.WHILE:
            self._emit_condition(header_expr, body_block, else_block or after_block)
        else:
            self.current.statements.append(header_expr)
            self.cfg.add_edge(self.current, body_block, EdgeKind.TRUE_BRANCH)
            self.cfg.add_edge(
                self.current, else_block or after_block, EdgeKind.FALSE_BRANCH
            )

        self.frames.append(_LoopFrame(cond_block, after_block, stmt.value))
        self.current = body_block
        self._visit_statements(body.children)
        if not self.current.is_terminated:
            self.cfg.add_edge(self.current, cond_block, EdgeKind.LOOP_BACK)
        self.frames.pop()

        if else_block is not None and orelse is not None:
            self.current = else_block
            self._visit_statements(orelse.children)
            if not self.current.is_terminated:
                self.cfg.add_edge(self.current, after_block, EdgeKind.UNCONDITIONAL)

        self.current = after_block

    def _visit_with(self, stmt: Node) -> None:
        body = stmt.child("body")
        if body is None:
            raise self._malformed(stmt, "with statement without body")

        # Context managers are evaluated in the current block; the body gets
        # its own block so the construct keeps its shape.
        for item in stmt.children_with("item"):
            self.current.statements.append(item)

        depth = self.current.depth
        body_block = self._new_block(self._body_depth(stmt))
        after_block = self._new_block(depth)
        self.cfg.add_edge(self.current, body_block, EdgeKind.UNCONDITIONAL)

        self.current = body_block
        self._visit_statements(body.children)
        if not self.current.is_terminated:
            self.cfg.add_edge(self.current, after_block, EdgeKind.UNCONDITIONAL)

        self.current = after_block

    def _visit_try(self, stmt: Node) -> None:
        body = stmt.child("body")
        if body is None:
            raise self._malformed(stmt, "try without body")
        handlers = stmt.children_with("handler")
        orelse = stmt.child("orelse")
        finalbody = stmt.child("finalbody")

        depth = self.current.depth
        after_block = self._new_block(depth)
        handler_blocks = [self._new_block(depth) for _ in handlers]
        final_block = self._new_block(depth) if finalbody is not None else None
        completion = final_block or after_block
        normal_completion = False

        frame: _FinallyFrame | None = None
        if final_block is not None:
            frame = _FinallyFrame(final_block)
            self.frames.append(frame)

        try_entry = self._new_block(depth)
        self.cfg.add_edge(self.current, try_entry, EdgeKind.UNCONDITIONAL)
        self.current = try_entry
        self._visit_statements(body.children)

        region = [
            self.cfg.blocks[block_id]
            for block_id in range(try_entry.id, self.cfg.next_id)
            if block_id in self.cfg.blocks
        ]

        # Normal exit from the protected region
        # An else clause behind a body that always jumps stays in the graph
        # without predecessors so its statements are reported as dead.
        if orelse is not None:
            else_block = self._new_block(depth)
            if not self.current.is_terminated:
                self.cfg.add_edge(self.current, else_block, EdgeKind.UNCONDITIONAL)
            self.current = else_block
            self._visit_statements(orelse.children)
        if not self.current.is_terminated:
            self.cfg.add_edge(self.current, completion, EdgeKind.UNCONDITIONAL)
            normal_completion = True

        # Exception paths, handlers in declaration order
        for block in region:
            for h_block in handler_blocks:
                self.cfg.add_edge(block, h_block, EdgeKind.EXCEPTION)
            if frame is not None:
                self.cfg.add_edge(block, frame.entry, EdgeKind.EXCEPTION)
        if frame is not None and region:
            frame.add_pending(self.cfg.exit, EdgeKind.RAISE_EXIT, 0)

        for handler, h_block in zip(handlers, handler_blocks, strict=True):
            h_body = handler.child("body")
            if h_body is None:
                raise self._malformed(handler, "exception handler without body")
            self.current = h_block
            self._visit_statements(h_body.children)
            if not self.current.is_terminated:
                self.cfg.add_edge(self.current, completion, EdgeKind.UNCONDITIONAL)
                normal_completion = True

        if frame is None or finalbody is None:
            self.current = after_block
            return

        self.frames.pop()
        self.current = frame.entry
        self._visit_statements(finalbody.children)
        if not self.current.is_terminated:
            if normal_completion:
                self.cfg.add_edge(self.current, after_block, EdgeKind.UNCONDITIONAL)
            for target, kind, boundary in frame.pending:
                self._route(self.current, target, kind, boundary=boundary)
        self.current = after_block

    def _visit_match(self, stmt: Node) -> None:
        subject = stmt.child("subject")
        if subject is None:
            raise self._malformed(stmt, "match without subject")

        self.current.statements.append(subject)
        subject_block = self.current
        depth = subject_block.depth
        case_depth = self._body_depth(stmt)
        after_block = self._new_block(depth)

        has_default = False
        for case_ in stmt.children_with("case"):
            body = case_.child("body")
            if body is None:
                raise self._malformed(case_, "case without body")
            case_block = self._new_block(case_depth)
            self.cfg.add_edge(subject_block, case_block, EdgeKind.TRUE_BRANCH)

            self.current = case_block
            pattern = case_.child("pattern")
            if pattern is not None:
                self.current.statements.append(pattern)
            guard = case_.child("guard")
            if guard is not None:
                self.current.statements.append(guard)

            self._visit_statements(body.children)
            if not self.current.is_terminated:
                self.cfg.add_edge(self.current, after_block, EdgeKind.UNCONDITIONAL)
            if case_.value == "default":
                has_default = True

        if not has_default:
            self.cfg.add_edge(subject_block, after_block, EdgeKind.FALSE_BRANCH)

        self.current = after_block

    def _emit_condition(self, test: Node, true_block: Block, false_block: Block) -> None:
        if test.kind is NodeKind.BOOL_OP and test.value in ("and", "or") and test.children:
            self._emit_boolop(test, true_block, false_block)
            return

        self.current.statements.append(test)
        self.current.constant_test = constant_truth(test)
        self.cfg.add_edge(self.current, true_block, EdgeKind.TRUE_BRANCH)
        self.cfg.add_edge(self.current, false_block, EdgeKind.FALSE_BRANCH)

    def _emit_boolop(self, test: Node, true_block: Block, false_block: Block) -> None:
        values = test.children
        is_and = test.value == "and"
        current = self.current

        for idx, value in enumerate(values):
            current.statements.append(value)
            current.constant_test = constant_truth(value)
            is_last = idx == len(values) - 1

            if is_last:
                self.cfg.add_edge(current, true_block, EdgeKind.TRUE_BRANCH)
                self.cfg.add_edge(current, false_block, EdgeKind.FALSE_BRANCH)
            elif is_and:
                next_block = self._new_block(current.depth)
                self.cfg.add_edge(current, next_block, EdgeKind.TRUE_BRANCH)
                self.cfg.add_edge(current, false_block, EdgeKind.FALSE_BRANCH)
                current = next_block
            else:
                next_block = self._new_block(current.depth)
                self.cfg.add_edge(current, true_block, EdgeKind.TRUE_BRANCH)
                self.cfg.add_edge(current, next_block, EdgeKind.FALSE_BRANCH)
                current = next_block

        self.current = current

    # ---------- Cleanup ----------

    def _prune(self) -> None:
        # Empty blocks nobody jumps to are construction artifacts (for example
        # the continuation of an if/else where both branches return).
        changed = True
        while changed:
            changed = False
            for block in list(self.cfg.blocks.values()):
                if block is self.cfg.entry or block is self.cfg.exit:
                    continue
                if block.statements or block.in_edges:
                    continue
                self.cfg.remove_block(block)
                changed = True


def constant_truth(test: Node) -> bool | None:
    """Static truth value of a literal condition, ``None`` when unknown."""
    if test.kind is NodeKind.CONSTANT and test.value is not None:
        try:
            return bool(ast.literal_eval(test.value))
        except (ValueError, SyntaxError):
            return None
    if (
        test.kind is NodeKind.UNARY_OP
        and test.value == "Not"
        and len(test.children) == 1
    ):
        inner = constant_truth(test.children[0])
        return None if inner is None else not inner
    return None


def build_cfg(qualname: str, node: Node) -> CFG:
    return CFGBuilder().build(qualname, node)
