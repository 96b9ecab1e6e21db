"""
cfgscope — control-flow, dead code and clone analysis for Python
source trees.

Copyright (c) 2026 Den Rozhnovskiy
Licensed under the MIT License.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from enum import Enum

from .ast_model import Node, Span
from .cfg_model import CFG, Block, Edge, EdgeKind


class DeadKind(str, Enum):
    UNREACHABLE = "unreachable"
    AFTER_JUMP = "after_jump"
    UNREACHABLE_BRANCH = "unreachable_branch"


@dataclass(frozen=True, slots=True)
class DeadBlock:
    block_id: int
    kind: DeadKind
    statements: tuple[Node, ...]
    span: Span | None


@dataclass(frozen=True, slots=True)
class DeadStatement:
    block_id: int
    index: int
    statement: Node
    span: Span | None


@dataclass(slots=True)
class DeadCodeResult:
    qualname: str
    reachable: frozenset[int]
    dead_blocks: list[DeadBlock] = field(default_factory=list)
    dead_statements: list[DeadStatement] = field(default_factory=list)

    @property
    def is_clean(self) -> bool:
        return not self.dead_blocks and not self.dead_statements


def _statements_span(statements: tuple[Node, ...] | list[Node]) -> Span | None:
    span: Span | None = None
    for stmt in statements:
        if stmt.span is None:
            continue
        span = stmt.span if span is None else span.merge(stmt.span)
    return span


def _reachable(cfg: CFG, *, fold_constants: bool) -> set[int]:
    seen = {cfg.entry.id}
    queue = deque([cfg.entry])
    while queue:
        block = queue.popleft()
        for edge in block.out_edges:
            if fold_constants and _statically_infeasible(block, edge):
                continue
            if edge.target not in seen:
                seen.add(edge.target)
                queue.append(cfg.blocks[edge.target])
    return seen


def _statically_infeasible(block: Block, edge: Edge) -> bool:
    if block.constant_test is None:
        return False
    if block.constant_test:
        return edge.kind is EdgeKind.FALSE_BRANCH
    return edge.kind is EdgeKind.TRUE_BRANCH


def detect_dead_code(cfg: CFG) -> DeadCodeResult:
    """
    Report blocks unreachable from the entry and statements after jumps.

    Reachability follows every edge kind. A second traversal that drops
    branches ruled out by a literal condition (``if False:``, code after
    ``while True:`` without ``break``) reports what only those branches reach
    as ``UNREACHABLE_BRANCH``.
    """
    assert cfg is not None and cfg.entry.id in cfg.blocks, "CFG is not built"

    reachable = _reachable(cfg, fold_constants=False)
    feasible = _reachable(cfg, fold_constants=True)
    result = DeadCodeResult(qualname=cfg.qualname, reachable=frozenset(reachable))

    for block in sorted(cfg.body_blocks, key=lambda b: b.id):
        if not block.statements:
            continue
        if block.id not in reachable:
            kind = DeadKind.UNREACHABLE
        elif block.id not in feasible:
            kind = DeadKind.UNREACHABLE_BRANCH
        else:
            for offset, stmt in enumerate(block.trailing_statements()):
                assert block.jump_index is not None
                result.dead_statements.append(
                    DeadStatement(
                        block_id=block.id,
                        index=block.jump_index + 1 + offset,
                        statement=stmt,
                        span=stmt.span,
                    )
                )
            continue

        statements = tuple(block.statements)
        result.dead_blocks.append(
            DeadBlock(
                block_id=block.id,
                kind=kind,
                statements=statements,
                span=_statements_span(statements),
            )
        )

    return result
