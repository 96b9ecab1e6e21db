"""
cfgscope — control-flow, dead code and clone analysis for Python
source trees.

Copyright (c) 2026 Den Rozhnovskiy
Licensed under the MIT License.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from .ast_model import Node, Span


class EdgeKind(str, Enum):
    UNCONDITIONAL = "unconditional"
    TRUE_BRANCH = "true"
    FALSE_BRANCH = "false"
    EXCEPTION = "exception"
    LOOP_BACK = "loop_back"
    BREAK = "break"
    CONTINUE = "continue"
    RETURN_EXIT = "return"
    RAISE_EXIT = "raise"

    @property
    def is_conditional(self) -> bool:
        return self in (EdgeKind.TRUE_BRANCH, EdgeKind.FALSE_BRANCH)


@dataclass(frozen=True, slots=True)
class Edge:
    source: int
    target: int
    kind: EdgeKind


@dataclass(eq=False, slots=True)
class Block:
    id: int
    statements: list[Node] = field(default_factory=list)
    out_edges: list[Edge] = field(default_factory=list)
    in_edges: list[Edge] = field(default_factory=list)
    jump_index: int | None = None
    depth: int = 0
    constant_test: bool | None = None

    @property
    def is_terminated(self) -> bool:
        return self.jump_index is not None

    @property
    def successors(self) -> list[int]:
        return [e.target for e in self.out_edges]

    def trailing_statements(self) -> list[Node]:
        if self.jump_index is None:
            return []
        return self.statements[self.jump_index + 1 :]

    def __hash__(self) -> int:
        return hash(self.id)

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Block) and self.id == other.id


@dataclass(slots=True)
class CFG:
    qualname: str
    span: Span | None = None
    blocks: dict[int, Block] = field(default_factory=dict)
    edges: list[Edge] = field(default_factory=list)

    entry: Block = field(init=False)
    exit: Block = field(init=False)
    _next_id: int = field(default=0, init=False, repr=False)

    def __post_init__(self) -> None:
        self.entry = self.create_block()
        self.exit = self.create_block()

    def create_block(self, depth: int = 0) -> Block:
        block = Block(id=self._next_id, depth=depth)
        self._next_id += 1
        self.blocks[block.id] = block
        return block

    def add_edge(self, source: Block, target: Block, kind: EdgeKind) -> Edge | None:
        edge = Edge(source.id, target.id, kind)
        if edge in source.out_edges:
            return None
        source.out_edges.append(edge)
        target.in_edges.append(edge)
        self.edges.append(edge)
        return edge

    def remove_block(self, block: Block) -> None:
        doomed = set(block.out_edges) | set(block.in_edges)
        for edge in block.out_edges:
            target = self.blocks[edge.target]
            target.in_edges = [e for e in target.in_edges if e != edge]
        for edge in block.in_edges:
            source = self.blocks[edge.source]
            source.out_edges = [e for e in source.out_edges if e != edge]
        self.edges = [e for e in self.edges if e not in doomed]
        del self.blocks[block.id]

    def block(self, block_id: int) -> Block:
        return self.blocks[block_id]

    @property
    def next_id(self) -> int:
        return self._next_id

    @property
    def body_blocks(self) -> list[Block]:
        return [b for b in self.blocks.values() if b is not self.exit]
