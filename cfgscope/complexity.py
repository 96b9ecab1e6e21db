"""
cfgscope — control-flow, dead code and clone analysis for Python
source trees.

Copyright (c) 2026 Den Rozhnovskiy
Licensed under the MIT License.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from .cfg_model import CFG


@dataclass(frozen=True, slots=True)
class ComplexityMetrics:
    cyclomatic: int
    block_count: int
    edge_count: int
    branch_count: int
    nesting_depth: int


class ComplexityBucket(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True, slots=True)
class ComplexityThresholds:
    low: int = 10
    medium: int = 20


def compute_complexity(cfg: CFG) -> ComplexityMetrics:
    """
    Cyclomatic complexity of one function CFG.

    Uses ``E - N + 2`` with the exit sink counted as a node, so a function
    without branches scores 1. The value is raw; bucketing is left to
    :func:`classify`.
    """
    edge_count = len(cfg.edges)
    node_count = len(cfg.blocks)
    cyclomatic = max(1, edge_count - node_count + 2)
    branch_count = sum(1 for e in cfg.edges if e.kind.is_conditional)

    return ComplexityMetrics(
        cyclomatic=cyclomatic,
        block_count=len(cfg.body_blocks),
        edge_count=edge_count,
        branch_count=branch_count,
        nesting_depth=_max_nesting(cfg),
    )


def _max_nesting(cfg: CFG) -> int:
    seen: set[int] = set()
    stack = [cfg.entry.id]
    deepest = 0
    while stack:
        block_id = stack.pop()
        if block_id in seen:
            continue
        seen.add(block_id)
        block = cfg.blocks[block_id]
        deepest = max(deepest, block.depth)
        stack.extend(block.successors)
    return deepest


def classify(value: int, thresholds: ComplexityThresholds) -> ComplexityBucket:
    if value <= thresholds.low:
        return ComplexityBucket.LOW
    if value <= thresholds.medium:
        return ComplexityBucket.MEDIUM
    return ComplexityBucket.HIGH
