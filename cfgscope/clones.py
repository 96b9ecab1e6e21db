"""
cfgscope — control-flow, dead code and clone analysis for Python
source trees.

Copyright (c) 2026 Den Rozhnovskiy
Licensed under the MIT License.
"""

from __future__ import annotations

from collections.abc import Sequence
from concurrent.futures import FIRST_COMPLETED, Future, ProcessPoolExecutor, wait
from dataclasses import dataclass, field

from .cancellation import CancellationToken, check
from .errors import ConfigError
from .fragments import Fragment, FragmentIndex
from .tree_distance import (
    DEFAULT_EXACT_NODE_LIMIT,
    PreparedTree,
    histogram_bound,
    similarity,
    size_bound,
)

CHUNK_SIZE = 256
CANCEL_CHECK_INTERVAL = 1024
# Bounds are compared with slack so float rounding never prunes a true pair.
BOUND_TOLERANCE = 1e-12


@dataclass(frozen=True, slots=True)
class CloneConfig:
    threshold: float = 0.8
    min_nodes: int = 20
    min_lines: int = 5
    exact_node_limit: int = DEFAULT_EXACT_NODE_LIMIT

    def validate(self) -> None:
        if not 0.0 <= self.threshold <= 1.0:
            raise ConfigError(
                f"Clone threshold must be within [0, 1], got {self.threshold}"
            )
        if self.min_nodes < 1:
            raise ConfigError("Clone min_nodes must be >= 1")
        if self.min_lines < 1:
            raise ConfigError("Clone min_lines must be >= 1")
        if self.exact_node_limit < 0:
            raise ConfigError("exact_node_limit must be >= 0")


@dataclass(frozen=True, slots=True)
class CloneClass:
    """
    One connected component of similar fragments.

    ``pairs`` holds ``(member_a, member_b, similarity)`` with positions into
    ``members``.
    """

    members: tuple[Fragment, ...]
    pairs: tuple[tuple[int, int, float], ...]

    @property
    def min_similarity(self) -> float:
        return min(s for _, _, s in self.pairs)

    @property
    def max_similarity(self) -> float:
        return max(s for _, _, s in self.pairs)


@dataclass(slots=True)
class CloneResult:
    classes: list[CloneClass] = field(default_factory=list)
    pairs_compared: int = 0
    pairs_pruned: int = 0


# =========================
# Union-find
# =========================


class _DisjointSet:
    __slots__ = ("parent",)

    def __init__(self, size: int) -> None:
        self.parent = list(range(size))

    def find(self, x: int) -> int:
        root = x
        while self.parent[root] != root:
            root = self.parent[root]
        while self.parent[x] != root:
            self.parent[x], x = root, self.parent[x]
        return root

    def union(self, a: int, b: int) -> None:
        ra, rb = self.find(a), self.find(b)
        if ra == rb:
            return
        # Smaller root wins so component ids follow canonical order.
        if rb < ra:
            ra, rb = rb, ra
        self.parent[rb] = ra


# =========================
# Worker side
# =========================

_WORKER_TREES: tuple[PreparedTree, ...] = ()
_WORKER_LIMIT = DEFAULT_EXACT_NODE_LIMIT


def _init_worker(trees: tuple[PreparedTree, ...], exact_node_limit: int) -> None:
    global _WORKER_TREES, _WORKER_LIMIT
    _WORKER_TREES = trees
    _WORKER_LIMIT = exact_node_limit


def _compare_chunk(
    chunk: Sequence[tuple[int, int]],
) -> list[tuple[int, int, int, float]]:
    return _compare(_WORKER_TREES, chunk, _WORKER_LIMIT)


def _compare(
    trees: Sequence[PreparedTree],
    chunk: Sequence[tuple[int, int]],
    exact_node_limit: int,
) -> list[tuple[int, int, int, float]]:
    out: list[tuple[int, int, int, float]] = []
    for i, j in chunk:
        distance, score = similarity(
            trees[i], trees[j], exact_node_limit=exact_node_limit
        )
        out.append((i, j, distance, score))
    return out


# =========================
# Detector
# =========================


class CloneDetector:
    """
    Find groups of structurally similar fragments.

    Two phases: lossless size and label-histogram bounds discard pairs that
    cannot reach the threshold, then the tree edit distance is computed for
    the remaining candidates. Pairs at or above the threshold are joined
    into connected components.
    """

    __slots__ = ("config",)

    def __init__(self, config: CloneConfig | None = None) -> None:
        self.config = config or CloneConfig()
        self.config.validate()

    def index(self, fragments: Sequence[Fragment]) -> FragmentIndex:
        return FragmentIndex.build(
            list(fragments),
            min_nodes=self.config.min_nodes,
            min_lines=self.config.min_lines,
        )

    def candidates(
        self,
        index: FragmentIndex,
        *,
        cancel: CancellationToken | None = None,
    ) -> tuple[list[tuple[int, int]], int]:
        """Return canonical candidate pairs and the number pruned by bounds."""
        threshold = self.config.threshold
        trees = index.prepared
        order = sorted(range(len(trees)), key=lambda k: (trees[k].size, k))
        pairs: list[tuple[int, int]] = []
        pruned = 0
        visited = 0

        for pos, i in enumerate(order):
            small = trees[i]
            for offset in range(pos + 1, len(order)):
                j = order[offset]
                visited += 1
                if visited % CANCEL_CHECK_INTERVAL == 0:
                    check(cancel)
                large = trees[j]
                # Sizes are ascending: once the ratio fails it fails for the rest.
                if size_bound(small, large) < threshold - BOUND_TOLERANCE:
                    pruned += len(order) - offset
                    break
                if index.overlapping(i, j):
                    continue
                if histogram_bound(small, large) < threshold - BOUND_TOLERANCE:
                    pruned += 1
                    continue
                pairs.append((i, j) if i < j else (j, i))

        pairs.sort()
        return pairs, pruned

    def detect(
        self,
        fragments: Sequence[Fragment] | FragmentIndex,
        *,
        cancel: CancellationToken | None = None,
        workers: int = 1,
    ) -> CloneResult:
        index = (
            fragments
            if isinstance(fragments, FragmentIndex)
            else self.index(fragments)
        )
        check(cancel)
        pairs, pruned = self.candidates(index, cancel=cancel)

        if workers > 1 and len(pairs) > CHUNK_SIZE:
            try:
                scored = self._evaluate_parallel(index, pairs, cancel, workers)
            except (OSError, RuntimeError, PermissionError):
                scored = self._evaluate_sequential(index, pairs, cancel)
        else:
            scored = self._evaluate_sequential(index, pairs, cancel)

        scored.sort()
        return CloneResult(
            classes=self._group(index, scored),
            pairs_compared=len(scored),
            pairs_pruned=pruned,
        )

    def _evaluate_sequential(
        self,
        index: FragmentIndex,
        pairs: list[tuple[int, int]],
        cancel: CancellationToken | None,
    ) -> list[tuple[int, int, int, float]]:
        out: list[tuple[int, int, int, float]] = []
        for pair in pairs:
            check(cancel)
            out.extend(_compare(index.prepared, (pair,), self.config.exact_node_limit))
        return out

    def _evaluate_parallel(
        self,
        index: FragmentIndex,
        pairs: list[tuple[int, int]],
        cancel: CancellationToken | None,
        workers: int,
    ) -> list[tuple[int, int, int, float]]:
        out: list[tuple[int, int, int, float]] = []
        chunks = [pairs[i : i + CHUNK_SIZE] for i in range(0, len(pairs), CHUNK_SIZE)]
        with ProcessPoolExecutor(
            max_workers=workers,
            initializer=_init_worker,
            initargs=(index.prepared, self.config.exact_node_limit),
        ) as executor:
            pending: set[Future[list[tuple[int, int, int, float]]]] = {
                executor.submit(_compare_chunk, chunk) for chunk in chunks
            }
            try:
                while pending:
                    done, pending = wait(pending, return_when=FIRST_COMPLETED)
                    for future in done:
                        out.extend(future.result())
                    check(cancel)
            except BaseException:
                for future in pending:
                    future.cancel()
                raise
        return out

    def _group(
        self,
        index: FragmentIndex,
        scored: list[tuple[int, int, int, float]],
    ) -> list[CloneClass]:
        threshold = self.config.threshold
        passing = [(i, j, s) for i, j, _, s in scored if s >= threshold]
        ds = _DisjointSet(len(index))
        for i, j, _ in passing:
            ds.union(i, j)

        roots = {ds.find(i) for i, _, _ in passing}
        components: dict[int, list[int]] = {root: [] for root in roots}
        for k in range(len(index)):
            root = ds.find(k)
            if root in components:
                components[root].append(k)

        pairs_by_root: dict[int, list[tuple[int, int, float]]] = {}
        for i, j, s in passing:
            pairs_by_root.setdefault(ds.find(i), []).append((i, j, s))

        classes: list[CloneClass] = []
        for root in sorted(components):
            members = components[root]
            position = {k: p for p, k in enumerate(members)}
            classes.append(
                CloneClass(
                    members=tuple(index.fragments[k] for k in members),
                    pairs=tuple(
                        (position[i], position[j], s)
                        for i, j, s in pairs_by_root[root]
                    ),
                )
            )
        return classes
