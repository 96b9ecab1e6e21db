"""
cfgscope — control-flow, dead code and clone analysis for Python
source trees.

Copyright (c) 2026 Den Rozhnovskiy
Licensed under the MIT License.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Mapping, MutableMapping
from dataclasses import dataclass

DEFAULT_EXACT_NODE_LIMIT = 200


@dataclass(frozen=True, slots=True)
class FlatTree:
    """
    Arena encoding of an ordered labelled tree.

    ``labels[i]`` and ``arity[i]`` describe the i-th node in preorder. The
    encoding is immutable, hashable and cheap to pickle, which is what the
    fragment index, the cache and worker processes exchange.
    """

    labels: tuple[str, ...]
    arity: tuple[int, ...]

    @property
    def size(self) -> int:
        return len(self.labels)


@dataclass(frozen=True, slots=True)
class PreparedTree:
    """Postorder arrays used by the distance algorithms."""

    labels: tuple[int, ...]
    lml: tuple[int, ...]
    keyroots: tuple[int, ...]
    children: tuple[tuple[int, ...], ...]
    depth: tuple[int, ...]
    histogram: Mapping[int, int]

    @property
    def size(self) -> int:
        return len(self.labels)

    def subtree_size(self, node: int) -> int:
        return node - self.lml[node] + 1

    def sort_key(self) -> tuple[int, tuple[int, ...], tuple[int, ...]]:
        return (self.size, self.labels, self.lml)


def prepare(tree: FlatTree, intern: MutableMapping[str, int]) -> PreparedTree:
    """
    Convert a preorder :class:`FlatTree` to postorder arrays.

    ``intern`` maps labels to small integers and is shared by every tree of
    one index so that label comparison is an integer comparison.
    """
    n = tree.size
    if n == 0:
        raise ValueError("Empty tree")
    if len(tree.arity) != n:
        raise ValueError("labels and arity differ in length")

    pre_children: list[list[int]] = [[] for _ in range(n)]
    pre_depth = [0] * n
    open_nodes: list[list[int]] = []  # [preorder index, children still expected]
    for i in range(n):
        if open_nodes:
            parent = open_nodes[-1]
            pre_children[parent[0]].append(i)
            pre_depth[i] = pre_depth[parent[0]] + 1
            parent[1] -= 1
        elif i:
            raise ValueError("FlatTree has more than one root")
        if tree.arity[i] < 0:
            raise ValueError("Negative arity")
        if tree.arity[i]:
            open_nodes.append([i, tree.arity[i]])
        while open_nodes and open_nodes[-1][1] == 0:
            open_nodes.pop()
    if open_nodes:
        raise ValueError("FlatTree arity exceeds node count")

    post_order: list[int] = []
    stack: list[tuple[int, bool]] = [(0, False)]
    while stack:
        node, expanded = stack.pop()
        if expanded:
            post_order.append(node)
            continue
        stack.append((node, True))
        for child in reversed(pre_children[node]):
            stack.append((child, False))

    post_of = [0] * n
    for post, pre in enumerate(post_order):
        post_of[pre] = post

    labels: list[int] = []
    children: list[tuple[int, ...]] = []
    depth: list[int] = []
    lml: list[int] = []
    for post, pre in enumerate(post_order):
        label = tree.labels[pre]
        code = intern.get(label)
        if code is None:
            code = len(intern)
            intern[label] = code
        labels.append(code)
        kids = tuple(post_of[c] for c in pre_children[pre])
        children.append(kids)
        depth.append(pre_depth[pre])
        lml.append(lml[kids[0]] if kids else post)

    keyroots: list[int] = []
    seen_lml: set[int] = set()
    for i in range(n - 1, -1, -1):
        if lml[i] not in seen_lml:
            seen_lml.add(lml[i])
            keyroots.append(i)
    keyroots.reverse()

    return PreparedTree(
        labels=tuple(labels),
        lml=tuple(lml),
        keyroots=tuple(keyroots),
        children=tuple(children),
        depth=tuple(depth),
        histogram=dict(Counter(labels)),
    )


# =========================
# Bounds
# =========================


def size_bound(a: PreparedTree, b: PreparedTree) -> float:
    """Upper bound of similarity from node counts alone."""
    return min(a.size, b.size) / max(a.size, b.size)


def histogram_bound(a: PreparedTree, b: PreparedTree) -> float:
    """
    Upper bound of similarity from label multisets.

    Every node that is not matched to an equal label costs at least one
    operation, so ``distance >= max(|a|, |b|) - overlap``.
    """
    small, large = (a.histogram, b.histogram)
    if len(small) > len(large):
        small, large = large, small
    overlap = sum(min(count, large.get(label, 0)) for label, count in small.items())
    return overlap / max(a.size, b.size)


# =========================
# Distances
# =========================


def zhang_shasha(a: PreparedTree, b: PreparedTree) -> int:
    """Exact ordered tree edit distance with unit costs."""
    la, lb = a.lml, b.lml
    labels_a, labels_b = a.labels, b.labels
    td = [[0] * b.size for _ in range(a.size)]

    for i in a.keyroots:
        li = la[i]
        rows = i - li + 2
        for j in b.keyroots:
            lj = lb[j]
            cols = j - lj + 2
            fd = [[0] * cols for _ in range(rows)]
            for x in range(1, rows):
                fd[x][0] = x
            first = fd[0]
            for y in range(1, cols):
                first[y] = y

            for x in range(1, rows):
                ai = li + x - 1
                lai = la[ai]
                row = fd[x]
                prev = fd[x - 1]
                td_row = td[ai]
                if lai == li:
                    label = labels_a[ai]
                    for y in range(1, cols):
                        bj = lj + y - 1
                        if lb[bj] == lj:
                            cost = 0 if label == labels_b[bj] else 1
                            best = min(prev[y] + 1, row[y - 1] + 1, prev[y - 1] + cost)
                            row[y] = best
                            td_row[bj] = best
                        else:
                            q = lb[bj] - lj
                            row[y] = min(
                                prev[y] + 1, row[y - 1] + 1, first[q] + td_row[bj]
                            )
                else:
                    p_row = fd[lai - li]
                    for y in range(1, cols):
                        bj = lj + y - 1
                        q = lb[bj] - lj
                        row[y] = min(prev[y] + 1, row[y - 1] + 1, p_row[q] + td_row[bj])

    return td[a.size - 1][b.size - 1]


def top_down_distance(a: PreparedTree, b: PreparedTree) -> int:
    """
    Approximate edit distance restricted to top-down mappings.

    Nodes may only map to nodes at the same depth whose parents are mapped
    (Selkow's distance). The result is an upper bound of the exact
    distance. Levels are processed bottom-up, keeping only the level below
    the current one, so memory stays proportional to one level pair.
    """
    levels_a = _levels(a)
    levels_b = _levels(b)
    deepest = min(len(levels_a), len(levels_b)) - 1

    below: dict[tuple[int, int], int] = {}
    for level in range(deepest, -1, -1):
        current: dict[tuple[int, int], int] = {}
        for u in levels_a[level]:
            kids_u = a.children[u]
            for v in levels_b[level]:
                kids_v = b.children[v]
                cost = 0 if a.labels[u] == b.labels[v] else 1
                if kids_u or kids_v:
                    cost += _align_children(a, b, kids_u, kids_v, below)
                current[(u, v)] = cost
        below = current

    return below[(a.size - 1, b.size - 1)]


def _levels(tree: PreparedTree) -> list[list[int]]:
    levels: list[list[int]] = []
    for node, d in enumerate(tree.depth):
        while len(levels) <= d:
            levels.append([])
        levels[d].append(node)
    return levels


def _align_children(
    a: PreparedTree,
    b: PreparedTree,
    kids_a: tuple[int, ...],
    kids_b: tuple[int, ...],
    below: Mapping[tuple[int, int], int],
) -> int:
    prev = [0] * (len(kids_b) + 1)
    for y, v in enumerate(kids_b, start=1):
        prev[y] = prev[y - 1] + b.subtree_size(v)
    for u in kids_a:
        delete_u = a.subtree_size(u)
        row = [prev[0] + delete_u]
        for y, v in enumerate(kids_b, start=1):
            row.append(
                min(
                    prev[y] + delete_u,
                    row[y - 1] + b.subtree_size(v),
                    prev[y - 1] + below[(u, v)],
                )
            )
        prev = row
    return prev[-1]


def tree_edit_distance(
    a: PreparedTree,
    b: PreparedTree,
    *,
    exact_node_limit: int = DEFAULT_EXACT_NODE_LIMIT,
) -> int:
    if a.sort_key() > b.sort_key():
        a, b = b, a
    if a.labels == b.labels and a.lml == b.lml:
        return 0
    if a.size <= exact_node_limit and b.size <= exact_node_limit:
        return zhang_shasha(a, b)
    return top_down_distance(a, b)


def similarity(
    a: PreparedTree,
    b: PreparedTree,
    *,
    exact_node_limit: int = DEFAULT_EXACT_NODE_LIMIT,
) -> tuple[int, float]:
    """Return ``(distance, similarity)``; similarity is clamped to [0, 1]."""
    distance = tree_edit_distance(a, b, exact_node_limit=exact_node_limit)
    score = 1.0 - distance / max(a.size, b.size)
    return distance, min(1.0, max(0.0, score))
