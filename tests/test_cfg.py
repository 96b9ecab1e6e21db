from __future__ import annotations

import pytest

from cfgscope.ast_model import Node, NodeKind
from cfgscope.cfg import CFGBuilder, build_cfg, constant_truth
from cfgscope.cfg_model import CFG, EdgeKind
from cfgscope.complexity import compute_complexity
from cfgscope.errors import MalformedAST, UnresolvedJumpTarget
from tests._cfg_helpers import cfg_from_source, lower_source


def _edge_kinds(cfg: CFG, source: int, target: int) -> set[EdgeKind]:
    return {e.kind for e in cfg.edges if e.source == source and e.target == target}


def _assert_consistent(cfg: CFG) -> None:
    ids = set(cfg.blocks)
    for edge in cfg.edges:
        assert edge.source in ids and edge.target in ids
        assert edge in cfg.blocks[edge.source].out_edges
        assert edge in cfg.blocks[edge.target].in_edges
    assert not cfg.exit.out_edges


def test_straight_line_function_has_one_body_block() -> None:
    cfg = cfg_from_source(
        """
        def f(a):
            x = a
            y = x
            return y
        """
    )
    _assert_consistent(cfg)
    assert [b.id for b in cfg.body_blocks] == [cfg.entry.id]
    assert len(cfg.entry.statements) == 3
    assert _edge_kinds(cfg, cfg.entry.id, cfg.exit.id) == {EdgeKind.RETURN_EXIT}
    assert compute_complexity(cfg).cyclomatic == 1


def test_implicit_return_reaches_exit() -> None:
    cfg = cfg_from_source(
        """
        def f():
            pass
        """
    )
    assert _edge_kinds(cfg, cfg.entry.id, cfg.exit.id) == {EdgeKind.RETURN_EXIT}


def test_if_return_builds_three_body_blocks() -> None:
    cfg = cfg_from_source(
        """
        def f(x):
            if x:
                return 1
            return 0
        """
    )
    _assert_consistent(cfg)
    assert len(cfg.body_blocks) == 3
    kinds = {e.kind for e in cfg.entry.out_edges}
    assert kinds == {EdgeKind.TRUE_BRANCH, EdgeKind.FALSE_BRANCH}
    assert compute_complexity(cfg).cyclomatic == 2


def test_if_else_both_returning_drops_continuation() -> None:
    cfg = cfg_from_source(
        """
        def f(x):
            if x:
                return 1
            else:
                return 2
        """
    )
    _assert_consistent(cfg)
    assert len(cfg.body_blocks) == 3
    assert all(b.in_edges for b in cfg.body_blocks if b is not cfg.entry)


def test_while_true_break() -> None:
    cfg = cfg_from_source(
        """
        def f():
            while True:
                break
        """
    )
    _assert_consistent(cfg)
    header = cfg.blocks[cfg.entry.successors[0]]
    assert header.constant_test is True
    assert {e.kind for e in header.out_edges} == {
        EdgeKind.TRUE_BRANCH,
        EdgeKind.FALSE_BRANCH,
    }
    body = next(
        cfg.blocks[e.target] for e in header.out_edges if e.kind is EdgeKind.TRUE_BRANCH
    )
    assert body.statements[0].kind is NodeKind.BREAK
    assert body.is_terminated
    assert {e.kind for e in body.out_edges} == {EdgeKind.BREAK}
    assert compute_complexity(cfg).cyclomatic == 2


def test_for_loop_continue_targets_header() -> None:
    cfg = cfg_from_source(
        """
        def f(items):
            for item in items:
                if item:
                    continue
                use(item)
        """
    )
    _assert_consistent(cfg)
    header = cfg.blocks[cfg.entry.successors[0]]
    continues = [e for e in cfg.edges if e.kind is EdgeKind.CONTINUE]
    assert len(continues) == 1
    assert continues[0].target == header.id
    loop_backs = [e for e in cfg.edges if e.kind is EdgeKind.LOOP_BACK]
    assert [e.target for e in loop_backs] == [header.id]


def test_loop_else_runs_on_normal_exit() -> None:
    cfg = cfg_from_source(
        """
        def f(items):
            for item in items:
                if item:
                    break
            else:
                missing()
            return 1
        """
    )
    _assert_consistent(cfg)
    header = cfg.blocks[cfg.entry.successors[0]]
    false_target = next(
        cfg.blocks[e.target] for e in header.out_edges if e.kind is EdgeKind.FALSE_BRANCH
    )
    assert false_target.statements[0].kind is NodeKind.EXPR_STMT
    break_edge = next(e for e in cfg.edges if e.kind is EdgeKind.BREAK)
    assert break_edge.target != false_target.id


def test_boolean_operators_short_circuit() -> None:
    cfg = cfg_from_source(
        """
        def f(a, b):
            if a and b:
                go()
        """
    )
    _assert_consistent(cfg)
    assert len(cfg.entry.statements) == 1
    assert compute_complexity(cfg).cyclomatic == 3


def test_try_except_edges_from_protected_region() -> None:
    cfg = cfg_from_source(
        """
        def f():
            try:
                risky()
            except ValueError:
                handle()
            except KeyError:
                other()
            return 1
        """
    )
    _assert_consistent(cfg)
    exception_edges = [e for e in cfg.edges if e.kind is EdgeKind.EXCEPTION]
    assert len(exception_edges) == 2
    assert len({e.source for e in exception_edges}) == 1


def test_return_inside_try_runs_finally_first() -> None:
    cfg = cfg_from_source(
        """
        def f():
            try:
                return g()
            finally:
                cleanup()
        """
    )
    _assert_consistent(cfg)
    try_entry = cfg.blocks[cfg.entry.successors[0]]
    assert cfg.exit.id not in try_entry.successors
    final_id = try_entry.successors[0]
    assert _edge_kinds(cfg, try_entry.id, final_id) == {
        EdgeKind.RETURN_EXIT,
        EdgeKind.EXCEPTION,
    }
    assert _edge_kinds(cfg, final_id, cfg.exit.id) == {
        EdgeKind.RETURN_EXIT,
        EdgeKind.RAISE_EXIT,
    }


def test_break_inside_finally_protected_loop_body() -> None:
    cfg = cfg_from_source(
        """
        def f(items):
            for item in items:
                try:
                    break
                finally:
                    log()
            return 1
        """
    )
    _assert_consistent(cfg)
    break_edge = next(e for e in cfg.edges if e.kind is EdgeKind.BREAK)
    final_block = cfg.blocks[break_edge.target]
    assert final_block.statements[0].kind is NodeKind.EXPR_STMT
    assert any(e.kind is EdgeKind.BREAK for e in final_block.out_edges)


def test_match_without_default_can_fall_through() -> None:
    cfg = cfg_from_source(
        """
        def f(cmd):
            match cmd:
                case "a":
                    x = 1
                case "b":
                    x = 2
            return x
        """
    )
    _assert_consistent(cfg)
    kinds = [e.kind for e in cfg.entry.out_edges]
    assert kinds.count(EdgeKind.TRUE_BRANCH) == 2
    assert kinds.count(EdgeKind.FALSE_BRANCH) == 1


def test_match_with_default_is_exhaustive() -> None:
    cfg = cfg_from_source(
        """
        def f(cmd):
            match cmd:
                case "a":
                    return 1
                case _:
                    return 2
        """
    )
    kinds = [e.kind for e in cfg.entry.out_edges]
    assert EdgeKind.FALSE_BRANCH not in kinds


def test_with_body_gets_own_block() -> None:
    cfg = cfg_from_source(
        """
        def f(path):
            with open(path) as fh:
                data = fh.read()
            return data
        """
    )
    _assert_consistent(cfg)
    assert cfg.entry.statements[0].role == "item"
    body = cfg.blocks[cfg.entry.successors[0]]
    assert body.statements[0].kind is NodeKind.ASSIGN


def test_trailing_statements_after_jump_stay_in_block() -> None:
    cfg = cfg_from_source(
        """
        def f(x):
            return 1
            print(x)
        """
    )
    assert cfg.entry.jump_index == 0
    assert [s.kind for s in cfg.entry.trailing_statements()] == [NodeKind.EXPR_STMT]


def test_break_outside_loop_is_unresolved() -> None:
    node = lower_source(
        """
        def f():
            break
        """
    )
    with pytest.raises(UnresolvedJumpTarget) as excinfo:
        build_cfg("mod:f", node)
    assert excinfo.value.qualname == "mod:f"
    assert excinfo.value.span is not None


def test_non_function_root_is_malformed() -> None:
    with pytest.raises(MalformedAST):
        CFGBuilder().build("mod:x", Node(NodeKind.PASS))


def test_function_without_body_is_malformed() -> None:
    with pytest.raises(MalformedAST):
        build_cfg("mod:x", Node(NodeKind.FUNCTION, (), None, "x"))


def test_builder_is_reusable() -> None:
    builder = CFGBuilder()
    first = builder.build("a", lower_source("def a():\n    return 1\n"))
    second = builder.build("b", lower_source("def b(x):\n    if x:\n        pass\n"))
    assert first.qualname == "a"
    assert second.qualname == "b"
    assert len(first.body_blocks) == 1


@pytest.mark.parametrize(
    ("literal", "expected"),
    [
        (Node(NodeKind.CONSTANT, value="True"), True),
        (Node(NodeKind.CONSTANT, value="0"), False),
        (Node(NodeKind.CONSTANT, value="'text'"), True),
        (
            Node(
                NodeKind.UNARY_OP,
                (Node(NodeKind.CONSTANT, value="False", role="operand"),),
                value="Not",
            ),
            True,
        ),
        (Node(NodeKind.NAME, value="flag"), None),
    ],
    ids=["true", "zero", "string", "not-false", "name"],
)
def test_constant_truth(literal: Node, expected: bool | None) -> None:
    assert constant_truth(literal) is expected


def _labelled_loops(jump: Node) -> Node:
    inner = Node(
        NodeKind.WHILE,
        (
            Node(NodeKind.NAME, value="b", role="test"),
            Node(NodeKind.BLOCK, (jump,), role="body"),
        ),
    )
    outer = Node(
        NodeKind.WHILE,
        (
            Node(NodeKind.NAME, value="a", role="test"),
            Node(NodeKind.BLOCK, (inner,), role="body"),
        ),
        value="outer",
    )
    body = Node(NodeKind.BLOCK, (outer, Node(NodeKind.RETURN)), role="body")
    return Node(NodeKind.FUNCTION, (body,), value="f")


def test_labelled_break_leaves_the_named_loop() -> None:
    cfg = build_cfg("mod:f", _labelled_loops(Node(NodeKind.BREAK, value="outer")))
    _assert_consistent(cfg)
    (edge,) = [e for e in cfg.edges if e.kind is EdgeKind.BREAK]
    target = cfg.block(edge.target)
    assert [s.kind for s in target.statements] == [NodeKind.RETURN]


def test_unknown_label_is_unresolved() -> None:
    with pytest.raises(UnresolvedJumpTarget, match="'missing'"):
        build_cfg("mod:f", _labelled_loops(Node(NodeKind.CONTINUE, value="missing")))


@pytest.mark.parametrize(
    ("stmt", "match"),
    [
        (Node(NodeKind.CALL), "expression call used as statement"),
        (Node(NodeKind.HANDLER), "handler outside its construct"),
    ],
    ids=["expression", "handler"],
)
def test_misplaced_kinds_in_body_are_malformed(stmt: Node, match: str) -> None:
    body = Node(NodeKind.BLOCK, (stmt,), None, None, "body")
    with pytest.raises(MalformedAST, match=match):
        build_cfg("mod:x", Node(NodeKind.FUNCTION, (body,), None, "x"))


def test_only_control_statements_open_a_nesting_level() -> None:
    cfg = cfg_from_source(
        """
        def f(items, lock):
            with lock:
                for item in items:
                    try:
                        if item:
                            use(item)
                    finally:
                        done()
        """
    )
    use_block = next(
        block
        for block in cfg.blocks.values()
        if any(s.span is not None and s.span.start_line == 7 for s in block.statements)
    )
    assert use_block.depth == 2
