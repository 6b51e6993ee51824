"""Tests for taskfilter.evaluator: boolean combination and group resolution."""
from __future__ import annotations

from datetime import UTC, datetime

import pytest

from taskfilter.clock import DayWindows, resolve_literal_date
from taskfilter.conditions import EvalEnv
from taskfilter.evaluator import evaluate_node, resolve_group, resolve_splice
from taskfilter.filter_context import FilterContext
from taskfilter.glob_match import CachedGlobMatcher
from taskfilter.query_ast import And, Group, Literal, Not, Or, Predicate, Splice
from taskfilter.query_parser import parse_query
from taskfilter.task_types import Task

ENV = EvalEnv(
    context=FilterContext(),
    windows=DayWindows.from_now(datetime(2026, 3, 2, 10, 30, tzinfo=UTC)),
    glob=CachedGlobMatcher(),
    resolve_date=resolve_literal_date,
)

P1_TASK = Task(id="a", content="alpha", priority=1)
P2_TASK = Task(id="b", content="beta", priority=2)

P1 = Predicate("p1", "priority", "1")
P2 = Predicate("p2", "priority", "2")
ALPHA = Predicate("alpha", "text", "alpha")


def _eval(query: str, task: Task) -> bool:
    expr = parse_query(query).expr
    assert expr is not None
    return evaluate_node(expr, task, ENV)


class TestCombinators:
    def test_literal(self) -> None:
        assert evaluate_node(Literal(True), P1_TASK, ENV)
        assert not evaluate_node(Literal(False), P1_TASK, ENV)

    def test_and(self) -> None:
        assert evaluate_node(And((P1, ALPHA)), P1_TASK, ENV)
        assert not evaluate_node(And((P1, P2)), P1_TASK, ENV)

    def test_or(self) -> None:
        assert evaluate_node(Or((P1, P2)), P1_TASK, ENV)
        assert evaluate_node(Or((P1, P2)), P2_TASK, ENV)
        assert not evaluate_node(Or((P2, Literal(False))), P1_TASK, ENV)

    def test_not(self) -> None:
        assert not evaluate_node(Not(P1), P1_TASK, ENV)
        assert evaluate_node(Not(P1), P2_TASK, ENV)

    def test_unknown_node(self) -> None:
        with pytest.raises(TypeError):
            evaluate_node("p1", P1_TASK, ENV)  # type: ignore[arg-type]


class TestGrouping:
    def test_resolve_group(self) -> None:
        assert resolve_group(Group(Or((P1, P2))), P2_TASK, ENV)
        assert not resolve_group(Group(And((P1, P2))), P2_TASK, ENV)

    def test_group_overrides_precedence(self) -> None:
        # p1 | p2 & false  ==  p1 | (p2 & false)
        assert _eval("p1 | p2 & false", P1_TASK)
        assert not _eval("p1 | p2 & false", P2_TASK)
        # (p1 | p2) & false is false for everything
        assert not _eval("(p1 | p2) & false", P1_TASK)

    def test_negated_group(self) -> None:
        assert not _eval("!(p1 | p2)", P1_TASK)
        assert _eval("!(p1 & beta)", P1_TASK)

    def test_nested_groups(self) -> None:
        assert _eval("((p1 | p3) & (alpha | beta))", P1_TASK)
        assert not _eval("((p1 | p3) & (gamma | beta))", P1_TASK)

    def test_double_negation(self) -> None:
        assert _eval("!!p1", P1_TASK) == _eval("p1", P1_TASK)
        assert _eval("!!p1", P2_TASK) == _eval("p1", P2_TASK)


class TestSplice:
    def test_groups_substituted_into_text(self) -> None:
        task = Task(id="m", content="buy milk true", priority=1)
        assert _eval("milk (p1)", task)
        assert not _eval("milk (p2)", task)

    def test_prefix_alone_does_not_match(self) -> None:
        assert not _eval("alpha (zzz)", P1_TASK)
        assert not _eval("(p1) alpha", P1_TASK)

    def test_resolve_splice(self) -> None:
        task = Task(id="x", content="false alarm")
        splice = Splice((Group(P1), " alarm"))
        assert resolve_splice(splice, task, ENV)
        assert not resolve_splice(splice, P1_TASK, ENV)

    def test_substituted_text_is_reclassified(self) -> None:
        # "#(zzz)" becomes "#false", a project condition
        task = Task(id="x", content="c", project_id="false")
        assert _eval("#(zzz)", task)
