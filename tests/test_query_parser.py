"""Tests for taskfilter.query_parser and taskfilter.query_ast."""
from __future__ import annotations

import pytest

from taskfilter.config import FilterSettings
from taskfilter.query_ast import (
    And,
    Group,
    Literal,
    Not,
    Or,
    Predicate,
    Splice,
    count_nodes,
    measure_depth,
    query_from_json,
    query_to_json,
    serialize_query,
    validate_query_ast,
)
from taskfilter.query_parser import (
    normalize_query,
    parse_query,
    parse_result_to_json,
    tokenize_query,
    validate_query,
)


def _kinds(text: str) -> list[str]:
    return [t.kind for t in tokenize_query(text) if t.kind != "EOF"]


# ───────────────────────────── Tokenizer ─────────────────────────────


class TestTokenizer:
    def test_simple_tokens(self) -> None:
        assert _kinds("p1 & !#work") == ["TEXT", "AMP", "BANG", "TEXT"]

    def test_pipe_and_parens(self) -> None:
        assert _kinds("(p1 | p2)") == ["LPAREN", "TEXT", "PIPE", "TEXT", "RPAREN"]

    def test_multi_word_condition(self) -> None:
        tokens = tokenize_query("due before: jan 5 2026 & no date")
        assert [t.value for t in tokens if t.kind == "TEXT"] == [
            "due before: jan 5 2026",
            "no date",
        ]

    def test_text_positions(self) -> None:
        tokens = tokenize_query("p1 | p2")
        assert [t.pos for t in tokens] == [0, 3, 5, 7]

    def test_bang_inside_text_is_literal(self) -> None:
        tokens = tokenize_query("hello!")
        assert [(t.kind, t.value) for t in tokens if t.kind != "EOF"] == [("TEXT", "hello!")]

    def test_lone_bang_is_text(self) -> None:
        assert _kinds("!") == ["TEXT"]
        assert _kinds("p1 | !") == ["TEXT", "PIPE", "TEXT"]

    def test_quoted_span_hides_operators(self) -> None:
        tokens = tokenize_query('@"a|b" & p1')
        first = tokens[0]
        assert first.kind == "TEXT"
        assert first.value == "@a|b"
        assert first.quoted is True
        assert _kinds('@"a|b" & p1') == ["TEXT", "AMP", "TEXT"]

    def test_unpaired_quote_is_text(self) -> None:
        tokens = tokenize_query('say "hi')
        assert tokens[0].value == 'say "hi'

    def test_unbalanced_parens_are_text(self) -> None:
        assert _kinds("(p1 | p2") == ["TEXT", "PIPE", "TEXT"]
        assert tokenize_query("(p1 | p2")[0].value == "(p1"

    def test_empty_parens_are_text(self) -> None:
        tokens = tokenize_query("()")
        assert [(t.kind, t.value) for t in tokens if t.kind != "EOF"] == [("TEXT", "()")]

    def test_normalize(self) -> None:
        assert normalize_query("  P1 & #Work ") == "p1 & #work"


# ───────────────────────────── Parsing ───────────────────────────────


class TestParsing:
    def test_single_condition(self) -> None:
        result = parse_query("p1")
        assert result.ok
        assert result.expr == Predicate("p1", "priority", "1")

    def test_empty_query(self) -> None:
        result = parse_query("   ")
        assert result.ok
        assert result.expr is None
        assert result.is_empty

    def test_and_binds_tighter_than_or(self) -> None:
        result = parse_query("p1 & #work | p2")
        assert result.ok
        expr = result.expr
        assert isinstance(expr, Or)
        assert isinstance(expr.children[0], And)
        assert expr.children[1] == Predicate("p2", "priority", "2")

    def test_not_binds_tightest(self) -> None:
        expr = parse_query("!p1 & p2").expr
        assert isinstance(expr, And)
        assert expr.children[0] == Not(Predicate("p1", "priority", "1"))

    def test_group(self) -> None:
        expr = parse_query("(p1 | p2) & #work").expr
        assert isinstance(expr, And)
        group = expr.children[0]
        assert isinstance(group, Group)
        assert isinstance(group.inner, Or)

    def test_nested_groups(self) -> None:
        expr = parse_query("((p1))").expr
        assert expr == Group(Group(Predicate("p1", "priority", "1")))

    def test_negated_group(self) -> None:
        expr = parse_query("!(p1 | p2)").expr
        assert isinstance(expr, Not)
        assert isinstance(expr.inner, Group)

    def test_double_negation_cancels(self) -> None:
        assert parse_query("!!p1").expr == Predicate("p1", "priority", "1")
        assert parse_query("!!!p1").expr == Not(Predicate("p1", "priority", "1"))

    def test_literals(self) -> None:
        assert parse_query("true").expr == Literal(True)
        assert parse_query("FALSE").expr == Literal(False)

    def test_quoted_literal_is_condition(self) -> None:
        expr = parse_query('"true"').expr
        assert expr == Predicate("true", "text", "true")

    def test_case_insensitive(self) -> None:
        assert parse_query("P1 & #WORK").expr == parse_query("p1 & #work").expr


class TestParseRecovery:
    def test_trailing_operator(self) -> None:
        result = parse_query("p1 &")
        assert not result.ok
        assert result.expr == Predicate("p1", "priority", "1")

    def test_leading_operator(self) -> None:
        result = parse_query("| p1")
        assert not result.ok
        assert result.expr == Predicate("p1", "priority", "1")

    def test_doubled_operator(self) -> None:
        result = parse_query("p1 | | p2")
        assert not result.ok
        assert isinstance(result.expr, Or)
        assert len(result.expr.children) == 2

    def test_juxtaposed_operands(self) -> None:
        result = parse_query("foo (p1)")
        assert not result.ok
        assert "joined with" in result.errors[0].message
        # The whole run is kept; nothing after "foo" is dropped
        assert result.expr == Splice(("foo ", Group(Predicate("p1", "priority", "1"))))

    def test_juxtaposed_group_first(self) -> None:
        result = parse_query("(p1) foo | p2")
        assert isinstance(result.expr, Or)
        assert result.expr.children == (
            Splice((Group(Predicate("p1", "priority", "1")), " foo")),
            Predicate("p2", "priority", "2"),
        )

    def test_negated_juxtaposition(self) -> None:
        result = parse_query("!milk (zzz)")
        assert result.expr == Not(Splice(("milk ", Group(Predicate("zzz", "text", "zzz")))))

    def test_juxtaposition_keeps_spacing(self) -> None:
        result = parse_query("a  (p1)b")
        assert result.expr == Splice(("a  ", Group(Predicate("p1", "priority", "1")), "b"))

    def test_only_operators_fall_back_to_text(self) -> None:
        result = parse_query("&")
        assert not result.ok
        assert result.expr == Predicate("&", "text", "&")

    def test_unbalanced_paren_is_text_search(self) -> None:
        result = parse_query("(p1")
        assert result.ok
        assert result.expr == Predicate("(p1", "text", "(p1")

    def test_depth_limit(self) -> None:
        settings = FilterSettings(max_depth=2)
        result = parse_query("p1 | (((p2)))", settings)
        assert any(e.code == "max_depth" for e in result.errors)
        assert result.expr == Predicate("p1", "priority", "1")

    def test_errors_carry_positions(self) -> None:
        result = parse_query("p1 &")
        assert result.errors[0].position == 3


# ───────────────────────────── Validation ────────────────────────────


class TestValidateQuery:
    def test_valid(self) -> None:
        assert validate_query("p1 & (#work | @urgent)").ok

    def test_length_limit(self) -> None:
        result = validate_query("p1 | " * 10 + "p2", FilterSettings(max_query_length=10))
        assert any(e.code == "max_query_length" for e in result.errors)

    def test_node_limit(self) -> None:
        result = validate_query("p1 | p2 | p3 | p4", FilterSettings(max_nodes=3))
        assert any(e.code == "max_nodes" for e in result.errors)

    def test_to_json(self) -> None:
        data = parse_result_to_json(validate_query("p1 &"))
        assert data["ok"] is False
        assert data["query"] == "p1 &"
        assert data["ast"] == {"condition": "p1", "kind": "priority", "argument": "1"}
        assert data["errors"][0]["code"] == "syntax"


# ───────────────────────────── AST utilities ─────────────────────────


class TestSerializeQuery:
    @pytest.mark.parametrize(
        "text",
        [
            "p1",
            "p1 & #work | p2",
            "(p1 | p2) & #work",
            "!(overdue & !assigned) | @urgent",
            "due before: jan 5 2026",
            "true & !false",
            "milk (zzz) & p1",
            "(p1) foo | p2",
        ],
    )
    def test_canonical_text_reparses_to_same_ast(self, text: str) -> None:
        expr = parse_query(text).expr
        assert expr is not None
        assert parse_query(serialize_query(expr)).expr == expr

    def test_quotes_operator_characters(self) -> None:
        assert serialize_query(Predicate("@a|b", "label", "a|b")) == '"@a|b"'
        assert serialize_query(Predicate("true", "text", "true")) == '"true"'
        assert serialize_query(Predicate("!x", "text", "!x")) == '"!x"'

    def test_or_under_and_is_grouped(self) -> None:
        node = And((Or((Predicate("p1"), Predicate("p2"))), Predicate("p3")))
        assert serialize_query(node) == "(p1 | p2) & p3"


class TestQueryJson:
    def test_round_trip(self) -> None:
        expr = parse_query("(p1 | !@urgent) & true").expr
        assert expr is not None
        assert query_from_json(query_to_json(expr)) == expr

    def test_reclassifies_conditions(self) -> None:
        node = query_from_json({"condition": "#Work", "kind": "bogus"})
        assert node == Predicate("#work", "project", "work")

    def test_rejects_malformed(self) -> None:
        with pytest.raises(ValueError):
            query_from_json([])
        with pytest.raises(ValueError):
            query_from_json({"op": "xor", "children": []})
        with pytest.raises(ValueError):
            query_from_json({"op": "and", "children": []})
        with pytest.raises(ValueError):
            query_from_json({"op": "not"})
        with pytest.raises(ValueError):
            query_from_json({"literal": "yes"})
        with pytest.raises(ValueError):
            query_from_json({"condition": "  "})
        with pytest.raises(ValueError, match="group"):
            query_from_json({"op": "splice", "parts": [{"text": "milk"}]})
        with pytest.raises(ValueError):
            query_from_json({"op": "splice", "parts": [{"text": "milk "}, {"condition": "p1"}]})

    def test_splice_round_trip(self) -> None:
        expr = parse_query("milk (p1 | p2) & x").expr
        assert expr is not None
        assert query_to_json(expr)["children"][0]["op"] == "splice"
        assert query_from_json(query_to_json(expr)) == expr

    def test_depth_guardrail(self) -> None:
        payload: dict = {"condition": "p1"}
        for _ in range(5):
            payload = {"op": "not", "inner": payload}
        with pytest.raises(ValueError, match="depth"):
            query_from_json(payload, max_depth=3)


class TestValidateQueryAst:
    def test_counts(self) -> None:
        expr = parse_query("(p1 | p2) & p3").expr
        assert expr is not None
        assert count_nodes(expr) == 6
        assert measure_depth(expr) == 4

    def test_counts_splice(self) -> None:
        expr = parse_query("foo (p1)").expr
        assert expr is not None
        assert count_nodes(expr) == 3
        assert measure_depth(expr) == 3

    def test_empty_group(self) -> None:
        errors = validate_query_ast(And(()))
        assert [e.code for e in errors] == ["empty_group"]

    def test_empty_condition_path(self) -> None:
        errors = validate_query_ast(Or((Predicate("p1"), Not(Predicate("")))))
        assert errors[0].code == "empty_condition"
        assert errors[0].path == "children.1.inner"
