"""Tokenizer and recursive-descent parser for filter queries.

Grammar (PEG-flavoured)::

    query     := or_expr EOF
    or_expr   := and_expr ('|' and_expr)*
    and_expr  := not_expr ('&' not_expr)*
    not_expr  := '!'* splice
    splice    := atom (atom | '!')*
    atom      := '(' or_expr ')' | TEXT
    TEXT      := run of characters up to the next operator or
                 structural parenthesis; '"..."' spans are literal

``&`` binds tighter than ``|``; ``!`` binds tightest. ``!`` is an
operator only at the start of an operand and only when an operand
follows it, so ``hello!`` and a lone ``!`` are plain text. Parentheses
are structural only when balanced and non-empty; otherwise they are
text. Quoted spans let a condition contain operator characters:
``@"a|b"`` is the label ``a|b``.

The parser never raises. Problems are collected as ``QueryParseError``
values and the parser recovers by skipping the offending operand.
Operands written side by side with no operator (``milk (p1)``) are an
error too, but are kept as one ``Splice`` rather than dropped.

Public API:

* ``normalize_query(text)``: trim + lowercase.
* ``tokenize_query(text)``: token list (ends with ``EOF``).
* ``parse_query(text, settings)``: ``QueryParseResult``.
* ``validate_query(text, settings)``: parse plus guardrail checks.
* ``parse_result_to_json(result)``: JSON-ready dict for callers.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from taskfilter.conditions import classify_condition
from taskfilter.config import FilterSettings
from taskfilter.query_ast import (
    And,
    Group,
    Literal,
    Not,
    Or,
    QueryNode,
    Splice,
    query_to_json,
    serialize_query,
    validate_query_ast,
)

# ---------------------------------------------------------------------------
# Parse result
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class QueryParseError:
    """A single parse problem with position information."""

    message: str
    position: int = 0  # character offset in the normalized query
    code: str = "syntax"  # "syntax" | "max_depth" | "max_nodes" | "max_query_length" | ...


@dataclass(frozen=True, slots=True)
class QueryParseResult:
    """Result of parsing a query string.

    ``expr`` is ``None`` only for the empty query.
    """

    expr: QueryNode | None
    errors: tuple[QueryParseError, ...]
    source: str            # normalized input
    normalized_text: str   # canonical serialization of ``expr``

    @property
    def ok(self) -> bool:
        """True if parsing succeeded with no errors."""
        return len(self.errors) == 0

    @property
    def is_empty(self) -> bool:
        return self.expr is None


# ---------------------------------------------------------------------------
# Tokenizer
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class QueryToken:
    """A single lexical token."""

    kind: str  # "TEXT" | "PIPE" | "AMP" | "BANG" | "LPAREN" | "RPAREN" | "EOF"
    value: str
    pos: int
    quoted: bool = False


_OPERATOR_KINDS: dict[str, str] = {"|": "PIPE", "&": "AMP"}

# Tokens that can follow an operand only when no operator joins them
_SPLICE_KINDS: frozenset[str] = frozenset({"TEXT", "BANG", "LPAREN"})


def normalize_query(text: str) -> str:
    """Trim and lowercase; the language is case-insensitive."""
    return text.strip().lower()


def _quote_spans(text: str) -> dict[int, int]:
    """Map each opening ``"`` to its closing ``"``. Unpaired quotes are text."""
    spans: dict[int, int] = {}
    open_at: int | None = None
    for i, ch in enumerate(text):
        if ch != '"':
            continue
        if open_at is None:
            open_at = i
        else:
            spans[open_at] = i
            open_at = None
    return spans


def _structural_parens(text: str, quotes: dict[int, int]) -> set[int]:
    """Positions of parentheses that group: balanced, non-empty, unquoted."""
    structural: set[int] = set()
    stack: list[int] = []
    i = 0
    while i < len(text):
        if i in quotes:
            i = quotes[i] + 1
            continue
        ch = text[i]
        if ch == "(":
            stack.append(i)
        elif ch == ")" and stack:
            start = stack.pop()
            if text[start + 1:i].strip():
                structural.update((start, i))
        i += 1
    return structural


def _bang_is_operator(text: str, pos: int, parens: set[int]) -> bool:
    """A ``!`` negates only when an operand follows it."""
    j = pos + 1
    while j < len(text) and text[j].isspace():
        j += 1
    if j >= len(text):
        return False
    ch = text[j]
    if ch in _OPERATOR_KINDS:
        return False
    return not (ch == ")" and j in parens)


def tokenize_query(text: str) -> list[QueryToken]:
    """Tokenize normalized query text into a list of tokens."""
    quotes = _quote_spans(text)
    parens = _structural_parens(text, quotes)
    tokens: list[QueryToken] = []
    pos = 0
    n = len(text)
    while pos < n:
        ch = text[pos]
        if ch.isspace():
            pos += 1
            continue
        if ch in _OPERATOR_KINDS:
            tokens.append(QueryToken(_OPERATOR_KINDS[ch], ch, pos))
            pos += 1
            continue
        if pos in parens:
            tokens.append(QueryToken("LPAREN" if ch == "(" else "RPAREN", ch, pos))
            pos += 1
            continue
        if ch == "!" and _bang_is_operator(text, pos, parens):
            tokens.append(QueryToken("BANG", ch, pos))
            pos += 1
            continue

        # Condition text: up to the next operator or structural paren
        start = pos
        buf: list[str] = []
        quoted = False
        while pos < n:
            ch = text[pos]
            if ch in _OPERATOR_KINDS or pos in parens:
                break
            if pos in quotes:
                end = quotes[pos]
                buf.append(text[pos + 1:end])
                quoted = True
                pos = end + 1
                continue
            buf.append(ch)
            pos += 1
        value = "".join(buf).strip()
        if value:
            tokens.append(QueryToken("TEXT", value, start, quoted))
    tokens.append(QueryToken("EOF", "", n))
    return tokens


# ---------------------------------------------------------------------------
# Recursive descent parser
# ---------------------------------------------------------------------------

class _Parser:
    """Recursive descent parser for the query grammar."""

    def __init__(self, tokens: list[QueryToken], max_depth: int, source: str = "") -> None:
        self._tokens = tokens
        self._source = source
        self._max_depth = max_depth
        self._pos = 0
        self._errors: list[QueryParseError] = []

    @property
    def errors(self) -> tuple[QueryParseError, ...]:
        return tuple(self._errors)

    def _peek(self) -> QueryToken:
        return self._tokens[self._pos]

    def _advance(self) -> QueryToken:
        tok = self._tokens[self._pos]
        if self._pos < len(self._tokens) - 1:
            self._pos += 1
        return tok

    def _error(self, msg: str, pos: int | None = None, code: str = "syntax") -> None:
        self._errors.append(QueryParseError(
            message=msg,
            position=pos if pos is not None else self._peek().pos,
            code=code,
        ))

    # ─── Top-level ────────────────────────────────────────────────

    def parse_query(self) -> QueryNode | None:
        expr = self._parse_or_expr(depth=0)
        tok = self._peek()
        if tok.kind != "EOF":
            self._error(
                f"Unexpected {tok.value!r}; conditions must be joined with '&' or '|'",
                tok.pos,
            )
        return expr

    # ─── Expressions ──────────────────────────────────────────────

    def _parse_or_expr(self, depth: int) -> QueryNode | None:
        """or_expr := and_expr ('|' and_expr)*"""
        parts: list[QueryNode] = []
        first = self._parse_and_expr(depth)
        if first is not None:
            parts.append(first)
        while self._peek().kind == "PIPE":
            op = self._advance()
            if self._peek().kind in ("PIPE", "EOF", "RPAREN"):
                self._error("Missing condition after '|'", op.pos)
                continue
            right = self._parse_and_expr(depth)
            if right is not None:
                parts.append(right)

        if not parts:
            return None
        if len(parts) == 1:
            return parts[0]
        return Or(tuple(parts))

    def _parse_and_expr(self, depth: int) -> QueryNode | None:
        """and_expr := not_expr ('&' not_expr)*"""
        parts: list[QueryNode] = []
        first = self._parse_not_expr(depth)
        if first is not None:
            parts.append(first)
        while self._peek().kind == "AMP":
            op = self._advance()
            if self._peek().kind in ("AMP", "PIPE", "EOF", "RPAREN"):
                self._error("Missing condition after '&'", op.pos)
                continue
            right = self._parse_not_expr(depth)
            if right is not None:
                parts.append(right)

        if not parts:
            return None
        if len(parts) == 1:
            return parts[0]
        return And(tuple(parts))

    def _parse_not_expr(self, depth: int) -> QueryNode | None:
        """not_expr := '!'* atom

        Negations are counted rather than recursed, so ``!!x`` is ``x``.
        """
        negations = 0
        while self._peek().kind == "BANG":
            self._advance()
            negations += 1
        first_tok = self._peek()
        operand = self._parse_atom(depth)
        if operand is None:
            return None
        if self._peek().kind in _SPLICE_KINDS:
            operand = self._parse_splice(first_tok, operand, depth)
        return Not(operand) if negations % 2 else operand

    def _parse_atom(self, depth: int) -> QueryNode | None:
        """atom := '(' or_expr ')' | TEXT"""
        tok = self._peek()

        if tok.kind == "LPAREN":
            self._advance()
            if depth + 1 > self._max_depth:
                self._error(
                    f"Parentheses nested deeper than {self._max_depth}",
                    tok.pos,
                    code="max_depth",
                )
                self._skip_group()
                return None
            inner = self._parse_or_expr(depth + 1)
            if self._peek().kind == "RPAREN":
                self._advance()
            else:
                self._error("Expected closing ')'")
            if inner is None:
                return None
            return Group(inner)

        if tok.kind == "TEXT":
            self._advance()
            if not tok.quoted and tok.value in ("true", "false"):
                return Literal(tok.value == "true")
            return classify_condition(tok.value)

        if tok.kind == "EOF":
            self._error("Missing condition at end of query", tok.pos)
        else:
            # Leave the operator for the enclosing loop to consume
            self._error(f"Missing condition before {tok.value!r}", tok.pos)
        return None

    def _parse_splice(self, first_tok: QueryToken, first: QueryNode, depth: int) -> QueryNode:
        """Collect operands written side by side into one ``Splice``.

        Text between groups is kept verbatim from the source so it is
        matched exactly as typed.
        """
        tok = self._peek()
        self._error(
            f"Unexpected {tok.value!r}; conditions must be joined with '&' or '|'",
            tok.pos,
        )
        parts: list[str | Group] = []
        cursor = first_tok.pos
        if isinstance(first, Group):
            parts.append(first)
            cursor = self._consumed_end()
        while self._peek().kind in _SPLICE_KINDS:
            tok = self._peek()
            if tok.kind != "LPAREN":
                self._advance()
                continue
            group = self._parse_atom(depth)
            # A group skipped for depth stays in the text
            if isinstance(group, Group):
                if tok.pos > cursor:
                    parts.append(self._source[cursor:tok.pos])
                parts.append(group)
                cursor = self._consumed_end()
        tail = self._source[cursor:self._peek().pos].rstrip()
        if tail:
            parts.append(tail)
        if not any(isinstance(p, Group) for p in parts):
            return classify_condition("".join(parts))
        return Splice(tuple(parts))

    def _consumed_end(self) -> int:
        """Source offset just past the last consumed token (a ')')."""
        return self._tokens[self._pos - 1].pos + 1

    def _skip_group(self) -> None:
        """Consume tokens through the ')' matching an already-consumed '('."""
        level = 1
        while self._peek().kind != "EOF":
            tok = self._advance()
            if tok.kind == "LPAREN":
                level += 1
            elif tok.kind == "RPAREN":
                level -= 1
                if level == 0:
                    return


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def parse_query(text: str, settings: FilterSettings | None = None) -> QueryParseResult:
    """Parse query text into an AST.

    Parameters
    ----------
    text:
        Raw query text (e.g. ``"p1 & #work | @urgent"``). Normalized here.
    settings:
        Parser guardrails; defaults to ``FilterSettings()``.

    Returns
    -------
    QueryParseResult
        ``expr`` is ``None`` for the empty query. When nothing parseable
        remains, ``expr`` is the whole query as one free-text condition.
    """
    if settings is None:
        settings = FilterSettings()

    source = normalize_query(text)
    if not source:
        return QueryParseResult(expr=None, errors=(), source="", normalized_text="")

    parser = _Parser(tokenize_query(source), max_depth=settings.max_depth, source=source)
    expr = parser.parse_query()
    if expr is None:
        expr = classify_condition(source)

    return QueryParseResult(
        expr=expr,
        errors=parser.errors,
        source=source,
        normalized_text=serialize_query(expr),
    )


def validate_query(text: str, settings: FilterSettings | None = None) -> QueryParseResult:
    """Parse and validate query text. Returns the parse result with all guardrail errors.

    This is the entry point for "is this filter valid?" checks in saved
    filter dialogs. The engine itself evaluates invalid queries anyway.
    """
    if settings is None:
        settings = FilterSettings()
    result = parse_query(text, settings)

    extra: list[QueryParseError] = []
    if len(result.source) > settings.max_query_length:
        extra.append(QueryParseError(
            message=(
                f"Query is {len(result.source)} characters, "
                f"maximum is {settings.max_query_length}"
            ),
            code="max_query_length",
        ))
    if result.expr is not None:
        for e in validate_query_ast(
            result.expr, max_depth=settings.max_depth, max_nodes=settings.max_nodes,
        ):
            # Depth overruns are already reported by the parser
            if e.code == "max_depth" and any(p.code == "max_depth" for p in result.errors):
                continue
            extra.append(QueryParseError(message=e.message, code=e.code))

    if not extra:
        return result
    return QueryParseResult(
        expr=result.expr,
        errors=result.errors + tuple(extra),
        source=result.source,
        normalized_text=result.normalized_text,
    )


def parse_result_to_json(result: QueryParseResult) -> dict[str, Any]:
    """Convert a QueryParseResult to a JSON-serializable dict."""
    return {
        "query": result.source,
        "ast": query_to_json(result.expr) if result.expr is not None else None,
        "normalized_text": result.normalized_text,
        "errors": [
            {"message": e.message, "position": e.position, "code": e.code}
            for e in result.errors
        ],
        "ok": result.ok,
    }
