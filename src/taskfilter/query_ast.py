"""Tagged-variant AST for filter queries.

Node types:

* **Predicate** (leaf): one atomic condition (``p1``, ``#work``, ``no date``).
* **Literal** (leaf): the ``true`` / ``false`` sentinels.
* **And** / **Or** (compound): n-ary conjunction / disjunction.
* **Not**: negation of one operand.
* **Group**: a parenthesized sub-expression, kept so the text form
  round-trips and so groups are resolved as one unit.
* **Splice**: operands written side by side with no operator between
  them (``milk (p1)``). Each group is resolved to ``true``/``false`` and
  the resulting text is matched as a single condition.

Functions:

* ``query_to_json`` / ``query_from_json``: JSON round-trip for the IPC layer.
* ``serialize_query``: canonical query text.
* ``validate_query_ast``: guardrails (depth, node count, empty groups).
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from taskfilter.config import MAX_AST_DEPTH, MAX_AST_NODES

# ---------------------------------------------------------------------------
# AST node types
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class Predicate:
    """Leaf: one atomic condition, classified once at parse time."""

    text: str          # normalized condition text, quotes removed
    kind: str = "text"  # see conditions.CONDITION_KINDS
    argument: str = ""  # kind-specific operand ("1" for p1, "work" for #work)


@dataclass(frozen=True, slots=True)
class Literal:
    """Leaf: ``true`` or ``false``."""

    value: bool


@dataclass(frozen=True, slots=True)
class And:
    children: tuple[QueryNode, ...]


@dataclass(frozen=True, slots=True)
class Or:
    children: tuple[QueryNode, ...]


@dataclass(frozen=True, slots=True)
class Not:
    inner: QueryNode


@dataclass(frozen=True, slots=True)
class Group:
    """Parenthesized sub-expression."""

    inner: QueryNode


@dataclass(frozen=True, slots=True)
class Splice:
    """Juxtaposed operands.

    ``parts`` alternates raw query text (exact, including spacing) with
    the groups written between it. At least one part is a ``Group``.
    """

    parts: tuple[str | Group, ...]


QueryNode = Predicate | Literal | And | Or | Not | Group | Splice


# ---------------------------------------------------------------------------
# Validation error
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class QueryValidationError:
    """Structured guardrail violation."""

    code: str  # "max_depth" | "max_nodes" | "empty_group" | "empty_condition"
    message: str
    path: str = ""  # dot-separated path into AST (e.g., "children.0.inner")


# ---------------------------------------------------------------------------
# Text serialization
# ---------------------------------------------------------------------------

_OPERATOR_CHARS = frozenset("|&()")


def _needs_quoting(text: str) -> bool:
    if '"' in text:
        return False  # not representable; emit as-is
    if text in ("true", "false") or text.startswith("!"):
        return True
    return any(c in _OPERATOR_CHARS for c in text)


def serialize_query(node: QueryNode) -> str:
    """Serialize an AST to canonical query text.

    Round-trip: ``parse_query(serialize_query(n)).expr == n`` for ASTs the
    parser produces.
    """
    if isinstance(node, Predicate):
        return f'"{node.text}"' if _needs_quoting(node.text) else node.text
    if isinstance(node, Literal):
        return "true" if node.value else "false"
    if isinstance(node, Group):
        return f"({serialize_query(node.inner)})"
    if isinstance(node, Splice):
        return "".join(p if isinstance(p, str) else serialize_query(p) for p in node.parts)
    if isinstance(node, Not):
        inner = node.inner
        if isinstance(inner, And | Or):
            return f"!({serialize_query(inner)})"
        return f"!{serialize_query(inner)}"
    if isinstance(node, And):
        parts = []
        for child in node.children:
            text = serialize_query(child)
            # An OR directly under an AND needs explicit grouping
            parts.append(f"({text})" if isinstance(child, Or) else text)
        return " & ".join(parts)
    # Or
    return " | ".join(serialize_query(c) for c in node.children)


# ---------------------------------------------------------------------------
# JSON serialization
# ---------------------------------------------------------------------------

def query_to_json(node: QueryNode) -> dict[str, Any]:
    """Serialize an AST to a JSON-compatible dict.

    Leaf (Predicate)::

        {"condition": "#work", "kind": "project", "argument": "work"}

    Compound::

        {"op": "and", "children": [...]}
        {"op": "not", "inner": {...}}
        {"op": "splice", "parts": [{"text": "milk "}, {"op": "group", ...}]}
    """
    if isinstance(node, Predicate):
        return {"condition": node.text, "kind": node.kind, "argument": node.argument}
    if isinstance(node, Literal):
        return {"literal": node.value}
    if isinstance(node, Group):
        return {"op": "group", "inner": query_to_json(node.inner)}
    if isinstance(node, Splice):
        return {
            "op": "splice",
            "parts": [
                {"text": p} if isinstance(p, str) else query_to_json(p) for p in node.parts
            ],
        }
    if isinstance(node, Not):
        return {"op": "not", "inner": query_to_json(node.inner)}
    op = "and" if isinstance(node, And) else "or"
    return {"op": op, "children": [query_to_json(c) for c in node.children]}


def query_from_json(
    data: Any,
    *,
    max_depth: int = MAX_AST_DEPTH,
    max_nodes: int = MAX_AST_NODES,
) -> QueryNode:
    """Deserialize a JSON dict into an AST.

    Leaf conditions are re-classified from their text; any ``kind`` in the
    payload is informational only. Raises ``ValueError`` on malformed input.
    """
    from taskfilter.conditions import classify_condition

    if not isinstance(data, dict):
        raise ValueError("Query payload must be an object")

    nodes_seen = 0

    def _parse(node: Any, depth: int) -> QueryNode:
        nonlocal nodes_seen

        if depth > max_depth:
            raise ValueError(f"AST depth {depth} exceeds maximum {max_depth}")
        if not isinstance(node, dict):
            raise ValueError("Query node must be an object")
        nodes_seen += 1
        if nodes_seen > max_nodes:
            raise ValueError(f"AST has {nodes_seen} nodes, maximum is {max_nodes}")

        if "condition" in node:
            text = str(node["condition"]).strip().lower()
            if not text:
                raise ValueError("Condition must not be empty")
            return classify_condition(text)
        if "literal" in node:
            value = node["literal"]
            if not isinstance(value, bool):
                raise ValueError(f"Literal must be a boolean, got {value!r}")
            return Literal(value)

        op = str(node.get("op", "")).lower()
        if op in ("not", "group"):
            if "inner" not in node:
                raise ValueError(f"'{op}' node requires 'inner'")
            inner = _parse(node["inner"], depth + 1)
            return Not(inner) if op == "not" else Group(inner)
        if op in ("and", "or"):
            raw_children = node.get("children")
            if not isinstance(raw_children, list) or not raw_children:
                raise ValueError(f"'{op}' node requires a non-empty 'children' list")
            children = tuple(_parse(c, depth + 1) for c in raw_children)
            return And(children) if op == "and" else Or(children)
        if op == "splice":
            return _parse_splice(node.get("parts"), depth)

        raise ValueError(f"Unrecognised query node shape: {sorted(node.keys())}")

    def _parse_splice(raw_parts: Any, depth: int) -> Splice:
        if not isinstance(raw_parts, list) or not raw_parts:
            raise ValueError("'splice' node requires a non-empty 'parts' list")
        parts: list[str | Group] = []
        for raw in raw_parts:
            if isinstance(raw, dict) and "text" in raw:
                parts.append(str(raw["text"]).lower())
                continue
            part = _parse(raw, depth + 1)
            if not isinstance(part, Group):
                raise ValueError("'splice' parts must be text or groups")
            parts.append(part)
        if not any(isinstance(p, Group) for p in parts):
            raise ValueError("'splice' node requires at least one group")
        return Splice(tuple(parts))

    return _parse(data, 1)


# ---------------------------------------------------------------------------
# AST validation / guardrails
# ---------------------------------------------------------------------------

def count_nodes(node: QueryNode) -> int:
    """Count every node in the AST."""
    if isinstance(node, Predicate | Literal):
        return 1
    if isinstance(node, Not | Group):
        return 1 + count_nodes(node.inner)
    if isinstance(node, Splice):
        return 1 + sum(count_nodes(p) for p in node.parts if isinstance(p, Group))
    return 1 + sum(count_nodes(c) for c in node.children)


def measure_depth(node: QueryNode) -> int:
    """Maximum nesting depth. A single leaf is depth 1."""
    if isinstance(node, Predicate | Literal):
        return 1
    if isinstance(node, Not | Group):
        return 1 + measure_depth(node.inner)
    if isinstance(node, Splice):
        return 1 + max((measure_depth(p) for p in node.parts if isinstance(p, Group)), default=0)
    if not node.children:
        return 1
    return 1 + max(measure_depth(c) for c in node.children)


def validate_query_ast(
    node: QueryNode,
    *,
    max_depth: int = MAX_AST_DEPTH,
    max_nodes: int = MAX_AST_NODES,
) -> list[QueryValidationError]:
    """Check guardrail constraints on ``node``.

    Returns a (possibly empty) list of ``QueryValidationError``.
    Does NOT raise; callers decide whether errors are fatal.
    """
    errors: list[QueryValidationError] = []
    node_count = count_nodes(node)
    if node_count > max_nodes:
        errors.append(QueryValidationError(
            code="max_nodes",
            message=f"AST has {node_count} nodes, maximum is {max_nodes}",
        ))
    depth = measure_depth(node)
    if depth > max_depth:
        errors.append(QueryValidationError(
            code="max_depth",
            message=f"AST depth is {depth}, maximum is {max_depth}",
        ))
    _validate_structure(node, errors, "")
    return errors


def _validate_structure(
    node: QueryNode,
    errors: list[QueryValidationError],
    path: str,
) -> None:
    """Recursively check for structural issues."""
    if isinstance(node, Predicate):
        if not node.text:
            errors.append(QueryValidationError(
                code="empty_condition",
                message="Predicate has empty condition text",
                path=path,
            ))
        return
    if isinstance(node, Literal):
        return
    if isinstance(node, Not | Group):
        child_path = f"{path}.inner" if path else "inner"
        _validate_structure(node.inner, errors, child_path)
        return
    if isinstance(node, Splice):
        for i, part in enumerate(node.parts):
            if isinstance(part, Group):
                child_path = f"{path}.parts.{i}" if path else f"parts.{i}"
                _validate_structure(part, errors, child_path)
        return
    if not node.children:
        errors.append(QueryValidationError(
            code="empty_group",
            message=f"{type(node).__name__} has no children",
            path=path,
        ))
    for i, child in enumerate(node.children):
        child_path = f"{path}.children.{i}" if path else f"children.{i}"
        _validate_structure(child, errors, child_path)
