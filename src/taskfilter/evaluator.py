"""Tree-walking evaluation of a parsed query against one task.

Three pieces:

* **Boolean combinator**: ``Or`` is true when any child is, ``And`` when
  every child is, ``Not`` negates, ``Literal`` is itself. Precedence is
  already fixed by the parser's tree shape.
* **Grouping resolver**: a ``Group`` is resolved to the boolean of its
  inner expression for the same task before the enclosing operator
  sees it. Resolution is bottom-up because the walk is depth-first.
* **Splice**: each group is replaced by ``true`` or ``false`` in the
  surrounding text and the result is matched as one condition, so
  ``milk (p1)`` searches for "milk true" or "milk false".

Leaves are handed to ``conditions.evaluate_condition``.
"""
from __future__ import annotations

from taskfilter.conditions import EvalEnv, classify_condition, evaluate_condition
from taskfilter.query_ast import And, Group, Literal, Not, Or, Predicate, QueryNode, Splice
from taskfilter.task_types import Task


def resolve_group(group: Group, task: Task, env: EvalEnv) -> bool:
    """Evaluate a parenthesized sub-expression for ``task``."""
    return evaluate_node(group.inner, task, env)


def resolve_splice(splice: Splice, task: Task, env: EvalEnv) -> bool:
    """Substitute resolved groups into the text and match it as one condition."""
    text = "".join(
        part if isinstance(part, str) else ("true" if resolve_group(part, task, env) else "false")
        for part in splice.parts
    ).strip()
    return evaluate_condition(task, classify_condition(text), env)


def evaluate_node(node: QueryNode, task: Task, env: EvalEnv) -> bool:
    """Evaluate ``node`` for one task. ``any``/``all`` short-circuit."""
    if isinstance(node, Predicate):
        return evaluate_condition(task, node, env)
    if isinstance(node, Literal):
        return node.value
    if isinstance(node, Group):
        return resolve_group(node, task, env)
    if isinstance(node, Splice):
        return resolve_splice(node, task, env)
    if isinstance(node, Not):
        return not evaluate_node(node.inner, task, env)
    if isinstance(node, And):
        return all(evaluate_node(c, task, env) for c in node.children)
    if isinstance(node, Or):
        return any(evaluate_node(c, task, env) for c in node.children)
    raise TypeError(f"Unknown query node: {type(node).__name__}")
