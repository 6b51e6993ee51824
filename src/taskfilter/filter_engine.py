"""Filter engine entry point: which tasks match this query?

``evaluate_filter(tasks, query, context)`` is a pure function. The result
is a sub-sequence of ``tasks`` (same objects, same relative order).

Rules applied here, once per call:

* The empty (or all-whitespace) query is the identity: nothing is
  filtered, not even completed or deleted tasks.
* Any other query first drops completed and soft-deleted tasks, so no
  condition (negated or not) can ever select them.
* The clock is read once, so every task sees the same "today".
* Malformed queries never raise; the parser's recovered AST is evaluated
  and the problems are logged at DEBUG.
"""
from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator, Sequence
from functools import lru_cache, partial
from typing import Any

from taskfilter.clock import Clock, DateResolver, DayWindows, SystemClock, resolve_literal_date
from taskfilter.conditions import EvalEnv
from taskfilter.config import FilterSettings
from taskfilter.evaluator import evaluate_node
from taskfilter.filter_context import FilterContext
from taskfilter.glob_match import CachedGlobMatcher, GlobMatcher
from taskfilter.query_parser import (
    QueryParseResult,
    normalize_query,
    parse_query,
    parse_result_to_json,
    validate_query,
)
from taskfilter.task_types import Task

logger = logging.getLogger(__name__)


def is_filterable(task: Task) -> bool:
    """Completed and soft-deleted tasks never match a non-empty query."""
    return not task.completed and task.deleted_at is None


class FilterEngine:
    """Parses, caches and evaluates filter queries.

    One engine can serve many callers: it holds no per-call state, and the
    parse cache is keyed on the normalized query text.
    """

    def __init__(
        self,
        settings: FilterSettings | None = None,
        *,
        clock: Clock | None = None,
        date_resolver: DateResolver | None = None,
        glob_matcher: GlobMatcher | None = None,
    ) -> None:
        self._settings = settings or FilterSettings()
        self._clock: Clock = clock or SystemClock()
        self._resolve_date: DateResolver = date_resolver or partial(
            resolve_literal_date, formats=self._settings.date_formats,
        )
        self._glob: GlobMatcher = glob_matcher or CachedGlobMatcher()
        self._parse = lru_cache(maxsize=self._settings.parse_cache_size)(self._parse_uncached)

    @property
    def settings(self) -> FilterSettings:
        return self._settings

    def _parse_uncached(self, normalized: str) -> QueryParseResult:
        result = parse_query(normalized, self._settings)
        if not result.ok:
            logger.debug(
                "Recovered from %d parse error(s) in %r: %s",
                len(result.errors),
                normalized,
                "; ".join(e.message for e in result.errors),
            )
        return result

    def parse(self, query: str) -> QueryParseResult:
        """Parse ``query`` (memoized on its normalized text)."""
        return self._parse(normalize_query(query))

    def _env(self, context: FilterContext) -> EvalEnv:
        return EvalEnv(
            context=context,
            windows=DayWindows.from_now(self._clock.now()),
            glob=self._glob,
            resolve_date=self._resolve_date,
        )

    # ─── Evaluation ───────────────────────────────────────────────

    def evaluate(
        self,
        tasks: Sequence[Task],
        query: str,
        context: FilterContext,
    ) -> list[Task]:
        """Return the tasks matching ``query``, in their original order."""
        result = self.parse(query)
        if result.expr is None:
            return list(tasks)

        env = self._env(context)
        expr = result.expr
        matched = [
            task for task in tasks
            if is_filterable(task) and evaluate_node(expr, task, env)
        ]
        logger.debug("Query %r matched %d of %d tasks", result.source, len(matched), len(tasks))
        return matched

    def matches(self, task: Task, query: str, context: FilterContext) -> bool:
        """Single-task form of ``evaluate``."""
        result = self.parse(query)
        if result.expr is None:
            return True
        if not is_filterable(task):
            return False
        return evaluate_node(result.expr, task, self._env(context))

    def iter_matches(
        self,
        tasks: Iterable[Task],
        query: str,
        context: FilterContext,
    ) -> Iterator[Task]:
        """Lazy variant of ``evaluate`` for callers that page results."""
        result = self.parse(query)
        if result.expr is None:
            yield from tasks
            return
        env = self._env(context)
        for task in tasks:
            if is_filterable(task) and evaluate_node(result.expr, task, env):
                yield task

    # ─── Introspection ────────────────────────────────────────────

    def validate(self, query: str) -> QueryParseResult:
        """Parse plus guardrail checks, for "is this filter valid?" UX."""
        return validate_query(query, self._settings)

    def explain(self, query: str) -> dict[str, Any]:
        """JSON-ready description of how ``query`` is understood."""
        return parse_result_to_json(self.validate(query))


_DEFAULT_ENGINE = FilterEngine()


def evaluate_filter(
    tasks: Sequence[Task],
    query: str,
    context: FilterContext,
    *,
    clock: Clock | None = None,
) -> list[Task]:
    """Filter ``tasks`` by ``query``.

    Parameters
    ----------
    tasks:
        Already-loaded task snapshot. Not modified.
    query:
        Filter text, e.g. ``"(p1 | p2) & #work & !@waiting"``.
    context:
        Name lookup tables from ``build_filter_context``.
    clock:
        Source of "now" for ``today``/``tomorrow``/``overdue``-style
        conditions; defaults to the system clock.

    Returns
    -------
    list[Task]
        Matching tasks in input order. For the empty query, every task.
    """
    engine = _DEFAULT_ENGINE if clock is None else FilterEngine(clock=clock)
    return engine.evaluate(tasks, query, context)
