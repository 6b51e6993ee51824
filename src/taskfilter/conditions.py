"""Atomic filter conditions: classification and per-task matching.

A condition is classified once, when the query is parsed, into a
``Predicate(kind, argument)``. Matching a task is then a dispatch on
``kind``. Classification order decides which reading wins for text that
could mean two things; anything unrecognised is a free-text search.

Supported conditions (first match wins)::

    recurring
    assigned | unassigned
    delegated | delegated:* | delegated:<name>
    has:date | has:deadline | has:description | has:labels | has:duration
    search:<text>
    today | tomorrow | overdue
    no date | no due date | no deadline
    deadline:today | deadline:tomorrow | deadline:overdue
    deadline before:<date> | deadline after:<date>
    due before:<date> | due after:<date>
    <N> days | next <N> days
    p1 | p2 | p3 | p4
    #<project>   (supports * wildcard)
    @<label>     (supports * wildcard)
    /<section>   (supports * wildcard)
    <anything else>: substring of content or description

Completed and soft-deleted tasks are removed by the engine before any
condition runs (see ``filter_engine.is_filterable``).
"""
from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime

from taskfilter.clock import DayWindows, localize
from taskfilter.filter_context import FilterContext, NameIndex
from taskfilter.glob_match import GlobMatcher, has_wildcard
from taskfilter.query_ast import Predicate
from taskfilter.task_types import Task

# ---------------------------------------------------------------------------
# Evaluation environment
# ---------------------------------------------------------------------------

@dataclass(slots=True)
class EvalEnv:
    """Everything a condition may consult besides the task itself.

    Built once per evaluation call: one clock read, one context.
    """

    context: FilterContext
    windows: DayWindows
    glob: GlobMatcher
    resolve_date: Callable[[str, datetime], datetime | None]
    _date_cache: dict[str, datetime | None] = field(default_factory=dict)

    def literal_date(self, text: str) -> datetime | None:
        """Resolve a ``before:``/``after:`` operand, once per call."""
        if text not in self._date_cache:
            self._date_cache[text] = self.resolve_date(text, self.windows.now)
        return self._date_cache[text]

    def instant(self, value: datetime) -> datetime:
        """Read naive task instants in the clock's timezone."""
        return localize(value, self.windows.now.tzinfo)


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

_DAYS_RE = re.compile(r"^(?:next\s+)?(\d+)\s*days?$")
_PRIORITY_RE = re.compile(r"^p([1-4])$")

_EXACT_KINDS: dict[str, str] = {
    "recurring": "recurring",
    "assigned": "assigned",
    "unassigned": "unassigned",
    "delegated": "delegated",
    "has:date": "has_date",
    "has:deadline": "has_deadline",
    "has:description": "has_description",
    "has:labels": "has_labels",
    "has:duration": "has_duration",
}

_DUE_WINDOW_KINDS: dict[str, str] = {
    "today": "due_today",
    "tomorrow": "due_tomorrow",
    "overdue": "due_overdue",
}

_MISSING_KINDS: dict[str, str] = {
    "no date": "no_date",
    "no due date": "no_date",
    "no deadline": "no_deadline",
}

_DEADLINE_WINDOW_KINDS: dict[str, str] = {
    "deadline:today": "deadline_today",
    "deadline:tomorrow": "deadline_tomorrow",
    "deadline:overdue": "deadline_overdue",
}

# Prefix -> kind for "<field> before:/after: <date>"
_COMPARISON_PREFIXES: tuple[tuple[str, str], ...] = (
    ("deadline before:", "deadline_before"),
    ("deadline after:", "deadline_after"),
    ("due before:", "due_before"),
    ("due after:", "due_after"),
)

_SIGIL_KINDS: dict[str, str] = {"#": "project", "@": "label", "/": "section"}


def classify_condition(text: str) -> Predicate:
    """Classify normalized condition text into a ``Predicate``.

    ``text`` is expected trimmed and lowercased. Never raises: text that
    fits no keyword becomes a ``"text"`` (substring search) predicate.
    """
    c = text.strip().lower()

    if c in _EXACT_KINDS:
        return Predicate(c, _EXACT_KINDS[c])

    if c.startswith("delegated:"):
        name = c[len("delegated:"):].strip()
        if name == "*":
            return Predicate(c, "delegated")
        return Predicate(c, "delegated_to", name)

    if c.startswith("search:"):
        return Predicate(c, "search", c[len("search:"):].strip())

    if c in _DUE_WINDOW_KINDS:
        return Predicate(c, _DUE_WINDOW_KINDS[c])
    if c in _MISSING_KINDS:
        return Predicate(c, _MISSING_KINDS[c])
    if c in _DEADLINE_WINDOW_KINDS:
        return Predicate(c, _DEADLINE_WINDOW_KINDS[c])

    for prefix, kind in _COMPARISON_PREFIXES:
        if c.startswith(prefix):
            return Predicate(c, kind, c[len(prefix):].strip())

    m = _DAYS_RE.match(c)
    if m:
        return Predicate(c, "within_days", m.group(1))

    m = _PRIORITY_RE.match(c)
    if m:
        return Predicate(c, "priority", m.group(1))

    if c[:1] in _SIGIL_KINDS:
        return Predicate(c, _SIGIL_KINDS[c[:1]], c[1:].strip())

    return Predicate(c, "text", c)


# ---------------------------------------------------------------------------
# Matchers
# ---------------------------------------------------------------------------

def _contains_text(task: Task, needle: str) -> bool:
    if needle in task.content.lower():
        return True
    return task.description is not None and needle in task.description.lower()


def _in_window(value: datetime | None, start: datetime, end: datetime, env: EvalEnv) -> bool:
    if value is None:
        return False
    return start <= env.instant(value) <= end


def _before_today(value: datetime | None, env: EvalEnv) -> bool:
    if value is None:
        return False
    return env.instant(value) < env.windows.today_start


def _compare(value: datetime | None, pred: Predicate, env: EvalEnv, *, before: bool) -> bool:
    if value is None:
        return False
    target = env.literal_date(pred.argument)
    if target is None:
        return False
    moment = env.instant(value)
    return moment < target if before else moment > target


def _match_entity(
    entity_id: str | None,
    argument: str,
    index: NameIndex,
    env: EvalEnv,
) -> bool:
    """Shared logic for project and section membership."""
    if has_wildcard(argument):
        if entity_id is None:
            return False
        return any(
            entity_id in ids
            for name, ids in index.items()
            if env.glob.matches(argument, name)
        )
    ids = index.get(argument)
    if ids is not None:
        return entity_id in ids
    # Raw id passed directly (e.g. "#proj-1")
    return entity_id == argument


def _match_label(task: Task, argument: str, env: EvalEnv) -> bool:
    if not task.labels:
        return False
    if has_wildcard(argument):
        return any(env.glob.matches(argument, lb.name.lower()) for lb in task.labels)
    return any(lb.name.lower() == argument for lb in task.labels)


def _match_within_days(task: Task, pred: Predicate, env: EvalEnv) -> bool:
    if task.due_date is None:
        return False
    return _in_window(
        task.due_date,
        env.windows.today_start,
        env.windows.horizon_end(int(pred.argument)),
        env,
    )


Matcher = Callable[[Task, Predicate, EvalEnv], bool]

_MATCHERS: dict[str, Matcher] = {
    "recurring": lambda t, p, e: bool(t.recurrence_rule),
    "assigned": lambda t, p, e: t.project_id is not None,
    "unassigned": lambda t, p, e: t.project_id is None,
    "delegated": lambda t, p, e: bool(t.delegated_to),
    "delegated_to": lambda t, p, e: (
        t.delegated_to is not None and t.delegated_to.lower() == p.argument
    ),
    "has_date": lambda t, p, e: t.due_date is not None,
    "has_deadline": lambda t, p, e: t.deadline is not None,
    "has_description": lambda t, p, e: bool(t.description),
    "has_labels": lambda t, p, e: bool(t.labels),
    "has_duration": lambda t, p, e: t.duration is not None and t.duration > 0,
    "search": lambda t, p, e: _contains_text(t, p.argument),
    "due_today": lambda t, p, e: _in_window(t.due_date, e.windows.today_start, e.windows.today_end, e),
    "due_tomorrow": lambda t, p, e: _in_window(
        t.due_date, e.windows.tomorrow_start, e.windows.tomorrow_end, e,
    ),
    "due_overdue": lambda t, p, e: _before_today(t.due_date, e),
    "no_date": lambda t, p, e: t.due_date is None,
    "no_deadline": lambda t, p, e: t.deadline is None,
    "deadline_today": lambda t, p, e: _in_window(
        t.deadline, e.windows.today_start, e.windows.today_end, e,
    ),
    "deadline_tomorrow": lambda t, p, e: _in_window(
        t.deadline, e.windows.tomorrow_start, e.windows.tomorrow_end, e,
    ),
    "deadline_overdue": lambda t, p, e: _before_today(t.deadline, e),
    "deadline_before": lambda t, p, e: _compare(t.deadline, p, e, before=True),
    "deadline_after": lambda t, p, e: _compare(t.deadline, p, e, before=False),
    "due_before": lambda t, p, e: _compare(t.due_date, p, e, before=True),
    "due_after": lambda t, p, e: _compare(t.due_date, p, e, before=False),
    "within_days": _match_within_days,
    "priority": lambda t, p, e: t.priority == int(p.argument),
    "project": lambda t, p, e: _match_entity(t.project_id, p.argument, e.context.projects, e),
    "label": lambda t, p, e: _match_label(t, p.argument, e),
    "section": lambda t, p, e: _match_entity(t.section_id, p.argument, e.context.sections, e),
    "text": lambda t, p, e: _contains_text(t, p.argument),
}

CONDITION_KINDS: frozenset[str] = frozenset(_MATCHERS)


def evaluate_condition(task: Task, pred: Predicate, env: EvalEnv) -> bool:
    """Match one classified condition against one task.

    Unknown kinds (e.g. from a hand-built AST) fall back to substring
    search on the condition text.
    """
    matcher = _MATCHERS.get(pred.kind)
    if matcher is None:
        return _contains_text(task, pred.text)
    return matcher(task, pred, env)
