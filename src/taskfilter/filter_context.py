"""Name -> id lookup tables for project, label and section conditions.

Names are not unique (two projects may both be called "Work"), so every
table maps a lowercase name to the *set* of ids sharing it.
"""
from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from taskfilter.task_types import NamedEntity, entity_from_json

NameIndex = Mapping[str, frozenset[str]]
EntityLike = NamedEntity | Mapping[str, Any] | tuple[str, str]


@dataclass(frozen=True, slots=True)
class FilterContext:
    """Precomputed lookup tables referenced by ``#``, ``@`` and ``/`` conditions."""

    projects: NameIndex = field(default_factory=dict)
    labels: NameIndex = field(default_factory=dict)
    sections: NameIndex = field(default_factory=dict)


def index_by_name(entities: Iterable[EntityLike]) -> dict[str, frozenset[str]]:
    """Group entity ids by lowercase name, keeping every id on collisions."""
    grouped: defaultdict[str, set[str]] = defaultdict(set)
    for raw in entities:
        entity = entity_from_json(raw)
        grouped[entity.name.lower()].add(entity.id)
    return {name: frozenset(ids) for name, ids in grouped.items()}


def build_filter_context(
    projects: Iterable[EntityLike],
    labels: Iterable[EntityLike],
    sections: Iterable[EntityLike] = (),
) -> FilterContext:
    """Build a ``FilterContext`` from raw (id, name) collections.

    Accepts ``NamedEntity`` objects, ``{"id", "name"}`` mappings or
    ``(id, name)`` pairs. Callers that evaluate on every keystroke may
    cache the result.
    """
    return FilterContext(
        projects=index_by_name(projects),
        labels=index_by_name(labels),
        sections=index_by_name(sections),
    )
