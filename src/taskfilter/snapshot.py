"""JSON task snapshots: the offline stand-in for the repositories.

Shape::

    {
      "tasks":    [{"id": "t1", "content": "...", "projectId": "p1", ...}],
      "projects": [{"id": "p1", "name": "Work"}],
      "labels":   [{"id": "l1", "name": "urgent"}],
      "sections": [{"id": "s1", "name": "To Do"}]
    }

Only ``tasks`` is required.
"""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

import orjson

from taskfilter.filter_context import FilterContext, build_filter_context
from taskfilter.task_types import (
    NamedEntity,
    SnapshotError,
    Task,
    entity_from_json,
    task_from_json,
)


@dataclass(frozen=True, slots=True)
class TaskSnapshot:
    """Tasks plus the entity collections their conditions refer to."""

    tasks: tuple[Task, ...]
    projects: tuple[NamedEntity, ...] = ()
    labels: tuple[NamedEntity, ...] = ()
    sections: tuple[NamedEntity, ...] = ()

    def context(self) -> FilterContext:
        return build_filter_context(self.projects, self.labels, self.sections)


def _records(data: dict[str, Any], key: str) -> list[Any]:
    raw = data.get(key) or []
    if not isinstance(raw, list):
        raise SnapshotError(f"Snapshot '{key}' must be a list")
    return raw


def snapshot_from_json(data: Any) -> TaskSnapshot:
    """Build a TaskSnapshot from decoded JSON."""
    if not isinstance(data, dict):
        raise SnapshotError("Snapshot must be a JSON object")
    if "tasks" not in data:
        raise SnapshotError("Snapshot has no 'tasks' list")
    return TaskSnapshot(
        tasks=tuple(task_from_json(t) for t in _records(data, "tasks")),
        projects=tuple(entity_from_json(p) for p in _records(data, "projects")),
        labels=tuple(entity_from_json(lb) for lb in _records(data, "labels")),
        sections=tuple(entity_from_json(s) for s in _records(data, "sections")),
    )


def load_snapshot(path: Path) -> TaskSnapshot:
    """Read and coerce a snapshot file. Raises ``SnapshotError`` on bad input."""
    try:
        data = orjson.loads(path.read_bytes())
    except orjson.JSONDecodeError as exc:
        raise SnapshotError(f"Snapshot is not valid JSON: {path}: {exc}") from exc
    return snapshot_from_json(data)
