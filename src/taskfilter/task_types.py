"""Read-only record types consumed by the filter engine.

The engine never owns these records: the persistence layer loads them and
hands the engine a snapshot. Everything here is frozen so the engine can
return the same objects it was given without defensive copies.

Type hierarchy:
  TaskLabel: label attached to a task (joined in by the repository)
  Task: the task view the predicates read
  NamedEntity: (id, name) pair for projects, labels and sections

Snapshot coercion (``task_from_json`` / ``entity_from_json``) accepts the
camelCase keys the application writes as well as snake_case keys.
Instants are epoch milliseconds or ISO-8601 strings.
"""
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any


class SnapshotError(ValueError):
    """Raised when a snapshot record cannot be coerced into a record type."""


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class TaskLabel:
    """A label attached to a task."""

    id: str
    name: str


@dataclass(frozen=True, slots=True)
class Task:
    """Task view read by the predicates.

    ``deleted_at`` set means soft-deleted. ``recurrence_rule`` is opaque;
    only its presence matters here.
    """

    id: str
    content: str
    description: str | None = None
    project_id: str | None = None
    section_id: str | None = None
    labels: tuple[TaskLabel, ...] = ()
    priority: int = 4
    completed: bool = False
    deleted_at: datetime | None = None
    due_date: datetime | None = None
    deadline: datetime | None = None
    duration: int | None = None   # minutes
    recurrence_rule: str | None = None
    delegated_to: str | None = None


@dataclass(frozen=True, slots=True)
class NamedEntity:
    """An (id, name) pair for a project, label or section."""

    id: str
    name: str


# ---------------------------------------------------------------------------
# Snapshot coercion
# ---------------------------------------------------------------------------

_TASK_KEYS: dict[str, tuple[str, ...]] = {
    "description": ("description",),
    "project_id": ("projectId", "project_id"),
    "section_id": ("sectionId", "section_id"),
    "priority": ("priority",),
    "completed": ("completed",),
    "deleted_at": ("deletedAt", "deleted_at"),
    "due_date": ("dueDate", "due_date"),
    "deadline": ("deadline",),
    "duration": ("duration",),
    "recurrence_rule": ("recurrenceRule", "recurrence_rule"),
    "delegated_to": ("delegatedTo", "delegated_to"),
}

_INSTANT_FIELDS: frozenset[str] = frozenset({"deleted_at", "due_date", "deadline"})


def coerce_instant(value: Any) -> datetime | None:
    """Convert epoch milliseconds or an ISO-8601 string to a datetime.

    Epoch values become UTC-aware datetimes. ISO strings keep whatever
    offset they carry; naive results are read in the clock's timezone by
    the predicates.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, bool):
        raise SnapshotError(f"Expected an instant, got boolean {value!r}")
    if isinstance(value, int | float):
        try:
            return datetime.fromtimestamp(value / 1000, tz=UTC)
        except (OverflowError, OSError, ValueError) as exc:
            raise SnapshotError(f"Epoch instant out of range: {value!r}") from exc
    if isinstance(value, str):
        raw = value.strip()
        if raw.endswith(("Z", "z")):
            raw = raw[:-1] + "+00:00"
        try:
            return datetime.fromisoformat(raw)
        except ValueError as exc:
            raise SnapshotError(f"Unparseable instant: {value!r}") from exc
    raise SnapshotError(f"Expected an instant, got {type(value).__name__}")


def _lookup(data: Mapping[str, Any], keys: tuple[str, ...]) -> Any:
    for key in keys:
        if key in data:
            return data[key]
    return None


def label_from_json(data: Any) -> TaskLabel:
    """Build a TaskLabel from ``{"id": ..., "name": ...}``."""
    if not isinstance(data, Mapping):
        raise SnapshotError("Task label must be an object")
    if "id" not in data or "name" not in data:
        raise SnapshotError(f"Task label needs 'id' and 'name', got {sorted(data)}")
    return TaskLabel(id=str(data["id"]), name=str(data["name"]))


def task_from_json(data: Any) -> Task:
    """Build a Task from a snapshot record.

    Raises ``SnapshotError`` on records missing ``id``/``content`` or
    carrying values of the wrong shape.
    """
    if not isinstance(data, Mapping):
        raise SnapshotError("Task record must be an object")
    if "id" not in data:
        raise SnapshotError("Task record has no 'id'")

    fields: dict[str, Any] = {}
    for name, keys in _TASK_KEYS.items():
        value = _lookup(data, keys)
        if value is None:
            continue
        if name in _INSTANT_FIELDS:
            fields[name] = coerce_instant(value)
        elif name == "priority":
            try:
                fields[name] = int(value)
            except (TypeError, ValueError) as exc:
                raise SnapshotError(f"Invalid priority: {value!r}") from exc
        elif name == "duration":
            try:
                fields[name] = int(value)
            except (TypeError, ValueError) as exc:
                raise SnapshotError(f"Invalid duration: {value!r}") from exc
        elif name == "completed":
            fields[name] = bool(value)
        else:
            fields[name] = str(value)

    raw_labels = data.get("labels") or []
    if not isinstance(raw_labels, list | tuple):
        raise SnapshotError("Task 'labels' must be a list")

    return Task(
        id=str(data["id"]),
        content=str(data.get("content") or ""),
        labels=tuple(label_from_json(item) for item in raw_labels),
        **fields,
    )


def entity_from_json(data: Any) -> NamedEntity:
    """Build a NamedEntity from a mapping or an ``(id, name)`` pair."""
    if isinstance(data, NamedEntity):
        return data
    if isinstance(data, Mapping):
        if "id" not in data or "name" not in data:
            raise SnapshotError(f"Entity needs 'id' and 'name', got {sorted(data)}")
        return NamedEntity(id=str(data["id"]), name=str(data["name"]))
    if isinstance(data, list | tuple) and len(data) == 2:
        return NamedEntity(id=str(data[0]), name=str(data[1]))
    raise SnapshotError(f"Unrecognised entity shape: {data!r}")


def task_to_json(task: Task) -> dict[str, Any]:
    """Serialize a Task back to the application's camelCase shape."""

    def _ms(value: datetime | None) -> int | None:
        if value is None:
            return None
        return int(value.timestamp() * 1000)

    return {
        "id": task.id,
        "content": task.content,
        "description": task.description,
        "projectId": task.project_id,
        "sectionId": task.section_id,
        "labels": [{"id": lb.id, "name": lb.name} for lb in task.labels],
        "priority": task.priority,
        "completed": task.completed,
        "deletedAt": _ms(task.deleted_at),
        "dueDate": _ms(task.due_date),
        "deadline": _ms(task.deadline),
        "duration": task.duration,
        "recurrenceRule": task.recurrence_rule,
        "delegatedTo": task.delegated_to,
    }
