"""Engine settings: parser guardrails, cache sizing, accepted date formats.

Settings load from an optional JSON file, then environment overrides::

    TASKFILTER_MAX_DEPTH=16 TASKFILTER_MAX_NODES=100 python3 scripts/filter_tasks.py ...
"""
from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any

import orjson

from taskfilter.clock import DEFAULT_DATE_FORMATS

ENV_PREFIX = "TASKFILTER_"

# Guardrails
MAX_QUERY_LENGTH = 1000
MAX_AST_DEPTH = 32
MAX_AST_NODES = 200
PARSE_CACHE_SIZE = 256


class SettingsError(ValueError):
    """Raised on unknown keys or out-of-range values in settings."""


@dataclass(frozen=True, slots=True)
class FilterSettings:
    """Tunable limits for parsing and evaluation."""

    max_query_length: int = MAX_QUERY_LENGTH
    max_depth: int = MAX_AST_DEPTH
    max_nodes: int = MAX_AST_NODES
    parse_cache_size: int = PARSE_CACHE_SIZE
    date_formats: tuple[str, ...] = DEFAULT_DATE_FORMATS

    def __post_init__(self) -> None:
        for name in ("max_query_length", "max_depth", "max_nodes"):
            value = getattr(self, name)
            if not isinstance(value, int) or value < 1:
                raise SettingsError(f"{name} must be a positive integer, got {value!r}")
        if not isinstance(self.parse_cache_size, int) or self.parse_cache_size < 0:
            raise SettingsError(
                f"parse_cache_size must be a non-negative integer, got {self.parse_cache_size!r}"
            )

    @classmethod
    def from_json(cls, data: Mapping[str, Any]) -> FilterSettings:
        """Build settings from a JSON object; unknown keys are rejected."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise SettingsError(f"Unknown settings keys: {', '.join(unknown)}")
        values = dict(data)
        if "date_formats" in values:
            formats = values["date_formats"]
            if not isinstance(formats, list | tuple) or not all(isinstance(f, str) for f in formats):
                raise SettingsError("date_formats must be a list of strftime format strings")
            values["date_formats"] = tuple(formats)
        return cls(**values)

    def to_json(self) -> dict[str, Any]:
        return {
            "max_query_length": self.max_query_length,
            "max_depth": self.max_depth,
            "max_nodes": self.max_nodes,
            "parse_cache_size": self.parse_cache_size,
            "date_formats": list(self.date_formats),
        }


_ENV_INT_KEYS: tuple[str, ...] = ("max_depth", "max_nodes", "max_query_length")


def _env_overrides(environ: Mapping[str, str]) -> dict[str, int]:
    overrides: dict[str, int] = {}
    for key in _ENV_INT_KEYS:
        raw = environ.get(ENV_PREFIX + key.upper())
        if raw is None or not raw.strip():
            continue
        try:
            overrides[key] = int(raw)
        except ValueError as exc:
            raise SettingsError(f"{ENV_PREFIX}{key.upper()} must be an integer, got {raw!r}") from exc
    return overrides


def load_settings(
    path: Path | None = None,
    *,
    environ: Mapping[str, str] | None = None,
) -> FilterSettings:
    """Load settings from ``path`` (JSON) and apply environment overrides."""
    settings = FilterSettings()
    if path is not None:
        if not path.exists():
            raise SettingsError(f"Settings file not found: {path}")
        try:
            data = orjson.loads(path.read_bytes())
        except orjson.JSONDecodeError as exc:
            raise SettingsError(f"Settings file is not valid JSON: {path}: {exc}") from exc
        if not isinstance(data, dict):
            raise SettingsError("Settings file must contain a JSON object")
        settings = FilterSettings.from_json(data)

    overrides = _env_overrides(os.environ if environ is None else environ)
    if overrides:
        settings = replace(settings, **overrides)
    return settings
