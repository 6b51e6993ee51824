"""``*``-wildcard name patterns for project, label and section conditions.

Only ``*`` is special (zero or more characters). Everything else matches
literally, the whole candidate must match, and case is ignored.
"""
from __future__ import annotations

import re
from functools import lru_cache
from typing import Protocol

WILDCARD = "*"


class GlobMatcher(Protocol):
    """Anything that can answer "does this name match this pattern"."""

    def matches(self, pattern: str, candidate: str) -> bool: ...


def has_wildcard(pattern: str) -> bool:
    """True when ``pattern`` contains at least one ``*``."""
    return WILDCARD in pattern


@lru_cache(maxsize=512)
def compile_glob(pattern: str) -> re.Pattern[str]:
    """Compile ``pattern`` into an anchored, case-insensitive regex."""
    body = ".*".join(re.escape(piece) for piece in pattern.split(WILDCARD))
    return re.compile(rf"\A{body}\Z", re.IGNORECASE | re.DOTALL)


def glob_matches(pattern: str, candidate: str) -> bool:
    """Return True if ``candidate`` matches ``pattern`` in full."""
    return compile_glob(pattern).match(candidate) is not None


class CachedGlobMatcher:
    """Default ``GlobMatcher`` backed by the module-level compile cache."""

    def matches(self, pattern: str, candidate: str) -> bool:
        return glob_matches(pattern, candidate)
