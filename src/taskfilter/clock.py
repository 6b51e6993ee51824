"""Wall-clock access and local-day arithmetic for date-relative predicates.

The only non-determinism in the engine is "now". It is read through a
``Clock`` so tests can pin it. All windows are computed in the timezone
of the datetime the clock returns.
"""
from __future__ import annotations

import os
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta, tzinfo
from functools import lru_cache
from pathlib import Path
from typing import Protocol
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

DEFAULT_DATE_FORMATS: tuple[str, ...] = (
    "%b %d %Y",
    "%b %d, %Y",
    "%B %d %Y",
    "%B %d, %Y",
    "%d %b %Y",
    "%d %B %Y",
    "%m/%d/%Y",
    "%Y/%m/%d",
)


class Clock(Protocol):
    """Source of the current instant."""

    def now(self) -> datetime: ...


@lru_cache(maxsize=1)
def local_timezone() -> tzinfo:
    """The device's IANA zone, so day boundaries follow DST changes.

    Read from ``$TZ`` or ``/etc/localtime``. Falls back to the current
    fixed UTC offset when neither names a zone.
    """
    name = os.environ.get("TZ", "").lstrip(":")
    if name:
        try:
            return ZoneInfo(name)
        except (ZoneInfoNotFoundError, ValueError):
            pass
    try:
        with Path("/etc/localtime").open("rb") as fh:
            return ZoneInfo.from_file(fh, key="localtime")
    except (OSError, ValueError):
        return datetime.now().astimezone().tzinfo or UTC


class SystemClock:
    """Device clock in the local timezone."""

    def now(self) -> datetime:
        return datetime.now(local_timezone())


@dataclass(frozen=True, slots=True)
class FixedClock:
    """Clock pinned to one instant. Naive instants are read as local time."""

    instant: datetime

    def now(self) -> datetime:
        return localize(self.instant, local_timezone())


# ---------------------------------------------------------------------------
# Day arithmetic
# ---------------------------------------------------------------------------

def _normalize(moment: datetime) -> datetime:
    """Resolve a wall time that the zone skips (DST gap) to a real instant."""
    if moment.tzinfo is None:
        return moment
    return moment.astimezone(UTC).astimezone(moment.tzinfo)


def start_of_day(moment: datetime) -> datetime:
    """Midnight at the start of ``moment``'s calendar day."""
    return _normalize(moment.replace(hour=0, minute=0, second=0, microsecond=0))


def end_of_day(moment: datetime) -> datetime:
    """Last representable instant of ``moment``'s calendar day."""
    return _normalize(moment.replace(hour=23, minute=59, second=59, microsecond=999_999))


def add_days(moment: datetime, days: int) -> datetime:
    """Shift by whole calendar days, keeping the wall-clock time."""
    return moment + timedelta(days=days)


def localize(moment: datetime, tz: tzinfo | None) -> datetime:
    """Attach ``tz`` to a naive datetime; aware values pass through."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=tz)
    return moment


@dataclass(frozen=True, slots=True)
class DayWindows:
    """Day boundaries derived from a single clock read.

    Computed once per evaluation call so every task in the call sees the
    same "now".
    """

    now: datetime
    today_start: datetime
    today_end: datetime
    tomorrow_start: datetime
    tomorrow_end: datetime

    @classmethod
    def from_now(cls, now: datetime) -> DayWindows:
        tomorrow = add_days(now, 1)
        return cls(
            now=now,
            today_start=start_of_day(now),
            today_end=end_of_day(now),
            tomorrow_start=start_of_day(tomorrow),
            tomorrow_end=end_of_day(tomorrow),
        )

    def horizon_end(self, days: int) -> datetime:
        """End of the day ``days`` calendar days after today.

        Horizons past the last representable date clamp to ``datetime.max``.
        """
        try:
            return end_of_day(add_days(self.now, days))
        except OverflowError:
            return datetime.max.replace(tzinfo=self.now.tzinfo)


# ---------------------------------------------------------------------------
# Literal-date resolver
# ---------------------------------------------------------------------------

DateResolver = Callable[[str, datetime], datetime | None]


def resolve_literal_date(
    text: str,
    now: datetime,
    formats: Sequence[str] = DEFAULT_DATE_FORMATS,
) -> datetime | None:
    """Resolve the date operand of ``before:`` / ``after:`` conditions.

    ``today`` and ``tomorrow`` resolve to the start of that local day.
    Anything else is tried as ISO-8601, then against ``formats``. Naive
    results take ``now``'s timezone. Returns ``None`` when nothing parses.
    """
    s = text.strip().lower()
    if not s:
        return None
    if s == "today":
        return start_of_day(now)
    if s == "tomorrow":
        return start_of_day(add_days(now, 1))

    # Queries arrive lowercased; ISO parsing wants "T" and "Z".
    iso = s.upper()
    if iso.endswith("Z"):
        iso = iso[:-1] + "+00:00"
    try:
        return localize(datetime.fromisoformat(iso), now.tzinfo)
    except ValueError:
        pass

    for fmt in formats:
        try:
            return localize(datetime.strptime(s, fmt), now.tzinfo)
        except ValueError:
            continue
    return None
