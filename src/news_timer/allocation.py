"""Allocation engine. Pure functions, no I/O.

All durations are integer seconds unless a name says otherwise.
"""

from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from urllib.parse import urlparse

from .config import MAX_ALLOCATION, MAX_TIME_LIMIT, MIN_ALLOCATION, MIN_TIME_LIMIT
from .errors import NoSourcesError, ValidationError

_KEY_PATTERN = re.compile(r"[^a-z0-9]")


@dataclass
class DailyStats:
    total_time_used: int = 0
    total_sessions: int = 0
    total_overrun: int = 0
    sources_used: int = 0
    average_session_time: int = 0

    def to_export_dict(self) -> dict:
        """CamelCase dict for the REST API."""
        return {
            "totalTimeUsed": self.total_time_used,
            "totalSessions": self.total_sessions,
            "totalOverrun": self.total_overrun,
            "sourcesUsed": self.sources_used,
            "averageSessionTime": self.average_session_time,
        }


def source_key(name: str) -> str:
    """Derive the immutable source key: lowercase, non-alphanumerics -> '-'."""
    return _KEY_PATTERN.sub("-", name.lower())


def favicon_url(url: str | None) -> str | None:
    """Favicon lookup URL for a source's site, or None without a usable host."""
    if not url:
        return None
    host = urlparse(url).hostname
    if not host:
        return None
    return f"https://www.google.com/s2/favicons?domain={host}&sz=32"


def overrun_seconds(used: int, allocated: int) -> int:
    return max(0, used - allocated)


def remaining_seconds(limit: int, used: int) -> int:
    return max(0, limit - used)


def validate_allocation(allocation: int) -> None:
    if allocation < MIN_ALLOCATION or allocation > MAX_ALLOCATION:
        raise ValidationError(
            f"Allocation must be between {MIN_ALLOCATION} and {MAX_ALLOCATION} seconds"
        )


def validate_time_limit(total_time_limit: int) -> None:
    if total_time_limit < MIN_TIME_LIMIT or total_time_limit > MAX_TIME_LIMIT:
        raise ValidationError(
            f"Total time limit must be between {MIN_TIME_LIMIT} and {MAX_TIME_LIMIT} seconds"
        )


def format_clock(seconds: int) -> str:
    """Format seconds as 'MM:SS' (minutes may exceed 59)."""
    sign = "-" if seconds < 0 else ""
    minutes, secs = divmod(abs(seconds), 60)
    return f"{sign}{minutes:02d}:{secs:02d}"


def distribute_evenly(total_minutes: int, source_keys: Sequence[str]) -> dict[str, int]:
    """Split a budget of whole minutes across sources.

    The first ``total_minutes % n`` sources (in the given order) get one
    extra minute. Returns key -> allocated seconds; the values always sum to
    ``total_minutes * 60``.
    """
    keys = list(source_keys)
    if not keys:
        raise NoSourcesError()
    if total_minutes < 0:
        raise ValidationError("Total minutes cannot be negative")

    base, remainder = divmod(total_minutes, len(keys))
    return {
        key: (base + 1 if index < remainder else base) * 60
        for index, key in enumerate(keys)
    }


def _field(row, snake: str, camel: str) -> int:
    if isinstance(row, Mapping):
        if snake in row:
            return int(row[snake] or 0)
        return int(row.get(camel, 0) or 0)
    return int(getattr(row, snake, 0) or 0)


def compute_daily_stats(rows: Sequence) -> DailyStats:
    """Aggregate a day's usage rows.

    Rows may be store mappings (``time_used``/``sessions``/``overrun_time``),
    API mappings (``used``/``sessions``/``overrunTime``) or objects with
    ``used``/``sessions``/``overrun`` attributes.
    """
    total_used = 0
    total_sessions = 0
    total_overrun = 0
    for row in rows:
        if isinstance(row, Mapping):
            total_used += _field(row, "time_used", "used")
            total_overrun += _field(row, "overrun_time", "overrunTime")
        else:
            total_used += _field(row, "used", "used")
            total_overrun += _field(row, "overrun", "overrun")
        total_sessions += _field(row, "sessions", "sessions")

    average = round(total_used / total_sessions) if total_sessions else 0
    return DailyStats(
        total_time_used=total_used,
        total_sessions=total_sessions,
        total_overrun=total_overrun,
        sources_used=len(rows),
        average_session_time=average,
    )
