"""Helpers for merging fetched activity batches into the local cache.

Coverage is approximated by the oldest fetched instant (or, when unknown,
the earliest cached start date) and the newest cached date. A gap inside
that span is not detected.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from typing import Any, Dict, Iterable, List, Sequence

from .utils import local_calendar_date, parse_iso_datetime


@dataclass(frozen=True)
class CoverageStats:
    """Date span and boundary instant of a cached activity list."""

    count: int
    earliest: date | None
    latest: date | None
    # UTC ``start_date`` of the oldest activity; upper bound for extensions.
    earliest_start: datetime | None


def activity_identity(activity: Dict[str, Any]) -> int | str | None:
    """Return the Strava ``id`` normalised for set membership."""

    raw = activity.get("id")
    if raw is None:
        return None
    try:
        return int(raw)
    except (TypeError, ValueError):
        return str(raw)


def activity_start_utc(activity: Dict[str, Any]) -> datetime | None:
    """Return the UTC ``start_date`` for an activity, if present."""

    parsed = parse_iso_datetime(activity.get("start_date"))
    if parsed is None:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def activity_local_date(activity: Dict[str, Any]) -> date | None:
    """Calendar date of the activity in its own timezone."""

    return local_calendar_date(activity.get("start_date_local")) or local_calendar_date(
        activity.get("start_date")
    )


def summarize_coverage(activities: Iterable[Dict[str, Any]]) -> CoverageStats:
    earliest: date | None = None
    latest: date | None = None
    earliest_start: datetime | None = None
    count = 0
    for act in activities:
        count += 1
        day = activity_local_date(act)
        if day is not None:
            if earliest is None or day < earliest:
                earliest = day
            if latest is None or day > latest:
                latest = day
        started = activity_start_utc(act)
        if started is not None and (earliest_start is None or started < earliest_start):
            earliest_start = started
    return CoverageStats(
        count=count, earliest=earliest, latest=latest, earliest_start=earliest_start
    )


def merge_activity_lists(*lists: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Concatenate lists, dropping later entries whose identity was already seen.

    Activities without an ``id`` are kept as-is.
    """

    merged: List[Dict[str, Any]] = []
    seen: set[int | str] = set()
    for block in lists:
        for act in block:
            identity = activity_identity(act)
            if identity is not None:
                if identity in seen:
                    continue
                seen.add(identity)
            merged.append(act)
    return merged


def window_is_covered(
    stats: CoverageStats,
    start: date,
    end: date,
    covered_from: datetime | None = None,
) -> bool:
    """Return True when ``[start, end]`` needs no backward extension.

    ``covered_from`` is the oldest instant already fetched; a window starting
    on or after it is covered even when it holds no activities. Without it the
    oldest cached activity date stands in. Only the older boundary is
    compared: the comprehensive fetch always reaches "now", so a window ending
    after the newest cached activity is still served from cache.
    """

    if start > end:
        start, end = end, start
    if covered_from is not None:
        if covered_from.tzinfo is None:
            covered_from = covered_from.replace(tzinfo=timezone.utc)
        if covered_from <= datetime.combine(start, time.min, tzinfo=timezone.utc):
            return True
    if stats.earliest is None:
        return False
    return start >= stats.earliest


__all__ = [
    "CoverageStats",
    "activity_identity",
    "activity_start_utc",
    "activity_local_date",
    "summarize_coverage",
    "merge_activity_lists",
    "window_is_covered",
]
