"""Classification of Strava activity kinds."""

from __future__ import annotations

from typing import Any, Iterable, Mapping

from .config import RUNNING_ACTIVITY_TYPES

__all__ = ["normalize_activity_type", "activity_kind_matches", "is_running"]


def normalize_activity_type(value: Any) -> str | None:
    """Return a lowercase activity kind or ``None`` when missing.

    Strava sends both ``type`` and ``sport_type`` with inconsistent casing
    ("Run", "run"); comparisons always go through this helper.
    """

    if value is None:
        return None
    normalized = str(value).strip().lower()
    return normalized or None


def activity_kind_matches(activity: Mapping[str, Any], allowed: Iterable[str]) -> bool:
    """Return ``True`` when ``type`` or ``sport_type`` is one of ``allowed``.

    An empty ``allowed`` collection disables filtering.
    """

    wanted = {n for n in (normalize_activity_type(v) for v in allowed) if n}
    if not wanted:
        return True
    for key in ("type", "sport_type"):
        kind = normalize_activity_type(activity.get(key))
        if kind and kind in wanted:
            return True
    return False


def is_running(activity: Mapping[str, Any]) -> bool:
    return activity_kind_matches(activity, RUNNING_ACTIVITY_TYPES)
