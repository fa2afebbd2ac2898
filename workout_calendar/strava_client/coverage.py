"""Decides when the activity cache must grow and serves calendar queries.

With no cache, one comprehensive window (the trailing
``STRAVA_COMPREHENSIVE_LOOKBACK_DAYS``) is fetched. The oldest instant each
fetch reached is stored with the cache, and a request is a hit when its start
date is not older than that bound (or, for caches saved without it, the
oldest cached activity). Otherwise fixed-size windows are fetched backward
from the bound until the requested start is reached (or
``STRAVA_MAX_EXTENSION_WINDOWS`` is hit), merged by activity id and persisted
with a fresh expiry. Coverage never grows forward: the comprehensive fetch
already reached "now".
"""

from __future__ import annotations

import logging
import threading
from datetime import date, datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Sequence

from .. import config
from ..activity_types import is_running
from ..cache_merge import (
    CoverageStats,
    activity_local_date,
    merge_activity_lists,
    summarize_coverage,
    window_is_covered,
)
from ..errors import WorkoutCalendarError
from ..models import CachedActivitySet
from ..utils import parse_date, start_of_day_utc, to_utc_aware, utcnow
from .activities import ActivitiesAPI
from .activity_cache import ActivityCacheStore

LOGGER = logging.getLogger(__name__)

DateLike = date | datetime | str

__all__ = ["CacheExtensionPolicy"]


def _ordered(start: DateLike, end: DateLike) -> tuple[date, date]:
    start_day, end_day = parse_date(start), parse_date(end)
    if start_day > end_day:
        start_day, end_day = end_day, start_day
    return start_day, end_day


def _extension_floor(
    cached: CachedActivitySet, stats: CoverageStats
) -> Optional[datetime]:
    """Instant the next backward window ends at, or None when nothing is known."""

    candidates: List[datetime] = []
    if cached.covered_from is not None:
        candidates.append(to_utc_aware(cached.covered_from))
    if stats.earliest_start is not None:
        candidates.append(stats.earliest_start)
    elif stats.earliest is not None:
        candidates.append(start_of_day_utc(stats.earliest))
    return min(candidates) if candidates else None


class CacheExtensionPolicy:
    def __init__(
        self,
        fetcher: ActivitiesAPI,
        cache: ActivityCacheStore,
        *,
        clock: Callable[[], datetime] = utcnow,
        lookback_days: int = config.STRAVA_COMPREHENSIVE_LOOKBACK_DAYS,
        extension_days: int = config.STRAVA_EXTENSION_WINDOW_DAYS,
        max_extensions: int = config.STRAVA_MAX_EXTENSION_WINDOWS,
    ) -> None:
        if extension_days < 1:
            raise ValueError("extension_days must be >= 1")
        self._fetcher = fetcher
        self._cache = cache
        self._clock = clock
        self._lookback = timedelta(days=lookback_days)
        self._extension = timedelta(days=extension_days)
        self._max_extensions = max(1, max_extensions)
        self._lock = threading.Lock()

    def ensure_coverage(self, start: DateLike, end: DateLike) -> CachedActivitySet:
        """Make the cache cover ``[start, end]`` and return it."""

        start_day, end_day = _ordered(start, end)
        with self._lock:
            cached = self._cache.load()
            if cached is None:
                return self._comprehensive_fetch(start_day)

            stats = summarize_coverage(cached.activities)
            if window_is_covered(stats, start_day, end_day, cached.covered_from):
                LOGGER.debug(
                    "Cache hit for %s..%s (fetched from %s, cached %s..%s)",
                    start_day,
                    end_day,
                    cached.covered_from,
                    stats.earliest,
                    stats.latest,
                )
                return cached

            floor = _extension_floor(cached, stats)
            if floor is None:
                # Nothing known about the span: the comprehensive window is the floor.
                floor = self._clock() - self._lookback
                if start_day >= floor.date():
                    return cached
            return self._extend_backward(cached, start_day, floor)

    def _comprehensive_fetch(self, start_day: date) -> CachedActivitySet:
        now = self._clock()
        window_start = now - self._lookback
        LOGGER.info(
            "No valid activity cache; fetching comprehensive window %s..%s",
            window_start.date(),
            now.date(),
        )
        fetched = self._fetcher.fetch_activities(window_start, now)
        cached = self._cache.save(
            merge_activity_lists(fetched), covered_from=window_start
        )
        if start_day >= window_start.date():
            return cached
        return self._extend_backward(cached, start_day, window_start)

    def _extend_backward(
        self, cached: CachedActivitySet, start_day: date, floor: datetime
    ) -> CachedActivitySet:
        target = start_of_day_utc(start_day)
        batches: List[List[Dict[str, Any]]] = []
        window_end = floor
        try:
            while window_end > target and len(batches) < self._max_extensions:
                window_start = window_end - self._extension
                LOGGER.info(
                    "Extending activity cache backward %s..%s",
                    window_start.isoformat(),
                    window_end.isoformat(),
                )
                batches.append(self._fetcher.fetch_activities(window_start, window_end))
                window_end = window_start
        except WorkoutCalendarError:
            if batches:
                self._save_merged(cached, batches, window_end)
            raise
        if not batches:
            return cached
        if window_end > target:
            LOGGER.warning(
                "Activity cache still starts after %s once %s extension windows were fetched",
                start_day,
                len(batches),
            )
        return self._save_merged(cached, batches, window_end)

    def _save_merged(
        self,
        cached: CachedActivitySet,
        batches: Sequence[Sequence[Dict[str, Any]]],
        covered_from: datetime,
    ) -> CachedActivitySet:
        merged = merge_activity_lists(cached.activities, *batches)
        LOGGER.info(
            "Merged %s fetched activities into cache (%s -> %s entries, fetched from %s)",
            sum(len(batch) for batch in batches),
            len(cached.activities),
            len(merged),
            covered_from.isoformat(),
        )
        return self._cache.save(merged, covered_from=covered_from)

    def get_running_activities(
        self, start: DateLike, end: DateLike
    ) -> List[Dict[str, Any]]:
        """Running activities whose local start date lies in ``[start, end]``."""

        start_day, end_day = _ordered(start, end)
        cached = self.ensure_coverage(start_day, end_day)
        selected: List[Dict[str, Any]] = []
        for act in cached.activities:
            if not is_running(act):
                continue
            day = activity_local_date(act)
            if day is not None and start_day <= day <= end_day:
                selected.append(act)
        return selected

    def get_running_dates(self, start: DateLike, end: DateLike) -> List[str]:
        """Sorted, de-duplicated ``YYYY-MM-DD`` dates with at least one run."""

        days = {
            day
            for day in (
                activity_local_date(act)
                for act in self.get_running_activities(start, end)
            )
            if day is not None
        }
        return [day.isoformat() for day in sorted(days)]
