"""Persistence of the cached Strava activity snapshot."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Sequence

from .. import config
from ..models import CachedActivitySet
from ..storage import KeyValueStore
from ..utils import from_epoch_millis, to_epoch_millis, utcnow

LOGGER = logging.getLogger(__name__)

__all__ = ["ActivityCacheStore"]

# Corrupted numbers ("inf", "1e400", far-future stamps) surface as any of these.
_BAD_STAMP_ERRORS = (ValueError, OverflowError, OSError)


def _parse_millis(raw: str) -> datetime:
    return from_epoch_millis(int(float(raw)))


class ActivityCacheStore:
    """Loads, saves and clears the activity list and its expiry.

    The list is stored as JSON under ``cache_key`` and the expiry as epoch
    milliseconds under ``expiry_key`` (the Strava keys by default; the Hevy
    service passes its own). When ``covered_from_key`` is set, the oldest
    instant the list was fetched from is kept next to it, so an empty span
    is not fetched twice. Interpreting the contents is left to the caller.
    """

    def __init__(
        self,
        storage: KeyValueStore,
        *,
        ttl: timedelta = timedelta(seconds=config.STRAVA_CACHE_TTL_SECONDS),
        clock: Callable[[], datetime] = utcnow,
        cache_key: str = config.STRAVA_CACHE_KEY,
        expiry_key: str = config.STRAVA_CACHE_EXPIRY_KEY,
        covered_from_key: Optional[str] = config.STRAVA_CACHE_FROM_KEY,
        label: str = "activity",
    ) -> None:
        self._storage = storage
        self._ttl = ttl
        self._clock = clock
        self._cache_key = cache_key
        self._expiry_key = expiry_key
        self._covered_from_key = covered_from_key
        self._label = label

    def load(self) -> Optional[CachedActivitySet]:
        raw = self._storage.get(self._cache_key)
        raw_expiry = self._storage.get(self._expiry_key)
        if not raw or not raw_expiry:
            LOGGER.debug("No %s cache found", self._label)
            return None
        try:
            expires_at = _parse_millis(raw_expiry)
        except _BAD_STAMP_ERRORS:
            LOGGER.warning(
                "%s cache expiry %r unparseable; ignoring cache", self._label, raw_expiry
            )
            return None
        if self._clock() >= expires_at:
            LOGGER.info("%s cache expired at %s", self._label, expires_at.isoformat())
            return None
        try:
            activities = json.loads(raw)
        except ValueError as exc:
            LOGGER.warning("%s cache payload is not valid JSON: %s", self._label, exc)
            return None
        if not isinstance(activities, list):
            LOGGER.warning(
                "%s cache payload type mismatch type=%s",
                self._label,
                type(activities).__name__,
            )
            return None
        LOGGER.debug(
            "Loaded %s cached %s entries (valid until %s)",
            len(activities),
            self._label,
            expires_at.isoformat(),
        )
        return CachedActivitySet(
            activities=activities,
            expires_at=expires_at,
            covered_from=self._load_covered_from(),
        )

    def _load_covered_from(self) -> Optional[datetime]:
        if self._covered_from_key is None:
            return None
        raw = self._storage.get(self._covered_from_key)
        if not raw:
            return None
        try:
            return _parse_millis(raw)
        except _BAD_STAMP_ERRORS:
            LOGGER.warning("%s cache lower bound %r unparseable", self._label, raw)
            return None

    def save(
        self,
        activities: Sequence[Dict[str, Any]],
        ttl: Optional[timedelta] = None,
        covered_from: Optional[datetime] = None,
    ) -> CachedActivitySet:
        expires_at = self._clock() + (self._ttl if ttl is None else ttl)
        items: List[Dict[str, Any]] = list(activities)
        self._storage.set(self._cache_key, json.dumps(items, separators=(",", ":")))
        self._storage.set(self._expiry_key, str(to_epoch_millis(expires_at)))
        if self._covered_from_key is not None:
            if covered_from is None:
                self._storage.multi_remove([self._covered_from_key])
            else:
                self._storage.set(
                    self._covered_from_key, str(to_epoch_millis(covered_from))
                )
        LOGGER.info(
            "Saved %s %s entries to cache (expires at %s)",
            len(items),
            self._label,
            expires_at.isoformat(),
        )
        return CachedActivitySet(
            activities=items,
            expires_at=expires_at,
            covered_from=covered_from if self._covered_from_key is not None else None,
        )

    def clear(self) -> None:
        keys = [self._cache_key, self._expiry_key]
        if self._covered_from_key is not None:
            keys.append(self._covered_from_key)
        self._storage.multi_remove(keys)
        LOGGER.info("Cleared %s cache", self._label)
