"""Rate-limit bookkeeping for the Strava API.

Strava reports quota consumption in ``X-RateLimit-Usage`` and
``X-RateLimit-Limit``, each a ``short,long`` pair (15-minute and daily
windows). Only the short window is tracked. Nothing here sleeps or retries:
a 429 is recorded and surfaced to the caller.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Mapping, Optional, Tuple

from cachetools import TTLCache

from ..config import RATE_LIMIT_WINDOW_MINUTES
from ..models import ApiUsage
from ..utils import utcnow

__all__ = ["RateLimitState", "RateLimitTracker", "parse_usage_headers"]

LOGGER = logging.getLogger(__name__)

_USAGE_KEY = "short_window"


@dataclass
class RateLimitState:
    last_limited_at: Optional[datetime] = None


def parse_usage_headers(
    headers: Mapping[str, object] | None,
) -> Optional[Tuple[int, int]]:
    """Return ``(used, limit)`` for the short window, or None when absent."""

    if not headers:
        return None
    usage = headers.get("X-RateLimit-Usage")
    limit = headers.get("X-RateLimit-Limit")
    if not usage or not limit:
        return None
    try:
        return int(str(usage).split(",")[0]), int(str(limit).split(",")[0])
    except (ValueError, TypeError) as exc:
        LOGGER.debug(
            "Failed to parse rate limit headers usage=%s limit=%s: %s",
            usage,
            limit,
            exc,
        )
        return None


class RateLimitTracker:
    """Records 429 occurrences and the latest short-window usage."""

    def __init__(
        self,
        window_minutes: int = RATE_LIMIT_WINDOW_MINUTES,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._lock = threading.Lock()
        self._clock = clock
        self._window = timedelta(minutes=window_minutes)
        self.state = RateLimitState()
        # Usage numbers describe the current 15-minute window only.
        self._usage: TTLCache[str, Tuple[int, int]] = TTLCache(
            maxsize=1, ttl=self._window.total_seconds(), timer=self._timer
        )

    def _timer(self) -> float:
        return self._clock().timestamp()

    @property
    def window_minutes(self) -> int:
        return int(self._window.total_seconds() // 60)

    def after_response(
        self, headers: Mapping[str, object] | None, status_code: int | None
    ) -> None:
        parsed = parse_usage_headers(headers)
        with self._lock:
            if parsed is not None:
                self._usage[_USAGE_KEY] = parsed
            if status_code == 429:
                self.state.last_limited_at = self._clock()
        if status_code == 429:
            LOGGER.warning(
                "Strava rate limit hit (429); quota resets within ~%s minutes",
                self.window_minutes,
            )
        elif parsed is not None:
            used, limit = parsed
            LOGGER.debug("Strava short-window usage %s/%s", used, limit)

    @property
    def last_limited_at(self) -> Optional[datetime]:
        with self._lock:
            return self.state.last_limited_at

    def cooldown_remaining(self) -> timedelta:
        """Time left until the window that produced the last 429 has passed."""

        last = self.last_limited_at
        if last is None:
            return timedelta(0)
        remaining = last + self._window - self._clock()
        return max(remaining, timedelta(0))

    def usage(self) -> Optional[ApiUsage]:
        with self._lock:
            snapshot = self._usage.get(_USAGE_KEY)
            last = self.state.last_limited_at
        if snapshot is None and last is None:
            return None
        used, limit = snapshot if snapshot is not None else (None, None)
        return ApiUsage(usage=used, limit=limit, last_rate_limit_time=last)

    def reset(self) -> None:
        with self._lock:
            self._usage.clear()
            self.state = RateLimitState()
