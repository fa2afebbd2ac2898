"""Hevy workout listing with a local snapshot cache.

Hevy authenticates every request with a static ``api-key`` header, so there
is no token lifecycle: a failed request propagates as ``TransportError``.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

import requests

from .. import config
from ..errors import HevyNotConfiguredError, TransportError
from ..storage import KeyValueStore, get_default_store
from ..strava_client.activity_cache import ActivityCacheStore
from ..strava_client.response_handling import extract_error
from ..strava_client.session import get_default_session
from ..utils import local_calendar_date, mask_token, parse_date, utcnow

LOGGER = logging.getLogger(__name__)

DateLike = date | datetime | str

__all__ = ["HevyService"]


class HevyService:
    def __init__(
        self,
        storage: KeyValueStore,
        *,
        api_key: str | None = None,
        session: requests.Session | None = None,
        clock: Callable[[], datetime] = utcnow,
        ttl: timedelta = timedelta(seconds=config.HEVY_CACHE_TTL_SECONDS),
        base_url: str = config.HEVY_BASE_URL,
    ) -> None:
        self._api_key = (config.HEVY_API_KEY if api_key is None else api_key).strip()
        self._session = session or get_default_session()
        self._url = f"{base_url}/v1/workouts"
        self.cache = ActivityCacheStore(
            storage,
            ttl=ttl,
            clock=clock,
            cache_key=config.HEVY_CACHE_KEY,
            expiry_key=config.HEVY_CACHE_EXPIRY_KEY,
            covered_from_key=None,
            label="hevy workout",
        )

    @classmethod
    def from_config(cls) -> "HevyService":
        return cls(get_default_store())

    def is_configured(self) -> bool:
        return bool(self._api_key) and self._api_key != config.HEVY_API_KEY_PLACEHOLDER

    def _require_configured(self) -> None:
        if not self.is_configured():
            raise HevyNotConfiguredError("Hevy API key not configured")

    def get_workouts(self, page: int = 1) -> Dict[str, Any]:
        """Fetch one listing page: ``{"page", "page_count", "workouts"}``."""

        self._require_configured()
        LOGGER.debug(
            "Fetching Hevy workouts page=%s api_key=%s", page, mask_token(self._api_key)
        )
        try:
            resp = self._session.get(
                self._url,
                headers={"api-key": self._api_key, "accept": "application/json"},
                params={"page": page, "pageSize": config.HEVY_PAGE_SIZE},
                timeout=config.REQUEST_TIMEOUT,
            )
        except requests.RequestException as exc:
            LOGGER.error("Hevy request transport error page=%s: %s", page, exc)
            raise TransportError(f"Hevy workouts request failed: {exc}") from exc
        if not 200 <= resp.status_code < 300:
            detail = extract_error(resp)
            LOGGER.error(
                "Hevy workouts page=%s failed status=%s%s",
                page,
                resp.status_code,
                f" detail={detail}" if detail else "",
            )
            raise TransportError(
                f"Hevy workouts request failed (status {resp.status_code})",
                status_code=resp.status_code,
                detail=detail,
            )
        try:
            data = resp.json()
        except ValueError as exc:
            raise TransportError(
                "Hevy workouts response was not JSON", status_code=resp.status_code
            ) from exc
        if not isinstance(data, dict) or not isinstance(data.get("workouts"), list):
            raise TransportError(
                "Unexpected Hevy workouts payload", status_code=resp.status_code
            )
        return data

    def get_all_workouts(self) -> List[Dict[str, Any]]:
        """Return every workout, from cache when valid, else by paging through."""

        self._require_configured()
        cached = self.cache.load()
        if cached is not None:
            return cached.activities

        LOGGER.info("Fetching all Hevy workouts from API")
        workouts: List[Dict[str, Any]] = []
        page = 1
        while True:
            payload = self.get_workouts(page)
            workouts.extend(payload["workouts"])
            page_count = _as_int(payload.get("page_count"))
            if page_count is None or page >= page_count:
                break
            page += 1
        self.cache.save(workouts)
        return workouts

    def get_workout_dates(self, start: DateLike, end: DateLike) -> List[str]:
        start_day, end_day = parse_date(start), parse_date(end)
        if start_day > end_day:
            start_day, end_day = end_day, start_day
        days = set()
        for workout in self.get_all_workouts():
            day = local_calendar_date(workout.get("start_time"))
            if day is not None and start_day <= day <= end_day:
                days.add(day)
        return [day.isoformat() for day in sorted(days)]

    def clear_cache(self) -> None:
        self.cache.clear()

    def refresh_cache(self) -> List[Dict[str, Any]]:
        self.clear_cache()
        return self.get_all_workouts()


def _as_int(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None
