"""Authenticated fetches of ``/athlete/activities``."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, TypeAlias

import requests

from .. import config
from ..errors import RateLimitExceededError, TransportError
from ..utils import to_epoch_seconds
from .rate_limiter import RateLimitTracker
from .response_handling import classify_error_status
from .session import get_default_session
from .tokens import TokenManager

JSONList: TypeAlias = List[Dict[str, Any]]

LOGGER = logging.getLogger(__name__)

__all__ = ["ActivitiesAPI"]


class ActivitiesAPI:
    """Issues activity listing calls and classifies the outcome.

    A 401 discards the stored access token, obtains a new one and repeats the
    same request once. A 429 is recorded on the tracker and raised without
    retrying; every other failure propagates.
    """

    def __init__(
        self,
        tokens: TokenManager,
        *,
        session: requests.Session | None = None,
        tracker: RateLimitTracker | None = None,
        page_size: int = config.STRAVA_ACTIVITY_PAGE_SIZE,
        max_pages: int = config.STRAVA_MAX_PAGES,
        base_url: str = config.STRAVA_BASE_URL,
    ) -> None:
        self._tokens = tokens
        self._session = session or get_default_session()
        self._tracker = tracker or RateLimitTracker()
        self._page_size = page_size
        self._max_pages = max(1, max_pages)
        self._url = f"{base_url}/athlete/activities"

    @property
    def tracker(self) -> RateLimitTracker:
        return self._tracker

    def fetch_activities(
        self,
        after: Optional[datetime] = None,
        before: Optional[datetime] = None,
        *,
        per_page: Optional[int] = None,
        max_pages: Optional[int] = None,
    ) -> JSONList:
        """Return activities started in ``(after, before)``.

        Bounds are sent as integer epoch seconds. Pages are followed while
        they come back full, up to ``max_pages``.
        """

        size = per_page or self._page_size
        page_cap = max_pages or self._max_pages
        base_params: Dict[str, Any] = {"per_page": size}
        if after is not None:
            base_params["after"] = to_epoch_seconds(after)
        if before is not None:
            base_params["before"] = to_epoch_seconds(before)

        collected: JSONList = []
        page = 1
        while True:
            params = dict(base_params)
            params["page"] = page
            data = self._fetch_page(params, page)
            collected.extend(data)
            if len(data) < size:
                break
            if page >= page_cap:
                LOGGER.warning(
                    "Stopped after %s full activity pages (after=%s before=%s)",
                    page,
                    base_params.get("after"),
                    base_params.get("before"),
                )
                break
            page += 1
        LOGGER.info(
            "Fetched %s activities after=%s before=%s pages=%s",
            len(collected),
            base_params.get("after"),
            base_params.get("before"),
            page,
        )
        return collected

    def probe(self) -> JSONList:
        """Smallest authenticated request; used for scope and usage checks."""

        return self.fetch_activities(per_page=1, max_pages=1)

    def _fetch_page(self, params: Dict[str, Any], page: int) -> JSONList:
        token = self._tokens.get_valid_access_token()
        resp = self._get(token, params)
        if resp.status_code == 401:
            LOGGER.info("401 for activities page %s. Refreshing token and retrying.", page)
            self._tokens.invalidate_access_token()
            token = self._tokens.get_valid_access_token()
            resp = self._get(token, params)
        return self._handle_response(resp, page)

    def _get(self, token: str, params: Dict[str, Any]) -> requests.Response:
        if config.HTTP_DEBUG_LOGGING:
            LOGGER.debug("GET %s params=%s", self._url, params)
        try:
            resp = self._session.get(
                self._url,
                headers={"Authorization": f"Bearer {token}"},
                params=params,
                timeout=config.REQUEST_TIMEOUT,
            )
        except requests.RequestException as exc:
            LOGGER.error("Activities request transport error: %s", exc)
            raise TransportError(f"Activities request failed: {exc}") from exc
        self._tracker.after_response(resp.headers, resp.status_code)
        return resp

    def _handle_response(self, resp: requests.Response, page: int) -> JSONList:
        status = resp.status_code
        if status == 429:
            minutes = self._tracker.window_minutes
            raise RateLimitExceededError(
                f"Strava API rate limit exceeded; retry after ~{minutes} minutes",
                retry_after_minutes=minutes,
                limited_at=self._tracker.last_limited_at,
            )
        if not 200 <= status < 300:
            raise classify_error_status(resp, f"Activities page {page}")
        try:
            data = resp.json()
        except ValueError as exc:
            LOGGER.error("Non-JSON activities response page=%s", page)
            raise TransportError(
                "Activities response was not JSON", status_code=status
            ) from exc
        if not isinstance(data, list):
            LOGGER.error(
                "Unexpected JSON shape (not list) for activities page=%s type=%s",
                page,
                type(data).__name__,
            )
            raise TransportError(
                "Activities response was not a list", status_code=status
            )
        return data
