"""Strava facade exposed to the calendar UI and the CLI."""

from __future__ import annotations

import logging
import threading
from datetime import date, datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

import requests
from cachetools import TTLCache

from .. import config
from ..errors import (
    InsufficientScopeError,
    NoCredentialError,
    RateLimitExceededError,
    WorkoutCalendarError,
)
from ..models import ApiUsage, Credential
from ..storage import KeyValueStore, get_default_store
from ..utils import utcnow
from .activities import ActivitiesAPI
from .activity_cache import ActivityCacheStore
from .coverage import CacheExtensionPolicy
from .rate_limiter import RateLimitTracker
from .session import get_default_session
from .tokens import TokenCipher, TokenManager, TokenStore

LOGGER = logging.getLogger(__name__)

DateLike = date | datetime | str

__all__ = ["StravaService"]

_SCOPE_KEY = "scope"


class StravaService:
    """Wires token, fetch and cache components around one storage backend."""

    def __init__(
        self,
        storage: KeyValueStore,
        *,
        session: requests.Session | None = None,
        cipher: TokenCipher | None = None,
        clock: Callable[[], datetime] = utcnow,
        client_id: str | None = None,
        client_secret: str | None = None,
        scope_check_ttl: int = config.SCOPE_CHECK_TTL_SECONDS,
    ) -> None:
        session = session or get_default_session()
        self.tokens = TokenManager(
            TokenStore(storage, cipher=cipher),
            session=session,
            clock=clock,
            client_id=client_id,
            client_secret=client_secret,
        )
        self.tracker = RateLimitTracker(clock=clock)
        self.fetcher = ActivitiesAPI(self.tokens, session=session, tracker=self.tracker)
        self.cache = ActivityCacheStore(storage, clock=clock)
        self.policy = CacheExtensionPolicy(self.fetcher, self.cache, clock=clock)
        self._scope_lock = threading.Lock()
        self._scope_memo: Optional[TTLCache[str, bool]] = (
            TTLCache(maxsize=1, ttl=scope_check_ttl) if scope_check_ttl > 0 else None
        )

    @classmethod
    def from_config(cls) -> "StravaService":
        return cls(get_default_store(), cipher=TokenCipher.from_config())

    # -- calendar data -----------------------------------------------------
    def get_running_dates(self, start: DateLike, end: DateLike) -> List[str]:
        return self.policy.get_running_dates(start, end)

    def get_running_activities(
        self, start: DateLike, end: DateLike
    ) -> List[Dict[str, Any]]:
        return self.policy.get_running_activities(start, end)

    # -- connection state --------------------------------------------------
    def is_connected(self) -> bool:
        return self.tokens.has_grant()

    def check_token_scope(self) -> bool:
        """Return True when the stored grant can read activities. Never raises."""

        if not self.tokens.has_grant():
            return False
        with self._scope_lock:
            if self._scope_memo is not None and _SCOPE_KEY in self._scope_memo:
                return self._scope_memo[_SCOPE_KEY]
        try:
            self.fetcher.probe()
            result = True
        except InsufficientScopeError:
            LOGGER.warning("Strava grant lacks activity:read_all; re-authorisation needed")
            result = False
        except NoCredentialError:
            result = False
        except RateLimitExceededError:
            # Unverifiable until the window resets; not memoized.
            LOGGER.info("Scope check skipped: Strava rate limit in effect")
            return True
        except WorkoutCalendarError as exc:
            LOGGER.warning("Scope check failed: %s", exc)
            return False
        with self._scope_lock:
            if self._scope_memo is not None:
                self._scope_memo[_SCOPE_KEY] = result
        return result

    def check_api_usage(self, probe: bool = False) -> Optional[ApiUsage]:
        """Last observed short-window usage and 429 time, if any.

        With ``probe`` a minimal request is issued first to refresh the numbers.
        """

        if probe and self.tokens.has_grant():
            try:
                self.fetcher.probe()
            except RateLimitExceededError:
                LOGGER.info("Usage probe hit the rate limit")
            except WorkoutCalendarError as exc:
                LOGGER.warning("Usage probe failed: %s", exc)
        return self.tracker.usage()

    def rate_limit_cooldown(self) -> timedelta:
        return self.tracker.cooldown_remaining()

    # -- lifecycle ---------------------------------------------------------
    def exchange_authorization_code(
        self, code: str, redirect_uri: str | None = None
    ) -> Credential:
        credential = self.tokens.exchange_authorization_code(code, redirect_uri)
        self._forget_scope()
        return credential

    def seed_refresh_token(self, refresh_token: str) -> None:
        self.tokens.store.seed_refresh_token(refresh_token)
        self._forget_scope()
        LOGGER.info("Stored Strava refresh token; it is exchanged on the next request")

    def force_refresh(self) -> None:
        """Drop the activity cache so the next query fetches afresh."""

        self.cache.clear()

    def clear_all_tokens(self) -> None:
        self.tokens.clear_all_credentials()
        self._forget_scope()

    def _forget_scope(self) -> None:
        with self._scope_lock:
            if self._scope_memo is not None:
                self._scope_memo.clear()
