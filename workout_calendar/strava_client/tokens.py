"""Strava OAuth credential persistence and refresh.

``TokenStore`` reads and writes the three credential keys in durable storage,
optionally encrypting the token values with Fernet. ``TokenManager`` hands
out a valid bearer token, exchanging the stored refresh token when the access
token has expired, and persists the rotated refresh token Strava returns.

Storage is re-read at the start of every decision so that a refresh committed
by another process is picked up. A lock makes refresh single-flight within
the process: concurrent callers that all observe an expired token perform one
refresh between them, and none of them sends a refresh token that was already
rotated away.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

import requests
from cryptography.fernet import Fernet, InvalidToken

from .. import config
from ..errors import ExchangeError, NoCredentialError, TokenRefreshError
from ..models import Credential
from ..storage import KeyValueStore
from ..utils import mask_token, to_epoch_seconds, utcnow
from .response_handling import extract_error
from .session import get_default_session

LOGGER = logging.getLogger(__name__)

__all__ = ["TokenCipher", "TokenStore", "TokenManager"]

_CREDENTIAL_KEYS = (
    config.STRAVA_ACCESS_TOKEN_KEY,
    config.STRAVA_REFRESH_TOKEN_KEY,
    config.STRAVA_EXPIRES_AT_KEY,
)


class TokenCipher:
    """Fernet wrapper for encrypting token values at rest."""

    def __init__(self, key: str | bytes) -> None:
        if isinstance(key, str):
            key = key.encode()
        try:
            self._fernet = Fernet(key)
        except (ValueError, TypeError) as exc:
            raise ValueError(f"Invalid token encryption key: {exc}") from exc

    def encrypt(self, plaintext: str) -> str:
        return self._fernet.encrypt(plaintext.encode()).decode()

    def decrypt(self, ciphertext: str) -> Optional[str]:
        try:
            return self._fernet.decrypt(ciphertext.encode()).decode()
        except InvalidToken:
            LOGGER.error("Stored Strava token could not be decrypted; treating as absent")
            return None

    @classmethod
    def from_config(cls) -> Optional["TokenCipher"]:
        if not config.TOKEN_ENCRYPTION_KEY:
            return None
        return cls(config.TOKEN_ENCRYPTION_KEY)


class TokenStore:
    """Durable home of the Strava credential."""

    def __init__(
        self, storage: KeyValueStore, cipher: Optional[TokenCipher] = None
    ) -> None:
        self._storage = storage
        self._cipher = cipher

    def _read_secret(self, key: str) -> Optional[str]:
        raw = self._storage.get(key)
        if not raw:
            return None
        if self._cipher is None:
            return raw
        return self._cipher.decrypt(raw)

    def _write_secret(self, key: str, value: str) -> None:
        stored = self._cipher.encrypt(value) if self._cipher is not None else value
        self._storage.set(key, stored)

    def load(self) -> Optional[Credential]:
        """Return the stored credential, or None unless all three parts exist."""

        access_token = self._read_secret(config.STRAVA_ACCESS_TOKEN_KEY)
        refresh_token = self._read_secret(config.STRAVA_REFRESH_TOKEN_KEY)
        raw_expiry = self._storage.get(config.STRAVA_EXPIRES_AT_KEY)
        if not access_token or not refresh_token or not raw_expiry:
            return None
        try:
            expires_at = int(float(raw_expiry))
        except (ValueError, OverflowError):
            LOGGER.warning("Ignoring unparseable Strava expiry %r", raw_expiry)
            return None
        return Credential(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=expires_at,
        )

    def load_refresh_token(self) -> Optional[str]:
        return self._read_secret(config.STRAVA_REFRESH_TOKEN_KEY)

    def has_grant(self) -> bool:
        return bool(self.load_refresh_token())

    def save(self, credential: Credential) -> None:
        self._write_secret(config.STRAVA_ACCESS_TOKEN_KEY, credential.access_token)
        self._write_secret(config.STRAVA_REFRESH_TOKEN_KEY, credential.refresh_token)
        self._storage.set(config.STRAVA_EXPIRES_AT_KEY, str(credential.expires_at))

    def seed_refresh_token(self, refresh_token: str) -> None:
        """Store a bare refresh token; the next token request refreshes it."""

        self._storage.multi_remove(
            [config.STRAVA_ACCESS_TOKEN_KEY, config.STRAVA_EXPIRES_AT_KEY]
        )
        self._write_secret(config.STRAVA_REFRESH_TOKEN_KEY, refresh_token)

    def clear_access_token(self) -> None:
        """Drop access token and expiry, keeping the refresh token."""

        self._storage.multi_remove(
            [config.STRAVA_ACCESS_TOKEN_KEY, config.STRAVA_EXPIRES_AT_KEY]
        )

    def clear(self, extra_keys: tuple[str, ...] = ()) -> None:
        self._storage.multi_remove([*_CREDENTIAL_KEYS, *extra_keys])


class TokenManager:
    """Supplies valid Strava bearer tokens backed by a ``TokenStore``."""

    def __init__(
        self,
        store: TokenStore,
        *,
        session: requests.Session | None = None,
        clock: Callable[[], datetime] = utcnow,
        client_id: str | None = None,
        client_secret: str | None = None,
        token_url: str = config.STRAVA_OAUTH_URL,
    ) -> None:
        self._store = store
        self._session = session or get_default_session()
        self._clock = clock
        self._client_id = config.CLIENT_ID if client_id is None else client_id
        self._client_secret = (
            config.CLIENT_SECRET if client_secret is None else client_secret
        )
        self._token_url = token_url
        self._refresh_lock = threading.Lock()

    @property
    def store(self) -> TokenStore:
        return self._store

    def get_valid_access_token(self) -> str:
        """Return an unexpired access token, refreshing it when needed.

        Raises:
            NoCredentialError: No refresh token is stored.
            TokenRefreshError: The refresh-token grant failed.
        """

        credential = self._store.load()
        if credential is not None and credential.is_valid(self._clock()):
            return credential.access_token

        with self._refresh_lock:
            # Re-check after acquiring the lock (another caller may have refreshed)
            credential = self._store.load()
            if credential is not None and credential.is_valid(self._clock()):
                return credential.access_token
            refresh_token = self._store.load_refresh_token()
            if not refresh_token:
                LOGGER.info("No Strava refresh token stored; authorisation required")
                raise NoCredentialError("No Strava credentials stored; authorise first")
            refreshed = self._refresh(refresh_token)
            self._store.save(refreshed)
            return refreshed.access_token

    def invalidate_access_token(self) -> None:
        """Forget the access token so the next request refreshes it."""

        LOGGER.info("Discarding stored Strava access token")
        self._store.clear_access_token()

    def has_grant(self) -> bool:
        return self._store.has_grant()

    def exchange_authorization_code(
        self, code: str, redirect_uri: str | None = None
    ) -> Credential:
        """Exchange an OAuth authorisation code for the initial credential."""

        if not code:
            raise ExchangeError("Missing authorisation code")
        if not self._client_id or not self._client_secret:
            raise ExchangeError(
                "Client credentials not configured (STRAVA_CLIENT_ID / STRAVA_CLIENT_SECRET missing)"
            )
        payload = {
            "client_id": self._client_id,
            "client_secret": self._client_secret,
            "code": code,
            "grant_type": "authorization_code",
        }
        if redirect_uri:
            payload["redirect_uri"] = redirect_uri
        LOGGER.info("Exchanging Strava authorisation code %s", mask_token(code))
        try:
            resp = self._session.post(
                self._token_url, data=payload, timeout=config.REQUEST_TIMEOUT
            )
        except requests.exceptions.RequestException as exc:
            LOGGER.error("Code exchange transport error: %s", exc)
            raise ExchangeError("Transport failure during code exchange") from exc
        if resp.status_code >= 400:
            detail = extract_error(resp)
            LOGGER.error(
                "Code exchange failed status=%s%s",
                resp.status_code,
                f" detail={detail}" if detail else "",
            )
            raise ExchangeError(f"Token exchange failed: {resp.status_code}")
        try:
            data = resp.json()
        except ValueError as exc:
            raise ExchangeError("Invalid JSON in code exchange response") from exc
        credential = self._credential_from_payload(data)
        if credential is None:
            LOGGER.error("Code exchange response missing access/refresh token or expiry")
            raise ExchangeError("Token exchange response missing expected fields")
        self._store.save(credential)
        LOGGER.info(
            "Strava authorisation stored access_token=%s refresh_token=%s expires_at=%s",
            mask_token(credential.access_token),
            mask_token(credential.refresh_token),
            credential.expires_at,
        )
        return credential

    def clear_all_credentials(self) -> None:
        """Remove the credential and the Strava activity cache."""

        self._store.clear(
            extra_keys=(
                config.STRAVA_CACHE_KEY,
                config.STRAVA_CACHE_EXPIRY_KEY,
                config.STRAVA_CACHE_FROM_KEY,
            )
        )
        LOGGER.info("Cleared Strava credentials and activity cache")

    def _refresh(self, refresh_token: str) -> Credential:
        if not self._client_id or not self._client_secret:
            raise TokenRefreshError(
                "Client credentials not configured (STRAVA_CLIENT_ID / STRAVA_CLIENT_SECRET missing)"
            )
        payload = {
            "client_id": self._client_id,
            "client_secret": self._client_secret,
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
        }
        LOGGER.info("Refreshing Strava token refresh_token=%s", mask_token(refresh_token))
        LOGGER.debug("Token endpoint: %s", self._token_url)
        try:
            resp = self._session.post(
                self._token_url, data=payload, timeout=config.REQUEST_TIMEOUT
            )
        except requests.exceptions.RequestException as exc:
            LOGGER.error("Token request transport error: %s", exc)
            raise TokenRefreshError("Transport failure during token refresh") from exc

        status = resp.status_code
        if status >= 400:
            detail = extract_error(resp)
            LOGGER.error(
                "Token refresh failed status=%s%s",
                status,
                f" detail={detail}" if detail else "",
            )
            raise TokenRefreshError(
                f"Token refresh failed with status {status}",
                status_code=status,
                detail=detail,
            )
        try:
            data = resp.json()
        except ValueError as exc:
            LOGGER.error("Invalid JSON in token response: %s", exc)
            raise TokenRefreshError("Invalid JSON in token response") from exc

        credential = self._credential_from_payload(data, fallback_refresh=refresh_token)
        if credential is None:
            LOGGER.error("Token response lacked access_token or expiry")
            raise TokenRefreshError("Unexpected token response shape")
        LOGGER.info(
            "Token refresh ok access_token_len=%s refresh_token_changed=%s expires_at=%s",
            len(credential.access_token),
            credential.refresh_token != refresh_token,
            credential.expires_at,
        )
        return credential

    def _credential_from_payload(
        self, data: Any, fallback_refresh: str | None = None
    ) -> Optional[Credential]:
        if not isinstance(data, dict):
            return None
        access_token = data.get("access_token")
        refresh_token = data.get("refresh_token") or fallback_refresh
        expires_at = _parse_expiry(data, self._clock())
        if not access_token or not refresh_token or expires_at is None:
            return None
        return Credential(
            access_token=str(access_token),
            refresh_token=str(refresh_token),
            expires_at=expires_at,
        )


def _parse_expiry(data: Dict[str, Any], now: datetime) -> Optional[int]:
    """Absolute expiry in epoch seconds from ``expires_at`` or ``expires_in``."""

    raw = data.get("expires_at")
    if raw is not None:
        try:
            return int(raw)
        except (TypeError, ValueError):
            return None
    relative = data.get("expires_in")
    if relative is not None:
        try:
            return to_epoch_seconds(now + timedelta(seconds=int(relative)))
        except (TypeError, ValueError):
            return None
    return None
