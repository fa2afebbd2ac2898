"""Central error types used across the application."""

from __future__ import annotations

from datetime import datetime


class WorkoutCalendarError(RuntimeError):
    """Base error for every failure surfaced by the package."""


class StravaAPIError(WorkoutCalendarError):
    """Base error for Strava API failures."""


class NoCredentialError(StravaAPIError):
    """Raised when no Strava grant is stored; the user must authorise first."""


class ExchangeError(StravaAPIError):
    """Raised when an OAuth authorisation code cannot be exchanged for tokens."""


class AuthorizationCancelledError(ExchangeError):
    """Raised when the consent flow ends without a redirect from Strava."""


class InsufficientScopeError(StravaAPIError):
    """Raised when the stored grant lacks the permission to read activities."""


class StravaAuthError(StravaAPIError):
    """Raised when Strava still answers 401 after a token refresh."""


class RateLimitExceededError(StravaAPIError):
    """Raised when Strava returns HTTP 429."""

    def __init__(
        self,
        message: str,
        *,
        retry_after_minutes: int,
        limited_at: datetime | None = None,
    ) -> None:
        super().__init__(message)
        self.retry_after_minutes = retry_after_minutes
        self.limited_at = limited_at


class TransportError(WorkoutCalendarError):
    """Network failure, unexpected HTTP status or unusable payload."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        detail: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.detail = detail


class TokenRefreshError(TransportError):
    """Raised when the refresh-token grant fails."""


class HevyAPIError(WorkoutCalendarError):
    """Base error for Hevy API failures."""


class HevyNotConfiguredError(HevyAPIError):
    """Raised when the Hevy API key is missing or still the template value."""


__all__ = [
    "WorkoutCalendarError",
    "StravaAPIError",
    "NoCredentialError",
    "ExchangeError",
    "AuthorizationCancelledError",
    "InsufficientScopeError",
    "StravaAuthError",
    "RateLimitExceededError",
    "TransportError",
    "TokenRefreshError",
    "HevyAPIError",
    "HevyNotConfiguredError",
]
