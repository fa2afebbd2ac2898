"""Workout calendar data core: Strava running and Hevy gym dates."""

from .errors import (
    InsufficientScopeError,
    NoCredentialError,
    RateLimitExceededError,
    TransportError,
    WorkoutCalendarError,
)
from .hevy_client import HevyService
from .models import ApiUsage, DayMarks
from .strava_client import StravaService

__all__ = [
    "StravaService",
    "HevyService",
    "ApiUsage",
    "DayMarks",
    "WorkoutCalendarError",
    "NoCredentialError",
    "InsufficientScopeError",
    "RateLimitExceededError",
    "TransportError",
]
