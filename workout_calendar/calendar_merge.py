"""Combine running and gym dates into per-day calendar marks.

Each source is optional: Strava is skipped when no usable grant is stored,
and Hevy when no API key is configured. A source that fails with a package
error (rate limit, transport or auth failure) is logged and left out so the
other source still shows.
"""

from __future__ import annotations

import calendar
import logging
from datetime import date
from typing import Dict, Optional

from .errors import NoCredentialError, RateLimitExceededError, WorkoutCalendarError
from .hevy_client import HevyService
from .models import DayMarks
from .strava_client import StravaService

LOGGER = logging.getLogger(__name__)

__all__ = ["month_bounds", "load_calendar"]


def month_bounds(year: int, month: int) -> tuple[date, date]:
    """First and last day of ``month``."""

    last = calendar.monthrange(year, month)[1]
    return date(year, month, 1), date(year, month, last)


def load_calendar(
    start: date,
    end: date,
    *,
    strava: Optional[StravaService] = None,
    hevy: Optional[HevyService] = None,
) -> Dict[str, DayMarks]:
    marks: Dict[str, DayMarks] = {}

    if strava is not None:
        if strava.check_token_scope():
            try:
                running = strava.get_running_dates(start, end)
            except RateLimitExceededError as exc:
                LOGGER.warning("Skipping running data: %s", exc)
                running = []
            except NoCredentialError:
                LOGGER.info("No Strava credentials; skipping running data")
                running = []
            except WorkoutCalendarError as exc:
                LOGGER.error("Strava running dates unavailable: %s", exc)
                running = []
            LOGGER.info("Strava running dates found: %s", len(running))
            for day in running:
                marks.setdefault(day, DayMarks()).running = True
        else:
            LOGGER.info("Strava not connected or missing scope; skipping running data")

    if hevy is not None and hevy.is_configured():
        try:
            gym = hevy.get_workout_dates(start, end)
        except WorkoutCalendarError as exc:
            LOGGER.error("Hevy gym dates unavailable: %s", exc)
            gym = []
        LOGGER.info("Hevy gym dates found: %s", len(gym))
        for day in gym:
            marks.setdefault(day, DayMarks()).gym = True

    return dict(sorted(marks.items()))
