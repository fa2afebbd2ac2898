from datetime import date

import pytest

from workout_calendar.calendar_merge import load_calendar, month_bounds
from workout_calendar.errors import (
    HevyAPIError,
    NoCredentialError,
    RateLimitExceededError,
    TransportError,
)


class StubStrava:
    def __init__(self, dates=None, scope_ok=True, error=None):
        self.dates = dates or []
        self.scope_ok = scope_ok
        self.error = error
        self.date_calls = 0

    def check_token_scope(self):
        return self.scope_ok

    def get_running_dates(self, start, end):
        self.date_calls += 1
        if self.error is not None:
            raise self.error
        return self.dates


class StubHevy:
    def __init__(self, dates=None, configured=True, error=None):
        self.dates = dates or []
        self.configured = configured
        self.error = error

    def is_configured(self):
        return self.configured

    def get_workout_dates(self, start, end):
        if self.error is not None:
            raise self.error
        return self.dates


def test_month_bounds_handles_leap_years():
    assert month_bounds(2024, 2) == (date(2024, 2, 1), date(2024, 2, 29))
    assert month_bounds(2023, 12) == (date(2023, 12, 1), date(2023, 12, 31))


def test_marks_merge_both_sources_sorted():
    strava = StubStrava(["2024-04-10", "2024-04-02"])
    hevy = StubHevy(["2024-04-10", "2024-04-05"])

    marks = load_calendar(date(2024, 4, 1), date(2024, 4, 30), strava=strava, hevy=hevy)

    assert list(marks) == ["2024-04-02", "2024-04-05", "2024-04-10"]
    assert marks["2024-04-02"].running and not marks["2024-04-02"].gym
    assert marks["2024-04-05"].gym and not marks["2024-04-05"].running
    assert marks["2024-04-10"].both


def test_strava_skipped_when_scope_missing():
    strava = StubStrava(["2024-04-02"], scope_ok=False)
    marks = load_calendar(date(2024, 4, 1), date(2024, 4, 30), strava=strava, hevy=StubHevy(["2024-04-05"]))

    assert list(marks) == ["2024-04-05"]
    assert strava.date_calls == 0


@pytest.mark.parametrize(
    "error",
    [RateLimitExceededError("limited", retry_after_minutes=15), NoCredentialError("none")],
)
def test_rate_limit_and_missing_credentials_leave_gym_dates(error):
    strava = StubStrava(error=error)
    marks = load_calendar(date(2024, 4, 1), date(2024, 4, 30), strava=strava, hevy=StubHevy(["2024-04-05"]))
    assert list(marks) == ["2024-04-05"]


def test_failing_strava_is_logged_and_gym_dates_kept(caplog):
    strava = StubStrava(error=TransportError("boom", status_code=500))
    with caplog.at_level("ERROR"):
        marks = load_calendar(
            date(2024, 4, 1), date(2024, 4, 30), strava=strava, hevy=StubHevy(["2024-04-05"])
        )

    assert list(marks) == ["2024-04-05"]
    assert "Strava running dates unavailable" in caplog.text


def test_failing_hevy_keeps_running_dates(caplog):
    hevy = StubHevy(error=HevyAPIError("Hevy API error 503"))
    with caplog.at_level("ERROR"):
        marks = load_calendar(
            date(2024, 4, 1), date(2024, 4, 30), strava=StubStrava(["2024-04-02"]), hevy=hevy
        )

    assert list(marks) == ["2024-04-02"]
    assert marks["2024-04-02"].running
    assert "Hevy gym dates unavailable" in caplog.text


def test_unexpected_errors_still_propagate():
    hevy = StubHevy(error=KeyError("bug"))
    with pytest.raises(KeyError):
        load_calendar(date(2024, 4, 1), date(2024, 4, 30), hevy=hevy)


def test_unconfigured_hevy_is_skipped():
    hevy = StubHevy(configured=False, error=AssertionError("should not be called"))
    marks = load_calendar(date(2024, 4, 1), date(2024, 4, 30), strava=StubStrava(["2024-04-02"]), hevy=hevy)
    assert list(marks) == ["2024-04-02"]
