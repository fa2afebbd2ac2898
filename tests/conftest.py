"""Global pytest fixtures & helpers.

Adds project root to path and provides fake HTTP plumbing, an in-memory
store and a controllable clock shared by the Strava and Hevy tests.
"""
from __future__ import annotations

import json
import os
import sys
from datetime import datetime, timedelta, timezone

import pytest

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from workout_calendar.storage import MemoryStore


class FakeResp:
    """Minimal fake response matching needed parts of requests.Response."""

    def __init__(self, status_code=200, data=None, headers=None, text=None):
        self.status_code = status_code
        self._data = data
        self.headers = headers or {}
        self._text = text
        self.url = "https://example.test"

    def json(self):
        if isinstance(self._data, Exception):  # force JSON error
            raise self._data
        return self._data

    @property
    def text(self):
        if self._text is not None:
            return self._text
        try:
            return json.dumps(self._data)
        except Exception:
            return str(self._data)


class FakeSession:
    """Records calls and replays scripted responses in order.

    ``get_responses`` / ``post_responses`` items may be ``FakeResp`` instances,
    exceptions (raised) or callables receiving the call kwargs.
    """

    def __init__(self, get_responses=None, post_responses=None):
        self.get_responses = list(get_responses or [])
        self.post_responses = list(post_responses or [])
        self.get_calls = []
        self.post_calls = []

    def _next(self, queue, kwargs):
        if not queue:
            raise AssertionError("Unexpected HTTP call")
        item = queue.pop(0)
        if isinstance(item, Exception):
            raise item
        if callable(item):
            return item(**kwargs)
        return item

    def get(self, url, headers=None, params=None, timeout=None):
        kwargs = {"url": url, "headers": headers, "params": params, "timeout": timeout}
        self.get_calls.append(kwargs)
        return self._next(self.get_responses, kwargs)

    def post(self, url, data=None, timeout=None):
        kwargs = {"url": url, "data": data, "timeout": timeout}
        self.post_calls.append(kwargs)
        return self._next(self.post_responses, kwargs)


class FakeClock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


def make_activity(activity_id, day, kind="Run", hour=7):
    """Strava summary activity started on ``day`` (YYYY-MM-DD) at ``hour``."""

    stamp = f"{day}T{hour:02d}:00:00Z"
    return {
        "id": activity_id,
        "type": kind,
        "sport_type": kind,
        "start_date": stamp,
        "start_date_local": stamp,
    }


def token_payload(access="AAA", refresh="RRR", expires_at=None):
    data = {"access_token": access, "refresh_token": refresh, "token_type": "Bearer"}
    if expires_at is not None:
        data["expires_at"] = expires_at
    return data


# --- Fixtures --------------------------------------------------------
@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def clock():
    return FakeClock(datetime(2024, 5, 15, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def valid_credential(store, clock):
    """Seed a credential that stays valid for six hours."""

    expires_at = int((clock() + timedelta(hours=6)).timestamp())
    store.set("strava_access_token", "stored-access")
    store.set("strava_refresh_token", "stored-refresh")
    store.set("strava_expires_at", str(expires_at))
    return expires_at
