"""General utility helpers shared across modules."""

from __future__ import annotations

from datetime import date, datetime, time, timezone
from typing import Any


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_utc_aware(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC datetime (naive values are taken as UTC)."""

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_iso_datetime(raw: Any) -> datetime | None:
    """Parse an ISO-8601 timestamp, accepting a trailing ``Z``.

    The offset (if any) is kept; the value is not converted to another zone.
    """

    if not raw or not isinstance(raw, str):
        return None
    text = raw.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


def parse_date(value: date | datetime | str) -> date:
    """Coerce ``YYYY-MM-DD`` strings, dates and datetimes to a ``date``."""

    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value).strip()[:10])


def local_calendar_date(raw: Any) -> date | None:
    """Return the wall-clock date of a timestamp in its own offset.

    Strava's ``start_date_local`` carries a ``Z`` suffix even though it holds
    local time, so the date part is taken as written and never shifted into
    the host timezone.
    """

    parsed = parse_iso_datetime(raw)
    if parsed is None:
        return None
    return parsed.date()


def start_of_day_utc(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


def to_epoch_seconds(value: datetime) -> int:
    return int(to_utc_aware(value).timestamp())


def to_epoch_millis(value: datetime) -> int:
    return int(to_utc_aware(value).timestamp() * 1000)


def from_epoch_millis(value: int) -> datetime:
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc)


def mask_token(token: str | None, visible: int = 4) -> str:
    """Return ``token`` with all but the trailing ``visible`` chars masked."""

    if not token:
        return ""
    visible = max(0, visible)
    if visible == 0:
        return "*" * len(token)
    hidden_length = max(len(token) - visible, 0)
    if hidden_length == 0:
        return token
    return ("*" * hidden_length) + token[-visible:]
