from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class Credential:
    access_token: str
    refresh_token: str
    # Epoch seconds as supplied by Strava.
    expires_at: int

    def expires_at_datetime(self) -> datetime:
        return datetime.fromtimestamp(self.expires_at, tz=timezone.utc)

    def is_valid(self, now: datetime) -> bool:
        return now < self.expires_at_datetime()


@dataclass
class CachedActivitySet:
    activities: List[Dict[str, Any]]
    expires_at: datetime
    # Lower bound of the fetched span; None when unknown.
    covered_from: Optional[datetime] = None


@dataclass(frozen=True)
class ApiUsage:
    usage: Optional[int]
    limit: Optional[int]
    last_rate_limit_time: Optional[datetime]


@dataclass
class DayMarks:
    running: bool = False
    gym: bool = False

    @property
    def both(self) -> bool:
        return self.running and self.gym
