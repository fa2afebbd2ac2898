"""Pooled HTTP session shared by the Strava and Hevy clients."""

from __future__ import annotations

import threading
from typing import Optional

import requests
from requests import Session
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..config import HTTP_POOL_CONNECTIONS, HTTP_POOL_MAXSIZE

__all__ = ["create_default_session", "get_default_session"]

USER_AGENT = "workout-calendar/0.1"


def _connect_only_retry() -> Retry:
    # Status codes are never retried here; callers classify them.
    return Retry(
        total=2,
        connect=2,
        read=0,
        status=0,
        other=0,
        backoff_factor=0.5,
        allowed_methods=["GET", "POST"],
        raise_on_status=False,
    )


def create_default_session(retry: Optional[Retry] = None) -> Session:
    """Build a session with pooled adapters and JSON defaults."""

    session = requests.Session()
    adapter = HTTPAdapter(
        pool_connections=HTTP_POOL_CONNECTIONS,
        pool_maxsize=HTTP_POOL_MAXSIZE,
        max_retries=retry if retry is not None else _connect_only_retry(),
    )
    for prefix in ("https://", "http://"):
        session.mount(prefix, adapter)
    session.headers.update(
        {
            "Accept": "application/json",
            "Accept-Encoding": "gzip, deflate",
            "User-Agent": USER_AGENT,
        }
    )
    return session


_default_session: Optional[Session] = None
_session_lock = threading.Lock()


def get_default_session() -> Session:
    """Return the process-wide session, creating it on first use."""

    global _default_session
    with _session_lock:
        if _default_session is None:
            _default_session = create_default_session()
        return _default_session
