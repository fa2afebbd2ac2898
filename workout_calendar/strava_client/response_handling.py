"""Shared HTTP response helpers for Strava API interactions."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import requests

from ..errors import (
    InsufficientScopeError,
    StravaAuthError,
    TransportError,
    WorkoutCalendarError,
)

LOGGER = logging.getLogger(__name__)

__all__ = [
    "classify_error_status",
    "extract_error",
    "is_scope_error",
]

# Fragments Strava uses when a token lacks the activity:read_all grant.
_SCOPE_MARKERS = ("activity:read_permission", "scope", "permission")


def classify_error_status(
    response: requests.Response, context: str
) -> WorkoutCalendarError:
    """Map a non-success response (other than 429) to the error to raise."""

    status = response.status_code
    detail = extract_error(response)

    def with_detail(message: str) -> str:
        return f"{message} | {detail}" if detail else message

    if status == 401:
        message = with_detail(f"{context} unauthorized after token refresh")
        LOGGER.warning(message)
        return StravaAuthError(message)

    if status == 403 and is_scope_error(detail):
        message = with_detail(f"{context} forbidden: grant lacks required scope")
        LOGGER.warning(message)
        return InsufficientScopeError(message)

    message = with_detail(f"{context} request failed (status {status})")
    LOGGER.error(message)
    return TransportError(message, status_code=status, detail=detail)


def is_scope_error(detail: Optional[str]) -> bool:
    if not detail:
        return False
    lowered = detail.lower()
    return any(marker in lowered for marker in _SCOPE_MARKERS)


def extract_error(resp: Optional[requests.Response]) -> Optional[str]:
    """Return compact string with Strava error info (message + codes) if present."""

    if resp is None:
        return None
    data = _safe_json(resp)
    if data is None:
        return _extract_error_text(resp)
    if not isinstance(data, dict):
        return None
    parts = _collect_error_parts(data)
    return " | ".join(parts) if parts else None


def _safe_json(resp: requests.Response) -> Optional[Any]:
    try:
        return resp.json()
    except ValueError as exc:
        LOGGER.debug("Failed to decode JSON from %s: %s", getattr(resp, "url", "?"), exc)
        return None


def _extract_error_text(resp: requests.Response) -> Optional[str]:
    text = getattr(resp, "text", "")
    if not isinstance(text, str):
        return None
    trimmed = text.strip()
    if not trimmed:
        return None
    return (trimmed[:297] + "...") if len(trimmed) > 300 else trimmed


def _collect_error_parts(data: Dict[str, Any]) -> List[str]:
    """Build error snippets from the standard Strava error body.

    Strava answers ``{"message": ..., "errors": [{"resource", "field", "code"}]}``;
    a missing scope shows up as ``field=activity:read_permission code=missing``.
    """

    parts: List[str] = []
    message = data.get("message")
    if message:
        parts.append(str(message))
    errors = data.get("errors")
    if isinstance(errors, list):
        for err in errors:
            if not isinstance(err, dict):
                continue
            resource = err.get("resource")
            field = err.get("field")
            code = err.get("code")
            target = "/".join(filter(None, (resource, field)))
            if code and target:
                parts.append(f"{target}:{code}")
            elif code:
                parts.append(str(code))
    return parts
