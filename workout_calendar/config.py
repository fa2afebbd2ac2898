"""Central configuration for the workout calendar data core.

All values are constants imported by the rest of the package. Secrets are read
from environment variables (optionally via a local `.env`).
"""

from __future__ import annotations

import importlib
import os
from pathlib import Path


def _env_int(key: str, default: int) -> int:
    value = os.getenv(key)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _env_bool(key: str, default: bool) -> bool:
    value = os.getenv(key)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


# Load .env variables when python-dotenv is available.
_load_dotenv = None
try:
    _dotenv_mod = importlib.import_module("dotenv")
    _load_dotenv = getattr(_dotenv_mod, "load_dotenv", None)
except ImportError:
    _load_dotenv = None

if callable(_load_dotenv):
    # Load .env from the current directory or any parent folder.
    _load_dotenv()


# ---------------------------------------------------------------------------
# Durable storage
# ---------------------------------------------------------------------------
# JSON document holding tokens and cached payloads. Absolute or relative path.
STORAGE_PATH = Path(
    os.getenv(
        "WORKOUT_CALENDAR_STORAGE",
        str(Path.home() / ".workout_calendar" / "storage.json"),
    )
).expanduser()

# Fixed storage keys shared by the Strava and Hevy services.
STRAVA_ACCESS_TOKEN_KEY = "strava_access_token"
STRAVA_REFRESH_TOKEN_KEY = "strava_refresh_token"
STRAVA_EXPIRES_AT_KEY = "strava_expires_at"
STRAVA_CACHE_KEY = "strava_activities_cache"
STRAVA_CACHE_EXPIRY_KEY = "strava_activities_cache_expiry"
# Oldest instant (epoch ms) the cached activity list was fetched from.
STRAVA_CACHE_FROM_KEY = "strava_activities_cache_from"
HEVY_CACHE_KEY = "hevy_workouts_cache"
HEVY_CACHE_EXPIRY_KEY = "hevy_workouts_cache_expiry"


# ---------------------------------------------------------------------------
# Strava settings
# ---------------------------------------------------------------------------
STRAVA_BASE_URL = "https://www.strava.com/api/v3"
STRAVA_OAUTH_URL = "https://www.strava.com/oauth/token"
STRAVA_AUTHORIZE_URL = "https://www.strava.com/oauth/authorize"

# Client credentials pulled from the environment. Do not hardcode secrets.
CLIENT_ID = os.getenv("STRAVA_CLIENT_ID", "")
CLIENT_SECRET = os.getenv("STRAVA_CLIENT_SECRET", "")

# Local callback used by the OAuth helper. Must match the Strava app settings.
OAUTH_PORT = _env_int("STRAVA_OAUTH_PORT", 5000)
REDIRECT_URI = os.getenv("STRAVA_REDIRECT_URI", f"http://localhost:{OAUTH_PORT}/callback")
STRAVA_SCOPE = os.getenv("STRAVA_SCOPE", "activity:read_all")

# Fernet key used to encrypt tokens at rest. Empty stores tokens in plain text.
TOKEN_ENCRYPTION_KEY = os.getenv("STRAVA_TOKEN_ENCRYPTION_KEY", "")


# ---------------------------------------------------------------------------
# Strava cache policy
# ---------------------------------------------------------------------------
# Lifetime of the cached activity snapshot.
STRAVA_CACHE_TTL_SECONDS = _env_int("STRAVA_CACHE_TTL_SECONDS", 24 * 3600)

# Trailing window fetched when no cache exists.
STRAVA_COMPREHENSIVE_LOOKBACK_DAYS = _env_int("STRAVA_COMPREHENSIVE_LOOKBACK_DAYS", 180)

# Size of each backward extension window and the cap per coverage request.
STRAVA_EXTENSION_WINDOW_DAYS = _env_int("STRAVA_EXTENSION_WINDOW_DAYS", 90)
STRAVA_MAX_EXTENSION_WINDOWS = _env_int("STRAVA_MAX_EXTENSION_WINDOWS", 4)

# per_page sent to /athlete/activities (Strava caps this at 200).
STRAVA_ACTIVITY_PAGE_SIZE = _env_int("STRAVA_ACTIVITY_PAGE_SIZE", 200)

# Upper bound on pages followed for a single window.
STRAVA_MAX_PAGES = _env_int("STRAVA_MAX_PAGES", 10)

# Activity kind rendered on the calendar.
RUNNING_ACTIVITY_TYPES = ("run",)

# Memo lifetime for check_token_scope results. 0 disables the memo.
SCOPE_CHECK_TTL_SECONDS = _env_int("SCOPE_CHECK_TTL_SECONDS", 300)


# ---------------------------------------------------------------------------
# Hevy settings
# ---------------------------------------------------------------------------
HEVY_BASE_URL = "https://api.hevyapp.com"
HEVY_API_KEY = os.getenv("HEVY_API_KEY", "")
HEVY_API_KEY_PLACEHOLDER = "YOUR_HEVY_API_KEY"
HEVY_CACHE_TTL_SECONDS = _env_int("HEVY_CACHE_TTL_SECONDS", 24 * 3600)
# Hevy rejects page sizes above 10.
HEVY_PAGE_SIZE = 10


# ---------------------------------------------------------------------------
# HTTP behaviour
# ---------------------------------------------------------------------------
# Request timeout in seconds.
REQUEST_TIMEOUT = 15

# HTTP session pool sizes.
HTTP_POOL_CONNECTIONS = 4
HTTP_POOL_MAXSIZE = 4

# Strava's short rate-limit window. Used as the cooldown hint after a 429.
RATE_LIMIT_WINDOW_MINUTES = 15

# Log full request parameters (never headers) at DEBUG level.
HTTP_DEBUG_LOGGING = _env_bool("HTTP_DEBUG_LOGGING", False)
