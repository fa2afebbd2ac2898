"""Strava client components (tokens, fetcher, cache, coverage policy)."""

from .activities import ActivitiesAPI  # noqa: F401
from .activity_cache import ActivityCacheStore  # noqa: F401
from .coverage import CacheExtensionPolicy  # noqa: F401
from .rate_limiter import RateLimitTracker  # noqa: F401
from .service import StravaService  # noqa: F401
from .session import create_default_session, get_default_session  # noqa: F401
from .tokens import TokenCipher, TokenManager, TokenStore  # noqa: F401
