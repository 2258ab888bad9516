"""Per-client request limits for the SyncUp API.

``SlowAPIMiddleware`` (added in main.py) applies ``RATE_LIMIT_DEFAULT`` to
every route, keyed by the client IP. Over-limit requests get a 429.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from backend.config import settings

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[settings.RATE_LIMIT_DEFAULT],
)
