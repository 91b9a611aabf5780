"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in both api/main.py (to mount as middleware) and the route
modules (to apply per-route limits with @limiter.limit()).

Using a single shared instance ensures all routes share the same in-memory
counter store. If this were instantiated in each module separately, each
module would get its own isolated counter and rate limits would never trigger.

Limits are fixed windows keyed by client address. The limit strings come
from Settings and are read per request through the callables below, so
LOGIN_RATE_LIMIT etc. can be changed without touching route code.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")


def login_limit() -> str:
    return get_settings().login_rate_limit


def mfa_limit() -> str:
    return get_settings().mfa_rate_limit


def refresh_limit() -> str:
    return get_settings().refresh_rate_limit
