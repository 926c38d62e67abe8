"""
api/limiter.py -- Rate limiting for the patron auth endpoint.

The auth endpoint is a password oracle against the ILS, so requests are
counted per client address. The limit string ("30/minute") comes from
AUTH_RATE_LIMIT and is read per request, which lets tests raise it through
the environment before the app is imported.

There is one Limiter for the whole process: api/main.py hands it to slowapi
through app.state.limiter and api/routes/v1/user.py decorates the route with
it, so both see the same in-memory counters.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://", headers_enabled=False)


def auth_rate_limit() -> str:
    """Current limit for the auth endpoint, in slowapi's "N/period" notation."""
    return get_settings().auth_rate_limit
