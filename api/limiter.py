"""
api/limiter.py -- Shared slowapi rate limiter instance and per-endpoint buckets.

Import this in api/main.py (to mount as middleware) and in the route modules
(to put each endpoint into its bucket with dependencies=[rate_bucket(...)]).

Using a single shared instance ensures all routes share the same in-memory
counter store. If this were instantiated in each module separately, each
module would get its own isolated counter and rate limits would never trigger.

Buckets are counted per client address under their scope name, so
"authenticate", "logout", "getVPlan" and "getNews" are independent. The
limit strings are read from Settings on each request.

The bucket check is a route-level dependency, so it runs before any other
dependency of the endpoint. Requests that go on to fail authentication are
counted like every other request.
"""

import logging

from fastapi import Depends, Request
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from slowapi.wrappers import LimitGroup

from core.config import get_settings

logger = logging.getLogger("vplan.api.limiter")

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")


def rate_bucket(scope: str, setting: str):
    """Return a dependency that charges one hit to the named rate-limit bucket.

    setting is the Settings attribute holding the limit string, e.g.
    rate_bucket("authenticate", "rate_limit_authenticate"). Raises
    RateLimitExceeded once the bucket is spent.
    """

    def check_bucket(request: Request) -> None:
        if not limiter.enabled:
            return
        key = get_remote_address(request)
        limits = LimitGroup(
            getattr(get_settings(), setting),
            get_remote_address,
            scope,
            False,
            None,
            None,
            None,
            1,
            True,
        )
        for lim in limits:
            if not limiter.limiter.hit(lim.limit, key, scope):
                logger.warning("ratelimit %s (%s) exceeded in bucket %s", lim.limit, key, scope)
                raise RateLimitExceeded(lim)

    return Depends(check_bucket)
