# shopnest/rate_limit.py
"""
Shared slowapi limiter.

The app registers this instance on app.state and the auth router decorates
its endpoints with it, so disabling it once (RATE_LIMIT_ENABLED=off, or in
tests) turns off every limit.
"""

import os

from slowapi import Limiter
from slowapi.util import get_remote_address

from shopnest.db import is_rate_limit_enabled


def _get_rate_limit_per_min() -> int:
    try:
        return int(os.getenv("RATE_LIMIT_PER_MIN", "30"))
    except ValueError:
        return 30


RATE_LIMIT_PER_MIN = _get_rate_limit_per_min()

# Per-route limits for the code-issuing and code-checking endpoints
ISSUE_LIMIT = "5/minute"
VERIFY_LIMIT = "10/minute"

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[f"{RATE_LIMIT_PER_MIN}/minute"],
    enabled=is_rate_limit_enabled(),
)
