"""
api/limiter.py -- Shared slowapi rate limiter for anonymous endpoints.

The per-identity throttle (core/throttle.py) cannot bucket anonymous
requests -- there is no subject to key on. Login is therefore protected
separately here, per client IP.

Import this in both api/main.py (to mount as middleware) and
api/routes/v1/auth.py (to apply the login limit with @limiter.limit()).
A single shared instance keeps one in-memory counter store for all routes.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")
