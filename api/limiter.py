"""
api/limiter.py -- Shared slowapi rate limiter instance.

Per-IP ceiling on the login route, on top of the per-identifier lockout in
auth/ratelimit.py. The two answer different attacks: the lockout stops
guessing one account's password, this stops one client spraying many
accounts.

A single shared instance means every route shares one counter store.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")


def login_rate_limit() -> str:
    return get_settings().login_rate_limit
