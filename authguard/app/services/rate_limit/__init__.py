"""Distributed rate limiting for authentication endpoints.

This package makes atomic accept/reject decisions with Redis Lua scripts,
under fixed window and sliding window semantics, and falls back to a
configurable fail-open/fail-closed policy when Redis is unavailable.
"""

from .keys import build_key, normalize_identity
from .models import Algorithm, Decision, IdentityKind
from .redis_lua import FIXED_WINDOW_SCRIPT, SLIDING_WINDOW_SCRIPT
from .retry import (
    fixed_window_retry_after,
    fixed_window_start,
    sliding_window_retry_after,
)
from .service import (
    RateLimitService,
    create_rate_limit_service,
    get_rate_limit_service,
    reset_rate_limit_service,
    resolve_identity,
)
from .store import InMemoryRateLimitStore, RateLimitStore, RedisRateLimitStore

__all__ = [
    "Algorithm",
    "Decision",
    "IdentityKind",
    "build_key",
    "normalize_identity",
    "FIXED_WINDOW_SCRIPT",
    "SLIDING_WINDOW_SCRIPT",
    "fixed_window_start",
    "fixed_window_retry_after",
    "sliding_window_retry_after",
    "RateLimitStore",
    "RedisRateLimitStore",
    "InMemoryRateLimitStore",
    "RateLimitService",
    "create_rate_limit_service",
    "get_rate_limit_service",
    "reset_rate_limit_service",
    "resolve_identity",
]
