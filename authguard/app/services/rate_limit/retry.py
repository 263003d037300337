"""Retry-after arithmetic shared by the in-memory store and the tests.

The Redis Lua scripts in redis_lua.py compute the same values server-side.
"""

import math


def fixed_window_start(now: float, window_seconds: int) -> int:
    """Epoch-aligned start of the fixed window containing `now`."""
    return int(math.floor(now / window_seconds) * window_seconds)


def fixed_window_retry_after(now: float, window_seconds: int) -> int:
    """Seconds until the fixed window containing `now` rolls over.

    Rounded up, so always in [1, window_seconds].
    """
    window_end = fixed_window_start(now, window_seconds) + window_seconds
    return _clamp(math.ceil(window_end - now), window_seconds)


def sliding_window_retry_after(
    oldest_score: float | None, now: float, window_seconds: int
) -> int:
    """Seconds until the oldest logged request leaves the sliding window.

    Rounded up so callers never under-promise. With no logged entry the
    whole window is reported.
    """
    if oldest_score is None:
        return window_seconds
    return _clamp(math.ceil(oldest_score + window_seconds - now), window_seconds)


def _clamp(seconds: int, window_seconds: int) -> int:
    return max(0, min(int(seconds), window_seconds))
