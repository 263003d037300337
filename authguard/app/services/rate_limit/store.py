"""Atomic store clients for rate limit counters and logs.

RedisRateLimitStore executes the Lua scripts from redis_lua.py, one EVAL per
check. InMemoryRateLimitStore reproduces the same semantics inside a single
process for development and tests.
"""

import asyncio
import bisect
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import redis

from authguard.app.core.logging import get_log_context, get_logger
from authguard.app.core.redis_client import get_redis_client
from authguard.app.exceptions import RateLimitStoreUnavailableError

from .models import Decision
from .redis_lua import FIXED_WINDOW_SCRIPT, SLIDING_WINDOW_SCRIPT
from .retry import (
    fixed_window_retry_after,
    fixed_window_start,
    sliding_window_retry_after,
)

logger = get_logger(__name__)


class RateLimitStore(ABC):
    """Abstract base class for rate limit stores.

    Every method performs exactly one atomic read-modify-write against the
    store. `now` is the caller's clock in epoch seconds; None means the
    store's own clock.
    """

    @abstractmethod
    async def fixed_window(
        self,
        key: str,
        window_seconds: int,
        max_requests: int,
        now: Optional[float] = None,
    ) -> Decision:
        """Count a request in the fixed window bucket for `key`.

        Args:
            key: Rate limit key (without the window suffix)
            window_seconds: Window length
            max_requests: Requests allowed per window
            now: Current time, or None for the store clock

        Returns:
            Decision for this request
        """
        pass

    @abstractmethod
    async def sliding_window(
        self,
        key: str,
        window_seconds: int,
        max_requests: int,
        now: Optional[float] = None,
    ) -> Decision:
        """Admit a request into the sliding window log for `key` if room remains.

        Args:
            key: Rate limit key
            window_seconds: Window length
            max_requests: Requests allowed in any trailing window
            now: Current time, or None for the store clock

        Returns:
            Decision for this request
        """
        pass

    async def close(self) -> None:
        """Release store resources."""
        pass


class RedisRateLimitStore(RateLimitStore):
    """Redis-based distributed rate limit store.

    Shares counters across every instance pointed at the same Redis. The
    client's connection pool is reused for all checks; no client-side locking
    is done since the scripts are atomic on the server.
    """

    def __init__(self, redis_client: Optional[Any] = None) -> None:
        """Initialize Redis rate limit store.

        Args:
            redis_client: Optional redis.asyncio client. Defaults to the
                process-wide pooled client. The store never closes the
                client; its owner does.
        """
        self._redis = redis_client

    def _get_redis(self) -> Any:
        """Get the pooled Redis client."""
        if self._redis is None:
            self._redis = get_redis_client()
        return self._redis

    async def fixed_window(
        self,
        key: str,
        window_seconds: int,
        max_requests: int,
        now: Optional[float] = None,
    ) -> Decision:
        return await self._run_script(
            FIXED_WINDOW_SCRIPT,
            key,
            window_seconds,
            max_requests,
            self._format_now(now),
        )

    async def sliding_window(
        self,
        key: str,
        window_seconds: int,
        max_requests: int,
        now: Optional[float] = None,
    ) -> Decision:
        return await self._run_script(
            SLIDING_WINDOW_SCRIPT,
            key,
            window_seconds,
            max_requests,
            self._format_now(now),
            uuid.uuid4().hex,
        )

    @staticmethod
    def _format_now(now: Optional[float]) -> str:
        return "" if now is None else f"{now:.6f}"

    async def _run_script(self, script: str, key: str, *args: Any) -> Decision:
        """Evaluate a rate limit script and parse its {allowed, retry, count} reply."""
        try:
            result = await self._get_redis().eval(script, 1, key, *args)
        except redis.ConnectionError as e:
            logger.error(
                f"Redis connection failed: {e}",
                extra=get_log_context(rate_limit_key=key),
            )
            raise RateLimitStoreUnavailableError("connection_error") from e
        except redis.TimeoutError as e:
            logger.warning(
                f"Redis timeout: {e}",
                extra=get_log_context(rate_limit_key=key),
            )
            raise RateLimitStoreUnavailableError("timeout") from e
        except redis.RedisError as e:
            logger.error(
                f"Rate limit script execution failed: {e}",
                extra=get_log_context(rate_limit_key=key),
            )
            raise RateLimitStoreUnavailableError("redis_error") from e

        try:
            return Decision(
                allowed=bool(int(result[0])),
                retry_after_seconds=int(result[1]),
                count=int(result[2]),
            )
        except (TypeError, ValueError, IndexError) as e:
            logger.error(
                f"Unexpected rate limit script reply: {result!r}",
                extra=get_log_context(rate_limit_key=key),
            )
            raise RateLimitStoreUnavailableError("invalid_response") from e


@dataclass
class _Counter:
    """Fixed window bucket for one key."""
    window_start: int
    count: int = 0
    expires_at: float = 0.0


@dataclass
class _Log:
    """Sliding window log: (score, member) pairs kept sorted by score."""
    entries: List[Tuple[float, str]] = field(default_factory=list)
    expires_at: float = 0.0


class InMemoryRateLimitStore(RateLimitStore):
    """In-memory rate limit store with the same semantics as the Lua scripts.

    Suitable for single-instance deployments and tests only: counters are
    not shared between processes. A single asyncio.Lock makes every check
    atomic within the event loop.

    Each key holds only its current bucket or log. Expired entries of other
    keys are swept every `sweep_interval` checks, so memory stays bounded
    by the keys active within one window.
    """

    def __init__(self, sweep_interval: int = 1000) -> None:
        self._counters: Dict[str, _Counter] = {}
        self._logs: Dict[str, _Log] = {}
        self._lock = asyncio.Lock()
        self._sweep_interval = sweep_interval
        self._checks = 0

    async def fixed_window(
        self,
        key: str,
        window_seconds: int,
        max_requests: int,
        now: Optional[float] = None,
    ) -> Decision:
        async with self._lock:
            now = time.time() if now is None else now
            self._maybe_sweep(now)
            window_start = fixed_window_start(now, window_seconds)

            counter = self._counters.get(key)
            if (
                counter is None
                or counter.window_start != window_start
                or counter.expires_at <= now
            ):
                counter = _Counter(
                    window_start=window_start, expires_at=now + window_seconds
                )
                self._counters[key] = counter
            counter.count += 1

            if counter.count <= max_requests:
                return Decision(allowed=True, count=counter.count)
            return Decision(
                allowed=False,
                retry_after_seconds=fixed_window_retry_after(now, window_seconds),
                count=counter.count,
            )

    async def sliding_window(
        self,
        key: str,
        window_seconds: int,
        max_requests: int,
        now: Optional[float] = None,
    ) -> Decision:
        async with self._lock:
            now = time.time() if now is None else now
            self._maybe_sweep(now)

            log = self._logs.get(key)
            if log is None or log.expires_at <= now:
                log = _Log()
                self._logs[key] = log

            # Purge entries with score <= cutoff
            cutoff = now - window_seconds
            purge_to = bisect.bisect_right(log.entries, cutoff, key=lambda e: e[0])
            del log.entries[:purge_to]
            count = len(log.entries)

            if count < max_requests:
                bisect.insort(log.entries, (now, f"{now:.6f}-{uuid.uuid4().hex}"))
                log.expires_at = now + window_seconds
                return Decision(allowed=True, count=count + 1)

            oldest = log.entries[0][0] if log.entries else None
            return Decision(
                allowed=False,
                retry_after_seconds=sliding_window_retry_after(
                    oldest, now, window_seconds
                ),
                count=count,
            )

    def _maybe_sweep(self, now: float) -> None:
        self._checks += 1
        if self._checks >= self._sweep_interval:
            self._checks = 0
            self._purge_expired(now)

    def _purge_expired(self, now: float) -> int:
        expired_counters = [
            key for key, counter in self._counters.items()
            if counter.expires_at <= now
        ]
        for key in expired_counters:
            del self._counters[key]
        expired_logs = [
            key for key, log in self._logs.items() if log.expires_at <= now
        ]
        for key in expired_logs:
            del self._logs[key]
        return len(expired_counters) + len(expired_logs)

    async def cleanup(self, now: Optional[float] = None) -> int:
        """Drop expired counters and logs.

        Returns:
            Number of entries removed.
        """
        async with self._lock:
            return self._purge_expired(time.time() if now is None else now)

    async def close(self) -> None:
        """Clear all state."""
        async with self._lock:
            self._counters.clear()
            self._logs.clear()
