"""Tests for RedisRateLimitStore.

Tests cover:
- Script arguments and reply parsing against a mocked client
- Mapping of Redis failures to RateLimitStoreUnavailableError
- Lua script semantics against fakeredis
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import redis

from authguard.app.exceptions import RateLimitStoreUnavailableError
from authguard.app.services.rate_limit import (
    FIXED_WINDOW_SCRIPT,
    SLIDING_WINDOW_SCRIPT,
    RedisRateLimitStore,
)

# Start of a 60 second window
WINDOW_ALIGNED_NOW = 1_700_000_040.0


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def mock_redis():
    """Create a mock Redis client."""
    client = MagicMock()
    client.eval = AsyncMock(return_value=[1, 0, 1])
    return client


@pytest.fixture
def store(mock_redis):
    return RedisRateLimitStore(redis_client=mock_redis)


# ============================================================================
# Mocked client
# ============================================================================

class TestScriptInvocation:
    """Tests for the arguments passed to EVAL."""

    @pytest.mark.asyncio
    async def test_fixed_window_arguments(self, store, mock_redis):
        await store.fixed_window("fixed:SignIn:ip:1.2.3.4", 60, 10, WINDOW_ALIGNED_NOW)

        mock_redis.eval.assert_awaited_once_with(
            FIXED_WINDOW_SCRIPT,
            1,
            "fixed:SignIn:ip:1.2.3.4",
            60,
            10,
            "1700000040.000000",
        )

    @pytest.mark.asyncio
    async def test_sliding_window_arguments(self, store, mock_redis):
        await store.sliding_window("sliding:user:42", 30, 5, 1_700_000_001.25)

        args = mock_redis.eval.await_args.args
        assert args[:6] == (
            SLIDING_WINDOW_SCRIPT, 1, "sliding:user:42", 30, 5, "1700000001.250000"
        )
        # Unique member token
        assert len(args[6]) == 32

    @pytest.mark.asyncio
    async def test_sliding_window_tokens_are_unique(self, store, mock_redis):
        await store.sliding_window("k", 60, 5, WINDOW_ALIGNED_NOW)
        await store.sliding_window("k", 60, 5, WINDOW_ALIGNED_NOW)

        first, second = mock_redis.eval.await_args_list
        assert first.args[6] != second.args[6]

    @pytest.mark.asyncio
    async def test_store_clock_sends_empty_now(self, store, mock_redis):
        """Without a caller clock the script reads the Redis server time."""
        await store.fixed_window("k", 60, 10)
        assert mock_redis.eval.await_args.args[5] == ""

    @pytest.mark.asyncio
    async def test_uses_global_client_by_default(self, mock_redis):
        with patch(
            "authguard.app.services.rate_limit.store.get_redis_client",
            return_value=mock_redis,
        ) as get_client:
            store = RedisRateLimitStore()
            await store.fixed_window("k", 60, 10, WINDOW_ALIGNED_NOW)
            await store.fixed_window("k", 60, 10, WINDOW_ALIGNED_NOW)

        get_client.assert_called_once()
        assert mock_redis.eval.await_count == 2


class TestReplyParsing:
    """Tests for parsing the {allowed, retry_after, count} reply."""

    @pytest.mark.asyncio
    async def test_allowed_reply(self, store, mock_redis):
        mock_redis.eval.return_value = [1, 0, 3]

        decision = await store.fixed_window("k", 60, 10, WINDOW_ALIGNED_NOW)

        assert decision.allowed is True
        assert decision.retry_after_seconds == 0
        assert decision.count == 3
        assert decision.fail_open is False

    @pytest.mark.asyncio
    async def test_rejected_reply(self, store, mock_redis):
        mock_redis.eval.return_value = [0, 42, 11]

        decision = await store.sliding_window("k", 60, 10, WINDOW_ALIGNED_NOW)

        assert decision.allowed is False
        assert decision.retry_after_seconds == 42
        assert decision.count == 11

    @pytest.mark.asyncio
    async def test_bytes_reply(self, store, mock_redis):
        mock_redis.eval.return_value = [b"0", b"5", b"2"]

        decision = await store.fixed_window("k", 60, 1, WINDOW_ALIGNED_NOW)

        assert decision.allowed is False
        assert decision.retry_after_seconds == 5

    @pytest.mark.asyncio
    @pytest.mark.parametrize("reply", [None, [], [1], ["yes", 0, 1]])
    async def test_malformed_reply(self, store, mock_redis, reply):
        mock_redis.eval.return_value = reply

        with pytest.raises(RateLimitStoreUnavailableError) as exc_info:
            await store.fixed_window("k", 60, 10, WINDOW_ALIGNED_NOW)

        assert exc_info.value.reason == "invalid_response"


class TestErrorMapping:
    """Tests for Redis failures surfacing as store unavailability."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error, reason",
        [
            (redis.ConnectionError("refused"), "connection_error"),
            (redis.TimeoutError("timed out"), "timeout"),
            (redis.ResponseError("NOSCRIPT"), "redis_error"),
        ],
    )
    async def test_redis_errors(self, store, mock_redis, error, reason):
        mock_redis.eval.side_effect = error

        with pytest.raises(RateLimitStoreUnavailableError) as exc_info:
            await store.fixed_window("k", 60, 10, WINDOW_ALIGNED_NOW)

        assert exc_info.value.reason == reason
        assert exc_info.value.__cause__ is error

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self, store, mock_redis):
        mock_redis.eval.side_effect = asyncio.CancelledError()

        with pytest.raises(asyncio.CancelledError):
            await store.sliding_window("k", 60, 10, WINDOW_ALIGNED_NOW)


# ============================================================================
# Lua scripts against fakeredis
# ============================================================================

class TestFixedWindowScript:
    """Tests for the fixed window script semantics."""

    @pytest.mark.asyncio
    async def test_counts_and_rejects(self, fake_redis):
        store = RedisRateLimitStore(redis_client=fake_redis)

        for i in range(3):
            decision = await store.fixed_window("fixed:ip:1.2.3.4", 60, 3, WINDOW_ALIGNED_NOW)
            assert decision.allowed is True
            assert decision.count == i + 1

        decision = await store.fixed_window("fixed:ip:1.2.3.4", 60, 3, WINDOW_ALIGNED_NOW + 15)
        assert decision.allowed is False
        assert decision.retry_after_seconds == 45
        assert decision.count == 4

    @pytest.mark.asyncio
    async def test_bucket_key_and_ttl(self, fake_redis):
        store = RedisRateLimitStore(redis_client=fake_redis)

        await store.fixed_window("fixed:ip:1.2.3.4", 60, 3, WINDOW_ALIGNED_NOW + 10)
        await store.fixed_window("fixed:ip:1.2.3.4", 60, 3, WINDOW_ALIGNED_NOW + 20)

        bucket = "fixed:ip:1.2.3.4:1700000040"
        assert int(await fake_redis.get(bucket)) == 2
        ttl = await fake_redis.ttl(bucket)
        assert 0 < ttl <= 60

    @pytest.mark.asyncio
    async def test_new_window_new_bucket(self, fake_redis):
        store = RedisRateLimitStore(redis_client=fake_redis)

        await store.fixed_window("k", 60, 1, WINDOW_ALIGNED_NOW)
        assert not (await store.fixed_window("k", 60, 1, WINDOW_ALIGNED_NOW + 59)).allowed
        assert (await store.fixed_window("k", 60, 1, WINDOW_ALIGNED_NOW + 60)).allowed

    @pytest.mark.asyncio
    async def test_top_of_hour_retry(self, fake_redis):
        store = RedisRateLimitStore(redis_client=fake_redis)

        for _ in range(5):
            assert (await store.fixed_window("k", 3600, 5, 1_700_000_000.0)).allowed
        decision = await store.fixed_window("k", 3600, 5, 1_700_000_000.0)

        assert decision.allowed is False
        assert decision.retry_after_seconds == 2800

    @pytest.mark.asyncio
    async def test_server_clock(self, fake_redis):
        store = RedisRateLimitStore(redis_client=fake_redis)

        first = await store.fixed_window("k", 60, 1)
        second = await store.fixed_window("k", 60, 1)

        assert first.allowed is True
        # Either rejected in the same window or admitted in the next one
        if not second.allowed:
            assert 1 <= second.retry_after_seconds <= 60

    @pytest.mark.asyncio
    async def test_concurrent_checks_admit_exact_limit(self, fake_redis):
        store = RedisRateLimitStore(redis_client=fake_redis)

        results = await asyncio.gather(*[
            store.fixed_window("k", 60, 10, WINDOW_ALIGNED_NOW) for _ in range(40)
        ])

        assert sum(1 for d in results if d.allowed) == 10


class TestSlidingWindowScript:
    """Tests for the sliding window script semantics."""

    @pytest.mark.asyncio
    async def test_rejects_without_logging(self, fake_redis):
        store = RedisRateLimitStore(redis_client=fake_redis)

        for _ in range(2):
            assert (await store.sliding_window("s", 60, 2, WINDOW_ALIGNED_NOW)).allowed
        decision = await store.sliding_window("s", 60, 2, WINDOW_ALIGNED_NOW + 20)

        assert decision.allowed is False
        assert decision.count == 2
        assert decision.retry_after_seconds == 40
        assert await fake_redis.zcard("s") == 2

    @pytest.mark.asyncio
    async def test_old_entries_evicted(self, fake_redis):
        store = RedisRateLimitStore(redis_client=fake_redis)

        await store.sliding_window("s", 60, 1, WINDOW_ALIGNED_NOW)
        assert not (await store.sliding_window("s", 60, 1, WINDOW_ALIGNED_NOW + 59)).allowed

        decision = await store.sliding_window("s", 60, 1, WINDOW_ALIGNED_NOW + 60)

        assert decision.allowed is True
        assert await fake_redis.zcard("s") == 1

    @pytest.mark.asyncio
    async def test_no_burst_across_minute_boundary(self, fake_redis):
        store = RedisRateLimitStore(redis_client=fake_redis)
        t = WINDOW_ALIGNED_NOW + 59

        for _ in range(3):
            assert (await store.sliding_window("s", 60, 3, t)).allowed
        decision = await store.sliding_window("s", 60, 3, t + 1)

        assert decision.allowed is False
        assert decision.retry_after_seconds == 59

    @pytest.mark.asyncio
    async def test_log_has_ttl(self, fake_redis):
        store = RedisRateLimitStore(redis_client=fake_redis)

        await store.sliding_window("s", 30, 5, WINDOW_ALIGNED_NOW)

        ttl = await fake_redis.ttl("s")
        assert 0 < ttl <= 30

    @pytest.mark.asyncio
    async def test_concurrent_checks_admit_exact_limit(self, fake_redis):
        store = RedisRateLimitStore(redis_client=fake_redis)

        results = await asyncio.gather(*[
            store.sliding_window("s", 60, 10, WINDOW_ALIGNED_NOW) for _ in range(40)
        ])

        assert sum(1 for d in results if d.allowed) == 10
        assert await fake_redis.zcard("s") == 10
