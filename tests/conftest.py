"""Shared fixtures for rate limiting tests."""

import pytest
import pytest_asyncio

from authguard.app.services.rate_limit import reset_rate_limit_service
from authguard.app.core.redis_client import reset_redis_client

# Start of a minute and of a fixed window of 60 seconds
WINDOW_ALIGNED_NOW = 1_700_000_040.0


class FakeClock:
    """Callable clock returning a controllable epoch time."""

    def __init__(self, now: float = WINDOW_ALIGNED_NOW):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(autouse=True)
def reset_globals():
    """Reset global state before each test."""
    reset_rate_limit_service()
    reset_redis_client()
    yield
    reset_rate_limit_service()
    reset_redis_client()


@pytest.fixture
def clock():
    return FakeClock()


@pytest_asyncio.fixture
async def fake_redis():
    """Async fakeredis client with Lua scripting support."""
    pytest.importorskip("lupa")
    fakeredis = pytest.importorskip("fakeredis")
    client = fakeredis.FakeAsyncRedis()
    yield client
    await client.flushall()
    await client.aclose()
