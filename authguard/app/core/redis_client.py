"""Pooled Redis connection shared by the rate limit store.

One client per process; every check borrows a connection from its pool
instead of opening a new one.
"""

from typing import Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from authguard.app.core.config import settings
from authguard.app.core.logging import get_logger

logger = get_logger(__name__)


def create_redis_client(
    redis_url: Optional[str] = None,
    max_connections: Optional[int] = None,
    socket_timeout: Optional[float] = None,
    socket_connect_timeout: Optional[float] = None,
) -> aioredis.Redis:
    """Create a Redis client backed by a bounded connection pool.

    Args:
        redis_url: Redis connection URL. Defaults to settings.redis_url.
        max_connections: Pool size. Defaults to settings.redis_max_connections.
        socket_timeout: Per-command timeout in seconds.
        socket_connect_timeout: Timeout for establishing a connection.

    Returns:
        A redis.asyncio.Redis client. No connection is opened until first use.
    """
    pool = aioredis.ConnectionPool.from_url(
        redis_url or settings.redis_url,
        max_connections=max_connections or settings.redis_max_connections,
        socket_timeout=socket_timeout or settings.redis_socket_timeout,
        socket_connect_timeout=(
            socket_connect_timeout or settings.redis_socket_connect_timeout
        ),
    )
    return aioredis.Redis(connection_pool=pool)


_redis_client: Optional[aioredis.Redis] = None


def get_redis_client() -> aioredis.Redis:
    """Get or create the process-wide Redis client."""
    global _redis_client
    if _redis_client is None:
        _redis_client = create_redis_client()
        logger.info("Created Redis connection pool")
    return _redis_client


async def ping_redis(client: Optional[aioredis.Redis] = None) -> bool:
    """Check that Redis answers a PING.

    Returns:
        True if Redis responded, False on any Redis error.
    """
    client = client or get_redis_client()
    try:
        return bool(await client.ping())
    except RedisError as e:
        logger.warning(f"Redis connection failed: {e}")
        return False


async def close_redis_client() -> None:
    """Close the process-wide Redis client and its pool."""
    global _redis_client
    if _redis_client is None:
        return
    try:
        await _redis_client.aclose()
    except RedisError as e:
        logger.warning(f"Error closing Redis connection: {e}")
    _redis_client = None


def reset_redis_client() -> None:
    """Forget the process-wide client without closing it.

    This is primarily useful for testing.
    """
    global _redis_client
    _redis_client = None
