"""Core utilities for the authguard application."""

from authguard.app.core.config import RoutePolicy, Settings, settings
from authguard.app.core.logging import get_log_context, get_logger, setup_logging
from authguard.app.core.redis_client import (
    close_redis_client,
    create_redis_client,
    get_redis_client,
    ping_redis,
    reset_redis_client,
)

__all__ = [
    "RoutePolicy",
    "Settings",
    "settings",
    "get_logger",
    "get_log_context",
    "setup_logging",
    "create_redis_client",
    "get_redis_client",
    "ping_redis",
    "close_redis_client",
    "reset_redis_client",
]
