import json
import re
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class RoutePolicy(BaseModel):
    """Rate limit applied to one operation (gRPC method name or HTTP path)."""

    window_seconds: int = Field(gt=0)
    max_requests: int = Field(gt=0)
    algorithm: Literal["fixed", "sliding"] = "fixed"


def _default_policies() -> dict[str, RoutePolicy]:
    # Keyed by RPC operation name. HTTP routes opt in with
    # EmailRateLimit(scope=...); RateLimitMiddleware looks policies up by path.
    return {
        "SignUpService.InitiateSignUp": RoutePolicy(
            window_seconds=3600, max_requests=15, algorithm="fixed"
        ),
        "SignUpService.ResendVerificationCode": RoutePolicy(
            window_seconds=3600, max_requests=5, algorithm="fixed"
        ),
    }


def _split_list(raw: Any) -> list[str]:
    if raw is None:
        return []
    if isinstance(raw, list):
        items = [str(v).strip() for v in raw]
        return [v for v in items if v]

    raw = str(raw).strip()
    if not raw or raw == "[]":
        return []

    # Prefer JSON, but tolerate comma separated values.
    if raw.startswith("["):
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            parsed = None
        if isinstance(parsed, list):
            items = [str(v).strip() for v in parsed]
            return [v for v in items if v]

    items: list[str] = []
    for part in re.split(r"[,\s]+", raw):
        if part and part not in items:
            items.append(part)
    return items


def _parse_paths(raw: Any) -> list[str]:
    paths: list[str] = []
    for part in _split_list(raw):
        if not part.startswith("/"):
            part = f"/{part}"
        if part not in paths:
            paths.append(part)
    return paths


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All settings can be configured via environment variables or .env file.
    """

    # Debug mode - enables detailed error responses
    debug: bool = False

    # Logging settings
    log_level: str = "INFO"
    log_format: str = "text"  # text | structured | json

    # Redis settings
    redis_enabled: bool = False
    redis_url: str = "redis://localhost:6379/0"
    redis_max_connections: int = 50
    redis_socket_timeout: float = 1.0  # Per-command timeout in seconds
    redis_socket_connect_timeout: float = 1.0

    # Rate limiting settings
    rate_limit_enabled: bool = True
    rate_limit_fail_closed: bool = (
        False  # If True, deny requests when Redis is unavailable
    )
    rate_limit_use_store_clock: bool = True  # Scripts read Redis TIME
    rate_limit_default_algorithm: Literal["fixed", "sliding"] = "fixed"
    rate_limit_default_window_seconds: int = 60
    rate_limit_default_max_requests: int = 10
    rate_limit_default_scope: str = ""
    rate_limit_policies: dict[str, RoutePolicy] = Field(
        default_factory=_default_policies
    )

    # Path prefixes guarded by RateLimitMiddleware
    rate_limit_paths: Annotated[list[str], NoDecode] = ["/auth"]

    # Peers whose X-Forwarded-For header is trusted for the client IP.
    # Empty means the socket peer address is always used.
    rate_limit_trusted_proxies: Annotated[list[str], NoDecode] = []

    @field_validator("rate_limit_paths", mode="before")
    @classmethod
    def decode_rate_limit_paths(cls, v: Any) -> list[str]:
        return _parse_paths(v)

    @field_validator("rate_limit_trusted_proxies", mode="before")
    @classmethod
    def decode_trusted_proxies(cls, v: Any) -> list[str]:
        return _split_list(v)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of {valid_levels}")
        return v.upper()

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        """Validate log format."""
        valid_formats = ["text", "structured", "json"]
        if v.lower() not in valid_formats:
            raise ValueError(f"Log format must be one of {valid_formats}")
        return v.lower()

    @field_validator(
        "rate_limit_default_window_seconds", "rate_limit_default_max_requests"
    )
    @classmethod
    def validate_rate_limit_positive(cls, v: int) -> int:
        """Validate rate limit values are positive."""
        if v < 1:
            raise ValueError("Rate limit values must be at least 1")
        return v

    @field_validator("redis_max_connections")
    @classmethod
    def validate_pool_size_positive(cls, v: int) -> int:
        """Validate pool size is positive."""
        if v < 1:
            raise ValueError("pool size values must be at least 1")
        return v

    @field_validator("redis_socket_timeout", "redis_socket_connect_timeout")
    @classmethod
    def validate_timeout_positive(cls, v: float) -> float:
        """Validate timeout values are positive."""
        if v <= 0:
            raise ValueError("Timeout values must be positive")
        return v

    @property
    def default_policy(self) -> RoutePolicy:
        """Policy for operations without an entry in rate_limit_policies."""
        return RoutePolicy(
            window_seconds=self.rate_limit_default_window_seconds,
            max_requests=self.rate_limit_default_max_requests,
            algorithm=self.rate_limit_default_algorithm,
        )

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


# Global settings instance
settings = Settings()
