"""Rate limit enforcement facade.

Service handlers call RateLimitService with an already-resolved identity.
Every valid call performs exactly one atomic store operation; invalid calls
are rejected before the store is touched.
"""

import time
from typing import Callable, Mapping, Optional

from authguard.app.core.config import RoutePolicy, settings
from authguard.app.core.logging import get_log_context, get_logger
from authguard.app.exceptions import (
    InvalidRateLimitParametersError,
    RateLimitExceededError,
    RateLimitStoreUnavailableError,
)

from .keys import build_key
from .models import Algorithm, Decision, IdentityKind
from .store import InMemoryRateLimitStore, RateLimitStore, RedisRateLimitStore

logger = get_logger(__name__)

DEFAULT_WINDOW_SECONDS = 60
DEFAULT_MAX_REQUESTS = 10


class RateLimitService:
    """Facade enforcing fixed and sliding window limits against a shared store.

    Provides:
    - One generic check/enforce entry point for every algorithm and identity kind
    - Per identity kind convenience wrappers (email, user id, IP)
    - Per operation policies looked up from configuration
    - A single fail-open/fail-closed switch for store outages

    The store is injected; the service keeps no counts of its own.
    """

    def __init__(
        self,
        store: RateLimitStore,
        *,
        fail_closed: bool = False,
        default_scope: Optional[str] = None,
        clock: Optional[Callable[[], float]] = None,
        policies: Optional[Mapping[str, RoutePolicy]] = None,
        default_policy: Optional[RoutePolicy] = None,
    ) -> None:
        """Initialize the rate limit service.

        Args:
            store: Atomic store the algorithms run against
            fail_closed: Reject with RateLimitStoreUnavailableError when the
                store is unreachable instead of letting the request through
            default_scope: Scope used when a call does not name one
            clock: Returns epoch seconds. None lets the store use its own clock.
            policies: Operation name -> RoutePolicy, for enforce_policy
            default_policy: Policy for operations missing from `policies`
        """
        self._store = store
        self._fail_closed = fail_closed
        self._default_scope = default_scope or None
        self._clock = clock
        self._policies = dict(policies or {})
        self._default_policy = default_policy or RoutePolicy(
            window_seconds=DEFAULT_WINDOW_SECONDS,
            max_requests=DEFAULT_MAX_REQUESTS,
        )

    @property
    def store(self) -> RateLimitStore:
        return self._store

    @property
    def fail_closed(self) -> bool:
        return self._fail_closed

    def get_policy(self, operation: str) -> RoutePolicy:
        """Return the policy configured for an operation, or the default one."""
        return self._policies.get(operation, self._default_policy)

    async def check(
        self,
        algorithm: Algorithm | str,
        identity_kind: IdentityKind | str,
        identity_value: str,
        *,
        max_requests: int,
        window_seconds: int,
        scope: Optional[str] = None,
    ) -> Decision:
        """Run one atomic rate limit check and return its decision.

        Raises:
            InvalidRateLimitParametersError: Parameters are unusable
            RateLimitStoreUnavailableError: Store unreachable and fail-closed
        """
        _, decision = await self._check(
            algorithm,
            identity_kind,
            identity_value,
            max_requests=max_requests,
            window_seconds=window_seconds,
            scope=scope,
        )
        return decision

    async def enforce(
        self,
        algorithm: Algorithm | str,
        identity_kind: IdentityKind | str,
        identity_value: str,
        *,
        max_requests: int = DEFAULT_MAX_REQUESTS,
        window_seconds: int = DEFAULT_WINDOW_SECONDS,
        scope: Optional[str] = None,
    ) -> Decision:
        """Run one atomic rate limit check and raise if the request is over the limit.

        Returns:
            The allowing Decision

        Raises:
            RateLimitExceededError: The limit for this key is used up
            InvalidRateLimitParametersError: Parameters are unusable
            RateLimitStoreUnavailableError: Store unreachable and fail-closed
        """
        key, decision = await self._check(
            algorithm,
            identity_kind,
            identity_value,
            max_requests=max_requests,
            window_seconds=window_seconds,
            scope=scope,
        )
        if not decision.allowed:
            logger.warning(
                "Rate limit exceeded",
                extra=get_log_context(
                    rate_limit_key=key,
                    algorithm=Algorithm(algorithm).value,
                    scope=scope or self._default_scope,
                    identity_kind=IdentityKind(identity_kind).value,
                    retry_after=decision.retry_after_seconds,
                ),
            )
            raise RateLimitExceededError(
                key=key,
                limit=max_requests,
                window_seconds=window_seconds,
                retry_after_seconds=decision.retry_after_seconds,
            )
        return decision

    async def enforce_policy(
        self,
        operation: str,
        identity_kind: IdentityKind | str,
        identity_value: str,
    ) -> Decision:
        """Enforce the configured policy of an operation, scoped to that operation."""
        policy = self.get_policy(operation)
        return await self.enforce(
            policy.algorithm,
            identity_kind,
            identity_value,
            max_requests=policy.max_requests,
            window_seconds=policy.window_seconds,
            scope=operation,
        )

    async def enforce_fixed_by_email(
        self,
        email: str,
        window_seconds: int = DEFAULT_WINDOW_SECONDS,
        max_requests: int = DEFAULT_MAX_REQUESTS,
        scope: Optional[str] = None,
    ) -> Decision:
        return await self.enforce(
            Algorithm.FIXED, IdentityKind.EMAIL, email,
            max_requests=max_requests, window_seconds=window_seconds, scope=scope,
        )

    async def enforce_fixed_by_user_id(
        self,
        user_id: str,
        window_seconds: int = DEFAULT_WINDOW_SECONDS,
        max_requests: int = DEFAULT_MAX_REQUESTS,
        scope: Optional[str] = None,
    ) -> Decision:
        return await self.enforce(
            Algorithm.FIXED, IdentityKind.USER_ID, user_id,
            max_requests=max_requests, window_seconds=window_seconds, scope=scope,
        )

    async def enforce_fixed_by_ip(
        self,
        ip: str,
        window_seconds: int = DEFAULT_WINDOW_SECONDS,
        max_requests: int = DEFAULT_MAX_REQUESTS,
        scope: Optional[str] = None,
    ) -> Decision:
        return await self.enforce(
            Algorithm.FIXED, IdentityKind.IP, ip,
            max_requests=max_requests, window_seconds=window_seconds, scope=scope,
        )

    async def enforce_sliding_by_email(
        self,
        email: str,
        window_seconds: int = DEFAULT_WINDOW_SECONDS,
        max_requests: int = DEFAULT_MAX_REQUESTS,
        scope: Optional[str] = None,
    ) -> Decision:
        return await self.enforce(
            Algorithm.SLIDING, IdentityKind.EMAIL, email,
            max_requests=max_requests, window_seconds=window_seconds, scope=scope,
        )

    async def enforce_sliding_by_user_id(
        self,
        user_id: str,
        window_seconds: int = DEFAULT_WINDOW_SECONDS,
        max_requests: int = DEFAULT_MAX_REQUESTS,
        scope: Optional[str] = None,
    ) -> Decision:
        return await self.enforce(
            Algorithm.SLIDING, IdentityKind.USER_ID, user_id,
            max_requests=max_requests, window_seconds=window_seconds, scope=scope,
        )

    async def enforce_sliding_by_ip(
        self,
        ip: str,
        window_seconds: int = DEFAULT_WINDOW_SECONDS,
        max_requests: int = DEFAULT_MAX_REQUESTS,
        scope: Optional[str] = None,
    ) -> Decision:
        return await self.enforce(
            Algorithm.SLIDING, IdentityKind.IP, ip,
            max_requests=max_requests, window_seconds=window_seconds, scope=scope,
        )

    async def enforce_fixed_by_identity(
        self,
        user_id: Optional[str],
        ip: Optional[str],
        window_seconds: int = DEFAULT_WINDOW_SECONDS,
        max_requests: int = DEFAULT_MAX_REQUESTS,
        scope: Optional[str] = None,
    ) -> Decision:
        """Limit by user id when authenticated, otherwise by client IP."""
        identity_kind, identity_value = resolve_identity(user_id, ip)
        return await self.enforce(
            Algorithm.FIXED, identity_kind, identity_value,
            max_requests=max_requests, window_seconds=window_seconds, scope=scope,
        )

    async def enforce_sliding_by_identity(
        self,
        user_id: Optional[str],
        ip: Optional[str],
        window_seconds: int = DEFAULT_WINDOW_SECONDS,
        max_requests: int = DEFAULT_MAX_REQUESTS,
        scope: Optional[str] = None,
    ) -> Decision:
        """Limit by user id when authenticated, otherwise by client IP."""
        identity_kind, identity_value = resolve_identity(user_id, ip)
        return await self.enforce(
            Algorithm.SLIDING, identity_kind, identity_value,
            max_requests=max_requests, window_seconds=window_seconds, scope=scope,
        )

    async def _check(
        self,
        algorithm: Algorithm | str,
        identity_kind: IdentityKind | str,
        identity_value: str,
        *,
        max_requests: int,
        window_seconds: int,
        scope: Optional[str],
    ) -> tuple[str, Decision]:
        algorithm, identity_kind = _validate(
            algorithm, identity_kind, identity_value, max_requests, window_seconds
        )
        scope = scope if scope is not None else self._default_scope
        key = build_key(algorithm, scope, identity_kind, identity_value)
        now = self._clock() if self._clock is not None else None

        try:
            if algorithm is Algorithm.FIXED:
                decision = await self._store.fixed_window(
                    key, window_seconds, max_requests, now
                )
            else:
                decision = await self._store.sliding_window(
                    key, window_seconds, max_requests, now
                )
        except RateLimitStoreUnavailableError as e:
            return key, self._handle_store_failure(key, algorithm, e)

        return key, decision

    def _handle_store_failure(
        self,
        key: str,
        algorithm: Algorithm,
        error: RateLimitStoreUnavailableError,
    ) -> Decision:
        """Resolve a store outage with the configured fail-open/fail-closed policy."""
        context = get_log_context(rate_limit_key=key, algorithm=algorithm.value)
        if self._fail_closed:
            logger.warning(
                f"Rate limiting fail-closed triggered due to {error.reason}. "
                "Request denied.",
                extra=context,
            )
            raise error

        logger.warning(
            f"Rate limiting fail-open triggered due to {error.reason}. "
            "Request allowed without rate limit check.",
            extra=context,
        )
        return Decision(allowed=True, fail_open=True)


def resolve_identity(
    user_id: Optional[str], ip: Optional[str]
) -> tuple[IdentityKind, str]:
    """Pick the user id identity if present, else the IP ("unknown" if missing)."""
    if user_id and user_id.strip():
        return IdentityKind.USER_ID, user_id
    if ip and ip.strip():
        return IdentityKind.IP, ip
    return IdentityKind.IP, "unknown"


def _validate(
    algorithm: Algorithm | str,
    identity_kind: IdentityKind | str,
    identity_value: str,
    max_requests: int,
    window_seconds: int,
) -> tuple[Algorithm, IdentityKind]:
    try:
        algorithm = Algorithm(algorithm)
    except ValueError:
        raise InvalidRateLimitParametersError(
            "algorithm", f"unknown algorithm {algorithm!r}"
        ) from None
    try:
        identity_kind = IdentityKind(identity_kind)
    except ValueError:
        raise InvalidRateLimitParametersError(
            "identity_kind", f"unknown identity kind {identity_kind!r}"
        ) from None

    for name, value in (
        ("window_seconds", window_seconds),
        ("max_requests", max_requests),
    ):
        if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
            raise InvalidRateLimitParametersError(
                name, f"must be a positive integer, got {value!r}"
            )

    if not isinstance(identity_value, str) or not identity_value.strip():
        raise InvalidRateLimitParametersError(
            "identity_value", "must be a non-empty string"
        )
    return algorithm, identity_kind


def create_rate_limit_service(
    store: Optional[RateLimitStore] = None,
) -> RateLimitService:
    """Create a RateLimitService from settings.

    Args:
        store: Store to use. Defaults to Redis when settings.redis_enabled,
            otherwise the in-memory store.
    """
    if store is None:
        if settings.redis_enabled:
            store = RedisRateLimitStore()
            logger.info("Using Redis rate limit store")
        else:
            store = InMemoryRateLimitStore()
            logger.info("Using in-memory rate limit store")

    clock = None if settings.rate_limit_use_store_clock else time.time

    if not settings.rate_limit_fail_closed:
        logger.info("Rate limiting configured to fail open on store outages")

    return RateLimitService(
        store,
        fail_closed=settings.rate_limit_fail_closed,
        default_scope=settings.rate_limit_default_scope,
        clock=clock,
        policies=settings.rate_limit_policies,
        default_policy=settings.default_policy,
    )


_rate_limit_service: Optional[RateLimitService] = None


def get_rate_limit_service() -> RateLimitService:
    """Get the application's rate limit service instance."""
    global _rate_limit_service
    if _rate_limit_service is None:
        _rate_limit_service = create_rate_limit_service()
    return _rate_limit_service


def reset_rate_limit_service() -> None:
    """Reset the application's rate limit service instance."""
    global _rate_limit_service
    _rate_limit_service = None
