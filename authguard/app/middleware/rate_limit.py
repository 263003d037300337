"""Rate limiting middleware for authguard.

Applies the configured per-path policy to requests under the guarded path
prefixes. The identity is the user id set on request.state by the
authentication layer, otherwise the client IP.
"""

from typing import Optional, Sequence

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from authguard.app.core.config import settings
from authguard.app.core.logging import get_log_context, get_logger
from authguard.app.exceptions import (
    RateLimitExceededError,
    RateLimitStoreUnavailableError,
)
from authguard.app.services.rate_limit import (
    RateLimitService,
    get_rate_limit_service,
    resolve_identity,
)

logger = get_logger(__name__)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Middleware to enforce rate limits on guarded paths.

    Rate limits are applied per authenticated user id if available,
    otherwise per client IP. Request headers never choose the user id.
    The request path is the scope, so every endpoint has its own counter.
    """

    def __init__(
        self,
        app,
        service: Optional[RateLimitService] = None,
        apply_to_paths: Optional[Sequence[str]] = None,
        trusted_proxies: Optional[Sequence[str]] = None,
    ):
        super().__init__(app)
        self._service = service
        self.apply_to_paths = tuple(
            apply_to_paths if apply_to_paths is not None else settings.rate_limit_paths
        )
        self.trusted_proxies = frozenset(
            trusted_proxies if trusted_proxies is not None
            else settings.rate_limit_trusted_proxies
        )

    @property
    def service(self) -> RateLimitService:
        if self._service is None:
            self._service = get_rate_limit_service()
        return self._service

    def _should_apply(self, request: Request) -> bool:
        if request.method == "OPTIONS":
            return False
        path = request.url.path
        return any(path.startswith(prefix) for prefix in self.apply_to_paths)

    @staticmethod
    def _get_user_id(request: Request) -> Optional[str]:
        # Set by the authentication layer from a verified token
        return getattr(request.state, "user_id", None)

    def _get_client_ip(self, request: Request) -> Optional[str]:
        peer = request.client.host if request.client else None
        if peer in self.trusted_proxies:
            forwarded = request.headers.get("X-Forwarded-For")
            if forwarded:
                return forwarded.split(",")[0].strip()
        return peer

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint
    ) -> Response:
        """Process request with rate limiting."""
        if not self._should_apply(request):
            return await call_next(request)

        path = request.url.path
        identity_kind, identity_value = resolve_identity(
            self._get_user_id(request), self._get_client_ip(request)
        )
        policy = self.service.get_policy(path)

        try:
            decision = await self.service.enforce_policy(
                path, identity_kind, identity_value
            )
        except RateLimitExceededError as exc:
            return JSONResponse(
                status_code=exc.status_code,
                content=exc.to_response(),
                headers=exc.headers(),
            )
        except RateLimitStoreUnavailableError as exc:
            logger.error(
                "Rate limit check unavailable, rejecting request",
                extra=get_log_context(
                    request_id=getattr(request.state, "request_id", None),
                    path=path,
                    method=request.method,
                ),
            )
            return JSONResponse(
                status_code=exc.status_code,
                content=exc.to_response(),
            )

        response = await call_next(request)

        if not decision.fail_open:
            response.headers["X-RateLimit-Limit"] = str(policy.max_requests)
            response.headers["X-RateLimit-Remaining"] = str(
                decision.remaining(policy.max_requests)
            )

        return response
