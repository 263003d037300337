"""Per-email rate limiting for individual routes.

Sign-up and verification-code routes are limited by the email address in
the request body rather than by caller, so one address cannot be flooded
from many clients. Use as a route dependency:

    @app.post(
        "/signup/resend",
        dependencies=[Depends(EmailRateLimit(scope="SignUpService.ResendVerificationCode"))],
    )
"""

import json
from typing import Any, Optional

from fastapi import Request

from authguard.app.services.rate_limit import (
    Algorithm,
    IdentityKind,
    RateLimitService,
    get_rate_limit_service,
)


class EmailRateLimit:
    """FastAPI dependency enforcing a limit keyed by the request's email.

    The email is read from the JSON body field `email_field`, falling back
    to the query parameter of the same name. Requests without an email pass
    through; the route's own validation rejects them.

    Limits come from the policy configured for `scope` (the request path
    when no scope is given) unless `window_seconds`/`max_requests` are set.
    Over the limit, RateLimitExceededError propagates to the registered
    exception handler and becomes a 429.
    """

    def __init__(
        self,
        email_field: str = "email",
        algorithm: Optional[Algorithm | str] = None,
        window_seconds: Optional[int] = None,
        max_requests: Optional[int] = None,
        scope: Optional[str] = None,
        service: Optional[RateLimitService] = None,
    ):
        self.email_field = email_field
        self.algorithm = algorithm
        self.window_seconds = window_seconds
        self.max_requests = max_requests
        self.scope = scope
        self._service = service

    @property
    def service(self) -> RateLimitService:
        if self._service is None:
            self._service = get_rate_limit_service()
        return self._service

    async def _get_email(self, request: Request) -> Optional[str]:
        body: Any = None
        if await request.body():
            try:
                body = await request.json()
            except (json.JSONDecodeError, UnicodeDecodeError):
                body = None

        email = None
        if isinstance(body, dict):
            email = body.get(self.email_field)
        if not isinstance(email, str) or not email.strip():
            email = request.query_params.get(self.email_field)
        if not email or not email.strip():
            return None
        return email

    async def __call__(self, request: Request) -> None:
        email = await self._get_email(request)
        if email is None:
            return

        scope = self.scope or request.url.path
        policy = self.service.get_policy(scope)
        await self.service.enforce(
            self.algorithm or policy.algorithm,
            IdentityKind.EMAIL,
            email,
            max_requests=self.max_requests or policy.max_requests,
            window_seconds=self.window_seconds or policy.window_seconds,
            scope=scope,
        )
