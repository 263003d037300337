"""Middleware package for authguard."""

from authguard.app.middleware.email_rate_limit import EmailRateLimit
from authguard.app.middleware.rate_limit import RateLimitMiddleware
from authguard.app.middleware.request_id import RequestIdMiddleware, get_request_id

__all__ = [
    "EmailRateLimit",
    "RateLimitMiddleware",
    "RequestIdMiddleware",
    "get_request_id",
]
