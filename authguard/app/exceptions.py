"""Custom exceptions for the authguard application."""


class AuthGuardException(Exception):
    """Base class for authguard exceptions with HTTP status code.

    All custom exceptions should inherit from this class and define
    their specific status_code for consistent HTTP response handling.
    """
    status_code: int = 500

    def __init__(self, message: str = "AuthGuard error"):
        self.message = message
        super().__init__(message)


class RateLimitExceededError(AuthGuardException):
    """Raised when a caller has used up the requests allowed in a window.

    Carries everything the transport layer needs to tell the client how
    long to wait. Maps to HTTP 429 Too Many Requests.
    """
    status_code = 429

    def __init__(
        self,
        key: str,
        limit: int,
        window_seconds: int,
        retry_after_seconds: int,
        detail: str | None = None,
    ):
        self.key = key
        self.limit = limit
        self.window_seconds = window_seconds
        self.retry_after_seconds = retry_after_seconds
        message = detail or (
            f"Rate limit exceeded. Try again in {retry_after_seconds} seconds."
            if retry_after_seconds > 0
            else "Rate limit exceeded."
        )
        super().__init__(message)

    def headers(self) -> dict[str, str]:
        """HTTP headers announcing when the client may retry."""
        return {
            "Retry-After": str(self.retry_after_seconds),
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": "0",
        }

    def to_metadata(self) -> dict[str, str]:
        """Trailing metadata for RPC transports."""
        if self.retry_after_seconds <= 0:
            return {}
        return {"retry-after-seconds": str(self.retry_after_seconds)}

    def to_response(self) -> dict:
        """Convert to API response format.

        The key is left out since it embeds the caller's identity.
        """
        return {
            "error": "rate_limit_exceeded",
            "message": self.message,
            "retry_after": self.retry_after_seconds,
        }


class InvalidRateLimitParametersError(AuthGuardException, ValueError):
    """Raised when a rate limit check is called with unusable parameters.

    This is a programming or configuration error, never a rate limit event.
    """
    status_code = 500

    def __init__(self, parameter: str, detail: str):
        self.parameter = parameter
        super().__init__(f"Invalid rate limit parameter '{parameter}': {detail}")


class RateLimitStoreUnavailableError(AuthGuardException):
    """Raised when the shared store could not answer a rate limit check.

    Distinct from RateLimitExceededError so callers can tell "over the limit"
    apart from "could not check the limit". Maps to HTTP 503.
    """
    status_code = 503

    def __init__(self, reason: str = "unavailable", detail: str | None = None):
        self.reason = reason
        super().__init__(detail or f"Rate limit store {reason}")

    def to_response(self) -> dict:
        """Generic response body; store details stay in the server logs."""
        return {
            "error": "service_unavailable",
            "message": "Service temporarily unavailable. Please try again later.",
        }
