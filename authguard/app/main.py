from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from authguard.app.core.config import settings
from authguard.app.core.logging import get_log_context, get_logger, setup_logging
from authguard.app.core.redis_client import close_redis_client, ping_redis
from authguard.app.exceptions import (
    InvalidRateLimitParametersError,
    RateLimitExceededError,
    RateLimitStoreUnavailableError,
)
from authguard.app.middleware.rate_limit import RateLimitMiddleware
from authguard.app.middleware.request_id import RequestIdMiddleware
from authguard.app.services.rate_limit import RateLimitService

logger = get_logger(__name__)


def register_exception_handlers(app: FastAPI) -> None:
    """Map rate limit exceptions raised by route handlers to HTTP responses."""

    @app.exception_handler(RateLimitExceededError)
    async def rate_limit_exceeded_handler(
        request: Request, exc: RateLimitExceededError
    ) -> JSONResponse:
        """Handle RateLimitExceededError and return HTTP 429 response."""
        return JSONResponse(
            status_code=429,
            content=exc.to_response(),
            headers=exc.headers(),
        )

    @app.exception_handler(RateLimitStoreUnavailableError)
    async def store_unavailable_handler(
        request: Request, exc: RateLimitStoreUnavailableError
    ) -> JSONResponse:
        """Handle RateLimitStoreUnavailableError and return HTTP 503 response."""
        return JSONResponse(status_code=503, content=exc.to_response())

    @app.exception_handler(InvalidRateLimitParametersError)
    async def invalid_parameters_handler(
        request: Request, exc: InvalidRateLimitParametersError
    ) -> JSONResponse:
        """Misconfigured limits are server bugs; log them and hide the details."""
        request_id = getattr(request.state, "request_id", None)
        logger.error(
            f"Invalid rate limit parameters: {exc.message}",
            extra=get_log_context(request_id=request_id, path=request.url.path),
        )
        return JSONResponse(
            status_code=500,
            content={
                "error": "internal_error",
                "message": exc.message if settings.debug else "Internal server error",
                "request_id": request_id,
            },
        )


def create_app(service: Optional[RateLimitService] = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        service: Rate limit service for the middleware. Defaults to the one
            built from settings on first use.

    Returns:
        Configured FastAPI application instance
    """
    setup_logging()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Close the Redis pool on shutdown."""
        logger.info(
            "Application startup complete",
            extra={
                "redis_enabled": settings.redis_enabled,
                "rate_limit_enabled": settings.rate_limit_enabled,
                "rate_limit_fail_closed": settings.rate_limit_fail_closed,
            },
        )
        yield
        if settings.redis_enabled:
            await close_redis_client()
        logger.info("Application shutdown complete")

    app = FastAPI(
        title="AuthGuard",
        description="Distributed rate limiting for authentication endpoints",
        version="0.1.0",
        lifespan=lifespan,
    )

    # Order matters: last added = first executed
    if settings.rate_limit_enabled:
        app.add_middleware(RateLimitMiddleware, service=service)
    app.add_middleware(RequestIdMiddleware)

    register_exception_handlers(app)

    @app.get("/health")
    async def health() -> dict:
        """Report whether the rate limit store is reachable."""
        redis_status = "disabled"
        if settings.redis_enabled:
            redis_status = "ok" if await ping_redis() else "unavailable"
        return {
            "status": "degraded" if redis_status == "unavailable" else "ok",
            "redis": redis_status,
            "rate_limit_fail_closed": settings.rate_limit_fail_closed,
        }

    return app


# Create the application instance
app = create_app()
