"""authguard: distributed rate limiting for authentication endpoints."""
