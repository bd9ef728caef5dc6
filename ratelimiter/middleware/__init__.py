"""Middleware package for HTTP services."""

from ratelimiter.middleware.rate_limit import RateLimitMiddleware, get_client_identity

__all__ = [
    "RateLimitMiddleware",
    "get_client_identity",
]
