"""Rate limiting middleware for HTTP services.

Wires a RateLimiter into request handling. Requests are limited per API
key when a bearer token is present, otherwise per client IP. The
fail-open / fail-closed choice on limiter errors is made here, never in
the limiter itself.
"""

import hashlib
from typing import Optional

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from ratelimiter.core.config import settings
from ratelimiter.core.logging import get_log_context, get_logger
from ratelimiter.exceptions import LimiterError
from ratelimiter.limiter.base import RateLimiter
from ratelimiter.limiter.models import Identity, Limit

logger = get_logger(__name__)

MAX_API_KEY_LENGTH = 512


def default_limit() -> Limit:
    """Policy built from settings."""
    return Limit(
        rate=settings.rate_limit_rate,
        period=settings.rate_limit_period_seconds,
        burst=settings.rate_limit_burst,
    )


class InvalidClientKey(Exception):
    """Raised when the request carries an unusable API key."""


def get_client_identity(request: Request) -> Identity:
    """Get rate limit identity for the request.

    Uses API key if available, otherwise falls back to IP address. Both
    are hashed with SHA-256 so raw keys and addresses never reach the
    limiter's storage.

    Raises:
        InvalidClientKey: If the API key is longer than MAX_API_KEY_LENGTH
    """
    auth = request.headers.get("Authorization", "")
    if auth.startswith("Bearer "):
        api_key = auth[7:].strip()
        if len(api_key) > MAX_API_KEY_LENGTH:
            raise InvalidClientKey(f"API key too long (max {MAX_API_KEY_LENGTH} characters)")
        key_hash = hashlib.sha256(api_key.encode()).hexdigest()[:32]
        return Identity(namespace="api_key", key=key_hash)

    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        client_ip = forwarded.split(",")[0].strip()
    else:
        client_ip = request.client.host if request.client else "unknown"

    ip_hash = hashlib.sha256(client_ip.encode()).hexdigest()[:32]
    return Identity(namespace="ip", key=ip_hash)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Middleware to enforce rate limits on requests.

    When no limiter is passed, the one stored on ``app.state.limiter``
    (set up in the application lifespan) is used.
    """

    def __init__(
        self,
        app,
        limiter: Optional[RateLimiter] = None,
        limit: Optional[Limit] = None,
        fail_closed: Optional[bool] = None,
        timeout: Optional[float] = None,
    ):
        """Initialize middleware.

        Args:
            app: ASGI application
            limiter: Backend to consult (defaults to app.state.limiter)
            limit: Policy applied to every request (defaults to settings)
            fail_closed: Deny with 503 when the limiter fails instead of
                letting the request through (defaults to settings)
            timeout: Per-check deadline in seconds
        """
        super().__init__(app)
        self.limiter = limiter
        self.limit = limit or default_limit()
        self.fail_closed = (
            fail_closed if fail_closed is not None else settings.rate_limit_fail_closed
        )
        self.timeout = timeout

    def _get_limiter(self, request: Request) -> Optional[RateLimiter]:
        if self.limiter is not None:
            return self.limiter
        return getattr(request.app.state, "limiter", None)

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint
    ) -> Response:
        """Process request with rate limiting."""
        limiter = self._get_limiter(request)
        if limiter is None:
            return await call_next(request)

        try:
            identity = get_client_identity(request)
        except InvalidClientKey as e:
            return JSONResponse(status_code=400, content={"detail": str(e)})

        try:
            decision = await limiter.allow(identity, self.limit, timeout=self.timeout)
        except LimiterError as e:
            if self.fail_closed:
                logger.warning(
                    f"Rate limiting fail-closed triggered: {e}. Request denied.",
                    extra=get_log_context(namespace=identity.namespace, path=request.url.path),
                )
                return JSONResponse(
                    status_code=503,
                    content={
                        "error": "rate_limiter_unavailable",
                        "message": "Rate limiter unavailable. Please try again later.",
                    },
                )
            logger.warning(
                f"Rate limiting fail-open triggered: {e}. Request allowed without rate limit check.",
                extra=get_log_context(namespace=identity.namespace, path=request.url.path),
            )
            return await call_next(request)

        headers = decision.to_headers(self.limit)
        if not decision.allow:
            return JSONResponse(
                status_code=429,
                content={
                    "error": "rate_limit_exceeded",
                    "message": "Rate limit exceeded. Please try again later.",
                    "retry_after": round(decision.retry_after_seconds, 3),
                },
                headers=headers,
            )

        response = await call_next(request)
        for name, value in headers.items():
            response.headers[name] = value
        return response
