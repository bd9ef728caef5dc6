"""Example service wiring a rate limiter into a FastAPI application.

Run with ``uvicorn ratelimiter.main:app``. Uses RedisLimiter when
REDIS_ENABLED is set, MemoryLimiter otherwise.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI
from fastapi.responses import PlainTextResponse

from ratelimiter.api.metrics import router as metrics_router
from ratelimiter.core.config import settings
from ratelimiter.core.logging import get_logger, setup_logging
from ratelimiter.limiter.base import RateLimiter
from ratelimiter.limiter.distributed import RedisLimiter, RedisLimiterOptions
from ratelimiter.limiter.memory import MemoryLimiter
from ratelimiter.limiter.metrics import InMemoryMetricsRecorder, MetricsRecorder
from ratelimiter.limiter.models import Limit
from ratelimiter.middleware.rate_limit import RateLimitMiddleware


def create_app(
    limiter: Optional[RateLimiter] = None,
    recorder: Optional[MetricsRecorder] = None,
    limit: Optional[Limit] = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        limiter: Backend to use; built from settings on startup when omitted
        recorder: Metrics sink for a limiter built from settings
        limit: Policy applied to every request (defaults to settings)

    Returns:
        Configured FastAPI application instance
    """
    setup_logging()
    logger = get_logger(__name__)
    recorder = recorder or InMemoryMetricsRecorder()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Build the limiter on startup and close it on shutdown."""
        owned: Optional[RateLimiter] = None
        if limiter is not None:
            app.state.limiter = limiter
        elif settings.redis_enabled:
            owned = await RedisLimiter.connect(
                settings.redis_url,
                RedisLimiterOptions.from_settings(settings, recorder=recorder),
            )
            app.state.limiter = owned
            logger.info("Using Redis rate limiter backend")
        else:
            owned = MemoryLimiter()
            app.state.limiter = owned
            logger.info("Using in-memory rate limiter backend")

        yield

        if owned is not None:
            await owned.close()
        logger.info("Application shutdown complete")

    app = FastAPI(
        title="Gateway Rate Limiter",
        description="Example service protected by a token bucket rate limiter",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.recorder = recorder
    if limiter is not None:
        app.state.limiter = limiter

    app.add_middleware(RateLimitMiddleware, limit=limit)
    app.include_router(metrics_router)

    @app.get("/ping", response_class=PlainTextResponse)
    async def ping() -> str:
        return "Pong!\n"

    return app


app = create_app()
