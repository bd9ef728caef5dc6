"""Token bucket rate limiting with in-process and Redis backends."""

from ratelimiter.exceptions import (
    ConfigurationError,
    InvalidLimitError,
    LimiterError,
    LimiterTimeoutError,
    MalformedResultError,
    ScriptNotLoadedError,
    StoreError,
    StoreUnavailableError,
)
from ratelimiter.limiter import (
    Decision,
    Identity,
    InMemoryMetricsRecorder,
    Limit,
    MemoryLimiter,
    MetricsRecorder,
    NoOpMetricsRecorder,
    RateLimiter,
    RedisLimiter,
    RedisLimiterOptions,
)

__all__ = [
    "Decision",
    "Identity",
    "Limit",
    "RateLimiter",
    "MemoryLimiter",
    "RedisLimiter",
    "RedisLimiterOptions",
    "MetricsRecorder",
    "NoOpMetricsRecorder",
    "InMemoryMetricsRecorder",
    "LimiterError",
    "InvalidLimitError",
    "ConfigurationError",
    "StoreError",
    "StoreUnavailableError",
    "LimiterTimeoutError",
    "ScriptNotLoadedError",
    "MalformedResultError",
]
