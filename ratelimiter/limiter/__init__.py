"""Token bucket limiters.

Two backends share one Allow API:

- MemoryLimiter: process-local state, for tests, development and
  single-instance deployments.
- RedisLimiter: state in Redis, updated atomically by a Lua script, so
  every replica enforces one global budget per identity.
"""

from .base import RateLimiter
from .distributed import RedisLimiter, RedisLimiterOptions
from .memory import MemoryLimiter
from .metrics import (
    CALL_COUNTER,
    ERROR_COUNTER,
    LATENCY,
    InMemoryMetricsRecorder,
    MetricsRecorder,
    NoOpMetricsRecorder,
)
from .models import Decision, Identity, Limit, Namespace
from .redis_lua import TOKEN_BUCKET_SCRIPT, TOKEN_BUCKET_SHA

__all__ = [
    "RateLimiter",
    "MemoryLimiter",
    "RedisLimiter",
    "RedisLimiterOptions",
    "MetricsRecorder",
    "NoOpMetricsRecorder",
    "InMemoryMetricsRecorder",
    "CALL_COUNTER",
    "ERROR_COUNTER",
    "LATENCY",
    "Decision",
    "Identity",
    "Limit",
    "Namespace",
    "TOKEN_BUCKET_SCRIPT",
    "TOKEN_BUCKET_SHA",
]
