"""In-process token bucket rate limiter.

State lives in a dict owned by the limiter, so the limit is enforced per
process only. Use RedisLimiter when several replicas must share one
budget per identity.
"""

import math
import threading
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable, Dict, Optional

from ratelimiter.core.logging import get_logger
from ratelimiter.limiter.base import RateLimiter
from ratelimiter.limiter.models import Decision, Identity, Limit, to_datetime

logger = get_logger(__name__)


@dataclass
class TokenBucket:
    """Token bucket state for one identity."""
    tokens: float
    last_refill: float


class MemoryLimiter(RateLimiter):
    """In-memory token bucket limiter.

    One lock guards the whole identity table. The critical section never
    awaits, so the lock serializes callers from any thread or task of the
    host process and no two checks observe the same bucket state.

    Idle identities are never evicted. For long-lived processes with
    high-cardinality keys prefer RedisLimiter, whose keys expire.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        """Initialize the limiter.

        Args:
            clock: Returns the current time in seconds since epoch
        """
        self._clock = clock
        self._buckets: Dict[str, TokenBucket] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._buckets)

    async def allow(
        self,
        identity: Identity,
        limit: Limit,
        *,
        timeout: Optional[float] = None,
    ) -> Decision:
        """Check if request is allowed. ``timeout`` is ignored; nothing blocks."""
        return self.check(identity, limit)

    def check(self, identity: Identity, limit: Limit) -> Decision:
        """Synchronous admission check, for callers outside an event loop."""
        key = identity.storage_key
        with self._lock:
            now = self._clock()
            bucket = self._buckets.get(key)

            if bucket is None:
                self._buckets[key] = TokenBucket(tokens=float(limit.burst - 1), last_refill=now)
                logger.debug(f"Created bucket for {key} (burst={limit.burst})")
                return Decision(
                    allow=True,
                    remaining=limit.burst - 1,
                    retry_after=timedelta(0),
                    reset_time=to_datetime(now),
                )

            # Clamp so a clock stepping backwards never removes tokens
            elapsed = max(0.0, now - bucket.last_refill)
            tokens_to_add = elapsed / limit.period.total_seconds() * limit.rate
            bucket.tokens = min(float(limit.burst), bucket.tokens + tokens_to_add)
            bucket.last_refill = now

            if bucket.tokens >= 1:
                bucket.tokens -= 1
                return Decision(
                    allow=True,
                    remaining=math.floor(bucket.tokens),
                    retry_after=timedelta(0),
                    reset_time=to_datetime(now),
                )

            wait = (1.0 - bucket.tokens) * limit.seconds_per_token
            return Decision(
                allow=False,
                remaining=math.floor(bucket.tokens),
                retry_after=timedelta(seconds=wait),
                reset_time=to_datetime(now + wait),
            )

    def reset(self, identity: Identity) -> bool:
        """Forget the bucket for ``identity``. Returns True if one existed."""
        with self._lock:
            return self._buckets.pop(identity.storage_key, None) is not None

    def clear(self) -> None:
        """Forget every bucket."""
        with self._lock:
            self._buckets.clear()
