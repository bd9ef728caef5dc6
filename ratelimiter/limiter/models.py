"""Rate limiting data models.

This module contains the shared vocabulary used by every backend:
who is being limited (Identity), under which policy (Limit) and what
the limiter decided (Decision).
"""

import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, Union

from ratelimiter.exceptions import InvalidLimitError

Namespace = str

EPOCH = datetime.fromtimestamp(0, tz=timezone.utc)


@dataclass(frozen=True)
class Identity:
    """The subject being rate limited.

    Attributes:
        namespace: Logical grouping such as "ip", "user" or "api_key"
        key: Identifier within the namespace, e.g. "user_123"
    """
    namespace: Namespace
    key: str

    @property
    def storage_key(self) -> str:
        """Key used by the in-process table."""
        return f"{self.namespace}:{self.key}"

    def redis_key(self, prefix: str) -> str:
        """Key used in the shared store."""
        return prefix + self.storage_key


@dataclass(frozen=True)
class Limit:
    """Token bucket policy.

    ``rate`` tokens are earned every ``period``; ``burst`` is the bucket
    capacity and therefore the largest burst granted at once.

    Attributes:
        rate: Tokens earned per period (> 0)
        period: Time window the rate is measured over (> 0)
        burst: Bucket capacity (>= 1)
    """
    rate: int
    period: timedelta
    burst: int

    def __post_init__(self) -> None:
        if isinstance(self.period, (int, float)) and not isinstance(self.period, bool):
            if not math.isfinite(self.period):
                raise InvalidLimitError("period", self.period, "must be finite")
            object.__setattr__(self, "period", timedelta(seconds=self.period))
        if not isinstance(self.period, timedelta):
            raise InvalidLimitError("period", self.period, "must be a timedelta or seconds")
        if self.period <= timedelta(0):
            raise InvalidLimitError("period", self.period, "must be positive")
        if isinstance(self.rate, bool) or not isinstance(self.rate, int) or self.rate <= 0:
            raise InvalidLimitError("rate", self.rate, "must be a positive integer")
        if isinstance(self.burst, bool) or not isinstance(self.burst, int) or self.burst < 1:
            raise InvalidLimitError("burst", self.burst, "must be an integer >= 1")

    @classmethod
    def per_second(cls, rate: int, burst: int | None = None) -> "Limit":
        return cls(rate=rate, period=timedelta(seconds=1), burst=rate if burst is None else burst)

    @classmethod
    def per_minute(cls, rate: int, burst: int | None = None) -> "Limit":
        return cls(rate=rate, period=timedelta(minutes=1), burst=rate if burst is None else burst)

    @property
    def rate_per_second(self) -> float:
        """Refill rate in tokens per second."""
        return self.rate / self.period.total_seconds()

    @property
    def seconds_per_token(self) -> float:
        """Time needed to accrue one token."""
        return self.period.total_seconds() / self.rate


@dataclass(frozen=True)
class Decision:
    """Result of an admission check.

    Attributes:
        allow: Whether the current request may proceed
        remaining: Whole tokens left after the decision (floored)
        retry_after: Zero when allowed, otherwise the wait until one token
            is available
        reset_time: Decision time plus retry_after (UTC)
    """
    allow: bool
    remaining: int
    retry_after: timedelta
    reset_time: datetime

    @classmethod
    def empty(cls) -> "Decision":
        """Zero value returned alongside an error."""
        return cls(allow=False, remaining=0, retry_after=timedelta(0), reset_time=EPOCH)

    @property
    def retry_after_seconds(self) -> float:
        return self.retry_after.total_seconds()

    def to_headers(self, limit: Limit) -> Dict[str, str]:
        """Render rate limit response headers for HTTP callers."""
        headers = {
            "X-RateLimit-Limit": str(limit.burst),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(math.ceil(self.reset_time.timestamp())),
        }
        if not self.allow:
            headers["Retry-After"] = str(max(1, math.ceil(self.retry_after_seconds)))
        return headers


def to_datetime(seconds: Union[int, float]) -> datetime:
    """Convert seconds since epoch to an aware UTC datetime."""
    return datetime.fromtimestamp(seconds, tz=timezone.utc)
