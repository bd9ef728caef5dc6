"""Shared fixtures for rate limiter tests."""

import asyncio
import hashlib
import math
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import NoScriptError

from ratelimiter.limiter.metrics import InMemoryMetricsRecorder


class FakeClock:
    """Manually advanced clock returning seconds since epoch."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def recorder():
    return InMemoryMetricsRecorder()


@pytest.fixture
def mock_redis():
    """Create a mock Redis client for testing.

    ``evalsha`` applies the token bucket update in one step with no await
    between read and write, matching the atomicity Redis gives the script.
    Setting ``redis.delay`` makes the call sleep before touching state.
    """
    redis = MagicMock()
    redis.data = {}
    redis.ttls = {}
    redis.scripts = {}
    redis.delay = 0.0

    async def mock_ping():
        return True

    async def mock_script_load(script):
        sha = hashlib.sha1(script.encode("utf-8")).hexdigest()
        redis.scripts[sha] = script
        return sha

    async def mock_evalsha(sha, num_keys, *args):
        """Mock of the token bucket script.

        - KEYS[1]: bucket key
        - ARGV: rate_per_second, burst, now, cost
        """
        if redis.delay:
            await asyncio.sleep(redis.delay)
        if sha not in redis.scripts:
            raise NoScriptError("No matching script. Please use EVAL.")

        key = args[0]
        rate = float(args[1])
        burst = float(args[2])
        now = float(args[3])
        cost = float(args[4])

        state = redis.data.get(key)
        if state is None:
            tokens, last_refill = burst, now
        else:
            tokens, last_refill = state["tokens"], state["last_refill"]

        elapsed = max(0.0, now - last_refill)
        tokens = min(burst, tokens + elapsed * rate)

        allowed = 0
        retry_after = 0.0
        if tokens >= cost:
            tokens -= cost
            allowed = 1
        else:
            retry_after = (cost - tokens) / rate

        redis.data[key] = {"tokens": tokens, "last_refill": now}
        redis.ttls[key] = max(1, math.ceil(burst / rate))

        return [
            allowed,
            math.floor(tokens),
            repr(retry_after).encode(),
            repr(now + retry_after).encode(),
        ]

    redis.ping = AsyncMock(side_effect=mock_ping)
    redis.script_load = AsyncMock(side_effect=mock_script_load)
    redis.evalsha = AsyncMock(side_effect=mock_evalsha)
    redis.aclose = AsyncMock()

    return redis
