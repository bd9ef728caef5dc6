"""Distributed token bucket rate limiter backed by Redis.

Every admission check runs the token bucket Lua script inside Redis, so
the read-compute-write cycle is atomic across all application instances
that share the server. The script is registered once (SCRIPT LOAD) and
invoked by its SHA1 afterwards (EVALSHA).

Redis key format:
- {prefix}{namespace}:{key} - hash with "tokens" and "last_refill" fields,
  expiring once the bucket would have refilled completely

This backend never decides between failing open and failing closed. When
Redis is unreachable, too slow, or replies with garbage, allow() raises a
LimiterError and the caller picks the policy.
"""

import asyncio
import math
import time
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Callable, Dict, Optional, Sequence

import redis.asyncio as aioredis
from redis.exceptions import (
    ConnectionError as RedisConnectionError,
    NoScriptError,
    RedisError,
    TimeoutError as RedisTimeoutError,
)

from ratelimiter.core.logging import get_log_context, get_logger
from ratelimiter.exceptions import (
    ConfigurationError,
    LimiterError,
    LimiterTimeoutError,
    MalformedResultError,
    ScriptNotLoadedError,
    StoreError,
    StoreUnavailableError,
)
from ratelimiter.limiter.base import RateLimiter
from ratelimiter.limiter.metrics import (
    CALL_COUNTER,
    ERROR_COUNTER,
    LATENCY,
    MetricsRecorder,
    NoOpMetricsRecorder,
)
from ratelimiter.limiter.models import Decision, Identity, Limit, to_datetime
from ratelimiter.limiter.redis_lua import TOKEN_BUCKET_SCRIPT, TOKEN_BUCKET_SHA

logger = get_logger(__name__)

DEFAULT_PREFIX = "limiter:"
DEFAULT_INVOCATION_TIMEOUT = 5.0
# Each admission check consumes exactly one token
TOKEN_COST = 1.0


@dataclass
class RedisLimiterOptions:
    """Construction options for RedisLimiter.

    Attributes:
        prefix: Prepended to "{namespace}:{key}" to build the Redis key
        invocation_timeout: Upper bound in seconds for each Redis round trip,
            applied when the caller passes no tighter timeout
        recorder: Metrics sink, discards everything by default
        reload_script: Re-register the script and retry once when Redis
            reports NOSCRIPT; when False, ScriptNotLoadedError is raised
        clock: Returns the current time in seconds since epoch
    """
    prefix: str = DEFAULT_PREFIX
    invocation_timeout: float = DEFAULT_INVOCATION_TIMEOUT
    recorder: MetricsRecorder = field(default_factory=NoOpMetricsRecorder)
    reload_script: bool = True
    clock: Callable[[], float] = time.time

    def __post_init__(self) -> None:
        if not isinstance(self.prefix, str):
            raise ConfigurationError(f"prefix must be a string, got {self.prefix!r}")
        if (
            isinstance(self.invocation_timeout, bool)
            or not isinstance(self.invocation_timeout, (int, float))
            or not math.isfinite(self.invocation_timeout)
            or self.invocation_timeout <= 0
        ):
            raise ConfigurationError(
                f"invocation_timeout must be a positive number of seconds, got {self.invocation_timeout!r}"
            )
        if self.recorder is None:
            self.recorder = NoOpMetricsRecorder()
        elif not isinstance(self.recorder, MetricsRecorder):
            raise ConfigurationError("recorder must implement add() and observe()")

    @classmethod
    def from_settings(cls, settings: Any, **overrides: Any) -> "RedisLimiterOptions":
        """Build options from the application settings."""
        values: Dict[str, Any] = {
            "prefix": settings.limiter_prefix,
            "invocation_timeout": settings.limiter_invocation_timeout,
            "reload_script": settings.limiter_reload_script,
        }
        values.update(overrides)
        return cls(**values)


def _to_float(value: Any) -> float:
    """Convert one element of the script reply to a float."""
    if isinstance(value, bool):
        raise TypeError("boolean in lua response")
    if isinstance(value, bytes):
        value = value.decode("ascii")
    if isinstance(value, (int, float, str)):
        result = float(value)
        if not math.isfinite(result):
            raise ValueError(f"non-finite value {value!r}")
        return result
    raise TypeError(f"unexpected type {type(value).__name__}")


def decode_result(result: Any) -> Decision:
    """Decode the script reply {allowed, remaining, retry_after, reset_time}.

    Seconds become a timedelta and seconds since epoch a UTC datetime.

    Raises:
        MalformedResultError: If the reply is not the expected 4-tuple
    """
    if not isinstance(result, (list, tuple)) or len(result) != 4:
        raise MalformedResultError(result)
    try:
        allowed, remaining, retry_after, reset_time = (_to_float(v) for v in result)
    except (TypeError, ValueError, UnicodeDecodeError) as exc:
        raise MalformedResultError(result, "non-numeric value in lua response") from exc
    if allowed not in (0.0, 1.0):
        raise MalformedResultError(result, "allowed flag must be 0 or 1")
    if remaining < 0 or retry_after < 0:
        raise MalformedResultError(result, "negative remaining or retry_after")
    try:
        return Decision(
            allow=allowed == 1.0,
            remaining=math.floor(remaining),
            retry_after=timedelta(seconds=retry_after),
            reset_time=to_datetime(reset_time),
        )
    except (OverflowError, OSError, ValueError) as exc:
        raise MalformedResultError(result, "timing value out of range") from exc


class RedisLimiter(RateLimiter):
    """Redis-based distributed rate limiter.

    Safe to share between tasks; concurrency across instances is delegated
    to Redis, which runs the script atomically per call.

    Example:
        >>> limiter = await RedisLimiter.connect("redis://localhost:6379/0")
        >>> decision = await limiter.allow(Identity("ip", "10.0.0.1"), Limit.per_second(5, burst=10))
    """

    def __init__(
        self,
        redis_client: Any,
        options: Optional[RedisLimiterOptions] = None,
    ) -> None:
        """Initialize Redis rate limiter.

        Args:
            redis_client: redis.asyncio client; its connection pool is owned
                by the caller
            options: Limiter options, defaults when omitted
        """
        self._redis = redis_client
        self._options = options or RedisLimiterOptions()
        self._script_sha: Optional[str] = None
        self._owns_client = False

    @classmethod
    async def connect(
        cls,
        redis_url: str,
        options: Optional[RedisLimiterOptions] = None,
    ) -> "RedisLimiter":
        """Create a client for ``redis_url`` and return an initialized limiter.

        The limiter owns this client and closes it in close().
        """
        client = aioredis.from_url(redis_url)
        limiter = cls(client, options)
        limiter._owns_client = True
        try:
            await limiter.initialize()
        except BaseException:
            await client.aclose()
            raise
        return limiter

    @property
    def options(self) -> RedisLimiterOptions:
        return self._options

    @property
    def script_sha(self) -> Optional[str]:
        """SHA1 of the registered script, None until registered."""
        return self._script_sha

    def key_for(self, identity: Identity) -> str:
        return identity.redis_key(self._options.prefix)

    async def initialize(self, timeout: Optional[float] = None) -> str:
        """Check connectivity and register the token bucket script.

        Returns:
            The script SHA1

        Raises:
            StoreError: If Redis is unreachable or rejects the script
        """
        deadline = self._effective_timeout(timeout)
        try:
            await asyncio.wait_for(self._client().ping(), deadline)
            return await asyncio.wait_for(self._load_script(), deadline)
        except (asyncio.TimeoutError, RedisError) as exc:
            raise self._translate(exc) from exc

    async def _load_script(self) -> str:
        sha = await self._client().script_load(TOKEN_BUCKET_SCRIPT)
        if isinstance(sha, bytes):
            sha = sha.decode("ascii")
        if sha != TOKEN_BUCKET_SHA:
            logger.warning(f"Redis returned unexpected script SHA {sha} (expected {TOKEN_BUCKET_SHA})")
        self._script_sha = sha
        logger.info(f"Registered token bucket script {sha}")
        return sha

    def _client(self) -> Any:
        if self._redis is None:
            raise StoreUnavailableError("Redis client is closed")
        return self._redis

    def _effective_timeout(self, timeout: Optional[float]) -> float:
        bound = self._options.invocation_timeout
        if timeout is None:
            return bound
        if timeout <= 0:
            raise LimiterTimeoutError("Deadline expired before the admission check was sent")
        return min(timeout, bound)

    @staticmethod
    def _translate(exc: BaseException, key: Optional[str] = None) -> LimiterError:
        """Map a Redis or asyncio failure onto the limiter error taxonomy."""
        if isinstance(exc, (asyncio.TimeoutError, RedisTimeoutError)):
            return LimiterTimeoutError(f"Redis call timed out: {exc}", key=key)
        if isinstance(exc, RedisConnectionError):
            return StoreUnavailableError(f"Redis connection failed: {exc}", key=key)
        if isinstance(exc, NoScriptError):
            return ScriptNotLoadedError(
                "Token bucket script is not loaded in Redis; call initialize() to register it",
                key=key,
            )
        return StoreError(f"Redis error: {exc}", key=key)

    async def allow(
        self,
        identity: Identity,
        limit: Limit,
        *,
        timeout: Optional[float] = None,
    ) -> Decision:
        """Check if request is allowed using the atomic Redis script.

        Args:
            identity: Subject being rate limited
            limit: Policy to enforce
            timeout: Caller deadline in seconds; the tighter of this and
                ``invocation_timeout`` bounds the round trip

        Returns:
            Decision decoded from the script reply

        Raises:
            LimiterTimeoutError: Deadline expired (before or during the call)
            StoreUnavailableError: Redis unreachable
            ScriptNotLoadedError: NOSCRIPT and reloading disabled or failed
            StoreError: Any other Redis error
            MalformedResultError: Reply did not match the expected shape
            asyncio.CancelledError: The calling task was cancelled
        """
        start = time.perf_counter()
        namespace = str(identity.namespace)
        status = "error"
        key = self.key_for(identity)
        try:
            deadline = self._effective_timeout(timeout)
            now = round(self._options.clock(), 6)
            args = (limit.rate_per_second, limit.burst, now, TOKEN_COST)
            try:
                result = await asyncio.wait_for(self._invoke(key, args, namespace), deadline)
            except (asyncio.TimeoutError, RedisError) as exc:
                raise self._translate(exc, key) from exc

            decision = decode_result(result)
            status = "allowed" if decision.allow else "denied"
            self._record_add(CALL_COUNTER, {"namespace": namespace, "status": status})
            return decision
        except asyncio.CancelledError:
            status = "cancelled"
            raise
        except LimiterError as exc:
            category = getattr(exc, "category", "unexpected")
            self._record_add(ERROR_COUNTER, {"namespace": namespace, "type": category})
            logger.warning(
                f"Rate limit check failed for {key}: {exc}",
                extra=get_log_context(namespace=namespace, status=category),
            )
            raise
        finally:
            self._record_observe(
                LATENCY,
                time.perf_counter() - start,
                {"namespace": namespace, "status": status},
            )

    async def _invoke(self, key: str, args: Sequence[float], namespace: str) -> Any:
        """Run the script by SHA, registering it first if needed."""
        sha = self._script_sha or await self._load_script()
        try:
            return await self._client().evalsha(sha, 1, key, *args)
        except NoScriptError:
            self._script_sha = None
            if not self._options.reload_script:
                raise
            logger.warning("Token bucket script missing from Redis cache (NOSCRIPT); reloading")
            sha = await self._load_script()
            result = await self._client().evalsha(sha, 1, key, *args)
            # A failed retry is counted once by allow()
            self._record_add(ERROR_COUNTER, {"namespace": namespace, "type": "noscript"})
            return result

    def _record_add(self, name: str, tags: Dict[str, str]) -> None:
        try:
            self._options.recorder.add(name, 1, tags)
        except Exception as e:
            logger.warning(f"Metrics recorder failed on {name}: {e}")

    def _record_observe(self, name: str, value: float, tags: Dict[str, str]) -> None:
        try:
            self._options.recorder.observe(name, value, tags)
        except Exception as e:
            logger.warning(f"Metrics recorder failed on {name}: {e}")

    async def close(self) -> None:
        """Close the Redis client if this limiter created it."""
        if self._owns_client and self._redis is not None:
            try:
                await self._redis.aclose()
            except RedisError as e:
                logger.warning(f"Error closing Redis connection: {e}")
            self._redis = None
