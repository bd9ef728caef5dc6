"""Custom exceptions for the rate limiter."""

from typing import Any


class LimiterError(Exception):
    """Base class for rate limiter exceptions.

    All custom exceptions inherit from this class so callers can catch
    every limiter failure with a single ``except`` clause and then decide
    whether to fail open or fail closed.
    """

    def __init__(self, message: str = "Rate limiter error"):
        self.message = message
        super().__init__(message)


class InvalidLimitError(LimiterError, ValueError):
    """Raised when a Limit is constructed with an unusable rate, period or burst."""

    def __init__(self, field: str, value: Any, reason: str):
        self.field = field
        self.value = value
        super().__init__(f"Invalid limit {field}={value!r}: {reason}")


class ConfigurationError(LimiterError, ValueError):
    """Raised when limiter options are invalid."""


class StoreError(LimiterError):
    """Raised when the shared store fails to execute an admission check.

    ``category`` is the short tag used for the error counter.
    """

    category: str = "redis_error"

    def __init__(self, message: str = "Shared store error", key: str | None = None):
        self.key = key
        super().__init__(message)


class StoreUnavailableError(StoreError):
    """Raised when the shared store cannot be reached."""

    category = "connection"


class LimiterTimeoutError(StoreError, TimeoutError):
    """Raised when the caller's deadline or the invocation timeout expires."""

    category = "timeout"


class ScriptNotLoadedError(StoreError):
    """Raised when the store does not know the token bucket script.

    This happens after a server restart or ``SCRIPT FLUSH``. Calling
    ``RedisLimiter.initialize()`` (or building a new limiter) registers
    the script again.
    """

    category = "noscript"


class MalformedResultError(LimiterError):
    """Raised when the store replies with something other than the 4-tuple
    the token bucket script returns.

    Distinct from StoreError so callers can tell protocol drift apart
    from infrastructure failure.
    """

    category = "invalid_format"

    def __init__(self, result: Any, detail: str = "invalid lua response format"):
        self.result = result
        super().__init__(f"{detail}: {result!r}")
