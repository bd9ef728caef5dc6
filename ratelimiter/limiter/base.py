"""Abstract base class for rate limit backends."""

from abc import ABC, abstractmethod
from typing import Optional, Tuple

from ratelimiter.exceptions import LimiterError
from ratelimiter.limiter.models import Decision, Identity, Limit


class RateLimiter(ABC):
    """Token bucket admission check shared by every backend."""

    @abstractmethod
    async def allow(
        self,
        identity: Identity,
        limit: Limit,
        *,
        timeout: Optional[float] = None,
    ) -> Decision:
        """Check whether a request for ``identity`` may proceed under ``limit``.

        Each call costs exactly one token.

        Args:
            identity: Subject being rate limited
            limit: Policy to enforce
            timeout: Caller deadline in seconds, for backends that do I/O

        Returns:
            Decision with allowed status and timing hints
        """
        pass

    async def allow_or_error(
        self,
        identity: Identity,
        limit: Limit,
        *,
        timeout: Optional[float] = None,
    ) -> Tuple[Decision, Optional[LimiterError]]:
        """Like allow(), but return ``(Decision.empty(), error)`` instead of raising.

        Cancellation of the calling task still propagates.
        """
        try:
            return await self.allow(identity, limit, timeout=timeout), None
        except LimiterError as exc:
            return Decision.empty(), exc

    async def close(self) -> None:
        """Release backend resources."""
        pass
