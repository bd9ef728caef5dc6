"""Core utilities: settings and logging."""

from ratelimiter.core.config import settings
from ratelimiter.core.logging import get_logger, setup_logging

__all__ = [
    "settings",
    "get_logger",
    "setup_logging",
]
