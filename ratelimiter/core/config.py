import math

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All settings can be configured via environment variables or .env file.
    """

    # Redis settings (optional, in-memory limiter is used when disabled)
    redis_enabled: bool = False
    redis_url: str = "redis://localhost:6379/0"

    # Distributed limiter settings
    limiter_prefix: str = "limiter:"
    limiter_invocation_timeout: float = 5.0  # Seconds per Redis round trip
    limiter_reload_script: bool = True  # Re-register script on NOSCRIPT

    # Default policy for the example service: 5 req/sec, burst of 10
    rate_limit_rate: int = 5
    rate_limit_period_seconds: float = 1.0
    rate_limit_burst: int = 10
    rate_limit_fail_closed: bool = (
        False  # If True, deny requests when the limiter backend fails
    )

    # Logging settings
    log_level: str = "INFO"
    log_format: str = "text"  # text | structured | json

    @field_validator("rate_limit_rate", "rate_limit_burst")
    @classmethod
    def validate_rate_limit_positive(cls, v: int) -> int:
        """Validate rate limit values are positive."""
        if v < 1:
            raise ValueError("Rate limit values must be at least 1")
        return v

    @field_validator("rate_limit_period_seconds", "limiter_invocation_timeout")
    @classmethod
    def validate_seconds_positive(cls, v: float) -> float:
        """Validate durations are positive and finite."""
        if not math.isfinite(v) or v <= 0:
            raise ValueError("Durations must be positive")
        return v

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        v = v.lower()
        if v not in ("text", "structured", "json"):
            raise ValueError("log_format must be one of: text, structured, json")
        return v

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


# Global settings instance
settings = Settings()
