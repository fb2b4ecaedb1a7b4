"""Library settings and logging configuration."""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from functools import lru_cache
from typing import Any, Literal

import structlog
from pydantic import AnyHttpUrl, BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from identityweb.exceptions import ConfigurationError

DEFAULT_FALLBACK_AUTHORITY = "https://login.microsoftonline.com/"
_LOG_CONTEXT: dict[str, str] = {"environment": "development", "service": "identityweb"}


class LoggingSettings(BaseModel):
    """Logging identity and verbosity."""

    environment: Literal["development", "staging", "production"] = "development"
    service: str = "identityweb"
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"


class IssuerValidatorSettings(BaseModel):
    """Authority resolution settings."""

    fallback_authority: AnyHttpUrl = Field(
        default=DEFAULT_FALLBACK_AUTHORITY,
        validate_default=True,
        description="Authority used when the requested one is not an absolute URL.",
    )
    http_client_name: str | None = None
    metadata_timeout_seconds: float = Field(default=10.0, gt=0)
    cache_maxsize: int | None = Field(default=None, ge=1)
    cache_ttl_seconds: int | None = Field(default=None, ge=1)


class TokenCacheSettings(BaseModel):
    """Expiration policy applied to every token cache write."""

    absolute_expiration: datetime | None = None
    absolute_expiration_relative_to_now: timedelta | None = None
    sliding_expiration: timedelta | None = timedelta(hours=1)

    @field_validator("absolute_expiration")
    @classmethod
    def ensure_aware(cls, value: datetime | None) -> datetime | None:
        """Treat naive absolute expirations as UTC."""
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value

    @field_validator("absolute_expiration_relative_to_now", "sliding_expiration")
    @classmethod
    def ensure_positive(cls, value: timedelta | None) -> timedelta | None:
        """Reject zero or negative expiration windows."""
        if value is not None and value <= timedelta(0):
            raise ValueError("expiration durations must be positive.")
        return value

    def absolute_deadline(self, now: datetime) -> datetime | None:
        """Return the absolute deadline for an entry written at ``now``."""
        if self.absolute_expiration_relative_to_now is not None:
            return now + self.absolute_expiration_relative_to_now
        if self.absolute_expiration is None:
            return None
        if self.absolute_expiration <= now:
            raise ConfigurationError("The absolute expiration value must be in the future.")
        return self.absolute_expiration


def effective_expiry(
    now: datetime,
    absolute_deadline: datetime | None,
    sliding: timedelta | None,
) -> datetime | None:
    """Return the earliest of the absolute deadline and the sliding window end."""
    candidates = [absolute_deadline] if absolute_deadline is not None else []
    if sliding is not None:
        candidates.append(now + sliding)
    return min(candidates) if candidates else None


class RedisSettings(BaseModel):
    """Redis connection settings for the distributed token cache."""

    url: str = Field(default="redis://localhost:6379/0", description="Redis URL.")
    key_prefix: str = "msal:token-cache:"

    @field_validator("url")
    @classmethod
    def validate_redis_url(cls, value: str) -> str:
        """Ensure the Redis URL uses a supported scheme."""
        if not value.startswith(("redis://", "rediss://")):
            raise ValueError("redis.url must start with 'redis://' or 'rediss://'.")
        return value


class Settings(BaseSettings):
    """Root settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    app: LoggingSettings = Field(default_factory=LoggingSettings)
    issuer_validator: IssuerValidatorSettings = Field(default_factory=IssuerValidatorSettings)
    token_cache: TokenCacheSettings = Field(default_factory=TokenCacheSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)


def _standard_log_fields(_: Any, __: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Inject required structured logging fields."""
    event_dict.setdefault("environment", _LOG_CONTEXT["environment"])
    event_dict.setdefault("service", _LOG_CONTEXT["service"])
    event_dict.setdefault("timestamp", datetime.now(UTC).isoformat())
    return event_dict


def configure_structlog(settings: Settings) -> None:
    """Configure structlog for JSON output with required fields."""
    _LOG_CONTEXT["environment"] = settings.app.environment
    _LOG_CONTEXT["service"] = settings.app.service

    log_level = getattr(logging, settings.app.log_level, logging.INFO)
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            _standard_log_fields,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        context_class=dict,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


@lru_cache
def get_settings() -> Settings:
    """Load and cache library settings from environment variables."""
    return Settings()
