"""Unit tests for settings loading and expiration helpers."""

from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta

import pytest
import structlog
from pydantic import ValidationError

from identityweb import issuers, stores, token_cache
from identityweb.config import (
    RedisSettings,
    Settings,
    TokenCacheSettings,
    configure_structlog,
    effective_expiry,
    get_settings,
)
from identityweb.exceptions import ConfigurationError

NOW = datetime(2026, 1, 1, tzinfo=UTC)


@pytest.fixture
def clean_factories():
    """Clear cached singletons before and after a test."""
    factories = (
        get_settings,
        issuers.get_authority_resolver,
        stores.get_redis_client,
        stores.get_blob_store,
        token_cache.get_token_cache_adapter,
    )
    for factory in factories:
        factory.cache_clear()
    yield
    for factory in factories:
        factory.cache_clear()


def test_settings_load_with_defaults() -> None:
    """The library works with no environment configured."""
    settings = Settings()

    assert str(settings.issuer_validator.fallback_authority) == (
        "https://login.microsoftonline.com/"
    )
    assert settings.issuer_validator.http_client_name is None
    assert settings.token_cache.sliding_expiration == timedelta(hours=1)
    assert settings.token_cache.absolute_expiration is None


def test_settings_read_nested_environment(monkeypatch) -> None:
    """Nested settings are populated from double-underscore variables."""
    monkeypatch.setenv("ISSUER_VALIDATOR__FALLBACK_AUTHORITY", "https://login.example.com/")
    monkeypatch.setenv("ISSUER_VALIDATOR__HTTP_CLIENT_NAME", "aad")
    monkeypatch.setenv("TOKEN_CACHE__SLIDING_EXPIRATION", "PT2M")
    monkeypatch.setenv("REDIS__KEY_PREFIX", "svc:")

    settings = Settings()

    assert str(settings.issuer_validator.fallback_authority) == "https://login.example.com/"
    assert settings.issuer_validator.http_client_name == "aad"
    assert settings.token_cache.sliding_expiration == timedelta(seconds=120)
    assert settings.redis.key_prefix == "svc:"


@pytest.mark.parametrize(
    "field", ["sliding_expiration", "absolute_expiration_relative_to_now"]
)
def test_token_cache_settings_reject_non_positive_durations(field: str) -> None:
    """Zero-length expiration windows are invalid."""
    with pytest.raises(ValidationError):
        TokenCacheSettings(**{field: timedelta(0)})


def test_redis_settings_reject_unknown_scheme() -> None:
    """Only redis:// and rediss:// URLs are accepted."""
    with pytest.raises(ValidationError):
        RedisSettings(url="http://localhost:6379")


def test_absolute_deadline_prefers_relative_expiration() -> None:
    """A relative expiration overrides an explicit absolute one."""
    options = TokenCacheSettings(
        absolute_expiration=NOW + timedelta(days=7),
        absolute_expiration_relative_to_now=timedelta(hours=1),
    )

    assert options.absolute_deadline(NOW) == NOW + timedelta(hours=1)


def test_absolute_deadline_treats_naive_datetime_as_utc() -> None:
    """Naive absolute expirations are interpreted in UTC."""
    options = TokenCacheSettings(absolute_expiration=datetime(2026, 1, 2))

    assert options.absolute_deadline(NOW) == datetime(2026, 1, 2, tzinfo=UTC)


def test_absolute_deadline_in_past_is_rejected() -> None:
    """An elapsed absolute expiration cannot be applied."""
    options = TokenCacheSettings(absolute_expiration=NOW)

    with pytest.raises(ConfigurationError):
        options.absolute_deadline(NOW)


def test_effective_expiry_is_earliest_deadline() -> None:
    """The effective expiry is the earlier of absolute and sliding deadlines."""
    assert effective_expiry(NOW, None, None) is None
    assert effective_expiry(NOW, None, timedelta(minutes=5)) == NOW + timedelta(minutes=5)
    assert effective_expiry(NOW, NOW + timedelta(minutes=1), timedelta(minutes=5)) == (
        NOW + timedelta(minutes=1)
    )


@pytest.mark.usefixtures("clean_factories")
def test_factories_return_process_wide_singletons(monkeypatch) -> None:
    """The resolver and adapter factories share one instance per process."""
    monkeypatch.setenv("REDIS__URL", "redis://cache.internal:6379/2")

    resolver = issuers.get_authority_resolver()
    adapter = token_cache.get_token_cache_adapter()

    assert issuers.get_authority_resolver() is resolver
    assert token_cache.get_token_cache_adapter() is adapter
    assert stores.get_blob_store() is stores.get_blob_store()


def test_configure_structlog_emits_json_with_standard_fields(capsys) -> None:
    """Configured loggers render JSON carrying environment and service fields."""
    settings = Settings(app={"environment": "staging", "service": "issuer-cache"})
    configure_structlog(settings)
    try:
        structlog.get_logger("test").info("authority_cached", host_key="login.example.com")
        with structlog.contextvars.bound_contextvars(request_id="req-1"):
            structlog.get_logger("test").info("token_cache_read_started")
        lines = capsys.readouterr().out.strip().splitlines()
    finally:
        structlog.reset_defaults()

    record, bound = (json.loads(line) for line in lines[-2:])
    assert "correlation_id" not in record
    assert bound["request_id"] == "req-1"
    assert record["event"] == "authority_cached"
    assert record["environment"] == "staging"
    assert record["service"] == "issuer-cache"
    assert record["level"] == "info"
