"""Key/value blob stores backing the distributed token cache."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from functools import lru_cache
from typing import Protocol

from redis import asyncio as redis_async
from redis.asyncio.client import Redis
from redis.exceptions import RedisError

from identityweb.config import TokenCacheSettings, effective_expiry, get_settings
from identityweb.exceptions import StoreError

_DATA_FIELD = "data"
_ABSOLUTE_FIELD = "absexp"
_SLIDING_FIELD = "sldexp"


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _to_epoch_ms(value: datetime) -> int:
    return int(value.timestamp() * 1000)


def _from_epoch_ms(value: int) -> datetime:
    return datetime.fromtimestamp(value / 1000, tz=UTC)


class BlobStore(Protocol):
    """Byte-valued key/value store with per-entry expiration."""

    async def get(self, key: str) -> bytes | None: ...

    async def set(self, key: str, value: bytes, options: TokenCacheSettings) -> None: ...

    async def delete(self, key: str) -> None: ...


@dataclass
class _StoredBlob:
    """In-memory entry with its expiration bookkeeping."""

    value: bytes
    absolute_deadline: datetime | None
    sliding: timedelta | None
    expires_at: datetime | None


class InMemoryBlobStore:
    """Process-local blob store, mainly for tests and single-instance apps."""

    def __init__(self, now: Callable[[], datetime] | None = None) -> None:
        self._entries: dict[str, _StoredBlob] = {}
        self._now = now or _utcnow

    async def get(self, key: str) -> bytes | None:
        """Return the blob for key, refreshing its sliding window."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        now = self._now()
        if entry.expires_at is not None and entry.expires_at <= now:
            self._entries.pop(key, None)
            return None
        entry.expires_at = effective_expiry(now, entry.absolute_deadline, entry.sliding)
        return entry.value

    async def set(self, key: str, value: bytes, options: TokenCacheSettings) -> None:
        """Store a copy of the blob, replacing any previous entry."""
        now = self._now()
        deadline = options.absolute_deadline(now)
        self._entries[key] = _StoredBlob(
            value=bytes(value),
            absolute_deadline=deadline,
            sliding=options.sliding_expiration,
            expires_at=effective_expiry(now, deadline, options.sliding_expiration),
        )

    async def delete(self, key: str) -> None:
        """Drop the entry for key if present."""
        self._entries.pop(key, None)


class RedisBlobStore:
    """Redis-backed blob store.

    Each entry is a hash holding the payload plus its absolute deadline and
    sliding window in milliseconds, so reads can push the key expiry forward
    without exceeding the absolute deadline.
    """

    def __init__(
        self,
        redis_client: Redis,
        key_prefix: str = "",
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self._redis = redis_client
        self._key_prefix = key_prefix
        self._now = now or _utcnow

    async def get(self, key: str) -> bytes | None:
        """Fetch blob bytes and refresh the sliding expiration."""
        redis_key = self._redis_key(key)
        try:
            data, absolute_ms, sliding_ms = await self._redis.hmget(
                redis_key, [_DATA_FIELD, _ABSOLUTE_FIELD, _SLIDING_FIELD]
            )
            if data is None:
                return None
            if sliding_ms is not None:
                deadline = _from_epoch_ms(int(absolute_ms)) if absolute_ms is not None else None
                expires_at = effective_expiry(
                    self._now(), deadline, timedelta(milliseconds=int(sliding_ms))
                )
                await self._redis.pexpireat(redis_key, _to_epoch_ms(expires_at))
        except RedisError as exc:
            raise StoreError("Token cache backend unavailable.", key) from exc
        return bytes(data)

    async def set(self, key: str, value: bytes, options: TokenCacheSettings) -> None:
        """Replace the entry for key and apply its expiration."""
        redis_key = self._redis_key(key)
        now = self._now()
        deadline = options.absolute_deadline(now)
        sliding = options.sliding_expiration
        expires_at = effective_expiry(now, deadline, sliding)

        mapping: dict[str, bytes | int] = {_DATA_FIELD: bytes(value)}
        if deadline is not None:
            mapping[_ABSOLUTE_FIELD] = _to_epoch_ms(deadline)
        if sliding is not None:
            mapping[_SLIDING_FIELD] = int(sliding.total_seconds() * 1000)

        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.delete(redis_key)
                pipe.hset(redis_key, mapping=mapping)
                if expires_at is not None:
                    pipe.pexpireat(redis_key, _to_epoch_ms(expires_at))
                await pipe.execute()
        except RedisError as exc:
            raise StoreError("Token cache backend unavailable.", key) from exc

    async def delete(self, key: str) -> None:
        """Delete the entry for key."""
        try:
            await self._redis.delete(self._redis_key(key))
        except RedisError as exc:
            raise StoreError("Token cache backend unavailable.", key) from exc

    def _redis_key(self, key: str) -> str:
        """Build namespaced Redis key."""
        return f"{self._key_prefix}{key}"


@lru_cache
def get_redis_client() -> Redis:
    """Create and cache a binary-safe Redis client."""
    settings = get_settings()
    return redis_async.from_url(settings.redis.url, decode_responses=False)


@lru_cache
def get_blob_store() -> RedisBlobStore:
    """Create and cache the Redis blob store."""
    settings = get_settings()
    return RedisBlobStore(redis_client=get_redis_client(), key_prefix=settings.redis.key_prefix)
