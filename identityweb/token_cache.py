"""Token cache persistence adapter over a blob store."""

from __future__ import annotations

from functools import lru_cache
from typing import Protocol, runtime_checkable

import structlog

from identityweb.config import TokenCacheSettings, get_settings
from identityweb.exceptions import InvalidArgumentError
from identityweb.stores import BlobStore, get_blob_store

logger = structlog.get_logger(__name__)


@runtime_checkable
class TokenCacheSynchronizer(Protocol):
    """Persistence hooks a token cache serializer calls around cache access."""

    async def remove_key(self, key: str) -> None: ...

    async def read_cache_bytes(self, key: str) -> bytes | None: ...

    async def write_cache_bytes(self, key: str, payload: bytes) -> None: ...


class TokenCacheAdapter:
    """Persist serialized token caches in a blob store, one entry per cache key.

    Payloads are opaque and passed through byte-for-byte. Store failures
    propagate to the caller unchanged; nothing is retried here.
    """

    def __init__(self, store: BlobStore, options: TokenCacheSettings | None) -> None:
        if options is None:
            raise InvalidArgumentError("options")
        self._store = store
        self._options = options

    async def remove_key(self, key: str) -> None:
        """Remove the token cache stored under key. Missing keys are ignored."""
        logger.info("token_cache_remove_started", cache_key=key)
        await self._store.delete(key)
        logger.info("token_cache_remove_finished", cache_key=key)

    async def read_cache_bytes(self, key: str) -> bytes | None:
        """Return the token cache blob for key, or None when nothing is stored."""
        logger.info("token_cache_read_started", cache_key=key)
        payload = await self._store.get(key)
        logger.info(
            "token_cache_read_finished",
            cache_key=key,
            byte_length=len(payload) if payload is not None else None,
        )
        return payload

    async def write_cache_bytes(self, key: str, payload: bytes) -> None:
        """Store the blob under key, replacing any previous one."""
        logger.info("token_cache_write_started", cache_key=key, byte_length=len(payload))
        await self._store.set(key, payload, self._options)
        logger.info("token_cache_write_finished", cache_key=key, byte_length=len(payload))


@lru_cache
def get_token_cache_adapter() -> TokenCacheAdapter:
    """Create and cache the Redis-backed token cache adapter."""
    settings = get_settings()
    return TokenCacheAdapter(store=get_blob_store(), options=settings.token_cache)
