"""Per-authority cache of accepted token issuers."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable, Mapping, MutableMapping
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any
from urllib.parse import urlsplit

import httpx
import structlog
from cachetools import LRUCache, TTLCache

from identityweb.config import DEFAULT_FALLBACK_AUTHORITY, IssuerValidatorSettings, get_settings
from identityweb.exceptions import (
    ConfigurationError,
    InvalidArgumentError,
    MetadataUnavailableError,
)
from identityweb.metadata import (
    HttpMetadataFetcher,
    MetadataFetcher,
    build_metadata_url,
    select_http_client,
)
from identityweb.types import AuthorityEntry

DEFAULT_BOUNDED_MAXSIZE = 1024
_DEFAULT_PORTS = {"http": 80, "https": 443}

logger = structlog.get_logger(__name__)


@dataclass
class _HostLock:
    """Lock shared by the callers currently resolving one host."""

    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


def url_authority(url: str) -> str | None:
    """Return host[:port] of an absolute URL, or None when it is not one."""
    try:
        parts = urlsplit(url.strip())
        port = parts.port
    except ValueError:
        return None
    host = parts.hostname
    if not parts.scheme or not host:
        return None
    if ":" in host:
        host = f"[{host}]"
    if port is not None and port != _DEFAULT_PORTS.get(parts.scheme.lower()):
        return f"{host}:{port}"
    return host


def _entry_cache(
    maxsize: int | None,
    ttl_seconds: int | None,
    timer: Callable[[], float] | None,
) -> MutableMapping[str, AuthorityEntry]:
    """Build the backing mapping; unbounded and permanent unless limits are set."""
    if ttl_seconds is not None:
        return TTLCache(
            maxsize=maxsize or DEFAULT_BOUNDED_MAXSIZE,
            ttl=ttl_seconds,
            timer=timer or time.monotonic,
        )
    if maxsize is not None:
        return LRUCache(maxsize=maxsize)
    return {}


class AuthorityResolver:
    """Resolve authority URLs to the issuer hosts their tokens may carry.

    Entries are populated lazily from the authority's OpenID discovery
    document and reused for the lifetime of the resolver. Concurrent misses
    for one host wait on a per-host lock so the document is fetched once.
    The resolver is bound to the event loop it is used from.
    """

    def __init__(
        self,
        metadata_fetcher: MetadataFetcher,
        fallback_authority: str = DEFAULT_FALLBACK_AUTHORITY,
        cache_maxsize: int | None = None,
        cache_ttl_seconds: int | None = None,
        timer: Callable[[], float] | None = None,
    ) -> None:
        """Create resolver with the fetcher used on cache misses."""
        fallback_host = url_authority(fallback_authority)
        if fallback_host is None:
            raise ConfigurationError("Fallback authority must be an absolute URL.")
        self._fetcher = metadata_fetcher
        self._fallback_host = fallback_host
        self._entries = _entry_cache(cache_maxsize, cache_ttl_seconds, timer)
        self._locks: dict[str, _HostLock] = {}

    def host_key(self, authority_url: str | None) -> str:
        """Normalize an authority URL to its cache key."""
        if not authority_url:
            raise InvalidArgumentError("authority_url")
        host = url_authority(authority_url)
        if host is None:
            logger.warning(
                "authority_fallback_used",
                authority=authority_url,
                fallback_host=self._fallback_host,
            )
            return self._fallback_host
        return host

    async def resolve(self, authority_url: str | None) -> AuthorityEntry:
        """Return the cached entry for an authority, fetching metadata on first use."""
        host_key = self.host_key(authority_url)
        entry = self._entries.get(host_key)
        if entry is not None:
            return entry

        host_lock = self._locks.setdefault(host_key, _HostLock())
        host_lock.users += 1
        try:
            async with host_lock.lock:
                entry = self._entries.get(host_key)
                if entry is not None:
                    return entry
                entry = await self._fetch_entry(host_key)
                self._entries[host_key] = entry
                return entry
        finally:
            host_lock.users -= 1
            if not host_lock.users:
                del self._locks[host_key]

    def clear(self) -> None:
        """Forget every cached authority."""
        self._entries.clear()

    def __contains__(self, host_key: object) -> bool:
        return host_key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    async def _fetch_entry(self, host_key: str) -> AuthorityEntry:
        """Fetch metadata for a host and build its entry."""
        metadata_url = build_metadata_url(host_key)
        logger.info("authority_metadata_fetch_started", host_key=host_key, url=metadata_url)
        try:
            metadata = await self._fetcher.fetch(metadata_url)
        except MetadataUnavailableError as exc:
            logger.warning("authority_metadata_fetch_failed", host_key=host_key, detail=exc.detail)
            raise
        except Exception as exc:
            logger.warning(
                "authority_metadata_fetch_failed", host_key=host_key, detail=repr(exc)
            )
            raise MetadataUnavailableError("Issuer metadata unavailable.", metadata_url) from exc

        issuer_host = self._issuer_host(metadata, metadata_url)
        entry = AuthorityEntry(host_key=host_key, accepted_issuers=frozenset({issuer_host}))
        logger.info("authority_cached", host_key=host_key, accepted_issuers=[issuer_host])
        return entry

    @staticmethod
    def _issuer_host(metadata: Mapping[str, Any], metadata_url: str) -> str:
        """Extract the authority of the document's issuer URL."""
        issuer = metadata.get("issuer") if isinstance(metadata, Mapping) else None
        if not isinstance(issuer, str) or not issuer:
            raise MetadataUnavailableError("Metadata document has no issuer.", metadata_url)
        issuer_host = url_authority(issuer)
        if issuer_host is None:
            raise MetadataUnavailableError("Metadata issuer is not an absolute URL.", metadata_url)
        return issuer_host


def build_authority_resolver(
    settings: IssuerValidatorSettings,
    http_clients: Mapping[str, httpx.AsyncClient] | None = None,
) -> AuthorityResolver:
    """Create a resolver using the HTTP client named in settings, if any."""
    http_client = select_http_client(http_clients, settings.http_client_name)
    fetcher = HttpMetadataFetcher(
        timeout=settings.metadata_timeout_seconds,
        http_client=http_client,
    )
    return AuthorityResolver(
        metadata_fetcher=fetcher,
        fallback_authority=str(settings.fallback_authority),
        cache_maxsize=settings.cache_maxsize,
        cache_ttl_seconds=settings.cache_ttl_seconds,
    )


@lru_cache
def get_authority_resolver() -> AuthorityResolver:
    """Create and cache the process-wide authority resolver."""
    return build_authority_resolver(get_settings().issuer_validator)
