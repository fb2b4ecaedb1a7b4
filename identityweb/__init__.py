"""Public library exports."""

from identityweb.config import Settings, TokenCacheSettings, configure_structlog, get_settings
from identityweb.exceptions import (
    ConfigurationError,
    IdentityWebError,
    InvalidArgumentError,
    MetadataUnavailableError,
    StoreError,
)
from identityweb.issuers import AuthorityResolver, get_authority_resolver
from identityweb.metadata import HttpMetadataFetcher, MetadataFetcher
from identityweb.stores import BlobStore, InMemoryBlobStore, RedisBlobStore
from identityweb.token_cache import (
    TokenCacheAdapter,
    TokenCacheSynchronizer,
    get_token_cache_adapter,
)
from identityweb.types import AuthorityEntry, IssuerMetadata

__all__ = [
    "AuthorityEntry",
    "AuthorityResolver",
    "BlobStore",
    "ConfigurationError",
    "HttpMetadataFetcher",
    "IdentityWebError",
    "InMemoryBlobStore",
    "InvalidArgumentError",
    "IssuerMetadata",
    "MetadataFetcher",
    "MetadataUnavailableError",
    "RedisBlobStore",
    "Settings",
    "StoreError",
    "TokenCacheAdapter",
    "TokenCacheSettings",
    "TokenCacheSynchronizer",
    "configure_structlog",
    "get_authority_resolver",
    "get_settings",
    "get_token_cache_adapter",
]
