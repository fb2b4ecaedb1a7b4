"""Async retrieval of issuer metadata documents."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Protocol

import httpx

from identityweb.exceptions import ConfigurationError, MetadataUnavailableError
from identityweb.types import IssuerMetadata

DEFAULT_TIMEOUT = httpx.Timeout(connect=2.0, read=5.0, write=5.0, pool=5.0)
METADATA_PATH = "/common/.well-known/openid-configuration"


def build_metadata_url(host_key: str) -> str:
    """Return the well-known configuration URL for an authority host."""
    return f"https://{host_key}{METADATA_PATH}"


def select_http_client(
    clients: Mapping[str, httpx.AsyncClient] | None,
    name: str | None,
) -> httpx.AsyncClient | None:
    """Pick a named HTTP client, or None for the default transport."""
    if name is None:
        return None
    if not clients or name not in clients:
        raise ConfigurationError(f"No HTTP client registered under name {name!r}.")
    return clients[name]


class MetadataFetcher(Protocol):
    """Anything able to fetch an issuer metadata document."""

    async def fetch(self, url: str) -> IssuerMetadata: ...


class HttpMetadataFetcher:
    """Fetch OpenID discovery documents over HTTP."""

    def __init__(
        self,
        timeout: httpx.Timeout | float | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Create fetcher with sane defaults and optional injected transport."""
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=timeout or DEFAULT_TIMEOUT)

    async def fetch(self, url: str) -> IssuerMetadata:
        """Fetch a metadata document and return its issuer."""
        response = await self._request(url)
        payload = self._json_object(response, url)
        issuer = payload.get("issuer")
        if not isinstance(issuer, str) or not issuer.strip():
            raise MetadataUnavailableError(
                "Metadata document has no issuer.", url, response.status_code
            )
        return {"issuer": issuer.strip()}

    async def aclose(self) -> None:
        """Close underlying HTTP client if owned by this instance."""
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> HttpMetadataFetcher:
        """Enter async context manager."""
        return self

    async def __aexit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        """Exit async context manager and close managed resources."""
        del exc_type, exc, tb
        await self.aclose()

    async def _request(self, url: str) -> httpx.Response:
        """Execute GET and normalize upstream failures."""
        try:
            response = await self._client.get(url)
        except httpx.RequestError as exc:
            raise MetadataUnavailableError("Metadata endpoint unreachable.", url) from exc

        if response.status_code >= 400:
            raise MetadataUnavailableError(
                f"Metadata request failed with status {response.status_code}.",
                url,
                response.status_code,
            )
        return response

    @staticmethod
    def _json_object(response: httpx.Response, url: str) -> dict[str, Any]:
        """Return response JSON as object."""
        try:
            payload = response.json()
        except ValueError as exc:
            raise MetadataUnavailableError(
                "Metadata endpoint returned invalid JSON.", url, response.status_code
            ) from exc
        if not isinstance(payload, dict):
            raise MetadataUnavailableError(
                "Metadata endpoint returned invalid JSON object.", url, response.status_code
            )
        return payload
