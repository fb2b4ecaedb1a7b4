"""Shared data contract types."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TypedDict


class IssuerMetadata(TypedDict):
    """Subset of an OpenID discovery document consumed by the resolver."""

    issuer: str


@dataclass(frozen=True)
class AuthorityEntry:
    """Accepted issuer hosts for one authority host."""

    host_key: str
    accepted_issuers: frozenset[str]

    def accepts(self, issuer_host: str) -> bool:
        """Return True when the issuer host is one of the accepted aliases."""
        return issuer_host.lower() in self.accepted_issuers
