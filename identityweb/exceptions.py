"""Library exception hierarchy."""

from __future__ import annotations


class IdentityWebError(Exception):
    """Base class for all identityweb exceptions."""


class InvalidArgumentError(IdentityWebError, ValueError):
    """Raised when a caller passes a missing or empty argument."""

    def __init__(self, argument: str, detail: str | None = None) -> None:
        """Initialize with the offending argument name."""
        message = detail or f"{argument} must be a non-empty value."
        super().__init__(message)
        self.argument = argument
        self.detail = message


class MetadataUnavailableError(IdentityWebError):
    """Raised when issuer metadata cannot be fetched or parsed."""

    def __init__(
        self,
        detail: str,
        url: str | None = None,
        status_code: int | None = None,
    ) -> None:
        """Initialize with optional metadata URL and HTTP status context."""
        super().__init__(detail)
        self.detail = detail
        self.url = url
        self.status_code = status_code


class StoreError(IdentityWebError):
    """Raised by blob stores when a backend operation fails."""

    def __init__(self, detail: str, key: str | None = None) -> None:
        """Initialize with the cache key the operation targeted."""
        super().__init__(detail)
        self.detail = detail
        self.key = key


class ConfigurationError(IdentityWebError, ValueError):
    """Raised when configured options cannot be applied."""
