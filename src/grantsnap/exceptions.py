"""Custom exception hierarchy for grantsnap."""

from __future__ import annotations


class GrantSnapError(Exception):
    """Base exception for all grantsnap errors."""


class GrantSnapConfigError(GrantSnapError):
    """Invalid or missing configuration."""


class StorageError(GrantSnapError):
    """A key-value storage backend could not complete an operation."""

    def __init__(self, message: str, *, key: str = "") -> None:
        self.key = key
        super().__init__(message)


class StorageQuotaExceededError(StorageError):
    """A write would grow the storage past its configured quota.

    Mirrors the browser ``QuotaExceededError`` raised by ``localStorage``
    and ``sessionStorage``.
    """


class SerializationError(StorageError):
    """A stored record is malformed or cannot be encoded/decoded."""


class AuthProviderError(GrantSnapError):
    """The external authentication provider failed (network, non-2xx, bad JSON)."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        endpoint: str = "",
    ) -> None:
        self.status_code = status_code
        self.endpoint = endpoint
        super().__init__(message)
