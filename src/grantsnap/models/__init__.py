"""Typed models for stored records and auth state."""

from grantsnap.models.auth import AuthCacheEntry, AuthEvent, Identity, SessionHandle
from grantsnap.models.entries import EphemeralEntry, PersistedEntry

__all__ = [
    "AuthCacheEntry",
    "AuthEvent",
    "EphemeralEntry",
    "Identity",
    "PersistedEntry",
    "SessionHandle",
]
