"""Identity, session and auth-cache models."""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from grantsnap.models._base import ProviderModel


class AuthEvent(StrEnum):
    """Auth state changes reported by the provider."""

    INITIAL_SESSION = "INITIAL_SESSION"
    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"
    USER_UPDATED = "USER_UPDATED"


class Identity(ProviderModel):
    """The authenticated user's account record."""

    id: str
    email: str | None = None
    role: str | None = None
    user_metadata: dict[str, Any] = Field(default_factory=dict)
    app_metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: str | None = None


class SessionHandle(ProviderModel):
    """Tokens representing an active authenticated session.

    Parameters
    ----------
    access_token : str
        Bearer token sent to the hosted API.
    refresh_token : str or None
        Token exchanged for a new session once ``access_token`` expires.
    token_type : str
        Usually ``"bearer"``.
    expires_at : int or None
        Epoch seconds at which ``access_token`` stops being accepted.
    user : Identity or None
        The identity the session was issued for.
    """

    access_token: str
    refresh_token: str | None = None
    token_type: str = "bearer"
    expires_at: int | None = None
    user: Identity | None = None

    def is_expired(self, now_s: float, *, leeway_s: float = 0.0) -> bool:
        """Whether the access token is past (or within *leeway_s* of) its expiry."""
        if self.expires_at is None:
            return False
        return now_s + leeway_s >= self.expires_at


class AuthCacheEntry(BaseModel):
    """Cached answer of the provider's "current session" call."""

    model_config = ConfigDict(frozen=True)

    identity: Identity | None = None
    session: SessionHandle | None = None
    timestamp: int
    is_valid: bool = False

    def age_ms(self, now_ms: int) -> int:
        return now_ms - self.timestamp

    def is_fresh(self, now_ms: int, ttl_ms: int) -> bool:
        return self.age_ms(now_ms) < ttl_ms
