from __future__ import annotations

import pytest
from pydantic import ValidationError

from grantsnap.models import AuthCacheEntry, EphemeralEntry, Identity, PersistedEntry, SessionHandle
from grantsnap.result import Lookup, LookupStatus


def test_identity_keeps_raw_payload_and_ignores_nulls() -> None:
    payload = {"id": "user-1", "email": None, "aud": "authenticated", "user_metadata": {"plan": "pro"}}

    identity = Identity.model_validate(payload)

    assert identity.email is None
    assert identity.user_metadata == {"plan": "pro"}
    assert identity.raw == payload
    assert "raw" not in identity.model_dump()


def test_session_expiry_with_leeway() -> None:
    session = SessionHandle(access_token="t", expires_at=1_000)

    assert not session.is_expired(900)
    assert session.is_expired(980, leeway_s=30)
    assert session.is_expired(1_000)
    assert not SessionHandle(access_token="t").is_expired(10**12)


def test_auth_cache_entry_freshness() -> None:
    entry = AuthCacheEntry(timestamp=1_000, is_valid=True)

    assert entry.is_fresh(1_000 + 299_999, 300_000)
    assert not entry.is_fresh(1_000 + 300_000, 300_000)
    with pytest.raises(ValidationError):
        entry.timestamp = 5  # type: ignore[misc]


def test_ephemeral_entry_uses_camel_case_component_id() -> None:
    entry = EphemeralEntry.model_validate_json('{"data": [1], "timestamp": 5, "componentId": "tabs"}')

    assert entry.component_id == "tabs"
    assert entry.model_dump(by_alias=True) == {"data": [1], "timestamp": 5, "componentId": "tabs"}


def test_persisted_entry_requires_integer_version() -> None:
    with pytest.raises(ValidationError):
        PersistedEntry.model_validate_json('{"data": 1, "timestamp": 5, "version": "1"}')


def test_lookup_unwrap() -> None:
    assert Lookup.found(3).unwrap_or(0) == 3
    assert Lookup.found(None).ok
    missing: Lookup[int] = Lookup.missing(LookupStatus.STALE)
    assert missing.unwrap_or(7) == 7
    assert not missing.ok
