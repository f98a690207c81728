from __future__ import annotations

import asyncio

import pytest

from grantsnap.auth_cache import AuthCacheManager, AuthChangeCallback
from grantsnap.models import AuthCacheEntry, AuthEvent, Identity, SessionHandle

_T0 = 1_700_000_000_000


class _FakeClock:
    def __init__(self, now: int = _T0) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now


class _FakeProvider:
    def __init__(self, session: SessionHandle | None = None, error: Exception | None = None) -> None:
        self.session = session
        self.error = error
        self.calls = 0
        self.callbacks: list[AuthChangeCallback] = []

    async def get_current_session(self) -> SessionHandle | None:
        self.calls += 1
        await asyncio.sleep(0)
        if self.error is not None:
            raise self.error
        return self.session

    def on_change(self, callback: AuthChangeCallback) -> None:
        self.callbacks.append(callback)

    def emit(self, event: AuthEvent, session: SessionHandle | None) -> None:
        for callback in self.callbacks:
            callback(event, session)


def _session(user_id: str = "user-1") -> SessionHandle:
    return SessionHandle(
        access_token=f"token-{user_id}",
        refresh_token="refresh",
        user=Identity(id=user_id, email=f"{user_id}@example.com"),
    )


def test_registers_provider_listener_once() -> None:
    provider = _FakeProvider()
    AuthCacheManager(provider)

    assert len(provider.callbacks) == 1


@pytest.mark.asyncio
async def test_initialize_caches_provider_session() -> None:
    provider = _FakeProvider(_session())
    manager = AuthCacheManager(provider, clock=_FakeClock())

    entry = await manager.initialize()

    assert entry.identity is not None
    assert entry.identity.id == "user-1"
    assert entry.session is not None
    assert entry.session.access_token == "token-user-1"
    assert entry.is_valid
    assert entry.timestamp == _T0
    assert manager.initialized


@pytest.mark.asyncio
async def test_cached_auth_freshness_window() -> None:
    clock = _FakeClock()
    manager = AuthCacheManager(_FakeProvider(_session()), clock=clock)
    assert manager.get_cached_auth() is None

    await manager.initialize()

    clock.now = _T0 + 299_999
    assert manager.get_cached_auth() is not None
    clock.now = _T0 + 300_001
    assert manager.get_cached_auth() is None


@pytest.mark.asyncio
async def test_initialize_is_idempotent() -> None:
    provider = _FakeProvider(_session())
    manager = AuthCacheManager(provider)

    first = await manager.initialize()
    second = await manager.initialize()

    assert provider.calls == 1
    assert second is first


@pytest.mark.asyncio
async def test_concurrent_initialize_shares_one_query() -> None:
    provider = _FakeProvider(_session())
    manager = AuthCacheManager(provider)

    first, second = await asyncio.gather(manager.initialize(), manager.initialize())

    assert provider.calls == 1
    assert first is second


@pytest.mark.asyncio
async def test_initialize_fails_open_on_provider_error() -> None:
    provider = _FakeProvider(error=RuntimeError("network down"))
    manager = AuthCacheManager(provider)

    entry = await manager.initialize()

    assert entry.identity is None
    assert entry.session is None
    assert entry.is_valid
    assert manager.initialized

    await manager.initialize()
    assert provider.calls == 1


@pytest.mark.asyncio
async def test_signed_out_session_caches_no_identity() -> None:
    manager = AuthCacheManager(_FakeProvider(None))

    entry = await manager.initialize()

    assert entry.identity is None
    assert entry.is_valid


@pytest.mark.asyncio
async def test_refresh_requeries_provider() -> None:
    provider = _FakeProvider(_session("user-1"))
    manager = AuthCacheManager(provider)
    await manager.initialize()

    provider.session = _session("user-2")
    entry = await manager.refresh()

    assert provider.calls == 2
    assert entry.identity is not None
    assert entry.identity.id == "user-2"


def test_provider_events_update_cache_and_notify() -> None:
    provider = _FakeProvider()
    clock = _FakeClock()
    manager = AuthCacheManager(provider, clock=clock)
    seen: list[AuthCacheEntry] = []
    manager.subscribe(seen.append)

    provider.emit(AuthEvent.SIGNED_IN, _session())
    clock.now += 1_000
    provider.emit(AuthEvent.SIGNED_OUT, None)

    assert len(seen) == 2
    assert seen[0].identity is not None
    assert seen[1].identity is None
    assert seen[1].timestamp == _T0 + 1_000
    assert manager.get_cached_auth() is seen[1]


def test_unsubscribe_stops_notifications() -> None:
    provider = _FakeProvider()
    manager = AuthCacheManager(provider)
    seen: list[AuthCacheEntry] = []
    unsubscribe = manager.subscribe(seen.append)

    provider.emit(AuthEvent.SIGNED_IN, _session())
    unsubscribe()
    unsubscribe()
    provider.emit(AuthEvent.SIGNED_OUT, None)

    assert len(seen) == 1


def test_listener_may_unsubscribe_during_notification() -> None:
    provider = _FakeProvider()
    manager = AuthCacheManager(provider)
    seen: list[str] = []
    unsubscribe_once = None

    def once(entry: AuthCacheEntry) -> None:
        seen.append("once")
        assert unsubscribe_once is not None
        unsubscribe_once()

    unsubscribe_once = manager.subscribe(once)
    manager.subscribe(lambda entry: seen.append("always"))

    provider.emit(AuthEvent.SIGNED_IN, _session())
    provider.emit(AuthEvent.TOKEN_REFRESHED, _session())

    assert sorted(seen) == ["always", "always", "once"]


def test_failing_listener_does_not_block_others(caplog: pytest.LogCaptureFixture) -> None:
    provider = _FakeProvider()
    manager = AuthCacheManager(provider)
    seen: list[AuthCacheEntry] = []

    def broken(entry: AuthCacheEntry) -> None:
        raise ValueError("boom")

    manager.subscribe(broken)
    manager.subscribe(seen.append)

    provider.emit(AuthEvent.SIGNED_IN, _session())

    assert len(seen) == 1
    assert "Auth cache listener failed" in caplog.text
