from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from grantsnap.auth_cache import AuthChangeCallback
from grantsnap.config import GrantSnapConfig
from grantsnap.context import AppContext
from grantsnap.exceptions import GrantSnapConfigError
from grantsnap.models import Identity, SessionHandle
from grantsnap.smart_auth import AuthStatus
from grantsnap.storage import FileStorage, MemoryStorage


class _FakeProvider:
    def __init__(self) -> None:
        self.calls = 0
        self.callbacks: list[AuthChangeCallback] = []

    async def get_current_session(self) -> SessionHandle | None:
        self.calls += 1
        await asyncio.sleep(0)
        return SessionHandle(access_token="t", user=Identity(id="user-1"))

    def on_change(self, callback: AuthChangeCallback) -> None:
        self.callbacks.append(callback)


def test_get_auth_cache_builds_one_manager() -> None:
    provider = _FakeProvider()
    context = AppContext(durable=MemoryStorage(), provider=provider)

    first = context.get_auth_cache()
    second = context.get_auth_cache()

    assert first is second
    assert len(provider.callbacks) == 1


def test_get_auth_cache_requires_provider() -> None:
    with pytest.raises(GrantSnapConfigError):
        AppContext(durable=MemoryStorage()).get_auth_cache()


def test_from_config_uses_file_storage(tmp_path: Path) -> None:
    config = GrantSnapConfig(storage_path=str(tmp_path / "durable.json"))

    context = AppContext.from_config(config)

    assert isinstance(context.durable, FileStorage)
    assert isinstance(context.session, MemoryStorage)


def test_persisted_defaults_follow_config() -> None:
    context = AppContext(durable=MemoryStorage(), config=GrantSnapConfig(debounce_ms=120, state_version=5))

    store = context.persisted({}, key="profileHub.formData")
    store.force_write({"name": "Acme"})

    assert store.version == 5
    assert context.persisted({}, key="profileHub.formData", version=4).read() == {}
    assert context.persisted({}, key="profileHub.formData").read() == {"name": "Acme"}


def test_attach_uses_session_storage() -> None:
    context = AppContext(durable=MemoryStorage())

    with context.attach("opportunity-table", {"sort": "deadline"}) as state:
        state.set({"sort": "amount"})

    assert context.durable.keys() == []
    assert context.attach("opportunity-table", {}).value == {"sort": "amount"}


@pytest.mark.asyncio
async def test_smart_auth_readers_share_the_cache() -> None:
    provider = _FakeProvider()
    context = AppContext(durable=MemoryStorage(), provider=provider)

    async with context.smart_auth() as first, context.smart_auth() as second:
        assert first.status is AuthStatus.VALID
        assert second.status is AuthStatus.VALID

    assert provider.calls == 1
