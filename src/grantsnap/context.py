"""Application composition root.

:class:`AppContext` owns the durable storage, the session storage and the
auth provider, and hands out stores bound to them.  It also owns the one
:class:`AuthCacheManager` of the application: the manager is built on the
first :meth:`AppContext.get_auth_cache` call and shared by every later
caller.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any, TypeVar

from grantsnap._clock import Clock, now_ms
from grantsnap.auth_cache import AuthCacheManager, AuthProvider
from grantsnap.config import GrantSnapConfig
from grantsnap.ephemeral import ComponentState, EphemeralComponentCache
from grantsnap.exceptions import GrantSnapConfigError
from grantsnap.persisted import PersistedValueStore
from grantsnap.smart_auth import SmartAuth
from grantsnap.storage import FileStorage, KeyValueStorage, MemoryStorage
from grantsnap.visibility import TabVisibility

_logger = logging.getLogger(__name__)

T = TypeVar("T")


class AppContext:
    """Shared collaborators for every store in one application.

    Usage::

        context = AppContext.from_config(GrantSnapConfig.from_env(), provider=provider)
        form = context.persisted({"name": ""}, key="profileHub.formData")
        async with context.smart_auth() as auth:
            ...
    """

    def __init__(
        self,
        *,
        durable: KeyValueStorage,
        session: KeyValueStorage | None = None,
        provider: AuthProvider | None = None,
        config: GrantSnapConfig | None = None,
        clock: Clock = now_ms,
    ) -> None:
        self.config = config or GrantSnapConfig()
        self.durable = durable
        self.session = session if session is not None else MemoryStorage(quota_bytes=self.config.storage_quota_bytes)
        self.visibility = TabVisibility(clock=clock)
        self._provider = provider
        self._clock = clock
        self._auth_cache: AuthCacheManager | None = None
        self._components = EphemeralComponentCache(
            self.session,
            clock=clock,
            max_age_ms=self.config.component_max_age_ms,
        )

    @classmethod
    def from_config(
        cls,
        config: GrantSnapConfig,
        *,
        provider: AuthProvider | None = None,
        clock: Clock = now_ms,
    ) -> AppContext:
        """Build a context whose durable storage follows ``config.storage_path``."""
        durable: KeyValueStorage
        if config.storage_path:
            durable = FileStorage(config.storage_path, quota_bytes=config.storage_quota_bytes)
        else:
            _logger.info("No storage path configured; durable state is kept in memory")
            durable = MemoryStorage(quota_bytes=config.storage_quota_bytes)
        return cls(durable=durable, provider=provider, config=config, clock=clock)

    @property
    def components(self) -> EphemeralComponentCache:
        return self._components

    def get_auth_cache(self) -> AuthCacheManager:
        """Return the context's auth cache, creating it on first use."""
        if self._auth_cache is None:
            if self._provider is None:
                raise GrantSnapConfigError("AppContext has no auth provider")
            self._auth_cache = AuthCacheManager(
                self._provider,
                clock=self._clock,
                ttl_ms=self.config.auth_cache_ttl_ms,
            )
        return self._auth_cache

    def smart_auth(self, *, track_visibility: bool = True) -> SmartAuth:
        return SmartAuth(
            self.get_auth_cache(),
            visibility=self.visibility if track_visibility else None,
        )

    def persisted(
        self,
        initial_value: T,
        *,
        key: str,
        debounce_ms: int | None = None,
        version: int | None = None,
        on_conflict: Callable[[T, T], T] | None = None,
        value_type: Any = None,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> PersistedValueStore[T]:
        """Create a store over the durable storage; unset options follow the config."""
        return PersistedValueStore(
            self.durable,
            initial_value,
            key=key,
            debounce_ms=self.config.debounce_ms if debounce_ms is None else debounce_ms,
            version=self.config.state_version if version is None else version,
            on_conflict=on_conflict,
            value_type=value_type,
            clock=self._clock,
            loop=loop,
        )

    def attach(
        self,
        component_id: str,
        initial_value: T,
        *,
        persist_on_unmount: bool = True,
        restore_on_mount: bool = True,
        max_age_ms: int | None = None,
    ) -> ComponentState[T]:
        """Attach a component to the session-scoped cache."""
        return self._components.attach(
            component_id,
            initial_value,
            persist_on_unmount=persist_on_unmount,
            restore_on_mount=restore_on_mount,
            max_age_ms=max_age_ms,
        )
