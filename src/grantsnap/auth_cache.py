"""Shared cache of the auth provider's current-session answer.

One :class:`AuthCacheManager` exists per :class:`~grantsnap.context.AppContext`.
It registers a single change listener with the provider, keeps the latest
answer for ``ttl_ms`` and fans every update out to its subscribers.

Provider failures never propagate: a failed query caches an entry without
identity, so readers see a signed-out state instead of an error.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Protocol

from grantsnap._clock import Clock, now_ms
from grantsnap.config import DEFAULT_MAX_AGE_MS
from grantsnap.models.auth import AuthCacheEntry, AuthEvent, Identity, SessionHandle
from grantsnap.result import Lookup, LookupStatus

_logger = logging.getLogger(__name__)

AuthChangeCallback = Callable[[AuthEvent, SessionHandle | None], None]
AuthListener = Callable[[AuthCacheEntry], None]


class AuthProvider(Protocol):
    """External authentication provider."""

    async def get_current_session(self) -> SessionHandle | None: ...

    def on_change(self, callback: AuthChangeCallback) -> None: ...


class AuthCacheManager:
    """Caches identity and session, broadcasting every change to subscribers.

    Subscribers are called synchronously, in no particular order, on each
    cache update.  The set is snapshotted before notifying, so a listener
    may unsubscribe itself while being called.
    """

    def __init__(
        self,
        provider: AuthProvider,
        *,
        clock: Clock = now_ms,
        ttl_ms: int = DEFAULT_MAX_AGE_MS,
    ) -> None:
        self._provider = provider
        self._clock = clock
        self._ttl_ms = ttl_ms
        self._cache: AuthCacheEntry | None = None
        self._listeners: set[AuthListener] = set()
        self._initialized = False
        self._inflight: asyncio.Task[AuthCacheEntry] | None = None
        provider.on_change(self._on_auth_change)

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def ttl_ms(self) -> int:
        return self._ttl_ms

    def get_cached_auth(self) -> AuthCacheEntry | None:
        """Return the cached entry while it is younger than the TTL."""
        cache = self._cache
        if cache is not None and cache.is_fresh(self._clock(), self._ttl_ms):
            return cache
        return None

    def subscribe(self, listener: AuthListener) -> Callable[[], None]:
        """Register *listener*; the returned callable removes it again."""
        self._listeners.add(listener)

        def unsubscribe() -> None:
            self._listeners.discard(listener)

        return unsubscribe

    async def initialize(self) -> AuthCacheEntry:
        """Query the provider once per manager lifetime.

        Later calls return the current entry without touching the provider,
        even when that entry has gone cold; use :meth:`refresh` for that.
        Concurrent first calls share one query.
        """
        if self._initialized and self._cache is not None:
            return self._cache
        return await self._run_query()

    async def refresh(self) -> AuthCacheEntry:
        """Re-query the provider regardless of cache state."""
        return await self._run_query()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _run_query(self) -> AuthCacheEntry:
        if self._inflight is None:
            self._inflight = asyncio.get_running_loop().create_task(self._query())
        # The provider query runs to completion even if this caller goes away.
        return await asyncio.shield(self._inflight)

    async def _query(self) -> AuthCacheEntry:
        try:
            lookup = await self._fetch_session()
            if lookup.ok and lookup.value is not None:
                session = lookup.value
                entry = self._update_cache(session.user, session)
            else:
                entry = self._update_cache(None, None)
            self._initialized = True
            return entry
        finally:
            self._inflight = None

    async def _fetch_session(self) -> Lookup[SessionHandle | None]:
        try:
            session = await self._provider.get_current_session()
        except Exception as exc:
            _logger.error("Auth initialization failed", exc_info=True)
            return Lookup.missing(LookupStatus.PROVIDER_ERROR, exc)
        return Lookup.found(session)

    def _on_auth_change(self, event: AuthEvent, session: SessionHandle | None) -> None:
        _logger.debug("Auth state changed: %s", event)
        self._update_cache(session.user if session is not None else None, session)

    def _update_cache(self, identity: Identity | None, session: SessionHandle | None) -> AuthCacheEntry:
        entry = AuthCacheEntry(
            identity=identity,
            session=session,
            timestamp=self._clock(),
            is_valid=True,
        )
        self._cache = entry
        for listener in list(self._listeners):
            try:
                listener(entry)
            except Exception:
                _logger.warning("Auth cache listener failed", exc_info=True)
        return entry
