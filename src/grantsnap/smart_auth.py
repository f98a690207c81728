"""Per-reader view over the shared auth cache."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from enum import StrEnum
from typing import Any

from grantsnap.auth_cache import AuthCacheManager
from grantsnap.models.auth import AuthCacheEntry, Identity, SessionHandle
from grantsnap.visibility import TabVisibility

_logger = logging.getLogger(__name__)


class AuthStatus(StrEnum):
    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    VALID = "valid"
    INVALID = "invalid"


class SmartAuth:
    """Identity as seen by one consumer.

    ``start()`` serves a fresh cached entry without entering ``LOADING``;
    only a cold cache triggers a provider query.  ``VALID`` means the entry
    carries an identity, ``INVALID`` that it does not (signed out, or the
    provider failed).

    Usage::

        async with SmartAuth(context.get_auth_cache()) as auth:
            if auth.user is not None:
                ...
    """

    def __init__(self, manager: AuthCacheManager, *, visibility: TabVisibility | None = None) -> None:
        self._manager = manager
        self._visibility = visibility
        self._entry: AuthCacheEntry | None = None
        self._status = AuthStatus.UNINITIALIZED
        self._unsubscribe_auth: Callable[[], None] | None = None
        self._unsubscribe_visibility: Callable[[], None] | None = None
        self._revalidate_task: asyncio.Task[AuthCacheEntry] | None = None

    @property
    def status(self) -> AuthStatus:
        return self._status

    @property
    def loading(self) -> bool:
        return self._status in (AuthStatus.UNINITIALIZED, AuthStatus.LOADING)

    @property
    def user(self) -> Identity | None:
        return self._entry.identity if self._entry is not None else None

    @property
    def session(self) -> SessionHandle | None:
        return self._entry.session if self._entry is not None else None

    @property
    def is_valid(self) -> bool:
        return self._entry.is_valid if self._entry is not None else False

    async def start(self) -> SmartAuth:
        if self._unsubscribe_auth is None:
            self._unsubscribe_auth = self._manager.subscribe(self._adopt)
        if self._visibility is not None and self._unsubscribe_visibility is None:
            self._unsubscribe_visibility = self._visibility.subscribe(self._on_visibility)

        cached = self._manager.get_cached_auth()
        if cached is not None:
            _logger.debug("Using cached auth")
            self._adopt(cached)
            return self

        self._status = AuthStatus.LOADING
        if self._manager.initialized:
            entry = await self._manager.refresh()
        else:
            entry = await self._manager.initialize()
        self._adopt(entry)
        return self

    async def revalidate(self) -> AuthCacheEntry:
        """Re-query the provider only when the shared cache has gone cold."""
        cached = self._manager.get_cached_auth()
        if cached is not None:
            self._adopt(cached)
            return cached
        entry = await self._manager.refresh()
        self._adopt(entry)
        return entry

    def close(self) -> None:
        if self._unsubscribe_auth is not None:
            self._unsubscribe_auth()
            self._unsubscribe_auth = None
        if self._unsubscribe_visibility is not None:
            self._unsubscribe_visibility()
            self._unsubscribe_visibility = None
        if self._revalidate_task is not None and not self._revalidate_task.done():
            self._revalidate_task.cancel()
        self._revalidate_task = None

    async def __aenter__(self) -> SmartAuth:
        return await self.start()

    async def __aexit__(self, *exc: Any) -> None:
        self.close()

    def _adopt(self, entry: AuthCacheEntry) -> None:
        self._entry = entry
        self._status = AuthStatus.VALID if entry.identity is not None else AuthStatus.INVALID

    def _on_visibility(self, visible: bool) -> None:
        if not visible:
            return
        if self._revalidate_task is not None and not self._revalidate_task.done():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            _logger.debug("No running loop; skipping auth revalidation on refocus")
            return
        self._revalidate_task = loop.create_task(self.revalidate())
