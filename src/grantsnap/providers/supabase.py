"""Supabase (GoTrue) auth provider over aiohttp.

Implements :class:`grantsnap.auth_cache.AuthProvider` against the hosted
``/auth/v1`` REST API.  The signed-in session is kept in a storage under
``sb-<project-ref>-auth-token`` so it survives restarts, and is refreshed
transparently once the access token is about to expire.
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable
from typing import Any

import aiohttp
from pydantic import ValidationError

from grantsnap._redact import redact_for_log
from grantsnap.auth_cache import AuthChangeCallback
from grantsnap.config import SupabaseSettings
from grantsnap.exceptions import AuthProviderError, GrantSnapConfigError, StorageError
from grantsnap.models.auth import AuthEvent, SessionHandle
from grantsnap.storage import KeyValueStorage, MemoryStorage

_logger = logging.getLogger(__name__)

#: Refresh this many seconds before the access token actually expires.
EXPIRY_MARGIN_S: float = 30.0


def _error_message(body: Any, fallback: str) -> str:
    if isinstance(body, dict):
        for key in ("error_description", "msg", "message", "error"):
            value = body.get(key)
            if isinstance(value, str) and value:
                return value
    return fallback


class SupabaseAuthProvider:
    """Password sign-in, token refresh and sign-out against Supabase auth.

    Parameters
    ----------
    settings : SupabaseSettings
        Project URL and anon key.
    http_session : aiohttp.ClientSession
        Session used for every request.  Owned by the caller.
    storage : KeyValueStorage, optional
        Where the current session is kept.  Defaults to process memory.
    clock : callable
        Returns epoch seconds; injected for tests.
    """

    def __init__(
        self,
        settings: SupabaseSettings,
        http_session: aiohttp.ClientSession,
        *,
        storage: KeyValueStorage | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if not settings.configured:
            raise GrantSnapConfigError("Supabase URL and anon key are required")
        self._settings = settings
        self._http = http_session
        self._storage: KeyValueStorage = storage if storage is not None else MemoryStorage()
        self._clock = clock
        self._callbacks: list[AuthChangeCallback] = []
        self._session: SessionHandle | None = None
        self._loaded = False

    # ------------------------------------------------------------------
    # AuthProvider protocol
    # ------------------------------------------------------------------

    def on_change(self, callback: AuthChangeCallback) -> None:
        self._callbacks.append(callback)

    async def get_current_session(self) -> SessionHandle | None:
        """Return the signed-in session, refreshing it if it has expired."""
        session = self._current()
        if session is None:
            return None
        if not session.is_expired(self._clock(), leeway_s=EXPIRY_MARGIN_S):
            return session
        if session.refresh_token:
            return await self.refresh_session()
        _logger.debug("Stored session expired without a refresh token")
        self._set_session(None, AuthEvent.SIGNED_OUT)
        return None

    # ------------------------------------------------------------------
    # Auth operations
    # ------------------------------------------------------------------

    async def sign_in_with_password(self, email: str, password: str) -> SessionHandle:
        body = await self._request(
            "POST",
            "/auth/v1/token?grant_type=password",
            payload={"email": email, "password": password},
        )
        session = self._parse_session(body, "/auth/v1/token")
        self._set_session(session, AuthEvent.SIGNED_IN)
        return session

    async def refresh_session(self) -> SessionHandle:
        """Exchange the refresh token for a new session.

        A rejected refresh token signs the user out before the error is
        raised.
        """
        current = self._current()
        if current is None or not current.refresh_token:
            raise AuthProviderError("No refresh token available", endpoint="/auth/v1/token")
        try:
            body = await self._request(
                "POST",
                "/auth/v1/token?grant_type=refresh_token",
                payload={"refresh_token": current.refresh_token},
            )
        except AuthProviderError as exc:
            if exc.status_code in (400, 401):
                self._set_session(None, AuthEvent.SIGNED_OUT)
            raise
        session = self._parse_session(body, "/auth/v1/token")
        self._set_session(session, AuthEvent.TOKEN_REFRESHED)
        return session

    async def sign_out(self) -> None:
        """Revoke the session remotely and drop it locally.

        The local session is dropped even when the remote call fails.
        """
        current = self._current()
        if current is None:
            return
        try:
            await self._request("POST", "/auth/v1/logout", access_token=current.access_token)
        except AuthProviderError:
            _logger.warning("Remote sign-out failed; clearing local session anyway", exc_info=True)
        self._set_session(None, AuthEvent.SIGNED_OUT)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _current(self) -> SessionHandle | None:
        if not self._loaded:
            self._loaded = True
            self._session = self._load_stored()
        return self._session

    def _load_stored(self) -> SessionHandle | None:
        raw = self._storage.get(self._settings.storage_key)
        if raw is None:
            return None
        try:
            return SessionHandle.model_validate(json.loads(raw))
        except (json.JSONDecodeError, ValidationError):
            _logger.warning("Discarding unreadable stored session", exc_info=True)
            return None

    def _set_session(self, session: SessionHandle | None, event: AuthEvent) -> None:
        self._loaded = True
        self._session = session
        key = self._settings.storage_key
        try:
            if session is None:
                self._storage.remove(key)
            else:
                self._storage.set(key, session.model_dump_json())
        except StorageError:
            _logger.error("Failed to persist auth session", exc_info=True)
        for callback in list(self._callbacks):
            try:
                callback(event, session)
            except Exception:
                _logger.warning("Auth change callback failed for %s", event, exc_info=True)

    def _parse_session(self, body: dict[str, Any], endpoint: str) -> SessionHandle:
        data = dict(body)
        if data.get("expires_at") is None and isinstance(data.get("expires_in"), (int, float)):
            data["expires_at"] = int(self._clock() + data["expires_in"])
        try:
            return SessionHandle.model_validate(data)
        except ValidationError as exc:
            raise AuthProviderError(f"Malformed session from {endpoint}", endpoint=endpoint) from exc

    async def _request(
        self,
        method: str,
        endpoint: str,
        *,
        payload: dict[str, Any] | None = None,
        access_token: str | None = None,
    ) -> dict[str, Any]:
        headers = {
            "apikey": self._settings.anon_key,
            "content-type": "application/json;charset=UTF-8",
        }
        if access_token:
            headers["authorization"] = f"Bearer {access_token}"

        url = f"{self._settings.url.rstrip('/')}{endpoint}"
        _logger.debug("%s %s %s", method, url, redact_for_log(payload))

        try:
            async with self._http.request(method, url, json=payload, headers=headers) as resp:
                status = resp.status
                text = await resp.text()
        except aiohttp.ClientError as exc:
            raise AuthProviderError(f"Request to {endpoint} failed: {exc}", endpoint=endpoint) from exc

        body: Any = None
        if text.strip():
            try:
                body = json.loads(text)
            except json.JSONDecodeError as exc:
                raise AuthProviderError(
                    f"Invalid JSON from {endpoint}: {text[:200]}",
                    status_code=status,
                    endpoint=endpoint,
                ) from exc

        if status >= 400:
            raise AuthProviderError(
                f"HTTP {status} from {endpoint}: {_error_message(body, text[:200])}",
                status_code=status,
                endpoint=endpoint,
            )
        _logger.debug("Response from %s: %s", endpoint, redact_for_log(body))
        return body if isinstance(body, dict) else {}
