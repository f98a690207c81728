"""Debounced, versioned persistence of a single value.

A :class:`PersistedValueStore` keeps its value in memory and mirrors it into
a durable :class:`~grantsnap.storage.KeyValueStorage` under one key.  Writes
are trailing-edge debounced: every :meth:`~PersistedValueStore.update`
cancels the pending timer and starts a new one, so a burst of updates
produces a single write of the last value.

Persistence is best-effort.  Serialization and storage failures are logged
and swallowed; the in-memory value stays authoritative for the running
process.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any, Generic, TypeVar

from pydantic import TypeAdapter, ValidationError

from grantsnap._clock import Clock, now_ms
from grantsnap.exceptions import SerializationError, StorageError
from grantsnap.models.entries import PersistedEntry
from grantsnap.result import Lookup, LookupStatus
from grantsnap.storage import KeyValueStorage

_logger = logging.getLogger(__name__)

T = TypeVar("T")

TIMESTAMP_SUFFIX = ".timestamp"


def timestamp_key(key: str) -> str:
    """Companion key holding the last write time as a plain decimal string."""
    return f"{key}{TIMESTAMP_SUFFIX}"


class PersistedValueStore(Generic[T]):
    """In-memory value with debounced writes to durable storage.

    Parameters
    ----------
    storage : KeyValueStorage
        Durable storage the value is mirrored into.
    initial_value
        Value used when storage holds no entry for *key* with a matching
        *version*.
    key : str
        Storage key.  Callers must pick keys that do not collide.
    debounce_ms : int
        Quiet period after the last update before the write happens.
    version : int
        Schema version.  Entries written under another version are ignored.
    on_conflict : callable, optional
        ``(local, remote) -> resolved``; only used by :meth:`reconcile`.
    value_type : type, optional
        When given, stored data is validated into this type on load and
        dumped in JSON mode on write.
    clock : callable
        Returns epoch milliseconds; injected for tests.
    loop : asyncio.AbstractEventLoop, optional
        Loop used for debounce timers.  Defaults to the running loop at the
        time of the first update.
    """

    def __init__(
        self,
        storage: KeyValueStorage,
        initial_value: T,
        *,
        key: str,
        debounce_ms: int = 500,
        version: int = 1,
        on_conflict: Callable[[T, T], T] | None = None,
        value_type: Any = None,
        clock: Clock = now_ms,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        if not key:
            raise ValueError("key must be non-empty")
        self._storage = storage
        self._key = key
        self._debounce_ms = debounce_ms
        self._version = version
        self.on_conflict = on_conflict
        self._adapter: TypeAdapter[Any] | None = TypeAdapter(value_type) if value_type is not None else None
        self._clock = clock
        self._loop = loop
        self._timer: asyncio.TimerHandle | None = None
        self._last_saved = 0
        self._value: T = self._lookup().unwrap_or(initial_value)

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def key(self) -> str:
        return self._key

    @property
    def version(self) -> int:
        return self._version

    @property
    def value(self) -> T:
        return self._value

    @property
    def pending(self) -> bool:
        """Whether a debounced write is scheduled."""
        return self._timer is not None

    @property
    def last_saved(self) -> int:
        """Epoch milliseconds of the last successful write, ``0`` if none."""
        return self._last_saved

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def read(self) -> T:
        return self._value

    def update(self, next_value: T | Callable[[T], T]) -> T:
        """Set the value now and schedule a durable write after the debounce window.

        *next_value* may be a callable receiving the previous value.  Returns
        the new value.  Without an event loop to debounce on, the value is
        written immediately.
        """
        if callable(next_value):
            value = next_value(self._value)
        else:
            value = next_value
        self._value = value
        loop = self._resolve_loop()
        if loop is None:
            _logger.debug("No event loop for %s; writing without debounce", self._key)
            self._cancel_timer()
            self._write(value, reason="immediate")
        else:
            self._schedule(loop, value)
        return value

    def force_write(self, value: T | None = None) -> bool:
        """Cancel any pending write and persist synchronously.

        Writes *value* when given (it also becomes the in-memory value),
        otherwise the current value.  Returns whether the write succeeded.
        """
        self._cancel_timer()
        if value is not None:
            self._value = value
        return self._write(self._value, reason="forced")

    def flush(self) -> bool:
        """Write a pending debounced value immediately.

        Returns ``False`` without writing when nothing is pending.
        """
        if self._timer is None:
            return False
        self._cancel_timer()
        return self._write(self._value, reason="flushed")

    def load_from_durable(self) -> T | None:
        """Read the stored value directly, ignoring memory.

        Returns ``None`` when the entry is absent, written under another
        version, or malformed.
        """
        lookup = self._lookup()
        if not lookup.ok:
            return None
        return lookup.value

    def reconcile(self) -> T:
        """Resolve a divergence between memory and storage with ``on_conflict``.

        Does nothing unless ``on_conflict`` is set and storage holds a
        different value.  The resolved value is applied through
        :meth:`update`.
        """
        remote = self.load_from_durable()
        if self.on_conflict is None or remote is None or remote == self._value:
            return self._value
        resolved = self.on_conflict(self._value, remote)
        _logger.debug("Resolved storage conflict for %s", self._key)
        return self.update(resolved)

    def clear(self) -> None:
        """Cancel any pending write and remove the entry and its timestamp marker."""
        self._cancel_timer()
        try:
            self._storage.remove(self._key)
            self._storage.remove(timestamp_key(self._key))
        except StorageError:
            _logger.error("Failed to clear persisted state for %s", self._key, exc_info=True)
            return
        _logger.debug("Cleared persisted state for %s", self._key)

    def close(self) -> None:
        """Cancel a pending write without persisting it."""
        self._cancel_timer()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _resolve_loop(self) -> asyncio.AbstractEventLoop | None:
        if self._loop is not None:
            return self._loop
        try:
            return asyncio.get_running_loop()
        except RuntimeError:
            return None

    def _schedule(self, loop: asyncio.AbstractEventLoop, value: T) -> None:
        self._cancel_timer()
        self._timer = loop.call_later(self._debounce_ms / 1000, self._write_debounced, value)

    def _write_debounced(self, value: T) -> None:
        self._timer = None
        self._write(value, reason="debounced")

    def _encode(self, value: T, timestamp: int) -> str:
        try:
            data = self._adapter.dump_python(value, mode="json") if self._adapter is not None else value
            return PersistedEntry(data=data, timestamp=timestamp, version=self._version).model_dump_json()
        except (TypeError, ValueError) as exc:
            raise SerializationError(f"Cannot serialize state for {self._key}: {exc}", key=self._key) from exc

    def _write(self, value: T, *, reason: str) -> bool:
        now = self._clock()
        try:
            self._storage.set(self._key, self._encode(value, now))
        except StorageError:
            _logger.error("Failed to persist state for %s", self._key, exc_info=True)
            return False
        try:
            self._storage.set(timestamp_key(self._key), str(now))
        except StorageError:
            # The entry carries its own timestamp; only the marker is stale.
            _logger.warning("Failed to update timestamp marker for %s", self._key, exc_info=True)
        self._last_saved = now
        _logger.debug("Persisted state for %s (%s)", self._key, reason)
        return True

    def _lookup(self) -> Lookup[T]:
        raw = self._storage.get(self._key)
        if raw is None:
            return Lookup.missing()
        try:
            entry = PersistedEntry.model_validate_json(raw)
        except ValidationError as exc:
            _logger.warning("Failed to load persisted state for %s", self._key, exc_info=True)
            return Lookup.missing(LookupStatus.CORRUPT, exc)
        if entry.version != self._version:
            _logger.debug(
                "Ignoring persisted state for %s: version %d != %d",
                self._key,
                entry.version,
                self._version,
            )
            return Lookup.missing(LookupStatus.VERSION_MISMATCH)
        if self._adapter is None:
            return Lookup.found(entry.data)
        try:
            return Lookup.found(self._adapter.validate_python(entry.data))
        except ValidationError as exc:
            _logger.warning("Persisted state for %s does not match its type", self._key, exc_info=True)
            return Lookup.missing(LookupStatus.CORRUPT, exc)
