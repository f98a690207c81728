"""Session-scoped component snapshots.

A component attaches to the cache when it is constructed and unmounts when
it is torn down.  On unmount its current value is written to session
storage; the next attach with the same id restores it, provided the
snapshot is younger than ``max_age_ms``.  Expired snapshots are removed by
the read that finds them.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from types import TracebackType
from typing import Generic, TypeVar

from pydantic import ValidationError

from grantsnap._clock import Clock, now_ms
from grantsnap.config import DEFAULT_MAX_AGE_MS
from grantsnap.exceptions import SerializationError, StorageError
from grantsnap.models.entries import EphemeralEntry
from grantsnap.result import Lookup, LookupStatus
from grantsnap.storage import KeyValueStorage

_logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_KEY_PREFIX = "persistent-component-"


class ComponentState(Generic[T]):
    """Mutable value owned by one mounted component."""

    def __init__(
        self,
        cache: EphemeralComponentCache,
        component_id: str,
        value: T,
        *,
        persist_on_unmount: bool,
    ) -> None:
        self._cache = cache
        self._component_id = component_id
        self._value = value
        self._persist_on_unmount = persist_on_unmount
        self._mounted = True

    @property
    def component_id(self) -> str:
        return self._component_id

    @property
    def value(self) -> T:
        return self._value

    @property
    def mounted(self) -> bool:
        return self._mounted

    def set(self, next_value: T | Callable[[T], T]) -> T:
        if callable(next_value):
            self._value = next_value(self._value)
        else:
            self._value = next_value
        return self._value

    def as_tuple(self) -> tuple[T, Callable[[T | Callable[[T], T]], T]]:
        return self._value, self.set

    def unmount(self) -> bool:
        """Tear the component down, persisting its value at most once.

        Returns whether a snapshot was written by this call.
        """
        if not self._mounted:
            return False
        self._mounted = False
        if not self._persist_on_unmount:
            return False
        return self._cache._store(self._component_id, self._value)  # noqa: SLF001

    def __enter__(self) -> ComponentState[T]:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.unmount()


class EphemeralComponentCache:
    """Save-on-teardown / restore-on-construct cache over session storage."""

    def __init__(
        self,
        storage: KeyValueStorage,
        *,
        clock: Clock = now_ms,
        max_age_ms: int = DEFAULT_MAX_AGE_MS,
        key_prefix: str = DEFAULT_KEY_PREFIX,
    ) -> None:
        self._storage = storage
        self._clock = clock
        self._max_age_ms = max_age_ms
        self._key_prefix = key_prefix

    def storage_key(self, component_id: str) -> str:
        return f"{self._key_prefix}{component_id}"

    def attach(
        self,
        component_id: str,
        initial_value: T,
        *,
        persist_on_unmount: bool = True,
        restore_on_mount: bool = True,
        max_age_ms: int | None = None,
    ) -> ComponentState[T]:
        """Construct a component's state, restoring a fresh snapshot if allowed."""
        value = initial_value
        if restore_on_mount:
            max_age = self._max_age_ms if max_age_ms is None else max_age_ms
            lookup: Lookup[T] = self._restore(component_id, max_age)
            value = lookup.unwrap_or(initial_value)
        return ComponentState(self, component_id, value, persist_on_unmount=persist_on_unmount)

    def discard(self, component_id: str) -> None:
        """Remove a component's snapshot."""
        try:
            self._storage.remove(self.storage_key(component_id))
        except StorageError:
            _logger.error("Failed to discard state for %s", component_id, exc_info=True)

    def _restore(self, component_id: str, max_age_ms: int) -> Lookup[T]:
        key = self.storage_key(component_id)
        raw = self._storage.get(key)
        if raw is None:
            return Lookup.missing()
        try:
            entry = EphemeralEntry.model_validate_json(raw)
        except ValidationError as exc:
            _logger.warning("Failed to restore state for %s", component_id, exc_info=True)
            return Lookup.missing(LookupStatus.CORRUPT, exc)
        if entry.is_expired(self._clock(), max_age_ms):
            _logger.debug("Expired state for %s", component_id)
            self.discard(component_id)
            return Lookup.missing(LookupStatus.STALE)
        _logger.debug("Restored state for %s", component_id)
        return Lookup.found(entry.data)

    def _encode(self, component_id: str, value: object) -> str:
        entry = EphemeralEntry(data=value, timestamp=self._clock(), component_id=component_id)
        try:
            return entry.model_dump_json(by_alias=True)
        except (TypeError, ValueError) as exc:
            raise SerializationError(
                f"Cannot serialize state for {component_id}: {exc}",
                key=self.storage_key(component_id),
            ) from exc

    def _store(self, component_id: str, value: object) -> bool:
        try:
            self._storage.set(self.storage_key(component_id), self._encode(component_id, value))
        except StorageError:
            _logger.error("Failed to persist state for %s", component_id, exc_info=True)
            return False
        _logger.debug("Persisted component state for %s", component_id)
        return True
