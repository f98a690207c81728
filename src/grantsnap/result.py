"""Tagged results for cache and provider lookups.

Storage reads and provider queries never raise into the stores; they
return a :class:`Lookup` whose status each call site must handle before it
falls back to an initial value or a "no identity" entry.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Generic, TypeVar

T = TypeVar("T")


class LookupStatus(StrEnum):
    OK = "ok"
    NOT_FOUND = "not_found"
    VERSION_MISMATCH = "version_mismatch"
    STALE = "stale"
    CORRUPT = "corrupt"
    PROVIDER_ERROR = "provider_error"


@dataclass(frozen=True, slots=True)
class Lookup(Generic[T]):
    """Outcome of a read against storage or the auth provider."""

    status: LookupStatus
    value: T | None = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.status is LookupStatus.OK

    def unwrap_or(self, default: T) -> T:
        """Return the value for ``OK`` lookups, else *default*."""
        if self.status is LookupStatus.OK:
            return self.value  # type: ignore[return-value]
        return default

    @classmethod
    def found(cls, value: T) -> Lookup[T]:
        return cls(LookupStatus.OK, value)

    @classmethod
    def missing(cls, status: LookupStatus = LookupStatus.NOT_FOUND, error: BaseException | None = None) -> Lookup[T]:
        return cls(status, None, error)
