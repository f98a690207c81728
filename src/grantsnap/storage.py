"""Key-value storage backends.

The stores in this package only ever talk to the :class:`KeyValueStorage`
protocol, which mirrors the browser ``Storage`` API: string keys, string
values, synchronous calls.  Two implementations ship:

* :class:`MemoryStorage` for session-scoped state (and tests).
* :class:`FileStorage` for durable state that survives process restarts.

Both accept an optional byte quota; exceeding it raises
:class:`StorageQuotaExceededError` just like ``localStorage`` does.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from collections.abc import Callable, Iterable
from pathlib import Path
from typing import Protocol

from grantsnap.exceptions import StorageError, StorageQuotaExceededError

_logger = logging.getLogger(__name__)

CLEANUP_MARKER_KEY = "cleanup.version"
PROFILE_FORM_KEY = "profileHub.formData"

#: Fields of the AI context summary and whether each holds a list.
_AI_CONTEXT_FIELDS: dict[str, bool] = {
    "executive_summary": False,
    "key_strengths": True,
    "funding_readiness": False,
    "recommended_actions": True,
    "profile_completeness": False,
    "ai_insights": False,
}


class KeyValueStorage(Protocol):
    """Structural storage interface used by the stores."""

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...

    def keys(self) -> list[str]: ...


def _size_of(items: dict[str, str]) -> int:
    return sum(len(k) + len(v) for k, v in items.items())


class MemoryStorage:
    """Process-local storage, cleared when the process ends."""

    def __init__(self, *, quota_bytes: int | None = None) -> None:
        self._items: dict[str, str] = {}
        self._quota_bytes = quota_bytes

    def get(self, key: str) -> str | None:
        return self._items.get(key)

    def set(self, key: str, value: str) -> None:
        if self._quota_bytes is not None:
            candidate = dict(self._items)
            candidate[key] = value
            if _size_of(candidate) > self._quota_bytes:
                raise StorageQuotaExceededError(
                    f"Writing {key!r} exceeds the {self._quota_bytes} byte quota",
                    key=key,
                )
        self._items[key] = value

    def remove(self, key: str) -> None:
        self._items.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, key: object) -> bool:
        return key in self._items


class FileStorage:
    """Durable storage kept as a single JSON object in *path*.

    The file is read lazily on first access and rewritten atomically on
    every mutation.  A missing file is an empty storage; an unreadable or
    corrupt file is logged and also treated as empty, so the next write
    replaces it.
    """

    def __init__(self, path: os.PathLike[str] | str, *, quota_bytes: int | None = None) -> None:
        self._path = Path(path)
        self._quota_bytes = quota_bytes
        self._items: dict[str, str] = {}
        self._loaded = False

    @property
    def path(self) -> Path:
        return self._path

    def _ensure_loaded(self) -> None:
        if self._loaded:
            return
        self._loaded = True
        if not self._path.exists():
            return
        try:
            with self._path.open("r", encoding="utf-8") as f:
                raw = json.load(f)
        except (OSError, json.JSONDecodeError):
            _logger.warning("Ignoring unreadable storage file %s", self._path, exc_info=True)
            return
        if not isinstance(raw, dict):
            _logger.warning("Ignoring storage file %s: top level is not an object", self._path)
            return
        self._items = {str(k): v for k, v in raw.items() if isinstance(v, str)}

    def _write(self, items: dict[str, str]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{self._path.name}.", dir=self._path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(items, f, ensure_ascii=False, separators=(",", ":"))
            os.replace(tmp_name, self._path)
        except OSError:
            _unlink_quietly(tmp_name)
            raise

    def get(self, key: str) -> str | None:
        self._ensure_loaded()
        return self._items.get(key)

    def set(self, key: str, value: str) -> None:
        self._ensure_loaded()
        candidate = dict(self._items)
        candidate[key] = value
        if self._quota_bytes is not None and _size_of(candidate) > self._quota_bytes:
            raise StorageQuotaExceededError(
                f"Writing {key!r} exceeds the {self._quota_bytes} byte quota",
                key=key,
            )
        try:
            self._write(candidate)
        except OSError as exc:
            raise StorageError(f"Failed to write {self._path}: {exc}", key=key) from exc
        self._items = candidate

    def remove(self, key: str) -> None:
        self._ensure_loaded()
        if key not in self._items:
            return
        candidate = {k: v for k, v in self._items.items() if k != key}
        try:
            self._write(candidate)
        except OSError as exc:
            raise StorageError(f"Failed to write {self._path}: {exc}", key=key) from exc
        self._items = candidate

    def keys(self) -> list[str]:
        self._ensure_loaded()
        return list(self._items)


def _unlink_quietly(path: str) -> None:
    try:
        os.unlink(path)
    except OSError:
        _logger.debug("Could not remove temp file %s", path, exc_info=True)


# ---------------------------------------------------------------------------
# Maintenance helpers
# ---------------------------------------------------------------------------


def clear_prefix(storage: KeyValueStorage, prefix: str) -> int:
    """Remove every key starting with *prefix*; return how many were removed."""
    matching = [key for key in storage.keys() if key.startswith(prefix)]
    for key in matching:
        storage.remove(key)
    _logger.info("Cleared %d storage item(s) with prefix %r", len(matching), prefix)
    return len(matching)


def normalize_ai_context_summary(storage: KeyValueStorage, key: str = PROFILE_FORM_KEY) -> bool:
    """Repair the ``ai_context_summary`` field of the saved profile form.

    The field is a JSON string.  A parseable object is rewritten with every
    known field present (list fields forced to lists, text fields to
    strings); anything else is dropped from the form.  Works on a bare form
    object or on a persisted entry wrapping one.  Returns whether the form
    was rewritten.
    """
    raw = storage.get(key)
    if raw is None:
        return False
    try:
        document = json.loads(raw)
    except json.JSONDecodeError:
        _logger.warning("Stored form under %s is not JSON; leaving it", key)
        return False

    form = document.get("data") if isinstance(document, dict) and "version" in document else document
    if not isinstance(form, dict):
        return False
    summary = form.get("ai_context_summary")
    if not summary or not isinstance(summary, str):
        return False

    try:
        context = json.loads(summary)
    except json.JSONDecodeError:
        context = None
    if isinstance(context, dict):
        normalized: dict[str, object] = {}
        for name, is_list in _AI_CONTEXT_FIELDS.items():
            value = context.get(name)
            if is_list:
                normalized[name] = value if isinstance(value, list) else []
            else:
                normalized[name] = value if isinstance(value, str) else ""
        form["ai_context_summary"] = json.dumps(normalized)
        _logger.info("Normalized AI context summary in %s", key)
    else:
        del form["ai_context_summary"]
        _logger.warning("Dropped unparseable AI context summary from %s", key)

    storage.set(key, json.dumps(document, separators=(",", ":")))
    return True


def run_cleanup_once(
    storage: KeyValueStorage,
    version: str,
    steps: Iterable[Callable[[KeyValueStorage], object]],
    *,
    marker_key: str = CLEANUP_MARKER_KEY,
) -> bool:
    """Run maintenance *steps* once per cleanup *version*.

    Returns ``True`` when the steps ran.  A failing step is logged and the
    remaining steps still run; the marker is written afterwards either way
    so a broken step is not retried on every start.
    """
    if storage.get(marker_key) == version:
        return False

    _logger.info("Running storage cleanup %s", version)
    for step in steps:
        try:
            step(storage)
        except Exception:
            _logger.exception("Storage cleanup step %r failed", getattr(step, "__name__", step))
    try:
        storage.set(marker_key, version)
    except StorageError:
        _logger.error("Failed to record cleanup version %s", version, exc_info=True)
    return True
