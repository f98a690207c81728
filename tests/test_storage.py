from __future__ import annotations

import json
from pathlib import Path

import pytest

from grantsnap.exceptions import StorageQuotaExceededError
from grantsnap.persisted import PersistedValueStore
from grantsnap.storage import (
    FileStorage,
    KeyValueStorage,
    MemoryStorage,
    clear_prefix,
    normalize_ai_context_summary,
    run_cleanup_once,
)


def test_file_storage_survives_reopen(tmp_path: Path) -> None:
    path = tmp_path / "state" / "durable.json"
    first = FileStorage(path)
    first.set("profileHub.formData", '{"data": 1}')
    first.set("other", "x")
    first.remove("other")

    reopened = FileStorage(path)

    assert reopened.get("profileHub.formData") == '{"data": 1}'
    assert reopened.get("other") is None
    assert reopened.keys() == ["profileHub.formData"]


def test_file_storage_treats_corrupt_file_as_empty(tmp_path: Path) -> None:
    path = tmp_path / "durable.json"
    path.write_text("[not an object", encoding="utf-8")

    storage = FileStorage(path)
    assert storage.get("anything") is None

    storage.set("k", "v")
    assert FileStorage(path).get("k") == "v"


def test_file_storage_quota(tmp_path: Path) -> None:
    storage = FileStorage(tmp_path / "durable.json", quota_bytes=10)
    storage.set("a", "1")

    with pytest.raises(StorageQuotaExceededError) as exc_info:
        storage.set("b", "x" * 50)

    assert exc_info.value.key == "b"
    assert storage.get("b") is None
    assert FileStorage(tmp_path / "durable.json").keys() == ["a"]


def test_memory_storage_quota_leaves_previous_value() -> None:
    storage = MemoryStorage(quota_bytes=12)
    storage.set("key", "short")

    with pytest.raises(StorageQuotaExceededError):
        storage.set("key", "much longer value")

    assert storage.get("key") == "short"
    assert "key" in storage
    assert len(storage) == 1


def test_persisted_store_over_file_storage(tmp_path: Path) -> None:
    path = tmp_path / "durable.json"
    PersistedValueStore(FileStorage(path), {}, key="settings").force_write({"digest": "weekly"})

    store = PersistedValueStore(FileStorage(path), {}, key="settings")

    assert store.read() == {"digest": "weekly"}


def test_clear_prefix_removes_matching_keys_only() -> None:
    storage = MemoryStorage()
    for key in ("profileHub.formData", "profileHub.formData.timestamp", "profileHub.step", "tracked"):
        storage.set(key, "1")

    assert clear_prefix(storage, "profileHub") == 3
    assert storage.keys() == ["tracked"]


def test_run_cleanup_once_runs_steps_once_per_version(caplog: pytest.LogCaptureFixture) -> None:
    storage = MemoryStorage()
    ran: list[str] = []

    def broken(_storage: KeyValueStorage) -> None:
        raise RuntimeError("bad data")

    def normalize(target: KeyValueStorage) -> None:
        ran.append("normalize")
        target.set("normalized", "yes")

    assert run_cleanup_once(storage, "1.0.0", [broken, normalize]) is True
    assert run_cleanup_once(storage, "1.0.0", [broken, normalize]) is False
    assert run_cleanup_once(storage, "1.1.0", [normalize]) is True

    assert ran == ["normalize", "normalize"]
    assert storage.get("cleanup.version") == "1.1.0"
    assert "Storage cleanup step 'broken' failed" in caplog.text


def test_normalize_ai_context_summary_fills_missing_fields() -> None:
    storage = MemoryStorage()
    summary = json.dumps({"executive_summary": "Seed-stage climate startup", "key_strengths": "solar"})
    PersistedValueStore(storage, {}, key="profileHub.formData").force_write(
        {"company": "Acme", "ai_context_summary": summary}
    )

    assert normalize_ai_context_summary(storage) is True

    form = PersistedValueStore(storage, {}, key="profileHub.formData").read()
    assert form["company"] == "Acme"
    assert json.loads(form["ai_context_summary"]) == {
        "executive_summary": "Seed-stage climate startup",
        "key_strengths": [],
        "funding_readiness": "",
        "recommended_actions": [],
        "profile_completeness": "",
        "ai_insights": "",
    }


def test_normalize_ai_context_summary_drops_unparseable_value() -> None:
    storage = MemoryStorage()
    storage.set("profileHub.formData", json.dumps({"company": "Acme", "ai_context_summary": "{broken"}))

    assert normalize_ai_context_summary(storage) is True

    assert json.loads(storage.get("profileHub.formData") or "{}") == {"company": "Acme"}


def test_normalize_ai_context_summary_leaves_clean_forms_alone() -> None:
    storage = MemoryStorage()
    storage.set("profileHub.formData", json.dumps({"company": "Acme"}))

    assert normalize_ai_context_summary(storage) is False
    assert normalize_ai_context_summary(MemoryStorage()) is False
    assert run_cleanup_once(storage, "1.0.0", [normalize_ai_context_summary]) is True
    assert json.loads(storage.get("profileHub.formData") or "{}") == {"company": "Acme"}
