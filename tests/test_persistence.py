from __future__ import annotations

import json
from pathlib import Path

import pytest

from viros.persistence import LocalStorage, QuotaExceededError, StorageError, estimate_bytes


def test_usage_counts_two_bytes_per_character() -> None:
    storage = LocalStorage()
    storage.set_item("ab", "cdef")

    assert estimate_bytes("ab", "cdef") == 12
    assert storage.usage_bytes() == 12


def test_quota_rejects_write_and_keeps_previous_value() -> None:
    storage = LocalStorage(quota_bytes=20)
    storage.set_item("k", "small")

    with pytest.raises(QuotaExceededError):
        storage.set_item("k", "x" * 20)

    assert storage.get_item("k") == "small"


def test_replacing_a_value_only_counts_it_once() -> None:
    storage = LocalStorage(quota_bytes=20)
    storage.set_item("k", "123456789")
    storage.set_item("k", "987654321")

    assert storage.usage_bytes() == 20


def test_file_backed_storage_survives_reopen(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "local-storage.json"
    storage = LocalStorage(path)
    storage.set_item("greeting", "hello")
    storage.set_item("other", "value")
    storage.remove_item("other")

    reopened = LocalStorage(path)
    assert reopened.keys() == ["greeting"]
    assert reopened.get_item("greeting") == "hello"
    assert json.loads(path.read_text(encoding="utf-8")) == {"greeting": "hello"}
    assert [p.name for p in path.parent.iterdir()] == ["local-storage.json"]


def test_clear_empties_the_file(tmp_path: Path) -> None:
    path = tmp_path / "ls.json"
    storage = LocalStorage(path)
    storage.set_item("a", "1")
    storage.clear()

    assert LocalStorage(path).keys() == []


@pytest.mark.parametrize("payload", ["not json", "[1, 2]", '{"a": 1}'])
def test_unreadable_file_raises_storage_error(tmp_path: Path, payload: str) -> None:
    path = tmp_path / "ls.json"
    path.write_text(payload, encoding="utf-8")

    with pytest.raises(StorageError):
        LocalStorage(path)
