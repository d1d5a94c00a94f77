"""Test the durable store."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

import pytest

from easysend.common.config import Config
from easysend.common.exceptions import StoreUnavailableError
from easysend.server import persistence
from easysend.server.persistence import (
    LICENSES,
    USERS,
    InMemoryStore,
    JsonFileStore,
    open_store,
)


def test_put_get_returns_copies(store: InMemoryStore) -> None:
    record = {"id": 1, "tags": ["a"]}
    store.put(USERS, 1, record)
    record["tags"].append("b")
    fetched = store.get(USERS, 1)
    assert fetched == {"id": 1, "tags": ["a"]}
    fetched["tags"].append("c")
    assert store.get(USERS, "1") == {"id": 1, "tags": ["a"]}


def test_query_and_delete(store: InMemoryStore) -> None:
    store.put(LICENSES, "A", {"status": "unused"})
    store.put(LICENSES, "B", {"status": "active"})
    active = store.query(LICENSES, lambda r: r["status"] == "active")
    assert active == [{"status": "active"}]
    assert store.delete(LICENSES, "A")
    assert not store.delete(LICENSES, "A")
    assert len(store.query(LICENSES)) == 1


def test_next_id(store: InMemoryStore) -> None:
    assert store.next_id(USERS) == 1
    store.put(USERS, 1, {})
    store.put(USERS, 7, {})
    assert store.next_id(USERS) == 8


def test_unknown_collection(store: InMemoryStore) -> None:
    with pytest.raises(ValueError, match="Unknown collection"):
        store.get("nope", 1)


def test_transaction_rolls_back_on_error(store: InMemoryStore) -> None:
    store.put(USERS, 1, {"name": "before"})
    with pytest.raises(RuntimeError), store.transaction():
        store.put(USERS, 1, {"name": "after"})
        store.put(USERS, 2, {"name": "new"})
        raise RuntimeError
    assert store.get(USERS, 1) == {"name": "before"}
    assert store.get(USERS, 2) is None


def test_transaction_rolls_back_deletes(store: InMemoryStore) -> None:
    store.put(USERS, 1, {"name": "kept"})
    with pytest.raises(RuntimeError), store.transaction():
        store.delete(USERS, 1)
        raise RuntimeError
    assert store.get(USERS, 1) == {"name": "kept"}


def test_nested_transaction_rolls_back_only_itself(store: InMemoryStore) -> None:
    store.put(USERS, 1, {"name": "v1"})
    with store.transaction():
        store.put(USERS, 1, {"name": "v2"})
        with pytest.raises(RuntimeError), store.transaction():
            store.put(USERS, 1, {"name": "v3"})
            store.put(USERS, 2, {"name": "inner"})
            raise RuntimeError
    assert store.get(USERS, 1) == {"name": "v2"}
    assert store.get(USERS, 2) is None

    with pytest.raises(RuntimeError), store.transaction():
        with store.transaction():
            store.put(USERS, 1, {"name": "v4"})
        raise RuntimeError
    assert store.get(USERS, 1) == {"name": "v2"}


def test_transaction_does_not_copy_the_whole_store(
    store: InMemoryStore, monkeypatch: pytest.MonkeyPatch
) -> None:
    for i in range(100):
        store.put(LICENSES, f"K{i}", {"status": "unused"})
    copies: list[Any] = []
    original = persistence.copy.deepcopy

    def counting(value: Any, *args: Any) -> Any:
        copies.append(value)
        return original(value, *args)

    monkeypatch.setattr(persistence.copy, "deepcopy", counting)
    with store.transaction():
        store.put(USERS, 1, {"name": "one"})
    assert [c for c in copies if isinstance(c, dict)] == [{"name": "one"}]


def test_file_store_persists_across_instances(tmp_path: Path) -> None:
    path = tmp_path / "store.json"
    first = JsonFileStore(path)
    with first.transaction():
        first.put(USERS, 1, {"email": "a@b.c"})
        first.put(LICENSES, "K", {"status": "unused"})
    on_disk = json.loads(path.read_text())
    assert on_disk[USERS]["1"] == {"email": "a@b.c"}

    second = JsonFileStore(path)
    assert second.get(LICENSES, "K") == {"status": "unused"}


def test_file_store_writes_once_per_transaction(
    tmp_path: Path, monkeypatch: Any
) -> None:
    store = JsonFileStore(tmp_path / "store.json")
    replaced: list[Any] = []
    real_replace = os.replace

    def counting_replace(src: Any, dst: Any) -> None:
        replaced.append(dst)
        real_replace(src, dst)

    monkeypatch.setattr(os, "replace", counting_replace)
    with store.transaction():
        store.put(USERS, 1, {})
        store.put(USERS, 2, {})
    assert len(replaced) == 1


def test_file_store_rejects_corrupt_file(tmp_path: Path) -> None:
    path = tmp_path / "store.json"
    path.write_text("{not json")
    with pytest.raises(StoreUnavailableError):
        JsonFileStore(path)


def test_failed_write_leaves_memory_unchanged(tmp_path: Path, monkeypatch: Any) -> None:
    store = JsonFileStore(tmp_path / "store.json")
    store.put(USERS, 1, {"name": "kept"})

    def broken_replace(src: Any, dst: Any) -> None:
        raise OSError("disk full")

    monkeypatch.setattr(os, "replace", broken_replace)
    with pytest.raises(StoreUnavailableError):
        store.put(USERS, 1, {"name": "lost"})
    with pytest.raises(StoreUnavailableError), store.transaction():
        store.put(USERS, 2, {"name": "lost"})
    assert store.get(USERS, 1) == {"name": "kept"}
    assert store.get(USERS, 2) is None


def test_open_store_falls_back_to_memory(config: Config) -> None:
    config.STORE_FILE_PATH.parent.mkdir(parents=True, exist_ok=True)
    config.STORE_FILE_PATH.write_text("garbage")
    seeded: list[InMemoryStore] = []
    store = open_store(config, seeded.append)
    assert type(store) is InMemoryStore
    assert seeded == [store]


def test_open_store_uses_file(config: Config) -> None:
    store = open_store(config)
    assert isinstance(store, JsonFileStore)
    store.put(USERS, 1, {})
    assert config.STORE_FILE_PATH.exists()
