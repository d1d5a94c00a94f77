"""
Data persistence for users, licenses, outcomes, templates and settings.
"""

from __future__ import annotations

import copy
import json
import logging
import os
import threading
from contextlib import contextmanager
from pathlib import Path  # noqa: TC003
from typing import TYPE_CHECKING, Any, Callable, Iterator

from easysend.common.exceptions import StoreUnavailableError

if TYPE_CHECKING:
    from easysend.common.config import Config

logger = logging.getLogger(__name__)

USERS = "users"
LICENSES = "licenses"
OUTCOMES = "outcomes"
TEMPLATES = "templates"
SETTINGS = "settings"

COLLECTIONS = (USERS, LICENSES, OUTCOMES, TEMPLATES, SETTINGS)

Record = dict[str, Any]


class InMemoryStore:
    """Process-local store. Also the fallback when the file store is unusable.

    All access is serialised by one re-entrant lock. ``transaction()`` holds
    the lock for the whole block and keeps an undo log of the records it
    overwrites or deletes; if the block raises they are put back, so a group
    of puts is applied entirely or not at all.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._data: dict[str, dict[str, Record]] = {c: {} for c in COLLECTIONS}
        self._undo: list[dict[tuple[str, str], Record | None]] = []

    def get(self, collection: str, key: str | int) -> Record | None:
        with self._lock:
            record = self._bucket(collection).get(str(key))
            return copy.deepcopy(record) if record is not None else None

    def put(self, collection: str, key: str | int, record: Record) -> None:
        with self._lock:
            bucket = self._bucket(collection)
            previous = bucket.get(str(key))
            self._log_undo(collection, str(key), previous)
            bucket[str(key)] = copy.deepcopy(record)
            try:
                self._commit()
            except StoreUnavailableError:
                self._restore(bucket, str(key), previous)
                raise

    def delete(self, collection: str, key: str | int) -> bool:
        with self._lock:
            bucket = self._bucket(collection)
            previous = bucket.pop(str(key), None)
            if previous is None:
                return False
            self._log_undo(collection, str(key), previous)
            try:
                self._commit()
            except StoreUnavailableError:
                self._restore(bucket, str(key), previous)
                raise
            return True

    def query(
        self,
        collection: str,
        predicate: Callable[[Record], bool] | None = None,
    ) -> list[Record]:
        with self._lock:
            records = [copy.deepcopy(r) for r in self._bucket(collection).values()]
        if predicate is None:
            return records
        return [r for r in records if predicate(r)]

    def next_id(self, collection: str) -> int:
        with self._lock:
            ids = [int(k) for k in self._bucket(collection) if k.isdigit()]
            return max(ids, default=0) + 1

    @contextmanager
    def transaction(self) -> Iterator[None]:
        with self._lock:
            undo: dict[tuple[str, str], Record | None] = {}
            self._undo.append(undo)
            try:
                yield
            except BaseException:
                self._rollback(undo)
                raise
            finally:
                self._undo.pop()
            try:
                self._commit()
            except StoreUnavailableError:
                self._rollback(undo)
                raise

    @property
    def _depth(self) -> int:
        return len(self._undo)

    def _log_undo(self, collection: str, key: str, previous: Record | None) -> None:
        # Stored records are replaced, never mutated, so no copy is needed
        for undo in self._undo:
            undo.setdefault((collection, key), previous)

    def _rollback(self, undo: dict[tuple[str, str], Record | None]) -> None:
        for (collection, key), previous in undo.items():
            self._restore(self._data[collection], key, previous)

    @staticmethod
    def _restore(bucket: dict[str, Record], key: str, previous: Record | None) -> None:
        if previous is None:
            bucket.pop(key, None)
        else:
            bucket[key] = previous

    def _bucket(self, collection: str) -> dict[str, Record]:
        try:
            return self._data[collection]
        except KeyError:
            msg = f"Unknown collection: {collection}"
            raise ValueError(msg) from None

    def _commit(self) -> None:
        """Hook for durable subclasses; called after every top-level write."""


class JsonFileStore(InMemoryStore):
    """Store persisted as a single JSON document.

    Writes go to a temporary file which then replaces the real one, so a
    reader never sees half a transaction.
    """

    def __init__(self, file_path: Path):
        super().__init__()
        self.file_path = file_path
        self._data.update(self._load(file_path))

    @staticmethod
    def _load(file_path: Path) -> dict[str, dict[str, Record]]:
        """Load collections from file."""
        try:
            file_path.parent.mkdir(parents=True, exist_ok=True)
            with file_path.open() as f:
                data = json.load(f)
        except FileNotFoundError:
            return {}
        except (OSError, json.JSONDecodeError) as err:
            msg = f"Store file {file_path} is unreadable: {err}"
            raise StoreUnavailableError(msg) from err
        return {c: data.get(c, {}) for c in COLLECTIONS}

    def _commit(self) -> None:
        if self._depth:
            return
        tmp_path = self.file_path.with_suffix(".tmp")
        try:
            with tmp_path.open("w") as f:
                json.dump(self._data, f)
            os.replace(tmp_path, self.file_path)
        except OSError as err:
            msg = f"Cannot write store file {self.file_path}: {err}"
            raise StoreUnavailableError(msg) from err


def open_store(
    config: Config,
    seed: Callable[[InMemoryStore], None] | None = None,
) -> InMemoryStore:
    """Open the file store, falling back to memory when it is unusable.

    ``seed`` is applied to whichever store is returned; it is expected to be
    idempotent (e.g. create the admin account only when absent).
    """
    store: InMemoryStore
    try:
        store = JsonFileStore(config.STORE_FILE_PATH)
        logger.info("Using file store at %s", config.STORE_FILE_PATH)
    except StoreUnavailableError:
        logger.warning("File store not available, using in-memory storage")
        store = InMemoryStore()
    if seed is not None:
        seed(store)
    return store

