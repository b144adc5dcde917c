"""
JSON-file document store.

Keeps every collection in memory and rewrites one JSON file after each
write. Decimals and dates are stored as strings; the record classes in
lotbook.models convert them back on read.
"""

import copy
import json
import os
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Optional

from lotbook.logging.activity_log import DecimalEncoder
from lotbook.storage.base import COLLECTIONS, StoreError
from lotbook.storage.memory import InMemoryStore


class JsonFileStore(InMemoryStore):
    """
    In-memory store persisted to a single JSON file.

    The file is replaced atomically on every write, so a crash leaves
    either the previous or the new state on disk. A write that cannot be
    flushed is rolled back in memory before StoreError is raised.
    """

    def __init__(self, path: str | Path, collections: tuple[str, ...] = COLLECTIONS):
        """
        Initialize the store, loading existing data if the file exists.

        Args:
            path: Path to the JSON file (created on first write)
            collections: Collection names to manage

        Raises:
            StoreError: If the existing file cannot be parsed
        """
        super().__init__(collections)
        self.path = Path(path)

        if self.path.exists():
            self._load()

    @property
    def name(self) -> str:
        return f"JsonFile({self.path})"

    def _load(self) -> None:
        try:
            with open(self.path, "r") as f:
                raw = json.load(f)
        except (OSError, ValueError) as e:
            raise StoreError(f"Failed to load store file {self.path}: {e}")

        if not isinstance(raw, dict):
            raise StoreError(f"Store file {self.path} does not contain an object")

        for name, docs in raw.items():
            if name in self._collections and isinstance(docs, list):
                self._collections[name] = {doc["id"]: doc for doc in docs if "id" in doc}

    def _prepare(self, values: dict) -> dict:
        # Keep the same string forms a reload would produce, so sorts never
        # compare a date with its ISO string
        return json.loads(json.dumps(values, cls=DecimalEncoder))

    def insert(self, collection: str, doc: dict) -> dict:
        with self._rollback_on_failure(collection):
            return super().insert(collection, doc)

    def update(self, collection: str, doc_id: str, changes: dict) -> Optional[dict]:
        with self._rollback_on_failure(collection):
            return super().update(collection, doc_id, changes)

    def delete(self, collection: str, doc_id: str) -> Optional[dict]:
        with self._rollback_on_failure(collection):
            return super().delete(collection, doc_id)

    def add_to_set(self, collection: str, doc_id: str, field: str, value: Any) -> Optional[dict]:
        with self._rollback_on_failure(collection):
            return super().add_to_set(collection, doc_id, field, value)

    def pull(self, collection: str, doc_id: str, field: str, value: Any) -> Optional[dict]:
        with self._rollback_on_failure(collection):
            return super().pull(collection, doc_id, field, value)

    @contextmanager
    def _rollback_on_failure(self, collection: str):
        """Restore the collection and write count if the write cannot be flushed."""
        with self._lock:
            snapshot = copy.deepcopy(self._collection(collection))
            write_count = self.write_count
            try:
                yield
            except StoreError:
                self._collections[collection] = snapshot
                self.write_count = write_count
                raise

    def _after_write(self) -> None:
        super()._after_write()
        self._flush()

    def _flush(self) -> None:
        payload = {name: list(docs.values()) for name, docs in self._collections.items()}
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w") as f:
                json.dump(payload, f, indent=2, cls=DecimalEncoder)
            os.replace(tmp_path, self.path)
        except OSError as e:
            raise StoreError(f"Failed to write store file {self.path}: {e}")
