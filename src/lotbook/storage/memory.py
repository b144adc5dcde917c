"""
In-memory document store.

All operations run under one re-entrant lock, so add_to_set and pull are
atomic with respect to every other operation on the store.
"""

import copy
import threading
import uuid
from typing import Any, Optional

from lotbook.storage.base import COLLECTIONS, DocumentStore, StoreError


class InMemoryStore(DocumentStore):
    """
    Dict-backed document store.

    Attributes:
        write_count: Number of successful writes, used to assert that
            no-op operations really skip persistence
    """

    def __init__(self, collections: tuple[str, ...] = COLLECTIONS):
        self._lock = threading.RLock()
        self._collections: dict[str, dict[str, dict]] = {name: {} for name in collections}
        self.write_count = 0

    @property
    def name(self) -> str:
        return "InMemory"

    def _collection(self, collection: str) -> dict[str, dict]:
        try:
            return self._collections[collection]
        except KeyError:
            raise StoreError(f"Unknown collection: {collection}")

    def _after_write(self) -> None:
        """Hook run inside the lock after every successful write."""
        self.write_count += 1

    def _prepare(self, values: dict) -> dict:
        """Copy of incoming field values in the form the store keeps them."""
        return copy.deepcopy(values)

    def get(self, collection: str, doc_id: str) -> Optional[dict]:
        with self._lock:
            doc = self._collection(collection).get(doc_id)
            return copy.deepcopy(doc) if doc is not None else None

    def find(
        self,
        collection: str,
        filters: Optional[dict[str, Any]] = None,
        sort: Optional[list[tuple[str, int]]] = None,
    ) -> list[dict]:
        with self._lock:
            docs = [
                copy.deepcopy(doc)
                for doc in self._collection(collection).values()
                if _matches(doc, filters or {})
            ]

        # Stable sorts applied from the lowest priority key to the highest
        for field_name, direction in reversed(sort or []):
            docs.sort(key=lambda d: _sort_key(d.get(field_name)), reverse=direction < 0)

        return docs

    def insert(self, collection: str, doc: dict) -> dict:
        with self._lock:
            docs = self._collection(collection)
            stored = self._prepare(doc)
            stored["id"] = stored.get("id") or str(uuid.uuid4())
            if stored["id"] in docs:
                raise StoreError(f"Duplicate id {stored['id']} in {collection}")
            docs[stored["id"]] = stored
            self._after_write()
            return copy.deepcopy(stored)

    def update(self, collection: str, doc_id: str, changes: dict) -> Optional[dict]:
        with self._lock:
            doc = self._collection(collection).get(doc_id)
            if doc is None:
                return None
            doc.update(self._prepare({k: v for k, v in changes.items() if k != "id"}))
            self._after_write()
            return copy.deepcopy(doc)

    def delete(self, collection: str, doc_id: str) -> Optional[dict]:
        with self._lock:
            doc = self._collection(collection).pop(doc_id, None)
            if doc is None:
                return None
            self._after_write()
            return doc

    def add_to_set(
        self,
        collection: str,
        doc_id: str,
        field: str,
        value: Any,
    ) -> Optional[dict]:
        with self._lock:
            doc = self._collection(collection).get(doc_id)
            if doc is None:
                return None
            values = doc.setdefault(field, [])
            if value not in values:
                values.append(value)
                self._after_write()
            return copy.deepcopy(doc)

    def pull(
        self,
        collection: str,
        doc_id: str,
        field: str,
        value: Any,
    ) -> Optional[dict]:
        with self._lock:
            doc = self._collection(collection).get(doc_id)
            if doc is None:
                return None
            values = doc.get(field) or []
            if value in values:
                doc[field] = [v for v in values if v != value]
                self._after_write()
            return copy.deepcopy(doc)


def _matches(doc: dict, filters: dict[str, Any]) -> bool:
    for key, expected in filters.items():
        actual = doc.get(key)
        if isinstance(expected, (list, tuple, set, frozenset)):
            if actual not in expected:
                return False
        elif actual != expected:
            return False
    return True


def _sort_key(value: Any) -> tuple:
    # None sorts first
    return (value is not None, value if value is not None else 0)
