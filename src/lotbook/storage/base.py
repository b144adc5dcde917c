"""
Abstract base class for document stores.

Defines the persistence operations the ledger needs for its three
collections. Membership arrays are edited only through the atomic
add_to_set / pull operators, never by rewriting the whole array.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional


ASSETS = "assets"
LOTS = "lots"
PORTFOLIOS = "portfolios"

COLLECTIONS = (ASSETS, LOTS, PORTFOLIOS)


class StoreError(Exception):
    """Raised when the store rejects a read or write."""
    pass


class DocumentStore(ABC):
    """
    Abstract base class for document stores.

    Documents are plain dicts keyed by an opaque string "id". Every method
    returns copies; mutating a returned document never changes the store.
    """

    @abstractmethod
    def get(self, collection: str, doc_id: str) -> Optional[dict]:
        """
        Find a document by id.

        Returns:
            The document, or None if it does not exist

        Raises:
            StoreError: If the read fails
        """
        pass

    @abstractmethod
    def find(
        self,
        collection: str,
        filters: Optional[dict[str, Any]] = None,
        sort: Optional[list[tuple[str, int]]] = None,
    ) -> list[dict]:
        """
        Find documents matching every filter.

        Args:
            collection: Collection name
            filters: Field -> value equality filters. A list, tuple or set
                value matches documents whose field is any of its members.
            sort: (field, direction) pairs, direction 1 ascending or -1
                descending, applied in priority order

        Returns:
            Matching documents

        Raises:
            StoreError: If the read fails
        """
        pass

    @abstractmethod
    def insert(self, collection: str, doc: dict) -> dict:
        """
        Insert a document, assigning an id if it has none.

        Returns:
            The stored document

        Raises:
            StoreError: If the write fails
        """
        pass

    @abstractmethod
    def update(self, collection: str, doc_id: str, changes: dict) -> Optional[dict]:
        """
        Set the given fields on a document in place.

        Returns:
            The updated document, or None if it does not exist

        Raises:
            StoreError: If the write fails
        """
        pass

    @abstractmethod
    def delete(self, collection: str, doc_id: str) -> Optional[dict]:
        """
        Delete a document by id.

        Returns:
            The deleted document, or None if it did not exist

        Raises:
            StoreError: If the write fails
        """
        pass

    @abstractmethod
    def add_to_set(
        self,
        collection: str,
        doc_id: str,
        field: str,
        value: Any,
    ) -> Optional[dict]:
        """
        Atomically append a value to an array field unless already present.

        Returns:
            The updated document, or None if it does not exist

        Raises:
            StoreError: If the write fails
        """
        pass

    @abstractmethod
    def pull(
        self,
        collection: str,
        doc_id: str,
        field: str,
        value: Any,
    ) -> Optional[dict]:
        """
        Atomically remove every occurrence of a value from an array field.

        Returns:
            The updated document, or None if it does not exist

        Raises:
            StoreError: If the write fails
        """
        pass

    @property
    @abstractmethod
    def name(self) -> str:
        """Return the name of this store."""
        pass
