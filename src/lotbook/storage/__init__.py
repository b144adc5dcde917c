"""
Document storage for assets, lots and portfolios.

Provides a small document-store interface with an in-memory implementation
and a JSON-file implementation for single-user installs.
"""

from lotbook.storage.base import DocumentStore, StoreError
from lotbook.storage.memory import InMemoryStore
from lotbook.storage.json_file import JsonFileStore

__all__ = [
    "DocumentStore",
    "StoreError",
    "InMemoryStore",
    "JsonFileStore",
]
