"""
Asset registry.

Owns the canonical list of tradable symbols. A new asset record is created
only after the quote source confirms the symbol; an existing record is
returned unchanged.
"""

import logging
import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from lotbook.models import (
    ActionType,
    Asset,
    OperationResult,
    Quote,
    ResolvedAsset,
    Status,
)
from lotbook.data.providers.base import QuoteSource, QuoteSourceError
from lotbook.logging.activity_log import ActivityLogger
from lotbook.storage.base import ASSETS, LOTS, DocumentStore, StoreError


logger = logging.getLogger(__name__)


class AssetRegistry:
    """
    Resolves symbols to asset records, creating them on first reference.

    Calls for the same symbol, or for aliases the quote source reports
    under one symbol, are serialized within this process. Separate
    processes sharing one store can still race and create two records for
    a previously unknown symbol.
    """

    def __init__(
        self,
        store: DocumentStore,
        quote_source: QuoteSource,
        activity_log: Optional[ActivityLogger] = None,
    ):
        self._store = store
        self._source = quote_source
        self._activity_log = activity_log
        self._locks: dict[str, _SymbolLock] = {}
        self._locks_guard = threading.Lock()

    def get(self, asset_id: str) -> OperationResult:
        """
        Get an asset by id.

        Returns:
            OperationResult with the Asset as data, NOT_FOUND if missing
        """
        try:
            doc = self._store.get(ASSETS, asset_id)
        except StoreError as e:
            return OperationResult.fail(Status.PERSISTENCE_ERROR, f"Asset lookup failed: {e}")

        if doc is None:
            return OperationResult.fail(
                Status.NOT_FOUND, f"Asset {asset_id} was not found", asset_id=asset_id
            )
        return OperationResult.ok(Asset.from_document(doc), f"Found asset {asset_id}")

    def find_by_symbol(self, symbol: str) -> OperationResult:
        """
        Get an existing asset by symbol without contacting the quote source.

        Returns:
            OperationResult with the Asset as data, SYMBOL_NOT_FOUND if the
            registry has no record for the symbol
        """
        key = _normalize(symbol)
        try:
            asset = self._lookup(key)
        except StoreError as e:
            return OperationResult.fail(Status.PERSISTENCE_ERROR, f"Asset lookup failed: {e}")

        if asset is None:
            return OperationResult.fail(
                Status.SYMBOL_NOT_FOUND, f"Invalid asset symbol - {key}", symbol=key
            )
        return OperationResult.ok(asset, f"Found {key}")

    def resolve_or_create(self, symbol: str) -> OperationResult:
        """
        Resolve a symbol to an asset, creating the record if needed.

        An existing asset is returned unchanged with status ALREADY_EXISTS.
        Otherwise the quote source must confirm the symbol before anything
        is written; the profile lookup is best-effort and falls back to an
        empty summary.

        Args:
            symbol: Ticker symbol (case-insensitive)

        Returns:
            OperationResult with a ResolvedAsset as data
        """
        key = _normalize(symbol)
        if not key:
            return OperationResult.fail(Status.VALIDATION_ERROR, "A symbol is required")

        with self._symbol_lock(key):
            try:
                existing = self._lookup(key)
            except StoreError as e:
                return OperationResult.fail(
                    Status.PERSISTENCE_ERROR, f"Error looking up symbol {key}: {e}", symbol=key
                )

            if existing is not None:
                return OperationResult.ok(
                    ResolvedAsset(existing, created=False),
                    f"Asset {existing.symbol} already exists",
                    status=Status.ALREADY_EXISTS,
                )

            try:
                quote = self._source.get_quote(key)
            except QuoteSourceError as e:
                return OperationResult.fail(
                    Status.UPSTREAM_UNAVAILABLE,
                    f"Error looking up symbol {key}: {e}",
                    symbol=key,
                )

            if quote is None:
                return OperationResult.fail(
                    Status.SYMBOL_NOT_FOUND,
                    f"Symbol {key} was not found by {self._source.name}",
                    symbol=key,
                )

            provider_symbol = _normalize(quote.symbol) or key
            if provider_symbol == key:
                return self._create(key, provider_symbol, quote)

            # Another alias may be creating the same provider symbol
            with self._symbol_lock(provider_symbol):
                return self._create(key, provider_symbol, quote)

    def _create(self, key: str, provider_symbol: str, quote: Quote) -> OperationResult:
        """Insert the asset for a confirmed quote, unless its provider symbol is already known."""
        if provider_symbol != key:
            try:
                existing = self._lookup(provider_symbol)
            except StoreError as e:
                return OperationResult.fail(
                    Status.PERSISTENCE_ERROR,
                    f"Error looking up symbol {provider_symbol}: {e}",
                    symbol=key,
                )
            if existing is not None:
                return OperationResult.ok(
                    ResolvedAsset(existing, created=False),
                    f"Asset {existing.symbol} already exists",
                    status=Status.ALREADY_EXISTS,
                )

        asset = Asset(
            asset_id=str(uuid.uuid4()),
            symbol=provider_symbol,
            asset_type=quote.quote_type,
            exchange=quote.exchange,
            short_name=quote.short_name,
            long_name=quote.long_name,
            display_name=quote.display_name or quote.long_name,
            currency=quote.currency,
            long_business_summary=self._profile_summary(key),
            created_at=datetime.now(),
        )

        try:
            doc = self._store.insert(ASSETS, asset.to_document())
        except StoreError as e:
            return OperationResult.fail(
                Status.PERSISTENCE_ERROR,
                f"Error adding asset for {key}: {e}",
                symbol=key,
            )

        asset = Asset.from_document(doc)
        logger.info("Created asset %s (%s)", asset.symbol, asset.asset_id)
        if self._activity_log:
            self._activity_log.record(
                ActionType.ASSET_CREATED,
                None,
                asset_id=asset.asset_id,
                symbol=asset.symbol,
                display_name=asset.display_name,
            )

        return OperationResult.ok(
            ResolvedAsset(asset, created=True),
            f"Asset {asset.symbol} - {asset.display_name} added",
            status=Status.CREATED,
        )

    def can_remove(self, asset_id: str) -> bool:
        """
        Check whether no lot anywhere references the asset.

        Raises:
            StoreError: If the lot query fails
        """
        return not self._store.find(LOTS, {"asset_id": asset_id})


    def _lookup(self, symbol: str) -> Optional[Asset]:
        docs = self._store.find(ASSETS, {"symbol": symbol}, sort=[("created_at", 1)])
        return Asset.from_document(docs[0]) if docs else None

    def _profile_summary(self, symbol: str) -> str:
        try:
            summary = self._source.get_profile(symbol)
        except QuoteSourceError as e:
            logger.warning("Profile for %s unavailable: %s", symbol, e)
            return ""
        return summary or ""

    @contextmanager
    def _symbol_lock(self, symbol: str):
        """Hold the lock for one symbol; the entry is dropped once unused."""
        with self._locks_guard:
            entry = self._locks.setdefault(symbol, _SymbolLock())
            entry.users += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._locks_guard:
                entry.users -= 1
                if entry.users == 0:
                    del self._locks[symbol]


@dataclass
class _SymbolLock:
    lock: threading.Lock = field(default_factory=threading.Lock)
    users: int = 0


def _normalize(symbol: Optional[str]) -> str:
    return (symbol or "").upper().strip()
