"""
Pytest fixtures for the lotbook tests.

Provides a call-counting fake quote source, a store that can be told to
reject specific writes, and wired ledger components.
"""

import threading
import time
from collections import Counter
from decimal import Decimal
from typing import Optional

import pandas as pd
import pytest

from lotbook.config import Settings
from lotbook.data.providers.base import HISTORY_COLUMNS, QuoteSource, QuoteSourceError
from lotbook.logging import ActivityLogger
from lotbook.models import Quote
from lotbook.portfolio import AssetRegistry, LotLedger, PortfolioStore, ValuationAggregator
from lotbook.services import LotbookServices
from lotbook.storage import InMemoryStore, StoreError


USER_ID = "user-1"
OTHER_USER_ID = "user-2"


def make_quote(symbol: str, price: str, change: str = "0", **kwargs) -> Quote:
    """Build a provider quote with descriptive defaults."""
    kwargs.setdefault("quote_type", "EQUITY")
    kwargs.setdefault("exchange", "NasdaqGS")
    kwargs.setdefault("long_name", f"{symbol} Corporation")
    kwargs.setdefault("short_name", f"{symbol} Corp")
    kwargs.setdefault("currency", "USD")
    return Quote(symbol=symbol, price=Decimal(price), change=Decimal(change), **kwargs)


class FakeQuoteSource(QuoteSource):
    """
    In-memory quote source that counts calls per symbol.

    Symbols in `failing` raise QuoteSourceError, symbols missing from
    `quotes` are reported as unknown.
    """

    def __init__(
        self,
        quotes: Optional[dict[str, Quote]] = None,
        profiles: Optional[dict[str, str]] = None,
        delay: float = 0.0,
    ):
        self.quotes = dict(quotes or {})
        self.profiles = dict(profiles or {})
        self.failing: set[str] = set()
        self.profile_failing: set[str] = set()
        self.history: dict[str, pd.DataFrame] = {}
        self.delay = delay
        self.quote_calls: Counter = Counter()
        self.profile_calls: Counter = Counter()
        self.history_calls: list[tuple] = []
        self._lock = threading.Lock()

    @property
    def name(self) -> str:
        return "Fake"

    def get_quote(self, symbol: str) -> Optional[Quote]:
        with self._lock:
            self.quote_calls[symbol] += 1
        if self.delay:
            time.sleep(self.delay)
        if symbol in self.failing:
            raise QuoteSourceError(f"{symbol} timed out")
        return self.quotes.get(symbol)

    def get_profile(self, symbol: str) -> Optional[str]:
        with self._lock:
            self.profile_calls[symbol] += 1
        if symbol in self.profile_failing:
            raise QuoteSourceError(f"profile for {symbol} timed out")
        return self.profiles.get(symbol)

    def get_history(self, symbol, start, end, interval="5m") -> pd.DataFrame:
        self.history_calls.append((symbol, start, end, interval))
        if symbol in self.failing:
            raise QuoteSourceError(f"history for {symbol} timed out")
        return self.history.get(symbol, pd.DataFrame(columns=HISTORY_COLUMNS))


class FlakyStore(InMemoryStore):
    """
    In-memory store that rejects selected operations.

    Add (operation, collection) pairs to `failures`, e.g.
    ("pull", "portfolios"), to make those calls raise StoreError.
    """

    def __init__(self):
        super().__init__()
        self.failures: set[tuple[str, str]] = set()

    def _check(self, operation: str, collection: str) -> None:
        if (operation, collection) in self.failures:
            raise StoreError(f"{operation} on {collection} rejected")

    def get(self, collection, doc_id):
        self._check("get", collection)
        return super().get(collection, doc_id)

    def find(self, collection, filters=None, sort=None):
        self._check("find", collection)
        return super().find(collection, filters, sort)

    def insert(self, collection, doc):
        self._check("insert", collection)
        return super().insert(collection, doc)

    def update(self, collection, doc_id, changes):
        self._check("update", collection)
        return super().update(collection, doc_id, changes)

    def delete(self, collection, doc_id):
        self._check("delete", collection)
        return super().delete(collection, doc_id)

    def add_to_set(self, collection, doc_id, field, value):
        self._check("add_to_set", collection)
        return super().add_to_set(collection, doc_id, field, value)

    def pull(self, collection, doc_id, field, value):
        self._check("pull", collection)
        return super().pull(collection, doc_id, field, value)


@pytest.fixture
def quote_source() -> FakeQuoteSource:
    """Quote source knowing ABC, XYZ and MSFT."""
    return FakeQuoteSource(
        quotes={
            "ABC": make_quote("ABC", "10.00", "0.50"),
            "XYZ": make_quote("XYZ", "120.00", "2.00"),
            "MSFT": make_quote("MSFT", "400.00", "-3.25", display_name="Microsoft"),
        },
        profiles={
            "ABC": "ABC makes things.",
            "XYZ": "XYZ sells things.",
        },
    )


@pytest.fixture
def store() -> FlakyStore:
    """Empty store that can be told to reject operations."""
    return FlakyStore()


@pytest.fixture
def activity_log(tmp_path) -> ActivityLogger:
    """Activity log in a temporary directory."""
    return ActivityLogger(tmp_path / "activity_log.jsonl")


@pytest.fixture
def registry(store, quote_source, activity_log) -> AssetRegistry:
    return AssetRegistry(store, quote_source, activity_log)


@pytest.fixture
def ledger(store, activity_log) -> LotLedger:
    return LotLedger(store, activity_log)


@pytest.fixture
def portfolios(store, registry, ledger, activity_log) -> PortfolioStore:
    return PortfolioStore(store, registry, ledger, activity_log)


@pytest.fixture
def aggregator(portfolios, quote_source, activity_log) -> ValuationAggregator:
    return ValuationAggregator(portfolios, quote_source, activity_log=activity_log)


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings pointing at a temporary directory."""
    return Settings(
        store_path=str(tmp_path / "store.json"),
        activity_log_path=str(tmp_path / "activity_log.jsonl"),
        quote_retry_delay=0.0,
    )


@pytest.fixture
def services(settings, store, quote_source) -> LotbookServices:
    """Fully wired services over the fake store and quote source."""
    return LotbookServices.from_settings(settings, store=store, quote_source=quote_source)


@pytest.fixture
def make_portfolio(portfolios):
    """Factory creating a portfolio and returning its record."""

    def _make(name: str, symbols: Optional[list[str]] = None, user_id: str = USER_ID):
        result = portfolios.create(user_id, name, f"{name} account", symbols or [])
        assert result.success, result.message
        return result.data

    return _make


@pytest.fixture
def asset_id_for(registry):
    """Factory resolving a symbol to its asset id."""

    def _asset_id(symbol: str) -> str:
        result = registry.resolve_or_create(symbol)
        assert result.success, result.message
        return result.data.asset.asset_id

    return _asset_id
