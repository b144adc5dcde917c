"""
Run-scoped quote cache.

Guarantees that one valuation run asks the quote source for each distinct
symbol at most once, so the same symbol prices identically everywhere in a
report. There is no cross-run cache and no TTL: a new run starts empty.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from decimal import Decimal
from typing import Iterable

from lotbook.models import Quote
from lotbook.data.providers.base import QuoteSource, QuoteSourceError


logger = logging.getLogger(__name__)


class RunQuoteCache:
    """
    Per-run memo of quotes keyed by upper-case symbol.

    The first caller for a symbol performs the fetch; concurrent callers for
    the same symbol wait for that fetch instead of issuing their own. A
    symbol the source cannot price is cached as a zero quote and never
    retried within the run, whatever the reason.
    """

    def __init__(self, source: QuoteSource, max_workers: int = 1):
        """
        Initialize the cache.

        Args:
            source: Quote source to fetch from
            max_workers: Parallel fetches used by prefetch (1 = sequential)
        """
        self._source = source
        self._max_workers = max(1, max_workers)
        self._lock = threading.Lock()
        self._entries: dict[str, Future] = {}

    def get(self, symbol: str) -> Quote:
        """
        Get the quote for a symbol, fetching it on first use.

        Args:
            symbol: Ticker symbol (case-insensitive)

        Returns:
            The cached Quote, possibly a zero quote
        """
        key = symbol.upper().strip()

        with self._lock:
            future = self._entries.get(key)
            owner = future is None
            if owner:
                future = Future()
                self._entries[key] = future

        if owner:
            try:
                future.set_result(self._fetch(key))
            except BaseException as e:
                future.set_exception(e)
                raise

        return future.result()

    def prefetch(self, symbols: Iterable[str]) -> None:
        """
        Fetch every distinct symbol, in parallel when max_workers > 1.

        Args:
            symbols: Symbols to warm the cache with (duplicates allowed)
        """
        distinct = sorted({s.upper().strip() for s in symbols})

        if self._max_workers == 1 or len(distinct) < 2:
            for symbol in distinct:
                self.get(symbol)
            return

        with ThreadPoolExecutor(max_workers=min(self._max_workers, len(distinct))) as pool:
            list(pool.map(self.get, distinct))

    @property
    def fetch_count(self) -> int:
        """Number of distinct symbols fetched so far."""
        with self._lock:
            return len(self._entries)

    def __contains__(self, symbol: str) -> bool:
        with self._lock:
            return symbol.upper().strip() in self._entries

    def _fetch(self, symbol: str) -> Quote:
        try:
            quote = self._source.get_quote(symbol)
        except QuoteSourceError as e:
            logger.warning("Quote for %s unavailable, using zero quote: %s", symbol, e)
            return Quote.zero(symbol)
        except Exception:
            logger.exception("Quote source %s failed for %s, using zero quote", self._source.name, symbol)
            return Quote.zero(symbol)

        if quote is None:
            logger.warning("No quote found for %s, using zero quote", symbol)
            return Quote.zero(symbol)

        if not _is_priced(quote):
            logger.warning("Malformed quote for %s, using zero quote: %r", symbol, quote)
            return Quote.zero(symbol)

        return quote


def _is_priced(quote) -> bool:
    """True if quote is a Quote with finite Decimal price and change."""
    if not isinstance(quote, Quote):
        return False
    return all(
        isinstance(value, Decimal) and value.is_finite()
        for value in (quote.price, quote.change)
    )
