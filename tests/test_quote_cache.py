"""
Tests for the run-scoped quote cache.
"""

import threading
from decimal import Decimal
from unittest.mock import patch

from lotbook.data.providers import RunQuoteCache
from lotbook.models import Quote

from conftest import make_quote


class TestRunQuoteCache:
    """Tests for RunQuoteCache."""

    def test_fetches_each_symbol_once(self, quote_source):
        cache = RunQuoteCache(quote_source)

        first = cache.get("ABC")
        second = cache.get("abc")

        assert first is second
        assert first.price == Decimal("10.00")
        assert quote_source.quote_calls["ABC"] == 1
        assert "Abc" in cache
        assert cache.fetch_count == 1

    def test_unknown_symbol_is_cached_as_zero(self, quote_source):
        cache = RunQuoteCache(quote_source)

        quote = cache.get("NOPE")
        cache.get("NOPE")

        assert quote.available is False
        assert quote.price == Decimal("0")
        assert quote.change == Decimal("0")
        assert quote_source.quote_calls["NOPE"] == 1

    def test_failure_is_cached_as_zero(self, quote_source):
        """Test that a provider error is not retried within the run."""
        quote_source.failing.add("XYZ")
        cache = RunQuoteCache(quote_source)

        assert cache.get("XYZ").available is False
        assert cache.get("XYZ").available is False
        assert quote_source.quote_calls["XYZ"] == 1

    def test_concurrent_callers_share_one_fetch(self, quote_source):
        """Test that parallel gets for one symbol call the provider once."""
        quote_source.delay = 0.05
        cache = RunQuoteCache(quote_source)
        barrier = threading.Barrier(8)
        prices = []

        def fetch():
            barrier.wait()
            prices.append(cache.get("ABC").price)

        threads = [threading.Thread(target=fetch) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert quote_source.quote_calls["ABC"] == 1
        assert prices == [Decimal("10.00")] * 8

    def test_prefetch_deduplicates(self, quote_source):
        cache = RunQuoteCache(quote_source, max_workers=3)

        cache.prefetch(["ABC", "XYZ", "abc", "MSFT", "XYZ"])

        assert dict(quote_source.quote_calls) == {"ABC": 1, "MSFT": 1, "XYZ": 1}
        assert cache.fetch_count == 3

    def test_new_cache_fetches_again(self, quote_source):
        RunQuoteCache(quote_source).get("ABC")
        RunQuoteCache(quote_source).get("ABC")

        assert quote_source.quote_calls["ABC"] == 2

    def test_unexpected_error_is_cached_as_zero(self, quote_source):
        """Test that errors outside QuoteSourceError are contained too."""
        cache = RunQuoteCache(quote_source)

        with patch.object(quote_source, "get_quote", side_effect=TimeoutError("read timed out")) as get_quote:
            first = cache.get("XYZ")
            second = cache.get("XYZ")

        assert first.available is False
        assert second.price == Decimal("0")
        assert get_quote.call_count == 1

    def test_malformed_quotes_are_zeroed(self, quote_source):
        """Test that a quote without a finite Decimal price or change is not used."""
        quote_source.quotes["XYZ"] = Quote(symbol="XYZ", price=None, change=Decimal("2.00"))
        quote_source.quotes["ABC"] = make_quote("ABC", "NaN")
        quote_source.quotes["MSFT"] = Quote(symbol="MSFT", price=Decimal("400"), change=1.5)
        cache = RunQuoteCache(quote_source)

        for symbol in ("XYZ", "ABC", "MSFT"):
            quote = cache.get(symbol)
            assert quote.available is False
            assert quote.price == Decimal("0")
            assert quote.change == Decimal("0")
