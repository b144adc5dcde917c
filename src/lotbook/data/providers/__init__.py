"""
Quote sources for live prices, company profiles and price history.

Provides a pluggable interface for market data with a run-scoped cache
that prices each symbol once per valuation run.
"""

from lotbook.data.providers.base import QuoteSource, QuoteSourceError
from lotbook.data.providers.cache import RunQuoteCache
from lotbook.data.providers.yfinance_provider import (
    YFinanceQuoteSource,
    get_default_quote_source,
)

__all__ = [
    "QuoteSource",
    "QuoteSourceError",
    "RunQuoteCache",
    "YFinanceQuoteSource",
    "get_default_quote_source",
]
