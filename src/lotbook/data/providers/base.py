"""
Abstract base class for quote sources.

Defines the interface that all market data providers must implement,
so the ledger and the valuation aggregator never depend on a concrete
provider.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

import pandas as pd

from lotbook.models import Quote


HISTORY_COLUMNS = ["timestamp", "close"]


class QuoteSourceError(Exception):
    """Raised when a quote source fails or returns malformed data."""
    pass


class QuoteSource(ABC):
    """
    Abstract base class for market data providers.

    Implementations must provide methods to fetch:
    - A live quote (price and day's change) for a symbol
    - A textual business profile for a symbol
    - Historical close prices for a symbol over a time range

    Implementations retry upstream rate limiting a bounded number of times
    and raise QuoteSourceError once the retries are exhausted. An unknown
    symbol is not an error: it is reported as None.
    """

    @abstractmethod
    def get_quote(self, symbol: str) -> Optional[Quote]:
        """
        Fetch the current quote for a symbol.

        Args:
            symbol: Ticker symbol

        Returns:
            Quote, or None if the provider does not know the symbol

        Raises:
            QuoteSourceError: If the provider failed
        """
        pass

    @abstractmethod
    def get_profile(self, symbol: str) -> Optional[str]:
        """
        Fetch the long business summary for a symbol.

        Args:
            symbol: Ticker symbol

        Returns:
            Summary text, or None if no profile exists

        Raises:
            QuoteSourceError: If the provider failed
        """
        pass

    @abstractmethod
    def get_history(
        self,
        symbol: str,
        start: datetime,
        end: datetime,
        interval: str = "5m",
    ) -> pd.DataFrame:
        """
        Fetch historical close prices.

        Args:
            symbol: Ticker symbol
            start: Start of the range (inclusive)
            end: End of the range (exclusive)
            interval: Sampling interval understood by the provider

        Returns:
            DataFrame with columns: timestamp, close
            - timestamp: Epoch seconds of the sample
            - close: Close price of the sample
            Sorted by timestamp ascending.

        Raises:
            QuoteSourceError: If data cannot be fetched
        """
        pass

    @property
    @abstractmethod
    def name(self) -> str:
        """Return the name of this quote source."""
        pass
