"""
Yahoo Finance quote source implementation.

Uses the yfinance library to fetch live quotes, company profiles and
intraday price history.
"""

import logging
import time
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Optional

import pandas as pd

from lotbook.models import Quote
from lotbook.data.providers.base import HISTORY_COLUMNS, QuoteSource, QuoteSourceError


logger = logging.getLogger(__name__)


class YFinanceQuoteSource(QuoteSource):
    """
    Quote source using Yahoo Finance.

    Features:
    - Delayed market price and day's change from the ticker info
    - Long business summary from the same info payload
    - Intraday history at a configurable interval
    - Bounded retries with linear backoff for rate limiting and timeouts
    """

    def __init__(
        self,
        max_retries: int = 3,
        retry_delay: float = 2.0,
        yf_module: Any = None,
    ):
        """
        Initialize Yahoo Finance quote source.

        Args:
            max_retries: Maximum attempts per request
            retry_delay: Base delay between retries (seconds)
            yf_module: yfinance-compatible module, defaults to yfinance
        """
        self._max_retries = max(1, max_retries)
        self._retry_delay = retry_delay

        if yf_module is None:
            # Import yfinance here to allow graceful failure if not installed
            try:
                import yfinance as yf
            except ImportError:
                raise QuoteSourceError(
                    "yfinance is required for YFinanceQuoteSource. "
                    "Install with: pip install yfinance"
                )
            yf_module = yf
        self._yf = yf_module

    @property
    def name(self) -> str:
        return "YahooFinance"

    def get_quote(self, symbol: str) -> Optional[Quote]:
        """
        Fetch the current quote for a symbol.

        Returns None when Yahoo has no market price for the symbol.
        """
        symbol = symbol.upper().strip()
        info = self._fetch_info(symbol)
        if info is None:
            return None

        price = _decimal(info.get("regularMarketPrice", info.get("currentPrice")))
        if price is None:
            return None

        change = _decimal(info.get("regularMarketChange")) or Decimal("0")
        long_name = info.get("longName") or ""

        return Quote(
            symbol=str(info.get("symbol") or symbol).upper(),
            price=price,
            change=change,
            quote_type=info.get("quoteType") or "",
            exchange=info.get("fullExchangeName") or info.get("exchange") or "",
            short_name=info.get("shortName") or "",
            long_name=long_name,
            display_name=info.get("displayName") or long_name,
            currency=info.get("currency") or "",
        )

    def get_profile(self, symbol: str) -> Optional[str]:
        """Fetch the long business summary for a symbol."""
        info = self._fetch_info(symbol.upper().strip())
        if info is None:
            return None
        return info.get("longBusinessSummary")

    def get_history(
        self,
        symbol: str,
        start: datetime,
        end: datetime,
        interval: str = "5m",
    ) -> pd.DataFrame:
        """
        Fetch intraday close prices.

        Missing closes are reported as 0 and prices are rounded to cents.
        """
        symbol = symbol.upper().strip()
        ticker = self._yf.Ticker(symbol)

        try:
            df = self._with_retries(
                lambda: ticker.history(start=start, end=end, interval=interval, auto_adjust=False),
                f"history for {symbol}",
            )
        except _SymbolNotFound:
            return pd.DataFrame(columns=HISTORY_COLUMNS)

        if df is None or df.empty or "Close" not in df.columns:
            return pd.DataFrame(columns=HISTORY_COLUMNS)

        result = pd.DataFrame({
            "timestamp": [int(pd.Timestamp(ts).timestamp()) for ts in df.index],
            "close": df["Close"].fillna(0).astype(float).round(2).values,
        })

        return result.sort_values("timestamp").reset_index(drop=True)

    def _fetch_info(self, symbol: str) -> Optional[dict]:
        """Fetch the ticker info payload, None for unknown symbols."""
        ticker = self._yf.Ticker(symbol)

        try:
            info = self._with_retries(lambda: ticker.info, f"quote for {symbol}")
        except _SymbolNotFound:
            return None

        if not isinstance(info, dict) or not info:
            return None

        return info

    def _with_retries(self, fetch: Callable[[], Any], what: str) -> Any:
        """Run a provider call with bounded retries."""
        last_error = None

        for attempt in range(self._max_retries):
            try:
                return fetch()
            except Exception as e:
                if _is_not_found(e):
                    raise _SymbolNotFound(what)
                last_error = e
                logger.warning(
                    "Yahoo Finance %s failed (attempt %d/%d): %s",
                    what, attempt + 1, self._max_retries, e,
                )

            if attempt < self._max_retries - 1:
                time.sleep(self._retry_delay * (attempt + 1))

        raise QuoteSourceError(
            f"Failed to fetch {what} after {self._max_retries} attempts: {last_error}"
        )


class _SymbolNotFound(Exception):
    pass


def _is_not_found(error: Exception) -> bool:
    response = getattr(error, "response", None)
    if getattr(response, "status_code", None) == 404:
        return True
    return "404" in str(error) or "not found" in str(error).lower()


def _decimal(value: Any) -> Optional[Decimal]:
    if value is None or isinstance(value, bool):
        return None
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    return result if result.is_finite() else None


def get_default_quote_source(max_retries: int = 3, retry_delay: float = 2.0) -> QuoteSource:
    """
    Get the default quote source instance.

    Args:
        max_retries: Maximum attempts per request
        retry_delay: Base delay between retries (seconds)

    Returns:
        QuoteSource instance (Yahoo Finance)
    """
    return YFinanceQuoteSource(max_retries=max_retries, retry_delay=retry_delay)
