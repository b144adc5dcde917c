"""
Market lookups for a user-entered symbol.

Wraps the quote source for single-quote and intraday-history requests and
converts provider outcomes into OperationResults, so an unknown symbol is
reported as SYMBOL_NOT_FOUND rather than an empty success.
"""

from datetime import datetime, time, timedelta
from typing import Optional

from lotbook.models import OperationResult, Status
from lotbook.data.providers.base import QuoteSource, QuoteSourceError


DEFAULT_MARKET_OPEN = time(8, 30)
DEFAULT_MARKET_CLOSE = time(15, 0)


def lookup_quote(source: QuoteSource, symbol: str) -> OperationResult:
    """
    Look up the current quote for a symbol.

    Args:
        source: Quote source to query
        symbol: Ticker symbol entered by the user

    Returns:
        OperationResult with the Quote as data
    """
    symbol = (symbol or "").upper().strip()
    if not symbol:
        return OperationResult.fail(Status.VALIDATION_ERROR, "A symbol is required")

    try:
        quote = source.get_quote(symbol)
    except QuoteSourceError as e:
        return OperationResult.fail(
            Status.UPSTREAM_UNAVAILABLE,
            f"Quote lookup for {symbol} failed: {e}",
            symbol=symbol,
        )

    if quote is None:
        return OperationResult.fail(
            Status.SYMBOL_NOT_FOUND,
            f"Symbol {symbol} was not found by {source.name}",
            symbol=symbol,
        )

    return OperationResult.ok(quote, f"Quote for {quote.symbol} was successful")


def chart_window(
    now: datetime,
    market_open: time = DEFAULT_MARKET_OPEN,
    market_close: time = DEFAULT_MARKET_CLOSE,
) -> tuple[datetime, datetime]:
    """
    Get the trading session to chart for the given moment.

    Uses today's session on a weekday once the market has opened. On
    weekends, and on weekdays before the open, falls back to the previous
    trading day (Saturday, Sunday and Monday morning all chart Friday).

    Args:
        now: Current local time
        market_open: Session start
        market_close: Session end

    Returns:
        Tuple of (session_start, session_end)
    """
    start = now.replace(hour=market_open.hour, minute=market_open.minute, second=0, microsecond=0)
    end = now.replace(hour=market_close.hour, minute=market_close.minute, second=0, microsecond=0)

    # Day number with Sunday = 0 ... Saturday = 6
    day_number = (now.weekday() + 1) % 7
    is_weekday = 1 <= day_number <= 5

    if not is_weekday or now < start:
        shift = 1 if day_number > 1 else day_number + 2
        start -= timedelta(days=shift)
        end -= timedelta(days=shift)

    return start, end


def price_history(
    source: QuoteSource,
    symbol: str,
    now: Optional[datetime] = None,
    market_open: time = DEFAULT_MARKET_OPEN,
    market_close: time = DEFAULT_MARKET_CLOSE,
    interval: str = "5m",
) -> OperationResult:
    """
    Get the intraday price history of the current chart window.

    Args:
        source: Quote source to query
        symbol: Ticker symbol entered by the user
        now: Current local time (defaults to datetime.now())
        market_open: Session start
        market_close: Session end
        interval: Sampling interval

    Returns:
        OperationResult with a DataFrame (timestamp, close) as data and the
        window bounds as epoch seconds in details
    """
    symbol = (symbol or "").upper().strip()
    if not symbol:
        return OperationResult.fail(Status.VALIDATION_ERROR, "A symbol is required")

    start, end = chart_window(now or datetime.now(), market_open, market_close)

    try:
        history = source.get_history(symbol, start, end, interval)
    except QuoteSourceError as e:
        return OperationResult.fail(
            Status.UPSTREAM_UNAVAILABLE,
            f"History lookup for {symbol} failed: {e}",
            symbol=symbol,
        )

    return OperationResult.ok(
        history,
        f"History for {symbol} returned {len(history)} samples",
        start_epoch=int(start.timestamp()),
        end_epoch=int(end.timestamp()),
    )
