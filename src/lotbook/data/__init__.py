"""
Market data and export module for lotbook.

Provides quote lookups, intraday price history, and CSV exports of
valuation reports and lot listings.
"""

from lotbook.data.market import (
    chart_window,
    lookup_quote,
    price_history,
)
from lotbook.data.exports import (
    save_net_worth_report,
    save_lot_listing,
)

__all__ = [
    "chart_window",
    "lookup_quote",
    "price_history",
    "save_net_worth_report",
    "save_lot_listing",
]
