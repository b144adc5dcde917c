"""
Portfolio management module for lotbook.

Provides the asset registry, the lot ledger, the portfolio store,
membership reconciliation, and net-worth valuation.
"""

from lotbook.portfolio.assets import AssetRegistry
from lotbook.portfolio.lots import LotLedger, LotValidationError
from lotbook.portfolio.store import PortfolioStore
from lotbook.portfolio.reconcile import reconcile, reconcile_user
from lotbook.portfolio.valuation import (
    ValuationAggregator,
    summarize_asset,
    summarize_portfolio,
    value_lots,
)

__all__ = [
    "AssetRegistry",
    "LotLedger",
    "LotValidationError",
    "PortfolioStore",
    "reconcile",
    "reconcile_user",
    "ValuationAggregator",
    "summarize_asset",
    "summarize_portfolio",
    "value_lots",
]
