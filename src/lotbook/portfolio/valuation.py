"""
Portfolio valuation and mark-to-market rollups.

Values lots at current quotes and folds the results up through asset,
portfolio and user totals. Each run prices every distinct symbol once
through a fresh RunQuoteCache, so a symbol held in several portfolios is
priced identically everywhere in the report. Every parent total is the sum
of its children's totals.
"""

import logging
from collections import defaultdict
from typing import Optional

from lotbook.models import (
    ZERO,
    Asset,
    AssetSummary,
    Lot,
    LotSummary,
    NetWorthReport,
    OperationResult,
    PortfolioDetail,
    PortfolioSummary,
    Quote,
    ValuationTotals,
)
from lotbook.data.providers.base import QuoteSource
from lotbook.data.providers.cache import RunQuoteCache
from lotbook.logging.activity_log import ActivityLogger
from lotbook.portfolio.store import PortfolioStore


logger = logging.getLogger(__name__)


def value_lots(lots: list[Lot], quote: Quote) -> list[LotSummary]:
    """
    Value lots of one asset at a single quote.

    Args:
        lots: Lots of the same asset
        quote: Quote for the asset's symbol

    Returns:
        List of LotSummary objects, in input order
    """
    return [LotSummary.from_lot(lot, quote) for lot in lots]


def summarize_asset(asset: Asset, lots: list[Lot], quote: Quote) -> AssetSummary:
    """
    Value one asset of a portfolio.

    An asset without lots still gets a summary, with zero quantity and
    zero totals.

    Args:
        asset: The asset
        lots: Its lots in the portfolio
        quote: Quote for the asset's symbol

    Returns:
        AssetSummary whose totals are the sum of its lot totals
    """
    lot_summaries = value_lots(lots, quote)

    return AssetSummary(
        asset=asset,
        price=quote.price,
        change=quote.change,
        quote_available=quote.available,
        quantity=sum((lot.quantity for lot in lots), ZERO),
        lot_count=len(lots),
        totals=ValuationTotals.sum([s.totals for s in lot_summaries]),
        lots=lot_summaries,
    )


def summarize_portfolio(detail: PortfolioDetail, cache: RunQuoteCache) -> PortfolioSummary:
    """
    Value one populated portfolio.

    Lots whose asset is not a member of the portfolio are left out of the
    totals.

    Args:
        detail: Portfolio with assets and lots populated
        cache: Quote cache of the current run

    Returns:
        PortfolioSummary whose totals are the sum of its asset totals
    """
    portfolio = detail.portfolio
    member_ids = {asset.asset_id for asset in detail.assets}
    lots_by_asset: dict[str, list[Lot]] = defaultdict(list)

    for lot in detail.lots:
        if lot.asset_id not in member_ids:
            logger.warning("Lot %s of portfolio %s belongs to non-member asset %s, excluded",
                           lot.lot_id, portfolio.portfolio_id, lot.asset_id)
            continue
        lots_by_asset[lot.asset_id].append(lot)

    assets = [
        summarize_asset(asset, lots_by_asset.get(asset.asset_id, []), cache.get(asset.symbol))
        for asset in detail.assets
    ]

    return PortfolioSummary(
        portfolio_id=portfolio.portfolio_id,
        name=portfolio.name,
        description=portfolio.description,
        totals=ValuationTotals.sum([a.totals for a in assets]),
        assets=assets,
    )


class ValuationAggregator:
    """
    Computes net-worth reports from the portfolio store.

    Read-only: never writes to the store.
    """

    def __init__(
        self,
        portfolios: PortfolioStore,
        quote_source: QuoteSource,
        max_workers: int = 1,
        activity_log: Optional[ActivityLogger] = None,
    ):
        """
        Initialize the aggregator.

        Args:
            portfolios: Portfolio store to read from
            quote_source: Source of current quotes
            max_workers: Parallel quote fetches per run (1 = sequential)
            activity_log: Optional audit log for completed runs
        """
        self._portfolios = portfolios
        self._source = quote_source
        self._max_workers = max_workers
        self._activity_log = activity_log

    def net_worth(self, user_id: str) -> OperationResult:
        """
        Value every portfolio of a user.

        A quote that cannot be fetched is valued at zero for the whole run
        rather than failing the report.

        Returns:
            OperationResult with a NetWorthReport as data
        """
        loaded = self._portfolios.list_details(user_id)
        if not loaded.success:
            return loaded

        details: list[PortfolioDetail] = loaded.data
        cache = self._new_cache()
        cache.prefetch(asset.symbol for detail in details for asset in detail.assets)

        summaries = [summarize_portfolio(detail, cache) for detail in details]
        report = NetWorthReport(
            user_id=user_id,
            totals=ValuationTotals.sum([s.totals for s in summaries]),
            portfolios=summaries,
            quotes_fetched=cache.fetch_count,
        )

        logger.info("Valued %d portfolios for %s with %d quotes",
                    len(summaries), user_id, report.quotes_fetched)
        if self._activity_log:
            self._activity_log.log_net_worth_calculated(report)

        return OperationResult.ok(report, f"Net worth for {user_id} is ${report.totals.market_value}")

    def one_portfolio(self, portfolio_id: str) -> OperationResult:
        """
        Value a single portfolio with its own quote cache.

        Returns:
            OperationResult with a PortfolioSummary as data
        """
        loaded = self._portfolios.load_detail(portfolio_id)
        if not loaded.success:
            return loaded

        detail: PortfolioDetail = loaded.data
        cache = self._new_cache()
        cache.prefetch(asset.symbol for asset in detail.assets)

        summary = summarize_portfolio(detail, cache)
        return OperationResult.ok(
            summary,
            f"Portfolio {summary.name} is worth ${summary.totals.market_value}",
            quotes_fetched=cache.fetch_count,
        )

    def _new_cache(self) -> RunQuoteCache:
        return RunQuoteCache(self._source, max_workers=self._max_workers)
