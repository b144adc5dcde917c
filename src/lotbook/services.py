"""
Wiring of the ledger components.

Builds the store, quote source, activity log and the components that
depend on them from one Settings object.
"""

from dataclasses import dataclass
from typing import Optional

from lotbook.config import Settings
from lotbook.data.providers import QuoteSource, get_default_quote_source
from lotbook.logging import ActivityLogger, get_logger
from lotbook.models import OperationResult
from lotbook.portfolio import (
    AssetRegistry,
    LotLedger,
    PortfolioStore,
    ValuationAggregator,
    reconcile,
    reconcile_user,
)
from lotbook.storage import DocumentStore, JsonFileStore


@dataclass
class LotbookServices:
    """
    Components sharing one store, quote source and activity log.

    Attributes:
        settings: Settings the services were built from
        store: Document store
        quote_source: Market data provider
        activity_log: Audit log
        registry: Asset registry
        ledger: Lot ledger
        portfolios: Portfolio store
        valuation: Valuation aggregator
    """
    settings: Settings
    store: DocumentStore
    quote_source: QuoteSource
    activity_log: ActivityLogger
    registry: AssetRegistry
    ledger: LotLedger
    portfolios: PortfolioStore
    valuation: ValuationAggregator

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        store: Optional[DocumentStore] = None,
        quote_source: Optional[QuoteSource] = None,
    ) -> "LotbookServices":
        """
        Build every component from settings.

        Args:
            settings: Runtime settings
            store: Store to use instead of the JSON file at settings.store_path
            quote_source: Quote source to use instead of Yahoo Finance

        Raises:
            StoreError: If the store file cannot be loaded
            QuoteSourceError: If the default quote source is unavailable
        """
        if store is None:
            store = JsonFileStore(settings.store_path)
        if quote_source is None:
            quote_source = get_default_quote_source(
                max_retries=settings.quote_max_retries,
                retry_delay=settings.quote_retry_delay,
            )
        activity_log = get_logger(settings.activity_log_path)

        registry = AssetRegistry(store, quote_source, activity_log)
        ledger = LotLedger(store, activity_log)
        portfolios = PortfolioStore(store, registry, ledger, activity_log)
        valuation = ValuationAggregator(
            portfolios,
            quote_source,
            max_workers=settings.quote_workers,
            activity_log=activity_log,
        )

        return cls(
            settings=settings,
            store=store,
            quote_source=quote_source,
            activity_log=activity_log,
            registry=registry,
            ledger=ledger,
            portfolios=portfolios,
            valuation=valuation,
        )

    def reconcile(self, portfolio_id: str) -> OperationResult:
        """Repair one portfolio's membership sets."""
        return reconcile(self.store, portfolio_id, self.activity_log)

    def reconcile_user(self, user_id: str) -> OperationResult:
        """Repair the membership sets of every portfolio of a user."""
        return reconcile_user(self.store, user_id, self.activity_log)
