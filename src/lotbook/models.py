"""
Core data models for lotbook.

This module defines the records persisted by the document store (assets,
lots and portfolios), the quote returned by market data providers, the
structured result returned by every ledger operation, and the valuation
summaries produced by the aggregator.
All monetary and share quantities use Decimal for precision.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional


ZERO = Decimal("0")


class ErrorKind(Enum):
    """Failure category a caller maps to a response."""
    VALIDATION = "VALIDATION"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    UPSTREAM_UNAVAILABLE = "UPSTREAM_UNAVAILABLE"
    PERSISTENCE = "PERSISTENCE"


class Status(Enum):
    """Outcome code carried by every OperationResult."""
    OK = "OK"
    CREATED = "CREATED"
    ALREADY_EXISTS = "ALREADY_EXISTS"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NO_CHANGE = "NO_CHANGE"
    NOT_FOUND = "NOT_FOUND"
    SYMBOL_NOT_FOUND = "SYMBOL_NOT_FOUND"
    DUPLICATE_NAME = "DUPLICATE_NAME"
    ASSET_ALREADY_PRESENT = "ASSET_ALREADY_PRESENT"
    ASSET_NOT_IN_PORTFOLIO = "ASSET_NOT_IN_PORTFOLIO"
    LOTS_STILL_PRESENT = "LOTS_STILL_PRESENT"
    UPSTREAM_UNAVAILABLE = "UPSTREAM_UNAVAILABLE"
    PERSISTENCE_ERROR = "PERSISTENCE_ERROR"
    PARTIAL_FAILURE = "PARTIAL_FAILURE"

    @property
    def kind(self) -> Optional[ErrorKind]:
        """Error category for this status, None for the success codes."""
        return _STATUS_KINDS.get(self)


_STATUS_KINDS = {
    Status.VALIDATION_ERROR: ErrorKind.VALIDATION,
    Status.NO_CHANGE: ErrorKind.VALIDATION,
    Status.NOT_FOUND: ErrorKind.NOT_FOUND,
    Status.SYMBOL_NOT_FOUND: ErrorKind.NOT_FOUND,
    Status.DUPLICATE_NAME: ErrorKind.CONFLICT,
    Status.ASSET_ALREADY_PRESENT: ErrorKind.CONFLICT,
    Status.ASSET_NOT_IN_PORTFOLIO: ErrorKind.CONFLICT,
    Status.LOTS_STILL_PRESENT: ErrorKind.CONFLICT,
    Status.UPSTREAM_UNAVAILABLE: ErrorKind.UPSTREAM_UNAVAILABLE,
    Status.PERSISTENCE_ERROR: ErrorKind.PERSISTENCE,
    Status.PARTIAL_FAILURE: ErrorKind.PERSISTENCE,
}


class ActionType(Enum):
    """Types of logged actions for the activity log."""
    ASSET_CREATED = "ASSET_CREATED"
    PORTFOLIO_CREATED = "PORTFOLIO_CREATED"
    PORTFOLIO_UPDATED = "PORTFOLIO_UPDATED"
    PORTFOLIO_DELETED = "PORTFOLIO_DELETED"
    PORTFOLIO_RECONCILED = "PORTFOLIO_RECONCILED"
    ASSET_ATTACHED = "ASSET_ATTACHED"
    ASSET_DETACHED = "ASSET_DETACHED"
    LOT_ADDED = "LOT_ADDED"
    LOT_UPDATED = "LOT_UPDATED"
    LOT_DELETED = "LOT_DELETED"
    LOTS_REMOVED = "LOTS_REMOVED"
    NET_WORTH_CALCULATED = "NET_WORTH_CALCULATED"


def to_decimal(value: Any) -> Decimal:
    """Convert a stored or user-supplied number to Decimal without float noise."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def to_date(value: Any) -> date:
    """Convert a stored or user-supplied value to a date."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def _to_datetime(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


@dataclass
class Asset:
    """
    A tradable instrument shared by reference from lots and portfolios.

    An asset has no back-reference to its holders; whether it is still in
    use must be answered by querying lots.

    Attributes:
        asset_id: Unique identifier
        symbol: Ticker symbol, stored upper-case
        asset_type: Quote type reported by the provider (EQUITY, ETF, ...)
        exchange: Full exchange name
        short_name: Provider short name
        long_name: Provider long name
        display_name: Display name (falls back to long_name)
        currency: Trading currency
        long_business_summary: Profile text, empty if the profile lookup failed
        created_at: When the record was created
    """
    asset_id: str
    symbol: str
    asset_type: str = ""
    exchange: str = ""
    short_name: str = ""
    long_name: str = ""
    display_name: str = ""
    currency: str = ""
    long_business_summary: str = ""
    created_at: Optional[datetime] = None

    def to_document(self) -> dict:
        return {
            "id": self.asset_id,
            "symbol": self.symbol,
            "asset_type": self.asset_type,
            "exchange": self.exchange,
            "short_name": self.short_name,
            "long_name": self.long_name,
            "display_name": self.display_name,
            "currency": self.currency,
            "long_business_summary": self.long_business_summary,
            "created_at": self.created_at,
        }

    @classmethod
    def from_document(cls, doc: dict) -> "Asset":
        return cls(
            asset_id=doc["id"],
            symbol=doc["symbol"],
            asset_type=doc.get("asset_type") or "",
            exchange=doc.get("exchange") or "",
            short_name=doc.get("short_name") or "",
            long_name=doc.get("long_name") or "",
            display_name=doc.get("display_name") or "",
            currency=doc.get("currency") or "",
            long_business_summary=doc.get("long_business_summary") or "",
            created_at=_to_datetime(doc.get("created_at")),
        )


@dataclass
class Lot:
    """
    One acquisition of one asset inside one portfolio.

    The portfolio name and asset symbol are snapshots taken when the lot is
    created; renaming the portfolio later does not update them.

    Attributes:
        lot_id: Unique identifier
        user_id: Owner of the lot
        portfolio_id: Owning portfolio
        portfolio_name: Portfolio name at creation time
        asset_id: Asset held
        asset_symbol: Asset symbol at creation time
        quantity: Number of units acquired
        acquired_date: Acquisition date
        unit_price: Price paid per unit
        cost_basis: quantity * unit_price
        created_at: When the record was created
        updated_at: When the record was last updated
    """
    lot_id: str
    user_id: str
    portfolio_id: str
    portfolio_name: str
    asset_id: str
    asset_symbol: str
    quantity: Decimal
    acquired_date: date
    unit_price: Decimal
    cost_basis: Decimal
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_document(self) -> dict:
        return {
            "id": self.lot_id,
            "user_id": self.user_id,
            "portfolio_id": self.portfolio_id,
            "portfolio_name": self.portfolio_name,
            "asset_id": self.asset_id,
            "asset_symbol": self.asset_symbol,
            "quantity": self.quantity,
            "acquired_date": self.acquired_date,
            "unit_price": self.unit_price,
            "cost_basis": self.cost_basis,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_document(cls, doc: dict) -> "Lot":
        return cls(
            lot_id=doc["id"],
            user_id=doc["user_id"],
            portfolio_id=doc["portfolio_id"],
            portfolio_name=doc.get("portfolio_name") or "",
            asset_id=doc["asset_id"],
            asset_symbol=doc.get("asset_symbol") or "",
            quantity=to_decimal(doc["quantity"]),
            acquired_date=to_date(doc["acquired_date"]),
            unit_price=to_decimal(doc["unit_price"]),
            cost_basis=to_decimal(doc["cost_basis"]),
            created_at=_to_datetime(doc.get("created_at")),
            updated_at=_to_datetime(doc.get("updated_at")),
        )


@dataclass
class Portfolio:
    """
    A named grouping of assets and lots owned by one user.

    Attributes:
        portfolio_id: Unique identifier
        user_id: Owner of the portfolio
        name: Portfolio name, unique per user
        description: Free-text description
        asset_ids: Member asset ids (set semantics)
        lot_ids: Member lot ids (set semantics)
        created_at: When the record was created
        updated_at: When the record was last updated
    """
    portfolio_id: str
    user_id: str
    name: str
    description: str = ""
    asset_ids: list[str] = field(default_factory=list)
    lot_ids: list[str] = field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_document(self) -> dict:
        return {
            "id": self.portfolio_id,
            "user_id": self.user_id,
            "name": self.name,
            "description": self.description,
            "asset_ids": list(self.asset_ids),
            "lot_ids": list(self.lot_ids),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_document(cls, doc: dict) -> "Portfolio":
        return cls(
            portfolio_id=doc["id"],
            user_id=doc["user_id"],
            name=doc["name"],
            description=doc.get("description") or "",
            asset_ids=list(doc.get("asset_ids") or []),
            lot_ids=list(doc.get("lot_ids") or []),
            created_at=_to_datetime(doc.get("created_at")),
            updated_at=_to_datetime(doc.get("updated_at")),
        )


@dataclass
class Quote:
    """
    Point-in-time price and day's change for a symbol.

    The descriptive fields are only used when a new Asset is created from
    the quote.

    Attributes:
        symbol: Ticker symbol as reported by the provider
        price: Current (possibly delayed) market price
        change: Price change since the prior close
        available: False when this is a substituted zero quote
        quote_type: Provider quote type
        exchange: Full exchange name
        short_name: Short name
        long_name: Long name
        display_name: Display name
        currency: Trading currency
    """
    symbol: str
    price: Decimal
    change: Decimal
    available: bool = True
    quote_type: str = ""
    exchange: str = ""
    short_name: str = ""
    long_name: str = ""
    display_name: str = ""
    currency: str = ""

    @classmethod
    def zero(cls, symbol: str) -> "Quote":
        """Zero-valued quote used when the provider returned nothing usable."""
        return cls(symbol=symbol, price=ZERO, change=ZERO, available=False)


@dataclass
class OperationResult:
    """
    Structured outcome of a ledger operation.

    Expected business conditions (missing symbol, duplicate name, lots still
    present, ...) are reported here instead of being raised.

    Attributes:
        success: Whether the operation achieved its goal
        message: Human-readable summary
        status: Outcome code
        data: Requested data or partial state, operation specific
        details: Extra machine-readable context (offending ids, flags)
    """
    success: bool
    message: str
    status: Status
    data: Any = None
    details: dict = field(default_factory=dict)

    @classmethod
    def ok(
        cls,
        data: Any = None,
        message: str = "",
        status: Status = Status.OK,
        **details: Any,
    ) -> "OperationResult":
        return cls(success=True, message=message, status=status, data=data, details=details)

    @classmethod
    def fail(
        cls,
        status: Status,
        message: str,
        data: Any = None,
        **details: Any,
    ) -> "OperationResult":
        return cls(success=False, message=message, status=status, data=data, details=details)

    @property
    def error_kind(self) -> Optional[ErrorKind]:
        return self.status.kind


@dataclass
class LotKeys:
    """Ownership keys for a new lot."""
    user_id: str
    portfolio_id: str
    asset_id: str


@dataclass
class ResolvedAsset:
    """Asset returned by the registry and whether it was just created."""
    asset: Asset
    created: bool


@dataclass
class LotUpdate:
    """Updated lot plus which of its editable fields changed."""
    lot: Lot
    quantity_changed: bool
    acquired_date_changed: bool
    unit_price_changed: bool


@dataclass
class LotRemoval:
    """
    Outcome of removing every lot of one asset from one portfolio.

    Attributes:
        removed_count: Number of lots deleted
        removed_lot_ids: Ids of the deleted lots
        failed_lot_ids: Ids whose deletion or detachment failed
    """
    removed_count: int = 0
    removed_lot_ids: list[str] = field(default_factory=list)
    failed_lot_ids: list[str] = field(default_factory=list)


@dataclass
class PortfolioRename:
    """What a rename actually changed."""
    portfolio: Portfolio
    name_changed: bool
    description_changed: bool
    old_name: str
    new_name: str
    old_description: str
    new_description: str


@dataclass
class PortfolioDeletion:
    """
    Deleted portfolio with the per-asset lot cleanup results.

    Attributes:
        portfolio: The deleted portfolio record
        removals: LotRemoval per asset id
        failed_asset_ids: Assets whose lot cleanup did not fully succeed
    """
    portfolio: Portfolio
    removals: dict[str, LotRemoval] = field(default_factory=dict)
    failed_asset_ids: list[str] = field(default_factory=list)


@dataclass
class AssetAttachment:
    """Asset added to a portfolio, or found already present."""
    asset: Asset
    already_present: bool


@dataclass
class PortfolioDetail:
    """
    Portfolio with its member ids populated into records.

    Ids that no longer resolve are listed separately and otherwise treated
    as absent.

    Attributes:
        portfolio: The portfolio record
        assets: Member assets sorted by symbol ascending
        lots: Member lots sorted by symbol ascending, acquired date descending
        missing_asset_ids: Member asset ids with no asset record
        missing_lot_ids: Member lot ids with no lot record
    """
    portfolio: Portfolio
    assets: list[Asset] = field(default_factory=list)
    lots: list[Lot] = field(default_factory=list)
    missing_asset_ids: list[str] = field(default_factory=list)
    missing_lot_ids: list[str] = field(default_factory=list)


@dataclass
class ReconcileReport:
    """Repairs applied to one portfolio's membership sets."""
    portfolio_id: str
    dropped_lot_ids: list[str] = field(default_factory=list)
    attached_lot_ids: list[str] = field(default_factory=list)
    attached_asset_ids: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.dropped_lot_ids or self.attached_lot_ids or self.attached_asset_ids)


@dataclass(frozen=True)
class ValuationTotals:
    """
    Additive valuation totals for any scope (lot, asset, portfolio, user).

    Attributes:
        market_value: quantity * current price
        days_change: quantity * day's price change
        book_value: cost basis
        total_return: market value - cost basis
    """
    market_value: Decimal = ZERO
    days_change: Decimal = ZERO
    book_value: Decimal = ZERO
    total_return: Decimal = ZERO

    def __add__(self, other: "ValuationTotals") -> "ValuationTotals":
        return ValuationTotals(
            market_value=self.market_value + other.market_value,
            days_change=self.days_change + other.days_change,
            book_value=self.book_value + other.book_value,
            total_return=self.total_return + other.total_return,
        )

    @classmethod
    def sum(cls, items: list["ValuationTotals"]) -> "ValuationTotals":
        total = cls()
        for item in items:
            total = total + item
        return total


@dataclass
class LotSummary:
    """Mark-to-market valuation of a single lot."""
    lot: Lot
    price: Decimal
    change: Decimal
    totals: ValuationTotals

    @classmethod
    def from_lot(cls, lot: Lot, quote: Quote) -> "LotSummary":
        """Value a lot at the quoted price."""
        market_value = lot.quantity * quote.price
        return cls(
            lot=lot,
            price=quote.price,
            change=quote.change,
            totals=ValuationTotals(
                market_value=market_value,
                days_change=lot.quantity * quote.change,
                book_value=lot.cost_basis,
                total_return=market_value - lot.cost_basis,
            ),
        )


@dataclass
class AssetSummary:
    """
    Valuation of one asset within one portfolio.

    Attributes:
        asset: The asset record
        price: Price used for every lot of the asset
        change: Day's change used for every lot of the asset
        quote_available: False when a zero quote was substituted
        quantity: Total quantity across lots
        lot_count: Number of lots
        totals: Sum of the lot totals
        lots: Lot summaries
    """
    asset: Asset
    price: Decimal
    change: Decimal
    quote_available: bool
    quantity: Decimal
    lot_count: int
    totals: ValuationTotals
    lots: list[LotSummary] = field(default_factory=list)


@dataclass
class PortfolioSummary:
    """Valuation of one portfolio: sum of its asset totals."""
    portfolio_id: str
    name: str
    description: str
    totals: ValuationTotals
    assets: list[AssetSummary] = field(default_factory=list)


@dataclass
class NetWorthReport:
    """
    Valuation tree for one user.

    Attributes:
        user_id: The user valued
        totals: Sum of the portfolio totals
        portfolios: Portfolio summaries sorted by name
        quotes_fetched: Distinct symbols priced during the run
        generated_at: When the report was produced
    """
    user_id: str
    totals: ValuationTotals
    portfolios: list[PortfolioSummary] = field(default_factory=list)
    quotes_fetched: int = 0
    generated_at: datetime = field(default_factory=datetime.now)


@dataclass
class ActivityLogEntry:
    """
    Entry for the append-only activity log.

    Attributes:
        timestamp: When the action occurred
        action_type: Type of action
        portfolio_id: Portfolio involved (if applicable)
        details: JSON-serializable details dictionary
    """
    timestamp: datetime
    action_type: ActionType
    portfolio_id: Optional[str]
    details: dict

    @classmethod
    def create(
        cls,
        action_type: ActionType,
        portfolio_id: Optional[str],
        details: dict,
    ) -> "ActivityLogEntry":
        """Factory method with auto-generated timestamp."""
        return cls(
            timestamp=datetime.now(),
            action_type=action_type,
            portfolio_id=portfolio_id,
            details=details,
        )
