"""
Lot ledger.

Owns lot records and their cost basis. Adding or deleting a lot is two
separate writes (the lot record, then the portfolio's lot-id set) with no
rollback: if the second write fails the first is left in place and the
partial state is reported to the caller.
"""

import logging
import uuid
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from lotbook.models import (
    ActionType,
    Lot,
    LotKeys,
    LotRemoval,
    LotUpdate,
    OperationResult,
    Portfolio,
    Status,
)
from lotbook.logging.activity_log import ActivityLogger
from lotbook.storage.base import ASSETS, LOTS, PORTFOLIOS, DocumentStore, StoreError


logger = logging.getLogger(__name__)

LOT_SORT = [("asset_symbol", 1), ("acquired_date", -1)]


class LotValidationError(Exception):
    """Raised when caller-supplied lot values fail a structural rule."""
    pass


def parse_positive_decimal(value: Any, field_name: str) -> Decimal:
    """
    Parse a strictly positive decimal.

    Raises:
        LotValidationError: If the value is not a finite number > 0
    """
    if isinstance(value, bool):
        raise LotValidationError(f"Invalid {field_name}: {value}")
    try:
        result = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise LotValidationError(f"Invalid {field_name}: {value}")

    if not result.is_finite() or result <= 0:
        raise LotValidationError(f"{field_name} must be positive, got {value}")

    return result


def parse_acquired_date(value: Any) -> date:
    """
    Parse an acquisition date from a date, datetime or YYYY-MM-DD string.

    Raises:
        LotValidationError: If the date cannot be parsed
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return datetime.strptime(value.strip()[:10], "%Y-%m-%d").date()
        except ValueError:
            pass
    raise LotValidationError(f"Invalid acquired date: {value}. Expected YYYY-MM-DD")


def cost_basis(quantity: Decimal, unit_price: Decimal) -> Decimal:
    """Book value of a lot."""
    return quantity * unit_price


class LotLedger:
    """Creates, updates and deletes lots while keeping portfolio lot sets in step."""

    def __init__(self, store: DocumentStore, activity_log: Optional[ActivityLogger] = None):
        self._store = store
        self._activity_log = activity_log

    def get(self, lot_id: str) -> OperationResult:
        """Get a lot by id."""
        try:
            doc = self._store.get(LOTS, lot_id)
        except StoreError as e:
            return OperationResult.fail(Status.PERSISTENCE_ERROR, f"Lot lookup failed: {e}")

        if doc is None:
            return OperationResult.fail(Status.NOT_FOUND, f"Lot {lot_id} was not found", lot_id=lot_id)
        return OperationResult.ok(Lot.from_document(doc), f"Found lot {lot_id}")

    def add_lot(
        self,
        keys: LotKeys,
        quantity: Any,
        acquired_date: Any,
        unit_price: Any,
    ) -> OperationResult:
        """
        Add a lot and attach it to its portfolio.

        The asset must already be a member of the portfolio, and the
        portfolio must belong to keys.user_id. The portfolio name and asset
        symbol are copied onto the lot.

        Args:
            keys: Owning user, portfolio and asset
            quantity: Units acquired, must be > 0
            acquired_date: Acquisition date
            unit_price: Price per unit, must be > 0

        Returns:
            OperationResult with the new Lot as data. If the portfolio
            update fails after the lot was stored, the result fails with
            PERSISTENCE_ERROR, still carries the lot, and sets
            details["lot_created"].
        """
        try:
            quantity = parse_positive_decimal(quantity, "quantity")
            unit_price = parse_positive_decimal(unit_price, "unit price")
            acquired = parse_acquired_date(acquired_date)
        except LotValidationError as e:
            return OperationResult.fail(Status.VALIDATION_ERROR, str(e))

        try:
            portfolio_doc = self._store.get(PORTFOLIOS, keys.portfolio_id)
            asset_doc = self._store.get(ASSETS, keys.asset_id)
        except StoreError as e:
            return OperationResult.fail(Status.PERSISTENCE_ERROR, f"Lot owner lookup failed: {e}")

        if portfolio_doc is None or portfolio_doc.get("user_id") != keys.user_id:
            return OperationResult.fail(
                Status.NOT_FOUND,
                f"Portfolio {keys.portfolio_id} was not found for user {keys.user_id}",
                portfolio_id=keys.portfolio_id,
            )
        if asset_doc is None:
            return OperationResult.fail(
                Status.NOT_FOUND, f"Asset {keys.asset_id} was not found", asset_id=keys.asset_id
            )

        portfolio = Portfolio.from_document(portfolio_doc)
        if keys.asset_id not in portfolio.asset_ids:
            return OperationResult.fail(
                Status.ASSET_NOT_IN_PORTFOLIO,
                f"Asset {asset_doc['symbol']} is not in the portfolio {portfolio.name}",
                asset_id=keys.asset_id,
                portfolio_id=keys.portfolio_id,
            )

        now = datetime.now()
        lot = Lot(
            lot_id=str(uuid.uuid4()),
            user_id=keys.user_id,
            portfolio_id=portfolio.portfolio_id,
            portfolio_name=portfolio.name,
            asset_id=keys.asset_id,
            asset_symbol=asset_doc["symbol"],
            quantity=quantity,
            acquired_date=acquired,
            unit_price=unit_price,
            cost_basis=cost_basis(quantity, unit_price),
            created_at=now,
            updated_at=now,
        )

        try:
            lot = Lot.from_document(self._store.insert(LOTS, lot.to_document()))
        except StoreError as e:
            return OperationResult.fail(
                Status.PERSISTENCE_ERROR,
                f"ERROR adding lot to portfolio {portfolio.name} for asset {lot.asset_symbol}: {e}",
            )

        try:
            attached = self._store.add_to_set(PORTFOLIOS, portfolio.portfolio_id, "lot_ids", lot.lot_id)
        except StoreError as e:
            attached = None
            logger.warning("Lot %s stored but not attached to portfolio %s: %s",
                           lot.lot_id, portfolio.portfolio_id, e)

        if attached is None:
            return OperationResult.fail(
                Status.PERSISTENCE_ERROR,
                f"Lot {lot.lot_id} was added but portfolio {portfolio.name} was not updated",
                data=lot,
                lot_created=True,
                portfolio_attached=False,
            )

        if self._activity_log:
            self._activity_log.log_lot_added(lot)

        return OperationResult.ok(
            lot,
            f"Added lot to portfolio {lot.portfolio_name} for asset {lot.asset_symbol} "
            f"with quantity of {lot.quantity}, purchased on {lot.acquired_date}, "
            f"with a unit cost of ${lot.unit_price}, and total basis value of ${lot.cost_basis}",
            status=Status.CREATED,
        )

    def add_lots(self, keys: LotKeys, entries: list[dict]) -> list[OperationResult]:
        """
        Add several lots for the same portfolio and asset.

        Args:
            keys: Owning user, portfolio and asset
            entries: Dicts with quantity, acquired_date and unit_price

        Returns:
            One OperationResult per entry, in order
        """
        return [
            self.add_lot(
                keys,
                entry.get("quantity"),
                entry.get("acquired_date"),
                entry.get("unit_price"),
            )
            for entry in entries
        ]

    def update_lot(
        self,
        lot_id: str,
        quantity: Any = None,
        acquired_date: Any = None,
        unit_price: Any = None,
    ) -> OperationResult:
        """
        Update the editable fields of a lot.

        Only supplied fields are compared against the stored values. When
        quantity or unit price changes, the cost basis is recomputed from
        the new values. When nothing changes, no write is performed and the
        result is NO_CHANGE.

        Returns:
            OperationResult with a LotUpdate as data
        """
        try:
            doc = self._store.get(LOTS, lot_id)
        except StoreError as e:
            return OperationResult.fail(Status.PERSISTENCE_ERROR, f"Lot lookup failed: {e}")

        if doc is None:
            return OperationResult.fail(Status.NOT_FOUND, f"Lot {lot_id} was not found", lot_id=lot_id)

        current = Lot.from_document(doc)

        try:
            new_quantity = parse_positive_decimal(quantity, "quantity") if quantity is not None else None
            new_price = parse_positive_decimal(unit_price, "unit price") if unit_price is not None else None
            new_date = parse_acquired_date(acquired_date) if acquired_date is not None else None
        except LotValidationError as e:
            return OperationResult.fail(Status.VALIDATION_ERROR, str(e), lot_id=lot_id)

        quantity_changed = new_quantity is not None and new_quantity != current.quantity
        date_changed = new_date is not None and new_date != current.acquired_date
        price_changed = new_price is not None and new_price != current.unit_price

        if not (quantity_changed or date_changed or price_changed):
            return OperationResult.fail(
                Status.NO_CHANGE,
                f"No changes were detected for the lot {lot_id}, it was not updated",
                data=LotUpdate(current, False, False, False),
            )

        changes: dict[str, Any] = {"updated_at": datetime.now()}
        if quantity_changed:
            changes["quantity"] = new_quantity
        if date_changed:
            changes["acquired_date"] = new_date
        if price_changed:
            changes["unit_price"] = new_price
        if quantity_changed or price_changed:
            changes["cost_basis"] = cost_basis(
                new_quantity if quantity_changed else current.quantity,
                new_price if price_changed else current.unit_price,
            )

        try:
            updated = self._store.update(LOTS, lot_id, changes)
        except StoreError as e:
            return OperationResult.fail(
                Status.PERSISTENCE_ERROR,
                f"Update unable to be completed for lot {lot_id}: {e}",
            )

        if updated is None:
            return OperationResult.fail(Status.NOT_FOUND, f"Lot {lot_id} was not found", lot_id=lot_id)

        lot = Lot.from_document(updated)
        if self._activity_log:
            self._activity_log.record(
                ActionType.LOT_UPDATED,
                lot.portfolio_id,
                lot_id=lot.lot_id,
                quantity_changed=quantity_changed,
                acquired_date_changed=date_changed,
                unit_price_changed=price_changed,
                cost_basis=lot.cost_basis,
            )

        return OperationResult.ok(
            LotUpdate(lot, quantity_changed, date_changed, price_changed),
            f"Lot {lot_id} was updated",
        )

    def delete_lot(self, lot_id: str) -> OperationResult:
        """
        Delete a lot, then remove its id from the owning portfolio.

        Returns:
            OperationResult with the deleted Lot as data. If the portfolio
            update fails the lot stays deleted, the portfolio keeps a
            dangling id, and the result fails with PERSISTENCE_ERROR and
            details["portfolio_detached"] = False.
        """
        try:
            doc = self._store.delete(LOTS, lot_id)
        except StoreError as e:
            return OperationResult.fail(Status.PERSISTENCE_ERROR, f"Lot {lot_id} delete failed: {e}")

        if doc is None:
            return OperationResult.fail(
                Status.NOT_FOUND,
                f"Lot {lot_id} was not found so it could not be deleted",
                lot_id=lot_id,
            )

        lot = Lot.from_document(doc)

        try:
            detached = self._store.pull(PORTFOLIOS, lot.portfolio_id, "lot_ids", lot.lot_id)
        except StoreError as e:
            logger.warning("Lot %s deleted but portfolio %s still references it: %s",
                           lot.lot_id, lot.portfolio_id, e)
            return OperationResult.fail(
                Status.PERSISTENCE_ERROR,
                f"Lot {lot.lot_id} was deleted but portfolio {lot.portfolio_name} was not updated: {e}",
                data=lot,
                lot_deleted=True,
                portfolio_detached=False,
            )

        if detached is None:
            logger.warning("Deleted lot %s belonged to missing portfolio %s", lot.lot_id, lot.portfolio_id)

        if self._activity_log:
            self._activity_log.record(
                ActionType.LOT_DELETED,
                lot.portfolio_id,
                lot_id=lot.lot_id,
                asset_symbol=lot.asset_symbol,
                cost_basis=lot.cost_basis,
            )

        return OperationResult.ok(
            lot,
            f"Lot {lot.lot_id} was deleted from the asset {lot.asset_symbol} "
            f"in the portfolio called {lot.portfolio_name}",
        )

    def lots_for(self, portfolio_id: str, asset_id: str) -> OperationResult:
        """Get the lots of one asset in one portfolio, newest first per symbol."""
        try:
            docs = self._store.find(
                LOTS, {"portfolio_id": portfolio_id, "asset_id": asset_id}, sort=LOT_SORT
            )
        except StoreError as e:
            return OperationResult.fail(Status.PERSISTENCE_ERROR, f"Lot query failed: {e}")
        return OperationResult.ok([Lot.from_document(d) for d in docs], f"Found {len(docs)} lots")

    def list_user_lots(self, user_id: str) -> OperationResult:
        """
        Get every lot of a user.

        Sorted by portfolio name, asset symbol, then acquired date (newest
        first).
        """
        try:
            docs = self._store.find(
                LOTS,
                {"user_id": user_id},
                sort=[("portfolio_name", 1)] + LOT_SORT,
            )
        except StoreError as e:
            return OperationResult.fail(Status.PERSISTENCE_ERROR, f"Lot query failed: {e}")
        return OperationResult.ok(
            [Lot.from_document(d) for d in docs],
            f"There were {len(docs)} lots retrieved for {user_id}",
        )

    def remove_all_lots(self, portfolio_id: str, asset_id: str) -> OperationResult:
        """
        Delete every lot of one asset in one portfolio.

        Each lot goes through delete_lot, so it is also removed from the
        portfolio's lot set. A failure partway through does not roll back
        lots already deleted.

        Returns:
            OperationResult with a LotRemoval as data; PARTIAL_FAILURE if
            any lot could not be deleted
        """
        removal = LotRemoval()

        try:
            docs = self._store.find(LOTS, {"portfolio_id": portfolio_id, "asset_id": asset_id})
        except StoreError as e:
            return OperationResult.fail(
                Status.PERSISTENCE_ERROR,
                f"Not able to find lots for portfolio {portfolio_id}: {e}",
                data=removal,
            )

        for doc in docs:
            result = self.delete_lot(doc["id"])
            if result.success or result.details.get("lot_deleted"):
                removal.removed_lot_ids.append(doc["id"])
            elif result.status != Status.NOT_FOUND:
                removal.failed_lot_ids.append(doc["id"])
        removal.removed_count = len(removal.removed_lot_ids)

        if removal.removed_count and self._activity_log:
            self._activity_log.record(
                ActionType.LOTS_REMOVED,
                portfolio_id,
                asset_id=asset_id,
                removed_lot_ids=removal.removed_lot_ids,
                failed_lot_ids=removal.failed_lot_ids,
            )

        if removal.failed_lot_ids:
            logger.warning("Lots %s of asset %s could not be removed from portfolio %s",
                           removal.failed_lot_ids, asset_id, portfolio_id)
            return OperationResult.fail(
                Status.PARTIAL_FAILURE,
                f"Removed {removal.removed_count} lots, "
                f"{len(removal.failed_lot_ids)} could not be removed",
                data=removal,
                failed_lot_ids=removal.failed_lot_ids,
            )

        if not docs:
            return OperationResult.ok(
                removal,
                f"No lots found for portfolio {portfolio_id}, asset {asset_id}",
            )
        return OperationResult.ok(removal, f"Removed {removal.removed_count} lots")
