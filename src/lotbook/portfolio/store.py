"""
Portfolio store.

Creates, renames and deletes portfolios and edits their asset membership.
Membership sets are changed only through the store's add_to_set / pull
operators. Read paths populate member ids into records and tolerate ids
that no longer resolve.
"""

import logging
import uuid
from datetime import datetime
from typing import Optional

from lotbook.models import (
    ActionType,
    Asset,
    AssetAttachment,
    Lot,
    OperationResult,
    Portfolio,
    PortfolioDeletion,
    PortfolioDetail,
    PortfolioRename,
    Status,
)
from lotbook.logging.activity_log import ActivityLogger
from lotbook.portfolio.assets import AssetRegistry
from lotbook.portfolio.lots import LotLedger
from lotbook.storage.base import ASSETS, LOTS, PORTFOLIOS, DocumentStore, StoreError


logger = logging.getLogger(__name__)


class PortfolioStore:
    """Owns portfolio records and their asset and lot membership."""

    def __init__(
        self,
        store: DocumentStore,
        registry: AssetRegistry,
        ledger: LotLedger,
        activity_log: Optional[ActivityLogger] = None,
    ):
        self._store = store
        self._registry = registry
        self._ledger = ledger
        self._activity_log = activity_log

    def get(self, portfolio_id: str) -> OperationResult:
        """Get a portfolio record by id."""
        try:
            doc = self._store.get(PORTFOLIOS, portfolio_id)
        except StoreError as e:
            return OperationResult.fail(Status.PERSISTENCE_ERROR, f"Portfolio lookup failed: {e}")

        if doc is None:
            return _not_found(portfolio_id)
        return OperationResult.ok(Portfolio.from_document(doc), f"Found portfolio {doc['name']}")

    def list_for_user(self, user_id: str) -> OperationResult:
        """Get every portfolio of a user, sorted by name."""
        try:
            docs = self._store.find(PORTFOLIOS, {"user_id": user_id}, sort=[("name", 1)])
        except StoreError as e:
            return OperationResult.fail(Status.PERSISTENCE_ERROR, f"Portfolio query failed: {e}")
        return OperationResult.ok(
            [Portfolio.from_document(d) for d in docs],
            f"Found {len(docs)} portfolios for {user_id}",
        )

    def name_available(
        self,
        user_id: str,
        name: str,
        exclude_id: Optional[str] = None,
    ) -> bool:
        """
        Check that no other portfolio of the user has this name.

        Args:
            user_id: Owner
            name: Candidate name (compared after trimming)
            exclude_id: Portfolio to ignore, used when renaming

        Raises:
            StoreError: If the query fails
        """
        docs = self._store.find(PORTFOLIOS, {"user_id": user_id, "name": name.strip()})
        return all(d["id"] == exclude_id for d in docs)

    def create(
        self,
        user_id: str,
        name: str,
        description: str = "",
        initial_symbols: Optional[list[str]] = None,
    ) -> OperationResult:
        """
        Create a portfolio with an initial set of assets.

        Each initial symbol is resolved through the asset registry on a
        best-effort basis: a symbol that cannot be resolved is skipped and
        listed in details["skipped_symbols"].

        Args:
            user_id: Owner
            name: Portfolio name, unique per user
            description: Free-text description
            initial_symbols: Symbols of the starting assets

        Returns:
            OperationResult with the new Portfolio as data
        """
        name = (name or "").strip()
        if not user_id:
            return OperationResult.fail(Status.VALIDATION_ERROR, "A user id is required")
        if not name:
            return OperationResult.fail(Status.VALIDATION_ERROR, "A portfolio name is required")

        try:
            available = self.name_available(user_id, name)
        except StoreError as e:
            return OperationResult.fail(Status.PERSISTENCE_ERROR, f"Portfolio name check failed: {e}")

        if not available:
            return OperationResult.fail(
                Status.DUPLICATE_NAME,
                f"A portfolio with the name {name} already exists",
                name=name,
            )

        asset_ids = []
        skipped = []
        for symbol in initial_symbols or []:
            resolved = self._registry.resolve_or_create(symbol)
            if not resolved.success:
                logger.warning("Skipping initial symbol %s: %s", symbol, resolved.message)
                skipped.append(symbol)
                continue
            asset_id = resolved.data.asset.asset_id
            if asset_id not in asset_ids:
                asset_ids.append(asset_id)

        now = datetime.now()
        portfolio = Portfolio(
            portfolio_id=str(uuid.uuid4()),
            user_id=user_id,
            name=name,
            description=description or "",
            asset_ids=asset_ids,
            lot_ids=[],
            created_at=now,
            updated_at=now,
        )

        try:
            portfolio = Portfolio.from_document(self._store.insert(PORTFOLIOS, portfolio.to_document()))
        except StoreError as e:
            return OperationResult.fail(Status.PERSISTENCE_ERROR, f"Error creating portfolio {name}: {e}")

        if self._activity_log:
            self._activity_log.log_portfolio_created(portfolio, skipped)

        return OperationResult.ok(
            portfolio,
            f"Portfolio {name} created with {len(asset_ids)} assets",
            status=Status.CREATED,
            skipped_symbols=skipped,
        )

    def rename(
        self,
        portfolio_id: str,
        new_name: Optional[str] = None,
        new_description: Optional[str] = None,
    ) -> OperationResult:
        """
        Change a portfolio's name and/or description.

        Only supplied values that differ from the stored ones are written.
        Lots keep the portfolio name they were created with.

        Returns:
            OperationResult with a PortfolioRename as data; NO_CHANGE when
            nothing differs, DUPLICATE_NAME when the user already has a
            portfolio with the new name
        """
        try:
            doc = self._store.get(PORTFOLIOS, portfolio_id)
        except StoreError as e:
            return OperationResult.fail(Status.PERSISTENCE_ERROR, f"Portfolio lookup failed: {e}")

        if doc is None:
            return _not_found(portfolio_id)

        current = Portfolio.from_document(doc)

        if new_name is not None:
            new_name = new_name.strip()
            if not new_name:
                return OperationResult.fail(Status.VALIDATION_ERROR, "A portfolio name cannot be blank")

        name_changed = new_name is not None and new_name != current.name
        description_changed = new_description is not None and new_description != current.description

        rename = PortfolioRename(
            portfolio=current,
            name_changed=name_changed,
            description_changed=description_changed,
            old_name=current.name,
            new_name=new_name if name_changed else current.name,
            old_description=current.description,
            new_description=new_description if description_changed else current.description,
        )

        if not (name_changed or description_changed):
            return OperationResult.fail(
                Status.NO_CHANGE,
                f"No changes were detected for the portfolio {current.name}, it was not updated",
                data=rename,
            )

        if name_changed:
            try:
                available = self.name_available(current.user_id, new_name, exclude_id=portfolio_id)
            except StoreError as e:
                return OperationResult.fail(Status.PERSISTENCE_ERROR, f"Portfolio name check failed: {e}")
            if not available:
                return OperationResult.fail(
                    Status.DUPLICATE_NAME,
                    f"A portfolio with the name {new_name} already exists",
                    name=new_name,
                )

        changes = {"updated_at": datetime.now()}
        if name_changed:
            changes["name"] = new_name
        if description_changed:
            changes["description"] = new_description

        try:
            updated = self._store.update(PORTFOLIOS, portfolio_id, changes)
        except StoreError as e:
            return OperationResult.fail(
                Status.PERSISTENCE_ERROR,
                f"Update unable to be completed for portfolio {current.name}: {e}",
            )

        if updated is None:
            return _not_found(portfolio_id)

        rename.portfolio = Portfolio.from_document(updated)

        if self._activity_log:
            self._activity_log.record(
                ActionType.PORTFOLIO_UPDATED,
                portfolio_id,
                name_changed=name_changed,
                description_changed=description_changed,
                old_name=rename.old_name,
                new_name=rename.new_name,
            )

        parts = []
        if name_changed:
            parts.append(f"name changed from {rename.old_name} to {rename.new_name}")
        if description_changed:
            parts.append("description changed")
        return OperationResult.ok(rename, f"Portfolio {' and '.join(parts)}")

    def delete(self, portfolio_id: str) -> OperationResult:
        """
        Delete a portfolio after removing the lots of each of its assets.

        Lot cleanup is best-effort per asset: a failure is recorded and the
        next asset is still processed, and the portfolio record is deleted
        regardless. Lots pointing at the portfolio under an asset that is
        not a member are swept as well.

        Returns:
            OperationResult with a PortfolioDeletion as data;
            PARTIAL_FAILURE if any lot cleanup failed
        """
        try:
            doc = self._store.get(PORTFOLIOS, portfolio_id)
        except StoreError as e:
            return OperationResult.fail(Status.PERSISTENCE_ERROR, f"Portfolio lookup failed: {e}")

        if doc is None:
            return _not_found(portfolio_id)

        portfolio = Portfolio.from_document(doc)
        deletion = PortfolioDeletion(portfolio=portfolio)

        asset_ids = list(portfolio.asset_ids)
        try:
            for lot_doc in self._store.find(LOTS, {"portfolio_id": portfolio_id}):
                if lot_doc["asset_id"] not in asset_ids:
                    logger.warning("Lot %s of portfolio %s references non-member asset %s",
                                   lot_doc["id"], portfolio_id, lot_doc["asset_id"])
                    asset_ids.append(lot_doc["asset_id"])
        except StoreError as e:
            logger.warning("Could not scan lots of portfolio %s: %s", portfolio_id, e)

        for asset_id in asset_ids:
            result = self._ledger.remove_all_lots(portfolio_id, asset_id)
            if result.data is not None:
                deletion.removals[asset_id] = result.data
            if not result.success:
                logger.warning("Lot cleanup for asset %s in portfolio %s failed: %s",
                               asset_id, portfolio_id, result.message)
                deletion.failed_asset_ids.append(asset_id)

        try:
            deleted = self._store.delete(PORTFOLIOS, portfolio_id)
        except StoreError as e:
            return OperationResult.fail(
                Status.PERSISTENCE_ERROR,
                f"Portfolio {portfolio.name} was not deleted: {e}",
                data=deletion,
            )

        if deleted is None:
            return _not_found(portfolio_id)

        if self._activity_log:
            self._activity_log.record(
                ActionType.PORTFOLIO_DELETED,
                portfolio_id,
                name=portfolio.name,
                removed_lot_ids=[
                    lot_id for removal in deletion.removals.values() for lot_id in removal.removed_lot_ids
                ],
                failed_asset_ids=deletion.failed_asset_ids,
            )

        if deletion.failed_asset_ids:
            return OperationResult.fail(
                Status.PARTIAL_FAILURE,
                f"Portfolio {portfolio.name} was deleted but lots of "
                f"{len(deletion.failed_asset_ids)} assets could not be removed",
                data=deletion,
                failed_asset_ids=deletion.failed_asset_ids,
            )

        return OperationResult.ok(deletion, f"Portfolio {portfolio.name} was deleted")

    def add_asset(self, portfolio_id: str, symbol: str) -> OperationResult:
        """
        Resolve a symbol and add the asset to a portfolio.

        Returns:
            OperationResult with an AssetAttachment as data. A registry
            failure is returned as is; ASSET_ALREADY_PRESENT when the asset
            is already a member (nothing is written).
        """
        try:
            doc = self._store.get(PORTFOLIOS, portfolio_id)
        except StoreError as e:
            return OperationResult.fail(Status.PERSISTENCE_ERROR, f"Portfolio lookup failed: {e}")

        if doc is None:
            return _not_found(portfolio_id)

        portfolio = Portfolio.from_document(doc)

        resolved = self._registry.resolve_or_create(symbol)
        if not resolved.success:
            return resolved

        asset = resolved.data.asset
        if asset.asset_id in portfolio.asset_ids:
            return OperationResult.fail(
                Status.ASSET_ALREADY_PRESENT,
                f"Asset {asset.symbol} is already in the portfolio {portfolio.name}",
                data=AssetAttachment(asset, already_present=True),
                asset_id=asset.asset_id,
            )

        try:
            updated = self._store.add_to_set(PORTFOLIOS, portfolio_id, "asset_ids", asset.asset_id)
        except StoreError as e:
            return OperationResult.fail(
                Status.PERSISTENCE_ERROR,
                f"Error adding {asset.symbol} to portfolio {portfolio.name}: {e}",
            )

        if updated is None:
            return _not_found(portfolio_id)

        if self._activity_log:
            self._activity_log.record(
                ActionType.ASSET_ATTACHED,
                portfolio_id,
                asset_id=asset.asset_id,
                symbol=asset.symbol,
                asset_created=resolved.data.created,
            )

        return OperationResult.ok(
            AssetAttachment(asset, already_present=False),
            f"Asset {asset.symbol} added to the portfolio {portfolio.name}",
            asset_created=resolved.data.created,
        )

    def remove_asset(self, portfolio_id: str, asset_id: str) -> OperationResult:
        """
        Remove an asset from a portfolio.

        Refused with LOTS_STILL_PRESENT while any lot of the asset remains in
        the portfolio; the offending ids are in details["lot_ids"].

        Returns:
            OperationResult with the updated Portfolio as data
        """
        try:
            doc = self._store.get(PORTFOLIOS, portfolio_id)
        except StoreError as e:
            return OperationResult.fail(Status.PERSISTENCE_ERROR, f"Portfolio lookup failed: {e}")

        if doc is None:
            return _not_found(portfolio_id)

        portfolio = Portfolio.from_document(doc)
        if asset_id not in portfolio.asset_ids:
            return OperationResult.fail(
                Status.ASSET_NOT_IN_PORTFOLIO,
                f"Asset {asset_id} is not in the portfolio {portfolio.name}",
                asset_id=asset_id,
            )

        try:
            remaining = self._store.find(LOTS, {"portfolio_id": portfolio_id, "asset_id": asset_id})
        except StoreError as e:
            return OperationResult.fail(Status.PERSISTENCE_ERROR, f"Lot query failed: {e}")

        if remaining:
            lot_ids = [d["id"] for d in remaining]
            return OperationResult.fail(
                Status.LOTS_STILL_PRESENT,
                f"Asset {asset_id} still has {len(lot_ids)} lots in the portfolio {portfolio.name}",
                lot_ids=lot_ids,
            )

        try:
            updated = self._store.pull(PORTFOLIOS, portfolio_id, "asset_ids", asset_id)
        except StoreError as e:
            return OperationResult.fail(
                Status.PERSISTENCE_ERROR,
                f"Error removing asset {asset_id} from portfolio {portfolio.name}: {e}",
            )

        if updated is None:
            return _not_found(portfolio_id)

        if self._activity_log:
            self._activity_log.record(ActionType.ASSET_DETACHED, portfolio_id, asset_id=asset_id)

        return OperationResult.ok(
            Portfolio.from_document(updated),
            f"Asset {asset_id} was removed from the portfolio {portfolio.name}",
        )

    def remove_asset_and_lots(self, portfolio_id: str, asset_id: str) -> OperationResult:
        """
        Remove every lot of an asset, then the asset itself, from a portfolio.

        The asset is detached only if the lot cleanup fully succeeded;
        otherwise the cleanup result is returned and the asset stays.
        """
        membership = self.get(portfolio_id)
        if not membership.success:
            return membership
        if asset_id not in membership.data.asset_ids:
            return OperationResult.fail(
                Status.ASSET_NOT_IN_PORTFOLIO,
                f"Asset {asset_id} is not in the portfolio {membership.data.name}",
                asset_id=asset_id,
            )

        cleanup = self._ledger.remove_all_lots(portfolio_id, asset_id)
        if not cleanup.success:
            return cleanup

        result = self.remove_asset(portfolio_id, asset_id)
        result.details["removed_lot_ids"] = cleanup.data.removed_lot_ids
        return result

    def load_detail(self, portfolio_id: str) -> OperationResult:
        """
        Get a portfolio with its member assets and lots populated.

        Returns:
            OperationResult with a PortfolioDetail as data
        """
        try:
            doc = self._store.get(PORTFOLIOS, portfolio_id)
            if doc is None:
                return _not_found(portfolio_id)
            detail = self._populate([Portfolio.from_document(doc)])[0]
        except StoreError as e:
            return OperationResult.fail(Status.PERSISTENCE_ERROR, f"Portfolio load failed: {e}")

        return OperationResult.ok(detail, f"Loaded portfolio {detail.portfolio.name}")

    def list_details(self, user_id: str) -> OperationResult:
        """
        Get every portfolio of a user with members populated, sorted by name.

        Returns:
            OperationResult with a list of PortfolioDetail as data
        """
        try:
            docs = self._store.find(PORTFOLIOS, {"user_id": user_id}, sort=[("name", 1)])
            details = self._populate([Portfolio.from_document(d) for d in docs])
        except StoreError as e:
            return OperationResult.fail(Status.PERSISTENCE_ERROR, f"Portfolio load failed: {e}")

        return OperationResult.ok(details, f"Loaded {len(details)} portfolios for {user_id}")

    def _populate(self, portfolios: list[Portfolio]) -> list[PortfolioDetail]:
        asset_ids = sorted({a for p in portfolios for a in p.asset_ids})
        lot_ids = sorted({lot_id for p in portfolios for lot_id in p.lot_ids})

        assets = {}
        if asset_ids:
            assets = {d["id"]: Asset.from_document(d) for d in self._store.find(ASSETS, {"id": asset_ids})}
        lots = {}
        if lot_ids:
            lots = {d["id"]: Lot.from_document(d) for d in self._store.find(LOTS, {"id": lot_ids})}

        details = []
        for portfolio in portfolios:
            detail = PortfolioDetail(portfolio=portfolio)

            for asset_id in portfolio.asset_ids:
                asset = assets.get(asset_id)
                if asset is None:
                    logger.warning("Portfolio %s references missing asset %s",
                                   portfolio.portfolio_id, asset_id)
                    detail.missing_asset_ids.append(asset_id)
                else:
                    detail.assets.append(asset)

            for lot_id in portfolio.lot_ids:
                lot = lots.get(lot_id)
                if lot is None or lot.portfolio_id != portfolio.portfolio_id:
                    logger.warning("Portfolio %s references missing lot %s",
                                   portfolio.portfolio_id, lot_id)
                    detail.missing_lot_ids.append(lot_id)
                else:
                    detail.lots.append(lot)

            detail.assets.sort(key=lambda a: a.symbol)
            detail.lots.sort(key=lambda lot: lot.acquired_date, reverse=True)
            detail.lots.sort(key=lambda lot: lot.asset_symbol)
            details.append(detail)

        return details


def _not_found(portfolio_id: str) -> OperationResult:
    return OperationResult.fail(
        Status.NOT_FOUND,
        f"Portfolio {portfolio_id} was not found",
        portfolio_id=portfolio_id,
    )
