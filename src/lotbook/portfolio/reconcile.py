"""
Membership repair for portfolios.

Lot add and delete are two separate writes, so a failure between them can
leave a portfolio's lot set out of step with the lots collection. These
functions bring the sets back in line with the lot records:

- lot ids that no longer resolve (or resolve to another portfolio's lot)
  are dropped
- lots that point at the portfolio but are missing from its lot set are
  attached
- assets referenced by those lots but missing from the asset set are
  attached
"""

import logging
from typing import Optional

from lotbook.models import (
    ActionType,
    OperationResult,
    Portfolio,
    ReconcileReport,
    Status,
)
from lotbook.logging.activity_log import ActivityLogger
from lotbook.storage.base import ASSETS, LOTS, PORTFOLIOS, DocumentStore, StoreError


logger = logging.getLogger(__name__)


def reconcile(
    store: DocumentStore,
    portfolio_id: str,
    activity_log: Optional[ActivityLogger] = None,
) -> OperationResult:
    """
    Repair one portfolio's asset and lot sets.

    Args:
        store: Document store holding the portfolio
        portfolio_id: Portfolio to repair
        activity_log: Optional audit log

    Returns:
        OperationResult with a ReconcileReport as data. On a store failure
        the report lists the repairs applied before it.
    """
    report = ReconcileReport(portfolio_id=portfolio_id)

    try:
        doc = store.get(PORTFOLIOS, portfolio_id)
        if doc is None:
            return OperationResult.fail(
                Status.NOT_FOUND,
                f"Portfolio {portfolio_id} was not found",
                portfolio_id=portfolio_id,
            )
        portfolio = Portfolio.from_document(doc)
        _repair(store, portfolio, report)
    except StoreError as e:
        return OperationResult.fail(
            Status.PERSISTENCE_ERROR,
            f"Reconciliation of portfolio {portfolio_id} stopped: {e}",
            data=report,
        )

    if report.changed:
        logger.info("Reconciled portfolio %s: dropped %d lots, attached %d lots and %d assets",
                    portfolio_id, len(report.dropped_lot_ids),
                    len(report.attached_lot_ids), len(report.attached_asset_ids))
        if activity_log:
            activity_log.record(
                ActionType.PORTFOLIO_RECONCILED,
                portfolio_id,
                dropped_lot_ids=report.dropped_lot_ids,
                attached_lot_ids=report.attached_lot_ids,
                attached_asset_ids=report.attached_asset_ids,
            )
        return OperationResult.ok(report, f"Portfolio {portfolio.name} was repaired")

    return OperationResult.ok(report, f"Portfolio {portfolio.name} is consistent")


def reconcile_user(
    store: DocumentStore,
    user_id: str,
    activity_log: Optional[ActivityLogger] = None,
) -> OperationResult:
    """
    Repair every portfolio of a user.

    Returns:
        OperationResult with a list of ReconcileReport as data;
        PARTIAL_FAILURE if any portfolio could not be repaired
    """
    try:
        docs = store.find(PORTFOLIOS, {"user_id": user_id}, sort=[("name", 1)])
    except StoreError as e:
        return OperationResult.fail(Status.PERSISTENCE_ERROR, f"Portfolio query failed: {e}")

    reports = []
    failed = []
    for doc in docs:
        result = reconcile(store, doc["id"], activity_log)
        if result.data is not None:
            reports.append(result.data)
        if not result.success:
            failed.append(doc["id"])

    if failed:
        return OperationResult.fail(
            Status.PARTIAL_FAILURE,
            f"{len(failed)} of {len(docs)} portfolios could not be reconciled",
            data=reports,
            failed_portfolio_ids=failed,
        )

    repaired = sum(1 for r in reports if r.changed)
    return OperationResult.ok(reports, f"Reconciled {len(reports)} portfolios, {repaired} repaired")


def _repair(store: DocumentStore, portfolio: Portfolio, report: ReconcileReport) -> None:
    pid = portfolio.portfolio_id

    members = {}
    if portfolio.lot_ids:
        members = {d["id"]: d for d in store.find(LOTS, {"id": portfolio.lot_ids})}

    for lot_id in portfolio.lot_ids:
        lot_doc = members.get(lot_id)
        if lot_doc is None or lot_doc.get("portfolio_id") != pid:
            store.pull(PORTFOLIOS, pid, "lot_ids", lot_id)
            report.dropped_lot_ids.append(lot_id)

    for lot_doc in store.find(LOTS, {"portfolio_id": pid}):
        if lot_doc["id"] not in portfolio.lot_ids:
            store.add_to_set(PORTFOLIOS, pid, "lot_ids", lot_doc["id"])
            report.attached_lot_ids.append(lot_doc["id"])

        asset_id = lot_doc["asset_id"]
        if asset_id in portfolio.asset_ids or asset_id in report.attached_asset_ids:
            continue
        if store.get(ASSETS, asset_id) is None:
            logger.warning("Lot %s references missing asset %s, not attached", lot_doc["id"], asset_id)
            continue
        store.add_to_set(PORTFOLIOS, pid, "asset_ids", asset_id)
        report.attached_asset_ids.append(asset_id)
