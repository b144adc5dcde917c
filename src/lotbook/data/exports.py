"""
CSV exports of valuation reports and lot listings.
"""

from pathlib import Path

import pandas as pd

from lotbook.models import Lot, NetWorthReport


NET_WORTH_COLUMNS = [
    "portfolio",
    "symbol",
    "lot_id",
    "acquired_date",
    "quantity",
    "unit_price",
    "price",
    "change",
    "market_value",
    "days_change",
    "book_value",
    "total_return",
]

LOT_COLUMNS = [
    "lot_id",
    "portfolio",
    "symbol",
    "quantity",
    "acquired_date",
    "unit_price",
    "cost_basis",
]


def save_net_worth_report(report: NetWorthReport, output_path: str | Path) -> Path:
    """
    Save a net-worth report to CSV, one row per lot.

    Assets without lots get a single row with an empty lot_id and zero
    values so they still show up in the export.

    Args:
        report: Report produced by the valuation aggregator
        output_path: Path for output CSV file

    Returns:
        Path to the saved file
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    records = []
    for portfolio in report.portfolios:
        for asset in portfolio.assets:
            base = {
                "portfolio": portfolio.name,
                "symbol": asset.asset.symbol,
                "price": float(asset.price),
                "change": float(asset.change),
            }
            if not asset.lots:
                records.append({
                    **base,
                    "lot_id": "",
                    "acquired_date": "",
                    "quantity": 0.0,
                    "unit_price": 0.0,
                    "market_value": 0.0,
                    "days_change": 0.0,
                    "book_value": 0.0,
                    "total_return": 0.0,
                })
                continue

            for summary in asset.lots:
                records.append({
                    **base,
                    "lot_id": summary.lot.lot_id,
                    "acquired_date": summary.lot.acquired_date.isoformat(),
                    "quantity": float(summary.lot.quantity),
                    "unit_price": float(summary.lot.unit_price),
                    "market_value": float(summary.totals.market_value),
                    "days_change": float(summary.totals.days_change),
                    "book_value": float(summary.totals.book_value),
                    "total_return": float(summary.totals.total_return),
                })

    df = pd.DataFrame(records, columns=NET_WORTH_COLUMNS)
    df.to_csv(output_path, index=False)

    return output_path


def save_lot_listing(lots: list[Lot], output_path: str | Path) -> Path:
    """
    Save a lot listing to CSV.

    Args:
        lots: Lots to save, in the order given
        output_path: Path for output CSV file

    Returns:
        Path to the saved file
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    records = []
    for lot in lots:
        records.append({
            "lot_id": lot.lot_id,
            "portfolio": lot.portfolio_name,
            "symbol": lot.asset_symbol,
            "quantity": float(lot.quantity),
            "acquired_date": lot.acquired_date.isoformat(),
            "unit_price": float(lot.unit_price),
            "cost_basis": float(lot.cost_basis),
        })

    df = pd.DataFrame(records, columns=LOT_COLUMNS)
    df.to_csv(output_path, index=False)

    return output_path
