"""
Append-only activity logging for lotbook.

Every mutation of the ledger and every valuation run is logged with a
timestamp and its details to support auditability.
"""

import json
from datetime import datetime, date
from decimal import Decimal
from pathlib import Path
from typing import Any, Optional

from lotbook.models import (
    ActionType,
    ActivityLogEntry,
    Lot,
    NetWorthReport,
    Portfolio,
)


class ActivityLogger:
    """
    Append-only activity logger.

    Writes all actions to a JSONL file for audit purposes.
    Each line is a complete JSON object representing one action.
    """

    def __init__(self, log_path: str | Path):
        """
        Initialize the activity logger.

        Args:
            log_path: Path to the log file (will be created if not exists)
        """
        self.log_path = Path(log_path)
        self.log_path.parent.mkdir(parents=True, exist_ok=True)

    def log(self, entry: ActivityLogEntry) -> None:
        """
        Write an activity log entry.

        Args:
            entry: ActivityLogEntry to write
        """
        record = {
            "timestamp": entry.timestamp.isoformat(),
            "action_type": entry.action_type.value,
            "portfolio_id": entry.portfolio_id,
            "details": entry.details,
        }

        with open(self.log_path, "a") as f:
            f.write(json.dumps(record, cls=DecimalEncoder) + "\n")

    def record(
        self,
        action_type: ActionType,
        portfolio_id: Optional[str],
        **details: Any,
    ) -> None:
        """Log an action with keyword details."""
        self.log(ActivityLogEntry.create(action_type, portfolio_id, details))

    def log_portfolio_created(self, portfolio: Portfolio, skipped_symbols: list[str]) -> None:
        """
        Log portfolio creation.

        Args:
            portfolio: The new portfolio
            skipped_symbols: Initial symbols that could not be resolved
        """
        self.record(
            ActionType.PORTFOLIO_CREATED,
            portfolio.portfolio_id,
            user_id=portfolio.user_id,
            name=portfolio.name,
            num_assets=len(portfolio.asset_ids),
            skipped_symbols=skipped_symbols,
        )

    def log_lot_added(self, lot: Lot) -> None:
        """
        Log a new lot.

        Args:
            lot: The lot that was added
        """
        self.record(
            ActionType.LOT_ADDED,
            lot.portfolio_id,
            lot_id=lot.lot_id,
            asset_symbol=lot.asset_symbol,
            quantity=lot.quantity,
            unit_price=lot.unit_price,
            cost_basis=lot.cost_basis,
            acquired_date=lot.acquired_date,
        )

    def log_net_worth_calculated(self, report: NetWorthReport) -> None:
        """
        Log a net-worth valuation run.

        Args:
            report: The valuation result
        """
        self.record(
            ActionType.NET_WORTH_CALCULATED,
            None,
            user_id=report.user_id,
            market_value=report.totals.market_value,
            book_value=report.totals.book_value,
            total_return=report.totals.total_return,
            num_portfolios=len(report.portfolios),
            quotes_fetched=report.quotes_fetched,
        )

    def read_log(self) -> list[ActivityLogEntry]:
        """
        Read all entries from the log file.

        Returns:
            List of ActivityLogEntry objects
        """
        if not self.log_path.exists():
            return []

        entries = []
        with open(self.log_path, "r") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                record = json.loads(line)
                entries.append(
                    ActivityLogEntry(
                        timestamp=datetime.fromisoformat(record["timestamp"]),
                        action_type=ActionType(record["action_type"]),
                        portfolio_id=record.get("portfolio_id"),
                        details=record.get("details", {}),
                    )
                )

        return entries

    def filter_by_portfolio(self, portfolio_id: str) -> list[ActivityLogEntry]:
        """Get log entries for a specific portfolio."""
        return [e for e in self.read_log() if e.portfolio_id == portfolio_id]

    def filter_by_action_type(self, action_type: ActionType) -> list[ActivityLogEntry]:
        """Get log entries of a specific action type."""
        return [e for e in self.read_log() if e.action_type == action_type]


class DecimalEncoder(json.JSONEncoder):
    """JSON encoder that handles Decimal and date types."""

    def default(self, obj: Any) -> Any:
        if isinstance(obj, Decimal):
            return str(obj)
        if isinstance(obj, datetime):
            return obj.isoformat()
        if isinstance(obj, date):
            return obj.isoformat()
        return super().default(obj)


# Global logger instance (initialized on first use)
_global_logger: Optional[ActivityLogger] = None


def get_logger(log_path: Optional[str | Path] = None) -> ActivityLogger:
    """
    Get or create the global activity logger.

    Args:
        log_path: Optional path to initialize logger (required on first call)

    Returns:
        ActivityLogger instance
    """
    global _global_logger

    if _global_logger is None:
        if log_path is None:
            log_path = "output/activity_log.jsonl"
        _global_logger = ActivityLogger(log_path)
    elif log_path is not None:
        # Allow reinitializing with new path
        _global_logger = ActivityLogger(log_path)

    return _global_logger
