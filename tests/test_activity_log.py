"""
Tests for the append-only activity log.
"""

import json
from datetime import date
from decimal import Decimal

import pytest

from lotbook.logging import ActivityLogger, DecimalEncoder, get_logger
from lotbook.logging import activity_log as activity_log_module
from lotbook.models import ActionType, LotKeys
from lotbook.services import LotbookServices

from conftest import USER_ID


class TestActivityLogger:
    """Tests for ActivityLogger."""

    def test_record_and_read_back(self, tmp_path):
        logger = ActivityLogger(tmp_path / "nested" / "log.jsonl")

        logger.record(ActionType.LOT_DELETED, "p1", lot_id="l1", quantity=Decimal("2.5"))
        logger.record(ActionType.ASSET_CREATED, None, symbol="XYZ")

        entries = logger.read_log()
        assert [e.action_type for e in entries] == [ActionType.LOT_DELETED, ActionType.ASSET_CREATED]
        assert entries[0].details == {"lot_id": "l1", "quantity": "2.5"}
        assert entries[1].portfolio_id is None

    def test_missing_file_reads_empty(self, tmp_path):
        assert ActivityLogger(tmp_path / "log.jsonl").read_log() == []

    def test_one_json_object_per_line(self, tmp_path):
        path = tmp_path / "log.jsonl"
        logger = ActivityLogger(path)

        logger.record(ActionType.LOT_ADDED, "p1", acquired_date=date(2024, 1, 2))
        logger.record(ActionType.LOT_ADDED, "p1", acquired_date=date(2024, 1, 3))

        lines = path.read_text().splitlines()
        assert len(lines) == 2
        assert json.loads(lines[1])["details"]["acquired_date"] == "2024-01-03"

    def test_ledger_operations_are_logged(self, activity_log, make_portfolio, ledger, asset_id_for):
        retirement = make_portfolio("Retirement", ["XYZ"])
        keys = LotKeys(USER_ID, retirement.portfolio_id, asset_id_for("XYZ"))
        ledger.add_lot(keys, "5", "2024-01-02", "100")

        entries = activity_log.filter_by_portfolio(retirement.portfolio_id)
        actions = [e.action_type for e in entries]

        assert actions == [ActionType.PORTFOLIO_CREATED, ActionType.LOT_ADDED]
        assert entries[1].details["cost_basis"] == "500"
        assert len(activity_log.filter_by_action_type(ActionType.ASSET_CREATED)) == 1


class TestDecimalEncoder:
    """Tests for DecimalEncoder."""

    def test_encodes_decimals_and_dates(self):
        payload = {"amount": Decimal("1.10"), "day": date(2024, 6, 5)}

        assert json.loads(json.dumps(payload, cls=DecimalEncoder)) == {
            "amount": "1.10",
            "day": "2024-06-05",
        }

    def test_rejects_unknown_types(self):
        with pytest.raises(TypeError):
            json.dumps({"value": object()}, cls=DecimalEncoder)


class TestGlobalLogger:
    """Tests for get_logger."""

    @pytest.fixture(autouse=True)
    def reset_global(self, monkeypatch):
        monkeypatch.setattr(activity_log_module, "_global_logger", None)

    def test_get_logger_reuses_instance(self, tmp_path):
        first = get_logger(tmp_path / "a.jsonl")

        assert get_logger() is first
        assert get_logger(tmp_path / "b.jsonl").log_path == tmp_path / "b.jsonl"

    def test_services_share_the_global_logger(self, settings, store, quote_source, tmp_path):
        """Test that wired services write through the global activity logger."""
        services = LotbookServices.from_settings(settings, store=store, quote_source=quote_source)

        assert get_logger() is services.activity_log
        assert services.activity_log.log_path == tmp_path / "activity_log.jsonl"
