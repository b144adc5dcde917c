"""
Tests for the document stores.
"""

import json
from datetime import date, datetime
from decimal import Decimal

import pytest

from lotbook.models import Lot, Status
from lotbook.portfolio.lots import LotLedger
from lotbook.storage import InMemoryStore, JsonFileStore, StoreError
from lotbook.storage.base import LOTS, PORTFOLIOS


class TestInMemoryStore:
    """Tests for InMemoryStore."""

    @pytest.fixture
    def mem(self):
        return InMemoryStore()

    def test_insert_assigns_id_and_copies(self, mem):
        doc = {"name": "IRA", "asset_ids": []}

        stored = mem.insert(PORTFOLIOS, doc)
        stored["asset_ids"].append("mutated")

        assert stored["id"]
        assert "id" not in doc
        assert mem.get(PORTFOLIOS, stored["id"])["asset_ids"] == []

    def test_duplicate_id_is_rejected(self, mem):
        mem.insert(PORTFOLIOS, {"id": "p1"})

        with pytest.raises(StoreError):
            mem.insert(PORTFOLIOS, {"id": "p1"})

    def test_unknown_collection(self, mem):
        with pytest.raises(StoreError):
            mem.get("widgets", "x")

    def test_find_filters_and_sorts(self, mem):
        mem.insert(LOTS, {"id": "1", "user": "a", "symbol": "XYZ", "day": 1})
        mem.insert(LOTS, {"id": "2", "user": "a", "symbol": "ABC", "day": 1})
        mem.insert(LOTS, {"id": "3", "user": "a", "symbol": "ABC", "day": 5})
        mem.insert(LOTS, {"id": "4", "user": "b", "symbol": "ABC", "day": 9})

        found = mem.find(LOTS, {"user": "a"}, sort=[("symbol", 1), ("day", -1)])
        by_ids = mem.find(LOTS, {"id": ["1", "4", "missing"]})

        assert [d["id"] for d in found] == ["3", "2", "1"]
        assert sorted(d["id"] for d in by_ids) == ["1", "4"]

    def test_update_and_delete(self, mem):
        mem.insert(PORTFOLIOS, {"id": "p1", "name": "IRA"})

        updated = mem.update(PORTFOLIOS, "p1", {"name": "Roth", "id": "ignored"})
        deleted = mem.delete(PORTFOLIOS, "p1")

        assert updated == {"id": "p1", "name": "Roth"}
        assert deleted["name"] == "Roth"
        assert mem.get(PORTFOLIOS, "p1") is None
        assert mem.update(PORTFOLIOS, "p1", {"name": "x"}) is None
        assert mem.delete(PORTFOLIOS, "p1") is None

    def test_add_to_set_and_pull(self, mem):
        """Test set semantics and that no-op edits are not counted as writes."""
        mem.insert(PORTFOLIOS, {"id": "p1", "lot_ids": []})

        mem.add_to_set(PORTFOLIOS, "p1", "lot_ids", "l1")
        writes = mem.write_count
        mem.add_to_set(PORTFOLIOS, "p1", "lot_ids", "l1")
        mem.pull(PORTFOLIOS, "p1", "lot_ids", "other")
        assert mem.write_count == writes

        mem.add_to_set(PORTFOLIOS, "p1", "lot_ids", "l2")
        result = mem.pull(PORTFOLIOS, "p1", "lot_ids", "l1")

        assert result["lot_ids"] == ["l2"]
        assert mem.add_to_set(PORTFOLIOS, "missing", "lot_ids", "x") is None


class TestJsonFileStore:
    """Tests for JsonFileStore."""

    def _lot(self, lot_id: str, acquired: date) -> dict:
        return Lot(
            lot_id=lot_id,
            user_id="u",
            portfolio_id="p",
            portfolio_name="IRA",
            asset_id="a",
            asset_symbol="XYZ",
            quantity=Decimal("1.5"),
            acquired_date=acquired,
            unit_price=Decimal("10.10"),
            cost_basis=Decimal("15.150"),
            created_at=datetime(2024, 1, 1, 12, 0),
        ).to_document()

    def test_persists_and_reloads(self, tmp_path):
        path = tmp_path / "store.json"
        store = JsonFileStore(path)
        store.insert(LOTS, self._lot("l1", date(2024, 1, 2)))

        reloaded = JsonFileStore(path)
        lot = Lot.from_document(reloaded.get(LOTS, "l1"))

        assert lot.quantity == Decimal("1.5")
        assert lot.cost_basis == Decimal("15.150")
        assert lot.acquired_date == date(2024, 1, 2)
        assert lot.created_at == datetime(2024, 1, 1, 12, 0)

        raw = json.loads(path.read_text())
        assert raw["lots"][0]["quantity"] == "1.5"

    def test_sorts_reloaded_and_new_dates_together(self, tmp_path):
        path = tmp_path / "store.json"
        JsonFileStore(path).insert(LOTS, self._lot("old", date(2023, 5, 1)))

        store = JsonFileStore(path)
        store.insert(LOTS, self._lot("new", date(2024, 5, 1)))

        found = store.find(LOTS, sort=[("acquired_date", -1)])
        assert [d["id"] for d in found] == ["new", "old"]

    def test_corrupt_file(self, tmp_path):
        path = tmp_path / "store.json"
        path.write_text("{not json")

        with pytest.raises(StoreError):
            JsonFileStore(path)

    def test_failed_flush_leaves_memory_and_disk_unchanged(self, tmp_path):
        """Test that a write which cannot reach disk is rolled back."""
        path = tmp_path / "store.json"
        store = JsonFileStore(path)
        store.insert(LOTS, self._lot("l1", date(2024, 1, 2)))
        store.insert(PORTFOLIOS, {"id": "p1", "name": "IRA", "lot_ids": ["l1"]})
        on_disk = path.read_text()
        writes = store.write_count
        # The temp file path is taken, so every flush fails
        (tmp_path / "store.json.tmp").mkdir()

        with pytest.raises(StoreError):
            store.delete(LOTS, "l1")
        with pytest.raises(StoreError):
            store.pull(PORTFOLIOS, "p1", "lot_ids", "l1")
        with pytest.raises(StoreError):
            store.update(PORTFOLIOS, "p1", {"name": "Roth"})
        with pytest.raises(StoreError):
            store.insert(LOTS, self._lot("l2", date(2024, 3, 4)))

        assert store.get(LOTS, "l1") is not None
        assert store.get(LOTS, "l2") is None
        assert store.get(PORTFOLIOS, "p1") == {"id": "p1", "name": "IRA", "lot_ids": ["l1"]}
        assert store.write_count == writes
        assert path.read_text() == on_disk

    def test_unwritable_directory_raises_store_error(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        store = JsonFileStore(blocker / "store.json")

        with pytest.raises(StoreError):
            store.insert(LOTS, self._lot("l1", date(2024, 1, 2)))

        assert store.get(LOTS, "l1") is None

    def test_failed_lot_delete_keeps_lot(self, tmp_path):
        """Test that a lot whose delete fails is still readable."""
        path = tmp_path / "store.json"
        store = JsonFileStore(path)
        store.insert(LOTS, self._lot("l1", date(2024, 1, 2)))
        (tmp_path / "store.json.tmp").mkdir()
        ledger = LotLedger(store)

        result = ledger.delete_lot("l1")

        assert result.status == Status.PERSISTENCE_ERROR
        assert ledger.get("l1").success
