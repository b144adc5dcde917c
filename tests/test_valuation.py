"""
Tests for net-worth valuation.
"""

from decimal import Decimal
from unittest.mock import patch

import pytest

from lotbook.models import ActionType, LotKeys, Quote, Status, ValuationTotals
from lotbook.portfolio import ValuationAggregator
from lotbook.storage.base import PORTFOLIOS

from conftest import USER_ID, make_quote


def add_lot(ledger, portfolio, asset_id, quantity, price, acquired="2024-01-02"):
    keys = LotKeys(USER_ID, portfolio.portfolio_id, asset_id)
    result = ledger.add_lot(keys, quantity, acquired, price)
    assert result.success, result.message
    return result.data


class TestRetirementScenario:
    """One portfolio, one asset, one lot."""

    def test_values_roll_up_unchanged(self, aggregator, ledger, make_portfolio, asset_id_for):
        """Test 5 units with 500 basis at 120.00 / +2.00 at every level."""
        retirement = make_portfolio("Retirement", ["XYZ"])
        add_lot(ledger, retirement, asset_id_for("XYZ"), "5", "100")

        result = aggregator.net_worth(USER_ID)

        assert result.success
        report = result.data
        expected = ValuationTotals(
            market_value=Decimal("600.00"),
            days_change=Decimal("10.00"),
            book_value=Decimal("500"),
            total_return=Decimal("100.00"),
        )
        portfolio = report.portfolios[0]
        asset = portfolio.assets[0]
        lot = asset.lots[0]

        assert lot.totals == expected
        assert asset.totals == expected
        assert portfolio.totals == expected
        assert report.totals == expected
        assert asset.quantity == Decimal("5")
        assert asset.lot_count == 1
        assert asset.price == Decimal("120.00")


class TestAggregation:
    """Tests for rollup consistency and quote handling."""

    @pytest.fixture
    def two_portfolios(self, ledger, make_portfolio, asset_id_for):
        """Two portfolios sharing ABC, with several lots each."""
        ira = make_portfolio("IRA", ["ABC", "XYZ"])
        taxable = make_portfolio("Taxable", ["ABC", "MSFT"])
        abc, xyz, msft = asset_id_for("ABC"), asset_id_for("XYZ"), asset_id_for("MSFT")

        add_lot(ledger, ira, abc, "3", "9.10", "2023-03-01")
        add_lot(ledger, ira, abc, "0.333", "11.07", "2024-02-01")
        add_lot(ledger, ira, xyz, "7", "99.99")
        add_lot(ledger, taxable, abc, "12.5", "8.01")
        add_lot(ledger, taxable, msft, "2", "410.55")
        return ira, taxable

    def test_parent_totals_equal_sum_of_children(self, aggregator, two_portfolios):
        """Test exact equality at every level."""
        report = aggregator.net_worth(USER_ID).data

        for portfolio in report.portfolios:
            for asset in portfolio.assets:
                assert asset.totals == ValuationTotals.sum([lot.totals for lot in asset.lots])
            assert portfolio.totals == ValuationTotals.sum([a.totals for a in portfolio.assets])
        assert report.totals == ValuationTotals.sum([p.totals for p in report.portfolios])

        market_values = [
            lot.totals.market_value
            for portfolio in report.portfolios
            for asset in portfolio.assets
            for lot in asset.lots
        ]
        assert report.totals.market_value == sum(market_values, Decimal("0"))

    def test_shared_symbol_is_quoted_once(self, aggregator, quote_source, two_portfolios):
        """Test that ABC held in two portfolios is fetched exactly once."""
        quote_source.quote_calls.clear()

        report = aggregator.net_worth(USER_ID).data

        assert quote_source.quote_calls["ABC"] == 1
        assert report.quotes_fetched == 3
        prices = {
            asset.price
            for portfolio in report.portfolios
            for asset in portfolio.assets
            if asset.asset.symbol == "ABC"
        }
        assert prices == {Decimal("10.00")}

    def test_parallel_prefetch_still_quotes_once(self, portfolios, quote_source, two_portfolios):
        quote_source.quote_calls.clear()
        quote_source.delay = 0.01
        aggregator = ValuationAggregator(portfolios, quote_source, max_workers=4)

        aggregator.net_worth(USER_ID)

        assert set(quote_source.quote_calls.values()) == {1}

    def test_each_run_fetches_again(self, aggregator, quote_source, two_portfolios):
        """Test that there is no cross-run cache."""
        quote_source.quote_calls.clear()

        aggregator.net_worth(USER_ID)
        aggregator.net_worth(USER_ID)

        assert quote_source.quote_calls["ABC"] == 2

    def test_sorted_output(self, aggregator, two_portfolios):
        report = aggregator.net_worth(USER_ID).data

        assert [p.name for p in report.portfolios] == ["IRA", "Taxable"]
        assert [a.asset.symbol for a in report.portfolios[0].assets] == ["ABC", "XYZ"]
        abc_dates = [lot.lot.acquired_date.isoformat() for lot in report.portfolios[0].assets[0].lots]
        assert abc_dates == ["2024-02-01", "2023-03-01"]

    def test_valuation_does_not_write(self, aggregator, store, two_portfolios):
        writes = store.write_count

        aggregator.net_worth(USER_ID)

        assert store.write_count == writes

    def test_run_is_logged(self, aggregator, activity_log, two_portfolios):
        aggregator.net_worth(USER_ID)

        entries = activity_log.filter_by_action_type(ActionType.NET_WORTH_CALCULATED)
        assert len(entries) == 1
        assert entries[0].details["num_portfolios"] == 2


class TestEdgeCases:
    """Tests for zero-lot assets, missing quotes and stray lots."""

    def test_asset_without_lots_appears_with_zero_totals(self, aggregator, make_portfolio):
        make_portfolio("Retirement", ["XYZ"])

        asset = aggregator.net_worth(USER_ID).data.portfolios[0].assets[0]

        assert asset.asset.symbol == "XYZ"
        assert asset.quantity == Decimal("0")
        assert asset.lot_count == 0
        assert asset.totals == ValuationTotals()

    def test_failed_quote_values_at_zero(self, aggregator, ledger, quote_source, make_portfolio, asset_id_for):
        """Test that a provider failure yields a zero quote instead of an error."""
        retirement = make_portfolio("Retirement", ["XYZ"])
        add_lot(ledger, retirement, asset_id_for("XYZ"), "5", "100")
        quote_source.failing.add("XYZ")

        result = aggregator.net_worth(USER_ID)

        assert result.success
        asset = result.data.portfolios[0].assets[0]
        assert asset.quote_available is False
        assert asset.totals.market_value == Decimal("0")
        assert asset.totals.total_return == Decimal("-500")

    def test_missing_quote_values_at_zero(self, aggregator, ledger, quote_source, make_portfolio, asset_id_for):
        retirement = make_portfolio("Retirement", ["XYZ"])
        add_lot(ledger, retirement, asset_id_for("XYZ"), "5", "100")
        del quote_source.quotes["XYZ"]

        asset = aggregator.net_worth(USER_ID).data.portfolios[0].assets[0]

        assert asset.price == Decimal("0")
        assert asset.quote_available is False

    def test_unexpected_source_error_values_at_zero(self, aggregator, ledger, quote_source, make_portfolio, asset_id_for):
        """Test that an error outside QuoteSourceError does not abort the run."""
        retirement = make_portfolio("Retirement", ["XYZ", "ABC"])
        add_lot(ledger, retirement, asset_id_for("XYZ"), "5", "100")

        with patch.object(quote_source, "get_quote", side_effect=TimeoutError("read timed out")):
            result = aggregator.net_worth(USER_ID)

        assert result.success
        assert all(not asset.quote_available for asset in result.data.portfolios[0].assets)
        assert result.data.totals.market_value == Decimal("0")

    def test_malformed_quote_values_at_zero(self, aggregator, ledger, quote_source, make_portfolio, asset_id_for):
        retirement = make_portfolio("Retirement", ["XYZ"])
        add_lot(ledger, retirement, asset_id_for("XYZ"), "5", "100")
        quote_source.quotes["XYZ"] = Quote(symbol="XYZ", price=None, change=Decimal("1"))

        result = aggregator.net_worth(USER_ID)

        assert result.success
        asset = result.data.portfolios[0].assets[0]
        assert asset.quote_available is False
        assert asset.totals.market_value == Decimal("0")

    def test_lot_of_non_member_asset_is_excluded(self, aggregator, ledger, store, make_portfolio, asset_id_for):
        retirement = make_portfolio("Retirement", ["XYZ", "ABC"])
        add_lot(ledger, retirement, asset_id_for("XYZ"), "5", "100")
        add_lot(ledger, retirement, asset_id_for("ABC"), "1", "1")
        store.pull(PORTFOLIOS, retirement.portfolio_id, "asset_ids", asset_id_for("ABC"))

        report = aggregator.net_worth(USER_ID).data

        assert [a.asset.symbol for a in report.portfolios[0].assets] == ["XYZ"]
        assert report.totals.market_value == Decimal("600.00")

    def test_user_without_portfolios(self, aggregator):
        report = aggregator.net_worth("nobody").data

        assert report.portfolios == []
        assert report.totals == ValuationTotals()


class TestOnePortfolio:
    """Tests for ValuationAggregator.one_portfolio."""

    def test_single_portfolio_summary(self, aggregator, ledger, quote_source, make_portfolio, asset_id_for):
        quote_source.quotes["XYZ"] = make_quote("XYZ", "50", "1")
        retirement = make_portfolio("Retirement", ["XYZ"])
        make_portfolio("Taxable", ["ABC"])
        add_lot(ledger, retirement, asset_id_for("XYZ"), "2", "40")
        quote_source.quote_calls.clear()

        result = aggregator.one_portfolio(retirement.portfolio_id)

        assert result.success
        assert result.data.name == "Retirement"
        assert result.data.totals.market_value == Decimal("100")
        assert result.data.totals.total_return == Decimal("20")
        assert dict(quote_source.quote_calls) == {"XYZ": 1}

    def test_missing_portfolio(self, aggregator):
        assert aggregator.one_portfolio("missing").status == Status.NOT_FOUND
