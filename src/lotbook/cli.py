"""
Command-line interface for lotbook.

Provides commands for:
- portfolio: create, list, show, rename, delete and reconcile portfolios
- asset: add an asset to a portfolio or remove it
- lot: add, update, delete and list lots
- networth: value every portfolio at current quotes
- quote / history: look up a symbol
"""

import logging
import sys
from datetime import date, datetime
from pathlib import Path
from typing import Optional

import click

from lotbook import __version__
from lotbook.config import ConfigurationError, load_settings
from lotbook.data import (
    lookup_quote,
    price_history,
    save_lot_listing,
    save_net_worth_report,
)
from lotbook.data.providers import QuoteSourceError
from lotbook.models import LotKeys, OperationResult, Portfolio, ValuationTotals
from lotbook.services import LotbookServices
from lotbook.storage import StoreError


LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


@click.group()
@click.version_option(version=__version__, prog_name="lotbook")
@click.option(
    "--config", "-c", "config_path",
    type=click.Path(exists=True),
    default=None,
    help="Path to settings YAML file. Defaults to config/lotbook.yaml.",
)
@click.option(
    "--user", "-u",
    envvar="LOTBOOK_USER",
    default="local",
    show_default=True,
    help="User id that owns the portfolios.",
)
@click.pass_context
def main(ctx: click.Context, config_path: Optional[str], user: str):
    """
    Lot-level portfolio ledger.

    Tracks portfolios of assets held as purchase lots and values them at
    current market quotes.
    """
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["user_id"] = user


def _services(ctx: click.Context) -> LotbookServices:
    """Build the services on first use and keep them on the root context."""
    obj = ctx.find_root().ensure_object(dict)

    if "services" not in obj:
        try:
            settings = load_settings(obj.get("config_path"))
        except ConfigurationError as e:
            click.echo(f"Error loading config: {e}", err=True)
            sys.exit(1)

        logging.basicConfig(level=settings.log_level, format=LOG_FORMAT)

        try:
            obj["services"] = LotbookServices.from_settings(settings)
        except (StoreError, QuoteSourceError) as e:
            click.echo(f"Error initializing lotbook: {e}", err=True)
            sys.exit(1)

    return obj["services"]


def _user(ctx: click.Context) -> str:
    return ctx.find_root().obj["user_id"]


def _require(result: OperationResult) -> OperationResult:
    """Exit with status 1 and the result message if the operation failed."""
    if not result.success:
        click.echo(f"Error: {result.message}", err=True)
        sys.exit(1)
    return result


def _owned_portfolio(ctx: click.Context, portfolio_id: str) -> Portfolio:
    portfolio = _require(_services(ctx).portfolios.get(portfolio_id)).data
    if portfolio.user_id != _user(ctx):
        click.echo(f"Error: Portfolio {portfolio_id} was not found", err=True)
        sys.exit(1)
    return portfolio


def _echo_totals(totals: ValuationTotals, indent: str = "  ") -> None:
    click.echo(f"{indent}Market Value:  ${totals.market_value:,.2f}")
    click.echo(f"{indent}Day's Change:  ${totals.days_change:,.2f}")
    click.echo(f"{indent}Book Value:    ${totals.book_value:,.2f}")
    click.echo(f"{indent}Total Return:  ${totals.total_return:,.2f}")


# =============================================================================
# Portfolio Commands
# =============================================================================

@main.group()
def portfolio():
    """Create, inspect and remove portfolios."""
    pass


@portfolio.command("create")
@click.argument("name")
@click.option("--description", "-d", default="", help="Portfolio description")
@click.option(
    "--symbol", "-s", "symbols",
    multiple=True,
    help="Initial asset symbol (repeatable)",
)
@click.pass_context
def portfolio_create(ctx: click.Context, name: str, description: str, symbols: tuple[str, ...]):
    """Create a portfolio, optionally with initial assets."""
    services = _services(ctx)
    result = _require(
        services.portfolios.create(_user(ctx), name, description, list(symbols))
    )

    created = result.data
    click.echo(f"Created portfolio {created.name} ({created.portfolio_id})")
    click.echo(f"  Assets: {len(created.asset_ids)}")
    for symbol in result.details.get("skipped_symbols", []):
        click.echo(f"  Skipped unknown symbol: {symbol}")


@portfolio.command("list")
@click.pass_context
def portfolio_list(ctx: click.Context):
    """List your portfolios."""
    result = _require(_services(ctx).portfolios.list_for_user(_user(ctx)))

    if not result.data:
        click.echo("No portfolios found.")
        return

    for item in result.data:
        click.echo(
            f"{item.portfolio_id}  {item.name:<24} "
            f"{len(item.asset_ids):>3} assets {len(item.lot_ids):>4} lots"
        )


@portfolio.command("show")
@click.argument("portfolio_id")
@click.pass_context
def portfolio_show(ctx: click.Context, portfolio_id: str):
    """Show a portfolio with its assets and lots."""
    _owned_portfolio(ctx, portfolio_id)
    detail = _require(_services(ctx).portfolios.load_detail(portfolio_id)).data

    click.echo(f"{detail.portfolio.name}")
    if detail.portfolio.description:
        click.echo(f"  {detail.portfolio.description}")

    for asset in detail.assets:
        lots = [lot for lot in detail.lots if lot.asset_id == asset.asset_id]
        click.echo(f"  {asset.symbol:<8} {asset.display_name}  ({len(lots)} lots)")
        for lot in lots:
            click.echo(
                f"    {lot.lot_id}  {lot.acquired_date}  {lot.quantity} @ ${lot.unit_price:,.2f}"
                f"  basis ${lot.cost_basis:,.2f}"
            )

    missing = len(detail.missing_asset_ids) + len(detail.missing_lot_ids)
    if missing:
        click.echo(f"  {missing} dangling references (run 'lotbook portfolio reconcile')")


@portfolio.command("rename")
@click.argument("portfolio_id")
@click.option("--name", "-n", default=None, help="New name")
@click.option("--description", "-d", default=None, help="New description")
@click.pass_context
def portfolio_rename(
    ctx: click.Context,
    portfolio_id: str,
    name: Optional[str],
    description: Optional[str],
):
    """Change a portfolio's name or description."""
    _owned_portfolio(ctx, portfolio_id)
    result = _require(_services(ctx).portfolios.rename(portfolio_id, name, description))
    click.echo(result.message)


@portfolio.command("delete")
@click.argument("portfolio_id")
@click.confirmation_option(prompt="Delete the portfolio and all of its lots?")
@click.pass_context
def portfolio_delete(ctx: click.Context, portfolio_id: str):
    """Delete a portfolio and all of its lots."""
    _owned_portfolio(ctx, portfolio_id)
    result = _require(_services(ctx).portfolios.delete(portfolio_id))

    removed = sum(r.removed_count for r in result.data.removals.values())
    click.echo(result.message)
    click.echo(f"  Lots removed: {removed}")


@portfolio.command("reconcile")
@click.argument("portfolio_id", required=False)
@click.pass_context
def portfolio_reconcile(ctx: click.Context, portfolio_id: Optional[str]):
    """Repair asset and lot membership of one or all portfolios."""
    services = _services(ctx)

    if portfolio_id:
        _owned_portfolio(ctx, portfolio_id)
        reports = [_require(services.reconcile(portfolio_id)).data]
    else:
        reports = _require(services.reconcile_user(_user(ctx))).data

    for report in reports:
        if not report.changed:
            click.echo(f"{report.portfolio_id}: consistent")
            continue
        click.echo(
            f"{report.portfolio_id}: dropped {len(report.dropped_lot_ids)} lots, "
            f"attached {len(report.attached_lot_ids)} lots and "
            f"{len(report.attached_asset_ids)} assets"
        )


# =============================================================================
# Asset Commands
# =============================================================================

@main.group()
def asset():
    """Add assets to portfolios or remove them."""
    pass


@asset.command("add")
@click.argument("portfolio_id")
@click.argument("symbol")
@click.pass_context
def asset_add(ctx: click.Context, portfolio_id: str, symbol: str):
    """Add an asset to a portfolio."""
    _owned_portfolio(ctx, portfolio_id)
    result = _require(_services(ctx).portfolios.add_asset(portfolio_id, symbol))
    click.echo(result.message)


@asset.command("remove")
@click.argument("portfolio_id")
@click.argument("symbol")
@click.option("--with-lots", is_flag=True, help="Delete the asset's lots first")
@click.pass_context
def asset_remove(ctx: click.Context, portfolio_id: str, symbol: str, with_lots: bool):
    """Remove an asset from a portfolio."""
    _owned_portfolio(ctx, portfolio_id)
    services = _services(ctx)
    found = _require(services.registry.find_by_symbol(symbol)).data

    if with_lots:
        result = services.portfolios.remove_asset_and_lots(portfolio_id, found.asset_id)
    else:
        result = services.portfolios.remove_asset(portfolio_id, found.asset_id)

    if not result.success and result.details.get("lot_ids"):
        click.echo(f"Error: {result.message}", err=True)
        for lot_id in result.details["lot_ids"]:
            click.echo(f"  {lot_id}", err=True)
        click.echo("Use --with-lots to delete them.", err=True)
        sys.exit(1)

    _require(result)
    click.echo(result.message)


# =============================================================================
# Lot Commands
# =============================================================================

@main.group()
def lot():
    """Record, edit and list purchase lots."""
    pass


@lot.command("add")
@click.argument("portfolio_id")
@click.argument("symbol")
@click.option("--quantity", "-q", required=True, type=str, help="Units acquired")
@click.option("--price", "-p", required=True, type=str, help="Unit price paid")
@click.option(
    "--date", "-d", "acquired",
    type=str,
    default=None,
    help="Acquisition date (YYYY-MM-DD). Defaults to today.",
)
@click.pass_context
def lot_add(
    ctx: click.Context,
    portfolio_id: str,
    symbol: str,
    quantity: str,
    price: str,
    acquired: Optional[str],
):
    """Add a lot of an asset held in a portfolio."""
    _owned_portfolio(ctx, portfolio_id)
    services = _services(ctx)
    found = _require(services.registry.find_by_symbol(symbol)).data

    keys = LotKeys(user_id=_user(ctx), portfolio_id=portfolio_id, asset_id=found.asset_id)
    result = _require(services.ledger.add_lot(keys, quantity, acquired or date.today(), price))
    click.echo(result.message)


def _owned_lot(ctx: click.Context, lot_id: str) -> None:
    found = _require(_services(ctx).ledger.get(lot_id)).data
    if found.user_id != _user(ctx):
        click.echo(f"Error: Lot {lot_id} was not found", err=True)
        sys.exit(1)


@lot.command("update")
@click.argument("lot_id")
@click.option("--quantity", "-q", type=str, default=None, help="New quantity")
@click.option("--price", "-p", type=str, default=None, help="New unit price")
@click.option("--date", "-d", "acquired", type=str, default=None, help="New acquisition date")
@click.pass_context
def lot_update(
    ctx: click.Context,
    lot_id: str,
    quantity: Optional[str],
    price: Optional[str],
    acquired: Optional[str],
):
    """Edit a lot's quantity, unit price or acquisition date."""
    _owned_lot(ctx, lot_id)
    result = _require(_services(ctx).ledger.update_lot(lot_id, quantity, acquired, price))

    click.echo(result.message)
    click.echo(f"  Cost basis: ${result.data.lot.cost_basis:,.2f}")


@lot.command("delete")
@click.argument("lot_id")
@click.pass_context
def lot_delete(ctx: click.Context, lot_id: str):
    """Delete a lot."""
    _owned_lot(ctx, lot_id)
    result = _require(_services(ctx).ledger.delete_lot(lot_id))
    click.echo(result.message)


@lot.command("list")
@click.option("--csv", "csv_path", type=click.Path(), default=None, help="Also save to CSV")
@click.pass_context
def lot_list(ctx: click.Context, csv_path: Optional[str]):
    """List all of your lots."""
    lots = _require(_services(ctx).ledger.list_user_lots(_user(ctx))).data

    if not lots:
        click.echo("No lots found.")
    for item in lots:
        click.echo(
            f"{item.portfolio_name:<20} {item.asset_symbol:<8} {item.acquired_date}  "
            f"{item.quantity} @ ${item.unit_price:,.2f}  basis ${item.cost_basis:,.2f}"
        )

    if csv_path:
        path = save_lot_listing(lots, csv_path)
        click.echo(f"Lots saved: {path}")


# =============================================================================
# Valuation and Market Commands
# =============================================================================

@main.command()
@click.option("--csv", "csv_path", type=click.Path(), default=None, help="Also save to CSV")
@click.pass_context
def networth(ctx: click.Context, csv_path: Optional[str]):
    """Value every portfolio at current quotes."""
    user_id = _user(ctx)
    report = _require(_services(ctx).valuation.net_worth(user_id)).data

    click.echo(f"Net worth for {user_id}:")
    _echo_totals(report.totals)

    for summary in report.portfolios:
        click.echo()
        click.echo(f"{summary.name}:")
        _echo_totals(summary.totals)
        for item in summary.assets:
            flag = "" if item.quote_available else "  (no quote)"
            click.echo(
                f"    {item.asset.symbol:<8} {item.quantity:>10} @ ${item.price:,.2f}"
                f"  ${item.totals.market_value:,.2f}{flag}"
            )

    if csv_path:
        path = save_net_worth_report(report, csv_path)
        click.echo()
        click.echo(f"Report saved: {path}")


@main.command()
@click.argument("symbol")
@click.pass_context
def quote(ctx: click.Context, symbol: str):
    """Look up the current quote for a symbol."""
    result = _require(lookup_quote(_services(ctx).quote_source, symbol))
    found = result.data

    click.echo(f"{found.symbol}  {found.display_name or found.long_name}")
    click.echo(f"  Price:   ${found.price:,.2f}")
    click.echo(f"  Change:  {found.change:+,.2f}")
    if found.exchange:
        click.echo(f"  Exchange: {found.exchange}")


@main.command()
@click.argument("symbol")
@click.option("--csv", "csv_path", type=click.Path(), default=None, help="Save samples to CSV")
@click.pass_context
def history(ctx: click.Context, symbol: str, csv_path: Optional[str]):
    """Show intraday prices for the current or last trading session."""
    services = _services(ctx)
    settings = services.settings
    result = _require(
        price_history(
            services.quote_source,
            symbol,
            market_open=settings.market_open,
            market_close=settings.market_close,
            interval=settings.history_interval,
        )
    )

    df = result.data
    start = datetime.fromtimestamp(result.details["start_epoch"])
    end = datetime.fromtimestamp(result.details["end_epoch"])
    click.echo(f"{symbol.upper()} {start:%Y-%m-%d %H:%M} - {end:%H:%M}: {len(df)} samples")

    if csv_path:
        Path(csv_path).parent.mkdir(parents=True, exist_ok=True)
        df.to_csv(csv_path, index=False)
        click.echo(f"History saved: {csv_path}")
        return

    for row in df.itertuples(index=False):
        click.echo(f"  {datetime.fromtimestamp(int(row.timestamp)):%H:%M}  {row.close:,.2f}")


if __name__ == "__main__":
    main()
