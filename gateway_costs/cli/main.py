"""
CLI interface for the gateway cost dashboard.

Provides command-line reports of gateway spend per day, month, user and model.
"""

import asyncio
import logging
import sys
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import List, Optional, Sequence, Tuple

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from gateway_costs.billing.cost_explorer import CostExplorerClient
from gateway_costs.billing.demo import DemoBillingClient, demo_directory
from gateway_costs.config.loader import DashboardConfig, load_dashboard_config
from gateway_costs.core.periods import (
    DEFAULT_PERIOD,
    month_to_range,
    paginate,
    resolve_period,
    total_pages,
)
from gateway_costs.core.reconciler import ReconcilingQueryService
from gateway_costs.core.service import CostService
from gateway_costs.storage.cache import CostCacheStore
from gateway_costs.storage.identity import GatewayDirectory
from gateway_costs.storage.models import (
    CostFilter,
    CostRecord,
    DimensionCost,
    ModelInfo,
    QueryKind,
    UserInfo,
)

app = typer.Typer()
console = Console()

EXIT_CODE_OK = 0
EXIT_CODE_FAIL = 1

DATE_FORMATS = ["%Y-%m-%d"]


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log cache and billing activity"),
):
    """Gateway cost dashboard CLI."""
    _configure_logging(verbose)
    if ctx.invoked_subcommand is None:
        console.print("Gateway Costs - Use --help to see available commands")


def _load_config(path: Optional[str]) -> DashboardConfig:
    if path is None:
        return DashboardConfig()
    return load_dashboard_config(path)


def _build_service(config: DashboardConfig, demo: bool) -> CostService:
    """Wire the billing client, cache and directory into a CostService.

    One billing client is created per process and shared by every query.
    """
    if demo:
        billing = DemoBillingClient()
        directory = demo_directory()
        store = CostCacheStore(config.cache.demo_path)
    else:
        billing = CostExplorerClient(config=config.billing)
        directory = GatewayDirectory(config.directory.path)
        store = CostCacheStore(config.cache.path)

    store.initialize_schema()
    reconciler = ReconcilingQueryService(
        billing,
        store,
        fetch_timeout=config.billing.fetch_timeout_seconds,
    )
    return CostService(reconciler, directory)


def _utc_today() -> date:
    return datetime.now(timezone.utc).date()


def _resolve_range(
    period: str,
    start: Optional[datetime],
    end: Optional[datetime],
    month: Optional[str] = None,
    whole_months: bool = False,
) -> Tuple[date, date]:
    """Pick --month, then an explicit --start/--end range, then the named period."""
    if month is not None:
        if start is not None or end is not None:
            raise ValueError("--month cannot be combined with --start/--end")
        try:
            return month_to_range(month)
        except ValueError:
            raise ValueError(f"Invalid month {month!r}, expected YYYY-MM")
    if start is None and end is None:
        return resolve_period(period, _utc_today(), whole_months=whole_months)
    if start is None or end is None:
        raise ValueError("--start and --end must be given together")
    if start >= end:
        raise ValueError("--start must be before --end")
    return start.date(), end.date()


def _format_amount(amount: Decimal) -> str:
    return f"{amount:,.2f}"


def _currency_of(items: Sequence) -> str:
    return items[0].currency if items else "USD"


def _display_series(title: str, records: List[CostRecord], page: int) -> None:
    rows, page = paginate(records, page)
    table = Table(title=title, caption=f"Page {page} of {total_pages(records)}")
    table.add_column("Date")
    table.add_column("Amount", justify="right")
    table.add_column("Currency")
    for record in rows:
        table.add_row(record.date, _format_amount(record.amount), record.currency)
    total = sum((r.amount for r in records), Decimal("0"))
    table.add_section()
    table.add_row("[bold]Total[/bold]", f"[bold]{_format_amount(total)}[/bold]", _currency_of(records))
    console.print(table)


def _display_breakdown(title: str, heading: str, costs: List[DimensionCost], page: int) -> None:
    if not costs:
        console.print(f"\n[dim]No {heading.lower()} spend found for this period.[/]")
        return
    rows, page = paginate(costs, page)
    table = Table(title=title, caption=f"Page {page} of {total_pages(costs)}")
    table.add_column(heading)
    table.add_column("ID", style="dim")
    table.add_column("Amount", justify="right")
    table.add_column("Currency")
    for cost in rows:
        table.add_row(cost.display_name, cost.entity_id, _format_amount(cost.amount), cost.currency)
    console.print(table)


async def _query_series(
    service: CostService,
    query_kind: QueryKind,
    user: Optional[str],
    model: Optional[str],
    start: date,
    end: date,
) -> List[CostRecord]:
    try:
        cost_filter = CostFilter()
        if user:
            cost_filter = CostFilter.for_user(await service.resolve_user(user))
        elif model:
            cost_filter = CostFilter.for_model(model)
        return await service.query(query_kind, cost_filter.filter_id, start, end)
    finally:
        await service.drain()


async def _query_breakdown(
    service: CostService,
    by_users: bool,
    other: Optional[str],
    start: date,
    end: date,
) -> List[DimensionCost]:
    try:
        if by_users:
            if other:
                return await service.cost_by_user_for_model(start, end, other)
            return await service.cost_by_user(start, end)
        if other:
            return await service.cost_by_model_for_user(start, end, await service.resolve_user(other))
        return await service.cost_by_model(start, end)
    finally:
        await service.drain()


async def _query_directory(service: CostService) -> Tuple[List[Tuple[str, str]], List[Tuple[str, str]]]:
    return await service.list_users(), await service.list_models()


async def _query_user_detail(
    service: CostService,
    user: str,
    start: date,
    end: date,
) -> Tuple[UserInfo, List[DimensionCost]]:
    try:
        user_id = await service.resolve_user(user)
        info = await service.user_info(user_id)
        return info, await service.cost_by_model_for_user(start, end, user_id)
    finally:
        await service.drain()


async def _query_model_detail(
    service: CostService,
    model: str,
    start: date,
    end: date,
) -> Tuple[ModelInfo, List[DimensionCost]]:
    try:
        info = await service.model_info(model)
        return info, await service.cost_by_user_for_model(start, end, model)
    finally:
        await service.drain()


def _display_directory(users: List[Tuple[str, str]], models: List[Tuple[str, str]]) -> None:
    for heading, entries in (("User", users), ("Model", models)):
        if not entries:
            console.print(f"\n[dim]No {heading.lower()}s in the directory.[/]")
            continue
        table = Table(title=f"{heading}s")
        table.add_column("Email" if heading == "User" else "Name")
        table.add_column("ID", style="dim")
        for entity_id, label in entries:
            table.add_row(label, entity_id)
        console.print(table)


def _display_info(title: str, fields: List[Tuple[str, str]]) -> None:
    table = Table(title=title, show_header=False)
    table.add_column("Field", style="bold")
    table.add_column("Value")
    for name, value in fields:
        table.add_row(name, value)
    console.print(table)


def _run_series(
    query_kind: QueryKind,
    period: str,
    start: Optional[datetime],
    end: Optional[datetime],
    month: Optional[str],
    user: Optional[str],
    model: Optional[str],
    page: int,
    demo: bool,
    config: Optional[str],
) -> None:
    try:
        if user and model:
            raise ValueError("--user and --model cannot be combined")
        range_start, range_end = _resolve_range(
            period, start, end, month, whole_months=query_kind is QueryKind.MONTHLY
        )
        service = _build_service(_load_config(config), demo)
        records = asyncio.run(
            _query_series(service, query_kind, user, model, range_start, range_end)
        )
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    label = "Daily" if query_kind is QueryKind.DAILY else "Monthly"
    _display_series(f"{label} Cost {range_start} to {range_end}", records, page)
    sys.exit(EXIT_CODE_OK)


def _run_breakdown(
    by_users: bool,
    other: Optional[str],
    period: str,
    start: Optional[datetime],
    end: Optional[datetime],
    month: Optional[str],
    page: int,
    demo: bool,
    config: Optional[str],
) -> None:
    try:
        range_start, range_end = _resolve_range(period, start, end, month)
        service = _build_service(_load_config(config), demo)
        costs = asyncio.run(_query_breakdown(service, by_users, other, range_start, range_end))
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    heading = "User" if by_users else "Model"
    _display_breakdown(f"Cost by {heading} {range_start} to {range_end}", heading, costs, page)
    sys.exit(EXIT_CODE_OK)


PERIOD_OPTION = typer.Option(DEFAULT_PERIOD, "--period", "-p", help="7d, 30d, month, last_month, 3m, 6m or 12m")
START_OPTION = typer.Option(None, "--start", formats=DATE_FORMATS, help="First date (inclusive)")
END_OPTION = typer.Option(None, "--end", formats=DATE_FORMATS, help="Last date (exclusive)")
MONTH_OPTION = typer.Option(None, "--month", help="Single calendar month (YYYY-MM)")
PAGE_OPTION = typer.Option(1, "--page", min=1, help="Page of results to show")
DEMO_OPTION = typer.Option(False, "--demo", help="Use built-in demo data instead of Cost Explorer")
CONFIG_OPTION = typer.Option(None, "--config", "-c", help="Path to YAML configuration file")


@app.command()
def init(config: Optional[str] = CONFIG_OPTION):
    """Create the cost cache table."""
    try:
        CostCacheStore(_load_config(config).cache.path).initialize_schema()
        console.print("[green]✓[/] Cost cache initialized successfully")
        sys.exit(EXIT_CODE_OK)
    except Exception as e:
        console.print(f"[red]Error initializing cost cache:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def daily(
    period: str = PERIOD_OPTION,
    start: Optional[datetime] = START_OPTION,
    end: Optional[datetime] = END_OPTION,
    month: Optional[str] = MONTH_OPTION,
    user: Optional[str] = typer.Option(None, "--user", "-u", help="Only this user (id or email)"),
    model: Optional[str] = typer.Option(None, "--model", "-m", help="Only this model id"),
    page: int = PAGE_OPTION,
    demo: bool = DEMO_OPTION,
    config: Optional[str] = CONFIG_OPTION,
):
    """Show cost per day."""
    _run_series(QueryKind.DAILY, period, start, end, month, user, model, page, demo, config)


@app.command()
def monthly(
    period: str = typer.Option("12m", "--period", "-p", help="7d, 30d, month, last_month, 3m, 6m or 12m"),
    start: Optional[datetime] = START_OPTION,
    end: Optional[datetime] = END_OPTION,
    user: Optional[str] = typer.Option(None, "--user", "-u", help="Only this user (id or email)"),
    model: Optional[str] = typer.Option(None, "--model", "-m", help="Only this model id"),
    page: int = PAGE_OPTION,
    demo: bool = DEMO_OPTION,
    config: Optional[str] = CONFIG_OPTION,
):
    """Show cost per month; rolling periods start on the first of a month."""
    _run_series(QueryKind.MONTHLY, period, start, end, None, user, model, page, demo, config)


@app.command()
def users(
    period: str = PERIOD_OPTION,
    start: Optional[datetime] = START_OPTION,
    end: Optional[datetime] = END_OPTION,
    month: Optional[str] = MONTH_OPTION,
    model: Optional[str] = typer.Option(None, "--model", "-m", help="Only spend on this model id"),
    page: int = PAGE_OPTION,
    demo: bool = DEMO_OPTION,
    config: Optional[str] = CONFIG_OPTION,
):
    """Show total cost per user, largest first."""
    _run_breakdown(True, model, period, start, end, month, page, demo, config)


@app.command()
def models(
    period: str = PERIOD_OPTION,
    start: Optional[datetime] = START_OPTION,
    end: Optional[datetime] = END_OPTION,
    month: Optional[str] = MONTH_OPTION,
    user: Optional[str] = typer.Option(None, "--user", "-u", help="Only spend by this user (id or email)"),
    page: int = PAGE_OPTION,
    demo: bool = DEMO_OPTION,
    config: Optional[str] = CONFIG_OPTION,
):
    """Show total cost per model, largest first."""
    _run_breakdown(False, user, period, start, end, month, page, demo, config)


@app.command()
def directory(
    demo: bool = DEMO_OPTION,
    config: Optional[str] = CONFIG_OPTION,
):
    """List the users and models known to the gateway."""
    try:
        service = _build_service(_load_config(config), demo)
        known_users, known_models = asyncio.run(_query_directory(service))
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    _display_directory(known_users, known_models)
    sys.exit(EXIT_CODE_OK)


@app.command("user")
def user_detail(
    user: str = typer.Argument(..., help="User id or email"),
    period: str = PERIOD_OPTION,
    start: Optional[datetime] = START_OPTION,
    end: Optional[datetime] = END_OPTION,
    month: Optional[str] = MONTH_OPTION,
    page: int = PAGE_OPTION,
    demo: bool = DEMO_OPTION,
    config: Optional[str] = CONFIG_OPTION,
):
    """Show a user's directory entry and their cost per model."""
    try:
        range_start, range_end = _resolve_range(period, start, end, month)
        service = _build_service(_load_config(config), demo)
        info, costs = asyncio.run(_query_user_detail(service, user, range_start, range_end))
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    _display_info(f"User {info.user_email}", [
        ("ID", info.user_id),
        ("Created", info.created_at or "-"),
        ("API keys", f"{info.active_api_key_count} active of {info.api_key_count}"),
        ("Inference profiles", str(info.inference_profile_count)),
    ])
    _display_breakdown(f"Cost by Model {range_start} to {range_end}", "Model", costs, page)
    sys.exit(EXIT_CODE_OK)


@app.command("model")
def model_detail(
    model: str = typer.Argument(..., help="Model id"),
    period: str = PERIOD_OPTION,
    start: Optional[datetime] = START_OPTION,
    end: Optional[datetime] = END_OPTION,
    month: Optional[str] = MONTH_OPTION,
    page: int = PAGE_OPTION,
    demo: bool = DEMO_OPTION,
    config: Optional[str] = CONFIG_OPTION,
):
    """Show a model's directory entry and its cost per user."""
    try:
        range_start, range_end = _resolve_range(period, start, end, month)
        service = _build_service(_load_config(config), demo)
        info, costs = asyncio.run(_query_model_detail(service, model, range_start, range_end))
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    _display_info(f"Model {info.model_name}", [
        ("ID", info.model_id),
        ("Status", "disabled" if info.is_disabled else "enabled"),
        ("Protected", "yes" if info.protected else "no"),
        ("Users", str(info.user_count)),
    ])
    _display_breakdown(f"Cost by User {range_start} to {range_end}", "User", costs, page)
    sys.exit(EXIT_CODE_OK)


if __name__ == "__main__":
    app()
