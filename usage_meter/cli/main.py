"""
CLI interface for Usage Meter.

Provides command-line access to account usage tracking.
"""

import logging
import sys
from datetime import datetime
from typing import Optional

import typer
import yaml
from rich.console import Console
from rich.table import Table

from usage_meter.api import CalendarAPI, UsageAPI
from usage_meter.config.loader import AppConfig, load_config
from usage_meter.core.calendar_grid import CellKind
from usage_meter.core.errors import NotFoundError, ValidationError
from usage_meter.demo.seed_demo_data import seed_demo_data
from usage_meter.storage.repository import (
    AccountRepository,
    UsageEventRepository,
    initialize_schema,
)

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1

DAY_NAMES = ["Sun", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat"]

OWNER_OPTION = typer.Option(
    ...,
    "--owner",
    "-o",
    envvar="USAGE_METER_OWNER",
    help="Owner whose accounts are used"
)


def get_usage_api(config: AppConfig, owner: str) -> UsageAPI:
    """Build a UsageAPI backed by the configured SQLite database."""
    db_path = config.storage.db_path
    return UsageAPI(
        owner,
        AccountRepository(db_path),
        UsageEventRepository(db_path),
        cache_ttl_seconds=config.usage.cache_ttl_seconds,
        max_workers=config.usage.max_workers
    )


def get_calendar_api(config: AppConfig, owner: str) -> CalendarAPI:
    """Build a CalendarAPI backed by the configured SQLite database."""
    db_path = config.storage.db_path
    return CalendarAPI(owner, AccountRepository(db_path), UsageEventRepository(db_path))


def _fail(message: str) -> None:
    console.print(f"[red]Error:[/] {message}")
    sys.exit(EXIT_CODE_FAIL)


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    config_path: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        envvar="USAGE_METER_CONFIG",
        help="Path to YAML configuration file"
    )
):
    """Usage Meter CLI."""
    try:
        config = load_config(config_path) if config_path else AppConfig()
    except (FileNotFoundError, ValueError, yaml.YAMLError) as e:
        _fail(str(e))

    logging.basicConfig(
        level=getattr(logging, config.logging.level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )
    ctx.obj = config

    if ctx.invoked_subcommand is None:
        console.print("Usage Meter - Use --help to see available commands")


@app.command()
def init(ctx: typer.Context):
    """Initialize the Usage Meter database."""
    try:
        initialize_schema(ctx.obj.storage.db_path)
    except Exception as e:
        _fail(f"initializing database: {e}")
    console.print("[green]✓[/] Database initialized successfully")


@app.command()
def demo(ctx: typer.Context, owner: str = OWNER_OPTION):
    """Initialize the database and seed demo accounts and usage."""
    initialize_schema(ctx.obj.storage.db_path)
    accounts = seed_demo_data(get_usage_api(ctx.obj, owner), datetime.now())
    console.print(f"[green]✓[/] Seeded {len(accounts)} demo accounts")


@app.command("account-add")
def account_add(
    ctx: typer.Context,
    title: str = typer.Option(..., "--title", "-t", help="Account title"),
    platform: str = typer.Option(..., "--platform", "-p", help="Platform name"),
    reset: str = typer.Option(
        "monthly",
        "--reset",
        "-r",
        help="Reset period: daily, weekly, monthly, yearly or never"
    ),
    usage_type: str = typer.Option("custom", "--type", help="What the usage measures"),
    limit: Optional[int] = typer.Option(None, "--limit", "-l", help="Usage limit"),
    owner: str = OWNER_OPTION
):
    """Create a tracked account."""
    try:
        account = get_usage_api(ctx.obj, owner).create_account(
            title=title,
            platform=platform,
            reset_policy=reset,
            usage_type=usage_type,
            usage_limit=limit
        )
    except ValidationError as e:
        _fail(str(e))
    console.print(f"[green]✓[/] Created account {account.title} ({account.id})")


@app.command()
def accounts(ctx: typer.Context, owner: str = OWNER_OPTION):
    """List accounts with their current-period usage."""
    api = get_usage_api(ctx.obj, owner)
    items = api.list_accounts()
    if not items:
        console.print("\n[bold yellow]No accounts found[/]")
        console.print("Run `usage-meter account-add` to create one\n")
        return

    table = Table(title="Accounts")
    table.add_column("ID", style="dim")
    table.add_column("Title")
    table.add_column("Platform")
    table.add_column("Reset")
    table.add_column("Usage", justify="right")
    table.add_column("Limit", justify="right")
    table.add_column("Used", justify="right")
    table.add_column("Status")

    for account in items:
        if not account.is_active:
            status = "[dim]inactive[/]"
        elif api.is_over_limit(account):
            status = "[red]over limit[/]"
        else:
            status = "[green]ok[/]"
        table.add_row(
            account.id,
            account.title,
            account.platform,
            account.reset_policy.value,
            f"{account.current_usage:,}",
            f"{account.usage_limit:,}" if account.usage_limit else "-",
            f"{api.get_usage_percentage(account):.1f}%",
            status
        )
    console.print(table)


@app.command()
def log(
    ctx: typer.Context,
    account_id: str = typer.Argument(..., help="Account to log usage against"),
    amount: int = typer.Argument(..., help="Positive usage amount"),
    description: Optional[str] = typer.Option(None, "--description", "-d", help="Optional note"),
    owner: str = OWNER_OPTION
):
    """Log usage against an account."""
    api = get_usage_api(ctx.obj, owner)
    try:
        api.log_usage(account_id, amount, description)
        usage = api.get_current_usage(account_id)
    except (ValidationError, NotFoundError) as e:
        _fail(str(e))
    console.print(f"[green]✓[/] Logged {amount:,} usage; current period total {usage:,}")


@app.command()
def usage(
    ctx: typer.Context,
    account_id: str = typer.Argument(..., help="Account to inspect"),
    owner: str = OWNER_OPTION
):
    """Show the current-period usage of one account."""
    api = get_usage_api(ctx.obj, owner)
    try:
        account = api.get_account(account_id)
    except NotFoundError as e:
        _fail(str(e))
    console.print(f"{account.title}: {account.current_usage:,}")
    if account.usage_limit:
        console.print(f"Limit: {account.usage_limit:,} ({api.get_usage_percentage(account):.1f}% used)")
        if api.is_over_limit(account):
            console.print("[bold red]Over limit[/]")


@app.command()
def calendar(
    ctx: typer.Context,
    year: Optional[int] = typer.Option(None, "--year", "-y", help="Year (defaults to this year)"),
    month: Optional[int] = typer.Option(None, "--month", "-m", help="Month 1-12 (defaults to this month)"),
    owner: str = OWNER_OPTION
):
    """Show a month of usage as a calendar grid."""
    today = datetime.now()
    if year is None:
        year = today.year
    if month is None:
        month = today.month
    try:
        cells = get_calendar_api(ctx.obj, owner).get_month_grid(year, month)
    except ValidationError as e:
        _fail(str(e))

    table = Table(title=f"{datetime(year, month, 1):%B %Y}", show_lines=True)
    for name in DAY_NAMES:
        table.add_column(name, justify="center")

    labels = []
    for cell in cells:
        if cell.kind != CellKind.IN_MONTH:
            labels.append(f"[dim]{cell.day}[/]")
        elif cell.events:
            labels.append(f"[bold]{cell.day}[/]\n[green]{cell.total_amount:,}[/]")
        else:
            labels.append(str(cell.day))
    for start in range(0, len(labels), 7):
        table.add_row(*labels[start:start + 7])
    console.print(table)


@app.command()
def activity(
    ctx: typer.Context,
    search: Optional[str] = typer.Option(None, "--search", "-s", help="Text to search for"),
    account_id: Optional[str] = typer.Option(None, "--account", "-a", help="Only this account"),
    date_range: str = typer.Option("all", "--range", help="all, today, week, month or year"),
    sort: str = typer.Option("newest", "--sort", help="newest, oldest, amount_high or amount_low"),
    page: int = typer.Option(1, "--page", help="Page number"),
    owner: str = OWNER_OPTION
):
    """Show recent usage activity with summary statistics."""
    try:
        result = get_usage_api(ctx.obj, owner).get_activity(
            search=search,
            account_id=account_id,
            date_filter=date_range,
            sort=sort,
            page=page
        )
    except ValidationError as e:
        _fail(str(e))

    stats = result.stats
    console.print(
        f"\nTotal usage: {stats.total_usage:,}  Logs: {stats.total_logs:,}  "
        f"Accounts: {stats.unique_accounts}  Avg/day: {stats.avg_per_day:,.1f}"
    )
    if not result.events:
        console.print("[dim]No usage activity found[/]")
        return

    table = Table()
    table.add_column("When")
    table.add_column("Account", style="dim")
    table.add_column("Amount", justify="right")
    table.add_column("Description")
    for event in result.events:
        table.add_row(
            f"{event.timestamp:%Y-%m-%d %H:%M}",
            event.account_id,
            f"{event.amount:,}",
            event.description or ""
        )
    console.print(table)
    console.print(f"Page {result.page} of {max(result.total_pages, 1)}")


if __name__ == "__main__":
    app()
