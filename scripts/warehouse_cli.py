#!/usr/bin/env python3
"""
Warehouse CLI - inspect the raw samples persisted by the analytics warehouse.

The CLI opens the SQLite sample store, rebuilds the aggregates in-process
and reports on them. It never appends samples.

Usage:
  python scripts/warehouse_cli.py                     # Interactive mode
  python scripts/warehouse_cli.py summary             # Warehouse status
  python scripts/warehouse_cli.py query revenue day   # Last 7 days of revenue

Commands:
  (no args)    Interactive menu
  summary      Warehouse status counters
  query        Aggregate rows for a metric
  retention    Retention policy table
  backups      List backups
  backup       Create a backup of the raw samples
"""

import argparse
import asyncio
import sys
from datetime import datetime, timezone, timedelta
from pathlib import Path

# Add the repository root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

# Load .env file if it exists
from dotenv import load_dotenv
load_dotenv(Path(__file__).parent.parent / ".env")

from rich.console import Console
from rich.table import Table
from rich.panel import Panel
from rich.text import Text
from rich.prompt import Prompt
from rich import box

from analytics_warehouse.config import Settings
from analytics_warehouse.models.errors import WarehouseException
from analytics_warehouse.services.warehouse import AnalyticsWarehouse

console = Console()


async def open_warehouse() -> AnalyticsWarehouse:
    """Open the durable store and rebuild aggregates from it."""
    settings = Settings(background_tasks_enabled=False)
    warehouse = AnalyticsWarehouse(settings)
    await warehouse.start()
    with console.status("Rebuilding aggregates..."):
        await warehouse.rebuild_from_durable_store()
    return warehouse


def format_duration(ms: float) -> str:
    """Format milliseconds to human readable."""
    if ms < 1000:
        return f"{ms:.2f}ms"
    elif ms < 60000:
        return f"{ms/1000:.2f}s"
    else:
        return f"{ms/60000:.1f}m"


def format_bytes(size: int) -> str:
    for unit in ("B", "KB", "MB", "GB"):
        if size < 1024:
            return f"{size:.0f}{unit}" if unit == "B" else f"{size:.1f}{unit}"
        size /= 1024
    return f"{size:.1f}TB"


def format_ratio(ratio: float) -> Text:
    """Compression ratio, green when rows are compressed."""
    return Text(f"{ratio:.2f}", style="green" if ratio < 1.0 else "white")


def build_summary_panel(warehouse: AnalyticsWarehouse) -> Panel:
    metrics = warehouse.get_warehouse_status()

    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="white")

    table.add_row("Aggregate Rows", str(metrics.total_rows))
    table.add_row("Estimated Size", format_bytes(metrics.estimated_byte_size))
    table.add_row("Metrics", str(len(warehouse.store.metrics())))
    table.add_row("Partitions", str(len(warehouse.store.partition_keys())))
    table.add_row("Index Efficiency", f"{metrics.index_efficiency_percent:.0f}%")
    table.add_row("Compression Ratio", format_ratio(metrics.compression_ratio))

    return Panel(table, title="[bold]Warehouse Status[/bold]", border_style="blue")


def build_query_table(
    warehouse: AnalyticsWarehouse, metric: str, granularity: str, days: int
) -> Table:
    end = datetime.now(timezone.utc)
    start = end - timedelta(days=days)
    rows = warehouse.query(metric, granularity, start, end)

    table = Table(
        title=f"{metric} by {granularity} (last {days}d)", box=box.ROUNDED
    )
    table.add_column("Bucket", style="cyan")
    table.add_column("Dimensions")
    table.add_column("Kind", justify="center")
    table.add_column("Value", justify="right")
    table.add_column("Samples", justify="right")

    for row in rows:
        dims = ", ".join(f"{k}={v}" for k, v in row.dimensions) or "[dim]-[/dim]"
        table.add_row(
            row.bucket_start.isoformat(),
            dims,
            row.aggregation_kind.value,
            f"{row.value:,.2f}",
            str(row.sample_count),
        )

    if not rows:
        table.add_row("[dim]No data[/dim]", "", "", "", "")

    return table


def build_retention_table(warehouse: AnalyticsWarehouse) -> Table:
    table = Table(title="Retention Policies", box=box.ROUNDED)
    table.add_column("Data Type", style="cyan")
    table.add_column("Retention", justify="right")
    table.add_column("Archive After", justify="right")
    table.add_column("Purge After", justify="right")
    table.add_column("Compression", justify="center")
    table.add_column("Active", justify="center")

    for policy in warehouse.retention_policies():
        table.add_row(
            policy.data_type,
            f"{policy.retention_period_days}d",
            f"{policy.archive_after_days}d",
            f"{policy.purge_after_days}d",
            policy.compression_level.value,
            Text("yes", style="green") if policy.is_active else Text("no", style="red"),
        )
    return table


async def build_backups_table(warehouse: AnalyticsWarehouse) -> Table:
    table = Table(title="Backups", box=box.ROUNDED)
    table.add_column("Backup ID", style="cyan")
    table.add_column("Created")
    table.add_column("Samples", justify="right")
    table.add_column("Size", justify="right")

    backups = await warehouse.list_backups()
    for info in backups:
        table.add_row(
            info.backup_id,
            info.created_at.strftime("%Y-%m-%d %H:%M:%S"),
            str(info.sample_count),
            format_bytes(info.size),
        )
    if not backups:
        table.add_row("[dim]No backups[/dim]", "", "", "")
    return table


async def cmd_summary(warehouse: AnalyticsWarehouse, args):
    console.print()
    console.print(build_summary_panel(warehouse))
    console.print()


async def cmd_query(warehouse: AnalyticsWarehouse, args):
    console.print()
    console.print(build_query_table(warehouse, args.metric, args.granularity, args.days))
    console.print()


async def cmd_retention(warehouse: AnalyticsWarehouse, args):
    console.print()
    console.print(build_retention_table(warehouse))
    console.print()


async def cmd_backups(warehouse: AnalyticsWarehouse, args):
    console.print()
    console.print(await build_backups_table(warehouse))
    console.print()


async def cmd_backup(warehouse: AnalyticsWarehouse, args):
    info = await warehouse.create_backup()
    console.print(
        f"[green]Backup created:[/green] {info.backup_id} "
        f"({info.sample_count} samples, {format_bytes(info.size)})"
    )


async def cmd_interactive(warehouse: AnalyticsWarehouse, args):
    """Interactive menu."""
    while True:
        console.clear()
        console.print(Panel.fit(
            "[bold cyan]Analytics Warehouse[/bold cyan]\n"
            "[dim]Interactive Inspector[/dim]",
            border_style="cyan"
        ))
        console.print()

        metrics = warehouse.get_warehouse_status()
        console.print(
            f"  [cyan]Rows:[/cyan] {metrics.total_rows}  "
            f"[cyan]Size:[/cyan] {format_bytes(metrics.estimated_byte_size)}  "
            f"[cyan]Avg query:[/cyan] {format_duration(metrics.average_query_duration_ms)}"
        )
        console.print()

        console.print("[bold]Commands:[/bold]")
        console.print("  [cyan]1[/cyan]  Status")
        console.print("  [cyan]2[/cyan]  Query a metric")
        console.print("  [cyan]3[/cyan]  Retention policies")
        console.print("  [cyan]4[/cyan]  Backups")
        console.print("  [cyan]q[/cyan]  Quit")
        console.print()

        choice = Prompt.ask("Select", choices=["1", "2", "3", "4", "q"], default="1")

        if choice == "q":
            console.print("[yellow]Goodbye![/yellow]")
            break
        elif choice == "1":
            console.print()
            console.print(build_summary_panel(warehouse))
        elif choice == "2":
            metrics_known = warehouse.store.metrics()
            metric = Prompt.ask(
                "Metric", choices=metrics_known or None,
                default=metrics_known[0] if metrics_known else None,
            )
            granularity = Prompt.ask("Granularity", default="day")
            days = int(Prompt.ask("Days", default="7"))
            console.print()
            try:
                console.print(build_query_table(warehouse, metric, granularity, days))
            except WarehouseException as e:
                console.print(f"[red]{e.message}[/red]")
        elif choice == "3":
            console.print()
            console.print(build_retention_table(warehouse))
        elif choice == "4":
            console.print()
            console.print(await build_backups_table(warehouse))

        console.print()
        Prompt.ask("[dim]Press Enter to continue[/dim]", default="")


async def run(args):
    handlers = {
        "summary": cmd_summary,
        "query": cmd_query,
        "retention": cmd_retention,
        "backups": cmd_backups,
        "backup": cmd_backup,
        None: cmd_interactive,
    }

    warehouse = await open_warehouse()
    try:
        await handlers[args.command](warehouse, args)
    except WarehouseException as e:
        console.print(f"[red]Error:[/red] {e.message}")
        sys.exit(1)
    finally:
        await warehouse.stop()


def main():
    parser = argparse.ArgumentParser(
        description="Warehouse CLI - inspect persisted warehouse samples",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    subparsers = parser.add_subparsers(dest="command")

    # summary
    subparsers.add_parser("summary", help="Warehouse status counters")

    # query
    query_p = subparsers.add_parser("query", help="Aggregate rows for a metric")
    query_p.add_argument("metric")
    query_p.add_argument("granularity", nargs="?", default="day")
    query_p.add_argument("--days", type=int, default=7)

    # retention
    subparsers.add_parser("retention", help="Retention policy table")

    # backups
    subparsers.add_parser("backups", help="List backups")
    subparsers.add_parser("backup", help="Create a backup")

    args = parser.parse_args()

    try:
        asyncio.run(run(args))
    except KeyboardInterrupt:
        console.print("\n[yellow]Cancelled.[/yellow]")
        sys.exit(0)


if __name__ == "__main__":
    main()
