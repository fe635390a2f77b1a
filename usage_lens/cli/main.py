"""
CLI interface for Usage Lens.

Reads the usage logs through the query facade and prints projects, period
statistics and chart data as tables.
"""

import asyncio
import dataclasses
import logging
import sys
from datetime import datetime
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from usage_lens.config.loader import EngineConfig, load_engine_config
from usage_lens.config.logging_setup import configure_logging
from usage_lens.core.aggregation import ChartData, PeriodSummary
from usage_lens.core.facade import UsageQueryFacade
from usage_lens.core.periods import Period
from usage_lens.core.scheduler import DEFAULT_DEBOUNCE, DEFAULT_INTERVAL, RefreshScheduler
from usage_lens.core.watcher import watch_root
from usage_lens.storage.scanner import ScanRootAccessError

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1

PERIOD_HELP = "Period: " + ", ".join(p.value for p in Period)


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    config: Optional[str] = typer.Option(None, "--config", "-c", help="YAML settings file"),
    root: Optional[str] = typer.Option(None, "--root", help="Scan root (default ~/.claude/projects)"),
    timezone: Optional[str] = typer.Option(None, "--timezone", help="IANA zone used for bucketing"),
    rate: Optional[float] = typer.Option(None, "--rate", help="Local currency units per USD"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging"),
):
    """Usage Lens CLI."""
    configure_logging(logging.DEBUG if verbose else logging.WARNING)
    try:
        settings = load_engine_config(config) if config else EngineConfig()
        overrides = {}
        if root is not None:
            overrides["custom_root_path"] = root
        if timezone is not None:
            overrides["timezone"] = timezone
        if rate is not None:
            overrides["exchange_rate"] = rate
        settings = dataclasses.replace(settings, **overrides)
    except Exception as e:
        console.print(f"[red]Error loading configuration:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    ctx.obj = settings
    if ctx.invoked_subcommand is None:
        console.print("Usage Lens - Use --help to see available commands")


def _run(ctx: typer.Context, operation):
    """Run one facade coroutine, mapping failures to exit codes."""
    facade = UsageQueryFacade(ctx.obj or EngineConfig())
    try:
        return asyncio.run(operation(facade))
    except ScanRootAccessError as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)
    except ValueError as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def projects(ctx: typer.Context):
    """List the projects found under the scan root."""
    found = _run(ctx, lambda facade: facade.scan_projects())
    if not found:
        console.print("\n[bold yellow]No usage logs found[/]")
        console.print(f"Looked in: {(ctx.obj or EngineConfig()).root_path}\n")
        sys.exit(EXIT_CODE_PASS)

    table = Table(title="Projects")
    table.add_column("Project")
    table.add_column("Files", justify="right")
    table.add_column("Size", justify="right")
    table.add_column("Last modified")
    for project in found:
        modified = datetime.fromtimestamp(project.last_modified / 1000.0)
        table.add_row(
            project.name,
            str(len(project.files)),
            _format_size(project.total_size),
            modified.strftime("%Y-%m-%d %H:%M"),
        )
    console.print(table)
    sys.exit(EXIT_CODE_PASS)


@app.command()
def stats(
    ctx: typer.Context,
    period: str = typer.Option("today", "--period", "-p", help=PERIOD_HELP),
):
    """Show the usage summary of one period."""
    summary = _run(ctx, lambda facade: facade.get_period_stats(period))
    _display_summary(summary)
    sys.exit(EXIT_CODE_PASS)


@app.command()
def chart(
    ctx: typer.Context,
    period: str = typer.Option("week", "--period", "-p", help=PERIOD_HELP),
):
    """Show buckets, project breakdown and comparison of one period."""
    data = _run(ctx, lambda facade: facade.get_chart_data(period))
    _display_chart(data)
    sys.exit(EXIT_CODE_PASS)


@app.command()
def watch(
    ctx: typer.Context,
    period: str = typer.Option("today", "--period", "-p", help=PERIOD_HELP),
    interval: float = typer.Option(DEFAULT_INTERVAL, "--interval", help="Seconds between refreshes"),
    debounce: float = typer.Option(DEFAULT_DEBOUNCE, "--debounce", help="Quiet seconds after a change"),
):
    """Keep refreshing as log files change. Stop with Ctrl+C."""

    async def _watch(facade: UsageQueryFacade):
        async def refresh_and_print():
            await facade.refresh()
            _display_summary(await facade.get_period_stats(period))

        scheduler = RefreshScheduler(refresh_and_print, interval=interval, debounce=debounce)

        def on_change(path: str) -> None:
            facade.notify_change(path)
            scheduler.notify()

        await scheduler.run_once()
        scheduler.start()
        try:
            await watch_root(facade.root_path, on_change)
        finally:
            await scheduler.stop()

    try:
        _run(ctx, _watch)
    except KeyboardInterrupt:
        console.print("\nStopped")
    sys.exit(EXIT_CODE_PASS)


def _format_currency(amount: float) -> str:
    return f"{amount:,.2f}"


def _format_size(size_bytes: int) -> str:
    size = float(size_bytes)
    for unit in ("B", "KB", "MB"):
        if size < 1024:
            return f"{size:,.0f} {unit}" if unit == "B" else f"{size:,.1f} {unit}"
        size /= 1024
    return f"{size:,.1f} GB"


def _display_summary(summary: PeriodSummary) -> None:
    """Display a period summary as a two-column table."""
    table = Table(title=f"Usage: {summary.period}")
    table.add_column("Metric")
    table.add_column("Value", justify="right")

    marker = " (estimated)" if summary.estimated else ""
    table.add_row("Total tokens", f"{summary.total_tokens:,}")
    table.add_row("Input tokens", f"{summary.input_tokens:,}")
    table.add_row("Output tokens", f"{summary.output_tokens:,}")
    table.add_row("Cost (USD)", f"${_format_currency(summary.cost_usd)}{marker}")
    table.add_row("Cost (local)", f"{_format_currency(summary.cost_local)}{marker}")
    table.add_row("Calls", f"{summary.calls:,}")
    table.add_row("Active hours", str(summary.active_hours))
    table.add_row("Active days", str(summary.active_days))
    table.add_row("Projects", str(summary.project_count))
    table.add_row("Messages (user/assistant)", f"{summary.user_messages}/{summary.assistant_messages}")
    console.print(table)


def _display_chart(data: ChartData) -> None:
    """Display chart data as tables."""
    buckets = Table(title=f"{data.period} ({data.granularity.value})")
    buckets.add_column("Bucket")
    buckets.add_column("Tokens", justify="right")
    buckets.add_column("Cost (USD)", justify="right")
    buckets.add_column("Entries", justify="right")
    for label, bucket in zip(data.labels, data.buckets):
        buckets.add_row(label, f"{bucket.total_tokens:,}", _format_currency(bucket.cost_usd), str(bucket.entries))
    console.print(buckets)

    if data.project_breakdown:
        projects = Table(title="Projects")
        projects.add_column("Project")
        projects.add_column("Tokens", justify="right")
        projects.add_column("Cost (USD)", justify="right")
        for project in data.project_breakdown:
            projects.add_row(project.name, f"{project.total_tokens:,}", _format_currency(project.cost_usd))
        console.print(projects)

    if data.comparison is None:
        console.print("[dim]No comparison available[/]")
    else:
        comparison = data.comparison
        table = Table(title=f"{comparison.current_label} vs {comparison.previous_label}")
        table.add_column("Slot")
        table.add_column(comparison.current_label, justify="right")
        table.add_column(comparison.previous_label, justify="right")
        for label, current, previous in zip(comparison.labels, comparison.current, comparison.previous):
            if current or previous:
                table.add_row(label, f"{current:,}", f"{previous:,}")
        console.print(table)

    _display_summary(data.summary)


if __name__ == "__main__":
    app()
