"""
CLI entry point for the amd-backtest application.
"""
import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from amd_backtest.backtest import PipelineError, run_pipeline
from amd_backtest.config import Config, load_config
from amd_backtest.data import (
    DataValidationError,
    filter_date_window,
    load_price_csv,
    refresh_market_data,
    to_price_records,
)
from amd_backtest.metrics import UndefinedROIError, compute_summary
from amd_backtest.simulator import (
    DEFAULT_LOT_SIZE,
    DEFAULT_PROFIT_MARGIN,
    SimulationError,
    run_momentum,
    run_profit_taking,
)

# Console is created once and passed down.
# Log to stderr to separate from potential data output to stdout.
app = typer.Typer(pretty_exceptions_show_locals=False, help="Momentum backtesting and CAPM risk analysis for AMD.")
console = Console(stderr=True)


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging.")):
    """Momentum backtesting and CAPM risk analysis for AMD."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


def _load_config_or_exit(config_path: Path) -> Config:
    """Helper to load config and exit on failure."""
    try:
        return load_config(config_path)
    except (ValueError, FileNotFoundError) as e:
        console.print(f"[bold red]Configuration Error:[/bold red] {e}")
        raise typer.Exit(code=1)


@app.command()
def run(
    config_path: Path = typer.Option(
        ..., "--config", "-c", help="Path to the YAML configuration file.", exists=True
    ),
):
    """Execute the backtest pipeline based on the given configuration."""
    config = _load_config_or_exit(config_path)

    try:
        run_pipeline(config, console)
    except PipelineError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(code=1)
    except Exception as e:
        console.print(f"[bold red]An unexpected error occurred during the run:[/bold red] {e}")
        raise typer.Exit(code=1)

    console.print("[bold green]Run command finished.[/bold green]")


@app.command(name="refresh-data")
def refresh_data(
    config_path: Path = typer.Option(
        ..., "--config", "-c", help="Path to the YAML configuration file.", exists=True
    ),
):
    """
    Refresh data snapshots from yfinance.
    """
    config = _load_config_or_exit(config_path)
    console.print("Starting data refresh...")

    try:
        refresh_market_data(config, console)
    except ValueError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(code=1)

    console.print("[bold green]Data refresh completed.[/bold green]")


def _parse_date(value: Optional[str]):
    return datetime.strptime(value, "%Y-%m-%d").date() if value else None


@app.command()
def simulate(
    csv_path: Path = typer.Option(
        ..., "--csv", help="Daily price CSV with 'Date' and 'Adj Close' or 'Close' columns.", exists=True
    ),
    strategy: str = typer.Option("momentum", "--strategy", "-s", help="'momentum' or 'profit-taking'."),
    lot_size: float = typer.Option(DEFAULT_LOT_SIZE, "--lot-size", help="Shares bought per BUY."),
    profit_margin: float = typer.Option(
        DEFAULT_PROFIT_MARGIN, "--profit-margin", help="Sell half at this multiple of average cost."
    ),
    start: Optional[str] = typer.Option(None, "--start", help="Window start date (YYYY-MM-DD)."),
    end: Optional[str] = typer.Option(None, "--end", help="Window end date (YYYY-MM-DD)."),
):
    """Simulate one strategy over a price CSV and print the trades."""
    if strategy not in ("momentum", "profit-taking"):
        console.print(f"[bold red]Error:[/bold red] Unknown strategy '{strategy}'.")
        raise typer.Exit(code=1)

    try:
        records = to_price_records(load_price_csv(csv_path))
        records = filter_date_window(records, _parse_date(start), _parse_date(end))
        if strategy == "momentum":
            trades = run_momentum(records, lot_size)
        else:
            trades = run_profit_taking(records, lot_size, profit_margin)
    except (DataValidationError, SimulationError, ValueError) as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(code=1)

    table = Table(title=f"{strategy} ({len(trades)} days)")
    for column in ("Date", "Price", "Action", "Cash Flow", "Shares Held"):
        table.add_column(column, justify="left" if column in ("Date", "Action") else "right")
    for t in trades:
        table.add_row(str(t.date), f"{t.price:.2f}", t.action.value, f"{t.cash_flow:.2f}", f"{t.shares_held:g}")
    console.print(table)

    try:
        summary = compute_summary(trades)
    except UndefinedROIError as e:
        console.print(f"[yellow]Warning: {e}[/yellow]")
        return

    console.print(f"Total profit/loss: [bold]{summary.total_profit_loss:,.2f}[/bold]")
    console.print(f"Invested capital:  [bold]{summary.invested_capital:,.2f}[/bold]")
    console.print(f"ROI:               [bold]{summary.roi:.2f}%[/bold]")


if __name__ == "__main__":
    app()
