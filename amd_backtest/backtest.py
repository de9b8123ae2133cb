"""
Main pipeline orchestration.

This module runs the full backtest, from loading snapshots to the three
strategy runs, the risk statistics, the CAPM fit and report generation.
"""
from pathlib import Path
from typing import Dict, List, Optional

import pandas as pd
from rich.console import Console

from amd_backtest.capm import CapmResult, fit_capm
from amd_backtest.config import Config
from amd_backtest.data import filter_date_window, load_snapshot, refresh_market_data, to_price_records
from amd_backtest.metrics import (
    SummaryMetrics,
    UndefinedROIError,
    calculate_risk_metrics,
    compute_summary,
)
from amd_backtest.reporting import generate_all_reports
from amd_backtest.results import BacktestResults, StrategyRun
from amd_backtest.returns import build_excess_returns, calculate_daily_returns
from amd_backtest.simulator import run_momentum, run_profit_taking
from amd_backtest.types import TradeRecord

__all__ = ["run_pipeline", "run_backtest", "BacktestResults", "StrategyRun", "PipelineError"]


class PipelineError(Exception):
    """Custom exception for pipeline failures."""


def _summarize(name: str, trades: List[TradeRecord], console: Console) -> StrategyRun:
    try:
        summary: Optional[SummaryMetrics] = compute_summary(trades)
    except UndefinedROIError as e:
        console.print(f"[yellow]Warning: {name}: {e}[/yellow]")
        summary = None
    return StrategyRun(name=name, trades=trades, summary=summary)


def _run_strategies(config: Config, stock: pd.DataFrame, console: Console) -> Dict[str, StrategyRun]:
    records = to_price_records(stock)
    lot_size = config.strategy.lot_size
    runs = {}

    console.print(f"Running momentum strategy over {len(records)} days...")
    runs["momentum"] = _summarize("momentum", run_momentum(records, lot_size), console)

    window = config.window
    if window.is_set:
        windowed = filter_date_window(records, window.start_date, window.end_date)
        if windowed:
            console.print(
                f"Running momentum strategy over {len(windowed)} days "
                f"({windowed[0].date} to {windowed[-1].date})..."
            )
            runs["momentum_window"] = _summarize(
                "momentum_window", run_momentum(windowed, lot_size), console
            )
        else:
            console.print("[yellow]Warning: No prices fall inside the configured window. Skipping.[/yellow]")

    console.print("Running profit-taking strategy...")
    runs["profit_taking"] = _summarize(
        "profit_taking",
        run_profit_taking(records, lot_size, config.strategy.profit_margin),
        console,
    )
    return runs


def _risk_or_empty(returns: pd.Series, risk_free: float = 0.0) -> Dict[str, float]:
    if returns.empty:
        return {}
    return calculate_risk_metrics(returns, risk_free=risk_free)


def run_backtest(config: Config, frames: Dict[str, pd.DataFrame], console: Console) -> BacktestResults:
    """
    Runs every strategy and the risk analysis on already-loaded price frames.

    Args:
        config: The run configuration.
        frames: Date-indexed DataFrames with a `Close` column, keyed by symbol.
            The stock is required; the market index and risk-free series are
            needed for the CAPM fit.
        console: Console for progress output.
    """
    symbol = config.data.symbol
    if symbol not in frames:
        raise PipelineError(f"No price data for {symbol}.")
    stock = frames[symbol]

    runs = _run_strategies(config, stock, console)

    market = frames.get(config.data.market_symbol)
    risk_free = frames.get(config.data.risk_free_symbol)
    excess = pd.DataFrame()
    if market is None or risk_free is None:
        console.print("[yellow]Warning: Market or risk-free data missing. Skipping CAPM.[/yellow]")
    else:
        excess = build_excess_returns(stock["Close"], market["Close"], risk_free["Close"])
        if excess.empty:
            console.print("[yellow]Warning: No overlapping returns for stock, market and risk-free rate. Skipping CAPM.[/yellow]")

    if excess.empty:
        return BacktestResults(
            symbol=symbol,
            runs=runs,
            stock_risk=_risk_or_empty(calculate_daily_returns(stock["Close"])),
        )

    console.print("Fitting CAPM...")
    rf_mean = float(excess["risk_free"].mean())
    try:
        capm: Optional[CapmResult] = fit_capm(excess)
    except ValueError as e:
        console.print(f"[yellow]Warning: CAPM fit skipped. {e}[/yellow]")
        capm = None

    return BacktestResults(
        symbol=symbol,
        runs=runs,
        stock_risk=_risk_or_empty(excess["stock"], rf_mean),
        market_risk=_risk_or_empty(excess["market"], rf_mean),
        capm=capm,
        excess_returns=excess,
    )


# impure
def _load_frames(config: Config, console: Console) -> Dict[str, pd.DataFrame]:
    frames = {}
    for symbol in config.symbols:
        try:
            frames[symbol] = load_snapshot(symbol, config)
        except FileNotFoundError as e:
            if symbol == config.data.symbol:
                raise PipelineError(f"{e}. Run `refresh-data` first.") from e
            console.print(f"[yellow]Warning: {e}[/yellow]")
    return frames


# impure
def run_pipeline(config: Config, console: Console) -> BacktestResults:
    """
    Execute the full backtest pipeline from data loading to report generation.
    """
    # Step 1: Data Loading
    console.rule("[bold]1. Loading Data[/bold]")
    if config.data.refresh:
        refresh_market_data(config, console)
    frames = _load_frames(config, console)
    console.print(f"Loaded data for {len(frames)} symbols.")

    # Step 2: Backtest Execution
    console.rule("[bold]2. Executing Backtest[/bold]")
    results = run_backtest(config, frames, console)
    console.print("Backtest execution complete.")

    # Step 3: Reporting
    console.rule("[bold]3. Generating Reports[/bold]")
    run_dir = Path(config.run.output_dir)
    run_dir.mkdir(parents=True, exist_ok=True)
    console.print(f"Run artifacts will be saved to: [cyan]{run_dir}[/cyan]")
    generate_all_reports(config, results, run_dir, console)
    console.print("Reporting complete.")
    return results
