"""
Generating output reports from a backtest run.
"""
import json
from datetime import date
from pathlib import Path
from typing import Optional

import numpy as np
import pandas as pd
import plotly.graph_objects as go
from rich.console import Console

from amd_backtest.capm import expected_return
from amd_backtest.config import Config
from amd_backtest.metrics import TRADING_DAYS_PER_YEAR, trades_to_frame
from amd_backtest.results import BacktestResults, StrategyRun

__all__ = ["generate_all_reports", "plot_trades", "plot_capm"]


def _to_json_serializable(data):
    """Recursively converts non-serializable types in a dictionary."""
    if isinstance(data, dict):
        return {k: _to_json_serializable(v) for k, v in data.items()}
    if isinstance(data, list):
        return [_to_json_serializable(i) for i in data]
    if isinstance(data, (Path, pd.Timestamp, date)):
        return str(data)
    if data is None or pd.isna(data):
        return None
    # JSON has no Infinity
    if isinstance(data, (float, np.floating)) and np.isinf(data):
        return None
    # Convert numpy types to native Python types
    if isinstance(data, np.integer):
        return int(data)
    if isinstance(data, np.floating):
        return float(data)
    if isinstance(data, np.bool_):
        return bool(data)
    return data


def _capm_summary(results: BacktestResults) -> Optional[dict]:
    """CAPM fit plus the annualized return it predicts at the sample's mean rates."""
    if not results.capm:
        return None
    summary = results.capm.to_dict()
    excess = results.excess_returns
    if not excess.empty:
        daily = expected_return(
            float(excess["risk_free"].mean()), results.capm.beta, float(excess["market"].mean())
        )
        summary["expected_annual_return"] = daily * TRADING_DAYS_PER_YEAR
    return summary


def _run_summary(run: StrategyRun) -> dict:
    return {
        "days": len(run.trades),
        "start_date": run.trades[0].date if run.trades else None,
        "end_date": run.trades[-1].date if run.trades else None,
        "summary": run.summary.to_dict() if run.summary else None,
    }


# impure
def _generate_trade_ledger_csv(results: BacktestResults, output_dir: Path) -> None:
    """Generates one CSV file of daily trade records per strategy run."""
    for name, run in results.runs.items():
        df = trades_to_frame(run.trades)
        if not df.empty:
            df.to_csv(output_dir / f"trades_{name}.csv")


# impure
def _generate_summary_json(results: BacktestResults, config: Config, output_dir: Path) -> None:
    """Generates a JSON file with summary metrics."""
    summary = {
        "run_name": config.run.name,
        "symbol": results.symbol,
        "strategy_params": {
            "lot_size": config.strategy.lot_size,
            "profit_margin": config.strategy.profit_margin,
        },
        "strategies": {name: _run_summary(run) for name, run in results.runs.items()},
        "risk": {"stock": results.stock_risk, "market": results.market_risk},
        "capm": _capm_summary(results),
    }
    with (output_dir / "summary.json").open("w") as f:
        json.dump(_to_json_serializable(summary), f, indent=2)


# impure
def _generate_summary_markdown(results: BacktestResults, config: Config, output_dir: Path) -> None:
    """Generates a Markdown file with a human-readable summary."""
    md = f"# Backtest Summary: {config.run.name} ({results.symbol})\n\n"
    md += "## Strategies\n\n"
    md += "| Strategy | Days | Profit/Loss | Invested Capital | ROI [%] |\n"
    md += "|---|---|---|---|---|\n"
    for name, run in results.runs.items():
        if run.summary:
            s = run.summary
            md += f"| {name} | {len(run.trades)} | {s.total_profit_loss:.2f} | {s.invested_capital:.2f} | {s.roi:.2f} |\n"
        else:
            md += f"| {name} | {len(run.trades)} | n/a | n/a | n/a |\n"

    if results.stock_risk:
        md += "\n## Risk\n\n"
        for label, risk in (("Stock", results.stock_risk), ("Market", results.market_risk)):
            for metric, value in risk.items():
                md += f"- **{label} {metric}**: {value:.4f}\n"

    if results.capm:
        capm = results.capm
        capm_summary = _capm_summary(results)
        md += "\n## CAPM\n\n"
        md += f"- **Alpha (daily)**: {capm.alpha:.6f} (p={capm.alpha_pvalue:.3f})\n"
        md += f"- **Alpha (annualized)**: {capm.annualized_alpha:.4f}\n"
        md += f"- **Beta**: {capm.beta:.4f} (se={capm.beta_stderr:.4f}, p={capm.beta_pvalue:.3f})\n"
        md += f"- **R-squared**: {capm.r_squared:.4f}\n"
        md += f"- **Observations**: {capm.n_obs}\n"
        if "expected_annual_return" in capm_summary:
            md += f"- **Expected return (annualized)**: {capm_summary['expected_annual_return']:.4f}\n"

    (output_dir / "summary.md").write_text(md)


def plot_trades(run: StrategyRun, symbol: str) -> go.Figure:
    """Price line with BUY and SELL markers."""
    df = trades_to_frame(run.trades)
    fig = go.Figure()
    fig.add_trace(go.Scatter(x=df.index, y=df["price"], mode="lines", name=symbol))
    for action, color, marker in (("BUY", "green", "triangle-up"), ("SELL", "red", "triangle-down")):
        hits = df[df["action"] == action]
        fig.add_trace(go.Scatter(
            x=hits.index, y=hits["price"], mode="markers", name=action,
            marker=dict(color=color, symbol=marker, size=9),
        ))
    fig.update_layout(title=f"{symbol}: {run.name}", xaxis_title="Date", yaxis_title="Price")
    return fig


def plot_capm(results: BacktestResults) -> go.Figure:
    """Scatter of excess returns with the fitted security characteristic line."""
    excess = results.excess_returns
    fig = go.Figure()
    fig.add_trace(go.Scatter(
        x=excess["market_excess"], y=excess["stock_excess"], mode="markers",
        name="Daily excess returns", marker=dict(size=4, opacity=0.5),
    ))
    if results.capm:
        x = np.linspace(excess["market_excess"].min(), excess["market_excess"].max(), 50)
        fig.add_trace(go.Scatter(
            x=x, y=results.capm.alpha + results.capm.beta * x, mode="lines",
            name=f"beta={results.capm.beta:.2f}",
        ))
    fig.update_layout(
        title=f"CAPM: {results.symbol}", xaxis_title="Market excess return",
        yaxis_title="Stock excess return",
    )
    return fig


# impure
def _generate_plots(results: BacktestResults, run_dir: Path) -> None:
    for name, run in results.runs.items():
        plot_trades(run, results.symbol).write_html(run_dir / f"trades_{name}.html", include_plotlyjs="cdn")
    if not results.excess_returns.empty:
        plot_capm(results).write_html(run_dir / "capm.html", include_plotlyjs="cdn")


# impure
def generate_all_reports(
    config: Config,
    results: BacktestResults,
    run_dir: Path,
    console: Console,
) -> None:
    """
    Orchestrates the generation of all output reports.
    #impure: Writes to the filesystem.
    """
    if not isinstance(results, BacktestResults):
        console.print("[bold red]Error: Invalid backtest result. Cannot generate reports.[/bold red]")
        return

    formats = config.reporting.output_formats

    if "csv" in formats:
        console.print("Generating trade ledger CSVs...")
        _generate_trade_ledger_csv(results, run_dir)

    if "json" in formats:
        console.print("Generating summary JSON...")
        _generate_summary_json(results, config, run_dir)

    if "markdown" in formats:
        console.print("Generating summary Markdown...")
        _generate_summary_markdown(results, config, run_dir)

    if config.reporting.generate_plots:
        console.print("Generating plots...")
        try:
            _generate_plots(results, run_dir)
        except Exception as e:
            console.print(f"[yellow]Warning: Plot generation failed. {e}[/yellow]")

    console.print("All reports generated.")
