"""
Performance metrics and evaluation.

This module provides the summary of a completed simulation run (profit and
loss, invested capital, ROI) and return-based risk statistics for a price
series.
"""
from dataclasses import asdict, dataclass
from typing import Dict, Sequence

import numpy as np
import pandas as pd
import vectorbt as vbt  # noqa: F401  registers the .vbt accessors

from amd_backtest.types import Action, TradeRecord

__all__ = [
    "SummaryMetrics",
    "UndefinedROIError",
    "compute_summary",
    "trades_to_frame",
    "calculate_risk_metrics",
    "TRADING_DAYS_PER_YEAR",
]

TRADING_DAYS_PER_YEAR = 252


class UndefinedROIError(ArithmeticError):
    """Raised when ROI is requested for a run that never invested anything."""


@dataclass(frozen=True)
class SummaryMetrics:
    """Totals derived from a completed run."""

    total_profit_loss: float
    invested_capital: float
    roi: float

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)


def compute_summary(trades: Sequence[TradeRecord]) -> SummaryMetrics:
    """
    Summarizes a completed run.

    Args:
        trades: The TradeRecords of one run.

    Returns:
        SummaryMetrics with the total profit/loss, the capital spent on
        purchases, and the ROI as a percentage of that capital.

    Raises:
        UndefinedROIError: If no money was invested.
    """
    total_profit_loss = float(np.sum([t.cash_flow for t in trades]))
    invested_capital = -float(np.sum([t.cash_flow for t in trades if t.action is Action.BUY]))

    if invested_capital == 0:
        raise UndefinedROIError("ROI is undefined: the run invested no capital.")

    roi = total_profit_loss / invested_capital * 100
    return SummaryMetrics(
        total_profit_loss=total_profit_loss,
        invested_capital=invested_capital,
        roi=roi,
    )


def trades_to_frame(trades: Sequence[TradeRecord]) -> pd.DataFrame:
    """
    Converts TradeRecords into a DataFrame indexed by date.

    Returns an empty DataFrame if the input is empty.
    """
    if not trades:
        return pd.DataFrame()

    # JSON mode gives ISO dates and plain action strings.
    df = pd.DataFrame([t.model_dump(mode="json") for t in trades])
    df["date"] = pd.to_datetime(df["date"])
    return df.set_index("date")


def calculate_risk_metrics(returns: pd.Series, risk_free: float = 0.0) -> Dict[str, float]:
    """
    Calculates risk statistics for a series of daily simple returns.

    Args:
        returns: Daily returns, indexed by date.
        risk_free: The daily risk-free rate used for the Sharpe ratio.

    Returns:
        A dictionary with total and annualized return, annualized volatility,
        Sharpe ratio and maximum drawdown (a negative fraction).
    """
    if returns.empty:
        raise ValueError("Cannot calculate risk metrics for an empty return series.")

    acc = returns.vbt.returns(freq="1D", year_freq=f"{TRADING_DAYS_PER_YEAR} days")
    return {
        "total_return": float(acc.total()),
        "annualized_return": float(acc.annualized()),
        "annualized_volatility": float(acc.annualized_volatility()),
        "sharpe_ratio": float(acc.sharpe_ratio(risk_free=risk_free)),
        "max_drawdown": float(acc.max_drawdown()),
    }
