"""
Return series: daily returns, risk-free conversion and excess returns.

Functions in this module are pure and operate on pandas Series indexed by
date.
"""
import pandas as pd

from amd_backtest.metrics import TRADING_DAYS_PER_YEAR

__all__ = ["calculate_daily_returns", "risk_free_daily", "build_excess_returns"]


def calculate_daily_returns(prices: pd.Series) -> pd.Series:
    """Simple daily returns, without the leading NaN."""
    return prices.pct_change().dropna()


def risk_free_daily(yield_pct: pd.Series) -> pd.Series:
    """
    Converts an annualized yield quoted in percent (e.g. ^IRX) into a daily
    compounded rate.
    """
    return (1 + yield_pct / 100.0) ** (1.0 / TRADING_DAYS_PER_YEAR) - 1


def build_excess_returns(
    stock: pd.Series, market: pd.Series, risk_free_yield: pd.Series
) -> pd.DataFrame:
    """
    Aligns stock and market returns with the risk-free rate.

    Args:
        stock: Daily closes of the stock.
        market: Daily closes of the market index.
        risk_free_yield: Annualized risk-free yield in percent. It is
            forward-filled onto the trading days of the other two series.

    Returns:
        A DataFrame with `stock`, `market` and `risk_free` daily returns and
        the `stock_excess` and `market_excess` columns. Rows with missing
        values are dropped.
    """
    closes = pd.concat([stock.rename("stock"), market.rename("market")], axis=1, join="inner")
    df = closes.pct_change()

    rf = risk_free_daily(risk_free_yield.sort_index())
    df["risk_free"] = rf.reindex(df.index, method="ffill")

    df["stock_excess"] = df["stock"] - df["risk_free"]
    df["market_excess"] = df["market"] - df["risk_free"]
    return df.dropna()
