"""
Containers for the outcome of a backtest run.
"""
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import pandas as pd

from amd_backtest.capm import CapmResult
from amd_backtest.metrics import SummaryMetrics
from amd_backtest.types import TradeRecord

__all__ = ["StrategyRun", "BacktestResults"]


@dataclass(frozen=True)
class StrategyRun:
    """The trades of one strategy run and their summary, if defined."""
    name: str
    trades: List[TradeRecord]
    summary: Optional[SummaryMetrics]


@dataclass(frozen=True)
class BacktestResults:
    """Everything the reports are built from."""
    symbol: str
    runs: Dict[str, StrategyRun]
    stock_risk: Dict[str, float] = field(default_factory=dict)
    market_risk: Dict[str, float] = field(default_factory=dict)
    capm: Optional[CapmResult] = None
    excess_returns: pd.DataFrame = field(default_factory=pd.DataFrame)
