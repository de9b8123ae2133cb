"""
Single-factor (CAPM) regression of stock excess returns on market excess
returns.
"""
import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict

import pandas as pd
import statsmodels.api as sm

from amd_backtest.metrics import TRADING_DAYS_PER_YEAR

__all__ = ["CapmResult", "fit_capm", "expected_return"]

log = logging.getLogger(__name__)

MIN_OBSERVATIONS = 3


@dataclass(frozen=True)
class CapmResult:
    """Fitted CAPM parameters and their summary statistics."""

    alpha: float
    beta: float
    alpha_pvalue: float
    beta_pvalue: float
    beta_stderr: float
    r_squared: float
    n_obs: int

    @property
    def annualized_alpha(self) -> float:
        return self.alpha * TRADING_DAYS_PER_YEAR

    def to_dict(self) -> Dict[str, Any]:
        return {**asdict(self), "annualized_alpha": self.annualized_alpha}


def fit_capm(excess: pd.DataFrame) -> CapmResult:
    """
    Fits `stock_excess = alpha + beta * market_excess` by ordinary least squares.

    Args:
        excess: A DataFrame with `stock_excess` and `market_excess` columns,
                as returned by `build_excess_returns`.

    Returns:
        The fitted CapmResult.
    """
    if not {"stock_excess", "market_excess"}.issubset(excess.columns):
        raise ValueError("Input must contain 'stock_excess' and 'market_excess' columns.")
    if len(excess) < MIN_OBSERVATIONS:
        raise ValueError(
            f"CAPM needs at least {MIN_OBSERVATIONS} observations, got {len(excess)}."
        )

    X = sm.add_constant(excess["market_excess"])
    model = sm.OLS(excess["stock_excess"], X).fit()

    result = CapmResult(
        alpha=float(model.params["const"]),
        beta=float(model.params["market_excess"]),
        alpha_pvalue=float(model.pvalues["const"]),
        beta_pvalue=float(model.pvalues["market_excess"]),
        beta_stderr=float(model.bse["market_excess"]),
        r_squared=float(model.rsquared),
        n_obs=int(model.nobs),
    )
    log.info(f"CAPM fit on {result.n_obs} days: alpha={result.alpha:.6f}, beta={result.beta:.4f}")
    return result


def expected_return(risk_free: float, beta: float, market_return: float) -> float:
    """The CAPM expected return: rf + beta * (market - rf)."""
    return risk_free + beta * (market_return - risk_free)
