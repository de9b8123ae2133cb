"""
Sequential trading simulation over a single price series.

Every strategy here is a fold: a step function takes the state carried from
the previous day plus today's price and returns the next state together with
the day's TradeRecord. Each day depends on everything before it, so the scan
is strictly sequential. A run always starts from a fresh SimulationState.
"""
import logging
from dataclasses import dataclass, replace
from typing import Callable, List, Optional, Sequence, Tuple

from amd_backtest.types import Action, PriceRecord, TradeRecord

__all__ = [
    "SimulationError",
    "EmptySeriesError",
    "SimulationState",
    "momentum_step",
    "profit_taking_step",
    "simulate",
    "run_momentum",
    "run_profit_taking",
    "DEFAULT_LOT_SIZE",
    "DEFAULT_PROFIT_MARGIN",
]

log = logging.getLogger(__name__)

DEFAULT_LOT_SIZE = 100.0
DEFAULT_PROFIT_MARGIN = 1.20


class SimulationError(Exception):
    """Raised when a price series cannot be simulated."""


class EmptySeriesError(SimulationError, ValueError):
    """Raised when the simulator is given no prices at all."""


@dataclass(frozen=True)
class SimulationState:
    """State carried from one trading day to the next."""

    previous_price: Optional[float] = None
    accumulated_shares: float = 0.0
    total_cost_basis: float = 0.0
    previous_action: Optional[Action] = None

    @property
    def average_price(self) -> float:
        if self.accumulated_shares > 0:
            return self.total_cost_basis / self.accumulated_shares
        return 0.0


StepFn = Callable[[SimulationState, PriceRecord, bool], Tuple[SimulationState, TradeRecord]]


def _record(record: PriceRecord, action: Action, cash_flow: float, shares: float) -> TradeRecord:
    return TradeRecord(
        date=record.date,
        price=record.price,
        action=action,
        cash_flow=cash_flow,
        shares_held=shares,
    )


# §1. Step Functions
# --------------------------------------------------------------------------------------


def momentum_step(
    state: SimulationState,
    record: PriceRecord,
    is_last: bool,
    lot_size: float = DEFAULT_LOT_SIZE,
) -> Tuple[SimulationState, TradeRecord]:
    """
    Buys the dip, holds on rises and reports full liquidation on the last day.

    The first-day check comes before the last-day check, so a one-day series
    is a single BUY. The last-day SELL reports the proceeds of every share
    held but leaves the position itself untouched.
    """
    price = record.price
    shares = state.accumulated_shares

    if state.previous_price is None:
        action, cash_flow = Action.BUY, -price * lot_size
        shares += lot_size
    elif is_last:
        action, cash_flow = Action.SELL, price * shares
    elif price < state.previous_price:
        action, cash_flow = Action.BUY, -price * lot_size
        shares += lot_size
    else:
        # Rises and flat days both hold.
        action, cash_flow = Action.HOLD, 0.0

    next_state = replace(state, previous_price=price, accumulated_shares=shares)
    return next_state, _record(record, action, cash_flow, shares)


def profit_taking_step(
    state: SimulationState,
    record: PriceRecord,
    is_last: bool,
    lot_size: float = DEFAULT_LOT_SIZE,
    profit_margin: float = DEFAULT_PROFIT_MARGIN,
) -> Tuple[SimulationState, TradeRecord]:
    """
    Buys the dip like `momentum_step`, but sells half the position whenever
    the price reaches `profit_margin` times the average cost.

    Priority per day:
        1. partial sell when the price clears the profit threshold,
        2. full liquidation on the last day,
        3. buy a lot on the first day or on a falling price,
        4. hold otherwise.

    A BUY that directly follows a SELL first halves the remaining position
    and its cost basis. HOLD days do not reset `previous_action`.
    """
    price = record.price
    shares = state.accumulated_shares
    basis = state.total_cost_basis
    average_price = state.average_price
    threshold = average_price * profit_margin

    if shares > 0 and price >= threshold:
        shares_to_sell = shares / 2
        cash_flow = price * shares_to_sell
        basis -= average_price * shares_to_sell
        shares -= shares_to_sell
        next_state = replace(
            state, accumulated_shares=shares, total_cost_basis=basis, previous_action=Action.SELL
        )
        action = Action.SELL
    elif is_last:
        cash_flow = price * shares
        next_state = replace(
            state, accumulated_shares=0.0, total_cost_basis=0.0, previous_action=Action.SELL
        )
        action = Action.SELL
        shares = 0.0
    elif state.previous_price is None or price < state.previous_price:
        cash_flow = -price * lot_size
        if state.previous_action is Action.SELL:
            shares = shares / 2 + lot_size
            basis = basis / 2 + price * lot_size
        else:
            shares += lot_size
            basis += price * lot_size
        next_state = replace(
            state, accumulated_shares=shares, total_cost_basis=basis, previous_action=Action.BUY
        )
        action = Action.BUY
    else:
        cash_flow = 0.0
        next_state = state
        action = Action.HOLD

    next_state = replace(next_state, previous_price=price)
    return next_state, _record(record, action, cash_flow, shares)


# §2. Runner
# --------------------------------------------------------------------------------------


def _check_ordering(prices: Sequence[PriceRecord]) -> None:
    for earlier, later in zip(prices, prices[1:]):
        if later.date <= earlier.date:
            raise SimulationError(
                f"Price dates must be strictly increasing: {earlier.date} is followed by {later.date}"
            )


def simulate(prices: Sequence[PriceRecord], step: StepFn) -> List[TradeRecord]:
    """
    Folds `step` over `prices`, returning one TradeRecord per price.

    Args:
        prices: Daily prices ordered by strictly increasing date.
        step: A transition function `(state, record, is_last) -> (state, trade)`.

    Returns:
        The trade records, in the same order as `prices`.
    """
    if not prices:
        raise EmptySeriesError("Cannot simulate an empty price series.")
    _check_ordering(prices)

    state = SimulationState()
    trades = []
    last_index = len(prices) - 1
    for i, record in enumerate(prices):
        state, trade = step(state, record, i == last_index)
        trades.append(trade)

    log.debug(
        f"Simulated {len(trades)} days from {prices[0].date} to {prices[-1].date}, "
        f"ending with {state.accumulated_shares} shares."
    )
    return trades


def run_momentum(
    prices: Sequence[PriceRecord], lot_size: float = DEFAULT_LOT_SIZE
) -> List[TradeRecord]:
    """Runs the momentum-reversal strategy."""
    if lot_size <= 0:
        raise ValueError("lot_size must be positive.")
    return simulate(prices, lambda s, r, last: momentum_step(s, r, last, lot_size))


def run_profit_taking(
    prices: Sequence[PriceRecord],
    lot_size: float = DEFAULT_LOT_SIZE,
    profit_margin: float = DEFAULT_PROFIT_MARGIN,
) -> List[TradeRecord]:
    """Runs the profit-taking strategy."""
    if lot_size <= 0:
        raise ValueError("lot_size must be positive.")
    if profit_margin <= 1.0:
        raise ValueError("profit_margin must be greater than 1.0.")
    return simulate(
        prices, lambda s, r, last: profit_taking_step(s, r, last, lot_size, profit_margin)
    )
