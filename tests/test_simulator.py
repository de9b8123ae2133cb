"""
Tests for the sequential trading simulator.
"""
from datetime import date, timedelta
from typing import List

import numpy as np
import pytest

from amd_backtest.metrics import UndefinedROIError, compute_summary
from amd_backtest.simulator import (
    EmptySeriesError,
    SimulationError,
    SimulationState,
    momentum_step,
    profit_taking_step,
    run_momentum,
    run_profit_taking,
)
from amd_backtest.types import Action, PriceRecord


def make_prices(values: List[float], start: date = date(2024, 1, 1)) -> List[PriceRecord]:
    """Builds PriceRecords on consecutive calendar days."""
    return [PriceRecord(date=start + timedelta(days=i), price=v) for i, v in enumerate(values)]


@pytest.fixture
def random_walks() -> List[List[PriceRecord]]:
    """A handful of positive random-walk price paths of different lengths."""
    rng = np.random.default_rng(7)
    walks = []
    for n in (2, 3, 10, 60, 250):
        steps = rng.normal(0, 1.5, n)
        values = np.maximum(50 + steps.cumsum(), 1.0)
        walks.append(make_prices([float(v) for v in values]))
    return walks


# Momentum-reversal strategy
# --------------------------------------------------------------------------------------


def test_momentum_worked_example() -> None:
    """Buy on day one, buy the dip, hold the rise, sell on the last day."""
    trades = run_momentum(make_prices([10, 9, 11, 8]), lot_size=100)

    assert [t.action for t in trades] == [Action.BUY, Action.BUY, Action.HOLD, Action.SELL]
    assert [t.cash_flow for t in trades] == pytest.approx([-1000, -900, 0, 1600])
    assert [t.shares_held for t in trades] == [100, 200, 200, 200]

    summary = compute_summary(trades)
    assert summary.total_profit_loss == pytest.approx(-300)
    assert summary.invested_capital == pytest.approx(1900)
    assert summary.roi == pytest.approx(-15.789, abs=1e-3)


def test_momentum_single_day_is_a_buy() -> None:
    """The first-day rule wins over the last-day rule."""
    trades = run_momentum(make_prices([42.0]))

    assert len(trades) == 1
    assert trades[0].action == Action.BUY
    assert trades[0].cash_flow == pytest.approx(-4200)
    assert trades[0].shares_held == 100


def test_momentum_equal_prices_hold() -> None:
    """A flat interior day is an explicit HOLD with no cash flow."""
    trades = run_momentum(make_prices([10, 10, 10]))

    assert trades[1].action == Action.HOLD
    assert trades[1].cash_flow == 0
    assert trades[2].action == Action.SELL
    assert trades[2].cash_flow == pytest.approx(1000)


def test_momentum_last_day_reports_without_zeroing() -> None:
    trades = run_momentum(make_prices([10, 9, 8]))
    assert trades[-1].action == Action.SELL
    assert trades[-1].cash_flow == pytest.approx(8 * 200)
    assert trades[-1].shares_held == trades[-2].shares_held == 200


def test_momentum_custom_lot_size() -> None:
    trades = run_momentum(make_prices([5, 4]), lot_size=10)
    assert [t.cash_flow for t in trades] == pytest.approx([-50, 40])


def test_momentum_step_uses_none_for_first_day() -> None:
    """A fresh state has no previous price, so the first step always buys."""
    state, trade = momentum_step(SimulationState(), make_prices([3.0])[0], is_last=False)

    assert trade.action == Action.BUY
    assert state.previous_price == 3.0
    assert state.accumulated_shares == 100


def test_momentum_rejects_bad_lot_size() -> None:
    with pytest.raises(ValueError, match="lot_size"):
        run_momentum(make_prices([10, 9]), lot_size=0)


# Profit-taking strategy
# --------------------------------------------------------------------------------------


def test_profit_taking_worked_example() -> None:
    """The partial sell fires before the last-day liquidation."""
    trades = run_profit_taking(make_prices([10, 9, 20]), lot_size=100, profit_margin=1.2)

    assert [t.action for t in trades] == [Action.BUY, Action.BUY, Action.SELL]
    assert [t.cash_flow for t in trades] == pytest.approx([-1000, -900, 2000])
    assert [t.shares_held for t in trades] == pytest.approx([100, 200, 100])


def test_profit_taking_halves_on_buy_after_sell() -> None:
    trades = run_profit_taking(make_prices([10, 9, 20, 11, 12]), lot_size=100, profit_margin=1.2)

    # Day 4 buys right after a sell: 100 / 2 + 100 shares.
    assert trades[3].action == Action.BUY
    assert trades[3].cash_flow == pytest.approx(-1100)
    assert trades[3].shares_held == pytest.approx(150)

    # Day 5: average cost is (950 / 2 + 1100) / 150 = 10.5, threshold 12.6,
    # so the last-day rule liquidates everything.
    assert trades[4].action == Action.SELL
    assert trades[4].cash_flow == pytest.approx(12 * 150)
    assert trades[4].shares_held == 0

    summary = compute_summary(trades)
    assert summary.total_profit_loss == pytest.approx(800)
    assert summary.invested_capital == pytest.approx(3000)


def test_profit_taking_hold_keeps_previous_action() -> None:
    """A HOLD between a SELL and a BUY still triggers the halving."""
    state = SimulationState(
        previous_price=10.0,
        accumulated_shares=100.0,
        total_cost_basis=1000.0,
        previous_action=Action.SELL,
    )
    day1, day2 = make_prices([11.0, 10.5])

    state, trade = profit_taking_step(state, day1, is_last=False)
    assert trade.action == Action.HOLD
    assert trade.cash_flow == 0
    assert state.previous_action == Action.SELL
    assert state.previous_price == 11.0

    state, trade = profit_taking_step(state, day2, is_last=False)
    assert trade.action == Action.BUY
    assert state.accumulated_shares == pytest.approx(150)
    assert state.total_cost_basis == pytest.approx(500 + 1050)
    assert state.previous_action == Action.BUY


def test_profit_taking_single_day_sells_nothing() -> None:
    """With one day the last-day rule comes first, so nothing is ever bought."""
    trades = run_profit_taking(make_prices([10.0]))

    assert trades[0].action == Action.SELL
    assert trades[0].cash_flow == 0
    assert trades[0].shares_held == 0
    with pytest.raises(UndefinedROIError):
        compute_summary(trades)


def test_profit_taking_rejects_bad_margin() -> None:
    with pytest.raises(ValueError, match="profit_margin"):
        run_profit_taking(make_prices([10, 9]), profit_margin=1.0)


# Shared properties
# --------------------------------------------------------------------------------------


@pytest.mark.parametrize("runner", [run_momentum, run_profit_taking])
def test_empty_series_raises(runner) -> None:
    with pytest.raises(EmptySeriesError, match="empty"):
        runner([])


@pytest.mark.parametrize("runner", [run_momentum, run_profit_taking])
def test_unordered_dates_raise(runner) -> None:
    prices = make_prices([10, 9])[::-1]
    with pytest.raises(SimulationError, match="strictly increasing"):
        runner(prices)


@pytest.mark.parametrize("runner", [run_momentum, run_profit_taking])
def test_invariants_on_random_walks(runner, random_walks) -> None:
    for prices in random_walks:
        trades = runner(prices)

        assert len(trades) == len(prices)
        assert [t.date for t in trades] == [p.date for p in prices]
        assert all(t.shares_held >= 0 for t in trades)
        assert trades[0].action == Action.BUY
        assert trades[-1].action == Action.SELL
        for t in trades:
            if t.action == Action.BUY:
                assert t.cash_flow < 0
            elif t.action == Action.SELL:
                assert t.cash_flow >= 0
            else:
                assert t.cash_flow == 0


@pytest.mark.parametrize("runner", [run_momentum, run_profit_taking])
def test_summary_matches_direct_recomputation(runner, random_walks) -> None:
    trades = runner(random_walks[-1])
    summary = compute_summary(trades)

    total = 0.0
    invested = 0.0
    for t in trades:
        total += t.cash_flow
        if t.action == Action.BUY:
            invested -= t.cash_flow

    assert summary.total_profit_loss == pytest.approx(total)
    assert summary.invested_capital == pytest.approx(invested)
    assert summary.roi == pytest.approx(total / invested * 100)


@pytest.mark.parametrize("runner", [run_momentum, run_profit_taking])
def test_runs_are_repeatable(runner, random_walks) -> None:
    prices = random_walks[-1]
    assert runner(prices) == runner(prices)
