"""Backtest statistics — pure functions for trade-series analysis."""

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

import numpy as np

_TRADING_DAYS_PER_YEAR = 252
_SECONDS_PER_DAY = 86_400


@dataclass(frozen=True)
class BacktestTrade:
    """One simulated round trip."""

    entry_time: datetime
    exit_time: datetime
    entry_price: float
    exit_price: float
    quantity: float
    profit: float
    exit_reason: str  # "signal", "stop_loss", "take_profit" or "end_of_data"

    @property
    def return_pct(self) -> float:
        """Price return of the trade as a fraction (0.05 = +5 %)."""
        if self.entry_price == 0:
            return 0.0
        return (self.exit_price - self.entry_price) / self.entry_price

    @property
    def holding_days(self) -> float:
        return (self.exit_time - self.entry_time).total_seconds() / _SECONDS_PER_DAY


@dataclass(frozen=True)
class StrategyPerformance:
    """Aggregate results of a backtest run."""

    symbol: str
    strategy: str
    interval: str
    start: Optional[datetime]
    end: Optional[datetime]
    initial_capital: float
    final_capital: float
    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    win_rate: float = 0.0
    total_profit: float = 0.0
    average_profit: float = 0.0
    max_drawdown: float = 0.0
    profit_factor: float = 0.0
    sharpe_ratio: float = 0.0
    trades: list[BacktestTrade] = field(default_factory=list)


def calculate_performance(
    symbol: str,
    strategy: str,
    interval: str,
    start: Optional[datetime],
    end: Optional[datetime],
    trades: list[BacktestTrade],
    capital_curve: list[float],
    initial_capital: float,
) -> StrategyPerformance:
    """Summarise *trades* and the mark-to-market *capital_curve*."""
    profits = [t.profit for t in trades]
    winners = [p for p in profits if p > 0]
    losers = [p for p in profits if p <= 0]
    total = len(profits)

    gross_profit = sum(winners)
    gross_loss = abs(sum(losers))
    final_capital = capital_curve[-1] if capital_curve else initial_capital

    return StrategyPerformance(
        symbol=symbol,
        strategy=strategy,
        interval=interval,
        start=start,
        end=end,
        initial_capital=initial_capital,
        final_capital=final_capital,
        total_trades=total,
        winning_trades=len(winners),
        losing_trades=len(losers),
        win_rate=len(winners) / total if total else 0.0,
        total_profit=sum(profits),
        average_profit=sum(profits) / total if total else 0.0,
        max_drawdown=_max_drawdown(capital_curve),
        profit_factor=_profit_factor(gross_profit, gross_loss),
        sharpe_ratio=_sharpe(trades),
        trades=list(trades),
    )


# ── Helpers ──────────────────────────────────────────────────────────────


def _profit_factor(gross_profit: float, gross_loss: float) -> float:
    """Gross wins over gross losses; gross wins when there were no losses."""
    if gross_loss > 0:
        return gross_profit / gross_loss
    return gross_profit


def _sharpe(trades: list[BacktestTrade]) -> float:
    """Annualised Sharpe ratio of per-trade returns.

    ``mean(r) / std(r) × sqrt(252 / avg_holding_days)`` with the population
    standard deviation.  Returns 0.0 with no trades or zero variance.
    Trades opened and closed within the same instant annualise with
    ``sqrt(252)``.
    """
    if not trades:
        return 0.0
    returns = np.array([t.return_pct for t in trades], dtype=float)
    std = float(np.std(returns))
    if std == 0:
        return 0.0

    avg_holding = float(np.mean([t.holding_days for t in trades]))
    periods = _TRADING_DAYS_PER_YEAR / avg_holding if avg_holding > 0 else _TRADING_DAYS_PER_YEAR
    return float(np.mean(returns)) / std * math.sqrt(periods)


def _max_drawdown(curve: list[float]) -> float:
    """Largest peak-to-trough decline as a fraction of the peak."""
    peak = 0.0
    max_dd = 0.0
    for value in curve:
        if value > peak:
            peak = value
        if peak > 0:
            dd = (peak - value) / peak
            if dd > max_dd:
                max_dd = dd
    return max_dd
