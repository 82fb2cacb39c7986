"""Backtest engine — replays historical candles through a strategy.

Walks candles chronologically, re-evaluating the strategy on all history up
to each bar, and simulates long-only trades with virtual capital.  No real
orders are placed.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from pairtrader.backtest.stats import (
    BacktestTrade,
    StrategyPerformance,
    calculate_performance,
)
from pairtrader.exchange.base import MarketDataProtocol
from pairtrader.exchange.models import Candle
from pairtrader.results import Result
from pairtrader.strategy.engine import MIN_CANDLES, StrategyEngine
from pairtrader.strategy.models import SignalAction, StrategyParameters

logger = logging.getLogger("pairtrader.backtest")

DEFAULT_INITIAL_CAPITAL = 10_000.0


@dataclass
class _OpenTrade:
    entry_time: datetime
    entry_price: float
    quantity: float
    stop_loss: float
    take_profit: float


class BacktestEngine:
    """Simulates trading on historical candle data.

    Args:
        market_data: Candle source for :meth:`run_backtest`.
        risk_per_trade_pct: Share of capital committed per entry (2.0 = 2 %).
        initial_capital: Starting virtual capital.
    """

    def __init__(
        self,
        market_data: Optional[MarketDataProtocol] = None,
        risk_per_trade_pct: float = 2.0,
        initial_capital: float = DEFAULT_INITIAL_CAPITAL,
    ) -> None:
        self._market_data = market_data
        self._risk_pct = risk_per_trade_pct
        self._initial_capital = initial_capital

    # ── Public API ───────────────────────────────────────────────────────

    async def run_backtest(
        self,
        symbol: str,
        interval: str,
        strategy_name: str,
        start: datetime,
        end: datetime,
        params: Optional[StrategyParameters] = None,
    ) -> Result[StrategyPerformance]:
        """Fetch candles for ``[start, end]`` and run :meth:`run` on them."""
        if self._market_data is None:
            raise RuntimeError("BacktestEngine has no market data source")
        candles = await self._market_data.get_candles(symbol, interval, start=start, end=end)
        return self.run(symbol, interval, strategy_name, candles, params, start, end)

    def run(
        self,
        symbol: str,
        interval: str,
        strategy_name: str,
        candles: list[Candle],
        params: Optional[StrategyParameters] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> Result[StrategyPerformance]:
        """Execute a full backtest over *candles* (oldest-first).

        Returns ``INSUFFICIENT_DATA`` with fewer than 100 candles.
        """
        if len(candles) < MIN_CANDLES:
            reason = (
                f"Not enough historical data for backtest: need {MIN_CANDLES}, "
                f"got {len(candles)}"
            )
            logger.warning("%s %s: %s", symbol, interval, reason)
            return Result.insufficient_data(reason)

        params = params or StrategyParameters()
        strategy = StrategyEngine(strategy_name=strategy_name, parameters=params)
        sl_frac = params.stop_loss_pct / 100.0
        tp_frac = params.take_profit_pct / 100.0

        capital = self._initial_capital
        open_trade: Optional[_OpenTrade] = None
        trades: list[BacktestTrade] = []
        curve: list[float] = [capital]

        for i in range(MIN_CANDLES - 1, len(candles)):
            candle = candles[i]

            # 1 — Intrabar stop-loss / take-profit
            if open_trade is not None:
                hit = self._check_exit(open_trade, candle)
                if hit is not None:
                    exit_price, reason = hit
                    trade = self._close(open_trade, candle, exit_price, reason)
                    capital += trade.profit
                    trades.append(trade)
                    open_trade = None

            # 2 — Strategy on all history up to this bar
            signal = strategy.generate_signal(symbol, candles[: i + 1])

            if open_trade is not None and signal.action is SignalAction.SELL:
                trade = self._close(open_trade, candle, candle.close, "signal")
                capital += trade.profit
                trades.append(trade)
                open_trade = None
            elif open_trade is None and signal.action is SignalAction.BUY and candle.close > 0:
                quantity = capital * self._risk_pct / 100.0 / candle.close
                if quantity > 0:
                    open_trade = _OpenTrade(
                        entry_time=candle.close_time,
                        entry_price=candle.close,
                        quantity=quantity,
                        stop_loss=candle.close * (1 - sl_frac),
                        take_profit=candle.close * (1 + tp_frac),
                    )

            curve.append(capital + self._mark_to_market(open_trade, candle.close))

        # Close any remaining position at the last candle close
        if open_trade is not None:
            last = candles[-1]
            trade = self._close(open_trade, last, last.close, "end_of_data")
            capital += trade.profit
            trades.append(trade)
            curve[-1] = capital

        perf = calculate_performance(
            symbol=symbol,
            strategy=strategy.strategy_name,
            interval=interval,
            start=start or candles[0].open_time,
            end=end or candles[-1].close_time,
            trades=trades,
            capital_curve=curve,
            initial_capital=self._initial_capital,
        )
        logger.info(
            "Backtest %s %s (%s): %d trades, profit %.2f, win rate %.1f%%",
            symbol, interval, perf.strategy, perf.total_trades,
            perf.total_profit, perf.win_rate * 100,
        )
        return Result.success(perf)

    # ── Helpers ──────────────────────────────────────────────────────────

    @staticmethod
    def _check_exit(trade: _OpenTrade, candle: Candle) -> Optional[tuple[float, str]]:
        """Check if *candle* triggers a stop-loss or take-profit exit.

        Returns ``(exit_price, reason)`` or ``None``.  When both are hit in
        the same candle, the stop-loss is assumed first (conservative).
        """
        sl_hit = candle.low <= trade.stop_loss
        tp_hit = candle.high >= trade.take_profit

        if sl_hit:
            return trade.stop_loss, "stop_loss"
        if tp_hit:
            return trade.take_profit, "take_profit"
        return None

    @staticmethod
    def _close(trade: _OpenTrade, candle: Candle, exit_price: float, reason: str) -> BacktestTrade:
        return BacktestTrade(
            entry_time=trade.entry_time,
            exit_time=candle.close_time,
            entry_price=trade.entry_price,
            exit_price=exit_price,
            quantity=trade.quantity,
            profit=(exit_price - trade.entry_price) * trade.quantity,
            exit_reason=reason,
        )

    @staticmethod
    def _mark_to_market(trade: Optional[_OpenTrade], price: float) -> float:
        """Unrealised PnL at *price*."""
        if trade is None:
            return 0.0
        return (price - trade.entry_price) * trade.quantity
