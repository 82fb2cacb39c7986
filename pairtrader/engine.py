"""PairTrader — Trading engine (orchestration loop).

Connects strategy, risk management and order execution into a single
polling loop.  Each cycle evaluates every active pair concurrently (bounded
by ``max_workers``), then runs the order-reconciliation and risk-monitoring
passes over all open positions.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

from pairtrader.api.routers import update_bot_status
from pairtrader.config import Config, TradingPairConfig
from pairtrader.exchange.models import OrderStatus
from pairtrader.execution.executor import OrderExecutor
from pairtrader.locks import SymbolLocks
from pairtrader.risk.manager import RiskManager
from pairtrader.strategy.engine import StrategyEngine
from pairtrader.strategy.models import SignalAction

logger = logging.getLogger("pairtrader")


class TradingEngine:
    """Runs trading cycles over the configured pairs.

    Args:
        config: Application configuration.
        strategy: Signal generator.
        risk: Risk manager (entry validation and monitoring).
        executor: Order executor (execution and reconciliation).
        pairs: Trading pair catalogue; inactive pairs are skipped.
        locks: Per-symbol locks shared with the executor.
    """

    def __init__(
        self,
        config: Config,
        strategy: StrategyEngine,
        risk: RiskManager,
        executor: OrderExecutor,
        pairs: list[TradingPairConfig],
        locks: SymbolLocks,
    ) -> None:
        self._config = config
        self._strategy = strategy
        self._risk = risk
        self._executor = executor
        self._pairs = pairs
        self._locks = locks
        self._running: bool = False
        self._stopping: bool = False
        self._cycle_count: int = 0

    @property
    def active_symbols(self) -> list[str]:
        return [p.symbol for p in self._pairs if p.is_active]

    # ── Lifecycle ────────────────────────────────────────────────────────

    def stop(self) -> None:
        """Stop after the current cycle; symbols not yet started are skipped."""
        self._running = False
        self._stopping = True

    # ── Polling loop ─────────────────────────────────────────────────────

    async def run(
        self,
        poll_interval: int | None = None,
        max_cycles: int = 0,
    ) -> list[dict]:
        """Run the trading loop until stopped.

        Args:
            poll_interval: Seconds between cycles.  Defaults to
                           ``config.refresh_interval_seconds``.
            max_cycles: Stop after this many cycles (0 = unlimited).

        Returns:
            List of per-cycle result dicts.
        """
        if poll_interval is None:
            poll_interval = self._config.refresh_interval_seconds

        self._running = True
        self._stopping = False
        update_bot_status(
            running=True,
            strategy=self._strategy.strategy_name,
            pairs=self.active_symbols,
        )
        results: list[dict] = []
        cycle = 0

        while self._running:
            cycle += 1
            try:
                result = await self.run_once()
                results.append(result)
                logger.info(
                    "Cycle %d: %s",
                    cycle,
                    ", ".join(f"{r['symbol']}={r['action']}" for r in result["symbols"]) or "no pairs",
                )
            except Exception as exc:
                logger.error("Cycle %d error: %s", cycle, exc)
                results.append({"action": "error", "reason": str(exc), "symbols": []})

            if max_cycles > 0 and cycle >= max_cycles:
                break

            # Interruptible sleep — checks _running every second
            for _ in range(poll_interval):
                if not self._running:
                    break
                await asyncio.sleep(1)

        self._running = False
        update_bot_status(running=False)
        logger.info("Trading engine stopped after %d cycle(s)", cycle)
        return results

    # ── Single cycle ─────────────────────────────────────────────────────

    async def run_once(self, utc_now: Optional[datetime] = None) -> dict:
        """Execute one trading cycle.

        Returns ``{"action": "cycle_complete", "symbols": [...], "at": ...}``
        where each symbol entry carries an ``action`` of ``none``,
        ``rejected``, ``order_placed``, ``skipped`` or ``error``.

        Args:
            utc_now: Current UTC datetime.  Defaults to ``datetime.now(UTC)``.
        """
        if utc_now is None:
            utc_now = datetime.now(timezone.utc)

        semaphore = asyncio.Semaphore(max(1, self._config.max_workers))
        symbol_results = list(await asyncio.gather(*(
            self._process_symbol(symbol, semaphore, utc_now)
            for symbol in self.active_symbols
        )))

        try:
            await self._executor.manage_open_orders_and_positions()
        except Exception as exc:
            logger.error("Order reconciliation pass failed: %s", exc)

        try:
            await self._risk.monitor_positions(utc_now)
        except Exception as exc:
            logger.error("Position monitoring pass failed: %s", exc)

        self._cycle_count += 1
        update_bot_status(
            cycle_count=self._cycle_count,
            last_cycle_at=utc_now.isoformat(),
            last_results=symbol_results,
        )
        return {
            "action": "cycle_complete",
            "symbols": symbol_results,
            "at": utc_now.isoformat(),
        }

    async def _process_symbol(
        self,
        symbol: str,
        semaphore: asyncio.Semaphore,
        utc_now: datetime,
    ) -> dict:
        """Signal → validate → execute for one symbol.  Never raises."""
        async with semaphore:
            if self._stopping:
                return {"symbol": symbol, "action": "skipped", "reason": "shutdown"}
            try:
                signal = await self._strategy.fetch_signal(symbol, self._config.candle_interval)
                if signal.action is SignalAction.NONE:
                    return {"symbol": symbol, "action": "none"}

                async with self._locks.for_symbol(symbol):
                    quantity = None
                    if signal.action is SignalAction.BUY:
                        quantity = await self._executor.calculate_order_quantity(
                            symbol, signal.price,
                        )
                        allowed, reason = await self._risk.validate_new_position(
                            symbol, signal.price, quantity, utc_now,
                        )
                        if not allowed:
                            return {"symbol": symbol, "action": "rejected", "reason": reason}

                    order = await self._executor.execute_signal(symbol, signal, quantity)

                if order.status is OrderStatus.REJECTED:
                    return {"symbol": symbol, "action": "rejected", "reason": order.reason}

                return {
                    "symbol": symbol,
                    "action": "order_placed",
                    "side": order.side.value,
                    "order_id": order.id,
                    "status": order.status.value,
                    "quantity": order.executed_quantity or order.quantity,
                    "price": order.fill_price,
                }
            except Exception as exc:
                logger.error("Error processing %s: %s", symbol, exc)
                return {"symbol": symbol, "action": "error", "reason": str(exc)}
