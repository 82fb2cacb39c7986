"""Order execution — turns approved signals into exchange orders.

Owns in-flight orders until they reach a terminal status and hands the
resulting position changes to the ``PositionLedger``.  Expected refusals
come back as ``OrderResult`` objects with ``status=REJECTED``; unexpected
failures are logged, reported through the notifier and converted into
rejections so a single symbol never takes the trading loop down.
"""

import dataclasses
import logging
from datetime import datetime, timezone
from typing import Optional

from pairtrader.config import Config, TradingPairConfig
from pairtrader.exchange.base import ExchangeProtocol, MarketDataProtocol
from pairtrader.exchange.models import OrderResult, OrderSide, OrderStatus, OrderType
from pairtrader.ledger import PositionLedger
from pairtrader.locks import SymbolLocks
from pairtrader.models.position import Position, PositionType
from pairtrader.notify.notifier import NotifierProtocol, SafeNotifier
from pairtrader.repos.order_repo import OrderRepo
from pairtrader.risk.position_sizer import calculate_order_quantity
from pairtrader.strategy.models import Signal, SignalAction

logger = logging.getLogger("pairtrader.execution")

_PROTECTIVE_TYPES = (OrderType.STOP_LOSS, OrderType.TAKE_PROFIT)


class OrderExecutor:
    """Executes signals and reconciles orders with positions.

    Args:
        config: Application configuration.
        exchange: Order routing client.
        market_data: Price/balance source (often the same client).
        ledger: Position ledger.
        order_repo: Order persistence.
        notifier: Order/error notifier; failures are never propagated.
        pairs: Trading pair rules keyed by symbol.
        locks: Shared per-symbol locks.
    """

    def __init__(
        self,
        config: Config,
        exchange: ExchangeProtocol,
        market_data: MarketDataProtocol,
        ledger: PositionLedger,
        order_repo: OrderRepo,
        notifier: NotifierProtocol,
        pairs: dict[str, TradingPairConfig],
        locks: Optional[SymbolLocks] = None,
    ) -> None:
        self._config = config
        self._exchange = exchange
        self._market_data = market_data
        self._ledger = ledger
        self._orders = order_repo
        self._notifier = SafeNotifier(notifier)
        self._pairs = pairs
        self._locks = locks or SymbolLocks()

    # ── Signal execution ─────────────────────────────────────────────────

    async def execute_signal(
        self,
        symbol: str,
        signal: Signal,
        quantity: Optional[float] = None,
    ) -> OrderResult:
        """Execute *signal* for *symbol*.

        The caller holds the symbol lock.  *quantity* overrides sizing for
        buys (the engine passes the quantity it already validated).
        """
        side = OrderSide.SELL if signal.action is SignalAction.SELL else OrderSide.BUY

        if signal.confidence < self._config.min_confidence_threshold:
            reason = (
                f"Signal confidence {signal.confidence:.2f} below threshold "
                f"{self._config.min_confidence_threshold:.2f}"
            )
            logger.info("%s: %s", symbol, reason)
            return _rejected(symbol, side, signal.price, reason)

        try:
            existing = self._ledger.get_open_position(symbol)

            if signal.action is SignalAction.BUY:
                if existing is not None and not self._config.allow_multiple_positions:
                    reason = f"Position already open for {symbol}"
                    logger.info("%s: %s", symbol, reason)
                    return _rejected(symbol, side, signal.price, reason)
                return await self._enter_long(symbol, signal, quantity)

            if signal.action is SignalAction.SELL:
                if existing is None:
                    reason = f"No open position for {symbol}"
                    logger.info("%s: %s", symbol, reason)
                    return _rejected(symbol, side, signal.price, reason)
                return await self._market_exit(existing, "signal")

            return _rejected(symbol, side, signal.price, "No actionable signal")

        except Exception as exc:
            logger.error("Execution failed for %s: %s", symbol, exc)
            await self._notifier.notify_error(f"Execution failed for {symbol}", exc)
            return _rejected(symbol, side, signal.price, f"Execution error: {exc}")

    async def calculate_order_quantity(self, symbol: str, price: float) -> float:
        """Size an entry from the free quote balance.

        Raises ``ValueError`` for an unknown pair or a non-positive price.
        """
        pair = self._pairs.get(symbol)
        if pair is None:
            raise ValueError(f"No trading pair configuration for {symbol}")
        balance = await self._market_data.get_balance(self._config.quote_asset)
        return calculate_order_quantity(
            balance=balance,
            risk_per_trade_pct=self._config.risk_per_trade_pct,
            min_order_amount=self._config.min_order_amount,
            price=price,
            pair=pair,
        )

    async def close_position_with_market_order(
        self,
        position: Position,
        reason: str,
    ) -> Optional[OrderResult]:
        """Exit *position* at market under its symbol lock.

        Returns ``None`` when the position was already closed by the time
        the lock was acquired.
        """
        async with self._locks.for_symbol(position.symbol):
            current = self._ledger.get_position(position.id)
            if current is None or not current.is_open:
                logger.info(
                    "Position #%d %s already closed, skipping %s exit",
                    position.id, position.symbol, reason,
                )
                return None
            return await self._market_exit(current, reason)

    # ── Reconciliation ───────────────────────────────────────────────────

    async def manage_open_orders_and_positions(self) -> None:
        """Poll open orders, then apply simple stop-loss/take-profit exits.

        Failures are isolated per order and per position.
        """
        for order in self._orders.get_open_orders():
            try:
                await self._reconcile_order(order)
            except Exception as exc:
                logger.error("Failed to reconcile order %s (%s): %s", order.id, order.symbol, exc)
                await self._notifier.notify_error(f"Order reconciliation failed for {order.id}", exc)

        for position in self._ledger.get_open_positions():
            try:
                price = await self._market_data.get_current_price(position.symbol)
                reason = _limit_breach(position, price)
                if reason is not None:
                    logger.info(
                        "Position #%d %s hit %s at %g",
                        position.id, position.symbol, reason, price,
                    )
                    await self.close_position_with_market_order(position, reason)
            except Exception as exc:
                logger.error("Failed to check position #%d (%s): %s", position.id, position.symbol, exc)
                await self._notifier.notify_error(f"Position check failed for {position.symbol}", exc)

    async def _reconcile_order(self, order: OrderResult) -> None:
        live = await self._exchange.get_order_status(order.symbol, order.id)
        if live.status == order.status and live.executed_quantity == order.executed_quantity:
            return

        self._orders.update_order(live)
        logger.info("Order %s %s: %s → %s", order.id, order.symbol, order.status.value, live.status.value)

        if live.status is OrderStatus.FILLED and live.side is OrderSide.SELL:
            async with self._locks.for_symbol(live.symbol):
                position = self._ledger.get_open_position(live.symbol)
                if position is not None:
                    self._ledger.close_position(position.id, live.fill_price)
                await self._cancel_protective_orders(live.symbol, exclude_id=live.id)
            await self._notifier.notify_order_executed(live)
        elif live.is_terminal and not live.is_filled:
            logger.warning(
                "Order %s %s (%s) ended %s without a fill",
                live.id, live.symbol, live.type.value, live.status.value,
            )

    # ── Internals ────────────────────────────────────────────────────────

    async def _enter_long(
        self,
        symbol: str,
        signal: Signal,
        quantity: Optional[float],
    ) -> OrderResult:
        if quantity is None:
            quantity = await self.calculate_order_quantity(symbol, signal.price)
        if quantity <= 0:
            return _rejected(symbol, OrderSide.BUY, signal.price, "Calculated quantity is zero")

        order = await self._exchange.place_order(symbol, OrderType.MARKET, OrderSide.BUY, quantity)
        self._orders.save_order(order)

        if order.is_filled:
            filled_qty = order.executed_quantity or quantity
            self._ledger.open_position(
                symbol=symbol,
                entry_price=order.fill_price,
                quantity=filled_qty,
                position_type=PositionType.LONG,
                strategy=signal.strategy,
            )
            await self._place_protective_orders(symbol, order.fill_price, filled_qty)

        await self._notifier.notify_order_executed(order)
        return order

    async def _market_exit(self, position: Position, reason: str) -> OrderResult:
        """Cancel protective orders, sell at market, close the position on fill.

        An exit market order still pending from an earlier call is returned
        instead of submitting another one; reconciliation closes the
        position once it fills.
        """
        side = OrderSide.SELL if position.type is PositionType.LONG else OrderSide.BUY
        pending = [
            o for o in self._orders.get_open_orders(position.symbol, (OrderType.MARKET,))
            if o.side is side
        ]
        if pending:
            logger.info(
                "Exit for position #%d %s already pending as order %s",
                position.id, position.symbol, pending[0].id,
            )
            return pending[0]

        await self._cancel_protective_orders(position.symbol)

        order = await self._exchange.place_order(
            position.symbol, OrderType.MARKET, side, position.quantity,
        )
        self._orders.save_order(order)

        if order.is_filled:
            self._ledger.close_position(position.id, order.fill_price)
            logger.info(
                "Exited position #%d %s (%s) at %g",
                position.id, position.symbol, reason, order.fill_price,
            )

        await self._notifier.notify_order_executed(order)
        return order

    async def _place_protective_orders(self, symbol: str, fill_price: float, quantity: float) -> None:
        pair = self._pairs.get(symbol)
        precision = pair.price_precision if pair else 8
        levels: list[tuple[OrderType, float]] = []
        if self._config.use_stop_loss:
            levels.append((
                OrderType.STOP_LOSS,
                round(fill_price * (1 - self._config.stop_loss_pct / 100.0), precision),
            ))
        if self._config.use_take_profit:
            levels.append((
                OrderType.TAKE_PROFIT,
                round(fill_price * (1 + self._config.take_profit_pct / 100.0), precision),
            ))

        for order_type, trigger in levels:
            try:
                order = await self._exchange.place_order(
                    symbol, order_type, OrderSide.SELL, quantity, trigger,
                )
                self._orders.save_order(order)
                logger.info("Placed %s for %s at %g", order_type.value, symbol, trigger)
            except Exception as exc:
                logger.error("Failed to place %s for %s: %s", order_type.value, symbol, exc)
                await self._notifier.notify_error(
                    f"Failed to place {order_type.value} for {symbol}", exc,
                )

    async def _cancel_protective_orders(self, symbol: str, exclude_id: Optional[str] = None) -> None:
        for order in self._orders.get_open_orders(symbol, _PROTECTIVE_TYPES):
            if order.id == exclude_id:
                continue
            try:
                if await self._exchange.cancel_order(symbol, order.id):
                    self._orders.update_order(dataclasses.replace(
                        order,
                        status=OrderStatus.CANCELED,
                        updated_at=datetime.now(timezone.utc),
                    ))
            except Exception as exc:
                logger.warning("Failed to cancel %s order %s: %s", order.type.value, order.id, exc)


# ── Helpers ──────────────────────────────────────────────────────────────


def _limit_breach(position: Position, price: float) -> Optional[str]:
    """Return ``"stop_loss"`` / ``"take_profit"`` if *price* crossed a limit."""
    if position.type is PositionType.LONG:
        if position.stop_loss is not None and price <= position.stop_loss:
            return "stop_loss"
        if position.take_profit is not None and price >= position.take_profit:
            return "take_profit"
    else:
        if position.stop_loss is not None and price >= position.stop_loss:
            return "stop_loss"
        if position.take_profit is not None and price <= position.take_profit:
            return "take_profit"
    return None


def _rejected(symbol: str, side: OrderSide, price: float, reason: str) -> OrderResult:
    return OrderResult(
        id="",
        symbol=symbol,
        type=OrderType.MARKET,
        side=side,
        price=price,
        quantity=0.0,
        executed_quantity=0.0,
        status=OrderStatus.REJECTED,
        created_at=datetime.now(timezone.utc),
        reason=reason,
    )
