"""Risk manager — entry validation, position monitoring and exposure control.

No aggregate is cached: exposure, balance and daily PnL are recomputed from
the ledger and live prices every time they are needed.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from pairtrader.config import Config, TradingPairConfig
from pairtrader.exchange.base import MarketDataProtocol
from pairtrader.execution.executor import OrderExecutor
from pairtrader.ledger import PositionLedger
from pairtrader.models.position import Position
from pairtrader.risk.position_sizer import calculate_volatility_adjusted_quantity
from pairtrader.risk.session import is_in_session
from pairtrader.risk.trailing_stop import calculate_dynamic_stop_loss
from pairtrader.risk.volatility import log_return_volatility, trend_direction

logger = logging.getLogger("pairtrader.risk")

# Broad-market volatility proxy: reference symbol, 24 hourly bars.
_MARKET_VOL_INTERVAL = "1h"
_MARKET_VOL_PERIOD = 24
_MARKET_VOL_CEILING = 0.04

# Trend proxy: reference symbol, last 6 four-hour closes.
_TREND_INTERVAL = "4h"
_TREND_BARS = 6
_TREND_MIN_MOVES = 5

_VOLATILITY_INTERVAL = "1d"
_VOLATILITY_PERIOD = 14

# Rebalancing stops once exposure is back to this share of the maximum.
_REBALANCE_TARGET_SHARE = 0.8


class RiskManager:
    """Validates new entries and supervises open positions.

    Args:
        config: Risk limits.
        market_data: Price, candle and balance source.
        ledger: Position ledger.
        executor: Used for market exits.
        pairs: Trading pair rules keyed by symbol.
    """

    def __init__(
        self,
        config: Config,
        market_data: MarketDataProtocol,
        ledger: PositionLedger,
        executor: OrderExecutor,
        pairs: Optional[dict[str, TradingPairConfig]] = None,
    ) -> None:
        self._config = config
        self._market_data = market_data
        self._ledger = ledger
        self._executor = executor
        self._pairs = pairs or {}

    # ── Entry validation ─────────────────────────────────────────────────

    async def validate_new_position(
        self,
        symbol: str,
        price: float,
        quantity: float,
        now: Optional[datetime] = None,
    ) -> tuple[bool, str]:
        """Check a proposed entry against every limit, in a fixed order.

        Returns ``(allowed, reason)``; the first failing check wins.
        """
        now = now or datetime.now(timezone.utc)
        try:
            total_balance = await self.get_total_balance()

            exposure = await self.calculate_portfolio_exposure(total_balance)
            if exposure >= self._config.max_portfolio_exposure:
                return self._reject(
                    symbol,
                    f"Portfolio exposure {exposure:.2%} at or above maximum "
                    f"{self._config.max_portfolio_exposure:.2%}",
                )

            position_share = price * quantity / total_balance if total_balance > 0 else float("inf")
            if position_share > self._config.max_position_size:
                return self._reject(
                    symbol,
                    f"Position size {position_share:.2%} exceeds maximum "
                    f"{self._config.max_position_size:.2%}",
                )

            volatility = await self.calculate_symbol_volatility(symbol)
            if volatility > self._config.max_allowed_volatility:
                return self._reject(
                    symbol,
                    f"Volatility {volatility:.4f} exceeds maximum "
                    f"{self._config.max_allowed_volatility:.4f}",
                )

            if (
                not self._config.allow_multiple_positions
                and self._ledger.get_open_position(symbol) is not None
            ):
                return self._reject(symbol, f"Position already open for {symbol}")

            if not self.is_trading_session_active(now):
                return self._reject(symbol, "Outside trading hours")

            daily_pnl = self.calculate_daily_pnl(now)
            if daily_pnl < -self._config.max_daily_loss:
                return self._reject(
                    symbol,
                    f"Daily loss {daily_pnl:.2f} exceeds limit "
                    f"{self._config.max_daily_loss:.2f}",
                )

            return True, "Position validated"

        except Exception as exc:
            logger.error("Error validating position for %s: %s", symbol, exc)
            return False, f"Error validating position: {exc}"

    @staticmethod
    def _reject(symbol: str, reason: str) -> tuple[bool, str]:
        logger.info("Entry rejected for %s: %s", symbol, reason)
        return False, reason

    # ── Portfolio aggregates ─────────────────────────────────────────────

    async def get_total_balance(self) -> float:
        """Quote balance plus valuation-asset balances converted at live prices."""
        quote = self._config.quote_asset
        total = await self._market_data.get_balance(quote)
        for asset in self._config.valuation_assets:
            amount = await self._market_data.get_balance(asset)
            if amount > 0:
                total += amount * await self._market_data.get_current_price(f"{asset}{quote}")
        return total

    async def calculate_portfolio_exposure(self, total_balance: Optional[float] = None) -> float:
        """Open-position notional at live prices over total balance (0 if no balance)."""
        if total_balance is None:
            total_balance = await self.get_total_balance()
        if total_balance <= 0:
            return 0.0
        notional = 0.0
        for position in self._ledger.get_open_positions():
            price = await self._market_data.get_current_price(position.symbol)
            notional += position.quantity * price
        return notional / total_balance

    async def calculate_symbol_volatility(
        self,
        symbol: str,
        interval: str = _VOLATILITY_INTERVAL,
        period: int = _VOLATILITY_PERIOD,
        annualize: bool = True,
    ) -> float:
        candles = await self._market_data.get_candles(symbol, interval, limit=period)
        return log_return_volatility([c.close for c in candles], interval, annualize)

    def calculate_daily_pnl(self, now: Optional[datetime] = None) -> float:
        """Realized profit of positions closed on the current UTC day."""
        now = now or datetime.now(timezone.utc)
        today = now.astimezone(timezone.utc).date() if now.tzinfo else now.date()
        result = self._ledger.get_closed_positions_for_date(today, today=today)
        if not result.ok:
            return 0.0
        return sum(p.profit or 0.0 for p in result.value)

    def is_trading_session_active(self, now: Optional[datetime] = None) -> bool:
        if not self._config.restrict_trading_hours:
            return True
        now = now or datetime.now(timezone.utc)
        return is_in_session(
            now.time().replace(microsecond=0),
            self._config.trading_hours_start,
            self._config.trading_hours_end,
        )

    async def is_market_volatile(self) -> bool:
        vol = await self.calculate_symbol_volatility(
            self._config.reference_symbol,
            _MARKET_VOL_INTERVAL,
            _MARKET_VOL_PERIOD,
            annualize=False,
        )
        return vol > _MARKET_VOL_CEILING

    async def market_trend(self) -> int:
        """+1 up, -1 down, 0 sideways for the reference symbol."""
        candles = await self._market_data.get_candles(
            self._config.reference_symbol, _TREND_INTERVAL, limit=_TREND_BARS,
        )
        return trend_direction([c.close for c in candles], _TREND_MIN_MOVES)

    async def calculate_position_size(
        self,
        symbol: str,
        price: float,
        available_capital: float,
    ) -> float:
        """Volatility-adjusted quantity for *symbol*.

        Raises ``ValueError`` for an unknown pair.
        """
        pair = self._pairs.get(symbol)
        if pair is None:
            raise ValueError(f"No trading pair configuration for {symbol}")
        volatility = await self.calculate_symbol_volatility(symbol)
        return calculate_volatility_adjusted_quantity(
            available_capital,
            self._config.risk_per_trade_pct,
            price,
            volatility,
            pair,
        )

    # ── Monitoring ───────────────────────────────────────────────────────

    async def monitor_positions(self, now: Optional[datetime] = None) -> None:
        """Emergency exits and trailing stops for every open position,
        followed by the exposure check.
        """
        now = now or datetime.now(timezone.utc)
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        positions = self._ledger.get_open_positions()
        if positions:
            market_volatile = await self._safe_market_volatile()
            await self._log_market_trend()
            for position in positions:
                try:
                    await self._monitor_position(position, market_volatile, now)
                except Exception as exc:
                    logger.error(
                        "Error monitoring position #%d (%s): %s",
                        position.id, position.symbol, exc,
                    )

        await self.check_portfolio_exposure()

    async def _monitor_position(
        self,
        position: Position,
        market_volatile: bool,
        now: datetime,
    ) -> None:
        price = await self._market_data.get_current_price(position.symbol)
        pnl_pct = position.pnl_pct(price)

        reason = self._emergency_reason(position, pnl_pct, market_volatile, now)
        if reason is not None:
            logger.warning(
                "Emergency exit for #%d %s (%s), PnL %.2f%%",
                position.id, position.symbol, reason, pnl_pct * 100,
            )
            await self._executor.close_position_with_market_order(position, reason)
            return

        if not self._config.use_dynamic_stop_loss or position.stop_loss is None:
            return

        new_stop = calculate_dynamic_stop_loss(
            position.type, position.entry_price, price, position.stop_loss,
        )
        if new_stop is not None and new_stop > position.stop_loss:
            result = self._ledger.update_position_limits(
                position.id, new_stop, position.take_profit,
            )
            if result.ok:
                logger.info(
                    "Raised stop-loss of #%d %s from %g to %g",
                    position.id, position.symbol, position.stop_loss, new_stop,
                )

    def _emergency_reason(
        self,
        position: Position,
        pnl_pct: float,
        market_volatile: bool,
        now: datetime,
    ) -> Optional[str]:
        if pnl_pct < -self._config.emergency_exit_threshold:
            return "loss_threshold"
        if market_volatile and pnl_pct > 0:
            return "market_volatility"
        age = now - position.opened_at
        if age > timedelta(days=self._config.max_position_days) and pnl_pct < 0:
            return "max_age"
        return None

    async def _safe_market_volatile(self) -> bool:
        try:
            return await self.is_market_volatile()
        except Exception as exc:
            logger.warning("Market volatility check failed: %s", exc)
            return False

    async def _log_market_trend(self) -> None:
        try:
            trend = await self.market_trend()
        except Exception as exc:
            logger.warning("Market trend check failed: %s", exc)
            return
        label = {1: "up", -1: "down"}.get(trend, "sideways")
        logger.info("Market trend (%s): %s", self._config.reference_symbol, label)

    # ── Exposure control ─────────────────────────────────────────────────

    async def check_portfolio_exposure(self) -> None:
        """Rebalance when exposure exceeds the critical threshold."""
        try:
            exposure = await self.calculate_portfolio_exposure()
        except Exception as exc:
            logger.error("Exposure check failed: %s", exc)
            return
        if exposure > self._config.critical_exposure_threshold:
            logger.warning(
                "Portfolio exposure %.2f%% above critical %.2f%%, rebalancing",
                exposure * 100, self._config.critical_exposure_threshold * 100,
            )
            await self.reduce_portfolio_exposure()

    async def reduce_portfolio_exposure(self) -> int:
        """Close worst performers until exposure is back at 80 % of the maximum.

        Works on one snapshot of open positions and prices.  Returns the
        number of positions closed.
        """
        total_balance = await self.get_total_balance()
        if total_balance <= 0:
            return 0

        snapshot: list[tuple[Position, float, float]] = []
        for position in self._ledger.get_open_positions():
            price = await self._market_data.get_current_price(position.symbol)
            snapshot.append((position, position.quantity * price, position.calculate_pnl(price)))

        notional = sum(n for _, n, _ in snapshot)
        target = self._config.max_portfolio_exposure * _REBALANCE_TARGET_SHARE
        closed = 0

        for position, position_notional, pnl in sorted(snapshot, key=lambda s: s[2]):
            if notional / total_balance <= target:
                break
            try:
                order = await self._executor.close_position_with_market_order(position, "rebalance")
            except Exception as exc:
                logger.error("Rebalance exit failed for #%d %s: %s", position.id, position.symbol, exc)
                continue
            if order is None:
                # Closed elsewhere since the snapshot; its exposure is gone.
                notional -= position_notional
                continue
            if not order.is_filled:
                logger.warning(
                    "Rebalance exit for #%d %s not filled (%s)",
                    position.id, position.symbol, order.status.value,
                )
                continue
            logger.info(
                "Rebalance closed #%d %s (PnL %.4f)", position.id, position.symbol, pnl,
            )
            notional -= position_notional
            closed += 1

        return closed
