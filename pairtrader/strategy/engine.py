"""Strategy engine — selects a policy by name and turns candles into signals."""

import dataclasses
import logging
from typing import Any, Optional

from pairtrader.exchange.base import MarketDataProtocol
from pairtrader.exchange.models import Candle
from pairtrader.strategy.models import (
    Signal,
    StrategyParameters,
    apply_parameters,
)
from pairtrader.strategy.registry import DEFAULT_STRATEGY, get_strategy

logger = logging.getLogger("pairtrader.strategy")

MIN_CANDLES = 100
_FETCH_LIMIT = 200


class StrategyEngine:
    """Generates signals with the configured strategy.

    Args:
        market_data: Candle/price source used by :meth:`fetch_signal`.
        strategy_name: Registry key of the policy to run.
        parameters: Shared, mutable parameter set.  Read on every call.
    """

    def __init__(
        self,
        market_data: Optional[MarketDataProtocol] = None,
        strategy_name: str = DEFAULT_STRATEGY,
        parameters: Optional[StrategyParameters] = None,
    ) -> None:
        self._market_data = market_data
        self._strategy = get_strategy(strategy_name)
        self.parameters = parameters or StrategyParameters()

    @property
    def strategy_name(self) -> str:
        return self._strategy.name

    def configure(self, values: dict[str, Any]) -> None:
        """Apply named parameter updates; unknown names go to ``custom``."""
        apply_parameters(self.parameters, values)
        logger.info("Strategy parameters updated: %s", ", ".join(values.keys()))

    def generate_signal(
        self,
        symbol: str,
        candles: list[Candle],
        parameters: Optional[StrategyParameters] = None,
    ) -> Signal:
        """Evaluate *candles* and return a signal priced at the last close.

        Fewer than 100 candles is a normal outcome and yields a no-action
        signal.
        """
        if len(candles) < MIN_CANDLES:
            logger.warning(
                "Not enough candles for %s: need %d, got %d",
                symbol, MIN_CANDLES, len(candles),
            )
            return Signal.none(symbol, self.strategy_name)

        return self._strategy.generate_signal(
            symbol, candles, parameters or self.parameters,
        )

    async def fetch_signal(self, symbol: str, interval: str) -> Signal:
        """Fetch recent candles and the live price, then generate a signal.

        Any failure is logged and reported as a no-action signal.
        """
        if self._market_data is None:
            raise RuntimeError("StrategyEngine has no market data source")
        try:
            candles = await self._market_data.get_candles(
                symbol, interval, limit=_FETCH_LIMIT,
            )
            signal = self.generate_signal(symbol, candles)
            if len(candles) < MIN_CANDLES:
                return signal
            current_price = await self._market_data.get_current_price(symbol)
            signal = dataclasses.replace(signal, price=current_price, interval=interval)
            logger.info(
                "Signal for %s: %s at %.8g (confidence %.2f)",
                symbol, signal.action.value, signal.price, signal.confidence,
            )
            return signal
        except Exception as exc:
            logger.error("Error generating signal for %s: %s", symbol, exc)
            return Signal.none(symbol, self.strategy_name)
