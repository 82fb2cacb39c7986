"""Strategy protocol.

Defines the interface that all decision policies must implement.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from pairtrader.exchange.models import Candle
from pairtrader.strategy.models import Signal, StrategyParameters


@runtime_checkable
class StrategyProtocol(Protocol):
    """Interface that all trading strategies must satisfy."""

    name: str

    def generate_signal(
        self,
        symbol: str,
        candles: list[Candle],
        params: StrategyParameters,
    ) -> Signal:
        """Evaluate *candles* (oldest-first) and return a signal."""
        ...
