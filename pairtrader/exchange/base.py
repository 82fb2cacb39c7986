"""Collaborator protocols for market data and order routing.

The core only talks to these interfaces; ``BinanceClient`` implements both,
``CsvMarketData`` implements the market-data half for offline backtests.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional, Protocol, runtime_checkable

from pairtrader.exchange.models import Candle, OrderResult, OrderSide, OrderType


@runtime_checkable
class MarketDataProtocol(Protocol):
    """Source of candles, prices and balances."""

    async def get_candles(
        self,
        symbol: str,
        interval: str,
        limit: Optional[int] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> list[Candle]:
        """Return candles ordered oldest-first."""
        ...

    async def get_current_price(self, symbol: str) -> float:
        ...

    async def get_balance(self, asset: str) -> float:
        """Free balance of *asset*."""
        ...


@runtime_checkable
class ExchangeProtocol(Protocol):
    """Order routing interface."""

    async def place_order(
        self,
        symbol: str,
        order_type: OrderType,
        side: OrderSide,
        quantity: float,
        price: Optional[float] = None,
    ) -> OrderResult:
        ...

    async def cancel_order(self, symbol: str, order_id: str) -> bool:
        ...

    async def get_order_status(self, symbol: str, order_id: str) -> OrderResult:
        ...
