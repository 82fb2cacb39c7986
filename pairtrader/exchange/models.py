"""Exchange data models — typed representations of Binance REST objects."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional


class OrderType(str, Enum):
    MARKET = "MARKET"
    LIMIT = "LIMIT"
    STOP_LOSS = "STOP_LOSS"
    TAKE_PROFIT = "TAKE_PROFIT"


class OrderSide(str, Enum):
    BUY = "BUY"
    SELL = "SELL"


class OrderStatus(str, Enum):
    NEW = "NEW"
    PARTIALLY_FILLED = "PARTIALLY_FILLED"
    FILLED = "FILLED"
    CANCELED = "CANCELED"
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"


_FILLED_STATUSES = {OrderStatus.FILLED, OrderStatus.PARTIALLY_FILLED}
_TERMINAL_STATUSES = {
    OrderStatus.FILLED,
    OrderStatus.CANCELED,
    OrderStatus.REJECTED,
    OrderStatus.EXPIRED,
}


@dataclass(frozen=True)
class Candle:
    """A single closed candlestick bar."""

    symbol: str
    interval: str
    open: float
    high: float
    low: float
    close: float
    volume: float
    open_time: datetime
    close_time: datetime


@dataclass(frozen=True)
class OrderResult:
    """An order as last reported by the exchange (or a local rejection)."""

    id: str
    symbol: str
    type: OrderType
    side: OrderSide
    price: float
    quantity: float
    executed_quantity: float
    status: OrderStatus
    created_at: datetime
    updated_at: Optional[datetime] = None
    stop_price: Optional[float] = None
    client_order_id: str = ""
    commission: Optional[float] = None
    commission_asset: Optional[str] = None
    average_price: Optional[float] = None
    reason: str = ""  # populated for local rejections

    @property
    def is_filled(self) -> bool:
        """True for ``FILLED`` and ``PARTIALLY_FILLED`` orders."""
        return self.status in _FILLED_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self.status in _TERMINAL_STATUSES

    @property
    def fill_price(self) -> float:
        """Average execution price when known, else the requested price."""
        if self.average_price:
            return self.average_price
        return self.price
