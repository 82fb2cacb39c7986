"""Position dataclass.

Represents one holding in one symbol.  Instances are snapshots: the ledger
writes changes to the store and hands back new snapshots.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional


class PositionType(str, Enum):
    LONG = "long"
    SHORT = "short"


class PositionStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"


@dataclass(frozen=True)
class Position:
    id: int
    symbol: str
    type: PositionType
    status: PositionStatus
    entry_price: float
    quantity: float
    opened_at: datetime
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None
    closed_at: Optional[datetime] = None
    exit_price: Optional[float] = None
    profit: Optional[float] = None
    strategy: str = ""

    @property
    def is_open(self) -> bool:
        return self.status is PositionStatus.OPEN

    @property
    def notional(self) -> float:
        return self.entry_price * self.quantity

    def calculate_pnl(self, current_price: float) -> float:
        """Realized profit when closed, else unrealized PnL at *current_price*."""
        if self.status is PositionStatus.CLOSED:
            return self.profit or 0.0
        return profit_for(self.type, self.entry_price, current_price, self.quantity)

    def pnl_pct(self, current_price: float) -> float:
        """PnL as a fraction of the entry notional (0.05 = +5 %)."""
        if self.notional == 0:
            return 0.0
        return self.calculate_pnl(current_price) / self.notional


def profit_for(
    position_type: PositionType,
    entry_price: float,
    exit_price: float,
    quantity: float,
) -> float:
    """``(exit − entry) × qty`` for longs, the inverse for shorts."""
    if position_type is PositionType.LONG:
        return (exit_price - entry_price) * quantity
    return (entry_price - exit_price) * quantity
