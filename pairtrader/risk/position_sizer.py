"""Position sizing — pure math, no I/O.

Turns an available quote balance into an order quantity that respects the
pair's minimum size and quantity precision.
"""

import math

from pairtrader.config import TradingPairConfig

_TARGET_VOLATILITY = 0.05
_MIN_VOLATILITY = 0.01
_MIN_VOL_FACTOR = 0.5
_MAX_VOL_FACTOR = 2.0


def truncate(value: float, precision: int) -> float:
    """Truncate (never round up) *value* to *precision* decimals."""
    factor = 10 ** precision
    # 1e-9 absorbs float error such as 0.29999999999.
    return math.floor(value * factor + 1e-9) / factor


def calculate_order_quantity(
    balance: float,
    risk_per_trade_pct: float,
    min_order_amount: float,
    price: float,
    pair: TradingPairConfig,
) -> float:
    """Calculate an order quantity in base-asset units.

    Formula::

        investment = max(balance × risk_pct / 100, min_order_amount)
        quantity   = max(investment / price, pair.min_quantity)
        quantity   = floor(quantity × 10^precision) / 10^precision

    Args:
        balance: Free quote-asset balance.
        risk_per_trade_pct: Share of the balance to commit, e.g. 2.0 for 2 %.
        min_order_amount: Smallest quote amount worth ordering.
        price: Current price of the pair.
        pair: Exchange rules for the pair.

    Raises:
        ValueError: If *price* is non-positive.
    """
    if price <= 0:
        raise ValueError(f"price must be positive, got {price}")

    investment = max(balance * risk_per_trade_pct / 100.0, min_order_amount)
    quantity = max(investment / price, pair.min_quantity)
    return truncate(quantity, pair.quantity_precision)


def calculate_volatility_adjusted_quantity(
    available_capital: float,
    risk_per_trade_pct: float,
    price: float,
    volatility: float,
    pair: TradingPairConfig,
) -> float:
    """Size a position inversely to volatility.

    The base quantity ``capital × risk% / price`` is scaled by
    ``0.05 / max(volatility, 0.01)`` clamped to ``[0.5, 2.0]``, truncated
    to the pair precision and clamped to the pair's min/max quantity.
    """
    if price <= 0:
        raise ValueError(f"price must be positive, got {price}")

    base_quantity = available_capital * risk_per_trade_pct / 100.0 / price
    factor = _TARGET_VOLATILITY / max(volatility, _MIN_VOLATILITY)
    factor = min(max(factor, _MIN_VOL_FACTOR), _MAX_VOL_FACTOR)

    quantity = truncate(base_quantity * factor, pair.quantity_precision)
    if quantity < pair.min_quantity:
        quantity = pair.min_quantity
    if pair.max_quantity > 0 and quantity > pair.max_quantity:
        quantity = pair.max_quantity
    return quantity
