"""Trailing stop — progressive stop-loss management for open positions.

Rules (long positions):
  - At +2 % unrealized profit → move the stop to break-even (entry price).
  - At +5 % → lock in half of the gain: ``entry + (price − entry) × 0.5``.

A stop is never moved down.  Short positions keep their stop unchanged.
"""

from typing import Optional

from pairtrader.models.position import PositionType

BREAK_EVEN_TRIGGER = 0.02
LOCK_IN_TRIGGER = 0.05
LOCK_IN_SHARE = 0.5


def calculate_dynamic_stop_loss(
    position_type: PositionType,
    entry_price: float,
    current_price: float,
    current_stop: Optional[float],
) -> Optional[float]:
    """Return the stop-loss that should apply at *current_price*.

    The result is never below *current_stop* for long positions, so the
    caller can compare it with the previous value to decide whether to
    persist a change.
    """
    if current_stop is None or entry_price <= 0:
        return current_stop
    if position_type is not PositionType.LONG:
        return current_stop

    gain_pct = (current_price - entry_price) / entry_price
    if gain_pct >= LOCK_IN_TRIGGER:
        candidate = entry_price + (current_price - entry_price) * LOCK_IN_SHARE
    elif gain_pct >= BREAK_EVEN_TRIGGER:
        candidate = entry_price
    else:
        return current_stop

    return max(candidate, current_stop)
