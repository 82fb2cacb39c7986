"""Position ledger — the single writer of position records.

Opens, closes and adjusts positions and answers "is this symbol held".
Expected non-success outcomes come back as ``Result`` values; invariant
violations (closing twice, editing a closed position) are no-ops logged at
WARNING.
"""

import logging
from datetime import date, datetime, timezone
from typing import Optional

from pairtrader.config import Config
from pairtrader.models.position import (
    Position,
    PositionStatus,
    PositionType,
    profit_for,
)
from pairtrader.repos.position_repo import PositionRepo
from pairtrader.results import Result

logger = logging.getLogger("pairtrader.ledger")


class PositionLedger:
    """CRUD and PnL over positions.

    Args:
        config: Supplies stop-loss / take-profit percentages.
        repo: Backing ``PositionRepo``.
    """

    def __init__(self, config: Config, repo: PositionRepo) -> None:
        self._config = config
        self._repo = repo

    # ── Mutations ────────────────────────────────────────────────────────

    def open_position(
        self,
        symbol: str,
        entry_price: float,
        quantity: float,
        position_type: PositionType = PositionType.LONG,
        strategy: str = "",
        now: Optional[datetime] = None,
    ) -> Position:
        """Record a new open position with config-derived protective levels."""
        opened_at = _utc(now)
        stop_loss, take_profit = self._protective_levels(entry_price, position_type)
        position_id = self._repo.insert_position(
            symbol=symbol,
            position_type=position_type,
            entry_price=entry_price,
            quantity=quantity,
            opened_at=opened_at,
            stop_loss=stop_loss,
            take_profit=take_profit,
            strategy=strategy,
        )
        logger.info(
            "Opened %s position #%d %s qty=%g @ %g (SL=%s TP=%s)",
            position_type.value, position_id, symbol, quantity, entry_price,
            stop_loss, take_profit,
        )
        return Position(
            id=position_id,
            symbol=symbol,
            type=position_type,
            status=PositionStatus.OPEN,
            entry_price=entry_price,
            quantity=quantity,
            opened_at=opened_at,
            stop_loss=stop_loss,
            take_profit=take_profit,
            strategy=strategy,
        )

    def close_position(
        self,
        position_id: int,
        exit_price: float,
        now: Optional[datetime] = None,
    ) -> Result[Position]:
        """Close a position, recording exit price, time and profit together.

        Closing an already-closed position changes nothing and returns the
        stored record.
        """
        position = self._repo.get_position(position_id)
        if position is None:
            return Result.not_found(f"Position {position_id} not found")

        if not position.is_open:
            logger.warning("Position #%d is already closed", position_id)
            return Result.success(position)

        profit = profit_for(position.type, position.entry_price, exit_price, position.quantity)
        closed_at = _utc(now)
        if not self._repo.close_position(position_id, exit_price, profit, closed_at):
            # Lost a race with another closer; report what was stored.
            logger.warning("Position #%d was closed concurrently", position_id)
            return Result.success(self._repo.get_position(position_id))

        logger.info(
            "Closed position #%d %s @ %g, profit %.4f",
            position_id, position.symbol, exit_price, profit,
        )
        return Result.success(self._repo.get_position(position_id))

    def update_position_limits(
        self,
        position_id: int,
        stop_loss: Optional[float],
        take_profit: Optional[float],
    ) -> Result[Position]:
        position = self._repo.get_position(position_id)
        if position is None:
            return Result.not_found(f"Position {position_id} not found")
        if not position.is_open or not self._repo.update_limits(
            position_id, stop_loss, take_profit,
        ):
            logger.warning("Cannot update limits of closed position #%d", position_id)
            return Result.rejected(f"Position {position_id} is closed")
        return Result.success(self._repo.get_position(position_id))

    # ── Queries ──────────────────────────────────────────────────────────

    def get_position(self, position_id: int) -> Optional[Position]:
        return self._repo.get_position(position_id)

    def get_open_positions(self) -> list[Position]:
        return self._repo.get_open_positions()

    def get_open_position(self, symbol: str) -> Optional[Position]:
        """The oldest open position for *symbol*, if any."""
        positions = self._repo.get_open_positions(symbol)
        return positions[0] if positions else None

    def get_closed_positions_for_date(
        self,
        day: date,
        today: Optional[date] = None,
    ) -> Result[list[Position]]:
        """Positions closed on *day* (UTC).  Future dates are rejected."""
        today = today or datetime.now(timezone.utc).date()
        if day > today:
            return Result.rejected(f"Date {day.isoformat()} is in the future")
        return Result.success(self._repo.get_closed_on(day))

    def calculate_pnl(self, position_id: int, current_price: float) -> Result[float]:
        position = self._repo.get_position(position_id)
        if position is None:
            return Result.not_found(f"Position {position_id} not found")
        return Result.success(position.calculate_pnl(current_price))

    # ── Helpers ──────────────────────────────────────────────────────────

    def _protective_levels(
        self,
        entry_price: float,
        position_type: PositionType,
    ) -> tuple[Optional[float], Optional[float]]:
        sl_frac = self._config.stop_loss_pct / 100.0
        tp_frac = self._config.take_profit_pct / 100.0
        direction = 1 if position_type is PositionType.LONG else -1

        stop_loss = None
        take_profit = None
        if self._config.use_stop_loss:
            stop_loss = entry_price * (1 - direction * sl_frac)
        if self._config.use_take_profit:
            take_profit = entry_price * (1 + direction * tp_frac)
        return stop_loss, take_profit


def _utc(now: Optional[datetime]) -> datetime:
    if now is None:
        return datetime.now(timezone.utc)
    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now.astimezone(timezone.utc)
