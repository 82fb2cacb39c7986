"""Position repository — SQLite CRUD for the positions table."""

import sqlite3
from datetime import date, datetime, timedelta, timezone
from typing import Optional

from pairtrader.models.position import Position, PositionStatus, PositionType
from pairtrader.repos.db import get_connection


class PositionRepo:
    """Data access layer for position records.

    Args:
        db_path: Path to the SQLite database file.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    # ── Write ────────────────────────────────────────────────────────────

    def insert_position(
        self,
        symbol: str,
        position_type: PositionType,
        entry_price: float,
        quantity: float,
        opened_at: datetime,
        stop_loss: Optional[float],
        take_profit: Optional[float],
        strategy: str,
    ) -> int:
        """Insert a new open position and return its ``id``."""
        conn = get_connection(self._db_path)
        try:
            cur = conn.execute(
                """
                INSERT INTO positions
                    (symbol, position_type, status, entry_price, quantity,
                     stop_loss, take_profit, opened_at, strategy)
                VALUES (?, ?, 'open', ?, ?, ?, ?, ?, ?)
                """,
                (
                    symbol, position_type.value, entry_price, quantity,
                    stop_loss, take_profit, opened_at.isoformat(), strategy,
                ),
            )
            conn.commit()
            return cur.lastrowid
        finally:
            conn.close()

    def close_position(
        self,
        position_id: int,
        exit_price: float,
        profit: float,
        closed_at: datetime,
    ) -> bool:
        """Close an open position in a single guarded UPDATE.

        Returns ``False`` when the row was not open (already closed or
        missing), in which case nothing is written.
        """
        conn = get_connection(self._db_path)
        try:
            cur = conn.execute(
                """
                UPDATE positions
                SET status = 'closed', exit_price = ?, profit = ?, closed_at = ?
                WHERE id = ? AND status = 'open'
                """,
                (exit_price, profit, closed_at.isoformat(), position_id),
            )
            conn.commit()
            return cur.rowcount == 1
        finally:
            conn.close()

    def update_limits(
        self,
        position_id: int,
        stop_loss: Optional[float],
        take_profit: Optional[float],
    ) -> bool:
        """Set stop-loss/take-profit on an open position.  ``False`` if not open."""
        conn = get_connection(self._db_path)
        try:
            cur = conn.execute(
                """
                UPDATE positions
                SET stop_loss = ?, take_profit = ?
                WHERE id = ? AND status = 'open'
                """,
                (stop_loss, take_profit, position_id),
            )
            conn.commit()
            return cur.rowcount == 1
        finally:
            conn.close()

    # ── Read ─────────────────────────────────────────────────────────────

    def get_position(self, position_id: int) -> Optional[Position]:
        conn = get_connection(self._db_path)
        try:
            row = conn.execute(
                "SELECT * FROM positions WHERE id = ?", (position_id,),
            ).fetchone()
            return _row_to_position(row) if row else None
        finally:
            conn.close()

    def get_open_positions(self, symbol: Optional[str] = None) -> list[Position]:
        """Open positions, oldest first, optionally for one symbol."""
        conn = get_connection(self._db_path)
        try:
            if symbol:
                rows = conn.execute(
                    "SELECT * FROM positions WHERE status = 'open' AND symbol = ? ORDER BY id",
                    (symbol,),
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM positions WHERE status = 'open' ORDER BY id",
                ).fetchall()
            return [_row_to_position(r) for r in rows]
        finally:
            conn.close()

    def get_closed_on(self, day: date) -> list[Position]:
        """Positions closed during the UTC calendar day *day*."""
        start = datetime(day.year, day.month, day.day, tzinfo=timezone.utc)
        end = start + timedelta(days=1)
        conn = get_connection(self._db_path)
        try:
            rows = conn.execute(
                """
                SELECT * FROM positions
                WHERE status = 'closed' AND closed_at >= ? AND closed_at < ?
                ORDER BY closed_at
                """,
                (start.isoformat(), end.isoformat()),
            ).fetchall()
            return [_row_to_position(r) for r in rows]
        finally:
            conn.close()


def _row_to_position(row: sqlite3.Row) -> Position:
    return Position(
        id=row["id"],
        symbol=row["symbol"],
        type=PositionType(row["position_type"]),
        status=PositionStatus(row["status"]),
        entry_price=row["entry_price"],
        quantity=row["quantity"],
        opened_at=datetime.fromisoformat(row["opened_at"]),
        stop_loss=row["stop_loss"],
        take_profit=row["take_profit"],
        closed_at=datetime.fromisoformat(row["closed_at"]) if row["closed_at"] else None,
        exit_price=row["exit_price"],
        profit=row["profit"],
        strategy=row["strategy"],
    )
