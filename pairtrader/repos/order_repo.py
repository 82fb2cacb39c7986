"""Order repository — SQLite persistence for exchange orders."""

import logging
import sqlite3
from datetime import datetime
from typing import Optional

from pairtrader.exchange.models import OrderResult, OrderSide, OrderStatus, OrderType
from pairtrader.repos.db import get_connection

logger = logging.getLogger("pairtrader.repos")

_OPEN_STATUSES = (OrderStatus.NEW.value, OrderStatus.PARTIALLY_FILLED.value)


class OrderRepo:
    """Data access layer for the ``orders`` table, keyed by exchange order id.

    Args:
        db_path: Path to the SQLite database file.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    # ── Write ────────────────────────────────────────────────────────────

    def save_order(self, order: OrderResult) -> bool:
        """Insert *order*.  Re-saving an existing id is a no-op.

        Returns ``True`` if a row was written.
        """
        conn = get_connection(self._db_path)
        try:
            cur = conn.execute(
                """
                INSERT OR IGNORE INTO orders
                    (id, symbol, order_type, side, price, quantity,
                     executed_quantity, status, created_at, updated_at,
                     stop_price, client_order_id, commission,
                     commission_asset, average_price)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    order.id, order.symbol, order.type.value, order.side.value,
                    order.price, order.quantity, order.executed_quantity,
                    order.status.value, order.created_at.isoformat(),
                    order.updated_at.isoformat() if order.updated_at else None,
                    order.stop_price, order.client_order_id, order.commission,
                    order.commission_asset, order.average_price,
                ),
            )
            conn.commit()
            written = cur.rowcount
        finally:
            conn.close()

        if written == 0:
            logger.warning("Order %s already saved, ignoring duplicate", order.id)
            return False
        return True

    def update_order(self, order: OrderResult) -> None:
        """Overwrite the mutable fields of a stored order."""
        conn = get_connection(self._db_path)
        try:
            conn.execute(
                """
                UPDATE orders
                SET executed_quantity = ?, status = ?, updated_at = ?,
                    commission = ?, commission_asset = ?, average_price = ?
                WHERE id = ?
                """,
                (
                    order.executed_quantity, order.status.value,
                    order.updated_at.isoformat() if order.updated_at else None,
                    order.commission, order.commission_asset, order.average_price,
                    order.id,
                ),
            )
            conn.commit()
        finally:
            conn.close()

    # ── Read ─────────────────────────────────────────────────────────────

    def get_order(self, order_id: str) -> Optional[OrderResult]:
        conn = get_connection(self._db_path)
        try:
            row = conn.execute(
                "SELECT * FROM orders WHERE id = ?", (order_id,),
            ).fetchone()
            return _row_to_order(row) if row else None
        finally:
            conn.close()

    def get_open_orders(
        self,
        symbol: Optional[str] = None,
        order_types: Optional[tuple[OrderType, ...]] = None,
    ) -> list[OrderResult]:
        """Orders still ``NEW`` or ``PARTIALLY_FILLED``, oldest first."""
        conditions = ["status IN (?, ?)"]
        params: list = list(_OPEN_STATUSES)
        if symbol:
            conditions.append("symbol = ?")
            params.append(symbol)
        if order_types:
            conditions.append(
                f"order_type IN ({', '.join('?' for _ in order_types)})"
            )
            params.extend(t.value for t in order_types)

        conn = get_connection(self._db_path)
        try:
            rows = conn.execute(
                f"SELECT * FROM orders WHERE {' AND '.join(conditions)} ORDER BY created_at",
                params,
            ).fetchall()
            return [_row_to_order(r) for r in rows]
        finally:
            conn.close()


def _row_to_order(row: sqlite3.Row) -> OrderResult:
    return OrderResult(
        id=row["id"],
        symbol=row["symbol"],
        type=OrderType(row["order_type"]),
        side=OrderSide(row["side"]),
        price=row["price"],
        quantity=row["quantity"],
        executed_quantity=row["executed_quantity"],
        status=OrderStatus(row["status"]),
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]) if row["updated_at"] else None,
        stop_price=row["stop_price"],
        client_order_id=row["client_order_id"],
        commission=row["commission"],
        commission_asset=row["commission_asset"],
        average_price=row["average_price"],
    )
