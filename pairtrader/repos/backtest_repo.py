"""Backtest run repository — persists backtest summaries to SQLite."""

from pairtrader.backtest.stats import StrategyPerformance
from pairtrader.repos.db import get_connection


class BacktestRepo:
    """Data access layer for the ``backtest_runs`` table.

    Args:
        db_path: Path to the SQLite database file.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    def insert_run(self, perf: StrategyPerformance) -> int:
        """Persist a backtest summary (trades are not stored).  Returns the row id."""
        conn = get_connection(self._db_path)
        try:
            cur = conn.execute(
                """
                INSERT INTO backtest_runs
                    (symbol, strategy, interval, start_date, end_date,
                     total_trades, winning_trades, losing_trades, win_rate,
                     total_profit, average_profit, max_drawdown,
                     profit_factor, sharpe_ratio)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    perf.symbol,
                    perf.strategy,
                    perf.interval,
                    perf.start.isoformat() if perf.start else "",
                    perf.end.isoformat() if perf.end else "",
                    perf.total_trades,
                    perf.winning_trades,
                    perf.losing_trades,
                    perf.win_rate,
                    perf.total_profit,
                    perf.average_profit,
                    perf.max_drawdown,
                    perf.profit_factor,
                    perf.sharpe_ratio,
                ),
            )
            conn.commit()
            return cur.lastrowid
        finally:
            conn.close()

    def get_runs(self, limit: int = 10) -> list[dict]:
        """Return recent backtest run summaries."""
        conn = get_connection(self._db_path)
        try:
            rows = conn.execute(
                "SELECT * FROM backtest_runs ORDER BY id DESC LIMIT ?",
                (limit,),
            ).fetchall()
            return [dict(r) for r in rows]
        finally:
            conn.close()
