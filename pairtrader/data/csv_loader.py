"""CSV market data — historical candles from disk for offline backtests.

Each file is named ``{SYMBOL}_{interval}.csv`` and holds::

    open_time,open,high,low,close,volume[,close_time]

``open_time``/``close_time`` may be ISO timestamps or epoch milliseconds.
When ``close_time`` is absent it is derived from the interval length.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

import pandas as pd

from pairtrader.exchange.intervals import interval_to_timedelta
from pairtrader.exchange.models import Candle

logger = logging.getLogger("pairtrader.data")

_REQUIRED_COLUMNS = ["open_time", "open", "high", "low", "close", "volume"]


class CsvMarketData:
    """Serve candles from CSV files in *csv_dir*.

    Only the read side of ``MarketDataProtocol`` is meaningful: the current
    price is the last loaded close and balances come from *balances*.
    """

    def __init__(self, csv_dir: str, balances: Optional[dict[str, float]] = None) -> None:
        self.csv_dir = Path(csv_dir)
        self._balances = dict(balances or {})
        self._frames: dict[tuple[str, str], pd.DataFrame] = {}

    def load(self, symbol: str, interval: str) -> pd.DataFrame:
        """Load and cache the frame for *symbol*/*interval*, sorted by time."""
        key = (symbol, interval)
        if key in self._frames:
            return self._frames[key]

        file_path = self.csv_dir / f"{symbol}_{interval}.csv"
        if not file_path.exists():
            raise FileNotFoundError(
                f"CSV file not found for {symbol} {interval}: {file_path}"
            )

        df = pd.read_csv(file_path)
        missing = [c for c in _REQUIRED_COLUMNS if c not in df.columns]
        if missing:
            raise ValueError(
                f"CSV for {symbol} {interval} is missing columns: {missing}"
            )

        df["open_time"] = _to_utc(df["open_time"])
        if "close_time" in df.columns:
            df["close_time"] = _to_utc(df["close_time"])
        else:
            step = interval_to_timedelta(interval) - timedelta(milliseconds=1)
            df["close_time"] = df["open_time"] + step

        df = df.sort_values("open_time").reset_index(drop=True)
        self._frames[key] = df
        logger.info("Loaded %d %s %s candles from %s", len(df), symbol, interval, file_path)
        return df

    async def get_candles(
        self,
        symbol: str,
        interval: str,
        limit: Optional[int] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> list[Candle]:
        df = self.load(symbol, interval)
        if start is not None:
            df = df[df["open_time"] >= pd.Timestamp(_aware(start))]
        if end is not None:
            df = df[df["open_time"] <= pd.Timestamp(_aware(end))]
        if limit:
            df = df.tail(limit)

        return [
            Candle(
                symbol=symbol,
                interval=interval,
                open=float(row.open),
                high=float(row.high),
                low=float(row.low),
                close=float(row.close),
                volume=float(row.volume),
                open_time=row.open_time.to_pydatetime(),
                close_time=row.close_time.to_pydatetime(),
            )
            for row in df.itertuples(index=False)
        ]

    async def get_current_price(self, symbol: str) -> float:
        """Last close of the first loaded interval for *symbol*."""
        for (sym, _interval), df in self._frames.items():
            if sym == symbol and not df.empty:
                return float(df["close"].iloc[-1])
        raise KeyError(f"No candles loaded for {symbol}")

    async def get_balance(self, asset: str) -> float:
        return self._balances.get(asset, 0.0)


def _to_utc(col: pd.Series) -> pd.Series:
    if pd.api.types.is_numeric_dtype(col):
        return pd.to_datetime(col, unit="ms", utc=True)
    return pd.to_datetime(col, utc=True)


def _aware(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt
