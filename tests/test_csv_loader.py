"""Tests for pairtrader.data.csv_loader — offline candles from CSV files."""

from datetime import datetime, timedelta, timezone

import pytest

from pairtrader.data.csv_loader import CsvMarketData


_HEADER = "open_time,open,high,low,close,volume\n"


def _write(tmp_path, name: str, body: str) -> None:
    (tmp_path / name).write_text(body, encoding="utf-8")


class TestCsvMarketData:
    @pytest.mark.asyncio
    async def test_iso_timestamps_sorted_and_close_time_derived(self, tmp_path):
        _write(
            tmp_path,
            "BTCUSDT_1h.csv",
            _HEADER
            + "2025-01-01T01:00:00Z,101,102,100,101.5,10\n"
            + "2025-01-01T00:00:00Z,100,101,99,100.5,12\n",
        )
        md = CsvMarketData(str(tmp_path))
        candles = await md.get_candles("BTCUSDT", "1h")

        assert [c.close for c in candles] == [100.5, 101.5]
        first = candles[0]
        assert first.open_time == datetime(2025, 1, 1, tzinfo=timezone.utc)
        assert first.close_time == first.open_time + timedelta(hours=1) - timedelta(milliseconds=1)
        assert first.symbol == "BTCUSDT"
        assert first.interval == "1h"

    @pytest.mark.asyncio
    async def test_epoch_millis(self, tmp_path):
        _write(
            tmp_path,
            "ETHUSDT_1d.csv",
            "open_time,open,high,low,close,volume,close_time\n"
            "1735689600000,3000,3100,2900,3050,500,1735775999999\n",
        )
        candles = await CsvMarketData(str(tmp_path)).get_candles("ETHUSDT", "1d")
        assert candles[0].open_time == datetime(2025, 1, 1, tzinfo=timezone.utc)
        assert candles[0].close_time.date() == datetime(2025, 1, 1).date()

    @pytest.mark.asyncio
    async def test_range_and_limit(self, tmp_path):
        rows = "".join(
            f"2025-01-{day:02d}T00:00:00Z,{100 + day},{101 + day},{99 + day},{100 + day},1\n"
            for day in range(1, 11)
        )
        _write(tmp_path, "BTCUSDT_1d.csv", _HEADER + rows)
        md = CsvMarketData(str(tmp_path))

        ranged = await md.get_candles(
            "BTCUSDT", "1d",
            start=datetime(2025, 1, 3, tzinfo=timezone.utc),
            end=datetime(2025, 1, 6),  # naive treated as UTC
        )
        assert [c.close for c in ranged] == [103.0, 104.0, 105.0, 106.0]

        tail = await md.get_candles("BTCUSDT", "1d", limit=2)
        assert [c.close for c in tail] == [109.0, 110.0]

    @pytest.mark.asyncio
    async def test_current_price_is_last_close(self, tmp_path):
        _write(tmp_path, "BTCUSDT_1h.csv", _HEADER + "2025-01-01T00:00:00Z,1,2,0.5,1.5,1\n")
        md = CsvMarketData(str(tmp_path), balances={"USDT": 250.0})
        with pytest.raises(KeyError):
            await md.get_current_price("BTCUSDT")
        await md.get_candles("BTCUSDT", "1h")
        assert await md.get_current_price("BTCUSDT") == 1.5
        assert await md.get_balance("USDT") == 250.0
        assert await md.get_balance("BTC") == 0.0

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError, match="BTCUSDT"):
            CsvMarketData(str(tmp_path)).load("BTCUSDT", "1h")

    def test_missing_columns(self, tmp_path):
        _write(tmp_path, "BTCUSDT_1h.csv", "open_time,close\n2025-01-01T00:00:00Z,1\n")
        with pytest.raises(ValueError, match="missing columns"):
            CsvMarketData(str(tmp_path)).load("BTCUSDT", "1h")

    def test_frames_are_cached(self, tmp_path):
        _write(tmp_path, "BTCUSDT_1h.csv", _HEADER + "2025-01-01T00:00:00Z,1,2,0.5,1.5,1\n")
        md = CsvMarketData(str(tmp_path))
        assert md.load("BTCUSDT", "1h") is md.load("BTCUSDT", "1h")
