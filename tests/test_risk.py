"""Tests for risk management — sizing, trailing stops, sessions, volatility
and the RiskManager's validation and monitoring passes."""

import math
from datetime import datetime, time, timedelta, timezone

import pytest

from pairtrader.config import Config, TradingPairConfig
from pairtrader.exchange.models import Candle, OrderResult, OrderSide, OrderStatus, OrderType
from pairtrader.ledger import PositionLedger
from pairtrader.models.position import PositionType
from pairtrader.repos.db import init_db
from pairtrader.repos.position_repo import PositionRepo
from pairtrader.risk.manager import RiskManager
from pairtrader.risk.position_sizer import (
    calculate_order_quantity,
    calculate_volatility_adjusted_quantity,
    truncate,
)
from pairtrader.risk.session import is_in_session
from pairtrader.risk.trailing_stop import calculate_dynamic_stop_loss
from pairtrader.risk.volatility import log_return_volatility, trend_direction


# ── Helpers ──────────────────────────────────────────────────────────────

_NOW = datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)
_FLAT = [100.0] * 30
_CHOPPY = [100.0, 150.0] * 15


def _make_config(**overrides) -> Config:
    defaults = dict(
        binance_api_key="test-key",
        binance_api_secret="test-secret",
        valuation_assets=(),
        log_level="WARNING",
    )
    defaults.update(overrides)
    return Config(**defaults)


def _pair(**overrides) -> TradingPairConfig:
    defaults = dict(
        symbol="BTCUSDT",
        base_asset="BTC",
        quote_asset="USDT",
        quantity_precision=5,
        min_quantity=0.00001,
    )
    defaults.update(overrides)
    return TradingPairConfig(**defaults)


def _candles(symbol: str, closes: list[float]) -> list[Candle]:
    return [
        Candle(
            symbol=symbol,
            interval="1d",
            open=c,
            high=c,
            low=c,
            close=c,
            volume=1.0,
            open_time=_NOW - timedelta(days=len(closes) - i),
            close_time=_NOW - timedelta(days=len(closes) - i - 1),
        )
        for i, c in enumerate(closes)
    ]


class _FakeMarketData:
    """Balances, prices and per-symbol closes held in dicts."""

    def __init__(self, balances=None, prices=None, closes=None, fail_balance=False):
        self.balances = balances or {}
        self.prices = prices or {}
        self.closes = closes or {}
        self.fail_balance = fail_balance

    async def get_candles(self, symbol, interval, limit=None, start=None, end=None):
        closes = self.closes.get(symbol, _FLAT)
        if limit:
            closes = closes[-limit:]
        return _candles(symbol, closes)

    async def get_current_price(self, symbol):
        return self.prices[symbol]

    async def get_balance(self, asset):
        if self.fail_balance:
            raise RuntimeError("account endpoint down")
        return self.balances.get(asset, 0.0)


class _StubExecutor:
    """Closes positions straight through the ledger at the current price.

    Exits for symbols in ``unfilled`` come back as resting orders and leave
    the position open.
    """

    def __init__(self, ledger: PositionLedger, market_data: _FakeMarketData):
        self._ledger = ledger
        self._market_data = market_data
        self.closed: list[tuple[int, str]] = []
        self.unfilled: set[str] = set()

    async def close_position_with_market_order(self, position, reason):
        self.closed.append((position.id, reason))
        price = await self._market_data.get_current_price(position.symbol)
        resting = position.symbol in self.unfilled
        if not resting:
            self._ledger.close_position(position.id, price)
        return OrderResult(
            id=f"exit-{position.id}",
            symbol=position.symbol,
            type=OrderType.MARKET,
            side=OrderSide.SELL,
            price=price,
            quantity=position.quantity,
            executed_quantity=0.0 if resting else position.quantity,
            status=OrderStatus.NEW if resting else OrderStatus.FILLED,
            created_at=_NOW,
        )


@pytest.fixture
def ledger(tmp_path):
    path = str(tmp_path / "risk.db")
    init_db(path)
    return PositionLedger(_make_config(), PositionRepo(path))


def _manager(ledger, market_data, **config_overrides):
    executor = _StubExecutor(ledger, market_data)
    risk = RiskManager(
        _make_config(**config_overrides),
        market_data,
        ledger,
        executor,
        {"BTCUSDT": _pair()},
    )
    return risk, executor


# ── Position sizing ──────────────────────────────────────────────────────


class TestPositionSizing:
    """Verify position sizing maths and truncation."""

    def test_risk_share_of_balance(self):
        # 1000 × 2 % = 20 USDT → 20 / 30000 = 0.000666… → 0.00066
        qty = calculate_order_quantity(1000.0, 2.0, 10.0, 30000.0, _pair())
        assert qty == pytest.approx(0.00066)

    def test_min_order_amount_floor(self):
        # 100 × 2 % = 2 < 10 → invest 10 → 0.000333… → 0.00033
        qty = calculate_order_quantity(100.0, 2.0, 10.0, 30000.0, _pair())
        assert qty == pytest.approx(0.00033)

    def test_min_quantity_floor(self):
        qty = calculate_order_quantity(100.0, 2.0, 10.0, 30000.0, _pair(min_quantity=0.001))
        assert qty == pytest.approx(0.001)

    def test_never_rounds_up(self):
        qty = calculate_order_quantity(1000.0, 2.0, 10.0, 3.0, _pair(quantity_precision=2))
        # 20 / 3 = 6.666… → 6.66
        assert qty == pytest.approx(6.66)

    def test_invalid_price(self):
        with pytest.raises(ValueError):
            calculate_order_quantity(1000.0, 2.0, 10.0, 0.0, _pair())

    def test_truncate_float_noise(self):
        # 0.57 × 100 = 56.999999…
        assert truncate(0.57, 2) == 0.57
        assert truncate(1.23456789, 4) == 1.2345

    def test_volatility_adjusted(self):
        pair = _pair(quantity_precision=4)
        # base 10000 × 2 % / 100 = 2
        assert calculate_volatility_adjusted_quantity(10000, 2.0, 100.0, 0.05, pair) == 2.0
        assert calculate_volatility_adjusted_quantity(10000, 2.0, 100.0, 0.2, pair) == 1.0
        assert calculate_volatility_adjusted_quantity(10000, 2.0, 100.0, 0.001, pair) == 4.0

    def test_volatility_adjusted_max_quantity(self):
        pair = _pair(quantity_precision=4, max_quantity=3.0)
        assert calculate_volatility_adjusted_quantity(10000, 2.0, 100.0, 0.001, pair) == 3.0


# ── Trailing stop ────────────────────────────────────────────────────────


class TestTrailingStop:
    def test_below_break_even_trigger(self):
        assert calculate_dynamic_stop_loss(PositionType.LONG, 100.0, 101.0, 98.0) == 98.0

    def test_break_even(self):
        assert calculate_dynamic_stop_loss(PositionType.LONG, 100.0, 102.0, 98.0) == 100.0

    def test_lock_in_half(self):
        assert calculate_dynamic_stop_loss(PositionType.LONG, 100.0, 105.0, 98.0) == 102.5

    def test_never_lowered(self):
        assert calculate_dynamic_stop_loss(PositionType.LONG, 100.0, 103.0, 102.5) == 102.5

    def test_short_and_missing_stop_untouched(self):
        assert calculate_dynamic_stop_loss(PositionType.SHORT, 100.0, 80.0, 102.0) == 102.0
        assert calculate_dynamic_stop_loss(PositionType.LONG, 100.0, 110.0, None) is None

    def test_monotonic_over_price_path(self):
        stop = 98.0
        history = [stop]
        for price in [101, 103, 106, 104, 110, 99, 120, 100]:
            stop = calculate_dynamic_stop_loss(PositionType.LONG, 100.0, float(price), stop)
            history.append(stop)
        assert history == sorted(history)
        assert history[-1] == 110.0


# ── Session window ───────────────────────────────────────────────────────


class TestSession:
    def test_inclusive_bounds(self):
        assert is_in_session(time(9, 0), time(9, 0), time(17, 0))
        assert is_in_session(time(17, 0), time(9, 0), time(17, 0))
        assert not is_in_session(time(17, 0, 1), time(9, 0), time(17, 0))

    def test_wraps_midnight(self):
        start, end = time(22, 0), time(2, 0)
        assert is_in_session(time(23, 30), start, end)
        assert is_in_session(time(1, 0), start, end)
        assert not is_in_session(time(12, 0), start, end)


# ── Volatility and trend ─────────────────────────────────────────────────


class TestVolatility:
    def test_too_few_prices(self):
        assert log_return_volatility([100.0, 101.0]) == 0.0

    def test_flat_is_zero(self):
        assert log_return_volatility(_FLAT) == 0.0

    def test_annualization(self):
        closes = [100.0, 102.0, 99.0, 103.0, 101.0]
        raw = log_return_volatility(closes, "1h", annualize=False)
        assert raw > 0
        assert log_return_volatility(closes, "1h") == pytest.approx(raw * math.sqrt(8760))
        assert log_return_volatility(closes, "1d") == pytest.approx(raw * math.sqrt(365))

    def test_trend_direction(self):
        assert trend_direction([1, 2, 3, 4, 5, 6]) == 1
        assert trend_direction([6, 5, 4, 3, 2, 1]) == -1
        assert trend_direction([1, 2, 1, 2, 1, 2]) == 0


# ── Entry validation ─────────────────────────────────────────────────────


class TestValidateNewPosition:
    @pytest.mark.asyncio
    async def test_accepts_within_limits(self, ledger):
        md = _FakeMarketData(balances={"USDT": 10000.0}, prices={"BTCUSDT": 100.0})
        risk, _ = _manager(ledger, md)
        assert await risk.validate_new_position("BTCUSDT", 100.0, 10.0, _NOW) == (
            True, "Position validated",
        )

    @pytest.mark.asyncio
    async def test_exposure_at_maximum_rejected(self, ledger):
        md = _FakeMarketData(
            balances={"USDT": 1000.0}, prices={"ETHUSDT": 80.0, "BTCUSDT": 100.0},
        )
        ledger.open_position("ETHUSDT", 80.0, 10.0)  # 800 / 1000 = 0.8
        risk, _ = _manager(ledger, md)
        allowed, reason = await risk.validate_new_position("BTCUSDT", 100.0, 0.1, _NOW)
        assert allowed is False
        assert "exposure" in reason

    @pytest.mark.asyncio
    async def test_position_size_rejected(self, ledger):
        md = _FakeMarketData(balances={"USDT": 1000.0}, prices={"BTCUSDT": 100.0})
        risk, _ = _manager(ledger, md)
        allowed, reason = await risk.validate_new_position("BTCUSDT", 100.0, 2.5, _NOW)
        assert allowed is False
        assert "Position size" in reason

    @pytest.mark.asyncio
    async def test_volatility_rejected(self, ledger):
        md = _FakeMarketData(
            balances={"USDT": 10000.0},
            prices={"BTCUSDT": 100.0},
            closes={"BTCUSDT": _CHOPPY},
        )
        risk, _ = _manager(ledger, md)
        allowed, reason = await risk.validate_new_position("BTCUSDT", 100.0, 1.0, _NOW)
        assert allowed is False
        assert "Volatility" in reason

    @pytest.mark.asyncio
    async def test_duplicate_rejected(self, ledger):
        md = _FakeMarketData(balances={"USDT": 10000.0}, prices={"BTCUSDT": 100.0})
        ledger.open_position("BTCUSDT", 100.0, 1.0)
        risk, _ = _manager(ledger, md)
        allowed, reason = await risk.validate_new_position("BTCUSDT", 100.0, 1.0, _NOW)
        assert allowed is False
        assert "already open" in reason

    @pytest.mark.asyncio
    async def test_duplicate_allowed_when_configured(self, ledger):
        md = _FakeMarketData(balances={"USDT": 10000.0}, prices={"BTCUSDT": 100.0})
        ledger.open_position("BTCUSDT", 100.0, 1.0)
        risk, _ = _manager(ledger, md, allow_multiple_positions=True)
        allowed, _ = await risk.validate_new_position("BTCUSDT", 100.0, 1.0, _NOW)
        assert allowed is True

    @pytest.mark.asyncio
    async def test_outside_trading_hours_rejected(self, ledger):
        md = _FakeMarketData(balances={"USDT": 10000.0}, prices={"BTCUSDT": 100.0})
        risk, _ = _manager(
            ledger, md,
            restrict_trading_hours=True,
            trading_hours_start=time(13, 0),
            trading_hours_end=time(20, 0),
        )
        allowed, reason = await risk.validate_new_position("BTCUSDT", 100.0, 1.0, _NOW)
        assert allowed is False
        assert reason == "Outside trading hours"

    @pytest.mark.asyncio
    async def test_daily_loss_rejected(self, ledger):
        md = _FakeMarketData(balances={"USDT": 10000.0}, prices={"BTCUSDT": 100.0})
        pos = ledger.open_position("ETHUSDT", 100.0, 3.0, now=_NOW - timedelta(hours=2))
        ledger.close_position(pos.id, 40.0, now=_NOW - timedelta(hours=1))  # −180
        risk, _ = _manager(ledger, md)
        allowed, reason = await risk.validate_new_position("BTCUSDT", 100.0, 1.0, _NOW)
        assert allowed is False
        assert "Daily loss" in reason

    @pytest.mark.asyncio
    async def test_first_failing_check_wins(self, ledger):
        md = _FakeMarketData(
            balances={"USDT": 1000.0},
            prices={"BTCUSDT": 100.0},
            closes={"BTCUSDT": _CHOPPY},
        )
        risk, _ = _manager(ledger, md)
        # Oversized and volatile: size is checked first
        _, reason = await risk.validate_new_position("BTCUSDT", 100.0, 5.0, _NOW)
        assert "Position size" in reason

    @pytest.mark.asyncio
    async def test_unexpected_failure_rejects(self, ledger):
        md = _FakeMarketData(fail_balance=True)
        risk, _ = _manager(ledger, md)
        allowed, reason = await risk.validate_new_position("BTCUSDT", 100.0, 1.0, _NOW)
        assert allowed is False
        assert reason.startswith("Error validating position")


# ── Aggregates ───────────────────────────────────────────────────────────


class TestAggregates:
    @pytest.mark.asyncio
    async def test_total_balance_values_assets(self, ledger):
        md = _FakeMarketData(
            balances={"USDT": 500.0, "BTC": 0.01, "ETH": 0.0},
            prices={"BTCUSDT": 50000.0},
        )
        risk, _ = _manager(ledger, md, valuation_assets=("BTC", "ETH"))
        assert await risk.get_total_balance() == pytest.approx(1000.0)

    @pytest.mark.asyncio
    async def test_exposure_zero_without_balance(self, ledger):
        md = _FakeMarketData(prices={"BTCUSDT": 100.0})
        ledger.open_position("BTCUSDT", 100.0, 1.0)
        risk, _ = _manager(ledger, md)
        assert await risk.calculate_portfolio_exposure() == 0.0

    @pytest.mark.asyncio
    async def test_position_size_uses_volatility(self, ledger):
        md = _FakeMarketData(closes={"BTCUSDT": _FLAT})
        risk, _ = _manager(ledger, md)
        # flat → volatility 0 → factor clamped to 2
        qty = await risk.calculate_position_size("BTCUSDT", 100.0, 10000.0)
        assert qty == pytest.approx(4.0)
        with pytest.raises(ValueError):
            await risk.calculate_position_size("DOGEUSDT", 1.0, 100.0)


# ── Monitoring ───────────────────────────────────────────────────────────


class TestMonitorPositions:
    @pytest.mark.asyncio
    async def test_loss_threshold_exit(self, ledger):
        md = _FakeMarketData(balances={"USDT": 10000.0}, prices={"ETHUSDT": 85.0})
        pos = ledger.open_position("ETHUSDT", 100.0, 1.0, now=_NOW)
        risk, executor = _manager(ledger, md)
        await risk.monitor_positions(_NOW)
        assert executor.closed == [(pos.id, "loss_threshold")]

    @pytest.mark.asyncio
    async def test_volatile_market_locks_in_profit(self, ledger):
        md = _FakeMarketData(
            balances={"USDT": 10000.0},
            prices={"ETHUSDT": 101.0},
            closes={"BTCUSDT": _CHOPPY},
        )
        pos = ledger.open_position("ETHUSDT", 100.0, 1.0, now=_NOW)
        risk, executor = _manager(ledger, md)
        await risk.monitor_positions(_NOW)
        assert executor.closed == [(pos.id, "market_volatility")]

    @pytest.mark.asyncio
    async def test_stale_loser_exit(self, ledger):
        md = _FakeMarketData(balances={"USDT": 10000.0}, prices={"ETHUSDT": 99.0})
        pos = ledger.open_position("ETHUSDT", 100.0, 1.0, now=_NOW - timedelta(days=8))
        risk, executor = _manager(ledger, md)
        await risk.monitor_positions(_NOW)
        assert executor.closed == [(pos.id, "max_age")]

    @pytest.mark.asyncio
    async def test_stale_winner_kept(self, ledger):
        md = _FakeMarketData(balances={"USDT": 10000.0}, prices={"ETHUSDT": 101.0})
        ledger.open_position("ETHUSDT", 100.0, 1.0, now=_NOW - timedelta(days=8))
        risk, executor = _manager(ledger, md)
        await risk.monitor_positions(_NOW)
        assert executor.closed == []

    @pytest.mark.asyncio
    async def test_trailing_stop_raised_and_kept(self, ledger):
        md = _FakeMarketData(balances={"USDT": 10000.0}, prices={"ETHUSDT": 105.0})
        pos = ledger.open_position("ETHUSDT", 100.0, 1.0, now=_NOW)
        risk, executor = _manager(ledger, md)

        await risk.monitor_positions(_NOW)
        assert ledger.get_position(pos.id).stop_loss == pytest.approx(102.5)

        md.prices["ETHUSDT"] = 103.0
        await risk.monitor_positions(_NOW)
        assert ledger.get_position(pos.id).stop_loss == pytest.approx(102.5)
        assert executor.closed == []

    @pytest.mark.asyncio
    async def test_trailing_stop_disabled(self, ledger):
        md = _FakeMarketData(balances={"USDT": 10000.0}, prices={"ETHUSDT": 105.0})
        pos = ledger.open_position("ETHUSDT", 100.0, 1.0, now=_NOW)
        risk, _ = _manager(ledger, md, use_dynamic_stop_loss=False)
        await risk.monitor_positions(_NOW)
        assert ledger.get_position(pos.id).stop_loss == pytest.approx(98.0)

    @pytest.mark.asyncio
    async def test_one_failing_position_does_not_stop_others(self, ledger):
        md = _FakeMarketData(balances={"USDT": 10000.0}, prices={"ETHUSDT": 85.0})
        ledger.open_position("XRPUSDT", 1.0, 1.0, now=_NOW)  # no price → KeyError
        pos = ledger.open_position("ETHUSDT", 100.0, 1.0, now=_NOW)
        risk, executor = _manager(ledger, md)
        await risk.monitor_positions(_NOW)
        assert executor.closed == [(pos.id, "loss_threshold")]

    @pytest.mark.asyncio
    async def test_naive_now_accepted(self, ledger):
        md = _FakeMarketData(balances={"USDT": 10000.0}, prices={"ETHUSDT": 99.0})
        ledger.open_position("ETHUSDT", 100.0, 1.0, now=_NOW - timedelta(days=8))
        risk, executor = _manager(ledger, md)
        await risk.monitor_positions(_NOW.replace(tzinfo=None))
        assert [r for _, r in executor.closed] == ["max_age"]


# ── Rebalancing ──────────────────────────────────────────────────────────


class TestRebalance:
    @pytest.mark.asyncio
    async def test_worst_performer_closed_first(self, ledger):
        md = _FakeMarketData(
            balances={"USDT": 1000.0},
            prices={"ETHUSDT": 100.0, "SOLUSDT": 45.0},
        )
        loser = ledger.open_position("ETHUSDT", 105.0, 5.0, now=_NOW)   # 500 notional, −25
        ledger.open_position("SOLUSDT", 40.0, 10.0, now=_NOW)           # 450 notional, +50
        risk, executor = _manager(ledger, md)

        # 950 / 1000 = 0.95 > 0.9 critical
        await risk.monitor_positions(_NOW)
        assert executor.closed == [(loser.id, "rebalance")]
        assert len(ledger.get_open_positions()) == 1

    @pytest.mark.asyncio
    async def test_closes_until_target(self, ledger):
        md = _FakeMarketData(
            balances={"USDT": 1000.0},
            prices={"ETHUSDT": 100.0, "SOLUSDT": 100.0, "ADAUSDT": 100.0},
        )
        for symbol, entry in [("ETHUSDT", 101.0), ("SOLUSDT", 102.0), ("ADAUSDT", 103.0)]:
            ledger.open_position(symbol, entry, 4.0, now=_NOW)
        risk, executor = _manager(ledger, md)

        # 1200 notional; target 0.64 × 1000 = 640 → two exits
        closed = await risk.reduce_portfolio_exposure()
        assert closed == 2
        assert [ledger.get_position(pid).symbol for pid, _ in executor.closed] == [
            "ADAUSDT", "SOLUSDT",
        ]

    @pytest.mark.asyncio
    async def test_unfilled_exit_does_not_count_toward_target(self, ledger):
        md = _FakeMarketData(
            balances={"USDT": 1000.0},
            prices={"ETHUSDT": 100.0, "SOLUSDT": 100.0, "ADAUSDT": 100.0},
        )
        for symbol, entry in [("ETHUSDT", 101.0), ("SOLUSDT", 102.0), ("ADAUSDT", 103.0)]:
            ledger.open_position(symbol, entry, 4.0, now=_NOW)
        risk, executor = _manager(ledger, md)
        executor.unfilled.add("ADAUSDT")

        # ADA's exit rests, so exposure is still 1200 and two more exits follow
        closed = await risk.reduce_portfolio_exposure()
        assert closed == 2
        assert [ledger.get_position(pid).symbol for pid, _ in executor.closed] == [
            "ADAUSDT", "SOLUSDT", "ETHUSDT",
        ]
        assert [p.symbol for p in ledger.get_open_positions()] == ["ADAUSDT"]

    @pytest.mark.asyncio
    async def test_below_critical_no_action(self, ledger):
        md = _FakeMarketData(balances={"USDT": 1000.0}, prices={"ETHUSDT": 100.0})
        ledger.open_position("ETHUSDT", 100.0, 5.0, now=_NOW)
        risk, executor = _manager(ledger, md)
        await risk.check_portfolio_exposure()
        assert executor.closed == []
