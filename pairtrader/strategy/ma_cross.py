"""Moving-average cross strategy — trend-filtered MA crossover with volume confirmation.

Tunables live in ``StrategyParameters.custom``:

  - ``fast_ma`` (default 9), ``slow_ma`` (default 21)
  - ``ma_type``: ``"EMA"`` (default) or ``"SMA"``
  - ``volume_threshold``: current volume must exceed this multiple of the
    trailing 20-bar average (default 1.5)
"""

from pairtrader.exchange.models import Candle
from pairtrader.strategy.indicators import calculate_ema, calculate_rsi, calculate_sma
from pairtrader.strategy.models import Signal, SignalAction, StrategyParameters
from pairtrader.strategy.triple_confirmation import (
    confidence,
    crossed_above,
    crossed_below,
)

_VOLUME_LOOKBACK = 20
_TREND_LOOKBACK = 10
_TREND_BAND = 0.03
_RSI_CEILING = 70.0
_RSI_FLOOR = 30.0
_BASE_CONFIDENCE = 0.6


class MovingAverageCrossStrategy:
    """Fast/slow moving-average crossover policy."""

    name = "ma_cross"

    def generate_signal(
        self,
        symbol: str,
        candles: list[Candle],
        params: StrategyParameters,
    ) -> Signal:
        if not candles:
            return Signal.none(symbol, self.name)

        fast_period = int(params.get_custom("fast_ma", 9))
        slow_period = int(params.get_custom("slow_ma", 21))
        ma_type = str(params.get_custom("ma_type", "EMA")).upper()
        volume_threshold = float(params.get_custom("volume_threshold", 1.5))

        closes = [c.close for c in candles]
        volumes = [c.volume for c in candles]
        latest = candles[-1]

        average = calculate_ema if ma_type == "EMA" else calculate_sma
        fast_ma = average(closes, fast_period)
        slow_ma = average(closes, slow_period)
        if len(fast_ma) < 2 or len(slow_ma) < 2:
            return Signal.none(symbol, self.name, price=latest.close)

        current_slow = slow_ma[-1]
        cross_above = crossed_above(fast_ma, slow_ma)
        cross_below = crossed_below(fast_ma, slow_ma)

        recent_volumes = volumes[-_VOLUME_LOOKBACK:]
        avg_volume = sum(recent_volumes) / len(recent_volumes)
        high_volume = latest.volume > avg_volume * volume_threshold

        recent_closes = closes[-_TREND_LOOKBACK:]
        uptrend = all(p >= current_slow * (1 - _TREND_BAND) for p in recent_closes)
        downtrend = all(p <= current_slow * (1 + _TREND_BAND) for p in recent_closes)

        rsi = calculate_rsi(closes, params.rsi_period)
        latest_rsi = rsi[-1] if rsi else 0.0
        rsi_ok_buy = latest_rsi < _RSI_CEILING
        rsi_ok_sell = latest_rsi > _RSI_FLOOR

        indicators = {
            "FastMA": fast_ma[-1],
            "SlowMA": current_slow,
            "RSI": latest_rsi,
            "Volume": latest.volume,
            "AvgVolume": avg_volume,
            "CrossAbove": float(cross_above),
            "CrossBelow": float(cross_below),
        }

        action = SignalAction.NONE
        conf = 0.0
        if cross_above and high_volume and uptrend and rsi_ok_buy:
            action = SignalAction.BUY
            conf = confidence(
                [cross_above, high_volume, uptrend, rsi_ok_buy], base=_BASE_CONFIDENCE,
            )
        elif cross_below and high_volume and downtrend and rsi_ok_sell:
            action = SignalAction.SELL
            conf = confidence(
                [cross_below, high_volume, downtrend, rsi_ok_sell], base=_BASE_CONFIDENCE,
            )

        return Signal(
            symbol=symbol,
            action=action,
            price=latest.close,
            confidence=conf,
            timestamp=latest.close_time,
            strategy=self.name,
            interval=latest.interval,
            indicators=indicators,
        )
