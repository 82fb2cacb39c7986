"""Triple-confirmation strategy — RSI extreme + MACD cross + Bollinger location.

BUY when all hold on the latest bar:
  1. RSI below the oversold threshold.
  2. MACD line crosses above its signal line on this bar.
  3. Close within 1 % of the lower band, or the bands are squeezed.

SELL is the mirror image at the upper band with RSI overbought and MACD
crossing down.  Confidence grows with the number of true conditions.
"""

import logging

from pairtrader.exchange.models import Candle
from pairtrader.strategy.indicators import (
    calculate_bollinger,
    calculate_macd,
    calculate_rsi,
)
from pairtrader.strategy.models import Signal, SignalAction, StrategyParameters

logger = logging.getLogger("pairtrader.strategy")

_BAND_PROXIMITY = 0.01
_BASE_CONFIDENCE = 0.5
_CONFIDENCE_STEP = 0.1
_MAX_CONFIDENCE = 0.95


def crossed_above(line: list[float], ref: list[float]) -> bool:
    """True when *line* was at-or-below *ref* on the previous bar and above it now."""
    if len(line) < 2 or len(ref) < 2:
        return False
    return line[-2] <= ref[-2] and line[-1] > ref[-1]


def crossed_below(line: list[float], ref: list[float]) -> bool:
    if len(line) < 2 or len(ref) < 2:
        return False
    return line[-2] >= ref[-2] and line[-1] < ref[-1]


def confidence(conditions: list[bool], base: float = _BASE_CONFIDENCE) -> float:
    """``min(base + 0.1 × true_conditions, 0.95)``."""
    return min(base + _CONFIDENCE_STEP * sum(conditions), _MAX_CONFIDENCE)


class TripleConfirmationStrategy:
    """RSI / MACD / Bollinger confluence policy."""

    name = "triple_confirmation"

    def generate_signal(
        self,
        symbol: str,
        candles: list[Candle],
        params: StrategyParameters,
    ) -> Signal:
        if not candles:
            return Signal.none(symbol, self.name)

        closes = [c.close for c in candles]
        last_close = closes[-1]

        rsi = calculate_rsi(closes, params.rsi_period)
        macd_line, signal_line = calculate_macd(
            closes,
            params.macd_fast_period,
            params.macd_slow_period,
            params.macd_signal_period,
        )
        upper, middle, lower = calculate_bollinger(
            closes, params.bb_period, params.bb_std_dev,
        )

        if not rsi or len(signal_line) < 2 or not middle:
            logger.debug("%s: not enough data for triple confirmation", symbol)
            return Signal.none(symbol, self.name, price=last_close)

        latest_rsi = rsi[-1]
        latest_upper, latest_middle, latest_lower = upper[-1], middle[-1], lower[-1]
        bb_width = (
            (latest_upper - latest_lower) / latest_middle if latest_middle else 0.0
        )

        # Compare the MACD line against the signal line over their common tail.
        macd_tail = macd_line[-len(signal_line):]

        rsi_oversold = latest_rsi < params.rsi_oversold
        macd_cross_up = crossed_above(macd_tail, signal_line)
        near_lower = last_close < latest_lower * (1 + _BAND_PROXIMITY)
        squeeze = bb_width < params.bb_width_threshold

        rsi_overbought = latest_rsi > params.rsi_overbought
        macd_cross_down = crossed_below(macd_tail, signal_line)
        near_upper = last_close > latest_upper * (1 - _BAND_PROXIMITY)

        indicators = {
            "RSI": latest_rsi,
            "MACD": macd_tail[-1],
            "Signal": signal_line[-1],
            "UpperBand": latest_upper,
            "MiddleBand": latest_middle,
            "LowerBand": latest_lower,
            "BBWidth": bb_width,
        }

        action = SignalAction.NONE
        conf = 0.0
        if rsi_oversold and macd_cross_up and (near_lower or squeeze):
            action = SignalAction.BUY
            conf = confidence([rsi_oversold, macd_cross_up, near_lower, squeeze])
        elif rsi_overbought and macd_cross_down and (near_upper or squeeze):
            action = SignalAction.SELL
            conf = confidence([rsi_overbought, macd_cross_down, near_upper, squeeze])

        return Signal(
            symbol=symbol,
            action=action,
            price=last_close,
            confidence=conf,
            timestamp=candles[-1].close_time,
            strategy=self.name,
            interval=candles[-1].interval,
            indicators=indicators,
        )
