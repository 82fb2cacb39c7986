"""Technical indicators — RSI, SMA, EMA, MACD, Bollinger Bands. Pure functions, no I/O.

Every function takes a plain list of prices (oldest-first) and returns a
series that is shorter than its input.  Insufficient input yields an empty
series rather than an error, so callers must check the length before
reading the latest value.
"""

import math


def calculate_rsi(prices: list[float], period: int = 14) -> list[float]:
    """Relative Strength Index over a trailing window of *period* deltas.

    For every index ``i >= period`` the gains and losses of the *period*
    price changes ending at ``i`` are summed and::

        rs  = gains / losses        (losses treated as 1 when zero)
        rsi = 100 - 100 / (1 + rs)

    Values are rounded to 2 decimals.  Returns ``len(prices) - period``
    values (empty if there are not enough prices).
    """
    if period <= 0 or len(prices) <= period:
        return []

    rsis: list[float] = []
    for i in range(period, len(prices)):
        gains = 0.0
        losses = 0.0
        for j in range(i - period + 1, i + 1):
            change = prices[j] - prices[j - 1]
            if change >= 0:
                gains += change
            else:
                losses -= change
        rs = gains / (losses if losses != 0 else 1.0)
        rsis.append(round(100.0 - 100.0 / (1.0 + rs), 2))
    return rsis


def calculate_sma(prices: list[float], period: int) -> list[float]:
    """Trailing simple moving average; ``len(prices) - period + 1`` values."""
    if period <= 0 or len(prices) < period:
        return []

    window_sum = sum(prices[:period])
    sma = [window_sum / period]
    for i in range(period, len(prices)):
        window_sum += prices[i] - prices[i - period]
        sma.append(window_sum / period)
    return sma


def calculate_ema(prices: list[float], period: int) -> list[float]:
    """Exponential moving average.

    Seeded with the SMA of the first *period* prices, then::

        EMA_today = price × k + EMA_yesterday × (1 - k),  k = 2 / (period + 1)

    The first value corresponds to index ``period - 1`` of *prices*.
    """
    if period <= 0 or len(prices) < period:
        return []

    k = 2.0 / (period + 1)
    ema_prev = sum(prices[:period]) / period
    ema = [ema_prev]
    for price in prices[period:]:
        ema_prev = price * k + ema_prev * (1 - k)
        ema.append(ema_prev)
    return ema


def calculate_macd(
    prices: list[float],
    fast: int = 12,
    slow: int = 26,
    signal: int = 9,
) -> tuple[list[float], list[float]]:
    """MACD line and signal line.

    Both EMAs run over the same price array and are paired by price index,
    so ``macd_line[-1]`` always describes the latest price.  The MACD line
    starts at the index where the slower EMA has its first value.

    Returns ``(macd_line, signal_line)``; either may be empty.
    """
    ema_fast = calculate_ema(prices, fast)
    ema_slow = calculate_ema(prices, slow)
    if not ema_fast or not ema_slow:
        return [], []

    # Tail-align: both series end at the last price.
    overlap = min(len(ema_fast), len(ema_slow))
    macd_line = [
        f - s for f, s in zip(ema_fast[-overlap:], ema_slow[-overlap:])
    ]
    signal_line = calculate_ema(macd_line, signal)
    return macd_line, signal_line


def calculate_bollinger(
    prices: list[float],
    period: int = 20,
    std_dev: float = 2.0,
) -> tuple[list[float], list[float], list[float]]:
    """Bollinger Bands around an SMA using the population standard deviation.

    Returns ``(upper, middle, lower)``, each ``len(prices) - period + 1``
    values long and index-aligned with one another.
    """
    middle = calculate_sma(prices, period)
    if not middle:
        return [], [], []

    upper: list[float] = []
    lower: list[float] = []
    for idx, avg in enumerate(middle):
        window = prices[idx : idx + period]
        variance = sum((p - avg) ** 2 for p in window) / period
        half_width = std_dev * math.sqrt(variance)
        upper.append(avg + half_width)
        lower.append(avg - half_width)
    return upper, middle, lower
