"""Volatility and trend measures — pure math over close prices."""

import numpy as np

# Bars per year for each candle interval.
ANNUALIZATION_FACTORS: dict[str, float] = {
    "1m": 525_600,
    "5m": 105_120,
    "15m": 35_040,
    "30m": 17_520,
    "1h": 8_760,
    "4h": 2_190,
    "1d": 365,
    "1w": 52,
    "1M": 12,
}
_DEFAULT_FACTOR = 365


def annualization_factor(interval: str) -> float:
    return ANNUALIZATION_FACTORS.get(interval, _DEFAULT_FACTOR)


def log_return_volatility(
    closes: list[float],
    interval: str = "1d",
    annualize: bool = True,
) -> float:
    """Sample standard deviation of log returns.

    When *annualize* is set the result is scaled by
    ``sqrt(annualization_factor(interval))``.  Fewer than three prices
    (two returns) gives 0.0.
    """
    prices = np.asarray(closes, dtype=float)
    if prices.size < 3 or np.any(prices <= 0):
        return 0.0

    returns = np.diff(np.log(prices))
    vol = float(np.std(returns, ddof=1))
    if annualize:
        vol *= float(np.sqrt(annualization_factor(interval)))
    return vol


def trend_direction(closes: list[float], min_moves: int = 5) -> int:
    """Return +1 / -1 when at least *min_moves* bar-to-bar moves go the same way, else 0."""
    if len(closes) < 2:
        return 0
    diffs = np.diff(np.asarray(closes, dtype=float))
    if int(np.sum(diffs > 0)) >= min_moves:
        return 1
    if int(np.sum(diffs < 0)) >= min_moves:
        return -1
    return 0
