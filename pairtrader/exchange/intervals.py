"""Candle interval codes shared by the exchange, data and backtest layers."""

from datetime import timedelta

INTERVAL_MINUTES: dict[str, int] = {
    "1m": 1,
    "3m": 3,
    "5m": 5,
    "15m": 15,
    "30m": 30,
    "1h": 60,
    "2h": 120,
    "4h": 240,
    "6h": 360,
    "8h": 480,
    "12h": 720,
    "1d": 1440,
    "3d": 4320,
    "1w": 10080,
    "1M": 43200,
}


def interval_to_timedelta(interval: str) -> timedelta:
    """Return the bar length for *interval*.

    Raises ``ValueError`` for an unknown interval code.
    """
    if interval not in INTERVAL_MINUTES:
        raise ValueError(
            f"Unknown interval '{interval}'. "
            f"Available: {', '.join(INTERVAL_MINUTES.keys())}"
        )
    return timedelta(minutes=INTERVAL_MINUTES[interval])
