"""Strategy data models — signals and tunable strategy parameters."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable


class SignalAction(str, Enum):
    NONE = "none"
    BUY = "buy"
    SELL = "sell"


@dataclass(frozen=True)
class Signal:
    """A strategy's recommendation for one symbol at one moment.

    ``indicators`` is an audit snapshot of the values the decision used.
    """

    symbol: str
    action: SignalAction
    price: float = 0.0
    confidence: float = 0.0
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    strategy: str = ""
    interval: str = ""
    indicators: dict[str, float] = field(default_factory=dict)

    @classmethod
    def none(cls, symbol: str, strategy: str = "", price: float = 0.0) -> "Signal":
        """A no-action signal (insufficient data, no setup, or a failure)."""
        return cls(symbol=symbol, action=SignalAction.NONE, price=price, strategy=strategy)


@dataclass
class StrategyParameters:
    """Indicator settings read by the strategies on every evaluation.

    Strategy-specific knobs that have no dedicated field live in ``custom``
    (e.g. ``fast_ma``, ``slow_ma``, ``ma_type``, ``volume_threshold``).
    """

    rsi_period: int = 14
    rsi_oversold: float = 30.0
    rsi_overbought: float = 70.0
    macd_fast_period: int = 12
    macd_slow_period: int = 26
    macd_signal_period: int = 9
    bb_period: int = 20
    bb_std_dev: float = 2.0
    bb_width_threshold: float = 0.05
    stop_loss_pct: float = 2.0
    take_profit_pct: float = 5.0
    custom: dict[str, Any] = field(default_factory=dict)

    def get_custom(self, key: str, default: Any) -> Any:
        return self.custom.get(key, default)


# Known parameter names → typed converters.  Anything else goes to ``custom``.
_PARAMETER_SETTERS: dict[str, Callable[[Any], Any]] = {
    "rsi_period": int,
    "rsi_oversold": float,
    "rsi_overbought": float,
    "macd_fast_period": int,
    "macd_slow_period": int,
    "macd_signal_period": int,
    "bb_period": int,
    "bb_std_dev": float,
    "bb_width_threshold": float,
    "stop_loss_pct": float,
    "take_profit_pct": float,
}


def apply_parameters(params: StrategyParameters, values: dict[str, Any]) -> StrategyParameters:
    """Update *params* in place from a name → value mapping and return it.

    Raises ``ValueError`` if a known parameter cannot be converted.
    """
    for name, raw in values.items():
        convert = _PARAMETER_SETTERS.get(name)
        if convert is None:
            params.custom[name] = raw
            continue
        try:
            setattr(params, name, convert(raw))
        except (TypeError, ValueError):
            raise ValueError(f"Invalid value for {name}: {raw!r}") from None
    return params
