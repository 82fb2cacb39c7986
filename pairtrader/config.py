"""PairTrader — application configuration.

Loads .env variables into a typed, immutable config object and reads the
trading-pair catalogue from JSON.  Validates required variables on startup.
"""

import json
import os
import pathlib
from dataclasses import dataclass
from datetime import time

from dotenv import load_dotenv


_REQUIRED_VARS = [
    "BINANCE_API_KEY",
    "BINANCE_API_SECRET",
]

_TRUE_VALUES = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Config:
    """Typed configuration loaded from environment variables.

    Percent fields (``*_pct``) hold percentages, e.g. ``2.0`` for 2 %.
    Exposure, volatility and threshold fields hold fractions.
    """

    binance_api_key: str
    binance_api_secret: str
    binance_testnet: bool = True
    pairs_file: str = "pairs.json"
    quote_asset: str = "USDT"
    valuation_assets: tuple[str, ...] = ("BTC", "ETH", "BNB")
    reference_symbol: str = "BTCUSDT"
    candle_interval: str = "15m"
    refresh_interval_seconds: int = 60
    max_workers: int = 4
    default_strategy: str = "triple_confirmation"

    # Sizing and entry
    risk_per_trade_pct: float = 2.0
    min_order_amount: float = 10.0
    allow_multiple_positions: bool = False
    min_confidence_threshold: float = 0.7

    # Protective orders
    use_stop_loss: bool = True
    use_take_profit: bool = True
    stop_loss_pct: float = 2.0
    take_profit_pct: float = 5.0
    use_dynamic_stop_loss: bool = True

    # Portfolio limits
    max_portfolio_exposure: float = 0.8
    critical_exposure_threshold: float = 0.9
    max_position_size: float = 0.2
    max_allowed_volatility: float = 0.8  # annualized
    emergency_exit_threshold: float = 0.10
    max_position_days: int = 7
    max_daily_loss: float = 100.0

    # Trading hours (UTC)
    restrict_trading_hours: bool = False
    trading_hours_start: time = time(0, 0, 0)
    trading_hours_end: time = time(23, 59, 59)

    db_path: str = "data/pairtrader.db"
    log_level: str = "INFO"
    health_port: int = 8080

    @property
    def binance_base_url(self) -> str:
        """Return the Binance REST base URL for the selected environment."""
        if self.binance_testnet:
            return "https://testnet.binance.vision"
        return "https://api.binance.com"


@dataclass(frozen=True)
class TradingPairConfig:
    """Exchange rules for one tradable symbol."""

    symbol: str
    base_asset: str
    quote_asset: str
    price_precision: int = 2
    quantity_precision: int = 6
    min_notional: float = 10.0
    min_quantity: float = 0.0
    max_quantity: float = 0.0  # 0 = unbounded
    step_size: float = 0.0
    tick_size: float = 0.0
    is_active: bool = True


def load_config(env_path: str | None = None) -> Config:
    """Load configuration from environment variables.

    Raises ``ValueError`` with a message naming the missing variable when a
    required variable is absent, or naming the offending variable when a
    value cannot be parsed.
    """
    load_dotenv(dotenv_path=env_path)

    missing = [v for v in _REQUIRED_VARS if not os.environ.get(v)]
    if missing:
        raise ValueError(
            f"Missing required environment variable(s): {', '.join(missing)}"
        )

    assets = os.environ.get("VALUATION_ASSETS", "BTC,ETH,BNB")

    return Config(
        binance_api_key=os.environ["BINANCE_API_KEY"],
        binance_api_secret=os.environ["BINANCE_API_SECRET"],
        binance_testnet=_env_bool("BINANCE_TESTNET", True),
        pairs_file=os.environ.get("PAIRS_FILE", "pairs.json"),
        quote_asset=os.environ.get("QUOTE_ASSET", "USDT"),
        valuation_assets=tuple(a.strip() for a in assets.split(",") if a.strip()),
        reference_symbol=os.environ.get("REFERENCE_SYMBOL", "BTCUSDT"),
        candle_interval=os.environ.get("CANDLE_INTERVAL", "15m"),
        refresh_interval_seconds=_env_int("REFRESH_INTERVAL_SECONDS", 60),
        max_workers=_env_int("MAX_WORKERS", 4),
        default_strategy=os.environ.get("DEFAULT_STRATEGY", "triple_confirmation"),
        risk_per_trade_pct=_env_float("RISK_PER_TRADE_PCT", 2.0),
        min_order_amount=_env_float("MIN_ORDER_AMOUNT", 10.0),
        allow_multiple_positions=_env_bool("ALLOW_MULTIPLE_POSITIONS", False),
        min_confidence_threshold=_env_float("MIN_CONFIDENCE_THRESHOLD", 0.7),
        use_stop_loss=_env_bool("USE_STOP_LOSS", True),
        use_take_profit=_env_bool("USE_TAKE_PROFIT", True),
        stop_loss_pct=_env_float("STOP_LOSS_PCT", 2.0),
        take_profit_pct=_env_float("TAKE_PROFIT_PCT", 5.0),
        use_dynamic_stop_loss=_env_bool("USE_DYNAMIC_STOP_LOSS", True),
        max_portfolio_exposure=_env_float("MAX_PORTFOLIO_EXPOSURE", 0.8),
        critical_exposure_threshold=_env_float("CRITICAL_EXPOSURE_THRESHOLD", 0.9),
        max_position_size=_env_float("MAX_POSITION_SIZE", 0.2),
        max_allowed_volatility=_env_float("MAX_ALLOWED_VOLATILITY", 0.8),
        emergency_exit_threshold=_env_float("EMERGENCY_EXIT_THRESHOLD", 0.10),
        max_position_days=_env_int("MAX_POSITION_DAYS", 7),
        max_daily_loss=_env_float("MAX_DAILY_LOSS", 100.0),
        restrict_trading_hours=_env_bool("RESTRICT_TRADING_HOURS", False),
        trading_hours_start=_env_time("TRADING_HOURS_START", "00:00:00"),
        trading_hours_end=_env_time("TRADING_HOURS_END", "23:59:59"),
        db_path=os.environ.get("DB_PATH", "data/pairtrader.db"),
        log_level=os.environ.get("LOG_LEVEL", "INFO"),
        health_port=_env_int("HEALTH_PORT", 8080),
    )


def load_trading_pairs(path: str = "pairs.json") -> list[TradingPairConfig]:
    """Read the trading-pair catalogue from *path*.

    The file holds ``{"pairs": [{"symbol": ..., "base_asset": ..., ...}]}``.

    Raises ``ValueError`` if the file is missing or an entry lacks one of
    ``symbol``, ``base_asset`` or ``quote_asset``.
    """
    file = pathlib.Path(path)
    if not file.is_file():
        raise ValueError(f"Trading pair file not found: {path}")

    data = json.loads(file.read_text(encoding="utf-8"))
    pairs: list[TradingPairConfig] = []
    for entry in data.get("pairs", []):
        missing = [k for k in ("symbol", "base_asset", "quote_asset") if k not in entry]
        if missing:
            raise ValueError(
                f"Trading pair entry {entry!r} is missing: {', '.join(missing)}"
            )
        pairs.append(
            TradingPairConfig(
                symbol=entry["symbol"],
                base_asset=entry["base_asset"],
                quote_asset=entry["quote_asset"],
                price_precision=int(entry.get("price_precision", 2)),
                quantity_precision=int(entry.get("quantity_precision", 6)),
                min_notional=float(entry.get("min_notional", 10.0)),
                min_quantity=float(entry.get("min_quantity", 0.0)),
                max_quantity=float(entry.get("max_quantity", 0.0)),
                step_size=float(entry.get("step_size", 0.0)),
                tick_size=float(entry.get("tick_size", 0.0)),
                is_active=bool(entry.get("is_active", True)),
            )
        )
    return pairs


# ── Parsing helpers ──────────────────────────────────────────────────────


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in _TRUE_VALUES


def _env_time(name: str, default: str) -> time:
    raw = os.environ.get(name) or default
    try:
        return time.fromisoformat(raw)
    except ValueError:
        raise ValueError(f"{name} must be HH:MM[:SS], got {raw!r}") from None
