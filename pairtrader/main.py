"""PairTrader — application entry point.

Boots the FastAPI internal server and provides the CLI entry point for
live and backtest modes.
"""

import logging

from fastapi import FastAPI

from pairtrader.api.routers import router

app = FastAPI(title="PairTrader Internal API", version="0.1.0")
app.include_router(router)

logger = logging.getLogger("pairtrader")


@app.get("/health")
async def health():
    return {"status": "ok"}


def warn_if_live(testnet: bool) -> bool:
    """Log a prominent warning when trading against the production exchange.

    Returns ``True`` when *testnet* is off.
    """
    if not testnet:
        logger.warning("LIVE TRADING against api.binance.com: real funds at risk!")
        return True
    return False


# ── CLI ──────────────────────────────────────────────────────────────────


def _run_cli() -> None:
    """Parse CLI arguments and dispatch to the appropriate mode."""
    import argparse
    import asyncio
    import signal

    from pairtrader.config import load_config, load_trading_pairs
    from pairtrader.repos.db import init_db

    parser = argparse.ArgumentParser(description="PairTrader trading bot")
    parser.add_argument(
        "--mode",
        choices=["live", "backtest"],
        default="live",
        help="Trading mode (default: live)",
    )
    parser.add_argument("--symbol", default="BTCUSDT", help="Backtest symbol")
    parser.add_argument("--interval", help="Backtest candle interval (default: CANDLE_INTERVAL)")
    parser.add_argument("--strategy", help="Backtest strategy (default: DEFAULT_STRATEGY)")
    parser.add_argument("--start", help="Backtest start date (YYYY-MM-DD)")
    parser.add_argument("--end", help="Backtest end date (YYYY-MM-DD)")
    parser.add_argument("--csv-dir", help="Backtest from CSV files instead of the exchange")
    parser.add_argument(
        "--engine-only",
        action="store_true",
        help="Run the trading engine without the API server",
    )
    parser.add_argument("--env-file", help="Path to a .env file")
    args = parser.parse_args()

    config = load_config(args.env_file)

    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    init_db(config.db_path)

    if args.mode == "backtest":
        asyncio.run(_run_backtest(config, args))
        return

    pairs = load_trading_pairs(config.pairs_file)
    warn_if_live(config.binance_testnet)
    engine = _build_engine(config, pairs)

    def handle_shutdown(signum, frame):
        logger.info("Shutdown signal received, finishing the current cycle.")
        engine.stop()

    signal.signal(signal.SIGINT, handle_shutdown)
    signal.signal(signal.SIGTERM, handle_shutdown)

    if args.engine_only:
        asyncio.run(engine.run())
    else:
        asyncio.run(_run_with_api(engine, config.health_port))


def _build_engine(config, pairs):
    """Wire the live components together."""
    from pairtrader.api.routers import configure_routers, update_bot_status
    from pairtrader.engine import TradingEngine
    from pairtrader.exchange.binance_client import BinanceClient
    from pairtrader.execution.executor import OrderExecutor
    from pairtrader.ledger import PositionLedger
    from pairtrader.locks import SymbolLocks
    from pairtrader.notify.notifier import LogNotifier
    from pairtrader.repos.backtest_repo import BacktestRepo
    from pairtrader.repos.order_repo import OrderRepo
    from pairtrader.repos.position_repo import PositionRepo
    from pairtrader.risk.manager import RiskManager
    from pairtrader.strategy.engine import StrategyEngine

    client = BinanceClient(config)
    position_repo = PositionRepo(config.db_path)
    ledger = PositionLedger(config, position_repo)
    locks = SymbolLocks()
    pairs_by_symbol = {p.symbol: p for p in pairs}

    executor = OrderExecutor(
        config=config,
        exchange=client,
        market_data=client,
        ledger=ledger,
        order_repo=OrderRepo(config.db_path),
        notifier=LogNotifier(),
        pairs=pairs_by_symbol,
        locks=locks,
    )
    risk = RiskManager(config, client, ledger, executor, pairs_by_symbol)
    strategy = StrategyEngine(client, config.default_strategy)

    configure_routers(
        position_repo=position_repo,
        backtest_repo=BacktestRepo(config.db_path),
    )
    update_bot_status(mode="testnet" if config.binance_testnet else "live")

    return TradingEngine(config, strategy, risk, executor, pairs, locks)


async def _run_with_api(engine, port: int = 8080) -> None:
    """Start the API server and the trading engine concurrently."""
    import asyncio

    import uvicorn

    uvi_config = uvicorn.Config(app, host="0.0.0.0", port=port, log_level="info")
    server = uvicorn.Server(uvi_config)

    async def _run_engine():
        try:
            await engine.run()
        finally:
            server.should_exit = True

    logger.info("Internal API available at http://localhost:%d", port)
    results = await asyncio.gather(server.serve(), _run_engine(), return_exceptions=True)
    logger.info("PairTrader stopped. Results: %s", results)


async def _run_backtest(config, args) -> None:
    """Run a backtest from the exchange or from CSV files and persist the summary."""
    from datetime import datetime, timedelta, timezone

    from pairtrader.backtest.engine import BacktestEngine
    from pairtrader.repos.backtest_repo import BacktestRepo

    end = (
        datetime.fromisoformat(args.end).replace(tzinfo=timezone.utc)
        if args.end else datetime.now(timezone.utc)
    )
    start = (
        datetime.fromisoformat(args.start).replace(tzinfo=timezone.utc)
        if args.start else end - timedelta(days=90)
    )
    interval = args.interval or config.candle_interval
    strategy_name = args.strategy or config.default_strategy

    if args.csv_dir:
        from pairtrader.data.csv_loader import CsvMarketData
        market_data = CsvMarketData(args.csv_dir)
    else:
        from pairtrader.exchange.binance_client import BinanceClient
        market_data = BinanceClient(config)

    engine = BacktestEngine(market_data, risk_per_trade_pct=config.risk_per_trade_pct)
    result = await engine.run_backtest(args.symbol, interval, strategy_name, start, end)
    if not result.ok:
        logger.error("Backtest failed: %s", result.reason)
        return

    perf = result.value
    BacktestRepo(config.db_path).insert_run(perf)
    logger.info(
        "Backtest complete: %d trades, profit %.2f, win rate %.1f%%, "
        "max drawdown %.2f%%, Sharpe %.2f",
        perf.total_trades,
        perf.total_profit,
        perf.win_rate * 100,
        perf.max_drawdown * 100,
        perf.sharpe_ratio,
    )


if __name__ == "__main__":
    _run_cli()
