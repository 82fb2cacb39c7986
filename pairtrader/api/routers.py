"""Internal API routers — /status, /positions, /backtests endpoints.

No business logic.  Delegates to repos and the shared status dict that the
trading engine updates after each cycle.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Query

logger = logging.getLogger("pairtrader.api")
router = APIRouter()

# ── Shared state (set during app startup) ────────────────────────────────

_DEFAULT_STATUS: dict = {
    "mode": "idle",
    "running": False,
    "strategy": None,
    "pairs": [],
    "cycle_count": 0,
    "last_cycle_at": None,
    "last_results": [],
}

_bot_status: dict = dict(_DEFAULT_STATUS)
_position_repo = None  # Set via configure_routers()
_backtest_repo = None  # Set via configure_routers()


def configure_routers(
    position_repo=None,
    backtest_repo=None,
    bot_status: Optional[dict] = None,
) -> None:
    """Inject dependencies from the application startup.

    Args:
        position_repo: A ``PositionRepo`` (or duck-type for tests).
        backtest_repo: A ``BacktestRepo`` (or duck-type for tests).
        bot_status: Optional dict to replace the status state.
    """
    global _position_repo, _backtest_repo, _bot_status  # noqa: PLW0603
    _position_repo = position_repo
    _backtest_repo = backtest_repo
    _bot_status = dict(bot_status) if bot_status is not None else dict(_DEFAULT_STATUS)


def update_bot_status(**fields) -> None:
    """Merge *fields* into the status reported by ``GET /status``."""
    _bot_status.update(fields)


# ── Endpoints ────────────────────────────────────────────────────────────


@router.get("/status")
async def get_status():
    return dict(_bot_status)


@router.get("/positions")
async def get_positions():
    """Open positions from the ledger store."""
    if _position_repo is None:
        return {"positions": []}
    positions = _position_repo.get_open_positions()
    return {
        "positions": [
            {
                "id": p.id,
                "symbol": p.symbol,
                "type": p.type.value,
                "entry_price": p.entry_price,
                "quantity": p.quantity,
                "stop_loss": p.stop_loss,
                "take_profit": p.take_profit,
                "opened_at": p.opened_at.isoformat(),
                "strategy": p.strategy,
            }
            for p in positions
        ]
    }


@router.get("/backtests")
async def get_backtests(limit: int = Query(10, ge=1, le=100)):
    if _backtest_repo is None:
        return {"runs": []}
    return {"runs": _backtest_repo.get_runs(limit=limit)}
