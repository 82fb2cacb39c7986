"""Strategy registry — maps strategy names to classes.

Unknown names resolve to the default strategy so a misconfigured pair never
stops the trading loop.
"""

import logging

from pairtrader.strategy.base import StrategyProtocol
from pairtrader.strategy.ma_cross import MovingAverageCrossStrategy
from pairtrader.strategy.triple_confirmation import TripleConfirmationStrategy

logger = logging.getLogger("pairtrader.strategy")

DEFAULT_STRATEGY = "triple_confirmation"

STRATEGY_REGISTRY: dict[str, type] = {
    "triple_confirmation": TripleConfirmationStrategy,
    "ma_cross": MovingAverageCrossStrategy,
}

# Alternate spellings accepted in configuration.
_ALIASES = {
    "TripleConfirmation": "triple_confirmation",
    "MACross": "ma_cross",
    "MovingAverageCross": "ma_cross",
}


def get_strategy(name: str | None) -> StrategyProtocol:
    """Look up and instantiate a strategy by registry key.

    Falls back to the default strategy (with a warning) for unknown names.
    """
    key = _ALIASES.get(name or "", name or "")
    if key not in STRATEGY_REGISTRY:
        logger.warning(
            "Unknown strategy '%s', falling back to '%s'. Available: %s",
            name, DEFAULT_STRATEGY, ", ".join(STRATEGY_REGISTRY.keys()),
        )
        key = DEFAULT_STRATEGY
    return STRATEGY_REGISTRY[key]()
