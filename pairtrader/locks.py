"""Per-symbol mutual exclusion for position-mutating work."""

import asyncio
from collections import defaultdict


class SymbolLocks:
    """One ``asyncio.Lock`` per symbol, created on first use.

    Hold ``locks.for_symbol(symbol)`` around any validate → order → ledger
    sequence so two tasks never open or close the same symbol at once.
    """

    def __init__(self) -> None:
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def for_symbol(self, symbol: str) -> asyncio.Lock:
        return self._locks[symbol]

    def is_locked(self, symbol: str) -> bool:
        return symbol in self._locks and self._locks[symbol].locked()
