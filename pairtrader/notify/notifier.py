"""Notifications — fire-and-forget reporting of executed orders and errors."""

import logging
from typing import Optional, Protocol, runtime_checkable

from pairtrader.exchange.models import OrderResult

logger = logging.getLogger("pairtrader.notify")


@runtime_checkable
class NotifierProtocol(Protocol):
    async def notify_order_executed(self, order: OrderResult) -> None:
        ...

    async def notify_error(self, message: str, cause: Optional[BaseException] = None) -> None:
        ...


class LogNotifier:
    """Notifier that writes to the application log."""

    async def notify_order_executed(self, order: OrderResult) -> None:
        logger.info(
            "Order executed: %s %s %s qty=%g price=%g status=%s",
            order.symbol, order.side.value, order.type.value,
            order.executed_quantity or order.quantity, order.fill_price,
            order.status.value,
        )

    async def notify_error(self, message: str, cause: Optional[BaseException] = None) -> None:
        if cause is not None:
            logger.error("%s: %s", message, cause)
        else:
            logger.error("%s", message)


class SafeNotifier:
    """Wraps a notifier so delivery failures are logged, never raised."""

    def __init__(self, inner: NotifierProtocol) -> None:
        self._inner = inner

    async def notify_order_executed(self, order: OrderResult) -> None:
        try:
            await self._inner.notify_order_executed(order)
        except Exception as exc:
            logger.warning("Order notification failed for %s: %s", order.id, exc)

    async def notify_error(self, message: str, cause: Optional[BaseException] = None) -> None:
        try:
            await self._inner.notify_error(message, cause)
        except Exception as exc:
            logger.warning("Error notification failed (%s): %s", message, exc)
