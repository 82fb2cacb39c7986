"""Binance spot REST API async client.

Handles all communication with the exchange: candle fetching, prices,
balances, order placement, cancellation, and status polling.  Responses are
decoded into typed models here; the rest of the code never sees raw JSON.
"""

import asyncio
import hashlib
import hmac
import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Optional
from urllib.parse import urlencode

import httpx

from pairtrader.config import Config
from pairtrader.exchange.models import (
    Candle,
    OrderResult,
    OrderSide,
    OrderStatus,
    OrderType,
)

logger = logging.getLogger("pairtrader.exchange")

# Retry settings
_MAX_RETRIES = 3
_RETRY_BASE_DELAY = 2.0  # seconds; doubles each attempt
_RETRYABLE_STATUS_CODES = {500, 502, 503, 504, 429}
# Failures where the request never reached the exchange.
_UNSENT_ERRORS = (httpx.ConnectError, httpx.ConnectTimeout)

_KLINES_PAGE_LIMIT = 1000
_DEFAULT_CANDLE_LIMIT = 500
_RECV_WINDOW_MS = 60_000

_STATUS_ALIASES = {
    "PENDING_CANCEL": OrderStatus.CANCELED,
    "EXPIRED_IN_MATCH": OrderStatus.EXPIRED,
}
_TYPE_ALIASES = {
    "STOP_LOSS_LIMIT": OrderType.STOP_LOSS,
    "TAKE_PROFIT_LIMIT": OrderType.TAKE_PROFIT,
    "LIMIT_MAKER": OrderType.LIMIT,
}


class BinanceClient:
    """Async client wrapping the Binance spot REST API.

    Implements both ``MarketDataProtocol`` and ``ExchangeProtocol``.
    """

    def __init__(self, config: Config) -> None:
        self._config = config
        self._base_url = config.binance_base_url
        self._api_secret = config.binance_api_secret.encode("utf-8")
        self._headers = {"X-MBX-APIKEY": config.binance_api_key}

    # ── Retry helper ─────────────────────────────────────────────────────

    async def _request_with_retry(
        self,
        method: str,
        url: str,
        retry_on: tuple[type[Exception], ...] = (httpx.TransportError,),
        retry_status: set[int] = _RETRYABLE_STATUS_CODES,
        **kwargs,
    ) -> httpx.Response:
        """Execute an HTTP request with exponential-backoff retry.

        Retries on *retry_on* transport failures and *retry_status* responses
        (server errors and rate limits by default).  Anything else is raised
        immediately.  No sleep after the last attempt.
        """
        last_exc: Optional[Exception] = None

        for attempt in range(_MAX_RETRIES):
            delay = _RETRY_BASE_DELAY * (2 ** attempt)
            final = attempt == _MAX_RETRIES - 1
            try:
                async with httpx.AsyncClient() as client:
                    resp = await getattr(client, method)(
                        url,
                        headers=self._headers,
                        timeout=30.0,
                        **kwargs,
                    )

                if resp.status_code in retry_status:
                    logger.warning(
                        "Binance %s %s returned %d (attempt %d/%d)",
                        method.upper(), _strip_query(url), resp.status_code,
                        attempt + 1, _MAX_RETRIES,
                    )
                    last_exc = httpx.HTTPStatusError(
                        f"Server error '{resp.status_code}'",
                        request=resp.request,
                        response=resp,
                    )
                    if not final:
                        await asyncio.sleep(delay)
                    continue

                resp.raise_for_status()
                return resp

            except retry_on as exc:
                logger.warning(
                    "Binance %s %s transport error (%s) (attempt %d/%d)",
                    method.upper(), _strip_query(url), exc,
                    attempt + 1, _MAX_RETRIES,
                )
                last_exc = exc
                if not final:
                    await asyncio.sleep(delay)

        raise last_exc  # type: ignore[misc]

    def _signed_url(self, path: str, params: dict) -> str:
        """Return ``path`` with *params*, a timestamp and an HMAC signature."""
        payload = {
            **params,
            "recvWindow": _RECV_WINDOW_MS,
            "timestamp": int(time.time() * 1000),
        }
        query = urlencode(payload)
        signature = hmac.new(
            self._api_secret, query.encode("utf-8"), hashlib.sha256,
        ).hexdigest()
        return f"{self._base_url}{path}?{query}&signature={signature}"

    # ── Market data ──────────────────────────────────────────────────────

    async def get_candles(
        self,
        symbol: str,
        interval: str,
        limit: Optional[int] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> list[Candle]:
        """Fetch klines for *symbol*, oldest-first.

        With *start* the range is paged through in chunks of 1000 until
        *end* (or the present) is reached.  Otherwise the most recent
        *limit* candles are returned.
        """
        url = f"{self._base_url}/api/v3/klines"

        if start is None:
            params = {
                "symbol": symbol,
                "interval": interval,
                "limit": limit or _DEFAULT_CANDLE_LIMIT,
            }
            if end is not None:
                params["endTime"] = _to_ms(end)
            resp = await self._request_with_retry("get", url, params=params)
            return [_parse_kline(symbol, interval, row) for row in resp.json()]

        candles: list[Candle] = []
        cursor = _to_ms(start)
        end_ms = _to_ms(end) if end is not None else None
        while True:
            params = {
                "symbol": symbol,
                "interval": interval,
                "limit": _KLINES_PAGE_LIMIT,
                "startTime": cursor,
            }
            if end_ms is not None:
                params["endTime"] = end_ms
            resp = await self._request_with_retry("get", url, params=params)
            rows = resp.json()
            candles.extend(_parse_kline(symbol, interval, row) for row in rows)
            if len(rows) < _KLINES_PAGE_LIMIT:
                break
            cursor = int(rows[-1][6]) + 1
            if end_ms is not None and cursor > end_ms:
                break
            if limit and len(candles) >= limit:
                break
        return candles[:limit] if limit else candles

    async def get_current_price(self, symbol: str) -> float:
        url = f"{self._base_url}/api/v3/ticker/price"
        resp = await self._request_with_retry("get", url, params={"symbol": symbol})
        return float(resp.json()["price"])

    async def get_balance(self, asset: str) -> float:
        """Return the free balance of *asset*, 0.0 when the account has none."""
        url = self._signed_url("/api/v3/account", {})
        resp = await self._request_with_retry("get", url)
        for bal in resp.json().get("balances", []):
            if bal["asset"] == asset:
                return float(bal["free"])
        return 0.0

    # ── Orders ───────────────────────────────────────────────────────────

    async def place_order(
        self,
        symbol: str,
        order_type: OrderType,
        side: OrderSide,
        quantity: float,
        price: Optional[float] = None,
    ) -> OrderResult:
        """Submit an order.

        For ``STOP_LOSS`` and ``TAKE_PROFIT`` orders *price* is the trigger
        (``stopPrice``); for ``LIMIT`` orders it is the limit price.
        """
        params: dict = {
            "symbol": symbol,
            "side": side.value,
            "type": order_type.value,
            "quantity": _fmt(quantity),
            "newOrderRespType": "FULL",
        }
        if order_type is OrderType.LIMIT:
            if price is None:
                raise ValueError("LIMIT orders require a price")
            params["price"] = _fmt(price)
            params["timeInForce"] = "GTC"
        elif order_type in (OrderType.STOP_LOSS, OrderType.TAKE_PROFIT):
            if price is None:
                raise ValueError(f"{order_type.value} orders require a trigger price")
            params["stopPrice"] = _fmt(price)

        client_order_id = f"pt-{uuid.uuid4().hex[:24]}"
        params["newClientOrderId"] = client_order_id

        url = self._signed_url("/api/v3/order", params)
        try:
            resp = await self._request_with_retry(
                "post", url, retry_on=_UNSENT_ERRORS, retry_status={429},
            )
        except (httpx.TransportError, httpx.HTTPStatusError) as exc:
            if isinstance(exc, _UNSENT_ERRORS) or (
                isinstance(exc, httpx.HTTPStatusError) and exc.response.status_code < 500
            ):
                raise
            # The exchange may have accepted the order before the failure.
            existing = await self._find_order_by_client_id(symbol, client_order_id)
            if existing is None:
                raise
            logger.warning(
                "Order %s for %s was accepted despite %s",
                client_order_id, symbol, type(exc).__name__,
            )
            return existing
        return _parse_order(resp.json(), requested_price=price)

    async def cancel_order(self, symbol: str, order_id: str) -> bool:
        url = self._signed_url("/api/v3/order", {"symbol": symbol, "orderId": order_id})
        resp = await self._request_with_retry("delete", url)
        return resp.json().get("status") == OrderStatus.CANCELED.value

    async def get_order_status(self, symbol: str, order_id: str) -> OrderResult:
        url = self._signed_url("/api/v3/order", {"symbol": symbol, "orderId": order_id})
        resp = await self._request_with_retry("get", url)
        return _parse_order(resp.json())

    async def _find_order_by_client_id(
        self,
        symbol: str,
        client_order_id: str,
    ) -> Optional[OrderResult]:
        """Look an order up by its client id; ``None`` if the exchange has none."""
        url = self._signed_url(
            "/api/v3/order", {"symbol": symbol, "origClientOrderId": client_order_id},
        )
        try:
            resp = await self._request_with_retry("get", url)
        except httpx.HTTPStatusError as exc:
            if exc.response.status_code == 400:
                return None
            raise
        return _parse_order(resp.json())


# ── Decoding ─────────────────────────────────────────────────────────────


def _parse_kline(symbol: str, interval: str, row: list) -> Candle:
    return Candle(
        symbol=symbol,
        interval=interval,
        open=float(row[1]),
        high=float(row[2]),
        low=float(row[3]),
        close=float(row[4]),
        volume=float(row[5]),
        open_time=_from_ms(row[0]),
        close_time=_from_ms(row[6]),
    )


def _parse_order(data: dict, requested_price: Optional[float] = None) -> OrderResult:
    """Decode an order payload.

    Raises ``ValueError`` on an unknown status or type.
    """
    raw_status = data["status"]
    status = _STATUS_ALIASES.get(raw_status) or OrderStatus(raw_status)
    raw_type = data["type"]
    order_type = _TYPE_ALIASES.get(raw_type) or OrderType(raw_type)

    executed = float(data.get("executedQty", 0) or 0)
    quote = float(data.get("cummulativeQuoteQty", 0) or 0)
    average = quote / executed if executed > 0 and quote > 0 else None

    fills = data.get("fills") or []
    commission = sum(float(f["commission"]) for f in fills) if fills else None
    commission_asset = fills[0]["commissionAsset"] if fills else None

    price = float(data.get("price", 0) or 0)
    if price == 0 and requested_price is not None:
        price = requested_price
    stop_price = float(data.get("stopPrice", 0) or 0) or None

    created_ms = data.get("transactTime") or data.get("time")
    updated_ms = data.get("updateTime")

    return OrderResult(
        id=str(data["orderId"]),
        symbol=data["symbol"],
        type=order_type,
        side=OrderSide(data["side"]),
        price=price,
        quantity=float(data.get("origQty", 0) or 0),
        executed_quantity=executed,
        status=status,
        created_at=_from_ms(created_ms) if created_ms else datetime.now(timezone.utc),
        updated_at=_from_ms(updated_ms) if updated_ms else None,
        stop_price=stop_price,
        client_order_id=data.get("clientOrderId", ""),
        commission=commission,
        commission_asset=commission_asset,
        average_price=average,
    )


def _from_ms(ms) -> datetime:
    return datetime.fromtimestamp(int(ms) / 1000, tz=timezone.utc)


def _to_ms(dt: datetime) -> int:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp() * 1000)


def _fmt(value: float) -> str:
    """Format a decimal without exponent notation or trailing zeros."""
    text = f"{value:.8f}".rstrip("0").rstrip(".")
    return text or "0"


def _strip_query(url: str) -> str:
    return url.split("?", 1)[0]
