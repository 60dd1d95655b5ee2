"""
Binance Futures Exchange Variant.

============================================================
AUTHENTICATION
============================================================
Query string of order params + timestamp, HMAC-SHA256 with the
API secret, hex digest appended as signature=<hex>. The API key
travels in the X-MBX-APIKEY header.

============================================================
ENDPOINTS
============================================================
- POST /fapi/v1/order      create order
- GET  /fapi/v1/order      order status
- GET  /fapi/v2/balance    balances

============================================================
"""

import hashlib
import hmac
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

from core.clock import ClockProtocol, get_clock
from core.exceptions import ValidationError

from ..types import (
    Balance,
    ExchangeCredentials,
    OrderParams,
    OrderResult,
    OrderStatus,
    OrderStatusReport,
    OrderType,
    to_decimal,
)
from .base import ExchangeProfile, validate_order_params
from .errors import exchange_error
from .symbols import to_exchange_symbol
from .transport import HttpTransport


logger = logging.getLogger(__name__)


ORDER_PATH = "/fapi/v1/order"
BALANCE_PATH = "/fapi/v2/balance"

ORDER_TYPES: Dict[OrderType, str] = {
    OrderType.MARKET: "MARKET",
    OrderType.LIMIT: "LIMIT",
    OrderType.STOP: "STOP_MARKET",
    OrderType.STOP_LIMIT: "STOP",
    OrderType.TRAILING_STOP: "TRAILING_STOP_MARKET",
}

STATUS_MAP: Dict[str, OrderStatus] = {
    "NEW": OrderStatus.OPEN,
    "PARTIALLY_FILLED": OrderStatus.PARTIALLY_FILLED,
    "FILLED": OrderStatus.FILLED,
    "CANCELED": OrderStatus.CANCELLED,
    "REJECTED": OrderStatus.REJECTED,
    "EXPIRED": OrderStatus.EXPIRED,
}

DEFAULT_CALLBACK_RATE = "1"


def sign_query(secret: str, query: str) -> str:
    """HMAC-SHA256 hex digest of a query string."""
    return hmac.new(secret.encode("utf-8"), query.encode("utf-8"), hashlib.sha256).hexdigest()


class BinanceProvider:
    """Binance USDⓈ-M futures REST client."""

    simulated = False

    def __init__(
        self,
        profile: ExchangeProfile,
        transport: HttpTransport,
        clock: Optional[ClockProtocol] = None,
    ):
        self.profile = profile
        self._transport = transport
        self._clock = clock or get_clock()

    # --------------------------------------------------------
    # Signing
    # --------------------------------------------------------

    def _signed_query(self, credentials: ExchangeCredentials, params: Dict[str, Any]) -> str:
        params = dict(params)
        params["timestamp"] = int(self._clock.timestamp() * 1000)
        query = urlencode(params)
        return f"{query}&signature={sign_query(credentials.api_secret, query)}"

    async def _send(
        self,
        credentials: ExchangeCredentials,
        method: str,
        path: str,
        params: Dict[str, Any],
    ) -> Any:
        query = self._signed_query(credentials, params)
        url = f"{self.profile.base_url(credentials.is_testnet)}{path}?{query}"

        status, payload = await self._transport.request(
            method,
            url,
            path,
            headers={"X-MBX-APIKEY": credentials.api_key},
        )

        code = payload.get("code") if isinstance(payload, dict) else None
        if status >= 400 or (isinstance(code, int) and code < 0):
            message = payload.get("msg") if isinstance(payload, dict) else None
            raise exchange_error("binance", code, message or f"HTTP {status}", status)
        return payload

    # --------------------------------------------------------
    # Operations
    # --------------------------------------------------------

    def _order_params(self, params: OrderParams) -> Dict[str, Any]:
        request: Dict[str, Any] = {
            "symbol": to_exchange_symbol("binance", params.symbol),
            "side": params.side.value.upper(),
            "type": ORDER_TYPES[params.type],
            "quantity": str(params.amount),
        }
        if params.type in (OrderType.LIMIT, OrderType.STOP_LIMIT):
            request["price"] = str(params.price)
            request["timeInForce"] = "GTC"
        if params.type in (OrderType.STOP, OrderType.STOP_LIMIT):
            request["stopPrice"] = str(params.stop_price)
        if params.type is OrderType.TRAILING_STOP:
            request["activationPrice"] = str(params.stop_price)
            request["callbackRate"] = DEFAULT_CALLBACK_RATE
        if params.reduce_only:
            request["reduceOnly"] = "true"
        if params.client_order_id:
            request["newClientOrderId"] = params.client_order_id
        return request

    async def create_order(self, credentials: ExchangeCredentials, params: OrderParams) -> OrderResult:
        validate_order_params(self.profile, params)

        payload = await self._send(credentials, "POST", ORDER_PATH, self._order_params(params))
        return self._parse_order(payload, params)

    def _parse_order(self, payload: Dict[str, Any], params: OrderParams) -> OrderResult:
        filled = to_decimal(payload.get("executedQty"))
        average = to_decimal(payload.get("avgPrice"))
        price = to_decimal(payload.get("price"))
        updated = payload.get("updateTime")

        return OrderResult(
            id=str(payload.get("orderId", "")),
            symbol=params.symbol,
            side=params.side,
            type=params.type,
            status=STATUS_MAP.get(payload.get("status", ""), OrderStatus.UNKNOWN),
            amount=to_decimal(payload.get("origQty"), str(params.amount)),
            filled=filled,
            price=price if price > 0 else params.price,
            average=average if average > 0 else None,
            cost=to_decimal(payload.get("cumQuote")),
            timestamp=(
                datetime.fromtimestamp(updated / 1000, tz=timezone.utc)
                if updated else self._clock.now()
            ),
            exchange_id="binance",
            raw=payload,
        )

    async def get_balances(self, credentials: ExchangeCredentials) -> List[Balance]:
        payload = await self._send(credentials, "GET", BALANCE_PATH, {})

        balances = []
        for entry in payload or []:
            total = to_decimal(entry.get("balance"))
            free = to_decimal(entry.get("availableBalance"), str(total))
            balances.append(Balance(
                currency=entry.get("asset", ""),
                free=free,
                used=max(total - free, to_decimal(0)),
                total=total,
            ))
        return balances

    async def get_order_status(
        self,
        credentials: ExchangeCredentials,
        order_id: str,
        symbol: Optional[str] = None,
    ) -> OrderStatusReport:
        if not symbol:
            raise ValidationError("Binance order status requires the symbol", field="symbol")

        payload = await self._send(credentials, "GET", ORDER_PATH, {
            "symbol": to_exchange_symbol("binance", symbol),
            "orderId": order_id,
        })

        amount = to_decimal(payload.get("origQty"))
        filled = to_decimal(payload.get("executedQty"))
        average = to_decimal(payload.get("avgPrice"))
        return OrderStatusReport(
            order_id=str(payload.get("orderId", order_id)),
            status=STATUS_MAP.get(payload.get("status", ""), OrderStatus.UNKNOWN),
            filled=filled,
            remaining=amount - filled,
            average=average if average > 0 else None,
            raw=payload,
        )

    async def close(self) -> None:
        await self._transport.close()
