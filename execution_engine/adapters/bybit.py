"""
Bybit Exchange Variant.

============================================================
AUTHENTICATION
============================================================
    X-BAPI-SIGN = hex(HMAC-SHA256(secret, ts + apiKey + recvWindow + payload))

payload is the JSON body for POST and the query string for GET.
recvWindow is 5000 ms. Success responses carry retCode 0.

============================================================
"""

import hashlib
import hmac
import json
import logging
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

from core.clock import ClockProtocol, get_clock

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


CREATE_ORDER_PATH = "/v5/order/create"
WALLET_BALANCE_PATH = "/v5/account/wallet-balance"
ORDER_REALTIME_PATH = "/v5/order/realtime"

RECV_WINDOW = "5000"
CATEGORY = "spot"

STATUS_MAP: Dict[str, OrderStatus] = {
    "Created": OrderStatus.PENDING,
    "New": OrderStatus.OPEN,
    "PartiallyFilled": OrderStatus.PARTIALLY_FILLED,
    "Filled": OrderStatus.FILLED,
    "Cancelled": OrderStatus.CANCELLED,
    "PartiallyFilledCanceled": OrderStatus.CANCELLED,
    "Rejected": OrderStatus.REJECTED,
    "Untriggered": OrderStatus.PENDING,
    "Triggered": OrderStatus.OPEN,
    "Deactivated": OrderStatus.CANCELLED,
}


def sign(secret: str, message: str) -> str:
    return hmac.new(secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).hexdigest()


class BybitProvider:
    """Bybit v5 REST client, spot category."""

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

    async def _send(
        self,
        credentials: ExchangeCredentials,
        method: str,
        path: str,
        query: Optional[Dict[str, Any]] = None,
        body: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        query_str = urlencode(query) if query else ""
        body_str = json.dumps(body, separators=(",", ":")) if body is not None else ""
        timestamp = str(int(self._clock.timestamp() * 1000))
        payload_str = body_str if method == "POST" else query_str

        headers = {
            "X-BAPI-API-KEY": credentials.api_key,
            "X-BAPI-SIGN": sign(credentials.api_secret, timestamp + credentials.api_key + RECV_WINDOW + payload_str),
            "X-BAPI-TIMESTAMP": timestamp,
            "X-BAPI-RECV-WINDOW": RECV_WINDOW,
            "Content-Type": "application/json",
        }

        url = f"{self.profile.base_url(credentials.is_testnet)}{path}"
        if query_str:
            url = f"{url}?{query_str}"

        status, payload = await self._transport.request(
            method,
            url,
            path,
            body=body_str or None,
            headers=headers,
        )

        if not isinstance(payload, dict):
            raise exchange_error("bybit", None, f"HTTP {status}", status)
        if payload.get("retCode") != 0:
            raise exchange_error("bybit", payload.get("retCode"), payload.get("retMsg"), status)
        return payload.get("result") or {}

    # --------------------------------------------------------
    # Operations
    # --------------------------------------------------------

    def _order_body(self, params: OrderParams) -> Dict[str, Any]:
        is_limit = params.type in (OrderType.LIMIT, OrderType.STOP_LIMIT)
        body: Dict[str, Any] = {
            "category": CATEGORY,
            "symbol": to_exchange_symbol("bybit", params.symbol),
            "side": params.side.value.capitalize(),
            "orderType": "Limit" if is_limit else "Market",
            "qty": str(params.amount),
        }
        if is_limit:
            body["price"] = str(params.price)
        if params.type in (OrderType.STOP, OrderType.STOP_LIMIT):
            body["triggerPrice"] = str(params.stop_price)
            body["orderFilter"] = "StopOrder"
        if params.client_order_id:
            body["orderLinkId"] = params.client_order_id
        return body

    async def create_order(self, credentials: ExchangeCredentials, params: OrderParams) -> OrderResult:
        validate_order_params(self.profile, params)

        result = await self._send(credentials, "POST", CREATE_ORDER_PATH, body=self._order_body(params))

        return OrderResult(
            id=str(result.get("orderId", "")),
            symbol=params.symbol,
            side=params.side,
            type=params.type,
            status=OrderStatus.PENDING if params.type.requires_stop_price else OrderStatus.OPEN,
            amount=params.amount,
            price=params.price,
            timestamp=self._clock.now(),
            exchange_id="bybit",
            raw=result,
        )

    async def get_balances(self, credentials: ExchangeCredentials) -> List[Balance]:
        result = await self._send(credentials, "GET", WALLET_BALANCE_PATH, query={"accountType": "UNIFIED"})

        balances = []
        for account in result.get("list") or []:
            for coin in account.get("coin") or []:
                total = to_decimal(coin.get("walletBalance"))
                used = to_decimal(coin.get("locked"))
                balances.append(Balance(
                    currency=coin.get("coin", ""),
                    free=total - used,
                    used=used,
                    total=total,
                ))
        return balances

    async def get_order_status(
        self,
        credentials: ExchangeCredentials,
        order_id: str,
        symbol: Optional[str] = None,
    ) -> OrderStatusReport:
        result = await self._send(credentials, "GET", ORDER_REALTIME_PATH, query={
            "category": CATEGORY,
            "orderId": order_id,
        })
        orders = result.get("list") or []
        order = orders[0] if orders else {}

        amount = to_decimal(order.get("qty"))
        filled = to_decimal(order.get("cumExecQty"))
        average = to_decimal(order.get("avgPrice"))
        return OrderStatusReport(
            order_id=str(order.get("orderId", order_id)),
            status=STATUS_MAP.get(order.get("orderStatus", ""), OrderStatus.UNKNOWN),
            filled=filled,
            remaining=amount - filled,
            average=average if average > 0 else None,
            raw=order,
        )

    async def close(self) -> None:
        await self._transport.close()
