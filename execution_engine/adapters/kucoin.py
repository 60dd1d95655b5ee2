"""
KuCoin Exchange Variant.

============================================================
AUTHENTICATION
============================================================
    KC-API-SIGN       = b64(HMAC-SHA256(secret, ts + METHOD + endpoint + body))
    KC-API-PASSPHRASE = b64(HMAC-SHA256(secret, passphrase))
    KC-API-KEY-VERSION = "2"

endpoint includes the query string for GET requests. Success
responses carry code "200000".

============================================================
"""

import base64
import hashlib
import hmac
import json
import logging
import uuid
from decimal import Decimal
from typing import Any, Dict, List, Optional

from core.clock import ClockProtocol, get_clock
from core.exceptions import AuthenticationError

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


ORDERS_PATH = "/api/v1/orders"
STOP_ORDER_PATH = "/api/v1/stop-order"
ACCOUNTS_PATH = "/api/v1/accounts"
ORDER_DETAIL_PATH = "/api/v1/orders/{order_id}"

SUCCESS_CODE = "200000"


def sign(secret: str, message: str) -> str:
    mac = hmac.new(secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha256)
    return base64.b64encode(mac.digest()).decode("ascii")


def _order_status(order: Dict[str, Any]) -> OrderStatus:
    size = to_decimal(order.get("size"))
    filled = to_decimal(order.get("dealSize"))
    if order.get("isActive"):
        return OrderStatus.PARTIALLY_FILLED if filled > 0 else OrderStatus.OPEN
    if size > 0 and filled >= size:
        return OrderStatus.FILLED
    if order.get("cancelExist"):
        return OrderStatus.CANCELLED
    return OrderStatus.FILLED if filled > 0 else OrderStatus.UNKNOWN


class KucoinProvider:
    """KuCoin spot REST client."""

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

    def _headers(self, credentials: ExchangeCredentials, method: str, endpoint: str, body: str) -> Dict[str, str]:
        if not credentials.passphrase:
            raise AuthenticationError("KuCoin requires an API passphrase", exchange_id="kucoin")

        timestamp = str(int(self._clock.timestamp() * 1000))
        return {
            "KC-API-KEY": credentials.api_key,
            "KC-API-SIGN": sign(credentials.api_secret, timestamp + method + endpoint + body),
            "KC-API-TIMESTAMP": timestamp,
            "KC-API-PASSPHRASE": sign(credentials.api_secret, credentials.passphrase),
            "KC-API-KEY-VERSION": "2",
            "Content-Type": "application/json",
        }

    async def _send(
        self,
        credentials: ExchangeCredentials,
        method: str,
        endpoint: str,
        rate_key: str,
        body: Optional[Dict[str, Any]] = None,
    ) -> Any:
        body_str = json.dumps(body, separators=(",", ":")) if body is not None else ""
        headers = self._headers(credentials, method, endpoint, body_str)

        status, payload = await self._transport.request(
            method,
            f"{self.profile.base_url(credentials.is_testnet)}{endpoint}",
            rate_key,
            body=body_str or None,
            headers=headers,
        )

        code = str(payload.get("code")) if isinstance(payload, dict) else None
        if code != SUCCESS_CODE:
            message = payload.get("msg") if isinstance(payload, dict) else None
            raise exchange_error("kucoin", code, message or f"HTTP {status}", status)
        return payload.get("data")

    # --------------------------------------------------------
    # Operations
    # --------------------------------------------------------

    def _order_body(self, params: OrderParams) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "clientOid": params.client_order_id or uuid.uuid4().hex,
            "side": params.side.value,
            "symbol": to_exchange_symbol("kucoin", params.symbol),
            "type": "limit" if params.type in (OrderType.LIMIT, OrderType.STOP_LIMIT) else "market",
            "size": str(params.amount),
        }
        if params.type in (OrderType.LIMIT, OrderType.STOP_LIMIT):
            body["price"] = str(params.price)
        if params.type in (OrderType.STOP, OrderType.STOP_LIMIT):
            body["stop"] = "loss" if params.side.value == "sell" else "entry"
            body["stopPrice"] = str(params.stop_price)
        return body

    async def create_order(self, credentials: ExchangeCredentials, params: OrderParams) -> OrderResult:
        validate_order_params(self.profile, params)

        path = STOP_ORDER_PATH if params.type.requires_stop_price else ORDERS_PATH
        data = await self._send(credentials, "POST", path, path, self._order_body(params)) or {}

        return OrderResult(
            id=str(data.get("orderId", "")),
            symbol=params.symbol,
            side=params.side,
            type=params.type,
            status=OrderStatus.PENDING if params.type.requires_stop_price else OrderStatus.OPEN,
            amount=params.amount,
            price=params.price,
            timestamp=self._clock.now(),
            exchange_id="kucoin",
            raw=data,
        )

    async def get_balances(self, credentials: ExchangeCredentials) -> List[Balance]:
        data = await self._send(credentials, "GET", ACCOUNTS_PATH, ACCOUNTS_PATH) or []

        # One entry per account type (main, trade, margin)
        merged: Dict[str, Dict[str, Decimal]] = {}
        for entry in data:
            currency = entry.get("currency", "")
            totals = merged.setdefault(currency, {"free": Decimal("0"), "used": Decimal("0"), "total": Decimal("0")})
            totals["free"] += to_decimal(entry.get("available"))
            totals["used"] += to_decimal(entry.get("holds"))
            totals["total"] += to_decimal(entry.get("balance"))

        return [
            Balance(currency=currency, free=t["free"], used=t["used"], total=t["total"])
            for currency, t in merged.items()
        ]

    async def get_order_status(
        self,
        credentials: ExchangeCredentials,
        order_id: str,
        symbol: Optional[str] = None,
    ) -> OrderStatusReport:
        endpoint = ORDER_DETAIL_PATH.format(order_id=order_id)
        order = await self._send(credentials, "GET", endpoint, ORDER_DETAIL_PATH) or {}

        size = to_decimal(order.get("size"))
        filled = to_decimal(order.get("dealSize"))
        funds = to_decimal(order.get("dealFunds"))
        return OrderStatusReport(
            order_id=str(order.get("id", order_id)),
            status=_order_status(order),
            filled=filled,
            remaining=size - filled,
            average=funds / filled if filled > 0 else None,
            raw=order,
        )

    async def close(self) -> None:
        await self._transport.close()
