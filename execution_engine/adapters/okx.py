"""
OKX Exchange Variant.

============================================================
AUTHENTICATION
============================================================
    OK-ACCESS-SIGN = b64(HMAC-SHA256(secret, ts + METHOD + path + body))

ts is an ISO-8601 UTC timestamp with milliseconds
(2024-01-01T00:00:00.000Z). Demo trading adds the header
x-simulated-trading: 1 on the production host.

Only market and limit orders are supported. Success responses
carry code "0".

============================================================
"""

import base64
import hashlib
import hmac
import json
import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

from core.clock import ClockProtocol, get_clock
from core.exceptions import AuthenticationError, ValidationError

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


ORDER_PATH = "/api/v5/trade/order"
BALANCE_PATH = "/api/v5/account/balance"

SUCCESS_CODE = "0"

STATUS_MAP: Dict[str, OrderStatus] = {
    "live": OrderStatus.OPEN,
    "partially_filled": OrderStatus.PARTIALLY_FILLED,
    "filled": OrderStatus.FILLED,
    "canceled": OrderStatus.CANCELLED,
    "mmp_canceled": OrderStatus.CANCELLED,
}


def sign(secret: str, message: str) -> str:
    mac = hmac.new(secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha256)
    return base64.b64encode(mac.digest()).decode("ascii")


class OkxProvider:
    """OKX v5 REST client, spot cash mode."""

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

    def _timestamp(self) -> str:
        return self._clock.now().strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"

    def _headers(self, credentials: ExchangeCredentials, method: str, path: str, body: str) -> Dict[str, str]:
        if not credentials.passphrase:
            raise AuthenticationError("OKX requires an API passphrase", exchange_id="okx")

        timestamp = self._timestamp()
        headers = {
            "OK-ACCESS-KEY": credentials.api_key,
            "OK-ACCESS-SIGN": sign(credentials.api_secret, timestamp + method + path + body),
            "OK-ACCESS-TIMESTAMP": timestamp,
            "OK-ACCESS-PASSPHRASE": credentials.passphrase,
            "Content-Type": "application/json",
        }
        if credentials.is_testnet:
            headers["x-simulated-trading"] = "1"
        return headers

    async def _send(
        self,
        credentials: ExchangeCredentials,
        method: str,
        path: str,
        query: Optional[Dict[str, Any]] = None,
        body: Optional[Dict[str, Any]] = None,
    ) -> List[Dict[str, Any]]:
        request_path = f"{path}?{urlencode(query)}" if query else path
        body_str = json.dumps(body, separators=(",", ":")) if body is not None else ""
        headers = self._headers(credentials, method, request_path, body_str)

        status, payload = await self._transport.request(
            method,
            f"{self.profile.base_url(credentials.is_testnet)}{request_path}",
            path,
            body=body_str or None,
            headers=headers,
        )

        if not isinstance(payload, dict):
            raise exchange_error("okx", None, f"HTTP {status}", status)

        code = str(payload.get("code"))
        data = payload.get("data") or []
        if code != SUCCESS_CODE:
            # Per-order failures carry the real reason in data[0].sCode
            detail = data[0] if data and isinstance(data[0], dict) else {}
            raise exchange_error(
                "okx",
                detail.get("sCode") or code,
                detail.get("sMsg") or payload.get("msg"),
                status,
            )
        return data

    # --------------------------------------------------------
    # Operations
    # --------------------------------------------------------

    async def create_order(self, credentials: ExchangeCredentials, params: OrderParams) -> OrderResult:
        validate_order_params(self.profile, params)

        body: Dict[str, Any] = {
            "instId": to_exchange_symbol("okx", params.symbol),
            "tdMode": "cash",
            "side": params.side.value,
            "ordType": params.type.value,
            "sz": str(params.amount),
        }
        if params.type is OrderType.LIMIT:
            body["px"] = str(params.price)
        if params.client_order_id:
            body["clOrdId"] = params.client_order_id

        data = await self._send(credentials, "POST", ORDER_PATH, body=body)
        order = data[0] if data else {}

        return OrderResult(
            id=str(order.get("ordId", "")),
            symbol=params.symbol,
            side=params.side,
            type=params.type,
            status=OrderStatus.OPEN,
            amount=params.amount,
            price=params.price,
            timestamp=self._clock.now(),
            exchange_id="okx",
            raw=order,
        )

    async def get_balances(self, credentials: ExchangeCredentials) -> List[Balance]:
        data = await self._send(credentials, "GET", BALANCE_PATH)

        balances = []
        for account in data:
            for detail in account.get("details") or []:
                balances.append(Balance(
                    currency=detail.get("ccy", ""),
                    free=to_decimal(detail.get("availBal")),
                    used=to_decimal(detail.get("frozenBal")),
                    total=to_decimal(detail.get("eq") or detail.get("cashBal")),
                ))
        return balances

    async def get_order_status(
        self,
        credentials: ExchangeCredentials,
        order_id: str,
        symbol: Optional[str] = None,
    ) -> OrderStatusReport:
        if not symbol:
            raise ValidationError("OKX order status requires the symbol", field="symbol")

        data = await self._send(credentials, "GET", ORDER_PATH, query={
            "instId": to_exchange_symbol("okx", symbol),
            "ordId": order_id,
        })
        order = data[0] if data else {}

        amount = to_decimal(order.get("sz"))
        filled = to_decimal(order.get("accFillSz"))
        average = to_decimal(order.get("avgPx"))

        return OrderStatusReport(
            order_id=str(order.get("ordId", order_id)),
            status=STATUS_MAP.get(order.get("state", ""), OrderStatus.UNKNOWN),
            filled=filled,
            remaining=amount - filled if amount > 0 else Decimal("0"),
            average=average if average > 0 else None,
            raw=order,
        )

    async def close(self) -> None:
        await self._transport.close()
