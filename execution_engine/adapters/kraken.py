"""
Kraken Exchange Variant.

============================================================
AUTHENTICATION
============================================================
    API-Sign = b64(HMAC-SHA512(b64decode(secret),
                   path + SHA256(nonce + postdata)))

postdata is the urlencoded form body including the nonce.
Nonces are microsecond timestamps kept strictly increasing
within the process.

Errors arrive in the "error" list of every response.

============================================================
"""

import base64
import binascii
import hashlib
import hmac
import logging
import threading
from decimal import Decimal
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

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
from .symbols import from_kraken_asset, to_exchange_symbol
from .transport import HttpTransport


logger = logging.getLogger(__name__)


ADD_ORDER_PATH = "/0/private/AddOrder"
BALANCE_PATH = "/0/private/Balance"
QUERY_ORDERS_PATH = "/0/private/QueryOrders"

ORDER_TYPES: Dict[OrderType, str] = {
    OrderType.MARKET: "market",
    OrderType.LIMIT: "limit",
    OrderType.STOP: "stop-loss",
    OrderType.STOP_LIMIT: "stop-loss-limit",
    OrderType.TRAILING_STOP: "trailing-stop",
}

STATUS_MAP: Dict[str, OrderStatus] = {
    "pending": OrderStatus.PENDING,
    "open": OrderStatus.OPEN,
    "closed": OrderStatus.FILLED,
    "canceled": OrderStatus.CANCELLED,
    "expired": OrderStatus.EXPIRED,
}


def sign_request(secret: str, path: str, nonce: int, postdata: str) -> str:
    """
    Kraken API-Sign header value.

    Raises:
        AuthenticationError: Secret is not valid base64
    """
    try:
        key = base64.b64decode(secret, validate=True)
    except (binascii.Error, ValueError) as e:
        raise AuthenticationError(
            "Kraken API secret is not valid base64",
            exchange_id="kraken",
            cause=e,
        ) from e

    digest = hashlib.sha256((str(nonce) + postdata).encode("utf-8")).digest()
    mac = hmac.new(key, path.encode("utf-8") + digest, hashlib.sha512)
    return base64.b64encode(mac.digest()).decode("ascii")


class KrakenProvider:
    """Kraken spot REST client."""

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
        self._nonce_lock = threading.Lock()
        self._last_nonce = 0

    def next_nonce(self) -> int:
        """Microsecond nonce, strictly greater than the previous one."""
        with self._nonce_lock:
            nonce = max(int(self._clock.timestamp() * 1_000_000), self._last_nonce + 1)
            self._last_nonce = nonce
            return nonce

    async def _private(
        self,
        credentials: ExchangeCredentials,
        path: str,
        fields: Dict[str, Any],
    ) -> Dict[str, Any]:
        nonce = self.next_nonce()
        postdata = urlencode({"nonce": nonce, **fields})
        signature = sign_request(credentials.api_secret, path, nonce, postdata)

        status, payload = await self._transport.request(
            "POST",
            f"{self.profile.base_url(credentials.is_testnet)}{path}",
            path,
            body=postdata,
            headers={
                "API-Key": credentials.api_key,
                "API-Sign": signature,
                "Content-Type": "application/x-www-form-urlencoded; charset=utf-8",
            },
        )

        errors = payload.get("error") if isinstance(payload, dict) else None
        if errors:
            raise exchange_error("kraken", errors[0], "; ".join(errors), status)
        if status >= 400:
            raise exchange_error("kraken", None, f"HTTP {status}", status)
        return payload.get("result") or {}

    # --------------------------------------------------------
    # Operations
    # --------------------------------------------------------

    def _order_fields(self, params: OrderParams) -> Dict[str, Any]:
        fields: Dict[str, Any] = {
            "ordertype": ORDER_TYPES[params.type],
            "type": params.side.value,
            "volume": str(params.amount),
            "pair": to_exchange_symbol("kraken", params.symbol),
        }
        if params.type is OrderType.LIMIT:
            fields["price"] = str(params.price)
        elif params.type is OrderType.STOP:
            fields["price"] = str(params.stop_price)
        elif params.type is OrderType.STOP_LIMIT:
            fields["price"] = str(params.stop_price)
            fields["price2"] = str(params.price)
        elif params.type is OrderType.TRAILING_STOP:
            fields["price"] = f"+{params.stop_price}"
        if params.client_order_id:
            fields["cl_ord_id"] = params.client_order_id
        return fields

    async def create_order(self, credentials: ExchangeCredentials, params: OrderParams) -> OrderResult:
        validate_order_params(self.profile, params)

        result = await self._private(credentials, ADD_ORDER_PATH, self._order_fields(params))
        txids = result.get("txid") or []

        return OrderResult(
            id=txids[0] if txids else "",
            symbol=params.symbol,
            side=params.side,
            type=params.type,
            status=OrderStatus.OPEN,
            amount=params.amount,
            price=params.price,
            timestamp=self._clock.now(),
            exchange_id="kraken",
            raw=result,
        )

    async def get_balances(self, credentials: ExchangeCredentials) -> List[Balance]:
        result = await self._private(credentials, BALANCE_PATH, {})

        totals: Dict[str, Decimal] = {}
        for asset, amount in result.items():
            currency = from_kraken_asset(asset)
            totals[currency] = totals.get(currency, Decimal("0")) + to_decimal(amount)

        return [
            Balance(currency=currency, free=total, used=Decimal("0"), total=total)
            for currency, total in totals.items()
        ]

    async def get_order_status(
        self,
        credentials: ExchangeCredentials,
        order_id: str,
        symbol: Optional[str] = None,
    ) -> OrderStatusReport:
        result = await self._private(credentials, QUERY_ORDERS_PATH, {"txid": order_id})
        order = result.get(order_id) or {}

        amount = to_decimal(order.get("vol"))
        filled = to_decimal(order.get("vol_exec"))
        status = STATUS_MAP.get(order.get("status", ""), OrderStatus.UNKNOWN)
        if status is OrderStatus.OPEN and filled > 0:
            status = OrderStatus.PARTIALLY_FILLED
        average = to_decimal(order.get("price"))

        return OrderStatusReport(
            order_id=order_id,
            status=status,
            filled=filled,
            remaining=amount - filled,
            average=average if average > 0 else None,
            raw=order,
        )

    async def close(self) -> None:
        await self._transport.close()
