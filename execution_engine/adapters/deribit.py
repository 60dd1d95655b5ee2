"""
Deribit Exchange Variant.

============================================================
AUTHENTICATION
============================================================
OAuth2 client credentials:

    GET /api/v2/public/auth?grant_type=client_credentials
        &client_id=<key>&client_secret=<secret>
    -> result.access_token, result.expires_in

Private calls carry "Authorization: Bearer <token>". Tokens are
cached per client id until shortly before they expire.

Errors arrive as {"error": {"code": ..., "message": ...}}.

============================================================
"""

import asyncio
import logging
import time
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlencode

from core.clock import ClockProtocol, get_clock
from core.exceptions import AuthenticationError, ExchangeProtocolError

from ..types import (
    Balance,
    ExchangeCredentials,
    Fee,
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


AUTH_PATH = "/api/v2/public/auth"
BUY_PATH = "/api/v2/private/buy"
SELL_PATH = "/api/v2/private/sell"
ACCOUNT_SUMMARY_PATH = "/api/v2/private/get_account_summary"
ORDER_STATE_PATH = "/api/v2/private/get_order_state"

BALANCE_CURRENCIES: Tuple[str, ...] = ("BTC", "ETH", "USDC")

# Refresh tokens this many seconds before Deribit expires them
TOKEN_EXPIRY_MARGIN_SECONDS = 30

ORDER_TYPES: Dict[OrderType, str] = {
    OrderType.MARKET: "market",
    OrderType.LIMIT: "limit",
    OrderType.STOP: "stop_market",
    OrderType.STOP_LIMIT: "stop_limit",
    OrderType.TRAILING_STOP: "trailing_stop",
}

STATUS_MAP: Dict[str, OrderStatus] = {
    "open": OrderStatus.OPEN,
    "filled": OrderStatus.FILLED,
    "rejected": OrderStatus.REJECTED,
    "cancelled": OrderStatus.CANCELLED,
    "untriggered": OrderStatus.PENDING,
    "triggered": OrderStatus.OPEN,
}


def _order_status(order: Dict[str, Any]) -> OrderStatus:
    status = STATUS_MAP.get(order.get("order_state", ""), OrderStatus.UNKNOWN)
    filled = to_decimal(order.get("filled_amount"))
    if status is OrderStatus.OPEN and filled > 0:
        return OrderStatus.PARTIALLY_FILLED
    return status


class DeribitProvider:
    """Deribit v2 REST client."""

    simulated = False

    def __init__(
        self,
        profile: ExchangeProfile,
        transport: HttpTransport,
        clock: Optional[ClockProtocol] = None,
        balance_currencies: Tuple[str, ...] = BALANCE_CURRENCIES,
    ):
        self.profile = profile
        self._transport = transport
        self._clock = clock or get_clock()
        self._balance_currencies = balance_currencies
        self._tokens: Dict[Tuple[str, bool], Tuple[str, float]] = {}
        self._auth_lock = asyncio.Lock()

    # --------------------------------------------------------
    # Authentication
    # --------------------------------------------------------

    def _raise_for_error(self, status: int, payload: Any) -> None:
        if isinstance(payload, dict) and payload.get("error"):
            error = payload["error"]
            raise exchange_error("deribit", error.get("code"), error.get("message"), status)
        if status >= 400:
            raise exchange_error("deribit", None, f"HTTP {status}", status)

    async def _access_token(self, credentials: ExchangeCredentials) -> str:
        key = (credentials.api_key, credentials.is_testnet)

        async with self._auth_lock:
            cached = self._tokens.get(key)
            if cached and cached[1] > time.monotonic():
                return cached[0]

            query = urlencode({
                "grant_type": "client_credentials",
                "client_id": credentials.api_key,
                "client_secret": credentials.api_secret,
            })
            url = f"{self.profile.base_url(credentials.is_testnet)}{AUTH_PATH}?{query}"

            status, payload = await self._transport.request("GET", url, AUTH_PATH)
            self._raise_for_error(status, payload)

            result = payload.get("result") or {}
            token = result.get("access_token")
            if not token:
                raise AuthenticationError(
                    "Deribit auth response carried no access token",
                    exchange_id="deribit",
                )

            expires_in = float(result.get("expires_in", 0))
            expires_at = time.monotonic() + max(expires_in - TOKEN_EXPIRY_MARGIN_SECONDS, 0)
            self._tokens[key] = (token, expires_at)
            logger.debug(f"Deribit token refreshed, expires in {expires_in:.0f}s")
            return token

    def invalidate_token(self, credentials: ExchangeCredentials) -> None:
        self._tokens.pop((credentials.api_key, credentials.is_testnet), None)

    async def _private(
        self,
        credentials: ExchangeCredentials,
        path: str,
        params: Dict[str, Any],
    ) -> Dict[str, Any]:
        token = await self._access_token(credentials)
        url = f"{self.profile.base_url(credentials.is_testnet)}{path}?{urlencode(params)}"

        status, payload = await self._transport.request(
            "GET",
            url,
            path,
            headers={"Authorization": f"Bearer {token}"},
        )
        try:
            self._raise_for_error(status, payload)
        except AuthenticationError:
            self.invalidate_token(credentials)
            raise

        result = payload.get("result") if isinstance(payload, dict) else None
        if result is None:
            raise ExchangeProtocolError(
                f"Deribit {path} returned no result",
                exchange_id="deribit",
                http_status=status,
            )
        return result

    # --------------------------------------------------------
    # Operations
    # --------------------------------------------------------

    def _order_params(self, params: OrderParams) -> Dict[str, Any]:
        request: Dict[str, Any] = {
            "instrument_name": to_exchange_symbol("deribit", params.symbol),
            "amount": str(params.amount),
            "type": ORDER_TYPES[params.type],
        }
        if params.type in (OrderType.LIMIT, OrderType.STOP_LIMIT):
            request["price"] = str(params.price)
        if params.type in (OrderType.STOP, OrderType.STOP_LIMIT):
            request["trigger_price"] = str(params.stop_price)
            request["trigger"] = "last_price"
        if params.type is OrderType.TRAILING_STOP:
            request["trigger_offset"] = str(params.stop_price)
            request["trigger"] = "last_price"
        if params.reduce_only:
            request["reduce_only"] = "true"
        if params.client_order_id:
            request["label"] = params.client_order_id
        return request

    async def create_order(self, credentials: ExchangeCredentials, params: OrderParams) -> OrderResult:
        validate_order_params(self.profile, params)

        path = BUY_PATH if params.side.value == "buy" else SELL_PATH
        result = await self._private(credentials, path, self._order_params(params))

        order = result.get("order") or {}
        trades = result.get("trades") or []

        fee = None
        if trades:
            fee = Fee(
                cost=sum((to_decimal(t.get("fee")) for t in trades), Decimal("0")),
                currency=trades[0].get("fee_currency", ""),
            )

        average = to_decimal(order.get("average_price"))
        price = order.get("price")
        created = order.get("creation_timestamp")

        return OrderResult(
            id=str(order.get("order_id", "")),
            symbol=params.symbol,
            side=params.side,
            type=params.type,
            status=_order_status(order),
            amount=to_decimal(order.get("amount"), str(params.amount)),
            filled=to_decimal(order.get("filled_amount")),
            # "market_price" for market orders
            price=to_decimal(price) if isinstance(price, (int, float)) else params.price,
            average=average if average > 0 else None,
            fee=fee,
            timestamp=(
                datetime.fromtimestamp(created / 1000, tz=timezone.utc)
                if created else self._clock.now()
            ),
            exchange_id="deribit",
            raw=result,
        )

    async def get_balances(self, credentials: ExchangeCredentials) -> List[Balance]:
        balances = []
        for currency in self._balance_currencies:
            summary = await self._private(credentials, ACCOUNT_SUMMARY_PATH, {"currency": currency})
            total = to_decimal(summary.get("equity"))
            balances.append(Balance(
                currency=summary.get("currency", currency),
                free=to_decimal(summary.get("available_funds")),
                used=to_decimal(summary.get("initial_margin")),
                total=total,
            ))
        return balances

    async def get_order_status(
        self,
        credentials: ExchangeCredentials,
        order_id: str,
        symbol: Optional[str] = None,
    ) -> OrderStatusReport:
        order = await self._private(credentials, ORDER_STATE_PATH, {"order_id": order_id})

        amount = to_decimal(order.get("amount"))
        filled = to_decimal(order.get("filled_amount"))
        average = to_decimal(order.get("average_price"))
        return OrderStatusReport(
            order_id=str(order.get("order_id", order_id)),
            status=_order_status(order),
            filled=filled,
            remaining=amount - filled,
            average=average if average > 0 else None,
            raw=order,
        )

    async def close(self) -> None:
        self._tokens.clear()
        await self._transport.close()
