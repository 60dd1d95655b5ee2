"""
Exchange Adapter - Base Interface.

============================================================
PURPOSE
============================================================
The provider interface, the exchange profiles, the shared
order validation, and the ExchangeAdapter that every caller
goes through.

Provider variants are plain classes registered in a flat
dispatch table (see factory.PROVIDERS). The ExchangeAdapter
composes one provider with the rate limiter it owns and runs
the trading guard before anything else.

============================================================
ORDER SUBMISSION PATH
============================================================
    guard.check(params)             emergency stop / halts
    provider.create_order
      validate_order_params         bounds, before signing
      sign + transport.request      rate limiter slot taken here
    OrderResult

============================================================
"""

import logging
import time
from dataclasses import dataclass, replace
from decimal import Decimal
from typing import FrozenSet, List, Optional, Protocol

from core.exceptions import ConfigurationError, TradingException, ValidationError

from ..guard import TradingGuard
from ..rate_limiter import RateLimiter
from ..types import (
    Balance,
    ExchangeCredentials,
    OrderParams,
    OrderResult,
    OrderStatusReport,
    OrderType,
)
from .metrics import AdapterMetrics
from .symbols import split_symbol


logger = logging.getLogger(__name__)


# ============================================================
# EXCHANGE PROFILES
# ============================================================

ALL_ORDER_TYPES: FrozenSet[OrderType] = frozenset(OrderType)


@dataclass(frozen=True)
class ExchangeProfile:
    """Static facts about one exchange."""

    exchange_id: str
    name: str
    rest_url: str
    testnet_url: Optional[str]
    min_trade_amount: Decimal
    max_trade_amount: Decimal
    trading_fee: Decimal
    supported_order_types: FrozenSet[OrderType] = ALL_ORDER_TYPES
    simulated_trading_header: bool = False
    """Testnet requests go to the live host with a simulated-trading header."""

    @property
    def has_testnet(self) -> bool:
        return self.testnet_url is not None or self.simulated_trading_header

    def base_url(self, testnet: bool) -> str:
        if testnet and self.testnet_url:
            return self.testnet_url
        return self.rest_url


EXCHANGE_PROFILES = {
    "binance": ExchangeProfile(
        exchange_id="binance",
        name="Binance",
        rest_url="https://fapi.binance.com",
        testnet_url="https://testnet.binancefuture.com",
        min_trade_amount=Decimal("0.001"),
        max_trade_amount=Decimal("100000"),
        trading_fee=Decimal("0.001"),
    ),
    "deribit": ExchangeProfile(
        exchange_id="deribit",
        name="Deribit",
        rest_url="https://www.deribit.com",
        testnet_url="https://test.deribit.com",
        min_trade_amount=Decimal("0.001"),
        max_trade_amount=Decimal("100000"),
        trading_fee=Decimal("0.0005"),
        supported_order_types=frozenset({
            OrderType.MARKET, OrderType.LIMIT, OrderType.STOP, OrderType.STOP_LIMIT,
            OrderType.TRAILING_STOP,
        }),
    ),
    "kraken": ExchangeProfile(
        exchange_id="kraken",
        name="Kraken",
        rest_url="https://api.kraken.com",
        testnet_url=None,
        min_trade_amount=Decimal("0.001"),
        max_trade_amount=Decimal("25000"),
        trading_fee=Decimal("0.0026"),
    ),
    "kucoin": ExchangeProfile(
        exchange_id="kucoin",
        name="KuCoin",
        rest_url="https://api.kucoin.com",
        testnet_url="https://openapi-sandbox.kucoin.com",
        min_trade_amount=Decimal("0.001"),
        max_trade_amount=Decimal("100000"),
        trading_fee=Decimal("0.001"),
        supported_order_types=frozenset({
            OrderType.MARKET, OrderType.LIMIT, OrderType.STOP, OrderType.STOP_LIMIT,
        }),
    ),
    "okx": ExchangeProfile(
        exchange_id="okx",
        name="OKX",
        rest_url="https://www.okx.com",
        testnet_url=None,
        min_trade_amount=Decimal("0.001"),
        max_trade_amount=Decimal("100000"),
        trading_fee=Decimal("0.001"),
        supported_order_types=frozenset({OrderType.MARKET, OrderType.LIMIT}),
        simulated_trading_header=True,
    ),
    "bybit": ExchangeProfile(
        exchange_id="bybit",
        name="Bybit",
        rest_url="https://api.bybit.com",
        testnet_url="https://api-testnet.bybit.com",
        min_trade_amount=Decimal("0.001"),
        max_trade_amount=Decimal("100000"),
        trading_fee=Decimal("0.001"),
        supported_order_types=frozenset({
            OrderType.MARKET, OrderType.LIMIT, OrderType.STOP, OrderType.STOP_LIMIT,
        }),
    ),
}


# ============================================================
# SHARED VALIDATION
# ============================================================

def validate_order_params(profile: ExchangeProfile, params: OrderParams) -> None:
    """
    Check an order against exchange limits before any signing or I/O.

    Raises:
        ValidationError: Amount out of bounds, unsupported type,
            missing price or stop price, malformed symbol
    """
    split_symbol(params.symbol)

    amount = params.amount
    if not isinstance(amount, Decimal):
        raise ValidationError(f"Amount must be a Decimal, got {type(amount).__name__}", field="amount")
    if not amount.is_finite() or amount <= 0:
        raise ValidationError(f"Trade amount must be positive, got {amount}", field="amount")
    if amount < profile.min_trade_amount or amount > profile.max_trade_amount:
        raise ValidationError(
            f"Trade amount {amount} outside {profile.name} limits "
            f"[{profile.min_trade_amount}, {profile.max_trade_amount}]",
            field="amount",
        )

    if params.type not in profile.supported_order_types:
        raise ValidationError(
            f"{profile.name} does not support {params.type.value} orders",
            field="type",
        )
    if params.type.requires_price and (params.price is None or params.price <= 0):
        raise ValidationError(f"{params.type.value} order requires a positive price", field="price")
    if params.type.requires_stop_price and (params.stop_price is None or params.stop_price <= 0):
        raise ValidationError(
            f"{params.type.value} order requires a positive stop price",
            field="stop_price",
        )


# ============================================================
# PROVIDER INTERFACE
# ============================================================

class ExchangeProvider(Protocol):
    """
    One exchange protocol variant.

    Variants own their signing, symbol mapping and response
    normalisation. create_order must call validate_order_params
    before signing.
    """

    profile: ExchangeProfile
    simulated: bool

    async def create_order(self, credentials: ExchangeCredentials, params: OrderParams) -> OrderResult: ...

    async def get_balances(self, credentials: ExchangeCredentials) -> List[Balance]: ...

    async def get_order_status(
        self,
        credentials: ExchangeCredentials,
        order_id: str,
        symbol: Optional[str] = None,
    ) -> OrderStatusReport: ...

    async def close(self) -> None: ...


# ============================================================
# EXCHANGE ADAPTER
# ============================================================

class ExchangeAdapter:
    """
    Entry point for all exchange operations.

    Example:
        adapter = AdapterFactory.create("binance", config)
        result = await adapter.create_order(credentials, params, guard)
    """

    def __init__(
        self,
        provider: ExchangeProvider,
        rate_limiter: RateLimiter,
        metrics: Optional[AdapterMetrics] = None,
        testnet: bool = False,
    ):
        self._provider = provider
        self._rate_limiter = rate_limiter
        self._metrics = metrics or AdapterMetrics(provider.profile.exchange_id)
        self._testnet = testnet

    def _credentials(self, credentials: ExchangeCredentials) -> ExchangeCredentials:
        # Testnet requests never reach production hosts
        if self._testnet and not credentials.is_testnet:
            credentials = replace(credentials, is_testnet=True)
        if credentials.is_testnet and not self.is_simulated and not self.profile.has_testnet:
            raise ConfigurationError(
                f"{self.profile.name} has no testnet environment",
                config_key="testnet",
            )
        return credentials

    @property
    def exchange_id(self) -> str:
        return self._provider.profile.exchange_id

    @property
    def profile(self) -> ExchangeProfile:
        return self._provider.profile

    @property
    def is_simulated(self) -> bool:
        return self._provider.simulated

    @property
    def is_testnet(self) -> bool:
        return self._testnet

    @property
    def rate_limiter(self) -> RateLimiter:
        return self._rate_limiter

    @property
    def metrics(self) -> AdapterMetrics:
        return self._metrics

    async def create_order(
        self,
        credentials: ExchangeCredentials,
        params: OrderParams,
        guard: TradingGuard,
    ) -> OrderResult:
        """
        Submit an order.

        Args:
            credentials: Plaintext credentials for the connection
            params: Order request
            guard: Risk context of the account placing the order

        Raises:
            EmergencyStopError: Account is halted
            ValidationError: Bounds or parameter violation
            RateLimitError: Local or exchange quota exhausted
            AuthenticationError, NetworkError, ExchangeProtocolError
        """
        if guard is None:
            raise ValidationError("Order submission requires a trading guard", field="guard")
        await guard.check(params)

        start = time.monotonic()
        try:
            result = await self._provider.create_order(self._credentials(credentials), params)
        except TradingException as e:
            self._metrics.record_order(accepted=False)
            logger.warning(
                f"{self.exchange_id} order failed for account {guard.account_id}: "
                f"{type(e).__name__}: {e.message}"
            )
            raise

        self._metrics.record_order(accepted=True)
        logger.info(
            f"{self.exchange_id} order {result.id} {result.status.value}: "
            f"{params.side.value} {params.amount} {params.symbol} "
            f"account={guard.account_id} latency_ms={(time.monotonic() - start) * 1000:.1f}"
        )
        return result

    async def get_balances(self, credentials: ExchangeCredentials) -> List[Balance]:
        return await self._provider.get_balances(self._credentials(credentials))

    async def get_order_status(
        self,
        credentials: ExchangeCredentials,
        order_id: str,
        symbol: Optional[str] = None,
    ) -> OrderStatusReport:
        return await self._provider.get_order_status(self._credentials(credentials), order_id, symbol)

    async def close(self) -> None:
        await self._provider.close()
