"""
Exchange Adapter - Simulated Variant.

============================================================
PURPOSE
============================================================
Paper-trading provider with the same interface as the live
exchange variants.

FEATURES:
- Same bounds checks as the exchange it stands in for
- Configurable latency
- Market fills at the market-data price with adverse slippage
- Limit / stop orders fill at their own price
- Fee = notional * profile trading fee, in quote currency
- Paper balances and order state tracking

No network I/O. Requests still count against the adapter's
rate limiter.

============================================================
"""

import asyncio
import logging
import random
import uuid
from collections import OrderedDict
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Optional, Protocol

from core.clock import ClockProtocol, get_clock
from core.exceptions import ExchangeProtocolError, ValidationError

from ..rate_limiter import RateLimiter
from ..types import (
    Balance,
    ExchangeCredentials,
    Fee,
    OrderParams,
    OrderResult,
    OrderSide,
    OrderStatus,
    OrderStatusReport,
    OrderType,
)
from .base import ExchangeProfile, validate_order_params
from .symbols import split_symbol


logger = logging.getLogger(__name__)


BPS = Decimal("10000")


class PriceSource(Protocol):
    async def get_latest_price(self, symbol: str) -> Optional[Decimal]: ...


# ============================================================
# SIMULATION CONFIGURATION
# ============================================================

@dataclass
class SimulationConfig:
    """Configuration for the simulated variant."""

    min_latency_ms: float = 10.0
    """Minimum simulated latency."""

    max_latency_ms: float = 100.0
    """Maximum simulated latency."""

    slippage_bps: int = 5
    """Adverse slippage applied to market fills."""

    default_price: Decimal = Decimal("50000")
    """Fill price when no market data is available."""

    initial_balances: Dict[str, Decimal] = field(
        default_factory=lambda: {"USDT": Decimal("10000")}
    )
    """Paper balances at start."""

    max_tracked_orders: int = 1000
    """Oldest orders are forgotten beyond this."""

    @classmethod
    def instant(cls) -> "SimulationConfig":
        """No latency; for tests."""
        return cls(min_latency_ms=0.0, max_latency_ms=0.0)


# ============================================================
# SIMULATED PROVIDER
# ============================================================

class SimulatedProvider:
    """
    Paper exchange.

    Balances may go negative; margin and funding are not modelled.
    """

    simulated = True

    def __init__(
        self,
        profile: ExchangeProfile,
        rate_limiter: RateLimiter,
        config: Optional[SimulationConfig] = None,
        price_source: Optional[PriceSource] = None,
        clock: Optional[ClockProtocol] = None,
    ):
        self.profile = profile
        self._rate_limiter = rate_limiter
        self._config = config or SimulationConfig()
        self._price_source = price_source
        self._clock = clock or get_clock()

        self._balances: Dict[str, Decimal] = dict(self._config.initial_balances)
        self._orders: "OrderedDict[str, OrderResult]" = OrderedDict()

    async def _simulate_latency(self) -> None:
        low, high = self._config.min_latency_ms, self._config.max_latency_ms
        if high > 0:
            await asyncio.sleep(random.uniform(low, high) / 1000)

    async def _market_price(self, symbol: str) -> Decimal:
        if self._price_source is not None:
            price = await self._price_source.get_latest_price(symbol)
            if price is not None and price > 0:
                return price
        return self._config.default_price

    def _fill_price(self, params: OrderParams, market: Decimal) -> Decimal:
        if params.type is OrderType.LIMIT or params.type is OrderType.STOP_LIMIT:
            return params.price
        if params.type is OrderType.STOP:
            return params.stop_price

        slippage = market * Decimal(self._config.slippage_bps) / BPS
        return market + slippage if params.side is OrderSide.BUY else market - slippage

    def _apply_fill(self, params: OrderParams, notional: Decimal, fee: Decimal) -> None:
        base, quote = split_symbol(params.symbol)
        zero = Decimal("0")

        if params.side is OrderSide.BUY:
            self._balances[base] = self._balances.get(base, zero) + params.amount
            self._balances[quote] = self._balances.get(quote, zero) - notional - fee
        else:
            self._balances[base] = self._balances.get(base, zero) - params.amount
            self._balances[quote] = self._balances.get(quote, zero) + notional - fee

    # --------------------------------------------------------
    # Provider interface
    # --------------------------------------------------------

    async def create_order(self, credentials: ExchangeCredentials, params: OrderParams) -> OrderResult:
        validate_order_params(self.profile, params)
        self._rate_limiter.acquire(self.profile.exchange_id, "create_order")
        await self._simulate_latency()

        market = await self._market_price(params.symbol)
        if params.type is OrderType.TRAILING_STOP:
            fill_price = market - params.stop_price if params.side is OrderSide.SELL else market + params.stop_price
        else:
            fill_price = self._fill_price(params, market)

        if fill_price <= 0:
            raise ValidationError(
                f"Simulated fill price {fill_price} for {params.symbol} is not positive",
                field="stop_price",
            )

        notional = params.amount * fill_price
        fee_cost = notional * self.profile.trading_fee
        _, quote = split_symbol(params.symbol)

        self._apply_fill(params, notional, fee_cost)

        result = OrderResult(
            id=f"SIM-{uuid.uuid4().hex[:16]}",
            symbol=params.symbol,
            side=params.side,
            type=params.type,
            status=OrderStatus.FILLED,
            amount=params.amount,
            filled=params.amount,
            price=fill_price,
            average=fill_price,
            cost=notional,
            fee=Fee(cost=fee_cost, currency=quote),
            timestamp=self._clock.now(),
            exchange_id=self.profile.exchange_id,
            raw={"simulated": True, "market_price": str(market)},
        )
        self._orders[result.id] = result
        while len(self._orders) > self._config.max_tracked_orders:
            self._orders.popitem(last=False)

        logger.debug(
            f"[SIM {self.profile.exchange_id}] filled {params.side.value} "
            f"{params.amount} {params.symbol} @ {fill_price}"
        )
        return result

    async def get_balances(self, credentials: ExchangeCredentials) -> List[Balance]:
        self._rate_limiter.acquire(self.profile.exchange_id, "get_balances")
        await self._simulate_latency()

        return [
            Balance(currency=currency, free=amount, used=Decimal("0"), total=amount)
            for currency, amount in self._balances.items()
        ]

    async def get_order_status(
        self,
        credentials: ExchangeCredentials,
        order_id: str,
        symbol: Optional[str] = None,
    ) -> OrderStatusReport:
        self._rate_limiter.acquire(self.profile.exchange_id, "get_order_status")
        await self._simulate_latency()

        order = self._orders.get(order_id)
        if order is None:
            raise ExchangeProtocolError(
                f"Unknown simulated order {order_id}",
                exchange_id=self.profile.exchange_id,
                provider_message="order not found",
            )
        return OrderStatusReport(
            order_id=order.id,
            status=order.status,
            filled=order.filled,
            remaining=order.remaining,
            average=order.average,
            raw=order.raw,
        )

    async def close(self) -> None:
        pass
