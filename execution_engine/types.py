"""
Execution Engine - Types.

============================================================
PURPOSE
============================================================
Value types shared by the exchange adapters, the risk engine
and balance reconciliation.

OrderParams goes in, OrderResult comes out. Balances are the
exchange-side view that reconciliation turns into holdings.

============================================================
"""

from datetime import datetime, timezone
from typing import Optional, Dict, Any
from dataclasses import dataclass, field
from enum import Enum
from decimal import Decimal


# ============================================================
# ORDER ENUMS
# ============================================================

class OrderSide(Enum):
    """Order side."""

    BUY = "buy"
    SELL = "sell"

    @property
    def opposite(self) -> "OrderSide":
        return OrderSide.SELL if self is OrderSide.BUY else OrderSide.BUY


class OrderType(Enum):
    """Order type."""

    MARKET = "market"
    """Execute at current market price."""

    LIMIT = "limit"
    """Execute at specified price or better."""

    STOP = "stop"
    """Market order triggered at stop price."""

    STOP_LIMIT = "stop_limit"
    """Limit order triggered at stop price."""

    TRAILING_STOP = "trailing_stop"
    """Stop that follows the market by a fixed offset."""

    @property
    def requires_price(self) -> bool:
        return self in (OrderType.LIMIT, OrderType.STOP_LIMIT)

    @property
    def requires_stop_price(self) -> bool:
        return self in (OrderType.STOP, OrderType.STOP_LIMIT, OrderType.TRAILING_STOP)


class OrderStatus(Enum):
    """Normalised order status across all exchanges."""

    PENDING = "pending"
    OPEN = "open"
    PARTIALLY_FILLED = "partially_filled"
    FILLED = "filled"
    CANCELLED = "cancelled"
    REJECTED = "rejected"
    EXPIRED = "expired"
    UNKNOWN = "unknown"

    @property
    def is_terminal(self) -> bool:
        return self in (
            OrderStatus.FILLED,
            OrderStatus.CANCELLED,
            OrderStatus.REJECTED,
            OrderStatus.EXPIRED,
        )


class ConnectionStatus(Enum):
    """Health of a linked exchange connection."""

    CONNECTED = "connected"
    ERROR = "error"
    DISCONNECTED = "disconnected"


# ============================================================
# CREDENTIALS
# ============================================================

@dataclass(frozen=True)
class ExchangeCredentials:
    """
    Plaintext exchange credentials.

    Only ever held in memory; the vault encrypts them before
    they reach any store.
    """

    api_key: str
    api_secret: str
    passphrase: Optional[str] = None
    is_testnet: bool = False

    def __repr__(self) -> str:
        masked = self.api_key[:4] + "****" if len(self.api_key) > 4 else "****"
        return (
            f"ExchangeCredentials(api_key={masked!r}, api_secret='****', "
            f"passphrase={'****' if self.passphrase else None!r}, "
            f"is_testnet={self.is_testnet})"
        )

    __str__ = __repr__


# ============================================================
# ORDER REQUEST / RESULT
# ============================================================

@dataclass
class OrderParams:
    """Order request."""

    symbol: str
    """Unified symbol, e.g. BTC/USDT."""

    side: OrderSide
    type: OrderType
    amount: Decimal

    price: Optional[Decimal] = None
    """Limit price."""

    stop_price: Optional[Decimal] = None
    """Trigger price for stop and trailing orders."""

    reduce_only: bool = False
    """Closes existing exposure; set by the risk engine."""

    client_order_id: Optional[str] = None


@dataclass
class Fee:
    """Trading fee charged for an order."""

    cost: Decimal
    currency: str


@dataclass
class OrderResult:
    """
    Normalised order result.

    For terminal statuses remaining is always amount - filled.
    """

    id: str
    symbol: str
    side: OrderSide
    type: OrderType
    status: OrderStatus
    amount: Decimal
    filled: Decimal = Decimal("0")
    remaining: Optional[Decimal] = None
    price: Optional[Decimal] = None
    average: Optional[Decimal] = None
    cost: Decimal = Decimal("0")
    fee: Optional[Fee] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    exchange_id: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    def __post_init__(self) -> None:
        if self.filled > self.amount:
            self.filled = self.amount
        if self.remaining is None or self.status.is_terminal:
            self.remaining = self.amount - self.filled

    @property
    def notional(self) -> Decimal:
        """Value of the order in quote currency."""
        if self.cost > 0:
            return self.cost
        reference = self.average or self.price or Decimal("0")
        quantity = self.filled if self.filled > 0 else self.amount
        return quantity * reference


@dataclass
class OrderStatusReport:
    """Result of an order status query."""

    order_id: str
    status: OrderStatus
    filled: Decimal = Decimal("0")
    remaining: Decimal = Decimal("0")
    average: Optional[Decimal] = None
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)


# ============================================================
# BALANCES
# ============================================================

@dataclass
class Balance:
    """Balance of one currency at an exchange."""

    currency: str
    free: Decimal
    used: Decimal
    total: Decimal


def to_decimal(value: Any, default: str = "0") -> Decimal:
    """Convert exchange payload numbers (str, int, float, None) to Decimal."""
    if value is None or value == "":
        return Decimal(default)
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))
