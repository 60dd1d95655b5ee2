"""
Execution Engine Package.

============================================================
PURPOSE
============================================================
Everything between an order request and the exchange.

============================================================
MODULES
============================================================
- types: Orders, results, balances, credentials
- config: Execution configuration
- rate_limiter: Per-endpoint minute buckets
- guard: Emergency-stop / circuit-breaker check
- adapters: Exchange variants, transport, factory
- execution_service: Order submission for accounts
- reconciliation: Balance sync into holdings

The service and reconciliation modules depend on storage and
the credential vault; import them from their modules.

============================================================
"""

from .config import (
    ExecutionEngineConfig,
    RateLimitConfig,
    ReconciliationConfig,
    TimeoutConfig,
)
from .guard import TradingGuard
from .rate_limiter import RateLimiter
from .types import (
    Balance,
    ConnectionStatus,
    ExchangeCredentials,
    Fee,
    OrderParams,
    OrderResult,
    OrderSide,
    OrderStatus,
    OrderStatusReport,
    OrderType,
)


__all__ = [
    "ExecutionEngineConfig",
    "RateLimitConfig",
    "ReconciliationConfig",
    "TimeoutConfig",
    "TradingGuard",
    "RateLimiter",
    "Balance",
    "ConnectionStatus",
    "ExchangeCredentials",
    "Fee",
    "OrderParams",
    "OrderResult",
    "OrderSide",
    "OrderStatus",
    "OrderStatusReport",
    "OrderType",
]
