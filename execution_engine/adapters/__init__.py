"""
Execution Engine - Adapters Package.

============================================================
PURPOSE
============================================================
Exchange adapter implementations.

PROVIDER VARIANTS:
- BinanceProvider: Binance USDⓈ-M Futures
- DeribitProvider: Deribit v2 (OAuth2 bearer tokens)
- KrakenProvider: Kraken spot
- KucoinProvider: KuCoin spot
- OkxProvider: OKX v5 spot (cash)
- BybitProvider: Bybit v5 spot
- SimulatedProvider: paper trading

UTILITIES:
- AdapterFactory / AdapterPool: adapter construction
- HttpTransport: aiohttp plumbing with rate limiting
- AdapterMetrics / AdapterLogger: metrics and masked logging
- exchange_error: provider error normalization

============================================================
"""

from .base import (
    EXCHANGE_PROFILES,
    ExchangeAdapter,
    ExchangeProfile,
    ExchangeProvider,
    validate_order_params,
)
from .binance import BinanceProvider
from .bybit import BybitProvider
from .deribit import DeribitProvider
from .errors import ErrorCategory, classify_error, exchange_error
from .factory import (
    PROVIDERS,
    AdapterConfig,
    AdapterFactory,
    AdapterPool,
    create_adapter,
    supported_exchanges,
)
from .kraken import KrakenProvider
from .kucoin import KucoinProvider
from .logging_utils import AdapterLogger, mask_headers, mask_params, mask_value
from .metrics import AdapterMetrics
from .okx import OkxProvider
from .simulated import SimulatedProvider, SimulationConfig
from .symbols import base_asset, quote_asset, split_symbol, to_exchange_symbol
from .transport import HttpTransport


__all__ = [
    # Base
    "EXCHANGE_PROFILES",
    "ExchangeAdapter",
    "ExchangeProfile",
    "ExchangeProvider",
    "validate_order_params",
    # Providers
    "BinanceProvider",
    "BybitProvider",
    "DeribitProvider",
    "KrakenProvider",
    "KucoinProvider",
    "OkxProvider",
    "SimulatedProvider",
    "SimulationConfig",
    # Factory
    "PROVIDERS",
    "AdapterConfig",
    "AdapterFactory",
    "AdapterPool",
    "create_adapter",
    "supported_exchanges",
    # Errors
    "ErrorCategory",
    "classify_error",
    "exchange_error",
    # Utilities
    "AdapterLogger",
    "AdapterMetrics",
    "HttpTransport",
    "mask_headers",
    "mask_params",
    "mask_value",
    "base_asset",
    "quote_asset",
    "split_symbol",
    "to_exchange_symbol",
]
