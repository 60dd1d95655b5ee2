"""
Exchange Adapter Factory.

============================================================
PURPOSE
============================================================
Builds ExchangeAdapters from the flat provider dispatch table.

The live or simulated variant is chosen once, here, at
construction. Shared code never branches on it. The pool
builds the simulated variant when paper trading is on or the
caller has no live credentials.

============================================================
USAGE
============================================================
```python
# Live adapter against the testnet
adapter = AdapterFactory.create("binance", AdapterConfig(testnet=True))

# Paper adapter priced from the market-data cache
adapter = AdapterFactory.create(
    "kraken",
    AdapterConfig(paper_trading=True),
    price_source=market_data,
)

# Adapters created on first use; paper wallets kept per account
pool = AdapterPool(AdapterConfig(paper_trading=True))
adapter = pool.get_or_create("okx", account_id="acc-1")
await pool.close_all()
```

============================================================
"""

import logging
from dataclasses import dataclass, field, replace
from typing import Callable, Dict, List, Optional, Tuple

import aiohttp

from core.clock import ClockProtocol
from core.exceptions import ConfigurationError

from ..config import ExecutionEngineConfig, RateLimitConfig, TimeoutConfig
from ..rate_limiter import RateLimiter
from .base import EXCHANGE_PROFILES, ExchangeAdapter, ExchangeProfile, ExchangeProvider
from .binance import BinanceProvider
from .bybit import BybitProvider
from .deribit import DeribitProvider
from .kraken import KrakenProvider
from .kucoin import KucoinProvider
from .metrics import AdapterMetrics
from .okx import OkxProvider
from .simulated import PriceSource, SimulatedProvider, SimulationConfig
from .transport import HttpTransport


logger = logging.getLogger(__name__)


ProviderClass = Callable[..., ExchangeProvider]

PROVIDERS: Dict[str, ProviderClass] = {
    "binance": BinanceProvider,
    "deribit": DeribitProvider,
    "kraken": KrakenProvider,
    "kucoin": KucoinProvider,
    "okx": OkxProvider,
    "bybit": BybitProvider,
}


def supported_exchanges() -> List[str]:
    return sorted(PROVIDERS)


# ============================================================
# ADAPTER CONFIGURATION
# ============================================================

@dataclass
class AdapterConfig:
    """
    Configuration shared by all adapters.
    """

    testnet: bool = False
    """Use the exchange testnet / demo environment."""

    paper_trading: bool = True
    """Build the simulated variant instead of the live one."""

    timeout: TimeoutConfig = field(default_factory=TimeoutConfig)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)

    simulation: SimulationConfig = field(default_factory=SimulationConfig)
    """Settings for the simulated variant."""

    @classmethod
    def from_engine_config(cls, config: ExecutionEngineConfig, testnet: bool = False) -> "AdapterConfig":
        return cls(
            testnet=testnet,
            paper_trading=config.paper_trading,
            timeout=config.timeout,
            rate_limit=config.rate_limit,
        )


# ============================================================
# ADAPTER FACTORY
# ============================================================

class AdapterFactory:
    """
    Creates adapters for the supported exchanges.
    """

    @staticmethod
    def profile(exchange_id: str) -> ExchangeProfile:
        """
        Raises:
            ConfigurationError: Exchange not supported
        """
        exchange_id = (exchange_id or "").lower()
        if exchange_id not in PROVIDERS:
            raise ConfigurationError(
                f"Unsupported exchange: {exchange_id!r} "
                f"(supported: {', '.join(supported_exchanges())})",
                config_key="exchange_id",
            )
        return EXCHANGE_PROFILES[exchange_id]

    @classmethod
    def create(
        cls,
        exchange_id: str,
        config: Optional[AdapterConfig] = None,
        *,
        rate_limiter: Optional[RateLimiter] = None,
        price_source: Optional[PriceSource] = None,
        session: Optional[aiohttp.ClientSession] = None,
        clock: Optional[ClockProtocol] = None,
    ) -> ExchangeAdapter:
        """
        Create an exchange adapter.

        Args:
            exchange_id: Exchange identifier
            config: Adapter configuration
            rate_limiter: Limiter owned by the new adapter (fresh one if omitted)
            price_source: Market prices for the simulated variant
            session: Shared aiohttp session for live variants
            clock: Time source

        Returns:
            ExchangeAdapter

        Raises:
            ConfigurationError: If exchange not supported
        """
        profile = cls.profile(exchange_id)
        config = config or AdapterConfig()
        rate_limiter = rate_limiter or RateLimiter(config.rate_limit, clock=clock)
        metrics = AdapterMetrics(profile.exchange_id)

        if config.paper_trading:
            provider: ExchangeProvider = SimulatedProvider(
                profile,
                rate_limiter,
                config=config.simulation,
                price_source=price_source,
                clock=clock,
            )
        else:
            if config.testnet and not profile.has_testnet:
                raise ConfigurationError(
                    f"{profile.name} has no testnet environment",
                    config_key="testnet",
                )
            transport = HttpTransport(
                profile.exchange_id,
                rate_limiter,
                timeout=config.timeout,
                session=session,
                metrics=metrics,
            )
            provider = PROVIDERS[profile.exchange_id](profile, transport, clock=clock)

        logger.info(
            f"Created {'simulated' if provider.simulated else 'live'} adapter for "
            f"{profile.name}{' (testnet)' if config.testnet and not provider.simulated else ''}"
        )
        return ExchangeAdapter(provider, rate_limiter, metrics, testnet=config.testnet)


def create_adapter(
    exchange_id: str,
    paper_trading: bool = True,
    testnet: bool = False,
    **kwargs,
) -> ExchangeAdapter:
    """
    Convenience function to create an adapter.

    Args:
        exchange_id: Exchange identifier
        paper_trading: Build the simulated variant
        testnet: Use testnet
        **kwargs: Passed to AdapterFactory.create

    Returns:
        ExchangeAdapter
    """
    config = AdapterConfig(testnet=testnet, paper_trading=paper_trading)
    return AdapterFactory.create(exchange_id, config, **kwargs)


# ============================================================
# ADAPTER POOL
# ============================================================

class AdapterPool:
    """
    Adapters created lazily, one rate limiter per exchange.

    The variant is picked when an adapter is built: live when the
    pool is configured for live trading and the caller holds live
    credentials, simulated otherwise. Simulated adapters are kept
    per account so paper wallets never mix.
    """

    def __init__(
        self,
        config: Optional[AdapterConfig] = None,
        price_source: Optional[PriceSource] = None,
        clock: Optional[ClockProtocol] = None,
    ):
        self._config = config or AdapterConfig()
        self._price_source = price_source
        self._clock = clock
        self._adapters: Dict[Tuple[str, Optional[str]], ExchangeAdapter] = {}
        self._rate_limiters: Dict[str, RateLimiter] = {}

    @property
    def config(self) -> AdapterConfig:
        return self._config

    def _rate_limiter(self, exchange_id: str) -> RateLimiter:
        limiter = self._rate_limiters.get(exchange_id)
        if limiter is None:
            limiter = RateLimiter(self._config.rate_limit, clock=self._clock)
            self._rate_limiters[exchange_id] = limiter
        return limiter

    def get_or_create(
        self,
        exchange_id: str,
        account_id: Optional[str] = None,
        live_credentials: bool = True,
    ) -> ExchangeAdapter:
        """
        Adapter for an exchange.

        Args:
            exchange_id: Exchange identifier
            account_id: Owner of the paper wallet when the adapter is simulated
            live_credentials: Caller holds credentials for the live exchange

        Raises:
            ConfigurationError: Exchange not supported
        """
        exchange_id = AdapterFactory.profile(exchange_id).exchange_id
        simulated = self._config.paper_trading or not live_credentials
        key = (exchange_id, account_id if simulated else None)

        adapter = self._adapters.get(key)
        if adapter is None:
            config = self._config
            if simulated and not config.paper_trading:
                config = replace(config, paper_trading=True)
            adapter = AdapterFactory.create(
                exchange_id,
                config,
                rate_limiter=self._rate_limiter(exchange_id),
                price_source=self._price_source,
                clock=self._clock,
            )
            self._adapters[key] = adapter
        return adapter

    def get(self, exchange_id: str, account_id: Optional[str] = None) -> Optional[ExchangeAdapter]:
        return self._adapters.get((exchange_id.lower(), account_id))

    def __contains__(self, exchange_id: str) -> bool:
        return any(key[0] == exchange_id.lower() for key in self._adapters)

    def __len__(self) -> int:
        return len(self._adapters)

    async def close_all(self) -> None:
        """Close every adapter; failures are logged, not raised."""
        for (exchange_id, _), adapter in list(self._adapters.items()):
            try:
                await adapter.close()
            except Exception as e:
                logger.error(f"Error closing {exchange_id} adapter: {e}")
        self._adapters.clear()
