"""
Execution Engine - Configuration.

============================================================
PURPOSE
============================================================
All configuration for the Execution Engine.

CRITICAL CONSTRAINTS:
- No blind retries
- Bounded network waits
- Deterministic behavior

============================================================
"""

import os
from dataclasses import dataclass, field
from typing import FrozenSet, Optional

from dotenv import load_dotenv

from core.exceptions import ConfigurationError


# ============================================================
# RATE LIMIT CONFIGURATION
# ============================================================

@dataclass
class RateLimitConfig:
    """
    Rate limit configuration.

    One counter per (exchange, endpoint, window bucket).
    """

    max_requests: int = 60
    """Maximum requests per endpoint per window."""

    window_seconds: int = 60
    """Bucket length."""


# ============================================================
# TIMEOUT CONFIGURATION
# ============================================================

@dataclass
class TimeoutConfig:
    """HTTP timeouts for exchange calls."""

    total_seconds: float = 10.0
    """Upper bound for a whole request."""

    connect_seconds: float = 5.0
    """Connection establishment timeout."""


# ============================================================
# RECONCILIATION CONFIGURATION
# ============================================================

@dataclass
class ReconciliationConfig:
    """Balance reconciliation configuration."""

    cooldown_seconds: int = 60
    """Minimum time between syncs of one connection unless forced."""

    interval_seconds: int = 300
    """Period of the background sync loop."""

    max_concurrency: int = 4
    """Connections synced in parallel."""

    connection_timeout_seconds: float = 30.0
    """Upper bound for one connection's balance fetch."""

    stable_currencies: FrozenSet[str] = field(
        default_factory=lambda: frozenset({"USD", "USDT", "USDC", "DAI", "BUSD"})
    )
    """Currencies valued at 1 when the price cache has no entry."""


# ============================================================
# MASTER CONFIGURATION
# ============================================================

TRADING_MODES = ("paper", "live")


@dataclass
class ExecutionEngineConfig:
    """
    Master configuration for the Execution Engine.
    """

    trading_mode: str = "paper"
    """paper selects the simulated adapters, live the exchange adapters."""

    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    timeout: TimeoutConfig = field(default_factory=TimeoutConfig)
    reconciliation: ReconciliationConfig = field(default_factory=ReconciliationConfig)

    @property
    def paper_trading(self) -> bool:
        return self.trading_mode == "paper"

    def validate(self) -> None:
        if self.trading_mode not in TRADING_MODES:
            raise ConfigurationError(
                f"Invalid TRADING_MODE {self.trading_mode!r}, expected one of {TRADING_MODES}",
                config_key="TRADING_MODE",
            )
        if self.rate_limit.max_requests <= 0:
            raise ConfigurationError(
                "Rate limit must be positive",
                config_key="RATE_LIMIT_PER_MINUTE",
            )
        if self.timeout.total_seconds <= 0:
            raise ConfigurationError(
                "Exchange HTTP timeout must be positive",
                config_key="EXCHANGE_HTTP_TIMEOUT",
            )

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "ExecutionEngineConfig":
        """Load configuration from environment variables (and .env)."""
        load_dotenv(env_file)

        try:
            config = cls(
                trading_mode=os.getenv("TRADING_MODE", "paper").strip().lower(),
                rate_limit=RateLimitConfig(
                    max_requests=int(os.getenv("RATE_LIMIT_PER_MINUTE", "60")),
                ),
                timeout=TimeoutConfig(
                    total_seconds=float(os.getenv("EXCHANGE_HTTP_TIMEOUT", "10")),
                ),
                reconciliation=ReconciliationConfig(
                    cooldown_seconds=int(os.getenv("RECONCILIATION_COOLDOWN_SECONDS", "60")),
                    interval_seconds=int(os.getenv("SYNC_INTERVAL_SECONDS", "300")),
                ),
            )
        except ValueError as e:
            raise ConfigurationError(f"Invalid execution configuration: {e}", cause=e) from e

        config.validate()
        return config

    @classmethod
    def for_testing(cls) -> "ExecutionEngineConfig":
        """Paper mode with short timeouts."""
        return cls(
            trading_mode="paper",
            timeout=TimeoutConfig(total_seconds=2.0, connect_seconds=1.0),
            reconciliation=ReconciliationConfig(connection_timeout_seconds=2.0),
        )
