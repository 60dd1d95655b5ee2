"""
Risk Management - Configuration.

============================================================
PURPOSE
============================================================
Risk limits and engine settings.

Limits are absolute quote-currency amounts, except drawdown
which is a percentage of the initial balance.

============================================================
DEFAULTS
============================================================
- Max position size:   2,000 per trade
- Max daily notional:  5,000 per UTC day
- Max drawdown:        20%
- Volatility alert:    0.05 per-period portfolio std dev
- Correlation alert:   0.80

============================================================
"""

import os
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional

from dotenv import load_dotenv

from core.exceptions import ConfigurationError


# ============================================================
# RISK PARAMETERS
# ============================================================

@dataclass(frozen=True)
class RiskParameters:
    """
    Limits for one account. Read-only to the engine.
    """

    max_daily_loss: Decimal = Decimal("5000")
    """Cap on today's traded notional plus the new trade."""

    max_position_size: Decimal = Decimal("2000")
    """Largest allowed notional for a single trade."""

    max_drawdown: Decimal = Decimal("20")
    """Drawdown percentage that triggers emergency liquidation."""

    volatility_threshold: Decimal = Decimal("0.05")
    """Portfolio volatility above which an alert is written."""

    correlation_limit: Decimal = Decimal("0.8")
    """Average correlation above which an alert is written."""

    def __post_init__(self) -> None:
        if self.max_position_size <= 0 or self.max_daily_loss <= 0:
            raise ConfigurationError("Risk limits must be positive", config_key="risk_parameters")
        if not Decimal("0") < self.max_drawdown <= Decimal("100"):
            raise ConfigurationError("max_drawdown must be in (0, 100]", config_key="max_drawdown")


@dataclass(frozen=True)
class KellyInputs:
    """Inputs of the Kelly position-sizing formula."""

    win_rate: Decimal = Decimal("0.6")
    avg_win: Decimal = Decimal("0.05")
    avg_loss: Decimal = Decimal("0.03")


# ============================================================
# THRESHOLDS
# ============================================================

CONCENTRATION_PENALTY_THRESHOLD = Decimal("0.30")
"""Holdings above this weight add weight * 0.5 to total risk."""

CONCENTRATION_PENALTY_FACTOR = Decimal("0.5")

MAX_POST_TRADE_CONCENTRATION = Decimal("0.40")
"""A buy may not push one asset above this weight."""

DRAWDOWN_WARNING_RATIO = Decimal("0.8")
"""Warn when drawdown reaches this share of max_drawdown."""


# ============================================================
# ENGINE CONFIGURATION
# ============================================================

@dataclass
class RiskEngineConfig:
    """Settings for the risk engine and its monitor loop."""

    default_parameters: RiskParameters = field(default_factory=RiskParameters)
    kelly: KellyInputs = field(default_factory=KellyInputs)

    history_length: int = 100
    """Price points per symbol fed to the correlation / volatility metrics."""

    min_data_points: int = 10
    """Below this many prices the metrics report 0."""

    monitor_interval_seconds: int = 60
    """Period of the stop-loss / account-limit loop."""

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "RiskEngineConfig":
        load_dotenv(env_file)

        try:
            return cls(
                default_parameters=RiskParameters(
                    max_daily_loss=Decimal(os.getenv("RISK_MAX_DAILY_LOSS", "5000")),
                    max_position_size=Decimal(os.getenv("RISK_MAX_POSITION_SIZE", "2000")),
                    max_drawdown=Decimal(os.getenv("RISK_MAX_DRAWDOWN", "20")),
                    volatility_threshold=Decimal(os.getenv("RISK_VOLATILITY_THRESHOLD", "0.05")),
                    correlation_limit=Decimal(os.getenv("RISK_CORRELATION_LIMIT", "0.8")),
                ),
                monitor_interval_seconds=int(os.getenv("RISK_MONITOR_INTERVAL_SECONDS", "60")),
            )
        except (ArithmeticError, ValueError) as e:
            raise ConfigurationError(f"Invalid risk configuration: {e}", cause=e) from e

    @classmethod
    def for_testing(cls) -> "RiskEngineConfig":
        return cls(min_data_points=3, monitor_interval_seconds=1)
