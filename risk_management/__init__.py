"""
Risk Management Package.

Portfolio risk assessment, pre-trade validation and the
automated protective actions.

Modules:
- config: Risk parameters and engine settings
- metrics: Correlation / volatility from price history
- circuit_breaker: Price-move trading halts
- risk_engine: RiskEngine
- monitor: Periodic risk pass over active accounts
"""

from .circuit_breaker import (
    CircuitBreakerConfig,
    MoveSeverity,
    PriceCircuitBreaker,
    PriceMoveAlert,
)
from .config import KellyInputs, RiskEngineConfig, RiskParameters
from .metrics import (
    CovarianceVolatilityMetric,
    PearsonCorrelationMetric,
    PortfolioMetric,
    simple_returns,
)
from .monitor import MonitorPassResult, RiskMonitor
from .risk_engine import (
    LiquidationReport,
    PortfolioRisk,
    RiskAlert,
    RiskEngine,
    StopLossExecution,
    TradeRiskAssessment,
)


__all__ = [
    "CircuitBreakerConfig",
    "MoveSeverity",
    "PriceCircuitBreaker",
    "PriceMoveAlert",
    "KellyInputs",
    "RiskEngineConfig",
    "RiskParameters",
    "CovarianceVolatilityMetric",
    "PearsonCorrelationMetric",
    "PortfolioMetric",
    "simple_returns",
    "MonitorPassResult",
    "RiskMonitor",
    "LiquidationReport",
    "PortfolioRisk",
    "RiskAlert",
    "RiskEngine",
    "StopLossExecution",
    "TradeRiskAssessment",
]
