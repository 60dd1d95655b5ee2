"""
Orchestrator - Bootstrap.

============================================================
RESPONSIBILITY
============================================================
Builds the runtime object graph from configuration.

    Database -> TradingRepository -> MarketDataCache
    CredentialVault -> CredentialStore
    AdapterPool (paper or live, one adapter per exchange)
    PriceCircuitBreaker
    ExecutionService <-> RiskEngine (validator / submitter)
    BalanceReconciler, RiskMonitor

No business logic lives here.

============================================================
"""

import logging
from dataclasses import dataclass
from typing import Optional

from core.clock import ClockProtocol, get_clock
from credential_vault import CredentialStore, CredentialVault
from execution_engine.adapters import AdapterConfig, AdapterPool
from execution_engine.config import ExecutionEngineConfig
from execution_engine.execution_service import ExecutionService
from execution_engine.reconciliation import BalanceReconciler
from risk_management import PriceCircuitBreaker, RiskEngine, RiskEngineConfig, RiskMonitor
from storage import Database, DatabaseConfig, MarketDataCache, TradingRepository


logger = logging.getLogger(__name__)


@dataclass
class TradingCore:
    """Wired runtime components."""

    database: Database
    repository: TradingRepository
    market_data: MarketDataCache
    credential_store: CredentialStore
    adapter_pool: AdapterPool
    circuit_breaker: PriceCircuitBreaker
    execution_service: ExecutionService
    risk_engine: RiskEngine
    reconciler: BalanceReconciler
    monitor: RiskMonitor

    async def close(self) -> None:
        self.monitor.stop()
        self.reconciler.stop()
        await self.adapter_pool.close_all()
        await self.database.dispose()
        logger.info("Trading core shut down")


def build_core(
    engine_config: Optional[ExecutionEngineConfig] = None,
    risk_config: Optional[RiskEngineConfig] = None,
    database_config: Optional[DatabaseConfig] = None,
    vault: Optional[CredentialVault] = None,
    clock: Optional[ClockProtocol] = None,
) -> TradingCore:
    """
    Wire every component.

    Args:
        engine_config: Execution settings (default: from environment)
        risk_config: Risk settings (default: from environment)
        database_config: Database settings (default: from environment)
        vault: Credential vault (default: master key from environment)
        clock: Shared clock

    Raises:
        ConfigurationError: Missing master key or invalid settings
    """
    engine_config = engine_config or ExecutionEngineConfig.from_env()
    risk_config = risk_config or RiskEngineConfig.from_env()
    vault = vault or CredentialVault.from_env()
    clock = clock or get_clock()

    database = Database(database_config or DatabaseConfig.from_env())
    repository = TradingRepository(database.session_factory, clock=clock)
    market_data = MarketDataCache(repository)
    credential_store = CredentialStore(vault, repository)

    adapter_pool = AdapterPool(
        AdapterConfig.from_engine_config(engine_config),
        price_source=market_data,
        clock=clock,
    )
    circuit_breaker = PriceCircuitBreaker(clock=clock)

    execution_service = ExecutionService(
        repository,
        credential_store,
        adapter_pool,
        market_data=market_data,
        circuit_breaker=circuit_breaker,
    )
    risk_engine = RiskEngine(
        repository,
        market_data,
        execution_service,
        config=risk_config,
        circuit_breaker=circuit_breaker,
        clock=clock,
    )
    execution_service.set_validator(risk_engine)

    reconciler = BalanceReconciler(
        repository,
        credential_store,
        adapter_pool,
        market_data,
        config=engine_config.reconciliation,
        clock=clock,
    )
    monitor = RiskMonitor(
        risk_engine,
        repository,
        market_data,
        interval_seconds=risk_config.monitor_interval_seconds,
        clock=clock,
    )

    logger.info(
        f"Trading core wired: mode={engine_config.trading_mode}, "
        f"reconciliation every {engine_config.reconciliation.interval_seconds}s, "
        f"risk monitor every {risk_config.monitor_interval_seconds}s"
    )

    return TradingCore(
        database=database,
        repository=repository,
        market_data=market_data,
        credential_store=credential_store,
        adapter_pool=adapter_pool,
        circuit_breaker=circuit_breaker,
        execution_service=execution_service,
        risk_engine=risk_engine,
        reconciler=reconciler,
        monitor=monitor,
    )
