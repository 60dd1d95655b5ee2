"""
Risk Management - Risk Monitor.

============================================================
PURPOSE
============================================================
Periodic risk pass over every active trading account.

Once per pass, the circuit breaker (when one is attached)
is fed the latest cached USD price of every asset, held or
not. Then, for each account:

1. Stop-loss monitoring
2. Account limit checks (drawdown, concentration,
   volatility, correlation)

A failure for one account is logged and the pass moves on.

============================================================
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Dict, List, Optional

from core.clock import ClockProtocol, get_clock

from .risk_engine import RiskAlert, RiskEngine, StopLossExecution

if TYPE_CHECKING:
    from storage.market_data import MarketDataCache
    from storage.repositories import TradingRepository


logger = logging.getLogger(__name__)


@dataclass
class MonitorPassResult:
    """Outcome of one monitor pass."""

    started_at: datetime
    completed_at: Optional[datetime] = None
    accounts_checked: int = 0
    stop_losses: List[StopLossExecution] = field(default_factory=list)
    alerts: List[RiskAlert] = field(default_factory=list)
    errors: Dict[str, str] = field(default_factory=dict)
    """Account id -> error message."""


class RiskMonitor:
    """
    Drives RiskEngine for all active accounts.

    Example:
        monitor = RiskMonitor(engine, repository, market_data)
        await monitor.run_once()
    """

    def __init__(
        self,
        engine: RiskEngine,
        repository: "TradingRepository",
        market_data: Optional["MarketDataCache"] = None,
        interval_seconds: Optional[float] = None,
        clock: Optional[ClockProtocol] = None,
    ):
        self._engine = engine
        self._repository = repository
        self._market_data = market_data
        self._interval = interval_seconds
        self._clock = clock or get_clock()
        self._stop_event = asyncio.Event()
        self._last_result: Optional[MonitorPassResult] = None

    @property
    def last_result(self) -> Optional[MonitorPassResult]:
        return self._last_result

    async def _feed_circuit_breaker(self) -> None:
        breaker = self._engine.circuit_breaker
        if breaker is None or self._market_data is None:
            return

        for asset, price in (await self._market_data.latest_usd_prices()).items():
            breaker.update_price(asset, price)

    async def check_account(self, account_id: str, result: MonitorPassResult) -> None:
        result.stop_losses.extend(await self._engine.monitor_stop_losses(account_id))
        result.alerts.extend(await self._engine.check_account_limits(account_id))

    async def run_once(self) -> MonitorPassResult:
        """One pass over every active account."""
        result = MonitorPassResult(started_at=self._clock.now())

        try:
            await self._feed_circuit_breaker()
        except Exception as e:
            logger.error(f"Circuit breaker price feed failed: {e}")

        for account in await self._repository.list_active_accounts():
            result.accounts_checked += 1
            try:
                await self.check_account(account.account_id, result)
            except Exception as e:
                result.errors[account.account_id] = str(e) or type(e).__name__
                logger.error(f"Risk monitoring failed for account {account.account_id}: {e}")

        result.completed_at = self._clock.now()
        self._last_result = result

        if result.stop_losses or result.alerts or result.errors:
            logger.info(
                f"Risk pass: {result.accounts_checked} accounts, "
                f"{len(result.stop_losses)} stop losses, "
                f"{len(result.alerts)} alerts, "
                f"{len(result.errors)} errors"
            )
        return result

    async def run_forever(self, interval_seconds: Optional[float] = None) -> None:
        """Run passes until stop() is called."""
        interval = interval_seconds or self._interval or 60
        self._stop_event.clear()
        logger.info(f"Risk monitor started (interval={interval}s)")

        while not self._stop_event.is_set():
            try:
                await self.run_once()
            except Exception as e:
                logger.error(f"Risk monitor pass failed: {e}")

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass

        logger.info("Risk monitor stopped")

    def stop(self) -> None:
        self._stop_event.set()
