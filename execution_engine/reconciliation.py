"""
Execution Engine - Balance Reconciliation.

============================================================
PURPOSE
============================================================
Pulls balances from every linked exchange connection and
brings the stored holdings and account balances in line.

RESPONSIBILITIES:
- Per-connection cooldown (skip unless forced)
- Decrypt credentials, fetch balances under a timeout
- Value each balance from the market-data cache
- Upsert holdings, recompute the account balance
- Record connection health (connected / error)

CRITICAL INVARIANT:
    "One failing connection never affects the others."

============================================================
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Dict, List, Optional

from core.clock import ClockProtocol, as_utc, get_clock

from .adapters.factory import AdapterPool
from .config import ReconciliationConfig
from .types import Balance

if TYPE_CHECKING:
    from credential_vault.store import CredentialStore
    from storage.market_data import MarketDataCache
    from storage.models import ExchangeConnectionModel
    from storage.repositories import TradingRepository


logger = logging.getLogger(__name__)


# ============================================================
# RECONCILIATION TYPES
# ============================================================

class SyncStatus(Enum):
    """Outcome for one connection."""

    SUCCESS = "success"
    SKIPPED = "skipped"
    ERROR = "error"


@dataclass
class ConnectionSyncResult:
    """Result of syncing one exchange connection."""

    connection_id: str
    exchange_id: str
    account_id: str
    status: SyncStatus

    balances: List[Balance] = field(default_factory=list)
    """Balances reported by the exchange."""

    holdings: Dict[str, Decimal] = field(default_factory=dict)
    """Currency -> value written to holdings."""

    error: Optional[str] = None


@dataclass
class ReconciliationResult:
    """Result of a reconciliation run."""

    run_id: str
    """Unique run identifier."""

    started_at: datetime
    """When reconciliation started."""

    completed_at: Optional[datetime] = None
    """When reconciliation completed."""

    connections: List[ConnectionSyncResult] = field(default_factory=list)

    @property
    def synced(self) -> int:
        return sum(1 for c in self.connections if c.status is SyncStatus.SUCCESS)

    @property
    def skipped(self) -> int:
        return sum(1 for c in self.connections if c.status is SyncStatus.SKIPPED)

    @property
    def failed(self) -> int:
        return sum(1 for c in self.connections if c.status is SyncStatus.ERROR)

    @property
    def success(self) -> bool:
        """Whether every connection synced or was skipped."""
        return self.failed == 0

    @property
    def duration_seconds(self) -> float:
        if self.completed_at is None:
            return 0.0
        return (self.completed_at - self.started_at).total_seconds()

    def for_connection(self, connection_id: str) -> Optional[ConnectionSyncResult]:
        for result in self.connections:
            if result.connection_id == connection_id:
                return result
        return None


# ============================================================
# BALANCE RECONCILER
# ============================================================

class BalanceReconciler:
    """
    Syncs exchange balances into holdings.

    SAFETY:
    - Credentials decrypted per run, never stored in plaintext
    - Every network call bounded by connection_timeout_seconds
    - Failures are recorded on the connection, not raised
    """

    def __init__(
        self,
        repository: "TradingRepository",
        credential_store: "CredentialStore",
        adapter_pool: AdapterPool,
        market_data: "MarketDataCache",
        config: Optional[ReconciliationConfig] = None,
        clock: Optional[ClockProtocol] = None,
    ):
        self._repository = repository
        self._credential_store = credential_store
        self._adapter_pool = adapter_pool
        self._market_data = market_data
        self._config = config or ReconciliationConfig()
        self._clock = clock or get_clock()

        self._history: List[ReconciliationResult] = []
        self._max_history = 100
        self._run_counter = 0
        self._lock = asyncio.Lock()
        self._stop_event = asyncio.Event()

    # --------------------------------------------------------
    # Run
    # --------------------------------------------------------

    async def run(
        self,
        user_id: Optional[str] = None,
        account_id: Optional[str] = None,
        connection_id: Optional[str] = None,
        force_sync: bool = False,
    ) -> ReconciliationResult:
        """
        Run a reconciliation pass over the matching active connections.

        Args:
            user_id: Only this user's connections
            account_id: Only this account's connections
            connection_id: Only this connection
            force_sync: Ignore the per-connection cooldown

        Returns:
            ReconciliationResult
        """
        async with self._lock:
            self._run_counter += 1
            run_id = f"REC_{self._run_counter:06d}"

            result = ReconciliationResult(run_id=run_id, started_at=self._clock.now())
            logger.debug(f"Starting reconciliation run {run_id}")

            connections = await self._repository.list_active_connections(
                user_id=user_id,
                account_id=account_id,
                connection_id=connection_id,
            )

            semaphore = asyncio.Semaphore(self._config.max_concurrency)

            async def bounded(connection: "ExchangeConnectionModel") -> ConnectionSyncResult:
                async with semaphore:
                    return await self._sync_connection(connection, force_sync)

            result.connections = list(await asyncio.gather(*(bounded(c) for c in connections)))

            # Account balances after all of the account's connections are in
            for account in sorted({c.account_id for c in result.connections if c.status is SyncStatus.SUCCESS}):
                total = await self._repository.total_holdings_value(account)
                await self._repository.update_account_balance(account, total)

            result.completed_at = self._clock.now()

            self._history.append(result)
            if len(self._history) > self._max_history:
                self._history.pop(0)

            logger.info(
                f"Reconciliation {run_id} complete: "
                f"{result.synced} synced, "
                f"{result.skipped} skipped, "
                f"{result.failed} failed"
            )
            return result

    def _in_cooldown(self, connection: "ExchangeConnectionModel") -> bool:
        if connection.last_sync_at is None:
            return False
        elapsed = self._clock.now() - as_utc(connection.last_sync_at)
        return elapsed < timedelta(seconds=self._config.cooldown_seconds)

    async def _sync_connection(
        self,
        connection: "ExchangeConnectionModel",
        force_sync: bool,
    ) -> ConnectionSyncResult:
        result = ConnectionSyncResult(
            connection_id=connection.id,
            exchange_id=connection.exchange_id,
            account_id=connection.account_id,
            status=SyncStatus.SKIPPED,
        )

        if not force_sync and self._in_cooldown(connection):
            logger.debug(f"Connection {connection.id} synced recently, skipping")
            return result

        try:
            credentials = self._credential_store.load_credentials(connection)
            adapter = self._adapter_pool.get_or_create(
                connection.exchange_id,
                account_id=connection.account_id,
            )

            balances = await asyncio.wait_for(
                adapter.get_balances(credentials),
                timeout=self._config.connection_timeout_seconds,
            )
            result.balances = balances

            for balance in balances:
                if balance.total <= 0:
                    continue
                price = await self._price_for(balance.currency)
                holding = await self._repository.upsert_holding(
                    connection.account_id,
                    balance.currency,
                    balance.total,
                    price,
                )
                result.holdings[balance.currency] = holding.current_value

            await self._repository.mark_connection_synced(connection.id)
            result.status = SyncStatus.SUCCESS
            logger.info(
                f"Synced {connection.exchange_id} connection {connection.id}: "
                f"{len(result.holdings)} holdings"
            )

        except Exception as e:
            message = str(e) or type(e).__name__
            if isinstance(e, asyncio.TimeoutError):
                message = f"Balance fetch timed out after {self._config.connection_timeout_seconds}s"
            result.status = SyncStatus.ERROR
            result.error = message
            logger.error(f"Reconciliation failed for connection {connection.id}: {message}")
            await self._repository.mark_connection_error(connection.id, message)

        return result

    async def _price_for(self, currency: str) -> Decimal:
        price = await self._market_data.get_latest_price(currency)
        if price is not None:
            return price
        if currency.upper() in self._config.stable_currencies:
            return Decimal("1")
        logger.warning(f"No cached price for {currency}, valuing at 0")
        return Decimal("0")

    # --------------------------------------------------------
    # Periodic loop
    # --------------------------------------------------------

    async def run_forever(self, interval_seconds: Optional[float] = None) -> None:
        """Run reconciliation until stop() is called."""
        interval = interval_seconds or self._config.interval_seconds
        self._stop_event.clear()
        logger.info(f"Balance reconciliation loop started (interval={interval}s)")

        while not self._stop_event.is_set():
            try:
                await self.run()
            except Exception as e:
                logger.error(f"Reconciliation run failed: {e}")

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass

        logger.info("Balance reconciliation loop stopped")

    def stop(self) -> None:
        self._stop_event.set()

    def get_last_result(self) -> Optional[ReconciliationResult]:
        """Get last reconciliation result."""
        return self._history[-1] if self._history else None

    def get_history(self, limit: int = 10) -> List[ReconciliationResult]:
        """Get reconciliation history."""
        return self._history[-limit:]
