"""
Shared test fixtures.

- MockClock pinned to a fixed UTC time
- File-backed SQLite database (aiosqlite) per test
- Repository, market-data cache, vault and credential store
- FakeTransport recording every request a provider makes
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

import pytest
import pytest_asyncio

from core.clock import MockClock
from credential_vault import CredentialStore, CredentialVault, VaultConfig
from execution_engine.adapters import AdapterConfig, AdapterPool, SimulationConfig
from execution_engine.execution_service import ExecutionService
from storage import Database, DatabaseConfig, MarketDataCache, TradingRepository


START_TIME = datetime(2024, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


# ============================================================
# CLOCK
# ============================================================

@pytest.fixture
def clock() -> MockClock:
    return MockClock(START_TIME)


# ============================================================
# STORAGE
# ============================================================

@pytest_asyncio.fixture
async def database(tmp_path):
    db = Database(DatabaseConfig(url=f"sqlite+aiosqlite:///{tmp_path / 'trading.db'}"))
    await db.create_all()
    yield db
    await db.dispose()


@pytest.fixture
def repository(database, clock) -> TradingRepository:
    return TradingRepository(database.session_factory, clock=clock)


@pytest.fixture
def market_data(repository) -> MarketDataCache:
    return MarketDataCache(repository)


@pytest_asyncio.fixture
async def account(repository):
    return await repository.create_account(
        user_id="user-1",
        name="Main",
        initial_balance=Decimal("10000"),
        account_id="acc-1",
    )


# ============================================================
# CREDENTIALS
# ============================================================

@pytest.fixture
def vault() -> CredentialVault:
    # Low iteration count keeps the suite fast
    return CredentialVault(VaultConfig(master_key="test-master-key", iterations=1000))


@pytest.fixture
def credential_store(vault, repository) -> CredentialStore:
    return CredentialStore(vault, repository)


# ============================================================
# TRANSPORT
# ============================================================

@dataclass
class RecordedRequest:
    method: str
    url: str
    endpoint: str
    body: Optional[str]
    headers: Dict[str, str]


class FakeTransport:
    """
    Stands in for HttpTransport.

    Responses are returned in the order they were queued.
    """

    def __init__(self, responses: Optional[List[Tuple[int, Any]]] = None):
        self.responses: List[Tuple[int, Any]] = list(responses or [])
        self.requests: List[RecordedRequest] = []
        self.closed = False

    def queue(self, status: int, payload: Any) -> "FakeTransport":
        self.responses.append((status, payload))
        return self

    async def request(
        self,
        method: str,
        url: str,
        endpoint: str,
        body: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Tuple[int, Any]:
        self.requests.append(RecordedRequest(method, url, endpoint, body, dict(headers or {})))
        if not self.responses:
            raise AssertionError(f"Unexpected request {method} {url}")
        return self.responses.pop(0)

    async def close(self) -> None:
        self.closed = True

    @property
    def last(self) -> RecordedRequest:
        return self.requests[-1]


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


# ============================================================
# EXECUTION
# ============================================================

@pytest.fixture
def paper_pool(market_data, clock) -> AdapterPool:
    return AdapterPool(
        AdapterConfig(paper_trading=True, simulation=SimulationConfig.instant()),
        price_source=market_data,
        clock=clock,
    )


@pytest.fixture
def execution_service(repository, credential_store, paper_pool, market_data) -> ExecutionService:
    return ExecutionService(repository, credential_store, paper_pool, market_data=market_data)
