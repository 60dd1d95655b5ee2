"""
Storage - Database.

============================================================
RESPONSIBILITY
============================================================
Manages database connections and sessions.

- Async engine and session factory
- Schema creation for new deployments
- Health checks
- Connection lifecycle

============================================================
DESIGN PRINCIPLES
============================================================
- Async by default
- One short-lived session per repository operation
- URL from DATABASE_URL (.env supported)

============================================================
"""

import logging
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv
from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from .models import Base


logger = logging.getLogger(__name__)


DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./trading_core.db"


@dataclass
class DatabaseConfig:
    """Database connection settings."""

    url: str = DEFAULT_DATABASE_URL
    echo: bool = False
    pool_pre_ping: bool = True

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "DatabaseConfig":
        load_dotenv(env_file)
        return cls(
            url=os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL),
            echo=os.getenv("DATABASE_ECHO", "false").lower() == "true",
        )


def _mask_url(url: str) -> str:
    """Hide the password in a database URL."""
    if "@" not in url or "://" not in url:
        return url
    scheme, rest = url.split("://", 1)
    credentials, host = rest.rsplit("@", 1)
    user = credentials.split(":", 1)[0]
    return f"{scheme}://{user}:****@{host}"


class Database:
    """
    Async database handle.

    Example:
        database = Database(DatabaseConfig.from_env())
        await database.create_all()
        repository = TradingRepository(database.session_factory)
    """

    def __init__(self, config: Optional[DatabaseConfig] = None):
        self._config = config or DatabaseConfig()
        self._engine: AsyncEngine = create_async_engine(
            self._config.url,
            echo=self._config.echo,
            pool_pre_ping=self._config.pool_pre_ping,
        )
        self._session_factory = async_sessionmaker(
            self._engine,
            expire_on_commit=False,
            class_=AsyncSession,
        )
        logger.info(f"Database configured: {_mask_url(self._config.url)}")

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    @property
    def session_factory(self) -> async_sessionmaker:
        return self._session_factory

    async def create_all(self) -> None:
        """Create any missing tables."""
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database schema ensured")

    async def health_check(self) -> bool:
        try:
            async with self._engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            return False

    async def dispose(self) -> None:
        await self._engine.dispose()
