"""
Storage Package.

This package manages all data persistence.

Modules:
- database: Async engine and sessions
- models/: ORM models
- repositories/: Data access layer
- market_data: Cached market prices
"""

from .database import Database, DatabaseConfig
from .market_data import MarketDataCache
from .repositories import TradingRepository


__all__ = [
    "Database",
    "DatabaseConfig",
    "MarketDataCache",
    "TradingRepository",
]
