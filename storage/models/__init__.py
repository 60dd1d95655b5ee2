"""
Storage Models Package.

ORM models for the execution and risk core.

============================================================
MODEL ORGANIZATION
============================================================

Accounts & connections (trading.py)
- TradingAccountModel
- ExchangeConnectionModel (carries the encrypted credential)

Portfolio (trading.py)
- HoldingModel
- PositionModel
- TradeRecordModel

Risk & market data (trading.py)
- RiskAlertModel
- PricePointModel
"""

from .base import Base, TimestampMixin
from .trading import (
    ExchangeConnectionModel,
    HoldingModel,
    PositionModel,
    PricePointModel,
    RiskAlertModel,
    TradeRecordModel,
    TradingAccountModel,
)


__all__ = [
    "Base",
    "TimestampMixin",
    "ExchangeConnectionModel",
    "HoldingModel",
    "PositionModel",
    "PricePointModel",
    "RiskAlertModel",
    "TradeRecordModel",
    "TradingAccountModel",
]
