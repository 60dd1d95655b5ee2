"""
Repository Layer.

Data access for the execution and risk core.
"""

from .trading_repository import POSITION_CLOSED, POSITION_OPEN, TradingRepository


__all__ = [
    "POSITION_CLOSED",
    "POSITION_OPEN",
    "TradingRepository",
]
