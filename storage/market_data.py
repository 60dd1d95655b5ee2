"""
Storage - Market Data Cache.

============================================================
PURPOSE
============================================================
Read side of the cached market prices.

Prices are written by the upstream market-data feed; the core
only reads the latest price and recent history.

Prices may be cached per asset (BTC) or per pair (BTC/USDT).
A lookup for one form falls back to the other when the quote
is a USD stablecoin.

============================================================
"""

from decimal import Decimal
from typing import Dict, FrozenSet, List, Optional

from .repositories.trading_repository import TradingRepository


USD_QUOTES: FrozenSet[str] = frozenset({"USD", "USDT", "USDC"})


def price_keys(symbol: str) -> List[str]:
    """Cache keys to try for a symbol, most specific first."""
    symbol = symbol.upper()
    base, sep, quote = symbol.partition("/")
    if sep:
        return [symbol, base] if quote in USD_QUOTES else [symbol]
    return [symbol, f"{symbol}/USDT", f"{symbol}/USD"]


class MarketDataCache:
    """Latest prices and price history backed by the price cache table."""

    def __init__(self, repository: TradingRepository):
        self._repository = repository

    async def get_latest_price(self, symbol: str) -> Optional[Decimal]:
        for key in price_keys(symbol):
            price = await self._repository.latest_price(key)
            if price is not None:
                return price
        return None

    async def get_price_history(self, symbol: str, limit: int = 100) -> List[Decimal]:
        for key in price_keys(symbol):
            history = await self._repository.price_history(key, limit)
            if history:
                return history
        return []

    async def record_price(self, symbol: str, price: Decimal) -> None:
        await self._repository.record_price(symbol.upper(), price)

    async def latest_usd_prices(self) -> Dict[str, Decimal]:
        """Latest USD price of every cached asset, keyed by asset."""
        assets = set()
        for symbol in await self._repository.price_symbols():
            base, sep, quote = symbol.partition("/")
            if not sep or quote in USD_QUOTES:
                assets.add(base)

        prices: Dict[str, Decimal] = {}
        for asset in sorted(assets):
            price = await self.get_latest_price(asset)
            if price is not None and price > 0:
                prices[asset] = price
        return prices
