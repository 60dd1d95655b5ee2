"""
Exchange Adapter - Symbol Mapping.

============================================================
PURPOSE
============================================================
Table-driven translation between unified symbols (BTC/USDT)
and each exchange's instrument names.

    binance  BTC/USDT -> BTCUSDT
    deribit  BTC/USDT -> BTC-PERPETUAL
    kraken   BTC/USDT -> XBTUSDT, BTC/USD -> XBTUSD
    kucoin   BTC/USDT -> BTC-USDT
    okx      BTC/USDT -> BTC-USDT
    bybit    BTC/USDT -> BTCUSDT

============================================================
"""

from typing import Callable, Dict, Tuple

from core.exceptions import ValidationError


def split_symbol(symbol: str) -> Tuple[str, str]:
    """Split BASE/QUOTE into its parts."""
    base, sep, quote = symbol.upper().partition("/")
    if not sep or not base or not quote:
        raise ValidationError(f"Symbol must be BASE/QUOTE, got {symbol!r}", field="symbol")
    return base, quote


def base_asset(symbol: str) -> str:
    """BTC for BTC/USDT; plain asset codes pass through."""
    return symbol.upper().partition("/")[0]


def quote_asset(symbol: str) -> str:
    return split_symbol(symbol)[1]


# ============================================================
# DERIBIT
# ============================================================

DERIBIT_INSTRUMENTS: Dict[str, str] = {
    "BTC/USD": "BTC-PERPETUAL",
    "BTC/USDT": "BTC-PERPETUAL",
    "ETH/USD": "ETH-PERPETUAL",
    "ETH/USDT": "ETH-PERPETUAL",
    "SOL/USD": "SOL-PERPETUAL",
    "SOL/USDT": "SOL-PERPETUAL",
}


def to_deribit(symbol: str) -> str:
    mapped = DERIBIT_INSTRUMENTS.get(symbol.upper())
    if mapped:
        return mapped
    base, quote = split_symbol(symbol)
    return f"{base}-{quote}-PERPETUAL"


# ============================================================
# KRAKEN
# ============================================================

KRAKEN_ASSET_ALIASES: Dict[str, str] = {
    "BTC": "XBT",
    "DOGE": "XDG",
}

# Balance keys returned by Kraken -> unified asset code
KRAKEN_BALANCE_ASSETS: Dict[str, str] = {
    "XXBT": "BTC",
    "XBT": "BTC",
    "XXDG": "DOGE",
    "XDG": "DOGE",
    "XETH": "ETH",
    "XLTC": "LTC",
    "XXRP": "XRP",
    "XXLM": "XLM",
    "ZUSD": "USD",
    "ZEUR": "EUR",
    "ZGBP": "GBP",
}


def to_kraken(symbol: str) -> str:
    base, quote = split_symbol(symbol)
    base = KRAKEN_ASSET_ALIASES.get(base, base)
    quote = KRAKEN_ASSET_ALIASES.get(quote, quote)
    return f"{base}{quote}"


def from_kraken_asset(asset: str) -> str:
    """Normalise a Kraken balance key (XXBT, ZUSD, XBT.F, ETH.B) to a unified code."""
    code = asset.upper().split(".", 1)[0]
    return KRAKEN_BALANCE_ASSETS.get(code, code)


# ============================================================
# DISPATCH TABLE
# ============================================================

def _concat(symbol: str) -> str:
    base, quote = split_symbol(symbol)
    return f"{base}{quote}"


def _dashed(symbol: str) -> str:
    base, quote = split_symbol(symbol)
    return f"{base}-{quote}"


SYMBOL_MAPPERS: Dict[str, Callable[[str], str]] = {
    "binance": _concat,
    "deribit": to_deribit,
    "kraken": to_kraken,
    "kucoin": _dashed,
    "okx": _dashed,
    "bybit": _concat,
}


def to_exchange_symbol(exchange_id: str, symbol: str) -> str:
    """
    Map a unified symbol to an exchange instrument name.

    Unknown exchanges (e.g. the simulator) keep the unified symbol.
    """
    mapper = SYMBOL_MAPPERS.get(exchange_id)
    return mapper(symbol) if mapper else symbol.upper()
