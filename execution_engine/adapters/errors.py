"""
Exchange Adapter - Error Normalization.

============================================================
PURPOSE
============================================================
Maps each exchange's error payloads onto the core taxonomy.

- Credential/signature rejections -> AuthenticationError
- Exchange-side throttling        -> RateLimitError
- Everything else                 -> ExchangeProtocolError

The provider's own code and message are always kept verbatim.
Errors are never swallowed.

============================================================
"""

from enum import Enum
from typing import Dict, Optional, Union

from core.exceptions import (
    AuthenticationError,
    ExchangeProtocolError,
    RateLimitError,
    TradingException,
)


# ============================================================
# ERROR CATEGORIES
# ============================================================

class ErrorCategory(Enum):
    """Unified error categories."""

    AUTHENTICATION = "authentication"
    RATE_LIMIT = "rate_limit"
    PROTOCOL = "protocol"


# ============================================================
# PROVIDER ERROR TABLES
# ============================================================

BINANCE_ERROR_MAP: Dict[str, ErrorCategory] = {
    "-1002": ErrorCategory.AUTHENTICATION,
    "-1003": ErrorCategory.RATE_LIMIT,
    "-1015": ErrorCategory.RATE_LIMIT,
    "-1021": ErrorCategory.AUTHENTICATION,
    "-1022": ErrorCategory.AUTHENTICATION,
    "-2014": ErrorCategory.AUTHENTICATION,
    "-2015": ErrorCategory.AUTHENTICATION,
}

DERIBIT_ERROR_MAP: Dict[str, ErrorCategory] = {
    "10028": ErrorCategory.RATE_LIMIT,
    "13004": ErrorCategory.AUTHENTICATION,
    "13009": ErrorCategory.AUTHENTICATION,
    "13010": ErrorCategory.AUTHENTICATION,
    "13021": ErrorCategory.AUTHENTICATION,
}

KRAKEN_ERROR_MAP: Dict[str, ErrorCategory] = {
    "EAPI:Invalid key": ErrorCategory.AUTHENTICATION,
    "EAPI:Invalid signature": ErrorCategory.AUTHENTICATION,
    "EAPI:Invalid nonce": ErrorCategory.AUTHENTICATION,
    "EGeneral:Permission denied": ErrorCategory.AUTHENTICATION,
    "EAPI:Rate limit exceeded": ErrorCategory.RATE_LIMIT,
    "EOrder:Rate limit exceeded": ErrorCategory.RATE_LIMIT,
}

KUCOIN_ERROR_MAP: Dict[str, ErrorCategory] = {
    "400001": ErrorCategory.AUTHENTICATION,
    "400002": ErrorCategory.AUTHENTICATION,
    "400003": ErrorCategory.AUTHENTICATION,
    "400004": ErrorCategory.AUTHENTICATION,
    "400005": ErrorCategory.AUTHENTICATION,
    "400006": ErrorCategory.AUTHENTICATION,
    "400007": ErrorCategory.AUTHENTICATION,
    "429000": ErrorCategory.RATE_LIMIT,
}

OKX_ERROR_MAP: Dict[str, ErrorCategory] = {
    "50011": ErrorCategory.RATE_LIMIT,
    "50013": ErrorCategory.RATE_LIMIT,
    "50100": ErrorCategory.AUTHENTICATION,
    "50101": ErrorCategory.AUTHENTICATION,
    "50102": ErrorCategory.AUTHENTICATION,
    "50103": ErrorCategory.AUTHENTICATION,
    "50104": ErrorCategory.AUTHENTICATION,
    "50105": ErrorCategory.AUTHENTICATION,
    "50111": ErrorCategory.AUTHENTICATION,
    "50112": ErrorCategory.AUTHENTICATION,
    "50113": ErrorCategory.AUTHENTICATION,
}

BYBIT_ERROR_MAP: Dict[str, ErrorCategory] = {
    "10003": ErrorCategory.AUTHENTICATION,
    "10004": ErrorCategory.AUTHENTICATION,
    "10005": ErrorCategory.AUTHENTICATION,
    "10006": ErrorCategory.RATE_LIMIT,
    "10010": ErrorCategory.AUTHENTICATION,
    "10018": ErrorCategory.RATE_LIMIT,
    "33004": ErrorCategory.AUTHENTICATION,
}

ERROR_MAPS: Dict[str, Dict[str, ErrorCategory]] = {
    "binance": BINANCE_ERROR_MAP,
    "deribit": DERIBIT_ERROR_MAP,
    "kraken": KRAKEN_ERROR_MAP,
    "kucoin": KUCOIN_ERROR_MAP,
    "okx": OKX_ERROR_MAP,
    "bybit": BYBIT_ERROR_MAP,
}


# ============================================================
# CLASSIFICATION
# ============================================================

def classify_error(
    exchange_id: str,
    code: Optional[str],
    http_status: Optional[int] = None,
) -> ErrorCategory:
    """Pick the category for a provider error code, falling back on HTTP status."""
    table = ERROR_MAPS.get(exchange_id, {})
    if code is not None and code in table:
        return table[code]
    if http_status in (401, 403):
        return ErrorCategory.AUTHENTICATION
    if http_status in (418, 429):
        return ErrorCategory.RATE_LIMIT
    return ErrorCategory.PROTOCOL


def exchange_error(
    exchange_id: str,
    code: Optional[Union[str, int]],
    message: Optional[str],
    http_status: Optional[int] = None,
) -> TradingException:
    """
    Build the exception for a provider error payload.

    Args:
        exchange_id: Exchange identifier
        code: Provider error code (kept verbatim)
        message: Provider error message (kept verbatim)
        http_status: HTTP status code

    Returns:
        AuthenticationError, RateLimitError or ExchangeProtocolError
    """
    code_str = str(code) if code is not None else None
    message = message or "Unknown exchange error"
    category = classify_error(exchange_id, code_str, http_status)
    context = {"provider_code": code_str, "provider_message": message}
    if http_status is not None:
        context["http_status"] = http_status

    if category is ErrorCategory.AUTHENTICATION:
        return AuthenticationError(
            f"{exchange_id} rejected credentials: [{code_str}] {message}",
            exchange_id=exchange_id,
            context=context,
        )
    if category is ErrorCategory.RATE_LIMIT:
        return RateLimitError(
            f"{exchange_id} rate limit: [{code_str}] {message}",
            exchange_id=exchange_id,
            context=context,
        )
    return ExchangeProtocolError(
        f"{exchange_id} error [{code_str}]: {message}",
        exchange_id=exchange_id,
        provider_code=code_str,
        provider_message=message,
        http_status=http_status,
    )
