"""
Risk Management - Price Circuit Breaker.

============================================================
PURPOSE
============================================================
Halts new orders in an asset after a violent price move.

- >= 20% move against the price 15 minutes earlier trips
  the asset for a 30 minute cooldown
- >= 30% is critical, >= 50% is an emergency and also
  trips the market-wide breaker
- Cooldowns expire on their own; reset() clears early

TradingGuard consults is_halted() before every order.
Reduce-only orders from the risk engine are exempt there.

============================================================
"""

import logging
import threading
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Deque, Dict, List, Optional, Tuple

from core.clock import ClockProtocol, get_clock
from execution_engine.adapters.symbols import base_asset


logger = logging.getLogger(__name__)


class MoveSeverity(Enum):
    WARNING = "warning"
    CRITICAL = "critical"
    EMERGENCY = "emergency"


@dataclass
class CircuitBreakerConfig:
    """Circuit breaker thresholds."""

    price_change_threshold_pct: Decimal = Decimal("20")
    """Move that trips the breaker."""

    critical_threshold_pct: Decimal = Decimal("30")

    emergency_threshold_pct: Decimal = Decimal("50")
    """Move that also trips the market-wide breaker."""

    time_window_minutes: int = 15
    cooldown_minutes: int = 30

    market_wide_breaker: bool = True
    """Allow emergency moves to halt every asset."""

    max_points: int = 1000
    """Price points kept per asset."""


@dataclass
class PriceMoveAlert:
    """A move that tripped the breaker."""

    symbol: str
    current_price: Decimal
    previous_price: Decimal
    change_pct: Decimal
    severity: MoveSeverity
    cooldown_until: datetime
    timestamp: datetime


class PriceCircuitBreaker:
    """
    Per-asset and market-wide trading halts.

    Example:
        breaker = PriceCircuitBreaker()
        breaker.update_price("BTC/USDT", Decimal("40000"))
        breaker.is_halted("BTC/USDT")
    """

    def __init__(
        self,
        config: Optional[CircuitBreakerConfig] = None,
        clock: Optional[ClockProtocol] = None,
    ):
        self._config = config or CircuitBreakerConfig()
        self._clock = clock or get_clock()
        self._history: Dict[str, Deque[Tuple[datetime, Decimal]]] = {}
        self._halted_until: Dict[str, datetime] = {}
        self._market_halted_until: Optional[datetime] = None
        self._lock = threading.Lock()

    def _severity(self, change_pct: Decimal) -> MoveSeverity:
        if change_pct >= self._config.emergency_threshold_pct:
            return MoveSeverity.EMERGENCY
        if change_pct >= self._config.critical_threshold_pct:
            return MoveSeverity.CRITICAL
        return MoveSeverity.WARNING

    def update_price(self, symbol: str, price: Decimal) -> Optional[PriceMoveAlert]:
        """
        Record a price and trip the breaker if the move is too large.

        Returns:
            PriceMoveAlert when this update tripped the breaker
        """
        asset = base_asset(symbol)
        now = self._clock.now()
        window = timedelta(minutes=self._config.time_window_minutes)

        with self._lock:
            history = self._history.setdefault(asset, deque(maxlen=self._config.max_points))

            # Newest point at least one window old, else the oldest point held
            reference: Optional[Decimal] = None
            for observed_at, observed in history:
                if observed_at <= now - window:
                    reference = observed
                elif reference is None:
                    reference = observed
                    break
                else:
                    break

            history.append((now, price))
            while len(history) > 1 and history[1][0] <= now - 2 * window:
                history.popleft()

            if reference is None or reference <= 0:
                return None

            change_pct = abs(price - reference) / reference * Decimal("100")
            if change_pct < self._config.price_change_threshold_pct:
                return None

            severity = self._severity(change_pct)
            cooldown_until = now + timedelta(minutes=self._config.cooldown_minutes)
            self._halted_until[asset] = cooldown_until
            if severity is MoveSeverity.EMERGENCY and self._config.market_wide_breaker:
                self._market_halted_until = cooldown_until

        logger.critical(
            f"CIRCUIT BREAKER TRIGGERED: {asset} moved {change_pct:.2f}% "
            f"({reference} -> {price}) severity={severity.value} until {cooldown_until.isoformat()}"
        )
        if severity is MoveSeverity.EMERGENCY and self._config.market_wide_breaker:
            logger.critical("MARKET-WIDE CIRCUIT BREAKER ACTIVATED")

        return PriceMoveAlert(
            symbol=asset,
            current_price=price,
            previous_price=reference,
            change_pct=change_pct,
            severity=severity,
            cooldown_until=cooldown_until,
            timestamp=now,
        )

    def is_market_halted(self) -> bool:
        with self._lock:
            return self._market_halted_until is not None and self._clock.now() < self._market_halted_until

    def is_halted(self, symbol: str) -> bool:
        if self.is_market_halted():
            return True
        with self._lock:
            until = self._halted_until.get(base_asset(symbol))
            return until is not None and self._clock.now() < until

    def halted_symbols(self) -> List[str]:
        now = self._clock.now()
        with self._lock:
            return sorted(asset for asset, until in self._halted_until.items() if now < until)

    def reset(self, symbol: Optional[str] = None) -> None:
        """Clear one asset's halt, or every halt including market-wide."""
        with self._lock:
            if symbol is None:
                self._halted_until.clear()
                self._market_halted_until = None
            else:
                self._halted_until.pop(base_asset(symbol), None)
        logger.warning(f"Circuit breaker reset for {symbol or 'all symbols'}")
