"""
Execution Engine - Trading Guard.

============================================================
PURPOSE
============================================================
Explicit risk context passed to every order submission.

The guard re-reads the account's emergency_stop flag on every
check, so a stop set by any process is seen by the very next
order. Reduce-only closing orders pass only through guards
built for liquidation / stop-loss use.

============================================================
"""

import logging
from typing import Optional, Protocol

from core.exceptions import EmergencyStopError, ValidationError

from .types import OrderParams


logger = logging.getLogger(__name__)


class AccountStateReader(Protocol):
    """Anything that can load an account with an emergency_stop flag."""

    async def get_account(self, account_id: str): ...


class SymbolHaltReader(Protocol):
    def is_halted(self, symbol: str) -> bool: ...


class TradingGuard:
    """
    Pre-submission check for one account.

    Example:
        guard = TradingGuard(account_id, repository)
        await adapter.create_order(credentials, params, guard)
    """

    def __init__(
        self,
        account_id: str,
        accounts: AccountStateReader,
        circuit_breaker: Optional[SymbolHaltReader] = None,
        allow_reduce_only: bool = False,
    ):
        self.account_id = account_id
        self._accounts = accounts
        self._circuit_breaker = circuit_breaker
        self.allow_reduce_only = allow_reduce_only

    def for_risk_reduction(self) -> "TradingGuard":
        """Copy of this guard that lets reduce-only orders through a halt."""
        return TradingGuard(
            self.account_id,
            self._accounts,
            circuit_breaker=self._circuit_breaker,
            allow_reduce_only=True,
        )

    def _exempt(self, params: OrderParams) -> bool:
        return self.allow_reduce_only and params.reduce_only

    async def check(self, params: OrderParams) -> None:
        """
        Refuse the order if trading is halted for the account or symbol.

        Raises:
            EmergencyStopError: Account is emergency-stopped
            ValidationError: Unknown account or symbol halted by circuit breaker
        """
        account = await self._accounts.get_account(self.account_id)
        if account is None:
            raise ValidationError(f"Unknown trading account {self.account_id}", field="account_id")

        if account.emergency_stop and not self._exempt(params):
            logger.warning(
                f"Order refused for emergency-stopped account {self.account_id}: "
                f"{params.side.value} {params.amount} {params.symbol}"
            )
            raise EmergencyStopError(self.account_id, reason=account.emergency_reason)

        if (
            self._circuit_breaker is not None
            and self._circuit_breaker.is_halted(params.symbol)
            and not self._exempt(params)
        ):
            raise ValidationError(
                f"Trading in {params.symbol} halted by circuit breaker",
                field="symbol",
            )
