"""
Trading Guard Tests.

Emergency stop and circuit-breaker checks before submission.
"""

from decimal import Decimal

import pytest

from core.exceptions import EmergencyStopError, ValidationError
from execution_engine.guard import TradingGuard
from execution_engine.types import OrderParams, OrderSide, OrderType


class HaltedSymbols:
    def __init__(self, *symbols):
        self.symbols = set(symbols)

    def is_halted(self, symbol: str) -> bool:
        return symbol in self.symbols


def _order(reduce_only: bool = False) -> OrderParams:
    return OrderParams(
        symbol="BTC/USDT",
        side=OrderSide.SELL,
        type=OrderType.MARKET,
        amount=Decimal("0.1"),
        reduce_only=reduce_only,
    )


# ============================================================
# EMERGENCY STOP
# ============================================================

class TestEmergencyStop:
    """Tests for the account emergency stop check."""

    @pytest.mark.asyncio
    async def test_active_account_passes(self, repository, account):
        guard = TradingGuard(account.account_id, repository)

        await guard.check(_order())

    @pytest.mark.asyncio
    async def test_unknown_account_rejected(self, repository):
        guard = TradingGuard("missing", repository)

        with pytest.raises(ValidationError):
            await guard.check(_order())

    @pytest.mark.asyncio
    async def test_stopped_account_rejected(self, repository, account):
        await repository.set_emergency_stop(account.account_id, "drawdown")
        guard = TradingGuard(account.account_id, repository)

        with pytest.raises(EmergencyStopError) as exc_info:
            await guard.check(_order())

        assert exc_info.value.account_id == account.account_id
        assert "drawdown" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_flag_is_reread_on_every_check(self, repository, account):
        guard = TradingGuard(account.account_id, repository)
        await guard.check(_order())

        await repository.set_emergency_stop(account.account_id, "manual")

        with pytest.raises(EmergencyStopError):
            await guard.check(_order())

    @pytest.mark.asyncio
    async def test_reduce_only_needs_risk_reduction_guard(self, repository, account):
        await repository.set_emergency_stop(account.account_id, "manual")
        guard = TradingGuard(account.account_id, repository)

        with pytest.raises(EmergencyStopError):
            await guard.check(_order(reduce_only=True))

        await guard.for_risk_reduction().check(_order(reduce_only=True))

    @pytest.mark.asyncio
    async def test_risk_reduction_guard_still_blocks_new_exposure(self, repository, account):
        await repository.set_emergency_stop(account.account_id, "manual")
        guard = TradingGuard(account.account_id, repository).for_risk_reduction()

        with pytest.raises(EmergencyStopError):
            await guard.check(_order(reduce_only=False))


# ============================================================
# CIRCUIT BREAKER
# ============================================================

class TestCircuitBreakerHalt:
    """Tests for symbol halts."""

    @pytest.mark.asyncio
    async def test_halted_symbol_rejected(self, repository, account):
        guard = TradingGuard(account.account_id, repository, circuit_breaker=HaltedSymbols("BTC/USDT"))

        with pytest.raises(ValidationError) as exc_info:
            await guard.check(_order())

        assert exc_info.value.context["field"] == "symbol"

    @pytest.mark.asyncio
    async def test_other_symbols_unaffected(self, repository, account):
        guard = TradingGuard(account.account_id, repository, circuit_breaker=HaltedSymbols("ETH/USDT"))

        await guard.check(_order())

    @pytest.mark.asyncio
    async def test_reduce_only_passes_halt(self, repository, account):
        guard = TradingGuard(
            account.account_id,
            repository,
            circuit_breaker=HaltedSymbols("BTC/USDT"),
        ).for_risk_reduction()

        await guard.check(_order(reduce_only=True))
