"""
Execution Engine - Execution Service.

============================================================
PURPOSE
============================================================
Main entry point for placing orders on behalf of an account.

============================================================
EXECUTION WORKFLOW
============================================================
1. Risk validation against a reference price (optional)
2. Resolve the account's credentials for the exchange
3. adapter.create_order(credentials, params, guard)
     guard.check -> bounds -> sign -> rate limit -> HTTP
4. Persist the TradeRecord and, unless the order only
   reduces exposure, a Position (optionally with a stop)

Accounts without a live connection trade on their own paper
wallet. Orders that report no fill price yet are recorded at
the reference price so daily notional limits still apply.

Authentication failures mark the connection as errored and
propagate. Nothing is retried here.

============================================================
"""

import logging
from decimal import Decimal
from typing import TYPE_CHECKING, Optional, Protocol

from core.exceptions import AuthenticationError, ValidationError

from .adapters.factory import AdapterFactory, AdapterPool
from .guard import SymbolHaltReader, TradingGuard
from .types import ExchangeCredentials, OrderParams, OrderResult, OrderSide, OrderStatus

if TYPE_CHECKING:
    from credential_vault.store import CredentialStore
    from storage.market_data import MarketDataCache
    from storage.repositories import TradingRepository


logger = logging.getLogger(__name__)


CLOSED_WITHOUT_FILL = (OrderStatus.CANCELLED, OrderStatus.REJECTED, OrderStatus.EXPIRED)


def paper_credentials(account_id: str) -> ExchangeCredentials:
    return ExchangeCredentials(api_key=f"paper-{account_id}", api_secret="paper")


class TradeValidator(Protocol):
    """Pre-trade risk check, e.g. RiskEngine."""

    async def validate_trade_risk(
        self,
        account_id: str,
        symbol: str,
        amount: Decimal,
        price: Decimal,
        side: OrderSide,
    ): ...


class ExecutionService:
    """
    Places orders for trading accounts.

    Example:
        service = ExecutionService(repository, store, pool, market_data, validator=risk_engine)
        result = await service.submit_order(account_id, "binance", params)
    """

    def __init__(
        self,
        repository: "TradingRepository",
        credential_store: "CredentialStore",
        adapter_pool: AdapterPool,
        market_data: Optional["MarketDataCache"] = None,
        validator: Optional[TradeValidator] = None,
        circuit_breaker: Optional[SymbolHaltReader] = None,
    ):
        self._repository = repository
        self._credential_store = credential_store
        self._adapter_pool = adapter_pool
        self._market_data = market_data
        self._validator = validator
        self._circuit_breaker = circuit_breaker

    def set_validator(self, validator: TradeValidator) -> None:
        self._validator = validator

    def guard_for(self, account_id: str) -> TradingGuard:
        return TradingGuard(account_id, self._repository, circuit_breaker=self._circuit_breaker)

    # --------------------------------------------------------
    # Order submission
    # --------------------------------------------------------

    async def _reference_price(self, params: OrderParams) -> Decimal:
        price = await self._known_price(params)
        if price is None:
            raise ValidationError(
                f"No reference price available for {params.symbol}",
                field="price",
            )
        return price

    async def _known_price(self, params: OrderParams) -> Optional[Decimal]:
        if params.price is not None and params.price > 0:
            return params.price
        if self._market_data is not None:
            price = await self._market_data.get_latest_price(params.symbol)
            if price is not None and price > 0:
                return price
        return None

    async def _validate(self, account_id: str, params: OrderParams) -> Optional[Decimal]:
        if self._validator is None:
            return None

        price = await self._reference_price(params)
        assessment = await self._validator.validate_trade_risk(
            account_id,
            params.symbol,
            params.amount,
            price,
            params.side,
        )
        if not assessment.valid:
            logger.warning(
                f"Trade rejected for account {account_id}: {params.side.value} "
                f"{params.amount} {params.symbol} score={assessment.risk_score} "
                f"reason={assessment.reason}"
            )
            raise ValidationError(
                f"Trade rejected by risk validation: {assessment.reason}",
                field="risk",
                context={"risk_score": assessment.risk_score},
            )
        return price

    async def submit_order(
        self,
        account_id: str,
        exchange_id: str,
        params: OrderParams,
        *,
        purpose: str = "manual",
        validate: bool = True,
        guard: Optional[TradingGuard] = None,
        stop_loss: Optional[Decimal] = None,
    ) -> OrderResult:
        """
        Submit an order for an account.

        Args:
            account_id: Trading account
            exchange_id: Exchange identifier
            params: Order request
            purpose: Recorded with the trade (manual, stop_loss, liquidation)
            validate: Run the risk validator first
            guard: Risk context; defaults to a plain guard for the account
            stop_loss: Stop price attached to the opened position

        Returns:
            OrderResult

        Raises:
            ValidationError: Risk rejection or missing reference price
            EmergencyStopError: Account is halted
            AuthenticationError: Credentials rejected (connection marked error)
        """
        reference = await self._validate(account_id, params) if validate else None

        exchange_id = AdapterFactory.profile(exchange_id).exchange_id
        connection = await self._credential_store.find_connection(account_id, exchange_id)
        adapter = self._adapter_pool.get_or_create(
            exchange_id,
            account_id=account_id,
            live_credentials=connection is not None,
        )
        credentials = (
            self._credential_store.load_credentials(connection)
            if connection is not None
            else paper_credentials(account_id)
        )

        try:
            result = await adapter.create_order(
                credentials,
                params,
                guard or self.guard_for(account_id),
            )
        except AuthenticationError as e:
            if connection is not None:
                await self._repository.mark_connection_error(connection.id, e.message)
            raise

        unfilled = result.status in CLOSED_WITHOUT_FILL and result.filled <= 0

        # Fresh market orders report no fill price yet
        price = result.average or result.price or reference or await self._known_price(params)
        notional = result.notional
        if notional <= 0 and price and not unfilled:
            notional = (result.filled if result.filled > 0 else params.amount) * price

        await self._repository.record_trade(
            account_id, adapter.exchange_id, result, purpose=purpose, notional=notional
        )

        if not params.reduce_only and not unfilled:
            await self._open_position(account_id, adapter.exchange_id, params, result, price, stop_loss)

        return result

    async def _open_position(
        self,
        account_id: str,
        exchange_id: str,
        params: OrderParams,
        result: OrderResult,
        price: Optional[Decimal],
        stop_loss: Optional[Decimal],
    ) -> None:
        if not price:
            logger.error(
                f"No entry price for order {result.id} ({params.symbol}); position not tracked"
            )
            return
        await self._repository.open_position(
            account_id=account_id,
            exchange_id=exchange_id,
            symbol=params.symbol,
            side=params.side.value,
            amount=result.filled if result.filled > 0 else params.amount,
            entry_price=price,
            stop_loss=stop_loss,
        )
