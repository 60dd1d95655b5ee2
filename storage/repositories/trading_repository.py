"""
Trading Repository.

============================================================
PURPOSE
============================================================
Database operations for the execution and risk core.

RESPONSIBILITIES:
- Accounts and the emergency-stop flag
- Exchange connections (encrypted credentials only)
- Holdings upserts and portfolio totals
- Position claims for stop-loss / liquidation
- Trade records and daily notional
- Risk alerts (append-only)
- Market price cache

CRITICAL REQUIREMENTS:
- Every operation runs in its own short session
- Position close claims are atomic conditional updates
- Emergency flag is always read fresh

============================================================
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from decimal import Decimal
from typing import AsyncIterator, List, Optional

from sqlalchemy import delete, desc, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.clock import ClockProtocol, get_clock
from core.exceptions import RepositoryError
from execution_engine.types import ConnectionStatus, OrderResult, to_decimal

from ..models import (
    ExchangeConnectionModel,
    HoldingModel,
    PositionModel,
    PricePointModel,
    RiskAlertModel,
    TradeRecordModel,
    TradingAccountModel,
)


logger = logging.getLogger(__name__)


POSITION_OPEN = "open"
POSITION_CLOSED = "closed"


# ============================================================
# TRADING REPOSITORY
# ============================================================

class TradingRepository:
    """
    Repository for the execution and risk core.

    Opens a new AsyncSession per call so no transaction is ever
    held across exchange I/O.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        clock: Optional[ClockProtocol] = None,
    ):
        """
        Initialize repository.

        Args:
            session_factory: SQLAlchemy async session factory
            clock: Clock for timestamps and the daily window
        """
        self._session_factory = session_factory
        self._clock = clock or get_clock()

    @asynccontextmanager
    async def _session(self, operation: str) -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_factory() as session:
                yield session
        except SQLAlchemyError as e:
            logger.error(f"Repository operation {operation} failed: {e}")
            raise RepositoryError(
                f"{operation} failed: {e}",
                context={"operation": operation},
                cause=e,
            ) from e

    # --------------------------------------------------------
    # ACCOUNT OPERATIONS
    # --------------------------------------------------------

    async def create_account(
        self,
        user_id: str,
        name: str = "",
        initial_balance: Decimal = Decimal("0"),
        account_id: Optional[str] = None,
    ) -> TradingAccountModel:
        model = TradingAccountModel(
            user_id=user_id,
            name=name,
            initial_balance=initial_balance,
            current_balance=initial_balance,
        )
        if account_id:
            model.account_id = account_id

        async with self._session("create_account") as session:
            session.add(model)
            await session.commit()
        return model

    async def get_account(self, account_id: str) -> Optional[TradingAccountModel]:
        async with self._session("get_account") as session:
            return await session.get(TradingAccountModel, account_id)

    async def list_active_accounts(self) -> List[TradingAccountModel]:
        async with self._session("list_active_accounts") as session:
            result = await session.execute(
                select(TradingAccountModel).where(TradingAccountModel.is_active.is_(True))
            )
            return list(result.scalars().all())

    async def set_emergency_stop(self, account_id: str, reason: str) -> bool:
        """
        Flag an account as emergency-stopped.

        Returns:
            True if the flag was newly set
        """
        async with self._session("set_emergency_stop") as session:
            result = await session.execute(
                update(TradingAccountModel)
                .where(
                    TradingAccountModel.account_id == account_id,
                    TradingAccountModel.emergency_stop.is_(False),
                )
                .values(
                    emergency_stop=True,
                    emergency_reason=reason,
                    emergency_triggered_at=self._clock.now(),
                )
            )
            await session.commit()
            return result.rowcount == 1

    async def clear_emergency_stop(self, account_id: str) -> bool:
        async with self._session("clear_emergency_stop") as session:
            result = await session.execute(
                update(TradingAccountModel)
                .where(
                    TradingAccountModel.account_id == account_id,
                    TradingAccountModel.emergency_stop.is_(True),
                )
                .values(emergency_stop=False, emergency_reason=None, emergency_triggered_at=None)
            )
            await session.commit()
            return result.rowcount == 1

    async def update_account_balance(self, account_id: str, current_balance: Decimal) -> None:
        async with self._session("update_account_balance") as session:
            await session.execute(
                update(TradingAccountModel)
                .where(TradingAccountModel.account_id == account_id)
                .values(current_balance=current_balance)
            )
            await session.commit()

    # --------------------------------------------------------
    # CONNECTION OPERATIONS
    # --------------------------------------------------------

    async def add_connection(
        self,
        user_id: str,
        account_id: str,
        exchange_id: str,
        api_key_encrypted: str,
        api_secret_encrypted: str,
        encryption_iv: str,
        encryption_salt: str,
        passphrase_encrypted: Optional[str] = None,
        is_testnet: bool = False,
    ) -> ExchangeConnectionModel:
        model = ExchangeConnectionModel(
            user_id=user_id,
            account_id=account_id,
            exchange_id=exchange_id,
            is_testnet=is_testnet,
            connection_status=ConnectionStatus.DISCONNECTED.value,
            api_key_encrypted=api_key_encrypted,
            api_secret_encrypted=api_secret_encrypted,
            passphrase_encrypted=passphrase_encrypted,
            encryption_iv=encryption_iv,
            encryption_salt=encryption_salt,
        )
        async with self._session("add_connection") as session:
            session.add(model)
            await session.commit()
        return model

    async def delete_connection(self, connection_id: str) -> bool:
        async with self._session("delete_connection") as session:
            result = await session.execute(
                delete(ExchangeConnectionModel).where(ExchangeConnectionModel.id == connection_id)
            )
            await session.commit()
            return result.rowcount == 1

    async def get_connection(self, connection_id: str) -> Optional[ExchangeConnectionModel]:
        async with self._session("get_connection") as session:
            return await session.get(ExchangeConnectionModel, connection_id)

    async def list_active_connections(
        self,
        user_id: Optional[str] = None,
        account_id: Optional[str] = None,
        connection_id: Optional[str] = None,
    ) -> List[ExchangeConnectionModel]:
        stmt = select(ExchangeConnectionModel).where(ExchangeConnectionModel.is_active.is_(True))
        if user_id:
            stmt = stmt.where(ExchangeConnectionModel.user_id == user_id)
        if account_id:
            stmt = stmt.where(ExchangeConnectionModel.account_id == account_id)
        if connection_id:
            stmt = stmt.where(ExchangeConnectionModel.id == connection_id)

        async with self._session("list_active_connections") as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def find_active_connection(
        self,
        account_id: str,
        exchange_id: str,
    ) -> Optional[ExchangeConnectionModel]:
        connections = await self.list_active_connections(account_id=account_id)
        for connection in connections:
            if connection.exchange_id == exchange_id:
                return connection
        return None

    async def mark_connection_synced(self, connection_id: str) -> None:
        async with self._session("mark_connection_synced") as session:
            await session.execute(
                update(ExchangeConnectionModel)
                .where(ExchangeConnectionModel.id == connection_id)
                .values(
                    last_sync_at=self._clock.now(),
                    connection_status=ConnectionStatus.CONNECTED.value,
                    error_message=None,
                )
            )
            await session.commit()

    async def mark_connection_error(self, connection_id: str, message: str) -> None:
        """Set status error; the message is never left empty."""
        message = (message or "").strip() or "Unknown error"
        async with self._session("mark_connection_error") as session:
            await session.execute(
                update(ExchangeConnectionModel)
                .where(ExchangeConnectionModel.id == connection_id)
                .values(
                    connection_status=ConnectionStatus.ERROR.value,
                    error_message=message,
                )
            )
            await session.commit()

    # --------------------------------------------------------
    # HOLDING OPERATIONS
    # --------------------------------------------------------

    async def upsert_holding(
        self,
        account_id: str,
        symbol: str,
        quantity: Decimal,
        price: Decimal,
    ) -> HoldingModel:
        """Insert or overwrite the (account, symbol) holding. Last writer wins."""
        async with self._session("upsert_holding") as session:
            result = await session.execute(
                select(HoldingModel).where(
                    HoldingModel.account_id == account_id,
                    HoldingModel.symbol == symbol,
                )
            )
            holding = result.scalar_one_or_none()
            if holding is None:
                holding = HoldingModel(account_id=account_id, symbol=symbol)
                session.add(holding)

            holding.quantity = quantity
            holding.current_price = price
            holding.current_value = quantity * price
            holding.updated_at = self._clock.now()

            await session.commit()
            return holding

    async def list_holdings(self, account_id: str) -> List[HoldingModel]:
        async with self._session("list_holdings") as session:
            result = await session.execute(
                select(HoldingModel).where(HoldingModel.account_id == account_id)
            )
            return list(result.scalars().all())

    async def total_holdings_value(self, account_id: str) -> Decimal:
        async with self._session("total_holdings_value") as session:
            result = await session.execute(
                select(func.coalesce(func.sum(HoldingModel.current_value), 0))
                .where(HoldingModel.account_id == account_id)
            )
            return to_decimal(result.scalar_one())

    # --------------------------------------------------------
    # POSITION OPERATIONS
    # --------------------------------------------------------

    async def open_position(
        self,
        account_id: str,
        exchange_id: str,
        symbol: str,
        side: str,
        amount: Decimal,
        entry_price: Decimal,
        stop_loss: Optional[Decimal] = None,
    ) -> PositionModel:
        model = PositionModel(
            account_id=account_id,
            exchange_id=exchange_id,
            symbol=symbol,
            side=side,
            amount=amount,
            entry_price=entry_price,
            stop_loss=stop_loss,
            status=POSITION_OPEN,
            opened_at=self._clock.now(),
        )
        async with self._session("open_position") as session:
            session.add(model)
            await session.commit()
        return model

    async def get_position(self, position_id: str) -> Optional[PositionModel]:
        async with self._session("get_position") as session:
            return await session.get(PositionModel, position_id)

    async def list_open_positions(
        self,
        account_id: str,
        with_stop_loss: bool = False,
    ) -> List[PositionModel]:
        stmt = select(PositionModel).where(
            PositionModel.account_id == account_id,
            PositionModel.status == POSITION_OPEN,
        )
        if with_stop_loss:
            stmt = stmt.where(PositionModel.stop_loss.is_not(None))

        async with self._session("list_open_positions") as session:
            result = await session.execute(stmt.order_by(PositionModel.opened_at))
            return list(result.scalars().all())

    async def claim_position_close(
        self,
        position_id: str,
        reason: str,
        close_price: Optional[Decimal] = None,
    ) -> bool:
        """
        Atomically move a position from open to closed.

        Returns:
            True if this caller won the claim
        """
        async with self._session("claim_position_close") as session:
            result = await session.execute(
                update(PositionModel)
                .where(
                    PositionModel.id == position_id,
                    PositionModel.status == POSITION_OPEN,
                )
                .values(
                    status=POSITION_CLOSED,
                    closed_at=self._clock.now(),
                    close_reason=reason,
                    close_price=close_price,
                )
            )
            await session.commit()
            return result.rowcount == 1

    async def reopen_position(self, position_id: str) -> bool:
        """Undo a claim whose closing order failed."""
        async with self._session("reopen_position") as session:
            result = await session.execute(
                update(PositionModel)
                .where(
                    PositionModel.id == position_id,
                    PositionModel.status == POSITION_CLOSED,
                )
                .values(status=POSITION_OPEN, closed_at=None, close_reason=None, close_price=None)
            )
            await session.commit()
            return result.rowcount == 1

    # --------------------------------------------------------
    # TRADE OPERATIONS
    # --------------------------------------------------------

    async def record_trade(
        self,
        account_id: str,
        exchange_id: str,
        result: OrderResult,
        purpose: str = "manual",
        notional: Optional[Decimal] = None,
    ) -> TradeRecordModel:
        """Record an order; notional defaults to the value the result reports."""
        model = TradeRecordModel(
            account_id=account_id,
            exchange_id=exchange_id,
            order_id=result.id,
            symbol=result.symbol,
            side=result.side.value,
            order_type=result.type.value,
            status=result.status.value,
            amount=result.amount,
            filled=result.filled,
            price=result.price,
            average=result.average,
            notional=notional if notional is not None else result.notional,
            fee=result.fee.cost if result.fee else None,
            fee_currency=result.fee.currency if result.fee else None,
            purpose=purpose,
            created_at=self._clock.now(),
        )
        async with self._session("record_trade") as session:
            session.add(model)
            await session.commit()
        return model

    async def list_trades(self, account_id: str) -> List[TradeRecordModel]:
        async with self._session("list_trades") as session:
            result = await session.execute(
                select(TradeRecordModel)
                .where(TradeRecordModel.account_id == account_id)
                .order_by(TradeRecordModel.created_at)
            )
            return list(result.scalars().all())

    async def get_daily_traded_notional(
        self,
        account_id: str,
        since: Optional[datetime] = None,
    ) -> Decimal:
        """Sum of trade notional since midnight UTC."""
        since = since or self._clock.start_of_day()
        async with self._session("get_daily_traded_notional") as session:
            result = await session.execute(
                select(func.coalesce(func.sum(TradeRecordModel.notional), 0))
                .where(
                    TradeRecordModel.account_id == account_id,
                    TradeRecordModel.created_at >= since,
                )
            )
            return to_decimal(result.scalar_one())

    # --------------------------------------------------------
    # RISK ALERT OPERATIONS
    # --------------------------------------------------------

    async def add_risk_alert(
        self,
        account_id: str,
        risk_type: str,
        current_value: Decimal,
        threshold_value: Decimal,
        risk_level: str,
        alert_message: str,
        timestamp: Optional[datetime] = None,
    ) -> RiskAlertModel:
        model = RiskAlertModel(
            account_id=account_id,
            risk_type=risk_type,
            current_value=current_value,
            threshold_value=threshold_value,
            risk_level=risk_level,
            alert_message=alert_message,
            timestamp=timestamp or self._clock.now(),
        )
        async with self._session("add_risk_alert") as session:
            session.add(model)
            await session.commit()
        return model

    async def list_risk_alerts(
        self,
        account_id: str,
        risk_type: Optional[str] = None,
    ) -> List[RiskAlertModel]:
        stmt = select(RiskAlertModel).where(RiskAlertModel.account_id == account_id)
        if risk_type:
            stmt = stmt.where(RiskAlertModel.risk_type == risk_type)

        async with self._session("list_risk_alerts") as session:
            result = await session.execute(stmt.order_by(RiskAlertModel.timestamp))
            return list(result.scalars().all())

    # --------------------------------------------------------
    # MARKET PRICE OPERATIONS
    # --------------------------------------------------------

    async def record_price(
        self,
        symbol: str,
        price: Decimal,
        observed_at: Optional[datetime] = None,
    ) -> None:
        async with self._session("record_price") as session:
            session.add(PricePointModel(
                symbol=symbol,
                price=price,
                observed_at=observed_at or self._clock.now(),
            ))
            await session.commit()

    async def latest_price(self, symbol: str) -> Optional[Decimal]:
        async with self._session("latest_price") as session:
            result = await session.execute(
                select(PricePointModel.price)
                .where(PricePointModel.symbol == symbol)
                .order_by(desc(PricePointModel.observed_at), desc(PricePointModel.id))
                .limit(1)
            )
            price = result.scalar_one_or_none()
            return to_decimal(price) if price is not None else None

    async def price_history(self, symbol: str, limit: int = 100) -> List[Decimal]:
        """Most recent prices, oldest first."""
        async with self._session("price_history") as session:
            result = await session.execute(
                select(PricePointModel.price)
                .where(PricePointModel.symbol == symbol)
                .order_by(desc(PricePointModel.observed_at), desc(PricePointModel.id))
                .limit(limit)
            )
            prices = [to_decimal(p) for p in result.scalars().all()]
        prices.reverse()
        return prices

    async def price_symbols(self) -> List[str]:
        """Every symbol with at least one cached price."""
        async with self._session("price_symbols") as session:
            result = await session.execute(
                select(PricePointModel.symbol).distinct().order_by(PricePointModel.symbol)
            )
            return list(result.scalars().all())
