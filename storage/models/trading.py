"""
Trading ORM Models.

============================================================
PURPOSE
============================================================
Persistent state of the execution and risk core.

TABLES:
- trading_accounts: Balances and the emergency-stop flag
- exchange_connections: Linked exchanges and encrypted credentials
- portfolio_holdings: Per-account holdings, refreshed by sync
- positions: Open/closed positions with optional stop loss
- trade_records: Every order result received from an adapter
- risk_alerts: Append-only audit trail of risk actions
- market_price_cache: Latest and historical prices

CRITICAL:
- Credential columns hold base64 ciphertext only
- connection_status = error requires a non-empty error_message

============================================================
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional
import uuid

from sqlalchemy import (
    Boolean,
    DateTime,
    Index,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin


def _new_id() -> str:
    return str(uuid.uuid4())


# ============================================================
# ACCOUNTS
# ============================================================

class TradingAccountModel(Base, TimestampMixin):
    """Trading account with balances and the emergency-stop flag."""

    __tablename__ = "trading_accounts"

    account_id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False, default="")

    initial_balance: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    current_balance: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    emergency_stop: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    emergency_reason: Mapped[Optional[str]] = mapped_column(Text)
    emergency_triggered_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))


class ExchangeConnectionModel(Base, TimestampMixin):
    """
    Linked exchange account.

    The credential lives on the same row and is deleted with it.
    """

    __tablename__ = "exchange_connections"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    exchange_id: Mapped[str] = mapped_column(String(32), nullable=False)
    account_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_testnet: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    last_sync_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    connection_status: Mapped[str] = mapped_column(String(16), nullable=False, default="disconnected")
    error_message: Mapped[Optional[str]] = mapped_column(Text)

    # Credential (ciphertext only)
    api_key_encrypted: Mapped[str] = mapped_column(Text, nullable=False)
    api_secret_encrypted: Mapped[str] = mapped_column(Text, nullable=False)
    passphrase_encrypted: Mapped[Optional[str]] = mapped_column(Text)
    encryption_iv: Mapped[str] = mapped_column(String(32), nullable=False)
    encryption_salt: Mapped[str] = mapped_column(String(48), nullable=False)

    __table_args__ = (
        Index("ix_exchange_connections_account_exchange", "account_id", "exchange_id"),
    )


# ============================================================
# PORTFOLIO
# ============================================================

class HoldingModel(Base):
    """Per-account holding; current_value = quantity * current_price."""

    __tablename__ = "portfolio_holdings"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    account_id: Mapped[str] = mapped_column(String(64), nullable=False)
    symbol: Mapped[str] = mapped_column(String(32), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(nullable=False)
    current_price: Mapped[Decimal] = mapped_column(nullable=False)
    current_value: Mapped[Decimal] = mapped_column(nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("account_id", "symbol", name="uq_holding_account_symbol"),
    )


class PositionModel(Base):
    """Open or closed trading position."""

    __tablename__ = "positions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    account_id: Mapped[str] = mapped_column(String(64), nullable=False)
    exchange_id: Mapped[str] = mapped_column(String(32), nullable=False)
    symbol: Mapped[str] = mapped_column(String(32), nullable=False)
    side: Mapped[str] = mapped_column(String(8), nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    entry_price: Mapped[Decimal] = mapped_column(nullable=False)
    stop_loss: Mapped[Optional[Decimal]] = mapped_column()

    status: Mapped[str] = mapped_column(String(16), nullable=False, default="open")
    opened_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    closed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    close_reason: Mapped[Optional[str]] = mapped_column(String(32))
    close_price: Mapped[Optional[Decimal]] = mapped_column()

    __table_args__ = (
        Index("ix_positions_account_status", "account_id", "status"),
    )


class TradeRecordModel(Base):
    """Persisted order result."""

    __tablename__ = "trade_records"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    account_id: Mapped[str] = mapped_column(String(64), nullable=False)
    exchange_id: Mapped[str] = mapped_column(String(32), nullable=False)
    order_id: Mapped[str] = mapped_column(String(128), nullable=False)
    symbol: Mapped[str] = mapped_column(String(32), nullable=False)
    side: Mapped[str] = mapped_column(String(8), nullable=False)
    order_type: Mapped[str] = mapped_column(String(16), nullable=False)
    status: Mapped[str] = mapped_column(String(24), nullable=False)

    amount: Mapped[Decimal] = mapped_column(nullable=False)
    filled: Mapped[Decimal] = mapped_column(nullable=False)
    price: Mapped[Optional[Decimal]] = mapped_column()
    average: Mapped[Optional[Decimal]] = mapped_column()
    notional: Mapped[Decimal] = mapped_column(nullable=False)
    fee: Mapped[Optional[Decimal]] = mapped_column()
    fee_currency: Mapped[Optional[str]] = mapped_column(String(16))

    purpose: Mapped[str] = mapped_column(String(32), nullable=False, default="manual")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_trade_records_account_created", "account_id", "created_at"),
    )


# ============================================================
# RISK & MARKET DATA
# ============================================================

class RiskAlertModel(Base):
    """Append-only risk alert."""

    __tablename__ = "risk_alerts"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    account_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    risk_type: Mapped[str] = mapped_column(String(48), nullable=False)
    current_value: Mapped[Decimal] = mapped_column(nullable=False)
    threshold_value: Mapped[Decimal] = mapped_column(nullable=False)
    risk_level: Mapped[str] = mapped_column(String(16), nullable=False)
    alert_message: Mapped[str] = mapped_column(Text, nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class PricePointModel(Base):
    """Cached market price observation."""

    __tablename__ = "market_price_cache"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    symbol: Mapped[str] = mapped_column(String(32), nullable=False)
    price: Mapped[Decimal] = mapped_column(nullable=False)
    observed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_market_price_cache_symbol_observed", "symbol", "observed_at"),
    )
