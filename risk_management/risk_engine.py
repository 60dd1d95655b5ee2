"""
Risk Management - Risk Engine.

============================================================
PURPOSE
============================================================
Portfolio risk assessment, pre-trade validation and the
automated protective actions for trading accounts.

============================================================
OPERATIONS
============================================================
- assess_portfolio_risk: value, concentration, correlation,
  volatility of the persisted holdings
- validate_trade_risk: position size, post-trade
  concentration and daily notional checks, fail closed
- monitor_stop_losses: close positions whose stop was hit
- emergency_liquidate: close everything, halt the account
- clear_emergency_stop: administrative release
- calculate_optimal_position_size: damped Kelly sizing
- check_account_limits: drawdown, concentration,
  volatility and correlation alerts

============================================================
CLOSING ORDERS
============================================================
Every closing order follows the same sequence:

1. Claim the position (conditional UPDATE open -> closed)
2. Submit a reduce-only opposing market order through a
   risk-reduction guard
3. On failure, reopen the position and log; the next
   monitor tick retries

A position that is already claimed is never ordered twice.

============================================================
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING, Dict, List, Optional, Protocol

from core.clock import ClockProtocol, get_clock
from execution_engine.adapters.symbols import base_asset
from execution_engine.guard import TradingGuard
from execution_engine.types import OrderParams, OrderResult, OrderSide, OrderType

from .circuit_breaker import PriceCircuitBreaker
from .config import (
    CONCENTRATION_PENALTY_FACTOR,
    CONCENTRATION_PENALTY_THRESHOLD,
    DRAWDOWN_WARNING_RATIO,
    MAX_POST_TRADE_CONCENTRATION,
    RiskEngineConfig,
    RiskParameters,
)
from .metrics import CovarianceVolatilityMetric, PearsonCorrelationMetric, PortfolioMetric

if TYPE_CHECKING:
    from storage.market_data import MarketDataCache
    from storage.models import PositionModel, TradingAccountModel
    from storage.repositories import TradingRepository


logger = logging.getLogger(__name__)


# Purposes recorded on closing trades
PURPOSE_STOP_LOSS = "stop_loss"
PURPOSE_LIQUIDATION = "emergency_liquidation"

SYSTEM_ERROR_REASON = "Risk validation system error"


class OrderSubmitter(Protocol):
    """Places orders for an account, e.g. ExecutionService."""

    def guard_for(self, account_id: str) -> TradingGuard: ...

    async def submit_order(
        self,
        account_id: str,
        exchange_id: str,
        params: OrderParams,
        *,
        purpose: str = "manual",
        validate: bool = True,
        guard: Optional[TradingGuard] = None,
    ) -> OrderResult: ...


# ============================================================
# RESULT TYPES
# ============================================================

@dataclass
class PortfolioRisk:
    """Snapshot of an account's portfolio risk. Not persisted."""

    total_value: Decimal
    total_risk: Decimal
    concentration: Dict[str, Decimal]
    """Asset -> fraction of total value."""

    correlation: Decimal
    volatility: Decimal


@dataclass
class TradeRiskAssessment:
    """Outcome of a pre-trade check."""

    valid: bool
    risk_score: int
    """0 (lowest) to 10 (highest)."""

    reason: Optional[str] = None


@dataclass
class RiskAlert:
    account_id: str
    risk_type: str
    current_value: Decimal
    threshold_value: Decimal
    risk_level: str
    alert_message: str
    timestamp: datetime


@dataclass
class StopLossExecution:
    """One triggered stop loss."""

    position_id: str
    symbol: str
    side: OrderSide
    """Side of the closing order."""

    amount: Decimal
    stop_loss: Decimal
    trigger_price: Decimal
    order_id: Optional[str] = None
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.error is None


@dataclass
class LiquidationReport:
    """Outcome of an emergency liquidation."""

    account_id: str
    reason: str
    orders_submitted: int = 0
    """Closing orders sent, failed ones included."""

    positions_closed: List[str] = field(default_factory=list)
    failures: Dict[str, str] = field(default_factory=dict)
    """Position id -> error for positions left open."""

    emergency_stop_set: bool = False
    """Whether this call set the flag (False if already set)."""

    alert_written: bool = False

    @property
    def success(self) -> bool:
        return not self.failures


# ============================================================
# RISK ENGINE
# ============================================================

class RiskEngine:
    """
    Risk assessment and protective actions.

    Per-account RiskParameters override the configured defaults.

    Example:
        engine = RiskEngine(repository, market_data, execution_service)
        assessment = await engine.validate_trade_risk(
            account_id, "BTC/USDT", Decimal("0.01"), Decimal("50000"), OrderSide.BUY
        )
    """

    def __init__(
        self,
        repository: "TradingRepository",
        market_data: "MarketDataCache",
        order_submitter: OrderSubmitter,
        config: Optional[RiskEngineConfig] = None,
        correlation_metric: Optional[PortfolioMetric] = None,
        volatility_metric: Optional[PortfolioMetric] = None,
        circuit_breaker: Optional[PriceCircuitBreaker] = None,
        clock: Optional[ClockProtocol] = None,
    ):
        self._repository = repository
        self._market_data = market_data
        self._submitter = order_submitter
        self._config = config or RiskEngineConfig()
        self._clock = clock or get_clock()
        self._circuit_breaker = circuit_breaker

        self._correlation = correlation_metric or PearsonCorrelationMetric(
            market_data,
            history_length=self._config.history_length,
            min_data_points=self._config.min_data_points,
        )
        self._volatility = volatility_metric or CovarianceVolatilityMetric(
            market_data,
            history_length=self._config.history_length,
            min_data_points=self._config.min_data_points,
        )

        self._parameters: Dict[str, RiskParameters] = {}

    @property
    def circuit_breaker(self) -> Optional[PriceCircuitBreaker]:
        return self._circuit_breaker

    def parameters_for(self, account_id: str) -> RiskParameters:
        return self._parameters.get(account_id, self._config.default_parameters)

    def set_parameters(self, account_id: str, parameters: RiskParameters) -> None:
        self._parameters[account_id] = parameters
        logger.info(f"Risk parameters updated for account {account_id}: {parameters}")

    # --------------------------------------------------------
    # Assessment
    # --------------------------------------------------------

    async def assess_portfolio_risk(self, account_id: str) -> PortfolioRisk:
        """
        Compute the risk snapshot of an account's holdings.

        Raises:
            RepositoryError: Holdings could not be read
        """
        holdings = await self._repository.list_holdings(account_id)

        values: Dict[str, Decimal] = {}
        for holding in holdings:
            values[holding.symbol] = values.get(holding.symbol, Decimal("0")) + holding.current_value
        total_value = sum(values.values(), Decimal("0"))

        concentration: Dict[str, Decimal] = {}
        total_risk = Decimal("0")
        for symbol, value in values.items():
            weight = value / total_value if total_value > 0 else Decimal("0")
            concentration[symbol] = weight
            if weight > CONCENTRATION_PENALTY_THRESHOLD:
                total_risk += weight * CONCENTRATION_PENALTY_FACTOR

        correlation = await self._correlation.compute(concentration)
        volatility = await self._volatility.compute(concentration)

        return PortfolioRisk(
            total_value=total_value,
            total_risk=total_risk,
            concentration=concentration,
            correlation=correlation,
            volatility=volatility,
        )

    async def validate_trade_risk(
        self,
        account_id: str,
        symbol: str,
        amount: Decimal,
        price: Decimal,
        side: OrderSide,
    ) -> TradeRiskAssessment:
        """
        Pre-trade check. Never raises; internal failures reject the trade.

        Args:
            account_id: Trading account
            symbol: Pair such as BTC/USDT
            amount: Base-asset amount
            price: Reference price
            side: Order side

        Returns:
            TradeRiskAssessment
        """
        try:
            return await self._check_trade(account_id, symbol, amount, price, side)
        except Exception as e:
            logger.error(f"Trade risk validation failed for account {account_id}: {e}")
            return TradeRiskAssessment(valid=False, risk_score=10, reason=SYSTEM_ERROR_REASON)

    async def _check_trade(
        self,
        account_id: str,
        symbol: str,
        amount: Decimal,
        price: Decimal,
        side: OrderSide,
    ) -> TradeRiskAssessment:
        parameters = self.parameters_for(account_id)
        trade_value = amount * price

        if trade_value > parameters.max_position_size:
            return TradeRiskAssessment(
                valid=False,
                risk_score=10,
                reason=f"Trade value {trade_value} exceeds max position size {parameters.max_position_size}",
            )

        portfolio = await self.assess_portfolio_risk(account_id)

        if side is OrderSide.BUY:
            asset = base_asset(symbol)
            weight = portfolio.concentration.get(asset, Decimal("0"))
            denominator = portfolio.total_value + trade_value
            new_weight = (
                (weight * portfolio.total_value + trade_value) / denominator
                if denominator > 0 else Decimal("0")
            )
            if new_weight > MAX_POST_TRADE_CONCENTRATION:
                return TradeRiskAssessment(
                    valid=False,
                    risk_score=8,
                    reason=f"Trade would increase {asset} concentration to {new_weight * 100:.1f}%",
                )

        daily_notional = await self._repository.get_daily_traded_notional(account_id)
        if daily_notional + trade_value > parameters.max_daily_loss:
            return TradeRiskAssessment(
                valid=False,
                risk_score=9,
                reason=(
                    f"Daily volume limit exceeded: {daily_notional + trade_value} > "
                    f"{parameters.max_daily_loss}"
                ),
            )

        score = (
            min(trade_value / parameters.max_position_size * 5, Decimal("5"))
            + min(portfolio.volatility * 10, Decimal("3"))
            + min(portfolio.correlation * 2, Decimal("2"))
        )
        risk_score = int(score.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
        return TradeRiskAssessment(valid=True, risk_score=max(0, min(risk_score, 10)))

    # --------------------------------------------------------
    # Position sizing
    # --------------------------------------------------------

    def calculate_optimal_position_size(
        self,
        account_balance: Decimal,
        volatility: Decimal,
        risk_percentage: Decimal = Decimal("2"),
    ) -> Decimal:
        """
        Kelly fraction damped by volatility and capped at risk_percentage.

        Returns:
            Quote-currency amount to put at risk
        """
        kelly = self._config.kelly
        fraction = (
            kelly.win_rate * kelly.avg_win - (1 - kelly.win_rate) * kelly.avg_loss
        ) / kelly.avg_win
        if fraction <= 0:
            return Decimal("0")

        damping = max(Decimal("0.1"), 1 - volatility)
        optimal = min(fraction * damping, risk_percentage / 100)
        return account_balance * optimal

    # --------------------------------------------------------
    # Closing orders
    # --------------------------------------------------------

    async def _close_position(
        self,
        position: "PositionModel",
        guard: TradingGuard,
        purpose: str,
        close_price: Optional[Decimal],
    ) -> OrderResult:
        """
        Claim then close one position.

        Raises:
            LookupError: Position was already claimed elsewhere
            Exception: Whatever the order submission raised (position reopened)
        """
        claimed = await self._repository.claim_position_close(position.id, purpose, close_price)
        if not claimed:
            raise LookupError(f"Position {position.id} already closed")

        params = OrderParams(
            symbol=position.symbol,
            side=OrderSide(position.side).opposite,
            type=OrderType.MARKET,
            amount=position.amount,
            reduce_only=True,
        )
        try:
            return await self._submitter.submit_order(
                position.account_id,
                position.exchange_id,
                params,
                purpose=purpose,
                validate=False,
                guard=guard,
            )
        except Exception:
            await self._repository.reopen_position(position.id)
            raise

    @staticmethod
    def _stop_hit(position: "PositionModel", price: Decimal) -> bool:
        if position.side == OrderSide.BUY.value:
            return price <= position.stop_loss
        return price >= position.stop_loss

    async def monitor_stop_losses(self, account_id: str) -> List[StopLossExecution]:
        """
        Close every open position whose stop loss has been reached.

        Returns:
            One StopLossExecution per triggered position
        """
        positions = await self._repository.list_open_positions(account_id, with_stop_loss=True)
        guard = self._submitter.guard_for(account_id).for_risk_reduction()
        executions: List[StopLossExecution] = []

        for position in positions:
            price = await self._market_data.get_latest_price(position.symbol)
            if price is None or not self._stop_hit(position, price):
                continue

            logger.warning(
                f"Stop-loss triggered for {position.symbol} at {price} "
                f"(stop {position.stop_loss}, position {position.id})"
            )
            execution = StopLossExecution(
                position_id=position.id,
                symbol=position.symbol,
                side=OrderSide(position.side).opposite,
                amount=position.amount,
                stop_loss=position.stop_loss,
                trigger_price=price,
            )

            try:
                result = await self._close_position(position, guard, PURPOSE_STOP_LOSS, price)
            except LookupError as e:
                logger.debug(str(e))
                continue
            except Exception as e:
                execution.error = str(e) or type(e).__name__
                logger.error(f"Stop-loss order failed for position {position.id}: {execution.error}")
                executions.append(execution)
                continue

            execution.order_id = result.id
            executions.append(execution)
            await self._write_alert(
                account_id,
                risk_type="stop_loss_triggered",
                current_value=price,
                threshold_value=position.stop_loss,
                risk_level="critical",
                message=f"Stop-loss executed for {position.symbol} at {price}",
            )

        return executions

    async def emergency_liquidate(self, account_id: str, reason: str) -> LiquidationReport:
        """
        Close all open positions and emergency-stop the account.

        The flag is set before any closing order so that no new
        order can slip in. Reduce-only closing orders pass the halt.

        Returns:
            LiquidationReport
        """
        logger.critical(f"EMERGENCY LIQUIDATION TRIGGERED for account {account_id}: {reason}")

        report = LiquidationReport(account_id=account_id, reason=reason)
        report.emergency_stop_set = await self._repository.set_emergency_stop(account_id, reason)

        guard = self._submitter.guard_for(account_id).for_risk_reduction()
        positions = await self._repository.list_open_positions(account_id)

        for position in positions:
            price = await self._market_data.get_latest_price(position.symbol)
            try:
                await self._close_position(
                    position,
                    guard,
                    PURPOSE_LIQUIDATION,
                    price if price is not None else position.entry_price,
                )
            except LookupError as e:
                logger.debug(str(e))
                continue
            except Exception as e:
                report.failures[position.id] = str(e) or type(e).__name__
                report.orders_submitted += 1
                logger.critical(
                    f"Liquidation order failed for position {position.id} "
                    f"({position.symbol}): {report.failures[position.id]}"
                )
                continue

            report.orders_submitted += 1
            report.positions_closed.append(position.id)

        if report.emergency_stop_set or report.positions_closed:
            await self._write_alert(
                account_id,
                risk_type="emergency_liquidation",
                current_value=Decimal(len(report.positions_closed)),
                threshold_value=Decimal("0"),
                risk_level="emergency",
                message=f"Emergency liquidation: {reason}",
            )
            report.alert_written = True

        logger.critical(
            f"Emergency liquidation of account {account_id} finished: "
            f"{len(report.positions_closed)} closed, {len(report.failures)} failed"
        )
        return report

    async def clear_emergency_stop(self, account_id: str, cleared_by: str) -> bool:
        """
        Administrative release of an emergency stop.

        Returns:
            True if the flag was set and is now cleared
        """
        cleared = await self._repository.clear_emergency_stop(account_id)
        if cleared:
            logger.warning(f"Emergency stop cleared for account {account_id} by {cleared_by}")
            await self._write_alert(
                account_id,
                risk_type="emergency_stop_cleared",
                current_value=Decimal("0"),
                threshold_value=Decimal("0"),
                risk_level="warning",
                message=f"Emergency stop cleared by {cleared_by}",
            )
        else:
            logger.warning(f"Emergency stop clear requested by {cleared_by} for account {account_id}, flag not set")
        return cleared

    # --------------------------------------------------------
    # Account limits
    # --------------------------------------------------------

    async def check_account_limits(self, account_id: str) -> List[RiskAlert]:
        """
        Drawdown, concentration, volatility and correlation checks.

        A drawdown at or beyond max_drawdown triggers emergency
        liquidation. Accounts already emergency-stopped are skipped.

        Returns:
            Alerts written by this check
        """
        account = await self._repository.get_account(account_id)
        if account is None or account.emergency_stop:
            return []

        parameters = self.parameters_for(account_id)
        alerts: List[RiskAlert] = []

        drawdown_alert = await self._check_drawdown(account, parameters)
        if drawdown_alert is not None:
            alerts.append(drawdown_alert)
            if drawdown_alert.risk_level == "emergency":
                return alerts

        portfolio = await self.assess_portfolio_risk(account_id)

        for symbol, weight in sorted(portfolio.concentration.items()):
            if weight > CONCENTRATION_PENALTY_THRESHOLD:
                alerts.append(await self._write_alert(
                    account_id,
                    risk_type="concentration",
                    current_value=weight,
                    threshold_value=CONCENTRATION_PENALTY_THRESHOLD,
                    risk_level="warning",
                    message=f"{symbol} represents {weight * 100:.2f}% of portfolio",
                ))

        if portfolio.volatility > parameters.volatility_threshold:
            alerts.append(await self._write_alert(
                account_id,
                risk_type="volatility_threshold",
                current_value=portfolio.volatility,
                threshold_value=parameters.volatility_threshold,
                risk_level="warning",
                message=f"Portfolio volatility {portfolio.volatility} above {parameters.volatility_threshold}",
            ))

        if portfolio.correlation > parameters.correlation_limit:
            alerts.append(await self._write_alert(
                account_id,
                risk_type="correlation",
                current_value=portfolio.correlation,
                threshold_value=parameters.correlation_limit,
                risk_level="warning",
                message=f"Average correlation {portfolio.correlation} above {parameters.correlation_limit}",
            ))

        return alerts

    async def _check_drawdown(
        self,
        account: "TradingAccountModel",
        parameters: RiskParameters,
    ) -> Optional[RiskAlert]:
        if account.initial_balance <= 0:
            return None

        drawdown = (account.initial_balance - account.current_balance) / account.initial_balance * 100

        if drawdown >= parameters.max_drawdown:
            alert = await self._write_alert(
                account.account_id,
                risk_type="drawdown",
                current_value=drawdown,
                threshold_value=parameters.max_drawdown,
                risk_level="emergency",
                message=(
                    f"Account drawdown of {drawdown:.2f}% has exceeded "
                    f"the {parameters.max_drawdown}% limit"
                ),
            )
            await self.emergency_liquidate(account.account_id, f"Max drawdown {drawdown:.2f}% exceeded")
            return alert

        if drawdown >= parameters.max_drawdown * DRAWDOWN_WARNING_RATIO:
            return await self._write_alert(
                account.account_id,
                risk_type="drawdown",
                current_value=drawdown,
                threshold_value=parameters.max_drawdown,
                risk_level="warning",
                message=(
                    f"Account drawdown at {drawdown:.2f}% - approaching "
                    f"{parameters.max_drawdown}% limit"
                ),
            )

        return None

    async def _write_alert(
        self,
        account_id: str,
        risk_type: str,
        current_value: Decimal,
        threshold_value: Decimal,
        risk_level: str,
        message: str,
    ) -> RiskAlert:
        model = await self._repository.add_risk_alert(
            account_id=account_id,
            risk_type=risk_type,
            current_value=current_value,
            threshold_value=threshold_value,
            risk_level=risk_level,
            alert_message=message,
            timestamp=self._clock.now(),
        )
        return RiskAlert(
            account_id=model.account_id,
            risk_type=model.risk_type,
            current_value=current_value,
            threshold_value=threshold_value,
            risk_level=model.risk_level,
            alert_message=model.alert_message,
            timestamp=model.timestamp,
        )
