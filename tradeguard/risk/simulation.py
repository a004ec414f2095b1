"""Pre-trade simulation.

Answers "what happens if I take this trade?" before it is recorded: the
change in committed daily risk, the rules that would fire and the status the
ledger would end up in. Also validates a position-size calculation and
suggests a size that respects the per-trade risk cap.
"""
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Sequence

import structlog
from pydantic import BaseModel, ConfigDict, Field

from tradeguard.core.models import (
    PositionSide,
    RiskStatus,
    RuleKind,
    RuleSeverity,
    RuleStatus,
    RuleViolation,
    Settings,
    Trade,
    TradeStatus,
)
from tradeguard.risk.lockout import is_locked
from tradeguard.risk.metrics import committed_risk, summarize_drawdown
from tradeguard.rules.evaluator import evaluate_trade
from tradeguard.utils.numeric import HUNDRED, ONE, ZERO, format_decimal, percent_of, safe_divide
from tradeguard.utils.timeutils import ensure_aware

logger = structlog.get_logger(__name__)

SIMULATED_TRADE_ID = "simulation"


# =============================================================================
# Models
# =============================================================================

class TradeProposal(BaseModel):
    """A trade the trader is considering. Missing fields default to neutral values."""
    model_config = ConfigDict(frozen=True, allow_inf_nan=False)

    asset: str = Field(default="", description="Asset symbol")
    side: PositionSide = Field(default=PositionSide.LONG, description="Position side")
    entry_price: Decimal = Field(default=ZERO, description="Planned entry")
    stop_loss: Optional[Decimal] = Field(default=None, description="Planned stop")
    take_profit: Optional[Decimal] = Field(default=None, description="Planned target")
    position_size: Decimal = Field(default=ZERO, ge=0, description="Planned size")
    leverage: Optional[Decimal] = Field(default=None, description="Leverage")
    entry_time: Optional[datetime] = Field(default=None, description="Planned entry time (defaults to now)")

    def planned_risk_reward(self) -> Optional[Decimal]:
        if not self.stop_loss or not self.take_profit or not self.entry_price:
            return None
        risk = self.entry_price - self.stop_loss
        if risk == 0:
            return None
        return abs(safe_divide(self.take_profit - self.entry_price, risk))

    def to_trade(self, now: datetime) -> Trade:
        """Open trade equivalent of this proposal, entered at ``entry_time`` or ``now``."""
        return Trade(
            id=SIMULATED_TRADE_ID,
            asset=self.asset,
            side=self.side,
            entry_price=self.entry_price,
            position_size=self.position_size,
            leverage=self.leverage,
            stop_loss=self.stop_loss,
            take_profit=self.take_profit,
            entry_time=self.entry_time or now,
            status=TradeStatus.OPEN,
            risk_reward=self.planned_risk_reward(),
        )


class SimulationImpact(BaseModel):
    """Projected effect of a proposed trade."""
    model_config = ConfigDict(frozen=True)

    daily_risk_before: Decimal = ZERO
    daily_risk_after: Decimal = ZERO
    daily_risk_change: Decimal = ZERO
    # Drawdown only moves when the trade closes
    drawdown_before: Decimal = ZERO
    drawdown_after: Decimal = ZERO
    drawdown_change: Decimal = ZERO
    rules_that_would_fire: List[RuleViolation] = Field(default_factory=list)
    final_status: RiskStatus = RiskStatus.OK


class PositionCalculation(BaseModel):
    """Output of a position-size calculator to be validated."""
    model_config = ConfigDict(frozen=True, allow_inf_nan=False)

    position_size: Decimal = Field(default=ZERO, ge=0)
    risk_amount: Decimal = Field(default=ZERO)
    risk_percent: Decimal = Field(default=ZERO)
    entry_price: Decimal = Field(default=ZERO)
    stop_loss: Decimal = Field(default=ZERO)


class CalculationCheck(BaseModel):
    """Verdict on a position-size calculation."""
    model_config = ConfigDict(frozen=True)

    allowed: bool = True
    violations: List[RuleViolation] = Field(default_factory=list)
    suggested_size: Optional[Decimal] = None


# =============================================================================
# Simulation
# =============================================================================

def simulate_trade_impact(
    proposal: TradeProposal,
    trades: Sequence[Trade],
    settings: Settings,
    now: datetime,
) -> SimulationImpact:
    """Project the effect of ``proposal`` on today's risk and rule status."""
    now = ensure_aware(now)
    trades = list(trades)
    proposed = proposal.to_trade(now)

    _, before = committed_risk(trades, now, settings)
    change = percent_of(proposed.risk_amount, settings.effective_current_capital)
    after = before + change

    evaluation = evaluate_trade(proposed, trades, settings)
    if evaluation.status == RuleStatus.CRITICAL_VIOLATION:
        status = RiskStatus.BLOCKED
    elif evaluation.status == RuleStatus.MINOR_VIOLATION:
        status = RiskStatus.WARNING
    else:
        status = RiskStatus.OK

    # A trade that lands exactly on the daily cap is still allowed
    max_daily = settings.risk_management.max_risk_daily
    if max_daily is not None:
        if after > max_daily:
            status = RiskStatus.BLOCKED
        elif after > max_daily * settings.warning_ratio and status == RiskStatus.OK:
            status = RiskStatus.WARNING

    if is_locked(settings.lockout, now):
        status = RiskStatus.BLOCKED

    drawdown = summarize_drawdown(trades, settings.effective_initial_capital).current_drawdown_pct

    logger.debug(
        "simulation.trade_impact",
        daily_risk_after=str(after),
        rules=[v.rule.value for v in evaluation.violated_rules],
        final_status=status.value,
    )
    return SimulationImpact(
        daily_risk_before=before,
        daily_risk_after=after,
        daily_risk_change=change,
        drawdown_before=drawdown,
        drawdown_after=drawdown,
        drawdown_change=ZERO,
        rules_that_would_fire=evaluation.violated_rules,
        final_status=status,
    )


def suggest_position_size(calc: PositionCalculation, settings: Settings) -> Optional[Decimal]:
    """Largest size keeping risk within ``max_risk_per_trade`` (None when not applicable)."""
    cap = settings.risk_management.max_risk_per_trade
    if cap is None or calc.risk_percent <= cap:
        return None
    distance = abs(calc.entry_price - calc.stop_loss)
    if distance <= 0:
        return None
    max_risk_amount = settings.effective_current_capital * cap / HUNDRED
    return safe_divide(max_risk_amount, distance)


def check_trade_calculation(
    calc: PositionCalculation,
    trades: Sequence[Trade],
    settings: Settings,
    now: datetime,
) -> CalculationCheck:
    """Validate a sized trade against rules and risk caps before entry.

    Rule checks run on the calculated trade; the per-trade and daily risk
    caps use the calculator's own ``risk_percent``. A suggested size is
    offered when a critical violation is caused by per-trade risk.
    """
    now = ensure_aware(now)
    trades = list(trades)
    proposed = Trade(
        id=SIMULATED_TRADE_ID,
        entry_price=calc.entry_price,
        stop_loss=calc.stop_loss or None,
        position_size=calc.position_size,
        leverage=ONE,
        entry_time=now,
    )

    evaluation = evaluate_trade(proposed, trades, settings)
    violations = [
        v for v in evaluation.violated_rules
        if v.rule not in (RuleKind.RISK_PER_TRADE, RuleKind.MIN_RISK_REWARD)
    ]

    risk = settings.risk_management
    if risk.max_risk_per_trade is not None and calc.risk_percent > risk.max_risk_per_trade:
        violations.append(RuleViolation(
            rule=RuleKind.RISK_PER_TRADE,
            name="Risk per trade",
            message=(
                f"Risk per trade ({calc.risk_percent:.2f}%) exceeds the limit "
                f"({format_decimal(risk.max_risk_per_trade)}%)"
            ),
            severity=RuleSeverity.CRITICAL,
            expected=risk.max_risk_per_trade,
            actual=calc.risk_percent,
            trade_id=SIMULATED_TRADE_ID,
        ))

    if risk.max_risk_daily is not None:
        _, today = committed_risk(trades, now, settings)
        after = today + calc.risk_percent
        if after > risk.max_risk_daily:
            violations.append(RuleViolation(
                rule=RuleKind.MAX_RISK_DAILY,
                name="Max daily risk",
                message=(
                    f"Total daily risk ({after:.2f}%) would exceed the limit "
                    f"({format_decimal(risk.max_risk_daily)}%)"
                ),
                severity=RuleSeverity.CRITICAL,
                expected=risk.max_risk_daily,
                actual=after,
                trade_id=SIMULATED_TRADE_ID,
            ))

    has_critical = any(v.is_critical for v in violations)
    suggested = suggest_position_size(calc, settings) if has_critical else None
    return CalculationCheck(allowed=not has_critical, violations=violations, suggested_size=suggested)
