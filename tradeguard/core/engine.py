"""Compliance engine facade.

Runs the decision pipeline over one ledger snapshot:

    metrics -> rule evaluation -> global status
                 + lockout check + goal constraints -> TradingDecision

Every call is a pure recomputation over its arguments; running it twice
with the same snapshot yields identical output. The only state the engine
"changes" (the lockout) is returned to the caller, or saved through an
injected ``LockoutController`` when one is configured.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional, Sequence

import structlog
from pydantic import BaseModel, ConfigDict, Field

from tradeguard.core.models import (
    AccountMode,
    DecisionStatus,
    GlobalStatus,
    GoalBlockResult,
    RealtimeRisk,
    RiskMetrics,
    RiskStatus,
    RuleViolation,
    Settings,
    Trade,
    TradingDecision,
    TradingGoal,
    filter_trades_by_mode,
)
from tradeguard.goals.constraints import should_block
from tradeguard.risk.lockout import LockoutController, LockoutTransition, apply_trade_violations, is_locked
from tradeguard.risk.metrics import compute_realtime_risk, compute_risk_metrics
from tradeguard.risk.status import resolve_global_status
from tradeguard.rules.evaluator import annotate_ledger, annotate_trade, evaluate_ledger
from tradeguard.utils.numeric import ZERO
from tradeguard.utils.timeutils import ensure_aware, same_local_day, utc_now

logger = structlog.get_logger(__name__)


class EngineSnapshot(BaseModel):
    """Everything derived from one (trades, settings, goals, now) snapshot."""
    model_config = ConfigDict(frozen=True)

    evaluated_at: datetime
    metrics: RiskMetrics
    realtime: RealtimeRisk
    ledger_violations: List[RuleViolation] = Field(default_factory=list)
    trades: List[Trade] = Field(default_factory=list)
    global_status: GlobalStatus
    goal_block: GoalBlockResult
    lockout_active: bool = False
    decision: TradingDecision


@dataclass
class TradeRecordResult:
    """A newly recorded trade with its evaluation and the lockout outcome.

    Attributes:
        trade: The trade with evaluated rules, violations and classification
        lockout: Lockout transition caused by the trade
        settings: Settings carrying the resulting lockout state
    """

    trade: Trade
    lockout: LockoutTransition
    settings: Settings


def merge_decision(
    status: GlobalStatus,
    goal_block: GoalBlockResult,
    blocked_until: Optional[datetime] = None,
) -> TradingDecision:
    """Merge the global status and the goal veto into one decision.

    Blocked reasons come first (the goal message right after them), then
    warnings.
    """
    blocked_reasons = [c.reason for c in status.conditions if c.status == RiskStatus.BLOCKED]
    warning_reasons = [c.reason for c in status.conditions if c.status == RiskStatus.WARNING]
    if goal_block.blocked and goal_block.message:
        blocked_reasons.append(goal_block.message)

    if blocked_reasons or status.status == RiskStatus.BLOCKED:
        decision_status = DecisionStatus.BLOCKED
    elif status.status == RiskStatus.WARNING:
        decision_status = DecisionStatus.WARNING
    else:
        decision_status = DecisionStatus.OPERABLE

    return TradingDecision(
        status=decision_status,
        reasons=blocked_reasons + warning_reasons,
        position_size_factor=ZERO if decision_status == DecisionStatus.BLOCKED else status.position_size_factor,
        blocked_until=blocked_until,
    )


class ComplianceEngine:
    """
    Entry point for callers holding a ledger and trader settings.

    Usage:
        engine = ComplianceEngine()
        snapshot = engine.evaluate(trades, settings, goals, now)
        if not snapshot.decision.can_trade:
            print(snapshot.decision.reasons)

        result = engine.record_trade(new_trade, trades, settings, now)
        settings = result.settings  # persist result.settings.lockout
    """

    def __init__(
        self,
        lockout_controller: Optional[LockoutController] = None,
        account_id: str = "default",
    ):
        self.lockout_controller = lockout_controller
        self.account_id = account_id

    def _settings_with_stored_lockout(self, settings: Settings) -> Settings:
        if self.lockout_controller is None:
            return settings
        return settings.with_lockout(self.lockout_controller.merged(self.account_id, settings.lockout))

    def evaluate(
        self,
        trades: Sequence[Trade],
        settings: Settings,
        goals: Sequence[TradingGoal] = (),
        now: Optional[datetime] = None,
        mode: Optional[AccountMode] = None,
    ) -> EngineSnapshot:
        """Recompute every derived value for the snapshot.

        Args:
            trades: Ledger (filtered to ``mode`` when given)
            settings: Trader settings
            goals: Trading goals
            now: Evaluation instant (defaults to the current UTC time)
            mode: Account mode partition to evaluate

        Returns:
            EngineSnapshot with the merged TradingDecision
        """
        now = ensure_aware(now or utc_now())
        settings = self._settings_with_stored_lockout(settings)
        ledger = filter_trades_by_mode(trades, mode)
        tz = settings.tzinfo

        metrics = compute_risk_metrics(ledger, settings, now)
        realtime = compute_realtime_risk(ledger, settings, now)
        annotated = annotate_ledger(ledger, settings)
        ledger_violations = evaluate_ledger(ledger, settings.rules, now, tz)

        # Trade-level violations only weigh on the day the trade was entered
        todays_violations = [
            v
            for t in annotated
            if same_local_day(t.entry_time, now, tz)
            for v in t.violated_rules
        ]

        lockout_active = is_locked(settings.lockout, now)
        global_status = resolve_global_status(
            metrics, ledger_violations + todays_violations, lockout_active, settings,
        )
        goal_block = should_block(goals, ledger, now, tz)
        decision = merge_decision(
            global_status,
            goal_block,
            settings.lockout.blocked_until if lockout_active else None,
        )

        logger.debug(
            "engine.evaluated",
            trades=len(ledger),
            status=global_status.status.value,
            decision=decision.status.value,
            goal_blocked=goal_block.blocked,
        )
        return EngineSnapshot(
            evaluated_at=now,
            metrics=metrics,
            realtime=realtime,
            ledger_violations=ledger_violations,
            trades=annotated,
            global_status=global_status,
            goal_block=goal_block,
            lockout_active=lockout_active,
            decision=decision,
        )

    def record_trade(
        self,
        trade: Trade,
        trades: Sequence[Trade],
        settings: Settings,
        now: Optional[datetime] = None,
    ) -> TradeRecordResult:
        """Evaluate a newly recorded trade and apply the lockout policy.

        Returns the annotated trade and the settings carrying the resulting
        lockout state. With a lockout controller configured the new state
        is also saved through its store.
        """
        now = ensure_aware(now or utc_now())
        settings = self._settings_with_stored_lockout(settings)
        ledger = [t for t in trades if t.id != trade.id] + [trade]
        annotated = annotate_trade(trade, ledger, settings)
        duration = timedelta(hours=settings.lockout_duration_hours)

        if self.lockout_controller is not None:
            transition = self.lockout_controller.record_violations(
                self.account_id, annotated.violated_rules, now, lockout=settings.lockout, duration=duration,
            )
        else:
            transition = apply_trade_violations(settings.lockout, annotated.violated_rules, now, duration)
            if transition.changed:
                logger.warning(
                    "lockout.engaged",
                    trade_id=trade.id,
                    blocked_until=transition.state.blocked_until.isoformat(),
                )

        logger.info(
            "engine.trade_recorded",
            trade_id=trade.id,
            classification=annotated.classification.value if annotated.classification else None,
            violations=len(annotated.violated_rules),
            lockout_changed=transition.changed,
        )
        return TradeRecordResult(
            trade=annotated,
            lockout=transition,
            settings=settings.with_lockout(transition.state),
        )


def create_compliance_engine(
    lockout_controller: Optional[LockoutController] = None,
    account_id: str = "default",
) -> ComplianceEngine:
    """Factory function to create a ComplianceEngine instance."""
    return ComplianceEngine(lockout_controller=lockout_controller, account_id=account_id)
