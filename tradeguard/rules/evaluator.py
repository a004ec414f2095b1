"""Trade rule evaluator.

Checks trades (and the ledger as a whole) against the trader's configured
rules. Rules form a closed registry of ``TradeRule`` variants: each maps a
``RuleKind`` to a check function that returns ``None`` when the rule is not
configured, or a ``RuleOutcome`` otherwise. Adding a rule means adding one
check function and one registry entry.

Severity policy:
- Hard caps (trades per day/week, trading hours, lot size, daily loss) are
  critical.
- Risk per trade is critical above 1.5x the cap, minor otherwise.
- Minimum risk/reward is minor.
- Profit targets never produce violations.
"""
from dataclasses import dataclass
from datetime import datetime, tzinfo
from decimal import Decimal
from typing import Callable, Iterable, List, Optional, Sequence

import structlog

from tradeguard.core.models import (
    EvaluatedRule,
    RuleConfig,
    RuleKind,
    RuleSeverity,
    RuleStatus,
    RuleValue,
    RuleViolation,
    Settings,
    Trade,
    TradeClassification,
    TradeEvaluation,
)
from tradeguard.utils.numeric import ZERO, format_decimal, percent_of, safe_divide
from tradeguard.utils.timeutils import (
    UTC,
    ensure_aware,
    local_day_bounds,
    same_iso_week,
    same_local_day,
    to_local,
)

logger = structlog.get_logger(__name__)

# Risk above this multiple of the cap is a critical violation
CRITICAL_RISK_MULTIPLIER = Decimal("1.5")


@dataclass
class RuleOutcome:
    """Result of a single rule check.

    Attributes:
        respected: Whether the trade complied
        expected: Configured threshold
        actual: Observed value
        message: Human-readable explanation
        severity: Severity applied when not respected
    """
    respected: bool
    expected: RuleValue
    actual: RuleValue
    message: str
    severity: RuleSeverity = RuleSeverity.CRITICAL


@dataclass
class RuleContext:
    """Everything a rule check may look at for one trade."""
    trade: Trade
    ledger: Sequence[Trade]
    settings: Settings
    tz: tzinfo

    def earlier_trades(self) -> List[Trade]:
        """Ledger trades entered before this one (ties broken by id)."""
        key = (self.trade.entry_time, self.trade.id)
        return [
            t for t in self.ledger
            if t.id != self.trade.id and (t.entry_time, t.id) < key
        ]


@dataclass
class TradeRule:
    """Registry entry: rule kind, display name and check function."""
    kind: RuleKind
    name: str
    check_fn: Callable[[RuleContext], Optional[RuleOutcome]]


# =============================================================================
# Per-Trade Checks
# =============================================================================

def _check_max_trades_per_day(ctx: RuleContext) -> Optional[RuleOutcome]:
    cap = ctx.settings.rules.max_trades_per_day
    if cap is None:
        return None
    earlier = sum(
        1 for t in ctx.earlier_trades()
        if same_local_day(t.entry_time, ctx.trade.entry_time, ctx.tz)
    )
    respected = earlier < cap
    message = (
        f"Trade {earlier + 1} of {cap} allowed today"
        if respected
        else f"Daily limit of {cap} trades exceeded (trade #{earlier + 1})"
    )
    return RuleOutcome(respected=respected, expected=cap, actual=earlier + 1, message=message)


def _check_max_trades_per_week(ctx: RuleContext) -> Optional[RuleOutcome]:
    cap = ctx.settings.rules.max_trades_per_week
    if cap is None:
        return None
    earlier = sum(
        1 for t in ctx.earlier_trades()
        if same_iso_week(t.entry_time, ctx.trade.entry_time, ctx.tz)
    )
    respected = earlier < cap
    message = (
        f"Trade {earlier + 1} of {cap} allowed this week"
        if respected
        else f"Weekly limit of {cap} trades exceeded (trade #{earlier + 1})"
    )
    return RuleOutcome(respected=respected, expected=cap, actual=earlier + 1, message=message)


def _check_trading_hours(ctx: RuleContext) -> Optional[RuleOutcome]:
    window = ctx.settings.rules.allowed_trading_hours
    if not window.enabled:
        return None
    local = to_local(ctx.trade.entry_time, ctx.tz)
    respected = window.contains(local.hour)
    actual = f"{local.hour:02d}:{local.minute:02d}"
    message = (
        f"Entry at {actual} within allowed hours ({window.describe()})"
        if respected
        else f"Trade outside allowed trading hours ({window.describe()}), entered at {actual}"
    )
    return RuleOutcome(respected=respected, expected=window.describe(), actual=actual, message=message)


def _check_max_lot_size(ctx: RuleContext) -> Optional[RuleOutcome]:
    cap = ctx.settings.rules.max_lot_size
    if cap is None:
        return None
    size = ctx.trade.position_size
    respected = size <= cap
    message = (
        f"Position size {format_decimal(size)} within max lot size {format_decimal(cap)}"
        if respected
        else f"Position size ({format_decimal(size)}) exceeds max lot size ({format_decimal(cap)})"
    )
    return RuleOutcome(respected=respected, expected=cap, actual=size, message=message)


def _check_daily_loss_limit(ctx: RuleContext) -> Optional[RuleOutcome]:
    """Trading on after the day's realized losses already hit the limit."""
    limit = ctx.settings.rules.daily_loss_limit
    if limit is None:
        return None
    entry = ctx.trade.entry_time
    day_start, _ = local_day_bounds(entry, ctx.tz)
    loss = sum(
        (
            -t.pnl
            for t in ctx.ledger
            if t.id != ctx.trade.id
            and t.is_closed
            and t.pnl is not None
            and t.pnl < 0
            and day_start <= t.closed_at <= entry
        ),
        ZERO,
    )
    respected = loss < limit
    message = (
        f"Realized loss today {format_decimal(loss)} below limit {format_decimal(limit)}"
        if respected
        else f"Daily loss limit of {format_decimal(limit)} already reached ({format_decimal(loss)} lost)"
    )
    return RuleOutcome(respected=respected, expected=limit, actual=loss, message=message)


def _check_risk_per_trade(ctx: RuleContext) -> Optional[RuleOutcome]:
    cap = ctx.settings.risk_management.max_risk_per_trade
    if cap is None or not ctx.trade.stop_loss:
        return None
    risk_pct = percent_of(ctx.trade.risk_amount, ctx.settings.effective_current_capital)
    respected = risk_pct <= cap
    severity = RuleSeverity.CRITICAL if risk_pct > cap * CRITICAL_RISK_MULTIPLIER else RuleSeverity.MINOR
    message = (
        f"Risk {risk_pct:.2f}% within limit ({format_decimal(cap)}%)"
        if respected
        else f"Risk ({risk_pct:.2f}%) exceeds allowed limit ({format_decimal(cap)}%)"
    )
    return RuleOutcome(
        respected=respected,
        expected=cap,
        actual=risk_pct.quantize(Decimal("0.01")),
        message=message,
        severity=severity,
    )


def planned_risk_reward(trade: Trade) -> Optional[Decimal]:
    """Trade R/R, or the planned one from stop and target when not recorded."""
    if trade.risk_reward is not None:
        return trade.risk_reward
    if not trade.stop_loss or not trade.take_profit:
        return None
    risk = abs(trade.entry_price - trade.stop_loss)
    if risk == 0:
        return None
    return safe_divide(abs(trade.take_profit - trade.entry_price), risk)


def _check_min_risk_reward(ctx: RuleContext) -> Optional[RuleOutcome]:
    minimum = ctx.settings.rules.min_risk_reward
    rr = planned_risk_reward(ctx.trade)
    if minimum is None or rr is None:
        return None
    respected = rr >= minimum
    message = (
        f"R/R {rr:.2f} meets minimum {format_decimal(minimum)}"
        if respected
        else f"R/R ({rr:.2f}) below recommended minimum ({format_decimal(minimum)})"
    )
    return RuleOutcome(
        respected=respected,
        expected=minimum,
        actual=rr.quantize(Decimal("0.01")),
        message=message,
        severity=RuleSeverity.MINOR,
    )


TRADE_RULES: List[TradeRule] = [
    TradeRule(RuleKind.MAX_TRADES_PER_DAY, "Max trades per day", _check_max_trades_per_day),
    TradeRule(RuleKind.MAX_TRADES_PER_WEEK, "Max trades per week", _check_max_trades_per_week),
    TradeRule(RuleKind.ALLOWED_TRADING_HOURS, "Allowed trading hours", _check_trading_hours),
    TradeRule(RuleKind.MAX_LOT_SIZE, "Max lot size", _check_max_lot_size),
    TradeRule(RuleKind.DAILY_LOSS_LIMIT, "Daily loss limit", _check_daily_loss_limit),
    TradeRule(RuleKind.RISK_PER_TRADE, "Risk per trade", _check_risk_per_trade),
    TradeRule(RuleKind.MIN_RISK_REWARD, "Minimum risk/reward", _check_min_risk_reward),
]


# =============================================================================
# Public API
# =============================================================================

def rule_status(violations: Iterable[RuleViolation]) -> RuleStatus:
    """Collapse violations into clean / minor-violation / critical-violation."""
    violations = list(violations)
    if any(v.is_critical for v in violations):
        return RuleStatus.CRITICAL_VIOLATION
    if violations:
        return RuleStatus.MINOR_VIOLATION
    return RuleStatus.CLEAN


def evaluate_trade(trade: Trade, ledger: Sequence[Trade], settings: Settings) -> TradeEvaluation:
    """Evaluate one trade against every configured rule.

    Args:
        trade: Trade to evaluate
        ledger: Ledger for the same account mode (may include ``trade``)
        settings: Trader settings

    Returns:
        TradeEvaluation whose violations are exactly the evaluated rules
        with ``respected = False``
    """
    ctx = RuleContext(trade=trade, ledger=list(ledger), settings=settings, tz=settings.tzinfo)
    evaluated: List[EvaluatedRule] = []
    violated: List[RuleViolation] = []

    for rule in TRADE_RULES:
        outcome = rule.check_fn(ctx)
        if outcome is None:
            continue
        record = EvaluatedRule(
            rule=rule.kind,
            name=rule.name,
            message=outcome.message,
            severity=outcome.severity,
            expected=outcome.expected,
            actual=outcome.actual,
            respected=outcome.respected,
        )
        evaluated.append(record)
        if not outcome.respected:
            violated.append(RuleViolation.from_evaluated(record, trade_id=trade.id))

    status = rule_status(violated)
    if violated:
        logger.debug(
            "rule_evaluator.trade_violations",
            trade_id=trade.id,
            status=status.value,
            rules=[v.rule.value for v in violated],
        )
    return TradeEvaluation(
        trade_id=trade.id,
        evaluated_rules=evaluated,
        violated_rules=violated,
        status=status,
    )


def evaluate_ledger(
    trades: Sequence[Trade],
    rule_config: RuleConfig,
    now: datetime,
    tz: Optional[tzinfo] = None,
) -> List[RuleViolation]:
    """Ledger-wide checks answering "may the next trade be opened now?".

    All ledger violations are critical. A cap reached exactly already
    triggers, since the next trade would exceed it.
    """
    now = ensure_aware(now)
    tz = tz or UTC
    violations: List[RuleViolation] = []

    cap = rule_config.max_trades_per_day
    if cap is not None:
        count = sum(1 for t in trades if same_local_day(t.entry_time, now, tz))
        if count >= cap:
            violations.append(RuleViolation(
                rule=RuleKind.MAX_TRADES_PER_DAY,
                name="Max trades per day",
                message=f"Daily limit of {cap} trades reached ({count} today)",
                severity=RuleSeverity.CRITICAL,
                expected=cap,
                actual=count,
            ))

    cap = rule_config.max_trades_per_week
    if cap is not None:
        count = sum(1 for t in trades if same_iso_week(t.entry_time, now, tz))
        if count >= cap:
            violations.append(RuleViolation(
                rule=RuleKind.MAX_TRADES_PER_WEEK,
                name="Max trades per week",
                message=f"Weekly limit of {cap} trades reached ({count} this week)",
                severity=RuleSeverity.CRITICAL,
                expected=cap,
                actual=count,
            ))

    window = rule_config.allowed_trading_hours
    if window.enabled:
        local = to_local(now, tz)
        if not window.contains(local.hour):
            violations.append(RuleViolation(
                rule=RuleKind.ALLOWED_TRADING_HOURS,
                name="Allowed trading hours",
                message=f"Outside allowed trading hours ({window.describe()})",
                severity=RuleSeverity.CRITICAL,
                expected=window.describe(),
                actual=f"{local.hour:02d}:{local.minute:02d}",
            ))

    limit = rule_config.daily_loss_limit
    if limit is not None:
        loss = sum(
            (
                -t.pnl
                for t in trades
                if t.is_closed and t.pnl is not None and t.pnl < 0
                and same_local_day(t.closed_at, now, tz)
            ),
            ZERO,
        )
        if loss >= limit:
            violations.append(RuleViolation(
                rule=RuleKind.DAILY_LOSS_LIMIT,
                name="Daily loss limit",
                message=f"Daily loss limit of {format_decimal(limit)} reached ({format_decimal(loss)} lost today)",
                severity=RuleSeverity.CRITICAL,
                expected=limit,
                actual=loss,
            ))

    return violations


def classify_trade(
    trade: Trade,
    violations: Sequence[RuleViolation],
    good_trade_rr_threshold: Decimal = Decimal("2"),
) -> TradeClassification:
    """Tag a trade as model-trade, neutral or error-trade.

    Missing R/R never yields model-trade.
    """
    if any(v.is_critical for v in violations):
        return TradeClassification.ERROR_TRADE
    if not violations and trade.risk_reward is not None and trade.risk_reward >= good_trade_rr_threshold:
        return TradeClassification.MODEL_TRADE
    return TradeClassification.NEUTRAL


def annotate_trade(trade: Trade, ledger: Sequence[Trade], settings: Settings) -> Trade:
    """Copy of ``trade`` with evaluation results and classification attached."""
    evaluation = evaluate_trade(trade, ledger, settings)
    classification = classify_trade(trade, evaluation.violated_rules, settings.good_trade_rr_threshold)
    return trade.model_copy(update={
        "evaluated_rules": evaluation.evaluated_rules,
        "violated_rules": evaluation.violated_rules,
        "classification": classification,
    })


def annotate_ledger(trades: Sequence[Trade], settings: Settings) -> List[Trade]:
    """Annotate every trade against the ledger it belongs to."""
    trades = list(trades)
    return [annotate_trade(t, trades, settings) for t in trades]
