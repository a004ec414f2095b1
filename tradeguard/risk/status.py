"""Global status resolver.

Combines risk metrics, rule violations and the lockout flag into a single
``ok`` / ``warning`` / ``blocked`` verdict. Every condition is evaluated and
every true reason is kept; the reported status is the maximum severity among
them, never the first condition found.
"""
from decimal import Decimal
from typing import List, Optional, Sequence, Set, Tuple

import structlog

from tradeguard.core.models import (
    DrawdownMode,
    GlobalStatus,
    RiskMetrics,
    RiskStatus,
    RuleViolation,
    Settings,
    StatusCondition,
)
from tradeguard.utils.numeric import ONE, ZERO, format_decimal

logger = structlog.get_logger(__name__)

PARTIAL_BLOCK_SIZE_FACTOR = Decimal("0.5")


def _cap_conditions(
    key: str,
    label: str,
    value: Decimal,
    cap: Optional[Decimal],
    ratio: Decimal,
) -> List[StatusCondition]:
    """Condition for a percent figure against a cap with an early-warning band."""
    if cap is None:
        return []
    if value >= cap:
        return [StatusCondition(
            key=key,
            status=RiskStatus.BLOCKED,
            reason=f"{label} ({value:.2f}%) reached the limit ({format_decimal(cap)}%)",
        )]
    if value >= cap * ratio:
        return [StatusCondition(
            key=key,
            status=RiskStatus.WARNING,
            reason=f"{label} approaching the limit ({value:.2f}% / {format_decimal(cap)}%)",
        )]
    return []


def _violation_conditions(violations: Sequence[RuleViolation], block_on_rule_break: bool) -> List[StatusCondition]:
    """One condition per distinct violation.

    A ledger-wide violation stands in for trade violations of the same rule.
    """
    conditions = []
    seen: Set[Tuple[str, str]] = set()
    ledger_rules = {v.rule for v in violations if v.trade_id is None}
    for violation in violations:
        if violation.trade_id is not None and violation.rule in ledger_rules:
            continue
        marker = (violation.rule.value, violation.message)
        if marker in seen:
            continue
        seen.add(marker)
        if violation.is_critical:
            status = RiskStatus.BLOCKED if block_on_rule_break else RiskStatus.WARNING
            reason = f"Critical rule violation: {violation.message}"
        else:
            status = RiskStatus.WARNING
            reason = f"Rule warning: {violation.message}"
        conditions.append(StatusCondition(key=f"rule.{violation.rule.value}", status=status, reason=reason))
    return conditions


def _drawdown_conditions(metrics: RiskMetrics, settings: Settings) -> List[StatusCondition]:
    risk = settings.risk_management
    cap = risk.max_drawdown
    if cap is None:
        return []
    drawdown = metrics.current_drawdown_percent
    if drawdown >= cap:
        if risk.drawdown_mode == DrawdownMode.HARD_STOP:
            status = RiskStatus.BLOCKED
        else:
            status = RiskStatus.WARNING
        return [StatusCondition(
            key="drawdown",
            status=status,
            reason=f"Current drawdown ({drawdown:.2f}%) reached the maximum allowed ({format_decimal(cap)}%)",
        )]
    if drawdown >= cap * settings.warning_ratio:
        return [StatusCondition(
            key="drawdown",
            status=RiskStatus.WARNING,
            reason=f"Drawdown approaching the limit ({drawdown:.2f}% / {format_decimal(cap)}%)",
        )]
    return []


def _daily_loss_conditions(metrics: RiskMetrics, settings: Settings) -> List[StatusCondition]:
    limit = settings.rules.daily_loss_limit
    if limit is None:
        return []
    loss = metrics.daily_loss
    if loss >= limit:
        return [StatusCondition(
            key="daily_loss",
            status=RiskStatus.BLOCKED,
            reason=f"Daily loss ({format_decimal(loss, 2)}) reached the limit ({format_decimal(limit)})",
        )]
    if loss >= limit * settings.warning_ratio:
        return [StatusCondition(
            key="daily_loss",
            status=RiskStatus.WARNING,
            reason=f"Daily loss approaching the limit ({format_decimal(loss, 2)} / {format_decimal(limit)})",
        )]
    return []


def _average_risk_conditions(metrics: RiskMetrics, settings: Settings) -> List[StatusCondition]:
    """Average risk only ever warns."""
    cap = settings.risk_management.max_risk_per_trade
    if cap is None:
        return []
    average = metrics.average_risk_per_trade
    if average >= cap * settings.warning_ratio:
        return [StatusCondition(
            key="average_risk",
            status=RiskStatus.WARNING,
            reason=f"Average risk per trade ({average:.2f}%) near or above the allowed {format_decimal(cap)}%",
        )]
    return []


def collect_conditions(
    metrics: RiskMetrics,
    violations: Sequence[RuleViolation],
    lockout_active: bool,
    settings: Settings,
) -> List[StatusCondition]:
    """Every true condition, in evaluation order."""
    risk = settings.risk_management
    ratio = settings.warning_ratio
    conditions: List[StatusCondition] = []

    if lockout_active:
        until = settings.lockout.blocked_until
        suffix = f" until {until.isoformat()}" if until is not None else ""
        conditions.append(StatusCondition(
            key="lockout",
            status=RiskStatus.BLOCKED,
            reason=f"Trading locked by ultra-disciplined mode{suffix}",
        ))

    conditions.extend(_violation_conditions(violations, settings.lockout.block_on_rule_break))
    conditions.extend(_drawdown_conditions(metrics, settings))
    conditions.extend(_daily_loss_conditions(metrics, settings))

    conditions.extend(_average_risk_conditions(metrics, settings))
    conditions.extend(_cap_conditions(
        "daily_risk", "Risk committed today", metrics.today_risk_percent, risk.max_risk_daily, ratio,
    ))
    conditions.extend(_cap_conditions(
        "weekly_risk", "Risk committed this week", metrics.weekly_risk_percent, risk.max_risk_weekly, ratio,
    ))
    return conditions


def resolve_global_status(
    metrics: RiskMetrics,
    violations: Sequence[RuleViolation],
    lockout_active: bool,
    settings: Settings,
) -> GlobalStatus:
    """Resolve the global operability status.

    Args:
        metrics: Current risk metrics
        violations: Ledger and trade violations to account for
        lockout_active: Whether the lockout is currently engaged
        settings: Trader settings holding the thresholds

    Returns:
        GlobalStatus with blocked reasons listed before warnings
    """
    conditions = collect_conditions(metrics, violations, lockout_active, settings)

    status = RiskStatus.OK
    for condition in conditions:
        if condition.status.rank > status.rank:
            status = condition.status

    ordered = sorted(conditions, key=lambda c: -c.status.rank)
    risk = settings.risk_management

    if status == RiskStatus.BLOCKED:
        size_factor = ZERO
    elif (
        risk.drawdown_mode == DrawdownMode.PARTIAL_BLOCK
        and risk.max_drawdown is not None
        and metrics.current_drawdown_percent >= risk.max_drawdown
    ):
        size_factor = PARTIAL_BLOCK_SIZE_FACTOR
    else:
        size_factor = ONE

    logger.debug(
        "status_resolver.resolved",
        status=status.value,
        conditions=[c.key for c in ordered],
        position_size_factor=str(size_factor),
    )
    return GlobalStatus(
        status=status,
        reasons=[c.reason for c in ordered],
        conditions=ordered,
        max_drawdown=risk.max_drawdown,
        drawdown_mode=risk.drawdown_mode,
        daily_loss_limit=settings.rules.daily_loss_limit,
        max_risk_per_trade=risk.max_risk_per_trade,
        max_risk_daily=risk.max_risk_daily,
        max_risk_weekly=risk.max_risk_weekly,
        position_size_factor=size_factor,
    )
