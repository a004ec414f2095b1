"""Binding goal contracts.

A binding goal may carry consequences that apply the moment it starts
failing: a cooldown lock (through the ultra-disciplined lockout) and a cut
of the per-trade sizing risk. Everything here returns new ``Settings``;
persisting them is the caller's job.
"""
from datetime import datetime, timedelta
from decimal import Decimal
from typing import List, Mapping, Sequence, Tuple

import structlog

from tradeguard.core.models import Settings, Trade, TradingGoal
from tradeguard.goals.progress import compute_goal_progress, goal_just_failed
from tradeguard.risk.lockout import is_locked, lock
from tradeguard.utils.numeric import HUNDRED, ONE

logger = structlog.get_logger(__name__)

# Risk per trade never drops below this percent
MIN_RISK_PER_TRADE = Decimal("0.1")


def should_apply_consequences(goal: TradingGoal, previous: Decimal, current: Decimal) -> bool:
    """A binding goal that just went from passing to failing."""
    return goal.is_binding and goal_just_failed(goal, previous, current)


def apply_goal_consequences(goal: TradingGoal, settings: Settings, now: datetime) -> Settings:
    """Apply a failed binding goal's consequences to ``settings``.

    The cooldown turns ultra-disciplined mode on and locks for
    ``cooldown_hours``; an active lock is kept as is, never extended.
    The risk cut is floored at ``MIN_RISK_PER_TRADE``.
    """
    if not goal.is_binding or goal.consequences is None:
        return settings

    consequences = goal.consequences
    updates = {}

    if consequences.cooldown_hours:
        lockout = settings.lockout.model_copy(update={"enabled": True, "block_on_rule_break": True})
        if not is_locked(lockout, now):
            lockout = lock(lockout, now, timedelta(hours=consequences.cooldown_hours))
        updates["lockout"] = lockout

    if consequences.reduce_risk_percent:
        reduced = settings.risk_per_trade * (ONE - consequences.reduce_risk_percent / HUNDRED)
        updates["risk_per_trade"] = max(MIN_RISK_PER_TRADE, reduced)

    if not updates:
        return settings

    logger.warning(
        "goal_contract.consequences_applied",
        goal_id=goal.id,
        blocked_until=updates["lockout"].blocked_until.isoformat() if "lockout" in updates else None,
        risk_per_trade=str(updates.get("risk_per_trade", settings.risk_per_trade)),
    )
    return settings.model_copy(update=updates)


def apply_failed_goals(
    goals: Sequence[TradingGoal],
    previous_values: Mapping[str, Decimal],
    trades: Sequence[Trade],
    settings: Settings,
    now: datetime,
) -> Tuple[Settings, List[str]]:
    """Apply consequences for every binding goal that failed since ``previous_values``.

    Args:
        goals: Trading goals
        previous_values: Last known current value per goal id
        trades: Ledger
        settings: Trader settings
        now: Evaluation instant

    Returns:
        The updated settings and the ids of the goals that just failed
    """
    failed: List[str] = []
    for goal in goals:
        if goal.id not in previous_values:
            continue
        progress = compute_goal_progress(goal, trades)
        if should_apply_consequences(goal, previous_values[goal.id], progress.current):
            settings = apply_goal_consequences(goal, settings, now)
            failed.append(goal.id)
    return settings, failed
