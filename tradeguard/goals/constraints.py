"""Goal constraint evaluator.

A trading goal may restrict trading while its ``[start_date, end_date)``
window is open:

- ``session`` / ``hours``: permissive windows, active (blocking) when ``now``
  falls outside them
- ``max-trades``: active once the trades entered in ``[start_date, now]``
  reach the cap
- ``max-loss``: active once closed PnL in the window is at or below ``-|cap|``
- ``custom``: always inactive here; evaluated by the caller

Malformed goals (end before start, unknown session) are inactive.
"""
from datetime import datetime, tzinfo
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import structlog

from tradeguard.core.models import (
    ConstraintResult,
    GoalBlockResult,
    GoalConstraintType,
    Trade,
    TradingGoal,
    TradingSession,
)
from tradeguard.utils.numeric import ZERO, format_decimal
from tradeguard.utils.timeutils import UTC, ensure_aware, hour_in_window, to_local

logger = structlog.get_logger(__name__)

# Session windows in UTC hours, end exclusive
SESSION_HOURS: Dict[str, Tuple[int, int]] = {
    TradingSession.ASIAN.value: (0, 9),
    TradingSession.LONDON.value: (8, 17),
    TradingSession.NEW_YORK.value: (13, 22),
    TradingSession.OVERLAP.value: (13, 17),
}

DEFAULT_START_HOUR = 0
DEFAULT_END_HOUR = 24

INACTIVE = ConstraintResult(active=False)


def _cap(goal: TradingGoal) -> Decimal:
    """Constraint cap: explicit ``max_value``, else the goal target."""
    value = goal.constraint_config.max_value
    return value if value is not None else goal.target


def _session_constraint(goal: TradingGoal, now: datetime) -> ConstraintResult:
    session = goal.constraint_config.session
    hours = SESSION_HOURS.get(session) if session else None
    if hours is None:
        return INACTIVE
    start, end = hours
    if hour_in_window(to_local(now, UTC).hour, start, end):
        return INACTIVE
    return ConstraintResult(
        active=True,
        goal_id=goal.id,
        reason=GoalConstraintType.SESSION,
        message=(
            f"Outside the hours allowed by your plan. You may only trade during "
            f"the {session} session ({start:02d}:00-{end:02d}:00 UTC)."
        ),
    )


def _hours_constraint(goal: TradingGoal, now: datetime, tz: tzinfo) -> ConstraintResult:
    config = goal.constraint_config
    start = config.start_hour if config.start_hour is not None else DEFAULT_START_HOUR
    end = config.end_hour if config.end_hour is not None else DEFAULT_END_HOUR
    if hour_in_window(to_local(now, tz).hour, start, end % 24):
        return INACTIVE
    return ConstraintResult(
        active=True,
        goal_id=goal.id,
        reason=GoalConstraintType.HOURS,
        message=(
            f"Outside the hours allowed by your plan. You may only trade "
            f"between {start:02d}:00 and {end:02d}:00."
        ),
    )


def _trades_in_window(goal: TradingGoal, trades: Iterable[Trade], now: datetime) -> List[Trade]:
    """Trades entered in ``[start_date, now]``."""
    return [t for t in trades if goal.start_date <= t.entry_time <= now]


def _max_trades_constraint(goal: TradingGoal, trades: Iterable[Trade], now: datetime) -> ConstraintResult:
    cap = _cap(goal)
    count = len(_trades_in_window(goal, trades, now))
    if count < cap:
        return INACTIVE
    return ConstraintResult(
        active=True,
        goal_id=goal.id,
        reason=GoalConstraintType.MAX_TRADES,
        message=f"You have reached your limit of {format_decimal(cap)} trades for this period.",
    )


def _max_loss_constraint(goal: TradingGoal, trades: Iterable[Trade], now: datetime) -> ConstraintResult:
    cap = abs(_cap(goal))
    total = sum(
        (t.pnl for t in _trades_in_window(goal, trades, now) if t.is_closed and t.pnl is not None),
        ZERO,
    )
    if total > -cap:
        return INACTIVE
    return ConstraintResult(
        active=True,
        goal_id=goal.id,
        reason=GoalConstraintType.MAX_LOSS,
        message=f"You have reached your loss limit for this period ({cap:.2f}).",
    )


def is_constraint_active(
    goal: TradingGoal,
    trades: Sequence[Trade],
    now: datetime,
    tz: Optional[tzinfo] = None,
) -> ConstraintResult:
    """Whether ``goal`` currently blocks trading.

    Args:
        goal: Goal to evaluate
        trades: Ledger for the active account mode
        now: Evaluation instant
        tz: Trader timezone for ``hours`` constraints (defaults to ``now``'s
            tzinfo, UTC for naive values)

    Returns:
        ConstraintResult; the message is the exact limit that fired
    """
    now = ensure_aware(now)
    tz = tz or now.tzinfo or UTC
    kind = goal.constraint_type

    if kind == GoalConstraintType.NONE or not goal.in_window(now):
        return INACTIVE
    if kind == GoalConstraintType.SESSION:
        return _session_constraint(goal, now)
    if kind == GoalConstraintType.HOURS:
        return _hours_constraint(goal, now, tz)
    if kind == GoalConstraintType.MAX_TRADES:
        return _max_trades_constraint(goal, trades, now)
    if kind == GoalConstraintType.MAX_LOSS:
        return _max_loss_constraint(goal, trades, now)
    return INACTIVE


def active_constraints(
    goals: Iterable[TradingGoal],
    trades: Sequence[Trade],
    now: datetime,
    tz: Optional[tzinfo] = None,
) -> List[ConstraintResult]:
    """Active constraints for every goal, in input order."""
    results = (is_constraint_active(goal, trades, now, tz) for goal in goals)
    return [r for r in results if r.active]


def should_block(
    goals: Sequence[TradingGoal],
    trades: Sequence[Trade],
    now: datetime,
    tz: Optional[tzinfo] = None,
) -> GoalBlockResult:
    """Aggregate goal veto.

    Only the primary goal and binding goals may block. The primary goal is
    checked first, then binding goals in input order; the first active
    constraint's message is surfaced verbatim.
    """
    primary = [g for g in goals if g.is_primary]
    binding = [g for g in goals if g.is_binding and not g.is_primary]
    blocking = active_constraints(primary + binding, trades, now, tz)
    if not blocking:
        return GoalBlockResult(blocked=False)

    first = blocking[0]
    logger.debug(
        "goal_constraints.blocking",
        goal_id=first.goal_id,
        reason=first.reason.value if first.reason else None,
        blocking=len(blocking),
    )
    return GoalBlockResult(
        blocked=True,
        message=first.message,
        goal_id=first.goal_id,
        blocking_goal_ids=[r.goal_id for r in blocking],
    )
