"""Goal progress tracking.

Computes a goal's current value from the ledger and detects the moment a
goal starts failing. ``num-trades`` goals are caps (failing above the
target); ``pnl`` and ``win-rate`` goals are floors (failing below it).
"""
from dataclasses import dataclass
from datetime import datetime, tzinfo
from decimal import Decimal
from typing import Optional, Sequence, Tuple

from tradeguard.core.models import GoalPeriod, GoalType, Trade, TradingGoal
from tradeguard.utils.numeric import ZERO, percent_of
from tradeguard.utils.timeutils import UTC, ensure_aware, iso_week_bounds, local_day_bounds


@dataclass
class GoalProgress:
    """Current standing of a goal inside its window.

    Attributes:
        goal_id: Goal identifier
        current: Current value (PnL, win rate percent or trade count)
        target: Goal target
        progress_percent: current / target * 100 (0 for a zero target)
        trades_considered: Trades entered inside the window
        failing: Whether the goal is currently failing
    """
    goal_id: str
    current: Decimal
    target: Decimal
    progress_percent: Decimal
    trades_considered: int
    failing: bool


def goal_period_range(period: GoalPeriod, now: datetime, tz: Optional[tzinfo] = None) -> Tuple[datetime, datetime]:
    """``[start, end)`` of the daily / weekly / monthly / yearly period containing ``now``.

    Weeks are ISO weeks starting Monday.
    """
    now = ensure_aware(now)
    tz = tz or now.tzinfo or UTC
    if period == GoalPeriod.DAILY:
        return local_day_bounds(now, tz)
    if period == GoalPeriod.WEEKLY:
        return iso_week_bounds(now, tz)

    day_start, _ = local_day_bounds(now, tz)
    if period == GoalPeriod.MONTHLY:
        start = day_start.replace(day=1)
        if start.month == 12:
            end = start.replace(year=start.year + 1, month=1)
        else:
            end = start.replace(month=start.month + 1)
        return start, end

    start = day_start.replace(month=1, day=1)
    return start, start.replace(year=start.year + 1)


def goal_current_value(goal: TradingGoal, trades: Sequence[Trade]) -> Tuple[Decimal, int]:
    """Current value of ``goal`` and the number of trades in its window."""
    in_window = [t for t in trades if goal.start_date <= t.entry_time < goal.end_date]
    closed = [t for t in in_window if t.is_closed and t.pnl is not None]

    if goal.type == GoalType.NUM_TRADES:
        return Decimal(len(in_window)), len(in_window)
    if goal.type == GoalType.WIN_RATE:
        wins = sum(1 for t in closed if t.pnl > 0)
        return percent_of(Decimal(wins), Decimal(len(closed))), len(in_window)
    return sum((t.pnl for t in closed), ZERO), len(in_window)


def is_goal_failing(goal: TradingGoal, current: Decimal) -> bool:
    if goal.type == GoalType.NUM_TRADES:
        return current > goal.target
    return current < goal.target


def compute_goal_progress(goal: TradingGoal, trades: Sequence[Trade]) -> GoalProgress:
    """Evaluate a goal against the ledger. Malformed windows contain no trades."""
    current, considered = goal_current_value(goal, trades)
    return GoalProgress(
        goal_id=goal.id,
        current=current,
        target=goal.target,
        progress_percent=percent_of(current, goal.target) if goal.target > 0 else ZERO,
        trades_considered=considered,
        failing=is_goal_failing(goal, current),
    )


def goal_just_failed(goal: TradingGoal, previous: Decimal, current: Decimal) -> bool:
    """True only on the transition from not failing to failing.

    Completed goals never report a failure.
    """
    if goal.completed:
        return False
    return not is_goal_failing(goal, previous) and is_goal_failing(goal, current)
