"""Trading goals for tradeguard.

Goal constraints that can veto trading (session and hour windows, trade
count and loss caps), progress tracking for goal targets and the
consequences binding goals impose when they fail.
"""

from tradeguard.goals.constraints import (
    SESSION_HOURS,
    active_constraints,
    is_constraint_active,
    should_block,
)
from tradeguard.goals.contracts import (
    apply_failed_goals,
    apply_goal_consequences,
    should_apply_consequences,
)
from tradeguard.goals.progress import (
    GoalProgress,
    compute_goal_progress,
    goal_just_failed,
    goal_period_range,
    is_goal_failing,
)

__all__ = [
    'SESSION_HOURS',
    'active_constraints',
    'is_constraint_active',
    'should_block',
    'apply_failed_goals',
    'apply_goal_consequences',
    'should_apply_consequences',
    'GoalProgress',
    'compute_goal_progress',
    'goal_just_failed',
    'goal_period_range',
    'is_goal_failing',
]
