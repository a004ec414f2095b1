"""Risk module for tradeguard.

This module provides the quantitative side of the compliance engine:
- Risk metrics (drawdown, exposure, average and committed risk, daily loss)
- Global status resolution (ok / warning / blocked)
- The ultra-disciplined lockout state machine
- Pre-trade impact simulation
- Status transition events for notification dispatchers
"""

from tradeguard.risk.alerts import (
    StatusEvent,
    StatusEventKind,
    StatusObservation,
    detect_status_events,
)
from tradeguard.risk.lockout import (
    InMemoryLockoutStore,
    LockoutController,
    LockoutPhase,
    LockoutStore,
    LockoutTransition,
    apply_trade_violations,
    is_locked,
    lock,
    lockout_phase,
    override,
    should_lock,
)
from tradeguard.risk.metrics import compute_realtime_risk, compute_risk_metrics
from tradeguard.risk.simulation import (
    CalculationCheck,
    PositionCalculation,
    SimulationImpact,
    TradeProposal,
    check_trade_calculation,
    simulate_trade_impact,
)
from tradeguard.risk.status import resolve_global_status

__all__ = [
    'StatusEvent',
    'StatusEventKind',
    'StatusObservation',
    'detect_status_events',
    'InMemoryLockoutStore',
    'LockoutController',
    'LockoutPhase',
    'LockoutStore',
    'LockoutTransition',
    'apply_trade_violations',
    'is_locked',
    'lock',
    'lockout_phase',
    'override',
    'should_lock',
    'compute_realtime_risk',
    'compute_risk_metrics',
    'CalculationCheck',
    'PositionCalculation',
    'SimulationImpact',
    'TradeProposal',
    'check_trade_calculation',
    'simulate_trade_impact',
    'resolve_global_status',
]
