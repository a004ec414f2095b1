"""Status transition detection.

Compares two consecutive observations of the global status and reports the
threshold crossings a notification dispatcher may want to deliver. Delivery,
throttling and de-duplication are left to the dispatcher.
"""
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import List, Optional

import structlog

from tradeguard.core.models import GlobalStatus, RiskMetrics, RiskStatus
from tradeguard.utils.numeric import ZERO

logger = structlog.get_logger(__name__)


class StatusEventKind(str, Enum):
    ENTERED_WARNING = "entered-warning"
    NEWLY_BLOCKED = "newly-blocked"
    RECOVERED = "recovered"
    DRAWDOWN_LIMIT_CROSSED = "drawdown-limit-crossed"
    DAILY_RISK_LIMIT_REACHED = "daily-risk-limit-reached"


@dataclass
class StatusObservation:
    """What a dispatcher remembers between two evaluations."""
    status: RiskStatus = RiskStatus.OK
    drawdown_percent: Decimal = ZERO
    max_drawdown: Optional[Decimal] = None
    daily_risk_percent: Decimal = ZERO
    max_risk_daily: Optional[Decimal] = None
    reasons: tuple = ()

    @classmethod
    def from_status(cls, status: GlobalStatus, metrics: RiskMetrics) -> "StatusObservation":
        return cls(
            status=status.status,
            drawdown_percent=metrics.current_drawdown_percent,
            max_drawdown=status.max_drawdown,
            daily_risk_percent=metrics.today_risk_percent,
            max_risk_daily=status.max_risk_daily,
            reasons=tuple(status.reasons),
        )


@dataclass
class StatusEvent:
    """A threshold crossing between two observations."""
    kind: StatusEventKind
    status: RiskStatus
    message: str


def _crossed(previous: Decimal, current: Decimal, limit: Optional[Decimal]) -> bool:
    return limit is not None and previous < limit <= current


def detect_status_events(
    previous: Optional[StatusObservation],
    current: StatusObservation,
) -> List[StatusEvent]:
    """Events implied by moving from ``previous`` to ``current``.

    With no previous observation the baseline is an ``ok`` state with zero
    drawdown and zero daily risk.
    """
    previous = previous or StatusObservation(
        max_drawdown=current.max_drawdown,
        max_risk_daily=current.max_risk_daily,
    )
    events: List[StatusEvent] = []
    detail = "; ".join(current.reasons)

    if current.status != previous.status:
        if current.status == RiskStatus.BLOCKED:
            events.append(StatusEvent(
                kind=StatusEventKind.NEWLY_BLOCKED,
                status=current.status,
                message=f"Trading blocked: {detail}" if detail else "Trading blocked",
            ))
        elif current.status == RiskStatus.WARNING and previous.status == RiskStatus.OK:
            events.append(StatusEvent(
                kind=StatusEventKind.ENTERED_WARNING,
                status=current.status,
                message=f"Risk warning: {detail}" if detail else "Risk warning",
            ))
        elif current.status == RiskStatus.OK:
            events.append(StatusEvent(
                kind=StatusEventKind.RECOVERED,
                status=current.status,
                message="Risk status back to ok",
            ))

    if _crossed(previous.drawdown_percent, current.drawdown_percent, current.max_drawdown):
        events.append(StatusEvent(
            kind=StatusEventKind.DRAWDOWN_LIMIT_CROSSED,
            status=current.status,
            message=f"Drawdown {current.drawdown_percent:.2f}% crossed the {current.max_drawdown}% limit",
        ))

    if _crossed(previous.daily_risk_percent, current.daily_risk_percent, current.max_risk_daily):
        events.append(StatusEvent(
            kind=StatusEventKind.DAILY_RISK_LIMIT_REACHED,
            status=current.status,
            message=f"Daily risk limit of {current.max_risk_daily}% reached",
        ))

    if events:
        logger.info("alerts.status_events", kinds=[e.kind.value for e in events], status=current.status.value)
    return events
