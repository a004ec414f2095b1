"""Lockout controller for ultra-disciplined mode.

Two states: ``unlocked`` and ``locked-until(T)``. Transitions are pure
functions returning a new ``LockoutState``; the engine never persists
anything itself. Expiry is evaluated lazily on read, there is no timer.

Policy:
- Lock when the mode is enabled, ``block_on_rule_break`` is set and a newly
  recorded trade carries a critical violation.
- Re-triggering while already locked does not extend ``blocked_until``.
- Only the clock passing ``T`` or an explicit override unlocks.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, Optional, Protocol, Sequence

import structlog

from tradeguard.core.models import LockoutState, RuleViolation
from tradeguard.utils.timeutils import ensure_aware

logger = structlog.get_logger(__name__)


class LockoutPhase(str, Enum):
    """Lockout state machine phases."""
    UNLOCKED = "unlocked"
    LOCKED = "locked"


@dataclass
class LockoutTransition:
    """Result of applying an event to a lockout state.

    Attributes:
        state: The resulting state (unchanged object when nothing happened)
        changed: Whether ``blocked_until`` changed
        reason: Why the transition did or did not happen
    """
    state: LockoutState
    changed: bool
    reason: str


# =============================================================================
# Pure State Machine
# =============================================================================

def is_locked(lockout: LockoutState, now: datetime) -> bool:
    """``blocked_until`` is set and still in the future."""
    return lockout.blocked_until is not None and ensure_aware(now) < lockout.blocked_until


def lockout_phase(lockout: LockoutState, now: datetime) -> LockoutPhase:
    return LockoutPhase.LOCKED if is_locked(lockout, now) else LockoutPhase.UNLOCKED


def should_lock(lockout: LockoutState, violations: Sequence[RuleViolation]) -> bool:
    """Whether these violations trigger the lockout under the current policy."""
    return (
        lockout.enabled
        and lockout.block_on_rule_break
        and any(v.is_critical for v in violations)
    )


def lock(lockout: LockoutState, now: datetime, duration: timedelta) -> LockoutState:
    """Explicit trigger: lock until ``now + duration``."""
    now = ensure_aware(now)
    return lockout.model_copy(update={"blocked_until": now + duration, "updated_at": now})


def override(lockout: LockoutState, now: datetime) -> LockoutState:
    """Manual override: clear ``blocked_until`` regardless of its value."""
    now = ensure_aware(now)
    return lockout.model_copy(update={"blocked_until": None, "updated_at": now})


def apply_trade_violations(
    lockout: LockoutState,
    violations: Sequence[RuleViolation],
    now: datetime,
    duration: timedelta,
) -> LockoutTransition:
    """Apply a newly recorded trade's violations to the lockout.

    Idempotent while locked: an active lock is neither extended nor
    shortened. An expired ``blocked_until`` may be replaced by a new lock.
    """
    if not should_lock(lockout, violations):
        return LockoutTransition(state=lockout, changed=False, reason="no_trigger")
    if is_locked(lockout, now):
        return LockoutTransition(state=lockout, changed=False, reason="already_locked")
    if duration <= timedelta(0):
        return LockoutTransition(state=lockout, changed=False, reason="zero_duration")
    return LockoutTransition(state=lock(lockout, now, duration), changed=True, reason="critical_violation")


# =============================================================================
# Store and Controller
# =============================================================================

class LockoutStore(Protocol):
    """Persistence collaborator owning the lockout state per account."""

    def load(self, account_id: str) -> LockoutState:
        ...

    def save(self, account_id: str, state: LockoutState) -> bool:
        """Persist ``state``; return False when a newer write already exists."""
        ...


class InMemoryLockoutStore:
    """Dict-backed store with last-writer-wins on ``updated_at``."""

    def __init__(self, initial: Optional[Dict[str, LockoutState]] = None):
        self._states: Dict[str, LockoutState] = dict(initial or {})

    def load(self, account_id: str) -> LockoutState:
        return self._states.get(account_id, LockoutState())

    def save(self, account_id: str, state: LockoutState) -> bool:
        current = self._states.get(account_id)
        if (
            current is not None
            and current.updated_at is not None
            and state.updated_at is not None
            and state.updated_at < current.updated_at
        ):
            logger.info(
                "lockout.stale_write_ignored",
                account_id=account_id,
                stored_at=current.updated_at.isoformat(),
                attempted_at=state.updated_at.isoformat(),
            )
            return False
        self._states[account_id] = state
        return True


class LockoutController:
    """Loads, transitions and saves lockout state through an injected store.

    ``duration`` is only the fallback lock length; callers holding trader
    settings pass ``settings.lockout_duration_hours`` per call.

    Usage:
        controller = LockoutController(InMemoryLockoutStore())
        transition = controller.record_violations("acct-1", violations, now, duration=timedelta(hours=2))
        controller.is_locked("acct-1", now)
    """

    def __init__(self, store: LockoutStore, duration: timedelta = timedelta(hours=24)):
        self.store = store
        self.duration = duration

    def state(self, account_id: str) -> LockoutState:
        return self.store.load(account_id)

    def is_locked(self, account_id: str, now: datetime) -> bool:
        return is_locked(self.store.load(account_id), now)

    def merged(self, account_id: str, lockout: LockoutState) -> LockoutState:
        """Caller's policy flags with the most recently written lock timestamps."""
        stored = self.store.load(account_id)
        if stored.updated_at is None:
            return lockout
        if lockout.updated_at is not None and lockout.updated_at >= stored.updated_at:
            return lockout
        return lockout.model_copy(update={
            "blocked_until": stored.blocked_until,
            "updated_at": stored.updated_at,
        })

    def _save(self, account_id: str, state: LockoutState, event: str) -> bool:
        saved = self.store.save(account_id, state)
        if not saved:
            logger.warning(
                "lockout.write_rejected",
                account_id=account_id,
                operation=event,
                attempted_at=state.updated_at.isoformat() if state.updated_at else None,
            )
        return saved

    def record_violations(
        self,
        account_id: str,
        violations: Sequence[RuleViolation],
        now: datetime,
        lockout: Optional[LockoutState] = None,
        duration: Optional[timedelta] = None,
    ) -> LockoutTransition:
        """Apply a recorded trade's violations and persist any change.

        ``lockout`` carries the caller's current policy flags; without it
        the stored state is used as is. When the store rejects the write
        the stored state is returned with ``changed=False``.
        """
        current = self.merged(account_id, lockout) if lockout is not None else self.store.load(account_id)
        transition = apply_trade_violations(current, violations, now, self.duration if duration is None else duration)
        if not transition.changed:
            return transition

        if not self._save(account_id, transition.state, "record_violations"):
            state = self.merged(account_id, lockout) if lockout is not None else self.store.load(account_id)
            return LockoutTransition(state=state, changed=False, reason="stale_write")

        logger.warning(
            "lockout.engaged",
            account_id=account_id,
            blocked_until=transition.state.blocked_until.isoformat(),
            violations=[v.rule.value for v in violations if v.is_critical],
        )
        return transition

    def trigger(self, account_id: str, now: datetime, duration: Optional[timedelta] = None) -> LockoutState:
        """Explicitly (re)start the lock; returns the state the store now holds."""
        state = lock(self.store.load(account_id), now, self.duration if duration is None else duration)
        if not self._save(account_id, state, "trigger"):
            return self.store.load(account_id)
        logger.warning("lockout.triggered", account_id=account_id, blocked_until=state.blocked_until.isoformat())
        return state

    def override(self, account_id: str, now: datetime, authorized_by: Optional[str] = None) -> LockoutState:
        """Clear the lock on an explicit external request.

        A write older than the stored state is rejected and the stored
        state, still locked if it was, is returned.
        """
        previous = self.store.load(account_id)
        state = override(previous, now)
        if not self._save(account_id, state, "override"):
            return previous
        logger.warning(
            "lockout.overridden",
            account_id=account_id,
            authorized_by=authorized_by,
            was_locked=is_locked(previous, now),
        )
        return state
