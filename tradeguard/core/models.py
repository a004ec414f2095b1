"""Data models for the tradeguard compliance engine.

This module defines every structure that flows through the decision pipeline:
- Inputs: Trade, Settings (with RuleConfig / RiskManagementConfig / LockoutState)
  and TradingGoal
- Derived outputs: RiskMetrics, RuleViolation, GlobalStatus, ConstraintResult
  and the merged TradingDecision

All monetary values, prices, sizes and percentages use Decimal for precision.
Naive timestamps are interpreted as UTC and stored timezone-aware.
Derived models are frozen: a recomputation always produces a fresh value.
"""

from datetime import datetime, tzinfo
from decimal import Decimal
from enum import Enum
from typing import Dict, Iterable, List, Optional, Union
from uuid import uuid4
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, Field, field_validator

from tradeguard.utils.numeric import ONE, ZERO
from tradeguard.utils.timeutils import ensure_aware, hour_in_window, resolve_timezone


# =============================================================================
# Enums
# =============================================================================

class PositionSide(str, Enum):
    """Position side - long or short."""
    LONG = "long"
    SHORT = "short"


class TradeStatus(str, Enum):
    """Lifecycle status of a trade record."""
    OPEN = "open"
    CLOSED = "closed"


class AccountMode(str, Enum):
    """Account mode used to partition ledgers."""
    SIMULATION = "simulation"
    DEMO = "demo"
    LIVE = "live"


class TradeClassification(str, Enum):
    """Quality tag attached to an evaluated trade."""
    MODEL_TRADE = "model-trade"
    NEUTRAL = "neutral"
    ERROR_TRADE = "error-trade"


class RuleSeverity(str, Enum):
    """Severity of a rule violation."""
    CRITICAL = "critical"
    MINOR = "minor"


class RuleStatus(str, Enum):
    """Aggregate compliance status of a single trade."""
    CLEAN = "clean"
    MINOR_VIOLATION = "minor-violation"
    CRITICAL_VIOLATION = "critical-violation"


class RuleKind(str, Enum):
    """Closed set of rule variants reported in violations."""
    MAX_TRADES_PER_DAY = "max_trades_per_day"
    MAX_TRADES_PER_WEEK = "max_trades_per_week"
    ALLOWED_TRADING_HOURS = "allowed_trading_hours"
    MAX_LOT_SIZE = "max_lot_size"
    DAILY_LOSS_LIMIT = "daily_loss_limit"
    RISK_PER_TRADE = "risk_per_trade"
    MIN_RISK_REWARD = "min_risk_reward"
    MAX_RISK_DAILY = "max_risk_daily"  # Pre-trade checks only


class RiskStatus(str, Enum):
    """Operability state, ordered ok < warning < blocked."""
    OK = "ok"
    WARNING = "warning"
    BLOCKED = "blocked"

    @property
    def rank(self) -> int:
        return _RISK_STATUS_RANK[self]


_RISK_STATUS_RANK = {
    RiskStatus.OK: 0,
    RiskStatus.WARNING: 1,
    RiskStatus.BLOCKED: 2,
}


class DrawdownMode(str, Enum):
    """Response when drawdown reaches the configured maximum."""
    WARNING = "warning"           # Warn only
    PARTIAL_BLOCK = "partial-block"  # Warn and halve position sizes
    HARD_STOP = "hard-stop"       # Block trading


class DecisionStatus(str, Enum):
    """Merged decision exposed to callers."""
    OPERABLE = "operable"
    WARNING = "warning"
    BLOCKED = "blocked"


class GoalConstraintType(str, Enum):
    """Restriction a goal may impose on trading."""
    NONE = "none"
    SESSION = "session"
    HOURS = "hours"
    MAX_TRADES = "max-trades"
    MAX_LOSS = "max-loss"
    CUSTOM = "custom"


class TradingSession(str, Enum):
    """Named market sessions (UTC hours in goals.constraints.SESSION_HOURS)."""
    ASIAN = "asian"
    LONDON = "london"
    NEW_YORK = "new-york"
    OVERLAP = "overlap"


class GoalPeriod(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class GoalType(str, Enum):
    PNL = "pnl"
    WIN_RATE = "win-rate"
    NUM_TRADES = "num-trades"


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    return ensure_aware(value) if value is not None else None


# =============================================================================
# Rule Evaluation Records
# =============================================================================

RuleValue = Optional[Union[int, Decimal, str]]


class EvaluatedRule(BaseModel):
    """Outcome of one configured rule against one trade.

    Attributes:
        rule: Rule variant
        name: Human-readable rule name
        message: Explanation of the outcome
        severity: Severity applied when the rule is not respected
        expected: Configured threshold
        actual: Observed value
        respected: Whether the trade complied with the rule
    """
    model_config = ConfigDict(frozen=True)

    rule: RuleKind = Field(..., description="Rule variant")
    name: str = Field(..., description="Rule name")
    message: str = Field(default="", description="Outcome message")
    severity: RuleSeverity = Field(..., description="Severity when broken")
    expected: RuleValue = Field(default=None, description="Configured threshold")
    actual: RuleValue = Field(default=None, description="Observed value")
    respected: bool = Field(..., description="Rule respected")


class RuleViolation(BaseModel):
    """A broken rule, for a single trade or for the ledger as a whole."""
    model_config = ConfigDict(frozen=True)

    rule: RuleKind = Field(..., description="Rule variant")
    name: str = Field(..., description="Rule name")
    message: str = Field(..., description="Violation message")
    severity: RuleSeverity = Field(..., description="Violation severity")
    expected: RuleValue = Field(default=None, description="Configured threshold")
    actual: RuleValue = Field(default=None, description="Observed value")
    trade_id: Optional[str] = Field(default=None, description="Offending trade, if any")

    @property
    def is_critical(self) -> bool:
        return self.severity == RuleSeverity.CRITICAL

    @classmethod
    def from_evaluated(cls, evaluated: EvaluatedRule, trade_id: Optional[str] = None) -> "RuleViolation":
        """Build a violation from a non-respected evaluated rule."""
        return cls(
            rule=evaluated.rule,
            name=evaluated.name,
            message=evaluated.message,
            severity=evaluated.severity,
            expected=evaluated.expected,
            actual=evaluated.actual,
            trade_id=trade_id,
        )


# =============================================================================
# Trade
# =============================================================================

class Trade(BaseModel):
    """Trade record supplied by the ledger provider.

    Missing optional numeric fields are tolerated and degrade to neutral
    defaults during evaluation (no stop-loss means zero committed risk,
    no leverage means 1x).

    Attributes:
        id: Trade ID
        asset: Traded symbol (e.g., "EURUSD", "BTCUSDT")
        side: Long or short
        entry_price: Entry execution price
        exit_price: Exit price (None while open)
        position_size: Lots/units traded
        leverage: Leverage multiplier (None means 1x)
        stop_loss: Stop-loss price
        take_profit: Take-profit price
        entry_time: Entry timestamp
        exit_time: Exit timestamp
        status: Open or closed
        pnl: Realized PnL (present once closed)
        risk_reward: Risk/reward ratio
        mode: Account mode partition
        evaluated_rules: Rule outcomes attached after evaluation
        violated_rules: Subset of evaluated_rules not respected
        classification: Quality tag attached after evaluation
    """
    model_config = ConfigDict(frozen=True, allow_inf_nan=False)

    id: str = Field(default_factory=lambda: str(uuid4()), description="Trade ID")
    asset: str = Field(default="", description="Asset symbol")
    side: PositionSide = Field(default=PositionSide.LONG, description="Position side")

    # Prices and size
    entry_price: Decimal = Field(default=ZERO, description="Entry price")
    exit_price: Optional[Decimal] = Field(default=None, description="Exit price")
    position_size: Decimal = Field(default=ZERO, ge=0, description="Position size")
    leverage: Optional[Decimal] = Field(default=None, description="Leverage")
    stop_loss: Optional[Decimal] = Field(default=None, description="Stop-loss price")
    take_profit: Optional[Decimal] = Field(default=None, description="Take-profit price")

    # Timestamps
    entry_time: datetime = Field(..., description="Entry time")
    exit_time: Optional[datetime] = Field(default=None, description="Exit time")

    # Outcome
    status: TradeStatus = Field(default=TradeStatus.OPEN, description="Trade status")
    pnl: Optional[Decimal] = Field(default=None, description="Realized PnL")
    risk_reward: Optional[Decimal] = Field(default=None, description="Risk/reward ratio")
    mode: AccountMode = Field(default=AccountMode.SIMULATION, description="Account mode")

    # Attached after evaluation
    evaluated_rules: List[EvaluatedRule] = Field(default_factory=list, description="Evaluated rules")
    violated_rules: List[RuleViolation] = Field(default_factory=list, description="Violated rules")
    classification: Optional[TradeClassification] = Field(default=None, description="Classification")

    @field_validator("entry_time", "exit_time")
    @classmethod
    def make_aware(cls, v: Optional[datetime]) -> Optional[datetime]:
        """Interpret naive timestamps as UTC."""
        return _aware(v)

    @property
    def is_open(self) -> bool:
        return self.status == TradeStatus.OPEN

    @property
    def is_closed(self) -> bool:
        return self.status == TradeStatus.CLOSED

    @property
    def effective_leverage(self) -> Decimal:
        """Leverage used in risk math; missing or non-positive means 1x."""
        if self.leverage is None or self.leverage <= 0:
            return ONE
        return self.leverage

    @property
    def risk_amount(self) -> Decimal:
        """Currency at risk between entry and stop-loss (0 without a stop)."""
        if not self.stop_loss:
            return ZERO
        return abs(self.entry_price - self.stop_loss) * self.position_size * self.effective_leverage

    @property
    def notional_exposure(self) -> Decimal:
        """Capital tied up by the position: |entry| * size / max(leverage, 1)."""
        return abs(self.entry_price) * self.position_size / max(self.effective_leverage, ONE)

    @property
    def closed_at(self) -> datetime:
        """Timestamp used to order closed trades on the equity curve."""
        return self.exit_time or self.entry_time


def filter_trades_by_mode(trades: Iterable[Trade], mode: Optional[AccountMode]) -> List[Trade]:
    """Return the ledger partition for one account mode (all trades when mode is None)."""
    if mode is None:
        return list(trades)
    return [t for t in trades if t.mode == mode]


# =============================================================================
# Settings
# =============================================================================

class TradingHoursWindow(BaseModel):
    """Allowed trading-hour window in the trader's timezone.

    ``end_hour`` is exclusive. Windows with ``start_hour > end_hour`` wrap
    past midnight; ``start_hour == end_hour`` allows the whole day.
    """
    model_config = ConfigDict(frozen=True)

    enabled: bool = Field(default=False, description="Window enforced")
    start_hour: int = Field(default=0, ge=0, le=23, description="First allowed hour")
    end_hour: int = Field(default=24, ge=0, le=24, description="Exclusive end hour")

    def contains(self, hour: int) -> bool:
        return hour_in_window(hour, self.start_hour, self.end_hour % 24)

    def describe(self) -> str:
        return f"{self.start_hour:02d}:00-{self.end_hour:02d}:00"


class RuleConfig(BaseModel):
    """Trading rules. A None threshold means the rule is not configured.

    Attributes:
        max_trades_per_day: Cap on entries per calendar day
        max_trades_per_week: Cap on entries per ISO week
        allowed_trading_hours: Permitted entry window
        max_lot_size: Largest allowed position size
        daily_profit_target: Informational target, never a violation
        daily_loss_limit: Realized loss per day, in account currency
        min_risk_reward: Minimum planned risk/reward ratio
        psychological_rules: Free-text reminders shown to the trader
    """
    model_config = ConfigDict(frozen=True)

    max_trades_per_day: Optional[int] = Field(default=None, ge=0)
    max_trades_per_week: Optional[int] = Field(default=None, ge=0)
    allowed_trading_hours: TradingHoursWindow = Field(default_factory=TradingHoursWindow)
    max_lot_size: Optional[Decimal] = Field(default=None, ge=0)
    daily_profit_target: Optional[Decimal] = Field(default=None, ge=0)
    daily_loss_limit: Optional[Decimal] = Field(default=None, ge=0)
    min_risk_reward: Optional[Decimal] = Field(default=None, ge=0)
    psychological_rules: List[str] = Field(default_factory=list)


class RiskManagementConfig(BaseModel):
    """Risk caps, expressed in percent of capital."""
    model_config = ConfigDict(frozen=True)

    max_risk_per_trade: Optional[Decimal] = Field(default=None, ge=0)
    max_risk_daily: Optional[Decimal] = Field(default=None, ge=0)
    max_risk_weekly: Optional[Decimal] = Field(default=None, ge=0)
    max_drawdown: Optional[Decimal] = Field(default=None, ge=0)
    drawdown_mode: DrawdownMode = Field(default=DrawdownMode.WARNING)


class LockoutState(BaseModel):
    """Persisted ultra-disciplined mode state.

    ``blocked_until`` is the only externally-persisted field the engine
    reasons about; ``updated_at`` orders concurrent writes.
    """
    model_config = ConfigDict(frozen=True)

    enabled: bool = Field(default=False, description="Ultra-disciplined mode on")
    block_on_rule_break: bool = Field(default=False, description="Lock after critical violations")
    blocked_until: Optional[datetime] = Field(default=None, description="Lock expiry")
    updated_at: Optional[datetime] = Field(default=None, description="Last write time")

    @field_validator("blocked_until", "updated_at")
    @classmethod
    def make_aware(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _aware(v)


class Settings(BaseModel):
    """Per-user trading configuration, validated once at the boundary.

    Attributes:
        account_size: Nominal account size
        base_currency: Account currency code
        risk_per_trade: Default sizing risk percent
        current_capital: Pinned or derived current capital (falls back to account_size)
        initial_capital: Equity curve starting point (falls back to account_size)
        manual_capital_adjustment: Whether current_capital is pinned by hand
        rules: Trading rules
        risk_management: Risk caps and drawdown response
        lockout: Ultra-disciplined mode state
        lockout_duration_hours: Lock length after a critical violation
        good_trade_rr_threshold: R/R at or above which a clean trade is a model trade
        risk_window_size: Trailing trades used for average risk (None = all)
        warning_ratio: Fraction of a cap at which warnings start
        timezone: IANA timezone for calendar-day and hour rules
    """
    model_config = ConfigDict(frozen=True, allow_inf_nan=False)

    account_size: Decimal = Field(default=Decimal("10000"), ge=0)
    base_currency: str = Field(default="USD")
    risk_per_trade: Decimal = Field(default=Decimal("1"), ge=0)
    current_capital: Optional[Decimal] = Field(default=None)
    initial_capital: Optional[Decimal] = Field(default=None)
    manual_capital_adjustment: bool = Field(default=False)

    rules: RuleConfig = Field(default_factory=RuleConfig)
    risk_management: RiskManagementConfig = Field(default_factory=RiskManagementConfig)
    lockout: LockoutState = Field(default_factory=LockoutState)

    lockout_duration_hours: float = Field(default=24.0, ge=0)
    good_trade_rr_threshold: Decimal = Field(default=Decimal("2"), ge=0)
    risk_window_size: Optional[int] = Field(default=None, ge=1)
    warning_ratio: Decimal = Field(default=Decimal("0.8"), gt=0, le=1)
    timezone: str = Field(default="UTC")

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        """Reject unknown IANA names."""
        if v.upper() == "UTC":
            return v
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Unknown timezone: {v}")
        return v

    @property
    def effective_current_capital(self) -> Decimal:
        if self.current_capital:
            return self.current_capital
        return self.account_size

    @property
    def effective_initial_capital(self) -> Decimal:
        if self.initial_capital:
            return self.initial_capital
        return self.account_size

    @property
    def tzinfo(self) -> tzinfo:
        return resolve_timezone(self.timezone)

    def with_lockout(self, lockout: LockoutState) -> "Settings":
        """Copy of these settings carrying a new lockout state."""
        return self.model_copy(update={"lockout": lockout})


# =============================================================================
# Derived Risk Outputs
# =============================================================================

class RiskMetrics(BaseModel):
    """Quantitative risk figures derived from the ledger.

    Percent fields are in 0-100 units. Every field is finite.
    """
    model_config = ConfigDict(frozen=True)

    current_equity: Decimal = ZERO
    peak_equity: Decimal = ZERO
    current_drawdown: Decimal = ZERO
    current_drawdown_percent: Decimal = ZERO
    max_drawdown: Decimal = ZERO
    max_drawdown_percent: Decimal = ZERO
    current_exposure: Decimal = ZERO
    current_exposure_percent: Decimal = ZERO
    exposure_by_asset: Dict[str, Decimal] = Field(default_factory=dict)
    average_risk_per_trade: Decimal = ZERO
    max_risk_allowed: Optional[Decimal] = None
    daily_loss: Decimal = ZERO
    daily_loss_percent: Decimal = ZERO
    today_risk_percent: Decimal = ZERO
    weekly_risk_percent: Decimal = ZERO


class RealtimeRisk(BaseModel):
    """Live budget view for the current day.

    ``risk_remaining_*`` and ``trades_remaining`` are None when the matching
    cap is not configured. The margin bar uses 100% as its limit when no
    daily risk cap is set.
    """
    model_config = ConfigDict(frozen=True)

    trades_today: int = 0
    trades_remaining: Optional[int] = None
    risk_used_amount: Decimal = ZERO
    risk_used_percent: Decimal = ZERO
    risk_remaining_amount: Optional[Decimal] = None
    risk_remaining_percent: Optional[Decimal] = None
    margin_used: Decimal = ZERO
    margin_available: Decimal = ZERO
    margin_limit: Decimal = Decimal("100")
    daily_pnl: Decimal = ZERO
    profit_target_reached: bool = False


class StatusCondition(BaseModel):
    """One true condition contributing to the global status."""
    model_config = ConfigDict(frozen=True)

    key: str
    status: RiskStatus
    reason: str


class GlobalStatus(BaseModel):
    """Operability verdict with every reason that justifies it.

    Attributes:
        status: Maximum severity among the true conditions
        reasons: Reasons ordered blocked first, then warnings
        conditions: The true conditions with their individual severity
        max_drawdown: Configured max drawdown percent
        drawdown_mode: Configured drawdown response
        daily_loss_limit: Configured daily loss limit (currency)
        max_risk_per_trade: Configured per-trade risk cap
        position_size_factor: 1 normal, 0.5 partial block, 0 blocked
    """
    model_config = ConfigDict(frozen=True)

    status: RiskStatus = RiskStatus.OK
    reasons: List[str] = Field(default_factory=list)
    conditions: List[StatusCondition] = Field(default_factory=list)
    max_drawdown: Optional[Decimal] = None
    drawdown_mode: DrawdownMode = DrawdownMode.WARNING
    daily_loss_limit: Optional[Decimal] = None
    max_risk_per_trade: Optional[Decimal] = None
    max_risk_daily: Optional[Decimal] = None
    max_risk_weekly: Optional[Decimal] = None
    position_size_factor: Decimal = ONE

    @property
    def is_blocked(self) -> bool:
        return self.status == RiskStatus.BLOCKED

    @property
    def can_trade(self) -> bool:
        return self.status != RiskStatus.BLOCKED


class TradeEvaluation(BaseModel):
    """Rule outcomes for a single trade."""
    model_config = ConfigDict(frozen=True)

    trade_id: str
    evaluated_rules: List[EvaluatedRule] = Field(default_factory=list)
    violated_rules: List[RuleViolation] = Field(default_factory=list)
    status: RuleStatus = RuleStatus.CLEAN

    @property
    def has_critical(self) -> bool:
        return any(v.is_critical for v in self.violated_rules)


# =============================================================================
# Goals
# =============================================================================

class GoalConstraintConfig(BaseModel):
    """Parameters of a goal constraint.

    Attributes:
        session: Session name for ``session`` constraints
        start_hour: First allowed hour for ``hours`` constraints
        end_hour: Exclusive end hour for ``hours`` constraints
        max_value: Cap for ``max-trades`` / ``max-loss`` (defaults to the goal target)
    """
    model_config = ConfigDict(frozen=True)

    session: Optional[str] = None
    start_hour: Optional[int] = Field(default=None, ge=0, le=23)
    end_hour: Optional[int] = Field(default=None, ge=0, le=24)
    max_value: Optional[Decimal] = None


class GoalConsequences(BaseModel):
    """What a binding goal imposes on the trader when it fails.

    Attributes:
        cooldown_hours: Lock trading for this many hours
        reduce_risk_percent: Cut ``risk_per_trade`` by this percent
    """
    model_config = ConfigDict(frozen=True, allow_inf_nan=False)

    cooldown_hours: Optional[float] = Field(default=None, ge=0)
    reduce_risk_percent: Optional[Decimal] = Field(default=None, ge=0, le=100)


class TradingGoal(BaseModel):
    """A trading goal, optionally restricting trading inside its window.

    The window is ``[start_date, end_date)``. A goal whose end precedes its
    start is accepted but never active.
    """
    model_config = ConfigDict(frozen=True, allow_inf_nan=False)

    id: str = Field(default_factory=lambda: str(uuid4()))
    period: GoalPeriod = GoalPeriod.DAILY
    type: GoalType = GoalType.PNL
    target: Decimal = ZERO
    start_date: datetime
    end_date: datetime
    constraint_type: GoalConstraintType = GoalConstraintType.NONE
    constraint_config: GoalConstraintConfig = Field(default_factory=GoalConstraintConfig)
    is_primary: bool = False
    is_binding: bool = False
    consequences: Optional[GoalConsequences] = None
    completed: bool = False

    @field_validator("start_date", "end_date")
    @classmethod
    def make_aware(cls, v: datetime) -> datetime:
        return ensure_aware(v)

    @property
    def is_well_formed(self) -> bool:
        return self.start_date < self.end_date

    def in_window(self, now: datetime) -> bool:
        return self.is_well_formed and self.start_date <= ensure_aware(now) < self.end_date


class ConstraintResult(BaseModel):
    """Whether a goal constraint currently blocks trading."""
    model_config = ConfigDict(frozen=True)

    active: bool = False
    message: Optional[str] = None
    goal_id: Optional[str] = None
    reason: Optional[GoalConstraintType] = None


class GoalBlockResult(BaseModel):
    """Aggregate goal veto over primary and binding goals."""
    model_config = ConfigDict(frozen=True)

    blocked: bool = False
    message: Optional[str] = None
    goal_id: Optional[str] = None
    blocking_goal_ids: List[str] = Field(default_factory=list)


# =============================================================================
# Merged Decision and Snapshot Input
# =============================================================================

class TradingDecision(BaseModel):
    """Single operable / warning / blocked answer merged from every veto."""
    model_config = ConfigDict(frozen=True)

    status: DecisionStatus = DecisionStatus.OPERABLE
    reasons: List[str] = Field(default_factory=list)
    position_size_factor: Decimal = ONE
    blocked_until: Optional[datetime] = None

    @property
    def can_trade(self) -> bool:
        return self.status != DecisionStatus.BLOCKED


class LedgerSnapshot(BaseModel):
    """Input document accepted by the CLI: settings, ledger and goals."""
    model_config = ConfigDict(extra="ignore")

    settings: Settings = Field(default_factory=Settings)
    trades: List[Trade] = Field(default_factory=list)
    goals: List[TradingGoal] = Field(default_factory=list)
    mode: Optional[AccountMode] = None
