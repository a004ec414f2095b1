"""Unit tests for tradeguard data models."""
import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from zoneinfo import ZoneInfo

from pydantic import ValidationError

from tradeguard.core.models import (
    # Enums
    AccountMode, DrawdownMode, GoalConstraintType, RiskStatus, RuleKind,
    RuleSeverity, TradeClassification, TradeStatus,
    # Models
    EvaluatedRule, GlobalStatus, LedgerSnapshot, LockoutState, RuleViolation,
    Settings, Trade, TradingDecision, TradingGoal, TradingHoursWindow,
    filter_trades_by_mode,
)


# =============================================================================
# Enum Tests
# =============================================================================

class TestEnums:
    """Test enumeration values and behavior."""

    def test_classification_values(self):
        """Test TradeClassification enum values."""
        assert TradeClassification.MODEL_TRADE.value == "model-trade"
        assert TradeClassification.NEUTRAL.value == "neutral"
        assert TradeClassification.ERROR_TRADE.value == "error-trade"

    def test_drawdown_mode_values(self):
        """Test DrawdownMode enum values."""
        assert DrawdownMode.WARNING.value == "warning"
        assert DrawdownMode.PARTIAL_BLOCK.value == "partial-block"
        assert DrawdownMode.HARD_STOP.value == "hard-stop"

    def test_goal_constraint_values(self):
        """Test GoalConstraintType enum values."""
        assert GoalConstraintType.MAX_TRADES.value == "max-trades"
        assert GoalConstraintType.MAX_LOSS.value == "max-loss"

    def test_risk_status_ordering(self):
        """blocked outranks warning, which outranks ok."""
        assert RiskStatus.OK.rank < RiskStatus.WARNING.rank < RiskStatus.BLOCKED.rank

    def test_enums_accept_values(self):
        """String values round-trip through the enum constructor."""
        assert AccountMode("live") == AccountMode.LIVE
        assert RuleKind("max_trades_per_day") == RuleKind.MAX_TRADES_PER_DAY


# =============================================================================
# Trade Tests
# =============================================================================

class TestTrade:
    """Test Trade model."""

    def test_trade_defaults(self):
        """Only the entry time is required."""
        trade = Trade(entry_time=datetime(2024, 3, 6, 10, 0))

        assert trade.id
        assert trade.status == TradeStatus.OPEN
        assert trade.is_open
        assert not trade.is_closed
        assert trade.entry_price == Decimal("0")
        assert trade.evaluated_rules == []
        assert trade.classification is None

    def test_naive_timestamps_are_utc(self):
        """Naive timestamps are interpreted as UTC."""
        trade = Trade(
            entry_time=datetime(2024, 3, 6, 10, 0),
            exit_time=datetime(2024, 3, 6, 11, 0),
        )

        assert trade.entry_time.tzinfo is not None
        assert trade.entry_time.utcoffset() == timedelta(0)
        assert trade.closed_at == datetime(2024, 3, 6, 11, 0, tzinfo=timezone.utc)

    def test_closed_at_falls_back_to_entry(self):
        """Closed trades without exit time are ordered by entry time."""
        entry = datetime(2024, 3, 6, 10, 0, tzinfo=timezone.utc)
        trade = Trade(entry_time=entry, status=TradeStatus.CLOSED, pnl=Decimal("10"))

        assert trade.closed_at == entry

    def test_risk_amount(self):
        """Risk is |entry - stop| * size * leverage."""
        trade = Trade(
            entry_time=datetime(2024, 3, 6),
            entry_price=Decimal("100"),
            stop_loss=Decimal("95"),
            position_size=Decimal("2"),
            leverage=Decimal("3"),
        )

        assert trade.risk_amount == Decimal("30")

    def test_risk_amount_without_stop(self):
        """No stop-loss means zero committed risk."""
        trade = Trade(entry_time=datetime(2024, 3, 6), entry_price=Decimal("100"), position_size=Decimal("2"))

        assert trade.risk_amount == Decimal("0")

    def test_non_positive_leverage_means_1x(self):
        """Missing, zero or negative leverage degrades to 1x."""
        for leverage in (None, Decimal("0"), Decimal("-2")):
            trade = Trade(entry_time=datetime(2024, 3, 6), leverage=leverage)
            assert trade.effective_leverage == Decimal("1")

    def test_notional_exposure(self):
        """Exposure divides by leverage, never by less than 1."""
        base = {"entry_time": datetime(2024, 3, 6), "entry_price": Decimal("100"), "position_size": Decimal("2")}

        assert Trade(leverage=Decimal("4"), **base).notional_exposure == Decimal("50")
        assert Trade(leverage=Decimal("0.5"), **base).notional_exposure == Decimal("200")

    def test_trade_rejects_non_finite(self):
        """NaN and Infinity are rejected at the boundary."""
        with pytest.raises(ValidationError):
            Trade(entry_time=datetime(2024, 3, 6), entry_price=Decimal("NaN"))

        with pytest.raises(ValidationError):
            Trade(entry_time=datetime(2024, 3, 6), pnl=Decimal("Infinity"))

    def test_trade_rejects_negative_size(self):
        """Position size must be non-negative."""
        with pytest.raises(ValidationError):
            Trade(entry_time=datetime(2024, 3, 6), position_size=Decimal("-1"))

    def test_trade_is_frozen(self):
        """Trades are immutable; evaluation returns copies."""
        trade = Trade(entry_time=datetime(2024, 3, 6))

        with pytest.raises(ValidationError):
            trade.asset = "BTCUSDT"

    def test_filter_trades_by_mode(self):
        """Ledgers partition by account mode."""
        trades = [
            Trade(entry_time=datetime(2024, 3, 6), mode=AccountMode.LIVE),
            Trade(entry_time=datetime(2024, 3, 6), mode=AccountMode.DEMO),
            Trade(entry_time=datetime(2024, 3, 6), mode=AccountMode.LIVE),
        ]

        assert len(filter_trades_by_mode(trades, AccountMode.LIVE)) == 2
        assert len(filter_trades_by_mode(trades, AccountMode.SIMULATION)) == 0
        assert len(filter_trades_by_mode(trades, None)) == 3


# =============================================================================
# Rule Record Tests
# =============================================================================

class TestRuleRecords:
    """Test EvaluatedRule and RuleViolation."""

    def test_violation_from_evaluated(self):
        """Violations copy the evaluated rule and carry the trade id."""
        evaluated = EvaluatedRule(
            rule=RuleKind.MAX_LOT_SIZE,
            name="Max lot size",
            message="too big",
            severity=RuleSeverity.CRITICAL,
            expected=Decimal("2"),
            actual=Decimal("3"),
            respected=False,
        )

        violation = RuleViolation.from_evaluated(evaluated, trade_id="abc")

        assert violation.rule == RuleKind.MAX_LOT_SIZE
        assert violation.trade_id == "abc"
        assert violation.is_critical
        assert violation.actual == Decimal("3")

    def test_minor_violation_not_critical(self, minor_violation):
        """Minor violations are not critical."""
        assert not minor_violation.is_critical


# =============================================================================
# Settings Tests
# =============================================================================

class TestSettings:
    """Test Settings and nested configuration."""

    def test_settings_defaults(self):
        """Documented defaults for every optional field."""
        settings = Settings()

        assert settings.account_size == Decimal("10000")
        assert settings.lockout_duration_hours == 24.0
        assert settings.good_trade_rr_threshold == Decimal("2")
        assert settings.warning_ratio == Decimal("0.8")
        assert settings.risk_window_size is None
        assert settings.rules.max_trades_per_day is None
        assert settings.rules.min_risk_reward is None
        assert settings.risk_management.max_drawdown is None
        assert settings.risk_management.drawdown_mode == DrawdownMode.WARNING
        assert not settings.lockout.enabled
        assert not settings.rules.allowed_trading_hours.enabled

    def test_capital_fallbacks(self):
        """Unset or zero capitals fall back to the account size."""
        settings = Settings(account_size=Decimal("5000"))
        assert settings.effective_current_capital == Decimal("5000")
        assert settings.effective_initial_capital == Decimal("5000")

        settings = Settings(account_size=Decimal("5000"), current_capital=Decimal("0"))
        assert settings.effective_current_capital == Decimal("5000")

        settings = Settings(current_capital=Decimal("7500"), initial_capital=Decimal("8000"))
        assert settings.effective_current_capital == Decimal("7500")
        assert settings.effective_initial_capital == Decimal("8000")

    def test_timezone_validation(self):
        """Unknown IANA names are rejected."""
        assert Settings(timezone="Europe/Paris").tzinfo == ZoneInfo("Europe/Paris")
        assert Settings().tzinfo.utcoffset(None) == timedelta(0)

        with pytest.raises(ValidationError):
            Settings(timezone="Mars/Olympus_Mons")

    def test_negative_limits_rejected(self):
        """Limits must be non-negative."""
        with pytest.raises(ValidationError):
            Settings(account_size=Decimal("-1"))

        with pytest.raises(ValidationError):
            Settings(risk_management={"max_drawdown": Decimal("-5")})

        with pytest.raises(ValidationError):
            Settings(rules={"max_trades_per_day": -1})

    def test_warning_ratio_range(self):
        """Warning ratio is a fraction in (0, 1]."""
        with pytest.raises(ValidationError):
            Settings(warning_ratio=Decimal("0"))

        with pytest.raises(ValidationError):
            Settings(warning_ratio=Decimal("1.5"))

    def test_with_lockout(self):
        """with_lockout returns a copy and leaves the original untouched."""
        settings = Settings()
        until = datetime(2024, 3, 7, tzinfo=timezone.utc)

        updated = settings.with_lockout(LockoutState(enabled=True, blocked_until=until))

        assert updated.lockout.blocked_until == until
        assert settings.lockout.blocked_until is None


class TestTradingHoursWindow:
    """Test the allowed trading-hours window."""

    def test_simple_window(self):
        """End hour is exclusive."""
        window = TradingHoursWindow(enabled=True, start_hour=8, end_hour=17)

        assert window.contains(8)
        assert window.contains(16)
        assert not window.contains(17)
        assert not window.contains(7)
        assert window.describe() == "08:00-17:00"

    def test_wraparound_window(self):
        """start > end wraps past midnight."""
        window = TradingHoursWindow(enabled=True, start_hour=22, end_hour=6)

        assert window.contains(23)
        assert window.contains(3)
        assert not window.contains(6)
        assert not window.contains(12)

    def test_full_day_window(self):
        """The default 0-24 window allows every hour."""
        window = TradingHoursWindow(enabled=True)

        assert all(window.contains(hour) for hour in range(24))

    def test_hour_ranges_validated(self):
        """Hours outside 0-23 / 0-24 are rejected."""
        with pytest.raises(ValidationError):
            TradingHoursWindow(start_hour=24)

        with pytest.raises(ValidationError):
            TradingHoursWindow(end_hour=25)


# =============================================================================
# Goal and Decision Tests
# =============================================================================

class TestTradingGoal:
    """Test TradingGoal window handling."""

    def test_in_window(self):
        """Window is [start, end)."""
        start = datetime(2024, 3, 6, tzinfo=timezone.utc)
        goal = TradingGoal(start_date=start, end_date=start + timedelta(days=1))

        assert goal.in_window(start)
        assert goal.in_window(start + timedelta(hours=12))
        assert not goal.in_window(start + timedelta(days=1))
        assert not goal.in_window(start - timedelta(seconds=1))

    def test_malformed_goal_never_in_window(self):
        """End before start is accepted but never active."""
        start = datetime(2024, 3, 6, tzinfo=timezone.utc)
        goal = TradingGoal(start_date=start, end_date=start - timedelta(days=1))

        assert not goal.is_well_formed
        assert not goal.in_window(start)


class TestDecisionModels:
    """Test GlobalStatus and TradingDecision helpers."""

    def test_global_status_flags(self):
        """can_trade is false only when blocked."""
        assert GlobalStatus().can_trade
        assert GlobalStatus(status=RiskStatus.WARNING).can_trade
        assert GlobalStatus(status=RiskStatus.BLOCKED).is_blocked
        assert not GlobalStatus(status=RiskStatus.BLOCKED).can_trade

    def test_trading_decision_defaults(self):
        """A default decision is operable at full size."""
        decision = TradingDecision()

        assert decision.can_trade
        assert decision.position_size_factor == Decimal("1")
        assert decision.reasons == []


class TestLedgerSnapshot:
    """Test the CLI snapshot document."""

    def test_snapshot_from_json(self):
        """Unknown top-level keys are ignored; nested sections validate."""
        raw = """
        {
            "exported_by": "journal",
            "mode": "live",
            "settings": {"account_size": "25000", "rules": {"max_trades_per_day": 3}},
            "trades": [{"id": "a", "entry_time": "2024-03-06T10:00:00Z", "mode": "live"}],
            "goals": []
        }
        """

        snapshot = LedgerSnapshot.model_validate_json(raw)

        assert snapshot.mode == AccountMode.LIVE
        assert snapshot.settings.account_size == Decimal("25000")
        assert snapshot.settings.rules.max_trades_per_day == 3
        assert snapshot.trades[0].id == "a"

    def test_empty_snapshot(self):
        """Every section has a default."""
        snapshot = LedgerSnapshot.model_validate_json("{}")

        assert snapshot.trades == []
        assert snapshot.settings == Settings()
