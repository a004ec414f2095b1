"""Unit tests for the risk metrics calculator."""
import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from tradeguard.core.models import AccountMode, RiskMetrics, Settings, TradeStatus
from tradeguard.risk.metrics import (
    average_risk_percent,
    build_equity_curve,
    closed_trades_in_order,
    committed_risk,
    compute_realtime_risk,
    compute_risk_metrics,
    daily_loss_amount,
    daily_realized_pnl,
    exposure_by_asset,
    summarize_drawdown,
)

NOW = datetime(2024, 3, 6, 12, 0, tzinfo=timezone.utc)


def _all_finite(metrics: RiskMetrics) -> bool:
    values = [v for v in metrics.model_dump().values() if isinstance(v, Decimal)]
    values += list(metrics.exposure_by_asset.values())
    return all(v.is_finite() for v in values)


# =============================================================================
# Equity Curve & Drawdown Tests
# =============================================================================

class TestDrawdown:
    """Test equity curve and drawdown computation."""

    def test_empty_ledger(self):
        """No trades: flat curve at the starting capital."""
        summary = summarize_drawdown([], Decimal("10000"))

        assert summary.equity == Decimal("10000")
        assert summary.peak == Decimal("10000")
        assert summary.current_drawdown == Decimal("0")
        assert summary.max_drawdown_pct == Decimal("0")

    def test_drawdown_from_new_peak(self, make_closed_trade):
        """Drawdown is measured from the running peak."""
        trades = [
            make_closed_trade(1000, exit_time=NOW - timedelta(hours=3)),
            make_closed_trade(-2200, exit_time=NOW - timedelta(hours=2)),
        ]

        summary = summarize_drawdown(trades, Decimal("10000"))

        assert summary.equity == Decimal("8800")
        assert summary.peak == Decimal("11000")
        assert summary.current_drawdown == Decimal("2200")
        assert summary.current_drawdown_pct == Decimal("20")
        assert summary.max_drawdown_pct == Decimal("20")

    def test_partial_recovery_keeps_max(self, make_closed_trade):
        """Recovering reduces the current drawdown but not the historical max."""
        trades = [
            make_closed_trade(1000, exit_time=NOW - timedelta(hours=3)),
            make_closed_trade(-2200, exit_time=NOW - timedelta(hours=2)),
            make_closed_trade(1100, exit_time=NOW - timedelta(hours=1)),
        ]

        summary = summarize_drawdown(trades, Decimal("10000"))

        assert summary.current_drawdown == Decimal("1100")
        assert summary.current_drawdown_pct == Decimal("10")
        assert summary.max_drawdown == Decimal("2200")
        assert summary.max_drawdown_pct == Decimal("20")

    def test_curve_ordered_by_exit_time(self, make_closed_trade):
        """Trades are folded in exit order, not entry order."""
        late_exit = make_closed_trade(
            -500, exit_time=NOW - timedelta(hours=1), entry_time=NOW - timedelta(days=2),
        )
        early_exit = make_closed_trade(
            300, exit_time=NOW - timedelta(hours=5), entry_time=NOW - timedelta(days=1),
        )

        ordered = closed_trades_in_order([late_exit, early_exit])
        curve = build_equity_curve([late_exit, early_exit], Decimal("1000"))

        assert [t.id for t in ordered] == [early_exit.id, late_exit.id]
        assert [equity for _, equity in curve] == [Decimal("1000"), Decimal("1300"), Decimal("800")]

    def test_open_trades_excluded(self, make_trade, make_closed_trade):
        """Open trades and closed trades without pnl do not move equity."""
        trades = [
            make_trade(status=TradeStatus.OPEN, pnl=Decimal("-999")),
            make_trade(status=TradeStatus.CLOSED, pnl=None),
            make_closed_trade(-100),
        ]

        assert summarize_drawdown(trades, Decimal("1000")).equity == Decimal("900")

    def test_non_positive_peak(self, make_closed_trade):
        """Peak at or below zero reports 0% drawdown."""
        summary = summarize_drawdown([make_closed_trade(-100)], Decimal("0"))

        assert summary.equity == Decimal("-100")
        assert summary.current_drawdown_pct == Decimal("0")
        assert summary.max_drawdown_pct == Decimal("0")


# =============================================================================
# Exposure & Risk Tests
# =============================================================================

class TestExposureAndRisk:
    """Test exposure and per-trade risk figures."""

    def test_exposure_by_asset(self, make_trade, make_closed_trade):
        """Only open positions contribute; leverage reduces tied-up capital."""
        trades = [
            make_trade(asset="BTCUSDT", entry_price=Decimal("100"), position_size=Decimal("10"), leverage=Decimal("2")),
            make_trade(asset="BTCUSDT", entry_price=Decimal("100"), position_size=Decimal("1")),
            make_trade(asset="EURUSD", entry_price=Decimal("50"), position_size=Decimal("4")),
            make_closed_trade(10, asset="XAUUSD", entry_price=Decimal("2000"), position_size=Decimal("1")),
        ]

        exposure = exposure_by_asset(trades)

        assert exposure == {"BTCUSDT": Decimal("600"), "EURUSD": Decimal("200")}

    def test_average_risk(self, make_trade):
        """Trades without a stop count as zero risk."""
        trades = [
            make_trade(entry_price=Decimal("100"), stop_loss=Decimal("95"), position_size=Decimal("20")),
            make_trade(entry_price=Decimal("100"), position_size=Decimal("20")),
        ]

        assert average_risk_percent(trades, Decimal("10000")) == Decimal("0.5")

    def test_average_risk_trailing_window(self, make_trade):
        """Only the most recent trades by entry time are averaged."""
        older = make_trade(entry_time=NOW - timedelta(days=3), entry_price=Decimal("100"), position_size=Decimal("20"))
        newer = make_trade(
            entry_time=NOW - timedelta(days=1),
            entry_price=Decimal("100"),
            stop_loss=Decimal("95"),
            position_size=Decimal("20"),
        )

        assert average_risk_percent([newer, older], Decimal("10000"), window=1) == Decimal("1")
        assert average_risk_percent([newer, older], Decimal("10000"), window=None) == Decimal("0.5")

    def test_average_risk_empty(self):
        """No trades means zero average risk."""
        assert average_risk_percent([], Decimal("10000")) == Decimal("0")

    def test_committed_risk_day_and_week(self, make_trade):
        """Committed risk counts trades entered today or this ISO week."""
        settings = Settings()
        trades = [
            # today: 1%
            make_trade(entry_price=Decimal("100"), stop_loss=Decimal("95"), position_size=Decimal("20")),
            # Monday of the same ISO week: 2%
            make_trade(
                entry_time=datetime(2024, 3, 4, 9, 0, tzinfo=timezone.utc),
                entry_price=Decimal("100"),
                stop_loss=Decimal("90"),
                position_size=Decimal("20"),
            ),
            # previous week
            make_trade(
                entry_time=datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc),
                entry_price=Decimal("100"),
                stop_loss=Decimal("90"),
                position_size=Decimal("50"),
            ),
        ]

        day_amount, day_pct = committed_risk(trades, NOW, settings)
        week_amount, week_pct = committed_risk(trades, NOW, settings, weekly=True)

        assert day_amount == Decimal("100")
        assert day_pct == Decimal("1")
        assert week_amount == Decimal("300")
        assert week_pct == Decimal("3")


# =============================================================================
# Daily Loss Tests
# =============================================================================

class TestDailyLoss:
    """Test daily realized loss."""

    def test_daily_loss_today_only(self, make_closed_trade):
        """Losses closed today are summed as a positive magnitude."""
        settings = Settings()
        trades = [
            make_closed_trade(-150, exit_time=NOW - timedelta(hours=2)),
            make_closed_trade(-50, exit_time=NOW - timedelta(hours=1)),
            make_closed_trade(300, exit_time=NOW - timedelta(minutes=30)),
            make_closed_trade(-500, exit_time=NOW - timedelta(days=1)),
        ]

        assert daily_loss_amount(trades, NOW, settings) == Decimal("200")
        assert daily_realized_pnl(trades, NOW, settings) == Decimal("100")

    def test_daily_loss_uses_trader_timezone(self, make_closed_trade):
        """Calendar day boundaries follow the settings timezone."""
        # 02:00 UTC on March 6 is 21:00 on March 5 in New York
        trade = make_closed_trade(-80, exit_time=datetime(2024, 3, 6, 2, 0, tzinfo=timezone.utc))

        assert daily_loss_amount([trade], NOW, Settings()) == Decimal("80")
        assert daily_loss_amount([trade], NOW, Settings(timezone="America/New_York")) == Decimal("0")


# =============================================================================
# compute_risk_metrics Tests
# =============================================================================

class TestComputeRiskMetrics:
    """Test the full metrics snapshot."""

    def test_empty_ledger_all_zero(self, default_settings):
        """Empty ledger: every risk figure is zero."""
        metrics = compute_risk_metrics([], default_settings, NOW)

        assert metrics.current_drawdown == Decimal("0")
        assert metrics.current_drawdown_percent == Decimal("0")
        assert metrics.max_drawdown_percent == Decimal("0")
        assert metrics.current_exposure == Decimal("0")
        assert metrics.current_exposure_percent == Decimal("0")
        assert metrics.average_risk_per_trade == Decimal("0")
        assert metrics.daily_loss == Decimal("0")
        assert metrics.today_risk_percent == Decimal("0")
        assert metrics.exposure_by_asset == {}

    def test_metrics_snapshot(self, make_trade, make_closed_trade, make_settings):
        """Figures are computed against current and initial capital."""
        settings = make_settings(risk={"max_risk_per_trade": Decimal("2")})
        trades = [
            make_closed_trade(-200, exit_time=NOW - timedelta(hours=2)),
            make_trade(entry_price=Decimal("100"), stop_loss=Decimal("95"), position_size=Decimal("10")),
        ]

        metrics = compute_risk_metrics(trades, settings, NOW)

        assert metrics.current_equity == Decimal("9800")
        assert metrics.current_drawdown_percent == Decimal("2")
        assert metrics.current_exposure == Decimal("1000")
        assert metrics.current_exposure_percent == Decimal("10")
        assert metrics.daily_loss == Decimal("200")
        assert metrics.daily_loss_percent == Decimal("2")
        assert metrics.today_risk_percent == Decimal("0.5")
        assert metrics.max_risk_allowed == Decimal("2")

    def test_zero_capital_is_finite(self, make_trade, make_closed_trade):
        """Zero capital and zero leverage never yield NaN or Infinity."""
        settings = Settings(account_size=Decimal("0"))
        trades = [
            make_trade(leverage=Decimal("0"), stop_loss=Decimal("90"), position_size=Decimal("5")),
            make_closed_trade(-100),
        ]

        metrics = compute_risk_metrics(trades, settings, NOW)

        assert _all_finite(metrics)
        assert metrics.current_exposure_percent == Decimal("0")
        assert metrics.average_risk_per_trade == Decimal("0")

    def test_referentially_transparent(self, make_trade, make_closed_trade, default_settings):
        """Identical inputs give identical output."""
        trades = [make_closed_trade(-120), make_trade(stop_loss=Decimal("90"))]

        first = compute_risk_metrics(trades, default_settings, NOW)
        second = compute_risk_metrics(trades, default_settings, NOW)

        assert first == second

    def test_naive_now_accepted(self, default_settings):
        """A naive evaluation instant is treated as UTC."""
        metrics = compute_risk_metrics([], default_settings, datetime(2024, 3, 6, 12, 0))

        assert metrics.current_equity == Decimal("10000")


# =============================================================================
# Realtime Risk Tests
# =============================================================================

class TestRealtimeRisk:
    """Test today's risk budget."""

    def test_budget_with_caps(self, make_trade, make_settings):
        """Remaining risk and trades are measured against the caps."""
        settings = make_settings(
            rules={"max_trades_per_day": 5},
            risk={"max_risk_daily": Decimal("3")},
        )
        trades = [
            make_trade(entry_price=Decimal("100"), stop_loss=Decimal("95"), position_size=Decimal("10")),
            make_trade(entry_price=Decimal("100"), stop_loss=Decimal("95"), position_size=Decimal("10")),
            make_trade(entry_time=NOW - timedelta(days=1), stop_loss=Decimal("50"), position_size=Decimal("10")),
        ]

        realtime = compute_realtime_risk(trades, settings, NOW)

        assert realtime.trades_today == 2
        assert realtime.trades_remaining == 3
        assert realtime.risk_used_amount == Decimal("100")
        assert realtime.risk_used_percent == Decimal("1")
        assert realtime.risk_remaining_percent == Decimal("2")
        assert realtime.risk_remaining_amount == Decimal("200")
        assert realtime.margin_limit == Decimal("3")
        assert realtime.margin_available == Decimal("2")

    def test_budget_without_caps(self, make_trade, default_settings):
        """Without caps, remaining values are None and the bar uses 100%."""
        realtime = compute_realtime_risk([make_trade()], default_settings, NOW)

        assert realtime.trades_remaining is None
        assert realtime.risk_remaining_percent is None
        assert realtime.margin_limit == Decimal("100")

    def test_trades_remaining_never_negative(self, make_trade, make_settings):
        """Exceeding the cap reports zero trades remaining."""
        settings = make_settings(rules={"max_trades_per_day": 1})

        realtime = compute_realtime_risk([make_trade(), make_trade()], settings, NOW)

        assert realtime.trades_remaining == 0

    def test_profit_target_informational(self, make_closed_trade, make_settings):
        """Reaching the daily profit target is reported, nothing more."""
        settings = make_settings(rules={"daily_profit_target": Decimal("100")})

        realtime = compute_realtime_risk([make_closed_trade(150)], settings, NOW)

        assert realtime.daily_pnl == Decimal("150")
        assert realtime.profit_target_reached is True

    def test_mode_partition_is_callers_job(self, make_trade, default_settings):
        """The calculator counts whatever ledger it is given."""
        trades = [make_trade(mode=AccountMode.LIVE), make_trade(mode=AccountMode.DEMO)]

        assert compute_realtime_risk(trades, default_settings, NOW).trades_today == 2
