"""Pytest fixtures and utilities for the tradeguard test suite."""
import itertools
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from tradeguard.core.models import (
    LockoutState,
    RiskManagementConfig,
    RuleConfig,
    RuleKind,
    RuleSeverity,
    RuleViolation,
    Settings,
    Trade,
    TradeStatus,
    TradingHoursWindow,
)

# Wednesday, ISO week 10 of 2024
NOW = datetime(2024, 3, 6, 12, 0, tzinfo=timezone.utc)


# =============================================================================
# Clock Fixtures
# =============================================================================

@pytest.fixture
def now():
    """Fixed evaluation instant."""
    return NOW


# =============================================================================
# Settings Fixtures
# =============================================================================

@pytest.fixture
def make_settings():
    """Build Settings from plain dicts for the nested sections."""
    def _make(rules=None, risk=None, lockout=None, hours=None, **overrides):
        values = dict(overrides)
        rule_values = dict(rules or {})
        if hours is not None:
            rule_values["allowed_trading_hours"] = TradingHoursWindow(enabled=True, start_hour=hours[0], end_hour=hours[1])
        if rule_values:
            values["rules"] = RuleConfig(**rule_values)
        if risk is not None:
            values["risk_management"] = RiskManagementConfig(**risk)
        if lockout is not None:
            values["lockout"] = LockoutState(**lockout)
        return Settings(**values)
    return _make


@pytest.fixture
def default_settings():
    """$10,000 account with no rules configured."""
    return Settings()


@pytest.fixture
def disciplined_lockout():
    """Ultra-disciplined mode on, locking after critical violations."""
    return LockoutState(enabled=True, block_on_rule_break=True)


# =============================================================================
# Trade Fixtures
# =============================================================================

@pytest.fixture
def make_trade():
    """Build trades with sequential ids; entered one hour before NOW by default."""
    counter = itertools.count(1)

    def _make(**overrides):
        values = {
            "id": f"t{next(counter):03d}",
            "asset": "EURUSD",
            "entry_price": Decimal("100"),
            "position_size": Decimal("1"),
            "entry_time": NOW - timedelta(hours=1),
        }
        values.update(overrides)
        return Trade(**values)
    return _make


@pytest.fixture
def make_closed_trade(make_trade):
    """Build a closed trade with the given pnl, exiting at ``exit_time``."""
    def _make(pnl, exit_time=None, **overrides):
        entry_time = overrides.pop("entry_time", (exit_time or NOW) - timedelta(minutes=30))
        return make_trade(
            status=TradeStatus.CLOSED,
            pnl=Decimal(str(pnl)),
            entry_time=entry_time,
            exit_time=exit_time or NOW - timedelta(minutes=5),
            **overrides,
        )
    return _make


@pytest.fixture
def critical_violation():
    """A critical per-trade violation."""
    return RuleViolation(
        rule=RuleKind.MAX_LOT_SIZE,
        name="Max lot size",
        message="Position size (3) exceeds max lot size (2)",
        severity=RuleSeverity.CRITICAL,
        expected=Decimal("2"),
        actual=Decimal("3"),
        trade_id="t001",
    )


@pytest.fixture
def minor_violation():
    """A minor per-trade violation."""
    return RuleViolation(
        rule=RuleKind.MIN_RISK_REWARD,
        name="Minimum risk/reward",
        message="R/R (1.20) below recommended minimum (2)",
        severity=RuleSeverity.MINOR,
        expected=Decimal("2"),
        actual=Decimal("1.20"),
        trade_id="t002",
    )


# =============================================================================
# Pytest Configuration
# =============================================================================

def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")


def pytest_collection_modifyitems(config, items):
    """Modify test collection to add markers."""
    for item in items:
        if "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
        elif not any(marker.name in ["unit", "integration"] for marker in item.own_markers):
            item.add_marker(pytest.mark.unit)
