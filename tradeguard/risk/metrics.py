"""Risk metrics calculator.

Derives drawdown, exposure, average risk and daily loss figures from a
trade ledger. Every function here is pure and total: empty ledgers, zero
capital and missing optional fields resolve to 0, never NaN/Infinity or an
exception.
"""
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import structlog

from tradeguard.core.models import RealtimeRisk, RiskMetrics, Settings, Trade
from tradeguard.utils.numeric import HUNDRED, ZERO, percent_of, safe_divide
from tradeguard.utils.timeutils import ensure_aware, same_iso_week, same_local_day

logger = structlog.get_logger(__name__)


@dataclass
class DrawdownSummary:
    """Result of folding closed trades into an equity curve.

    Attributes:
        equity: Equity after the last closed trade
        peak: Highest equity seen (starting capital included)
        current_drawdown: peak - equity, never negative
        current_drawdown_pct: current drawdown as percent of peak
        max_drawdown: Largest peak-to-trough decline seen
        max_drawdown_pct: Largest drawdown percent seen
    """
    equity: Decimal
    peak: Decimal
    current_drawdown: Decimal = ZERO
    current_drawdown_pct: Decimal = ZERO
    max_drawdown: Decimal = ZERO
    max_drawdown_pct: Decimal = ZERO


# =============================================================================
# Equity Curve & Drawdown
# =============================================================================

def closed_trades_in_order(trades: Iterable[Trade]) -> List[Trade]:
    """Closed trades with a realized PnL, ordered by exit time then id."""
    closed = [t for t in trades if t.is_closed and t.pnl is not None]
    return sorted(closed, key=lambda t: (t.closed_at, t.entry_time, t.id))


def build_equity_curve(trades: Iterable[Trade], initial_capital: Decimal) -> List[Tuple[Optional[datetime], Decimal]]:
    """Running equity starting at ``initial_capital``.

    The first point is the starting capital (timestamp None); each closed
    trade then adds its PnL.
    """
    equity = initial_capital
    curve: List[Tuple[Optional[datetime], Decimal]] = [(None, equity)]
    for trade in closed_trades_in_order(trades):
        equity += trade.pnl
        curve.append((trade.closed_at, equity))
    return curve


def _drawdown_pct(peak: Decimal, equity: Decimal) -> Decimal:
    if peak <= 0:
        return ZERO
    return percent_of(max(ZERO, peak - equity), peak)


def summarize_drawdown(trades: Iterable[Trade], initial_capital: Decimal) -> DrawdownSummary:
    """Fold the equity curve into current and historical drawdown.

    The current point is part of the fold, so the current drawdown percent
    can never exceed the historical maximum.
    """
    curve = build_equity_curve(trades, initial_capital)
    summary = DrawdownSummary(equity=initial_capital, peak=initial_capital)

    for _, equity in curve:
        summary.equity = equity
        if equity > summary.peak:
            summary.peak = equity
        drawdown = max(ZERO, summary.peak - equity)
        drawdown_pct = _drawdown_pct(summary.peak, equity)
        summary.max_drawdown = max(summary.max_drawdown, drawdown)
        summary.max_drawdown_pct = max(summary.max_drawdown_pct, drawdown_pct)
        summary.current_drawdown = drawdown
        summary.current_drawdown_pct = drawdown_pct

    return summary


# =============================================================================
# Exposure
# =============================================================================

def exposure_by_asset(trades: Iterable[Trade]) -> Dict[str, Decimal]:
    """Capital tied up by open positions, grouped by asset."""
    exposure: Dict[str, Decimal] = {}
    for trade in trades:
        if not trade.is_open:
            continue
        exposure[trade.asset] = exposure.get(trade.asset, ZERO) + trade.notional_exposure
    return exposure


# =============================================================================
# Risk Per Trade
# =============================================================================

def trade_risk_percent(trade: Trade, capital: Decimal) -> Decimal:
    """Risk between entry and stop as percent of capital (0 without a stop)."""
    return percent_of(trade.risk_amount, capital)


def recent_trades(trades: Sequence[Trade], window: Optional[int]) -> List[Trade]:
    """The ``window`` most recent trades by entry time (all when window is None)."""
    ordered = sorted(trades, key=lambda t: (t.entry_time, t.id))
    if window is None:
        return ordered
    return ordered[-window:]


def average_risk_percent(trades: Sequence[Trade], capital: Decimal, window: Optional[int] = None) -> Decimal:
    """Mean per-trade risk percent over the trailing window."""
    sample = recent_trades(trades, window)
    if not sample:
        return ZERO
    total = sum((trade_risk_percent(t, capital) for t in sample), ZERO)
    return safe_divide(total, Decimal(len(sample)))


def committed_risk(trades: Iterable[Trade], now: datetime, settings: Settings, weekly: bool = False) -> Tuple[Decimal, Decimal]:
    """Risk committed by trades entered today (or this ISO week).

    Both open and closed trades count; trades without a stop-loss add 0.

    Returns:
        Tuple of (amount, percent of current capital)
    """
    tz = settings.tzinfo
    same_period = same_iso_week if weekly else same_local_day
    amount = sum(
        (t.risk_amount for t in trades if same_period(t.entry_time, now, tz)),
        ZERO,
    )
    return amount, percent_of(amount, settings.effective_current_capital)


# =============================================================================
# Daily Loss
# =============================================================================

def daily_realized_pnl(trades: Iterable[Trade], now: datetime, settings: Settings) -> Decimal:
    """Net realized PnL of trades closed on ``now``'s local calendar day."""
    tz = settings.tzinfo
    return sum(
        (t.pnl for t in trades if t.is_closed and t.pnl is not None and same_local_day(t.closed_at, now, tz)),
        ZERO,
    )


def daily_loss_amount(trades: Iterable[Trade], now: datetime, settings: Settings) -> Decimal:
    """Gross realized loss today, as a positive magnitude."""
    tz = settings.tzinfo
    return sum(
        (
            -t.pnl
            for t in trades
            if t.is_closed and t.pnl is not None and t.pnl < 0 and same_local_day(t.closed_at, now, tz)
        ),
        ZERO,
    )


# =============================================================================
# Public API
# =============================================================================

def compute_risk_metrics(trades: Sequence[Trade], settings: Settings, now: datetime) -> RiskMetrics:
    """Derive the full RiskMetrics snapshot for a ledger.

    Args:
        trades: Ledger for the active account mode
        settings: Trader settings
        now: Evaluation instant (naive values are treated as UTC)

    Returns:
        RiskMetrics with every field finite
    """
    now = ensure_aware(now)
    trades = list(trades)
    capital = settings.effective_current_capital

    drawdown = summarize_drawdown(trades, settings.effective_initial_capital)

    by_asset = exposure_by_asset(trades)
    exposure = sum(by_asset.values(), ZERO)

    daily_loss = daily_loss_amount(trades, now, settings)
    _, today_pct = committed_risk(trades, now, settings)
    _, week_pct = committed_risk(trades, now, settings, weekly=True)

    metrics = RiskMetrics(
        current_equity=drawdown.equity,
        peak_equity=drawdown.peak,
        current_drawdown=drawdown.current_drawdown,
        current_drawdown_percent=drawdown.current_drawdown_pct,
        max_drawdown=drawdown.max_drawdown,
        max_drawdown_percent=drawdown.max_drawdown_pct,
        current_exposure=exposure,
        current_exposure_percent=percent_of(exposure, capital),
        exposure_by_asset=by_asset,
        average_risk_per_trade=average_risk_percent(trades, capital, settings.risk_window_size),
        max_risk_allowed=settings.risk_management.max_risk_per_trade,
        daily_loss=daily_loss,
        daily_loss_percent=percent_of(daily_loss, capital),
        today_risk_percent=today_pct,
        weekly_risk_percent=week_pct,
    )

    logger.debug(
        "metrics.computed",
        trades=len(trades),
        drawdown_pct=str(metrics.current_drawdown_percent),
        exposure_pct=str(metrics.current_exposure_percent),
        daily_loss=str(daily_loss),
    )
    return metrics


def compute_realtime_risk(trades: Sequence[Trade], settings: Settings, now: datetime) -> RealtimeRisk:
    """Today's risk budget: used, remaining, trades left and the margin bar."""
    now = ensure_aware(now)
    trades = list(trades)
    tz = settings.tzinfo
    capital = settings.effective_current_capital
    max_daily = settings.risk_management.max_risk_daily
    max_trades = settings.rules.max_trades_per_day

    used_amount, used_pct = committed_risk(trades, now, settings)
    trades_today = sum(1 for t in trades if same_local_day(t.entry_time, now, tz))

    trades_remaining = None
    if max_trades is not None:
        trades_remaining = max(0, max_trades - trades_today)

    remaining_pct = None
    remaining_amount = None
    if max_daily is not None:
        remaining_pct = max(ZERO, max_daily - used_pct)
        remaining_amount = remaining_pct / HUNDRED * capital

    margin_limit = max_daily if max_daily is not None else HUNDRED
    daily_pnl = daily_realized_pnl(trades, now, settings)
    target = settings.rules.daily_profit_target

    return RealtimeRisk(
        trades_today=trades_today,
        trades_remaining=trades_remaining,
        risk_used_amount=used_amount,
        risk_used_percent=used_pct,
        risk_remaining_amount=remaining_amount,
        risk_remaining_percent=remaining_pct,
        margin_used=used_pct,
        margin_available=max(ZERO, margin_limit - used_pct),
        margin_limit=margin_limit,
        daily_pnl=daily_pnl,
        profit_target_reached=bool(target) and daily_pnl >= target,
    )
