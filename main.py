"""
tradeguard - Main Entry Point

Risk & rule compliance engine for discretionary traders: turns a trade
ledger and the trader's rules into risk metrics, rule verdicts and a single
"may I trade right now" decision.

Usage:
    # Check configuration
    python main.py --check

    # Evaluate a ledger snapshot (settings, trades, goals) and print the decision
    python main.py --status --snapshot ledger.json

    # Evaluate as of a given instant, live account only
    python main.py --status --snapshot ledger.json --now 2024-03-04T15:00:00Z --mode live

    # Human-readable report
    python main.py --status --snapshot ledger.json --format text
"""

import argparse
import json
import sys
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

import structlog
from pydantic import ValidationError

from tradeguard.core.config import tradeguard_config
from tradeguard.core.engine import ComplianceEngine, EngineSnapshot
from tradeguard.core.errors import SnapshotLoadError, TradeGuardError
from tradeguard.core.models import AccountMode, LedgerSnapshot
from tradeguard.utils.logging_config import setup_logging
from tradeguard.utils.timeutils import ensure_aware

logger = structlog.get_logger(__name__)


def check_configuration() -> Dict:
    """
    Check if configuration is valid.

    Returns:
        Dictionary with validation results
    """
    validation = tradeguard_config.validate_configuration()
    defaults = tradeguard_config.defaults
    return {
        "valid": validation["valid"],
        "issues": validation["issues"],
        "environment": tradeguard_config.system.environment,
        "timezone": tradeguard_config.system.timezone,
        "log_level": tradeguard_config.logging.log_level,
        "lockout_duration_hours": defaults.lockout_duration_hours,
        "warning_ratio": str(defaults.warning_ratio),
        "good_trade_rr_threshold": str(defaults.good_trade_rr_threshold),
        "risk_window_size": defaults.risk_window_size,
    }


def load_snapshot(path: str) -> LedgerSnapshot:
    """Read and validate a JSON ledger snapshot.

    Policy values the snapshot leaves unset (lockout duration, warning ratio,
    risk window, timezone, ...) are taken from the ``TRADEGUARD_*`` engine
    defaults and the system timezone.
    """
    try:
        raw = Path(path).read_text(encoding="utf-8")
    except OSError as e:
        raise SnapshotLoadError(path, str(e)) from e
    try:
        ledger = LedgerSnapshot.model_validate_json(raw)
    except ValidationError as e:
        raise SnapshotLoadError(path, f"{e.error_count()} validation error(s): {e}") from e

    settings = tradeguard_config.defaults.apply_to(ledger.settings, timezone=tradeguard_config.system.timezone)
    return ledger.model_copy(update={"settings": settings})


def parse_now(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 instant (``Z`` suffix accepted)."""
    if not value:
        return None
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return ensure_aware(datetime.fromisoformat(value))


def snapshot_report(snapshot: EngineSnapshot) -> Dict:
    """JSON-ready subset of an engine snapshot."""
    return snapshot.model_dump(
        mode="json",
        include={
            "evaluated_at",
            "decision",
            "global_status",
            "goal_block",
            "lockout_active",
            "metrics",
            "realtime",
            "ledger_violations",
        },
    )


def print_status(snapshot: EngineSnapshot):
    """Print formatted status output."""
    decision = snapshot.decision
    metrics = snapshot.metrics

    print("\n" + "=" * 60)
    print("           TRADEGUARD - TRADING STATUS")
    print("=" * 60)
    print(f"\nDecision: {decision.status.value.upper()}")
    print(f"Evaluated at: {snapshot.evaluated_at.isoformat()}")
    if decision.blocked_until:
        print(f"Locked until: {decision.blocked_until.isoformat()}")
    print(f"Position size factor: {decision.position_size_factor}")

    print("\nRisk metrics:")
    print(f"   Drawdown: {metrics.current_drawdown_percent:.2f}% (max {metrics.max_drawdown_percent:.2f}%)")
    print(f"   Exposure: {metrics.current_exposure_percent:.2f}%")
    print(f"   Average risk per trade: {metrics.average_risk_per_trade:.2f}%")
    print(f"   Daily loss: {metrics.daily_loss_percent:.2f}%")
    print(f"   Risk committed today: {metrics.today_risk_percent:.2f}%")

    if decision.reasons:
        print("\nReasons:")
        for reason in decision.reasons:
            print(f"   - {reason}")
    print("\n" + "=" * 60)


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="tradeguard - Risk & rule compliance engine"
    )

    # Actions
    parser.add_argument(
        "--check", action="store_true", help="Check configuration and exit"
    )
    parser.add_argument(
        "--status", action="store_true", help="Evaluate a ledger snapshot and print the decision"
    )

    # Snapshot input
    parser.add_argument("--snapshot", help="Path to a JSON snapshot (settings, trades, goals)")
    parser.add_argument("--now", help="Evaluation instant, ISO-8601 (default: current time)")
    parser.add_argument(
        "--mode",
        choices=[m.value for m in AccountMode],
        help="Account mode partition to evaluate (default: snapshot or config value)",
    )
    parser.add_argument(
        "--format", choices=["json", "text"], default="json", help="Output format (default: json)"
    )
    parser.add_argument(
        "--no-log-file", action="store_true", help="Log to stderr only"
    )

    args = parser.parse_args(argv)

    # Setup logging
    setup_logging(log_to_file=not args.no_log_file)

    if args.check:
        result = check_configuration()
        print(json.dumps(result, indent=2))
        return 0 if result["valid"] else 1

    if not args.status:
        parser.print_help()
        return 2

    if not args.snapshot:
        parser.error("--status requires --snapshot FILE")

    try:
        ledger = load_snapshot(args.snapshot)
        now = parse_now(args.now)
    except (TradeGuardError, ValueError) as e:
        logger.error("main.snapshot_error", error=str(e))
        print(f"✗ {e}", file=sys.stderr)
        return 1

    if args.mode:
        mode = AccountMode(args.mode)
    else:
        mode = ledger.mode or tradeguard_config.system.default_mode

    engine = ComplianceEngine()
    snapshot = engine.evaluate(ledger.trades, ledger.settings, ledger.goals, now=now, mode=mode)

    logger.info(
        "main.status_evaluated",
        decision=snapshot.decision.status.value,
        trades=len(snapshot.trades),
        mode=mode.value if mode else None,
    )

    if args.format == "text":
        print_status(snapshot)
    else:
        print(json.dumps(snapshot_report(snapshot), indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
