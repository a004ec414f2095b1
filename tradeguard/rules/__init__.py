"""Rule evaluation for tradeguard.

Per-trade and ledger-wide compliance checks, trade classification and
annotation of trades with their rule outcomes.
"""

from tradeguard.rules.evaluator import (
    TRADE_RULES,
    RuleContext,
    RuleOutcome,
    TradeRule,
    annotate_ledger,
    annotate_trade,
    classify_trade,
    evaluate_ledger,
    evaluate_trade,
    planned_risk_reward,
    rule_status,
)

__all__ = [
    'TRADE_RULES',
    'RuleContext',
    'RuleOutcome',
    'TradeRule',
    'annotate_ledger',
    'annotate_trade',
    'classify_trade',
    'evaluate_ledger',
    'evaluate_trade',
    'planned_risk_reward',
    'rule_status',
]
