"""
Settlement Package

Balances, debt simplification and the proposal/confirm cycle.
"""

from ledger_core.settlement.engine import (
    build_proposal,
    compute_balances,
    compute_settlement,
    confirm_settlement,
    explain_settlement,
    find_stale_transactions,
    justify_settlement,
    settlement_history,
    settlement_reminder,
    simplify_debts,
    transaction_shares,
    unsettled_transactions,
)

__all__ = [
    "build_proposal",
    "compute_balances",
    "compute_settlement",
    "confirm_settlement",
    "explain_settlement",
    "find_stale_transactions",
    "justify_settlement",
    "settlement_history",
    "settlement_reminder",
    "simplify_debts",
    "transaction_shares",
    "unsettled_transactions",
]
