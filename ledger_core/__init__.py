"""
Ledger Core - Source Package

Reconciliation and adaptive anomaly engine for a shared-expense
assistant. Turns unsettled expenses into balances and settling
transfers, and learns spending baselines to flag unusual activity.

DESIGN PRINCIPLES:
1. Money math is never silently corrected - bad input fails loudly
2. Computation is pure, persistence belongs to the host
3. Settlement needs an explicit confirmation step
4. Learned state is replaced wholesale, never patched in place
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Ledger Core Team"
