"""
Ledger Exceptions

DESIGN DECISION: Malformed money data is an error, never a warning.
Absence of data is NOT an error - a fresh account simply gets empty
results. Only the cases below are surfaced to the caller.
"""

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from ledger_core.models.ledger import ValidationIssue


class LedgerError(Exception):
    """Base exception for the ledger core."""
    pass


class DataIntegrityError(LedgerError):
    """
    Transactions failed integrity checks.

    Raised before any computation starts: split shares that don't add up,
    unknown payers, non-positive amounts.
    """

    def __init__(self, message: str, issues: Optional[list["ValidationIssue"]] = None):
        super().__init__(message)
        self.issues = issues or []


class InsufficientDataError(LedgerError):
    """Not enough history for a learning or detection operation."""
    pass


class StaleProposalError(LedgerError):
    """
    The settlement proposal no longer matches the transaction set.

    The host must recompute and re-propose.
    """

    def __init__(self, message: str, changed_ids: Optional[list[str]] = None):
        super().__init__(message)
        self.changed_ids = changed_ids or []


class ProposalStateError(LedgerError):
    """Illegal settlement proposal state transition."""
    pass


class UnknownAnomalyError(LedgerError):
    """Feedback referenced an anomaly this account never produced."""
    pass
