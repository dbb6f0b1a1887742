"""
Two-Stage Transaction Validation

DESIGN DECISION: Validation happens in two distinct stages:

STAGE 1 - RECORD VALIDATION:
- Positive amounts and shares
- Split shares add up to the amount
- Settlement stamp consistency
- Each transaction is judged on its own

STAGE 2 - LEDGER VALIDATION:
- Unique transaction ids
- Payer is a known participant
- Every split / split_among participant is known
- Needs the participant list, so only runs in group mode

IMPORTANT: Validation NEVER silently fixes money math.
A split that is off by more than the tolerance is rejected, not rescaled.
"""

from collections import Counter
from decimal import Decimal
from typing import Iterable, Optional

from ledger_core.config import LedgerSettings, get_settings
from ledger_core.exceptions import DataIntegrityError
from ledger_core.models.ledger import (
    ParticipantId,
    Transaction,
    ValidationIssue,
    ValidationResult,
)


class TransactionValidator:
    """
    Validates transactions before the settlement engine touches them.

    Stage 1: Record validation (no context needed)
    Stage 2: Ledger validation (needs the participant list)
    """

    def __init__(self, settings: Optional[LedgerSettings] = None):
        self._settings = settings or get_settings().ledger

    def _validate_record(self, txn: Transaction) -> list[ValidationIssue]:
        """Stage 1: checks that only need the transaction itself."""
        issues = []

        if txn.amount is None or txn.amount <= 0:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="invalid_value",
                message=f"Transaction {txn.id} has non-positive amount {txn.amount}",
                severity="error",
                transaction_id=txn.id,
            ))

        if txn.split:
            bad_shares = [p for p, share in txn.split.items() if share <= 0]
            if bad_shares:
                issues.append(ValidationIssue(
                    field="split",
                    issue_type="invalid_share",
                    message=(
                        f"Transaction {txn.id} has non-positive shares for "
                        f"{', '.join(sorted(bad_shares))}"
                    ),
                    severity="error",
                    transaction_id=txn.id,
                ))

            share_total = sum(txn.split.values(), Decimal("0"))
            if txn.amount is not None:
                diff = abs(share_total - txn.amount)
                if diff > self._settings.split_tolerance:
                    issues.append(ValidationIssue(
                        field="split",
                        issue_type="split_mismatch",
                        message=(
                            f"Transaction {txn.id}: shares sum to {share_total} "
                            f"but amount is {txn.amount}"
                        ),
                        severity="error",
                        transaction_id=txn.id,
                    ))

        if txn.split is not None and txn.split_among is not None:
            issues.append(ValidationIssue(
                field="split_among",
                issue_type="ambiguous_split",
                message=(
                    f"Transaction {txn.id} has both explicit shares and "
                    "split_among; explicit shares win"
                ),
                severity="warning",
                transaction_id=txn.id,
            ))

        if txn.split_among is not None and len(txn.split_among) == 0:
            issues.append(ValidationIssue(
                field="split_among",
                issue_type="empty_split",
                message=f"Transaction {txn.id} splits among nobody",
                severity="error",
                transaction_id=txn.id,
            ))

        if txn.settled_at is not None and not txn.settled:
            issues.append(ValidationIssue(
                field="settled_at",
                issue_type="inconsistent",
                message=f"Transaction {txn.id} has a settlement time but is unsettled",
                severity="error",
                transaction_id=txn.id,
            ))

        return issues

    def _validate_ledger(
        self,
        transactions: list[Transaction],
        participants: list[ParticipantId],
    ) -> list[ValidationIssue]:
        """Stage 2: checks across transactions and against participants."""
        issues = []

        duplicates = [tid for tid, n in Counter(t.id for t in transactions).items() if n > 1]
        for tid in sorted(duplicates):
            issues.append(ValidationIssue(
                field="id",
                issue_type="duplicate_id",
                message=f"Transaction id {tid} appears more than once",
                severity="error",
                transaction_id=tid,
            ))

        # Solo mode: nothing to check payers against
        if not participants:
            return issues

        known = set(participants)
        for txn in transactions:
            if txn.payer is None:
                continue

            if txn.payer not in known:
                issues.append(ValidationIssue(
                    field="payer",
                    issue_type="unknown_participant",
                    message=f"Transaction {txn.id}: payer {txn.payer} is not a participant",
                    severity="error",
                    transaction_id=txn.id,
                ))

            referenced = set(txn.split or {}) | set(txn.split_among or [])
            unknown = sorted(referenced - known)
            if unknown:
                issues.append(ValidationIssue(
                    field="split",
                    issue_type="unknown_participant",
                    message=(
                        f"Transaction {txn.id} splits with unknown participants: "
                        f"{', '.join(unknown)}"
                    ),
                    severity="error",
                    transaction_id=txn.id,
                ))

        return issues

    def validate(
        self,
        transactions: Iterable[Transaction],
        participants: Iterable[ParticipantId] = (),
    ) -> ValidationResult:
        """
        Run the full two-stage validation pipeline.

        Stage 2 only runs when stage 1 passes, so each problem is
        reported once with the most specific message.
        """
        transactions = list(transactions)
        participants = list(participants)

        record_issues = []
        for txn in transactions:
            record_issues.extend(self._validate_record(txn))
        record_valid = not any(i.severity == "error" for i in record_issues)

        ledger_issues = []
        ledger_valid = False
        if record_valid:
            ledger_issues = self._validate_ledger(transactions, participants)
            ledger_valid = not any(i.severity == "error" for i in ledger_issues)

        return ValidationResult(
            record_valid=record_valid,
            ledger_valid=ledger_valid,
            issues=record_issues + ledger_issues,
        )

    def ensure_valid(
        self,
        transactions: Iterable[Transaction],
        participants: Iterable[ParticipantId] = (),
    ) -> ValidationResult:
        """
        Validate and raise DataIntegrityError on any error-level issue.

        Returns the result (which may still carry warnings) otherwise.
        """
        result = self.validate(transactions, participants)
        if result.has_errors:
            errors = [i for i in result.issues if i.severity == "error"]
            raise DataIntegrityError(
                f"{len(errors)} integrity problem(s): {errors[0].message}",
                issues=result.issues,
            )
        return result
