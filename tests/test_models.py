"""
Tests for Ledger Core models

Test strategy:
1. Unit tests for individual components (models, validators, engines)
2. Service flow tests against in-memory storage
3. No real API calls in tests
"""

import pytest
from datetime import date, datetime, timezone
from decimal import Decimal
from uuid import uuid4

from ledger_core.models.ledger import (
    Settlement,
    SettlementResult,
    Transaction,
    ValidationIssue,
    ValidationResult,
)
from ledger_core.models.anomaly import Severity
from ledger_core.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)


class TestTransactionModel:
    """Tests for the Transaction Pydantic model."""

    def test_transaction_defaults(self):
        """Test Transaction creation with defaults."""
        txn = Transaction(id="t1", date=date(2024, 1, 1), amount=Decimal("100"))
        assert txn.category == "Other"
        assert txn.settled is False
        assert txn.payer is None

    def test_transaction_rejects_non_positive_amount(self):
        """Test that zero and negative amounts are rejected."""
        with pytest.raises(ValueError):
            Transaction(id="t1", date=date(2024, 1, 1), amount=Decimal("0"))
        with pytest.raises(ValueError):
            Transaction(id="t1", date=date(2024, 1, 1), amount=Decimal("-5"))

    def test_transaction_rejects_settled_at_without_settled(self):
        """Test that a settlement stamp requires settled=True."""
        with pytest.raises(ValueError):
            Transaction(
                id="t1",
                date=date(2024, 1, 1),
                amount=Decimal("100"),
                settled_at=datetime(2024, 1, 2, tzinfo=timezone.utc),
            )

    def test_transaction_reads_camel_case(self):
        """Test that persisted camelCase keys are accepted."""
        txn = Transaction.model_validate({
            "id": "t1",
            "date": "2024-01-01",
            "amount": "250",
            "splitAmong": ["A", "B"],
        })
        assert txn.split_among == ["A", "B"]
        assert txn.model_dump(by_alias=True)["splitAmong"] == ["A", "B"]

    def test_fingerprint_tracks_balance_fields(self):
        """Test that fingerprints change with amount but not description."""
        txn = Transaction(id="t1", date=date(2024, 1, 1), amount=Decimal("100"), payer="A")
        assert txn.fingerprint() == txn.model_copy(update={"description": "lunch"}).fingerprint()
        assert txn.fingerprint() != txn.model_copy(update={"amount": Decimal("101")}).fingerprint()

    def test_fingerprint_ignores_trailing_zeros(self):
        a = Transaction(id="t1", date=date(2024, 1, 1), amount=Decimal("100"))
        b = Transaction(id="t1", date=date(2024, 1, 1), amount=Decimal("100.00"))
        assert a.fingerprint() == b.fingerprint()


class TestSettlementModels:
    """Tests for settlement models."""

    def test_settlement_aliases(self):
        """Test that transfers serialize as from/to."""
        s = Settlement(from_participant="B", to_participant="A", amount=Decimal("10"))
        dumped = s.model_dump(by_alias=True)
        assert dumped["from"] == "B"
        assert dumped["to"] == "A"

    def test_result_totals(self):
        result = SettlementResult(
            balances={"A": Decimal("30"), "B": Decimal("-10"), "C": Decimal("-20")},
            settlements=[
                Settlement(**{"from": "C", "to": "A", "amount": Decimal("20")}),
                Settlement(**{"from": "B", "to": "A", "amount": Decimal("10")}),
            ],
        )
        assert result.total_to_settle == Decimal("30")
        assert result.is_settled is False


class TestAuditModels:
    """Tests for audit models."""

    def test_audit_event_creation(self):
        """Test AuditEvent creation."""
        event = AuditEvent(
            event_type=AuditEventType.SETTLEMENT_PROPOSED,
            description="Test event",
        )
        assert event.event_type == AuditEventType.SETTLEMENT_PROPOSED
        assert event.severity == AuditSeverity.INFO

    def test_audit_event_to_log_dict(self):
        """Test conversion to log dictionary."""
        event = AuditEventBuilder.settlement_confirmed(
            account_id="acct",
            proposal_id=uuid4(),
            settled_count=3,
            settled_total="4500",
        )
        log_dict = event.to_log_dict()
        assert "event_id" in log_dict
        assert log_dict["event_type"] == "settlement_confirmed"
        assert log_dict["details"]["settled_count"] == 3

    def test_audit_event_to_sheets_row(self):
        """Test conversion to sheets row."""
        event = AuditEventBuilder.settlement_cancelled(
            account_id="acct",
            proposal_id=uuid4(),
        )
        row = event.to_sheets_row()
        assert len(row) == 12  # Expected number of columns
        assert row[2] == "settlement_cancelled"  # event_type
        assert row[4] == "acct"  # account_id
        assert row[11] == "True"  # is_user_action

    def test_stale_rejection_is_warning(self):
        """Test stale proposal events carry the changed ids."""
        proposal_id = uuid4()
        correlation_id = uuid4()
        event = AuditEventBuilder.stale_proposal_rejected(
            account_id="acct",
            proposal_id=proposal_id,
            reason="changed",
            changed_ids=["t9"],
            correlation_id=correlation_id,
        )
        assert event.severity == AuditSeverity.WARNING
        assert event.entity_id == str(proposal_id)
        assert event.correlation_id == correlation_id
        assert event.details["changed_transaction_ids"] == ["t9"]

    def test_feedback_event_verdict(self):
        event = AuditEventBuilder.anomaly_feedback_recorded(
            account_id="acct",
            anomaly_id="spike-t1",
            was_accurate=False,
            threshold=2.0,
        )
        assert "false positive" in event.description
        assert event.is_user_action is True


class TestValidationResult:
    """Tests for ValidationResult model."""

    def test_validation_result_has_errors(self):
        """Test has_errors property."""
        result = ValidationResult(
            record_valid=False,
            ledger_valid=False,
            issues=[
                ValidationIssue(
                    field="split",
                    issue_type="split_mismatch",
                    message="Shares don't add up",
                    severity="error",
                )
            ],
        )
        assert result.has_errors is True
        assert result.error_count == 1

    def test_validation_result_warnings_only(self):
        """Test that warnings don't count as errors."""
        result = ValidationResult(
            record_valid=True,
            ledger_valid=True,
            issues=[
                ValidationIssue(
                    field="split_among",
                    issue_type="ambiguous_split",
                    message="Both split forms given",
                    severity="warning",
                )
            ],
        )
        assert result.has_errors is False
        assert result.error_count == 0


class TestSeverity:
    """Tests for anomaly severity ordering."""

    def test_rank_orders_high_first(self):
        ordered = sorted([Severity.LOW, Severity.HIGH, Severity.MEDIUM], key=lambda s: s.rank)
        assert ordered == [Severity.HIGH, Severity.MEDIUM, Severity.LOW]
