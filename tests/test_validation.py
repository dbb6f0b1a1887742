"""Tests for two-stage transaction validation."""

from decimal import Decimal

import pytest

from ledger_core.exceptions import DataIntegrityError
from ledger_core.validation import TransactionValidator


@pytest.fixture
def validator(settings) -> TransactionValidator:
    return TransactionValidator(settings)


class TestRecordStage:
    """Stage 1: each transaction on its own."""

    def test_valid_transaction(self, make_txn, validator):
        result = validator.validate([make_txn(100, payer="A")], ["A", "B"])

        assert result.is_valid is True
        assert result.issues == []

    def test_split_sum_within_tolerance(self, make_txn, validator):
        txn = make_txn(100, payer="A", split={"A": Decimal("50.5"), "B": Decimal("50")})

        assert validator.validate([txn], ["A", "B"]).is_valid is True

    def test_split_sum_mismatch(self, make_txn, validator):
        txn = make_txn(100, payer="A", split={"A": Decimal("20"), "B": Decimal("20")})

        result = validator.validate([txn], ["A", "B"])

        assert result.record_valid is False
        assert result.ledger_valid is False
        assert result.issues[0].issue_type == "split_mismatch"
        assert result.issues[0].transaction_id == txn.id

    def test_both_split_forms_warns(self, make_txn, validator):
        txn = make_txn(
            100,
            payer="A",
            split={"A": Decimal("50"), "B": Decimal("50")},
            split_among=["A", "B"],
        )

        result = validator.validate([txn], ["A", "B"])

        assert result.is_valid is True
        assert result.has_errors is False
        assert [i.issue_type for i in result.issues] == ["ambiguous_split"]

    def test_empty_split_among(self, make_txn, validator):
        txn = make_txn(100, payer="A", split_among=[])

        result = validator.validate([txn], ["A"])

        assert result.error_count == 1
        assert result.issues[0].issue_type == "empty_split"

    def test_ledger_stage_skipped_after_record_errors(self, make_txn, validator):
        """An unknown payer is not reported while record errors exist."""
        txn = make_txn(100, payer="Z", split={"A": Decimal("1")})

        result = validator.validate([txn], ["A"])

        assert {i.issue_type for i in result.issues} == {"split_mismatch"}


class TestLedgerStage:
    """Stage 2: transactions against each other and the participant list."""

    def test_duplicate_ids(self, make_txn, validator):
        txns = [make_txn(100, payer="A", id="dup"), make_txn(200, payer="A", id="dup")]

        result = validator.validate(txns, ["A"])

        assert result.ledger_valid is False
        assert result.issues[0].issue_type == "duplicate_id"

    def test_unknown_split_participant(self, make_txn, validator):
        txn = make_txn(100, payer="A", split_among=["A", "Q"])

        result = validator.validate([txn], ["A", "B"])

        assert result.issues[0].issue_type == "unknown_participant"
        assert "Q" in result.issues[0].message

    def test_solo_mode_skips_participant_checks(self, make_txn, validator):
        txn = make_txn(100, payer="anyone")

        assert validator.validate([txn]).is_valid is True


class TestEnsureValid:
    """ensure_valid() turns errors into DataIntegrityError."""

    def test_raises_with_issues(self, make_txn, validator):
        txn = make_txn(100, payer="Z")

        with pytest.raises(DataIntegrityError) as exc:
            validator.ensure_valid([txn], ["A"])

        assert len(exc.value.issues) == 1
        assert "payer Z" in str(exc.value)

    def test_warnings_pass(self, make_txn, validator):
        txn = make_txn(
            100,
            payer="A",
            split={"A": Decimal("100")},
            split_among=["A"],
        )

        result = validator.ensure_valid([txn], ["A"])

        assert result.has_errors is False
