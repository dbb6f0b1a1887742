"""
Tests for the LedgerService flows.

All flows run against in-memory storage; async calls are driven with
asyncio.run so the suite needs no async plugin.
"""

import asyncio
from datetime import date, timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from ledger_core.audit import AuditLogger
from ledger_core.config import Settings, get_settings
from ledger_core.exceptions import (
    DataIntegrityError,
    ProposalStateError,
    StaleProposalError,
    UnknownAnomalyError,
)
from ledger_core.models.anomaly import AnomalyType
from ledger_core.models.audit import AuditEventType
from ledger_core.models.ledger import ProposalStatus
from ledger_core.orchestrator import LedgerService, create_app_components
from ledger_core.services.storage import (
    InMemoryAuditStorage,
    InMemoryPatternStorage,
    InMemoryTransactionStorage,
    StorageError,
)


ACCOUNT = "acct-1"
PEOPLE = ["A", "B", "C"]


class FailingTransactionStorage(InMemoryTransactionStorage):
    """Reads work, writes fail."""

    async def save_transactions(self, account_id, transactions):
        raise StorageError("disk full")


class FailingPatternStorage(InMemoryPatternStorage):
    async def save_patterns(self, account_id, document):
        raise StorageError("sheet quota exceeded")


def make_service(transactions, settings, transaction_storage=None, pattern_storage=None):
    storage = transaction_storage or InMemoryTransactionStorage()
    asyncio.run(InMemoryTransactionStorage.save_transactions(storage, ACCOUNT, transactions))
    audit = InMemoryAuditStorage()
    service = LedgerService(
        transaction_storage=storage,
        pattern_storage=pattern_storage or InMemoryPatternStorage(),
        audit_logger=AuditLogger(audit),
        settings=settings,
    )
    return service, storage, audit


def event_types(audit: InMemoryAuditStorage) -> list[AuditEventType]:
    return [e.event_type for e in audit.events]


class TestSettlementFlow:
    """compute -> confirm | cancel."""

    def test_compute_then_confirm(self, make_txn, settings):
        service, storage, audit = make_service([make_txn(3000, payer="A")], settings)

        proposal = asyncio.run(service.compute_settlement(ACCOUNT, PEOPLE))
        result = asyncio.run(service.confirm_settlement(ACCOUNT, proposal.proposal_id))

        assert result.settled_count == 1
        saved = asyncio.run(storage.get_transactions(ACCOUNT))
        assert all(t.settled for t in saved)
        assert proposal.status == ProposalStatus.CONFIRMED
        assert event_types(audit) == [
            AuditEventType.SETTLEMENT_PROPOSED,
            AuditEventType.SETTLEMENT_CONFIRMED,
            AuditEventType.SETTLEMENT_RECORDED,
        ]

    def test_confirmation_feeds_settlement_history(self, make_txn, settings):
        service, _, _ = make_service([make_txn(3000, payer="A")], settings)

        proposal = asyncio.run(service.compute_settlement(ACCOUNT, PEOPLE))
        asyncio.run(service.confirm_settlement(ACCOUNT, proposal.proposal_id))

        history = service.context(ACCOUNT).store.settled_history
        assert len(history) == 1
        assert history[0].amount == Decimal("3000")

    def test_new_proposal_supersedes_pending(self, make_txn, settings):
        service, _, audit = make_service([make_txn(3000, payer="A")], settings)

        first = asyncio.run(service.compute_settlement(ACCOUNT, PEOPLE))
        second = asyncio.run(service.compute_settlement(ACCOUNT, PEOPLE))

        assert first.status == ProposalStatus.SUPERSEDED
        assert second.is_pending
        with pytest.raises(StaleProposalError):
            asyncio.run(service.confirm_settlement(ACCOUNT, first.proposal_id))
        assert AuditEventType.STALE_PROPOSAL_REJECTED in event_types(audit)

    def test_changed_data_rejects_confirmation(self, make_txn, settings):
        service, storage, _ = make_service([make_txn(3000, payer="A")], settings)
        proposal = asyncio.run(service.compute_settlement(ACCOUNT, PEOPLE))

        current = asyncio.run(storage.get_transactions(ACCOUNT))
        asyncio.run(storage.save_transactions(ACCOUNT, current + [make_txn(90, payer="B")]))

        with pytest.raises(StaleProposalError) as exc:
            asyncio.run(service.confirm_settlement(ACCOUNT, proposal.proposal_id))

        assert exc.value.changed_ids == ["t2"]
        saved = asyncio.run(storage.get_transactions(ACCOUNT))
        assert not any(t.settled for t in saved)
        assert proposal.is_pending

    def test_cancel_then_confirm(self, make_txn, settings):
        service, storage, _ = make_service([make_txn(3000, payer="A")], settings)
        proposal = asyncio.run(service.compute_settlement(ACCOUNT, PEOPLE))

        asyncio.run(service.cancel_settlement(ACCOUNT, proposal.proposal_id))

        assert proposal.status == ProposalStatus.CANCELLED
        with pytest.raises(ProposalStateError):
            asyncio.run(service.confirm_settlement(ACCOUNT, proposal.proposal_id))
        with pytest.raises(ProposalStateError):
            asyncio.run(service.cancel_settlement(ACCOUNT, proposal.proposal_id))
        assert not any(t.settled for t in asyncio.run(storage.get_transactions(ACCOUNT)))

    def test_unknown_proposal(self, make_txn, settings):
        service, _, _ = make_service([make_txn(3000, payer="A")], settings)

        with pytest.raises(StaleProposalError):
            asyncio.run(service.confirm_settlement(ACCOUNT, uuid4()))

    def test_failed_save_changes_nothing(self, make_txn, settings):
        service, storage, audit = make_service(
            [make_txn(3000, payer="A")],
            settings,
            transaction_storage=FailingTransactionStorage(),
        )
        proposal = asyncio.run(service.compute_settlement(ACCOUNT, PEOPLE))

        with pytest.raises(StorageError):
            asyncio.run(service.confirm_settlement(ACCOUNT, proposal.proposal_id))

        assert proposal.is_pending
        assert service.context(ACCOUNT).store.settled_history == []
        assert AuditEventType.STORAGE_ERROR in event_types(audit)

    def test_malformed_data_is_audited(self, make_txn, settings):
        bad = make_txn(1000, payer="A", split={"A": Decimal("1"), "B": Decimal("1")})
        service, _, audit = make_service([bad], settings)

        with pytest.raises(DataIntegrityError):
            asyncio.run(service.compute_settlement(ACCOUNT, PEOPLE))

        assert event_types(audit) == [AuditEventType.DATA_INTEGRITY_FAILED]

    def test_accounts_are_independent(self, make_txn, settings):
        service, storage, _ = make_service([make_txn(3000, payer="A")], settings)
        asyncio.run(storage.save_transactions("acct-2", [make_txn(500, payer="B")]))

        first = asyncio.run(service.compute_settlement(ACCOUNT, PEOPLE))
        other = asyncio.run(service.compute_settlement("acct-2", ["A", "B"]))

        assert first.is_pending and other.is_pending
        assert other.result.balances == {"A": Decimal("-250"), "B": Decimal("250")}

    def test_reporting(self, make_txn, settings):
        service, _, _ = make_service([make_txn(3000, payer="A")], settings)

        breakdown = asyncio.run(service.explain_settlement(ACCOUNT, PEOPLE))
        reminder = asyncio.run(service.settlement_reminder(ACCOUNT, today=date(2024, 1, 2)))
        history = asyncio.run(service.settlement_history(ACCOUNT))
        changes = asyncio.run(service.detect_changes(ACCOUNT, today=date(2024, 1, 20)))

        assert breakdown.paid["A"] == Decimal("3000")
        assert reminder.urgency == "low"
        assert history == []
        assert changes.this_month_total == Decimal("3000")


class TestLearningFlow:
    """learn -> detect -> feedback."""

    def food_ledger(self, make_txn):
        history = [make_txn(500, category="Food", day=i) for i in range(10)]
        return history + [make_txn(1400, category="Food", day=10, id="big")]

    def test_learn_patterns_persists(self, make_txn, settings):
        pattern_storage = InMemoryPatternStorage()
        service, _, _ = make_service(
            self.food_ledger(make_txn), settings, pattern_storage=pattern_storage
        )

        result = asyncio.run(service.learn_patterns(ACCOUNT))

        assert result.persisted is True
        assert result.baselines[0].category == "Food"
        assert asyncio.run(pattern_storage.get_patterns(ACCOUNT)) is not None

    def test_learn_patterns_reports_failed_save(self, make_txn, settings):
        service, _, _ = make_service(
            self.food_ledger(make_txn), settings, pattern_storage=FailingPatternStorage()
        )

        result = asyncio.run(service.learn_patterns(ACCOUNT))

        assert result.persisted is False
        assert "quota" in result.error
        # Still usable for this session
        assert service.context(ACCOUNT).store.has_baselines()

    def test_feedback_relaxes_threshold(self, make_txn, settings):
        history = [make_txn(500, category="Food", day=i) for i in range(10)]
        service, storage, _ = make_service(history, settings)
        asyncio.run(service.learn_patterns(ACCOUNT))
        today = date(2024, 1, 1) + timedelta(days=20)

        thresholds = []
        for n in range(4):
            spike = make_txn(3000 + n * 600, category="Food", day=10 + n, id=f"spike{n}")
            current = asyncio.run(storage.get_transactions(ACCOUNT))
            asyncio.run(storage.save_transactions(ACCOUNT, current + [spike]))

            anomalies = asyncio.run(service.detect_anomalies(ACCOUNT, today=today))
            target = next(a for a in anomalies if a.id == f"spike-spike{n}")
            feedback = asyncio.run(service.record_anomaly_feedback(ACCOUNT, target.id, False))
            thresholds.append(feedback.threshold.threshold)

        assert thresholds == [1.5, 1.5, 1.5, 2.0]

    def test_feedback_requires_known_anomaly(self, make_txn, settings):
        service, _, _ = make_service(self.food_ledger(make_txn), settings)

        with pytest.raises(UnknownAnomalyError):
            asyncio.run(service.record_anomaly_feedback(ACCOUNT, "spike-nosuchtxn", False))
        with pytest.raises(UnknownAnomalyError):
            asyncio.run(service.record_anomaly_feedback(ACCOUNT, "missing-Food", False))

    def test_feedback_survives_restart(self, make_txn, settings):
        """A spike reported before a restart still accepts feedback after it."""
        pattern_storage = InMemoryPatternStorage()
        first, storage, _ = make_service(
            self.food_ledger(make_txn), settings, pattern_storage=pattern_storage
        )
        anomalies = asyncio.run(first.detect_anomalies(ACCOUNT, today=date(2024, 1, 11)))
        assert "spike-big" in [a.id for a in anomalies]

        second = LedgerService(storage, pattern_storage, settings=settings)
        feedback = asyncio.run(second.record_anomaly_feedback(ACCOUNT, "spike-big", False))

        assert feedback.record.category == "Food"
        assert feedback.record.amount == Decimal("1400")
        assert feedback.persisted is True
        saved = asyncio.run(pattern_storage.get_patterns(ACCOUNT))
        assert [r.id for r in saved.anomaly_history] == ["spike-big"]
        # The learned baselines from before the restart are kept
        assert saved.category_averages["Food"].count == 11

    def test_feedback_rejected_for_settlement_warning(self, make_txn, settings):
        txns = [make_txn(4000, payer="A", category="Food") for _ in range(4)]
        service, _, _ = make_service(txns, settings)

        anomalies = asyncio.run(service.detect_anomalies(ACCOUNT, ["A", "B"], today=date(2024, 1, 1)))
        warning = next(a for a in anomalies if a.type == AnomalyType.SETTLEMENT_WARNING)

        with pytest.raises(UnknownAnomalyError):
            asyncio.run(service.record_anomaly_feedback(ACCOUNT, warning.id, True))

    def test_detect_rejects_malformed_ledger(self, make_txn, settings):
        txns = [make_txn(900, payer="Mallory", category="Food")]
        service, _, audit = make_service(txns, settings)

        with pytest.raises(DataIntegrityError):
            asyncio.run(service.detect_anomalies(ACCOUNT, ["A", "B"], today=date(2024, 1, 1)))

        assert AuditEventType.DATA_INTEGRITY_FAILED in event_types(audit)
        assert AuditEventType.ANOMALIES_DETECTED not in event_types(audit)

    def test_detect_cold_start_saves_patterns(self, make_txn, settings):
        pattern_storage = InMemoryPatternStorage()
        service, _, audit = make_service(
            self.food_ledger(make_txn), settings, pattern_storage=pattern_storage
        )

        asyncio.run(service.detect_anomalies(ACCOUNT, today=date(2024, 1, 11)))

        assert asyncio.run(pattern_storage.get_patterns(ACCOUNT)) is not None
        assert AuditEventType.ANOMALIES_DETECTED in event_types(audit)

    def test_patterns_loaded_from_storage(self, make_txn, settings):
        pattern_storage = InMemoryPatternStorage()
        first, storage, _ = make_service(
            self.food_ledger(make_txn), settings, pattern_storage=pattern_storage
        )
        asyncio.run(first.learn_patterns(ACCOUNT))

        second = LedgerService(storage, pattern_storage, settings=settings)
        asyncio.run(second.settlement_history(ACCOUNT))

        assert second.context(ACCOUNT).store.baseline_for("Food") is not None

    def test_justify_anomaly(self, make_txn, settings):
        history = [make_txn(500, category="Food", day=i) for i in range(10)]
        service, storage, _ = make_service(history, settings)
        asyncio.run(service.learn_patterns(ACCOUNT))
        asyncio.run(storage.save_transactions(
            ACCOUNT, history + [make_txn(1400, category="Food", day=10, id="big")]
        ))

        asyncio.run(service.detect_anomalies(ACCOUNT, today=date(2024, 1, 11)))
        justification = asyncio.run(service.justify_anomaly(ACCOUNT, "spike-big"))

        assert justification.reasons


class TestCreateAppComponents:
    """Tests for the wiring factory."""

    @pytest.fixture(autouse=True)
    def fresh_settings(self):
        get_settings.cache_clear()
        yield
        get_settings.cache_clear()

    def test_memory_backend(self, monkeypatch):
        monkeypatch.delenv("LEDGER_STORAGE_BACKEND", raising=False)

        service = create_app_components(Settings())

        assert isinstance(service, LedgerService)

    def test_falls_back_when_sheets_unconfigured(self, monkeypatch):
        monkeypatch.setenv("LEDGER_STORAGE_BACKEND", "google_sheets")
        monkeypatch.delenv("GOOGLE_SHEETS_CREDENTIALS_PATH", raising=False)
        monkeypatch.delenv("GOOGLE_SHEETS_SPREADSHEET_ID", raising=False)

        service = create_app_components(Settings())

        assert isinstance(service._transactions, InMemoryTransactionStorage)
