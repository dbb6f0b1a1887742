"""
Ledger Service Orchestrator

This module ties the pure core (settlement engine, pattern store,
anomaly detector) to storage and auditing, and defines the host-facing
flows:
1. Settlement (compute -> propose -> confirm | cancel)
2. Learning (learn patterns, record anomaly feedback)
3. Detection and reporting (anomalies, reminders, history, drift)

DESIGN DECISION: The orchestrator enforces the boundaries:
- Nothing is marked settled without an explicit confirmation
- A confirmation against changed data is rejected, never "fixed up"
- Every state change is audited

DESIGN DECISION: One AccountContext per account instead of process-wide
state. Operations on the same account are serialised by its lock;
different accounts never wait on each other.
"""

import asyncio
from datetime import date
from decimal import Decimal
from typing import Optional, Sequence
from uuid import UUID

import structlog

from ledger_core.anomaly import SPIKE_PREFIX, AnomalyDetector, detect_changes
from ledger_core.audit import AuditLogger, create_correlation_id
from ledger_core.config import LedgerSettings, Settings, get_settings
from ledger_core.exceptions import (
    DataIntegrityError,
    ProposalStateError,
    StaleProposalError,
    UnknownAnomalyError,
)
from ledger_core.models.anomaly import Anomaly, ChangeReport
from ledger_core.models.audit import AuditEventBuilder
from ledger_core.models.ledger import (
    ConfirmationResult,
    Justification,
    ParticipantId,
    ProposalStatus,
    SettledDay,
    SettlementBreakdown,
    SettlementProposal,
    SettlementReminder,
    Transaction,
)
from ledger_core.models.patterns import FeedbackResult, LearningResult
from ledger_core.patterns import PatternLearningStore
from ledger_core.services.storage import (
    PatternStorageInterface,
    StorageError,
    TransactionStorageInterface,
    create_storage_backends,
    in_memory_backends,
)
from ledger_core.settlement import (
    build_proposal,
    confirm_settlement,
    explain_settlement,
    settlement_history,
    settlement_reminder,
)


logger = structlog.get_logger(__name__)


class AccountContext:
    """
    Everything the service remembers about one account between calls.

    Transactions are not cached: the host may edit them at any time, so
    each operation reloads them. The pattern store is loaded once and
    then kept current by the service.
    """

    def __init__(self, account_id: str, store: PatternLearningStore):
        self.account_id = account_id
        self.store = store
        self.loaded = False
        self.proposal: Optional[SettlementProposal] = None
        self.last_anomalies: dict[str, Anomaly] = {}
        self.lock = asyncio.Lock()


class LedgerService:
    """
    Async host-facing API over the ledger core.

    Usage:
        service = create_app_components()
        proposal = await service.compute_settlement("acct-1", ["A", "B"])
        result = await service.confirm_settlement("acct-1", proposal.proposal_id)
    """

    def __init__(
        self,
        transaction_storage: TransactionStorageInterface,
        pattern_storage: PatternStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[LedgerSettings] = None,
    ):
        self._transactions = transaction_storage
        self._patterns = pattern_storage
        self._audit = audit_logger or AuditLogger()
        self._settings = settings or get_settings().ledger
        self._contexts: dict[str, AccountContext] = {}

    def context(self, account_id: str) -> AccountContext:
        """Get or create the in-memory context for an account."""
        ctx = self._contexts.get(account_id)
        if ctx is None:
            ctx = AccountContext(account_id, PatternLearningStore(settings=self._settings))
            self._contexts[account_id] = ctx
        return ctx

    # =========================================================================
    # STORAGE HELPERS
    # =========================================================================

    async def _ensure_patterns(self, ctx: AccountContext, correlation_id: UUID) -> None:
        """Load the persisted patterns document on first use."""
        if ctx.loaded:
            return
        try:
            document = await self._patterns.get_patterns(ctx.account_id)
        except StorageError as e:
            await self._audit.log_storage_error(
                ctx.account_id, "get_patterns", str(e), correlation_id
            )
            raise
        ctx.store = PatternLearningStore(document, self._settings)
        ctx.loaded = True

    async def _load_transactions(self, ctx: AccountContext, correlation_id: UUID) -> list[Transaction]:
        await self._ensure_patterns(ctx, correlation_id)
        try:
            return await self._transactions.get_transactions(ctx.account_id)
        except StorageError as e:
            await self._audit.log_storage_error(
                ctx.account_id, "get_transactions", str(e), correlation_id
            )
            raise

    async def _save_patterns(
        self,
        ctx: AccountContext,
        correlation_id: UUID,
    ) -> tuple[bool, Optional[str]]:
        """Best-effort save. The in-memory store stays current either way."""
        try:
            await self._patterns.save_patterns(ctx.account_id, ctx.store.document)
            return True, None
        except StorageError as e:
            await self._audit.log_storage_error(
                ctx.account_id, "save_patterns", str(e), correlation_id
            )
            return False, str(e)

    # =========================================================================
    # SETTLEMENT FLOW
    # =========================================================================

    async def compute_settlement(
        self,
        account_id: str,
        participants: Sequence[ParticipantId],
        today: Optional[date] = None,
    ) -> SettlementProposal:
        """
        Compute balances and transfers, and hold them as the pending proposal.

        Any earlier pending proposal for the account is superseded.

        Raises:
            DataIntegrityError: If the unsettled transactions are malformed
            StorageError: If transactions cannot be loaded
        """
        correlation_id = create_correlation_id()
        ctx = self.context(account_id)

        async with ctx.lock:
            transactions = await self._load_transactions(ctx, correlation_id)

            try:
                proposal = build_proposal(
                    transactions,
                    participants,
                    history=ctx.store.settled_history,
                    account_id=account_id,
                    today=today,
                    settings=self._settings,
                )
            except DataIntegrityError as e:
                await self._audit.log(AuditEventBuilder.data_integrity_failed(
                    account_id=account_id,
                    issues=[i.model_dump() for i in e.issues],
                    correlation_id=correlation_id,
                ))
                raise

            previous = ctx.proposal
            if previous is not None and previous.is_pending:
                previous.status = ProposalStatus.SUPERSEDED
                await self._audit.log(AuditEventBuilder.settlement_superseded(
                    account_id=account_id,
                    proposal_id=previous.proposal_id,
                    replaced_by=proposal.proposal_id,
                    correlation_id=correlation_id,
                ))

            ctx.proposal = proposal
            await self._audit.log(AuditEventBuilder.settlement_proposed(
                account_id=account_id,
                proposal_id=proposal.proposal_id,
                transfer_count=len(proposal.settlements),
                total=str(proposal.result.total_to_settle),
                correlation_id=correlation_id,
            ))
            return proposal

    def _current_proposal(self, ctx: AccountContext, proposal_id: UUID) -> SettlementProposal:
        proposal = ctx.proposal
        if proposal is None or proposal.proposal_id != proposal_id:
            raise StaleProposalError(
                f"Proposal {proposal_id} is unknown or was replaced; recompute the settlement"
            )
        return proposal

    async def confirm_settlement(self, account_id: str, proposal_id: UUID) -> ConfirmationResult:
        """
        Confirm the pending proposal and persist the settled transactions.

        Transactions are saved first. If that fails, StorageError is
        raised and neither the proposal nor the learned history changes.
        The settlement history save that follows is best-effort.

        Raises:
            StaleProposalError: Unknown/replaced proposal, or data changed
            ProposalStateError: Proposal already confirmed or cancelled
            StorageError: Transactions could not be loaded or saved
        """
        correlation_id = create_correlation_id()
        ctx = self.context(account_id)

        async with ctx.lock:
            try:
                proposal = self._current_proposal(ctx, proposal_id)
            except StaleProposalError as e:
                await self._audit.log(AuditEventBuilder.stale_proposal_rejected(
                    account_id=account_id,
                    proposal_id=proposal_id,
                    reason=str(e),
                    changed_ids=[],
                    correlation_id=correlation_id,
                ))
                raise

            transactions = await self._load_transactions(ctx, correlation_id)

            # Confirm against a scratch store so a failed save leaves ctx.store untouched
            staged = PatternLearningStore(ctx.store.document, self._settings)
            try:
                result = confirm_settlement(transactions, proposal, staged)
            except StaleProposalError as e:
                await self._audit.log(AuditEventBuilder.stale_proposal_rejected(
                    account_id=account_id,
                    proposal_id=proposal_id,
                    reason=str(e),
                    changed_ids=e.changed_ids,
                    correlation_id=correlation_id,
                ))
                raise

            try:
                await self._transactions.save_transactions(account_id, result.transactions)
            except StorageError as e:
                await self._audit.log_storage_error(
                    account_id, "save_transactions", str(e), correlation_id
                )
                raise

            ctx.store = staged
            proposal.status = ProposalStatus.CONFIRMED
            await self._audit.log(AuditEventBuilder.settlement_confirmed(
                account_id=account_id,
                proposal_id=proposal_id,
                settled_count=result.settled_count,
                settled_total=str(result.settled_total),
                correlation_id=correlation_id,
            ))

            if result.settled_count:
                entry = ctx.store.settled_history[-1]
                await self._audit.log(AuditEventBuilder.settlement_recorded(
                    account_id=account_id,
                    amount=str(entry.amount),
                    participants=list(entry.participants),
                    correlation_id=correlation_id,
                ))
                persisted, _ = await self._save_patterns(ctx, correlation_id)
                if not persisted:
                    logger.warning("settlement_history_not_persisted", account_id=account_id)

            return result

    async def cancel_settlement(self, account_id: str, proposal_id: UUID) -> SettlementProposal:
        """
        Drop the pending proposal. No transaction is touched.

        Raises:
            StaleProposalError: Unknown or replaced proposal
            ProposalStateError: Proposal already confirmed or cancelled
        """
        correlation_id = create_correlation_id()
        ctx = self.context(account_id)

        async with ctx.lock:
            proposal = self._current_proposal(ctx, proposal_id)
            if not proposal.is_pending:
                raise ProposalStateError(
                    f"Cannot cancel a {proposal.status.value} proposal"
                )

            proposal.status = ProposalStatus.CANCELLED
            await self._audit.log(AuditEventBuilder.settlement_cancelled(
                account_id=account_id,
                proposal_id=proposal_id,
                correlation_id=correlation_id,
            ))
            return proposal

    async def explain_settlement(
        self,
        account_id: str,
        participants: Sequence[ParticipantId],
    ) -> SettlementBreakdown:
        """Paid / fair share / net breakdown for the current unsettled set."""
        correlation_id = create_correlation_id()
        ctx = self.context(account_id)
        async with ctx.lock:
            transactions = await self._load_transactions(ctx, correlation_id)
        return explain_settlement(transactions, participants, self._settings)

    # =========================================================================
    # LEARNING FLOW
    # =========================================================================

    async def learn_patterns(
        self,
        account_id: str,
        participants: Sequence[ParticipantId] = (),
    ) -> LearningResult:
        """
        Recompute baselines from the account's full transaction history.

        A failed save is reported in the result, not raised; the learned
        baselines are still used for this session.
        """
        correlation_id = create_correlation_id()
        ctx = self.context(account_id)

        async with ctx.lock:
            transactions = await self._load_transactions(ctx, correlation_id)
            baselines = ctx.store.learn(transactions, participants)

            await self._audit.log(AuditEventBuilder.patterns_learned(
                account_id=account_id,
                category_count=len(baselines),
                transaction_count=len(transactions),
                correlation_id=correlation_id,
            ))

            persisted, error = await self._save_patterns(ctx, correlation_id)
            return LearningResult(baselines=baselines, persisted=persisted, error=error)

    async def detect_anomalies(
        self,
        account_id: str,
        participants: Sequence[ParticipantId] = (),
        today: Optional[date] = None,
    ) -> list[Anomaly]:
        """
        Run anomaly detection; remembers the findings for feedback.

        Raises:
            DataIntegrityError: If the unsettled transactions are malformed
        """
        correlation_id = create_correlation_id()
        ctx = self.context(account_id)

        async with ctx.lock:
            transactions = await self._load_transactions(ctx, correlation_id)
            had_baselines = ctx.store.has_baselines()

            detector = AnomalyDetector(ctx.store, self._settings)
            try:
                anomalies = detector.detect(transactions, participants, today=today)
            except DataIntegrityError as e:
                await self._audit.log(AuditEventBuilder.data_integrity_failed(
                    account_id=account_id,
                    issues=[i.model_dump() for i in e.issues],
                    correlation_id=correlation_id,
                ))
                raise

            ctx.last_anomalies = {a.id: a for a in anomalies}

            if not had_baselines and ctx.store.has_baselines():
                await self._save_patterns(ctx, correlation_id)

            await self._audit.log(AuditEventBuilder.anomalies_detected(
                account_id=account_id,
                anomaly_ids=[a.id for a in anomalies],
                correlation_id=correlation_id,
            ))
            return anomalies

    async def _feedback_target(
        self,
        ctx: AccountContext,
        anomaly_id: str,
        correlation_id: UUID,
    ) -> tuple[str, Decimal]:
        """
        Category and amount an anomaly id refers to.

        Spike ids name their transaction, so they resolve from stored data
        even when this process never reported them.
        """
        anomaly = ctx.last_anomalies.get(anomaly_id)
        if anomaly is not None:
            if not anomaly.can_mark_false_positive or anomaly.category is None:
                raise UnknownAnomalyError(f"Anomaly {anomaly_id} does not accept feedback")
            return anomaly.category, anomaly.actual

        if anomaly_id.startswith(SPIKE_PREFIX):
            txn_id = anomaly_id[len(SPIKE_PREFIX):]
            transactions = await self._load_transactions(ctx, correlation_id)
            for txn in transactions:
                if txn.id == txn_id:
                    return txn.category, txn.amount

        raise UnknownAnomalyError(f"No anomaly {anomaly_id} was reported for this account")

    async def record_anomaly_feedback(
        self,
        account_id: str,
        anomaly_id: str,
        was_accurate: Optional[bool],
    ) -> FeedbackResult:
        """
        Store the user's verdict on a reported anomaly.

        Raises:
            UnknownAnomalyError: The id matches no reported finding or stored
                transaction, or refers to a finding without a transaction
        """
        correlation_id = create_correlation_id()
        ctx = self.context(account_id)

        async with ctx.lock:
            category, amount = await self._feedback_target(ctx, anomaly_id, correlation_id)

            record = ctx.store.record_anomaly_feedback(
                category,
                amount,
                was_accurate,
                anomaly_id=anomaly_id,
            )
            threshold = ctx.store.get_adaptive_threshold(category)

            await self._audit.log(AuditEventBuilder.anomaly_feedback_recorded(
                account_id=account_id,
                anomaly_id=anomaly_id,
                was_accurate=was_accurate,
                threshold=threshold.threshold,
                correlation_id=correlation_id,
            ))

            persisted, error = await self._save_patterns(ctx, correlation_id)
            return FeedbackResult(
                record=record,
                threshold=threshold,
                persisted=persisted,
                error=error,
            )

    async def justify_anomaly(self, account_id: str, anomaly_id: str) -> Justification:
        """Reasons behind an anomaly from the last detection run."""
        ctx = self.context(account_id)
        anomaly = ctx.last_anomalies.get(anomaly_id)
        if anomaly is None:
            raise UnknownAnomalyError(f"No anomaly {anomaly_id} was reported for this account")
        return AnomalyDetector(ctx.store, self._settings).justify_anomaly(anomaly)

    # =========================================================================
    # REPORTING
    # =========================================================================

    async def settlement_reminder(
        self,
        account_id: str,
        today: Optional[date] = None,
    ) -> Optional[SettlementReminder]:
        correlation_id = create_correlation_id()
        ctx = self.context(account_id)
        async with ctx.lock:
            transactions = await self._load_transactions(ctx, correlation_id)
        return settlement_reminder(transactions, today=today, settings=self._settings)

    async def settlement_history(self, account_id: str, limit: int = 10) -> list[SettledDay]:
        correlation_id = create_correlation_id()
        ctx = self.context(account_id)
        async with ctx.lock:
            transactions = await self._load_transactions(ctx, correlation_id)
        return settlement_history(transactions, limit=limit)

    async def detect_changes(self, account_id: str, today: Optional[date] = None) -> ChangeReport:
        correlation_id = create_correlation_id()
        ctx = self.context(account_id)
        async with ctx.lock:
            transactions = await self._load_transactions(ctx, correlation_id)
        return detect_changes(transactions, today=today, settings=self._settings)


def create_app_components(settings: Optional[Settings] = None) -> LedgerService:
    """
    Factory function to wire storage, auditing and the service.

    Falls back to in-memory storage (with local-only audit persistence)
    when the configured backend cannot be set up.
    """
    settings = settings or get_settings()

    try:
        backends = create_storage_backends(settings)
    except Exception as e:
        logger.warning("storage_not_configured", error=str(e))
        backends = in_memory_backends()

    return LedgerService(
        transaction_storage=backends.transactions,
        pattern_storage=backends.patterns,
        audit_logger=AuditLogger(backends.audit),
        settings=settings.ledger,
    )
