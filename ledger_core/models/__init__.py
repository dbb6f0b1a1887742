"""
Data Models Package

This package contains all Pydantic models used by the ledger core.
All data flowing through the engine must conform to these schemas.
"""

from ledger_core.models.ledger import (
    DEFAULT_CATEGORY,
    SOLO_PARTICIPANT,
    Category,
    ConfirmationResult,
    Justification,
    LedgerModel,
    ParticipantId,
    ProposalStatus,
    SettledDay,
    Settlement,
    SettlementBreakdown,
    SettlementProposal,
    SettlementReminder,
    SettlementResult,
    Transaction,
    ValidationIssue,
    ValidationResult,
)
from ledger_core.models.patterns import (
    AdaptiveThreshold,
    AnomalyRecord,
    CategoryBaseline,
    FeedbackResult,
    FrequencyPattern,
    LearningResult,
    PatternsDocument,
    SettlementHistoryEntry,
)
from ledger_core.models.anomaly import (
    Anomaly,
    AnomalyType,
    CategoryChange,
    ChangeReport,
    Severity,
)
from ledger_core.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Ledger models
    "DEFAULT_CATEGORY",
    "SOLO_PARTICIPANT",
    "Category",
    "ConfirmationResult",
    "Justification",
    "LedgerModel",
    "ParticipantId",
    "ProposalStatus",
    "SettledDay",
    "Settlement",
    "SettlementBreakdown",
    "SettlementProposal",
    "SettlementReminder",
    "SettlementResult",
    "Transaction",
    "ValidationIssue",
    "ValidationResult",
    # Pattern models
    "AdaptiveThreshold",
    "AnomalyRecord",
    "CategoryBaseline",
    "FeedbackResult",
    "FrequencyPattern",
    "LearningResult",
    "PatternsDocument",
    "SettlementHistoryEntry",
    # Anomaly models
    "Anomaly",
    "AnomalyType",
    "CategoryChange",
    "ChangeReport",
    "Severity",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
