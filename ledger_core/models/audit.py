"""
Audit Models for Ledger Core

Every state-changing operation on an account is logged for audit purposes.
This provides:
1. Traceability of every settlement that moved money
2. Debugging information when a proposal goes stale
3. A record of the feedback that shaped the anomaly thresholds

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from ledger_core.utils.money import utc_now


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Settlement lifecycle
    SETTLEMENT_PROPOSED = "settlement_proposed"
    SETTLEMENT_CONFIRMED = "settlement_confirmed"
    SETTLEMENT_CANCELLED = "settlement_cancelled"
    SETTLEMENT_SUPERSEDED = "settlement_superseded"
    STALE_PROPOSAL_REJECTED = "stale_proposal_rejected"

    # Input problems
    DATA_INTEGRITY_FAILED = "data_integrity_failed"

    # Learning
    PATTERNS_LEARNED = "patterns_learned"
    ANOMALIES_DETECTED = "anomalies_detected"
    ANOMALY_FEEDBACK_RECORDED = "anomaly_feedback_recorded"
    SETTLEMENT_RECORDED = "settlement_recorded"

    # System events
    STORAGE_ERROR = "storage_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    """

    # Identity
    event_id: UUID = Field(default_factory=uuid4)
    timestamp: datetime = Field(
        default_factory=utc_now,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType
    severity: AuditSeverity = AuditSeverity.INFO

    # Context - which account and entity is this about?
    account_id: Optional[str] = None
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'proposal', 'anomaly', 'patterns')"
    )
    entity_id: Optional[str] = None

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = None

    description: str = Field(..., max_length=500)
    details: dict[str, Any] = Field(default_factory=dict)

    # Error information (if applicable)
    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "account_id": self.account_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, account_id, entity_type,
         entity_id, correlation_id, description, details_json, error_message,
         is_user_action]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.account_id or "",
            self.entity_type or "",
            self.entity_id or "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details, default=str) if self.details else "",
            self.error_message or "",
            str(self.is_user_action),
        ]


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.settlement_proposed(account_id, proposal_id, ...)
        event = AuditEventBuilder.settlement_confirmed(account_id, proposal_id, ...)
    """

    @staticmethod
    def settlement_proposed(
        account_id: str,
        proposal_id: UUID,
        transfer_count: int,
        total: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SETTLEMENT_PROPOSED,
            account_id=account_id,
            entity_type="proposal",
            entity_id=str(proposal_id),
            correlation_id=correlation_id,
            description=f"Settlement proposed: {transfer_count} transfers totaling {total}",
            details={
                "transfer_count": transfer_count,
                "total": total,
            },
        )

    @staticmethod
    def settlement_confirmed(
        account_id: str,
        proposal_id: UUID,
        settled_count: int,
        settled_total: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SETTLEMENT_CONFIRMED,
            account_id=account_id,
            entity_type="proposal",
            entity_id=str(proposal_id),
            correlation_id=correlation_id,
            description=f"Settlement confirmed: {settled_count} transactions settled",
            details={
                "settled_count": settled_count,
                "settled_total": settled_total,
            },
            is_user_action=True,
        )

    @staticmethod
    def settlement_cancelled(
        account_id: str,
        proposal_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SETTLEMENT_CANCELLED,
            account_id=account_id,
            entity_type="proposal",
            entity_id=str(proposal_id),
            correlation_id=correlation_id,
            description="User cancelled the settlement proposal",
            is_user_action=True,
        )

    @staticmethod
    def settlement_superseded(
        account_id: str,
        proposal_id: UUID,
        replaced_by: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SETTLEMENT_SUPERSEDED,
            account_id=account_id,
            entity_type="proposal",
            entity_id=str(proposal_id),
            correlation_id=correlation_id,
            description="Pending proposal replaced by a newer one",
            details={"replaced_by": str(replaced_by)},
        )

    @staticmethod
    def stale_proposal_rejected(
        account_id: str,
        proposal_id: UUID,
        reason: str,
        changed_ids: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STALE_PROPOSAL_REJECTED,
            severity=AuditSeverity.WARNING,
            account_id=account_id,
            entity_type="proposal",
            entity_id=str(proposal_id),
            correlation_id=correlation_id,
            description=f"Settlement confirmation rejected: {reason}",
            details={"changed_transaction_ids": changed_ids},
        )

    @staticmethod
    def data_integrity_failed(
        account_id: str,
        issues: list[dict],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DATA_INTEGRITY_FAILED,
            severity=AuditSeverity.WARNING,
            account_id=account_id,
            entity_type="transactions",
            correlation_id=correlation_id,
            description=f"Transaction data failed integrity checks with {len(issues)} issues",
            details={"issues": issues},
        )

    @staticmethod
    def patterns_learned(
        account_id: str,
        category_count: int,
        transaction_count: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PATTERNS_LEARNED,
            account_id=account_id,
            entity_type="patterns",
            correlation_id=correlation_id,
            description=(
                f"Learned {category_count} category baselines "
                f"from {transaction_count} transactions"
            ),
            details={
                "category_count": category_count,
                "transaction_count": transaction_count,
            },
        )

    @staticmethod
    def anomalies_detected(
        account_id: str,
        anomaly_ids: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ANOMALIES_DETECTED,
            account_id=account_id,
            entity_type="anomaly",
            correlation_id=correlation_id,
            description=f"Anomaly detection returned {len(anomaly_ids)} findings",
            details={"anomaly_ids": anomaly_ids},
        )

    @staticmethod
    def anomaly_feedback_recorded(
        account_id: str,
        anomaly_id: str,
        was_accurate: Optional[bool],
        threshold: float,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        verdict = {True: "confirmed", False: "false positive", None: "unjudged"}[was_accurate]
        return AuditEvent(
            event_type=AuditEventType.ANOMALY_FEEDBACK_RECORDED,
            account_id=account_id,
            entity_type="anomaly",
            entity_id=anomaly_id,
            correlation_id=correlation_id,
            description=f"Anomaly marked as {verdict}",
            details={
                "was_accurate": was_accurate,
                "threshold_after": threshold,
            },
            is_user_action=True,
        )

    @staticmethod
    def settlement_recorded(
        account_id: str,
        amount: str,
        participants: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SETTLEMENT_RECORDED,
            account_id=account_id,
            entity_type="patterns",
            correlation_id=correlation_id,
            description=f"Settlement of {amount} added to history",
            details={"amount": amount, "participants": participants},
        )

    @staticmethod
    def storage_error(
        account_id: str,
        operation: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STORAGE_ERROR,
            severity=AuditSeverity.ERROR,
            account_id=account_id,
            correlation_id=correlation_id,
            description=f"Storage failure during {operation}",
            error_message=error_message,
            details={"operation": operation},
        )
