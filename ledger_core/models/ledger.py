"""
Core Ledger Models

These models define the strict schemas for all data flowing through the
settlement engine. They are designed to:
1. Enforce type safety at runtime
2. Provide clear validation error messages
3. Serialize to the persisted document layout (camelCase keys)

DESIGN DECISION: Participants and categories are typed keys rather than
bare strings. A balance keyed by ParticipantId cannot be silently mixed up
with a baseline keyed by Category.

DESIGN DECISION: Field-level rules (positive amounts, types) live here.
Cross-field and cross-record rules (split sums, known participants) live in
the validator so they surface as DataIntegrityError rather than a parse error.
"""

import hashlib
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, NewType, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from ledger_core.utils.money import utc_now


ParticipantId = NewType("ParticipantId", str)
Category = NewType("Category", str)

DEFAULT_CATEGORY = Category("Other")
SOLO_PARTICIPANT = ParticipantId("user")

PositiveAmount = Annotated[Decimal, Field(gt=0)]


class LedgerModel(BaseModel):
    """Base model: snake_case in Python, camelCase on disk."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
    )


# =============================================================================
# TRANSACTIONS
# =============================================================================

class Transaction(LedgerModel):
    """
    A single expense record.

    Created by ingestion (outside this package). The core only ever
    flips `settled` / `settled_at`, and it does so on copies.
    """

    id: str = Field(..., min_length=1, description="Unique transaction id")
    date: date
    amount: PositiveAmount = Field(..., description="Expense amount")
    category: Category = Field(default=DEFAULT_CATEGORY, min_length=1)
    description: Optional[str] = Field(default=None, max_length=500)

    # Group mode only
    payer: Optional[ParticipantId] = None
    split: Optional[dict[ParticipantId, PositiveAmount]] = Field(
        default=None,
        description="Explicit shares; must sum to amount",
    )
    split_among: Optional[list[ParticipantId]] = Field(
        default=None,
        description="Equal split among these participants instead of everyone",
    )

    settled: bool = False
    settled_at: Optional[datetime] = None

    @model_validator(mode="after")
    def validate_settlement_stamp(self) -> "Transaction":
        """settled_at only exists once the transaction is settled."""
        if self.settled_at is not None and not self.settled:
            raise ValueError("settled_at is set on an unsettled transaction")
        return self

    def fingerprint(self) -> str:
        """
        Digest of everything that affects balances.

        Used to detect that a transaction changed between proposing and
        confirming a settlement.
        """
        split = sorted((self.split or {}).items())
        among = sorted(self.split_among or [])
        raw = f"{self.amount.normalize()}|{self.payer}|{split}|{among}|{self.settled}"
        return hashlib.sha256(raw.encode("utf-8")).hexdigest()


# =============================================================================
# SETTLEMENT
# =============================================================================

class Settlement(LedgerModel):
    """One transfer that moves money from a debtor to a creditor."""

    from_participant: ParticipantId = Field(..., alias="from")
    to_participant: ParticipantId = Field(..., alias="to")
    amount: PositiveAmount


class SettlementResult(LedgerModel):
    """
    Balances and the transfers that clear them.

    Balances are derived on every query and never persisted.
    Positive balance = is owed money, negative = owes money.
    """

    balances: dict[ParticipantId, Decimal] = Field(default_factory=dict)
    settlements: list[Settlement] = Field(default_factory=list)
    unsettled_count: int = Field(default=0, ge=0)
    unsettled_total: Decimal = Field(default=Decimal("0"), ge=0)

    @property
    def is_settled(self) -> bool:
        """Nothing left to transfer."""
        return not self.settlements

    @property
    def total_to_settle(self) -> Decimal:
        return sum((s.amount for s in self.settlements), Decimal("0"))


class ProposalStatus(str, Enum):
    """
    Settlement proposal lifecycle.

    PROPOSED -> CONFIRMED | CANCELLED. A newer proposal marks the old
    pending one SUPERSEDED.
    """
    PROPOSED = "proposed"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    SUPERSEDED = "superseded"


class Justification(LedgerModel):
    """Why the engine recommends something."""

    summary: str
    reasons: list[str] = Field(default_factory=list)
    confidence: str = Field(default="medium", pattern="^(low|medium|high)$")


class SettlementProposal(LedgerModel):
    """
    A computed settlement awaiting explicit confirmation.

    CRITICAL: Nothing is marked settled until the host confirms this.
    The snapshot pins the exact unsettled transactions it was computed from.
    """

    proposal_id: UUID = Field(default_factory=uuid4)
    account_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)
    status: ProposalStatus = ProposalStatus.PROPOSED
    participants: list[ParticipantId] = Field(default_factory=list)
    result: SettlementResult
    snapshot: dict[str, str] = Field(
        default_factory=dict,
        description="Unsettled transaction id -> fingerprint at compute time",
    )
    justification: Optional[Justification] = None

    @property
    def is_pending(self) -> bool:
        return self.status == ProposalStatus.PROPOSED

    @property
    def settlements(self) -> list[Settlement]:
        return self.result.settlements


class ConfirmationResult(LedgerModel):
    """Outcome of confirming a settlement proposal."""

    proposal_id: UUID
    settled_count: int = Field(ge=0)
    settled_at: datetime
    settled_total: Decimal = Field(ge=0)
    settlements: list[Settlement] = Field(default_factory=list)
    transactions: list[Transaction] = Field(
        default_factory=list,
        description="Full updated transaction collection for the host to persist",
    )


# =============================================================================
# SETTLEMENT REPORTING
# =============================================================================

class SettlementBreakdown(LedgerModel):
    """Step-by-step explanation of how the balances came out."""

    paid: dict[ParticipantId, Decimal] = Field(default_factory=dict)
    fair_share: dict[ParticipantId, Decimal] = Field(default_factory=dict)
    net: dict[ParticipantId, Decimal] = Field(default_factory=dict)
    status: dict[ParticipantId, str] = Field(default_factory=dict)
    settlements: list[Settlement] = Field(default_factory=list)
    unsettled_count: int = 0
    total_amount: Decimal = Decimal("0")


class SettlementReminder(LedgerModel):
    """Nudge to settle pending expenses."""

    urgency: str = Field(..., pattern="^(low|medium|high)$")
    message: str
    count: int = Field(ge=0)
    amount: Decimal = Field(ge=0)
    days_since_last_settlement: Optional[int] = None


class SettledDay(LedgerModel):
    """Settled transactions grouped by the day they were settled."""

    date: date
    count: int = Field(ge=0)
    amount: Decimal = Field(ge=0)


# =============================================================================
# VALIDATION MODELS
# =============================================================================

class ValidationIssue(LedgerModel):
    """A single integrity problem found in the input."""

    field: str = Field(..., description="Field with the issue")
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'split_mismatch', 'unknown_participant')",
    )
    message: str = Field(..., description="Human-readable description")
    severity: str = Field(..., pattern="^(error|warning|info)$")
    transaction_id: Optional[str] = None


class ValidationResult(LedgerModel):
    """
    Result of the two-stage validation.

    Stage 1: Record checks (each transaction on its own)
    Stage 2: Ledger checks (transactions against each other and participants)
    """

    validated_at: datetime = Field(default_factory=utc_now)
    record_valid: bool
    ledger_valid: bool
    issues: list[ValidationIssue] = Field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return self.record_valid and self.ledger_valid

    @property
    def has_errors(self) -> bool:
        """Check if there are any error-level issues."""
        return any(issue.severity == "error" for issue in self.issues)

    @property
    def error_count(self) -> int:
        """Count error-level issues."""
        return sum(1 for issue in self.issues if issue.severity == "error")
