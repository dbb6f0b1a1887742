"""
Anomaly Models

What the detector reports back to the host. Every anomaly carries the
numbers it was judged on (expected vs actual) so the chat layer can
explain it without recomputing anything.
"""

from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import Field

from ledger_core.models.ledger import Category, LedgerModel, Transaction


class AnomalyType(str, Enum):
    """Kinds of findings the detector produces."""
    LEARNED_SPIKE = "learned_spike"            # Amount well above the category baseline
    MISSING_EXPECTED = "missing_expected"      # Recurring category has gone quiet
    SETTLEMENT_WARNING = "settlement_warning"  # Unsettled balance far above usual


class Severity(str, Enum):
    """Anomaly severity."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        """Sort key: high first."""
        return {"high": 0, "medium": 1, "low": 2}[self.value]


class Anomaly(LedgerModel):
    """A single finding from the anomaly detector."""

    id: str
    type: AnomalyType
    severity: Severity
    category: Optional[Category] = None
    title: str
    description: str
    expected: Decimal = Field(ge=0)
    actual: Decimal = Field(ge=0)
    diff_percent: float
    threshold: Optional[float] = None
    threshold_reason: Optional[str] = None
    suggestion: Optional[str] = None
    transaction: Optional[Transaction] = None
    can_mark_false_positive: bool = False


class CategoryChange(LedgerModel):
    """Spending in one category, this month vs last month."""

    category: Category
    this_month: Decimal = Decimal("0")
    last_month: Decimal = Decimal("0")
    change: Decimal = Decimal("0")
    change_percent: float = 0.0
    trend: str = Field(default="stable", pattern="^(up|down|stable)$")


class ChangeReport(LedgerModel):
    """Month-over-month drift across all categories."""

    this_month_start: date
    last_month_start: date
    this_month_total: Decimal = Decimal("0")
    last_month_total: Decimal = Decimal("0")
    this_month_count: int = 0
    last_month_count: int = 0
    total_change: Decimal = Decimal("0")
    total_change_percent: float = 0.0
    by_category: list[CategoryChange] = Field(default_factory=list)
    significant: list[CategoryChange] = Field(default_factory=list)
