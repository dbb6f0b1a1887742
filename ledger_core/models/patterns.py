"""
Pattern Learning Models

Learned baselines plus the bounded feedback and settlement histories.
One PatternsDocument exists per account and is persisted separately from
the raw transactions.

DESIGN DECISION: Baselines are recomputed wholesale on every learn().
Running sums under edits/deletes go stale silently; a full recompute
over personal-scale data does not.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import Field

from ledger_core.models.ledger import Category, LedgerModel, ParticipantId
from ledger_core.utils.money import utc_now


class CategoryBaseline(LedgerModel):
    """Learned spending statistics for one category."""

    category: Category
    average: Decimal = Field(ge=0)
    total: Decimal = Field(ge=0)
    count: int = Field(ge=0)
    frequency: float = Field(
        ge=0.0,
        le=1.0,
        description="Share of all transactions that fall in this category",
    )


class FrequencyPattern(LedgerModel):
    """How often a category recurs, from gaps between sorted dates."""

    category: Category
    average_days_between: float = Field(ge=0)
    min_days: float = Field(ge=0)
    max_days: float = Field(ge=0)
    gap_count: int = Field(default=1, ge=1)

    def is_regular(self, tolerance: float) -> bool:
        """
        Gaps barely vary (e.g. a monthly rent).

        A single gap says nothing about regularity, so at least two are needed.
        """
        if self.gap_count < 2 or self.average_days_between <= 0:
            return False
        spread = self.max_days - self.min_days
        return spread <= self.average_days_between * tolerance


class AnomalyRecord(LedgerModel):
    """
    User feedback on a flagged anomaly.

    was_accurate: True = real anomaly, False = false positive,
    None = seen but not judged.
    """

    id: str
    category: Category
    amount: Decimal = Field(ge=0)
    detected_at: datetime = Field(default_factory=utc_now)
    was_accurate: Optional[bool] = None


class SettlementHistoryEntry(LedgerModel):
    """One confirmed settlement, used to learn a typical settlement size."""

    amount: Decimal = Field(ge=0)
    participants: list[ParticipantId] = Field(default_factory=list)
    date: datetime = Field(default_factory=utc_now)


class PatternsDocument(LedgerModel):
    """
    Everything the Pattern Learning Store persists for one account.

    Serialized with camelCase keys:
    {categoryAverages, userBaselines, frequencyPatterns,
     anomalyHistory, settledHistory, lastUpdated}
    """

    category_averages: dict[Category, CategoryBaseline] = Field(default_factory=dict)
    user_baselines: dict[ParticipantId, dict[Category, CategoryBaseline]] = Field(
        default_factory=dict
    )
    frequency_patterns: dict[Category, FrequencyPattern] = Field(default_factory=dict)
    anomaly_history: list[AnomalyRecord] = Field(default_factory=list)
    settled_history: list[SettlementHistoryEntry] = Field(default_factory=list)
    last_updated: Optional[datetime] = None
    learning_start_date: datetime = Field(default_factory=utc_now)


class AdaptiveThreshold(LedgerModel):
    """Anomaly cutoff for a category, as a multiple of its average."""

    category: Category
    threshold: float = Field(gt=1.0)
    reason: str
    average: Optional[Decimal] = None
    frequency: Optional[float] = None


class LearningResult(LedgerModel):
    """Outcome of a learn() triggered through the service."""

    baselines: list[CategoryBaseline] = Field(default_factory=list)
    persisted: bool = True
    error: Optional[str] = None


class FeedbackResult(LedgerModel):
    """Outcome of recording anomaly feedback through the service."""

    record: AnomalyRecord
    threshold: AdaptiveThreshold
    persisted: bool = True
    error: Optional[str] = None
