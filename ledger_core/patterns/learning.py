"""
Pattern Learning Store

Holds one account's learned baselines plus the bounded feedback and
settlement histories, and derives adaptive anomaly thresholds from them.

DESIGN DECISION: Copy-then-swap.
Every mutation builds a new PatternsDocument and replaces the reference
in one assignment. Anyone still holding the previous document (a
detector mid-run, a storage save in flight) keeps a consistent view.

DESIGN DECISION: No I/O here.
The store is loaded from and saved to PatternStorageInterface by the
service layer; this class only owns the semantics.
"""

from collections import defaultdict
from datetime import date, datetime
from decimal import Decimal
from typing import Iterable, Optional
from uuid import uuid4

import structlog

from ledger_core.config import LedgerSettings, get_settings
from ledger_core.models.ledger import (
    SOLO_PARTICIPANT,
    Category,
    ParticipantId,
    Transaction,
)
from ledger_core.models.patterns import (
    AdaptiveThreshold,
    AnomalyRecord,
    CategoryBaseline,
    FrequencyPattern,
    PatternsDocument,
    SettlementHistoryEntry,
)
from ledger_core.utils.money import round_whole, utc_now


logger = structlog.get_logger(__name__)


def _baseline(category: Category, amounts: list[Decimal], population: int) -> CategoryBaseline:
    total = sum(amounts, Decimal("0"))
    return CategoryBaseline(
        category=category,
        average=round_whole(total / len(amounts)),
        total=total,
        count=len(amounts),
        frequency=round(len(amounts) / population, 4),
    )


def _frequency(category: Category, dates: list[date]) -> Optional[FrequencyPattern]:
    """Gap statistics between consecutive dates, None below two dates."""
    if len(dates) < 2:
        return None

    ordered = sorted(dates)
    gaps = [(later - earlier).days for earlier, later in zip(ordered, ordered[1:])]
    return FrequencyPattern(
        category=category,
        average_days_between=round(sum(gaps) / len(gaps), 1),
        min_days=min(gaps),
        max_days=max(gaps),
        gap_count=len(gaps),
    )


class PatternLearningStore:
    """
    Per-account learned state.

    Usage:
        store = PatternLearningStore(document)
        store.learn(transactions, participants)
        threshold = store.get_adaptive_threshold("Food")
    """

    def __init__(
        self,
        document: Optional[PatternsDocument] = None,
        settings: Optional[LedgerSettings] = None,
    ):
        self._settings = settings or get_settings().ledger
        self._document = document or PatternsDocument()

    @property
    def document(self) -> PatternsDocument:
        """Current snapshot. Never mutated in place."""
        return self._document

    @property
    def anomaly_history(self) -> list[AnomalyRecord]:
        return self._document.anomaly_history

    @property
    def settled_history(self) -> list[SettlementHistoryEntry]:
        return self._document.settled_history

    # =========================================================================
    # LEARNING
    # =========================================================================

    def learn(
        self,
        transactions: Iterable[Transaction],
        participants: Iterable[ParticipantId] = (),
        now: Optional[datetime] = None,
    ) -> list[CategoryBaseline]:
        """
        Recompute every baseline from the full transaction set.

        Baselines and frequency patterns are replaced wholesale; feedback
        and settlement histories are carried over untouched. Running it
        twice on the same input gives the same baselines.
        """
        transactions = list(transactions)
        known = set(participants)

        by_category: dict[Category, list[Decimal]] = defaultdict(list)
        dates: dict[Category, list[date]] = defaultdict(list)
        by_person: dict[ParticipantId, dict[Category, list[Decimal]]] = defaultdict(
            lambda: defaultdict(list)
        )

        for txn in transactions:
            by_category[txn.category].append(txn.amount)
            dates[txn.category].append(txn.date)

            person = txn.payer or SOLO_PARTICIPANT
            if known and txn.payer is not None and txn.payer not in known:
                continue
            by_person[person][txn.category].append(txn.amount)

        population = len(transactions)
        category_averages = {
            cat: _baseline(cat, amounts, population)
            for cat, amounts in sorted(by_category.items())
        }

        user_baselines = {}
        for person, categories in sorted(by_person.items()):
            person_total = sum(len(a) for a in categories.values())
            user_baselines[person] = {
                cat: _baseline(cat, amounts, person_total)
                for cat, amounts in sorted(categories.items())
            }

        frequency_patterns = {}
        for cat, cat_dates in sorted(dates.items()):
            pattern = _frequency(cat, cat_dates)
            if pattern is not None:
                frequency_patterns[cat] = pattern

        self._document = self._document.model_copy(update={
            "category_averages": category_averages,
            "user_baselines": user_baselines,
            "frequency_patterns": frequency_patterns,
            "last_updated": now or utc_now(),
        })

        logger.info(
            "patterns_learned",
            transaction_count=population,
            category_count=len(category_averages),
        )
        return list(category_averages.values())

    # =========================================================================
    # FEEDBACK AND HISTORY
    # =========================================================================

    def record_anomaly_feedback(
        self,
        category: Category,
        amount: Decimal,
        was_accurate: Optional[bool],
        anomaly_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> AnomalyRecord:
        """Append a feedback record, dropping the oldest beyond the cap."""
        record = AnomalyRecord(
            id=anomaly_id or uuid4().hex,
            category=category,
            amount=amount,
            detected_at=now or utc_now(),
            was_accurate=was_accurate,
        )

        history = [*self._document.anomaly_history, record]
        cap = self._settings.anomaly_history_cap
        if len(history) > cap:
            logger.debug("anomaly_history_evicted", dropped=len(history) - cap)
            history = history[-cap:]

        self._document = self._document.model_copy(update={
            "anomaly_history": history,
            "last_updated": record.detected_at,
        })
        return record

    def record_settlement(
        self,
        amount: Decimal,
        participants: Iterable[ParticipantId],
        now: Optional[datetime] = None,
    ) -> SettlementHistoryEntry:
        """Append a confirmed settlement, dropping the oldest beyond the cap."""
        entry = SettlementHistoryEntry(
            amount=amount,
            participants=list(participants),
            date=now or utc_now(),
        )

        history = [*self._document.settled_history, entry]
        cap = self._settings.settlement_history_cap
        if len(history) > cap:
            logger.debug("settlement_history_evicted", dropped=len(history) - cap)
            history = history[-cap:]

        self._document = self._document.model_copy(update={
            "settled_history": history,
            "last_updated": entry.date,
        })
        return entry

    # =========================================================================
    # THRESHOLDS
    # =========================================================================

    def get_adaptive_threshold(self, category: Category) -> AdaptiveThreshold:
        """
        Cutoff multiple for a category, shaped by feedback.

        More false positives can only raise it, more confirmed anomalies
        can only lower it.
        """
        settings = self._settings
        records = [r for r in self._document.anomaly_history if r.category == category]
        false_positives = sum(1 for r in records if r.was_accurate is False)
        true_positives = sum(1 for r in records if r.was_accurate is True)

        if (
            false_positives > true_positives
            and false_positives >= settings.min_false_positives_to_relax
        ):
            threshold = settings.relaxed_threshold
            reason = f"Relaxed after {false_positives} false positives"
        elif true_positives > 0 and true_positives >= 2 * false_positives:
            threshold = settings.strict_threshold
            reason = f"Tightened after {true_positives} confirmed anomalies"
        else:
            threshold = settings.default_threshold
            reason = "Default threshold"

        baseline = self.baseline_for(category)
        return AdaptiveThreshold(
            category=category,
            threshold=threshold,
            reason=reason,
            average=baseline.average if baseline else None,
            frequency=baseline.frequency if baseline else None,
        )

    # =========================================================================
    # READ HELPERS
    # =========================================================================

    def has_baselines(self) -> bool:
        return bool(self._document.category_averages)

    def baseline_for(
        self,
        category: Category,
        participant: Optional[ParticipantId] = None,
    ) -> Optional[CategoryBaseline]:
        if participant is None:
            return self._document.category_averages.get(category)
        return self._document.user_baselines.get(participant, {}).get(category)

    def frequency_for(self, category: Category) -> Optional[FrequencyPattern]:
        return self._document.frequency_patterns.get(category)

    def typical_settlement_amount(self) -> Decimal:
        """Mean confirmed settlement, or the configured default with no history."""
        history = self._document.settled_history
        if not history:
            return self._settings.default_settlement_amount
        return sum((h.amount for h in history), Decimal("0")) / len(history)

    def false_positive_near(self, category: Category, amount: Decimal) -> bool:
        """A false-positive record in this category lies within the tolerance."""
        tolerance = self._settings.feedback_amount_tolerance
        return any(
            r.category == category
            and r.was_accurate is False
            and abs(r.amount - amount) < tolerance
            for r in self._document.anomaly_history
        )

    def verified_similar(self, category: Category) -> int:
        """Confirmed anomalies recorded for a category."""
        return sum(
            1 for r in self._document.anomaly_history
            if r.category == category and r.was_accurate is True
        )
