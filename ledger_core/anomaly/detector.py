"""
Adaptive Anomaly Detector

Flags unusual spending against learned baselines instead of fixed rules.

THREE RULES:
1. Learned spike - a recent expense far above its category average
2. Missing expected - a recurring category has gone quiet
3. Settlement warning - unsettled balance far above the usual settlement

Thresholds come from PatternLearningStore and move with user feedback.
A spike close to one the user already dismissed is suppressed.

CRITICAL: Detection never mutates transactions. The only side effect is
a cold-start learn() on a store that has no baselines yet.
"""

from datetime import date
from decimal import Decimal
from typing import Iterable, Optional, Sequence

import structlog

from ledger_core.config import LedgerSettings, get_settings
from ledger_core.models.anomaly import Anomaly, AnomalyType, Severity
from ledger_core.models.ledger import Justification, ParticipantId, Transaction
from ledger_core.patterns import PatternLearningStore
from ledger_core.utils.money import percent
from ledger_core.validation import TransactionValidator


logger = structlog.get_logger(__name__)

# Spike ids embed the transaction id so feedback can find it again
SPIKE_PREFIX = "spike-"


class AnomalyDetector:
    """
    Runs the detection rules for one account.

    Usage:
        detector = AnomalyDetector(store)
        anomalies = detector.detect(transactions, participants)
    """

    def __init__(
        self,
        store: PatternLearningStore,
        settings: Optional[LedgerSettings] = None,
        validator: Optional[TransactionValidator] = None,
    ):
        self.store = store
        self._settings = settings or get_settings().ledger
        self._validator = validator or TransactionValidator(self._settings)

    def detect(
        self,
        transactions: Iterable[Transaction],
        participants: Sequence[ParticipantId] = (),
        today: Optional[date] = None,
    ) -> list[Anomaly]:
        """
        All findings, most severe first, capped at max_anomalies.

        An empty ledger yields no findings. A store without baselines is
        taught from the given transactions first.

        Raises:
            DataIntegrityError: If the unsettled transactions are malformed
        """
        transactions = list(transactions)
        if not transactions:
            return []

        self._validator.ensure_valid(
            [t for t in transactions if not t.settled],
            participants,
        )

        today = today or date.today()

        if not self.store.has_baselines():
            logger.info("cold_start_learning", transaction_count=len(transactions))
            self.store.learn(transactions, participants)

        anomalies = [
            *self._learned_spikes(transactions),
            *self._missing_expected(transactions, today),
            *self._settlement_warning(transactions),
        ]

        # sorted() is stable, so input order holds within a severity level
        anomalies = sorted(anomalies, key=lambda a: a.severity.rank)
        return anomalies[:self._settings.max_anomalies]

    def _learned_spikes(self, transactions: list[Transaction]) -> list[Anomaly]:
        settings = self._settings
        currency = settings.currency_symbol
        found = []

        for txn in transactions[-settings.recency_window:]:
            baseline = self.store.baseline_for(txn.category)
            if baseline is None or baseline.count < settings.min_category_samples:
                continue
            if baseline.average <= 0:
                continue

            deviation = float((txn.amount - baseline.average) / baseline.average)
            threshold = self.store.get_adaptive_threshold(txn.category)

            if deviation <= threshold.threshold - 1:
                continue
            if txn.amount <= settings.absolute_amount_floor:
                continue

            if self.store.false_positive_near(txn.category, txn.amount):
                logger.debug(
                    "anomaly_suppressed",
                    transaction_id=txn.id,
                    category=txn.category,
                )
                continue

            if deviation > 1.0:
                severity = Severity.HIGH
            elif deviation > 0.5:
                severity = Severity.MEDIUM
            else:
                severity = Severity.LOW

            diff = round(deviation * 100, 1)
            found.append(Anomaly(
                id=f"{SPIKE_PREFIX}{txn.id}",
                type=AnomalyType.LEARNED_SPIKE,
                severity=severity,
                category=txn.category,
                title=f"Unusual {txn.category} expense",
                description=(
                    f"{currency}{txn.amount:,} is {diff:.0f}% above your usual "
                    f"{currency}{baseline.average:,} for {txn.category}"
                ),
                expected=baseline.average,
                actual=txn.amount,
                diff_percent=diff,
                threshold=threshold.threshold,
                threshold_reason=threshold.reason,
                suggestion="Mark it as expected if this was a planned purchase",
                transaction=txn,
                can_mark_false_positive=True,
            ))

        return found

    def _missing_expected(self, transactions: list[Transaction], today: date) -> list[Anomaly]:
        settings = self._settings
        last_seen: dict[str, date] = {}
        for txn in transactions:
            if txn.category not in last_seen or txn.date > last_seen[txn.category]:
                last_seen[txn.category] = txn.date

        found = []
        for category, pattern in self.store.document.frequency_patterns.items():
            average = pattern.average_days_between
            if average <= 0 or category not in last_seen:
                continue

            frequent = average < settings.frequent_cycle_max_days
            regular = pattern.is_regular(settings.regular_gap_tolerance)
            if not (frequent or regular):
                continue

            days = (today - last_seen[category]).days
            if days <= average * settings.missing_multiplier:
                continue

            expected = Decimal(str(average))
            found.append(Anomaly(
                id=f"missing-{category}",
                type=AnomalyType.MISSING_EXPECTED,
                severity=Severity.LOW,
                category=category,
                title=f"No recent {category} expenses",
                description=(
                    f"You usually log {category} every {average:.0f} days, "
                    f"but the last one was {days} days ago"
                ),
                expected=expected,
                actual=Decimal(days),
                diff_percent=percent(Decimal(days) - expected, expected),
                suggestion=f"Check whether a {category} expense was missed",
            ))

        return found

    def _settlement_warning(self, transactions: list[Transaction]) -> list[Anomaly]:
        settings = self._settings
        currency = settings.currency_symbol

        pending = [t for t in transactions if not t.settled]
        if not pending:
            return []

        total = sum((t.amount for t in pending), Decimal("0"))
        typical = self.store.typical_settlement_amount()

        if total > typical * Decimal(str(settings.settlement_critical_multiplier)):
            severity = Severity.HIGH
        elif total > typical * Decimal(str(settings.settlement_warning_multiplier)):
            severity = Severity.MEDIUM
        else:
            return []

        return [Anomaly(
            id="settlement-overdue",
            type=AnomalyType.SETTLEMENT_WARNING,
            severity=severity,
            title="Settlement overdue",
            description=(
                f"{currency}{total:,} is unsettled across {len(pending)} expenses, "
                f"well above your typical {currency}{typical:,.0f}"
            ),
            expected=typical,
            actual=total,
            diff_percent=percent(total - typical, typical),
            suggestion="Settle up soon",
        )]

    # =========================================================================
    # EXPLANATIONS
    # =========================================================================

    def justify_anomaly(self, anomaly: Anomaly) -> Justification:
        """Why an anomaly was flagged, in terms the user can check."""
        currency = self._settings.currency_symbol
        reasons = []
        verified = 0

        if anomaly.type == AnomalyType.LEARNED_SPIKE:
            reasons.append(
                f"Your average {anomaly.category} expense is {currency}{anomaly.expected:,}"
            )
            reasons.append(f"This expense is {anomaly.diff_percent:.0f}% above that average")
            if anomaly.threshold_reason:
                reasons.append(
                    f"Flagging threshold {anomaly.threshold}x ({anomaly.threshold_reason})"
                )
            verified = self.store.verified_similar(anomaly.category)
            if verified:
                reasons.append(f"You confirmed {verified} similar anomalies before")
        elif anomaly.type == AnomalyType.MISSING_EXPECTED:
            reasons.append(
                f"{anomaly.category} usually recurs every {anomaly.expected} days"
            )
            reasons.append(f"Last one was {anomaly.actual} days ago")
        else:
            reasons.append(f"Unsettled total is {currency}{anomaly.actual:,}")
            reasons.append(f"Typical settlement is {currency}{anomaly.expected:,.0f}")

        if verified:
            confidence = "high"
        elif anomaly.severity == Severity.LOW:
            confidence = "low"
        else:
            confidence = "medium"

        return Justification(
            summary=anomaly.title,
            reasons=reasons,
            confidence=confidence,
        )
