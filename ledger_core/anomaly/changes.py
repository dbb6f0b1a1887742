"""Month-over-month spending drift."""

from datetime import date, timedelta
from decimal import Decimal
from typing import Iterable, Optional

from ledger_core.config import LedgerSettings, get_settings
from ledger_core.models.anomaly import CategoryChange, ChangeReport
from ledger_core.models.ledger import Transaction
from ledger_core.utils.money import percent


def _change_percent(current: Decimal, previous: Decimal) -> float:
    # A category that is new this month counts as a full 100% rise
    if not previous:
        return 100.0 if current else 0.0
    return percent(current - previous, previous)


def _trend(change: Decimal) -> str:
    if change > 0:
        return "up"
    if change < 0:
        return "down"
    return "stable"


def detect_changes(
    transactions: Iterable[Transaction],
    today: Optional[date] = None,
    settings: Optional[LedgerSettings] = None,
) -> ChangeReport:
    """
    Compare this calendar month with the previous one, per category.

    Categories whose spend moved by more than the significance percentage
    are listed again under `significant`.
    """
    settings = settings or get_settings().ledger
    today = today or date.today()

    this_start = today.replace(day=1)
    last_start = (this_start - timedelta(days=1)).replace(day=1)

    this_month = [t for t in transactions if this_start <= t.date <= today]
    last_month = [t for t in transactions if last_start <= t.date < this_start]

    def totals(txns: list[Transaction]) -> dict[str, Decimal]:
        out: dict[str, Decimal] = {}
        for txn in txns:
            out[txn.category] = out.get(txn.category, Decimal("0")) + txn.amount
        return out

    current, previous = totals(this_month), totals(last_month)

    by_category = []
    for category in sorted(set(current) | set(previous)):
        now_amount = current.get(category, Decimal("0"))
        then_amount = previous.get(category, Decimal("0"))
        change = now_amount - then_amount
        by_category.append(CategoryChange(
            category=category,
            this_month=now_amount,
            last_month=then_amount,
            change=change,
            change_percent=_change_percent(now_amount, then_amount),
            trend=_trend(change),
        ))

    by_category.sort(key=lambda c: (-abs(c.change), c.category))
    significant = [
        c for c in by_category
        if abs(c.change_percent) > settings.change_significance_percent
    ]

    this_total = sum(current.values(), Decimal("0"))
    last_total = sum(previous.values(), Decimal("0"))

    return ChangeReport(
        this_month_start=this_start,
        last_month_start=last_start,
        this_month_total=this_total,
        last_month_total=last_total,
        this_month_count=len(this_month),
        last_month_count=len(last_month),
        total_change=this_total - last_total,
        total_change_percent=_change_percent(this_total, last_total),
        by_category=by_category,
        significant=significant,
    )
