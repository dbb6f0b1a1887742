"""
Balance & Settlement Engine

Turns the unsettled part of a ledger into per-participant balances and a
short list of transfers that clears them.

ALGORITHM:
1. Every participant starts at zero
2. Payer is credited the full amount, each share is debited
3. Balances are rounded to whole units, keeping the total at exactly zero
4. Creditors and debtors are sorted by size (largest first)
5. Largest creditor is matched against largest debtor until one side runs out

Greedy matching is not guaranteed to find the fewest transfers in every
case, but it is close for the usual "few big imbalances" shape and it is
fully deterministic, which the test fixtures rely on.

Everything here is a pure function of its inputs. The only state touched
is the PatternLearningStore handed to confirm_settlement().
"""

from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Iterable, Optional, Sequence

import structlog

from ledger_core.config import LedgerSettings, get_settings
from ledger_core.exceptions import ProposalStateError, StaleProposalError
from ledger_core.models.ledger import (
    ConfirmationResult,
    Justification,
    ParticipantId,
    ProposalStatus,
    SettledDay,
    Settlement,
    SettlementBreakdown,
    SettlementProposal,
    SettlementReminder,
    SettlementResult,
    Transaction,
)
from ledger_core.models.patterns import SettlementHistoryEntry
from ledger_core.utils.money import round_whole, round_zero_sum, utc_now
from ledger_core.validation import TransactionValidator

if TYPE_CHECKING:
    from ledger_core.patterns import PatternLearningStore


logger = structlog.get_logger(__name__)

ZERO = Decimal("0")


def _unique(participants: Iterable[ParticipantId]) -> list[ParticipantId]:
    """Drop duplicates, keep first-seen order."""
    return list(dict.fromkeys(participants))


def unsettled_transactions(transactions: Iterable[Transaction]) -> list[Transaction]:
    """Transactions that still take part in balance computation."""
    return [t for t in transactions if not t.settled]


def transaction_shares(
    txn: Transaction,
    participants: Sequence[ParticipantId],
) -> dict[ParticipantId, Decimal]:
    """
    Who owes what for one transaction.

    Explicit split wins; otherwise an equal split among split_among,
    falling back to everyone.
    """
    if txn.split:
        return dict(txn.split)

    among = _unique(txn.split_among or participants)
    if not among:
        return {}
    share = txn.amount / len(among)
    return {person: share for person in among}


def _raw_balances(
    transactions: Iterable[Transaction],
    participants: Sequence[ParticipantId],
) -> dict[ParticipantId, Decimal]:
    balances = {name: ZERO for name in participants}
    for txn in transactions:
        if txn.payer is None:
            continue
        balances[txn.payer] = balances.get(txn.payer, ZERO) + txn.amount
        for person, share in transaction_shares(txn, participants).items():
            balances[person] = balances.get(person, ZERO) - share
    return balances


def compute_balances(
    transactions: Iterable[Transaction],
    participants: Sequence[ParticipantId],
    settings: Optional[LedgerSettings] = None,
) -> dict[ParticipantId, Decimal]:
    """
    Net balance per participant over the unsettled transactions.

    Positive = is owed money, negative = owes money. Rounded to whole
    units with the total held at exactly zero.
    """
    settings = settings or get_settings().ledger
    participants = _unique(participants)
    raw = _raw_balances(unsettled_transactions(transactions), participants)
    return round_zero_sum(raw, unit=settings.rounding_epsilon)


def simplify_debts(
    balances: dict[ParticipantId, Decimal],
    epsilon: Decimal = Decimal("1"),
) -> list[Settlement]:
    """
    Greedy creditor/debtor matching.

    Balances must already be rounded to multiples of epsilon and sum to
    zero; the returned transfers then reproduce them exactly.
    """
    creditors = [[name, bal] for name, bal in balances.items() if bal >= epsilon]
    debtors = [[name, -bal] for name, bal in balances.items() if bal <= -epsilon]

    # Stable order: size first, then participant id
    creditors.sort(key=lambda c: (-c[1], c[0]))
    debtors.sort(key=lambda d: (-d[1], d[0]))

    settlements = []
    ci = di = 0
    while ci < len(creditors) and di < len(debtors):
        creditor, debtor = creditors[ci], debtors[di]
        amount = min(creditor[1], debtor[1])

        if amount >= epsilon:
            settlements.append(Settlement(
                from_participant=debtor[0],
                to_participant=creditor[0],
                amount=amount,
            ))

        creditor[1] -= amount
        debtor[1] -= amount

        if creditor[1] < epsilon:
            ci += 1
        if debtor[1] < epsilon:
            di += 1

    return settlements


def compute_settlement(
    transactions: Iterable[Transaction],
    participants: Sequence[ParticipantId],
    settings: Optional[LedgerSettings] = None,
    validator: Optional[TransactionValidator] = None,
) -> SettlementResult:
    """
    Balances plus transfers for the current unsettled set.

    Read-only. Raises DataIntegrityError before computing anything if the
    unsettled transactions are malformed. No unsettled transactions (or
    solo mode) is a normal result: empty balances, no transfers.
    """
    settings = settings or get_settings().ledger
    validator = validator or TransactionValidator(settings)
    participants = _unique(participants)

    pending = unsettled_transactions(transactions)
    validator.ensure_valid(pending, participants)

    unsettled_total = sum((t.amount for t in pending), ZERO)
    if not pending or not participants:
        return SettlementResult(
            unsettled_count=len(pending),
            unsettled_total=unsettled_total,
        )

    balances = round_zero_sum(
        _raw_balances(pending, participants),
        unit=settings.rounding_epsilon,
    )
    settlements = simplify_debts(balances, settings.rounding_epsilon)

    logger.debug(
        "settlement_computed",
        unsettled_count=len(pending),
        transfer_count=len(settlements),
    )

    return SettlementResult(
        balances=balances,
        settlements=settlements,
        unsettled_count=len(pending),
        unsettled_total=unsettled_total,
    )


def build_proposal(
    transactions: Sequence[Transaction],
    participants: Sequence[ParticipantId],
    history: Sequence[SettlementHistoryEntry] = (),
    account_id: Optional[str] = None,
    today: Optional[date] = None,
    settings: Optional[LedgerSettings] = None,
) -> SettlementProposal:
    """Compute a settlement and pin the transactions it was computed from."""
    settings = settings or get_settings().ledger
    result = compute_settlement(transactions, participants, settings)
    snapshot = {t.id: t.fingerprint() for t in unsettled_transactions(transactions)}

    return SettlementProposal(
        account_id=account_id,
        participants=_unique(participants),
        result=result,
        snapshot=snapshot,
        justification=justify_settlement(
            result, transactions, history, today=today, settings=settings
        ),
    )


def find_stale_transactions(
    transactions: Iterable[Transaction],
    proposal: SettlementProposal,
) -> list[str]:
    """
    Ids whose unsettled state differs from the proposal snapshot.

    Covers added, removed, already-settled and edited transactions.
    """
    current = {t.id: t.fingerprint() for t in unsettled_transactions(transactions)}
    snapshot = proposal.snapshot

    changed = set(snapshot) ^ set(current)
    changed |= {tid for tid in set(snapshot) & set(current) if snapshot[tid] != current[tid]}
    return sorted(changed)


def confirm_settlement(
    transactions: Sequence[Transaction],
    proposal: SettlementProposal,
    store: Optional["PatternLearningStore"] = None,
    now: Optional[datetime] = None,
) -> ConfirmationResult:
    """
    Mark the proposal's transactions settled and record the settlement.

    Re-validates first: if any transaction the proposal was computed from
    changed, nothing is mutated and StaleProposalError is raised.
    Returns updated copies; the input list is left untouched.
    """
    if proposal.status == ProposalStatus.SUPERSEDED:
        raise StaleProposalError(
            f"Proposal {proposal.proposal_id} was replaced by a newer one"
        )
    if proposal.status != ProposalStatus.PROPOSED:
        raise ProposalStateError(
            f"Cannot confirm a {proposal.status.value} proposal"
        )

    changed = find_stale_transactions(transactions, proposal)
    if changed:
        raise StaleProposalError(
            f"{len(changed)} transaction(s) changed since the proposal was computed",
            changed_ids=changed,
        )

    now = now or utc_now()
    updated = []
    settled_total = ZERO
    settled_count = 0
    for txn in transactions:
        if txn.id in proposal.snapshot:
            updated.append(txn.model_copy(update={"settled": True, "settled_at": now}))
            settled_total += txn.amount
            settled_count += 1
        else:
            updated.append(txn)

    if store is not None and settled_count:
        involved = _unique(
            name
            for s in proposal.settlements
            for name in (s.from_participant, s.to_participant)
        )
        store.record_settlement(settled_total, involved)

    logger.info(
        "settlement_confirmed",
        proposal_id=str(proposal.proposal_id),
        settled_count=settled_count,
    )

    return ConfirmationResult(
        proposal_id=proposal.proposal_id,
        settled_count=settled_count,
        settled_at=now,
        settled_total=settled_total,
        settlements=proposal.settlements,
        transactions=updated,
    )


# =============================================================================
# EXPLANATIONS AND REMINDERS
# =============================================================================

def explain_settlement(
    transactions: Iterable[Transaction],
    participants: Sequence[ParticipantId],
    settings: Optional[LedgerSettings] = None,
) -> SettlementBreakdown:
    """
    Step-by-step breakdown: paid, fair share, net, transfers.

    Shows users why the transfers look the way they do.
    """
    settings = settings or get_settings().ledger
    participants = _unique(participants)
    pending = [t for t in unsettled_transactions(transactions) if t.payer is not None]

    paid = {name: ZERO for name in participants}
    owed = {name: ZERO for name in participants}
    for txn in pending:
        paid[txn.payer] = paid.get(txn.payer, ZERO) + txn.amount
        for person, share in transaction_shares(txn, participants).items():
            owed[person] = owed.get(person, ZERO) + share

    result = compute_settlement(transactions, participants, settings)
    net = result.balances or {name: ZERO for name in participants}

    status = {}
    for name, balance in net.items():
        if balance > 0:
            status[name] = "owed money"
        elif balance < 0:
            status[name] = "owes money"
        else:
            status[name] = "settled"

    unit = settings.rounding_epsilon
    return SettlementBreakdown(
        paid={name: round_whole(v, unit) for name, v in paid.items()},
        fair_share={name: round_whole(v, unit) for name, v in owed.items()},
        net=net,
        status=status,
        settlements=result.settlements,
        unsettled_count=len(pending),
        total_amount=sum((t.amount for t in pending), ZERO),
    )


def justify_settlement(
    result: SettlementResult,
    transactions: Iterable[Transaction],
    history: Sequence[SettlementHistoryEntry] = (),
    today: Optional[date] = None,
    settings: Optional[LedgerSettings] = None,
) -> Justification:
    """Reasons to settle now, drawn from amounts, age and history."""
    settings = settings or get_settings().ledger
    today = today or date.today()
    currency = settings.currency_symbol
    reasons = []

    if result.unsettled_total > settings.justification_large_total:
        reasons.append(
            f"Unsettled amount ({currency}{result.unsettled_total:,}) exceeds "
            f"{currency}{settings.justification_large_total:,}"
        )

    pending = unsettled_transactions(transactions)
    if pending:
        oldest = min(t.date for t in pending)
        age = (today - oldest).days
        if age > settings.justification_stale_days:
            reasons.append(f"Oldest unsettled expense is {age} days old")

    if history:
        typical = sum((h.amount for h in history), ZERO) / len(history)
        if typical > 0 and result.unsettled_total > typical * Decimal("1.5"):
            ratio = result.unsettled_total / typical
            reasons.append(f"Current balance is {ratio:.1f}x your typical settlement")

    if result.balances:
        name, balance = min(result.balances.items(), key=lambda kv: (kv[1], kv[0]))
        if abs(balance) > settings.justification_large_balance:
            reasons.append(
                f"{name}'s balance of {currency}{abs(balance):,} is significant"
            )

    if not reasons:
        confidence = "low"
    elif len(reasons) >= 2:
        confidence = "high"
    else:
        confidence = "medium"

    return Justification(
        summary=f"Settlement recommended based on {len(reasons)} factor(s)",
        reasons=reasons,
        confidence=confidence,
    )


def settlement_reminder(
    transactions: Sequence[Transaction],
    today: Optional[date] = None,
    settings: Optional[LedgerSettings] = None,
) -> Optional[SettlementReminder]:
    """
    Nudge to settle up, or None when nothing is pending.

    Urgency grows with the pending count/amount and with the time since
    the last confirmed settlement.
    """
    settings = settings or get_settings().ledger
    today = today or date.today()
    currency = settings.currency_symbol

    pending = unsettled_transactions(transactions)
    if not pending:
        return None

    stamps = [t.settled_at for t in transactions if t.settled and t.settled_at]
    days_since = (today - max(stamps).date()).days if stamps else None
    total = sum((t.amount for t in pending), ZERO)
    count = len(pending)

    if count > settings.reminder_high_count or total > settings.reminder_high_amount:
        urgency = "high"
        message = (
            f"You have {count} unsettled transactions totaling "
            f"{currency}{total:,}. Time to settle up!"
        )
    elif count > settings.reminder_medium_count or (
        days_since is not None and days_since > settings.reminder_medium_days
    ):
        urgency = "medium"
        message = f"{count} transactions pending ({currency}{total:,}). Consider settling soon."
    else:
        urgency = "low"
        message = f"{count} transactions to settle when you're ready."

    return SettlementReminder(
        urgency=urgency,
        message=message,
        count=count,
        amount=total,
        days_since_last_settlement=days_since,
    )


def settlement_history(
    transactions: Iterable[Transaction],
    limit: int = 10,
) -> list[SettledDay]:
    """Settled transactions grouped by settlement day, newest first."""
    by_day: dict[date, list[Transaction]] = {}
    for txn in transactions:
        if txn.settled and txn.settled_at:
            by_day.setdefault(txn.settled_at.date(), []).append(txn)

    days = sorted(by_day, reverse=True)[:limit]
    return [
        SettledDay(
            date=day,
            count=len(by_day[day]),
            amount=sum((t.amount for t in by_day[day]), ZERO),
        )
        for day in days
    ]
