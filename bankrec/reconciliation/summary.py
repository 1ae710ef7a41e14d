"""
Reconciliation summary computation.

A pure function of the run's bank lines, ledger entries and matches. Nothing
here reads storage or the clock except through the `now` argument.
"""

from collections import defaultdict
from datetime import date, datetime
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Tuple

from ..models import (
    BankTransaction,
    LedgerEntry,
    OutstandingItem,
    OutstandingItemType,
    Priority,
    ReconciliationException,
    ReconciliationExceptionType,
    ReconciliationMatch,
    ReconciliationMatchType,
    ReconciliationRecommendation,
    ReconciliationSummary,
    RecommendationType,
)

ZERO = Decimal("0")


def _age_days(when: Optional[date], now: datetime) -> int:
    if when is None:
        return 0
    return max((now.date() - when).days, 0)


def _priority(amount: Decimal, high_priority_amount: Decimal) -> Priority:
    return Priority.HIGH if abs(amount) > high_priority_amount else Priority.MEDIUM


def compute_summary(
    bank_transactions: Sequence[BankTransaction],
    ledger_entries: Sequence[LedgerEntry],
    matches: Sequence[ReconciliationMatch],
    now: Optional[datetime] = None,
    high_priority_amount: float = 1000.0,
    stale_item_days: int = 30,
    low_reconciliation_rate: float = 50.0,
) -> ReconciliationSummary:
    """
    Build the summary of a completed run.

    Args:
        bank_transactions: Bank lines considered by the run
        ledger_entries: Ledger candidates considered by the run
        matches: Matches persisted by the run
        now: Reference instant for item ages (defaults to utcnow)
        high_priority_amount: Outstanding items above this are high priority
        stale_item_days: Unmatched items older than this raise an exception
        low_reconciliation_rate: Rate (percent) under which rule creation is recommended

    Returns:
        ReconciliationSummary
    """
    now = now or datetime.utcnow()
    threshold = Decimal(str(high_priority_amount))

    matched_bank_ids = {m.bank_transaction_id for m in matches}
    matched_ledger_ids = {m.ledger_transaction_id for m in matches}
    bank_by_id = {tx.id: tx for tx in bank_transactions}
    ledger_by_id = {entry.id: entry for entry in ledger_entries}

    total_bank_amount = sum((tx.amount for tx in bank_transactions), ZERO)
    total_ledger_amount = sum((abs(entry.total) for entry in ledger_entries), ZERO)
    matched_amount = sum(
        (bank_by_id[m.bank_transaction_id].amount for m in matches if m.bank_transaction_id in bank_by_id),
        ZERO,
    )

    unmatched_bank = [tx for tx in bank_transactions if tx.id not in matched_bank_ids]
    unmatched_ledger = [entry for entry in ledger_entries if entry.id not in matched_ledger_ids]

    if bank_transactions:
        rate = len(matches) / len(bank_transactions) * 100
        rate = min(max(rate, 0.0), 100.0)
    else:
        rate = 0.0

    manual = sum(1 for m in matches if m.match_type == ReconciliationMatchType.MANUAL)
    divisor = len(matches) or 1

    outstanding = _outstanding_items(unmatched_bank, unmatched_ledger, now, threshold)
    exceptions = _detect_exceptions(bank_transactions, matches, bank_by_id, ledger_by_id, outstanding, now, stale_item_days)
    recommendations = _recommend(rate, bool(bank_transactions), exceptions, outstanding, low_reconciliation_rate)

    return ReconciliationSummary(
        total_bank_transactions=len(bank_transactions),
        total_ledger_transactions=len(ledger_entries),
        matched_transactions=len(matches),
        unmatched_bank_transactions=len(unmatched_bank),
        unmatched_ledger_transactions=len(unmatched_ledger),
        total_bank_amount=total_bank_amount,
        total_ledger_amount=total_ledger_amount,
        matched_amount=matched_amount,
        unmatched_amount=total_bank_amount - matched_amount,
        variance_amount=abs(total_bank_amount - total_ledger_amount),
        reconciliation_rate=rate,
        auto_match_rate=(len(matches) - manual) / divisor * 100,
        manual_match_rate=manual / divisor * 100,
        outstanding_items=outstanding,
        exceptions=exceptions,
        recommendations=recommendations,
        generated_at=now,
    )


def _outstanding_items(
    unmatched_bank: Sequence[BankTransaction],
    unmatched_ledger: Sequence[LedgerEntry],
    now: datetime,
    threshold: Decimal,
) -> List[OutstandingItem]:
    items = [
        OutstandingItem(
            id=tx.id,
            type=OutstandingItemType.BANK_ONLY,
            transaction_id=tx.id,
            description=tx.description,
            amount=tx.amount,
            date=tx.date,
            age_days=_age_days(tx.date, now),
            category=tx.category,
            reason="No matching ledger transaction found",
            action_required="Review and create matching ledger entry",
            priority=_priority(tx.amount, threshold),
        )
        for tx in unmatched_bank
    ]
    items.extend(
        OutstandingItem(
            id=entry.id,
            type=OutstandingItemType.LEDGER_ONLY,
            transaction_id=entry.id,
            description=entry.description,
            amount=abs(entry.total),
            date=entry.entry_date,
            age_days=_age_days(entry.entry_date, now),
            category="ledger",
            reason="No matching bank transaction found",
            action_required="Review and verify bank statement",
            priority=_priority(entry.total, threshold),
        )
        for entry in unmatched_ledger
    )
    return items


def _detect_exceptions(
    bank_transactions: Sequence[BankTransaction],
    matches: Sequence[ReconciliationMatch],
    bank_by_id: Dict[str, BankTransaction],
    ledger_by_id: Dict[str, LedgerEntry],
    outstanding: Sequence[OutstandingItem],
    now: datetime,
    stale_item_days: int,
) -> List[ReconciliationException]:
    exceptions: List[ReconciliationException] = []

    # Same date, amount and description more than once on the statement
    groups: Dict[Tuple[date, Decimal, str], List[BankTransaction]] = defaultdict(list)
    for tx in bank_transactions:
        groups[(tx.date, tx.amount, tx.description.strip().lower())].append(tx)
    for txs in groups.values():
        if len(txs) > 1:
            exceptions.append(ReconciliationException(
                id=f"duplicate_transaction:{txs[0].id}",
                type=ReconciliationExceptionType.DUPLICATE_TRANSACTION,
                severity=Priority.MEDIUM,
                description=f"{len(txs)} identical bank lines: {txs[0].description}",
                affected_transactions=[tx.id for tx in txs],
                amount=sum((tx.amount for tx in txs), ZERO),
                detected_at=now,
            ))

    for match in matches:
        bank_tx = bank_by_id.get(match.bank_transaction_id)
        ledger_entry = ledger_by_id.get(match.ledger_transaction_id)
        if bank_tx is None or ledger_entry is None:
            continue
        affected = [bank_tx.id, ledger_entry.id]

        difference = abs(bank_tx.amount - abs(ledger_entry.total))
        if difference > 0:
            exceptions.append(ReconciliationException(
                id=f"amount_mismatch:{match.id}",
                type=ReconciliationExceptionType.AMOUNT_MISMATCH,
                severity=Priority.LOW,
                description=f"Matched amounts differ by {difference}",
                affected_transactions=affected,
                amount=difference,
                detected_at=now,
            ))

        days = abs((bank_tx.date - ledger_entry.entry_date).days)
        if days > 0:
            exceptions.append(ReconciliationException(
                id=f"date_mismatch:{match.id}",
                type=ReconciliationExceptionType.DATE_MISMATCH,
                severity=Priority.LOW,
                description=f"Matched dates are {days} day(s) apart",
                affected_transactions=affected,
                amount=ZERO,
                detected_at=now,
            ))

    stale = [item for item in outstanding if item.age_days > stale_item_days]
    if stale:
        exceptions.append(ReconciliationException(
            id=f"unmatched_transaction:{stale[0].transaction_id}",
            type=ReconciliationExceptionType.UNMATCHED_TRANSACTION,
            severity=Priority.HIGH if any(i.priority == Priority.HIGH for i in stale) else Priority.MEDIUM,
            description=f"{len(stale)} item(s) unmatched for more than {stale_item_days} days",
            affected_transactions=[item.transaction_id for item in stale],
            amount=sum((abs(item.amount) for item in stale), ZERO),
            detected_at=now,
        ))

    zero_amount = [tx for tx in bank_transactions if tx.amount == 0]
    if zero_amount:
        exceptions.append(ReconciliationException(
            id=f"data_quality:{zero_amount[0].id}",
            type=ReconciliationExceptionType.DATA_QUALITY,
            severity=Priority.LOW,
            description=f"{len(zero_amount)} bank line(s) with a zero amount",
            affected_transactions=[tx.id for tx in zero_amount],
            amount=ZERO,
            detected_at=now,
        ))

    return exceptions


def _recommend(
    rate: float,
    has_bank_rows: bool,
    exceptions: Sequence[ReconciliationException],
    outstanding: Sequence[OutstandingItem],
    low_reconciliation_rate: float,
) -> List[ReconciliationRecommendation]:
    recommendations: List[ReconciliationRecommendation] = []
    kinds = {e.type for e in exceptions}

    if has_bank_rows and rate < low_reconciliation_rate:
        unmatched_bank = [i for i in outstanding if i.type == OutstandingItemType.BANK_ONLY]
        recommendations.append(ReconciliationRecommendation(
            id="rule_creation",
            type=RecommendationType.RULE_CREATION,
            title="Add matching rules",
            description=(
                f"Only {rate:.1f}% of bank lines were matched; "
                f"{len(unmatched_bank)} remain outstanding."
            ),
            impact=Priority.HIGH,
            effort=Priority.MEDIUM,
            category="matching",
            suggested_actions=[
                "Review recurring unmatched descriptions",
                "Create rules with date and amount tolerances for them",
            ],
            confidence=0.8,
        ))

    if ReconciliationExceptionType.AMOUNT_MISMATCH in kinds:
        recommendations.append(ReconciliationRecommendation(
            id="rule_modification",
            type=RecommendationType.RULE_MODIFICATION,
            title="Review amount tolerances",
            description="Some matches were accepted with differing amounts.",
            impact=Priority.MEDIUM,
            effort=Priority.LOW,
            category="matching",
            suggested_actions=["Tighten amount tolerances on rules that auto-approve"],
            confidence=0.6,
        ))

    if ReconciliationExceptionType.DATA_QUALITY in kinds or ReconciliationExceptionType.DUPLICATE_TRANSACTION in kinds:
        recommendations.append(ReconciliationRecommendation(
            id="data_quality",
            type=RecommendationType.DATA_QUALITY,
            title="Improve statement data quality",
            description="The statement contains zero-amount or repeated lines.",
            impact=Priority.MEDIUM,
            effort=Priority.LOW,
            category="data_quality",
            suggested_actions=["Check the statement export settings with the bank"],
            confidence=0.7,
        ))

    if ReconciliationExceptionType.UNMATCHED_TRANSACTION in kinds:
        recommendations.append(ReconciliationRecommendation(
            id="process_improvement",
            type=RecommendationType.PROCESS_IMPROVEMENT,
            title="Clear stale outstanding items",
            description="Items have stayed unmatched past the review window.",
            impact=Priority.HIGH,
            effort=Priority.MEDIUM,
            category="process",
            suggested_actions=[
                "Reconcile more frequently",
                "Assign owners to outstanding items",
            ],
            confidence=0.7,
        ))

    return recommendations
