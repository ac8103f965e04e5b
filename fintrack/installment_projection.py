from __future__ import annotations

import logging
from dataclasses import replace
from decimal import Decimal
from typing import Iterable, List

from fintrack.models import EXPENSE_KINDS, Occurrence, Transaction, Transfer
from fintrack.money import ZERO, split_evenly, to_money
from fintrack.months import YearMonth, add_months

logger = logging.getLogger(__name__)

MAX_INSTALLMENTS = 360


def project(transactions: Iterable[Transaction], target_month: YearMonth) -> List[Occurrence]:
    """Expand stored transactions into the occurrences that fall in ``target_month``.

    Installment purchases yield one occurrence per installment whose date
    lands in the month; every other record yields at most one occurrence.
    Paid state is carried on the occurrence, it never filters it out.
    """
    occurrences: List[Occurrence] = []
    for transaction in transactions:
        occurrences.extend(
            occurrence
            for occurrence in expand(transaction)
            if target_month.contains(occurrence.effective_date)
        )
    return occurrences


def expand(transaction: Transaction) -> List[Occurrence]:
    """Return every occurrence of ``transaction`` across all months."""
    if transaction.date is None:
        logger.debug("Skipping transaction %s without a valid date", transaction.id)
        return []
    if not transaction.has_installments:
        return [_single_occurrence(transaction)]

    total = transaction.installment_total or 0
    amounts = split_evenly(to_money(transaction.amount), total)
    paid = clamp_installments_paid(transaction)
    occurrences: List[Occurrence] = []
    for index, amount in enumerate(amounts):
        try:
            effective_date = add_months(transaction.date, index)
        except (ValueError, OverflowError):
            logger.debug(
                "Stopping schedule of transaction %s at installment %s: date out of range",
                transaction.id,
                index,
            )
            break
        occurrences.append(
            _occurrence(
                transaction,
                index=index,
                effective_date=effective_date,
                amount=amount,
                is_paid=index < paid,
            )
        )
    return occurrences


def expand_all(transactions: Iterable[Transaction]) -> List[Occurrence]:
    occurrences: List[Occurrence] = []
    for transaction in transactions:
        occurrences.extend(expand(transaction))
    return occurrences


def clamp_installments_paid(transaction: Transaction) -> int:
    total = transaction.installment_total or 0
    paid = max(transaction.installments_paid or 0, 0)
    if paid > total:
        logger.debug(
            "Transaction %s reports %s of %s installments paid; clamping",
            transaction.id,
            paid,
            total,
        )
        return total
    return paid


def remaining_installments(transaction: Transaction) -> int:
    if not transaction.has_installments:
        return 0
    return (transaction.installment_total or 0) - clamp_installments_paid(transaction)


def open_amount(transaction: Transaction) -> Decimal:
    """Amount of an expense still owed: unpaid installments or an unpaid bill."""
    if transaction.kind not in EXPENSE_KINDS:
        return ZERO
    if transaction.has_installments:
        paid = clamp_installments_paid(transaction)
        amounts = split_evenly(to_money(transaction.amount), transaction.installment_total or 0)
        return sum(amounts[paid:], ZERO)
    if transaction.is_paid:
        return ZERO
    return to_money(transaction.amount)


def pay_next_installment(transaction: Transaction) -> Transaction:
    if not transaction.has_installments:
        return replace(transaction, is_paid=True)
    total = transaction.installment_total or 0
    paid = min(clamp_installments_paid(transaction) + 1, total)
    return replace(transaction, installments_paid=paid, is_paid=paid >= total)


def _single_occurrence(transaction: Transaction) -> Occurrence:
    return _occurrence(
        transaction,
        index=None,
        effective_date=transaction.date,
        amount=to_money(transaction.amount),
        is_paid=bool(transaction.is_paid),
    )


def _occurrence(
    transaction: Transaction,
    *,
    index: int | None,
    effective_date,
    amount: Decimal,
    is_paid: bool,
) -> Occurrence:
    return Occurrence(
        source_transaction_id=transaction.id,
        occurrence_index=index,
        effective_date=effective_date,
        effective_amount=amount,
        is_paid_at_this_index=is_paid,
        kind=transaction.kind,
        account_id=transaction.account_id,
        to_account_id=transaction.to_account_id if isinstance(transaction, Transfer) else None,
        category=transaction.category,
        description=transaction.description,
        installment_total=transaction.installment_total if index is not None else None,
    )
