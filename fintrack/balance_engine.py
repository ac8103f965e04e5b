from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Dict, Iterable, Optional

from fintrack.billing_cycle import BillingCycle, current_cycle
from fintrack.models import (
    EXPENSE_KINDS,
    Account,
    CardExpense,
    Expense,
    Income,
    Occurrence,
    Transfer,
    looks_like_card_expense,
)
from fintrack.money import ZERO, divide, parse_decimal, quantize_money, to_money

logger = logging.getLogger(__name__)

AccountId = int | str


@dataclass
class AccountSummary:
    account_id: AccountId
    name: str
    balance: Decimal
    income: Decimal = ZERO
    expense: Decimal = ZERO
    invoice_current: Optional[Decimal] = None
    card_limit: Optional[Decimal] = None
    cycle: Optional[BillingCycle] = None

    @property
    def limit_used_ratio(self) -> Optional[Decimal]:
        """Share of the card limit taken by the open invoice, in percent."""
        if self.card_limit is None or self.invoice_current is None:
            return None
        limit = to_money(self.card_limit)
        if limit == ZERO:
            return None
        return divide(self.invoice_current * 100, limit, 0)


@dataclass(frozen=True)
class Totals:
    income: Decimal
    expense: Decimal

    @property
    def net(self) -> Decimal:
        return self.income - self.expense


@dataclass
class AggregateResult:
    per_account: Dict[AccountId, AccountSummary] = field(default_factory=dict)
    totals: Totals = field(default_factory=lambda: Totals(income=ZERO, expense=ZERO))

    @property
    def per_account_balance(self) -> Dict[AccountId, Decimal]:
        return {account_id: summary.balance for account_id, summary in self.per_account.items()}

    @property
    def per_account_invoice_total(self) -> Dict[AccountId, Optional[Decimal]]:
        return {
            account_id: summary.invoice_current
            for account_id, summary in self.per_account.items()
        }


def aggregate(
    accounts: Iterable[Account],
    occurrences: Iterable[Occurrence],
    as_of: date | None = None,
) -> AggregateResult:
    """Fold occurrences into per-account balances, open invoices and totals.

    Transfers move money between accounts and never count as income or
    expense. Occurrences booked on unknown accounts still reach the totals.
    """
    as_of = as_of or date.today()
    summaries: Dict[AccountId, AccountSummary] = {}
    for account in accounts:
        cycle = account_cycle(account, as_of)
        invoice = ZERO if cycle is not None else None
        summaries[account.id] = AccountSummary(
            account_id=account.id,
            name=account.name,
            balance=_signed(account.initial_balance),
            invoice_current=invoice,
            card_limit=account.card_limit if account.is_credit_card else None,
            cycle=cycle,
        )

    total_income = ZERO
    total_expense = ZERO
    for occurrence in occurrences:
        amount = to_money(occurrence.effective_amount)
        if occurrence.kind == Transfer.kind:
            _apply_transfer(summaries, occurrence, amount)
            continue
        summary = summaries.get(occurrence.account_id)
        if occurrence.kind == Income.kind:
            total_income += amount
            if summary is not None:
                summary.income += amount
                summary.balance += amount
        elif occurrence.kind in EXPENSE_KINDS:
            total_expense += amount
            if summary is not None:
                summary.expense += amount
                summary.balance -= amount
                if summary.cycle is not None and is_card_expense_like(occurrence):
                    if summary.cycle.contains(occurrence.effective_date):
                        summary.invoice_current += amount

    return AggregateResult(
        per_account=summaries,
        totals=Totals(income=total_income, expense=total_expense),
    )


def is_card_expense_like(occurrence: Occurrence) -> bool:
    if occurrence.kind == CardExpense.kind:
        return True
    if occurrence.kind != Expense.kind:
        return False
    # legacy rows without the explicit kind
    return occurrence.is_installment or looks_like_card_expense(occurrence.description)


def invoice_total(
    account: Account, occurrences: Iterable[Occurrence], as_of: date
) -> Optional[Decimal]:
    cycle = account_cycle(account, as_of)
    if cycle is None:
        return None
    total = ZERO
    for occurrence in occurrences:
        if occurrence.account_id != account.id or not is_card_expense_like(occurrence):
            continue
        if cycle.contains(occurrence.effective_date):
            total += to_money(occurrence.effective_amount)
    return quantize_money(total)


def account_cycle(account: Account, as_of: date) -> Optional[BillingCycle]:
    """Open billing cycle of a card account, or None when it has no usable one."""
    if not account.is_credit_card or not account.closing_day:
        return None
    try:
        return current_cycle(account.closing_day, as_of)
    except ValueError:
        logger.debug(
            "Skipping invoice of account %s: unusable closing day %r",
            account.id,
            account.closing_day,
        )
        return None


def _apply_transfer(
    summaries: Dict[AccountId, AccountSummary], occurrence: Occurrence, amount: Decimal
) -> None:
    source = summaries.get(occurrence.account_id)
    destination = summaries.get(occurrence.to_account_id)
    if source is not None:
        source.balance -= amount
    if destination is not None:
        destination.balance += amount


def _signed(value: Decimal | None) -> Decimal:
    # initial balances may legitimately be negative (overdrawn accounts)
    parsed = parse_decimal(value)
    return ZERO if parsed is None else parsed
