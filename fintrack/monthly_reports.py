from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date
from decimal import Decimal
from typing import Dict, Iterable, List, Sequence

from fintrack.installment_projection import expand, expand_all, open_amount, project
from fintrack.models import EXPENSE_KINDS, Income, Occurrence, Transaction
from fintrack.money import ZERO, divide, to_money
from fintrack.months import YearMonth, iter_months

UNCATEGORIZED = "Uncategorized"
CATEGORY_MODES = {"expense", "income", "mixed"}


@dataclass(frozen=True)
class CategoryTotal:
    category: str
    total: Decimal
    percentage: Decimal = ZERO


@dataclass(frozen=True)
class MonthSummary:
    key: str
    label_short: str
    income: Decimal
    expense: Decimal
    categories: List[CategoryTotal] = field(default_factory=list)
    occurrences: List[Occurrence] = field(default_factory=list)
    open_expense: Decimal = ZERO

    @property
    def net(self) -> Decimal:
        return self.income - self.expense


@dataclass(frozen=True)
class DailyFlow:
    day: int
    income: Decimal
    expense: Decimal
    net: Decimal


@dataclass(frozen=True)
class UpcomingMonth:
    key: str
    label_short: str
    total: Decimal


def category_key(value: str | None) -> str:
    if value is None:
        return UNCATEGORIZED
    stripped = value.strip()
    return stripped or UNCATEGORIZED


def by_category(occurrences: Iterable[Occurrence], mode: str = "expense") -> List[CategoryTotal]:
    """Group occurrences by category, largest total first.

    ``mode`` selects expense occurrences, income occurrences, or both
    ("mixed"). Transfers never contribute. Ties keep first-seen order.
    """
    normalized_mode = _validate_mode(mode)
    totals: Dict[str, Decimal] = {}
    for occurrence in occurrences:
        if not _matches_mode(occurrence, normalized_mode):
            continue
        key = category_key(occurrence.category)
        totals[key] = totals.get(key, ZERO) + to_money(occurrence.effective_amount)

    grand_total = sum(totals.values(), ZERO)
    ranked = sorted(totals.items(), key=lambda item: item[1], reverse=True)
    return [
        CategoryTotal(
            category=category,
            total=total,
            percentage=divide(total * 100, grand_total, 2),
        )
        for category, total in ranked
    ]


def by_month(
    transactions: Sequence[Transaction],
    months_back: int,
    today: date | None = None,
) -> List[MonthSummary]:
    """Summaries for the ``months_back`` months ending at ``today``, newest first.

    Each stored transaction is expanded once; installment occurrences land in
    the bucket of their effective date.
    """
    if months_back <= 0:
        return []
    today = today or date.today()
    current = YearMonth.of(today)
    buckets: Dict[str, List[Occurrence]] = {}
    for occurrence in expand_all(transactions):
        buckets.setdefault(YearMonth.of(occurrence.effective_date).key, []).append(occurrence)

    summaries: List[MonthSummary] = []
    for offset in range(months_back):
        month = current.shift(-offset)
        summaries.append(_summarize(month, buckets.get(month.key, [])))
    return summaries


def month_summary(transactions: Sequence[Transaction], target_month: YearMonth) -> MonthSummary:
    """One-month view, including what is still owed on this month's expenses."""
    open_total = ZERO
    for transaction in transactions:
        if project([transaction], target_month):
            open_total += open_amount(transaction)
    summary = _summarize(target_month, project(transactions, target_month))
    return replace(summary, open_expense=open_total)


def daily_flow(occurrences: Iterable[Occurrence], target_month: YearMonth) -> List[DailyFlow]:
    income_by_day = [ZERO] * target_month.days
    expense_by_day = [ZERO] * target_month.days
    for occurrence in occurrences:
        if not target_month.contains(occurrence.effective_date):
            continue
        index = occurrence.effective_date.day - 1
        amount = to_money(occurrence.effective_amount)
        if occurrence.kind == Income.kind:
            income_by_day[index] += amount
        elif occurrence.kind in EXPENSE_KINDS:
            expense_by_day[index] += amount

    rows: List[DailyFlow] = []
    running = ZERO
    for index in range(target_month.days):
        running += income_by_day[index] - expense_by_day[index]
        rows.append(
            DailyFlow(
                day=index + 1,
                income=income_by_day[index],
                expense=expense_by_day[index],
                net=running,
            )
        )
    return rows


def month_options(transactions: Iterable[Transaction], today: date | None = None) -> List[str]:
    today = today or date.today()
    keys = {YearMonth.of(today).key}
    for occurrence in expand_all(transactions):
        keys.add(YearMonth.of(occurrence.effective_date).key)
    return sorted(keys, reverse=True)


def upcoming_installments(
    transactions: Iterable[Transaction],
    today: date | None = None,
    months_ahead: int = 12,
) -> List[UpcomingMonth]:
    """Unpaid installment amounts due in each month after ``today``'s month."""
    if months_ahead <= 0:
        return []
    today = today or date.today()
    first = YearMonth.of(today).shift(1)
    last = first.shift(months_ahead - 1)
    totals: Dict[str, Decimal] = {}
    for transaction in transactions:
        if transaction.kind not in EXPENSE_KINDS or not transaction.has_installments:
            continue
        for occurrence in expand(transaction):
            month = YearMonth.of(occurrence.effective_date)
            if occurrence.is_paid_at_this_index or not first <= month <= last:
                continue
            totals[month.key] = totals.get(month.key, ZERO) + occurrence.effective_amount

    upcoming: List[UpcomingMonth] = []
    for month in iter_months(first, last):
        if month.key in totals:
            upcoming.append(
                UpcomingMonth(key=month.key, label_short=month.label_short, total=totals[month.key])
            )
    return upcoming


def _summarize(month: YearMonth, occurrences: List[Occurrence]) -> MonthSummary:
    income = ZERO
    expense = ZERO
    for occurrence in occurrences:
        amount = to_money(occurrence.effective_amount)
        if occurrence.kind == Income.kind:
            income += amount
        elif occurrence.kind in EXPENSE_KINDS:
            expense += amount
    return MonthSummary(
        key=month.key,
        label_short=month.label_short,
        income=income,
        expense=expense,
        categories=by_category(occurrences, "expense"),
        occurrences=list(occurrences),
    )


def _validate_mode(mode: str) -> str:
    normalized = mode.strip().lower()
    if normalized not in CATEGORY_MODES:
        raise ValueError("Category mode must be expense, income, or mixed.")
    return normalized


def _matches_mode(occurrence: Occurrence, mode: str) -> bool:
    if occurrence.kind == Income.kind:
        return mode in {"income", "mixed"}
    if occurrence.kind in EXPENSE_KINDS:
        return mode in {"expense", "mixed"}
    return False
