from __future__ import annotations

from dataclasses import dataclass
from datetime import date

from fintrack.months import YearMonth

MIN_DAY = 1
MAX_DAY = 31


@dataclass(frozen=True)
class BillingCycle:
    """Open invoice window of a credit card.

    The window is half-open: an expense dated exactly on ``next_closing``
    belongs to this invoice, one dated on ``last_closing`` does not.
    """

    last_closing: date
    next_closing: date

    def contains(self, value: date) -> bool:
        return self.last_closing < value <= self.next_closing


def current_cycle(closing_day: int, as_of: date) -> BillingCycle:
    _validate_day(closing_day, "Closing day")
    month = YearMonth.of(as_of)
    this_closing = month.clamp_day(closing_day)
    if as_of > this_closing:
        return BillingCycle(
            last_closing=this_closing,
            next_closing=month.shift(1).clamp_day(closing_day),
        )
    return BillingCycle(
        last_closing=month.shift(-1).clamp_day(closing_day),
        next_closing=this_closing,
    )


def cycle_for(closing_day: int, expense_date: date) -> BillingCycle:
    """Return the cycle whose invoice an expense dated ``expense_date`` joins."""
    return current_cycle(closing_day, expense_date)


def belongs_to_current_invoice(closing_day: int, expense_date: date, as_of: date) -> bool:
    return current_cycle(closing_day, as_of).contains(expense_date)


def invoice_due_date(cycle: BillingCycle, due_day: int) -> date:
    _validate_day(due_day, "Due day")
    month = YearMonth.of(cycle.next_closing)
    candidate = month.clamp_day(due_day)
    if candidate <= cycle.next_closing:
        candidate = month.shift(1).clamp_day(due_day)
    return candidate


def _validate_day(value: int, label: str) -> None:
    if not MIN_DAY <= value <= MAX_DAY:
        raise ValueError(f"{label} must be between {MIN_DAY} and {MAX_DAY}.")
