from __future__ import annotations

from calendar import monthrange
from dataclasses import dataclass
from datetime import date, datetime


@dataclass(frozen=True, order=True)
class YearMonth:
    year: int
    month: int

    def __post_init__(self) -> None:
        if not 1 <= self.month <= 12:
            raise ValueError("Month must be between 1 and 12.")

    @classmethod
    def of(cls, value: date) -> "YearMonth":
        return cls(value.year, value.month)

    @classmethod
    def parse(cls, value: str) -> "YearMonth":
        try:
            parsed = datetime.strptime(value.strip(), "%Y-%m").date()
        except ValueError:
            try:
                parsed = datetime.strptime(value.strip(), "%Y-%m-%d").date()
            except ValueError as exc:
                raise ValueError("Invalid month format. Use YYYY-MM.") from exc
        return cls.of(parsed)

    @property
    def key(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"

    @property
    def label_short(self) -> str:
        return f"{self.month:02d}/{self.year % 100:02d}"

    @property
    def days(self) -> int:
        return monthrange(self.year, self.month)[1]

    def first_day(self) -> date:
        return date(self.year, self.month, 1)

    def last_day(self) -> date:
        return date(self.year, self.month, self.days)

    def shift(self, months: int) -> "YearMonth":
        month_index = self.year * 12 + self.month - 1 + months
        return YearMonth(month_index // 12, month_index % 12 + 1)

    def clamp_day(self, day: int) -> date:
        return date(self.year, self.month, min(day, self.days))

    def contains(self, value: date) -> bool:
        return value.year == self.year and value.month == self.month


def month_key(value: date) -> str:
    return YearMonth.of(value).key


def add_months(start_date: date, months: int, anchor_day: int | None = None) -> date:
    """Advance ``start_date`` by whole calendar months.

    The day of month is clamped to the target month's length, so Jan 31 + 1
    month lands on Feb 28/29.
    """
    day = start_date.day if anchor_day is None else anchor_day
    return YearMonth.of(start_date).shift(months).clamp_day(day)


def iter_months(start: YearMonth, end: YearMonth) -> list[YearMonth]:
    months: list[YearMonth] = []
    cursor = start
    while cursor <= end:
        months.append(cursor)
        cursor = cursor.shift(1)
    return months


def parse_date(value: date | datetime | str | None) -> date | None:
    """Parse a stored date value, returning None when it cannot be read."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        return None
    text = value.strip()
    if not text:
        return None
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        return None
