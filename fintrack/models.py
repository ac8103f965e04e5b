from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import ClassVar, Iterable, Mapping, Optional

from fintrack.money import ZERO, parse_decimal, to_money
from fintrack.months import parse_date

logger = logging.getLogger(__name__)

CARD_EXPENSE_KEYWORDS = (
    "parcela",
    "parcelado",
    "cartão",
    "cartao",
    "credito",
    "crédito",
    "fatura",
)

LISTED_EQUITY = "listed_equity"
CRYPTO = "crypto"
ASSET_TYPE_ALIASES = {
    "listed_equity": LISTED_EQUITY,
    "listedequity": LISTED_EQUITY,
    "b3": LISTED_EQUITY,
    "stock": LISTED_EQUITY,
    "equity": LISTED_EQUITY,
    "crypto": CRYPTO,
}


@dataclass(frozen=True)
class Transaction:
    """A stored financial record.

    ``amount`` is always the total: for installment purchases it is the sum of
    every installment, never the per-installment value.
    """

    kind: ClassVar[str] = ""

    id: Optional[int | str]
    amount: Decimal
    date: Optional[date]
    account_id: Optional[int | str] = None
    category: Optional[str] = None
    description: Optional[str] = None
    is_installment: bool = False
    installment_total: Optional[int] = None
    installments_paid: int = 0
    is_paid: bool = False

    @property
    def has_installments(self) -> bool:
        return bool(self.is_installment and self.installment_total and self.installment_total > 0)


@dataclass(frozen=True)
class Income(Transaction):
    kind: ClassVar[str] = "income"


@dataclass(frozen=True)
class Expense(Transaction):
    kind: ClassVar[str] = "expense"


@dataclass(frozen=True)
class CardExpense(Transaction):
    kind: ClassVar[str] = "card_expense"


@dataclass(frozen=True)
class Transfer(Transaction):
    kind: ClassVar[str] = "transfer"

    to_account_id: Optional[int | str] = None


TRANSACTION_TYPES: dict[str, type[Transaction]] = {
    cls.kind: cls for cls in (Income, Expense, CardExpense, Transfer)
}
EXPENSE_KINDS = {Expense.kind, CardExpense.kind}


@dataclass(frozen=True)
class Occurrence:
    source_transaction_id: Optional[int | str]
    occurrence_index: Optional[int]
    effective_date: date
    effective_amount: Decimal
    is_paid_at_this_index: bool
    kind: str
    account_id: Optional[int | str] = None
    to_account_id: Optional[int | str] = None
    category: Optional[str] = None
    description: Optional[str] = None
    installment_total: Optional[int] = None

    @property
    def is_installment(self) -> bool:
        return self.occurrence_index is not None


@dataclass(frozen=True)
class Account:
    id: int | str
    name: str
    initial_balance: Decimal = ZERO
    card_limit: Optional[Decimal] = None
    closing_day: Optional[int] = None
    due_day: Optional[int] = None

    @property
    def is_credit_card(self) -> bool:
        return self.card_limit is not None and to_money(self.card_limit) > ZERO


@dataclass(frozen=True)
class InvestmentAsset:
    id: Optional[int | str]
    asset_type: str
    symbol: str
    quantity: Decimal = ZERO
    average_price: Decimal = ZERO


@dataclass(frozen=True)
class Purchase:
    asset_id: Optional[int | str]
    date: date
    price_per_unit: Decimal
    quantity: Decimal
    total_invested: Decimal


def normalize_kind(value: str) -> str:
    normalized = value.strip().lower().replace("-", "_").replace(" ", "_")
    if normalized not in TRANSACTION_TYPES:
        raise ValueError(f"Unsupported transaction kind: {value}")
    return normalized


def normalize_asset_type(value: str) -> str:
    normalized = "".join(ch for ch in value.strip().lower() if ch.isalnum() or ch == "_")
    try:
        return ASSET_TYPE_ALIASES[normalized]
    except KeyError as exc:
        raise ValueError(f"Unsupported asset type: {value}") from exc


def build_transaction(kind: str, **fields) -> Transaction:
    transaction_type = TRANSACTION_TYPES[normalize_kind(kind)]
    if transaction_type is not Transfer:
        fields.pop("to_account_id", None)
    return transaction_type(**fields)


def transaction_from_record(record: Mapping[str, object]) -> Transaction:
    """Build the matching transaction variant from a plain store row.

    Accepts snake_case or camelCase keys and the ``value`` alias for
    ``amount``. A date that cannot be parsed is kept as ``None`` so the row
    is skipped by the projector instead of aborting it.
    """
    raw_kind = _pick(record, "kind", "type")
    if not isinstance(raw_kind, str):
        raise ValueError("Transaction kind required.")
    raw_date = _pick(record, "date")
    parsed_date = parse_date(raw_date)
    if parsed_date is None:
        logger.debug("Unreadable date on transaction %s: %r", _pick(record, "id"), raw_date)

    installment_total = _coerce_int(_pick(record, "installment_total", "installmentTotal"))
    is_installment = bool(_pick(record, "is_installment", "isInstallment"))
    return build_transaction(
        raw_kind,
        id=_pick(record, "id"),
        amount=to_money(_pick(record, "amount", "value")),
        date=parsed_date,
        account_id=_pick(record, "account_id", "accountId", "from_account_id", "fromAccountId"),
        to_account_id=_pick(record, "to_account_id", "toAccountId"),
        category=_pick(record, "category"),
        description=_pick(record, "description", "notes"),
        is_installment=is_installment,
        installment_total=installment_total if is_installment else None,
        installments_paid=_coerce_int(_pick(record, "installments_paid", "installmentsPaid")) or 0,
        is_paid=bool(_pick(record, "is_paid", "isPaid")),
    )


def looks_like_card_expense(description: str | None) -> bool:
    if not description:
        return False
    lowered = description.lower()
    return any(keyword in lowered for keyword in CARD_EXPENSE_KEYWORDS)


def migrate_legacy_record(
    record: Mapping[str, object], card_account_ids: Iterable[int | str]
) -> Transaction:
    """Classify a legacy row that predates the explicit card_expense kind.

    Plain expenses booked on a card account become ``CardExpense`` when they
    are installments or their description mentions the card.
    """
    transaction = transaction_from_record(record)
    if transaction.kind != Expense.kind:
        return transaction
    if transaction.account_id not in set(card_account_ids):
        return transaction
    if transaction.is_installment or looks_like_card_expense(transaction.description):
        return CardExpense(**_fields(transaction))
    return transaction


def _fields(transaction: Transaction) -> dict[str, object]:
    return {
        "id": transaction.id,
        "amount": transaction.amount,
        "date": transaction.date,
        "account_id": transaction.account_id,
        "category": transaction.category,
        "description": transaction.description,
        "is_installment": transaction.is_installment,
        "installment_total": transaction.installment_total,
        "installments_paid": transaction.installments_paid,
        "is_paid": transaction.is_paid,
    }


def _pick(record: Mapping[str, object], *keys: str) -> object:
    for key in keys:
        value = record.get(key)
        if value is not None:
            return value
    return None


def _coerce_int(value: object) -> Optional[int]:
    parsed = parse_decimal(value)  # type: ignore[arg-type]
    if parsed is None:
        return None
    return int(parsed)
