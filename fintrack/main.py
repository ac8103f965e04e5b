import logging
import os
from datetime import date, datetime
from decimal import Decimal

from fastapi import FastAPI, HTTPException, Header, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    UniqueConstraint,
    case,
    create_engine,
    delete,
    func,
    insert,
    not_,
    or_,
    select,
    update,
)
from sqlalchemy.exc import IntegrityError

from fintrack.balance_engine import account_cycle, aggregate, invoice_total
from fintrack.billing_cycle import invoice_due_date
from fintrack.cost_basis import build_purchase, quantity_from_cash, replay_purchases
from fintrack.installment_projection import MAX_INSTALLMENTS, expand_all, project
from fintrack.logging_config import setup_logging
from fintrack.models import (
    CardExpense,
    Expense,
    InvestmentAsset,
    Purchase,
    Transaction,
    Transfer,
    Account,
    migrate_legacy_record,
    normalize_asset_type,
    normalize_kind,
    transaction_from_record,
)
from fintrack.monthly_reports import (
    by_category,
    by_month,
    daily_flow,
    month_options,
    month_summary,
    upcoming_installments,
)
from fintrack.months import YearMonth
from fintrack.summary_cache import SummaryCache

logger = logging.getLogger(__name__)

app = FastAPI()

frontend_origin = os.getenv("FRONTEND_ORIGIN", "http://localhost:3000")
app.add_middleware(
    CORSMiddleware,
    allow_origins=[frontend_origin],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

database_url = os.getenv("DATABASE_URL", "sqlite:///./fintrack.db")
connect_args = {}
if database_url.startswith("sqlite"):
    connect_args = {"check_same_thread": False}

engine = create_engine(database_url, connect_args=connect_args)
metadata = MetaData()

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
REPORT_MONTHS_BACK = int(os.getenv("REPORT_MONTHS_BACK", "6"))
SUMMARY_CACHE = SummaryCache(ttl_seconds=int(os.getenv("SUMMARY_CACHE_TTL_SECONDS", "300")))

users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("display_name", String(255), nullable=False),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)

accounts = Table(
    "accounts",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False),
    Column("name", String(255), nullable=False),
    Column("initial_balance", Numeric(12, 2), nullable=False, server_default="0"),
    Column("card_limit", Numeric(12, 2)),
    Column("closing_day", Integer),
    Column("due_day", Integer),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)

transactions = Table(
    "transactions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False),
    Column("kind", String(20), nullable=False),
    Column("account_id", Integer, ForeignKey("accounts.id")),
    Column("to_account_id", Integer, ForeignKey("accounts.id")),
    Column("amount", Numeric(12, 2), nullable=False),
    Column("category", String(255)),
    Column("description", String(500)),
    Column("date", Date, nullable=False),
    Column("is_installment", Boolean, nullable=False, server_default="0"),
    Column("installment_total", Integer),
    Column("installments_paid", Integer, nullable=False, server_default="0"),
    Column("is_paid", Boolean, nullable=False, server_default="0"),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)

investments = Table(
    "investments",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False),
    Column("asset_type", String(20), nullable=False),
    Column("symbol", String(50), nullable=False),
    Column("name", String(255)),
    Column("quantity", Numeric(24, 8), nullable=False, server_default="0"),
    Column("average_price", Numeric(18, 8), nullable=False, server_default="0"),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
    UniqueConstraint("user_id", "symbol", name="uq_investments_user_symbol"),
)

investment_purchases = Table(
    "investment_purchases",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False),
    Column("asset_id", Integer, ForeignKey("investments.id"), nullable=False),
    Column("date", Date, nullable=False),
    Column("price_per_unit", Numeric(18, 8), nullable=False),
    Column("quantity", Numeric(24, 8), nullable=False),
    Column("total_invested", Numeric(18, 8), nullable=False),
    Column("mode_used", String(10), nullable=False),
    Column("input_value", Numeric(18, 8)),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)


@app.on_event("startup")
def init_db() -> None:
    setup_logging(LOG_LEVEL)
    metadata.create_all(engine)


class UserPayload(BaseModel):
    display_name: str


class UserResponse(BaseModel):
    id: int
    display_name: str
    created_at: datetime | None = None


class AccountPayload(BaseModel):
    name: str
    initial_balance: Decimal = Decimal("0")
    card_limit: Decimal | None = None
    closing_day: int | None = None
    due_day: int | None = None

    @classmethod
    def validate_payload(cls, payload: "AccountPayload") -> "AccountPayload":
        payload.name = payload.name.strip()
        if not payload.name:
            raise ValueError("Account name required.")
        if payload.card_limit is not None and payload.card_limit < 0:
            raise ValueError("Card limit cannot be negative.")
        for label, value in (("Closing day", payload.closing_day), ("Due day", payload.due_day)):
            if value is not None and not 1 <= value <= 31:
                raise ValueError(f"{label} must be between 1 and 31.")
        return payload


class AccountResponse(AccountPayload):
    id: int
    user_id: int
    account_type: str
    created_at: datetime | None = None


class TransactionPayload(BaseModel):
    kind: str
    amount: Decimal
    date: date
    account_id: int | None = None
    category: str | None = None
    description: str | None = None
    is_installment: bool = False
    installment_total: int | None = None
    installments_paid: int = 0
    is_paid: bool = False

    @classmethod
    def validate_payload(cls, payload: "TransactionPayload") -> "TransactionPayload":
        payload.kind = normalize_kind(payload.kind)
        if payload.kind == Transfer.kind:
            raise ValueError("Use /transfers to record transfers.")
        if payload.amount <= 0:
            raise ValueError("Amount must be greater than zero.")
        payload.category = payload.category.strip() or None if payload.category else None
        payload.description = payload.description.strip() or None if payload.description else None
        if payload.is_installment:
            if payload.installment_total is None or payload.installment_total < 1:
                raise ValueError("Installment total must be at least 1.")
            if payload.installment_total > MAX_INSTALLMENTS:
                raise ValueError(f"Installment total cannot exceed {MAX_INSTALLMENTS}.")
            if not 0 <= payload.installments_paid <= payload.installment_total:
                raise ValueError("Installments paid must be between 0 and the installment total.")
        else:
            payload.installment_total = None
            payload.installments_paid = 0
        return payload


class TransactionResponse(TransactionPayload):
    id: int
    user_id: int
    to_account_id: int | None = None


class TransferPayload(BaseModel):
    from_account_id: int
    to_account_id: int
    amount: Decimal
    date: date
    description: str | None = None

    @classmethod
    def validate_payload(cls, payload: "TransferPayload") -> "TransferPayload":
        if payload.amount <= 0:
            raise ValueError("Amount must be greater than zero.")
        if payload.from_account_id == payload.to_account_id:
            raise ValueError("Source and destination accounts must differ.")
        payload.description = payload.description.strip() or None if payload.description else None
        return payload


class OccurrenceResponse(BaseModel):
    source_transaction_id: int | None = None
    occurrence_index: int | None = None
    effective_date: date
    effective_amount: Decimal
    is_paid_at_this_index: bool
    kind: str
    account_id: int | None = None
    to_account_id: int | None = None
    category: str | None = None
    description: str | None = None
    installment_total: int | None = None


class AccountSummaryResponse(BaseModel):
    account_id: int
    name: str
    balance: Decimal
    income: Decimal
    expense: Decimal
    invoice_current: Decimal | None = None
    card_limit: Decimal | None = None
    limit_used_ratio: Decimal | None = None
    last_closing: date | None = None
    next_closing: date | None = None


class TotalsResponse(BaseModel):
    income: Decimal
    expense: Decimal
    net: Decimal


class AccountsOverviewResponse(BaseModel):
    accounts: list[AccountSummaryResponse]
    totals: TotalsResponse


class BillingCycleResponse(BaseModel):
    account_id: int
    last_closing: date
    next_closing: date
    due_date: date | None = None
    invoice_total: Decimal


class CategoryTotalResponse(BaseModel):
    category: str
    total: Decimal
    percentage: Decimal


class MonthSummaryResponse(BaseModel):
    key: str
    label_short: str
    income: Decimal
    expense: Decimal
    net: Decimal
    open_expense: Decimal
    categories: list[CategoryTotalResponse]


class DailyFlowResponse(BaseModel):
    day: int
    income: Decimal
    expense: Decimal
    net: Decimal


class UpcomingMonthResponse(BaseModel):
    key: str
    label_short: str
    total: Decimal


class LegacyMigrationResponse(BaseModel):
    reclassified: int


class InvestmentPayload(BaseModel):
    asset_type: str
    symbol: str
    name: str | None = None

    @classmethod
    def validate_payload(cls, payload: "InvestmentPayload") -> "InvestmentPayload":
        payload.asset_type = normalize_asset_type(payload.asset_type)
        payload.symbol = payload.symbol.strip().upper()
        if not payload.symbol:
            raise ValueError("Symbol required.")
        payload.name = payload.name.strip() or None if payload.name else None
        return payload


class InvestmentResponse(BaseModel):
    id: int
    user_id: int
    asset_type: str
    symbol: str
    name: str | None = None
    quantity: Decimal
    average_price: Decimal


class PurchasePayload(BaseModel):
    date: date
    price_per_unit: Decimal
    quantity: Decimal | None = None
    cash: Decimal | None = None

    @classmethod
    def validate_payload(cls, payload: "PurchasePayload") -> "PurchasePayload":
        if (payload.quantity is None) == (payload.cash is None):
            raise ValueError("Provide either quantity or cash.")
        return payload


class PurchaseResponse(BaseModel):
    id: int
    asset_id: int
    date: date
    price_per_unit: Decimal
    quantity: Decimal
    total_invested: Decimal
    mode_used: str


class QuoteQuantityPayload(BaseModel):
    asset_type: str
    cash: Decimal
    price_per_unit: Decimal


class QuoteQuantityResponse(BaseModel):
    quantity: Decimal
    total: Decimal


def get_user_id(x_user_id: str | None = Header(None)) -> int:
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing user identity.")
    try:
        user_id = int(x_user_id)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid user identity.") from exc
    with engine.begin() as conn:
        result = conn.execute(select(users.c.id).where(users.c.id == user_id))
        if not result.first():
            raise HTTPException(status_code=404, detail="User not found.")
    return user_id


def parse_month_param(value: str | None) -> YearMonth:
    if not value:
        return YearMonth.of(date.today())
    try:
        return YearMonth.parse(value)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def account_from_row(row) -> Account:
    return Account(
        id=row["id"],
        name=row["name"],
        initial_balance=row["initial_balance"],
        card_limit=row["card_limit"],
        closing_day=row["closing_day"],
        due_day=row["due_day"],
    )


def account_response(row) -> AccountResponse:
    account = account_from_row(row)
    return AccountResponse(
        id=row["id"],
        user_id=row["user_id"],
        name=row["name"],
        initial_balance=row["initial_balance"],
        card_limit=row["card_limit"],
        closing_day=row["closing_day"],
        due_day=row["due_day"],
        account_type="card" if account.is_credit_card else "bank",
        created_at=row["created_at"],
    )


def transaction_response(row) -> TransactionResponse:
    return TransactionResponse(
        id=row["id"],
        user_id=row["user_id"],
        kind=row["kind"],
        amount=row["amount"],
        date=row["date"],
        account_id=row["account_id"],
        to_account_id=row["to_account_id"],
        category=row["category"],
        description=row["description"],
        is_installment=bool(row["is_installment"]),
        installment_total=row["installment_total"],
        installments_paid=row["installments_paid"] or 0,
        is_paid=bool(row["is_paid"]),
    )


def investment_response(row) -> InvestmentResponse:
    return InvestmentResponse(
        id=row["id"],
        user_id=row["user_id"],
        asset_type=row["asset_type"],
        symbol=row["symbol"],
        name=row["name"],
        quantity=row["quantity"],
        average_price=row["average_price"],
    )


def fetch_user_accounts(conn, user_id: int) -> list[Account]:
    rows = conn.execute(
        select(accounts).where(accounts.c.user_id == user_id).order_by(accounts.c.id.asc())
    ).mappings().all()
    return [account_from_row(row) for row in rows]


def fetch_user_transactions(conn, user_id: int) -> list[Transaction]:
    rows = conn.execute(
        select(transactions)
        .where(transactions.c.user_id == user_id)
        .order_by(transactions.c.date.asc(), transactions.c.id.asc())
    ).mappings().all()
    return [transaction_from_record(row) for row in rows]


def load_transactions(user_id: int) -> list[Transaction]:
    with engine.begin() as conn:
        return fetch_user_transactions(conn, user_id)


def ensure_account_owned(conn, user_id: int, account_id: int | None) -> None:
    if account_id is None:
        return
    exists = conn.execute(
        select(accounts.c.id).where(accounts.c.id == account_id, accounts.c.user_id == user_id)
    ).first()
    if not exists:
        raise HTTPException(status_code=404, detail="Account not found.")


def month_summary_response(summary) -> MonthSummaryResponse:
    return MonthSummaryResponse(
        key=summary.key,
        label_short=summary.label_short,
        income=summary.income,
        expense=summary.expense,
        net=summary.net,
        open_expense=summary.open_expense,
        categories=[
            CategoryTotalResponse(
                category=item.category,
                total=item.total,
                percentage=item.percentage,
            )
            for item in summary.categories
        ],
    )


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}


@app.post("/users", response_model=UserResponse)
def create_user(payload: UserPayload) -> UserResponse:
    display_name = payload.display_name.strip()
    if not display_name:
        raise HTTPException(status_code=400, detail="Display name required.")
    stmt = (
        insert(users)
        .values(display_name=display_name)
        .returning(users.c.id, users.c.display_name, users.c.created_at)
    )
    with engine.begin() as conn:
        row = conn.execute(stmt).mappings().first()
    if not row:
        raise HTTPException(status_code=500, detail="Failed to create user.")
    logger.info("User created", extra={"user_id": row["id"]})
    return UserResponse(id=row["id"], display_name=row["display_name"], created_at=row["created_at"])


@app.get("/accounts", response_model=list[AccountResponse])
def list_accounts(x_user_id: str | None = Header(None, alias="x-user-id")) -> list[AccountResponse]:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        rows = conn.execute(
            select(accounts).where(accounts.c.user_id == user_id).order_by(accounts.c.id.asc())
        ).mappings().all()
    return [account_response(row) for row in rows]


@app.post("/accounts", response_model=AccountResponse)
def create_account(
    payload: AccountPayload, x_user_id: str | None = Header(None, alias="x-user-id")
) -> AccountResponse:
    user_id = get_user_id(x_user_id)
    try:
        payload = AccountPayload.validate_payload(payload)
    except ValueError as exc:
        logger.warning("Rejected account payload: %s", exc)
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    stmt = (
        insert(accounts)
        .values(
            user_id=user_id,
            name=payload.name,
            initial_balance=payload.initial_balance,
            card_limit=payload.card_limit,
            closing_day=payload.closing_day,
            due_day=payload.due_day,
        )
        .returning(*accounts.c)
    )
    with engine.begin() as conn:
        row = conn.execute(stmt).mappings().first()

    if not row:
        raise HTTPException(status_code=500, detail="Failed to create account.")
    SUMMARY_CACHE.invalidate(user_id)
    logger.info("Account created", extra={"user_id": user_id, "account_id": row["id"]})
    return account_response(row)


@app.delete("/accounts/{account_id}")
def delete_account(account_id: int, x_user_id: str | None = Header(None, alias="x-user-id")) -> dict:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        in_use = conn.execute(
            select(transactions.c.id)
            .where(
                transactions.c.user_id == user_id,
                or_(
                    transactions.c.account_id == account_id,
                    transactions.c.to_account_id == account_id,
                ),
            )
            .limit(1)
        ).first()
        if in_use:
            raise HTTPException(status_code=409, detail="Account has transactions.")
        result = conn.execute(
            delete(accounts).where(accounts.c.id == account_id, accounts.c.user_id == user_id)
        )
        if result.rowcount == 0:
            raise HTTPException(status_code=404, detail="Account not found.")
    SUMMARY_CACHE.invalidate(user_id)
    return {"status": "deleted"}


@app.get("/accounts/summary", response_model=AccountsOverviewResponse)
def accounts_summary(
    as_of: date | None = Query(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> AccountsOverviewResponse:
    user_id = get_user_id(x_user_id)
    as_of = as_of or date.today()
    with engine.begin() as conn:
        user_accounts = fetch_user_accounts(conn, user_id)
        user_transactions = fetch_user_transactions(conn, user_id)

    result = aggregate(user_accounts, expand_all(user_transactions), as_of=as_of)
    return AccountsOverviewResponse(
        accounts=[
            AccountSummaryResponse(
                account_id=summary.account_id,
                name=summary.name,
                balance=summary.balance,
                income=summary.income,
                expense=summary.expense,
                invoice_current=summary.invoice_current,
                card_limit=summary.card_limit,
                limit_used_ratio=summary.limit_used_ratio,
                last_closing=summary.cycle.last_closing if summary.cycle else None,
                next_closing=summary.cycle.next_closing if summary.cycle else None,
            )
            for summary in result.per_account.values()
        ],
        totals=TotalsResponse(
            income=result.totals.income,
            expense=result.totals.expense,
            net=result.totals.net,
        ),
    )


@app.get("/cards/{account_id}/cycle", response_model=BillingCycleResponse)
def card_cycle(
    account_id: int,
    as_of: date | None = Query(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> BillingCycleResponse:
    user_id = get_user_id(x_user_id)
    as_of = as_of or date.today()
    with engine.begin() as conn:
        row = conn.execute(
            select(accounts).where(accounts.c.id == account_id, accounts.c.user_id == user_id)
        ).mappings().first()
        if not row:
            raise HTTPException(status_code=404, detail="Account not found.")
        user_transactions = fetch_user_transactions(conn, user_id)

    account = account_from_row(row)
    cycle = account_cycle(account, as_of)
    if cycle is None:
        raise HTTPException(status_code=400, detail="Account has no billing cycle.")
    due_date = None
    if account.due_day:
        try:
            due_date = invoice_due_date(cycle, account.due_day)
        except ValueError:
            logger.warning("Ignoring unusable due day on account %s", account.id)
    occurrences = expand_all(user_transactions)
    return BillingCycleResponse(
        account_id=account.id,
        last_closing=cycle.last_closing,
        next_closing=cycle.next_closing,
        due_date=due_date,
        invoice_total=invoice_total(account, occurrences, as_of),
    )


@app.get("/transactions", response_model=list[TransactionResponse] | list[OccurrenceResponse])
def list_transactions(
    month: str | None = Query(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
):
    user_id = get_user_id(x_user_id)
    if month is None:
        with engine.begin() as conn:
            rows = conn.execute(
                select(transactions)
                .where(transactions.c.user_id == user_id)
                .order_by(transactions.c.date.desc(), transactions.c.id.desc())
            ).mappings().all()
        return [transaction_response(row) for row in rows]

    target_month = parse_month_param(month)
    occurrences = project(load_transactions(user_id), target_month)
    occurrences.sort(key=lambda item: item.effective_date, reverse=True)
    return [
        OccurrenceResponse(
            source_transaction_id=occurrence.source_transaction_id,
            occurrence_index=occurrence.occurrence_index,
            effective_date=occurrence.effective_date,
            effective_amount=occurrence.effective_amount,
            is_paid_at_this_index=occurrence.is_paid_at_this_index,
            kind=occurrence.kind,
            account_id=occurrence.account_id,
            to_account_id=occurrence.to_account_id,
            category=occurrence.category,
            description=occurrence.description,
            installment_total=occurrence.installment_total,
        )
        for occurrence in occurrences
    ]


@app.post("/transactions", response_model=TransactionResponse)
def create_transaction(
    payload: TransactionPayload, x_user_id: str | None = Header(None, alias="x-user-id")
) -> TransactionResponse:
    user_id = get_user_id(x_user_id)
    try:
        payload = TransactionPayload.validate_payload(payload)
    except ValueError as exc:
        logger.warning("Rejected transaction payload: %s", exc)
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    with engine.begin() as conn:
        ensure_account_owned(conn, user_id, payload.account_id)
        stmt = (
            insert(transactions)
            .values(
                user_id=user_id,
                kind=payload.kind,
                account_id=payload.account_id,
                amount=payload.amount,
                date=payload.date,
                category=payload.category,
                description=payload.description,
                is_installment=payload.is_installment,
                installment_total=payload.installment_total,
                installments_paid=payload.installments_paid,
                is_paid=payload.is_paid,
            )
            .returning(*transactions.c)
        )
        row = conn.execute(stmt).mappings().first()

    if not row:
        raise HTTPException(status_code=500, detail="Failed to create transaction.")
    SUMMARY_CACHE.invalidate(user_id)
    logger.info(
        "Transaction created",
        extra={"user_id": user_id, "transaction_id": row["id"], "kind": row["kind"]},
    )
    return transaction_response(row)


@app.delete("/transactions/{transaction_id}")
def delete_transaction(
    transaction_id: int, x_user_id: str | None = Header(None, alias="x-user-id")
) -> dict:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        result = conn.execute(
            delete(transactions).where(
                transactions.c.id == transaction_id,
                transactions.c.user_id == user_id,
            )
        )
        if result.rowcount == 0:
            raise HTTPException(status_code=404, detail="Transaction not found.")
    SUMMARY_CACHE.invalidate(user_id)
    return {"status": "deleted"}


@app.post("/transactions/{transaction_id}/pay-installment", response_model=TransactionResponse)
def pay_installment(
    transaction_id: int, x_user_id: str | None = Header(None, alias="x-user-id")
) -> TransactionResponse:
    user_id = get_user_id(x_user_id)
    next_paid = transactions.c.installments_paid + 1
    stmt = (
        update(transactions)
        .where(
            transactions.c.id == transaction_id,
            transactions.c.user_id == user_id,
            transactions.c.is_installment.is_(True),
        )
        .values(
            installments_paid=case(
                (next_paid >= transactions.c.installment_total, transactions.c.installment_total),
                else_=next_paid,
            ),
            is_paid=case(
                (next_paid >= transactions.c.installment_total, True),
                else_=transactions.c.is_paid,
            ),
        )
        .returning(*transactions.c)
    )
    with engine.begin() as conn:
        row = conn.execute(stmt).mappings().first()
        if not row:
            existing = conn.execute(
                select(transactions.c.is_installment).where(
                    transactions.c.id == transaction_id,
                    transactions.c.user_id == user_id,
                )
            ).first()
            if not existing:
                raise HTTPException(status_code=404, detail="Transaction not found.")
            if not existing[0]:
                raise HTTPException(status_code=400, detail="Transaction is not an installment purchase.")

    SUMMARY_CACHE.invalidate(user_id)
    logger.info(
        "Installment paid",
        extra={
            "user_id": user_id,
            "transaction_id": transaction_id,
            "installments_paid": row["installments_paid"],
        },
    )
    return transaction_response(row)


@app.post("/transactions/{transaction_id}/toggle-paid", response_model=TransactionResponse)
def toggle_paid(
    transaction_id: int, x_user_id: str | None = Header(None, alias="x-user-id")
) -> TransactionResponse:
    user_id = get_user_id(x_user_id)
    stmt = (
        update(transactions)
        .where(
            transactions.c.id == transaction_id,
            transactions.c.user_id == user_id,
            transactions.c.is_installment.is_(False),
        )
        .values(is_paid=not_(transactions.c.is_paid))
        .returning(*transactions.c)
    )
    with engine.begin() as conn:
        row = conn.execute(stmt).mappings().first()
    if not row:
        raise HTTPException(status_code=404, detail="Single transaction not found.")
    SUMMARY_CACHE.invalidate(user_id)
    return transaction_response(row)


@app.post("/transactions/migrate-legacy", response_model=LegacyMigrationResponse)
def migrate_legacy_transactions(
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> LegacyMigrationResponse:
    user_id = get_user_id(x_user_id)
    reclassified = 0
    with engine.begin() as conn:
        card_ids = [
            account.id for account in fetch_user_accounts(conn, user_id) if account.is_credit_card
        ]
        rows = conn.execute(
            select(transactions).where(
                transactions.c.user_id == user_id,
                transactions.c.kind == Expense.kind,
            )
        ).mappings().all()
        for row in rows:
            migrated = migrate_legacy_record(row, card_ids)
            if migrated.kind != CardExpense.kind:
                continue
            conn.execute(
                update(transactions)
                .where(transactions.c.id == row["id"])
                .values(kind=CardExpense.kind)
            )
            reclassified += 1
    if reclassified:
        SUMMARY_CACHE.invalidate(user_id)
    logger.info("Legacy transactions migrated", extra={"user_id": user_id, "reclassified": reclassified})
    return LegacyMigrationResponse(reclassified=reclassified)


@app.post("/transfers", response_model=TransactionResponse)
def create_transfer(
    payload: TransferPayload, x_user_id: str | None = Header(None, alias="x-user-id")
) -> TransactionResponse:
    user_id = get_user_id(x_user_id)
    try:
        payload = TransferPayload.validate_payload(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    with engine.begin() as conn:
        ensure_account_owned(conn, user_id, payload.from_account_id)
        ensure_account_owned(conn, user_id, payload.to_account_id)
        row = conn.execute(
            insert(transactions)
            .values(
                user_id=user_id,
                kind=Transfer.kind,
                account_id=payload.from_account_id,
                to_account_id=payload.to_account_id,
                amount=payload.amount,
                date=payload.date,
                description=payload.description,
                is_paid=True,
            )
            .returning(*transactions.c)
        ).mappings().first()

    if not row:
        raise HTTPException(status_code=500, detail="Failed to create transfer.")
    SUMMARY_CACHE.invalidate(user_id)
    return transaction_response(row)


@app.get("/reports/month", response_model=MonthSummaryResponse)
def report_month(
    month: str | None = Query(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> MonthSummaryResponse:
    user_id = get_user_id(x_user_id)
    target_month = parse_month_param(month)
    summary = SUMMARY_CACHE.get_or_compute(
        user_id,
        target_month.key,
        lambda: month_summary(load_transactions(user_id), target_month),
    )
    return month_summary_response(summary)


@app.get("/reports/months", response_model=list[MonthSummaryResponse])
def report_months(
    months_back: int = Query(REPORT_MONTHS_BACK, ge=0, le=120),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> list[MonthSummaryResponse]:
    user_id = get_user_id(x_user_id)
    today = date.today()
    summaries = SUMMARY_CACHE.get_or_compute(
        user_id,
        f"{YearMonth.of(today).key}:last-{months_back}",
        lambda: by_month(load_transactions(user_id), months_back, today),
    )
    return [month_summary_response(summary) for summary in summaries]


@app.get("/reports/categories", response_model=list[CategoryTotalResponse])
def report_categories(
    month: str | None = Query(None),
    mode: str = Query("expense"),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> list[CategoryTotalResponse]:
    user_id = get_user_id(x_user_id)
    target_month = parse_month_param(month)
    occurrences = project(load_transactions(user_id), target_month)
    try:
        totals = by_category(occurrences, mode)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return [
        CategoryTotalResponse(category=item.category, total=item.total, percentage=item.percentage)
        for item in totals
    ]


@app.get("/reports/daily-flow", response_model=list[DailyFlowResponse])
def report_daily_flow(
    month: str | None = Query(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> list[DailyFlowResponse]:
    user_id = get_user_id(x_user_id)
    target_month = parse_month_param(month)
    occurrences = project(load_transactions(user_id), target_month)
    return [
        DailyFlowResponse(day=row.day, income=row.income, expense=row.expense, net=row.net)
        for row in daily_flow(occurrences, target_month)
    ]


@app.get("/reports/upcoming-installments", response_model=list[UpcomingMonthResponse])
def report_upcoming_installments(
    months_ahead: int = Query(12, ge=0, le=120),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> list[UpcomingMonthResponse]:
    user_id = get_user_id(x_user_id)
    upcoming = upcoming_installments(load_transactions(user_id), date.today(), months_ahead)
    return [
        UpcomingMonthResponse(key=item.key, label_short=item.label_short, total=item.total)
        for item in upcoming
    ]


@app.get("/reports/month-options", response_model=list[str])
def report_month_options(x_user_id: str | None = Header(None, alias="x-user-id")) -> list[str]:
    user_id = get_user_id(x_user_id)
    return month_options(load_transactions(user_id), date.today())


@app.get("/investments", response_model=list[InvestmentResponse])
def list_investments(
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> list[InvestmentResponse]:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        rows = conn.execute(
            select(investments)
            .where(investments.c.user_id == user_id)
            .order_by(investments.c.symbol.asc())
        ).mappings().all()
    return [investment_response(row) for row in rows]


@app.post("/investments", response_model=InvestmentResponse)
def create_investment(
    payload: InvestmentPayload, x_user_id: str | None = Header(None, alias="x-user-id")
) -> InvestmentResponse:
    user_id = get_user_id(x_user_id)
    try:
        payload = InvestmentPayload.validate_payload(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    try:
        with engine.begin() as conn:
            row = conn.execute(
                insert(investments)
                .values(
                    user_id=user_id,
                    asset_type=payload.asset_type,
                    symbol=payload.symbol,
                    name=payload.name,
                )
                .returning(*investments.c)
            ).mappings().first()
    except IntegrityError as exc:
        raise HTTPException(status_code=409, detail="Investment already exists.") from exc
    if not row:
        raise HTTPException(status_code=500, detail="Failed to create investment.")
    return investment_response(row)


@app.get("/investments/{investment_id}/purchases", response_model=list[PurchaseResponse])
def list_purchases(
    investment_id: int, x_user_id: str | None = Header(None, alias="x-user-id")
) -> list[PurchaseResponse]:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        rows = conn.execute(
            select(investment_purchases)
            .where(
                investment_purchases.c.asset_id == investment_id,
                investment_purchases.c.user_id == user_id,
            )
            .order_by(investment_purchases.c.date.asc(), investment_purchases.c.id.asc())
        ).mappings().all()
    return [purchase_response(row) for row in rows]


@app.post("/investments/{investment_id}/purchases", response_model=InvestmentResponse)
def create_purchase(
    investment_id: int,
    payload: PurchasePayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> InvestmentResponse:
    user_id = get_user_id(x_user_id)
    try:
        payload = PurchasePayload.validate_payload(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    with engine.begin() as conn:
        asset_row = conn.execute(
            select(investments).where(
                investments.c.id == investment_id,
                investments.c.user_id == user_id,
            )
        ).mappings().first()
        if not asset_row:
            raise HTTPException(status_code=404, detail="Investment not found.")
        asset = InvestmentAsset(
            id=asset_row["id"],
            asset_type=asset_row["asset_type"],
            symbol=asset_row["symbol"],
            quantity=asset_row["quantity"],
            average_price=asset_row["average_price"],
        )
        purchase = build_purchase(
            asset,
            payload.date,
            payload.price_per_unit,
            quantity=payload.quantity,
            cash=payload.cash,
        )
        if purchase is None:
            raise HTTPException(status_code=400, detail="No valid purchase.")

        conn.execute(
            insert(investment_purchases).values(
                user_id=user_id,
                asset_id=asset.id,
                date=purchase.date,
                price_per_unit=purchase.price_per_unit,
                quantity=purchase.quantity,
                total_invested=purchase.total_invested,
                mode_used="quantity" if payload.quantity is not None else "value",
                input_value=payload.cash,
            )
        )
        purchase_rows = conn.execute(
            select(investment_purchases).where(investment_purchases.c.asset_id == asset.id)
        ).mappings().all()
        # position is always rebuilt from the purchase log, never incremented in place
        position = replay_purchases(asset, [purchase_from_row(row) for row in purchase_rows])
        row = conn.execute(
            update(investments)
            .where(investments.c.id == asset.id)
            .values(quantity=position.quantity, average_price=position.average_price)
            .returning(*investments.c)
        ).mappings().first()

    logger.info(
        "Investment purchase recorded",
        extra={"user_id": user_id, "investment_id": investment_id, "quantity": str(purchase.quantity)},
    )
    return investment_response(row)


@app.post("/investments/quote-quantity", response_model=QuoteQuantityResponse)
def quote_quantity(
    payload: QuoteQuantityPayload, x_user_id: str | None = Header(None, alias="x-user-id")
) -> QuoteQuantityResponse:
    get_user_id(x_user_id)
    try:
        conversion = quantity_from_cash(payload.cash, payload.price_per_unit, payload.asset_type)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return QuoteQuantityResponse(quantity=conversion.quantity, total=conversion.total)


def purchase_from_row(row) -> Purchase:
    return Purchase(
        asset_id=row["asset_id"],
        date=row["date"],
        price_per_unit=row["price_per_unit"],
        quantity=row["quantity"],
        total_invested=row["total_invested"],
    )


def purchase_response(row) -> PurchaseResponse:
    return PurchaseResponse(
        id=row["id"],
        asset_id=row["asset_id"],
        date=row["date"],
        price_per_unit=row["price_per_unit"],
        quantity=row["quantity"],
        total_invested=row["total_invested"],
        mode_used=row["mode_used"],
    )
